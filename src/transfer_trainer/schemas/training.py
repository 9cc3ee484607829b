"""Training progress and training snapshot schemas."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field, model_validator


class TrainingProgress(BaseModel, frozen=True):
    """Metrics reported once per finished epoch (epoch is 0-based)."""

    epoch: int
    loss: float
    accuracy: float


class TrainingSnapshot(BaseModel, frozen=True):
    """Description of the data a classifier head was trained on.

    Captured when a training run succeeds and used only to decide whether the
    head is stale relative to the caller's current images. ``project_id`` is
    an opaque tag supplied by the caller.
    """

    class_names: tuple[str, ...]
    image_counts: tuple[int, ...]
    total_images: int
    project_id: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(tz=UTC).isoformat())

    @model_validator(mode="after")
    def _counts_aligned(self) -> "TrainingSnapshot":
        if len(self.class_names) != len(self.image_counts):
            raise ValueError(
                f"image_counts ({len(self.image_counts)}) must align with "
                f"class_names ({len(self.class_names)})"
            )
        return self

    def count_for(self, class_name: str) -> int | None:
        """Image count recorded for ``class_name``, or ``None`` if absent."""
        for name, count in zip(self.class_names, self.image_counts):
            if name == class_name:
                return count
        return None
