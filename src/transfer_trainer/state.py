"""Training snapshots and staleness detection for the trained-classifier lifecycle.

Lifecycle::

    UNTRAINED -> TRAINING -> TRAINED -> (data changes) -> STALE -> TRAINING -> ...

A snapshot records the class names and per-class image counts a head was
trained on. Comparing it with the caller's current images tells whether the
head needs retraining.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from transfer_trainer.data.utils import class_counts
from transfer_trainer.schemas.training import TrainingSnapshot
from transfer_trainer.types import LabeledImageSet


class TrainingState(str, enum.Enum):
    UNTRAINED = "untrained"
    TRAINING = "training"
    TRAINED = "trained"
    STALE = "stale"


class TrainingStateTracker:
    """Capture, persist and compare training snapshots.

    Args:
        project_id: Opaque tag stamped on snapshots taken by this tracker.
    """

    def __init__(self, project_id: str | None = None) -> None:
        self.project_id = project_id

    def snapshot(
        self,
        class_names: Sequence[str],
        image_counts: Sequence[int],
        project_id: str | None = None,
    ) -> TrainingSnapshot:
        """Record the data a successful training run used."""
        return TrainingSnapshot(
            class_names=tuple(class_names),
            image_counts=tuple(image_counts),
            total_images=sum(image_counts),
            project_id=project_id if project_id is not None else self.project_id,
        )

    def snapshot_of(
        self, labeled_images: LabeledImageSet, project_id: str | None = None
    ) -> TrainingSnapshot:
        """Snapshot directly from a labeled image set."""
        names, counts = class_counts(labeled_images)
        return self.snapshot(names, counts, project_id=project_id)

    @staticmethod
    def is_stale(
        snapshot: TrainingSnapshot | None, current: LabeledImageSet
    ) -> bool:
        """Whether ``current`` differs from the data captured in ``snapshot``.

        Stale when the class count, the set of class names (case-sensitive,
        order ignored), the total image count, or any per-class image count
        differs. Without a snapshot nothing is trained, so nothing is stale.
        """
        if snapshot is None:
            return False

        names, counts = class_counts(current)
        if len(names) != len(snapshot.class_names):
            return True
        if set(names) != set(snapshot.class_names):
            return True
        if sum(counts) != snapshot.total_images:
            return True
        return any(
            snapshot.count_for(name) != count for name, count in zip(names, counts)
        )

    @staticmethod
    def save(snapshot: TrainingSnapshot, path: Path) -> None:
        """Write ``snapshot`` as JSON."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(snapshot.model_dump_json(indent=2))
        logger.info(f"Saved training snapshot to {path}")

    @staticmethod
    def load(path: Path) -> TrainingSnapshot | None:
        """Read a snapshot written by :meth:`save`; ``None`` if the file is absent."""
        if not path.exists():
            return None
        return TrainingSnapshot.model_validate_json(path.read_text())
