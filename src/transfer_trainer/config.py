"""Pydantic frozen configuration model for the training engine."""

from typing import Literal

from pydantic import BaseModel, model_validator

from transfer_trainer.utils.hydra import register


@register(group="engine", name="default")
class EngineConfig(BaseModel, frozen=True):
    """Configuration for TrainingEngine and its collaborators.

    All fields are validated at construction time. Frozen — no mutation after
    creation. The augmentation constants are fixed policy: datasets below
    ``augmentation_threshold`` images get ``augmentation_variants`` feature
    rows per image (the original plus augmented copies).
    """

    image_size: int = 128
    backbone: str = "mobilenet_v3_small"
    pretrained: bool = True
    num_epochs: int = 50
    batch_size: int = 32
    augmentation_threshold: int = 50
    augmentation_variants: int = 3
    seed: int = 42
    accelerator: Literal["cpu", "gpu", "mps", "auto"] = "cpu"
    num_workers: int = 0
    show_progress_bar: bool = False

    @model_validator(mode="after")
    def _check_positive(self) -> "EngineConfig":
        for field in ("image_size", "num_epochs", "batch_size", "augmentation_variants"):
            value = getattr(self, field)
            if value < 1:
                raise ValueError(f"{field} must be >= 1, got {value}")
        if self.num_workers < 0:
            raise ValueError(f"num_workers must be >= 0, got {self.num_workers}")
        return self
