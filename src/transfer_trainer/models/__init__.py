"""Frozen feature extractor and trainable classifier head."""

from transfer_trainer.models.extractor import (
    SUPPORTED_BACKBONES,
    FeatureExtractor,
    build_backbone,
)
from transfer_trainer.models.head import (
    ClassifierHead,
    ClassifierHeadModule,
    HeadHyperparameters,
    select_hyperparameters,
)

__all__ = [
    "SUPPORTED_BACKBONES",
    "ClassifierHead",
    "ClassifierHeadModule",
    "FeatureExtractor",
    "HeadHyperparameters",
    "build_backbone",
    "select_hyperparameters",
]
