"""Data pipeline for transfer_trainer."""

from transfer_trainer.data.builder import DatasetBuilder, TrainingDataset
from transfer_trainer.data.datamodule import FeatureDataModule, FeatureDataset
from transfer_trainer.data.utils import (
    as_class_list,
    class_counts,
    load_image_folder,
    validate_labeled_images,
)

__all__ = [
    "DatasetBuilder",
    "FeatureDataModule",
    "FeatureDataset",
    "TrainingDataset",
    "as_class_list",
    "class_counts",
    "load_image_folder",
    "validate_labeled_images",
]
