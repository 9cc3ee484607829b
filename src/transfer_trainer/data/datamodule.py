"""LightningDataModule over an in-memory embedding dataset."""

from __future__ import annotations

import lightning as L
import torch
from loguru import logger
from torch.utils.data import DataLoader, Dataset, Subset

from transfer_trainer.data.builder import TrainingDataset
from transfer_trainer.types import FeatureBatch


class FeatureDataset(Dataset[FeatureBatch]):
    """Row-indexed view of a feature matrix and its one-hot labels."""

    def __init__(self, features: torch.Tensor, labels: torch.Tensor) -> None:
        if features.shape[0] != labels.shape[0]:
            raise ValueError(
                f"features ({features.shape[0]}) and labels ({labels.shape[0]}) "
                "must have the same number of rows"
            )
        self.features = features
        self.labels = labels

    def __len__(self) -> int:
        return int(self.features.shape[0])

    def __getitem__(self, idx: int) -> FeatureBatch:
        return {"features": self.features[idx], "labels": self.labels[idx]}


class FeatureDataModule(L.LightningDataModule):
    """Train/validation loaders for a :class:`TrainingDataset`.

    The validation rows are a seeded random ``validation_split`` fraction of
    the source images: every row embedded from a held-out image (augmented
    copies included) goes to validation, so no view of a validation image
    is trained on. With a split of ``0.0`` every row is used for training
    and the validation loader is empty.

    Args:
        dataset: Features and one-hot labels from the dataset builder.
        batch_size: Batch size for both loaders.
        validation_split: Fraction of source images held out, in ``[0, 1)``.
        seed: Seed for the split generator.
        num_workers: DataLoader workers (features are in memory; 0 is typical).
    """

    def __init__(
        self,
        dataset: TrainingDataset,
        batch_size: int = 32,
        validation_split: float = 0.0,
        seed: int = 42,
        num_workers: int = 0,
    ) -> None:
        super().__init__()
        if not 0.0 <= validation_split < 1.0:
            raise ValueError(f"validation_split must be in [0, 1), got {validation_split}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._full = FeatureDataset(dataset.features, dataset.labels)
        self._image_ids = (
            dataset.image_ids
            if dataset.image_ids is not None
            else torch.arange(len(self._full))
        )
        if self._image_ids.shape[0] != len(self._full):
            raise ValueError(
                f"image_ids ({self._image_ids.shape[0]}) must have one entry per row "
                f"({len(self._full)})"
            )
        self._batch_size = batch_size
        self._validation_split = validation_split
        self._seed = seed
        self._num_workers = num_workers

        self._train_dataset: Dataset[FeatureBatch] | None = None
        self._val_dataset: Dataset[FeatureBatch] | None = None

    @property
    def has_validation(self) -> bool:
        return self._validation_split > 0.0

    def setup(self, stage: str | None = None) -> None:
        """Split rows into train and validation subsets."""
        if self._train_dataset is not None:
            return
        images = torch.unique(self._image_ids)
        n_train_images = max(1, int(len(images) * (1.0 - self._validation_split)))
        if n_train_images == len(images):
            self._train_dataset = self._full
            self._val_dataset = Subset(self._full, [])
            n_train, n_val = len(self._full), 0
        else:
            generator = torch.Generator().manual_seed(self._seed)
            order = torch.randperm(len(images), generator=generator)
            val_images = images[order[n_train_images:]]
            is_val = torch.isin(self._image_ids, val_images)
            train_rows = torch.nonzero(~is_val).flatten().tolist()
            val_rows = torch.nonzero(is_val).flatten().tolist()
            self._train_dataset = Subset(self._full, train_rows)
            self._val_dataset = Subset(self._full, val_rows)
            n_train, n_val = len(train_rows), len(val_rows)
        logger.info(
            f"Setup fit: train={n_train}, val={n_val} rows "
            f"from {len(images)} images"
        )

    @staticmethod
    def _collate_fn(batch: list[FeatureBatch]) -> FeatureBatch:
        return {
            "features": torch.stack([item["features"] for item in batch]),
            "labels": torch.stack([item["labels"] for item in batch]),
        }

    def train_dataloader(self) -> DataLoader[FeatureBatch]:
        """Return the shuffled training DataLoader."""
        if self._train_dataset is None:
            raise RuntimeError("Call setup('fit') first")
        return DataLoader(
            self._train_dataset,
            batch_size=self._batch_size,
            shuffle=True,
            num_workers=self._num_workers,
            collate_fn=self._collate_fn,
        )

    def val_dataloader(self) -> DataLoader[FeatureBatch]:
        """Return the validation DataLoader (deterministic order)."""
        if self._val_dataset is None:
            raise RuntimeError("Call setup('fit') first")
        return DataLoader(
            self._val_dataset,
            batch_size=self._batch_size,
            shuffle=False,
            num_workers=self._num_workers,
            collate_fn=self._collate_fn,
        )
