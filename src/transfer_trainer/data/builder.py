"""Assemble embedding features and one-hot labels from labeled images."""

from __future__ import annotations

from typing import NamedTuple

import torch
import torch.nn.functional as F
from loguru import logger
from tqdm import tqdm

from transfer_trainer.data.utils import as_class_list
from transfer_trainer.errors import DecodeError, EmptyDatasetError
from transfer_trainer.models.extractor import FeatureExtractor
from transfer_trainer.transforms.augmentation import Augmenter
from transfer_trainer.transforms.preprocess import normalize
from transfer_trainer.types import LabeledImageSet

__all__ = ["DatasetBuilder", "TrainingDataset"]


class TrainingDataset(NamedTuple):
    """Feature matrix ``(N, D)``, one-hot labels ``(N, C)`` and input counts.

    ``class_counts`` holds the number of images supplied per class before
    augmentation, aligned with the label columns. ``image_ids`` maps each row
    to the source image it was embedded from, so augmented copies of one
    image can be kept together.
    """

    features: torch.Tensor
    labels: torch.Tensor
    class_counts: tuple[int, ...]
    image_ids: torch.Tensor | None = None

    @property
    def total_images(self) -> int:
        return sum(self.class_counts)

    @property
    def min_per_class(self) -> int:
        return min(self.class_counts) if self.class_counts else 0

    @property
    def num_classes(self) -> int:
        return int(self.labels.shape[1])

    def rows_per_class(self) -> list[int]:
        """Number of feature rows (including augmented copies) per class."""
        return [int(n) for n in self.labels.sum(dim=0).tolist()]


class DatasetBuilder:
    """Preprocess, optionally augment, and embed every labeled image.

    Collections with fewer than ``augmentation_threshold`` images in total
    contribute ``augmentation_variants`` rows per image: the unaugmented
    embedding followed by embeddings of independently augmented copies.
    Larger collections contribute one row per image.

    Images that fail to decode are logged and skipped; the build only fails
    if nothing usable remains.

    Args:
        extractor: Frozen feature extractor; also fixes the image size.
        augmenter: Augmentation policy for small collections.
        augmentation_threshold: Total image count below which to augment.
        augmentation_variants: Rows per image when augmenting (original
            included).
        show_progress: Display a tqdm progress bar while embedding.
    """

    def __init__(
        self,
        extractor: FeatureExtractor,
        augmenter: Augmenter | None = None,
        augmentation_threshold: int = 50,
        augmentation_variants: int = 3,
        show_progress: bool = False,
    ) -> None:
        if augmentation_variants < 1:
            raise ValueError(
                f"augmentation_variants must be >= 1, got {augmentation_variants}"
            )
        self.extractor = extractor
        self.augmenter = augmenter or Augmenter()
        self.augmentation_threshold = augmentation_threshold
        self.augmentation_variants = augmentation_variants
        self.show_progress = show_progress

    def variants_per_image(self, total_images: int) -> int:
        """Feature rows contributed by each image for a collection of this size."""
        if total_images < self.augmentation_threshold:
            return self.augmentation_variants
        return 1

    def _embed_variants(self, image: torch.Tensor, variants: int) -> torch.Tensor:
        """Embed ``image`` and ``variants - 1`` augmented copies as one batch."""
        batch = torch.stack(
            [image] + [self.augmenter(image) for _ in range(variants - 1)]
        )
        features = self.extractor.embed_batch(batch)
        del batch
        return features

    def build(self, labeled_images: LabeledImageSet) -> TrainingDataset:
        """Embed every image and return the stacked training dataset.

        Raises:
            EmptyDatasetError: If no image could be decoded.
        """
        classes = as_class_list(labeled_images)
        counts = tuple(len(images) for _, images in classes)
        total_images = sum(counts)
        variants = self.variants_per_image(total_images)
        logger.info(
            f"Dataset size: {total_images} images in {len(classes)} classes. "
            f"Augmentation: {'ENABLED' if variants > 1 else 'DISABLED'} "
            f"({variants} row(s) per image)"
        )

        feature_rows: list[torch.Tensor] = []
        labels: list[int] = []
        image_ids: list[int] = []
        skipped = 0
        with tqdm(
            total=total_images,
            desc="Embedding",
            unit="img",
            disable=not self.show_progress,
        ) as progress:
            for class_idx, (name, images) in enumerate(classes):
                logger.debug(f"Processing class '{name}' ({len(images)} images)")
                for image_idx, raw in enumerate(images):
                    progress.update(1)
                    try:
                        normalized = normalize(raw, self.extractor.image_size)
                    except DecodeError as e:
                        skipped += 1
                        logger.warning(
                            f"Skipping image {image_idx} of class '{name}': {e.message}"
                        )
                        continue
                    features = self._embed_variants(normalized, variants)
                    del normalized
                    feature_rows.append(features)
                    labels.extend([class_idx] * features.shape[0])
                    image_ids.extend([len(feature_rows) - 1] * features.shape[0])

        if skipped:
            logger.warning(f"Skipped {skipped} unreadable image(s) of {total_images}")
        if not feature_rows:
            raise EmptyDatasetError(
                "No valid features extracted from images",
                hint="Check that the images are valid PNG/JPEG files.",
            )

        features_matrix = torch.cat(feature_rows)
        feature_rows.clear()
        labels_matrix = F.one_hot(
            torch.tensor(labels, dtype=torch.long), num_classes=len(classes)
        ).float()
        logger.info(
            f"Total features extracted: {features_matrix.shape[0]} "
            f"(dim {features_matrix.shape[1]})"
        )
        return TrainingDataset(
            features_matrix,
            labels_matrix,
            counts,
            image_ids=torch.tensor(image_ids, dtype=torch.long),
        )
