"""Per-project training engine owning the extractor, head and snapshot.

One ``TrainingEngine`` per active project: it loads the frozen extractor
once, runs at most one training run at a time, swaps in the new head and its
snapshot together when a run succeeds, and answers predictions and
staleness queries in between.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from pathlib import Path

import lightning as L
from loguru import logger

from transfer_trainer.config import EngineConfig
from transfer_trainer.data.builder import DatasetBuilder
from transfer_trainer.data.utils import validate_labeled_images
from transfer_trainer.errors import AlreadyTrainingError, NotTrainedError
from transfer_trainer.inference.predictor import predict
from transfer_trainer.models.extractor import FeatureExtractor
from transfer_trainer.models.head import ClassifierHead
from transfer_trainer.schemas.prediction import PredictionResult
from transfer_trainer.schemas.training import TrainingSnapshot
from transfer_trainer.state import TrainingState, TrainingStateTracker
from transfer_trainer.trainer import (
    ClassifierTrainer,
    ProgressListener,
    TrainingRun,
)
from transfer_trainer.transforms.augmentation import Augmenter
from transfer_trainer.types import LabeledImageSet, RawImage


class TrainingEngine:
    """Train, query and track a classifier for one project.

    Args:
        config: Engine configuration. Defaults to ``EngineConfig()``.
        project_id: Opaque identifier stamped on training snapshots.
        extractor: Pre-loaded feature extractor to share; loaded from
            ``config`` on first use otherwise.
        augmenter: Augmentation policy for small collections.
        callbacks: Extra Lightning callbacks attached to every fit.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        project_id: str | None = None,
        extractor: FeatureExtractor | None = None,
        augmenter: Augmenter | None = None,
        callbacks: Sequence[L.Callback] | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.project_id = project_id
        self._extractor = extractor
        self._augmenter = augmenter or Augmenter()
        self._tracker = TrainingStateTracker(project_id=project_id)
        self._trainer = ClassifierTrainer(
            accelerator=self.config.accelerator,
            seed=self.config.seed,
            num_workers=self.config.num_workers,
            show_progress_bar=self.config.show_progress_bar,
            callbacks=callbacks,
        )

        self._lock = threading.Lock()
        self._training = False
        self._head: ClassifierHead | None = None
        self._snapshot: TrainingSnapshot | None = None

    # ------------------------------------------------------------------
    # Extractor
    # ------------------------------------------------------------------

    def load(self) -> FeatureExtractor:
        """Load and warm up the feature extractor (no-op once loaded).

        Raises:
            ModelLoadError: If the backbone cannot be fetched or built.
        """
        if self._extractor is None:
            self._extractor = FeatureExtractor(
                backbone=self.config.backbone,
                image_size=self.config.image_size,
                pretrained=self.config.pretrained,
            )
        return self._extractor

    @property
    def extractor(self) -> FeatureExtractor | None:
        return self._extractor

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def head(self) -> ClassifierHead | None:
        return self._head

    @property
    def snapshot(self) -> TrainingSnapshot | None:
        return self._snapshot

    @property
    def is_training(self) -> bool:
        return self._training

    @property
    def is_trained(self) -> bool:
        return self._head is not None

    def state(self, current: LabeledImageSet | None = None) -> TrainingState:
        """Lifecycle state; ``STALE`` needs the caller's current images."""
        if self._training:
            return TrainingState.TRAINING
        if self._head is None:
            return TrainingState.UNTRAINED
        if current is not None and self.is_stale(current):
            return TrainingState.STALE
        return TrainingState.TRAINED

    def is_stale(self, current: LabeledImageSet) -> bool:
        """Whether the trained head no longer matches ``current`` images."""
        return self._tracker.is_stale(self._snapshot, current)

    def reset(self) -> None:
        """Discard the trained head and its snapshot."""
        with self._lock:
            if self._training:
                raise AlreadyTrainingError("Cannot reset while a training run is in progress")
            self._head = None
            self._snapshot = None
        logger.info(f"Reset training state for project {self.project_id!r}")

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _begin(self, labeled_images: LabeledImageSet) -> list[tuple[str, list[RawImage]]]:
        """Validate input, load the extractor and enter the TRAINING state."""
        classes = validate_labeled_images(labeled_images)
        self.load()
        with self._lock:
            if self._training:
                raise AlreadyTrainingError(
                    "A training run is already in progress",
                    hint="Wait for the current run to finish before starting another.",
                )
            self._training = True
            # Release the previous head before a new one is built.
            self._head = None
            self._snapshot = None
        logger.info(
            f"Starting training for project {self.project_id!r} with classes: "
            f"{[(name, len(images)) for name, images in classes]}"
        )
        return classes

    def _run(
        self,
        classes: list[tuple[str, list[RawImage]]],
        on_progress: ProgressListener | None,
    ) -> ClassifierHead:
        try:
            builder = DatasetBuilder(
                self.load(),
                augmenter=self._augmenter,
                augmentation_threshold=self.config.augmentation_threshold,
                augmentation_variants=self.config.augmentation_variants,
                show_progress=self.config.show_progress_bar,
            )
            dataset = builder.build(classes)
            class_names = [name for name, _ in classes]
            head = self._trainer.train(
                dataset,
                class_names,
                num_epochs=self.config.num_epochs,
                batch_size=self.config.batch_size,
                on_progress=on_progress,
            )
            del dataset
            snapshot = self._tracker.snapshot(
                class_names, [len(images) for _, images in classes]
            )
            with self._lock:
                self._head = head
                self._snapshot = snapshot
            logger.info(
                f"Training completed for project {self.project_id!r} "
                f"({snapshot.total_images} images)"
            )
            return head
        except Exception as e:
            logger.error(f"Training failed for project {self.project_id!r}: {e}")
            raise
        finally:
            with self._lock:
                self._training = False

    def train(
        self,
        labeled_images: LabeledImageSet,
        on_progress: ProgressListener | None = None,
    ) -> ClassifierHead:
        """Train a new head on ``labeled_images`` and make it current.

        Blocks until all epochs have run; ``on_progress`` receives one
        :class:`TrainingProgress` per epoch.

        Raises:
            InvalidInputError: Fewer than 2 classes, or a class with no images.
            AlreadyTrainingError: A run is already in progress.
            ModelLoadError: The feature extractor could not be loaded.
            EmptyDatasetError: No image could be decoded.
        """
        classes = self._begin(labeled_images)
        return self._run(classes, on_progress)

    def iter_train(self, labeled_images: LabeledImageSet) -> TrainingRun:
        """Start training on a worker thread and stream per-epoch progress.

        Preconditions are checked and the TRAINING state is entered before
        this returns, so invalid input and concurrent runs fail immediately.
        """
        classes = self._begin(labeled_images)
        return TrainingRun(lambda emit: self._run(classes, emit))

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def predict(self, image: RawImage) -> PredictionResult:
        """Classify ``image`` with the current head.

        Raises:
            NotTrainedError: No trained head (never trained, reset, or a run
                is in progress).
        """
        head = self._head
        if head is None:
            raise NotTrainedError(
                "Model is not trained",
                hint="Call train() first." if not self._training else "Training is in progress.",
            )
        return predict(head, self.load(), image)

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    def save_snapshot(self, path: Path) -> None:
        """Persist the current snapshot as JSON."""
        if self._snapshot is None:
            raise NotTrainedError("No training snapshot to save")
        self._tracker.save(self._snapshot, path)

    def load_snapshot(self, path: Path) -> TrainingSnapshot | None:
        """Read a persisted snapshot for staleness checks against saved state."""
        return self._tracker.load(path)
