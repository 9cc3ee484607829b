"""Fit the adaptive classifier head on an embedding dataset.

``ClassifierTrainer.train`` runs in the caller's thread and reports progress
through a callback. ``ClassifierTrainer.iter_train`` runs the same fit on a
worker thread and exposes progress as a finite iterator; the fitted head is
available from the iterator once it is exhausted.
"""

from __future__ import annotations

import queue
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import Future, ThreadPoolExecutor

import lightning as L
from loguru import logger

from transfer_trainer.callbacks.progress import ProgressCallback
from transfer_trainer.data.builder import TrainingDataset
from transfer_trainer.data.datamodule import FeatureDataModule
from transfer_trainer.errors import InvalidInputError
from transfer_trainer.models.head import (
    ClassifierHead,
    ClassifierHeadModule,
    select_hyperparameters,
)
from transfer_trainer.schemas.training import TrainingProgress

ProgressListener = Callable[[TrainingProgress], None]

_DONE = object()


class TrainingRun(Iterator[TrainingProgress]):
    """Stream of per-epoch progress from a fit running on a worker thread.

    Yields one :class:`TrainingProgress` per epoch, then stops. Not
    restartable. If the fit fails, the exception is re-raised from
    ``next()``. There is no cancellation: a caller that loses interest
    simply stops iterating and the fit still runs to completion.

    Args:
        fit: Callable running the fit; receives the per-epoch listener and
            returns the fitted head.
    """

    def __init__(self, fit: Callable[[ProgressListener], ClassifierHead]) -> None:
        self._queue: queue.Queue[object] = queue.Queue()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="transfer-trainer")
        self._future: Future[ClassifierHead] = self._executor.submit(fit, self._queue.put)
        self._future.add_done_callback(lambda _: self._queue.put(_DONE))
        self._executor.shutdown(wait=False)
        self._finished = False

    def __iter__(self) -> TrainingRun:
        return self

    def __next__(self) -> TrainingProgress:
        if self._finished:
            raise StopIteration
        item = self._queue.get()
        if item is _DONE:
            self._finished = True
            # Surfaces any exception raised during the fit.
            self._future.result()
            raise StopIteration
        return item  # type: ignore[return-value]

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def head(self) -> ClassifierHead:
        """The fitted head. Only available once the stream is exhausted."""
        if not self._finished:
            raise RuntimeError("Training run still in progress; consume the progress stream first")
        return self._future.result()

    def result(self) -> ClassifierHead:
        """Drain the remaining progress events and return the fitted head."""
        for _ in self:
            pass
        return self.head


class ClassifierTrainer:
    """Select head hyperparameters from dataset size and fit with Lightning.

    Args:
        accelerator: Lightning accelerator (``"cpu"``, ``"gpu"``, ...).
        seed: Seed for weight init, shuffling and the validation split.
        num_workers: DataLoader workers.
        show_progress_bar: Show Lightning's progress bar.
        callbacks: Extra Lightning callbacks added to every fit.
    """

    def __init__(
        self,
        accelerator: str = "cpu",
        seed: int = 42,
        num_workers: int = 0,
        show_progress_bar: bool = False,
        callbacks: Sequence[L.Callback] | None = None,
    ) -> None:
        self.accelerator = accelerator
        self.seed = seed
        self.num_workers = num_workers
        self.show_progress_bar = show_progress_bar
        self.callbacks = list(callbacks or [])

    @staticmethod
    def _check_inputs(dataset: TrainingDataset, class_names: Sequence[str]) -> None:
        if len(class_names) < 2:
            raise InvalidInputError(
                f"Need at least 2 classes for training, got {len(class_names)}"
            )
        if dataset.num_classes != len(class_names):
            raise InvalidInputError(
                f"Dataset has {dataset.num_classes} label columns but "
                f"{len(class_names)} class names were given"
            )
        empty = [
            name
            for name, rows in zip(class_names, dataset.rows_per_class())
            if rows == 0
        ]
        if empty:
            raise InvalidInputError(
                f"No usable images for class(es): {empty}",
                hint="Every class needs at least one readable image.",
            )

    def train(
        self,
        dataset: TrainingDataset,
        class_names: Sequence[str],
        num_epochs: int = 50,
        batch_size: int = 32,
        on_progress: ProgressListener | None = None,
    ) -> ClassifierHead:
        """Fit a new head for exactly ``num_epochs`` epochs.

        ``on_progress`` is called after every epoch with the epoch index,
        mean training loss and training accuracy.

        Raises:
            InvalidInputError: If fewer than 2 classes are given, or a class
                contributed no feature rows.
        """
        self._check_inputs(dataset, class_names)
        if num_epochs < 1:
            raise ValueError(f"num_epochs must be >= 1, got {num_epochs}")

        hparams = select_hyperparameters(dataset.total_images, dataset.min_per_class)
        logger.info(
            f"Training head on {dataset.features.shape[0]} rows "
            f"({dataset.total_images} images, {len(class_names)} classes): "
            f"{hparams.model_dump()}"
        )

        L.seed_everything(self.seed, workers=True)
        module = ClassifierHeadModule.from_hyperparameters(
            input_dim=int(dataset.features.shape[1]),
            num_classes=len(class_names),
            hparams=hparams,
        )
        datamodule = FeatureDataModule(
            dataset,
            batch_size=batch_size,
            validation_split=hparams.validation_split,
            seed=self.seed,
            num_workers=self.num_workers,
        )
        progress = ProgressCallback(on_progress)
        trainer = L.Trainer(
            max_epochs=num_epochs,
            min_epochs=num_epochs,
            accelerator=self.accelerator,
            devices=1,
            logger=False,
            enable_checkpointing=False,
            enable_model_summary=False,
            enable_progress_bar=self.show_progress_bar,
            num_sanity_val_steps=0,
            limit_val_batches=1.0 if datamodule.has_validation else 0,
            callbacks=[progress, *self.callbacks],
        )
        trainer.fit(module, datamodule=datamodule)

        module.eval()
        module.requires_grad_(False)
        module.cpu()
        last = progress.history[-1] if progress.history else None
        logger.info(
            "Training completed"
            + (f": loss={last.loss:.4f} acc={last.accuracy:.4f}" if last else "")
        )
        return ClassifierHead(
            module=module,
            class_names=tuple(class_names),
            hyperparameters=hparams,
        )

    def iter_train(
        self,
        dataset: TrainingDataset,
        class_names: Sequence[str],
        num_epochs: int = 50,
        batch_size: int = 32,
    ) -> TrainingRun:
        """Start :meth:`train` on a worker thread and stream its progress."""
        self._check_inputs(dataset, class_names)
        return TrainingRun(
            lambda emit: self.train(
                dataset,
                class_names,
                num_epochs=num_epochs,
                batch_size=batch_size,
                on_progress=emit,
            )
        )
