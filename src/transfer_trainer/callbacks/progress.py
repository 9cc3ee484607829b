"""Per-epoch progress callback — forwards train loss/accuracy to a listener."""

from __future__ import annotations

from collections.abc import Callable

import lightning as L
from loguru import logger

from transfer_trainer.schemas.training import TrainingProgress


class ProgressCallback(L.Callback):
    """Report ``TrainingProgress`` after every training epoch.

    Reads the epoch-level ``train/loss`` and ``train/acc`` values logged by
    the head module and hands them to ``on_progress``. Every emitted event
    is also kept in :attr:`history`.

    Args:
        on_progress: Listener called once per finished epoch.
    """

    def __init__(
        self, on_progress: Callable[[TrainingProgress], None] | None = None
    ) -> None:
        super().__init__()
        self.on_progress = on_progress
        self.history: list[TrainingProgress] = []

    def on_train_epoch_end(
        self, trainer: L.Trainer, pl_module: L.LightningModule
    ) -> None:
        metrics = trainer.callback_metrics
        loss = metrics.get("train/loss")
        acc = metrics.get("train/acc")
        progress = TrainingProgress(
            epoch=trainer.current_epoch,
            loss=loss.item() if loss is not None else float("nan"),
            accuracy=acc.item() if acc is not None else float("nan"),
        )
        self.history.append(progress)
        logger.debug(
            f"Epoch {progress.epoch + 1}/{trainer.max_epochs}: "
            f"loss={progress.loss:.4f} acc={progress.accuracy:.4f}"
        )
        if self.on_progress is not None:
            self.on_progress(progress)
