"""Adaptive feed-forward classifier head trained on frozen embeddings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import lightning as L
import torch
from pydantic import BaseModel
from torch import nn
from torchmetrics.classification import MulticlassAccuracy

from transfer_trainer.types import FeatureBatch

# Fixed sizing policy for the first hidden layer: 4 units per training image,
# clamped to [HIDDEN1_MIN, HIDDEN1_MAX].
HIDDEN_UNITS_PER_IMAGE = 4
HIDDEN1_MIN = 128
HIDDEN1_MAX = 256

SMALL_DATASET_IMAGES = 50
TINY_DATASET_IMAGES = 20
MIN_PER_CLASS_FOR_VALIDATION = 10


class HeadHyperparameters(BaseModel, frozen=True):
    """Architecture and optimizer settings chosen for one training run."""

    hidden1: int
    hidden2: int
    dropout1: float
    dropout2: float
    learning_rate: float
    validation_split: float


def select_hyperparameters(total_images: int, min_per_class: int) -> HeadHyperparameters:
    """Pick head size, dropout, learning rate and validation split.

    Pure function of the pre-augmentation image counts:

    - ``hidden1 = clamp(total_images * 4, 128, 256)``, ``hidden2 = hidden1 // 2``
    - ``dropout1 = 0.3`` below 50 images, else ``0.5``; ``dropout2 = dropout1 / 2``
    - ``learning_rate = 0.001`` below 20 images, else ``0.0001``
    - ``validation_split = 0.2`` when every class has at least 10 images, else 0
    """
    hidden1 = min(max(total_images * HIDDEN_UNITS_PER_IMAGE, HIDDEN1_MIN), HIDDEN1_MAX)
    dropout1 = 0.3 if total_images < SMALL_DATASET_IMAGES else 0.5
    return HeadHyperparameters(
        hidden1=hidden1,
        hidden2=hidden1 // 2,
        dropout1=dropout1,
        dropout2=dropout1 / 2,
        learning_rate=0.001 if total_images < TINY_DATASET_IMAGES else 0.0001,
        validation_split=0.2 if min_per_class >= MIN_PER_CLASS_FOR_VALIDATION else 0.0,
    )


class ClassifierHeadModule(L.LightningModule):
    """Two-hidden-layer MLP over frozen embeddings.

    ``Linear(D, h1) -> ReLU -> Dropout -> Linear(h1, h2) -> ReLU -> Dropout
    -> Linear(h2, C)``. :meth:`forward` returns logits; :meth:`predict_proba`
    applies the softmax. Trained with categorical cross-entropy against
    one-hot targets and Adam.
    """

    def __init__(
        self,
        input_dim: int,
        num_classes: int,
        hidden1: int = HIDDEN1_MIN,
        hidden2: int = HIDDEN1_MIN // 2,
        dropout1: float = 0.3,
        dropout2: float = 0.15,
        learning_rate: float = 1e-3,
    ) -> None:
        super().__init__()
        self.save_hyperparameters()

        self.network = nn.Sequential(
            nn.Linear(input_dim, hidden1),
            nn.ReLU(),
            nn.Dropout(dropout1),
            nn.Linear(hidden1, hidden2),
            nn.ReLU(),
            nn.Dropout(dropout2),
            nn.Linear(hidden2, num_classes),
        )
        self.loss_fn = nn.CrossEntropyLoss()

        self.train_acc = MulticlassAccuracy(num_classes=num_classes, top_k=1, average="micro")
        self.val_acc = MulticlassAccuracy(num_classes=num_classes, top_k=1, average="micro")

    @classmethod
    def from_hyperparameters(
        cls, input_dim: int, num_classes: int, hparams: HeadHyperparameters
    ) -> ClassifierHeadModule:
        return cls(
            input_dim=input_dim,
            num_classes=num_classes,
            hidden1=hparams.hidden1,
            hidden2=hparams.hidden2,
            dropout1=hparams.dropout1,
            dropout2=hparams.dropout2,
            learning_rate=hparams.learning_rate,
        )

    def forward(self, features: torch.Tensor) -> torch.Tensor:
        return self.network(features)  # type: ignore[no-any-return]

    def predict_proba(self, features: torch.Tensor) -> torch.Tensor:
        """Softmax class probabilities for a ``(B, D)`` feature batch."""
        return torch.softmax(self(features), dim=-1)

    def _shared_step(self, batch: FeatureBatch) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        features, labels = batch["features"], batch["labels"]
        logits = self(features)
        # CrossEntropyLoss accepts class-probability targets directly.
        loss = self.loss_fn(logits, labels)
        return loss, logits, labels.argmax(dim=1)

    def training_step(self, batch: FeatureBatch, batch_idx: int) -> torch.Tensor:
        loss, logits, targets = self._shared_step(batch)
        batch_size = targets.shape[0]
        self.train_acc(logits, targets)
        self.log("train/loss", loss, on_step=False, on_epoch=True, prog_bar=True, batch_size=batch_size)
        self.log("train/acc", self.train_acc, on_step=False, on_epoch=True, prog_bar=True, batch_size=batch_size)
        return loss

    def validation_step(self, batch: FeatureBatch, batch_idx: int) -> None:
        loss, logits, targets = self._shared_step(batch)
        batch_size = targets.shape[0]
        self.val_acc(logits, targets)
        self.log("val/loss", loss, on_step=False, on_epoch=True, prog_bar=True, batch_size=batch_size)
        self.log("val/acc", self.val_acc, on_step=False, on_epoch=True, batch_size=batch_size)

    def configure_optimizers(self) -> torch.optim.Optimizer:
        return torch.optim.Adam(self.parameters(), lr=self.hparams["learning_rate"])


@dataclass(frozen=True)
class ClassifierHead:
    """A fitted head network plus the class names its outputs map to.

    Index ``i`` of the network output corresponds to ``class_names[i]``.
    Replaced wholesale by each training run; never updated in place.
    """

    module: ClassifierHeadModule
    class_names: tuple[str, ...]
    hyperparameters: HeadHyperparameters

    @property
    def num_classes(self) -> int:
        return len(self.class_names)

    @property
    def input_dim(self) -> int:
        return int(self.module.hparams["input_dim"])

    def summary(self) -> dict[str, Any]:
        """Scalar description of the head, for logging and display."""
        return {
            "classes": list(self.class_names),
            "input_dim": self.input_dim,
            "parameters": sum(p.numel() for p in self.module.parameters()),
            **self.hyperparameters.model_dump(),
        }
