"""Records exchanged between the engine and its callers."""

from transfer_trainer.schemas.prediction import PredictionResult
from transfer_trainer.schemas.training import TrainingProgress, TrainingSnapshot

__all__ = [
    "PredictionResult",
    "TrainingProgress",
    "TrainingSnapshot",
]
