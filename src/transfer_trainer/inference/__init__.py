"""Classification inference with a trained head."""

from transfer_trainer.inference.predictor import Predictor, predict

__all__ = [
    "Predictor",
    "predict",
]
