"""Training callbacks for transfer_trainer."""

from transfer_trainer.callbacks.model_info import HeadInfoCallback
from transfer_trainer.callbacks.progress import ProgressCallback

__all__ = [
    "HeadInfoCallback",
    "ProgressCallback",
]
