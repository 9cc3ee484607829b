"""On-device transfer-learning classifier training engine."""

from transfer_trainer.config import EngineConfig
from transfer_trainer.engine import TrainingEngine
from transfer_trainer.errors import (
    AlreadyTrainingError,
    DecodeError,
    EmptyDatasetError,
    InferenceError,
    InvalidInputError,
    ModelLoadError,
    NotTrainedError,
    TransferTrainerError,
)
from transfer_trainer.schemas import (
    PredictionResult,
    TrainingProgress,
    TrainingSnapshot,
)
from transfer_trainer.state import TrainingState, TrainingStateTracker

__version__ = "0.0.1"

__all__ = [
    "AlreadyTrainingError",
    "DecodeError",
    "EmptyDatasetError",
    "EngineConfig",
    "InferenceError",
    "InvalidInputError",
    "ModelLoadError",
    "NotTrainedError",
    "PredictionResult",
    "TrainingEngine",
    "TrainingProgress",
    "TrainingSnapshot",
    "TrainingState",
    "TrainingStateTracker",
    "TransferTrainerError",
    "__version__",
]
