"""Error hierarchy for the transfer training engine.

Per-image ``DecodeError`` is recovered inside the dataset builder; every other
error aborts the ``train()`` / ``predict()`` call that raised it.
"""

from __future__ import annotations

import textwrap


class TransferTrainerError(RuntimeError):
    """Base error for all engine failures."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        final_message = message
        if hint:
            final_message = f"{message}\n{self._format_hint(hint)}"
        super().__init__(final_message)
        self.message = message
        self.hint = hint

    @staticmethod
    def _format_hint(hint: str) -> str:
        return textwrap.indent(f"Hint: {hint}", prefix="  ")


class DecodeError(TransferTrainerError):
    """Raised when image bytes cannot be decoded to pixels."""


class ModelLoadError(TransferTrainerError):
    """Raised when the frozen feature extractor cannot be fetched or built."""


class EmptyDatasetError(TransferTrainerError):
    """Raised when no usable features remain after skipping bad images."""


class InvalidInputError(TransferTrainerError):
    """Raised when the labeled images fail training preconditions."""


class AlreadyTrainingError(TransferTrainerError):
    """Raised when ``train()`` is called while a run is in progress."""


class NotTrainedError(TransferTrainerError):
    """Raised when inference is requested without a trained head."""


class InferenceError(TransferTrainerError):
    """Raised when a malformed tensor reaches the extractor or the head."""
