"""Run a raw image through the preprocessor, extractor and trained head."""

from __future__ import annotations

import torch

from transfer_trainer.errors import InferenceError, NotTrainedError
from transfer_trainer.models.extractor import FeatureExtractor
from transfer_trainer.models.head import ClassifierHead
from transfer_trainer.schemas.prediction import PredictionResult
from transfer_trainer.transforms.preprocess import normalize
from transfer_trainer.types import RawImage


def _probabilities(
    head: ClassifierHead, extractor: FeatureExtractor, image: RawImage
) -> torch.Tensor:
    """Softmax vector of length C for a single image."""
    normalized = normalize(image, extractor.image_size)
    features = extractor.embed(normalized)
    if features.shape[0] != head.input_dim:
        raise InferenceError(
            f"Embedding has {features.shape[0]} values but the head expects {head.input_dim}"
        )
    with torch.inference_mode():
        probs = head.module.predict_proba(features.unsqueeze(0))[0]
    if not torch.isfinite(probs).all():
        raise InferenceError(
            "Classifier head produced non-finite probabilities",
            hint="The head may have diverged during training; retrain it.",
        )
    return probs


def _argmax_first(probs: torch.Tensor) -> int:
    """Index of the first maximum value."""
    max_value = probs.max()
    return int(torch.nonzero(probs == max_value)[0, 0])


def predict(
    head: ClassifierHead | None, extractor: FeatureExtractor, image: RawImage
) -> PredictionResult:
    """Top class for ``image`` and its softmax probability.

    Ties resolve to the lowest class index.

    Raises:
        NotTrainedError: If ``head`` is ``None``.
        DecodeError: If the image cannot be decoded.
        InferenceError: If the embedding does not match the head's input.
    """
    if head is None:
        raise NotTrainedError(
            "No trained classifier head",
            hint="Train the engine before requesting predictions.",
        )
    probs = _probabilities(head, extractor, image)
    idx = _argmax_first(probs)
    return PredictionResult(
        class_name=head.class_names[idx],
        probability=min(1.0, max(0.0, float(probs[idx]))),
    )


class Predictor:
    """Bind a trained head and a feature extractor for repeated inference.

    Args:
        head: Trained classifier head.
        extractor: The extractor the head's features came from.
    """

    def __init__(self, head: ClassifierHead, extractor: FeatureExtractor) -> None:
        self.head = head
        self.extractor = extractor

    def predict(self, image: RawImage) -> PredictionResult:
        """Single image inference."""
        return predict(self.head, self.extractor, image)

    def predict_topk(self, image: RawImage, top_k: int = 3) -> list[PredictionResult]:
        """The ``top_k`` most probable classes, sorted by probability descending."""
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")
        probs = _probabilities(self.head, self.extractor, image)
        # Stable sort keeps lower indices first among equal probabilities.
        order = torch.sort(probs, descending=True, stable=True).indices[:top_k]
        return [
            PredictionResult(
                class_name=self.head.class_names[int(idx)],
                probability=min(1.0, max(0.0, float(probs[idx]))),
            )
            for idx in order
        ]
