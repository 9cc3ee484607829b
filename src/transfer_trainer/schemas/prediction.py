"""Prediction result schema."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PredictionResult(BaseModel, frozen=True):
    """Arg-max class of a prediction and its softmax probability."""

    class_name: str
    probability: float = Field(ge=0.0, le=1.0)
