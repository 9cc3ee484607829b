"""Type aliases and TypedDicts for transfer_trainer inter-module contracts."""

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TypedDict, Union

import torch
from PIL import Image

# Encoded image bytes, a path to an image file, or an already-open PIL image.
RawImage = Union[bytes, Path, Image.Image]

# Ordered (class name, images) pairs. A mapping is accepted and read in
# insertion order.
LabeledImageSet = Union[
    Sequence[tuple[str, Sequence[RawImage]]],
    Mapping[str, Sequence[RawImage]],
]


class FeatureBatch(TypedDict):
    """A single batch from a feature DataLoader.

    features: Float tensor of shape (B, D), frozen-extractor embeddings.
    labels: Float tensor of shape (B, C), one-hot class targets.
    """

    features: torch.Tensor
    labels: torch.Tensor
