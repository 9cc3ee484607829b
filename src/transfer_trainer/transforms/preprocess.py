"""Decode raw images and produce fixed-size normalized pixel tensors."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any

import numpy as np
import torch
from PIL import Image
from torchvision.transforms import v2

from transfer_trainer.errors import DecodeError
from transfer_trainer.types import RawImage


def decode_image(image: RawImage) -> Image.Image:
    """Decode bytes, a file path, or a PIL image into an RGB PIL image.

    Raises:
        DecodeError: If the input cannot be decoded as an image.
    """
    if isinstance(image, Image.Image):
        return image.convert("RGB")
    if isinstance(image, (bytes, bytearray, memoryview)):
        source: Any = io.BytesIO(bytes(image))
    elif isinstance(image, (str, Path)):
        source = Path(image)
    else:
        raise DecodeError(f"Unsupported image handle type: {type(image).__name__}")

    try:
        with Image.open(source) as img:
            img.load()
            return img.convert("RGB")
    # Pillow reports corrupt PNG chunks as SyntaxError.
    except (
        Image.UnidentifiedImageError,
        OSError,
        SyntaxError,
        ValueError,
        Image.DecompressionBombError,
    ) as e:
        raise DecodeError(f"Could not decode image: {e}") from e


class CenterSquareResize(v2.Transform):
    """Crop the centred square of a PIL image and resize it to ``size``.

    The square side is ``min(width, height)``; offsets are
    ``((width - s) // 2, (height - s) // 2)``.

    Args:
        size: Output side length in pixels.
    """

    def __init__(self, size: int) -> None:
        super().__init__()
        if size < 1:
            raise ValueError(f"size must be >= 1, got {size}")
        self.size = size

    def forward(self, *inputs: Any) -> Any:
        img = inputs[0]
        rest = inputs[1:]

        if not isinstance(img, Image.Image):
            raise TypeError(f"CenterSquareResize expects a PIL Image, got {type(img)}")

        width, height = img.size
        side = min(width, height)
        if side == 0:
            raise DecodeError(f"Image has an empty dimension: {width}x{height}")
        left = (width - side) // 2
        top = (height - side) // 2
        square = img.crop((left, top, left + side, top + side))
        resized = square.resize((self.size, self.size), Image.Resampling.BILINEAR)

        return (resized, *rest) if rest else resized


def _to_unit_tensor(img: Image.Image) -> torch.Tensor:
    """HWC float32 tensor scaled from ``[0, 255]`` to ``[0, 1]``."""
    pixels = np.asarray(img, dtype=np.float32) / 255.0
    return torch.from_numpy(pixels)


def normalize(image: RawImage, size: int) -> torch.Tensor:
    """Decode ``image`` and return a ``(size, size, 3)`` tensor in ``[0, 1]``.

    Deterministic for identical input bytes and ``size``.

    Raises:
        DecodeError: If the image cannot be decoded.
    """
    rgb = decode_image(image)
    square = CenterSquareResize(size)(rgb)
    return _to_unit_tensor(square)
