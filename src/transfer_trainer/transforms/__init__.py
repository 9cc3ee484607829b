"""Image preprocessing and augmentation for feature extraction.

Preprocessing turns a raw image into a ``(size, size, 3)`` float tensor in
``[0, 1]``; augmentation perturbs such tensors to enlarge small training sets.
The augmentation transforms are ``torchvision.transforms.v2`` subclasses so
they compose with ``v2.Compose``.
"""

from transfer_trainer.transforms.augmentation import (
    Augmenter,
    ClipUnitRange,
    RandomBrightness,
    RandomContrast,
    RandomHorizontalFlipHWC,
    augment,
)
from transfer_trainer.transforms.preprocess import (
    CenterSquareResize,
    decode_image,
    normalize,
)

__all__ = [
    "Augmenter",
    "CenterSquareResize",
    "ClipUnitRange",
    "RandomBrightness",
    "RandomContrast",
    "RandomHorizontalFlipHWC",
    "augment",
    "decode_image",
    "normalize",
]
