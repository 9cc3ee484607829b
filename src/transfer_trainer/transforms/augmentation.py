"""Random photometric and geometric perturbations for small training sets.

All transforms operate on normalized ``(H, W, 3)`` float tensors in ``[0, 1]``
and return a new tensor of the same shape. They draw from the ``random``
module, so ``random.seed`` makes a sequence of calls reproducible. These
transforms enlarge the training set only; they are never used at inference.
"""

from __future__ import annotations

import random
from typing import Any

import torch
from torchvision.transforms import v2


def _check_hwc(img: Any, name: str) -> torch.Tensor:
    if not isinstance(img, torch.Tensor):
        raise TypeError(f"{name} expects a torch.Tensor, got {type(img)}")
    if img.ndim != 3 or img.shape[-1] != 3:
        raise ValueError(f"{name} expects an (H, W, 3) tensor, got {tuple(img.shape)}")
    return img


def _check_range(low: float, high: float, label: str) -> None:
    if not 0.0 < low <= high:
        raise ValueError(
            f"{label}_min ({low}) and {label}_max ({high}) "
            f"must satisfy 0 < {label}_min <= {label}_max"
        )


class RandomHorizontalFlipHWC(v2.Transform):
    """Mirror the width axis of a channels-last image with probability ``p``.

    Args:
        p: Probability of applying the flip.
    """

    def __init__(self, p: float = 0.5) -> None:
        super().__init__()
        if not 0.0 <= p <= 1.0:
            raise ValueError(f"p must be in [0, 1], got {p}")
        self.p = p

    def forward(self, *inputs: Any) -> Any:
        img = _check_hwc(inputs[0], "RandomHorizontalFlipHWC")
        rest = inputs[1:]

        if random.random() >= self.p:  # noqa: S311
            return inputs if rest else img

        flipped = torch.flip(img, dims=[1])
        return (flipped, *rest) if rest else flipped


class RandomBrightness(v2.Transform):
    """Scale every pixel by a factor drawn uniformly from a range.

    Args:
        factor_min: Lower bound of the multiplier.
        factor_max: Upper bound of the multiplier.
    """

    def __init__(self, factor_min: float = 0.9, factor_max: float = 1.1) -> None:
        super().__init__()
        _check_range(factor_min, factor_max, "factor")
        self.factor_min = factor_min
        self.factor_max = factor_max

    def forward(self, *inputs: Any) -> Any:
        img = _check_hwc(inputs[0], "RandomBrightness")
        rest = inputs[1:]

        factor = random.uniform(self.factor_min, self.factor_max)  # noqa: S311
        brightened = img * factor
        return (brightened, *rest) if rest else brightened


class RandomContrast(v2.Transform):
    """Stretch pixels around the image mean: ``(x - mean) * factor + mean``.

    The mean is taken over every pixel and channel of the image.

    Args:
        factor_min: Lower bound of the contrast factor.
        factor_max: Upper bound of the contrast factor.
    """

    def __init__(self, factor_min: float = 0.8, factor_max: float = 1.2) -> None:
        super().__init__()
        _check_range(factor_min, factor_max, "factor")
        self.factor_min = factor_min
        self.factor_max = factor_max

    def forward(self, *inputs: Any) -> Any:
        img = _check_hwc(inputs[0], "RandomContrast")
        rest = inputs[1:]

        factor = random.uniform(self.factor_min, self.factor_max)  # noqa: S311
        mean = img.mean()
        contrasted = (img - mean) * factor + mean
        return (contrasted, *rest) if rest else contrasted


class ClipUnitRange(v2.Transform):
    """Clamp all values to ``[0, 1]``."""

    def forward(self, *inputs: Any) -> Any:
        img = _check_hwc(inputs[0], "ClipUnitRange")
        rest = inputs[1:]
        clipped = img.clamp(0.0, 1.0)
        return (clipped, *rest) if rest else clipped


class Augmenter:
    """Flip, brightness, contrast, clip — applied in that order.

    Each call draws fresh random parameters, so two calls on the same image
    usually differ.
    """

    def __init__(
        self,
        flip_p: float = 0.5,
        brightness: tuple[float, float] = (0.9, 1.1),
        contrast: tuple[float, float] = (0.8, 1.2),
    ) -> None:
        self.pipeline = v2.Compose(
            [
                RandomHorizontalFlipHWC(p=flip_p),
                RandomBrightness(*brightness),
                RandomContrast(*contrast),
                ClipUnitRange(),
            ]
        )

    def __call__(self, image: torch.Tensor) -> torch.Tensor:
        return self.augment(image)

    def augment(self, image: torch.Tensor) -> torch.Tensor:
        """Return a randomly perturbed copy of ``image``."""
        return self.pipeline(image)  # type: ignore[no-any-return]


_default_augmenter = Augmenter()


def augment(image: torch.Tensor) -> torch.Tensor:
    """Augment ``image`` with the default flip/brightness/contrast policy."""
    return _default_augmenter.augment(image)
