"""Frozen pre-trained embedding network used as a feature extractor."""

from __future__ import annotations

import torch
import torchvision.models as tv_models
from loguru import logger
from torch import nn

from transfer_trainer.errors import InferenceError, ModelLoadError

# ImageNet normalization statistics expected by torchvision backbones.
# Applied inside the extractor so callers only ever see [0, 1] images.
IMAGENET_MEAN: list[float] = [0.485, 0.456, 0.406]
IMAGENET_STD: list[float] = [0.229, 0.224, 0.225]

SUPPORTED_BACKBONES: tuple[str, ...] = (
    "mobilenet_v3_small",
    "mobilenet_v3_large",
    "mobilenet_v2",
    "resnet18",
)


def build_backbone(name: str, pretrained: bool = True) -> nn.Module:
    """Build a torchvision classifier with its classification layer removed.

    Pass ``pretrained=False`` in tests to skip the weight download.

    Raises:
        ModelLoadError: If the backbone is unknown or its weights cannot be
            fetched.
    """
    if name not in SUPPORTED_BACKBONES:
        raise ModelLoadError(
            f"Unknown backbone '{name}'",
            hint=f"Choose one of: {', '.join(SUPPORTED_BACKBONES)}",
        )
    try:
        backbone = tv_models.get_model(name, weights="DEFAULT" if pretrained else None)
    except (OSError, RuntimeError, ValueError) as e:
        raise ModelLoadError(
            f"Failed to load backbone '{name}': {e}",
            hint="Check network access for the first weight download, or the torch hub cache.",
        ) from e

    # Drop the ImageNet classifier so the pooled embedding is returned.
    if hasattr(backbone, "fc"):
        backbone.fc = nn.Identity()
    else:
        backbone.classifier = nn.Identity()
    return backbone


class EmbeddingNetwork(nn.Module):
    """Channels-last ``[0, 1]`` images in, flat embeddings out.

    Permutes ``(B, H, W, 3)`` to ``(B, 3, H, W)``, applies ImageNet
    normalization, runs the backbone and flattens its output.
    """

    mean: torch.Tensor
    std: torch.Tensor

    def __init__(self, backbone: nn.Module) -> None:
        super().__init__()
        self.backbone = backbone
        self.register_buffer("mean", torch.tensor(IMAGENET_MEAN).view(1, 3, 1, 1))
        self.register_buffer("std", torch.tensor(IMAGENET_STD).view(1, 3, 1, 1))

    def forward(self, images: torch.Tensor) -> torch.Tensor:
        x = images.permute(0, 3, 1, 2)
        x = (x - self.mean) / self.std
        return self.backbone(x).flatten(1)


class FeatureExtractor:
    """Frozen embedding model mapping normalized images to feature vectors.

    Loaded once, warmed up with a dummy forward pass (which also discovers
    ``embedding_dim``), and never updated afterwards: the network stays in
    eval mode with gradients disabled.

    Args:
        backbone: Name of a torchvision backbone, or a pre-built ``nn.Module``
            taking ``(B, 3, H, W)`` input and returning ``(B, D)`` or
            ``(B, D, 1, 1)`` features.
        image_size: Side length of the square images passed to :meth:`embed`.
        pretrained: Download ImageNet weights for named backbones.
        device: Torch device the network runs on.
    """

    def __init__(
        self,
        backbone: str | nn.Module = "mobilenet_v3_small",
        image_size: int = 128,
        pretrained: bool = True,
        device: str | torch.device = "cpu",
    ) -> None:
        if image_size < 1:
            raise ValueError(f"image_size must be >= 1, got {image_size}")
        self.image_size = image_size
        self.device = torch.device(device)

        if isinstance(backbone, nn.Module):
            self.name = type(backbone).__name__
            module = backbone
        else:
            self.name = backbone
            module = build_backbone(backbone, pretrained=pretrained)

        self.network = EmbeddingNetwork(module).to(self.device)
        self.network.eval()
        self.network.requires_grad_(False)
        self.embedding_dim = self._warmup()

        logger.info(
            f"Loaded feature extractor '{self.name}' "
            f"(input {image_size}x{image_size}, embedding dim {self.embedding_dim})"
        )

    def _warmup(self) -> int:
        """Run one dummy forward pass and return the embedding dimension."""
        dummy = torch.zeros(1, self.image_size, self.image_size, 3, device=self.device)
        try:
            with torch.no_grad():
                out = self.network(dummy)
        except RuntimeError as e:
            raise ModelLoadError(
                f"Feature extractor '{self.name}' failed its warm-up pass: {e}"
            ) from e
        return int(out.shape[1])

    def _check_shape(self, images: torch.Tensor) -> None:
        expected = (self.image_size, self.image_size, 3)
        if not isinstance(images, torch.Tensor):
            raise InferenceError(f"Expected a torch.Tensor, got {type(images).__name__}")
        if images.ndim != 4 or tuple(images.shape[1:]) != expected:
            raise InferenceError(
                f"Expected images of shape (B, {expected[0]}, {expected[1]}, 3), "
                f"got {tuple(images.shape)}"
            )

    def embed_batch(self, images: torch.Tensor) -> torch.Tensor:
        """Embed a ``(B, size, size, 3)`` batch into a ``(B, D)`` CPU tensor."""
        self._check_shape(images)
        try:
            with torch.no_grad():
                features = self.network(images.to(self.device, torch.float32))
        except RuntimeError as e:
            raise InferenceError(f"Feature extraction failed: {e}") from e
        return features.cpu()

    def embed(self, image: torch.Tensor) -> torch.Tensor:
        """Embed a single ``(size, size, 3)`` image into a ``(D,)`` vector."""
        if not isinstance(image, torch.Tensor) or image.ndim != 3:
            shape = tuple(image.shape) if isinstance(image, torch.Tensor) else type(image).__name__
            raise InferenceError(
                f"Expected an image of shape ({self.image_size}, {self.image_size}, 3), "
                f"got {shape}"
            )
        return self.embed_batch(image.unsqueeze(0))[0]

    def __repr__(self) -> str:
        return (
            f"FeatureExtractor(name={self.name!r}, image_size={self.image_size}, "
            f"embedding_dim={self.embedding_dim})"
        )
