"""Shared pytest fixtures for transfer_trainer tests."""

import io
import struct
import zlib

import pytest
import torch
from PIL import Image
from torch import nn

from transfer_trainer.config import EngineConfig
from transfer_trainer.engine import TrainingEngine
from transfer_trainer.models.extractor import FeatureExtractor

IMAGE_SIZE = 32
EMBEDDING_DIM = 8


def make_png(
    color: tuple[int, int, int] = (200, 40, 40),
    size: tuple[int, int] = (48, 40),
) -> bytes:
    """Encode a solid-color RGB image as PNG bytes."""
    buf = io.BytesIO()
    Image.new("RGB", size, color=color).save(buf, format="PNG")
    return buf.getvalue()


def _png_chunk(chunk_type: bytes, data: bytes) -> bytes:
    crc = zlib.crc32(chunk_type + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + chunk_type + data + struct.pack(">I", crc)


def make_corrupt_png() -> bytes:
    """PNG whose IDAT is split in two, the second half under an invalid chunk type.

    The header parses, so Pillow only fails while loading the pixel data.
    """
    image = Image.new("RGB", (64, 64))
    image.putdata([((i * 7) % 256, (i * 13) % 256, (i * 29) % 256) for i in range(64 * 64)])
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    raw = buf.getvalue()

    out = [raw[:8]]
    pos = 8
    while pos < len(raw):
        (length,) = struct.unpack(">I", raw[pos : pos + 4])
        chunk_type = raw[pos + 4 : pos + 8]
        data = raw[pos + 8 : pos + 8 + length]
        pos += 12 + length
        if chunk_type == b"IDAT":
            half = len(data) // 2
            out.append(_png_chunk(b"IDAT", data[:half]))
            out.append(_png_chunk(b"\x00\x01\x02\x03", data[half:]))
        else:
            out.append(_png_chunk(chunk_type, data))
    return b"".join(out)


def make_labeled_images(
    counts: dict[str, int],
) -> list[tuple[str, list[bytes]]]:
    """Labeled image set with distinct colors per class and per image."""
    palette = [(220, 30, 30), (30, 220, 30), (30, 30, 220), (220, 220, 30)]
    labeled: list[tuple[str, list[bytes]]] = []
    for class_idx, (name, n) in enumerate(counts.items()):
        r, g, b = palette[class_idx % len(palette)]
        images = [make_png((r, g, (b + 5 * i) % 256)) for i in range(n)]
        labeled.append((name, images))
    return labeled


def tiny_backbone() -> nn.Module:
    """Small conv backbone: (B, 3, H, W) -> (B, 8, 1, 1)."""
    torch.manual_seed(0)
    return nn.Sequential(
        nn.Conv2d(3, EMBEDDING_DIM, kernel_size=3, stride=2, padding=1),
        nn.AdaptiveAvgPool2d(1),
    )


@pytest.fixture()
def extractor() -> FeatureExtractor:
    """Feature extractor over a tiny random backbone (no weight download)."""
    return FeatureExtractor(tiny_backbone(), image_size=IMAGE_SIZE)


@pytest.fixture()
def engine_config() -> EngineConfig:
    return EngineConfig(image_size=IMAGE_SIZE, pretrained=False, num_epochs=3, batch_size=8)


@pytest.fixture()
def engine(engine_config: EngineConfig, extractor: FeatureExtractor) -> TrainingEngine:
    return TrainingEngine(engine_config, project_id="project-1", extractor=extractor)


@pytest.fixture()
def red_png() -> bytes:
    return make_png((200, 40, 40))
