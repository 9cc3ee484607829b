"""Tests for preprocessing and augmentation transforms."""

from __future__ import annotations

import io
import random
from pathlib import Path

import numpy as np
import pytest
import torch
from conftest import make_corrupt_png, make_png
from PIL import Image

from transfer_trainer.errors import DecodeError
from transfer_trainer.transforms import (
    Augmenter,
    CenterSquareResize,
    ClipUnitRange,
    RandomBrightness,
    RandomContrast,
    RandomHorizontalFlipHWC,
    augment,
    decode_image,
    normalize,
)


@pytest.fixture()
def hwc_image() -> torch.Tensor:
    """16x16 normalized image with a left/right gradient."""
    torch.manual_seed(0)
    img = torch.rand(16, 16, 3) * 0.6 + 0.2
    img[:, :8, :] = 0.1
    return img


# --- Preprocessing ---


class TestDecodeImage:
    def test_decodes_png_bytes(self) -> None:
        img = decode_image(make_png(size=(20, 10)))
        assert img.mode == "RGB"
        assert img.size == (20, 10)

    def test_decodes_path(self, tmp_path: Path) -> None:
        path = tmp_path / "img.png"
        path.write_bytes(make_png())
        assert decode_image(path).mode == "RGB"

    def test_converts_pil_to_rgb(self) -> None:
        img = Image.new("L", (8, 8), color=128)
        assert decode_image(img).mode == "RGB"

    def test_garbage_bytes_raise(self) -> None:
        with pytest.raises(DecodeError, match="Could not decode"):
            decode_image(b"definitely not an image")

    def test_corrupt_png_chunk_raises(self) -> None:
        with pytest.raises(DecodeError, match="Could not decode"):
            decode_image(make_corrupt_png())

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(DecodeError):
            decode_image(tmp_path / "missing.png")

    def test_unsupported_type_raises(self) -> None:
        with pytest.raises(DecodeError, match="Unsupported"):
            decode_image(12345)  # type: ignore[arg-type]


class TestCenterSquareResize:
    def test_output_size(self) -> None:
        img = Image.new("RGB", (60, 30))
        assert CenterSquareResize(16)(img).size == (16, 16)

    def test_crops_centre_of_wide_image(self) -> None:
        # Left and right thirds red, centre square green.
        img = Image.new("RGB", (90, 30), color=(255, 0, 0))
        img.paste((0, 255, 0), (30, 0, 60, 30))
        out = np.asarray(CenterSquareResize(10)(img))
        assert (out[..., 1] > 200).all()
        assert (out[..., 0] < 50).all()

    def test_crops_centre_of_tall_image(self) -> None:
        img = Image.new("RGB", (20, 60), color=(0, 0, 255))
        img.paste((255, 255, 255), (0, 20, 20, 40))
        out = np.asarray(CenterSquareResize(8)(img))
        assert (out > 200).all()

    def test_rejects_non_pil(self) -> None:
        with pytest.raises(TypeError, match="PIL Image"):
            CenterSquareResize(8)(torch.zeros(3, 8, 8))

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError, match="size"):
            CenterSquareResize(0)


class TestNormalize:
    @pytest.mark.parametrize("size", [(48, 40), (40, 48), (33, 33)])
    def test_shape_and_range(self, size: tuple[int, int]) -> None:
        out = normalize(make_png(size=size), 24)
        assert out.shape == (24, 24, 3)
        assert out.dtype == torch.float32
        assert out.min() >= 0.0
        assert out.max() <= 1.0

    def test_scales_to_unit_range(self) -> None:
        out = normalize(make_png((255, 0, 51), size=(10, 10)), 10)
        assert torch.allclose(out[0, 0], torch.tensor([1.0, 0.0, 0.2]), atol=1e-6)

    def test_deterministic(self) -> None:
        data = make_png((10, 120, 250), size=(64, 50))
        assert torch.equal(normalize(data, 16), normalize(data, 16))

    def test_jpeg_input(self) -> None:
        buf = io.BytesIO()
        Image.new("RGB", (30, 40), color=(90, 90, 90)).save(buf, format="JPEG")
        out = normalize(buf.getvalue(), 12)
        assert out.shape == (12, 12, 3)

    def test_undecodable_raises(self) -> None:
        with pytest.raises(DecodeError):
            normalize(b"\x89PNG broken", 16)


# --- Augmentation ---


class TestRandomHorizontalFlipHWC:
    def test_p_one_flips_width_axis(self, hwc_image: torch.Tensor) -> None:
        out = RandomHorizontalFlipHWC(p=1.0)(hwc_image)
        assert torch.equal(out, torch.flip(hwc_image, dims=[1]))

    def test_p_zero_skips(self, hwc_image: torch.Tensor) -> None:
        assert RandomHorizontalFlipHWC(p=0.0)(hwc_image) is hwc_image

    def test_invalid_p(self) -> None:
        with pytest.raises(ValueError, match="p must be"):
            RandomHorizontalFlipHWC(p=1.5)

    def test_rejects_channels_first(self) -> None:
        with pytest.raises(ValueError, match="H, W, 3"):
            RandomHorizontalFlipHWC(p=1.0)(torch.zeros(3, 8, 8))

    def test_rejects_non_tensor(self) -> None:
        with pytest.raises(TypeError, match="torch.Tensor"):
            RandomHorizontalFlipHWC(p=1.0)("not_a_tensor")


class TestRandomBrightness:
    def test_fixed_factor(self, hwc_image: torch.Tensor) -> None:
        out = RandomBrightness(1.1, 1.1)(hwc_image)
        assert torch.allclose(out, hwc_image * 1.1)

    def test_factor_within_range(self, hwc_image: torch.Tensor) -> None:
        for _ in range(20):
            out = RandomBrightness(0.9, 1.1)(hwc_image)
            ratio = (out / hwc_image).mean().item()
            assert 0.9 - 1e-5 <= ratio <= 1.1 + 1e-5

    def test_invalid_range(self) -> None:
        with pytest.raises(ValueError, match="factor_min"):
            RandomBrightness(1.2, 0.8)


class TestRandomContrast:
    def test_preserves_mean(self, hwc_image: torch.Tensor) -> None:
        out = RandomContrast(0.8, 1.2)(hwc_image)
        assert out.mean().item() == pytest.approx(hwc_image.mean().item(), abs=1e-5)

    def test_fixed_factor(self, hwc_image: torch.Tensor) -> None:
        mean = hwc_image.mean()
        out = RandomContrast(1.2, 1.2)(hwc_image)
        assert torch.allclose(out, (hwc_image - mean) * 1.2 + mean)

    def test_invalid_range(self) -> None:
        with pytest.raises(ValueError, match="factor_min"):
            RandomContrast(0.0, 1.0)


class TestClipUnitRange:
    def test_clamps(self) -> None:
        img = torch.tensor([[[-0.5, 0.5, 1.5]]])
        out = ClipUnitRange()(img)
        assert out.tolist() == [[[0.0, 0.5, 1.0]]]


class TestAugmenter:
    def test_shape_and_range_preserved(self, hwc_image: torch.Tensor) -> None:
        for _ in range(25):
            out = augment(hwc_image)
            assert out.shape == hwc_image.shape
            assert out.min() >= 0.0
            assert out.max() <= 1.0

    def test_bright_image_stays_clipped(self) -> None:
        img = torch.ones(8, 8, 3)
        out = Augmenter()(img)
        assert out.max() <= 1.0

    def test_does_not_mutate_input(self, hwc_image: torch.Tensor) -> None:
        original = hwc_image.clone()
        Augmenter(flip_p=1.0)(hwc_image)
        assert torch.equal(hwc_image, original)

    def test_content_varies(self, hwc_image: torch.Tensor) -> None:
        outputs = [augment(hwc_image) for _ in range(5)]
        assert any(not torch.equal(outputs[0], o) for o in outputs[1:])

    def test_deterministic_with_seed(self, hwc_image: torch.Tensor) -> None:
        augmenter = Augmenter()
        random.seed(42)
        r1 = augmenter(hwc_image)
        random.seed(42)
        r2 = augmenter(hwc_image)
        assert torch.equal(r1, r2)
