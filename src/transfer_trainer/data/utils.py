"""Utility functions for labeled image collections."""

from collections.abc import Mapping, Sequence
from pathlib import Path

from loguru import logger

from transfer_trainer.errors import InvalidInputError
from transfer_trainer.types import LabeledImageSet, RawImage

IMAGE_EXTENSIONS: tuple[str, ...] = (".jpg", ".jpeg", ".png", ".bmp", ".gif", ".webp")


def get_files(root: Path, extensions: tuple[str, ...]) -> list[Path]:
    """Recursively find files matching extensions under root.

    Args:
        root: Directory to search recursively.
        extensions: Tuple of lowercase extensions including dot
            (e.g., (".jpg", ".png")).

    Returns:
        Sorted list of matching file paths.
    """
    files = []
    for p in root.rglob("*"):
        if p.is_file() and p.suffix.lower() in extensions:
            files.append(p)
    return sorted(files)


def as_class_list(labeled_images: LabeledImageSet) -> list[tuple[str, list[RawImage]]]:
    """Normalize a mapping or pair sequence into ordered ``(name, images)`` pairs."""
    items: Sequence[tuple[str, Sequence[RawImage]]]
    if isinstance(labeled_images, Mapping):
        items = list(labeled_images.items())
    else:
        items = labeled_images
    return [(name, list(images)) for name, images in items]


def class_counts(labeled_images: LabeledImageSet) -> tuple[list[str], list[int]]:
    """Class names and per-class image counts, in input order."""
    classes = as_class_list(labeled_images)
    return [name for name, _ in classes], [len(images) for _, images in classes]


def validate_labeled_images(
    labeled_images: LabeledImageSet,
) -> list[tuple[str, list[RawImage]]]:
    """Check training preconditions before any feature extraction.

    Raises:
        InvalidInputError: With fewer than 2 classes, duplicate class names,
            or a class without images.
    """
    classes = as_class_list(labeled_images)
    if len(classes) < 2:
        raise InvalidInputError(
            f"Need at least 2 classes for training, got {len(classes)}",
            hint="Add another class with a few example images.",
        )
    names = [name for name, _ in classes]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise InvalidInputError(f"Duplicate class names: {duplicates}")
    for name, images in classes:
        if not images:
            raise InvalidInputError(
                f"No images provided for class '{name}'",
                hint="Every class needs at least one image.",
            )
    return classes


def load_image_folder(
    root: Path, extensions: tuple[str, ...] = IMAGE_EXTENSIONS
) -> list[tuple[str, list[RawImage]]]:
    """Read ``root/<class_name>/**/<image>`` into a labeled image set.

    Classes are the immediate subdirectories of ``root``, sorted by name.
    Images are returned as paths and decoded lazily by the preprocessor.
    """
    if not root.is_dir():
        raise InvalidInputError(f"Image folder not found: {root}")
    classes: list[tuple[str, list[RawImage]]] = []
    for class_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        images: list[RawImage] = list(get_files(class_dir, extensions))
        classes.append((class_dir.name, images))
    logger.info(
        f"Loaded {sum(len(images) for _, images in classes)} images "
        f"in {len(classes)} classes from {root}"
    )
    return classes
