"""Shared pytest fixtures for segmentation_training tests."""

from pathlib import Path

import numpy as np
import pytest
import torch
from PIL import Image


def write_pair(
    directory: Path,
    name: str,
    label: np.ndarray,
    image_format: str = "jpg",
) -> tuple[Path, Path]:
    """Write an RGB image and a lossless label PNG sharing ``label``'s size.

    Image colour follows the label so image and label stay visibly aligned.
    """
    height, width = label.shape
    rgb = np.zeros((height, width, 3), dtype=np.uint8)
    rgb[..., 0] = label.astype(np.uint8) * 50
    rgb[..., 1] = 60
    rgb[..., 2] = 200
    image_path = directory / f"{name}.{image_format}"
    label_path = directory / f"{name}_label.png"
    Image.fromarray(rgb).save(image_path)
    Image.fromarray(label.astype(np.uint8)).save(label_path)
    return image_path, label_path


def write_manifest(path: Path, pairs: list[tuple[Path, Path]], one_line: bool = False) -> Path:
    sep = " " if one_line else "\n"
    path.write_text(sep.join(f"{img} {lbl}" for img, lbl in pairs) + sep)
    return path


@pytest.fixture()
def cat_label() -> np.ndarray:
    """360x480 label map with classes 0, 1 and 2 in uneven proportions."""
    label = np.zeros((360, 480), dtype=np.uint8)
    label[100:250, :] = 1
    label[250:, :] = 2
    label[:, :60] = 2
    return label


@pytest.fixture()
def cat_manifest(tmp_path: Path, cat_label: np.ndarray) -> Path:
    """Five copies of the same 360x480 pair, written on a single line."""
    pair = write_pair(tmp_path, "cat", cat_label)
    return write_manifest(tmp_path / "cat.txt", [pair] * 5, one_line=True)


@pytest.fixture()
def reshape_manifest(tmp_path: Path, cat_label: np.ndarray) -> Path:
    """Two pairs of distinct native sizes: 360x480 then 323x481."""
    fish_label = np.zeros((323, 481), dtype=np.uint8)
    fish_label[150:, 200:] = 1
    pairs = [
        write_pair(tmp_path, "cat", cat_label),
        write_pair(tmp_path, "fish-bike", fish_label),
    ]
    return write_manifest(tmp_path / "reshape.txt", pairs)


@pytest.fixture()
def indexed_manifest(tmp_path: Path) -> Path:
    """Five small pairs; every pixel of pair ``i`` carries label ``i``."""
    pairs = [
        write_pair(tmp_path, f"img_{i}", np.full((8, 6), i, dtype=np.uint8), "png")
        for i in range(5)
    ]
    return write_manifest(tmp_path / "indexed.txt", pairs)


@pytest.fixture()
def score_blobs() -> tuple[torch.Tensor, torch.Tensor]:
    """Gaussian (std 10) scores of shape (10, 5, 2, 3) and labels in [0, 5)."""
    generator = torch.Generator().manual_seed(1701)
    scores = torch.randn(10, 5, 2, 3, generator=generator, dtype=torch.float64) * 10
    labels = torch.randint(0, 5, (10, 1, 2, 3), generator=generator).to(torch.float64)
    return scores, labels
