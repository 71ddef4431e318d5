"""Type aliases and TypedDicts for segmentation_training inter-module contracts."""

from pathlib import Path
from typing import NamedTuple, TypedDict

import torch


class SegmentationBatch(TypedDict):
    """A single batch from DenseImageDataLayer.

    images: Float tensor of shape (B, 3, H, W).
    labels: Long tensor of shape (B, 1, H, W), integer class indices.
    """

    images: torch.Tensor
    labels: torch.Tensor


class BlobShape(NamedTuple):
    """Runtime 4-D shape of a layer output."""

    num: int
    channels: int
    height: int
    width: int


class ManifestEntry(NamedTuple):
    """One image / label-image pair from a manifest file."""

    image: Path
    label: Path
