"""Data pipeline for segmentation_training."""

from segmentation_training.data.dataset import DenseImagePairDataset
from segmentation_training.data.dense_image_data import DenseImageDataLayer
from segmentation_training.data.manifest import parse_manifest
from segmentation_training.data.statistics import (
    label_counts,
    median_frequency_weights,
)

__all__ = [
    "DenseImageDataLayer",
    "DenseImagePairDataset",
    "label_counts",
    "median_frequency_weights",
    "parse_manifest",
]
