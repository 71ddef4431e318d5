"""Shared utilities for segmentation_training."""
