"""Report schemas."""

from segmentation_training.schemas.report import LabelReport

__all__ = ["LabelReport"]
