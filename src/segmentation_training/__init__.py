"""Dense image/label data loading and softmax-with-loss for segmentation training."""

__version__ = "0.0.1"
