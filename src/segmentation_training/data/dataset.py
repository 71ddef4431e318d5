"""Image / label-image pair dataset for dense segmentation."""

from collections.abc import Sequence
from pathlib import Path

import numpy as np
import torch
from PIL import Image
from torch.utils.data import Dataset
from torchvision.transforms import v2
from torchvision.transforms.v2 import functional as F

from segmentation_training.errors import DecodeError, ShapeError
from segmentation_training.types import ManifestEntry

# Index band followed by alpha; the alpha band carries no class information.
_INDEX_ALPHA_MODES = ("LA", "PA")


def _decode_image(path: Path) -> Image.Image:
    try:
        with Image.open(path) as img:
            return img.convert("RGB")
    except (OSError, ValueError) as e:
        raise DecodeError(f"Cannot decode {path}: {e}") from e


def _decode_label(path: Path) -> torch.Tensor:
    """Decode a label image into a ``(1, H, W)`` int64 tensor of class indices.

    Single-band modes are read at their native depth: bilevel masks give 0/1,
    palette images their indices, 16-bit PNGs values up to 65535.  Colour
    label images are flattened to grayscale.
    """
    try:
        with Image.open(path) as img:
            if img.mode in _INDEX_ALPHA_MODES:
                img = img.getchannel(0)
            elif len(img.getbands()) > 1:
                img = img.convert("L")
            array = np.asarray(img)
    except (OSError, ValueError) as e:
        raise DecodeError(f"Cannot decode {path}: {e}") from e
    return torch.from_numpy(array.astype(np.int64)).unsqueeze(0)


def _header_size(path: Path) -> tuple[int, int]:
    try:
        with Image.open(path) as img:
            return img.height, img.width
    except (OSError, ValueError) as e:
        raise DecodeError(f"Cannot read {path}: {e}") from e


class DenseImagePairDataset(Dataset[tuple[torch.Tensor, torch.Tensor]]):
    """Decode manifest entries into ``(image, label)`` tensors.

    Images are decoded as RGB into float32 tensors of shape ``(3, H, W)``
    holding raw ``[0, 255]`` pixel values.  Label images are decoded as a
    single channel into int64 tensors of shape ``(1, H, W)`` holding the
    stored pixel values as class indices, at the file's native bit depth.

    Args:
        entries: Image/label path pairs, typically from ``parse_manifest``.
        resize: Optional ``(height, width)``. Images are resized bilinearly,
            labels with nearest-neighbour so class indices are never blended.
    """

    def __init__(
        self,
        entries: Sequence[ManifestEntry],
        resize: tuple[int, int] | None = None,
    ) -> None:
        self.entries = list(entries)
        self.resize = resize

    def __len__(self) -> int:
        return len(self.entries)

    def header_sizes(self, idx: int) -> tuple[tuple[int, int], tuple[int, int]]:
        """``(height, width)`` of the image and the label image of entry ``idx``.

        Only the file headers are read.

        Raises:
            DecodeError: If either file cannot be opened.
        """
        entry = self.entries[idx]
        return _header_size(entry.image), _header_size(entry.label)

    def native_size(self, idx: int) -> tuple[int, int]:
        """``(height, width)`` of entry ``idx`` read from the file headers only.

        Raises:
            DecodeError: If either file cannot be opened.
            ShapeError: If image and label image differ in size.
        """
        image_size, label_size = self.header_sizes(idx)
        if image_size != label_size:
            entry = self.entries[idx]
            raise ShapeError(
                f"Image {entry.image} is {image_size[0]}x{image_size[1]} but label "
                f"{entry.label} is {label_size[0]}x{label_size[1]}"
            )
        return image_size

    def __getitem__(self, idx: int) -> tuple[torch.Tensor, torch.Tensor]:
        entry = self.entries[idx]
        image = F.pil_to_tensor(_decode_image(entry.image))
        label = _decode_label(entry.label)

        if self.resize is not None:
            size = list(self.resize)
            image = F.resize(
                image, size, interpolation=v2.InterpolationMode.BILINEAR, antialias=False
            )
            label = F.resize(label, size, interpolation=v2.InterpolationMode.NEAREST)
        elif image.shape[-2:] != label.shape[-2:]:
            raise ShapeError(
                f"Image {entry.image} has size {tuple(image.shape[-2:])} but label "
                f"{entry.label} has size {tuple(label.shape[-2:])}"
            )

        return image.to(torch.float32), label.to(torch.long)
