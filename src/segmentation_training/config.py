"""Pydantic frozen configuration models for segmentation_training."""

from pydantic import BaseModel, Field, model_validator


class DenseImageDataConfig(BaseModel, frozen=True):
    """Configuration for DenseImageDataLayer.

    Validated once at construction and immutable afterwards.

    ``new_height``/``new_width`` of 0 keep the native decoded size of every
    image pair; both must be set together.
    """

    source: str
    batch_size: int = Field(default=1, ge=1)
    shuffle: bool = False
    new_height: int = Field(default=0, ge=0)
    new_width: int = Field(default=0, ge=0)
    root_folder: str = ""
    seed: int | None = None
    rand_skip: int = Field(default=0, ge=0)
    mirror: bool = False
    scale: float = 1.0
    mean_values: list[float] | None = None

    @model_validator(mode="after")
    def _resize_needs_both_sides(self) -> "DenseImageDataConfig":
        if (self.new_height > 0) != (self.new_width > 0):
            raise ValueError(
                "new_height and new_width must both be set or both be 0, got "
                f"{self.new_height}x{self.new_width}"
            )
        return self

    @model_validator(mode="after")
    def _mean_values_per_channel(self) -> "DenseImageDataConfig":
        if self.mean_values is not None and len(self.mean_values) not in (1, 3):
            raise ValueError(
                f"mean_values takes 1 or 3 values, got {len(self.mean_values)}"
            )
        return self

    @property
    def resize(self) -> tuple[int, int] | None:
        """Fixed output ``(height, width)``, or None for native sizes."""
        if self.new_height > 0:
            return self.new_height, self.new_width
        return None


class LossConfig(BaseModel, frozen=True):
    """Options for SoftmaxWithLoss.

    ``class_weighting`` must hold one weight per class; its length is checked
    against the score tensor in ``SoftmaxWithLoss.setup``.
    """

    ignore_label: int | None = None
    normalize: bool = True
    class_weighting: list[float] | None = None
    weight_by_label_freqs: bool = False
    loss_weight: float = 1.0
