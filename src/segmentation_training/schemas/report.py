"""Label distribution report produced by the ``inspect_data`` entrypoint."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LabelReport(BaseModel):
    """Pixel label statistics gathered over a number of loader batches.

    ``suggested_weights`` are median-frequency balanced weights, ready to be
    passed as ``class_weighting``.  ``chance_loss`` is the mean loss of an
    all-zero score map under the configured loss, i.e. the value training
    should start from.
    """

    num_batches: int
    num_classes: int
    counts: list[int]
    ignored: int = 0
    suggested_weights: list[float]
    chance_loss: float
    batch_shapes: list[tuple[int, int, int, int]] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.counts)
