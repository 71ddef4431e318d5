"""Label statistics for picking ``class_weighting`` values."""

from __future__ import annotations

import torch


def label_counts(
    labels: torch.Tensor,
    num_classes: int,
    ignore_label: int | None = None,
) -> torch.Tensor:
    """Count pixels per class.

    Args:
        labels: Integer label tensor of any shape.
        num_classes: Length of the returned count vector.
        ignore_label: Pixels with this value are not counted.

    Returns:
        int64 tensor of shape ``(num_classes,)``.

    Raises:
        ValueError: If a counted label lies outside ``[0, num_classes)``.
    """
    flat = labels.reshape(-1).long()
    if ignore_label is not None:
        flat = flat[flat != ignore_label]
    if flat.numel() and (flat.min() < 0 or flat.max() >= num_classes):
        raise ValueError(
            f"Label values must lie in [0, {num_classes}), "
            f"got range [{int(flat.min())}, {int(flat.max())}]"
        )
    return torch.bincount(flat, minlength=num_classes)


def median_frequency_weights(counts: torch.Tensor) -> torch.Tensor:
    """Median frequency balancing: ``median(freq) / freq[c]``.

    Frequencies are taken over classes that occur at all; absent classes get
    weight 0 so they never dominate the loss.
    """
    counts = counts.to(torch.float64)
    total = counts.sum()
    weights = torch.zeros_like(counts)
    present = counts > 0
    if total == 0:
        return weights
    freqs = counts[present] / total
    weights[present] = freqs.median() / freqs
    return weights
