"""Softmax cross-entropy loss for dense (per-pixel) classification."""

from __future__ import annotations

from typing import Any

import torch
import torch.nn as nn
from loguru import logger

from segmentation_training.config import LossConfig
from segmentation_training.errors import ConfigError, ShapeError
from segmentation_training.utils.hydra import register


def _label_map(scores: torch.Tensor, labels: torch.Tensor) -> torch.Tensor:
    """Check ``labels`` against ``scores`` and return them as ``(N, *spatial)`` int64.

    ``scores`` is ``(N, C, *spatial)``; ``labels`` may be ``(N, 1, *spatial)``
    or ``(N, *spatial)``.
    """
    if scores.dim() < 2:
        raise ShapeError(f"Scores need shape (N, C, ...), got {tuple(scores.shape)}")
    if labels.dim() == scores.dim():
        if labels.shape[1] != 1:
            raise ShapeError(
                f"Labels need a single channel, got shape {tuple(labels.shape)}"
            )
        labels = labels.squeeze(1)
    if labels.shape[0] != scores.shape[0]:
        raise ShapeError(
            f"Batch size mismatch: scores {scores.shape[0]}, labels {labels.shape[0]}"
        )
    if labels.shape[1:] != scores.shape[2:]:
        raise ShapeError(
            f"Spatial size mismatch: scores {tuple(scores.shape[2:])}, "
            f"labels {tuple(labels.shape[1:])}"
        )
    return labels.long()


def _check_label_range(
    target: torch.Tensor, num_classes: int, ignore_label: int | None
) -> None:
    values = target if ignore_label is None else target[target != ignore_label]
    if values.numel() and (values.min() < 0 or values.max() >= num_classes):
        raise ValueError(
            f"Label values must lie in [0, {num_classes}) or equal "
            f"ignore_label={ignore_label}, got range "
            f"[{int(values.min())}, {int(values.max())}]"
        )


def _label_weights(
    target: torch.Tensor,
    mask: torch.Tensor,
    config: LossConfig,
    num_classes: int,
    dtype: torch.dtype,
) -> torch.Tensor:
    """Per-element loss weight, zero where ``mask`` is False.

    With ``weight_by_label_freqs`` the class weight is divided by the class
    frequency among contributing elements: counts are tallied first, then
    applied.
    """
    if config.class_weighting is not None:
        class_weight = torch.tensor(config.class_weighting, dtype=dtype, device=target.device)
    else:
        class_weight = torch.ones(num_classes, dtype=dtype, device=target.device)

    if config.weight_by_label_freqs:
        counts = torch.bincount(target[mask], minlength=num_classes).to(dtype)
        freqs = counts / counts.sum().clamp(min=1.0)
        class_weight = torch.where(
            counts > 0, class_weight / freqs, torch.zeros_like(class_weight)
        )

    weight = class_weight[target]
    return torch.where(mask, weight, torch.zeros_like(weight))


class SoftmaxWithLossFunction(torch.autograd.Function):
    """Softmax over the class axis followed by weighted multinomial log loss.

    ``forward(scores, target, config)`` takes ``target`` already shaped
    ``(N, *spatial)`` and range-checked.  Returns ``(loss, prob)``; ``prob``
    is non-differentiable.
    """

    @staticmethod
    def forward(  # type: ignore[override]
        ctx: Any,
        scores: torch.Tensor,
        target: torch.Tensor,
        config: LossConfig,
    ) -> tuple[torch.Tensor, torch.Tensor]:
        n, c = scores.shape[:2]
        flat = scores.reshape(n, c, -1)
        target = target.reshape(n, -1)

        if config.ignore_label is not None:
            mask = target != config.ignore_label
        else:
            mask = torch.ones_like(target, dtype=torch.bool)
        # Ignored positions may hold any value; index class 0 there instead.
        safe_target = torch.where(mask, target, torch.zeros_like(target))

        shifted = flat - flat.amax(dim=1, keepdim=True)
        log_prob = shifted - shifted.exp().sum(dim=1, keepdim=True).log()
        prob = log_prob.exp()

        weight = _label_weights(safe_target, mask, config, c, scores.dtype)
        picked = log_prob.gather(1, safe_target.unsqueeze(1)).squeeze(1)

        count = int(mask.sum())
        divisor = float(max(count, 1)) if config.normalize else 1.0
        loss = -(weight * picked).sum() / divisor * config.loss_weight

        ctx.save_for_backward(prob, safe_target, weight)
        ctx.scale = config.loss_weight / divisor
        ctx.scores_shape = scores.shape
        prob = prob.reshape(scores.shape).clone()
        ctx.mark_non_differentiable(prob)
        return loss, prob

    @staticmethod
    def backward(  # type: ignore[override]
        ctx: Any, grad_loss: torch.Tensor, grad_prob: torch.Tensor
    ) -> tuple[torch.Tensor | None, None, None]:
        prob, safe_target, weight = ctx.saved_tensors
        grad = prob.clone()
        grad.scatter_add_(
            1, safe_target.unsqueeze(1), -torch.ones_like(prob[:, :1])
        )
        grad = grad * weight.unsqueeze(1) * (grad_loss * ctx.scale)
        return grad.reshape(ctx.scores_shape), None, None


def softmax_with_loss(
    scores: torch.Tensor,
    labels: torch.Tensor,
    config: LossConfig | None = None,
) -> torch.Tensor:
    """Functional form of :class:`SoftmaxWithLoss`. Returns the scalar loss."""
    config = config or LossConfig()
    target = _label_map(scores, labels)
    num_classes = scores.shape[1]
    if config.class_weighting is not None and len(config.class_weighting) != num_classes:
        raise ConfigError(
            f"class_weighting has {len(config.class_weighting)} values "
            f"for {num_classes} classes"
        )
    _check_label_range(target, num_classes, config.ignore_label)
    loss, _ = SoftmaxWithLossFunction.apply(scores, target, config)
    return loss


@register(group="loss", name="softmax_with_loss", config_model=LossConfig)
class SoftmaxWithLoss(nn.Module):
    """Softmax cross-entropy over the class axis of dense score maps.

    Scores are ``(N, C, *spatial)`` and labels ``(N, 1, *spatial)`` (or
    ``(N, *spatial)``).  Every element whose label differs from
    ``ignore_label`` contributes ``-weight(label) * log(softmax[label])``.
    The sum is divided by the number of contributing elements when
    ``normalize`` is set (at least 1) and multiplied by ``loss_weight``.

    The gradient with respect to the scores comes from autograd through
    :class:`SoftmaxWithLossFunction`; labels receive no gradient.  After
    each forward, the softmax output is kept in ``prob``.

    Parameters
    ----------
    config:
        Frozen LossConfig. If provided, flat kwargs are ignored.
    ignore_label:
        Label value excluded from loss and gradient.
    normalize:
        Divide by the contributing element count instead of reporting a sum.
    class_weighting:
        One weight per class.
    weight_by_label_freqs:
        Divide each class weight by its frequency in the current batch.
    loss_weight:
        Multiplier applied to the final loss.
    """

    def __init__(
        self,
        config: LossConfig | None = None,
        *,
        ignore_label: int | None = None,
        normalize: bool = True,
        class_weighting: list[float] | None = None,
        weight_by_label_freqs: bool = False,
        loss_weight: float = 1.0,
        **kwargs: Any,
    ) -> None:
        super().__init__()
        if config is not None:
            self.config = config
        else:
            self.config = LossConfig(
                ignore_label=ignore_label,
                normalize=normalize,
                class_weighting=class_weighting,
                weight_by_label_freqs=weight_by_label_freqs,
                loss_weight=loss_weight,
            )
        self._scores_shape: torch.Size | None = None
        self.prob: torch.Tensor | None = None

    def setup(self, scores: torch.Tensor, labels: torch.Tensor) -> None:
        """Validate input shapes and the class weighting length.

        Raises:
            ShapeError: If labels do not match the scores' batch and spatial dims.
            ConfigError: If ``class_weighting`` length differs from the class count.
        """
        _label_map(scores, labels)
        num_classes = scores.shape[1]
        weights = self.config.class_weighting
        if weights is not None and len(weights) != num_classes:
            raise ConfigError(
                f"class_weighting has {len(weights)} values for {num_classes} classes"
            )
        if self._scores_shape is not None and self._scores_shape != scores.shape:
            logger.debug(
                f"SoftmaxWithLoss reshaped: {tuple(self._scores_shape)} -> "
                f"{tuple(scores.shape)}"
            )
        self._scores_shape = scores.shape

    def forward(self, scores: torch.Tensor, labels: torch.Tensor) -> torch.Tensor:
        """Compute the scalar loss; ``setup`` runs again when shapes change."""
        if self._scores_shape != scores.shape:
            self.setup(scores, labels)
        target = _label_map(scores, labels)
        _check_label_range(target, scores.shape[1], self.config.ignore_label)
        loss, prob = SoftmaxWithLossFunction.apply(scores, target, self.config)
        self.prob = prob.detach()
        return loss
