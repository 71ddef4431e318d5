"""Label distribution inspection for a dense image data configuration.

Runs the configured data layer for a few batches, counts pixel labels and
suggests median-frequency ``class_weighting`` values for the loss.

Usage:
    python -m segmentation_training.inspect_data data.source=train.txt num_classes=12
    python -m segmentation_training.inspect_data data.source=train.txt \
        num_classes=12 num_batches=50 data.batch_size=4 loss.ignore_label=11
"""

import sys

import hydra
import torch
from loguru import logger
from omegaconf import DictConfig, OmegaConf
from rich import box
from rich.console import Console
from rich.table import Table

# CRITICAL: import layers to trigger @register decorators BEFORE Hydra parses config
import segmentation_training.data  # noqa: F401
import segmentation_training.losses  # noqa: F401
from segmentation_training.data.dense_image_data import DenseImageDataLayer
from segmentation_training.data.statistics import label_counts, median_frequency_weights
from segmentation_training.losses import SoftmaxWithLoss
from segmentation_training.schemas.report import LabelReport


def inspect_layer(
    layer: DenseImageDataLayer,
    loss_fn: SoftmaxWithLoss,
    num_batches: int,
    num_classes: int,
) -> LabelReport:
    """Collect label statistics from ``num_batches`` forwards of ``layer``.

    ``layer.setup()`` is called here. The loss is evaluated on all-zero
    scores to report the chance-level starting loss.
    """
    layer.setup()
    ignore_label = loss_fn.config.ignore_label
    counts = torch.zeros(num_classes, dtype=torch.long)
    ignored = 0
    losses: list[float] = []
    shapes: list[tuple[int, int, int, int]] = []

    for _ in range(num_batches):
        batch = layer.forward()
        labels = batch["labels"]
        counts += label_counts(labels, num_classes, ignore_label)
        if ignore_label is not None:
            ignored += int((labels == ignore_label).sum())

        n, _, h, w = labels.shape
        scores = torch.zeros(n, num_classes, h, w)
        with torch.no_grad():
            losses.append(float(loss_fn(scores, labels)))
        shapes.append(tuple(batch["images"].shape))  # type: ignore[arg-type]

    weights = median_frequency_weights(counts)
    report = LabelReport(
        num_batches=num_batches,
        num_classes=num_classes,
        counts=counts.tolist(),
        ignored=ignored,
        suggested_weights=[round(w, 6) for w in weights.tolist()],
        chance_loss=sum(losses) / len(losses) if losses else 0.0,
        batch_shapes=shapes,
    )
    logger.info(
        f"Inspected {num_batches} batches: {report.total} labelled pixels, "
        f"{ignored} ignored, chance loss {report.chance_loss:.4f}"
    )
    return report


def build_table(report: LabelReport) -> Table:
    """Rich table of per-class pixel counts and suggested weights."""
    table = Table(
        title="Pixel Label Distribution",
        header_style="bold magenta",
        box=box.SQUARE,
        show_lines=True,
    )
    table.add_column("Class", justify="right", style="cyan")
    table.add_column("Pixels", justify="right", style="green")
    table.add_column("Percentage", justify="right", style="yellow")
    table.add_column("Weight", justify="right")

    total = report.total
    for idx, (count, weight) in enumerate(
        zip(report.counts, report.suggested_weights, strict=True)
    ):
        pct = count / total * 100 if total > 0 else 0.0
        table.add_row(str(idx), str(count), f"{pct:.2f}%", f"{weight:.4f}")
    return table


@hydra.main(version_base=None, config_path="conf", config_name="inspect_data")
def main(cfg: DictConfig) -> None:
    """Inspect the configured data layer."""
    logger.remove()
    logger.add(sys.stderr, level=cfg.get("log_level", "INFO"))

    logger.info(f"Configuration:\n{OmegaConf.to_yaml(cfg)}")

    layer: DenseImageDataLayer = hydra.utils.instantiate(cfg.data)
    loss_fn: SoftmaxWithLoss = hydra.utils.instantiate(cfg.loss)
    report = inspect_layer(layer, loss_fn, cfg.num_batches, cfg.num_classes)

    Console().print(build_table(report))
    logger.info(f"Suggested override: loss.class_weighting={report.suggested_weights}")


if __name__ == "__main__":
    main()
