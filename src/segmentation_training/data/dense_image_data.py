"""Dense image/label data layer: manifest in, paired pixel batches out."""

from typing import Any

import torch
from loguru import logger
from torchvision.transforms.v2 import functional as F

from segmentation_training.config import DenseImageDataConfig
from segmentation_training.data.dataset import DenseImagePairDataset
from segmentation_training.data.manifest import parse_manifest
from segmentation_training.errors import ConfigError
from segmentation_training.types import BlobShape, SegmentationBatch
from segmentation_training.utils.hydra import register

IMAGE_CHANNELS = 3
LABEL_CHANNELS = 1


@register(group="data", name="dense_image_data", config_model=DenseImageDataConfig)
class DenseImageDataLayer:
    """Serve batches of decoded image / label-image pairs from a manifest.

    Lifecycle: construct with a config, call :meth:`setup` once, then call
    :meth:`forward` as often as needed.  The read cursor wraps around the
    manifest indefinitely.

    Without ``new_height``/``new_width`` every batch keeps the native size of
    its first pair.  A batch stops early at the first pair whose native size
    differs, and that pair opens the next batch, so heterogeneous manifests
    yield per-call reshaped outputs.

    With ``shuffle`` the manifest order is a seeded permutation drawn at
    setup and redrawn every time the cursor wraps; each pass visits every
    entry exactly once.

    Args:
        config: DenseImageDataConfig frozen model. If provided, flat kwargs
            are ignored.
        source: Manifest path (used when config is None, e.g. Hydra).
        batch_size: Pairs per batch.
        shuffle: Shuffle the manifest order once per pass.
        new_height: Output height, 0 for native size.
        new_width: Output width, 0 for native size.
        root_folder: Prefix for relative manifest paths.
        seed: Seed for shuffle, skip and mirror draws. None seeds from
            system entropy.
        rand_skip: Start at a random offset in ``[0, rand_skip]``.
        mirror: Randomly flip image and label together, p=0.5.
        scale: Multiplier applied to image pixels after mean subtraction.
        mean_values: Per-channel (or single) mean subtracted from image pixels.
        **kwargs: Absorbs extra Hydra-injected keys (_target_, _convert_, etc.).
    """

    def __init__(
        self,
        config: DenseImageDataConfig | None = None,
        *,
        source: str = "",
        batch_size: int = 1,
        shuffle: bool = False,
        new_height: int = 0,
        new_width: int = 0,
        root_folder: str = "",
        seed: int | None = None,
        rand_skip: int = 0,
        mirror: bool = False,
        scale: float = 1.0,
        mean_values: list[float] | None = None,
        **kwargs: Any,
    ) -> None:
        if config is not None:
            self._config = config
        else:
            self._config = DenseImageDataConfig(
                source=source,
                batch_size=batch_size,
                shuffle=shuffle,
                new_height=new_height,
                new_width=new_width,
                root_folder=root_folder,
                seed=seed,
                rand_skip=rand_skip,
                mirror=mirror,
                scale=scale,
                mean_values=mean_values,
            )

        self._generator = torch.Generator()
        if self._config.seed is not None:
            self._generator.manual_seed(self._config.seed)
        else:
            self._generator.seed()

        self._mean: torch.Tensor | None = None
        if self._config.mean_values is not None:
            self._mean = torch.tensor(self._config.mean_values, dtype=torch.float32)
            self._mean = self._mean.view(-1, 1, 1)

        self._dataset: DenseImagePairDataset | None = None
        self._order: list[int] = []
        self._cursor = 0
        self._epoch = 0
        self._data_shape: BlobShape | None = None
        self._label_shape: BlobShape | None = None

    @property
    def config(self) -> DenseImageDataConfig:
        return self._config

    @property
    def data_shape(self) -> BlobShape | None:
        """Shape of the last image batch (or the expected shape after setup)."""
        return self._data_shape

    @property
    def label_shape(self) -> BlobShape | None:
        """Shape of the last label batch (or the expected shape after setup)."""
        return self._label_shape

    @property
    def num_entries(self) -> int:
        return len(self._order)

    @property
    def cursor(self) -> int:
        """Position of the next pair within the current pass."""
        return self._cursor

    @property
    def epoch(self) -> int:
        """Number of completed passes over the manifest."""
        return self._epoch

    @property
    def order(self) -> list[int]:
        """Manifest indices in the order of the current pass."""
        return list(self._order)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def setup(self) -> tuple[BlobShape, BlobShape]:
        """Parse the manifest and derive the output shapes.

        Returns:
            ``(data_shape, label_shape)`` for a full batch.

        Raises:
            ConfigError: If the manifest is unreadable, empty or malformed, or
                lists a path that is not an existing file.
            DecodeError: If the first pair cannot be opened.
            ShapeError: If the first pair differs in size and no resize is set.
        """
        cfg = self._config
        entries = parse_manifest(cfg.source, cfg.root_folder)
        missing = [path for entry in entries for path in entry if not path.is_file()]
        if missing:
            raise ConfigError(
                f"Manifest {cfg.source} lists {len(missing)} missing files, "
                f"first: {missing[0]}"
            )
        self._dataset = DenseImagePairDataset(entries, resize=cfg.resize)
        self._order = list(range(len(entries)))
        self._cursor = 0
        self._epoch = 0

        if cfg.shuffle:
            logger.info("Shuffling manifest entries")
            self._shuffle()

        if cfg.rand_skip:
            skip = int(torch.randint(0, cfg.rand_skip + 1, (1,), generator=self._generator))
            self._cursor = skip % len(self._order)
            logger.info(f"Skipping first {self._cursor} entries")

        if len(entries) < cfg.batch_size:
            logger.warning(
                f"Manifest {cfg.source} has {len(entries)} entries, fewer than "
                f"batch_size={cfg.batch_size}; entries repeat within a batch"
            )

        first = self._order[self._cursor]
        if cfg.resize is not None:
            # Image and label may differ in size; both are resized.
            self._dataset.header_sizes(first)
            height, width = cfg.resize
        else:
            height, width = self._dataset.native_size(first)

        self._data_shape = BlobShape(cfg.batch_size, IMAGE_CHANNELS, height, width)
        self._label_shape = BlobShape(cfg.batch_size, LABEL_CHANNELS, height, width)
        logger.info(
            f"DenseImageDataLayer: {len(entries)} pairs from {cfg.source}, "
            f"data {tuple(self._data_shape)}, label {tuple(self._label_shape)}"
        )
        return self._data_shape, self._label_shape

    def forward(self) -> SegmentationBatch:
        """Decode the next batch of pairs.

        Raises:
            RuntimeError: If called before :meth:`setup`.
            DecodeError: If an image or label image cannot be decoded.
            ShapeError: If an image and its label image differ in size.
        """
        if self._dataset is None:
            raise RuntimeError("Call setup() before forward()")
        cfg = self._config

        images: list[torch.Tensor] = []
        labels: list[torch.Tensor] = []
        batch_hw: tuple[int, int] | None = None
        while len(images) < cfg.batch_size:
            idx = self._order[self._cursor]
            if cfg.resize is None:
                size = self._dataset.native_size(idx)
                if batch_hw is None:
                    batch_hw = size
                elif size != batch_hw:
                    logger.debug(
                        f"Batch cut at {len(images)} pairs: entry {idx} is "
                        f"{size[0]}x{size[1]}, batch is {batch_hw[0]}x{batch_hw[1]}"
                    )
                    break
            image, label = self._dataset[idx]
            image, label = self._transform(image, label)
            images.append(image)
            labels.append(label)
            self._advance()

        batch: SegmentationBatch = {
            "images": torch.stack(images),
            "labels": torch.stack(labels),
        }
        self._data_shape = BlobShape(*batch["images"].shape)
        self._label_shape = BlobShape(*batch["labels"].shape)
        return batch

    __call__ = forward

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _shuffle(self) -> None:
        perm = torch.randperm(len(self._order), generator=self._generator)
        self._order = perm.tolist()

    def _advance(self) -> None:
        self._cursor += 1
        if self._cursor >= len(self._order):
            self._cursor = 0
            self._epoch += 1
            logger.debug(f"Restarting manifest, pass {self._epoch}")
            if self._config.shuffle:
                self._shuffle()

    def _transform(
        self, image: torch.Tensor, label: torch.Tensor
    ) -> tuple[torch.Tensor, torch.Tensor]:
        if self._config.mirror and torch.rand(1, generator=self._generator).item() < 0.5:
            image = F.horizontal_flip(image)
            label = F.horizontal_flip(label)
        if self._mean is not None:
            image = image - self._mean
        if self._config.scale != 1.0:
            image = image * self._config.scale
        return image, label
