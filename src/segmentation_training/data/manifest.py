"""Manifest parsing for dense image/label datasets."""

from pathlib import Path

from loguru import logger

from segmentation_training.errors import ConfigError
from segmentation_training.types import ManifestEntry


def parse_manifest(source: str | Path, root_folder: str = "") -> list[ManifestEntry]:
    """Read image/label path pairs from a manifest file.

    The manifest is plain text holding whitespace-separated paths, taken two at
    a time as ``(image, label)``.  Pairs may share a line or span several
    lines; paths cannot contain whitespace.

    Args:
        source: Manifest file path.
        root_folder: Directory prepended to relative paths. Empty string leaves
            paths as written.

    Returns:
        Entries in file order.

    Raises:
        ConfigError: If the file cannot be read, holds no paths, or holds an
            odd number of paths.
    """
    source = Path(source)
    try:
        tokens = source.read_text().split()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read manifest {source}: {e}") from e

    if not tokens:
        raise ConfigError(f"Manifest {source} is empty")
    if len(tokens) % 2:
        raise ConfigError(
            f"Manifest {source} holds {len(tokens)} paths; expected image/label pairs"
        )

    root = Path(root_folder) if root_folder else None
    entries = []
    for image, label in zip(tokens[::2], tokens[1::2]):
        if root is not None:
            entries.append(ManifestEntry(root / image, root / label))
        else:
            entries.append(ManifestEntry(Path(image), Path(label)))

    logger.debug(f"Parsed {len(entries)} image/label pairs from {source}")
    return entries
