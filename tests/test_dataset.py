"""Unit tests for DenseImagePairDataset."""

from pathlib import Path

import numpy as np
import pytest
import torch
from PIL import Image

from segmentation_training.data.dataset import DenseImagePairDataset
from segmentation_training.data.manifest import parse_manifest
from segmentation_training.errors import DecodeError, ShapeError
from segmentation_training.types import ManifestEntry


class TestDenseImagePairDataset:
    def test_len_equals_manifest_entries(self, cat_manifest: Path) -> None:
        ds = DenseImagePairDataset(parse_manifest(cat_manifest))
        assert len(ds) == 5

    def test_getitem_shapes_and_dtypes(self, cat_manifest: Path) -> None:
        ds = DenseImagePairDataset(parse_manifest(cat_manifest))
        image, label = ds[0]
        assert image.shape == (3, 360, 480)
        assert image.dtype == torch.float32
        assert label.shape == (1, 360, 480)
        assert label.dtype == torch.long

    def test_label_values_are_exact(
        self, cat_manifest: Path, cat_label: np.ndarray
    ) -> None:
        ds = DenseImagePairDataset(parse_manifest(cat_manifest))
        _, label = ds[0]
        assert torch.equal(label[0], torch.from_numpy(cat_label).long())

    def test_image_pixels_keep_raw_range(self, cat_manifest: Path) -> None:
        ds = DenseImagePairDataset(parse_manifest(cat_manifest))
        image, _ = ds[0]
        assert image.min() >= 0.0
        assert image.max() <= 255.0
        # Blue channel was written as a constant 200 (JPEG may drift slightly).
        assert abs(image[2].mean().item() - 200.0) < 5.0

    def test_resize_uses_nearest_for_labels(self, cat_manifest: Path) -> None:
        ds = DenseImagePairDataset(parse_manifest(cat_manifest), resize=(256, 256))
        image, label = ds[0]
        assert image.shape == (3, 256, 256)
        assert label.shape == (1, 256, 256)
        assert set(label.unique().tolist()) == {0, 1, 2}

    def test_native_size(self, reshape_manifest: Path) -> None:
        ds = DenseImagePairDataset(parse_manifest(reshape_manifest))
        assert ds.native_size(0) == (360, 480)
        assert ds.native_size(1) == (323, 481)

    def test_palette_label_keeps_indices(self, tmp_path: Path) -> None:
        Image.new("RGB", (4, 3), color=(10, 20, 30)).save(tmp_path / "a.png")
        label = Image.new("P", (4, 3), color=7)
        label.putpalette([255, 0, 0] * 256)
        label.save(tmp_path / "a_label.png")
        ds = DenseImagePairDataset(
            [ManifestEntry(tmp_path / "a.png", tmp_path / "a_label.png")]
        )
        _, decoded = ds[0]
        assert decoded.unique().tolist() == [7]

    def test_bilevel_label_decodes_to_zero_and_one(self, tmp_path: Path) -> None:
        mask = np.zeros((4, 4), dtype=np.uint8)
        mask[:, 2:] = 255
        Image.new("RGB", (4, 4)).save(tmp_path / "a.png")
        Image.fromarray(mask).convert("1", dither=Image.Dither.NONE).save(
            tmp_path / "a_label.png"
        )
        ds = DenseImagePairDataset(
            [ManifestEntry(tmp_path / "a.png", tmp_path / "a_label.png")]
        )
        _, decoded = ds[0]
        assert decoded.unique().tolist() == [0, 1]
        assert decoded[0, :, 2:].eq(1).all()

    def test_16bit_label_keeps_full_range(self, tmp_path: Path) -> None:
        label = np.full((4, 5), 300, dtype=np.uint16)
        label[0, 0] = 65000
        Image.new("RGB", (5, 4)).save(tmp_path / "a.png")
        Image.fromarray(label).save(tmp_path / "a_label.png")
        ds = DenseImagePairDataset(
            [ManifestEntry(tmp_path / "a.png", tmp_path / "a_label.png")]
        )
        _, decoded = ds[0]
        assert decoded.dtype == torch.long
        assert decoded.unique().tolist() == [300, 65000]

    def test_16bit_label_survives_nearest_resize(self, tmp_path: Path) -> None:
        Image.new("RGB", (5, 4)).save(tmp_path / "a.png")
        Image.fromarray(np.full((4, 5), 1234, dtype=np.uint16)).save(
            tmp_path / "a_label.png"
        )
        ds = DenseImagePairDataset(
            [ManifestEntry(tmp_path / "a.png", tmp_path / "a_label.png")],
            resize=(8, 10),
        )
        _, decoded = ds[0]
        assert decoded.shape == (1, 8, 10)
        assert decoded.unique().tolist() == [1234]

    def test_label_with_alpha_keeps_index_band(self, tmp_path: Path) -> None:
        Image.new("RGB", (4, 4)).save(tmp_path / "a.png")
        Image.new("LA", (4, 4), color=(3, 128)).save(tmp_path / "a_label.png")
        ds = DenseImagePairDataset(
            [ManifestEntry(tmp_path / "a.png", tmp_path / "a_label.png")]
        )
        _, decoded = ds[0]
        assert decoded.shape == (1, 4, 4)
        assert decoded.unique().tolist() == [3]

    def test_header_sizes_reports_both_files(self, tmp_path: Path) -> None:
        Image.new("RGB", (8, 8)).save(tmp_path / "a.png")
        Image.new("L", (8, 6)).save(tmp_path / "a_label.png")
        ds = DenseImagePairDataset(
            [ManifestEntry(tmp_path / "a.png", tmp_path / "a_label.png")]
        )
        assert ds.header_sizes(0) == ((8, 8), (6, 8))

    def test_missing_image_raises_decode_error(self, tmp_path: Path) -> None:
        ds = DenseImagePairDataset(
            [ManifestEntry(tmp_path / "none.jpg", tmp_path / "none.png")]
        )
        with pytest.raises(DecodeError):
            ds[0]
        with pytest.raises(DecodeError):
            ds.native_size(0)

    def test_corrupt_image_raises_decode_error(self, tmp_path: Path) -> None:
        (tmp_path / "bad.jpg").write_bytes(b"not an image at all")
        Image.new("L", (4, 4)).save(tmp_path / "bad_label.png")
        ds = DenseImagePairDataset(
            [ManifestEntry(tmp_path / "bad.jpg", tmp_path / "bad_label.png")]
        )
        with pytest.raises(DecodeError, match="bad.jpg"):
            ds[0]

    def test_size_mismatch_raises_shape_error(self, tmp_path: Path) -> None:
        Image.new("RGB", (8, 8)).save(tmp_path / "a.png")
        Image.new("L", (8, 6)).save(tmp_path / "a_label.png")
        ds = DenseImagePairDataset(
            [ManifestEntry(tmp_path / "a.png", tmp_path / "a_label.png")]
        )
        with pytest.raises(ShapeError):
            ds[0]
        with pytest.raises(ShapeError):
            ds.native_size(0)
