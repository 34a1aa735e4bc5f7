"""Tests for dense instance packing."""

import numpy as np
import pytest

from petals.errors import ConfigurationError
from petals.packing import (
    InstancePacker,
    ensure_fits,
    pack_poses,
    pack_variant_indices,
    required_uniform_bytes,
    unpack_variant_index,
    variant_slot,
)


class TestVariantPacking:
    def test_slot_mapping(self):
        assert variant_slot(0) == (0, 0)
        assert variant_slot(3) == (0, 3)
        assert variant_slot(4) == (1, 0)
        assert variant_slot(11) == (2, 3)

    @pytest.mark.parametrize("n", [1, 4, 7, 8, 13])
    def test_unpack_recovers_ids(self, n):
        ids = np.random.default_rng(n).integers(0, 24, size=n).astype(np.uint32)
        packed = pack_variant_indices(ids)
        assert [unpack_variant_index(packed, i) for i in range(n)] == ids.tolist()

    def test_padding_is_zero(self):
        packed = pack_variant_indices(np.array([5, 6, 7, 8, 9], dtype=np.uint32))
        assert packed.shape == (2, 4)
        assert packed.dtype == np.uint32
        np.testing.assert_array_equal(packed[1], [9, 0, 0, 0])

    def test_required_bytes(self):
        assert required_uniform_bytes(4) == 16
        assert required_uniform_bytes(5) == 32
        assert required_uniform_bytes(7000) == 28000

    def test_ensure_fits_at_limit(self):
        ensure_fits(16384, limit=65536)

    def test_ensure_fits_over_limit(self):
        with pytest.raises(ConfigurationError, match="at most 16384"):
            ensure_fits(16388, limit=65536)


class TestPoseLayout:
    def test_columns_contiguous(self):
        pose = np.arange(16, dtype=np.float32).reshape(1, 4, 4)
        record = pack_poses(pose)[0]
        # First four floats are the first column
        np.testing.assert_array_equal(record[:4], pose[0, :, 0])
        np.testing.assert_array_equal(record[12:], pose[0, :, 3])


class TestInstancePacker:
    def test_buffer_shapes(self):
        packer = InstancePacker(10)
        assert packer.pose_buffer.shape == (10, 16)
        assert packer.pose_buffer.dtype == np.float32
        assert packer.variant_buffer.shape == (3, 4)

    def test_pack_in_order(self):
        n = 6
        poses = np.tile(np.eye(4, dtype=np.float32), (n, 1, 1))
        poses[:, 0, 3] = np.arange(n)  # x translation identifies each petal
        ids = np.array([10, 11, 12, 13, 14, 15], dtype=np.uint32)
        order = np.array([5, 3, 1, 0, 2, 4])

        packer = InstancePacker(n)
        pose_buffer, variant_buffer = packer.pack(poses, ids, order)

        # Translation x is element 12 of a column-major record
        np.testing.assert_array_equal(pose_buffer[:, 12], order)
        assert [unpack_variant_index(variant_buffer, i) for i in range(n)] == ids[order].tolist()
        np.testing.assert_array_equal(variant_buffer[1, 2:], [0, 0])

    def test_buffers_reused(self):
        packer = InstancePacker(4)
        poses = np.tile(np.eye(4, dtype=np.float32), (4, 1, 1))
        ids = np.arange(4, dtype=np.uint32)
        first = packer.pack(poses, ids, np.arange(4))
        second = packer.pack(poses, ids, np.arange(4)[::-1])
        assert first[0] is second[0]
        assert first[1] is second[1]

    def test_rejects_too_many_petals(self):
        with pytest.raises(ConfigurationError):
            InstancePacker(64, uniform_block_limit=128)

    def test_rejects_wrong_order_length(self):
        packer = InstancePacker(4)
        poses = np.tile(np.eye(4, dtype=np.float32), (4, 1, 1))
        with pytest.raises(ValueError):
            packer.pack(poses, np.zeros(4, dtype=np.uint32), np.arange(3))
