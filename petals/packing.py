"""Serialization of sorted petal data into GPU-bound buffers.

Two buffers are produced per frame:

- a pose buffer, one (16,) float32 record per petal holding the four columns
  of its 4x4 model matrix; bound as a per-instance vertex attribute
- a variant index buffer, four uint32 indices per 16 byte uniform slot
  (a ``uvec4`` in std140 layout), so petal ``i`` lives at word ``i // 4``,
  lane ``i % 4``
"""

import logging

import numpy as np

from petals.errors import ConfigurationError

logger = logging.getLogger(__name__)

LANES_PER_SLOT = 4
SLOT_BYTES = 16
# Minimum GL_MAX_UNIFORM_BLOCK_SIZE guaranteed by most desktop drivers.
DEFAULT_UNIFORM_BLOCK_LIMIT = 65536


def variant_slot(index: int) -> tuple[int, int]:
    """(word, lane) holding the variant index of the petal drawn ``index``-th."""
    return index // LANES_PER_SLOT, index % LANES_PER_SLOT


def n_slots(n_petals: int) -> int:
    return -(-n_petals // LANES_PER_SLOT)


def required_uniform_bytes(n_petals: int) -> int:
    """Size of the packed variant index buffer for ``n_petals`` petals."""
    return SLOT_BYTES * n_slots(n_petals)


def ensure_fits(n_petals: int, limit: int = DEFAULT_UNIFORM_BLOCK_LIMIT):
    """Raise ConfigurationError if the packed indices would overflow a uniform block."""
    needed = required_uniform_bytes(n_petals)
    if needed > limit:
        max_petals = (limit // SLOT_BYTES) * LANES_PER_SLOT
        raise ConfigurationError(
            f"{n_petals} petals need {needed} bytes of uniform storage but the graphics "
            f"backend allows {limit}; use at most {max_petals} petals"
        )


def pack_variant_indices(variant_ids: np.ndarray) -> np.ndarray:
    """Pack ids four per slot; unused lanes of the last slot are zero.

    Returns:
        (ceil(n / 4), 4) uint32 array
    """
    n = len(variant_ids)
    flat = np.zeros(n_slots(n) * LANES_PER_SLOT, dtype=np.uint32)
    flat[:n] = variant_ids
    return flat.reshape(-1, LANES_PER_SLOT)


def unpack_variant_index(packed: np.ndarray, index: int) -> int:
    """Inverse of packing for one petal, as the vertex shader reads it."""
    word, lane = variant_slot(index)
    return int(packed[word, lane])


def pack_poses(poses: np.ndarray) -> np.ndarray:
    """Flatten (n, 4, 4) matrices to (n, 16) column-major records."""
    return np.ascontiguousarray(poses.transpose(0, 2, 1), dtype=np.float32).reshape(-1, 16)


class InstancePacker:
    """Owns the two per-frame buffers and rewrites them in draw order.

    The buffers are allocated once for ``n_petals`` and reused every frame.
    """

    def __init__(self, n_petals: int, uniform_block_limit: int = DEFAULT_UNIFORM_BLOCK_LIMIT):
        ensure_fits(n_petals, uniform_block_limit)
        self.n_petals = n_petals
        self.pose_buffer = np.zeros((n_petals, 16), dtype=np.float32)
        self.variant_buffer = np.zeros((n_slots(n_petals), LANES_PER_SLOT), dtype=np.uint32)
        logger.debug(
            "Instance buffers: %d pose bytes, %d variant index bytes",
            self.pose_buffer.nbytes, self.variant_buffer.nbytes,
        )

    def pack(self, poses: np.ndarray, variant_ids: np.ndarray, order: np.ndarray):
        """Write slot ``i`` from petal ``order[i]``.

        Args:
            poses: (n, 4, 4) model matrices in petal id order
            variant_ids: (n,) variant ids in petal id order
            order: (n,) permutation from the depth sorter
        """
        if len(order) != self.n_petals:
            raise ValueError(f"Expected an order over {self.n_petals} petals, got {len(order)}")
        self.pose_buffer[:] = pack_poses(poses[order])
        self.variant_buffer.reshape(-1)[: self.n_petals] = variant_ids[order]
        return self.pose_buffer, self.variant_buffer
