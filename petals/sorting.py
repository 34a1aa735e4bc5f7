"""Back-to-front ordering of petals along a fixed world axis."""

import numpy as np


class DepthSorter:
    """Orders petal indices far-to-near along one world axis.

    The axis is chosen once from the camera's initial viewing direction and
    never follows the camera afterwards.

    Args:
        axis: world axis index (0 = x, 1 = y, 2 = z)
        descending: sort by decreasing coordinate instead of increasing
    """

    def __init__(self, axis: int = 2, descending: bool = False):
        if axis not in (0, 1, 2):
            raise ValueError(f"axis must be 0, 1 or 2, got {axis}")
        self.axis = axis
        self.descending = descending

    @classmethod
    def from_view_direction(cls, forward) -> "DepthSorter":
        """Pick the world axis closest to ``forward`` and sort far petals first.

        Looking down -z, the farthest petals have the smallest z, so the order
        is ascending; looking down +z it is descending.
        """
        forward = np.asarray(forward, dtype=np.float64)
        axis = int(np.argmax(np.abs(forward)))
        return cls(axis=axis, descending=bool(forward[axis] > 0))

    def sort(self, positions: np.ndarray) -> np.ndarray:
        """Stable permutation of ``range(len(positions))`` in draw order.

        Args:
            positions: (n, 3) petal centers

        Returns:
            (n,) int64 indices
        """
        key = positions[:, self.axis]
        if self.descending:
            key = -key
        return np.argsort(key, kind="stable")
