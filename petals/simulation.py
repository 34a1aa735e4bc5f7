"""Petal simulation state stored as a structure of arrays.

Petals live in dense numpy arrays indexed by petal id. Nothing is added or
removed after spawning: petals that leave the simulation volume through one
face re-enter through the opposite face.
"""

import logging

import numpy as np

from petals.config import PetalsConfig
from petals.motion import MotionGenerator
from petals.variants import VariantCatalog

logger = logging.getLogger(__name__)

VERTICAL_AXIS = 1


# Quaternions are (w, x, y, z) along the last axis.

def quat_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product a * b (rotation b first, then a)."""
    aw, ax, ay, az = np.moveaxis(a, -1, 0)
    bw, bx, by, bz = np.moveaxis(b, -1, 0)
    return np.stack([
        aw * bw - ax * bx - ay * by - az * bz,
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
    ], axis=-1)


def quat_from_axis_angle(axis: np.ndarray, angle: np.ndarray) -> np.ndarray:
    """Rotation quaternions from unit axes (..., 3) and angles in radians (...)."""
    half = 0.5 * np.asarray(angle)
    return np.concatenate([np.cos(half)[..., None], axis * np.sin(half)[..., None]], axis=-1)


def quat_to_matrix(q: np.ndarray) -> np.ndarray:
    """Rotation matrices (..., 3, 3) from unit quaternions (..., 4)."""
    w, x, y, z = np.moveaxis(q, -1, 0)
    return np.stack([
        np.stack([1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)], axis=-1),
        np.stack([2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)], axis=-1),
        np.stack([2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)], axis=-1),
    ], axis=-2)


def random_unit_quaternions(n: int, rng: np.random.Generator) -> np.ndarray:
    """Uniformly distributed rotations: normalized 4D Gaussian samples."""
    q = rng.standard_normal((n, 4))
    return q / np.linalg.norm(q, axis=-1, keepdims=True)


def random_unit_vectors(n: int, rng: np.random.Generator) -> np.ndarray:
    v = rng.standard_normal((n, 3))
    return v / np.linalg.norm(v, axis=-1, keepdims=True)


def wrap_positions(positions: np.ndarray, half_extents) -> np.ndarray:
    """Wrap coordinates outside [-h, h] to the opposite side of the volume, in place.

    A coordinate at 9.5 + 1.0 with h = 10 lands on -9.5. Coordinates already
    inside the volume are left bit-for-bit unchanged.
    """
    h = np.asarray(half_extents, dtype=positions.dtype)
    outside = np.abs(positions) > h
    if np.any(outside):
        span = np.broadcast_to(2.0 * h, positions.shape)[outside]
        hh = np.broadcast_to(h, positions.shape)[outside]
        positions[outside] = np.mod(positions[outside] + hh, span) - hh
    return positions


class SimulationState:
    """Pose and appearance of every petal, advanced one frame at a time.

    Attributes:
        positions: (n, 3) world-space centers
        orientations: (n, 4) accumulated unit quaternions
        spins: (n, 4) constant per-frame rotation quaternions
        variant_ids: (n,) uint32 indices into the variant catalog
        scales: (n,) uniform petal size
        aspect_ratios: (n,) width / height of each petal's picture
    """

    def __init__(
        self,
        positions: np.ndarray,
        orientations: np.ndarray,
        spins: np.ndarray,
        variant_ids: np.ndarray,
        scales: np.ndarray,
        aspect_ratios: np.ndarray,
        motion: MotionGenerator,
        half_extents: tuple[float, float, float],
        fall_speed: float,
        frame: int = 0,
    ):
        n = len(positions)
        for name, arr, shape in (
            ("orientations", orientations, (n, 4)),
            ("spins", spins, (n, 4)),
            ("variant_ids", variant_ids, (n,)),
            ("scales", scales, (n,)),
            ("aspect_ratios", aspect_ratios, (n,)),
        ):
            if arr.shape != shape:
                raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")
        if motion.amplitudes.shape[0] != n:
            raise ValueError(
                f"Motion coefficients cover {motion.amplitudes.shape[0]} petals, expected {n}"
            )

        self.positions = np.array(positions, dtype=np.float64)
        self.orientations = np.array(orientations, dtype=np.float64)
        self.spins = np.array(spins, dtype=np.float64)
        self.variant_ids = np.array(variant_ids, dtype=np.uint32)
        self.scales = np.array(scales, dtype=np.float64)
        self.aspect_ratios = np.array(aspect_ratios, dtype=np.float64)
        self.motion = motion
        self.half_extents = tuple(float(h) for h in half_extents)
        self.fall_speed = float(fall_speed)
        self.frame = frame

    @classmethod
    def spawn(
        cls,
        config: PetalsConfig,
        catalog: VariantCatalog,
        rng: np.random.Generator = None,
    ) -> "SimulationState":
        """Scatter ``config.n_petals`` petals uniformly through the simulation volume."""
        if rng is None:
            rng = np.random.default_rng(config.random_seed)
        n = config.n_petals
        h = np.array(config.half_extents)

        logger.debug("Computing petal movement")
        motion = MotionGenerator.random(
            n,
            period=config.movement_period_frames,
            n_frequencies=config.movement_n_frequencies,
            low_freq_max_amplitude=config.movement_low_freq_max_amplitude,
            high_freq_max_amplitude=config.movement_high_freq_max_amplitude,
            rng=rng,
        )

        logger.debug("Instance setup for %d petals", n)
        variant_ids = rng.integers(0, len(catalog), size=n).astype(np.uint32)
        positions = (2.0 * rng.random((n, 3)) - 1.0) * h
        orientations = random_unit_quaternions(n, rng)

        speeds = np.radians(
            config.min_rotation_speed
            + (config.max_rotation_speed - config.min_rotation_speed) * rng.random(n)
        )
        spins = quat_from_axis_angle(random_unit_vectors(n, rng), speeds)

        random_scale = config.min_scale + (config.max_scale - config.min_scale) * rng.random(n)
        scales = catalog.scales()[variant_ids] * random_scale
        aspect_ratios = catalog.aspect_ratios()[variant_ids]

        return cls(
            positions=positions,
            orientations=orientations,
            spins=spins,
            variant_ids=variant_ids,
            scales=scales,
            aspect_ratios=aspect_ratios,
            motion=motion,
            half_extents=config.half_extents,
            fall_speed=config.fall_speed,
        )

    @property
    def n_petals(self) -> int:
        return len(self.positions)

    def advance(self, delta_frame: int = 1):
        """Run ``delta_frame`` simulation steps."""
        for _ in range(delta_frame):
            self.step()

    def step(self):
        """Rotate, move and wrap every petal once, then advance the frame counter."""
        self.orientations = quat_multiply(self.spins, self.orientations)
        self.orientations /= np.linalg.norm(self.orientations, axis=-1, keepdims=True)

        delta = self.motion.offsets(self.frame)
        delta[:, VERTICAL_AXIS] -= self.fall_speed
        self.positions += delta
        wrap_positions(self.positions, self.half_extents)

        self.frame = (self.frame + 1) % self.motion.period

    def pose_matrices(self) -> np.ndarray:
        """Model matrices T * R * S for every petal.

        Petals are drawn from a [-1, 1] square, stretched along x by the
        picture's aspect ratio.

        Returns:
            (n, 4, 4) float32 array
        """
        n = self.n_petals
        rot = quat_to_matrix(self.orientations)
        scale = np.stack([self.scales * self.aspect_ratios, self.scales, self.scales], axis=-1)
        poses = np.zeros((n, 4, 4), dtype=np.float32)
        poses[:, :3, :3] = rot * scale[:, None, :]
        poses[:, :3, 3] = self.positions
        poses[:, 3, 3] = 1.0
        return poses
