"""Procedural petal motion from a per-petal mixture of sinusoids.

Each petal gets, per axis, a sum of N sinusoids at integer multiples of a
fundamental frequency:

    offset(frame) = sum_{k=1..N} a_k * sin(2*pi*k*frame/period + phi_k)

Amplitudes and phases are drawn once at spawn time and never change, so the
offset is a pure function of the coefficients and the frame counter.
"""

import numpy as np


def amplitude_caps(
    n_frequencies: int,
    low_freq_max_amplitude: float,
    high_freq_max_amplitude: float,
) -> np.ndarray:
    """Per-frequency amplitude caps, linear from the lowest to the highest frequency.

    Returns:
        (n_frequencies,) caps; index 0 is frequency 1
    """
    if n_frequencies == 1:
        return np.array([low_freq_max_amplitude], dtype=np.float64)
    t = np.arange(n_frequencies, dtype=np.float64) / (n_frequencies - 1)
    return low_freq_max_amplitude - (low_freq_max_amplitude - high_freq_max_amplitude) * t


class MotionGenerator:
    """Smooth pseudo-random trajectories for many petals along three axes.

    Coefficients are stored as (n_petals, 3, n_frequencies) arrays. The
    frequency index k runs from 1 to n_frequencies; there is no DC term.
    """

    def __init__(self, amplitudes: np.ndarray, phases: np.ndarray, period: int):
        if amplitudes.shape != phases.shape or amplitudes.ndim != 3 or amplitudes.shape[1] != 3:
            raise ValueError(
                f"amplitudes and phases must both be (n, 3, n_frequencies), "
                f"got {amplitudes.shape} and {phases.shape}"
            )
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        self.amplitudes = amplitudes
        self.phases = phases
        self.period = int(period)
        self.n_frequencies = amplitudes.shape[2]
        self.frequencies = np.arange(1, self.n_frequencies + 1, dtype=np.float64)

    @classmethod
    def random(
        cls,
        n_petals: int,
        period: int,
        n_frequencies: int,
        low_freq_max_amplitude: float,
        high_freq_max_amplitude: float,
        rng: np.random.Generator,
    ) -> "MotionGenerator":
        """Draw spawn-time coefficients for ``n_petals`` petals."""
        caps = amplitude_caps(n_frequencies, low_freq_max_amplitude, high_freq_max_amplitude)
        shape = (n_petals, 3, n_frequencies)
        amplitudes = caps * rng.random(shape)
        phases = 2.0 * np.pi * rng.random(shape)
        return cls(amplitudes, phases, period)

    def _angles(self, frame: int) -> np.ndarray:
        # Reducing modulo the period keeps the angle small and the output exact per frame.
        t = (frame % self.period) / self.period
        return 2.0 * np.pi * self.frequencies * t

    def offset(self, particle: int, frame: int, axis: int) -> float:
        """Offset of one petal along one axis at ``frame``."""
        angles = self._angles(frame) + self.phases[particle, axis]
        return float(np.sum(self.amplitudes[particle, axis] * np.sin(angles)))

    def offsets(self, frame: int) -> np.ndarray:
        """Offsets of every petal along every axis at ``frame``.

        Returns:
            (n_petals, 3) array
        """
        angles = self._angles(frame) + self.phases
        return np.sum(self.amplitudes * np.sin(angles), axis=-1)
