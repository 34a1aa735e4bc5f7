"""Tests for the sum-of-sinusoids petal motion."""

import math

import numpy as np
import pytest

from petals.motion import MotionGenerator, amplitude_caps


def make_generator(n_petals=6, period=100, n_frequencies=5, seed=0):
    return MotionGenerator.random(
        n_petals,
        period=period,
        n_frequencies=n_frequencies,
        low_freq_max_amplitude=0.075,
        high_freq_max_amplitude=0.015,
        rng=np.random.default_rng(seed),
    )


class TestAmplitudeCaps:
    def test_endpoints(self):
        caps = amplitude_caps(5, 0.075, 0.015)
        assert caps[0] == pytest.approx(0.075)
        assert caps[-1] == pytest.approx(0.015)

    def test_linear(self):
        caps = amplitude_caps(5, 1.0, 0.0)
        np.testing.assert_allclose(caps, [1.0, 0.75, 0.5, 0.25, 0.0])

    def test_single_frequency_uses_low_cap(self):
        np.testing.assert_allclose(amplitude_caps(1, 0.075, 0.015), [0.075])


class TestMotionGenerator:
    def test_coefficient_shapes(self):
        gen = make_generator(n_petals=6, n_frequencies=5)
        assert gen.amplitudes.shape == (6, 3, 5)
        assert gen.phases.shape == (6, 3, 5)

    def test_amplitudes_within_caps(self):
        gen = make_generator(n_frequencies=5)
        caps = amplitude_caps(5, 0.075, 0.015)
        assert np.all(gen.amplitudes >= 0.0)
        assert np.all(gen.amplitudes <= caps)

    def test_phases_in_range(self):
        gen = make_generator()
        assert np.all(gen.phases >= 0.0)
        assert np.all(gen.phases < 2 * math.pi)

    def test_deterministic(self):
        """Same coefficients and frame give bit-identical offsets."""
        gen = make_generator()
        a = gen.offset(3, 42, 1)
        b = gen.offset(3, 42, 1)
        assert a == b
        np.testing.assert_array_equal(gen.offsets(42), gen.offsets(42))

    def test_same_seed_same_coefficients(self):
        np.testing.assert_array_equal(make_generator(seed=7).amplitudes, make_generator(seed=7).amplitudes)
        np.testing.assert_array_equal(make_generator(seed=7).phases, make_generator(seed=7).phases)

    def test_periodic(self):
        gen = make_generator(period=100)
        np.testing.assert_array_equal(gen.offsets(7), gen.offsets(107))

    def test_scalar_matches_vectorized(self):
        gen = make_generator()
        offsets = gen.offsets(13)
        for particle in range(6):
            for axis in range(3):
                assert gen.offset(particle, 13, axis) == pytest.approx(offsets[particle, axis])

    def test_single_sinusoid(self):
        amplitudes = np.zeros((1, 3, 2))
        phases = np.zeros((1, 3, 2))
        amplitudes[0, 0, 1] = 2.0  # frequency 2 on x
        gen = MotionGenerator(amplitudes, phases, period=8)
        # sin(2*pi*2*1/8) = sin(pi/2) = 1
        assert gen.offset(0, 1, 0) == pytest.approx(2.0)
        assert gen.offset(0, 1, 1) == 0.0

    def test_no_constant_term(self):
        """Offsets average to zero over one period."""
        gen = make_generator(period=50)
        total = sum(gen.offsets(frame) for frame in range(50))
        np.testing.assert_allclose(total, 0.0, atol=1e-10)

    def test_rejects_mismatched_shapes(self):
        with pytest.raises(ValueError):
            MotionGenerator(np.zeros((2, 3, 4)), np.zeros((2, 3, 5)), period=10)

    def test_rejects_bad_period(self):
        with pytest.raises(ValueError):
            MotionGenerator(np.zeros((2, 3, 4)), np.zeros((2, 3, 4)), period=0)
