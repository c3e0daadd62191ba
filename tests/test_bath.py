#! /usr/bin/env python

import doctest
import unittest
import warnings

import numpy as np
from scipy import integrate

from openqdyn import bath
from openqdyn.bath import (
    CustomBath,
    GaussianBath,
    HybridBath,
    JumpCorrelatorBath,
    OhmicBath,
    SpectralBath,
    TelegraphEnsembleBath,
    TelegraphRealization,
)
from openqdyn.errors import ApproximationPrecisionWarning, ConfigurationError
from openqdyn.shared import Q_


def load_tests(loader, tests, ignore):
    tests.addTests(doctest.DocTestSuite(bath))
    return tests


class OhmicBathTestCase(unittest.TestCase):
    def setUp(self):
        self.bath = OhmicBath(1e-4, 4, 16)

    def test_quantities(self):
        other = OhmicBath(1e-4, Q_(4, "GHz"), Q_(0.016, "K"))
        self.assertAlmostEqual(other.beta, self.bath.beta)
        self.assertAlmostEqual(other.omega_c, self.bath.omega_c)

    def test_zero_frequency_limit(self):
        self.assertAlmostEqual(
            self.bath.spectral_density(1e-7) / self.bath.spectral_density(0.0),
            1.0,
            places=5,
        )

    def test_detailed_balance(self):
        w = np.array([0.5, 2.0, 10.0])
        np.testing.assert_allclose(
            self.bath.spectral_density(-w),
            np.exp(-self.bath.beta * w) * self.bath.spectral_density(w),
            rtol=1e-10,
        )

    def test_non_negative(self):
        w = np.linspace(-500, 500, 1001)
        self.assertTrue(np.all(self.bath.spectral_density(w) >= 0))

    def test_correlation_matches_spectrum(self):
        for t in (0.0, 0.3, 1.5):
            closed = self.bath.correlation(t)
            numeric = SpectralBath.correlation(self.bath, t)
            np.testing.assert_allclose(closed, numeric, rtol=1e-3)

    def test_correlation_symmetry(self):
        np.testing.assert_allclose(
            self.bath.correlation(-0.7), np.conj(self.bath.correlation(0.7))
        )

    def test_bad_parameters(self):
        with self.assertRaises(ConfigurationError):
            OhmicBath(-1.0, 4, 16)
        with self.assertRaises(ConfigurationError):
            OhmicBath(1e-4, 0.0, 16)

    def test_capabilities(self):
        self.assertTrue(self.bath.supports("lamb_shift"))
        self.assertFalse(self.bath.supports("jump_correlator"))
        with self.assertRaises(ConfigurationError):
            self.bath.jump_correlator(0.0)
        with self.assertRaises(ConfigurationError):
            bath.require(self.bath, "sample_realization", "Stochastic Schrödinger")


class GaussianBathTestCase(unittest.TestCase):
    def setUp(self):
        self.bath = GaussianBath(0.1, 16)

    def test_detailed_balance(self):
        w = np.array([0.1, 0.5, 1.0])
        np.testing.assert_allclose(
            self.bath.spectral_density(-w),
            np.exp(-self.bath.beta * w) * self.bath.spectral_density(w),
        )

    def test_correlation_matches_spectrum(self):
        for t in (0.0, 0.5, 1.0):
            np.testing.assert_allclose(
                self.bath.correlation(t),
                SpectralBath.correlation(self.bath, t),
                rtol=1e-4,
                atol=1e-9,
            )

    def test_lamb_shift_matches_principal_value(self):
        for w in (-0.5, 0.2, 1.3):
            np.testing.assert_allclose(
                self.bath.lamb_shift(w),
                SpectralBath.lamb_shift(self.bath, w),
                rtol=1e-4,
                atol=1e-8,
            )


class CustomBathTestCase(unittest.TestCase):
    def test_capabilities_follow_functions(self):
        b = CustomBath(correlation=lambda t: np.exp(-abs(t)))
        self.assertEqual(b.capabilities, frozenset({"correlation"}))
        with self.assertRaises(ConfigurationError):
            b.spectral_density(0.0)
        with self.assertRaises(ConfigurationError):
            bath.require(b, "spectral_density", "AME")

    def test_numeric_correlation(self):
        b = CustomBath(spectral_density=lambda w: 2 / (1 + w**2))
        self.assertAlmostEqual(b.correlation(1.0).real, np.exp(-1.0), places=6)
        self.assertTrue(b.supports("lamb_shift"))

    def test_needs_a_function(self):
        with self.assertRaises(ConfigurationError):
            CustomBath()


class HybridBathTestCase(unittest.TestCase):
    def setUp(self):
        self.ohmic = OhmicBath(1e-3, 1, 16)
        self.lineshape = GaussianBath(0.05, 16)
        self.bath = HybridBath(self.lineshape, self.ohmic, num=41, lambshift=False)

    def test_grid_values(self):
        w = self.bath.omegas[25]
        self.assertAlmostEqual(
            self.bath.spectral_density(w) / self.bath._convolution(w), 1.0, places=8
        )

    def test_spectrum_non_negative(self):
        w = np.linspace(-2 * self.bath.omega_max, 2 * self.bath.omega_max, 201)
        self.assertTrue(np.all(self.bath.spectral_density(w) >= 0))

    def test_correlation_at_zero(self):
        np.testing.assert_allclose(
            self.bath.correlation(0.0), self.ohmic.correlation(0.0), rtol=1e-12
        )

    def test_needs_gaussian_lineshape(self):
        with self.assertRaises(ConfigurationError):
            HybridBath(self.ohmic, self.ohmic)


class JumpCorrelatorBathTestCase(unittest.TestCase):
    def setUp(self):
        self.ohmic = OhmicBath(1e-3, 1, 16)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ApproximationPrecisionWarning)
            self.bath = JumpCorrelatorBath(self.ohmic, lim=4.0, num=101)

    def test_value_at_zero(self):
        expected, _ = integrate.quad(
            lambda w: np.sqrt(self.ohmic.spectral_density(w)), -np.inf, np.inf
        )
        self.assertAlmostEqual(
            self.bath.jump_correlator(0.0).real, expected / (2 * np.pi), places=6
        )

    def test_flat_extrapolation(self):
        np.testing.assert_allclose(
            self.bath.jump_correlator(10.0), self.bath.jump_correlator(4.0)
        )
        np.testing.assert_allclose(
            self.bath.jump_correlator(-10.0), self.bath.jump_correlator(-4.0)
        )

    def test_forwards_capabilities(self):
        self.assertTrue(self.bath.supports("jump_correlator"))
        self.assertTrue(self.bath.supports("correlation"))
        np.testing.assert_allclose(
            self.bath.correlation(0.2), self.ohmic.correlation(0.2)
        )

    def test_narrow_window_warns(self):
        with self.assertWarns(ApproximationPrecisionWarning):
            JumpCorrelatorBath(self.ohmic, lim=0.05, num=11)


class TelegraphTestCase(unittest.TestCase):
    def setUp(self):
        self.bath = TelegraphEnsembleBath(1.0, 1.0)

    def test_realization_is_right_continuous(self):
        n = TelegraphRealization([1.0], [1.0, -1.0])
        self.assertEqual(n(0.999), 1.0)
        self.assertEqual(n(1.0), -1.0)
        np.testing.assert_array_equal(n(np.array([0.0, 2.0])), [1.0, -1.0])

    def test_realization_values(self):
        n = self.bath.sample_realization(50.0, np.random.default_rng(3))
        self.assertTrue(np.all(np.diff(n.switch_times) > 0))
        self.assertTrue(set(np.unique(n.values)) <= {-1.0, 1.0})

    def test_sample_statistics(self):
        rng = np.random.default_rng(11)
        t = 0.5
        products = []
        for _ in range(4000):
            n = self.bath.sample_realization(1.0, rng)
            products.append(n(0.0) * n(t))
        self.assertAlmostEqual(np.mean(products), np.exp(-t), delta=0.06)

    def test_closed_forms(self):
        b = TelegraphEnsembleBath([0.5, 1.0], [1.0, 3.0])
        self.assertAlmostEqual(b.correlation(0.0), 1.25)
        self.assertAlmostEqual(
            b.spectral_density(2.0), 0.25 * 1 / 5 + 1.0 * 3 / 13
        )

    def test_one_over_f(self):
        b = TelegraphEnsembleBath.one_over_f(0.1, 20, 1e-2, 1e2, rng=5)
        self.assertEqual(len(b.gamma), 20)
        self.assertTrue(np.all((b.gamma >= 1e-2) & (b.gamma <= 1e2)))

    def test_bad_rates(self):
        with self.assertRaises(ConfigurationError):
            TelegraphEnsembleBath(1.0, [1.0, -1.0])


class TimescaleTestCase(unittest.TestCase):
    def test_exponential_correlation(self):
        b = TelegraphEnsembleBath(0.5, 2.0)
        self.assertAlmostEqual(bath.tau_sb(b), 2.0 / 0.25, places=5)
        self.assertAlmostEqual(bath.tau_b(b), 0.5, places=5)
        self.assertAlmostEqual(
            bath.coarse_grain_timescale(b), np.sqrt(8.0 * 0.5 / 5), places=5
        )
