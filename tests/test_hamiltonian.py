#! /usr/bin/env python

import doctest
import pickle
import unittest

import numpy as np

from openqdyn import coupling, hamiltonian
from openqdyn.bath import OhmicBath
from openqdyn.errors import ConfigurationError
from openqdyn.hamiltonian import DenseHamiltonian, constant_coefficient
from openqdyn.operators import sigma_x, sigma_z


def load_tests(loader, tests, ignore):
    tests.addTests(doctest.DocTestSuite(hamiltonian))
    tests.addTests(doctest.DocTestSuite(coupling))
    return tests


def _ramp_down(s):
    return 1 - s


def _ramp_up(s):
    return s


class DenseHamiltonianTestCase(unittest.TestCase):
    def setUp(self):
        self.H = DenseHamiltonian([_ramp_down, _ramp_up], [-sigma_x, -sigma_z])

    def test_evaluate(self):
        np.testing.assert_allclose(
            self.H(0.25), 2 * np.pi * (-0.75 * sigma_x - 0.25 * sigma_z)
        )

    def test_extrapolation(self):
        np.testing.assert_allclose(self.H(2.0), 2 * np.pi * (sigma_x - 2 * sigma_z))

    def test_units(self):
        H = DenseHamiltonian([constant_coefficient(1.0)], [sigma_z], unit="ħ")
        np.testing.assert_allclose(H(0.0), sigma_z)
        with self.assertRaises(ConfigurationError):
            DenseHamiltonian([constant_coefficient(1.0)], [sigma_z], unit="eV")

    def test_mismatched_terms(self):
        with self.assertRaises(ConfigurationError):
            DenseHamiltonian([_ramp_up], [sigma_x, sigma_z])
        with self.assertRaises(ConfigurationError):
            DenseHamiltonian([_ramp_up, _ramp_down], [sigma_x, np.eye(3)])
        with self.assertRaises(ConfigurationError):
            DenseHamiltonian([_ramp_up], [np.ones((2, 3))])

    def test_matrices_are_read_only(self):
        with self.assertRaises(ValueError):
            self.H.mats[0][0, 0] = 5

    def test_eigen_decomp(self):
        w, v = self.H.eigen_decomp(1.0)
        np.testing.assert_allclose(w, [-2 * np.pi, 2 * np.pi])
        w1, v1 = self.H.eigen_decomp(1.0, lvl=1)
        self.assertEqual(v1.shape, (2, 1))
        self.assertAlmostEqual(w1[0], -2 * np.pi)

    def test_pickle(self):
        H = DenseHamiltonian([constant_coefficient(0.5)], [sigma_x])
        H2 = pickle.loads(pickle.dumps(H))
        np.testing.assert_allclose(H2(0.3), H(0.3))


class CouplingTestCase(unittest.TestCase):
    def test_constant_couplings(self):
        c = coupling.ConstantCouplings(["X", sigma_z])
        self.assertEqual(len(c), 2)
        np.testing.assert_allclose(c(0.7)[0], 2 * np.pi * sigma_x)

    def test_dimension_mismatch(self):
        with self.assertRaises(ConfigurationError):
            coupling.ConstantCouplings(["X", "XZ"])

    def test_time_dependent_coupling(self):
        c = coupling.TimeDependentCoupling([_ramp_up, _ramp_down], ["X", "Z"], unit="hbar")
        self.assertEqual(len(c), 1)
        np.testing.assert_allclose(c(0.25)[0], 0.25 * sigma_x + 0.75 * sigma_z)

    def test_time_dependent_couplings(self):
        c1 = coupling.TimeDependentCoupling([_ramp_up], ["X"], unit="hbar")
        c2 = coupling.TimeDependentCoupling([_ramp_down], ["Z"], unit="hbar")
        cs = coupling.TimeDependentCouplings(c1, c2)
        self.assertEqual(len(cs), 2)
        np.testing.assert_allclose(cs(1.0)[1], np.zeros((2, 2)))

    def test_interaction_set(self):
        bath = OhmicBath(1e-4, 4, 16)
        inter = coupling.Interaction("Z", bath)
        iset = coupling.InteractionSet(inter, coupling.Interaction(["X", "Y"], bath))
        self.assertEqual(len(iset), 2)
        self.assertIs(iset[0], inter)
        self.assertEqual([len(i.coupling) for i in iset], [1, 2])
        with self.assertRaises(ConfigurationError):
            coupling.InteractionSet(inter, "Z")
