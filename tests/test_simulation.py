#! /usr/bin/env python

import doctest
import unittest

import numpy as np
import scipy as sp

from openqdyn import simulation
from openqdyn.bath import OhmicBath, TelegraphEnsembleBath, TelegraphRealization
from openqdyn.callbacks import InstPulseCallback, PositivityCallback
from openqdyn.coupling import ConstantCouplings, Interaction, InteractionSet
from openqdyn.errors import ConfigurationError
from openqdyn.hamiltonian import DenseHamiltonian, constant_coefficient
from openqdyn.integration import IntegratorOptions
from openqdyn.operators import PAULI_VEC, expectation, sigma_x, sigma_z
from openqdyn.simulation import (
    EvolutionProblem,
    UnitaryCache,
    solve_redfield,
    solve_schrodinger,
    solve_stochastic_schrodinger,
    solve_unitary,
    solve_von_neumann,
)

TIGHT = dict(abstol=1e-9, reltol=1e-7)
PLUS = PAULI_VEC["x"][0]


def load_tests(loader, tests, ignore):
    tests.addTests(doctest.DocTestSuite(simulation))
    return tests


def linear(s):
    return s


def flip(state, index):
    if state.ndim == 2:
        return sigma_x @ state @ sigma_x
    return sigma_x @ state


def rabi_problem(tf=2.0, **kwargs):
    H = DenseHamiltonian([constant_coefficient(1.0)], [sigma_x], unit="hbar")
    return EvolutionProblem(H, [1, 0], tf, **kwargs)


def noise_problem(u0=PLUS, tf=1.0):
    H = DenseHamiltonian([constant_coefficient(0.0)], [sigma_z], unit="hbar")
    return EvolutionProblem(
        H,
        u0,
        tf,
        coupling=ConstantCouplings(["Z"], unit="hbar"),
        bath=TelegraphEnsembleBath(0.5, [2.0]),
    )


class EvolutionProblemTestCase(unittest.TestCase):
    def setUp(self):
        self.H = DenseHamiltonian([constant_coefficient(1.0)], [sigma_x])

    def test_nonpositive_final_time(self):
        with self.assertRaises(ConfigurationError):
            EvolutionProblem(self.H, [1, 0], 0.0)

    def test_state_shape(self):
        with self.assertRaises(ConfigurationError):
            EvolutionProblem(self.H, [1, 0, 0], 1.0)
        with self.assertRaises(ConfigurationError):
            EvolutionProblem(self.H, np.eye(3), 1.0)

    def test_initial_state_is_frozen(self):
        u0 = np.array([1.0, 0.0])
        problem = EvolutionProblem(self.H, u0, 1.0)
        u0[0] = 0.0
        self.assertEqual(problem.u0[0], 1.0)
        with self.assertRaises(ValueError):
            problem.u0[0] = 2.0

    def test_initial_density(self):
        problem = EvolutionProblem(self.H, PLUS, 1.0)
        self.assertTrue(problem.is_pure)
        np.testing.assert_allclose(problem.initial_density, np.full((2, 2), 0.5))

    def test_coupling_needs_bath(self):
        with self.assertRaises(ConfigurationError):
            EvolutionProblem(self.H, [1, 0], 1.0, coupling=ConstantCouplings(["Z"]))

    def test_interactions_exclusive(self):
        bath = OhmicBath(1e-4, 4, 16)
        inter = InteractionSet(Interaction(ConstantCouplings(["Z"]), bath))
        with self.assertRaises(ConfigurationError):
            EvolutionProblem(
                self.H,
                [1, 0],
                1.0,
                coupling=ConstantCouplings(["Z"]),
                bath=bath,
                interactions=inter,
            )
        problem = EvolutionProblem(self.H, [1, 0], 1.0, interactions=inter[0])
        self.assertEqual(len(problem.interactions), 1)

    def test_coupling_dimension(self):
        with self.assertRaises(ConfigurationError):
            EvolutionProblem(
                self.H,
                [1, 0],
                1.0,
                coupling=ConstantCouplings(["ZZ"]),
                bath=OhmicBath(1e-4, 4, 16),
            )

    def test_open_system_needs_interactions(self):
        with self.assertRaises(ConfigurationError):
            solve_redfield(EvolutionProblem(self.H, [1, 0], 1.0), unitary=lambda t: np.eye(2))

    def test_default_schedule(self):
        problem = EvolutionProblem(self.H, [1, 0], 4.0)
        self.assertAlmostEqual(problem.annealing_parameter(1.0), 0.25)


class ClosedSystemTestCase(unittest.TestCase):
    def test_schrodinger_rabi(self):
        traj = solve_schrodinger(rabi_problem(), **TIGHT)
        for t in [0.0, 0.7, 1.3, 2.0]:
            np.testing.assert_allclose(
                traj(t), [np.cos(t), -1j * np.sin(t)], atol=1e-5
            )

    def test_schrodinger_rejects_density_matrix(self):
        H = DenseHamiltonian([constant_coefficient(1.0)], [sigma_x])
        with self.assertRaises(ConfigurationError):
            solve_schrodinger(EvolutionProblem(H, np.eye(2) / 2, 1.0))

    def test_options_or_keywords(self):
        with self.assertRaises(ConfigurationError):
            solve_schrodinger(rabi_problem(), options=IntegratorOptions(), alg="RK23")

    def test_implicit_algorithm(self):
        traj = solve_schrodinger(rabi_problem(), alg="BDF", **TIGHT)
        np.testing.assert_allclose(traj(2.0), [np.cos(2.0), -1j * np.sin(2.0)], atol=1e-4)

    def test_saveat(self):
        traj = solve_schrodinger(rabi_problem(), saveat=[0.0, 0.5, 1.0])
        self.assertEqual(len(traj.u), 3)
        self.assertEqual(traj.u[0].shape, (2,))

    def test_von_neumann_matches_schrodinger(self):
        problem = rabi_problem()
        psi = solve_schrodinger(problem, **TIGHT)
        for vectorize in (False, True):
            with self.subTest(vectorize=vectorize):
                rho = solve_von_neumann(problem, vectorize=vectorize, **TIGHT)
                for t in [0.4, 1.1, 2.0]:
                    state = psi(t)
                    np.testing.assert_allclose(
                        rho(t), np.outer(state, state.conj()), atol=1e-5
                    )

    def test_von_neumann_implicit(self):
        problem = rabi_problem()
        for vectorize in (False, True):
            with self.subTest(vectorize=vectorize):
                rho = solve_von_neumann(problem, vectorize=vectorize, alg="Radau", **TIGHT)
                self.assertAlmostEqual(rho(2.0)[0, 0].real, np.cos(2.0) ** 2, places=4)

    def test_unitary(self):
        problem = rabi_problem()
        U = solve_unitary(problem)
        for t in [0.5, 2.0]:
            np.testing.assert_allclose(U(t), sp.linalg.expm(-1j * t * sigma_x), atol=1e-6)

    def test_annealing_schedule(self):
        # H(s) = s σz with s = t/tf, accumulated phase tf/2
        H = DenseHamiltonian([linear], [sigma_z], unit="hbar")
        tf = 1.5
        traj = solve_schrodinger(EvolutionProblem(H, PLUS, tf), **TIGHT)
        self.assertAlmostEqual(expectation(sigma_x, traj(tf)).real, np.cos(tf), places=5)
        traj = solve_schrodinger(
            EvolutionProblem(H, PLUS, tf, annealing_parameter=lambda t: 1.0), **TIGHT
        )
        self.assertAlmostEqual(
            expectation(sigma_x, traj(tf)).real, np.cos(2 * tf), places=5
        )

    def test_unit_h(self):
        H = DenseHamiltonian([constant_coefficient(1.0)], [sigma_x], unit="h")
        traj = solve_schrodinger(EvolutionProblem(H, [1, 0], 0.25), **TIGHT)
        # 2π · 0.25 = π/2 rotation
        self.assertAlmostEqual(abs(traj(0.25)[1]) ** 2, 1.0, places=5)

    def test_spin_echo(self):
        H = DenseHamiltonian([constant_coefficient(1.0)], [sigma_z], unit="hbar")
        tf = 2.0
        for u0 in (PLUS, np.full((2, 2), 0.5)):
            with self.subTest(pure=np.ndim(u0) == 1):
                problem = EvolutionProblem(
                    H, u0, tf, callbacks=[InstPulseCallback([tf / 2], flip)]
                )
                if problem.is_pure:
                    traj = solve_schrodinger(problem, **TIGHT)
                else:
                    traj = solve_von_neumann(problem, **TIGHT)
                self.assertAlmostEqual(expectation(sigma_x, traj(tf)).real, 1.0, places=5)
                self.assertNotAlmostEqual(
                    expectation(sigma_x, traj(tf / 2)).real, 1.0, places=2
                )

    def test_positivity_needs_density_matrix(self):
        problem = rabi_problem(callbacks=[PositivityCallback(1e-2)])
        with self.assertRaises(ConfigurationError):
            solve_schrodinger(problem)
        traj = solve_von_neumann(problem)
        self.assertTrue(traj.success)


class UnitaryCacheTestCase(unittest.TestCase):
    def test_trajectory_source(self):
        U = solve_unitary(rabi_problem())
        cache = UnitaryCache(U)
        np.testing.assert_allclose(cache(1.0), U(1.0))
        out = np.empty((2, 2), dtype=complex)
        self.assertIs(cache.evaluate(1.0, out), out)
        np.testing.assert_allclose(out, U(1.0))

    def test_inplace_source(self):
        def source(out, t):
            out[...] = sp.linalg.expm(-1j * t * sigma_x)

        with self.assertRaises(ConfigurationError):
            UnitaryCache(source, inplace=True)
        cache = UnitaryCache(source, inplace=True, dimension=2)
        U1 = cache(0.5)
        U2 = cache(1.0)
        self.assertIsNot(U1, U2)
        np.testing.assert_allclose(U1, sp.linalg.expm(-0.5j * sigma_x))

    def test_not_callable(self):
        with self.assertRaises(ConfigurationError):
            UnitaryCache(np.eye(2))


class StochasticSchrodingerTestCase(unittest.TestCase):
    def test_given_realization(self):
        # n(t) = +1 then -1: the phase winds up and back
        noise = TelegraphRealization([0.5], [1.0, -1.0])
        for u0 in (PLUS, np.full((2, 2), 0.5)):
            with self.subTest(pure=np.ndim(u0) == 1):
                traj = solve_stochastic_schrodinger(
                    noise_problem(u0), realizations=[noise], **TIGHT
                )
                self.assertAlmostEqual(
                    expectation(sigma_x, traj(0.5)).real, np.cos(1.0), places=5
                )
                self.assertAlmostEqual(expectation(sigma_x, traj(1.0)).real, 1.0, places=5)
                self.assertIn(0.5, traj.t)

    def test_switch_at_segment_end(self):
        noise = TelegraphRealization([0.25, 0.5], [1.0, 0.0, 1.0])
        traj = solve_stochastic_schrodinger(
            noise_problem(), realizations=[noise], **TIGHT
        )
        # phase 0.25 + 0.5
        self.assertAlmostEqual(expectation(sigma_x, traj(1.0)).real, np.cos(1.5), places=5)

    def test_sampled_realizations(self):
        problem = noise_problem()
        a = solve_stochastic_schrodinger(problem, rng=7, **TIGHT)
        b = solve_stochastic_schrodinger(problem, rng=7, **TIGHT)
        np.testing.assert_allclose(a(1.0), b(1.0))
        self.assertAlmostEqual(np.linalg.norm(a(1.0)), 1.0, places=3)

    def test_realization_count(self):
        noise = TelegraphRealization([], [1.0])
        with self.assertRaises(ConfigurationError):
            solve_stochastic_schrodinger(noise_problem(), realizations=[noise, noise])

    def test_bath_without_sampling(self):
        H = DenseHamiltonian([constant_coefficient(1.0)], [sigma_z])
        problem = EvolutionProblem(
            H, PLUS, 1.0, coupling=ConstantCouplings(["Z"]), bath=OhmicBath(1e-4, 4, 16)
        )
        with self.assertRaises(ConfigurationError):
            solve_stochastic_schrodinger(problem)

    def test_options_not_mutated(self):
        opts = IntegratorOptions(tstops=[0.3])
        noise = TelegraphRealization([0.5], [1.0, -1.0])
        solve_stochastic_schrodinger(noise_problem(), realizations=[noise], options=opts)
        np.testing.assert_array_equal(opts.tstops, [0.3])


if __name__ == "__main__":
    unittest.main()
