#! /usr/bin/env python

import doctest
import types
import unittest

import numpy as np

from openqdyn import ensemble
from openqdyn.bath import OhmicBath, TelegraphEnsembleBath
from openqdyn.coupling import ConstantCouplings
from openqdyn.ensemble import (
    EnsembleResult,
    EnsembleRunner,
    TrajectoryOutcome,
    solve_ensemble,
)
from openqdyn.errors import ConfigurationError, NumericalNonConvergence
from openqdyn.hamiltonian import DenseHamiltonian, constant_coefficient
from openqdyn.operators import PAULI_VEC, sigma_x, sigma_z
from openqdyn.simulation import EvolutionProblem, solve_stochastic_schrodinger

PLUS = PAULI_VEC["x"][0]
TIMES = [0.5, 1.0]


def load_tests(loader, tests, ignore):
    tests.addTests(doctest.DocTestSuite(ensemble))
    return tests


def noise_problem(u0=PLUS, **kwargs):
    H = DenseHamiltonian([constant_coefficient(0.0)], [sigma_z], unit="hbar")
    return EvolutionProblem(
        H,
        u0,
        1.0,
        coupling=ConstantCouplings(["Z"], unit="hbar"),
        bath=TelegraphEnsembleBath(0.5, [2.0]),
        **kwargs,
    )


def always_fails(problem, rng):
    raise NumericalNonConvergence("diverged", t=0.0)


def singular_eigensystem(problem, rng):
    raise np.linalg.LinAlgError("Eigenvalues did not converge")


def excited_population(state):
    return abs(state[1]) ** 2


class EnsembleRunnerTestCase(unittest.TestCase):
    def test_configuration(self):
        problem = noise_problem()
        with self.assertRaises(ConfigurationError):
            EnsembleRunner(problem, 0)
        with self.assertRaises(ConfigurationError):
            EnsembleRunner(problem, 4, parallel="gpu")
        with self.assertRaises(ConfigurationError):
            EnsembleRunner(problem, 4, method="lindblad")

    def test_seeds(self):
        runner = EnsembleRunner(noise_problem(), 3, seed=11)
        states = [s.generate_state(2).tolist() for s in runner.seeds()]
        again = [s.generate_state(2).tolist() for s in runner.seeds()]
        self.assertEqual(states, again)
        self.assertEqual(len({tuple(s) for s in states}), 3)

    def test_standard_error_shrinks(self):
        problem = noise_problem()
        # 100 times more trajectories, sem about 10 times smaller
        small = solve_ensemble(problem, 20, seed=1).statistics(sigma_x, TIMES)
        large = solve_ensemble(problem, 2000, seed=2).statistics(sigma_x, TIMES)
        self.assertEqual(small.n, 20)
        self.assertEqual(large.n, 2000)
        ratio = small.sem[-1] / large.sem[-1]
        self.assertGreater(ratio, 6)
        self.assertLess(ratio, 16)
        self.assertTrue(np.all(np.abs(large.mean) <= 1))

    def test_thread_pool_is_reproducible(self):
        problem = noise_problem()
        serial = solve_ensemble(problem, 8, seed=3).statistics(sigma_x, TIMES)
        pooled = solve_ensemble(problem, 8, seed=3, parallel="thread", max_workers=3)
        self.assertEqual([o.index for o in pooled], list(range(8)))
        np.testing.assert_allclose(pooled.statistics(sigma_x, TIMES).mean, serial.mean)

    def test_process_pool(self):
        problem = noise_problem()
        serial = solve_ensemble(problem, 4, seed=5).statistics(sigma_x, TIMES)
        pooled = solve_ensemble(problem, 4, seed=5, parallel="process", max_workers=2)
        np.testing.assert_allclose(pooled.statistics(sigma_x, TIMES).mean, serial.mean)

    def test_unpicklable_problem_runs_sequentially(self):
        problem = noise_problem(annealing_parameter=lambda t: t)
        with self.assertLogs("openqdyn.ensemble", level="WARNING"):
            result = solve_ensemble(problem, 3, seed=4, parallel="process")
        self.assertEqual(len(result.trajectories), 3)

    def test_solver_options(self):
        pure = solve_ensemble(noise_problem(), 4, seed=6, abstol=1e-9, reltol=1e-7)
        mixed = solve_ensemble(
            noise_problem(np.full((2, 2), 0.5)), 4, seed=6, abstol=1e-9, reltol=1e-7
        )
        np.testing.assert_allclose(
            mixed.statistics(sigma_x, TIMES).mean,
            pure.statistics(sigma_x, TIMES).mean,
            atol=1e-5,
        )

    def test_callable_method(self):
        result = solve_ensemble(noise_problem(), 3, method=always_fails, seed=0)
        self.assertEqual(len(result.failures), 3)
        self.assertEqual(result.trajectories, [])
        self.assertIsInstance(result[0].error, NumericalNonConvergence)
        with self.assertLogs("openqdyn.ensemble", level="WARNING"):
            with self.assertRaises(ValueError):
                result.statistics(sigma_x, TIMES)

    def test_linear_algebra_failure_is_isolated(self):
        with self.assertLogs("openqdyn.ensemble", level="WARNING"):
            result = solve_ensemble(
                noise_problem(), 3, method=singular_eigensystem, seed=0, parallel="thread"
            )
        self.assertEqual([o.status for o in result], ["Failed"] * 3)
        self.assertIsInstance(result[2].error, np.linalg.LinAlgError)

    def test_quantum_jump_method(self):
        H = DenseHamiltonian([constant_coefficient(1.0)], [-sigma_z], unit="hbar")
        problem = EvolutionProblem(
            H,
            [0.0, 1.0],
            2.0,
            coupling=ConstantCouplings(["X"], unit="hbar"),
            bath=OhmicBath(1e-2, 4, 16),
        )
        result = solve_ensemble(problem, 5, method="ame_trajectory", seed=8)
        stats = result.statistics(excited_population, [2.0])
        self.assertEqual(stats.n, 5)
        self.assertTrue(0 <= stats.mean[0] <= 1)

    def test_repr(self):
        runner = EnsembleRunner(noise_problem(), 2, method=always_fails, parallel="thread")
        self.assertIn("Method: always_fails", repr(runner))
        self.assertIn("Parallel: thread", repr(runner))


class EnsembleResultTestCase(unittest.TestCase):
    def setUp(self):
        self.traj = solve_stochastic_schrodinger(noise_problem(), rng=0)

    def test_excluded_trajectories(self):
        outcomes = [
            TrajectoryOutcome(2, trajectory=types.SimpleNamespace(status="Terminated")),
            TrajectoryOutcome(1, error=NumericalNonConvergence("diverged")),
            TrajectoryOutcome(0, trajectory=self.traj),
        ]
        result = EnsembleResult(outcomes)
        self.assertEqual([o.index for o in result], [0, 1, 2])
        self.assertEqual([o.status for o in result], ["Success", "Failed", "Terminated"])
        with self.assertLogs("openqdyn.ensemble", level="WARNING"):
            stats = result.statistics(sigma_x, TIMES)
        self.assertEqual(stats.excluded, {"Failed": 1, "Terminated": 1})
        self.assertEqual(stats.n, 1)
        self.assertTrue(np.all(np.isnan(stats.sem)))

    def test_observables(self):
        result = EnsembleResult([TrajectoryOutcome(0, trajectory=self.traj)])
        stats = result.statistics(sigma_x, 1.0)
        psi = self.traj(1.0)
        expected = np.vdot(psi, sigma_x @ psi).real / np.vdot(psi, psi).real
        self.assertAlmostEqual(stats.mean[0], expected)
        stats = result.statistics(excited_population, [0.0])
        self.assertAlmostEqual(stats.mean[0], 0.5)


if __name__ == "__main__":
    unittest.main()
