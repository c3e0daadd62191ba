#! /usr/bin/env python

import numpy as np

from openqdyn.bath import OhmicBath
from openqdyn.coupling import ConstantCouplings
from openqdyn.ensemble import solve_ensemble
from openqdyn.hamiltonian import DenseHamiltonian, constant_coefficient
from openqdyn.operators import sigma_z
from openqdyn.shared import setup_logging
from openqdyn.simulation import EvolutionProblem, solve_ame
from openqdyn.utils import is_fast_run


def ground_population(state):
    return abs(state[0]) ** 2


def main(tf=40.0, trajectories=200):
    H = DenseHamiltonian([constant_coefficient(1.0)], [-sigma_z], unit="hbar")
    bath = OhmicBath(1e-2, 4, 16)
    problem = EvolutionProblem(
        H,
        np.array([0, 1]),
        tf,
        coupling=ConstantCouplings(["X"], unit="hbar"),
        bath=bath,
    )
    times = np.linspace(0, tf, 9)
    rho = solve_ame(problem, abstol=1e-8, reltol=1e-6)
    jumps = solve_ensemble(
        problem, trajectories, method="ame_trajectory", seed=1, parallel="thread"
    )
    stats = jumps.statistics(ground_population, times)
    print(f"Gibbs ground population: {1 / (1 + np.exp(-2 * bath.beta)):.4f}")
    for t, mean, sem in zip(times, stats.mean, stats.sem):
        print(
            f"t = {t:5.1f} ns  AME: {rho(t)[0, 0].real:.4f}  "
            f"jumps: {mean:.4f} ± {sem:.4f}"
        )


if __name__ == "__main__":
    setup_logging()
    if is_fast_run():
        main(tf=4.0, trajectories=10)
    else:
        main()
