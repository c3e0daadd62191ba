#! /usr/bin/env python

import numpy as np

from openqdyn.bath import TelegraphEnsembleBath
from openqdyn.coupling import ConstantCouplings
from openqdyn.ensemble import solve_ensemble
from openqdyn.hamiltonian import DenseHamiltonian, constant_coefficient
from openqdyn.operators import PAULI_VEC, sigma_x, sigma_z
from openqdyn.shared import setup_logging
from openqdyn.simulation import EvolutionProblem
from openqdyn.utils import is_fast_run


def main(trajectories=1000, tf=5.0):
    # free induction decay under 1/f telegraph noise
    H = DenseHamiltonian([constant_coefficient(0.0)], [sigma_z], unit="hbar")
    bath = TelegraphEnsembleBath.one_over_f(0.1, 10, 1e-2, 10.0, rng=0)
    problem = EvolutionProblem(
        H,
        PAULI_VEC["x"][0],
        tf,
        coupling=ConstantCouplings(["Z"], unit="hbar"),
        bath=bath,
    )
    result = solve_ensemble(
        problem, trajectories, seed=42, parallel="process", progress=True
    )
    stats = result.statistics(sigma_x, np.linspace(0, tf, 11))
    print(result)
    for t, mean, sem in zip(stats.times, stats.mean, stats.sem):
        print(f"t = {t:4.1f} ns  <X> = {mean:+.4f} ± {sem:.4f}")


if __name__ == "__main__":
    setup_logging()
    if is_fast_run():
        main(trajectories=20, tf=1.0)
    else:
        main()
