#! /usr/bin/env python

import numpy as np

from openqdyn.bath import OhmicBath
from openqdyn.callbacks import InstPulseCallback
from openqdyn.coupling import ConstantCouplings, Interaction, InteractionSet
from openqdyn.hamiltonian import DenseHamiltonian, constant_coefficient
from openqdyn.operators import PAULI_VEC, expectation, sigma_x, sigma_z
from openqdyn.shared import setup_logging
from openqdyn.simulation import (
    EvolutionProblem,
    UnitaryCache,
    solve_redfield,
    solve_unitary,
)
from openqdyn.utils import is_fast_run

TOL = dict(abstol=1e-6, reltol=1e-6)


def interactions():
    # fast transverse noise and slow longitudinal noise
    x_noise = Interaction(ConstantCouplings(["X"], unit="hbar"), OhmicBath(1e-4, 4, 16))
    z_noise = Interaction(ConstantCouplings(["Z"], unit="hbar"), OhmicBath(1e-4, 0.1, 16))
    return {
        "X": InteractionSet(x_noise),
        "Z": InteractionSet(z_noise),
        "X+Z": InteractionSet(x_noise, z_noise),
    }


def run(H, tf, callbacks, num):
    problem = EvolutionProblem(H, PAULI_VEC["x"][0], tf, callbacks=callbacks)
    pulses = [cb.propagator_pulses() for cb in callbacks]
    U = UnitaryCache(solve_unitary(problem, callbacks=pulses, reltol=1e-6), inplace=True)
    times = np.linspace(0, tf, num)
    results = {}
    for name, interaction_set in interactions().items():
        problem = EvolutionProblem(
            H, PAULI_VEC["x"][0], tf, interactions=interaction_set, callbacks=callbacks
        )
        traj = solve_redfield(problem, unitary=U, **TOL)
        results[name] = [expectation(sigma_x, traj(t)).real for t in times]
    return times, results


def show(title, times, results, every):
    print(title)
    print("  t (ns)" + "".join(f"{name:>10}" for name in results))
    for k in range(0, len(times), every):
        row = "".join(f"{results[name][k]:+10.4f}" for name in results)
        print(f"{times[k]:8.2f}{row}")


def main(tf=10.0, num=200):
    H = DenseHamiltonian([constant_coefficient(1.0)], [-sigma_z], unit="hbar")
    times, free = run(H, tf, [], num)
    show("<X> without pulse", times, free, num // 10)
    # σx pulse halfway through, applied to both ρ and U
    pulse = InstPulseCallback.from_operators([0.5 * tf], sigma_x)
    times, echo = run(H, tf, [pulse], num)
    show("<X> with a pulse at tf/2", times, echo, num // 10)
    for name in free:
        print(f"{name:>4}: final <X> {free[name][-1]:+.4f} -> {echo[name][-1]:+.4f}")


if __name__ == "__main__":
    setup_logging()
    if is_fast_run():
        main(tf=2.0, num=20)
    else:
        main()
