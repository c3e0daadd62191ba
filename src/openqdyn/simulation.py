#! /usr/bin/env python
"""
Evolution problems and the equation integrators.

An `EvolutionProblem` bundles a `DenseHamiltonian`, an initial state (a
state vector or a density matrix), the final time ``tf`` (ns), the
interactions with the environment and the callbacks. The integrators map
a problem to a `Trajectory`:

Closed systems:
        - `solve_schrodinger`: dψ/dt = -iH(s)ψ.
        - `solve_von_neumann`: dρ/dt = -i[H(s), ρ], optionally on vec(ρ)
          with the Liouvillian.
        - `solve_unitary`: dU/dt = -iH(s)U, U(0) = I.

Open systems:
        - `solve_redfield`: time-convolutionless Redfield equation.
        - `solve_cgme`: coarse-grained master equation.
        - `solve_ule`: universal Lindblad equation.
        - `solve_ame`: adiabatic master equation.

Trajectories:
        - `solve_stochastic_schrodinger`: one realisation of classical
          telegraph noise added to the Hamiltonian.
        - `solve_ame_trajectory`: quantum-jump unravelling of the AME.

Integration happens in physical time ``t ∈ [0, tf]``; the Hamiltonian and
the couplings are evaluated at the annealing parameter ``s(t)``
(``t/tf`` by default).

Every integrator accepts an `IntegratorOptions` instance via `options`
or its fields as keyword arguments, e.g.
``solve_schrodinger(problem, alg="Radau", abstol=1e-8)``.
"""

import copy
import functools
import logging

import numpy as np

from . import bath as baths
from .callbacks import InstPulseCallback
from .coupling import Interaction, InteractionSet, as_coupling
from .errors import ConfigurationError
from .hamiltonian import DenseHamiltonian
from .integration import IntegratorOptions, Trajectory, integrate
from .operators import liouvillian
from .relaxation import (
    CGGenerator,
    DaviesGenerator,
    QuantumJumpCallback,
    RedfieldGenerator,
    ULEGenerator,
)

logger = logging.getLogger(__name__)


def _linear_schedule(tf, t):
    return t / tf


class EvolutionProblem:
    """Everything needed to integrate one evolution.

    Args:
        hamiltonian (DenseHamiltonian): System Hamiltonian.
        u0 (np.ndarray): Initial state vector or density matrix.
        tf (float): Final time (ns).
        coupling: Coupling operators (see `as_coupling`), used together
            with `bath`.
        bath (BathBase): Bath of `coupling`.
        interactions (InteractionSet): Alternative to `coupling`/`bath`
            for several baths.
        callbacks (list): Pulses and continuous callbacks.
        annealing_parameter (callable): ``s(t)``, ``t/tf`` if `None`.

    >>> from openqdyn.hamiltonian import constant_coefficient
    >>> from openqdyn.operators import sigma_x
    >>> H = DenseHamiltonian([constant_coefficient(1.0)], [sigma_x])
    >>> EvolutionProblem(H, np.array([1, 0]), tf=2.0)
    Dimension: 2
    Final time (ns): 2.0
    Initial state: vector
    Interactions: 0
    Callbacks: 0
    """

    def __init__(
        self,
        hamiltonian: DenseHamiltonian,
        u0,
        tf: float,
        coupling=None,
        bath=None,
        interactions=None,
        callbacks=(),
        annealing_parameter=None,
    ):
        if tf <= 0:
            raise ConfigurationError(f"Final time must be positive, got {tf}.")
        d = hamiltonian.dimension
        u0 = np.array(u0, dtype=complex)
        if u0.shape not in ((d,), (d, d)):
            raise ConfigurationError(
                f"Initial state of shape {u0.shape} does not match the "
                f"Hamiltonian dimension {d}."
            )
        u0.setflags(write=False)
        if interactions is not None and (coupling is not None or bath is not None):
            raise ConfigurationError("Give either `interactions` or `coupling` and `bath`.")
        if (coupling is None) != (bath is None):
            raise ConfigurationError("`coupling` and `bath` must be given together.")
        if coupling is not None:
            interactions = InteractionSet(Interaction(as_coupling(coupling), bath))
        elif isinstance(interactions, Interaction):
            interactions = InteractionSet(interactions)
        if interactions is not None:
            for inter in interactions:
                if inter.coupling.dimension != d:
                    raise ConfigurationError(
                        f"Coupling dimension {inter.coupling.dimension} does not "
                        f"match the Hamiltonian dimension {d}."
                    )
        self.hamiltonian = hamiltonian
        self.u0 = u0
        self.tf = float(tf)
        self.interactions = interactions
        self.callbacks = tuple(callbacks or ())
        if annealing_parameter is None:
            annealing_parameter = functools.partial(_linear_schedule, self.tf)
        self.annealing_parameter = annealing_parameter

    @property
    def dimension(self) -> int:
        return self.hamiltonian.dimension

    @property
    def is_pure(self) -> bool:
        """`True` if the initial state is a state vector."""
        return self.u0.ndim == 1

    @property
    def initial_density(self) -> np.ndarray:
        """Initial state as a density matrix."""
        if self.is_pure:
            return np.outer(self.u0, self.u0.conj())
        return np.array(self.u0)

    def require_interactions(self, formalism: str) -> InteractionSet:
        if self.interactions is None:
            raise ConfigurationError(f"{formalism} needs a coupling and a bath.")
        return self.interactions

    def hamiltonian_at(self, t: float) -> np.ndarray:
        """H(s(t)) in rad/ns."""
        return self.hamiltonian(self.annealing_parameter(t))

    def __repr__(self):
        lines = [
            f"Dimension: {self.dimension}",
            f"Final time (ns): {self.tf}",
            f"Initial state: {'vector' if self.is_pure else 'density matrix'}",
            f"Interactions: {0 if self.interactions is None else len(self.interactions)}",
            f"Callbacks: {len(self.callbacks)}",
        ]
        return "\n".join(lines)


class UnitaryCache:
    """Closed-system propagator U(t) shared by the open-system integrators.

    Args:
        source: A `Trajectory` returned by `solve_unitary` or a callable.
            A callable is ``source(t) -> U``, or ``source(out, t)`` writing
            U(t) into `out` when ``inplace=True``.
        inplace (bool): Evaluate into caller-provided buffers. The Redfield,
            CGME and ULE generators then reuse one preallocated buffer for
            the propagator at the quadrature nodes.
        dimension (int): Matrix dimension. Required for an in-place
            callable, taken from the trajectory otherwise.

    >>> cache = UnitaryCache(lambda t: np.eye(2))
    >>> cache(0.3).shape
    (2, 2)
    >>> buf = np.empty((2, 2), dtype=complex)
    >>> cache = UnitaryCache(lambda out, t: np.copyto(out, np.eye(2)), True, 2)
    >>> cache(0.3, out=buf) is buf
    True
    """

    def __init__(self, source, inplace: bool = False, dimension: int = None):
        if not callable(source):
            raise ConfigurationError("A unitary source must be callable.")
        if dimension is None and isinstance(source, Trajectory):
            dimension = source.shape[0]
        if inplace and dimension is None:
            raise ConfigurationError("An in-place unitary needs its dimension.")
        self.source = source
        self.inplace = inplace
        self.dimension = dimension

    def evaluate(self, t: float, out=None) -> np.ndarray:
        """U(t), written into `out` if given."""
        if self.inplace:
            if out is None:
                out = np.empty((self.dimension, self.dimension), dtype=complex)
            if isinstance(self.source, Trajectory):
                out[...] = self.source(t)
            else:
                self.source(out, t)
            return out
        U = self.source(t)
        if out is not None:
            out[...] = U
            return out
        return U

    __call__ = evaluate

    def __repr__(self):
        kind = "Trajectory" if isinstance(self.source, Trajectory) else "callable"
        return f"UnitaryCache({kind}, inplace={self.inplace})"


def _options(options, kwargs, **defaults):
    if options is not None:
        if kwargs:
            raise ConfigurationError("Pass either `options` or keyword options.")
        return options
    return IntegratorOptions(**{**defaults, **kwargs})


def _propagator_pulses(problem):
    return [
        cb.propagator_pulses()
        for cb in problem.callbacks
        if isinstance(cb, InstPulseCallback)
    ]


def _as_unitary(problem, unitary):
    if unitary is None:
        pulses = _propagator_pulses(problem)
        logger.debug("Computing the unitary propagator with %d pulse(s)", len(pulses))
        return UnitaryCache(solve_unitary(problem, callbacks=pulses), inplace=True)
    if isinstance(unitary, UnitaryCache):
        return unitary
    return UnitaryCache(unitary)


def solve_schrodinger(problem: EvolutionProblem, options=None, **kwargs) -> Trajectory:
    """Integrate the Schrödinger equation of a pure state.

    Args:
        problem (EvolutionProblem): Problem with a state vector.
        options (IntegratorOptions): Integration options.

    Returns:
        Trajectory: ψ(t).
    """
    if not problem.is_pure:
        raise ConfigurationError("The Schrödinger equation needs a state vector.")
    options = _options(options, kwargs)

    def fun(t, y):
        return -1j * (problem.hamiltonian_at(t) @ y)

    def jac(t, y):
        return -1j * problem.hamiltonian_at(t)

    return integrate(
        fun, problem.u0, problem.tf, options, problem.callbacks, jac=jac, label="Schrödinger"
    )


def solve_von_neumann(
    problem: EvolutionProblem, vectorize: bool = False, options=None, **kwargs
) -> Trajectory:
    """Integrate the von Neumann equation.

    Args:
        problem (EvolutionProblem): A pure initial state is turned into a
            density matrix.
        vectorize (bool): Integrate vec(ρ) (column stacking) with the
            Liouvillian -i(I⊗H - Hᵀ⊗I).
        options (IntegratorOptions): Integration options.

    Returns:
        Trajectory: ρ(t).
    """
    options = _options(options, kwargs)
    rho0 = problem.initial_density
    d = problem.dimension
    if vectorize:

        def fun(t, y):
            return liouvillian(problem.hamiltonian_at(t)) @ y

        def jac(t, y):
            return liouvillian(problem.hamiltonian_at(t))

        order = "F"
    else:
        I = np.eye(d)

        def fun(t, y):
            H = problem.hamiltonian_at(t)
            rho = y.reshape(d, d)
            return (-1j * (H @ rho - rho @ H)).ravel()

        def jac(t, y):
            H = problem.hamiltonian_at(t)
            return -1j * (np.kron(H, I) - np.kron(I, H.T))

        order = "C"
    return integrate(
        fun,
        rho0,
        problem.tf,
        options,
        problem.callbacks,
        jac=jac,
        order=order,
        label="von Neumann",
    )


def solve_unitary(
    problem: EvolutionProblem, callbacks=(), options=None, **kwargs
) -> Trajectory:
    """Integrate the propagator dU/dt = -iH(s)U from U(0) = I.

    The callbacks of the problem act on states and are ignored here.

    Args:
        problem (EvolutionProblem): The problem.
        callbacks (list): Pulses acting on U, for example
            ``pulse.propagator_pulses()`` for U → PU.
        options (IntegratorOptions): Integration options.

    Returns:
        Trajectory: U(t), right-continuous at the pulses.
    """
    options = _options(options, kwargs, abstol=1e-8, reltol=1e-6)
    d = problem.dimension
    I = np.eye(d)

    def fun(t, y):
        return (-1j * (problem.hamiltonian_at(t) @ y.reshape(d, d))).ravel()

    def jac(t, y):
        return -1j * np.kron(problem.hamiltonian_at(t), I)

    return integrate(fun, I, problem.tf, options, callbacks, jac=jac, label="unitary")


def _solve_master(problem, generators, unitary, options, label):
    for gen in generators:
        gen.init(problem, unitary)
    d = problem.dimension

    def fun(t, y):
        H = problem.hamiltonian_at(t)
        rho = y.reshape(d, d)
        du = -1j * (H @ rho - rho @ H)
        for gen in generators:
            du += gen.apply(t, rho)
        return du.ravel()

    logger.debug("%s with %d generator(s)", label, len(generators))
    return integrate(
        fun, problem.initial_density, problem.tf, options, problem.callbacks, label=label
    )


def solve_redfield(
    problem: EvolutionProblem,
    unitary=None,
    Ta: float = None,
    int_atol: float = 1e-8,
    int_rtol: float = 1e-6,
    options=None,
    **kwargs,
) -> Trajectory:
    """Integrate the Redfield equation.

    Args:
        problem (EvolutionProblem): Problem with interactions whose baths
            provide ``correlation``.
        unitary: `UnitaryCache`, unitary `Trajectory` or callable U(t);
            computed with `solve_unitary` if `None`. Pulses of the problem
            built with `InstPulseCallback.from_operators` are then applied
            to U as well; other pulses need an explicit `unitary`.
        Ta (float): Memory cutoff (ns), full memory if `None`.
        int_atol (float): Absolute tolerance of the memory integral.
        int_rtol (float): Relative tolerance of the memory integral.
        options (IntegratorOptions): Integration options.

    Returns:
        Trajectory: ρ(t). Positivity is not guaranteed; attach a
        `PositivityCallback` to stop at the first violation.
    """
    options = _options(options, kwargs)
    generators = [
        RedfieldGenerator(i.coupling, i.bath, Ta, int_atol, int_rtol)
        for i in problem.require_interactions("Redfield")
    ]
    return _solve_master(problem, generators, _as_unitary(problem, unitary), options, "Redfield")


def solve_cgme(
    problem: EvolutionProblem,
    unitary=None,
    Ta: float = None,
    int_atol: float = 1e-6,
    int_rtol: float = 1e-4,
    options=None,
    **kwargs,
) -> Trajectory:
    """Integrate the coarse-grained master equation.

    Args:
        problem (EvolutionProblem): Problem with interactions whose baths
            provide ``correlation``.
        unitary: Closed-system propagator, computed if `None`.
        Ta (float): Coarse-graining window, `coarse_grain_timescale` of
            each bath if `None`.
        int_atol (float): Absolute tolerance of the window integrals.
        int_rtol (float): Relative tolerance of the window integrals.
        options (IntegratorOptions): Integration options.
    """
    options = _options(options, kwargs)
    generators = [
        CGGenerator(i.coupling, i.bath, Ta, int_atol, int_rtol)
        for i in problem.require_interactions("CGME")
    ]
    return _solve_master(problem, generators, _as_unitary(problem, unitary), options, "CGME")


def solve_ule(
    problem: EvolutionProblem,
    unitary=None,
    Ta: float = None,
    int_atol: float = 1e-8,
    int_rtol: float = 1e-6,
    options=None,
    **kwargs,
) -> Trajectory:
    """Integrate the universal Lindblad equation.

    Args:
        problem (EvolutionProblem): Problem with interactions whose baths
            provide ``jump_correlator`` (see `JumpCorrelatorBath`).
        unitary: Closed-system propagator, computed if `None`.
        Ta (float): Half width of the jump operator window.
        int_atol (float): Absolute tolerance of the window integral.
        int_rtol (float): Relative tolerance of the window integral.
        options (IntegratorOptions): Integration options.
    """
    options = _options(options, kwargs)
    generators = [
        ULEGenerator(i.coupling, i.bath, Ta, int_atol, int_rtol)
        for i in problem.require_interactions("ULE")
    ]
    return _solve_master(problem, generators, _as_unitary(problem, unitary), options, "ULE")


def solve_ame(
    problem: EvolutionProblem,
    lvl: int = None,
    lambshift: bool = True,
    options=None,
    **kwargs,
) -> Trajectory:
    """Integrate the adiabatic master equation.

    Args:
        problem (EvolutionProblem): Problem with interactions whose baths
            provide ``spectral_density`` (and ``lamb_shift``).
        lvl (int): Number of instantaneous levels kept.
        lambshift (bool): Include the Lamb shift Hamiltonian.
        options (IntegratorOptions): Integration options.
    """
    options = _options(options, kwargs)
    generators = [
        DaviesGenerator(i.coupling, i.bath, lvl, lambshift)
        for i in problem.require_interactions("AME")
    ]
    return _solve_master(problem, generators, None, options, "AME")


def solve_stochastic_schrodinger(
    problem: EvolutionProblem, realizations=None, rng=None, options=None, **kwargs
) -> Trajectory:
    """One trajectory under classical noise, H(s) + Σᵢ nᵢ(t) Sᵢ(s).

    Every coupling operator gets its own noise realisation. The integrator
    lands on every switching time so the noise is constant on each
    segment. Density-matrix initial states follow the von Neumann
    equation with the same noisy Hamiltonian.

    Args:
        problem (EvolutionProblem): Problem with baths providing
            ``sample_realization``.
        realizations (list): Noise realisations, one per coupling operator
            in interaction order; sampled from the baths if `None`.
        rng (np.random.Generator or int): Random generator or seed used
            for sampling.
        options (IntegratorOptions): Integration options.
    """
    options = copy.copy(_options(options, kwargs))
    rng = np.random.default_rng(rng)
    operators = []
    for inter in problem.require_interactions("Stochastic Schrödinger"):
        baths.require(inter.bath, "sample_realization", "Stochastic Schrödinger")
        operators += [(inter, i) for i in range(len(inter.coupling))]
    if realizations is None:
        realizations = [inter.bath.sample_realization(problem.tf, rng) for inter, _ in operators]
    elif len(realizations) != len(operators):
        raise ConfigurationError(
            f"Got {len(realizations)} realisations for {len(operators)} coupling operators."
        )
    switches = [getattr(n, "switch_times", ()) for n in realizations]
    options.tstops = np.unique(np.concatenate([options.tstops, *switches]))
    noise = np.zeros(len(realizations))

    def hook(t_start, t_end):
        noise[:] = [n(t_start) for n in realizations]

    def hamiltonian(t):
        s = problem.annealing_parameter(t)
        H = problem.hamiltonian(s)
        for value, (inter, i) in zip(noise, operators):
            H = H + value * inter.coupling(s)[i]
        return H

    if problem.is_pure:

        def fun(t, y):
            return -1j * (hamiltonian(t) @ y)

    else:
        d = problem.dimension

        def fun(t, y):
            H = hamiltonian(t)
            rho = y.reshape(d, d)
            return (-1j * (H @ rho - rho @ H)).ravel()

    return integrate(
        fun,
        problem.u0,
        problem.tf,
        options,
        problem.callbacks,
        label="stochastic Schrödinger",
        segment_hook=hook,
    )


def solve_ame_trajectory(
    problem: EvolutionProblem,
    rng=None,
    lvl: int = None,
    lambshift: bool = True,
    options=None,
    **kwargs,
) -> Trajectory:
    """One quantum-jump trajectory of the adiabatic master equation.

    The state is not renormalised between jumps; normalise it before
    computing expectation values. The jump record ``(t, k)`` is stored in
    the `jumps` attribute of the returned trajectory.

    Args:
        problem (EvolutionProblem): Problem with a state vector.
        rng (np.random.Generator or int): Random generator or seed.
        lvl (int): Number of instantaneous levels kept.
        lambshift (bool): Include the Lamb shift Hamiltonian.
        options (IntegratorOptions): Integration options.
    """
    if not problem.is_pure:
        raise ConfigurationError("Quantum-jump trajectories need a state vector.")
    options = _options(options, kwargs)
    rng = np.random.default_rng(rng)
    generators = [
        DaviesGenerator(i.coupling, i.bath, lvl, lambshift)
        for i in problem.require_interactions("AME trajectory")
    ]
    for gen in generators:
        gen.init(problem)
    jumps = QuantumJumpCallback(generators, rng)

    def fun(t, y):
        H = problem.hamiltonian_at(t)
        for gen in generators:
            H = H + gen.effective_hamiltonian(t)
        return -1j * (H @ y)

    traj = integrate(
        fun,
        problem.u0,
        problem.tf,
        options,
        problem.callbacks + (jumps,),
        label="AME trajectory",
    )
    traj.jumps = jumps.jumps
    return traj
