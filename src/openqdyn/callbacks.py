#! /usr/bin/env python
"""
Discrete interventions and monitors interleaved with the continuous integration.

Classes:
        - `InstPulseCallback`: instantaneous pulses. At each trigger time the
          integrator stops exactly on the time, applies
          ``update(state, pulse_index)`` once and restarts from the new state.
        - `ContinuousCallback`: base class for state-dependent events located
          on the dense output after each accepted step (``condition`` crossing
          zero from above).
        - `PositivityCallback`: terminal event when the minimum eigenvalue of
          the Hermitian part of a density matrix drops below ``-tol``.

Functions:
        - `collect_pulses`: validate and merge the pulses of several
          callbacks into one time-ordered list.
        - `split_callbacks`: separate pulses and continuous callbacks.

Notes:
        - Update functions receive a private copy of the state. They may
          return the new state or modify the copy in place and return
          `None`.
        - Callbacks act only on the trajectory that owns them.
"""

import functools

import numpy as np

from .errors import ConfigurationError, PositivityViolation
from .operators import min_eigenvalue


def _operator_update(operators, state, index):
    P = operators[index]
    if state.ndim == 1:
        return P @ state
    return P @ state @ P.conj().T


def _propagator_update(operators, U, index):
    return operators[index] @ U


class InstPulseCallback:
    """Instantaneous pulses at fixed times.

    Args:
        times (list[float]): Strictly increasing trigger times.
        update (callable): ``update(state, pulse_index) -> state``.

    Pulses built with `from_operators` also know their operators and can
    be carried over to the unitary propagator (`propagator_pulses`).

    >>> from openqdyn.operators import sigma_x
    >>> cb = InstPulseCallback([0.5], lambda c, i: sigma_x @ c @ sigma_x)
    >>> cb.times
    array([0.5])
    """

    def __init__(self, times, update):
        times = np.atleast_1d(np.asarray(times, dtype=float))
        if times.ndim != 1 or times.size == 0:
            raise ConfigurationError("Pulse times must be a non-empty 1D sequence.")
        steps = np.diff(times)
        if np.any(steps < 0):
            raise ConfigurationError("Pulse times must be non-decreasing.")
        if np.any(steps == 0):
            raise ConfigurationError("Simultaneous pulses are not allowed.")
        self.times = times
        self.update = update
        self.operators = None

    @classmethod
    def from_operators(cls, times, operators):
        """Pulses applying the operators ``P`` (ψ → Pψ, ρ → PρP†).

        Args:
            times (list[float]): Strictly increasing trigger times.
            operators: One matrix used for every pulse or a sequence with
                one matrix per pulse.

        >>> from openqdyn.operators import sigma_x
        >>> cb = InstPulseCallback.from_operators([1.0, 2.0], sigma_x)
        >>> cb.apply(np.array([1.0, 0.0]), 1)
        array([0.+0.j, 1.+0.j])
        """
        n = np.atleast_1d(times).size
        operators = np.asarray(operators, dtype=complex)
        if operators.ndim == 2:
            operators = np.broadcast_to(operators, (n,) + operators.shape)
        if operators.ndim != 3 or operators.shape[0] != n:
            raise ConfigurationError("Give one pulse operator or one per pulse time.")
        cb = cls(times, functools.partial(_operator_update, operators))
        cb.operators = operators
        return cb

    def propagator_pulses(self) -> "InstPulseCallback":
        """The same pulses acting on a propagator, U → PU.

        Raises:
            ConfigurationError: The pulses were given as an update
                function, which has no counterpart on U.
        """
        if self.operators is None:
            raise ConfigurationError(
                "Pulses defined by an update function cannot be applied to the "
                "unitary propagator. Use InstPulseCallback.from_operators or pass "
                "the pulsed unitary explicitly."
            )
        return InstPulseCallback(
            self.times, functools.partial(_propagator_update, self.operators)
        )

    def validate(self, t0: float, tf: float):
        """Check that all trigger times lie in ``[t0, tf]``."""
        if self.times[0] < t0 or self.times[-1] > tf:
            raise ConfigurationError(
                f"Pulse times {self.times.tolist()} outside of [{t0}, {tf}]."
            )

    def apply(self, state: np.ndarray, index: int) -> np.ndarray:
        """Apply pulse `index` to a copy of `state`."""
        work = np.array(state, dtype=complex, copy=True)
        new = self.update(work, index)
        if new is None:
            new = work
        new = np.asarray(new, dtype=complex)
        if new.shape != work.shape:
            raise ConfigurationError(
                f"Pulse update changed the state shape from {work.shape} to {new.shape}."
            )
        return new

    def __repr__(self):
        return f"InstPulseCallback(times={self.times.tolist()})"


class ContinuousCallback:
    """Event triggered when ``condition(t, state)`` becomes non-positive.

    Terminal callbacks stop the trajectory and produce a `record`;
    non-terminal callbacks return a new state from `affect` and the
    integration continues from the event time.
    """

    terminal = False
    density_matrix_only = False

    def condition(self, t: float, state: np.ndarray) -> float:
        raise NotImplementedError

    def affect(self, t: float, state: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def record(self, t: float, state: np.ndarray):
        return None


class PositivityCallback(ContinuousCallback):
    """Stop a density-matrix trajectory when it loses positivity.

    After each accepted step the minimum eigenvalue of the Hermitian part
    of ρ is computed. If it is below ``-tol`` the crossing time is located
    on the dense output, the trajectory is truncated there and a
    `PositivityViolation` record is attached to it.

    Args:
        tol (float): Tolerance on the negative eigenvalue.

    >>> import numpy as np
    >>> cb = PositivityCallback(1e-6)
    >>> cb.condition(0.0, np.diag([1.1, -0.1])) < 0
    True
    """

    terminal = True
    density_matrix_only = True

    def __init__(self, tol: float = 1e-8):
        if tol < 0:
            raise ConfigurationError("Positivity tolerance must be non-negative.")
        self.tol = tol

    def condition(self, t, state):
        return min_eigenvalue(state) + self.tol

    def record(self, t, state):
        return PositivityViolation(t=float(t), min_eig=min_eigenvalue(state), tol=self.tol)

    def __repr__(self):
        return f"PositivityCallback(tol={self.tol})"


def split_callbacks(callbacks):
    """Return ``(pulse_callbacks, continuous_callbacks)``."""
    pulses, continuous = [], []
    for cb in callbacks or ():
        if isinstance(cb, InstPulseCallback):
            pulses.append(cb)
        elif isinstance(cb, ContinuousCallback):
            continuous.append(cb)
        else:
            raise ConfigurationError(f"Unsupported callback type {type(cb).__name__}.")
    return pulses, continuous


def collect_pulses(callbacks, t0: float, tf: float):
    """Merge pulse callbacks into a time-ordered list of ``(t, callback, index)``.

    Raises:
        ConfigurationError: Times outside ``[t0, tf]`` or two callbacks
            firing at the same time.
    """
    events = []
    for cb in callbacks:
        cb.validate(t0, tf)
        events += [(t, cb, i) for i, t in enumerate(cb.times)]
    events.sort(key=lambda e: e[0])
    for (t1, _, _), (t2, _, _) in zip(events, events[1:]):
        if t1 == t2:
            raise ConfigurationError(f"Simultaneous pulses at t = {t1}.")
    return events
