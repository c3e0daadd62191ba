#! /usr/bin/env python
"""
Integration substrate shared by all equation integrators.

The integrators build a right-hand side ``fun(t, y)`` on a flat complex
state vector and hand it to `integrate`, which drives the step classes of
`scipy.integrate` (``RK45``, ``RK23``, ``DOP853``, ``Radau``, ``BDF``)
one accepted step at a time, or a classical fixed-step ``RK4`` scheme,
and stitches the dense output into a `Trajectory`.

Main objects
------------
- `IntegratorOptions` :
    Algorithm, tolerances, save points, forced stops, fixed-step grid and
    step budget.
- `integrate` :
    Segment-wise integration. The horizon is cut at every pulse time and
    every forced stop; each segment starts a fresh solver, so the solver
    lands exactly on those times and dense output never straddles a
    discontinuity. Continuous callbacks are checked after each accepted
    step and their events are located with `scipy.optimize.brentq` on the
    step interpolant.
- `Trajectory` :
    Dense, right-continuous interpolant over the solved interval, the
    discrete solver grid, saved states, status and the positivity
    violation record of a truncated run.

Failures of the step classes (step size underflow, non-finite states,
exhausted step budget) raise `NumericalNonConvergence` with the failing
time and last state.
"""

import bisect
import logging

import numpy as np
from scipy import integrate as spi
from scipy.interpolate import CubicHermiteSpline
from scipy.optimize import brentq

from .callbacks import collect_pulses, split_callbacks
from .errors import ConfigurationError, NumericalNonConvergence

logger = logging.getLogger(__name__)

ALGORITHMS = {
    "RK45": spi.RK45,
    "RK23": spi.RK23,
    "DOP853": spi.DOP853,
    "Radau": spi.Radau,
    "BDF": spi.BDF,
}
FIXED_STEP_ALGORITHMS = ("RK4",)
IMPLICIT_ALGORITHMS = ("Radau", "BDF")
REAL_ONLY_ALGORITHMS = ("Radau",)


class IntegratorOptions:
    """Options of the integration service.

    Args:
        alg (str): One of ``RK45``, ``RK23``, ``DOP853``, ``Radau``,
            ``BDF`` (adaptive) or ``RK4`` (fixed step).
        abstol (float): Absolute local error tolerance.
        reltol (float): Relative local error tolerance.
        saveat (array): Times at which `Trajectory.u` reports states.
        tstops (array): Times the integrator must land on exactly.
        fixed_step_points (array): Explicit grid for ``RK4``.
        dt (float): Step size for ``RK4`` when no grid is given.
        max_steps (int): Step budget per trajectory.
        max_step (float): Largest allowed step of adaptive methods.
        first_step (float): Initial step of adaptive methods.

    >>> IntegratorOptions(alg="RK4")
    Traceback (most recent call last):
    ...
    openqdyn.errors.ConfigurationError: RK4 needs `dt` or `fixed_step_points`.
    """

    def __init__(
        self,
        alg: str = "RK45",
        abstol: float = 1e-6,
        reltol: float = 1e-3,
        saveat=None,
        tstops=(),
        fixed_step_points=None,
        dt: float = None,
        max_steps: int = 100_000,
        max_step: float = np.inf,
        first_step: float = None,
    ):
        if alg not in ALGORITHMS and alg not in FIXED_STEP_ALGORITHMS:
            raise ConfigurationError(
                f"Unknown algorithm '{alg}', use one of "
                f"{sorted(ALGORITHMS) + list(FIXED_STEP_ALGORITHMS)}."
            )
        if abstol <= 0 or reltol <= 0:
            raise ConfigurationError("Tolerances must be positive.")
        if alg in FIXED_STEP_ALGORITHMS and dt is None and fixed_step_points is None:
            raise ConfigurationError(f"{alg} needs `dt` or `fixed_step_points`.")
        if dt is not None and dt <= 0:
            raise ConfigurationError("dt must be positive.")
        self.alg = alg
        self.abstol = abstol
        self.reltol = reltol
        self.saveat = None if saveat is None else np.asarray(saveat, dtype=float)
        self.tstops = np.asarray(tstops if tstops is not None else (), dtype=float)
        self.fixed_step_points = (
            None
            if fixed_step_points is None
            else np.sort(np.asarray(fixed_step_points, dtype=float))
        )
        self.dt = dt
        self.max_steps = max_steps
        self.max_step = max_step
        self.first_step = first_step

    @property
    def fixed_step(self) -> bool:
        return self.alg in FIXED_STEP_ALGORITHMS

    def grid(self, t0: float, t1: float) -> np.ndarray:
        """Fixed-step grid points in ``(t0, t1]`` (always ending at `t1`)."""
        if self.fixed_step_points is not None:
            pts = self.fixed_step_points
            pts = pts[(pts > t0) & (pts < t1)]
            return np.append(pts, t1)
        n = max(int(np.ceil((t1 - t0) / self.dt - 1e-9)), 1)
        return np.linspace(t0, t1, n + 1)[1:]

    def __repr__(self):
        lines = [
            f"Algorithm: {self.alg}",
            f"abstol: {self.abstol}",
            f"reltol: {self.reltol}",
        ]
        if self.fixed_step:
            lines.append(f"dt: {self.dt}")
        return "\n".join(lines)


class _Segment:
    """Dense output of one uninterrupted stretch of integration."""

    def __init__(self, ts, sol, y_end):
        self.ts = np.asarray(ts, dtype=float)
        self.t_start = self.ts[0]
        self.t_end = self.ts[-1]
        self.sol = sol
        self.y_end = y_end

    def __call__(self, t):
        if self.sol is None:
            return self.y_end
        return self.sol(min(max(t, self.t_start), self.t_end))


class _Event:
    def __init__(self, t, callback, y):
        self.t = t
        self.callback = callback
        self.y = y


class _Budget:
    def __init__(self, max_steps):
        self.max_steps = max_steps
        self.steps = 0

    def spend(self, t, state):
        self.steps += 1
        if self.steps > self.max_steps:
            raise NumericalNonConvergence(
                f"Step budget of {self.max_steps} steps exhausted", t=t, state=state
            )


class Trajectory:
    """Continuous solution over ``[t0, t_end]``.

    Calling the trajectory with a scalar time returns the state (vector or
    matrix); with an array of times it returns the stacked states. At a
    pulse time the post-pulse state is returned.

    Attributes:
        t (np.ndarray): Discrete solver grid (segment boundaries included).
        u (list[np.ndarray]): States at ``saveat`` if given, else at `t`.
        status (str): ``"Success"`` or ``"Terminated"``.
        violation (PositivityViolation): Set when a positivity callback
            truncated the run.
        events (list): ``(t, callback)`` pairs of continuous events.
    """

    def __init__(
        self,
        segments,
        shape,
        order="C",
        status="Success",
        violation=None,
        events=(),
        saveat=None,
        label="",
    ):
        self.segments = segments
        self.shape = tuple(shape)
        self.order = order
        self.status = status
        self.violation = violation
        self.events = list(events)
        self.saveat = saveat
        self.label = label
        self._starts = [seg.t_start for seg in segments]

    @property
    def t0(self) -> float:
        return self.segments[0].t_start

    @property
    def t_end(self) -> float:
        return self.segments[-1].t_end

    @property
    def t(self) -> np.ndarray:
        return np.unique(np.concatenate([seg.ts for seg in self.segments]))

    @property
    def u(self) -> list:
        times = self.t if self.saveat is None else self.saveat
        return [self(t) for t in times if t <= self.t_end]

    @property
    def success(self) -> bool:
        return self.status == "Success"

    def _unflatten(self, y):
        return np.asarray(y).reshape(self.shape, order=self.order)

    def _evaluate(self, t):
        tol = 1e-12 * max(1.0, abs(self.t_end))
        if t < self.t0 - tol or t > self.t_end + tol:
            raise ValueError(
                f"t = {t} is outside the solved interval [{self.t0}, {self.t_end}]."
            )
        idx = max(bisect.bisect_right(self._starts, t) - 1, 0)
        return self._unflatten(self.segments[idx](t))

    def __call__(self, t):
        if np.ndim(t) == 0:
            return self._evaluate(float(t))
        return np.stack([self._evaluate(float(s)) for s in np.asarray(t)])

    def raise_for_status(self):
        """Raise the attached `PositivityViolation`, if any."""
        if self.violation is not None:
            raise self.violation

    def __repr__(self):
        lines = [
            f"Trajectory: {self.label}" if self.label else "Trajectory",
            f"Interval: [{self.t0}, {self.t_end}]",
            f"State shape: {self.shape}",
            f"Grid points: {len(self.t)}",
            f"Status: {self.status}",
        ]
        if self.violation is not None:
            lines.append(f"Violation: {self.violation!r}")
        return "\n".join(lines)


def _detect(monitors, t_prev, t_new, interp, unflatten):
    """First continuous event in ``(t_prev, t_new]`` or `None`."""
    first = None
    for cb in monitors:
        if cb.condition(t_new, unflatten(interp(t_new))) > 0:
            continue

        def f(s, cb=cb):
            return cb.condition(s, unflatten(interp(s)))

        if f(t_prev) <= 0:
            t_event = t_prev
        else:
            t_event = brentq(f, t_prev, t_new, xtol=1e-12 * max(1.0, abs(t_new)))
        if first is None or t_event < first[0]:
            first = (t_event, cb)
    if first is None:
        return None
    t_event, cb = first
    return _Event(t_event, cb, interp(t_event))


def _as_real(y):
    return np.ascontiguousarray(y, dtype=complex).view(np.float64)


def _as_complex(x):
    return np.ascontiguousarray(x, dtype=np.float64).view(complex)


_REAL_BLOCKS = (np.eye(2), np.array([[0.0, -1.0], [1.0, 0.0]]))


def _real_jacobian(J):
    J = np.asarray(J, dtype=complex)
    return np.kron(J.real, _REAL_BLOCKS[0]) + np.kron(J.imag, _REAL_BLOCKS[1])


class _ComplexView:
    """Complex dense output of a solver running on interleaved real states."""

    def __init__(self, sol):
        self.sol = sol

    def __call__(self, t):
        return _as_complex(self.sol(t))


def _adaptive_segment(fun, t0, y0, t1, options, jac, monitors, unflatten, budget):
    kwargs = {
        "rtol": options.reltol,
        "atol": options.abstol,
        "max_step": options.max_step,
    }
    if options.first_step is not None:
        kwargs["first_step"] = min(options.first_step, t1 - t0)
    real = options.alg in REAL_ONLY_ALGORITHMS
    if real:
        # interleaved (Re, Im) pairs
        rhs = fun

        def fun(t, x):
            return _as_real(rhs(t, _as_complex(x)))

        if jac is not None:
            cjac = jac

            def jac(t, x):
                return _real_jacobian(cjac(t, _as_complex(x)))

        y0 = _as_real(y0)

    def state(y):
        return _as_complex(y) if real else y

    if options.alg in IMPLICIT_ALGORITHMS and jac is not None:
        kwargs["jac"] = jac
    solver = ALGORITHMS[options.alg](fun, t0, y0, t1, **kwargs)
    ts, interpolants = [t0], []
    while solver.status == "running":
        message = solver.step()
        if solver.status == "failed":
            raise NumericalNonConvergence(
                message, t=solver.t, state=unflatten(state(solver.y))
            )
        if not np.all(np.isfinite(solver.y)):
            raise NumericalNonConvergence(
                "Non-finite state", t=solver.t, state=unflatten(state(solver.y))
            )
        budget.spend(solver.t, unflatten(state(solver.y)))
        interp = solver.dense_output()
        interpolants.append(interp)
        ts.append(solver.t)
        if monitors:
            view = _ComplexView(interp) if real else interp
            event = _detect(monitors, ts[-2], ts[-1], view, unflatten)
            if event is not None:
                if event.t <= ts[-2]:
                    ts.pop()
                    interpolants.pop()
                else:
                    ts[-1] = event.t
                if len(ts) == 1:
                    return _Segment([event.t, event.t], None, event.y), event
                sol = spi.OdeSolution(ts, interpolants)
                return _Segment(ts, _ComplexView(sol) if real else sol, event.y), event
    sol = spi.OdeSolution(ts, interpolants)
    if real:
        sol = _ComplexView(sol)
    return _Segment(ts, sol, state(solver.y.copy())), None


def _rk4_step(fun, t, y, f0, h):
    k2 = fun(t + h / 2, y + h / 2 * f0)
    k3 = fun(t + h / 2, y + h / 2 * k2)
    k4 = fun(t + h, y + h * k3)
    return y + h / 6 * (f0 + 2 * k2 + 2 * k3 + k4)


def _fixed_segment(fun, t0, y0, t1, options, monitors, unflatten, budget):
    ts, ys, fs = [t0], [y0], [fun(t0, y0)]
    for t_next in options.grid(t0, t1):
        y = _rk4_step(fun, ts[-1], ys[-1], fs[-1], t_next - ts[-1])
        if not np.all(np.isfinite(y)):
            raise NumericalNonConvergence("Non-finite state", t=t_next, state=unflatten(y))
        budget.spend(t_next, unflatten(y))
        ts.append(t_next)
        ys.append(y)
        fs.append(fun(t_next, y))
        if monitors:
            step = CubicHermiteSpline(ts[-2:], ys[-2:], fs[-2:])
            event = _detect(monitors, ts[-2], ts[-1], step, unflatten)
            if event is not None:
                if event.t <= ts[-2]:
                    del ts[-1], ys[-1], fs[-1]
                    if len(ts) == 1:
                        return _Segment([event.t, event.t], None, event.y), event
                else:
                    ts[-1] = event.t
                ys[-1] = event.y
                fs[-1] = fun(event.t, event.y)
                sol = CubicHermiteSpline(ts, np.array(ys), np.array(fs))
                return _Segment(ts, sol, event.y), event
    sol = CubicHermiteSpline(ts, np.array(ys), np.array(fs))
    return _Segment(ts, sol, ys[-1]), None


def integrate(
    fun,
    u0,
    tf: float,
    options: IntegratorOptions = None,
    callbacks=(),
    jac=None,
    order: str = "C",
    t0: float = 0.0,
    label: str = "",
    segment_hook=None,
) -> Trajectory:
    """Integrate ``du/dt = fun(t, u)`` from `t0` to `tf`.

    Args:
        fun (callable): ``fun(t, y)`` on the flattened complex state.
        u0 (np.ndarray): Initial state (vector or matrix).
        tf (float): Final time.
        options (IntegratorOptions): Integration options.
        callbacks (list): `InstPulseCallback` and `ContinuousCallback`
            instances.
        jac (callable): ``jac(t, y)`` for the implicit methods.
        order (str): Memory order used to flatten the state (``"F"`` for
            column-stacked density matrices).
        t0 (float): Initial time.
        label (str): Name used in log records and the trajectory repr.
        segment_hook (callable): ``segment_hook(t_start, t_end)`` called
            before each uninterrupted segment is integrated. Right-hand
            sides that are piecewise constant between forced stops use it
            to pick the value of the current segment.

    Returns:
        Trajectory: The dense solution, possibly truncated by a terminal
        continuous callback.
    """
    options = options or IntegratorOptions()
    if tf <= t0:
        raise ConfigurationError(f"Final time {tf} must be larger than {t0}.")
    u0 = np.asarray(u0, dtype=complex)
    shape = u0.shape

    def flatten(state):
        return np.asarray(state, dtype=complex).reshape(-1, order=order)

    def unflatten(y):
        return np.asarray(y).reshape(shape, order=order)

    pulse_cbs, monitors = split_callbacks(callbacks)
    for cb in monitors:
        if cb.density_matrix_only and len(shape) != 2:
            raise ConfigurationError(f"{cb!r} needs a density-matrix state.")
    pulses = collect_pulses(pulse_cbs, t0, tf)
    stops = {t for t in options.tstops if t0 < t < tf}
    stops |= {t for t, _, _ in pulses if t0 < t < tf}
    bounds = sorted(stops) + [tf]

    budget = _Budget(options.max_steps)
    y = flatten(u0)
    pending = list(pulses)

    def apply_pulses(t, y):
        while pending and pending[0][0] <= t:
            tp, cb, idx = pending.pop(0)
            logger.debug("%s: pulse %d at t = %g", label, idx, tp)
            y = flatten(cb.apply(unflatten(y), idx))
        return y

    y = apply_pulses(t0, y)
    segments, events = [], []
    t = t0
    for bound in bounds:
        while t < bound:
            logger.debug("%s: integrating [%g, %g] with %s", label, t, bound, options.alg)
            if segment_hook is not None:
                segment_hook(t, bound)
            if options.fixed_step:
                seg, event = _fixed_segment(
                    fun, t, y, bound, options, monitors, unflatten, budget
                )
            else:
                seg, event = _adaptive_segment(
                    fun, t, y, bound, options, jac, monitors, unflatten, budget
                )
            segments.append(seg)
            t, y = seg.t_end, seg.y_end
            if event is None:
                break
            events.append((event.t, event.callback))
            state = unflatten(event.y)
            if event.callback.terminal:
                violation = event.callback.record(event.t, state)
                logger.debug("%s: terminated at t = %g", label, event.t)
                return Trajectory(
                    segments,
                    shape,
                    order=order,
                    status="Terminated",
                    violation=violation,
                    events=events,
                    saveat=options.saveat,
                    label=label,
                )
            y = flatten(event.callback.affect(event.t, state))
            segments.append(_Segment([t, t], None, y))
        y = apply_pulses(bound, y)
        if bound == tf and pulses and pulses[-1][0] == tf:
            segments.append(_Segment([tf, tf], None, y))
    return Trajectory(
        segments,
        shape,
        order=order,
        events=events,
        saveat=options.saveat,
        label=label,
    )
