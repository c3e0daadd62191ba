#! /usr/bin/env python
"""
Monte-Carlo ensembles of stochastic trajectories.

`EnsembleRunner` draws N independent trajectories of one
`EvolutionProblem` with a stochastic integrator
(`solve_stochastic_schrodinger`, `solve_ame_trajectory` or any callable
``method(problem, rng=..., **kwargs) -> Trajectory``) and collects them in
an `EnsembleResult`.

Random streams come from ``numpy.random.SeedSequence(seed).spawn(N)``:
trajectory ``k`` always receives child ``k``, so the ensemble does not
depend on the order in which trajectories finish. Trajectories run
sequentially, in a thread pool or in a process pool
(`concurrent.futures`); if the problem cannot be sent to worker processes
or the platform refuses to start them, the runner falls back to
sequential execution and logs a warning.

A failing trajectory (`NumericalNonConvergence` or a linear algebra
error such as a failed eigendecomposition) is recorded in its outcome and
does not stop the ensemble. `EnsembleResult.statistics`
leaves failed and positivity-truncated trajectories out and counts them by
reason.
"""

import concurrent.futures
import logging
import pickle
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from concurrent.futures.process import BrokenProcessPool

import numpy as np
from tqdm import tqdm

from .errors import ConfigurationError, NumericalNonConvergence
from .simulation import (
    EvolutionProblem,
    solve_ame_trajectory,
    solve_stochastic_schrodinger,
)

logger = logging.getLogger(__name__)

METHODS = {
    "stochastic_schrodinger": solve_stochastic_schrodinger,
    "ame_trajectory": solve_ame_trajectory,
}
PARALLEL_MODES = (None, "thread", "process")


def _resolve_method(method):
    if callable(method):
        return method
    try:
        return METHODS[method]
    except KeyError:
        raise ConfigurationError(
            f"Unknown ensemble method '{method}', use one of {sorted(METHODS)} "
            "or a callable."
        ) from None


class TrajectoryOutcome:
    """Result of one ensemble member.

    Attributes:
        index (int): Position in the ensemble.
        trajectory (Trajectory): The trajectory, `None` if it failed.
        error (Exception): The failure, if any: a `NumericalNonConvergence`
            or a `numpy.linalg.LinAlgError` raised by the solver.

    >>> TrajectoryOutcome(3, error=NumericalNonConvergence("diverged"))
    TrajectoryOutcome(index=3, status=Failed)
    """

    def __init__(self, index: int, trajectory=None, error=None):
        self.index = index
        self.trajectory = trajectory
        self.error = error

    @property
    def status(self) -> str:
        """``"Success"``, ``"Terminated"`` or ``"Failed"``."""
        if self.error is not None:
            return "Failed"
        return self.trajectory.status

    def __repr__(self):
        return f"TrajectoryOutcome(index={self.index}, status={self.status})"


def _run_trajectory(index, problem, method, seed, solver_kwargs):
    solver = _resolve_method(method)
    rng = np.random.default_rng(seed)
    try:
        traj = solver(problem, rng=rng, **solver_kwargs)
    except (NumericalNonConvergence, np.linalg.LinAlgError) as exc:
        logger.warning("Trajectory %d failed: %s", index, exc)
        return TrajectoryOutcome(index, error=exc)
    return TrajectoryOutcome(index, trajectory=traj)


class EnsembleStatistics:
    """Mean and standard error of an observable over an ensemble.

    Attributes:
        times (np.ndarray): Evaluation times.
        mean (np.ndarray): Ensemble mean at each time.
        sem (np.ndarray): Standard error ``std(ddof=1)/√n``.
        n (int): Number of trajectories used.
        excluded (dict): Number of excluded trajectories by status.
    """

    def __init__(self, times, mean, sem, n, excluded):
        self.times = times
        self.mean = mean
        self.sem = sem
        self.n = n
        self.excluded = excluded

    def __repr__(self):
        lines = [
            "EnsembleStatistics",
            f"Trajectories used: {self.n}",
            f"Excluded: {self.excluded}",
            f"Times: {len(self.times)}",
        ]
        return "\n".join(lines)


def _observe(observable, state):
    state = np.asarray(state)
    if state.ndim == 1:
        state = state / np.linalg.norm(state)
    if callable(observable):
        return observable(state)
    if state.ndim == 1:
        return np.vdot(state, observable @ state).real
    return np.trace(observable @ state).real


class EnsembleResult:
    """Ordered outcomes of an ensemble run."""

    def __init__(self, outcomes):
        self.outcomes = sorted(outcomes, key=lambda o: o.index)

    def __len__(self):
        return len(self.outcomes)

    def __iter__(self):
        return iter(self.outcomes)

    def __getitem__(self, idx):
        return self.outcomes[idx]

    @property
    def trajectories(self) -> list:
        """Trajectories that completed successfully."""
        return [o.trajectory for o in self.outcomes if o.status == "Success"]

    @property
    def failures(self) -> list:
        return [o for o in self.outcomes if o.status == "Failed"]

    def statistics(self, observable, times) -> EnsembleStatistics:
        """Mean and standard error of `observable` at `times`.

        State vectors are normalised before evaluation.

        Args:
            observable: Matrix (expectation value) or callable
                ``observable(state) -> float``.
            times (array): Evaluation times.

        Returns:
            EnsembleStatistics: Statistics over the successful trajectories.
        """
        times = np.atleast_1d(np.asarray(times, dtype=float))
        excluded = {}
        for o in self.outcomes:
            if o.status != "Success":
                excluded[o.status] = excluded.get(o.status, 0) + 1
        if excluded:
            logger.warning("Excluded trajectories from the statistics: %s", excluded)
        trajs = self.trajectories
        n = len(trajs)
        if n == 0:
            raise ValueError("No successful trajectories in the ensemble.")
        values = np.array(
            [[_observe(observable, traj(t)) for t in times] for traj in trajs]
        )
        mean = values.mean(axis=0)
        if n > 1:
            sem = values.std(axis=0, ddof=1) / np.sqrt(n)
        else:
            sem = np.full(mean.shape, np.nan)
        return EnsembleStatistics(times, mean, sem, n, excluded)

    def __repr__(self):
        counts = {}
        for o in self.outcomes:
            counts[o.status] = counts.get(o.status, 0) + 1
        lines = ["EnsembleResult", f"Trajectories: {len(self)}", f"Status: {counts}"]
        return "\n".join(lines)


class EnsembleRunner:
    """Run N independent stochastic trajectories.

    Args:
        problem (EvolutionProblem): The problem shared by all members.
        trajectories (int): Ensemble size N.
        method: ``"stochastic_schrodinger"``, ``"ame_trajectory"`` or a
            callable ``method(problem, rng=..., **kwargs)``.
        seed (int): Root seed of the ensemble.
        parallel (str): `None` (sequential), ``"thread"`` or ``"process"``.
        max_workers (int): Pool size.
        progress (bool): Show a `tqdm` progress bar.
        **solver_kwargs: Passed on to `method`.
    """

    def __init__(
        self,
        problem: EvolutionProblem,
        trajectories: int,
        method="stochastic_schrodinger",
        seed=None,
        parallel=None,
        max_workers=None,
        progress=False,
        **solver_kwargs,
    ):
        if trajectories < 1:
            raise ConfigurationError("An ensemble needs at least one trajectory.")
        if parallel not in PARALLEL_MODES:
            raise ConfigurationError(
                f"Unknown parallel mode '{parallel}', use one of {PARALLEL_MODES}."
            )
        _resolve_method(method)
        self.problem = problem
        self.trajectories = trajectories
        self.method = method
        self.seed = seed
        self.parallel = parallel
        self.max_workers = max_workers
        self.progress = progress
        self.solver_kwargs = solver_kwargs

    def seeds(self):
        """One child `SeedSequence` per trajectory."""
        return np.random.SeedSequence(self.seed).spawn(self.trajectories)

    def _serial(self, seeds, pbar):
        outcomes = []
        for i, seed in enumerate(seeds):
            outcomes.append(
                _run_trajectory(i, self.problem, self.method, seed, self.solver_kwargs)
            )
            pbar.update(1)
        return outcomes

    def _pooled(self, executor_cls, seeds, pbar):
        outcomes = []
        with executor_cls(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(
                    _run_trajectory,
                    i,
                    self.problem,
                    self.method,
                    seed,
                    self.solver_kwargs,
                )
                for i, seed in enumerate(seeds)
            ]
            for future in concurrent.futures.as_completed(futures):
                outcomes.append(future.result())
                pbar.update(1)
        return outcomes

    def _picklable(self):
        try:
            pickle.dumps((self.problem, self.method, self.solver_kwargs))
        except (pickle.PicklingError, AttributeError, TypeError) as exc:
            logger.warning(
                "Problem cannot be sent to worker processes (%s), running sequentially",
                exc,
            )
            return False
        return True

    def run(self) -> EnsembleResult:
        """Run the ensemble."""
        seeds = self.seeds()
        pbar = tqdm(total=self.trajectories, desc="Trajectories", disable=not self.progress)
        try:
            if self.parallel == "thread":
                outcomes = self._pooled(ThreadPoolExecutor, seeds, pbar)
            elif self.parallel == "process" and self._picklable():
                try:
                    outcomes = self._pooled(ProcessPoolExecutor, seeds, pbar)
                except (OSError, NotImplementedError, BrokenProcessPool) as exc:
                    logger.warning(
                        "Process pool unavailable (%s), running sequentially", exc
                    )
                    pbar.reset()
                    outcomes = self._serial(seeds, pbar)
            else:
                outcomes = self._serial(seeds, pbar)
        finally:
            pbar.close()
        result = EnsembleResult(outcomes)
        logger.info(
            "Ensemble finished: %d trajectories, %d failed",
            len(result),
            len(result.failures),
        )
        return result

    def __repr__(self):
        lines = [
            "EnsembleRunner",
            f"Trajectories: {self.trajectories}",
            f"Method: {getattr(self.method, '__name__', self.method)}",
            f"Parallel: {self.parallel}",
        ]
        return "\n".join(lines)


def solve_ensemble(
    problem: EvolutionProblem,
    trajectories: int,
    method="stochastic_schrodinger",
    seed=None,
    parallel=None,
    max_workers=None,
    progress=False,
    **solver_kwargs,
) -> EnsembleResult:
    """Shortcut for ``EnsembleRunner(...).run()``."""
    return EnsembleRunner(
        problem,
        trajectories,
        method=method,
        seed=seed,
        parallel=parallel,
        max_workers=max_workers,
        progress=progress,
        **solver_kwargs,
    ).run()
