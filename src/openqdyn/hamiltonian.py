#! /usr/bin/env python
"""
Time-dependent Hamiltonians built from scalar schedules and constant matrices.

A `DenseHamiltonian` represents

        H(s) = scale · Σₖ fₖ(s) Mₖ

where the ``fₖ`` are real functions of the dimensionless annealing
parameter ``s`` and the ``Mₖ`` are constant square matrices of a common
dimension. ``scale`` is ``2π`` for Hamiltonians given in GHz
(``unit="h"``) and ``1`` for Hamiltonians already given as angular
frequencies (``unit="hbar"``).

Evaluation is deterministic, side-effect free and extrapolates freely
outside ``s ∈ [0, 1]``.
"""

import functools

import numpy as np
import scipy as sp

from .errors import ConfigurationError

UNITS = {"h": 2 * np.pi, "hbar": 1.0, "ħ": 1.0}


def unit_scale(unit: str) -> float:
    """Multiplicative factor turning `unit` into angular frequency.

    >>> unit_scale("hbar")
    1.0
    """
    try:
        return UNITS[unit]
    except KeyError:
        raise ConfigurationError(
            f"Unknown unit '{unit}', use one of {sorted(UNITS)}."
        ) from None


def _constant(value, s):
    return value


def constant_coefficient(value: float):
    """Schedule function returning `value` for every ``s``.

    Unlike a ``lambda`` the returned callable can be pickled, which
    process-based ensembles require.

    >>> constant_coefficient(2.0)(0.3)
    2.0
    """
    return functools.partial(_constant, value)


def _as_matrix(M):
    M = np.asarray(M, dtype=complex)
    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        raise ConfigurationError(f"Operator of shape {M.shape} is not square.")
    return M


class DenseHamiltonian:
    """Weighted sum of constant matrices with scalar schedules.

    Args:
        funcs (list[callable]): Schedules ``f(s) -> float``.
        mats (list[np.ndarray]): Constant matrices, all of the same dimension.
        unit (str): ``"h"`` (matrices in GHz, multiplied by 2π) or
            ``"hbar"`` (matrices already in rad/ns).

    >>> from openqdyn.operators import sigma_z
    >>> H = DenseHamiltonian([constant_coefficient(1.0)], [-sigma_z], unit="hbar")
    >>> bool(np.allclose(H(0.5), -sigma_z))
    True
    """

    def __init__(self, funcs, mats, unit: str = "h"):
        funcs = list(funcs)
        mats = [_as_matrix(M) for M in mats]
        if not mats:
            raise ConfigurationError("A Hamiltonian needs at least one term.")
        if len(funcs) != len(mats):
            raise ConfigurationError(
                f"Got {len(funcs)} schedule functions for {len(mats)} matrices."
            )
        dims = {M.shape[0] for M in mats}
        if len(dims) != 1:
            raise ConfigurationError(
                f"Hamiltonian matrices have different dimensions: {sorted(dims)}."
            )
        self.funcs = funcs
        self.unit = unit
        self.scale = unit_scale(unit)
        self._mats = np.stack(mats)
        self._mats.setflags(write=False)

    @property
    def dimension(self) -> int:
        """Hilbert space dimension."""
        return self._mats.shape[1]

    @property
    def mats(self):
        """The constant matrices (read-only)."""
        return list(self._mats)

    def evaluate(self, s: float) -> np.ndarray:
        """Return H(s) in rad/ns."""
        coeffs = np.array([f(s) for f in self.funcs])
        return self.scale * np.tensordot(coeffs, self._mats, axes=1)

    __call__ = evaluate

    def eigen_decomp(self, s: float, lvl: int = None):
        """Lowest `lvl` eigenvalues and eigenvectors of H(s).

        Args:
            s (float): Annealing parameter.
            lvl (int): Number of levels to keep (all levels if `None`).

        Returns:
            (np.ndarray, np.ndarray): Ascending eigenvalues of shape
            ``(lvl,)`` and eigenvectors as columns, shape ``(d, lvl)``.
        """
        H = self.evaluate(s)
        if lvl is None or lvl >= self.dimension:
            return sp.linalg.eigh(H)
        if lvl < 1:
            raise ConfigurationError("lvl must be positive.")
        return sp.linalg.eigh(H, subset_by_index=[0, lvl - 1])

    def __repr__(self):
        lines = [
            f"{type(self).__name__}",
            f"Dimension: {self.dimension}",
            f"Unit: {self.unit}",
            f"Number of terms: {len(self.funcs)}",
        ]
        return "\n".join(lines)
