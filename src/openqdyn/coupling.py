#! /usr/bin/env python
"""
System-bath coupling operators and interactions.

Classes:
        - `ConstantCouplings`: a list of independent, constant coupling
          operators (matrices or Pauli labels such as ``"X"`` or ``"ZI"``).
        - `TimeDependentCoupling`: a single coupling operator
          ``Σₖ fₖ(s) Mₖ`` with scalar schedules.
        - `TimeDependentCouplings`: a list of independent
          `TimeDependentCoupling` operators.
        - `Interaction`: a coupling paired with a bath.
        - `InteractionSet`: an ordered, non-empty collection of
          interactions whose effects on the generator add up.

Each coupling operator in a coupling list is assumed to couple to an
independent copy of the bath.

Notes:
        - By default coupling matrices are given in GHz (``unit="h"``) and
          multiplied by 2π, like `DenseHamiltonian`.
"""

import numpy as np

from .errors import ConfigurationError
from .hamiltonian import _as_matrix, unit_scale
from .operators import pauli_string


class CouplingBase:
    """Common interface: ``coupling(s)`` returns a list of matrices."""

    def __call__(self, s: float) -> list:
        raise NotImplementedError

    def __len__(self):
        raise NotImplementedError

    @property
    def dimension(self) -> int:
        raise NotImplementedError

    def __repr__(self):
        lines = [
            f"{type(self).__name__}",
            f"Number of operators: {len(self)}",
            f"Dimension: {self.dimension}",
        ]
        return "\n".join(lines)


def _coupling_matrix(M):
    if isinstance(M, str):
        return pauli_string(M)
    return _as_matrix(M)


class ConstantCouplings(CouplingBase):
    """Constant coupling operators.

    Args:
        mats (list): Matrices or Pauli labels.
        unit (str): ``"h"`` or ``"hbar"``.

    >>> c = ConstantCouplings(["X", "Z"], unit="hbar")
    >>> len(c), c.dimension
    (2, 2)
    """

    def __init__(self, mats, unit: str = "h"):
        if isinstance(mats, (str, np.ndarray)):
            mats = [mats]
        mats = [_coupling_matrix(M) for M in mats]
        if not mats:
            raise ConfigurationError("No coupling operators given.")
        dims = {M.shape[0] for M in mats}
        if len(dims) != 1:
            raise ConfigurationError(
                f"Coupling operators have different dimensions: {sorted(dims)}."
            )
        self.unit = unit
        self.mats = [unit_scale(unit) * M for M in mats]
        for M in self.mats:
            M.setflags(write=False)

    def __call__(self, s: float) -> list:
        return self.mats

    def __len__(self):
        return len(self.mats)

    @property
    def dimension(self) -> int:
        return self.mats[0].shape[0]


class TimeDependentCoupling(CouplingBase):
    """A single coupling operator ``Σₖ fₖ(s) Mₖ``.

    Args:
        funcs (list[callable]): Schedules ``f(s) -> float``.
        mats (list): Matrices or Pauli labels.
        unit (str): ``"h"`` or ``"hbar"``.
    """

    def __init__(self, funcs, mats, unit: str = "h"):
        funcs = list(funcs)
        mats = [_coupling_matrix(M) for M in mats]
        if not mats or len(funcs) != len(mats):
            raise ConfigurationError(
                f"Got {len(funcs)} schedule functions for {len(mats)} matrices."
            )
        if len({M.shape[0] for M in mats}) != 1:
            raise ConfigurationError("Coupling matrices have different dimensions.")
        self.funcs = funcs
        self.unit = unit
        self._mats = unit_scale(unit) * np.stack(mats)

    def __call__(self, s: float) -> list:
        coeffs = np.array([f(s) for f in self.funcs])
        return [np.tensordot(coeffs, self._mats, axes=1)]

    def __len__(self):
        return 1

    @property
    def dimension(self) -> int:
        return self._mats.shape[1]


class TimeDependentCouplings(CouplingBase):
    """Independent time-dependent coupling operators."""

    def __init__(self, *couplings: TimeDependentCoupling):
        if not couplings:
            raise ConfigurationError("No coupling operators given.")
        if len({c.dimension for c in couplings}) != 1:
            raise ConfigurationError("Coupling operators have different dimensions.")
        self.couplings = couplings

    def __call__(self, s: float) -> list:
        return [c(s)[0] for c in self.couplings]

    def __len__(self):
        return len(self.couplings)

    @property
    def dimension(self) -> int:
        return self.couplings[0].dimension


def as_coupling(coupling) -> CouplingBase:
    """Accept a coupling object, a matrix, a Pauli label or a list of those."""
    if isinstance(coupling, CouplingBase):
        return coupling
    return ConstantCouplings(coupling)


class Interaction:
    """A coupling paired with the bath it couples to.

    Args:
        coupling (CouplingBase): Coupling operators.
        bath (BathBase): The bath.
    """

    def __init__(self, coupling, bath):
        self.coupling = as_coupling(coupling)
        self.bath = bath

    def __repr__(self):
        lines = [
            "Interaction",
            f"Coupling: {type(self.coupling).__name__} ({len(self.coupling)} operators)",
            f"Bath: {type(self.bath).__name__}",
        ]
        return "\n".join(lines)


class InteractionSet:
    """Ordered, non-empty sequence of interactions.

    >>> InteractionSet()
    Traceback (most recent call last):
    ...
    openqdyn.errors.ConfigurationError: An InteractionSet needs at least one Interaction.
    """

    def __init__(self, *interactions: Interaction):
        if not interactions:
            raise ConfigurationError("An InteractionSet needs at least one Interaction.")
        for i in interactions:
            if not isinstance(i, Interaction):
                raise ConfigurationError(f"Expected Interaction, got {type(i).__name__}.")
        self.interactions = tuple(interactions)

    def __iter__(self):
        return iter(self.interactions)

    def __len__(self):
        return len(self.interactions)

    def __getitem__(self, idx):
        return self.interactions[idx]

    def __repr__(self):
        return "\n\n".join(repr(i) for i in self.interactions)
