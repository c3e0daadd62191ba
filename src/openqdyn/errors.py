#! /usr/bin/env python
"""Exception and warning classes.

- `ConfigurationError`: invalid input detected before any integration runs
  (dimension mismatches, empty interaction sets, bad pulse times,
  non-positive horizons, missing bath capabilities).
- `NumericalNonConvergence`: the integration service could not meet its
  tolerances within the step budget; carries the failing time and state.
- `PositivityViolation`: a density matrix developed a negative eigenvalue
  beyond tolerance. Attached to the truncated trajectory as a record.
- `ApproximationPrecisionWarning`: a numerical approximation is probably
  too coarse (tabulation windows, coarse-graining windows).
"""


class ConfigurationError(ValueError):
    """Invalid simulation setup, reported before integration starts."""


class NumericalNonConvergence(RuntimeError):
    """Integration failed to converge.

    Args:
        message (str): Reason reported by the integrator.
        t (float): Time at which the integration failed.
        state (np.ndarray): Last accepted state.
    """

    def __init__(self, message: str, t: float = None, state=None):
        super().__init__(message)
        self.t = t
        self.state = state

    def __reduce__(self):
        return type(self), (self.args[0], self.t, self.state)

    def __str__(self):
        msg = super().__str__()
        if self.t is not None:
            msg += f" (t = {self.t:g})"
        return msg


class PositivityViolation(RuntimeError):
    """Density matrix lost positivity.

    Args:
        t (float): Time of the violation.
        min_eig (float): Minimum eigenvalue of the Hermitian part of the state.
        tol (float): Tolerance that was exceeded.

    >>> PositivityViolation(t=1.5, min_eig=-0.01, tol=1e-6)
    PositivityViolation(t=1.5, min_eig=-0.01, tol=1e-06)
    """

    def __init__(self, t: float, min_eig: float, tol: float):
        super().__init__(
            f"Minimum eigenvalue {min_eig:.3e} below -{tol:g} at t = {t:g}"
        )
        self.t = t
        self.min_eig = min_eig
        self.tol = tol

    def __reduce__(self):
        return type(self), (self.t, self.min_eig, self.tol)

    def __repr__(self):
        return (
            f"PositivityViolation(t={self.t!r}, min_eig={self.min_eig!r}, "
            f"tol={self.tol!r})"
        )


class ApproximationPrecisionWarning(UserWarning):
    """A tabulation or averaging window is probably too narrow."""
