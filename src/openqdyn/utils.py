#!/usr/bin/env python
"""
Utilities shared by the bath models and the master-equation integrators.

Main contents:

    CLI/testing
        - ``is_fast_run()``: Check ``--fast`` CLI flag to run lighter examples.

    Unit conversions
        - ``mK_to_GHz``, ``GHz_to_mK``: temperature-like energies via h ν = k_B T.
        - ``temperature_to_beta``, ``beta_to_temperature``: inverse
          temperature in ns (ħ = 1, energies in rad/ns).
        - ``magnitude(value, unit)``: strip a `pint` quantity to a float in
          the given unit; plain numbers pass through unchanged.

    Special functions
        - ``trigamma(z)``: complex trigamma function ψ₁(z) for Re z > 0,
          used by the closed-form Ohmic correlation function.

    Quadrature
        - ``quad_matrix(fun, a, b)``: adaptive quadrature of complex
          matrix-valued integrands (wraps `scipy.integrate.quad_vec`).
        - ``fourier_integral(f, t, sign)``: (1/2π)∫ f(ω) e^{±iωt} dω over the
          real line with `scipy.integrate.quad` Fourier weights.

Conventions:
    - Time in ns, angular frequency in rad/ns, temperature in mK,
      frequencies in GHz.
"""

import argparse

import numpy as np
from scipy import integrate

from .shared import constants as C
from .shared import ureg

_TRIGAMMA_SHIFT = 10.0
# Bernoulli numbers B_2, B_4, ..., B_14 for the asymptotic series.
_TRIGAMMA_SERIES = (
    1.0 / 6.0,
    -1.0 / 30.0,
    1.0 / 42.0,
    -1.0 / 30.0,
    5.0 / 66.0,
    -691.0 / 2730.0,
    7.0 / 6.0,
)


def is_fast_run():
    """Is the `--fast` parameter set at execution.

    This function helps examples to be used as tests.  By running the
    example with the `--fast` option, a faster version of main can be
    called (e.g., by setting fewer trajectories or a shorter horizon).
    """
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--fast",
        default=False,
        action="store_true",
        help="If set, the example should perform a reduced number of steps.",
    )
    args, _ = parser.parse_known_args()
    return args.fast


def magnitude(value, unit: str) -> float:
    """Return `value` as a plain number expressed in `unit`.

    Args:
            value (float or pint.Quantity): A plain number (assumed to be
                already in `unit`) or a `pint` quantity.
            unit (str): Target unit understood by `pint`, e.g. ``"mK"``.

    Returns:
            float: The magnitude in `unit`.

    >>> from openqdyn.shared import Q_
    >>> round(magnitude(Q_(0.016, "K"), "mK"), 9)
    16.0
    >>> magnitude(4, "GHz")
    4
    """
    if isinstance(value, ureg.Quantity):
        return value.to(unit).magnitude
    return value


def mK_to_GHz(mK: float | np.ndarray) -> float | np.ndarray:
    """
    Convert a temperature-like energy from mK to GHz using h ν = k_B T.

    Inverse of :func:`GHz_to_mK`.

    Args:

            mK (float or ndarray): Value(s) in mK.

    Returns:

            float or ndarray: Value(s) in GHz.
    """
    return mK * 1.0e-12 * (C.k_B / C.h)


def GHz_to_mK(GHz: float | np.ndarray) -> float | np.ndarray:
    """
    Convert a frequency in GHz to the equivalent temperature in mK.

    Inverse of :func:`mK_to_GHz`.

    Args:

            GHz (float or ndarray): Value(s) in GHz.

    Returns:

            float or ndarray: Value(s) in mK.
    """
    return GHz * 1.0e12 * (C.h / C.k_B)


def temperature_to_beta(T) -> float:
    """Inverse temperature β = ħ/(k_B T) in ns.

    Args:

            T (float or pint.Quantity): Temperature (plain numbers in mK).

    Returns:

            float: β in ns, to be multiplied by angular frequencies in rad/ns.

    >>> round(temperature_to_beta(16), 4)
    0.4774
    """
    T = magnitude(T, "mK")
    if T <= 0:
        raise ValueError("Temperature must be positive.")
    return 1.0 / (2 * np.pi * mK_to_GHz(T))


def beta_to_temperature(beta: float) -> float:
    """Temperature in mK corresponding to the inverse temperature `beta` (ns)."""
    return GHz_to_mK(1.0 / (2 * np.pi * beta))


def trigamma(z):
    """Trigamma function ψ₁(z) = Σₙ 1/(z+n)² for complex `z` with Re z > 0.

    Uses the recurrence ψ₁(z) = ψ₁(z+1) + 1/z² to move the argument to
    Re z ≥ 10 and then the asymptotic Bernoulli series.

    >>> bool(np.isclose(trigamma(1.0), np.pi**2 / 6))
    True
    >>> bool(np.isclose(trigamma(0.5), np.pi**2 / 2))
    True
    """
    z = np.asarray(z, dtype=complex)
    shape = z.shape
    z = np.atleast_1d(z).ravel()
    if np.any(z.real <= 0):
        raise ValueError("trigamma is only implemented for Re(z) > 0.")
    shift = np.maximum(np.ceil(_TRIGAMMA_SHIFT - z.real), 0).astype(int)
    result = np.zeros(z.shape, dtype=complex)
    for k in range(int(shift.max(initial=0))):
        mask = shift > k
        result[mask] += 1.0 / (z[mask] + k) ** 2
    inv = 1.0 / (z + shift)
    inv2 = inv * inv
    series = np.zeros_like(inv)
    for coef in reversed(_TRIGAMMA_SERIES):
        series = series * inv2 + coef
    result += inv + 0.5 * inv2 + inv * inv2 * series
    return result.reshape(shape)[()]


def quad_matrix(fun, a: float, b: float, epsabs=1e-8, epsrel=1e-6, limit=2000):
    """Integrate a complex array-valued function over ``[a, b]``.

    The integrand is viewed as a real array of twice the size so that
    `scipy.integrate.quad_vec` can handle it.

    Args:
            fun (callable): ``fun(x) -> ndarray`` (complex).
            a (float): Lower limit.
            b (float): Upper limit. If ``b <= a`` the result is zero.
            epsabs (float): Absolute tolerance.
            epsrel (float): Relative tolerance.
            limit (int): Maximum number of subintervals.

    Returns:
            ndarray: The integral, with the shape of ``fun(a)``.

    >>> res = quad_matrix(lambda x: np.array([[1j * x, 1.0]]), 0.0, 2.0)
    >>> bool(np.allclose(res, [[2j, 2.0]]))
    True
    """
    if b <= a:
        return np.zeros_like(np.asarray(fun(a), dtype=complex))

    def as_real(x):
        value = np.ascontiguousarray(fun(x), dtype=complex)
        return value.view(np.float64)

    res, _ = integrate.quad_vec(
        as_real, a, b, epsabs=epsabs, epsrel=epsrel, limit=limit
    )
    return np.ascontiguousarray(res).view(np.complex128)


def fourier_integral(f, t: float, sign: int = -1, epsabs=1e-10, limit=200):
    """Compute (1/2π)∫ f(ω) e^{sign·iωt} dω over the real line.

    The integral is split into the even and odd parts of `f` on
    ``[0, ∞)`` and evaluated with the QAWF Fourier weights of
    `scipy.integrate.quad`.

    Args:
            f (callable): Real function of the angular frequency.
            t (float): Time.
            sign (int): ``-1`` for correlation functions, ``+1`` for
                jump correlators.
            epsabs (float): Absolute tolerance of the quadrature.
            limit (int): Subinterval limit (``limlst`` cycles for QAWF).

    Returns:
            complex: The value of the integral.

    >>> g = fourier_integral(lambda w: 2 / (1 + w**2), 1.0)
    >>> bool(np.isclose(g, np.exp(-1.0)))
    True
    """

    def even(w):
        return f(w) + f(-w)

    def odd(w):
        return f(w) - f(-w)

    if t == 0:
        re, _ = integrate.quad(even, 0, np.inf, epsabs=epsabs, limit=limit)
        im = 0.0
    else:
        wvar = abs(t)
        re, _ = integrate.quad(
            even, 0, np.inf, weight="cos", wvar=wvar, epsabs=epsabs, limlst=limit
        )
        im, _ = integrate.quad(
            odd, 0, np.inf, weight="sin", wvar=wvar, epsabs=epsabs, limlst=limit
        )
        im *= sign * np.sign(t)
    return (re + 1j * im) / (2 * np.pi)
