#! /usr/bin/env python
"""
Bath models exposing correlation, spectral and jump-correlator functions.

Every bath implements a subset of the capability interface

        ``correlation(t)``          C(t) = (1/2π)∫ γ(ω) e^{-iωt} dω
        ``spectral_density(ω)``     γ(ω) = ∫ C(t) e^{iωt} dt ≥ 0
        ``lamb_shift(ω)``           S(ω) = (1/2π) P∫ γ(x)/(ω - x) dx
        ``jump_correlator(t)``      g(t) = (1/2π)∫ √γ(ω) e^{iωt} dω
        ``sample_realization(tf)``  classical noise trajectory n(t)

and lists the implemented names in its ``capabilities`` attribute.
Integrators call `require` and fail with `ConfigurationError` before
running when a capability they need is missing.

Classes:
        - `BathBase`: the capability interface.
        - `SpectralBath`: base for baths defined by a spectral density, with
          numerical correlation function and Lamb shift.
        - `OhmicBath`: Ohmic spectral density with exponential cutoff and a
          closed-form correlation function (complex trigamma).
        - `GaussianBath`: Gaussian line obeying detailed balance, the
          low-frequency part of a hybrid bath.
        - `CustomBath`: user supplied functions.
        - `HybridBath`: spectrum of a Gaussian lineshape convolved with a
          second spectral bath, tabulated once and interpolated.
        - `JumpCorrelatorBath`: tabulated jump correlator for the ULE.
        - `TelegraphEnsembleBath`: sum of classical random telegraph
          processes (1/f noise for log-uniform rates).

Functions:
        - `require`: capability check.
        - `tau_sb`, `tau_b`, `coarse_grain_timescale`: bath memory times.

Units:
        - Time in ns, ω in rad/ns, cutoff frequencies in GHz, temperatures
          in mK. `pint` quantities are accepted for frequencies and
          temperatures.
"""

import logging
import warnings

import numpy as np
from scipy import integrate, special
from scipy.interpolate import CubicSpline

from . import utils
from .errors import ApproximationPrecisionWarning, ConfigurationError

logger = logging.getLogger(__name__)

CAPABILITIES = (
    "correlation",
    "spectral_density",
    "lamb_shift",
    "jump_correlator",
    "sample_realization",
)


def require(bath, capability: str, formalism: str):
    """Raise `ConfigurationError` if `bath` does not provide `capability`.

    Args:
        bath (BathBase): The bath to check.
        capability (str): One of `CAPABILITIES`.
        formalism (str): Name used in the error message.
    """
    if capability not in getattr(bath, "capabilities", ()):
        raise ConfigurationError(
            f"{formalism} requires a bath providing `{capability}`, "
            f"{type(bath).__name__} does not."
        )


class BathBase:
    """Capability interface of all baths."""

    capabilities = frozenset()

    def supports(self, capability: str) -> bool:
        """Return `True` if the bath implements `capability`."""
        return capability in self.capabilities

    def _missing(self, capability):
        raise ConfigurationError(
            f"{type(self).__name__} does not provide `{capability}`."
        )

    def correlation(self, t):
        return self._missing("correlation")

    def spectral_density(self, w):
        return self._missing("spectral_density")

    def lamb_shift(self, w):
        return self._missing("lamb_shift")

    def jump_correlator(self, t):
        return self._missing("jump_correlator")

    def sample_realization(self, tf: float, rng=None):
        return self._missing("sample_realization")

    def time_scale(self) -> float:
        """Characteristic decay time of the correlation function (ns)."""
        return 1.0

    def _params(self) -> dict:
        return {}

    def __repr__(self):
        lines = [f"Bath: {type(self).__name__}"]
        lines += [f"{k}: {v}" for k, v in self._params().items()]
        return "\n".join(lines)


class SpectralBath(BathBase):
    """Bath defined by a spectral density.

    Subclasses implement `spectral_density` and may override
    `correlation` and `lamb_shift` with closed forms. The generic
    versions integrate the spectral density numerically.
    """

    capabilities = frozenset({"correlation", "spectral_density", "lamb_shift"})

    def frequency_scale(self) -> float:
        """Angular frequency beyond which the spectrum is negligible."""
        return 1.0 / self.time_scale()

    def correlation(self, t):
        """C(t) by Fourier quadrature of the spectral density."""
        return np.vectorize(self._correlation, otypes=[complex])(t)[()]

    def _correlation(self, t):
        return utils.fourier_integral(self.spectral_density, t, sign=-1)

    def lamb_shift(self, w):
        """S(ω) by principal value quadrature of the spectral density."""
        return np.vectorize(self._lamb_shift, otypes=[float])(w)[()]

    def _pv_window(self) -> float:
        return 20 * self.frequency_scale()

    def _lamb_shift(self, w):
        R = self._pv_window()
        a, b = w - R, w + R
        center, _ = integrate.quad(
            self.spectral_density, a, b, weight="cauchy", wvar=w, limit=200
        )
        upper, _ = integrate.quad(
            lambda x: self.spectral_density(x) / (x - w), b, np.inf, limit=200
        )
        lower, _ = integrate.quad(
            lambda x: self.spectral_density(x) / (x - w), -np.inf, a, limit=200
        )
        return -(center + upper + lower) / (2 * np.pi)


class OhmicBath(SpectralBath):
    """Ohmic bath with exponential cutoff.

    γ(ω) = 2πηω e^{-|ω|/ωc} / (1 - e^{-βω}),  γ(0) = 2πη/β.

    Args:
        eta (float): Dimensionless coupling strength.
        fc (float): Cutoff frequency in GHz (ωc = 2π fc).
        T (float): Temperature in mK.

    >>> bath = OhmicBath(1e-4, 4, 16)
    >>> round(bath.beta, 4)
    0.4774
    >>> bool(np.isclose(bath.spectral_density(0.0), 2 * np.pi * 1e-4 / bath.beta))
    True
    """

    def __init__(self, eta: float, fc, T):
        if eta < 0:
            raise ConfigurationError("eta must be non-negative.")
        self.eta = eta
        self.fc = utils.magnitude(fc, "GHz")
        self.T = utils.magnitude(T, "mK")
        if self.fc <= 0:
            raise ConfigurationError("Cutoff frequency must be positive.")
        self.omega_c = 2 * np.pi * self.fc
        self.beta = utils.temperature_to_beta(self.T)

    def _params(self):
        return {"eta": self.eta, "fc (GHz)": self.fc, "T (mK)": self.T}

    def time_scale(self):
        return max(self.beta, 1.0 / self.omega_c)

    def frequency_scale(self):
        return max(self.omega_c, 1.0 / self.beta)

    def spectral_density(self, w):
        w = np.asarray(w, dtype=float)
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            val = (
                2
                * np.pi
                * self.eta
                * w
                * np.exp(-np.abs(w) / self.omega_c)
                / -np.expm1(-self.beta * w)
            )
        val = np.where(w == 0, 2 * np.pi * self.eta / self.beta, val)
        val = np.where(np.isfinite(val), val, 0.0)
        return val[()]

    def correlation(self, t):
        """Closed form C(t) = η/β² [ψ₁((1/ωc + it)/β) + ψ₁(1 + (1/ωc - it)/β)]."""
        t = np.asarray(t, dtype=float)
        x = 1 / (self.beta * self.omega_c)
        y = t / self.beta
        val = self.eta / self.beta**2 * (
            utils.trigamma(x + 1j * y) + utils.trigamma(1 + x - 1j * y)
        )
        return np.asarray(val)[()]


class GaussianBath(SpectralBath):
    """Gaussian spectral line obeying detailed balance.

    γ(ω) = √(2π) σ exp(-(ω - ε)²/(2σ²)),  C(t) = σ² exp(-iεt - σ²t²/2)

    with ``σ = 2πW`` and reorganisation shift ``ε = βσ²/2`` so that
    ``γ(-ω) = e^{-βω} γ(ω)``.

    Args:
        W (float): Width in GHz.
        T (float): Temperature in mK.
    """

    def __init__(self, W, T):
        self.W = utils.magnitude(W, "GHz")
        self.T = utils.magnitude(T, "mK")
        if self.W <= 0:
            raise ConfigurationError("Width must be positive.")
        self.sigma = 2 * np.pi * self.W
        self.beta = utils.temperature_to_beta(self.T)
        self.epsilon = self.beta * self.sigma**2 / 2

    def _params(self):
        return {"W (GHz)": self.W, "T (mK)": self.T}

    def time_scale(self):
        return 1.0 / self.sigma

    def frequency_scale(self):
        return self.sigma + abs(self.epsilon)

    def spectral_density(self, w):
        w = np.asarray(w, dtype=float)
        val = (
            np.sqrt(2 * np.pi)
            * self.sigma
            * np.exp(-((w - self.epsilon) ** 2) / (2 * self.sigma**2))
        )
        return val[()]

    def correlation(self, t):
        t = np.asarray(t, dtype=float)
        val = self.sigma**2 * np.exp(-1j * self.epsilon * t - (self.sigma * t) ** 2 / 2)
        return val[()]

    def lamb_shift(self, w):
        """Closed form S(ω) = √2 σ D((ω - ε)/(√2 σ)) with Dawson's D."""
        w = np.asarray(w, dtype=float)
        a = (w - self.epsilon) / (np.sqrt(2) * self.sigma)
        return (np.sqrt(2) * self.sigma * special.dawsn(a))[()]


class CustomBath(SpectralBath):
    """Bath from user supplied functions.

    The caller is responsible for `spectral_density` being non-negative.
    A missing correlation function is computed numerically from the
    spectral density.

    Args:
        spectral_density (callable): γ(ω), optional.
        correlation (callable): C(t), optional.
        time_scale (float): Decay time of C(t) in ns, used for quadrature
            windows and memory times.
    """

    def __init__(self, spectral_density=None, correlation=None, time_scale=1.0):
        if spectral_density is None and correlation is None:
            raise ConfigurationError(
                "CustomBath needs a spectral density or a correlation function."
            )
        self._gamma = spectral_density
        self._corr = correlation
        self._time_scale = time_scale
        caps = set()
        if spectral_density is not None:
            caps |= {"spectral_density", "lamb_shift", "correlation"}
        if correlation is not None:
            caps.add("correlation")
        self.capabilities = frozenset(caps)

    def time_scale(self):
        return self._time_scale

    def spectral_density(self, w):
        if self._gamma is None:
            return self._missing("spectral_density")
        return self._gamma(w)

    def correlation(self, t):
        if self._corr is not None:
            return self._corr(t)
        return super().correlation(t)

    def lamb_shift(self, w):
        if self._gamma is None:
            return self._missing("lamb_shift")
        return super().lamb_shift(w)


class HybridBath(SpectralBath):
    """Gaussian lineshape convolved with a second spectral bath.

    γ(ω) = 1/(2π C_L(0)) ∫ γ_L(ω - x) γ_H(x) dx,  C(t) = C_L(t)/C_L(0) · C_H(t)

    The combined spectrum (and optionally the Lamb shift) is computed once
    on a frequency grid and interpolated with cubic splines; outside the
    grid it is evaluated directly.

    Args:
        lineshape (GaussianBath): Low-frequency part.
        bath (SpectralBath): High-frequency part.
        omega_max (float): Half width of the tabulation grid (rad/ns).
        num (int): Number of grid points.
        lambshift (bool): Also tabulate the Lamb shift.
    """

    def __init__(self, lineshape, bath, omega_max=None, num=401, lambshift=True):
        if not isinstance(lineshape, GaussianBath):
            raise ConfigurationError("The lineshape of a HybridBath must be a GaussianBath.")
        require(bath, "spectral_density", "HybridBath")
        self.lineshape = lineshape
        self.bath = bath
        if omega_max is None:
            omega_max = 10 * (bath.frequency_scale() + lineshape.frequency_scale())
        self.omega_max = omega_max
        self.omegas = np.linspace(-omega_max, omega_max, num)
        self._norm = lineshape.correlation(0.0).real
        logger.debug("Tabulating hybrid spectrum on %d points", num)
        gammas = np.array([self._convolution(w) for w in self.omegas])
        self._gamma_spline = CubicSpline(self.omegas, gammas)
        self._ls_spline = None
        if lambshift:
            shifts = np.array([SpectralBath._lamb_shift(self, w) for w in self.omegas])
            self._ls_spline = CubicSpline(self.omegas, shifts)

    def _params(self):
        return {
            "Lineshape": type(self.lineshape).__name__,
            "Bath": type(self.bath).__name__,
            "Grid points": len(self.omegas),
        }

    def time_scale(self):
        return min(self.lineshape.time_scale(), self.bath.time_scale())

    def frequency_scale(self):
        return self.bath.frequency_scale() + self.lineshape.frequency_scale()

    def _pv_window(self):
        return self.omega_max

    def _convolution(self, w):
        L = self.lineshape
        center = w - L.epsilon
        val, _ = integrate.quad(
            lambda x: L.spectral_density(w - x) * self.bath.spectral_density(x),
            center - 8 * L.sigma,
            center + 8 * L.sigma,
            limit=200,
        )
        return val / (2 * np.pi * self._norm)

    def spectral_density(self, w):
        w = np.asarray(w, dtype=float)
        shape = w.shape
        w = np.atleast_1d(w)
        val = np.empty(w.shape)
        inside = np.abs(w) <= self.omega_max
        val[inside] = self._gamma_spline(w[inside])
        # far tails: the narrow lineshape acts as a shift by epsilon
        val[~inside] = self.bath.spectral_density(w[~inside] - self.lineshape.epsilon)
        return np.maximum(val, 0.0).reshape(shape)[()]

    def correlation(self, t):
        t = np.asarray(t, dtype=float)
        return (self.lineshape.correlation(t) / self._norm * self.bath.correlation(t))[()]

    def lamb_shift(self, w):
        w = np.asarray(w, dtype=float)
        if self._ls_spline is None or np.any(np.abs(w) > self.omega_max):
            return super().lamb_shift(w)
        return self._ls_spline(w)[()]


class JumpCorrelatorBath(BathBase):
    """Tabulated jump correlator g(t) = (1/2π)∫ √γ(ω) e^{iωt} dω.

    g is computed by quadrature on ``num`` points of ``[-lim, lim]``,
    interpolated with a cubic spline and extended flat outside the window.
    The window must cover the decay of g and C(t); if the tails are larger
    than ``tail_tol`` relative to the peak an
    `ApproximationPrecisionWarning` is issued.

    All other capabilities are forwarded to the wrapped bath.

    Args:
        bath (SpectralBath): Bath providing ``spectral_density``.
        lim (float): Half width of the tabulation window (ns).
        num (int): Number of tabulation points.
        epsabs (float): Absolute tolerance of the Fourier quadrature.
        tail_tol (float): Relative tail size triggering the warning.
    """

    def __init__(self, bath, lim=4.0, num=801, epsabs=1e-10, tail_tol=1e-3):
        require(bath, "spectral_density", "JumpCorrelatorBath")
        self.bath = bath
        self.lim = lim
        self.capabilities = frozenset(bath.capabilities | {"jump_correlator"})
        self.times = np.linspace(-lim, lim, num)

        def sqrt_gamma(w):
            return np.sqrt(max(bath.spectral_density(w), 0.0))

        logger.debug("Tabulating jump correlator on %d points in [-%g, %g]", num, lim, lim)
        values = np.array(
            [utils.fourier_integral(sqrt_gamma, t, sign=1, epsabs=epsabs) for t in self.times]
        )
        self.values = values
        self._spline = CubicSpline(self.times, values)
        self._check_window(tail_tol)

    def _check_window(self, tail_tol):
        peak = np.max(np.abs(self.values))
        tail = max(abs(self.values[0]), abs(self.values[-1]))
        if peak > 0 and tail > tail_tol * peak:
            warnings.warn(
                f"Jump correlator tail {tail / peak:.2e} of the peak at t = ±{self.lim}; "
                "widen the tabulation window.",
                ApproximationPrecisionWarning,
                stacklevel=3,
            )
        if self.bath.supports("correlation"):
            c0 = abs(self.bath.correlation(0.0))
            c_lim = abs(self.bath.correlation(self.lim))
            if c0 > 0 and c_lim > tail_tol * c0:
                warnings.warn(
                    f"|C({self.lim})|/|C(0)| = {c_lim / c0:.2e}; the tabulation window "
                    "is shorter than the bath correlation time.",
                    ApproximationPrecisionWarning,
                    stacklevel=3,
                )

    def _params(self):
        return {
            "Bath": type(self.bath).__name__,
            "Window": f"[-{self.lim}, {self.lim}]",
            "Points": len(self.times),
        }

    def time_scale(self):
        return self.bath.time_scale()

    def frequency_scale(self):
        return self.bath.frequency_scale()

    def jump_correlator(self, t):
        t = np.clip(np.asarray(t, dtype=float), -self.lim, self.lim)
        return self._spline(t)[()]

    def spectral_density(self, w):
        return self.bath.spectral_density(w)

    def correlation(self, t):
        return self.bath.correlation(t)

    def lamb_shift(self, w):
        return self.bath.lamb_shift(w)


class TelegraphRealization:
    """A sampled telegraph noise trajectory n(t), a right-continuous step function.

    Args:
        switch_times (np.ndarray): Sorted switching times.
        values (np.ndarray): ``values[k]`` holds on
            ``[switch_times[k-1], switch_times[k])``; one more entry than
            `switch_times`.
    """

    def __init__(self, switch_times, values):
        self.switch_times = np.asarray(switch_times, dtype=float)
        self.values = np.asarray(values, dtype=float)

    def __call__(self, t):
        idx = np.searchsorted(self.switch_times, t, side="right")
        return self.values[idx][()]

    def __repr__(self):
        return f"TelegraphRealization({len(self.switch_times)} switches)"


class TelegraphEnsembleBath(BathBase):
    """Sum of independent random telegraph processes.

    Process ``i`` takes the values ±bᵢ, starts in either with probability
    1/2 and flips at rate γᵢ/2, so that

        C(t) = Σ bᵢ² e^{-γᵢ|t|},  S(ω) = Σ bᵢ²γᵢ/(γᵢ² + ω²).

    `spectral_density` returns the symmetric classical noise power
    S(ω) = ½∫C(t)e^{iωt}dt. Log-uniform rates give 1/f noise, see
    `one_over_f`.

    Args:
        b (float or array): Amplitudes (rad/ns).
        gamma (array): Correlation decay rates (1/ns).

    >>> bath = TelegraphEnsembleBath(0.1, [1.0, 2.0])
    >>> round(float(bath.spectral_density(0.0)), 6)
    0.015
    """

    capabilities = frozenset({"correlation", "spectral_density", "sample_realization"})

    def __init__(self, b, gamma):
        gamma = np.atleast_1d(np.asarray(gamma, dtype=float))
        b = np.broadcast_to(np.asarray(b, dtype=float), gamma.shape).copy()
        if gamma.size == 0:
            raise ConfigurationError("A telegraph ensemble needs at least one process.")
        if np.any(gamma <= 0):
            raise ConfigurationError("Switching rates must be positive.")
        self.b = b
        self.gamma = gamma

    @classmethod
    def one_over_f(cls, b, num: int, gamma_min: float, gamma_max: float, rng=None):
        """Ensemble with `num` rates drawn log-uniformly from ``[gamma_min, gamma_max]``."""
        rng = np.random.default_rng(rng)
        gamma = np.exp(rng.uniform(np.log(gamma_min), np.log(gamma_max), num))
        return cls(b, gamma)

    def _params(self):
        return {
            "Processes": len(self.gamma),
            "Rates": f"[{self.gamma.min():g}, {self.gamma.max():g}]",
        }

    def time_scale(self):
        return 1.0 / self.gamma.min()

    def spectral_density(self, w):
        w = np.asarray(w, dtype=float)[..., None]
        return np.sum(self.b**2 * self.gamma / (self.gamma**2 + w**2), axis=-1)[()]

    def correlation(self, t):
        t = np.asarray(t, dtype=float)[..., None]
        return np.sum(self.b**2 * np.exp(-self.gamma * np.abs(t)), axis=-1)[()]

    def sample_realization(self, tf: float, rng=None) -> TelegraphRealization:
        """Draw one noise trajectory on ``[0, tf]``.

        Args:
            tf (float): Time horizon.
            rng (np.random.Generator or int): Random generator or seed.
        """
        rng = np.random.default_rng(rng)
        times, deltas = [], []
        value0 = 0.0
        for b, g in zip(self.b, self.gamma):
            sign = rng.choice((-1.0, 1.0))
            value0 += sign * b
            t = rng.exponential(2 / g)
            while t < tf:
                sign = -sign
                times.append(t)
                deltas.append(2 * sign * b)
                t += rng.exponential(2 / g)
        order = np.argsort(times)
        times = np.asarray(times, dtype=float)[order]
        deltas = np.asarray(deltas, dtype=float)[order]
        values = value0 + np.concatenate(([0.0], np.cumsum(deltas)))
        return TelegraphRealization(times, values)


def _memory_limit(bath, lim):
    return 20 * bath.time_scale() if lim is None else lim


def tau_sb(bath, lim=None) -> float:
    """System-bath interaction time 1/∫₀^∞ |C(t)| dt."""
    require(bath, "correlation", "tau_sb")
    lim = _memory_limit(bath, lim)
    norm, _ = integrate.quad(lambda t: abs(bath.correlation(t)), 0, lim, limit=200)
    return 1.0 / norm


def tau_b(bath, lim=None) -> float:
    """Bath memory time ∫ t|C(t)| dt / ∫ |C(t)| dt."""
    require(bath, "correlation", "tau_b")
    lim = _memory_limit(bath, lim)
    norm, _ = integrate.quad(lambda t: abs(bath.correlation(t)), 0, lim, limit=200)
    first, _ = integrate.quad(lambda t: t * abs(bath.correlation(t)), 0, lim, limit=200)
    return first / norm


def coarse_grain_timescale(bath, lim=None) -> float:
    """Coarse-graining window ``sqrt(τ_SB τ_B / 5)``."""
    return float(np.sqrt(tau_sb(bath, lim) * tau_b(bath, lim) / 5))
