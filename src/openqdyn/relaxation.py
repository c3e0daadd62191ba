#! /usr/bin/env python
"""
Dissipative generators for the open-system master equations.

Each generator couples one set of system operators to one bath. After
``init(problem, unitary)`` binds it to an `EvolutionProblem` (and, where
needed, to the closed-system propagator), ``apply(t, rho)`` returns the
generator's contribution to dρ/dt. Contributions of several
interactions add up.

Classes:
        - `RedfieldGenerator`: second order time-convolutionless generator.
        - `CGGenerator`: coarse-grained master equation (Lindblad form).
        - `ULEGenerator`: universal Lindblad equation.
        - `DaviesGenerator`: adiabatic master equation in the instantaneous
          eigenbasis (Davies form).
        - `QuantumJumpCallback`: jump process unravelling `DaviesGenerator`.

Functions:
        - `bohr_operators`: group the matrix elements of a coupling operator
          by Bohr frequency.

Notes:
        - Coupling operators enter in the Schrödinger picture of time ``t``
          through ``Ã_t(x) = U(t)U(x)† A(x) U(x)U(t)†``.
        - Matrix valued integrals are evaluated with
          `scipy.integrate.quad_vec`; their tolerances are independent of
          the ODE tolerances.
"""

import logging
import warnings

import numpy as np

from . import bath as baths
from .callbacks import ContinuousCallback
from .errors import ApproximationPrecisionWarning, ConfigurationError
from .operators import lindblad_dissipator, matrix_to_vector, vector_to_matrix
from .utils import quad_matrix

logger = logging.getLogger(__name__)


class GeneratorBase:
    """Generator of one interaction.

    Args:
        coupling (CouplingBase): Coupling operators, each coupled to an
            independent copy of `bath`.
        bath (BathBase): The bath.
    """

    capability = "correlation"
    needs_unitary = True

    def __init__(self, coupling, bath):
        self.coupling = coupling
        self.bath = bath
        baths.require(bath, self.capability, self._formalism())

    def _formalism(self):
        return type(self).__name__

    def init(self, problem, unitary=None):
        """Bind the generator to `problem`."""
        if self.coupling.dimension != problem.dimension:
            raise ConfigurationError(
                f"Coupling dimension {self.coupling.dimension} does not match "
                f"the Hamiltonian dimension {problem.dimension}."
            )
        if self.needs_unitary and unitary is None:
            raise ConfigurationError(f"{self._formalism()} needs the unitary propagator.")
        self.tf = problem.tf
        self.s = problem.annealing_parameter
        self.unitary = unitary
        self._buffer = None
        if getattr(unitary, "inplace", False):
            d = problem.dimension
            self._buffer = np.empty((d, d), dtype=complex)

    def interaction_operator(self, i, t, Ut, x):
        """Coupling operator `i` at time `x` seen from time `t`.

        An in-place unitary is evaluated into the generator's buffer.
        """
        if self._buffer is None:
            Ux = self.unitary(x)
        else:
            Ux = self.unitary(x, out=self._buffer)
        W = Ut @ Ux.conj().T
        return W @ self.coupling(self.s(x))[i] @ W.conj().T

    def apply(self, t: float, rho: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _name(self):
        return f"Generator: {type(self).__name__}"

    def _params(self):
        return {}

    def __repr__(self):
        lines = [self._name(), f"Bath: {type(self.bath).__name__}"]
        lines += [f"{k}: {v}" for k, v in self._params().items()]
        return "\n".join(lines)


class RedfieldGenerator(GeneratorBase):
    """Time-convolutionless (Redfield) generator.

    dρ/dt ⊃ -Σᵢ [Sᵢ, Λᵢρ - ρΛᵢ†],
    Λᵢ(t) = ∫_{max(0, t - Ta)}^{t} C(t - x) Ãᵢ,ₜ(x) dx.

    The generator is not guaranteed to preserve positivity.

    Args:
        coupling (CouplingBase): Coupling operators.
        bath (BathBase): Bath providing ``correlation``.
        Ta (float): Memory cutoff (ns), full memory if `None`.
        int_atol (float): Absolute tolerance of the memory integral.
        int_rtol (float): Relative tolerance of the memory integral.
    """

    def __init__(self, coupling, bath, Ta=None, int_atol=1e-8, int_rtol=1e-6):
        super().__init__(coupling, bath)
        if Ta is not None and Ta <= 0:
            raise ConfigurationError("Ta must be positive.")
        self.Ta = Ta
        self.int_atol = int_atol
        self.int_rtol = int_rtol

    def _params(self):
        return {"Ta": self.Ta, "int_atol": self.int_atol, "int_rtol": self.int_rtol}

    def memory_kernel(self, i, t, Ut):
        """Λᵢ(t)."""
        lower = 0.0 if self.Ta is None else max(0.0, t - self.Ta)

        def integrand(x):
            return self.bath.correlation(t - x) * self.interaction_operator(i, t, Ut, x)

        return quad_matrix(
            integrand, lower, t, epsabs=self.int_atol, epsrel=self.int_rtol
        )

    def apply(self, t, rho):
        Ut = self.unitary(t)
        du = np.zeros_like(rho, dtype=complex)
        for i, S in enumerate(self.coupling(self.s(t))):
            Lam = self.memory_kernel(i, t, Ut)
            Lam_rho = Lam @ rho
            rho_Lamd = rho @ Lam.conj().T
            du -= S @ Lam_rho - Lam_rho @ S + rho_Lamd @ S - S @ rho_Lamd
        return du


class CGGenerator(GeneratorBase):
    """Coarse-grained master equation.

    dρ/dt ⊃ (1/Ta) Σᵢ ∫∫ C(t₁ - t₂) [Aᵢ(t₂) ρ Aᵢ(t₁) - ½{Aᵢ(t₁)Aᵢ(t₂), ρ}] dt₁ dt₂

    over ``[t - Ta/2, t + Ta/2]² ∩ [0, tf]²``. The inner integral is done
    first, ``Bᵢ(t₁) = ∫ C(t₁ - t₂) Aᵢ(t₂) dt₂``, and the outer one builds
    the superoperator acting on vec(ρ).

    Args:
        coupling (CouplingBase): Coupling operators.
        bath (BathBase): Bath providing ``correlation``.
        Ta (float): Coarse-graining window, `coarse_grain_timescale` of
            the bath if `None`.
        int_atol (float): Absolute tolerance of the window integrals.
        int_rtol (float): Relative tolerance of the window integrals.
    """

    def __init__(self, coupling, bath, Ta=None, int_atol=1e-6, int_rtol=1e-4):
        super().__init__(coupling, bath)
        if Ta is None:
            Ta = baths.coarse_grain_timescale(bath)
        if Ta <= 0:
            raise ConfigurationError("Ta must be positive.")
        self.Ta = Ta
        self.int_atol = int_atol
        self.int_rtol = int_rtol
        self._check_window()

    def _check_window(self):
        tb = baths.tau_b(self.bath)
        tsb = baths.tau_sb(self.bath)
        if self.Ta < tb or self.Ta > tsb:
            warnings.warn(
                f"Coarse-graining window Ta = {self.Ta:.3g} ns outside "
                f"[tau_B, tau_SB] = [{tb:.3g}, {tsb:.3g}] ns.",
                ApproximationPrecisionWarning,
                stacklevel=3,
            )

    def _params(self):
        return {"Ta": self.Ta, "int_atol": self.int_atol, "int_rtol": self.int_rtol}

    def superoperator(self, i, t, Ut):
        """Coarse-grained superoperator of coupling operator `i` at `t`."""
        lo = max(0.0, t - self.Ta / 2)
        hi = min(self.tf, t + self.Ta / 2)
        d = Ut.shape[0]
        I = np.eye(d)

        def inner(t1):
            return quad_matrix(
                lambda t2: self.bath.correlation(t1 - t2)
                * self.interaction_operator(i, t, Ut, t2),
                lo,
                hi,
                epsabs=self.int_atol,
                epsrel=self.int_rtol,
            )

        def outer(t1):
            A1 = self.interaction_operator(i, t, Ut, t1)
            B1 = inner(t1)
            AB = A1 @ B1
            return np.kron(A1.T, B1) - 0.5 * (np.kron(I, AB) + np.kron(AB.T, I))

        K = quad_matrix(outer, lo, hi, epsabs=self.int_atol, epsrel=self.int_rtol)
        return K / self.Ta

    def apply(self, t, rho):
        Ut = self.unitary(t)
        vec = matrix_to_vector(rho)
        du = np.zeros_like(vec, dtype=complex)
        for i in range(len(self.coupling)):
            du += self.superoperator(i, t, Ut) @ vec
        return vector_to_matrix(du, rho.shape[0])


class ULEGenerator(GeneratorBase):
    """Universal Lindblad equation.

    Lᵢ(t) = ∫ g(x - t) Ãᵢ,ₜ(x) dx over ``[t - Ta, t + Ta] ∩ [0, tf]``,
    dρ/dt ⊃ Σᵢ Lᵢ ρ Lᵢ† - ½{Lᵢ†Lᵢ, ρ}.

    Args:
        coupling (CouplingBase): Coupling operators.
        bath (JumpCorrelatorBath): Bath providing ``jump_correlator``.
        Ta (float): Half width of the integration window. Defaults to the
            tabulation window of the jump correlator.
        int_atol (float): Absolute tolerance of the window integral.
        int_rtol (float): Relative tolerance of the window integral.
    """

    capability = "jump_correlator"

    def __init__(self, coupling, bath, Ta=None, int_atol=1e-8, int_rtol=1e-6):
        super().__init__(coupling, bath)
        if Ta is None:
            Ta = getattr(bath, "lim", 4 * bath.time_scale())
        if Ta <= 0:
            raise ConfigurationError("Ta must be positive.")
        self.Ta = Ta
        self.int_atol = int_atol
        self.int_rtol = int_rtol

    def _params(self):
        return {"Ta": self.Ta, "int_atol": self.int_atol, "int_rtol": self.int_rtol}

    def jump_operator(self, i, t, Ut):
        """Lᵢ(t)."""
        lo = max(0.0, t - self.Ta)
        hi = min(self.tf, t + self.Ta)

        def integrand(x):
            return self.bath.jump_correlator(x - t) * self.interaction_operator(i, t, Ut, x)

        return quad_matrix(integrand, lo, hi, epsabs=self.int_atol, epsrel=self.int_rtol)

    def apply(self, t, rho):
        Ut = self.unitary(t)
        du = np.zeros_like(rho, dtype=complex)
        for i in range(len(self.coupling)):
            du += lindblad_dissipator(self.jump_operator(i, t, Ut), rho)
        return du


def bohr_operators(energies, A, tol=1e-8, atol=1e-12):
    """Split `A` into Bohr-frequency components.

    Yields ``(ω, L_ω)`` with ``L_ω = Σ A_ab |a⟩⟨b|`` over all pairs with
    ``E_b - E_a`` within `tol` of ω. Components that vanish are skipped.

    Args:
        energies (np.ndarray): Eigenvalues (ascending).
        A (np.ndarray): Operator in the eigenbasis.
        tol (float): Relative tolerance for equal Bohr frequencies.
        atol (float): Threshold below which a component counts as zero.

    >>> E = np.array([-1.0, 1.0])
    >>> [w for w, _ in bohr_operators(E, np.array([[0, 1], [1, 0]]))]
    [-2.0, 2.0]
    """
    energies = np.asarray(energies, dtype=float)
    omega = energies[None, :] - energies[:, None]
    flat = omega.ravel()
    order = np.argsort(flat, kind="stable")
    scale = tol * max(1.0, np.max(np.abs(flat)))
    groups, current = [], [order[0]]
    for k in order[1:]:
        if flat[k] - flat[current[0]] > scale:
            groups.append(current)
            current = [k]
        else:
            current.append(k)
    groups.append(current)
    A = np.asarray(A, dtype=complex)
    for idx in groups:
        mask = np.zeros(flat.size, dtype=bool)
        mask[idx] = True
        L = np.where(mask.reshape(A.shape), A, 0)
        if np.max(np.abs(L)) <= atol:
            continue
        yield float(np.mean(flat[idx])), L


class DaviesGenerator(GeneratorBase):
    """Adiabatic master equation in Davies form.

    At each time the lowest `lvl` eigenpairs of H(s) are computed, every
    coupling operator is split into Bohr-frequency components ``L_ω`` and

        dρ̃/dt ⊃ Σ γ(ω) D[L_ω]ρ̃ - i[H_LS, ρ̃],  H_LS = Σ S(ω) L_ω†L_ω

    is mapped back from the eigenbasis.

    Args:
        coupling (CouplingBase): Coupling operators.
        bath (BathBase): Bath providing ``spectral_density`` (and
            ``lamb_shift`` if `lambshift`).
        lvl (int): Number of levels kept, all if `None`.
        lambshift (bool): Include the Lamb shift Hamiltonian.
        tol (float): Relative tolerance for equal Bohr frequencies.
    """

    capability = "spectral_density"
    needs_unitary = False

    def __init__(self, coupling, bath, lvl=None, lambshift=True, tol=1e-8):
        super().__init__(coupling, bath)
        if lambshift:
            baths.require(bath, "lamb_shift", self._formalism())
        if lvl is not None and lvl < 1:
            raise ConfigurationError("lvl must be positive.")
        self.lvl = lvl
        self.lambshift = lambshift
        self.tol = tol
        self._rates = {}
        self._shifts = {}

    def init(self, problem, unitary=None):
        super().init(problem, unitary)
        self.hamiltonian = problem.hamiltonian

    def _params(self):
        return {"lvl": self.lvl, "Lamb shift": self.lambshift}

    @staticmethod
    def _lookup(cache, fun, omega):
        key = round(omega, 10)
        if key not in cache:
            if len(cache) > 10_000:
                cache.clear()
            cache[key] = float(fun(omega))
        return cache[key]

    def rate(self, omega: float) -> float:
        return self._lookup(self._rates, self.bath.spectral_density, omega)

    def shift(self, omega: float) -> float:
        return self._lookup(self._shifts, self.bath.lamb_shift, omega)

    def terms(self, t):
        """Eigenbasis, ``(γ(ω), L_ω)`` pairs and H_LS at time `t`."""
        s = self.s(t)
        energies, V = self.hamiltonian.eigen_decomp(s, self.lvl)
        pairs = []
        H_ls = np.zeros((len(energies), len(energies)), dtype=complex)
        for S in self.coupling(s):
            A = V.conj().T @ S @ V
            for omega, L in bohr_operators(energies, A, self.tol):
                pairs.append((self.rate(omega), L))
                if self.lambshift:
                    H_ls += self.shift(omega) * (L.conj().T @ L)
        return V, pairs, H_ls

    def apply(self, t, rho):
        V, pairs, H_ls = self.terms(t)
        rho_e = V.conj().T @ rho @ V
        du = -1j * (H_ls @ rho_e - rho_e @ H_ls)
        for gamma, L in pairs:
            du += gamma * lindblad_dissipator(L, rho_e)
        return V @ du @ V.conj().T

    def jump_operators(self, t):
        """Rates and jump operators in the computational basis."""
        V, pairs, _ = self.terms(t)
        return [(gamma, V @ L @ V.conj().T) for gamma, L in pairs]

    def effective_hamiltonian(self, t):
        """Non-Hermitian H_LS - (i/2) Σ γ L†L in the computational basis."""
        V, pairs, H_ls = self.terms(t)
        H_eff = H_ls.copy()
        for gamma, L in pairs:
            H_eff -= 0.5j * gamma * (L.conj().T @ L)
        return V @ H_eff @ V.conj().T


class QuantumJumpCallback(ContinuousCallback):
    """Jump process of the adiabatic master equation.

    Between jumps the unnormalised state decays under the effective
    Hamiltonian. A jump occurs when ``‖ψ‖²`` falls to a uniform random
    threshold; the jump operator is chosen with probability proportional
    to ``γ‖Lψ‖²`` and the state is renormalised.

    Args:
        generators (list[DaviesGenerator]): Bound generators, one per
            interaction.
        rng (np.random.Generator): Private random stream of the trajectory.
    """

    def __init__(self, generators, rng):
        self.generators = list(generators)
        self.rng = rng
        self.threshold = rng.uniform()
        self.jumps = []

    def condition(self, t, state):
        return np.vdot(state, state).real - self.threshold

    def affect(self, t, state):
        candidates = [
            np.sqrt(gamma) * (L @ state)
            for generator in self.generators
            for gamma, L in generator.jump_operators(t)
        ]
        weights = np.array([np.vdot(c, c).real for c in candidates])
        self.threshold = self.rng.uniform()
        if weights.sum() <= 0:
            return state / np.linalg.norm(state)
        k = self.rng.choice(len(candidates), p=weights / weights.sum())
        logger.debug("Quantum jump %d at t = %g", k, t)
        self.jumps.append((t, k))
        return candidates[k] / np.sqrt(weights[k])

    def __repr__(self):
        return f"QuantumJumpCallback({len(self.jumps)} jumps)"
