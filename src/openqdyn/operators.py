#! /usr/bin/env python
"""
Operator algebra helpers and read-only operator constants.

Constants (module level, read-only arrays):
        - ``sigma_i``, ``sigma_x``, ``sigma_y``, ``sigma_z``: Pauli matrices.
        - ``PAULI_VEC``: eigenvectors of the Pauli matrices, indexed by axis
          and eigenvalue sign, e.g. ``PAULI_VEC["x"][0]`` is ``|+⟩``.

Functions:
        - `pauli`: spin matrices for a given multiplicity.
        - `pauli_string`: Kronecker product of Pauli matrices from a label
          such as ``"XZ"``.
        - `commutator`, `hermitian_part`, `expectation`, `purity`,
          `min_eigenvalue`.
        - `matrix_to_vector` / `vector_to_matrix`: column-stacking
          vectorisation and its inverse.
        - `liouvillian`, `lindblad_dissipator`: superoperator helpers.

Notes:
        - Vectorisation follows the column-stacking convention
          ``vec(A ρ B) = (Bᵀ ⊗ A) vec(ρ)``.
"""

import numpy as np
import scipy.sparse as sp

from .errors import ConfigurationError


def pauli(mult: int):
    """Generate spin matrices.

    Generates the spin matrices corresponding to a given multiplicity.

    Args:
        mult (int): The multiplicity of the spin (2 for spin-1/2).

    Return:
        dict: A dictionary containing 6 `np.array` matrices of
        shape `(mult, mult)`:
            - the unit operator `result["u"]`,
            - raising operator `result["p"]`,
            - lowering operator `result["m"]`,
            - spin matrix for x axis `result["x"]`,
            - spin matrix for y axis `result["y"]`,
            - spin matrix for z axis `result["z"]`.

    >>> pauli(2)["z"]
    array([[ 0.5,  0. ],
           [ 0. , -0.5]])
    """
    if mult < 2:
        raise ValueError("Multiplicity must be at least 2.")
    result = {}
    if mult == 2:
        result["u"] = np.array([[1, 0], [0, 1]])
        result["p"] = np.array([[0, 1], [0, 0]])
        result["m"] = np.array([[0, 0], [1, 0]])
        result["x"] = 0.5 * np.array([[0.0, 1.0], [1.0, 0.0]])
        result["y"] = 0.5 * np.array([[0.0, -1.0j], [1.0j, 0.0]])
        result["z"] = 0.5 * np.array([[1.0, 0.0], [0.0, -1.0]])
    else:
        spin = (mult - 1) / 2
        prjs = np.arange(mult - 1, -1, -1) - spin

        p_data = np.sqrt(spin * (spin + 1) - prjs * (prjs + 1))
        m_data = np.sqrt(spin * (spin + 1) - prjs * (prjs - 1))

        result["u"] = np.eye(mult)
        result["p"] = sp.spdiags(p_data, [1], mult, mult).toarray()
        result["m"] = sp.spdiags(m_data, [-1], mult, mult).toarray()
        result["x"] = 0.5 * (result["p"] + result["m"])
        result["y"] = -0.5 * 1j * (result["p"] - result["m"])
        result["z"] = sp.spdiags(prjs, 0, mult, mult).toarray()
    return result


def _frozen(a):
    a = np.array(a, dtype=complex)
    a.setflags(write=False)
    return a


_spin_half = pauli(2)
sigma_i = _frozen(_spin_half["u"])
sigma_x = _frozen(2 * _spin_half["x"])
sigma_y = _frozen(2 * _spin_half["y"])
sigma_z = _frozen(2 * _spin_half["z"])

_PAULI = {"I": sigma_i, "X": sigma_x, "Y": sigma_y, "Z": sigma_z}

PAULI_VEC = {
    "x": (
        _frozen(np.array([1, 1]) / np.sqrt(2)),
        _frozen(np.array([1, -1]) / np.sqrt(2)),
    ),
    "y": (
        _frozen(np.array([1, 1j]) / np.sqrt(2)),
        _frozen(np.array([1, -1j]) / np.sqrt(2)),
    ),
    "z": (_frozen([1, 0]), _frozen([0, 1])),
}


def pauli_string(label: str) -> np.ndarray:
    """Kronecker product of Pauli matrices named by `label`.

    Args:
        label (str): Characters from ``"IXYZ"`` (case insensitive), the
            leftmost character acting on the first qubit.

    Returns:
        np.ndarray: Matrix of dimension ``2**len(label)``.

    >>> pauli_string("ZI").real.astype(int)
    array([[ 1,  0,  0,  0],
           [ 0,  1,  0,  0],
           [ 0,  0, -1,  0],
           [ 0,  0,  0, -1]])
    """
    if not label:
        raise ConfigurationError("Empty Pauli label.")
    result = np.ones((1, 1), dtype=complex)
    for char in label.upper():
        if char not in _PAULI:
            raise ConfigurationError(f"Unknown Pauli label '{char}' in '{label}'.")
        result = np.kron(result, _PAULI[char])
    return result


def commutator(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    """Return ``[A, B] = AB - BA``."""
    return A @ B - B @ A


def hermitian_part(M: np.ndarray) -> np.ndarray:
    """Return ``(M + M†)/2``."""
    return 0.5 * (M + M.conj().T)


def expectation(op: np.ndarray, state: np.ndarray) -> complex:
    """Expectation value of `op` in a pure state or density matrix.

    ``⟨ψ|A|ψ⟩`` for vectors and ``Tr(Aρ)`` for matrices.

    >>> round(float(expectation(sigma_x, PAULI_VEC["x"][0]).real), 12)
    1.0
    """
    state = np.asarray(state)
    if state.ndim == 1:
        return np.vdot(state, op @ state)
    return np.trace(op @ state)


def purity(rho):
    """
    Calculate the purity of a density matrix.

    The purity is defined as :math:`P(\\rho) = \\operatorname{Tr}(\\rho^2)`.
    Pure states have :math:`P = 1`, the maximally mixed state in
    dimension :math:`d` has :math:`P = 1/d`.

    Args:

            rho (ndarray of shape (N, N)): Density matrix of the quantum state.

    Returns:

            float: Purity of the state, computed as ``real(trace(rho @ rho))``.
    """
    return np.real(np.trace(rho @ rho))


def min_eigenvalue(rho: np.ndarray) -> float:
    """Minimum eigenvalue of the Hermitian part of `rho`."""
    return float(np.linalg.eigvalsh(hermitian_part(rho))[0])


def matrix_to_vector(M: np.ndarray) -> np.ndarray:
    """Column-stacking vectorisation ``vec(M)`` as a flat array."""
    return np.asarray(M).reshape(-1, order="F")


def vector_to_matrix(v: np.ndarray, N: int = None) -> np.ndarray:
    """Inverse of `matrix_to_vector`.

    >>> M = np.arange(4).reshape(2, 2)
    >>> bool(np.array_equal(vector_to_matrix(matrix_to_vector(M)), M))
    True
    """
    v = np.asarray(v)
    if N is None:
        N = int(round(np.sqrt(v.size)))
    if N * N != v.size:
        raise ValueError(f"Cannot reshape a vector of size {v.size} to a square matrix.")
    return v.reshape((N, N), order="F")


def liouvillian(H: np.ndarray) -> np.ndarray:
    """
    Liouvillian for the unitary part: L[ρ] = -i [H, ρ].

    In column-stacking form ``-i (I ⊗ H - Hᵀ ⊗ I)``.
    """
    N = H.shape[0]
    I = np.eye(N, dtype=complex)
    return -1j * (np.kron(I, H) - np.kron(H.T, I))


def lindblad_dissipator(L: np.ndarray, rho: np.ndarray) -> np.ndarray:
    """Return ``L ρ L† - ½{L†L, ρ}``."""
    Ld = L.conj().T
    LdL = Ld @ L
    return L @ rho @ Ld - 0.5 * (LdL @ rho + rho @ LdL)
