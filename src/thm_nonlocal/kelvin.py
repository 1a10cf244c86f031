"""Kelvin-vector algebra for symmetric second order tensors.

Symmetric tensors are stored as Kelvin vectors so that inner products of the
vectors equal full tensor contractions:

- 2D (plane strain / axisymmetric), size 4: ``[xx, yy, zz, sqrt2*xy]``
- 3D, size 6: ``[xx, yy, zz, sqrt2*xy, sqrt2*yz, sqrt2*xz]``

Fourth order tensors with minor symmetries become ``(n, n)`` matrices.
"Physical" (symmetric tensor) components are the plain tensor entries, i.e.
the off-diagonal Kelvin entries divided by ``sqrt(2)``.
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Tuple

import numpy as np

SQRT2 = math.sqrt(2.0)

_INDEX_PAIRS = {
    4: ((0, 0), (1, 1), (2, 2), (0, 1)),
    6: ((0, 0), (1, 1), (2, 2), (0, 1), (1, 2), (0, 2)),
}


def kelvin_vector_size(dim: int) -> int:
    """Length of a Kelvin vector for a ``dim``-dimensional displacement field."""
    if dim == 2:
        return 4
    if dim == 3:
        return 6
    raise ValueError(f"Kelvin vectors are defined for dim 2 or 3, got {dim}")


def _check_size(size: int) -> int:
    if size not in _INDEX_PAIRS:
        raise ValueError(f"Kelvin vector size must be 4 or 6, got {size}")
    return size


@lru_cache(maxsize=None)
def _basis(size: int) -> np.ndarray:
    """Orthonormal tensor basis ``E_a`` with ``v = sum_a v_a E_a``."""
    E = np.zeros((_check_size(size), 3, 3), dtype=float)
    for a, (i, j) in enumerate(_INDEX_PAIRS[size]):
        if i == j:
            E[a, i, i] = 1.0
        else:
            E[a, i, j] = E[a, j, i] = 1.0 / SQRT2
    E.setflags(write=False)
    return E


def _off_diagonal_scale(size: int) -> np.ndarray:
    scale = np.ones(_check_size(size), dtype=float)
    scale[3:] = SQRT2
    return scale


def identity2(size: int) -> np.ndarray:
    """Second order identity as a Kelvin vector of length ``size``."""
    v = np.zeros(_check_size(size), dtype=float)
    v[:3] = 1.0
    return v


def spherical_projection(size: int) -> np.ndarray:
    """``P_sph = 1/3 I2 (x) I2``."""
    i2 = identity2(size)
    return np.outer(i2, i2) / 3.0


def deviatoric_projection(size: int) -> np.ndarray:
    """``P_dev = I - P_sph``."""
    return np.eye(size) - spherical_projection(size)


def trace(v: np.ndarray) -> float:
    return float(np.sum(np.asarray(v, dtype=float)[:3]))


def J2(v_D: np.ndarray) -> float:
    """Second invariant of a deviatoric Kelvin vector, ``1/2 D:D``."""
    d = np.asarray(v_D, dtype=float)
    return float(0.5 * d @ d)


def J3(v_D: np.ndarray) -> float:
    """Third invariant of a deviatoric Kelvin vector, ``det(D)``."""
    return determinant(v_D)


def kelvin_vector_to_tensor(v: np.ndarray) -> np.ndarray:
    """Kelvin vector -> symmetric 3x3 tensor."""
    v = np.asarray(v, dtype=float)
    return np.einsum("a,aij->ij", v, _basis(v.size))


def tensor_to_kelvin_vector(T: np.ndarray, size: int = 6) -> np.ndarray:
    """Symmetric 3x3 tensor -> Kelvin vector of length ``size``."""
    T = np.asarray(T, dtype=float)
    return np.einsum("aij,ij->a", _basis(size), T)


def kelvin_vector_to_symmetric_tensor(v: np.ndarray) -> np.ndarray:
    """Kelvin vector -> physical components in the same ordering."""
    v = np.asarray(v, dtype=float)
    return v / _off_diagonal_scale(v.size)


def symmetric_tensor_to_kelvin_vector(v: np.ndarray) -> np.ndarray:
    """Physical components -> Kelvin vector (off-diagonals times sqrt2)."""
    v = np.asarray(v, dtype=float)
    return v * _off_diagonal_scale(v.size)


def determinant(v: np.ndarray) -> float:
    return float(np.linalg.det(kelvin_vector_to_tensor(v)))


def inverse(v: np.ndarray) -> np.ndarray:
    v = np.asarray(v, dtype=float)
    return tensor_to_kelvin_vector(np.linalg.inv(kelvin_vector_to_tensor(v)), v.size)


def s_odot_s(v: np.ndarray) -> np.ndarray:
    """Kelvin matrix of ``(v (.) v)_ijkl = 1/2 (v_ik v_jl + v_il v_jk)``.

    For an invertible ``v`` the derivative of ``inverse(v)`` with respect to
    ``v`` is ``-s_odot_s(inverse(v))``.
    """
    v = np.asarray(v, dtype=float)
    E = _basis(v.size)
    V = kelvin_vector_to_tensor(v)
    return np.einsum("aij,jk,bkl,li->ab", E, V, E, V)


def elastic_tangent(K: float, G: float, size: int) -> np.ndarray:
    """Isotropic elastic stiffness ``3K P_sph + 2G P_dev`` as a Kelvin matrix."""
    C = np.zeros((_check_size(size), size), dtype=float)
    C[:3, :3] = K - 2.0 * G / 3.0
    C += 2.0 * G * np.eye(size)
    return C


def split_deviatoric_volumetric(v: np.ndarray) -> Tuple[np.ndarray, float]:
    """Return ``(P_dev v, trace(v))``."""
    v = np.asarray(v, dtype=float)
    return deviatoric_projection(v.size) @ v, trace(v)
