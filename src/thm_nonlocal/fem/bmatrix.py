"""Kelvin-notation strain-displacement matrices.

Displacement DOFs are interleaved per node: ``[u1x, u1y, (u1z), u2x, ...]``.
Rows follow the Kelvin ordering of :mod:`thm_nonlocal.kelvin`, so
``eps = B @ u`` is a Kelvin strain vector (shear rows carry ``1/sqrt2``).
"""

from __future__ import annotations

import numpy as np

from thm_nonlocal.kelvin import SQRT2, kelvin_vector_size


def compute_b_matrix(
    dNdx: np.ndarray,
    N: np.ndarray,
    x_coord: float,
    displacement_dim: int,
    is_axially_symmetric: bool = False,
) -> np.ndarray:
    dNdx = np.asarray(dNdx, dtype=float)
    n_nodes = dNdx.shape[1]
    dim = int(displacement_dim)
    B = np.zeros((kelvin_vector_size(dim), n_nodes * dim), dtype=float)

    for a in range(n_nodes):
        ux = dim * a
        uy = ux + 1
        B[0, ux] = dNdx[0, a]
        B[1, uy] = dNdx[1, a]
        B[3, ux] = dNdx[1, a] / SQRT2
        B[3, uy] = dNdx[0, a] / SQRT2
        if dim == 2:
            if is_axially_symmetric:
                if x_coord <= 0.0:
                    raise ValueError(f"Axisymmetric B-matrix needs radius > 0, got {x_coord}")
                B[2, ux] = N[a] / x_coord
        else:
            uz = ux + 2
            B[2, uz] = dNdx[2, a]
            B[4, uy] = dNdx[2, a] / SQRT2
            B[4, uz] = dNdx[1, a] / SQRT2
            B[5, ux] = dNdx[2, a] / SQRT2
            B[5, uz] = dNdx[0, a] / SQRT2
    return B
