"""Q4 shape functions (bilinear quadrilateral) and Gauss quadrature."""

from __future__ import annotations

import math
from typing import List, Tuple

import numpy as np

from thm_nonlocal.fem.shape_matrices import ShapeMatrices


def q4_shape(xi: float, eta: float):
    # N1..N4 (counter-clockwise)
    N = 0.25 * np.array(
        [(1 - xi) * (1 - eta),
         (1 + xi) * (1 - eta),
         (1 + xi) * (1 + eta),
         (1 - xi) * (1 + eta)],
        dtype=float,
    )
    dN_dxi = 0.25 * np.array(
        [-(1 - eta), (1 - eta), (1 + eta), -(1 + eta)], dtype=float
    )
    dN_deta = 0.25 * np.array(
        [-(1 - xi), -(1 + xi), (1 + xi), (1 - xi)], dtype=float
    )
    return N, dN_dxi, dN_deta


def gauss_points_2d(order: int) -> List[Tuple[float, float, float]]:
    """Tensor-product Gauss-Legendre rule ``[(xi, eta, weight), ...]``."""
    if order < 1:
        raise ValueError(f"integration order must be >= 1, got {order}")
    g, w = np.polynomial.legendre.leggauss(int(order))
    return [(float(g[i]), float(g[j]), float(w[i] * w[j])) for j in range(order) for i in range(order)]


def q4_shape_matrices(
    node_coordinates: np.ndarray,
    integration_order: int = 2,
    is_axially_symmetric: bool = False,
) -> List[ShapeMatrices]:
    """Shape data at the Gauss points of one Q4 element.

    ``node_coordinates`` is ``(4, 2)``, counter-clockwise. For axisymmetric
    elements x is the radial coordinate.
    """
    X = np.asarray(node_coordinates, dtype=float)[:, :2]
    out = []
    for xi, eta, w in gauss_points_2d(integration_order):
        N, dN_dxi, dN_deta = q4_shape(xi, eta)
        dN_dnat = np.vstack([dN_dxi, dN_deta])
        J = dN_dnat @ X
        detJ = float(np.linalg.det(J))
        if detJ <= 0.0:
            raise ValueError(f"Non-positive Jacobian determinant {detJ:g}; check node ordering")
        dNdx = np.linalg.solve(J, dN_dnat)
        measure = 2.0 * math.pi * float(N @ X[:, 0]) if is_axially_symmetric else 1.0
        out.append(ShapeMatrices(N=N, dNdx=dNdx, detJ=detJ, weight=w, integral_measure=measure))
    return out
