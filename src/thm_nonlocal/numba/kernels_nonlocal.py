"""Numba kernels for nonlocal averaging.

Stateless: they work on the flat per-point arrays stored in
:class:`~thm_nonlocal.material_point.IntegrationPointData`
(``distances2``, ``alpha_kl_times_w_l``) and on gathered ``kappa_d`` values.
The NumPy path in :mod:`thm_nonlocal.nonlocal_averaging` computes the same
quantities.
"""

from __future__ import annotations

import numpy as np
from numba import njit


@njit(cache=True)
def alpha_0_kernel(distance2: float, internal_length2: float) -> float:
    """Bell-shaped weight ``(1 - d^2/L^2)^2``, zero for ``d^2 >= L^2``."""
    if distance2 >= internal_length2:
        return 0.0
    r = 1.0 - distance2 / internal_length2
    return r * r


@njit(cache=True)
def normalized_alpha_times_w(distances2: np.ndarray, weights: np.ndarray, internal_length2: float) -> np.ndarray:
    """``alpha_kl * w_l = alpha_0(d_kl) w_l / sum_m alpha_0(d_km) w_m``, NaN for a zero sum."""
    n = distances2.shape[0]
    out = np.empty(n, dtype=np.float64)
    total = 0.0
    for i in range(n):
        out[i] = alpha_0_kernel(distances2[i], internal_length2) * weights[i]
        total += out[i]
    if total == 0.0:
        out[:] = np.nan
        return out
    for i in range(n):
        out[i] /= total
    return out


@njit(cache=True)
def weighted_sum(alpha_kl_times_w_l: np.ndarray, values: np.ndarray) -> float:
    s = 0.0
    for i in range(alpha_kl_times_w_l.shape[0]):
        s += alpha_kl_times_w_l[i] * values[i]
    return s
