"""Numba-accelerated kernels.

Small, stateless kernels compiled in ``nopython`` mode. Enable them with
``NonlocalConfig(use_numba=True)``; the NumPy implementation is the default
and the reference for the parity tests.
"""

from .kernels_nonlocal import alpha_0_kernel, normalized_alpha_times_w, weighted_sum

__all__ = [
    "alpha_0_kernel",
    "normalized_alpha_times_w",
    "weighted_sum",
]
