"""Local Newton-Raphson driver and convergence rules."""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve

from thm_nonlocal.exceptions import DegenerateStateError

LOG = logging.getLogger(__name__)

LUFactorization = Tuple[np.ndarray, np.ndarray]


@dataclass(frozen=True)
class NewtonRaphsonParameters:
    max_iterations: int = 100
    residuum_tolerance: float = 1e-12
    increment_tolerance: float = 0.0  # 0 disables the increment criterion

    def residual_converged(self, norm_r: float) -> bool:
        return float(norm_r) < float(self.residuum_tolerance)

    def increment_converged(self, norm_dx: float) -> bool:
        return float(norm_dx) < float(self.increment_tolerance)


def factorize(matrix: np.ndarray) -> LUFactorization:
    """LU factorisation that refuses non-finite or singular matrices."""
    if not np.all(np.isfinite(matrix)):
        raise DegenerateStateError("Local Jacobian contains NaN/Inf entries")
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", LinAlgWarning)
        lu, piv = lu_factor(matrix, check_finite=False)
    if np.any(np.diag(lu) == 0.0):
        raise DegenerateStateError("Local Jacobian is singular")
    return lu, piv


def solve_factorized(factorization: LUFactorization, rhs: np.ndarray) -> np.ndarray:
    x = lu_solve(factorization, rhs, check_finite=False)
    if not np.all(np.isfinite(x)):
        raise DegenerateStateError("Local linear solve produced NaN/Inf")
    return x


class NewtonRaphson:
    """Plain Newton-Raphson on a small dense system.

    Each iteration evaluates Jacobian and residual at the current solution. If
    the residual norm is below tolerance the loop stops; otherwise the
    increment ``J^{-1}(-r)`` is handed to ``update_solution``. After a
    successful ``solve`` the LU factorisation of the Jacobian at the converged
    state is available as ``factorization`` (needed for the tangent).
    """

    def __init__(
        self,
        jacobian: Callable[[], np.ndarray],
        residual: Callable[[], np.ndarray],
        update_solution: Callable[[np.ndarray], None],
        parameters: NewtonRaphsonParameters,
    ):
        self._jacobian = jacobian
        self._residual = residual
        self._update_solution = update_solution
        self.parameters = parameters
        self.factorization: Optional[LUFactorization] = None

    def solve(self) -> Optional[int]:
        """Return the number of iterations, or ``None`` if not converged."""
        params = self.parameters
        for iteration in range(int(params.max_iterations)):
            J = self._jacobian()
            r = self._residual()
            if not np.all(np.isfinite(r)):
                raise DegenerateStateError(f"Local residual contains NaN/Inf (iteration {iteration})")
            self.factorization = factorize(J)

            norm_r = float(np.linalg.norm(r))
            LOG.debug("local newton it=%d |r|=%.3e", iteration, norm_r)
            if params.residual_converged(norm_r):
                return iteration

            dx = solve_factorized(self.factorization, -r)
            self._update_solution(dx)
            if params.increment_tolerance > 0.0 and params.increment_converged(np.linalg.norm(dx)):
                self.factorization = factorize(self._jacobian())
                return iteration + 1

        self.factorization = None
        return None
