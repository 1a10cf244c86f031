"""Per integration point shape data consumed by the local assemblers."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ShapeMatrices:
    """Shape data at one integration point.

    ``dNdx`` has shape ``(dim, n_nodes)``. ``integral_measure`` is 1 for plane
    problems and ``2*pi*r`` for axisymmetric ones.
    """

    N: np.ndarray
    dNdx: np.ndarray
    detJ: float
    weight: float
    integral_measure: float = 1.0

    @property
    def integration_weight(self) -> float:
        return float(self.weight * self.detJ * self.integral_measure)
