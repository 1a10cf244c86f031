"""Nonlocal averaging of the damage driving variable.

Phase A (:meth:`NonlocalAveraging.discover`) finds, for every registered
integration point ``k``, all points ``l`` with ``|x_k - x_l|^2 < L^2`` (``k``
itself included) and stores the normalised weights::

    alpha_0(d^2) = (1 - d^2 / L^2)^2
    alpha_kl     = alpha_0(d_kl^2) / sum_m alpha_0(d_km^2) w_m

as ``alpha_kl * w_l`` so that ``sum_l alpha_kl w_l = 1`` (partition of unity).

Phase B (:meth:`NonlocalAveraging.nonlocal_kappa_d`) blends the local value
with the weighted neighbour sum using the overnonlocal factor ``gamma``::

    kappa_nl = (1 - gamma) kappa_k + gamma * sum_l alpha_kl w_l kappa_l

Phase B only reads other points, so it may run in parallel over elements once
phase 1 of the assembler has finished everywhere.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, Optional, Protocol, Sequence, Tuple

import numpy as np
from scipy.spatial import KDTree

from thm_nonlocal.exceptions import NonlocalWeightsError
from thm_nonlocal.material_point import IntegrationPointData, IntegrationPointHandle
from thm_nonlocal.numba import kernels_nonlocal

LOG = logging.getLogger(__name__)


class HasIntegrationPoints(Protocol):
    ip_data: Sequence[IntegrationPointData]


def alpha_0(distance2: np.ndarray, internal_length2: float) -> np.ndarray:
    d2 = np.asarray(distance2, dtype=float)
    return np.where(d2 >= internal_length2, 0.0, (1.0 - d2 / internal_length2) ** 2)


def partition_of_unity_tolerance(n_neighbours: int) -> float:
    """Round-off allowance for ``sum alpha_kl w_l == 1``, in ``[1e-10, 1e-6]``."""
    return float(np.clip(n_neighbours * 1e-13, 1e-10, 1e-6))


class IntegrationPointRegistry:
    """Element id -> assembler lookup; the arena behind IP handles.

    ``mesh_version`` changes on every (re-)registration so cached neighbour
    data can be invalidated.
    """

    def __init__(self):
        self._elements: Dict[int, HasIntegrationPoints] = {}
        self.mesh_version = 0

    def register(self, element_id: int, element: HasIntegrationPoints) -> None:
        self._elements[int(element_id)] = element
        self.mesh_version += 1

    def unregister(self, element_id: int) -> None:
        del self._elements[int(element_id)]
        self.mesh_version += 1

    def invalidate(self) -> None:
        self.mesh_version += 1

    def __len__(self) -> int:
        return len(self._elements)

    def __contains__(self, element_id: int) -> bool:
        return int(element_id) in self._elements

    def resolve(self, handle: IntegrationPointHandle) -> IntegrationPointData:
        try:
            return self._elements[handle.element_id].ip_data[handle.ip]
        except (KeyError, IndexError) as exc:
            raise LookupError(f"Integration point {handle} is not registered") from exc

    def integration_points(self) -> Iterator[Tuple[IntegrationPointHandle, IntegrationPointData]]:
        for element_id in sorted(self._elements):
            for ip, ip_data in enumerate(self._elements[element_id].ip_data):
                yield IntegrationPointHandle(element_id, ip), ip_data


class NonlocalAveraging:
    def __init__(
        self,
        registry: IntegrationPointRegistry,
        internal_length: float,
        activation_optimization: bool = True,
        partition_of_unity_tolerance: Optional[float] = None,
        use_numba: bool = False,
    ):
        if internal_length <= 0.0:
            raise ValueError(f"internal_length must be positive, got {internal_length}")
        self.registry = registry
        self.internal_length = float(internal_length)
        self.activation_optimization = bool(activation_optimization)
        self.partition_of_unity_tolerance = partition_of_unity_tolerance
        self.use_numba = bool(use_numba)
        self._cache_key: Optional[Tuple[int, float]] = None

    @property
    def internal_length2(self) -> float:
        return self.internal_length**2

    def _normalized_weights(self, distances2: np.ndarray, weights: np.ndarray) -> np.ndarray:
        if self.use_numba:
            return kernels_nonlocal.normalized_alpha_times_w(distances2, weights, self.internal_length2)
        a = alpha_0(distances2, self.internal_length2) * weights
        with np.errstate(invalid="ignore", divide="ignore"):
            return a / a.sum()

    def discover(self, force: bool = False) -> bool:
        """Neighbour search and weight computation (phase A).

        Cached per ``(registry.mesh_version, internal_length)``; returns True
        if the neighbour data was (re)computed.
        """
        key = (self.registry.mesh_version, self.internal_length)
        if not force and key == self._cache_key:
            return False

        entries = list(self.registry.integration_points())
        if not entries:
            self._cache_key = key
            return True
        handles = [h for h, _ in entries]
        points = [p for _, p in entries]
        coords = np.array([_coordinates3(p.coordinates) for p in points])
        weights = np.array([p.integration_weight for p in points], dtype=float)

        L2 = self.internal_length2
        tree = KDTree(coords)
        candidates = tree.query_ball_point(coords, r=self.internal_length)

        counts = []
        for k, (handle, ip_data) in enumerate(entries):
            idx = np.array(sorted(candidates[k]), dtype=int)
            d2 = np.sum((coords[idx] - coords[k]) ** 2, axis=1)
            inside = d2 < L2
            idx, d2 = idx[inside], d2[inside]
            if idx.size <= 1:
                raise NonlocalWeightsError(
                    f"No neighbours found for integration point {handle} at {coords[k]} "
                    f"within internal length {self.internal_length}"
                )

            alpha_kl_times_w_l = self._normalized_weights(d2, weights[idx])
            total = float(np.sum(alpha_kl_times_w_l))
            tol = (
                self.partition_of_unity_tolerance
                if self.partition_of_unity_tolerance is not None
                else partition_of_unity_tolerance(idx.size)
            )
            # NaN weights (zero weight sum) must fail as well
            if not abs(total - 1.0) <= tol:
                raise NonlocalWeightsError(
                    f"Partition of unity violated at {handle}: sum alpha_kl w_l = {total:.16g} (tol {tol:g})"
                )

            ip_data.neighbours = [handles[i] for i in idx]
            ip_data.distances2 = d2
            ip_data.alpha_kl_times_w_l = alpha_kl_times_w_l
            counts.append(idx.size)

        self._refresh_activation(points)
        self._cache_key = key
        LOG.debug(
            "nonlocal discovery: %d points, neighbours min/mean/max = %d/%.1f/%d",
            len(points),
            min(counts),
            float(np.mean(counts)),
            max(counts),
        )
        return True

    def _refresh_activation(self, points: Sequence[IntegrationPointData]) -> None:
        for p in points:
            p.activated = False
        for p in points:
            if p.active_self:
                self.activate_neighbours(p)

    def activate_neighbours(self, ip_data: IntegrationPointData) -> None:
        """Mark all neighbours of ``ip_data`` as influenced by a nonzero kappa_d."""
        for handle in ip_data.neighbours:
            self.registry.resolve(handle).activated = True

    def nonlocal_kappa_d(self, ip_data: IntegrationPointData, gamma: float) -> float:
        """Averaged damage driving variable at one point (phase B)."""
        if self.activation_optimization and not (ip_data.active_self or ip_data.activated):
            nonlocal_sum = 0.0
        else:
            values = np.array([self.registry.resolve(h).kappa_d for h in ip_data.neighbours], dtype=float)
            if self.use_numba:
                nonlocal_sum = kernels_nonlocal.weighted_sum(ip_data.alpha_kl_times_w_l, values)
            else:
                nonlocal_sum = float(ip_data.alpha_kl_times_w_l @ values)

        kappa = (1.0 - gamma) * ip_data.kappa_d + gamma * nonlocal_sum
        if kappa < 0.0:
            LOG.warning("nonlocal kappa_d = %g < 0, set to zero", kappa)
            kappa = 0.0
        return float(kappa)


def _coordinates3(x: np.ndarray) -> np.ndarray:
    c = np.zeros(3, dtype=float)
    x = np.asarray(x, dtype=float).ravel()
    c[: x.size] = x
    return c
