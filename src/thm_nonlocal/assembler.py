"""Local assembler for small-deformation mechanics with nonlocal damage.

Assembly of one global iteration runs in two phases that must be separated by
a barrier over *all* elements:

1. :meth:`SmallDeformationNonlocalLocalAssembler.pre_assemble` integrates the
   constitutive law at every integration point and stores the effective
   stress, the tangent and the local damage driving variable ``kappa_d``.
   After the barrier :meth:`SmallDeformationNonlocalLocalAssembler.propagate_activation`
   flags the neighbours of newly active points.
2. :meth:`SmallDeformationNonlocalLocalAssembler.assemble_with_jacobian` reads
   ``kappa_d`` of the neighbouring points (possibly in other elements),
   computes the nonlocal damage and assembles residual and Jacobian.

Conventions
-----------
* Residual ``b = -f_int`` and Jacobian ``J = d f_int / dx``.
* Displacement DOFs are interleaved per node, see :mod:`thm_nonlocal.fem.bmatrix`.
* With pressure coupling the element vector is ``[p (n_nodes), u (n_nodes*dim)]``
  and the momentum balance uses the Biot effective stress
  ``sigma' - alpha * p * I``.
* The damage sensitivity of the stress is not linearised; the material
  tangent is used as returned by the constitutive law (its tangent type
  decides whether damage scaling is included).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from thm_nonlocal import kelvin
from thm_nonlocal.constitutive import SolidThermoPlasticBDT
from thm_nonlocal.exceptions import ConstitutiveIntegrationError, DamageRangeError, DegenerateStateError
from thm_nonlocal.fem.bmatrix import compute_b_matrix
from thm_nonlocal.fem.shape_matrices import ShapeMatrices
from thm_nonlocal.material_point import IntegrationPointData
from thm_nonlocal.nonlocal_averaging import IntegrationPointRegistry, NonlocalAveraging
from thm_nonlocal.parameters import SpatialPosition

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class PressureCoupling:
    """Biot/Darcy coefficients of the pressure-coupled variant."""

    biot_coefficient: float = 1.0
    storage: float = 0.0
    intrinsic_permeability: float = 0.0
    fluid_viscosity: float = 1.0e-3

    def __post_init__(self):
        if self.fluid_viscosity <= 0.0:
            raise ValueError(f"fluid_viscosity must be positive, got {self.fluid_viscosity}")

    @property
    def mobility(self) -> float:
        return self.intrinsic_permeability / self.fluid_viscosity


@dataclass
class NonlocalProcessData:
    nonlocal_averaging: NonlocalAveraging

    @property
    def registry(self) -> IntegrationPointRegistry:
        return self.nonlocal_averaging.registry


class SmallDeformationNonlocalLocalAssembler:
    def __init__(
        self,
        element_id: int,
        node_coordinates: np.ndarray,
        shape_matrices: Sequence[ShapeMatrices],
        solid_material: SolidThermoPlasticBDT,
        process_data: NonlocalProcessData,
        displacement_dim: int = 2,
        is_axially_symmetric: bool = False,
        pressure_coupling: Optional[PressureCoupling] = None,
        integration_order: int = 2,
    ):
        self.element_id = int(element_id)
        self.solid_material = solid_material
        self.process_data = process_data
        self.displacement_dim = int(displacement_dim)
        self.is_axially_symmetric = bool(is_axially_symmetric)
        self.pressure_coupling = pressure_coupling
        self.integration_order = int(integration_order)
        self.kelvin_size = kelvin.kelvin_vector_size(self.displacement_dim)

        nodes = np.asarray(node_coordinates, dtype=float)
        self.n_nodes = nodes.shape[0]
        self.shape_matrices = list(shape_matrices)
        self.ip_data: List[IntegrationPointData] = []
        self._b_matrices: List[np.ndarray] = []
        for sm in self.shape_matrices:
            coordinates = sm.N @ nodes[:, : self.displacement_dim]
            self._b_matrices.append(
                compute_b_matrix(sm.dNdx, sm.N, float(coordinates[0]), self.displacement_dim, self.is_axially_symmetric)
            )
            self.ip_data.append(
                IntegrationPointData(
                    solid_material=solid_material,
                    N=sm.N,
                    dNdx=sm.dNdx,
                    integration_weight=sm.integration_weight,
                    coordinates=coordinates,
                    kelvin_size=self.kelvin_size,
                )
            )
        self._pre_assembled = False
        self._newly_active: List[IntegrationPointData] = []
        process_data.registry.register(self.element_id, self)

    # ------------------------
    # DOF layout
    # ------------------------

    @property
    def n_displacement_dofs(self) -> int:
        return self.n_nodes * self.displacement_dim

    @property
    def n_pressure_dofs(self) -> int:
        return self.n_nodes if self.pressure_coupling is not None else 0

    @property
    def num_dofs(self) -> int:
        return self.n_pressure_dofs + self.n_displacement_dofs

    def _split(self, local_x: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        x = np.asarray(local_x, dtype=float).ravel()
        if x.size != self.num_dofs:
            raise ValueError(f"Element {self.element_id}: expected {self.num_dofs} local DOFs, got {x.size}")
        n_p = self.n_pressure_dofs
        return x[:n_p], x[n_p:]

    def _position(self, ip: int) -> SpatialPosition:
        return SpatialPosition(self.element_id, ip, self.ip_data[ip].coordinates)

    # ------------------------
    # Phase 1
    # ------------------------

    def pre_assemble(self, t: float, dt: float, local_x: np.ndarray) -> None:
        """Local constitutive update at every integration point.

        Only this element's points are written. Points that became active are
        queued for :meth:`propagate_activation`.
        """
        _, u = self._split(local_x)
        self._newly_active = []

        for ip, (ip_data, B) in enumerate(zip(self.ip_data, self._b_matrices)):
            x_position = self._position(ip)
            ip_data.eps = B @ u

            if ip_data.damage_prev >= 1.0:
                raise DegenerateStateError(
                    f"Element {self.element_id}, ip {ip}: fully damaged (damage_prev={ip_data.damage_prev})"
                )
            sigma_eff_prev = ip_data.sigma_prev / (1.0 - ip_data.damage_prev)

            solution = self.solid_material.integrate_stress(
                t, x_position, dt, ip_data.eps_prev, ip_data.eps, sigma_eff_prev, ip_data.material_state_variables
            )
            if solution is None:
                raise ConstitutiveIntegrationError(
                    f"Computation of local constitutive relation failed in element {self.element_id}, "
                    f"integration point {ip} (t={t:g})"
                )
            ip_data.sigma_eff, ip_data.material_state_variables, ip_data.C = solution

            state = ip_data.material_state_variables
            eps_p_eff_diff = state.eps_p.eff - state.eps_p_prev.eff
            kappa_d = self.solid_material.calculate_damage_kappa_d(
                t, x_position, eps_p_eff_diff, ip_data.sigma_eff, ip_data.kappa_d_prev
            )
            if ip_data.update_local_damage_variable(kappa_d):
                LOG.debug("element %d ip %d: kappa_d activated (%g)", self.element_id, ip, kappa_d)
                self._newly_active.append(ip_data)

        self._pre_assembled = True

    def propagate_activation(self) -> int:
        """Flag the neighbours of points activated in :meth:`pre_assemble`.

        Writes into integration points of other elements, so it must run
        after the phase-1 barrier and before any phase-2 call.
        """
        nonlocal_averaging = self.process_data.nonlocal_averaging
        for ip_data in self._newly_active:
            nonlocal_averaging.activate_neighbours(ip_data)
        n = len(self._newly_active)
        self._newly_active = []
        return n

    # ------------------------
    # Phase 2
    # ------------------------

    def _update_nonlocal_damage(self, t: float) -> None:
        nonlocal_averaging = self.process_data.nonlocal_averaging
        for ip, ip_data in enumerate(self.ip_data):
            x_position = self._position(ip)
            gamma = self.solid_material.get_overnonlocal_gamma_factor(t, x_position)
            nonlocal_kappa_d = nonlocal_averaging.nonlocal_kappa_d(ip_data, gamma)

            damage = max(0.0, self.solid_material.calculate_damage(t, x_position, nonlocal_kappa_d))
            if damage > 1.0:
                raise DamageRangeError(
                    f"Element {self.element_id}, ip {ip}: damage {damage:g} > 1 (kappa_d={nonlocal_kappa_d:g})"
                )
            ip_data.set_damage_from_nonlocal(nonlocal_kappa_d, damage)
            ip_data.sigma = ip_data.sigma_eff * (1.0 - damage)
            ip_data.update_free_energy_density()

    def assemble_with_jacobian(
        self,
        t: float,
        dt: float,
        local_x: np.ndarray,
        local_xdot: Optional[np.ndarray] = None,
        dxdot_dx: float = 0.0,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(local_b, local_Jac)``; requires :meth:`pre_assemble` first."""
        if not self._pre_assembled:
            raise RuntimeError(
                f"Element {self.element_id}: pre_assemble must run for all elements before assemble_with_jacobian"
            )
        p, u = self._split(local_x)
        if local_xdot is None:
            p_dot, u_dot = np.zeros_like(p), np.zeros_like(u)
        else:
            p_dot, u_dot = self._split(local_xdot)

        self._update_nonlocal_damage(t)

        n_p = self.n_pressure_dofs
        b = np.zeros(self.num_dofs, dtype=float)
        J = np.zeros((self.num_dofs, self.num_dofs), dtype=float)
        u_dofs = slice(n_p, self.num_dofs)
        p_dofs = slice(0, n_p)
        m = kelvin.identity2(self.kelvin_size)
        pc = self.pressure_coupling

        for ip_data, B in zip(self.ip_data, self._b_matrices):
            w = ip_data.integration_weight
            sigma = ip_data.sigma
            if pc is not None:
                sigma = sigma - pc.biot_coefficient * float(ip_data.N @ p) * m

            b[u_dofs] -= B.T @ sigma * w
            J[u_dofs, u_dofs] += B.T @ ip_data.C @ B * w

            if pc is None:
                continue

            N_p, dNdx_p = ip_data.N, ip_data.dNdx
            mB = m @ B
            J[u_dofs, p_dofs] -= pc.biot_coefficient * np.outer(B.T @ m, N_p) * w

            storage_rate = pc.storage * float(N_p @ p_dot) + pc.biot_coefficient * float(mB @ u_dot)
            darcy = dNdx_p.T @ (pc.mobility * (dNdx_p @ p))
            b[p_dofs] -= (N_p * storage_rate + darcy) * w
            J[p_dofs, p_dofs] += (pc.storage * np.outer(N_p, N_p) * dxdot_dx + pc.mobility * dNdx_p.T @ dNdx_p) * w
            J[p_dofs, u_dofs] += pc.biot_coefficient * np.outer(N_p, mB) * dxdot_dx * w

        self._pre_assembled = False
        return b, J

    # ------------------------
    # Time stepping
    # ------------------------

    def pre_timestep(self) -> None:
        self._pre_assembled = False

    def post_timestep(self) -> None:
        for ip_data in self.ip_data:
            ip_data.push_back_state()

    # ------------------------
    # Output
    # ------------------------

    def get_int_pt_sigma(self) -> np.ndarray:
        """``(n_ip, kelvin_size)`` physical stress components."""
        return np.array([d.physical_sigma() for d in self.ip_data])

    def get_int_pt_epsilon(self) -> np.ndarray:
        return np.array([kelvin.kelvin_vector_to_symmetric_tensor(d.eps) for d in self.ip_data])

    def get_int_pt_damage(self) -> np.ndarray:
        return np.array([d.damage for d in self.ip_data], dtype=float)

    def get_int_pt_kappa_d(self) -> np.ndarray:
        return np.array([d.kappa_d for d in self.ip_data], dtype=float)

    def get_int_pt_nonlocal_kappa_d(self) -> np.ndarray:
        return np.array([d.nonlocal_kappa_d for d in self.ip_data], dtype=float)

    def get_int_pt_internal_variable(self, name: str) -> np.ndarray:
        return np.array([d.get_internal_variable(name) for d in self.ip_data])

    def get_int_pt_free_energy_density(self) -> np.ndarray:
        return np.array([d.free_energy_density for d in self.ip_data], dtype=float)

    def get_nodal_forces(self) -> np.ndarray:
        """Internal forces ``sum B^T sigma w`` (displacement DOFs only)."""
        f = np.zeros(self.n_displacement_dofs, dtype=float)
        for ip_data, B in zip(self.ip_data, self._b_matrices):
            f += B.T @ ip_data.sigma * ip_data.integration_weight
        return f

    def get_material_forces(self, local_x: np.ndarray) -> np.ndarray:
        """Configurational nodal forces from the Eshelby stress.

        ``Sigma = psi I - grad(u)^T sigma`` integrated against the shape
        function gradients; interleaved like the displacement DOFs. Uses the
        stress and free energy of the last assembly.
        """
        _, u = self._split(local_x)
        dim = self.displacement_dim
        U = u.reshape(self.n_nodes, dim)
        f = np.zeros((self.n_nodes, dim), dtype=float)
        for ip_data in self.ip_data:
            w = ip_data.integration_weight
            psi = ip_data.free_energy_density
            sigma = kelvin.kelvin_vector_to_tensor(ip_data.sigma)
            grad_u = U.T @ ip_data.dNdx.T  # du_i / dx_j
            eshelby = psi * np.eye(dim) - grad_u.T @ sigma[:dim, :dim]
            f += (eshelby @ ip_data.dNdx).T * w
            if self.is_axially_symmetric:
                r = float(ip_data.coordinates[0])
                u_r = float(ip_data.N @ U[:, 0])
                f[:, 0] += (psi - u_r / r * sigma[2, 2]) * ip_data.N / r * w
        return f.ravel()

    def compute_crack_volume(self, local_x: np.ndarray) -> float:
        """Damage-weighted volume change ``sum div(u) * damage * w``."""
        _, u = self._split(local_x)
        m = kelvin.identity2(self.kelvin_size)
        return float(
            sum(float(m @ (B @ u)) * d.damage * d.integration_weight for d, B in zip(self.ip_data, self._b_matrices))
        )

    # ------------------------
    # Checkpointing
    # ------------------------

    def get_ip_data(self, name: str) -> np.ndarray:
        if name == "sigma_ip":
            return self.get_int_pt_sigma().ravel()
        if name == "kappa_d_ip":
            return self.get_int_pt_kappa_d()
        raise KeyError(f"Unknown integration point data '{name}'")

    def _check_integration_order(self, integration_order: int) -> None:
        if int(integration_order) != self.integration_order:
            raise ValueError(
                f"Element {self.element_id}: integration order {integration_order} of the initial condition "
                f"differs from the assembler's integration order {self.integration_order}"
            )

    def set_ip_data_initial_conditions(self, name: str, values: np.ndarray, integration_order: int) -> int:
        """Restore integration point data; returns the number of points set (0 for unknown names)."""
        if name not in ("sigma_ip", "kappa_d_ip"):
            return 0
        self._check_integration_order(integration_order)
        n_ip = len(self.ip_data)
        values = np.asarray(values, dtype=float).ravel()

        if name == "sigma_ip":
            values = values.reshape(n_ip, self.kelvin_size)
            for ip_data, v in zip(self.ip_data, values):
                ip_data.sigma = kelvin.symmetric_tensor_to_kelvin_vector(v)
                ip_data.sigma_prev = ip_data.sigma.copy()
            return n_ip

        if values.size != n_ip:
            raise ValueError(f"Element {self.element_id}: expected {n_ip} kappa_d values, got {values.size}")
        for ip_data, v in zip(self.ip_data, values):
            self._restore_kappa_d(ip_data, float(v))
        return n_ip

    def set_ip_data_initial_conditions_from_cell_data(self, name: str, values: Sequence[float]) -> None:
        if name != "kappa_d_ip":
            return
        if len(values) != 1:
            raise ValueError(f"Cell data '{name}' must have a single component, got {len(values)}")
        for ip_data in self.ip_data:
            self._restore_kappa_d(ip_data, float(values[0]))

    def _restore_kappa_d(self, ip_data: IntegrationPointData, kappa_d: float) -> None:
        ip_data.kappa_d_prev = kappa_d
        if ip_data.update_local_damage_variable(kappa_d):
            self.process_data.nonlocal_averaging.activate_neighbours(ip_data)
