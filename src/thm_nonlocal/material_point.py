"""Integration-point state containers for the nonlocal damage assembler.

One :class:`IntegrationPointData` per integration point (IP) holds the shape
data, the strain/stress history, the material state of the BDT law and the
nonlocal bookkeeping (neighbours and averaging weights). IPs of other elements
are referenced through :class:`IntegrationPointHandle` ``(element_id, ip)``
and resolved via the registry of the nonlocal engine, never owned.

Kelvin vectors are used for ``eps``/``sigma``; see :mod:`thm_nonlocal.kelvin`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, NamedTuple

import numpy as np

from thm_nonlocal import kelvin
from thm_nonlocal.constitutive import Damage, SolidThermoPlasticBDT, StateVariables


class IntegrationPointHandle(NamedTuple):
    element_id: int
    ip: int


@dataclass(eq=False)
class IntegrationPointData:
    """History variables and nonlocal data at one integration point.

    - ``sigma_eff``: effective (undamaged) stress from the local integrator
    - ``sigma``: damaged stress ``(1 - damage) * sigma_eff``
    - ``kappa_d``: local damage driving variable (phase 1)
    - ``nonlocal_kappa_d``: averaged driving variable (phase 2)
    - ``active_self``: own ``kappa_d > 0``
    - ``activated``: some neighbour has ``kappa_d > 0``
    """

    solid_material: SolidThermoPlasticBDT
    N: np.ndarray
    dNdx: np.ndarray
    integration_weight: float
    coordinates: np.ndarray
    kelvin_size: int = 4

    eps: np.ndarray = field(init=False)
    eps_prev: np.ndarray = field(init=False)
    sigma: np.ndarray = field(init=False)
    sigma_prev: np.ndarray = field(init=False)
    sigma_eff: np.ndarray = field(init=False)
    C: np.ndarray = field(init=False)
    material_state_variables: StateVariables = field(init=False)

    damage: float = 0.0
    damage_prev: float = 0.0
    kappa_d: float = 0.0
    kappa_d_prev: float = 0.0
    nonlocal_kappa_d: float = 0.0
    active_self: bool = False
    activated: bool = False
    free_energy_density: float = 0.0

    neighbours: List[IntegrationPointHandle] = field(default_factory=list)
    distances2: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=float))
    alpha_kl_times_w_l: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=float))

    def __post_init__(self) -> None:
        n = int(self.kelvin_size)
        self.eps = np.zeros(n, dtype=float)
        self.eps_prev = np.zeros(n, dtype=float)
        self.sigma = np.zeros(n, dtype=float)
        self.sigma_prev = np.zeros(n, dtype=float)
        self.sigma_eff = np.zeros(n, dtype=float)
        self.C = np.zeros((n, n), dtype=float)
        self.material_state_variables = self.solid_material.create_material_state_variables(n)

    def push_back_state(self) -> None:
        """Commit the converged step (once per time step)."""
        self.eps_prev = self.eps.copy()
        self.sigma_prev = self.sigma.copy()
        self.material_state_variables.push_back_state()
        self.kappa_d_prev = float(self.kappa_d)
        self.damage_prev = float(self.damage)

    def get_local_damage_variable(self) -> float:
        return self.kappa_d

    def update_local_damage_variable(self, kappa_d: float) -> bool:
        """Store the local ``kappa_d``; return True when the point just became active."""
        self.kappa_d = float(kappa_d)
        newly_active = self.kappa_d > 0.0 and not self.active_self
        self.active_self = self.kappa_d > 0.0
        return newly_active

    def set_damage_from_nonlocal(self, nonlocal_kappa_d: float, damage: float) -> None:
        self.nonlocal_kappa_d = float(nonlocal_kappa_d)
        self.damage = float(damage)
        self.material_state_variables.damage = Damage(self.nonlocal_kappa_d, self.damage)

    def get_internal_variable(self, name: str) -> np.ndarray:
        for variable in self.solid_material.internal_variables(self.kelvin_size):
            if variable.name == name:
                return variable.getter(self.material_state_variables)
        raise KeyError(f"Unknown internal variable '{name}'")

    def update_free_energy_density(self) -> None:
        """Elastic free energy ``psi = sigma : (eps - eps_p) / 2`` of the damaged material."""
        eps_p = self.material_state_variables.eps_p
        eps_e = self.eps - eps_p.D - eps_p.V / 3.0 * kelvin.identity2(self.kelvin_size)
        self.free_energy_density = 0.5 * float(self.sigma @ eps_e)

    def physical_sigma(self) -> np.ndarray:
        return kelvin.kelvin_vector_to_symmetric_tensor(self.sigma)
