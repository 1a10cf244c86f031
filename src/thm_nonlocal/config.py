"""Configuration dataclasses for the nonlocal damage-plasticity process.

Material values may be plain numbers or parameter dicts understood by
:func:`thm_nonlocal.parameters.make_parameter`, e.g.::

    shear_modulus: 1.0e4
    fc: {type: curve, times: [0, 10], values: [50, 40]}

Units are up to the caller (the tests use MPa, mm, s).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union
import json
import yaml

from thm_nonlocal.exceptions import ConfigurationError

ParameterValue = Union[float, Dict[str, Any]]


# ============================================================================
# MATERIALS
# ============================================================================

@dataclass
class ThermoPlasticBDTConfig:
    """Thermo-plastic brittle-ductile transition law"""
    # Elastic
    shear_modulus: ParameterValue
    bulk_modulus: ParameterValue

    # Yield surface
    fc: ParameterValue  # uniaxial compressive strength
    m: ParameterValue  # friction parameter
    qp0: ParameterValue = 1.0  # transition value at reference temperature
    alpha: ParameterValue = 0.0  # temperature sensitivity
    n: ParameterValue = 2.0  # transition exponent
    t0: ParameterValue = 0.0  # reference temperature
    hardening_coefficient: ParameterValue = 0.0

    # 0: elastic, 1: damage-scaled, 2: consistent plastic
    tangent_type: int = 2

    # External temperature field
    temperature: ParameterValue = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shear_modulus": self.shear_modulus,
            "bulk_modulus": self.bulk_modulus,
            "fc": self.fc,
            "m": self.m,
            "qp0": self.qp0,
            "alpha": self.alpha,
            "n": self.n,
            "t0": self.t0,
            "hardening_coefficient": self.hardening_coefficient,
            "tangent_type": self.tangent_type,
            "temperature": self.temperature,
        }


@dataclass
class DamageConfig:
    """Exponential damage law driven by the nonlocal kappa_d"""
    alpha_d: ParameterValue
    beta_d: ParameterValue = 0.0  # residual fraction (damage <= 1 - beta_d)
    h_d: ParameterValue = 0.0  # brittleness
    m_d: ParameterValue = 1.0  # overnonlocal factor gamma

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alpha_d": self.alpha_d,
            "beta_d": self.beta_d,
            "h_d": self.h_d,
            "m_d": self.m_d,
        }


# ============================================================================
# SOLVERS / PROCESS
# ============================================================================

@dataclass
class LocalNewtonConfig:
    """Local (integration point) Newton-Raphson settings"""
    max_iterations: int = 100
    residuum_tolerance: float = 1e-12
    increment_tolerance: float = 0.0
    jacobian: str = "analytical"  # "analytical" or "numerical"

    def __post_init__(self):
        if self.jacobian not in ("analytical", "numerical"):
            raise ConfigurationError(f"Unknown local Jacobian type '{self.jacobian}'")
        if self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {self.max_iterations}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_iterations": self.max_iterations,
            "residuum_tolerance": self.residuum_tolerance,
            "increment_tolerance": self.increment_tolerance,
            "jacobian": self.jacobian,
        }


@dataclass
class NonlocalConfig:
    """Nonlocal averaging"""
    internal_length: float
    activation_optimization: bool = True
    partition_of_unity_tolerance: Optional[float] = None  # None: scaled with neighbour count
    use_numba: bool = False

    def __post_init__(self):
        if self.internal_length <= 0.0:
            raise ConfigurationError(f"internal_length must be positive, got {self.internal_length}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "internal_length": self.internal_length,
            "activation_optimization": self.activation_optimization,
            "partition_of_unity_tolerance": self.partition_of_unity_tolerance,
            "use_numba": self.use_numba,
        }


@dataclass
class PressureCouplingConfig:
    """Hydro-mechanical coupling (Biot / Darcy)"""
    biot_coefficient: float = 1.0
    storage: float = 0.0
    intrinsic_permeability: float = 0.0
    fluid_viscosity: float = 1.0e-3

    def to_dict(self) -> Dict[str, Any]:
        return {
            "biot_coefficient": self.biot_coefficient,
            "storage": self.storage,
            "intrinsic_permeability": self.intrinsic_permeability,
            "fluid_viscosity": self.fluid_viscosity,
        }


@dataclass
class SimulationConfig:
    """Complete process configuration"""
    material: ThermoPlasticBDTConfig
    damage: DamageConfig
    nonlocal_averaging: NonlocalConfig
    local_newton: LocalNewtonConfig = field(default_factory=LocalNewtonConfig)
    pressure_coupling: Optional[PressureCouplingConfig] = None

    displacement_dim: int = 2
    is_axially_symmetric: bool = False
    integration_order: int = 2

    def __post_init__(self):
        if self.displacement_dim not in (2, 3):
            raise ConfigurationError(f"displacement_dim must be 2 or 3, got {self.displacement_dim}")
        if self.is_axially_symmetric and self.displacement_dim != 2:
            raise ConfigurationError("Axially symmetric processes need displacement_dim=2")
        if self.integration_order < 1:
            raise ConfigurationError(f"integration_order must be >= 1, got {self.integration_order}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/YAML export"""
        return {
            "material": self.material.to_dict(),
            "damage": self.damage.to_dict(),
            "nonlocal_averaging": self.nonlocal_averaging.to_dict(),
            "local_newton": self.local_newton.to_dict(),
            "pressure_coupling": self.pressure_coupling.to_dict() if self.pressure_coupling else None,
            "displacement_dim": self.displacement_dim,
            "is_axially_symmetric": self.is_axially_symmetric,
            "integration_order": self.integration_order,
        }

    def save_json(self, filepath: str):
        """Save to JSON file"""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def save_yaml(self, filepath: str):
        """Save to YAML file"""
        with open(filepath, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)

    @classmethod
    def load_json(cls, filepath: str) -> 'SimulationConfig':
        """Load from JSON file"""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def load_yaml(cls, filepath: str) -> 'SimulationConfig':
        """Load from YAML file"""
        with open(filepath, 'r') as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SimulationConfig':
        """Construct from dictionary (inverse of to_dict)"""
        try:
            pressure = data.get("pressure_coupling")
            return cls(
                material=ThermoPlasticBDTConfig(**data["material"]),
                damage=DamageConfig(**data["damage"]),
                nonlocal_averaging=NonlocalConfig(**data["nonlocal_averaging"]),
                local_newton=LocalNewtonConfig(**data.get("local_newton", {})),
                pressure_coupling=PressureCouplingConfig(**pressure) if pressure else None,
                displacement_dim=int(data.get("displacement_dim", 2)),
                is_axially_symmetric=bool(data.get("is_axially_symmetric", False)),
                integration_order=int(data.get("integration_order", 2)),
            )
        except (KeyError, TypeError) as exc:
            raise ConfigurationError(f"Invalid simulation configuration: {exc}") from exc
