"""thm_nonlocal package (nonlocal damage-plasticity local assembly)."""

from .assembler import NonlocalProcessData, PressureCoupling, SmallDeformationNonlocalLocalAssembler
from .assembly import assemble_nonlocal, commit_timestep
from .config import SimulationConfig
from .constitutive import SolidThermoPlasticBDT, StateVariables, StressIntegrationResult
from .convergence import NewtonRaphsonParameters
from .exceptions import (
    ConfigurationError,
    ConstitutiveIntegrationError,
    DamageRangeError,
    DegenerateStateError,
    NonlocalWeightsError,
)
from .material_point import IntegrationPointData, IntegrationPointHandle
from .nonlocal_averaging import IntegrationPointRegistry, NonlocalAveraging

__all__ = [
    "NonlocalProcessData", "PressureCoupling", "SmallDeformationNonlocalLocalAssembler",
    "assemble_nonlocal", "commit_timestep",
    "SimulationConfig",
    "SolidThermoPlasticBDT", "StateVariables", "StressIntegrationResult",
    "NewtonRaphsonParameters",
    "ConfigurationError", "ConstitutiveIntegrationError", "DamageRangeError",
    "DegenerateStateError", "NonlocalWeightsError",
    "IntegrationPointData", "IntegrationPointHandle",
    "IntegrationPointRegistry", "NonlocalAveraging",
]
