"""Material / process factory.

Builds the constitutive law, the nonlocal process data and element
assemblers from a
:class:`~thm_nonlocal.config.SimulationConfig`. This module centralizes that
mapping.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from thm_nonlocal.assembler import NonlocalProcessData, PressureCoupling, SmallDeformationNonlocalLocalAssembler
from thm_nonlocal.config import SimulationConfig
from thm_nonlocal.constitutive import SolidThermoPlasticBDT
from thm_nonlocal.convergence import NewtonRaphsonParameters
from thm_nonlocal.exceptions import ConfigurationError
from thm_nonlocal.fem.q4 import q4_shape_matrices
from thm_nonlocal.fem.shape_matrices import ShapeMatrices
from thm_nonlocal.material_properties import DamagePropertiesParameters, ThermoPlasticBDTParameters
from thm_nonlocal.nonlocal_averaging import IntegrationPointRegistry, NonlocalAveraging
from thm_nonlocal.parameters import make_parameter


def make_solid_material(config: SimulationConfig) -> SolidThermoPlasticBDT:
    """Instantiate the BDT law with damage from `config.material`/`config.damage`."""
    mat = config.material
    dmg = config.damage
    newton = config.local_newton

    material_parameters = ThermoPlasticBDTParameters(
        shear_modulus=make_parameter(mat.shear_modulus),
        bulk_modulus=make_parameter(mat.bulk_modulus),
        fc=make_parameter(mat.fc),
        m=make_parameter(mat.m),
        qp0=make_parameter(mat.qp0),
        alpha=make_parameter(mat.alpha),
        n=make_parameter(mat.n),
        t0=make_parameter(mat.t0),
        hardening_coefficient=make_parameter(mat.hardening_coefficient),
        tangent_type=int(mat.tangent_type),
    )
    damage_parameters = DamagePropertiesParameters(
        alpha_d=make_parameter(dmg.alpha_d),
        beta_d=make_parameter(dmg.beta_d),
        h_d=make_parameter(dmg.h_d),
        m_d=make_parameter(dmg.m_d),
    )
    solver_parameters = NewtonRaphsonParameters(
        max_iterations=int(newton.max_iterations),
        residuum_tolerance=float(newton.residuum_tolerance),
        increment_tolerance=float(newton.increment_tolerance),
    )
    return SolidThermoPlasticBDT(
        material_parameters,
        damage_parameters,
        solver_parameters,
        temperature=make_parameter(mat.temperature),
        jacobian=newton.jacobian,
    )


def make_process_data(
    config: SimulationConfig, registry: Optional[IntegrationPointRegistry] = None
) -> NonlocalProcessData:
    nl = config.nonlocal_averaging
    engine = NonlocalAveraging(
        registry if registry is not None else IntegrationPointRegistry(),
        internal_length=float(nl.internal_length),
        activation_optimization=bool(nl.activation_optimization),
        partition_of_unity_tolerance=nl.partition_of_unity_tolerance,
        use_numba=bool(nl.use_numba),
    )
    return NonlocalProcessData(engine)


def make_pressure_coupling(config: SimulationConfig) -> Optional[PressureCoupling]:
    pc = config.pressure_coupling
    if pc is None:
        return None
    return PressureCoupling(
        biot_coefficient=float(pc.biot_coefficient),
        storage=float(pc.storage),
        intrinsic_permeability=float(pc.intrinsic_permeability),
        fluid_viscosity=float(pc.fluid_viscosity),
    )


def make_assembler(
    config: SimulationConfig,
    element_id: int,
    node_coordinates: np.ndarray,
    solid_material: SolidThermoPlasticBDT,
    process_data: NonlocalProcessData,
    pressure_coupling: Optional[PressureCoupling] = None,
    shape_matrices: Optional[Sequence[ShapeMatrices]] = None,
) -> SmallDeformationNonlocalLocalAssembler:
    """One element assembler laid out as `config` prescribes.

    Without explicit ``shape_matrices`` the element is a Q4 integrated with
    ``config.integration_order``; other element types pass their own shape
    data. ``pressure_coupling`` defaults to ``config.pressure_coupling``.
    """
    if shape_matrices is None:
        if config.displacement_dim != 2:
            raise ConfigurationError(
                f"Q4 shape functions need displacement_dim=2, got {config.displacement_dim}; "
                "pass shape_matrices for other elements"
            )
        shape_matrices = q4_shape_matrices(node_coordinates, config.integration_order, config.is_axially_symmetric)
    if pressure_coupling is None:
        pressure_coupling = make_pressure_coupling(config)
    return SmallDeformationNonlocalLocalAssembler(
        element_id,
        node_coordinates,
        shape_matrices,
        solid_material,
        process_data,
        displacement_dim=config.displacement_dim,
        is_axially_symmetric=config.is_axially_symmetric,
        pressure_coupling=pressure_coupling,
        integration_order=config.integration_order,
    )
