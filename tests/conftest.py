"""
Pytest configuration for thm-nonlocal tests.

Automatically adds src/ to sys.path so tests can import thm_nonlocal without
PYTHONPATH, and provides small factories for materials and Q4 meshes.
Units in the tests: MPa, mm, s.
"""

import sys
import os

import numpy as np
import pytest

# Add src/ for thm_nonlocal imports
repo_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
src_path = os.path.join(repo_root, 'src')

if src_path not in sys.path:
    sys.path.insert(0, src_path)

from thm_nonlocal.config import (  # noqa: E402
    DamageConfig,
    LocalNewtonConfig,
    NonlocalConfig,
    SimulationConfig,
    ThermoPlasticBDTConfig,
)
from thm_nonlocal.material_factory import make_assembler, make_process_data, make_solid_material  # noqa: E402


def base_config(**overrides) -> SimulationConfig:
    """G=1e4, K=1.5e4, fc=50, qp0=0.9, m=5 at the reference temperature."""
    material = dict(
        shear_modulus=1.0e4,
        bulk_modulus=1.5e4,
        fc=50.0,
        m=5.0,
        qp0=0.9,
        alpha=0.0,
        n=2.0,
        t0=0.0,
        hardening_coefficient=0.0,
        tangent_type=2,
        temperature=0.0,
    )
    damage = dict(alpha_d=0.01, beta_d=0.0, h_d=0.0, m_d=1.0)
    newton = dict(max_iterations=100, residuum_tolerance=1e-12, jacobian="analytical")
    nonlocal_ = dict(internal_length=1.5, activation_optimization=True, use_numba=False)
    for key, value in overrides.items():
        for group in (material, damage, newton, nonlocal_):
            if key in group:
                group[key] = value
                break
        else:
            raise KeyError(key)
    return SimulationConfig(
        material=ThermoPlasticBDTConfig(**material),
        damage=DamageConfig(**damage),
        nonlocal_averaging=NonlocalConfig(**nonlocal_),
        local_newton=LocalNewtonConfig(**newton),
    )


def structured_quad_mesh(L: float, H: float, nx: int, ny: int):
    xs = np.linspace(0.0, L, nx + 1)
    ys = np.linspace(0.0, H, ny + 1)
    nodes = np.array([[x, y] for y in ys for x in xs], dtype=float)

    def nid(i, j):  # i along x, j along y
        return j * (nx + 1) + i

    elems = []
    for j in range(ny):
        for i in range(nx):
            elems.append([nid(i, j), nid(i + 1, j), nid(i + 1, j + 1), nid(i, j + 1)])
    return nodes, np.array(elems, dtype=int)


def element_dofs(conn, dim=2):
    """Interleaved displacement DOFs of one element."""
    return np.array([dim * n + c for n in conn for c in range(dim)], dtype=int)


@pytest.fixture
def make_solid():
    def _make(**overrides):
        return make_solid_material(base_config(**overrides))
    return _make


@pytest.fixture
def make_mesh_assemblers():
    """Build one assembler per Q4 element of a structured mesh.

    Returns ``(nodes, elems, assemblers, process_data)``.
    """
    def _make(L=4.0, H=2.0, nx=4, ny=2, pressure_coupling=None, **overrides):
        config = base_config(**overrides)
        solid = make_solid_material(config)
        process_data = make_process_data(config)
        nodes, elems = structured_quad_mesh(L, H, nx, ny)
        assemblers = [
            make_assembler(config, e, nodes[conn], solid, process_data, pressure_coupling=pressure_coupling)
            for e, conn in enumerate(elems)
        ]
        return nodes, elems, assemblers, process_data
    return _make
