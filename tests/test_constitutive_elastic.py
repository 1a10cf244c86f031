"""Elastic predictor path of the BDT law."""

import numpy as np
import pytest

from thm_nonlocal import kelvin
from thm_nonlocal.constitutive import StateVariables
from thm_nonlocal.parameters import SpatialPosition

X = SpatialPosition(element_id=0, integration_point=0)


def _strain(size, scale=1e-5):
    base = np.array([1.0, -0.5, 0.3, 0.2, -0.1, 0.4])
    return scale * base[:size]


@pytest.mark.parametrize("size", [4, 6])
@pytest.mark.parametrize("G,K", [(1.0e4, 1.5e4), (5.0e3, 2.0e4), (3.0e4, 3.0e4)])
def test_elastic_step_matches_hooke(make_solid, size, G, K):
    solid = make_solid(shear_modulus=G, bulk_modulus=K)
    eps = _strain(size)
    state = StateVariables.create(size)

    result = solid.integrate_stress(0.0, X, 1.0, np.zeros(size), eps, np.zeros(size), state)

    C = kelvin.elastic_tangent(K, G, size)
    assert result is not None
    np.testing.assert_allclose(result.sigma, C @ eps, rtol=1e-12, atol=1e-14)
    np.testing.assert_allclose(result.C, C, rtol=1e-14)
    assert result.state.eps_p.eff == 0.0
    np.testing.assert_array_equal(result.state.eps_p.D, np.zeros(size))


def test_uniaxial_strain_2d(make_solid):
    """eps = [e, 0, 0, 0] gives sigma = 2G eps + (K - 2G/3) tr(eps) I."""
    G, K, e = 1.0e4, 1.5e4, -1.0e-3  # compression stays elastic
    solid = make_solid()
    eps = np.array([e, 0.0, 0.0, 0.0])
    result = solid.integrate_stress(0.0, X, 1.0, np.zeros(4), eps, np.zeros(4), StateVariables.create(4))

    expected = 2.0 * G * eps + (K - 2.0 * G / 3.0) * e * kelvin.identity2(4)
    np.testing.assert_allclose(result.sigma, expected, rtol=1e-12)


def test_zero_trial_stress_returns_elastic_tangent(make_solid):
    solid = make_solid()
    result = solid.integrate_stress(0.0, X, 1.0, np.zeros(4), np.zeros(4), np.zeros(4), StateVariables.create(4))
    np.testing.assert_array_equal(result.sigma, np.zeros(4))
    np.testing.assert_allclose(result.C, kelvin.elastic_tangent(1.5e4, 1.0e4, 4))


def test_stress_is_incremental_from_previous_stress(make_solid):
    """A restored initial stress is kept when the strain does not change."""
    solid = make_solid()
    sigma_prev = np.array([-5.0, -3.0, -4.0, 0.5])
    eps_prev = np.array([1e-5, 0.0, 0.0, 0.0])

    same = solid.integrate_stress(0.0, X, 1.0, eps_prev, eps_prev, sigma_prev, StateVariables.create(4))
    np.testing.assert_allclose(same.sigma, sigma_prev, rtol=1e-14)

    deps = np.array([0.0, 2e-5, 0.0, 0.0])
    step = solid.integrate_stress(0.0, X, 1.0, eps_prev, eps_prev + deps, sigma_prev, StateVariables.create(4))
    np.testing.assert_allclose(step.sigma, sigma_prev + kelvin.elastic_tangent(1.5e4, 1.0e4, 4) @ deps, rtol=1e-12)


def test_inputs_are_not_modified(make_solid):
    solid = make_solid()
    state = StateVariables.create(4)
    state.eps_p_prev.eff = 1e-4
    eps = _strain(4)
    eps_copy = eps.copy()

    result = solid.integrate_stress(0.0, X, 1.0, np.zeros(4), eps, np.zeros(4), state)

    np.testing.assert_array_equal(eps, eps_copy)
    assert state.eps_p.eff == 0.0  # current value untouched, only the returned copy is reset
    assert result.state.eps_p.eff == pytest.approx(1e-4)
    assert result.state is not state
