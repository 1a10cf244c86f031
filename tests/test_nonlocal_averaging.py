"""Neighbour discovery, weights and nonlocal kappa_d."""

import logging

import numpy as np
import pytest

from thm_nonlocal.exceptions import NonlocalWeightsError
from thm_nonlocal.material_point import IntegrationPointHandle
from thm_nonlocal.nonlocal_averaging import NonlocalAveraging, alpha_0


def _all_points(process_data):
    return list(process_data.registry.integration_points())


def test_partition_of_unity_and_radius(make_mesh_assemblers):
    _, _, _, process_data = make_mesh_assemblers(internal_length=1.5)
    engine = process_data.nonlocal_averaging
    engine.discover()

    points = _all_points(process_data)
    coords = np.array([p.coordinates for _, p in points])
    for k, (handle, p) in enumerate(points):
        assert handle in p.neighbours, "self must be part of the neighbourhood"
        assert np.sum(p.alpha_kl_times_w_l) == pytest.approx(1.0, abs=1e-12)
        assert np.all(p.distances2 < engine.internal_length2)
        assert np.all(p.alpha_kl_times_w_l > 0.0)

        # brute force: exactly the points strictly inside the radius
        d2 = np.sum((coords - coords[k]) ** 2, axis=1)
        expected = {points[i][0] for i in np.flatnonzero(d2 < engine.internal_length2)}
        assert set(p.neighbours) == expected


def test_alpha_0_kernel():
    L2 = 4.0
    assert alpha_0(0.0, L2) == 1.0
    assert alpha_0(1.0, L2) == pytest.approx(0.75**2)
    assert alpha_0(4.0, L2) == 0.0
    assert alpha_0(9.0, L2) == 0.0


def test_isolated_point_is_fatal(make_mesh_assemblers):
    # Gauss points of unit elements are >= 0.42 apart
    _, _, _, process_data = make_mesh_assemblers(internal_length=0.2)
    with pytest.raises(NonlocalWeightsError, match="No neighbours found"):
        process_data.nonlocal_averaging.discover()


def test_partition_of_unity_violation_is_fatal(make_mesh_assemblers, monkeypatch):
    _, _, _, process_data = make_mesh_assemblers(internal_length=1.5)
    engine = process_data.nonlocal_averaging
    monkeypatch.setattr(engine, "_normalized_weights", lambda d2, w: alpha_0(d2, engine.internal_length2) * w)
    with pytest.raises(NonlocalWeightsError, match="Partition of unity"):
        engine.discover()


def test_discovery_is_cached(make_mesh_assemblers):
    _, _, _, process_data = make_mesh_assemblers(internal_length=1.5)
    engine = process_data.nonlocal_averaging
    assert engine.discover() is True
    assert engine.discover() is False

    process_data.registry.invalidate()
    assert engine.discover() is True

    engine.internal_length = 1.2
    assert engine.discover() is True
    assert engine.discover(force=True) is True


def _set_kappa(process_data, rng):
    """Nonzero kappa_d only near the left edge (x < 1)."""
    engine = process_data.nonlocal_averaging
    for _, p in _all_points(process_data):
        kappa = rng.uniform(1e-4, 1e-3) if p.coordinates[0] < 1.0 else 0.0
        if p.update_local_damage_variable(kappa):
            engine.activate_neighbours(p)


@pytest.mark.parametrize("gamma", [0.0, 0.5, 1.0])
@pytest.mark.parametrize("kappa_before_discovery", [False, True])
def test_activation_optimization_is_exact(make_mesh_assemblers, gamma, kappa_before_discovery):
    _, _, _, process_data = make_mesh_assemblers(L=6.0, H=3.0, nx=6, ny=3, internal_length=1.5)
    optimized = process_data.nonlocal_averaging
    full = NonlocalAveraging(process_data.registry, 1.5, activation_optimization=False)
    rng = np.random.default_rng(11)

    if kappa_before_discovery:
        _set_kappa(process_data, rng)
        optimized.discover()
    else:
        optimized.discover()
        _set_kappa(process_data, rng)

    n_skipped = 0
    for _, p in _all_points(process_data):
        a = optimized.nonlocal_kappa_d(p, gamma)
        b = full.nonlocal_kappa_d(p, gamma)
        assert a == pytest.approx(b, abs=1e-18)
        n_skipped += not (p.active_self or p.activated)
    assert n_skipped > 0, "test field should leave some points unaffected"


def test_uniform_field_is_preserved(make_mesh_assemblers):
    _, _, _, process_data = make_mesh_assemblers(internal_length=1.5)
    engine = process_data.nonlocal_averaging
    engine.discover()
    for _, p in _all_points(process_data):
        p.update_local_damage_variable(2.5e-3)
    engine.discover(force=True)

    for _, p in _all_points(process_data):
        assert engine.nonlocal_kappa_d(p, 1.0) == pytest.approx(2.5e-3, rel=1e-12)


def test_gamma_blending(make_mesh_assemblers):
    _, _, _, process_data = make_mesh_assemblers(internal_length=1.5)
    engine = process_data.nonlocal_averaging
    engine.discover()
    points = [p for _, p in _all_points(process_data)]
    points[0].update_local_damage_variable(1e-3)
    engine.activate_neighbours(points[0])

    p = points[0]
    local = p.kappa_d
    average = engine.nonlocal_kappa_d(p, 1.0)
    assert 0.0 < average < local
    assert engine.nonlocal_kappa_d(p, 0.0) == pytest.approx(local)
    assert engine.nonlocal_kappa_d(p, 0.25) == pytest.approx(0.75 * local + 0.25 * average)


def test_negative_nonlocal_kappa_is_clamped(make_mesh_assemblers, caplog):
    _, _, _, process_data = make_mesh_assemblers(internal_length=1.5)
    engine = process_data.nonlocal_averaging
    engine.discover()
    p = next(iter(_all_points(process_data)))[1]
    p.kappa_d = -1e-3
    p.active_self = True

    with caplog.at_level(logging.WARNING, logger="thm_nonlocal.nonlocal_averaging"):
        assert engine.nonlocal_kappa_d(p, 0.0) == 0.0
    assert "set to zero" in caplog.text


def test_registry_lifecycle(make_mesh_assemblers):
    _, _, _, process_data = make_mesh_assemblers(L=2.0, H=1.0, nx=2, ny=1)
    registry = process_data.registry
    engine = process_data.nonlocal_averaging
    engine.discover()
    assert len(registry) == 2
    assert 1 in registry

    registry.unregister(1)
    assert 1 not in registry
    with pytest.raises(LookupError):
        registry.resolve(IntegrationPointHandle(1, 0))
    assert engine.discover() is True
    assert all(h.element_id == 0 for _, p in _all_points(process_data) for h in p.neighbours)


@pytest.mark.parametrize("use_numba", [False, True])
def test_zero_weight_sum_is_fatal(make_mesh_assemblers, use_numba):
    _, _, _, process_data = make_mesh_assemblers(L=1.0, H=1.0, nx=1, ny=1, internal_length=1.5, use_numba=use_numba)
    for _, p in _all_points(process_data):
        p.integration_weight = 0.0
    with pytest.raises(NonlocalWeightsError, match="Partition of unity"):
        process_data.nonlocal_averaging.discover()
