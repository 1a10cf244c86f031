"""Kelvin-vector algebra: conversions, projections and invariants."""

import math

import numpy as np
import pytest

from thm_nonlocal import kelvin


def _random_symmetric(rng, size):
    A = rng.normal(size=(3, 3))
    S = 0.5 * (A + A.T)
    if size == 4:
        S[0, 2] = S[2, 0] = S[1, 2] = S[2, 1] = 0.0
    return S


@pytest.mark.parametrize("size", [4, 6])
def test_tensor_roundtrip_and_contraction(size):
    rng = np.random.default_rng(1)
    A = _random_symmetric(rng, size)
    B = _random_symmetric(rng, size)
    a = kelvin.tensor_to_kelvin_vector(A, size)
    b = kelvin.tensor_to_kelvin_vector(B, size)

    np.testing.assert_allclose(kelvin.kelvin_vector_to_tensor(a), A, atol=1e-14)
    assert a @ b == pytest.approx(np.sum(A * B), rel=1e-12)


@pytest.mark.parametrize("size", [4, 6])
def test_physical_components(size):
    v = np.arange(1.0, size + 1.0)
    phys = kelvin.kelvin_vector_to_symmetric_tensor(v)
    np.testing.assert_allclose(phys[:3], v[:3])
    np.testing.assert_allclose(phys[3:], v[3:] / math.sqrt(2.0))
    np.testing.assert_allclose(kelvin.symmetric_tensor_to_kelvin_vector(phys), v)


def test_kelvin_vector_size():
    assert kelvin.kelvin_vector_size(2) == 4
    assert kelvin.kelvin_vector_size(3) == 6
    with pytest.raises(ValueError):
        kelvin.kelvin_vector_size(1)


@pytest.mark.parametrize("size", [4, 6])
def test_projections(size):
    P_dev = kelvin.deviatoric_projection(size)
    P_sph = kelvin.spherical_projection(size)
    np.testing.assert_allclose(P_dev + P_sph, np.eye(size), atol=1e-15)
    np.testing.assert_allclose(P_dev @ P_dev, P_dev, atol=1e-14)
    np.testing.assert_allclose(P_dev @ kelvin.identity2(size), 0.0, atol=1e-15)


def test_invariants_of_pure_shear():
    tau = 3.0
    v = np.array([0.0, 0.0, 0.0, math.sqrt(2.0) * tau])
    D, I1 = kelvin.split_deviatoric_volumetric(v)
    assert I1 == 0.0
    assert kelvin.J2(D) == pytest.approx(tau**2)
    assert kelvin.J3(D) == pytest.approx(0.0, abs=1e-12)


def test_J3_uniaxial():
    s = 6.0
    D, _ = kelvin.split_deviatoric_volumetric(np.array([s, 0.0, 0.0, 0.0, 0.0, 0.0]))
    # deviator diag(2, -1, -1) * s/3
    assert kelvin.J3(D) == pytest.approx(2.0 * (s / 3.0) ** 3)
    assert kelvin.J2(D) == pytest.approx(s**2 / 3.0)


@pytest.mark.parametrize("size", [4, 6])
def test_inverse_and_determinant(size):
    rng = np.random.default_rng(7)
    A = _random_symmetric(rng, size) + 6.0 * np.eye(3)
    a = kelvin.tensor_to_kelvin_vector(A, size)
    np.testing.assert_allclose(
        kelvin.kelvin_vector_to_tensor(kelvin.inverse(a)), np.linalg.inv(A), atol=1e-12
    )
    assert kelvin.determinant(a) == pytest.approx(np.linalg.det(A))


@pytest.mark.parametrize("size", [4, 6])
def test_s_odot_s_is_derivative_of_inverse(size):
    rng = np.random.default_rng(3)
    A = _random_symmetric(rng, size) + 6.0 * np.eye(3)
    a = kelvin.tensor_to_kelvin_vector(A, size)
    analytic = -kelvin.s_odot_s(kelvin.inverse(a))

    h = 1e-6
    fd = np.zeros((size, size))
    for j in range(size):
        ap = a.copy()
        am = a.copy()
        ap[j] += h
        am[j] -= h
        fd[:, j] = (kelvin.inverse(ap) - kelvin.inverse(am)) / (2.0 * h)
    np.testing.assert_allclose(analytic, fd, atol=1e-8)


def test_s_odot_s_identity():
    np.testing.assert_allclose(kelvin.s_odot_s(kelvin.identity2(6)), np.eye(6), atol=1e-15)


@pytest.mark.parametrize("size", [4, 6])
def test_elastic_tangent(size):
    K, G = 1.5e4, 1.0e4
    C = kelvin.elastic_tangent(K, G, size)
    expected = 3.0 * K * kelvin.spherical_projection(size) + 2.0 * G * kelvin.deviatoric_projection(size)
    np.testing.assert_allclose(C, expected, rtol=1e-14, atol=1e-10)
