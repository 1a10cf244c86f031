"""Thermo-plastic brittle-ductile transition (BDT) law with scalar damage.

Stress integration works on effective (undamaged) stress in Kelvin notation
(see :mod:`thm_nonlocal.kelvin`). Sign convention: tension positive.

Yield function (``I1 = tr(sigma)``)::

    q = sqrt(3 J2 + (Q_REGULARIZATION fc)^2)
    a = (q + I1) / (3 fc)
    B = (1 - qh) a^2 + q / fc
    F = B^2 + k qh^2 a - qh^2,       k = m (1 + hardening_coefficient * eps_p_eff)

The regularisation rounds the apex of the surface so that F and its
derivatives stay smooth for hydrostatic stress. The yield function
uses the temperature dependent transition value ``qh`` from
:func:`thm_nonlocal.material_properties.temperature_hardening`. Flow is
associative.

Plastic correction is a fully implicit local Newton-Raphson iteration on::

    x = [sigma / G, eps_p_D, eps_p_V, eps_p_eff, lambda]

and the consistent tangent is ``G * J^{-1} (-dR/deps)`` restricted to the
stress block, re-using the LU factors of the converged Jacobian.

Damage is driven by the (nonlocal) variable ``kappa_d``::

    kappa_d = kappa_d_prev + d(eps_p_eff) / x_s
    d = (1 - beta_d) (1 - exp(-kappa_d / alpha_d))
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, List, NamedTuple, Optional, Tuple

import numpy as np

from thm_nonlocal import kelvin
from thm_nonlocal.convergence import NewtonRaphson, NewtonRaphsonParameters, solve_factorized
from thm_nonlocal.exceptions import ConfigurationError
from thm_nonlocal.material_properties import (
    TANGENT_DAMAGED,
    TANGENT_ELASTIC,
    DamagePropertiesParameters,
    MaterialProperties,
    ThermoPlasticBDTParameters,
)
from thm_nonlocal.parameters import Parameter, SpatialPosition

LOG = logging.getLogger(__name__)

# q = sqrt(3 J2 + (Q_REGULARIZATION * fc)^2) in F and all its derivatives.
Q_REGULARIZATION = 1e-3
NUMERICAL_JACOBIAN_PERTURBATION = 1e-8
JACOBIAN_TYPES = ("analytical", "numerical")


# ----------------------------
# State
# ----------------------------


@dataclass
class PlasticStrain:
    D: np.ndarray
    V: float = 0.0
    eff: float = 0.0

    @classmethod
    def zeros(cls, size: int) -> "PlasticStrain":
        return cls(np.zeros(size, dtype=float))

    def copy(self) -> "PlasticStrain":
        return PlasticStrain(self.D.copy(), float(self.V), float(self.eff))


@dataclass
class Damage:
    kappa_d: float = 0.0
    value: float = 0.0

    def copy(self) -> "Damage":
        return Damage(float(self.kappa_d), float(self.value))


@dataclass
class StateVariables:
    """Plastic strain and damage of one material point (current + committed)."""

    eps_p: PlasticStrain
    eps_p_prev: PlasticStrain
    damage: Damage = field(default_factory=Damage)
    damage_prev: Damage = field(default_factory=Damage)

    @classmethod
    def create(cls, size: int) -> "StateVariables":
        return cls(PlasticStrain.zeros(size), PlasticStrain.zeros(size))

    def set_initial_conditions(self) -> None:
        self.eps_p = self.eps_p_prev.copy()
        self.damage = self.damage_prev.copy()

    def push_back_state(self) -> None:
        self.eps_p_prev = self.eps_p.copy()
        self.damage_prev = self.damage.copy()

    def copy(self) -> "StateVariables":
        return StateVariables(
            self.eps_p.copy(), self.eps_p_prev.copy(), self.damage.copy(), self.damage_prev.copy()
        )


@dataclass(frozen=True)
class InternalVariable:
    name: str
    num_components: int
    getter: Callable[[StateVariables], np.ndarray]


class StressIntegrationResult(NamedTuple):
    sigma: np.ndarray
    state: StateVariables
    C: np.ndarray


@dataclass(frozen=True)
class PhysicalStressWithInvariants:
    value: np.ndarray
    D: np.ndarray
    I_1: float
    J_2: float
    J_3: float

    @classmethod
    def from_stress(cls, stress: np.ndarray) -> "PhysicalStressWithInvariants":
        value = np.array(stress, dtype=float)
        D, I_1 = kelvin.split_deviatoric_volumetric(value)
        return cls(value, D, I_1, kelvin.J2(D), kelvin.J3(D))


# ----------------------------
# Yield surface
# ----------------------------


def calculate_isotropic_hardening(mp: MaterialProperties, eps_p_eff: float) -> float:
    return mp.m * (1.0 + mp.hardening_coefficient * eps_p_eff)


def regularized_q(mp: MaterialProperties, s: PhysicalStressWithInvariants) -> float:
    """Von Mises stress with a rounded apex, never below ``Q_REGULARIZATION * fc``."""
    return math.sqrt(3.0 * max(s.J_2, 0.0) + (Q_REGULARIZATION * mp.fc) ** 2)


def yield_function(mp: MaterialProperties, s: PhysicalStressWithInvariants, k: float) -> float:
    q = regularized_q(mp, s)
    a = (q + s.I_1) / (3.0 * mp.fc)
    B = (1.0 - mp.qh) * a**2 + q / mp.fc
    return B**2 + k * mp.qh**2 * a - mp.qh**2


class _YieldDerivatives(NamedTuple):
    q: float
    F_q: float
    F_I: float
    F_qq: float
    F_qI: float
    F_II: float
    F_k: float


def _yield_derivatives(mp: MaterialProperties, s: PhysicalStressWithInvariants, k: float) -> _YieldDerivatives:
    """Partial derivatives of F with respect to (q, I1, k)."""
    q = regularized_q(mp, s)
    c = 1.0 / (3.0 * mp.fc)
    e = 1.0 - mp.qh
    qh2 = mp.qh**2

    a = (q + s.I_1) * c
    B = e * a**2 + q / mp.fc
    B_I = 2.0 * e * a * c
    B_q = B_I + 1.0 / mp.fc
    B_2 = 2.0 * e * c**2  # all second partials of B coincide

    return _YieldDerivatives(
        q=q,
        F_q=2.0 * B * B_q + k * qh2 * c,
        F_I=2.0 * B * B_I + k * qh2 * c,
        F_qq=2.0 * B_q**2 + 2.0 * B * B_2,
        F_qI=2.0 * B_q * B_I + 2.0 * B * B_2,
        F_II=2.0 * B_I**2 + 2.0 * B * B_2,
        F_k=qh2 * a,
    )


def plastic_flow_deviatoric_part(mp: MaterialProperties, s: PhysicalStressWithInvariants, k: float) -> np.ndarray:
    d = _yield_derivatives(mp, s, k)
    return 1.5 * d.F_q / d.q * s.D


def plastic_flow_volumetric_part(mp: MaterialProperties, s: PhysicalStressWithInvariants, k: float) -> float:
    return 3.0 * _yield_derivatives(mp, s, k).F_I


def yield_function_gradient(mp: MaterialProperties, s: PhysicalStressWithInvariants, k: float) -> np.ndarray:
    """dF/dsigma as a Kelvin vector."""
    d = _yield_derivatives(mp, s, k)
    return 1.5 * d.F_q / d.q * s.D + d.F_I * kelvin.identity2(s.value.size)


class _FlowDerivatives(NamedTuple):
    flow_D: np.ndarray
    flow_V: float
    dflow_D_dsigma: np.ndarray
    dflow_V_dsigma: np.ndarray
    dflow_D_dk: np.ndarray
    dflow_V_dk: float
    dF_dsigma: np.ndarray
    F_k: float


def _flow_derivatives(mp: MaterialProperties, s: PhysicalStressWithInvariants, k: float) -> _FlowDerivatives:
    size = s.value.size
    d = _yield_derivatives(mp, s, k)
    i2 = kelvin.identity2(size)
    c = 1.0 / (3.0 * mp.fc)

    dq_dsigma = 1.5 / d.q * s.D
    phi = 1.5 * d.F_q / d.q
    dphi_dsigma = 1.5 / d.q * (d.F_qq * dq_dsigma + d.F_qI * i2) - 1.5 * d.F_q / d.q**2 * dq_dsigma

    return _FlowDerivatives(
        flow_D=phi * s.D,
        flow_V=3.0 * d.F_I,
        dflow_D_dsigma=np.outer(s.D, dphi_dsigma) + phi * kelvin.deviatoric_projection(size),
        dflow_V_dsigma=3.0 * (d.F_qI * dq_dsigma + d.F_II * i2),
        dflow_D_dk=1.5 * mp.qh**2 * c / d.q * s.D,
        dflow_V_dk=3.0 * mp.qh**2 * c,
        dF_dsigma=phi * s.D + d.F_I * i2,
        F_k=d.F_k,
    )


# ----------------------------
# Local problem
# ----------------------------


def split_solution_vector(x: np.ndarray, size: int) -> Tuple[np.ndarray, PlasticStrain, float]:
    """``x -> (sigma / G, plastic strain, lambda)``."""
    return (
        x[:size].copy(),
        PlasticStrain(x[size : 2 * size].copy(), float(x[2 * size]), float(x[2 * size + 1])),
        float(x[2 * size + 2]),
    )


def predict_sigma(G: float, K: float, sigma_prev: np.ndarray, eps: np.ndarray, eps_prev: np.ndarray) -> np.ndarray:
    """Elastic trial stress, dimensionless (divided by G)."""
    deps_D, deps_V = kelvin.split_deviatoric_volumetric(np.asarray(eps) - np.asarray(eps_prev))
    return np.asarray(sigma_prev, dtype=float) / G + 2.0 * deps_D + K / G * deps_V * kelvin.identity2(deps_D.size)


def calculate_dresidual_deps(K: float, G: float, size: int) -> np.ndarray:
    """Derivative of the local residual with respect to total strain."""
    dR = np.zeros((2 * size + 3, size), dtype=float)
    dR[:size, :] = -2.0 * kelvin.deviatoric_projection(size) - 3.0 * K / G * kelvin.spherical_projection(size)
    return dR


@dataclass(frozen=True)
class LocalPlasticProblem:
    """Residual and Jacobian of the implicit plastic corrector at one point.

    Residual blocks (``sigma`` is dimensionless, ``sigma / G``)::

        r1 = sigma - sigma_prev - 2 (deps_D - deps_p_D) - K/G (deps_V - deps_p_V) I2
        r2 = deps_p_D / dt - lambda * flow_D
        r3 = deps_p_V / dt - lambda * flow_V
        r4 = deps_p_eff / dt - sqrt(2/3 |lambda * flow_D|^2)
        r5 = F / G
    """

    mp: MaterialProperties
    dt: float
    deps_D: np.ndarray
    deps_V: float
    sigma_prev: np.ndarray
    eps_p_prev: PlasticStrain

    @property
    def size(self) -> int:
        return self.deps_D.size

    def _unpack(self, x: np.ndarray):
        sigma, eps_p, lam = split_solution_vector(x, self.size)
        s = PhysicalStressWithInvariants.from_stress(self.mp.G * sigma)
        k = calculate_isotropic_hardening(self.mp, eps_p.eff)
        return sigma, eps_p, lam, s, k

    def residual(self, x: np.ndarray) -> np.ndarray:
        mp, n, prev = self.mp, self.size, self.eps_p_prev
        sigma, eps_p, lam, s, k = self._unpack(x)
        lambda_flow_D = lam * plastic_flow_deviatoric_part(mp, s, k)

        r = np.empty(2 * n + 3, dtype=float)
        r[:n] = (
            sigma
            - self.sigma_prev
            - 2.0 * (self.deps_D - (eps_p.D - prev.D))
            - mp.K / mp.G * (self.deps_V - (eps_p.V - prev.V)) * kelvin.identity2(n)
        )
        r[n : 2 * n] = (eps_p.D - prev.D) / self.dt - lambda_flow_D
        r[2 * n] = (eps_p.V - prev.V) / self.dt - lam * plastic_flow_volumetric_part(mp, s, k)
        r[2 * n + 1] = (eps_p.eff - prev.eff) / self.dt - math.sqrt(2.0 / 3.0 * lambda_flow_D @ lambda_flow_D)
        r[2 * n + 2] = yield_function(mp, s, k) / mp.G
        return r

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        mp, n, dt = self.mp, self.size, self.dt
        _, _, lam, s, k = self._unpack(x)
        f = _flow_derivatives(mp, s, k)
        dk_deff = mp.m * mp.hardening_coefficient
        i_eff, i_lam = 2 * n + 1, 2 * n + 2

        J = np.zeros((2 * n + 3, 2 * n + 3), dtype=float)
        J[:n, :n] = np.eye(n)
        J[:n, n : 2 * n] = 2.0 * np.eye(n)
        J[:n, 2 * n] = mp.K / mp.G * kelvin.identity2(n)

        dv_dsigma = lam * mp.G * f.dflow_D_dsigma
        dv_deff = lam * f.dflow_D_dk * dk_deff
        J[n : 2 * n, :n] = -dv_dsigma
        J[n : 2 * n, n : 2 * n] = np.eye(n) / dt
        J[n : 2 * n, i_eff] = -dv_deff
        J[n : 2 * n, i_lam] = -f.flow_D

        J[2 * n, :n] = -lam * mp.G * f.dflow_V_dsigma
        J[2 * n, 2 * n] = 1.0 / dt
        J[2 * n, i_eff] = -lam * f.dflow_V_dk * dk_deff
        J[2 * n, i_lam] = -f.flow_V

        J[i_eff, i_eff] = 1.0 / dt
        v = lam * f.flow_D
        eff_rate = math.sqrt(2.0 / 3.0 * v @ v)
        if eff_rate > 0.0:
            g = -2.0 / 3.0 / eff_rate * v
            J[i_eff, :n] = g @ dv_dsigma
            J[i_eff, i_eff] += g @ dv_deff
            J[i_eff, i_lam] = g @ f.flow_D

        J[i_lam, :n] = f.dF_dsigma
        J[i_lam, i_eff] = f.F_k * dk_deff / mp.G
        return J

    def numerical_jacobian(self, x: np.ndarray, perturbation: float = NUMERICAL_JACOBIAN_PERTURBATION) -> np.ndarray:
        """Central difference approximation of :meth:`jacobian`."""
        x = np.asarray(x, dtype=float)
        J = np.zeros((x.size, x.size), dtype=float)
        for i in range(x.size):
            xp = x.copy()
            xm = x.copy()
            xp[i] += perturbation
            xm[i] -= perturbation
            J[:, i] = (self.residual(xp) - self.residual(xm)) / (2.0 * perturbation)
        return J


# ----------------------------
# Solid material
# ----------------------------


class SolidThermoPlasticBDT:
    """Thermo-plastic BDT solid with nonlocal scalar damage."""

    def __init__(
        self,
        material_parameters: ThermoPlasticBDTParameters,
        damage_parameters: DamagePropertiesParameters,
        nonlinear_solver_parameters: NewtonRaphsonParameters,
        temperature: Parameter,
        jacobian: str = "analytical",
    ):
        if jacobian not in JACOBIAN_TYPES:
            raise ConfigurationError(f"Unknown local Jacobian type '{jacobian}'; expected one of {JACOBIAN_TYPES}")
        self.material_parameters = material_parameters
        self.damage_parameters = damage_parameters
        self.nonlinear_solver_parameters = nonlinear_solver_parameters
        self.temperature = temperature
        self.jacobian = jacobian

    def evaluated_material_properties(self, t: float, x: SpatialPosition) -> MaterialProperties:
        return self.material_parameters.evaluate(t, x, self.temperature(t, x))

    def create_material_state_variables(self, size: int) -> StateVariables:
        return StateVariables.create(size)

    def integrate_stress(
        self,
        t: float,
        x: SpatialPosition,
        dt: float,
        eps_prev: np.ndarray,
        eps: np.ndarray,
        sigma_prev: np.ndarray,
        material_state_variables: StateVariables,
    ) -> Optional[StressIntegrationResult]:
        """Integrate the effective stress over one step.

        Returns ``None`` if the local Newton iteration does not converge; the
        caller decides how to react. Inputs are not modified.
        """
        eps = np.asarray(eps, dtype=float)
        eps_prev = np.asarray(eps_prev, dtype=float)
        size = eps.size
        state = material_state_variables.copy()
        state.set_initial_conditions()

        mp = self.evaluated_material_properties(t, x)
        sigma = predict_sigma(mp.G, mp.K, sigma_prev, eps, eps_prev)
        s = PhysicalStressWithInvariants.from_stress(mp.G * sigma)
        k = calculate_isotropic_hardening(mp, state.eps_p.eff)

        if not np.any(sigma) or yield_function(mp, s, k) < 0.0:
            return StressIntegrationResult(mp.G * sigma, state, kelvin.elastic_tangent(mp.K, mp.G, size))

        if dt <= 0.0:
            raise ConfigurationError(f"Plastic stress integration needs dt > 0, got {dt}")
        deps_D, deps_V = kelvin.split_deviatoric_volumetric(eps - eps_prev)
        problem = LocalPlasticProblem(
            mp=mp,
            dt=float(dt),
            deps_D=deps_D,
            deps_V=deps_V,
            sigma_prev=np.asarray(sigma_prev, dtype=float) / mp.G,
            eps_p_prev=state.eps_p_prev,
        )

        solution = np.concatenate([sigma, state.eps_p.D, [state.eps_p.V, state.eps_p.eff, 0.0]])

        def update_solution(increment: np.ndarray) -> None:
            solution[:] += increment

        jacobian_at = problem.jacobian if self.jacobian == "analytical" else problem.numerical_jacobian
        newton = NewtonRaphson(
            lambda: jacobian_at(solution),
            lambda: problem.residual(solution),
            update_solution,
            self.nonlinear_solver_parameters,
        )
        iterations = newton.solve()
        if iterations is None:
            LOG.debug("local newton did not converge at %s (t=%g)", x, t)
            return None
        LOG.debug("local newton converged in %d iterations", iterations)

        sigma, state.eps_p, _ = split_solution_vector(solution, size)
        dR_deps = calculate_dresidual_deps(mp.K, mp.G, size)
        C = mp.G * solve_factorized(newton.factorization, -dR_deps)[:size, :size]
        return StressIntegrationResult(mp.G * sigma, state, self._apply_tangent_type(mp, C, state))

    @staticmethod
    def _apply_tangent_type(mp: MaterialProperties, C: np.ndarray, state: StateVariables) -> np.ndarray:
        if mp.tangent_type == TANGENT_ELASTIC:
            return kelvin.elastic_tangent(mp.K, mp.G, C.shape[0])
        if mp.tangent_type == TANGENT_DAMAGED:
            return C * (1.0 - state.damage.value)
        return C

    # ------------------------
    # Damage
    # ------------------------

    def calculate_damage_kappa_d(
        self,
        t: float,
        x: SpatialPosition,
        eps_p_eff_diff: float,
        sigma: np.ndarray,
        kappa_d_prev: float,
    ) -> float:
        """Local damage driving variable from the plastic increment.

        The brittleness factor ``x_s`` reduces damage growth under confined
        (large principal stress) states.
        """
        mp = self.evaluated_material_properties(t, x)
        dp = self.damage_parameters.evaluate(t, x)

        sigma = np.asarray(sigma, dtype=float)
        dim = 2 if sigma.size == 4 else 3
        principal = np.linalg.eigvalsh(kelvin.kelvin_vector_to_tensor(sigma)[:dim, :dim])
        r_s = math.sqrt(float(principal @ principal)) / mp.fc

        if r_s < 1.0:
            x_s = 1.0
        elif r_s <= 2.0:
            x_s = 1.0 + dp.h_d * (r_s - 1.0) ** 2
        else:
            x_s = 1.0 - 3.0 * dp.h_d + 4.0 * dp.h_d * math.sqrt(r_s - 1.0)
        return kappa_d_prev + eps_p_eff_diff / x_s

    def calculate_damage(self, t: float, x: SpatialPosition, kappa_d: float) -> float:
        dp = self.damage_parameters.evaluate(t, x)
        damage = (1.0 - dp.beta_d) * (1.0 - math.exp(-kappa_d / dp.alpha_d))
        if damage < 0.0 or damage > 1.0:
            LOG.error("Damage value %g outside of [0,1] interval (kappa_d=%g, %s)", damage, kappa_d, x)
        return damage

    def get_overnonlocal_gamma_factor(self, t: float, x: SpatialPosition) -> float:
        return self.damage_parameters.evaluate(t, x).m_d

    def internal_variables(self, size: int) -> List[InternalVariable]:
        def eps_p_D(state: StateVariables) -> np.ndarray:
            return kelvin.kelvin_vector_to_symmetric_tensor(state.eps_p.D)

        return [
            InternalVariable("damage.kappa_d", 1, lambda state: np.array([state.damage.kappa_d])),
            InternalVariable("damage.value", 1, lambda state: np.array([state.damage.value])),
            InternalVariable("eps_p.D", size, eps_p_D),
            InternalVariable("eps_p.V", 1, lambda state: np.array([state.eps_p.V])),
            InternalVariable("eps_p.eff", 1, lambda state: np.array([state.eps_p.eff])),
        ]
