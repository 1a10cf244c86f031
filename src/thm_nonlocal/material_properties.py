"""Material property snapshots for the BDT plasticity and damage laws.

Parameters are spatially/temporally varying (:mod:`thm_nonlocal.parameters`);
``evaluate`` turns them into frozen, plain-float snapshots at one integration
point. Nothing is memoised.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from thm_nonlocal.exceptions import ConfigurationError
from thm_nonlocal.parameters import Parameter, SpatialPosition

# Tangent operator modes of the local integrator.
TANGENT_ELASTIC = 0
TANGENT_DAMAGED = 1
TANGENT_PLASTIC = 2
TANGENT_TYPES = (TANGENT_ELASTIC, TANGENT_DAMAGED, TANGENT_PLASTIC)


def temperature_hardening(qp0: float, alpha: float, n: float, temperature: float, t0: float) -> float:
    """Brittle-ductile transition hardening ``qh(T)``.

    ``qh = qp0 / (1 + (alpha * (T - t0))^n)^(1 - 1/n)``; below the reference
    temperature ``t0`` the difference is clamped to zero so ``qh = qp0``.
    """
    dT = max(float(temperature) - float(t0), 0.0)
    return float(qp0) / (1.0 + (float(alpha) * dT) ** n) ** (1.0 - 1.0 / n)


@dataclass(frozen=True)
class MaterialProperties:
    G: float
    K: float
    fc: float
    m: float
    qp0: float
    alpha: float
    n: float
    t0: float
    temperature: float
    hardening_coefficient: float
    tangent_type: int
    qh: float = field(init=False)

    def __post_init__(self):
        if self.G <= 0.0 or self.K <= 0.0:
            raise ConfigurationError(f"Moduli must be positive (G={self.G}, K={self.K})")
        if self.fc <= 0.0:
            raise ConfigurationError(f"Compressive strength fc must be positive, got {self.fc}")
        if self.n <= 0.0:
            raise ConfigurationError(f"Transition exponent n must be positive, got {self.n}")
        if self.tangent_type not in TANGENT_TYPES:
            raise ConfigurationError(
                f"Unknown tangent type {self.tangent_type}; expected one of {TANGENT_TYPES}"
            )
        object.__setattr__(
            self,
            "qh",
            temperature_hardening(self.qp0, self.alpha, self.n, self.temperature, self.t0),
        )


@dataclass(frozen=True)
class ThermoPlasticBDTParameters:
    shear_modulus: Parameter
    bulk_modulus: Parameter
    fc: Parameter
    m: Parameter
    qp0: Parameter
    alpha: Parameter
    n: Parameter
    t0: Parameter
    hardening_coefficient: Parameter
    tangent_type: int = TANGENT_PLASTIC

    def evaluate(self, t: float, x: SpatialPosition, temperature: float) -> MaterialProperties:
        return MaterialProperties(
            G=self.shear_modulus(t, x),
            K=self.bulk_modulus(t, x),
            fc=self.fc(t, x),
            m=self.m(t, x),
            qp0=self.qp0(t, x),
            alpha=self.alpha(t, x),
            n=self.n(t, x),
            t0=self.t0(t, x),
            temperature=float(temperature),
            hardening_coefficient=self.hardening_coefficient(t, x),
            tangent_type=int(self.tangent_type),
        )


@dataclass(frozen=True)
class DamageProperties:
    alpha_d: float
    beta_d: float
    h_d: float
    m_d: float

    def __post_init__(self):
        if self.alpha_d <= 0.0:
            raise ConfigurationError(f"alpha_d must be positive, got {self.alpha_d}")
        if not 0.0 <= self.beta_d <= 1.0:
            raise ConfigurationError(f"beta_d must lie in [0, 1], got {self.beta_d}")
        if not 0.0 <= self.m_d <= 1.0:
            raise ConfigurationError(f"Overnonlocal factor m_d must lie in [0, 1], got {self.m_d}")


@dataclass(frozen=True)
class DamagePropertiesParameters:
    alpha_d: Parameter
    beta_d: Parameter
    h_d: Parameter
    m_d: Parameter

    def evaluate(self, t: float, x: SpatialPosition) -> DamageProperties:
        return DamageProperties(
            alpha_d=self.alpha_d(t, x),
            beta_d=self.beta_d(t, x),
            h_d=self.h_d(t, x),
            m_d=self.m_d(t, x),
        )
