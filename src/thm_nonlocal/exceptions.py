"""Exception types raised by the nonlocal damage-plasticity engine.

Failures that end the current global iteration derive from ``RuntimeError``;
bad inputs derive from ``ValueError``.
"""

from __future__ import annotations


class ConstitutiveIntegrationError(RuntimeError):
    """The local Newton-Raphson iteration of a material point did not converge."""


class DegenerateStateError(RuntimeError):
    """NaN/Inf values or a singular local Jacobian were encountered."""


class NonlocalWeightsError(RuntimeError):
    """Neighbour discovery failed (isolated point or partition of unity violated)."""


class DamageRangeError(RuntimeError):
    """A damage value above 1 was computed."""


class ConfigurationError(ValueError):
    """Invalid material, solver or process configuration."""
