"""Space/time dependent scalar parameters.

A parameter is any callable ``p(t, x) -> float`` where ``x`` is a
:class:`SpatialPosition`. Config files describe parameters either as plain
numbers or as small dicts, see :func:`make_parameter`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple

import numpy as np

from thm_nonlocal.exceptions import ConfigurationError


@dataclass(frozen=True)
class SpatialPosition:
    """Where a parameter is evaluated (all parts optional)."""

    element_id: Optional[int] = None
    integration_point: Optional[int] = None
    coordinates: Optional[np.ndarray] = None


class Parameter(Protocol):
    def __call__(self, t: float, x: SpatialPosition) -> float: ...


@dataclass(frozen=True)
class ConstantParameter:
    value: float

    def __call__(self, t: float, x: SpatialPosition) -> float:
        return float(self.value)


@dataclass(frozen=True)
class FunctionParameter:
    function: Callable[[float, SpatialPosition], float]

    def __call__(self, t: float, x: SpatialPosition) -> float:
        return float(self.function(t, x))


@dataclass(frozen=True)
class CurveParameter:
    """Piecewise-linear curve in time, constant outside ``[times[0], times[-1]]``."""

    times: Tuple[float, ...]
    values: Tuple[float, ...]

    def __post_init__(self):
        t = np.asarray(self.times, dtype=float)
        if t.ndim != 1 or t.size == 0 or t.size != len(self.values):
            raise ConfigurationError(
                f"Curve needs equally long, non-empty times/values (got {len(self.times)}/{len(self.values)})"
            )
        if np.any(np.diff(t) <= 0.0):
            raise ConfigurationError("Curve times must be strictly increasing")

    def __call__(self, t: float, x: SpatialPosition) -> float:
        return float(np.interp(float(t), self.times, self.values))


@dataclass(frozen=True)
class MeshElementParameter:
    """Piecewise constant over elements, looked up by ``x.element_id``."""

    values: Mapping[int, float]
    default: Optional[float] = None

    def __call__(self, t: float, x: SpatialPosition) -> float:
        value = self.values.get(x.element_id, self.default)
        if value is None:
            raise ConfigurationError(f"No parameter value for element {x.element_id}")
        return float(value)


_PARAMETER_TYPES = (ConstantParameter, FunctionParameter, CurveParameter, MeshElementParameter)


def make_parameter(value: Any) -> Parameter:
    """Build a parameter from a config value.

    Accepted forms::

        2.5e4
        {"type": "constant", "value": 2.5e4}
        {"type": "curve", "times": [0, 1], "values": [0, 300]}
        {"type": "mesh_element", "values": {0: 1.0, 1: 2.0}, "default": 1.0}

    Callables ``f(t, x)`` are wrapped in :class:`FunctionParameter`.
    """
    if isinstance(value, _PARAMETER_TYPES):
        return value
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid parameter value {value!r}")
    if isinstance(value, (int, float, np.floating, np.integer)):
        return ConstantParameter(float(value))
    if isinstance(value, Mapping):
        return _parameter_from_dict(value)
    if callable(value):
        return FunctionParameter(value)
    raise ConfigurationError(f"Invalid parameter value {value!r}")


def _parameter_from_dict(d: Mapping[str, Any]) -> Parameter:
    kind = d.get("type", "constant")
    if kind == "constant":
        return ConstantParameter(float(d["value"]))
    if kind == "curve":
        return CurveParameter(
            times=tuple(float(v) for v in d["times"]),
            values=tuple(float(v) for v in d["values"]),
        )
    if kind == "mesh_element":
        values: Dict[int, float] = {int(k): float(v) for k, v in d["values"].items()}
        default = d.get("default")
        return MeshElementParameter(values, None if default is None else float(default))
    raise ConfigurationError(f"Unknown parameter type '{kind}'")
