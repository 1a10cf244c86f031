"""Two-phase driver over a set of nonlocal local assemblers.

The global solver owns DOF mapping and the linear algebra; this module only
enforces the ordering::

    discover -> pre_assemble (all) -> propagate_activation (all, serial) -> assemble (all)

With an executor both phases are mapped over elements; collecting all
phase-1 results before submitting phase 2 is the barrier.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from thm_nonlocal.assembler import SmallDeformationNonlocalLocalAssembler
from thm_nonlocal.nonlocal_averaging import NonlocalAveraging

LOG = logging.getLogger(__name__)


def _map(executor: Optional[Executor], fn: Callable, *iterables: Iterable) -> list:
    if executor is None:
        return list(map(fn, *iterables))
    return list(executor.map(fn, *iterables))


def assemble_nonlocal(
    assemblers: Sequence[SmallDeformationNonlocalLocalAssembler],
    nonlocal_averaging: NonlocalAveraging,
    t: float,
    dt: float,
    local_xs: Sequence[np.ndarray],
    local_xdots: Optional[Sequence[Optional[np.ndarray]]] = None,
    dxdot_dx: float = 0.0,
    executor: Optional[Executor] = None,
) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Assemble all elements of one global iteration.

    Returns ``[(local_b, local_Jac), ...]`` in the order of ``assemblers``.
    Exceptions of either phase propagate unchanged.
    """
    if len(local_xs) != len(assemblers):
        raise ValueError(f"Got {len(local_xs)} local solution vectors for {len(assemblers)} assemblers")
    if local_xdots is None:
        local_xdots = [None] * len(assemblers)

    if nonlocal_averaging.discover():
        LOG.debug("nonlocal neighbour data rebuilt (t=%g)", t)

    _map(executor, lambda a, x: a.pre_assemble(t, dt, x), assemblers, local_xs)
    # activation flags of neighbours are written across elements, serially after the barrier
    n_activated = sum(a.propagate_activation() for a in assemblers)
    if n_activated:
        LOG.debug("%d integration points became active (t=%g)", n_activated, t)
    return _map(
        executor,
        lambda a, x, xdot: a.assemble_with_jacobian(t, dt, x, xdot, dxdot_dx),
        assemblers,
        local_xs,
        local_xdots,
    )


def commit_timestep(assemblers: Iterable[SmallDeformationNonlocalLocalAssembler]) -> None:
    """Push back the converged state of every integration point."""
    for a in assemblers:
        a.post_timestep()
