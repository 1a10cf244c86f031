"""
Multi-step smoke test: prescribed non-uniform shear on a Q4 mesh.

There is no global solve; the displacement field is prescribed every step and
the two-phase assembly plus state commit are exercised over the history.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from thm_nonlocal.assembly import assemble_nonlocal, commit_timestep

L, H = 4.0, 2.0


def _prescribed_u(nodes, conn, e):
    X = nodes[conn]
    u = np.zeros((len(conn), 2))
    u[:, 0] = e * (X[:, 0] + 0.15 * X[:, 0] ** 2 / L)
    u[:, 1] = -e * X[:, 1]
    return u.ravel()


def _history(assemblers):
    kappa = np.concatenate([a.get_int_pt_kappa_d() for a in assemblers])
    nonlocal_kappa = np.concatenate([a.get_int_pt_nonlocal_kappa_d() for a in assemblers])
    damage = np.concatenate([a.get_int_pt_damage() for a in assemblers])
    eff = np.concatenate([a.get_int_pt_internal_variable("eps_p.eff").ravel() for a in assemblers])
    return kappa, nonlocal_kappa, damage, eff


@pytest.mark.slow
def test_monotonic_loading_history(make_mesh_assemblers):
    nodes, elems, serial, serial_data = make_mesh_assemblers(L=L, H=H, nx=4, ny=2, hardening_coefficient=10.0)
    _, _, threaded, threaded_data = make_mesh_assemblers(L=L, H=H, nx=4, ny=2, hardening_coefficient=10.0)

    previous = None
    dt = 0.25
    with ThreadPoolExecutor(max_workers=4) as executor:
        for step in range(1, 6):
            t = step * dt
            local_xs = [_prescribed_u(nodes, conn, 0.4e-3 * step) for conn in elems]

            # a few "global iterations" at the same state
            for _ in range(2):
                out_serial = assemble_nonlocal(serial, serial_data.nonlocal_averaging, t, dt, local_xs)
                out_threaded = assemble_nonlocal(
                    threaded, threaded_data.nonlocal_averaging, t, dt, local_xs, executor=executor
                )
            for (b_s, J_s), (b_t, J_t) in zip(out_serial, out_threaded):
                np.testing.assert_allclose(b_t, b_s, rtol=1e-14, atol=0.0)
                np.testing.assert_allclose(J_t, J_s, rtol=1e-14, atol=0.0)
                assert np.all(np.isfinite(b_s))
                assert np.all(np.isfinite(J_s))

            commit_timestep(serial)
            commit_timestep(threaded)

            kappa, nonlocal_kappa, damage, eff = _history(serial)
            assert np.all((damage >= 0.0) & (damage < 1.0))
            if previous is not None:
                for now, before in zip((kappa, nonlocal_kappa, damage, eff), previous):
                    assert np.all(now >= before - 1e-15)
            previous = (kappa, nonlocal_kappa, damage, eff)

    kappa, nonlocal_kappa, damage, eff = previous
    assert np.all(eff > 0.0)
    assert damage.max() > 0.0
    # the field is non-uniform, so averaging changes the driving variable
    assert np.max(np.abs(nonlocal_kappa - kappa)) > 0.0
    for a in serial:
        for d in a.ip_data:
            np.testing.assert_array_equal(d.sigma_prev, d.sigma)
            assert d.kappa_d_prev == d.kappa_d
