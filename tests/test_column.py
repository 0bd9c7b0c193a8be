# tests/test_column.py
"""Unit tests for wc_engine.column_core and wc_engine.column_solver.

This module verifies:
- ColumnCore validation of grid, time grid and species metadata.
- Grid helpers (depth, layer centres, column integrals) and history access.
- ColumnSolver reaction-only and transport-only runs match direct calls of
  ode_solver and diffuse_center.
- Mass conservation of a closed network under mixing and reactions, and the
  surface-flux balance.
- Configuration errors are raised before any step is taken.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from wc_engine.column_core import ColumnCore, ColumnCoreOptions
from wc_engine.column_solver import ColumnRunConfig, ColumnSolver
from wc_engine.diffusion import diffuse_center
from wc_engine.errors import (
    BoundaryConditionError,
    ConfigurationError,
    UnknownSchemeError,
)
from wc_engine.ode_solvers import OdeScheme, ode_solver

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]

    PpddFunc = Callable[[bool, FloatArray], tuple[FloatArray, FloatArray]]


def _grid(n_layers: int, depth: float = 10.0) -> FloatArray:
    return np.full(n_layers + 1, depth / n_layers)


def _no_reactions(first: bool, cc: FloatArray) -> tuple[FloatArray, FloatArray]:  # noqa: ARG001
    numc, n = cc.shape
    return np.zeros((numc, numc, n)), np.zeros((numc, numc, n))


def _make_core(
    n_species: int = 2,
    n_layers: int = 6,
    n_times: int = 5,
    **options: object,
) -> ColumnCore:
    return ColumnCore(
        n_species,
        _grid(n_layers),
        np.linspace(0.0, 4.0, n_times),
        options=ColumnCoreOptions(**options),  # type: ignore[arg-type]
    )


# -------------------------------------------------------------------
# ColumnCore
# -------------------------------------------------------------------


def test_core_shapes_and_defaults() -> None:
    """State shape is (n_species, N + 1) with default species names."""
    core = _make_core(n_species=3, n_layers=4)

    assert core.state_shape == (3, 5)
    assert core.n_layers == 4
    assert core.species_names == ("species0", "species1", "species2")
    assert core.current_time == 0.0
    assert np.all(core.get_current_state() == 0.0)


@pytest.mark.parametrize(
    ("time_grid", "match"),
    [
        (np.zeros((2, 2)), "1D"),
        (np.array([]), "at least one"),
        (np.array([0.0, 1.0, 1.0]), "strictly increasing"),
    ],
)
def test_core_rejects_bad_time_grid(time_grid: FloatArray, match: str) -> None:
    """The output time grid must be a strictly increasing 1D array."""
    with pytest.raises(ValueError, match=match):
        ColumnCore(1, _grid(3), time_grid)


@pytest.mark.parametrize(
    ("h", "match"),
    [
        (np.ones((2, 3)), "1D"),
        (np.ones(2), "at least 2 layers"),
        (np.array([1.0, 1.0, 0.0, 1.0]), "strictly positive"),
    ],
)
def test_core_rejects_bad_grid(h: FloatArray, match: str) -> None:
    """h must describe at least two layers of positive thickness."""
    with pytest.raises(ValueError, match=match):
        ColumnCore(1, h, [0.0, 1.0])


def test_core_ignores_bookkeeping_thickness() -> None:
    """h[0] may be anything, including zero."""
    core = ColumnCore(1, [0.0, 1.0, 2.0], [0.0])
    assert core.depth == pytest.approx(3.0)


def test_core_rejects_bad_species_metadata() -> None:
    """n_species must be positive and names must match it."""
    with pytest.raises(ValueError, match="n_species"):
        ColumnCore(0, _grid(3), [0.0, 1.0])
    with pytest.raises(ValueError, match="species_names length"):
        _make_core(n_species=2, species_names=("a",))


def test_core_grid_is_read_only() -> None:
    """The grid cannot be modified behind the solvers' back."""
    core = _make_core()
    with pytest.raises(ValueError):
        core.h[1] = 5.0


def test_core_depth_and_layer_centers() -> None:
    """Layer centres are heights above the bed."""
    core = ColumnCore(1, [9.0, 1.0, 2.0, 3.0], [0.0, 1.0])

    assert core.depth == pytest.approx(6.0)
    np.testing.assert_allclose(core.layer_centers(), [0.0, 0.5, 2.0, 4.5])


def test_core_column_integral() -> None:
    """column_integral weights layers 1..N by thickness and skips column 0."""
    core = ColumnCore(2, [9.0, 1.0, 2.0, 3.0], [0.0, 1.0])
    state = np.array([[100.0, 1.0, 1.0, 1.0], [100.0, 0.0, 1.0, 2.0]])
    core.set_initial_state(state)

    np.testing.assert_allclose(core.column_integral(), [6.0, 8.0])
    np.testing.assert_allclose(core.column_integral(2.0 * state), [12.0, 16.0])
    with pytest.raises(ValueError, match="State shape"):
        core.column_integral(np.ones((2, 3)))


def test_core_species_index() -> None:
    """Species resolve by name or by index."""
    core = _make_core(n_species=2, species_names=("N", "P"))

    assert core.species_index("P") == 1
    assert core.species_index(0) == 0
    with pytest.raises(ValueError, match="Unknown species"):
        core.species_index("Z")
    with pytest.raises(IndexError):
        core.species_index(2)


def test_core_get_dt() -> None:
    """get_dt returns the length of each output interval."""
    core = ColumnCore(1, _grid(2), [0.0, 0.5, 2.0])

    assert core.get_dt(0) == pytest.approx(0.5)
    assert core.get_dt(1) == pytest.approx(1.5)
    with pytest.raises(IndexError):
        core.get_dt(2)


def test_core_history_and_advance() -> None:
    """States are stored per output time and stepping stops at the end."""
    core = _make_core(n_species=1, n_layers=2, n_times=3)
    first = np.array([[0.0, 1.0, 2.0]])
    core.set_initial_state(first)

    core.advance_timestep(first + 1.0)
    core.advance_timestep(first + 2.0)

    assert core.current_step == 2
    assert core.current_time == pytest.approx(4.0)
    np.testing.assert_array_equal(core.get_state_at(0), first)
    np.testing.assert_array_equal(core.get_state_at(2), first + 2.0)
    with pytest.raises(IndexError):
        core.get_state_at(3)
    with pytest.raises(RuntimeError, match="final timestep"):
        core.advance_timestep(first)


def test_core_without_history() -> None:
    """store_history=False keeps only the current state."""
    core = _make_core(store_history=False)
    assert core.state_array is None
    with pytest.raises(RuntimeError, match="history"):
        core.get_state_at(0)


def test_core_set_initial_state_copies() -> None:
    """The caller's array is not aliased."""
    core = _make_core(n_species=1, n_layers=2)
    init = np.array([[0.0, 1.0, 2.0]])
    core.set_initial_state(init)
    init[0, 1] = 50.0

    assert core.get_current_state()[0, 1] == 1.0


# -------------------------------------------------------------------
# ColumnSolver
# -------------------------------------------------------------------


def test_solver_reactions_only_matches_ode_solver(
    closed_ppdd: PpddFunc,
    closed_state: FloatArray,
) -> None:
    """Without nu, each interval is bio_substeps calls of ode_solver."""
    core = ColumnCore(3, _grid(4), [0.0, 0.4, 1.0])
    core.set_initial_state(closed_state)
    cfg = ColumnRunConfig(scheme="modified_patankar_2", bio_substeps=3)

    ColumnSolver(core, ppdd=closed_ppdd).run(cfg)

    expected = closed_state.copy()
    for step, dt_out in enumerate((0.4, 0.6), start=1):
        for _ in range(3):
            ode_solver(OdeScheme.MODIFIED_PATANKAR_2, dt_out / 3, expected, ppdd=closed_ppdd)
        np.testing.assert_allclose(core.get_state_at(step), expected, rtol=1e-13)


def test_solver_transport_only_matches_diffuse_center() -> None:
    """With no reactions, each interval is one diffuse_center call per species."""
    n_layers = 8
    h = np.linspace(0.5, 1.5, n_layers + 1)
    nu = np.linspace(1e-2, 5e-2, n_layers + 1)
    core = ColumnCore(2, h, [0.0, 2.0, 5.0])
    init = np.zeros(core.state_shape)
    init[0, 1:] = np.linspace(1.0, 3.0, n_layers)
    init[1, 1:] = np.sin(np.arange(n_layers)) + 2.0
    core.set_initial_state(init)

    cfg = ColumnRunConfig(
        cnpar=0.5,
        nu=nu,
        bc_up="dirichlet",
        flux_up=[4.0, 0.5],
        flux_down=0.01,
    )
    ColumnSolver(core, ppdd=_no_reactions).run(cfg)

    expected = init.copy()
    for dt_out in (2.0, 3.0):
        for s, y_up in enumerate((4.0, 0.5)):
            diffuse_center(
                expected[s],
                dt=dt_out,
                cnpar=0.5,
                h=h,
                nu=nu,
                bc_up="dirichlet",
                bc_down="neumann",
                y_up=y_up,
                y_down=0.01,
                pos_conc=True,
            )
    np.testing.assert_allclose(core.get_current_state(), expected, rtol=1e-13)
    assert core.get_current_state()[0, n_layers] == pytest.approx(4.0)


def test_solver_conserves_closed_network(
    closed_ppdd: PpddFunc,
    closed_state: FloatArray,
) -> None:
    """Zero-flux mixing plus a conservative scheme keep the total inventory."""
    core = ColumnCore(3, np.array([0.0, 1.0, 2.0, 0.5, 1.5]), np.arange(0.0, 50.0, 2.5))
    core.set_initial_state(closed_state)
    total = core.column_integral().sum()

    cfg = ColumnRunConfig(scheme=OdeScheme.MODIFIED_PATANKAR, nu=0.3, bio_substeps=2)
    ColumnSolver(core, ppdd=closed_ppdd).run(cfg)

    final = core.get_current_state()
    assert np.all(final[:, 1:] > 0.0)
    assert core.column_integral().sum() == pytest.approx(total, rel=1e-11)


def test_solver_emp_runs_with_rhs_only(
    closed_rhs: Callable[..., FloatArray],
    closed_state: FloatArray,
) -> None:
    """An rhs-form scheme needs only the rhs evaluator."""
    core = ColumnCore(3, _grid(4), np.linspace(0.0, 3.0, 4))
    core.set_initial_state(closed_state)

    ColumnSolver(core, rhs=closed_rhs).run(ColumnRunConfig(scheme=11, nu=0.1))

    assert core.current_step == 3
    assert np.all(core.get_current_state()[:, 1:] > 0.0)


def test_solver_surface_flux_balance() -> None:
    """A constant Neumann surface flux adds flux * t to the column integral."""
    core = ColumnCore(1, _grid(5, depth=5.0), np.linspace(0.0, 10.0, 6))
    init = np.zeros(core.state_shape)
    init[0, 1:] = 1.0
    core.set_initial_state(init)
    before = core.column_integral()[0]

    cfg = ColumnRunConfig(nu=0.2, flux_up=0.3)
    ColumnSolver(core, ppdd=_no_reactions).run(cfg)

    assert core.column_integral()[0] - before == pytest.approx(0.3 * 10.0, rel=1e-10)


def test_solver_invalid_substeps_raises() -> None:
    """bio_substeps must be positive."""
    core = _make_core()
    with pytest.raises(ConfigurationError, match="bio_substeps"):
        ColumnSolver(core, ppdd=_no_reactions).run(ColumnRunConfig(bio_substeps=0))


def test_solver_unknown_scheme_fails_before_stepping() -> None:
    """An unknown scheme is rejected before the first step."""
    core = _make_core()
    with pytest.raises(UnknownSchemeError):
        ColumnSolver(core, ppdd=_no_reactions).run(ColumnRunConfig(scheme=12))
    assert core.current_step == 0


def test_solver_bad_boundary_fails_before_stepping() -> None:
    """Boundary tags are validated up front."""
    core = _make_core()
    with pytest.raises(BoundaryConditionError, match="lower"):
        ColumnSolver(core, ppdd=_no_reactions).run(
            ColumnRunConfig(nu=1.0, bc_down="robin")
        )
    assert core.current_step == 0


@pytest.mark.parametrize("cnpar", [-0.5, 1.5])
def test_solver_bad_cnpar_fails_before_stepping(cnpar: float) -> None:
    """cnpar is checked up front, even without mixing."""
    core = _make_core()
    with pytest.raises(ConfigurationError, match="cnpar"):
        ColumnSolver(core, ppdd=_no_reactions).run(ColumnRunConfig(cnpar=cnpar))
    assert core.current_step == 0


def test_solver_flux_shape_mismatch_raises() -> None:
    """Per-species fluxes need one entry per species."""
    core = _make_core(n_species=2)
    with pytest.raises(ValueError, match="flux_up"):
        ColumnSolver(core, ppdd=_no_reactions).run(
            ColumnRunConfig(nu=1.0, flux_up=[1.0, 2.0, 3.0])
        )


def test_solver_single_time_point_is_a_no_op() -> None:
    """A one-point time grid has no interval to advance."""
    core = ColumnCore(1, _grid(3), [0.0])
    core.set_initial_state(np.ones(core.state_shape))

    ColumnSolver(core, ppdd=_no_reactions).run(ColumnRunConfig(nu=1.0))

    assert core.current_step == 0
    np.testing.assert_array_equal(core.get_current_state(), 1.0)
