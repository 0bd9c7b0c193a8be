# src/wc_engine/column_solver.py
"""Operator-split driver for a biogeochemical water column.

This solver advances a :class:`wc_engine.column_core.ColumnCore` over its output
time grid. Each output interval ``[t_k, t_{k+1}]`` is one split step:

1. Transport: every species is diffused implicitly with
   :func:`wc_engine.diffusion.diffuse_center` over the full interval.
2. Reaction: the concentration field is advanced with
   :func:`wc_engine.ode_solvers.ode_solver`, in ``bio_substeps`` equal
   sub-steps.

The reaction evaluators are supplied once, at construction, in either or both
conventions; the configured scheme picks the one it needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from .diffusion import BoundaryCondition, diffuse_center
from .errors import ConfigurationError
from .ode_solvers import OdeConfig, OdeScheme, ode_solver, scheme_info

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from .column_core import ColumnCore
    from .ode_solvers import PpddEvaluator, RhsEvaluator

    FloatArray = NDArray[np.floating]


# =============================================================================
# Error message constants
# =============================================================================

_SUBSTEPS_ERROR = "bio_substeps must be >= 1; got {n}"
_CNPAR_ERROR = "cnpar must lie in [0, 1]; got {cnpar!r}"
_PER_SPECIES_ERROR = (
    "{name} must be a scalar or have one entry per species ({n}); got shape {shape}"
)


# =============================================================================
# Configuration
# =============================================================================


@dataclass(slots=True, frozen=True)
class ColumnRunConfig:
    """Configuration for ColumnSolver.run.

    Attributes:
        scheme: ODE scheme selector (member, id 1..11 or name).
        cnpar: Implicitness of the diffusion step in [0, 1].
        nu: Interface diffusivity, scalar or profile nu[0..N]. None disables
            the transport step.
        bc_up: Upper boundary-condition type for every species.
        bc_down: Lower boundary-condition type for every species.
        flux_up: Upper boundary value or flux, scalar or one per species.
        flux_down: Lower boundary value or flux, scalar or one per species.
        pos_conc: Treat outgoing boundary fluxes implicitly to stay positive.
        bio_substeps: Number of reaction sub-steps per output interval.
        check_dominance: Assert diagonal dominance of every diffusion system.
        ode: Configuration forwarded to ode_solver.
    """

    scheme: OdeScheme | int | str = OdeScheme.MODIFIED_PATANKAR
    cnpar: float = 1.0
    nu: float | FloatArray | None = None
    bc_up: BoundaryCondition | int | str = BoundaryCondition.NEUMANN
    bc_down: BoundaryCondition | int | str = BoundaryCondition.NEUMANN
    flux_up: float | FloatArray = 0.0
    flux_down: float | FloatArray = 0.0
    pos_conc: bool = True
    bio_substeps: int = 1
    check_dominance: bool = False
    ode: OdeConfig = field(default_factory=OdeConfig)


def _per_species(value: ArrayLike, n: int, name: str) -> FloatArray:
    arr = np.asarray(value, dtype=float)
    if arr.ndim == 0:
        return np.full(n, float(arr))
    if arr.shape != (n,):
        raise ValueError(_PER_SPECIES_ERROR.format(name=name, n=n, shape=arr.shape))
    return arr


# =============================================================================
# Solver
# =============================================================================


class ColumnSolver:
    """Split transport/reaction solver operating on a ColumnCore."""

    def __init__(
        self,
        core: ColumnCore,
        *,
        rhs: RhsEvaluator | None = None,
        ppdd: PpddEvaluator | None = None,
    ) -> None:
        """Initialize ColumnSolver.

        Args:
            core: ColumnCore instance to solve.
            rhs: Reaction evaluator in rhs form.
            ppdd: Reaction evaluator in production/destruction form.
        """
        self.core = core
        self.rhs = rhs
        self.ppdd = ppdd
        self._work: FloatArray = np.zeros(core.state_shape, dtype=core.dtype)

    # ------------------------------------------------------------------
    # Split steps
    # ------------------------------------------------------------------

    def transport(self, state: FloatArray, dt: float, cfg: ColumnRunConfig) -> None:
        """Diffuse every species of state over dt, in place."""
        if cfg.nu is None:
            return
        n_species = self.core.n_species
        flux_up = _per_species(cfg.flux_up, n_species, "flux_up")
        flux_down = _per_species(cfg.flux_down, n_species, "flux_down")

        for s in range(n_species):
            diffuse_center(
                state[s],
                dt=dt,
                cnpar=cfg.cnpar,
                h=self.core.h,
                nu=cfg.nu,
                bc_up=cfg.bc_up,
                bc_down=cfg.bc_down,
                y_up=float(flux_up[s]),
                y_down=float(flux_down[s]),
                pos_conc=cfg.pos_conc,
                check_dominance=cfg.check_dominance,
            )

    def react(self, state: FloatArray, dt: float, cfg: ColumnRunConfig) -> None:
        """Advance the reaction system of state over dt, in place."""
        dt_bio = dt / cfg.bio_substeps
        for _ in range(cfg.bio_substeps):
            ode_solver(
                cfg.scheme,
                dt_bio,
                state,
                rhs=self.rhs,
                ppdd=self.ppdd,
                config=cfg.ode,
            )

    def step(self, state: FloatArray, dt: float, cfg: ColumnRunConfig) -> None:
        """Apply one transport step followed by the reaction sub-steps."""
        self.transport(state, dt, cfg)
        self.react(state, dt, cfg)

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def run(self, config: ColumnRunConfig | None = None) -> None:
        """Advance the ColumnCore state through its time grid.

        Args:
            config: Optional run configuration. If None, defaults are used.

        Raises:
            ConfigurationError: If bio_substeps is not positive, or the scheme,
                boundary tags or cnpar are invalid.
        """
        cfg = config or ColumnRunConfig()
        if cfg.bio_substeps < 1:
            raise ConfigurationError(_SUBSTEPS_ERROR.format(n=cfg.bio_substeps))
        if not (0.0 <= cfg.cnpar <= 1.0):
            raise ConfigurationError(_CNPAR_ERROR.format(cnpar=cfg.cnpar))
        scheme_info(cfg.scheme)
        BoundaryCondition.coerce(cfg.bc_up, where="upper")
        BoundaryCondition.coerce(cfg.bc_down, where="lower")

        for idx in range(self.core.n_timesteps - 1):
            dt_out = self.core.get_dt(idx)
            np.copyto(self._work, self.core.get_current_state())
            self.step(self._work, dt_out, cfg)
            self.core.advance_timestep(self._work)
