# src/wc_engine/config.py
"""Configuration models for wc_engine.

This module defines pydantic models for dict-based configuration and
translates them into the native frozen dataclasses consumed by the solvers
(:class:`wc_engine.ode_solvers.OdeConfig` and
:class:`wc_engine.column_solver.ColumnRunConfig`).

Notes:
    - Unknown fields are allowed and ignored (`extra="allow"`), so a larger
      model configuration can be passed through unchanged.
    - The diffusivity profile is not part of the settings; it is supplied by the
      turbulence closure at run time and passed to `to_run_config`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wc_engine.column_solver import ColumnRunConfig
from wc_engine.diffusion import BoundaryCondition
from wc_engine.ode_solvers import OdeConfig, OdeScheme, normalize_scheme

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

BoundaryName = Literal["dirichlet", "neumann"]


class BioSolverSettings(BaseModel):
    """Settings of the reaction (ODE) step."""

    model_config = ConfigDict(extra="allow")

    scheme: OdeScheme = Field(
        default=OdeScheme.MODIFIED_PATANKAR,
        description="ODE scheme: id 1..11 or name, e.g. 'emp_2'",
    )

    strict: bool = Field(
        default=True,
        description="Refuse the experimental fourth-order Patankar variants",
    )

    substeps: int = Field(default=1, ge=1)

    # EMP bisection controls
    bisection_accuracy: float = Field(default=1e-9, gt=0.0)
    bisection_max_iter: int = Field(default=20, ge=1)
    small_p_threshold: float = Field(default=1e-4, ge=0.0)

    @field_validator("scheme", mode="before")
    @classmethod
    def _resolve_scheme(cls, value: object) -> OdeScheme:
        return normalize_scheme(value)  # type: ignore[arg-type]

    def to_ode_config(self) -> OdeConfig:
        """Convert these settings to a native OdeConfig.

        Returns:
            Fully constructed OdeConfig instance.
        """
        return OdeConfig(
            strict=self.strict,
            bisection_accuracy=self.bisection_accuracy,
            bisection_max_iter=self.bisection_max_iter,
            small_p_threshold=self.small_p_threshold,
        )


class MixingSettings(BaseModel):
    """Settings of the vertical diffusion step."""

    model_config = ConfigDict(extra="allow")

    cnpar: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="Implicitness: 0 explicit, 0.5 Crank-Nicolson, 1 implicit",
    )

    bc_up: BoundaryName = "neumann"
    bc_down: BoundaryName = "neumann"

    flux_up: float | list[float] = 0.0
    flux_down: float | list[float] = 0.0

    pos_conc: bool = True
    check_dominance: bool = False

    @field_validator("bc_up", "bc_down", mode="before")
    @classmethod
    def _lower_boundary_name(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ColumnSettings(BaseModel):
    """Top-level settings of a column run."""

    model_config = ConfigDict(extra="allow")

    bio: BioSolverSettings = Field(default_factory=BioSolverSettings)
    mixing: MixingSettings = Field(default_factory=MixingSettings)

    def to_run_config(
        self, nu: float | NDArray[np.floating] | None = None
    ) -> ColumnRunConfig:
        """Convert these settings to a native ColumnRunConfig.

        Args:
            nu: Interface diffusivity for the transport step, or None to run
                reactions only.

        Returns:
            Fully constructed ColumnRunConfig instance.
        """
        mixing = self.mixing
        return ColumnRunConfig(
            scheme=self.bio.scheme,
            cnpar=mixing.cnpar,
            nu=nu,
            bc_up=BoundaryCondition[mixing.bc_up.upper()],
            bc_down=BoundaryCondition[mixing.bc_down.upper()],
            flux_up=mixing.flux_up,  # type: ignore[arg-type]
            flux_down=mixing.flux_down,  # type: ignore[arg-type]
            pos_conc=mixing.pos_conc,
            bio_substeps=self.bio.substeps,
            check_dominance=mixing.check_dominance,
            ode=self.bio.to_ode_config(),
        )
