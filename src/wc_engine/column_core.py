# src/wc_engine/column_core.py
"""State, grid and time manager for a single water column.

ColumnCore holds what survives between time steps:

- the vertical grid ``h[0..N]`` (index 0 is boundary bookkeeping),
- the output time grid,
- the concentration field of shape ``(n_species, N + 1)``, and
- optionally its full history.

It builds no right-hand sides and assembles no operators; the solvers receive
its arrays and hand updated state back through :meth:`ColumnCore.advance_timestep`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast

import numpy as np
import numpy.typing as npt

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, DTypeLike


# Error / message constants -------------------------------------------------

_TIMEGRID_1D_ERROR = "time_grid must be a 1D array"
_TIMEGRID_MIN_POINTS_ERROR = "time_grid must contain at least one time point"
_TIMEGRID_MONOTONE_ERROR = "time_grid must be strictly increasing"

_THICKNESS_1D_ERROR = "h must be a 1D array h[0..N]"
_THICKNESS_MIN_LAYERS_ERROR = "h must describe at least {minimum} layers; got N={n}"
_THICKNESS_POSITIVE_ERROR = "Layer thicknesses h[1:] must be strictly positive"

_N_SPECIES_ERROR = "n_species must be >= 1; got {n}"
_SPECIES_NAMES_LEN_ERROR = "species_names length {actual} doesn't match n_species {expected}"
_SPECIES_UNKNOWN_ERROR = "Unknown species: {name}"

_STATE_SHAPE_ERROR = "State shape {actual} does not match expected {expected}"
_HISTORY_NOT_STORED_ERROR = (
    "Full history is not stored (store_history=False); get_state_at is unavailable."
)
_STEP_OOB_ERROR = "Step out of bounds: {idx}"
_FINAL_TIMESTEP_ERROR = "Simulation has already reached final timestep"
_DT_INDEX_OOB_ERROR = "dt index out of bounds: {idx}"

# Diffusion needs two layers to couple.
_MIN_LAYERS = 2


# Typing helpers ------------------------------------------------------------

FloatArray = npt.NDArray[np.floating[Any]]


@dataclass(slots=True)
class ColumnCoreOptions:
    """Optional configuration for ColumnCore.

    Attributes:
        species_names: Optional names for the species axis.
        store_history: Whether to store the state at every output time.
        dtype: Floating-point dtype for internal arrays.
    """

    species_names: tuple[str, ...] | None = None
    store_history: bool = True
    dtype: DTypeLike = np.float64


class ColumnCore:
    """Grid, time and concentration state of one water column."""

    def __init__(
        self,
        n_species: int,
        h: ArrayLike,
        time_grid: ArrayLike,
        *,
        options: ColumnCoreOptions | None = None,
    ) -> None:
        """
        Initialize ColumnCore.

        Args:
            n_species: Number of species (biogeochemical state variables).
            h: Layer thicknesses h[0..N]; h[0] is ignored.
            time_grid: 1D array of output times.
            options: Optional ColumnCoreOptions.

        Raises:
            ValueError: if the grid, time grid or species metadata is invalid.
        """
        opts = options or ColumnCoreOptions()
        self.dtype = np.dtype(opts.dtype)

        self.time_grid = np.asarray(time_grid, dtype=self.dtype)
        if self.time_grid.ndim != 1:
            raise ValueError(_TIMEGRID_1D_ERROR)
        self.n_timesteps = int(self.time_grid.size)
        if self.n_timesteps < 1:
            raise ValueError(_TIMEGRID_MIN_POINTS_ERROR)
        if self.n_timesteps > 1:
            dt_arr = np.diff(self.time_grid)
            if np.any(dt_arr <= 0):
                raise ValueError(_TIMEGRID_MONOTONE_ERROR)
            self.dt_grid = np.asarray(dt_arr, dtype=self.dtype)
        else:
            self.dt_grid = np.asarray([], dtype=self.dtype)

        self.h = np.array(h, dtype=self.dtype)
        if self.h.ndim != 1:
            raise ValueError(_THICKNESS_1D_ERROR)
        self.n_layers = int(self.h.size) - 1
        if self.n_layers < _MIN_LAYERS:
            raise ValueError(
                _THICKNESS_MIN_LAYERS_ERROR.format(minimum=_MIN_LAYERS, n=self.n_layers)
            )
        if np.any(self.h[1:] <= 0):
            raise ValueError(_THICKNESS_POSITIVE_ERROR)
        self.h.setflags(write=False)

        self.n_species = int(n_species)
        if self.n_species < 1:
            raise ValueError(_N_SPECIES_ERROR.format(n=n_species))
        if opts.species_names is None:
            self.species_names = tuple(f"species{i}" for i in range(self.n_species))
        else:
            if len(opts.species_names) != self.n_species:
                raise ValueError(
                    _SPECIES_NAMES_LEN_ERROR.format(
                        actual=len(opts.species_names), expected=self.n_species
                    )
                )
            self.species_names = tuple(opts.species_names)

        self.state_shape = (self.n_species, self.n_layers + 1)
        self.store_history = bool(opts.store_history)
        self.current_step = 0
        self.current_state = np.zeros(self.state_shape, dtype=self.dtype)

        self.state_array: FloatArray | None
        if self.store_history:
            self.state_array = cast(
                "FloatArray",
                np.zeros((self.n_timesteps, *self.state_shape), dtype=self.dtype),
            )
        else:
            self.state_array = None

    # ------------------------------------------------------------------
    # Grid helpers
    # ------------------------------------------------------------------

    @property
    def depth(self) -> float:
        """Water-column depth, the sum of h[1:]."""
        return float(self.h[1:].sum())

    def layer_centers(self) -> FloatArray:
        """
        Height of each layer centre above the bed.

        Returns:
            Array of length N + 1; entry 0 is 0.
        """
        z = np.zeros(self.n_layers + 1, dtype=self.dtype)
        interfaces = np.cumsum(self.h[1:])
        z[1:] = interfaces - 0.5 * self.h[1:]
        return z

    def column_integral(self, state: ArrayLike | None = None) -> FloatArray:
        """
        Depth integral sum(h[1:] * c[:, 1:]) of every species.

        Args:
            state: State to integrate; defaults to the current state.

        Returns:
            Array of shape (n_species,).
        """
        arr = self.current_state if state is None else np.asarray(state, dtype=float)
        self.validate_state_shape(arr)
        return cast("FloatArray", arr[:, 1:] @ self.h[1:])

    def species_index(self, name: str | int) -> int:
        """
        Resolve a species name or index.

        Raises:
            IndexError: if an integer index is out of range.
            ValueError: if a name is unknown.
        """
        if isinstance(name, int):
            if not (0 <= name < self.n_species):
                raise IndexError(_SPECIES_UNKNOWN_ERROR.format(name=name))
            return name
        try:
            return self.species_names.index(name)
        except ValueError as exc:
            raise ValueError(_SPECIES_UNKNOWN_ERROR.format(name=name)) from exc

    def validate_state_shape(self, arr: ArrayLike) -> None:
        """
        Validate that arr has state_shape.

        Raises:
            ValueError: if arr does not have shape state_shape.
        """
        arr_shape = np.asarray(arr).shape
        if arr_shape != self.state_shape:
            raise ValueError(
                _STATE_SHAPE_ERROR.format(actual=arr_shape, expected=self.state_shape)
            )

    # ------------------------------------------------------------------
    # Time helpers
    # ------------------------------------------------------------------

    @property
    def current_time(self) -> float:
        """Current simulation time t = time_grid[current_step]."""
        return float(self.time_grid[self.current_step])

    def get_dt(self, step_idx: int) -> float:
        """
        Return dt for the interval [t_step_idx, t_step_idx+1].

        Args:
            step_idx: Timestep index in [0, n_timesteps - 1).

        Raises:
            IndexError: if step_idx is out of bounds.

        Returns:
            dt as a float.
        """
        if self.n_timesteps <= 1:
            return 0.0
        if not (0 <= step_idx < self.n_timesteps - 1):
            raise IndexError(_DT_INDEX_OOB_ERROR.format(idx=step_idx))
        return float(self.dt_grid[step_idx])

    # ------------------------------------------------------------------
    # Initialization / accessors
    # ------------------------------------------------------------------

    def set_initial_state(self, initial_state: ArrayLike) -> None:
        """
        Set the state at time_grid[0] and rewind to step 0.

        Raises:
            ValueError: if initial_state has incorrect shape.
        """
        arr = np.asarray(initial_state, dtype=self.dtype)
        self.validate_state_shape(arr)
        np.copyto(self.current_state, arr)
        if self.store_history and self.state_array is not None:
            self.state_array[0] = self.current_state
        self.current_step = 0

    def get_current_state(self) -> FloatArray:
        """Return the current state (a live view, shape state_shape)."""
        return self.current_state

    def get_state_at(self, step: int) -> FloatArray:
        """
        Return the state at a given output step from history.

        Args:
            step: Timestep index in [0, n_timesteps).

        Raises:
            RuntimeError: if history is not stored.
            IndexError: if step is out of bounds.

        Returns:
            State at the given step, shape state_shape.
        """
        if not self.store_history or self.state_array is None:
            raise RuntimeError(_HISTORY_NOT_STORED_ERROR)
        if not (0 <= step < self.n_timesteps):
            raise IndexError(_STEP_OOB_ERROR.format(idx=step))
        return cast("FloatArray", self.state_array[step])

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def advance_timestep(self, next_state: ArrayLike) -> None:
        """
        Store the state at the next output time and advance the step counter.

        Raises:
            ValueError: if next_state has incorrect shape.
            RuntimeError: if the final output time was already reached.
        """
        arr = np.asarray(next_state, dtype=self.dtype)
        self.validate_state_shape(arr)
        if self.current_step >= self.n_timesteps - 1:
            raise RuntimeError(_FINAL_TIMESTEP_ERROR)

        np.copyto(self.current_state, arr)
        self.current_step += 1
        if self.store_history and self.state_array is not None:
            self.state_array[self.current_step] = self.current_state
