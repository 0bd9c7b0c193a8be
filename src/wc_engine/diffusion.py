# src/wc_engine/diffusion.py
"""Implicit vertical diffusion on a staggered water-column grid.

Both assemblers advance one time step of

    dY/dt - d/dz (nu dY/dz) = L * Y + Q

with a theta-scheme in time (``cnpar`` = 0 explicit, 1 fully implicit,
0.5 Crank-Nicolson), build the tridiagonal coefficients for one column and hand
them to :func:`wc_engine.matrix_ops.solve_tridiagonal`.

Grid conventions (index 0 is boundary bookkeeping, layers are 1..N, N >= 2):

- ``h[1..N]``: layer thicknesses, strictly positive.
- :func:`diffuse_face`: ``Y`` lives on layer interfaces. Rows 1..N-1 are
  solved; ``nu[i]`` is the diffusivity at layer centre i.
- :func:`diffuse_center`: ``Y`` lives at layer centres. Rows 1..N are solved;
  ``nu[i]`` is the diffusivity at the interface between layers i and i+1.

Boundary conditions:

- Dirichlet pins the boundary row to the prescribed value.
- Neumann adds a prescribed flux on the boundary row (positive = into the
  column).

The linear source ``L`` is folded entirely into the implicit diagonal; the
constant source ``Q`` is added explicitly to the right-hand side.
"""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING

import numpy as np

from .errors import ConfigurationError, raise_invalid_boundary
from .matrix_ops import TridiagonalSystem, check_diagonal_dominance

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    FloatArray = NDArray[np.floating]


# =============================================================================
# Error message constants
# =============================================================================

_CNPAR_ERROR = "cnpar must lie in [0, 1]; got {cnpar!r}"
_DT_ERROR = "dt must be positive and finite; got {dt!r}"
_STATE_TYPE_ERROR = "y must be a 1D floating-point numpy array (updated in place)"
_LAYERS_ERROR = "Diffusion needs at least 2 layers; got N={n}"
_PROFILE_ERROR = "{name} must be a scalar or have length {expected}; got shape {shape}"
_THICKNESS_ERROR = "Layer thicknesses h[1:] must be strictly positive"
_RELAX_ERROR = "y_obs is required when tau_r is given"

# Relaxation is inactive where tau_r reaches this value.
_TAU_INACTIVE = 1.0e10


# =============================================================================
# Boundary conditions
# =============================================================================


class BoundaryCondition(IntEnum):
    """Boundary-condition type tag for one end of the column."""

    DIRICHLET = 0
    NEUMANN = 1

    @classmethod
    def coerce(cls, value: object, *, where: str) -> BoundaryCondition:
        """Normalise an enum member, integer tag or name to a BoundaryCondition.

        Args:
            value: BoundaryCondition, 0/1, or "dirichlet"/"neumann"
                (case-insensitive).
            where: "upper" or "lower", used in the error message.

        Raises:
            BoundaryConditionError: If value names neither condition.

        Returns:
            The matching member.
        """
        member: BoundaryCondition | None = None
        if isinstance(value, cls):
            member = value
        elif isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                member = cls[key]
        elif (
            isinstance(value, (int, np.integer))
            and not isinstance(value, bool)
            and int(value) in (0, 1)
        ):
            member = cls(int(value))

        if member is None:
            raise_invalid_boundary(where, value)
        return member


# =============================================================================
# Input normalisation
# =============================================================================


def _check_state(y: object) -> int:
    if not (
        isinstance(y, np.ndarray)
        and y.ndim == 1
        and np.issubdtype(y.dtype, np.floating)
    ):
        raise TypeError(_STATE_TYPE_ERROR)
    n_layers = int(y.shape[0]) - 1
    if n_layers < 2:
        raise ValueError(_LAYERS_ERROR.format(n=n_layers))
    return n_layers


def _check_step(dt: float, cnpar: float) -> None:
    if not (np.isfinite(dt) and dt > 0.0):
        raise ConfigurationError(_DT_ERROR.format(dt=dt))
    if not (0.0 <= cnpar <= 1.0):
        raise ConfigurationError(_CNPAR_ERROR.format(cnpar=cnpar))


def _profile(value: ArrayLike | None, n: int, name: str) -> FloatArray:
    """Return value as a fresh float array of length n (scalars broadcast)."""
    if value is None:
        return np.zeros(n, dtype=float)
    arr = np.asarray(value, dtype=float)
    if arr.ndim == 0:
        return np.full(n, float(arr))
    if arr.shape != (n,):
        raise ValueError(_PROFILE_ERROR.format(name=name, expected=n, shape=arr.shape))
    return arr.copy()


def _thickness(h: ArrayLike, n: int) -> FloatArray:
    h_arr = _profile(h, n, "h")
    if np.any(h_arr[1:] <= 0.0):
        raise ValueError(_THICKNESS_ERROR)
    return h_arr


# =============================================================================
# Interface-located quantities
# =============================================================================


def diffuse_face(
    y: FloatArray,
    *,
    dt: float,
    cnpar: float,
    h: ArrayLike,
    nu: ArrayLike,
    bc_up: BoundaryCondition | int | str,
    bc_down: BoundaryCondition | int | str,
    y_up: float,
    y_down: float,
    lin_source: ArrayLike | None = None,
    const_source: ArrayLike | None = None,
    check_dominance: bool = False,
) -> FloatArray:
    """Diffuse an interface-located profile over one time step, in place.

    Rows 1..N-1 (the interior interfaces) are solved. Interior rows 2..N-2
    couple to both neighbours through harmonically spaced coefficients; row N-1
    carries the upper boundary condition and row 1 the lower one.

    For N=2 the single interior interface is both boundary rows: the
    diffusivity and state of that interface are mirrored into both boundary
    slots (``y[0]`` and ``y[2]`` are overwritten), the upper row is assembled
    first and the lower condition then overwrites it.

    Args:
        y: Profile ``Y[0..N]``; updated in place.
        dt: Time step.
        cnpar: Implicitness in [0, 1].
        h: Layer thicknesses ``h[0..N]``.
        nu: Diffusivity ``nu[0..N]`` (scalar broadcast). Not modified.
        bc_up: Upper boundary-condition type.
        bc_down: Lower boundary-condition type.
        y_up: Upper boundary value (Dirichlet) or flux (Neumann).
        y_down: Lower boundary value (Dirichlet) or flux (Neumann).
        lin_source: Linear source coefficient per layer (default 0).
        const_source: Constant source per layer (default 0).
        check_dominance: If True, assert diagonal dominance before solving.

    Raises:
        BoundaryConditionError: If a boundary tag is invalid.
        ConfigurationError: If dt or cnpar is out of range.
        ZeroPivotError: If the assembled system has a zero pivot.

    Returns:
        ``y``.
    """
    n_layers = _check_state(y)
    _check_step(dt, cnpar)
    upper_bc = BoundaryCondition.coerce(bc_up, where="upper")
    lower_bc = BoundaryCondition.coerce(bc_down, where="lower")

    size = n_layers + 1
    h_arr = _thickness(h, size)
    nu_arr = _profile(nu, size, "nu")
    l_arr = _profile(lin_source, size, "lin_source")
    q_arr = _profile(const_source, size, "const_source")

    n = n_layers
    if n == 2:
        nu_arr[0] = nu_arr[n] = nu_arr[1]
        y[0] = y[n] = y[1]

    system = TridiagonalSystem.allocate(size)
    au, bu, cu, du = system.lower, system.diag, system.upper, system.rhs
    theta_ex = 1.0 - cnpar

    # interior interfaces
    i = np.arange(2, n - 1)
    if i.size:
        c = dt * (nu_arr[i + 1] + nu_arr[i]) / (h_arr[i] + h_arr[i + 1]) / h_arr[i + 1]
        a = dt * (nu_arr[i] + nu_arr[i - 1]) / (h_arr[i] + h_arr[i + 1]) / h_arr[i]
        cu[i] = -cnpar * c
        au[i] = -cnpar * a
        bu[i] = 1.0 + cnpar * (a + c) - dt * l_arr[i]
        du[i] = (
            (1.0 - theta_ex * (a + c)) * y[i]
            + theta_ex * (a * y[i - 1] + c * y[i + 1])
            + dt * q_arr[i]
        )

    # upper boundary, row N-1
    top = n - 1
    if upper_bc is BoundaryCondition.NEUMANN:
        a = (
            dt
            * (nu_arr[top] + nu_arr[top - 1])
            / (h_arr[top] + h_arr[n])
            / h_arr[top]
        )
        au[top] = -cnpar * a
        bu[top] = 1.0 + cnpar * a - dt * l_arr[top]
        du[top] = (
            (1.0 - theta_ex * a) * y[top]
            + theta_ex * a * y[top - 1]
            + dt * q_arr[top]
            + 2.0 * dt * y_up / (h_arr[top] + h_arr[n])
        )
    else:
        au[top] = 0.0
        bu[top] = 1.0
        du[top] = y_up

    # lower boundary, row 1
    if lower_bc is BoundaryCondition.NEUMANN:
        c = dt * (nu_arr[2] + nu_arr[1]) / (h_arr[1] + h_arr[2]) / h_arr[2]
        cu[1] = -cnpar * c
        bu[1] = 1.0 + cnpar * c - dt * l_arr[1]
        du[1] = (
            (1.0 - theta_ex * c) * y[1]
            + theta_ex * c * y[2]
            + dt * q_arr[1]
            + 2.0 * dt * y_down / (h_arr[1] + h_arr[2])
        )
    else:
        bu[1] = 1.0
        cu[1] = 0.0
        du[1] = y_down

    if check_dominance:
        check_diagonal_dominance(system, 1, top)

    system.solve(1, top, out=y)
    return y


# =============================================================================
# Centre-located quantities
# =============================================================================


def diffuse_center(
    y: FloatArray,
    *,
    dt: float,
    cnpar: float,
    h: ArrayLike,
    nu: ArrayLike,
    bc_up: BoundaryCondition | int | str,
    bc_down: BoundaryCondition | int | str,
    y_up: float,
    y_down: float,
    lin_source: ArrayLike | None = None,
    const_source: ArrayLike | None = None,
    pos_conc: bool = False,
    tau_r: ArrayLike | None = None,
    y_obs: ArrayLike | None = None,
    check_dominance: bool = False,
) -> FloatArray:
    """Diffuse a centre-located profile over one time step, in place.

    Rows 1..N are solved. A Neumann flux enters the boundary cell as
    ``dt * F / h``. With ``pos_conc`` set, an outgoing (negative) boundary flux
    is treated implicitly, scaled by the current boundary concentration, so the
    profile stays positive; an empty boundary cell stays at zero. With zero-flux Neumann boundaries and no sources
    the column integral ``sum(h[1:] * y[1:])`` is conserved.

    Args:
        y: Profile ``Y[0..N]``; ``y[1:]`` is updated in place.
        dt: Time step.
        cnpar: Implicitness in [0, 1].
        h: Layer thicknesses ``h[0..N]``.
        nu: Interface diffusivity ``nu[0..N]`` (scalar broadcast).
        bc_up: Upper boundary-condition type.
        bc_down: Lower boundary-condition type.
        y_up: Upper boundary value (Dirichlet) or flux into the column (Neumann).
        y_down: Lower boundary value (Dirichlet) or flux into the column
            (Neumann).
        lin_source: Linear source coefficient per layer (default 0).
        const_source: Constant source per layer (default 0).
        pos_conc: Treat outgoing Neumann fluxes implicitly.
        tau_r: Relaxation time scale per layer (scalar broadcast). Relaxation is
            active where ``tau_r < 1e10``.
        y_obs: Observed profile relaxed towards; required with ``tau_r``.
        check_dominance: If True, assert diagonal dominance before solving.

    Raises:
        BoundaryConditionError: If a boundary tag is invalid.
        ConfigurationError: If dt or cnpar is out of range, or tau_r is given
            without y_obs.
        ZeroPivotError: If the assembled system has a zero pivot.

    Returns:
        ``y``.
    """
    n_layers = _check_state(y)
    _check_step(dt, cnpar)
    upper_bc = BoundaryCondition.coerce(bc_up, where="upper")
    lower_bc = BoundaryCondition.coerce(bc_down, where="lower")

    size = n_layers + 1
    h_arr = _thickness(h, size)
    nu_arr = _profile(nu, size, "nu")
    l_arr = _profile(lin_source, size, "lin_source")
    q_arr = _profile(const_source, size, "const_source")

    n = n_layers
    system = TridiagonalSystem.allocate(size)
    au, bu, cu, du = system.lower, system.diag, system.upper, system.rhs
    theta_ex = 1.0 - cnpar

    # interior cells
    i = np.arange(2, n)
    if i.size:
        c = 2.0 * dt * nu_arr[i] / (h_arr[i] + h_arr[i + 1]) / h_arr[i]
        a = 2.0 * dt * nu_arr[i - 1] / (h_arr[i] + h_arr[i - 1]) / h_arr[i]
        cu[i] = -cnpar * c
        au[i] = -cnpar * a
        bu[i] = 1.0 + cnpar * (a + c) - dt * l_arr[i]
        du[i] = (
            (1.0 - theta_ex * (a + c)) * y[i]
            + theta_ex * (a * y[i - 1] + c * y[i + 1])
            + dt * q_arr[i]
        )

    # upper boundary, cell N
    if upper_bc is BoundaryCondition.NEUMANN:
        a = 2.0 * dt * nu_arr[n - 1] / (h_arr[n] + h_arr[n - 1]) / h_arr[n]
        au[n] = -cnpar * a
        explicit = theta_ex * a * (y[n - 1] - y[n])
        if pos_conc and y_up < 0.0 and y[n] <= 0.0:
            # nothing left to drain: the implicit flux pins the cell at zero
            au[n] = 0.0
            bu[n] = 1.0
            du[n] = 0.0
        elif pos_conc and y_up < 0.0:
            bu[n] = 1.0 - dt * l_arr[n] + cnpar * a - dt * y_up / y[n] / h_arr[n]
            du[n] = y[n] + dt * q_arr[n] + explicit
        else:
            bu[n] = 1.0 - dt * l_arr[n] + cnpar * a
            du[n] = y[n] + dt * (q_arr[n] + y_up / h_arr[n]) + explicit
    else:
        au[n] = 0.0
        bu[n] = 1.0
        du[n] = y_up

    # lower boundary, cell 1
    if lower_bc is BoundaryCondition.NEUMANN:
        c = 2.0 * dt * nu_arr[1] / (h_arr[1] + h_arr[2]) / h_arr[1]
        cu[1] = -cnpar * c
        explicit = theta_ex * c * (y[2] - y[1])
        if pos_conc and y_down < 0.0 and y[1] <= 0.0:
            cu[1] = 0.0
            bu[1] = 1.0
            du[1] = 0.0
        elif pos_conc and y_down < 0.0:
            bu[1] = 1.0 - dt * l_arr[1] + cnpar * c - dt * y_down / y[1] / h_arr[1]
            du[1] = y[1] + dt * q_arr[1] + explicit
        else:
            bu[1] = 1.0 - dt * l_arr[1] + cnpar * c
            du[1] = y[1] + dt * (q_arr[1] + y_down / h_arr[1]) + explicit
    else:
        bu[1] = 1.0
        cu[1] = 0.0
        du[1] = y_down

    if tau_r is not None:
        if y_obs is None:
            raise ConfigurationError(_RELAX_ERROR)
        tau = _profile(tau_r, size, "tau_r")
        obs = _profile(y_obs, size, "y_obs")
        active = np.zeros(size, dtype=bool)
        active[1:] = tau[1:] < _TAU_INACTIVE
        rate = np.zeros(size, dtype=float)
        rate[active] = dt / tau[active]
        bu += rate
        du += rate * obs

    if check_dominance:
        check_diagonal_dominance(system, 1, n)

    system.solve(1, n, out=y)
    return y
