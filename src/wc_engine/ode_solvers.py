# src/wc_engine/ode_solvers.py
"""Time integrators for stiff, positivity-constrained reaction systems.

All schemes advance a concentration field ``cc`` of shape ``(numc, ni + 1)``
by one step ``dt`` in place. Column 0 is boundary bookkeeping and is never
updated; layers 1..ni are independent of each other.

Two evaluator conventions are supported, and each scheme requires exactly one:

- rhs form: ``rhs(first, cc) -> rhs`` with the shape of ``cc``.
- ppdd form: ``ppdd(first, cc) -> (pp, dd)`` with shape ``(numc, numc, ni + 1)``,
  where ``pp[i, j]`` is the flux from species j into i and ``dd[i, j]`` the flux
  from i into j. Diagonal entries are external production/destruction.

``first`` is True on the first evaluator call of a step and False on later
calls; results must not depend on it.

Schemes (selectable by :class:`OdeScheme` member, integer 1..11 or name):

====  ==========================  ========  =====
 id   name                        form      order
====  ==========================  ========  =====
  1   euler_forward               rhs       1
  2   runge_kutta_2               rhs       2
  3   runge_kutta_4               rhs       4
  4   patankar                    ppdd      1
  5   patankar_runge_kutta_2      ppdd      2
  6   patankar_runge_kutta_4      ppdd      (experimental)
  7   modified_patankar           ppdd      1
  8   modified_patankar_2         ppdd      2
  9   modified_patankar_4         ppdd      (experimental)
 10   emp_1                       rhs       1
 11   emp_2                       rhs       2
====  ==========================  ========  =====

The Patankar family guarantees positivity; the Modified Patankar and EMP
families additionally conserve mass for conservative networks. The two
fourth-order Patankar variants are known not to be conservative and are only
run with ``OdeConfig(strict=False)``.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from enum import IntEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Final, Literal, Protocol

import numpy as np

from .emp import emp_1, emp_2
from .errors import (
    ConfigurationError,
    EvaluatorShapeError,
    ExperimentalSchemeWarning,
    MissingEvaluatorError,
    raise_unknown_scheme,
    raise_unsupported_scheme,
)
from .matrix_ops import solve_dense

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]
    SchemeFunc = Callable[..., None]


# =============================================================================
# Error message constants
# =============================================================================

_STATE_ERROR = (
    "cc must be a 2D floating-point numpy array of shape (numc, ni + 1) with "
    "numc >= 1 and ni >= 1; got {desc}"
)
_DT_ERROR = "dt must be positive and finite; got {dt!r}"
_MISSING_EVALUATOR_ERROR = (
    "Scheme '{scheme}' requires a {convention} evaluator; pass {kwarg}=..."
)
_RHS_SHAPE_ERROR = "rhs evaluator returned shape {got}; expected {expected}"
_PPDD_SHAPE_ERROR = "ppdd evaluator returned {name} of shape {got}; expected {expected}"
_PPDD_RETURN_ERROR = "ppdd evaluator must return a (pp, dd) pair"
_EXPERIMENTAL_REASON = (
    "this fourth-order Patankar variant is known not to work and is not "
    "conservative"
)
_EXPERIMENTAL_WARNING = (
    "Running experimental scheme '{scheme}'; results are not conservative and "
    "may be inaccurate."
)


# =============================================================================
# Evaluator interfaces and configuration
# =============================================================================


class RhsEvaluator(Protocol):
    """Right-hand side in flux-per-species form."""

    def __call__(self, first: bool, cc: FloatArray) -> FloatArray:
        """Return d(cc)/dt with the shape of cc."""
        ...


class PpddEvaluator(Protocol):
    """Right-hand side in production/destruction form."""

    def __call__(
        self,
        first: bool,
        cc: FloatArray,
    ) -> tuple[FloatArray, FloatArray]:
        """Return (pp, dd), each of shape (numc, numc, ni + 1)."""
        ...


class OdeScheme(IntEnum):
    """Closed set of time-stepping schemes."""

    EULER_FORWARD = 1
    RUNGE_KUTTA_2 = 2
    RUNGE_KUTTA_4 = 3
    PATANKAR = 4
    PATANKAR_RUNGE_KUTTA_2 = 5
    PATANKAR_RUNGE_KUTTA_4 = 6
    MODIFIED_PATANKAR = 7
    MODIFIED_PATANKAR_2 = 8
    MODIFIED_PATANKAR_4 = 9
    EMP_1 = 10
    EMP_2 = 11


@dataclass(slots=True, frozen=True)
class OdeConfig:
    """Configuration for ode_solver.

    Attributes:
        strict: If True, experimental schemes raise UnsupportedSchemeError;
            otherwise they run and emit ExperimentalSchemeWarning.
        bisection_accuracy: Relative bracket width at which the EMP bisection
            stops.
        bisection_max_iter: Iteration cap of the EMP bisection.
        small_p_threshold: EMP multipliers below this emit StiffnessWarning.
    """

    strict: bool = True
    bisection_accuracy: float = 1e-9
    bisection_max_iter: int = 20
    small_p_threshold: float = 1e-4


Convention = Literal["rhs", "ppdd"]


@dataclass(slots=True, frozen=True)
class SchemeInfo:
    """Registration record of one scheme.

    Attributes:
        scheme: Scheme member.
        func: Implementation, called as func(dt, cc, evaluator, config).
        convention: Evaluator convention the scheme consumes.
        order: Nominal order of accuracy (0 for experimental variants).
        experimental: Whether the scheme is gated by OdeConfig.strict.
    """

    scheme: OdeScheme
    func: SchemeFunc
    convention: Convention
    order: int
    experimental: bool = False

    @property
    def name(self) -> str:
        """Lower-case scheme name."""
        return self.scheme.name.lower()


# =============================================================================
# Shared helpers
# =============================================================================


def _sums(pp: FloatArray, dd: FloatArray) -> tuple[FloatArray, FloatArray]:
    """Row sums over the partner-species axis, layers 1..ni only."""
    return pp[:, :, 1:].sum(axis=1), dd[:, :, 1:].sum(axis=1)


def _patankar_update(
    base: FloatArray,
    prod: FloatArray,
    dest: FloatArray,
    denom: FloatArray,
    dt: float,
) -> FloatArray:
    """Return (base + dt*prod) / (1 + dt*dest/denom)."""
    ratio = np.divide(dest, denom, out=np.zeros_like(dest), where=dest != 0.0)
    return (base + dt * prod) / (1.0 + dt * ratio)


def _modified_patankar_solve(
    dt: float,
    pp: FloatArray,
    dd: FloatArray,
    c_ref: FloatArray,
    c_base: FloatArray,
) -> FloatArray:
    """Assemble and solve the per-layer Modified Patankar systems.

    For each layer:
        a[i, i] = 1 + dt * sum_j dd[i, j] / c_ref[i]
        a[i, j] = -dt * pp[i, j] / c_ref[j]      (j != i)
        r[i]    = c_base[i] + dt * pp[i, i]

    Args:
        dt: Step size.
        pp: Production tensor, (numc, numc, ni + 1).
        dd: Destruction tensor, (numc, numc, ni + 1).
        c_ref: Concentrations used as implicit denominators, (numc, ni + 1).
        c_base: Concentrations at the start of the step, (numc, ni + 1).

    Returns:
        New concentrations for layers 1..ni, shape (numc, ni).
    """
    numc = c_ref.shape[0]
    diag = np.arange(numc)

    p_layers = np.moveaxis(pp[:, :, 1:], -1, 0)
    d_layers = np.moveaxis(dd[:, :, 1:], -1, 0)
    ref = c_ref[:, 1:].T

    a = -dt * p_layers / ref[:, np.newaxis, :]
    a[:, diag, diag] = 1.0 + dt * d_layers.sum(axis=2) / ref
    r = c_base[:, 1:].T + dt * p_layers[:, diag, diag]

    return solve_dense(a, r).T


# =============================================================================
# Explicit family (rhs form)
# =============================================================================


def euler_forward(
    dt: float,
    cc: FloatArray,
    rhs: RhsEvaluator,
    config: OdeConfig,  # noqa: ARG001
) -> None:
    """First-order explicit Euler: cc <- cc + dt * rhs(cc)."""
    r = rhs(True, cc)
    cc[:, 1:] += dt * r[:, 1:]


def runge_kutta_2(
    dt: float,
    cc: FloatArray,
    rhs: RhsEvaluator,
    config: OdeConfig,  # noqa: ARG001
) -> None:
    """Second-order explicit midpoint method."""
    r = rhs(True, cc)
    cc1 = cc.copy()
    cc1[:, 1:] = cc[:, 1:] + 0.5 * dt * r[:, 1:]

    r = rhs(False, cc1)
    cc[:, 1:] += dt * r[:, 1:]


def runge_kutta_4(
    dt: float,
    cc: FloatArray,
    rhs: RhsEvaluator,
    config: OdeConfig,  # noqa: ARG001
) -> None:
    """Classical fourth-order Runge-Kutta with weights 1/6, 1/3, 1/3, 1/6.

    Stage derivatives are accumulated into a running sum as
    (r1/2 + r2 + r3 + r4/2) / 3.
    """
    cc1 = cc.copy()

    r = rhs(True, cc)
    acc = 0.5 * r[:, 1:]
    cc1[:, 1:] = cc[:, 1:] + 0.5 * dt * r[:, 1:]

    r = rhs(False, cc1)
    acc += r[:, 1:]
    cc1[:, 1:] = cc[:, 1:] + 0.5 * dt * r[:, 1:]

    r = rhs(False, cc1)
    acc += r[:, 1:]
    cc1[:, 1:] = cc[:, 1:] + dt * r[:, 1:]

    r = rhs(False, cc1)
    acc += 0.5 * r[:, 1:]

    cc[:, 1:] += dt * acc / 3.0


# =============================================================================
# Patankar family (ppdd form)
# =============================================================================


def patankar(
    dt: float,
    cc: FloatArray,
    ppdd: PpddEvaluator,
    config: OdeConfig,  # noqa: ARG001
) -> None:
    """First-order Patankar: destruction divided by the old concentration.

    Positive but not conservative.
    """
    pp, dd = ppdd(True, cc)
    ppsum, ddsum = _sums(pp, dd)
    c = cc[:, 1:]
    cc[:, 1:] = _patankar_update(c, ppsum, ddsum, c, dt)


def patankar_runge_kutta_2(
    dt: float,
    cc: FloatArray,
    ppdd: PpddEvaluator,
    config: OdeConfig,  # noqa: ARG001
) -> None:
    """Second-order Patankar-Runge-Kutta.

    The predictor is a Patankar step. The corrector averages the production
    and destruction sums of both stages and divides destruction by the
    predicted concentration.
    """
    pp, dd = ppdd(True, cc)
    ppsum, ddsum = _sums(pp, dd)
    c = cc[:, 1:].copy()

    cc1 = cc.copy()
    cc1[:, 1:] = _patankar_update(c, ppsum, ddsum, c, dt)

    pp, dd = ppdd(False, cc1)
    ppsum1, ddsum1 = _sums(pp, dd)
    ppsum += ppsum1
    ddsum += ddsum1

    cc[:, 1:] = _patankar_update(c, ppsum, ddsum, cc1[:, 1:], 0.5 * dt)


def patankar_runge_kutta_4(
    dt: float,
    cc: FloatArray,
    ppdd: PpddEvaluator,
    config: OdeConfig,  # noqa: ARG001
) -> None:
    """Experimental fourth-order Patankar-Runge-Kutta stage sequence.

    Four Patankar stages, each dividing by the previous stage's concentration,
    combined with weights (1/2, 1, 1, 1/2) / 3. Not conservative.
    """
    c = cc[:, 1:].copy()
    cc1 = cc.copy()

    pp, dd = ppdd(True, cc)
    sums = [_sums(pp, dd)]
    cc1[:, 1:] = _patankar_update(c, sums[0][0], sums[0][1], c, dt)

    for _ in range(3):
        pp, dd = ppdd(False, cc1)
        sums.append(_sums(pp, dd))
        if len(sums) < 4:
            cc1[:, 1:] = _patankar_update(
                c, sums[-1][0], sums[-1][1], cc1[:, 1:], dt
            )

    weights = (0.5, 1.0, 1.0, 0.5)
    ppsum = sum(w * s[0] for w, s in zip(weights, sums, strict=True)) / 3.0
    ddsum = sum(w * s[1] for w, s in zip(weights, sums, strict=True)) / 3.0
    cc[:, 1:] = _patankar_update(c, ppsum, ddsum, cc1[:, 1:], dt)


# =============================================================================
# Modified Patankar family (ppdd form)
# =============================================================================


def modified_patankar(
    dt: float,
    cc: FloatArray,
    ppdd: PpddEvaluator,
    config: OdeConfig,  # noqa: ARG001
) -> None:
    """First-order Modified Patankar: positive and conservative."""
    pp, dd = ppdd(True, cc)
    cc[:, 1:] = _modified_patankar_solve(dt, pp, dd, cc, cc)


def modified_patankar_2(
    dt: float,
    cc: FloatArray,
    ppdd: PpddEvaluator,
    config: OdeConfig,  # noqa: ARG001
) -> None:
    """Second-order Modified Patankar-Runge-Kutta.

    The predictor is a Modified Patankar step; the corrector averages pp and dd
    of both stages and uses the predicted state as implicit denominator.
    """
    pp, dd = ppdd(True, cc)
    cc1 = cc.copy()
    cc1[:, 1:] = _modified_patankar_solve(dt, pp, dd, cc, cc)

    pp1, dd1 = ppdd(False, cc1)
    pp_avg = 0.5 * (pp + pp1)
    dd_avg = 0.5 * (dd + dd1)
    cc[:, 1:] = _modified_patankar_solve(dt, pp_avg, dd_avg, cc1, cc)


def modified_patankar_4(
    dt: float,
    cc: FloatArray,
    ppdd: PpddEvaluator,
    config: OdeConfig,  # noqa: ARG001
) -> None:
    """Experimental fourth-order Modified Patankar stage sequence.

    Three Modified Patankar stages, each using the previous stage as implicit
    denominator, then a final solve with pp and dd weighted (1/2, 1, 1, 1/2) / 3.
    Not conservative.
    """
    pp, dd = ppdd(True, cc)
    stages = [(pp, dd)]
    cc1 = cc.copy()
    cc1[:, 1:] = _modified_patankar_solve(dt, pp, dd, cc, cc)

    for k in range(3):
        pp_k, dd_k = ppdd(False, cc1)
        stages.append((pp_k, dd_k))
        if k < 2:
            cc1[:, 1:] = _modified_patankar_solve(dt, pp_k, dd_k, cc1, cc)

    weights = (0.5, 1.0, 1.0, 0.5)
    pp_w = sum(w * s[0] for w, s in zip(weights, stages, strict=True)) / 3.0
    dd_w = sum(w * s[1] for w, s in zip(weights, stages, strict=True)) / 3.0
    cc[:, 1:] = _modified_patankar_solve(dt, pp_w, dd_w, cc1, cc)


# =============================================================================
# Registry and dispatcher
# =============================================================================

_REGISTRY: Final[Mapping[OdeScheme, SchemeInfo]] = MappingProxyType(
    {
        info.scheme: info
        for info in (
            SchemeInfo(OdeScheme.EULER_FORWARD, euler_forward, "rhs", 1),
            SchemeInfo(OdeScheme.RUNGE_KUTTA_2, runge_kutta_2, "rhs", 2),
            SchemeInfo(OdeScheme.RUNGE_KUTTA_4, runge_kutta_4, "rhs", 4),
            SchemeInfo(OdeScheme.PATANKAR, patankar, "ppdd", 1),
            SchemeInfo(
                OdeScheme.PATANKAR_RUNGE_KUTTA_2, patankar_runge_kutta_2, "ppdd", 2
            ),
            SchemeInfo(
                OdeScheme.PATANKAR_RUNGE_KUTTA_4,
                patankar_runge_kutta_4,
                "ppdd",
                0,
                experimental=True,
            ),
            SchemeInfo(OdeScheme.MODIFIED_PATANKAR, modified_patankar, "ppdd", 1),
            SchemeInfo(OdeScheme.MODIFIED_PATANKAR_2, modified_patankar_2, "ppdd", 2),
            SchemeInfo(
                OdeScheme.MODIFIED_PATANKAR_4,
                modified_patankar_4,
                "ppdd",
                0,
                experimental=True,
            ),
            SchemeInfo(OdeScheme.EMP_1, emp_1, "rhs", 1),
            SchemeInfo(OdeScheme.EMP_2, emp_2, "rhs", 2),
        )
    }
)


def normalize_scheme(scheme: OdeScheme | int | str) -> OdeScheme:
    """Resolve a scheme selector to an OdeScheme member.

    Args:
        scheme: Member, integer id 1..11, digit string, or name
            (case-insensitive, "-" and " " treated as "_").

    Raises:
        UnknownSchemeError: If scheme does not select one of the 11 schemes.

    Returns:
        The selected member.
    """
    member: OdeScheme | None = None
    if isinstance(scheme, OdeScheme):
        member = scheme
    elif isinstance(scheme, str):
        key = scheme.strip().lower().replace("-", "_").replace(" ", "_")
        if key.isdigit():
            member = _scheme_from_int(int(key))
        else:
            member = OdeScheme.__members__.get(key.upper())
    elif isinstance(scheme, (int, np.integer)) and not isinstance(scheme, bool):
        member = _scheme_from_int(int(scheme))

    if member is None:
        raise_unknown_scheme(scheme, names=[m.name.lower() for m in OdeScheme])
    return member


def _scheme_from_int(value: int) -> OdeScheme | None:
    try:
        return OdeScheme(value)
    except ValueError:
        return None


def scheme_info(scheme: OdeScheme | int | str) -> SchemeInfo:
    """Return the registration record of a scheme.

    Raises:
        UnknownSchemeError: If scheme is unknown.
    """
    return _REGISTRY[normalize_scheme(scheme)]


def _check_state(cc: object) -> tuple[int, int]:
    if not isinstance(cc, np.ndarray):
        raise TypeError(_STATE_ERROR.format(desc=type(cc).__name__))
    if (
        cc.ndim != 2
        or not np.issubdtype(cc.dtype, np.floating)
        or cc.shape[0] < 1
        or cc.shape[1] < 2
    ):
        raise ValueError(_STATE_ERROR.format(desc=f"{cc.dtype} {cc.shape}"))
    return int(cc.shape[0]), int(cc.shape[1]) - 1


def _checked_rhs(rhs: RhsEvaluator, shape: tuple[int, int]) -> RhsEvaluator:
    def evaluate(first: bool, cc: FloatArray) -> FloatArray:
        out = np.asarray(rhs(first, cc), dtype=float)
        if out.shape != shape:
            raise EvaluatorShapeError(
                _RHS_SHAPE_ERROR.format(got=out.shape, expected=shape)
            )
        return out

    return evaluate


def _checked_ppdd(ppdd: PpddEvaluator, shape: tuple[int, int, int]) -> PpddEvaluator:
    def evaluate(
        first: bool,
        cc: FloatArray,
    ) -> tuple[FloatArray, FloatArray]:
        result = ppdd(first, cc)
        if not isinstance(result, tuple) or len(result) != 2:
            raise EvaluatorShapeError(_PPDD_RETURN_ERROR)
        pp = np.asarray(result[0], dtype=float)
        dd = np.asarray(result[1], dtype=float)
        for name, arr in (("pp", pp), ("dd", dd)):
            if arr.shape != shape:
                raise EvaluatorShapeError(
                    _PPDD_SHAPE_ERROR.format(name=name, got=arr.shape, expected=shape)
                )
        return pp, dd

    return evaluate


def ode_solver(
    scheme: OdeScheme | int | str,
    dt: float,
    cc: FloatArray,
    *,
    rhs: RhsEvaluator | None = None,
    ppdd: PpddEvaluator | None = None,
    config: OdeConfig | None = None,
) -> FloatArray:
    """Advance cc by one step of the selected scheme, in place.

    Exactly one scheme runs. Only the evaluator matching the scheme's
    convention is used; the other may be None.

    Args:
        scheme: Scheme selector (member, id 1..11 or name).
        dt: Step size.
        cc: Concentrations, shape (numc, ni + 1); layers 1..ni are updated.
        rhs: Evaluator in rhs form.
        ppdd: Evaluator in ppdd form.
        config: Solver configuration; defaults to OdeConfig().

    Raises:
        UnknownSchemeError: If scheme is unknown.
        UnsupportedSchemeError: If an experimental scheme is requested in
            strict mode.
        MissingEvaluatorError: If the required evaluator was not supplied.
        ConfigurationError: If dt is not positive.
        EvaluatorShapeError: If an evaluator returns arrays of the wrong shape.

    Returns:
        cc.
    """
    cfg = OdeConfig() if config is None else config
    info = scheme_info(scheme)

    numc, ni = _check_state(cc)
    if not (np.isfinite(dt) and dt > 0.0):
        raise ConfigurationError(_DT_ERROR.format(dt=dt))

    if info.experimental:
        if cfg.strict:
            raise_unsupported_scheme(info.name, reason=_EXPERIMENTAL_REASON)
        warnings.warn(
            _EXPERIMENTAL_WARNING.format(scheme=info.name),
            ExperimentalSchemeWarning,
            stacklevel=2,
        )

    evaluator: RhsEvaluator | PpddEvaluator
    if info.convention == "rhs":
        if rhs is None:
            raise MissingEvaluatorError(
                _MISSING_EVALUATOR_ERROR.format(
                    scheme=info.name, convention="rhs-form", kwarg="rhs"
                )
            )
        evaluator = _checked_rhs(rhs, (numc, ni + 1))
    else:
        if ppdd is None:
            raise MissingEvaluatorError(
                _MISSING_EVALUATOR_ERROR.format(
                    scheme=info.name, convention="ppdd-form", kwarg="ppdd"
                )
            )
        evaluator = _checked_ppdd(ppdd, (numc, numc, ni + 1))

    info.func(dt, cc, evaluator, cfg)
    return cc
