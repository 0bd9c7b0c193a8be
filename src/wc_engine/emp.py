# src/wc_engine/emp.py
"""Extended Modified Patankar (EMP) schemes and their bisection root-finder.

EMP scales the explicit Euler increment of every species in a layer by one
scalar ``p``. With J the set of species whose derivative is negative, ``p``
solves

    prod_{j in J} (1 + dt * rhs_j / c_j * p) = p,   0 < p <= min(1, -c_j / (dt * rhs_j))

which keeps every concentration positive while, because the same ``p`` scales
all species, conserving the total of any conservative network.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from .errors import NonPositiveConcentrationError, StiffnessWarning

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from .ode_solvers import OdeConfig, RhsEvaluator

    FloatArray = NDArray[np.floating]


_NON_POSITIVE_ERROR = (
    "State variable(s) {indices} are non-positive and have a negative derivative; "
    "EMP cannot keep them positive"
)
_SMALL_P_WARNING = (
    "Small multiplier p={p:.3e} in Extended Modified Patankar slows down the "
    "system (stiff or near non-positive state)"
)

# Frames from the warning up to the caller of ode_solver:
# find_p_bisection, _find_p, emp_1/emp_2, ode_solver.
_DISPATCH_STACKLEVEL = 5


class BisectionStatus(Enum):
    """State of the multiplier bisection."""

    SEARCHING = "searching"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


@dataclass(slots=True, frozen=True)
class BisectionResult:
    """Outcome of find_p_bisection.

    Attributes:
        p: Multiplier estimate.
        iterations: Number of bisection iterations performed.
        status: CONVERGED or EXHAUSTED.
    """

    p: float
    iterations: int
    status: BisectionStatus


def find_p_bisection(
    cc: FloatArray,
    derivative: FloatArray,
    dt: float,
    *,
    accuracy: float = 1e-9,
    max_iter: int = 20,
    small_p_threshold: float = 1e-4,
    stacklevel: int = 2,
) -> BisectionResult:
    """Find the EMP multiplier p for one layer by bisection.

    The bracket starts at ``[0, min(1, min_j -c_j / (dt * rhs_j))]``. Each
    iteration evaluates the product polynomial at the midpoint and moves the
    left bound up if it exceeds the midpoint, the right bound down if it is
    below. The search stops on an exact hit or once the relative bracket width
    drops below ``accuracy`` (CONVERGED), or after ``max_iter`` iterations
    (EXHAUSTED, the last midpoint is accepted).

    Args:
        cc: Concentrations of all species in the layer, shape (numc,).
        derivative: Their time derivatives, shape (numc,).
        dt: Step size.
        accuracy: Relative bracket width tolerance.
        max_iter: Iteration cap.
        small_p_threshold: A StiffnessWarning is issued when p falls below it.
        stacklevel: Passed to warnings.warn for the StiffnessWarning.

    Raises:
        NonPositiveConcentrationError: If a species with negative derivative has
            a non-positive concentration.

    Returns:
        BisectionResult with the multiplier, iteration count and status.
    """
    c = np.asarray(cc, dtype=float)
    deriv = np.asarray(derivative, dtype=float)

    negative = deriv < 0.0
    if not np.any(negative):
        return BisectionResult(p=1.0, iterations=0, status=BisectionStatus.CONVERGED)

    bad = np.flatnonzero(negative & (c <= 0.0))
    if bad.size:
        raise NonPositiveConcentrationError(
            _NON_POSITIVE_ERROR.format(indices=bad.tolist())
        )

    rel = dt * deriv[negative] / c[negative]
    p_right = float(min(1.0, np.min(-1.0 / rel)))
    p_left = 0.0

    status = BisectionStatus.SEARCHING
    p = 0.5 * (p_left + p_right)
    iterations = 0
    while iterations < max_iter:
        iterations += 1
        p = 0.5 * (p_left + p_right)
        f = float(np.prod(1.0 + rel * p))

        if f > p:
            p_left = p
        elif f < p:
            p_right = p
        else:
            status = BisectionStatus.CONVERGED
            break
        if (p_right - p_left) / p < accuracy:
            status = BisectionStatus.CONVERGED
            break

    if status is BisectionStatus.SEARCHING:
        status = BisectionStatus.EXHAUSTED

    if p < small_p_threshold:
        warnings.warn(
            _SMALL_P_WARNING.format(p=p), StiffnessWarning, stacklevel=stacklevel
        )

    return BisectionResult(p=p, iterations=iterations, status=status)


def _find_p(
    c: FloatArray, deriv: FloatArray, dt: float, config: OdeConfig
) -> float:
    return find_p_bisection(
        c,
        deriv,
        dt,
        accuracy=config.bisection_accuracy,
        max_iter=config.bisection_max_iter,
        small_p_threshold=config.small_p_threshold,
        stacklevel=_DISPATCH_STACKLEVEL,
    ).p


def emp_1(dt: float, cc: FloatArray, rhs: RhsEvaluator, config: OdeConfig) -> None:
    """First-order EMP: cc <- cc + dt * rhs * p, with p found per layer."""
    deriv = rhs(True, cc)
    for layer in range(1, cc.shape[1]):
        p = _find_p(cc[:, layer], deriv[:, layer], dt, config)
        cc[:, layer] += dt * deriv[:, layer] * p


def emp_2(dt: float, cc: FloatArray, rhs: RhsEvaluator, config: OdeConfig) -> None:
    """Second-order EMP predictor/corrector.

    The predictor is an EMP-1 step. The corrector averages the derivatives of
    both stages, rescales them by cc/cc_med for every species whose averaged
    derivative is negative (Bruggeman et al., 2005), and solves for a new p
    from the starting state.
    """
    r = rhs(True, cc)
    cc_med = cc.copy()
    for layer in range(1, cc.shape[1]):
        p = _find_p(cc[:, layer], r[:, layer], dt, config)
        cc_med[:, layer] = cc[:, layer] + dt * r[:, layer] * p

    r_med = rhs(False, cc_med)

    for layer in range(1, cc.shape[1]):
        avg = 0.5 * (r[:, layer] + r_med[:, layer])
        limiting = avg < 0.0
        if np.any(limiting):
            avg = avg * np.prod(cc[limiting, layer] / cc_med[limiting, layer])
        p = _find_p(cc[:, layer], avg, dt, config)
        cc[:, layer] += dt * avg * p
