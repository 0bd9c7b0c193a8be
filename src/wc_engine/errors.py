# src/wc_engine/errors.py
"""Error types and diagnostic warning categories for wc_engine.

This module centralizes:
- explicit error classes with actionable messages,
- warning categories for non-fatal numerical diagnostics, and
- small helpers that raise standardized errors.

Taxonomy:
- Configuration errors (unknown scheme selector, invalid boundary-condition
  tag, missing evaluator, disabled scheme) derive from ConfigurationError and
  also from ValueError.
- Numerical precondition violations (zero pivot, loss of diagonal dominance,
  zero concentration with a negative derivative) derive from
  NumericalPreconditionError and also from ArithmeticError, so a caller can
  catch them separately and apply its own recovery policy, e.g. step-size
  reduction.
- Diagnostic-only conditions are reported through ``warnings.warn`` with the
  categories below and never abort a step.
"""

from __future__ import annotations

from typing import Final, NoReturn

_SCHEME_HINT_MSG: Final[str] = (
    "Valid schemes are 1..11 or one of the names: {names}."
)


class WcEngineError(Exception):
    """Base exception for wc_engine errors."""


# -----------------------------------------------------------------------------
# Configuration errors
# -----------------------------------------------------------------------------


class ConfigurationError(WcEngineError, ValueError):
    """Raised when a solver is asked to run with an invalid configuration."""


class UnknownSchemeError(ConfigurationError):
    """Raised when the ODE scheme selector does not name one of the 11 schemes."""


class BoundaryConditionError(ConfigurationError):
    """Raised when a boundary-condition tag is neither Dirichlet nor Neumann."""


class MissingEvaluatorError(ConfigurationError):
    """Raised when a scheme's required evaluator convention was not supplied."""


class UnsupportedSchemeError(ConfigurationError):
    """Raised when a known but non-functional scheme is requested in strict mode."""


# -----------------------------------------------------------------------------
# Numerical precondition violations
# -----------------------------------------------------------------------------


class NumericalPreconditionError(WcEngineError, ArithmeticError):
    """Raised when a numerical precondition of a solver is violated."""


class ZeroPivotError(NumericalPreconditionError):
    """Raised when elimination without pivoting meets a zero or non-finite pivot."""


class DiagonalDominanceError(NumericalPreconditionError):
    """Raised by the optional debug check when a row is not diagonally dominant."""


class NonPositiveConcentrationError(NumericalPreconditionError):
    """Raised when a zero concentration has a negative derivative in EMP."""


class EvaluatorShapeError(WcEngineError, ValueError):
    """Raised when a right-hand-side evaluator returns arrays of the wrong shape."""


# -----------------------------------------------------------------------------
# Diagnostic warnings
# -----------------------------------------------------------------------------


class StiffnessWarning(RuntimeWarning):
    """Issued when the EMP multiplier p is very small (stiff or non-positive system)."""


class ExperimentalSchemeWarning(RuntimeWarning):
    """Issued when a known non-functional 4th-order Patankar variant is run."""


# -----------------------------------------------------------------------------
# Standardized raisers
# -----------------------------------------------------------------------------


def raise_unknown_scheme(scheme: object, *, names: list[str]) -> NoReturn:
    """Raise a standardized UnknownSchemeError.

    Args:
        scheme: The rejected scheme selector.
        names: Valid scheme names, for the hint.

    Raises:
        UnknownSchemeError: Always.
    """
    msg = (
        f"No valid ODE solver scheme specified: {scheme!r}. "
        f"{_SCHEME_HINT_MSG.format(names=', '.join(names))}"
    )
    raise UnknownSchemeError(msg)


def raise_invalid_boundary(where: str, value: object) -> NoReturn:
    """Raise a standardized BoundaryConditionError.

    Args:
        where: "upper" or "lower".
        value: The rejected boundary-condition tag.

    Raises:
        BoundaryConditionError: Always.
    """
    msg = (
        f"Invalid boundary condition type for {where} boundary: {value!r}. "
        "Expected 'dirichlet' or 'neumann'."
    )
    raise BoundaryConditionError(msg)


def raise_unsupported_scheme(scheme: str, *, reason: str) -> NoReturn:
    """Raise a standardized UnsupportedSchemeError.

    Args:
        scheme: Requested scheme name.
        reason: Human-readable reason the scheme cannot run.

    Raises:
        UnsupportedSchemeError: Always.
    """
    msg = (
        f"Scheme '{scheme}' is not supported in strict mode.\n"
        f"Reason: {reason}\n\n"
        "Pass OdeConfig(strict=False) to run it anyway; results are not "
        "guaranteed to be conservative or accurate."
    )
    raise UnsupportedSchemeError(msg)
