"""wc_engine water-column diffusion and stiff reaction solver package."""

from __future__ import annotations

from .column_core import ColumnCore, ColumnCoreOptions
from .column_solver import ColumnRunConfig, ColumnSolver
from .diffusion import BoundaryCondition, diffuse_center, diffuse_face
from .emp import BisectionResult, BisectionStatus, find_p_bisection
from .errors import (
    BoundaryConditionError,
    ConfigurationError,
    DiagonalDominanceError,
    EvaluatorShapeError,
    ExperimentalSchemeWarning,
    MissingEvaluatorError,
    NonPositiveConcentrationError,
    NumericalPreconditionError,
    StiffnessWarning,
    UnknownSchemeError,
    UnsupportedSchemeError,
    WcEngineError,
    ZeroPivotError,
)
from .matrix_ops import (
    TridiagonalSystem,
    check_diagonal_dominance,
    solve_dense,
    solve_tridiagonal,
)
from .ode_solvers import (
    OdeConfig,
    OdeScheme,
    PpddEvaluator,
    RhsEvaluator,
    normalize_scheme,
    ode_solver,
    scheme_info,
)

__all__ = [
    "BisectionResult",
    "BisectionStatus",
    "BoundaryCondition",
    "BoundaryConditionError",
    "ColumnCore",
    "ColumnCoreOptions",
    "ColumnRunConfig",
    "ColumnSolver",
    "ConfigurationError",
    "DiagonalDominanceError",
    "EvaluatorShapeError",
    "ExperimentalSchemeWarning",
    "MissingEvaluatorError",
    "NonPositiveConcentrationError",
    "NumericalPreconditionError",
    "OdeConfig",
    "OdeScheme",
    "PpddEvaluator",
    "RhsEvaluator",
    "StiffnessWarning",
    "TridiagonalSystem",
    "UnknownSchemeError",
    "UnsupportedSchemeError",
    "WcEngineError",
    "ZeroPivotError",
    "check_diagonal_dominance",
    "diffuse_center",
    "diffuse_face",
    "find_p_bisection",
    "normalize_scheme",
    "ode_solver",
    "scheme_info",
    "solve_dense",
    "solve_tridiagonal",
]

__version__ = "0.1.0"
