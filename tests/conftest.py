"""Global pytest configuration and shared fixtures for wc_engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]


# -----------------------------------------------------------------------------
# Global markers registration safety (for local pytest runs)
# -----------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "experimental: exercises the experimental fourth-order Patankar variants",
    )


# -----------------------------------------------------------------------------
# Shared reaction networks
# -----------------------------------------------------------------------------


def _closed_network_fluxes(cc: FloatArray) -> FloatArray:
    """Flux tensor F[i, j] (from species i into j) of a closed 3-species cycle.

    Nutrient -> phytoplankton -> detritus -> nutrient, with nonlinear uptake.
    """
    n, p, d = cc[0], cc[1], cc[2]
    f = np.zeros((3, 3, cc.shape[1]))
    f[0, 1] = 2.0 * n / (0.5 + n) * p
    f[1, 2] = 0.3 * p + 0.1 * p * p
    f[2, 0] = 0.4 * d
    return f


@pytest.fixture
def closed_ppdd() -> Callable[[bool, FloatArray], tuple[FloatArray, FloatArray]]:
    """Production/destruction evaluator of a closed network (pp[i, j] = dd[j, i])."""

    def ppdd(first: bool, cc: FloatArray) -> tuple[FloatArray, FloatArray]:  # noqa: ARG001
        dd = _closed_network_fluxes(cc)
        pp = np.transpose(dd, (1, 0, 2)).copy()
        return pp, dd

    return ppdd


@pytest.fixture
def closed_rhs() -> Callable[[bool, FloatArray], FloatArray]:
    """Right-hand side of the same closed network (species sum is zero)."""

    def rhs(first: bool, cc: FloatArray) -> FloatArray:  # noqa: ARG001
        dd = _closed_network_fluxes(cc)
        return dd.sum(axis=0) - dd.sum(axis=1)

    return rhs


@pytest.fixture
def closed_state() -> FloatArray:
    """Positive 3-species state over 4 layers (column 0 is bookkeeping)."""
    return np.array(
        [
            [-7.0, 4.0, 0.5, 1.0, 0.01],
            [-7.0, 0.2, 2.0, 1e-3, 1.5],
            [-7.0, 1.0, 0.1, 3.0, 0.2],
        ]
    )
