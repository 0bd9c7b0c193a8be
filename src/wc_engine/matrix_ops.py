# src/wc_engine/matrix_ops.py
"""
Matrix operations and linear solvers for water-column numerics.

This module provides the two small direct solvers the column core relies on:

- A tridiagonal (Thomas) solver for one state variable over one vertical
  column, used by every implicit diffusion step.
- A dense Gaussian elimination for the per-layer species systems assembled by
  the Modified Patankar schemes, batched over layers.

Design notes:
    * No pivoting: both solvers assume the diagonal dominance guaranteed by the
      calling discretisations (positive diffusivities, non-positive linear
      sources, non-negative destruction rates, positive concentrations). A zero
      or non-finite pivot violates that precondition and raises ZeroPivotError.
      check_diagonal_dominance is an opt-in debug assertion for callers that do
      not want to trust the physics blindly.
    * Per-call buffers: coefficient and scratch arrays are allocated per call
      (or owned by the caller through TridiagonalSystem) so that independent
      columns can be solved concurrently without shared mutable state.
    * Index convention: tridiagonal coefficient arrays are indexed like the
      profile they solve for (0..N), and a solve acts on a closed row range
      [lo, hi]. lower[lo] and upper[hi] couple outside the range and are
      ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias, cast

import numpy as np
from numpy.typing import DTypeLike, NDArray
from scipy.sparse import csr_matrix, diags

from .errors import DiagonalDominanceError, ZeroPivotError

FloatArray: TypeAlias = NDArray[np.floating]


# =============================================================================
# Error message constants
# =============================================================================

_RANGE_ERROR = "Row range [{lo}, {hi}] is invalid for coefficient length {n}"
_LENGTH_ERROR = (
    "Coefficient arrays must have equal length; got lower={lower}, diag={diag}, "
    "upper={upper}, rhs={rhs}"
)
_OUT_LENGTH_ERROR = "out has length {actual}; expected at least {expected}"
_TRIDIAG_PIVOT_ERROR = (
    "Zero or non-finite pivot {pivot!r} in tridiagonal row {row}; the system is "
    "not diagonally dominant"
)
_DENSE_PIVOT_ERROR = (
    "Zero or non-finite pivot in dense elimination at row {row}; the system is "
    "not diagonally dominant"
)
_DENSE_SHAPE_ERROR = "a must have shape (..., n, n) and r shape (..., n); got {a} and {r}"
_DOMINANCE_ERROR = (
    "Tridiagonal row {row} is not diagonally dominant: |diag|={diag:.6g} < "
    "|lower|+|upper|={off:.6g}"
)

# Pivots below this magnitude are treated as zero.
_TINY = float(np.finfo(np.float64).tiny)


def _bad_pivot(pivot: float) -> bool:
    return not np.isfinite(pivot) or abs(pivot) < _TINY


# =============================================================================
# Tridiagonal systems
# =============================================================================


@dataclass(slots=True)
class TridiagonalSystem:
    """Coefficient buffers of a tridiagonal system A @ x = rhs.

    Row i reads: lower[i] * x[i-1] + diag[i] * x[i] + upper[i] * x[i+1] = rhs[i].

    Attributes:
        lower: Sub-diagonal coefficients (au).
        diag: Main-diagonal coefficients (bu).
        upper: Super-diagonal coefficients (cu).
        rhs: Right-hand side (du).
    """

    lower: FloatArray
    diag: FloatArray
    upper: FloatArray
    rhs: FloatArray

    @classmethod
    def allocate(cls, n: int, dtype: DTypeLike = np.float64) -> TridiagonalSystem:
        """Allocate zeroed buffers of length n.

        Args:
            n: Buffer length (number of profile entries, including index 0).
            dtype: Floating dtype.

        Returns:
            A fresh TridiagonalSystem.
        """
        dtype_obj = np.dtype(dtype)
        return cls(
            lower=np.zeros(n, dtype=dtype_obj),
            diag=np.zeros(n, dtype=dtype_obj),
            upper=np.zeros(n, dtype=dtype_obj),
            rhs=np.zeros(n, dtype=dtype_obj),
        )

    @property
    def size(self) -> int:
        """Buffer length."""
        return int(self.diag.shape[0])

    def solve(
        self,
        lo: int,
        hi: int,
        out: FloatArray | None = None,
    ) -> FloatArray:
        """Solve rows [lo, hi] of this system.

        Args:
            lo: First row (inclusive).
            hi: Last row (inclusive).
            out: Optional output array; only out[lo:hi+1] is written.

        Returns:
            The output array.
        """
        return solve_tridiagonal(
            self.lower, self.diag, self.upper, self.rhs, lo=lo, hi=hi, out=out
        )

    def to_csr(self, lo: int, hi: int) -> csr_matrix:
        """Return rows/columns [lo, hi] of the system as an explicit CSR matrix.

        Args:
            lo: First row (inclusive).
            hi: Last row (inclusive).

        Returns:
            Sparse (hi-lo+1, hi-lo+1) matrix.
        """
        _validate_range(lo, hi, self.size)
        n = hi - lo + 1
        mat = diags(
            [
                self.lower[lo + 1 : hi + 1].tolist(),
                self.diag[lo : hi + 1].tolist(),
                self.upper[lo:hi].tolist(),
            ],
            [-1, 0, 1],
            shape=(n, n),
            dtype=self.diag.dtype,
        )
        return cast("csr_matrix", mat.tocsr())


def _validate_range(lo: int, hi: int, n: int) -> None:
    if not (0 <= lo <= hi < n):
        raise ValueError(_RANGE_ERROR.format(lo=lo, hi=hi, n=n))


def solve_tridiagonal(
    lower: FloatArray,
    diag: FloatArray,
    upper: FloatArray,
    rhs: FloatArray,
    *,
    lo: int,
    hi: int,
    out: FloatArray | None = None,
) -> FloatArray:
    """Solve a tridiagonal system over the closed row range [lo, hi].

    Forward elimination divides each row by its pivot and eliminates the
    sub-diagonal entry of the next row; back-substitution then recovers the
    solution. No pivoting is performed. The input coefficient arrays are left
    untouched; scratch buffers are allocated per call.

    Args:
        lower: Sub-diagonal coefficients, same length as diag.
        diag: Main-diagonal coefficients.
        upper: Super-diagonal coefficients, same length as diag.
        rhs: Right-hand side, same length as diag.
        lo: First row to solve (inclusive).
        hi: Last row to solve (inclusive).
        out: Optional output array of at least the coefficient length. Only
            out[lo:hi+1] is written. If None, a zero array is allocated.

    Raises:
        ValueError: If array lengths or the row range are inconsistent.
        ZeroPivotError: If a zero or non-finite pivot is met.

    Returns:
        The output array holding the solution in out[lo:hi+1].
    """
    lower_arr = np.asarray(lower, dtype=float)
    diag_arr = np.asarray(diag, dtype=float)
    upper_arr = np.asarray(upper, dtype=float)
    rhs_arr = np.asarray(rhs, dtype=float)

    n = int(diag_arr.shape[0])
    if not (lower_arr.shape[0] == upper_arr.shape[0] == rhs_arr.shape[0] == n):
        raise ValueError(
            _LENGTH_ERROR.format(
                lower=lower_arr.shape[0],
                diag=n,
                upper=upper_arr.shape[0],
                rhs=rhs_arr.shape[0],
            )
        )
    _validate_range(lo, hi, n)

    if out is None:
        out = np.zeros(n, dtype=float)
    elif out.shape[0] < hi + 1:
        raise ValueError(_OUT_LENGTH_ERROR.format(actual=out.shape[0], expected=hi + 1))

    n_rows = hi - lo + 1
    c_prime = np.zeros(n_rows, dtype=float)
    d_prime = np.zeros(n_rows, dtype=float)

    pivot = float(diag_arr[lo])
    if _bad_pivot(pivot):
        raise ZeroPivotError(_TRIDIAG_PIVOT_ERROR.format(pivot=pivot, row=lo))
    if n_rows > 1:
        c_prime[0] = upper_arr[lo] / pivot
    d_prime[0] = rhs_arr[lo] / pivot

    for k in range(1, n_rows):
        i = lo + k
        pivot = float(diag_arr[i] - lower_arr[i] * c_prime[k - 1])
        if _bad_pivot(pivot):
            raise ZeroPivotError(_TRIDIAG_PIVOT_ERROR.format(pivot=pivot, row=i))
        if k < n_rows - 1:
            c_prime[k] = upper_arr[i] / pivot
        d_prime[k] = (rhs_arr[i] - lower_arr[i] * d_prime[k - 1]) / pivot

    out[hi] = d_prime[n_rows - 1]
    for k in range(n_rows - 2, -1, -1):
        out[lo + k] = d_prime[k] - c_prime[k] * out[lo + k + 1]

    return out


def check_diagonal_dominance(system: TridiagonalSystem, lo: int, hi: int) -> None:
    """Assert weak diagonal dominance of rows [lo, hi].

    Only couplings inside the range count: lower[lo] and upper[hi] are ignored,
    as in solve_tridiagonal.

    Args:
        system: Assembled tridiagonal system.
        lo: First row (inclusive).
        hi: Last row (inclusive).

    Raises:
        DiagonalDominanceError: On the first row that is not dominant.
    """
    _validate_range(lo, hi, system.size)
    off = np.zeros(hi - lo + 1, dtype=float)
    off[1:] += np.abs(system.lower[lo + 1 : hi + 1])
    off[:-1] += np.abs(system.upper[lo:hi])
    main = np.abs(system.diag[lo : hi + 1])

    bad = np.flatnonzero(main < off)
    if bad.size:
        k = int(bad[0])
        raise DiagonalDominanceError(
            _DOMINANCE_ERROR.format(row=lo + k, diag=main[k], off=off[k])
        )


# =============================================================================
# Dense per-layer systems
# =============================================================================


def solve_dense(a: FloatArray, r: FloatArray) -> FloatArray:
    """Solve a @ c = r by Gaussian elimination without pivoting.

    Leading axes are batch axes: a has shape (..., n, n) and r shape (..., n),
    so all layers of a column can be solved in one call. Inputs are not
    modified.

    Args:
        a: System matrices.
        r: Right-hand sides.

    Raises:
        ValueError: If shapes are inconsistent.
        ZeroPivotError: If a zero or non-finite pivot is met in any batch entry.

    Returns:
        Solution array with the shape of r.
    """
    a_work = np.array(a, dtype=float, copy=True)
    r_work = np.array(r, dtype=float, copy=True)

    if (
        a_work.ndim < 2
        or a_work.shape[-1] != a_work.shape[-2]
        or a_work.shape[:-1] != r_work.shape
    ):
        raise ValueError(_DENSE_SHAPE_ERROR.format(a=a_work.shape, r=r_work.shape))

    n = a_work.shape[-1]

    for i in range(n):
        pivot = a_work[..., i, i].copy()
        if not np.all(np.isfinite(pivot)) or np.any(np.abs(pivot) < _TINY):
            raise ZeroPivotError(_DENSE_PIVOT_ERROR.format(row=i))

        r_work[..., i] /= pivot
        a_work[..., i, i:] /= pivot[..., np.newaxis]

        if i + 1 < n:
            factor = a_work[..., i + 1 :, i]
            r_work[..., i + 1 :] -= factor * r_work[..., i, np.newaxis]
            a_work[..., i + 1 :, i + 1 :] -= (
                factor[..., :, np.newaxis] * a_work[..., i, np.newaxis, i + 1 :]
            )

    c = np.empty_like(r_work)
    for i in range(n - 1, -1, -1):
        c[..., i] = r_work[..., i] - np.sum(
            a_work[..., i, i + 1 :] * c[..., i + 1 :], axis=-1
        )
    return c
