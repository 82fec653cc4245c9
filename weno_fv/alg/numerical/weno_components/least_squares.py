"""
Least-squares reconstruction operators of a stencil.

For a stencil ``(0, 1, ..., m-1)`` around target cell 0 the design matrix is

    A[j-1, k] = avg_j(xi^{e_k}) - avg_0(xi^{e_k}),    j = 1..m-1

and the polynomial coefficients follow from the cell-average differences,
``c = A^+ (v_j - v_0)``. Subtracting the target row makes the fit reproduce
the target cell average exactly. The pseudoinverse is taken by SVD; a
stencil whose singular values spread by more than the configured tolerance
is reported as singular.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from weno_fv.operators.basis import active_basis_mask

if TYPE_CHECKING:
    from numpy.typing import NDArray


@dataclass
class LeastSquaresFit:
    """
    SVD pseudoinverse of one stencil's design matrix.

    Attributes
    ----------
    operator : NDArray, shape (n_basis, m - 1)
        Maps ``v_j - v_0`` to coefficients; rows of inactive basis functions are zero
    singular_values : NDArray
        Singular values of the active design matrix, descending
    rank : int
        Numerical rank
    """

    operator: NDArray
    singular_values: NDArray
    rank: int
    n_unknowns: int = 0

    @property
    def condition_number(self) -> float:
        s = self.singular_values
        if len(s) == 0:
            return 1.0
        return float(s[0] / s[-1]) if s[-1] > 0 else np.inf

    def is_singular(self, tolerance: float) -> bool:
        s = self.singular_values
        if len(s) == 0:
            return self.rank < self.n_unknowns
        return self.rank < self.n_unknowns or s[-1] < tolerance * s[0]


def stencil_dims(xi: NDArray, directions: NDArray, tolerance: float) -> NDArray:
    """
    Reference directions spanned by a stencil.

    Parameters
    ----------
    xi : NDArray, shape (m, 3)
        Reference coordinates of the member centres
    directions : NDArray of bool, shape (3,)
        Directions resolved by the mesh
    tolerance : float
        Extent below which a direction is inactive

    Returns
    -------
    NDArray of int8, shape (3,)
    """
    extent = np.abs(xi).max(axis=0) if len(xi) else np.zeros(3)
    return (np.asarray(directions, dtype=bool) & (extent > tolerance)).astype(np.int8)


def design_matrix(member_moments: NDArray) -> NDArray:
    """Design matrix ``(m - 1, n_basis)`` from member volume moments ``(m, n_basis)``, centre first."""
    return member_moments[1:] - member_moments[0]


def fit_stencil(member_moments: NDArray, exponents: NDArray, dims: NDArray) -> LeastSquaresFit:
    """
    Assemble and pseudo-invert the design matrix of a stencil.

    Basis functions using inactive directions are excluded from the fit and
    get zero rows in the operator.
    """
    A = design_matrix(member_moments)
    n_basis = len(exponents)
    operator = np.zeros((n_basis, A.shape[0]))

    active = active_basis_mask(exponents, dims)
    if not active.any():
        return LeastSquaresFit(operator=operator, singular_values=np.empty(0), rank=0)

    A_active = A[:, active]
    n_unknowns = int(active.sum())
    if A_active.shape[0] == 0:
        return LeastSquaresFit(operator=operator, singular_values=np.empty(0), rank=0, n_unknowns=n_unknowns)
    U, S, Vt = np.linalg.svd(A_active, full_matrices=False)

    rank = int(np.sum(S > np.finfo(float).eps * max(A_active.shape) * (S[0] if len(S) else 0.0)))
    if rank < n_unknowns:
        return LeastSquaresFit(operator=operator, singular_values=S, rank=rank, n_unknowns=n_unknowns)

    operator[active] = Vt.T @ (U.T / S[:, None])
    return LeastSquaresFit(operator=operator, singular_values=S, rank=rank, n_unknowns=n_unknowns)
