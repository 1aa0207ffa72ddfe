"""
Ordinary least squares with the quantities needed for posterior draws.
"""

import numpy as np
from dataclasses import dataclass

from .errors import DegenerateRegression


@dataclass(frozen=True)
class OLSResult:
    """Coefficients, unscaled covariance and residual variance of an OLS fit."""
    coef: np.ndarray
    xtx_inv: np.ndarray
    sigma2: float  # residual variance estimate
    df: int
    fitted: np.ndarray

    @property
    def se(self) -> np.ndarray:
        return np.sqrt(self.sigma2 * np.diag(self.xtx_inv))


def fit_ols(X: np.ndarray, y: np.ndarray, what: str = 'regression') -> OLSResult:
    """
    Fit ``y = X beta + e`` by least squares.

    Raises DegenerateRegression when X is rank deficient or leaves no
    residual degrees of freedom.
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    n, p = X.shape

    if np.linalg.matrix_rank(X) < p:
        raise DegenerateRegression(
            f"Design matrix of the {what} is rank deficient "
            f"(a regressor has zero variance)"
        )
    df = n - p
    if df < 1:
        raise DegenerateRegression(
            f"The {what} has {n} observation(s) for {p} coefficients; "
            f"no residual degrees of freedom"
        )

    coef = np.linalg.lstsq(X, y, rcond=None)[0]
    fitted = X @ coef
    rss = float(np.sum((y - fitted) ** 2))
    xtx_inv = np.linalg.inv(X.T @ X)

    return OLSResult(
        coef=coef,
        xtx_inv=xtx_inv,
        sigma2=rss / df,
        df=df,
        fitted=fitted
    )
