"""
Interval Summarizer
===================

Point estimates, credible intervals and threshold probabilities from
draw-sets of an estimand.

Key Features:
- Median point estimate (robust to skewed ratio posteriors)
- One-sided (lower bound) or two-sided symmetric-tail intervals
- Probability that the estimand exceeds a threshold
- Explicit "undefined" results for ratios with degenerate denominators

Summaries never refit anything: any fit exposing ``draws(date)`` can be
summarized repeatedly with different parameters.
"""

import numbers
import numpy as np
import pandas as pd
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Literal

from .errors import EmptyDrawSet, InvalidLevel, InvalidParameter


INTERVAL_TYPES = ('one-sided', 'two-sided')


class DrawSet:
    """
    Immutable, non-empty set of realizations of an estimand.

    Parameters
    ----------
    values : array-like
        Posterior samples, bootstrap resamples or simulation outcomes
    undefined_reason : str, optional
        Set when the estimand cannot be estimated (e.g. ratio with a
        zero or sign-changing denominator)
    """

    __slots__ = ('_values', 'undefined_reason')

    def __init__(self, values, undefined_reason: Optional[str] = None):
        arr = np.array(values, dtype=float).ravel()
        if arr.size == 0:
            raise EmptyDrawSet("Draw-set has no elements")
        arr.setflags(write=False)
        self._values = arr
        self.undefined_reason = undefined_reason

    @classmethod
    def ratio(cls, numerator, denominator) -> 'DrawSet':
        """
        Per-draw ratio ``numerator / denominator``.

        Undefined when any denominator draw is zero or the denominator
        draws change sign.
        """
        num = np.asarray(numerator, dtype=float)
        den = np.asarray(denominator, dtype=float)
        if np.any(den == 0):
            return cls(np.full(num.shape, np.nan),
                       undefined_reason="incremental cost draws include zero")
        if den.min() < 0 < den.max():
            return cls(np.full(num.shape, np.nan),
                       undefined_reason="incremental cost draws change sign")
        return cls(num / den)

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def undefined(self) -> bool:
        return self.undefined_reason is not None

    def __len__(self) -> int:
        return self._values.size

    def __repr__(self) -> str:
        if self.undefined:
            return f"DrawSet(n={len(self)}, undefined: {self.undefined_reason})"
        return f"DrawSet(n={len(self)}, median={np.median(self._values):.4g})"


@dataclass(frozen=True)
class IntervalSummary:
    """Summary of a draw-set at a given level and interval type."""
    estimate: float
    lower: float
    upper: float
    prob_exceeds: float
    level: float
    interval_type: str
    threshold: float
    n_draws: int
    undefined: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


def check_level(level) -> float:
    if (isinstance(level, bool) or not isinstance(level, numbers.Real)
            or not 0 < level < 1):
        raise InvalidLevel(level)
    return float(level)


def check_interval_type(interval_type: str) -> str:
    if interval_type not in INTERVAL_TYPES:
        raise InvalidParameter(
            f"interval_type must be one of {INTERVAL_TYPES}, got {interval_type!r}"
        )
    return interval_type


def as_draw_set(obj, date=None) -> DrawSet:
    """Resolve a fit, DrawSet or array-like into a DrawSet."""
    if isinstance(obj, DrawSet):
        return obj
    if hasattr(obj, 'draws') and callable(obj.draws):
        return obj.draws(date)
    return DrawSet(obj)


def summarize(
    obj,
    level: float = 0.90,
    interval_type: Literal['one-sided', 'two-sided'] = 'one-sided',
    threshold: float = 0.0,
    date=None
) -> IntervalSummary:
    """
    Summarize a draw-set.

    Parameters
    ----------
    obj : fit, DrawSet or array-like
        Anything exposing ``draws(date)``, or the draws themselves
    level : float
        Credibility level in (0, 1) (default: 0.90)
    interval_type : str
        'one-sided' gives a lower bound with ``upper = inf``; 'two-sided'
        gives the symmetric-tail interval
    threshold : float
        Reference value for ``prob_exceeds`` (default: 0)
    date : date-like, optional
        Date to summarize for time-indexed fits (default: last date)

    Returns
    -------
    IntervalSummary
    """
    level = check_level(level)
    check_interval_type(interval_type)
    draw_set = as_draw_set(obj, date)

    if draw_set.undefined:
        return IntervalSummary(
            estimate=np.nan,
            lower=np.nan,
            upper=np.nan,
            prob_exceeds=np.nan,
            level=level,
            interval_type=interval_type,
            threshold=threshold,
            n_draws=len(draw_set),
            undefined=True,
            reason=draw_set.undefined_reason
        )

    x = draw_set.values
    estimate = float(np.median(x))
    if interval_type == 'two-sided':
        alpha = 1 - level
        lower, upper = np.quantile(x, [alpha / 2, 1 - alpha / 2])
        lower, upper = float(lower), float(upper)
    else:
        lower = float(np.quantile(x, 1 - level))
        upper = np.inf

    return IntervalSummary(
        estimate=estimate,
        lower=lower,
        upper=upper,
        prob_exceeds=float(np.mean(x > threshold)),
        level=level,
        interval_type=interval_type,
        threshold=threshold,
        n_draws=x.size
    )


def summarize_over_time(
    fit,
    level: float = 0.90,
    interval_type: Literal['one-sided', 'two-sided'] = 'one-sided',
    threshold: float = 0.0
) -> pd.DataFrame:
    """
    Summarize a time-indexed fit at every post-intervention date.

    Returns
    -------
    pd.DataFrame
        One row per date with estimate, bounds, probability and the
        undefined flag
    """
    rows = []
    for date in fit.dates:
        s = summarize(fit, level, interval_type, threshold, date=date)
        rows.append({
            'date': date,
            'estimate': s.estimate,
            'lower': s.lower,
            'upper': s.upper,
            'prob_exceeds': s.prob_exceeds,
            'undefined': s.undefined
        })
    return pd.DataFrame(rows)
