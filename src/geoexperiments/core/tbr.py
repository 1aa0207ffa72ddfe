"""
Time-Based Regression (TBR)
===========================

Day-by-day causal effect of a geo intervention, predicting the treatment
group's counterfactual from the control group's pretest relationship.

Key Features:
- Pretest regression of the treatment aggregate on the control aggregate
- Posterior predictive counterfactuals that keep the joint (a, b) uncertainty
- Cumulative effect draw-sets for every post-intervention date
- iROAS over time from a second regression on the cost metric
"""

import warnings
import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import List, Dict, Tuple, Optional, Literal, Union
from sklearn.metrics import r2_score, mean_squared_error

from .errors import (
    DegenerateRegression,
    EmptyTestWindow,
    InsufficientData,
    InsufficientGeos,
    InvalidParameter,
    ValidationError,
)
from .linear import OLSResult, fit_ols
from .panel import require_columns
from .summary import DrawSet


MODELS = ('tbr1',)
COST_MODELS = ('tbr1', 'difference')

# Pretest R² below which the counterfactual is flagged as unreliable
MIN_PRETEST_R2 = 0.5


class TBRModel:
    """
    Pretest regression ``y(t) = a + b * c(t) + eta(t)``.

    ``y`` is the treatment-group aggregate and ``c`` the control-group
    aggregate. The model keeps only its fitted pretest quantities.
    """

    def __init__(self):
        self.ols: Optional[OLSResult] = None

    def fit(self, treatment_pre: np.ndarray, control_pre: np.ndarray) -> 'TBRModel':
        y = np.asarray(treatment_pre, dtype=float)
        c = np.asarray(control_pre, dtype=float)

        if len(y) < 3:
            raise InsufficientData(
                f"Time-based regression needs at least 3 pretest dates, got {len(y)}"
            )
        if np.ptp(c) == 0:
            raise DegenerateRegression(
                "Control aggregate is constant over the pretest period"
            )

        X = np.column_stack([np.ones_like(c), c])
        self.ols = fit_ols(X, y, what='time-based regression')
        return self

    @property
    def coef(self) -> np.ndarray:
        return self.ols.coef

    @property
    def sigma2(self) -> float:
        return self.ols.sigma2

    @property
    def df(self) -> int:
        return self.ols.df

    def predict(self, control: np.ndarray) -> np.ndarray:
        """Point counterfactual ``a + b * c``."""
        a, b = self.ols.coef
        return a + b * np.asarray(control, dtype=float)

    def sample_counterfactual(
        self,
        control_post: np.ndarray,
        n_draws: int,
        rng: np.random.Generator
    ) -> np.ndarray:
        """
        Posterior predictive draws of the counterfactual.

        Each draw samples ``sigma^2`` from its scaled inverse chi-square
        posterior, then ``(a, b)`` jointly given ``sigma^2``, then the
        observation noise for every date.

        Returns
        -------
        array of shape (n_draws, len(control_post))
        """
        c = np.asarray(control_post, dtype=float)
        ols = self.ols

        sigma2 = ols.df * ols.sigma2 / rng.chisquare(ols.df, n_draws)
        sd = np.sqrt(sigma2)
        L = np.linalg.cholesky(ols.xtx_inv)
        z = rng.standard_normal((n_draws, 2))
        coef = ols.coef + sd[:, None] * (z @ L.T)

        noise = sd[:, None] * rng.standard_normal((n_draws, len(c)))
        return coef[:, [0]] + coef[:, [1]] * c[None, :] + noise

    def cumulative_scale(self, control_post: np.ndarray) -> Tuple[float, int]:
        """
        Student-t scale and degrees of freedom of the cumulative effect
        over the given window.
        """
        c = np.asarray(control_post, dtype=float)
        k = len(c)
        u = np.array([k, c.sum()])
        var = self.ols.sigma2 * (k + u @ self.ols.xtx_inv @ u)
        return float(np.sqrt(var)), self.ols.df


@dataclass(frozen=True, eq=False)
class TBRFit:
    """Container for a time-based regression of one metric."""
    # Configuration
    metric: str
    model: str
    pretest_period: int
    test_periods: Tuple[int, ...]
    control_group: int
    treatment_group: int

    # Time series over the test window
    dates: pd.DatetimeIndex
    observed: np.ndarray
    predicted: np.ndarray
    daily: np.ndarray = field(repr=False)       # (n_draws, n_dates)
    cumulative: np.ndarray = field(repr=False)  # (n_draws, n_dates)

    # Pretest fit (None for deterministic cost differences)
    coef: Optional[Tuple[float, float]] = None
    sigma2: float = 0.0
    df: Optional[int] = None
    cumulative_se: float = 0.0
    pretest_r2: Optional[float] = None
    pretest_rmse: Optional[float] = None

    @property
    def n_draws(self) -> int:
        return self.daily.shape[0]

    def _column(self, date) -> int:
        if date is None:
            return len(self.dates) - 1
        stamp = pd.Timestamp(date)
        if stamp not in self.dates:
            raise ValidationError(f"{stamp.date()} is not a post-intervention date")
        return int(self.dates.get_loc(stamp))

    def draws(self, date=None) -> DrawSet:
        """Cumulative effect through ``date`` (default: last test date)."""
        return DrawSet(self.cumulative[:, self._column(date)])

    def daily_draws(self, date=None) -> DrawSet:
        """Effect on ``date`` alone."""
        return DrawSet(self.daily[:, self._column(date)])

    def effect_scale(self) -> Tuple[float, float, int]:
        """Point cumulative effect, its standard error and degrees of freedom."""
        point = float(np.sum(self.observed - self.predicted))
        return point, self.cumulative_se, self.df


@dataclass(frozen=True, eq=False)
class TBRROASFit:
    """Incremental return on spend over time from two time-based regressions."""
    response: TBRFit
    cost: TBRFit
    cost_model: str

    @property
    def dates(self) -> pd.DatetimeIndex:
        return self.response.dates

    def draws(self, date=None) -> DrawSet:
        """Cumulative effect / cumulative incremental cost through ``date``."""
        col = self.response._column(date)
        return DrawSet.ratio(self.response.cumulative[:, col], self.cost.cumulative[:, col])

    def effect_draws(self, date=None) -> DrawSet:
        return self.response.draws(date)

    def cost_draws(self, date=None) -> DrawSet:
        return self.cost.draws(date)


def aggregate_by_group(
    panel: pd.DataFrame,
    metric: str,
    control_group: int = 1,
    treatment_group: int = 2
) -> pd.DataFrame:
    """
    Sum a metric over geos per date and group.

    Returns
    -------
    pd.DataFrame
        Indexed by date with columns ``period``, ``control``, ``treatment``
    """
    data = panel[panel['geo_group'].isin([control_group, treatment_group])]
    for group in (control_group, treatment_group):
        if not (data['geo_group'] == group).any():
            raise InsufficientGeos(group, 0, 1)

    wide = data.pivot_table(
        index='date', columns='geo_group', values=metric, aggfunc='sum', fill_value=0.0
    )
    return pd.DataFrame({
        'period': data.groupby('date')['period'].first(),
        'control': wide[control_group],
        'treatment': wide[treatment_group]
    }).sort_index()


class TBRAnalyzer:
    """
    Time-Based Regression Analyzer

    Parameters
    ----------
    model : str
        Regression model; only 'tbr1' (intercept + control aggregate)
    cost_model : str
        'tbr1' fits the same regression to the cost metric;
        'difference' uses treatment cost minus its pretest mean as a
        known incremental cost (e.g. when pretest spend is all zero)
    n_draws : int
        Number of posterior draws (default: 5000)
    random_state : int, optional
        Seed for the posterior draws
    """

    def __init__(
        self,
        model: Literal['tbr1'] = 'tbr1',
        cost_model: Literal['tbr1', 'difference'] = 'tbr1',
        n_draws: int = 5000,
        random_state: Optional[int] = None
    ):
        if model not in MODELS:
            raise InvalidParameter(f"model must be one of {MODELS}, got {model!r}")
        if cost_model not in COST_MODELS:
            raise InvalidParameter(
                f"cost_model must be one of {COST_MODELS}, got {cost_model!r}"
            )
        if int(n_draws) < 1:
            raise InvalidParameter(f"n_draws must be positive, got {n_draws}")
        self.model = model
        self.cost_model = cost_model
        self.n_draws = int(n_draws)
        self.random_state = random_state

    def fit(
        self,
        panel: pd.DataFrame,
        response: str,
        cost: Optional[str] = None,
        pretest_period: int = 0,
        intervention_period: int = 1,
        cooldown_period: Optional[int] = None,
        control_group: int = 1,
        treatment_group: int = 2
    ) -> Union[TBRFit, TBRROASFit]:
        """
        Fit the time-based regression.

        Parameters
        ----------
        panel : pd.DataFrame
            Annotated panel (``date``, ``period``, ``geo_group`` and metrics)
        response : str
            Response metric column
        cost : str, optional
            Cost metric column; returns a TBRROASFit when given
        pretest_period, intervention_period : int
            Period ids of the pretest and the intervention
        cooldown_period : int, optional
            Period id appended to the test window
        control_group, treatment_group : int
            Geo-group ids

        Returns
        -------
        TBRFit or TBRROASFit
        """
        require_columns(panel, ['date', 'period', 'geo_group', response, cost])

        test_periods = (intervention_period,)
        if cooldown_period is not None:
            test_periods += (cooldown_period,)

        rng = np.random.default_rng(self.random_state)
        response_fit = self._fit_metric(
            panel, response, pretest_period, test_periods,
            control_group, treatment_group, rng
        )
        if cost is None:
            return response_fit

        if self.cost_model == 'tbr1':
            try:
                cost_fit = self._fit_metric(
                    panel, cost, pretest_period, test_periods,
                    control_group, treatment_group, rng
                )
            except DegenerateRegression as e:
                raise DegenerateRegression(
                    f"{e}; cost '{cost}' does not vary in the pretest period, "
                    f"use cost_model='difference'"
                ) from e
        else:
            cost_fit = self._cost_difference(
                panel, cost, pretest_period, test_periods,
                control_group, treatment_group
            )

        return TBRROASFit(response=response_fit, cost=cost_fit, cost_model=self.cost_model)

    def _split(
        self,
        panel: pd.DataFrame,
        metric: str,
        pretest_period: int,
        test_periods: Tuple[int, ...],
        control_group: int,
        treatment_group: int
    ) -> Tuple[pd.DataFrame, pd.DataFrame]:
        series = aggregate_by_group(panel, metric, control_group, treatment_group)
        pre = series[series['period'] == pretest_period]
        post = series[series['period'].isin(test_periods)]
        if len(post) == 0:
            raise EmptyTestWindow(
                f"No dates in test period(s) {list(test_periods)}"
            )
        return pre, post

    def _fit_metric(
        self,
        panel: pd.DataFrame,
        metric: str,
        pretest_period: int,
        test_periods: Tuple[int, ...],
        control_group: int,
        treatment_group: int,
        rng: np.random.Generator
    ) -> TBRFit:
        pre, post = self._split(
            panel, metric, pretest_period, test_periods, control_group, treatment_group
        )

        tbr = TBRModel().fit(pre['treatment'].values, pre['control'].values)

        # Pre-period diagnostics
        pre_fitted = tbr.predict(pre['control'].values)
        pretest_r2 = float(r2_score(pre['treatment'].values, pre_fitted))
        pretest_rmse = float(np.sqrt(mean_squared_error(pre['treatment'].values, pre_fitted)))
        if pretest_r2 < MIN_PRETEST_R2:
            warnings.warn(
                f"Weak pretest fit for '{metric}' (R² = {pretest_r2:.2f}); "
                f"counterfactual predictions may be unreliable"
            )

        observed = post['treatment'].to_numpy(dtype=float)
        counterfactual = tbr.sample_counterfactual(post['control'].values, self.n_draws, rng)
        daily = observed[None, :] - counterfactual
        cumulative_se, df = tbr.cumulative_scale(post['control'].values)

        return TBRFit(
            metric=metric,
            model=self.model,
            pretest_period=pretest_period,
            test_periods=test_periods,
            control_group=control_group,
            treatment_group=treatment_group,
            dates=pd.DatetimeIndex(post.index),
            observed=observed,
            predicted=tbr.predict(post['control'].values),
            daily=_read_only(daily),
            cumulative=_read_only(np.cumsum(daily, axis=1)),
            coef=(float(tbr.coef[0]), float(tbr.coef[1])),
            sigma2=tbr.sigma2,
            df=df,
            cumulative_se=cumulative_se,
            pretest_r2=pretest_r2,
            pretest_rmse=pretest_rmse
        )

    def _cost_difference(
        self,
        panel: pd.DataFrame,
        cost: str,
        pretest_period: int,
        test_periods: Tuple[int, ...],
        control_group: int,
        treatment_group: int
    ) -> TBRFit:
        """Known incremental cost: treatment cost minus its pretest mean."""
        pre, post = self._split(
            panel, cost, pretest_period, test_periods, control_group, treatment_group
        )
        baseline = float(pre['treatment'].mean()) if len(pre) > 0 else 0.0
        observed = post['treatment'].to_numpy(dtype=float)
        predicted = np.full(len(observed), baseline)
        daily = np.tile(observed - predicted, (self.n_draws, 1))

        return TBRFit(
            metric=cost,
            model='difference',
            pretest_period=pretest_period,
            test_periods=test_periods,
            control_group=control_group,
            treatment_group=treatment_group,
            dates=pd.DatetimeIndex(post.index),
            observed=observed,
            predicted=predicted,
            daily=_read_only(daily),
            cumulative=_read_only(np.cumsum(daily, axis=1))
        )


def _read_only(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


def fit_tbr(
    panel: pd.DataFrame,
    response: str,
    cost: Optional[str] = None,
    model: Literal['tbr1'] = 'tbr1',
    pretest_period: int = 0,
    intervention_period: int = 1,
    cooldown_period: Optional[int] = None,
    control_group: int = 1,
    treatment_group: int = 2,
    cost_model: Literal['tbr1', 'difference'] = 'tbr1',
    n_draws: int = 5000,
    random_state: Optional[int] = None
) -> Union[TBRFit, TBRROASFit]:
    """Fit a time-based regression; see TBRAnalyzer.fit."""
    analyzer = TBRAnalyzer(
        model=model,
        cost_model=cost_model,
        n_draws=n_draws,
        random_state=random_state
    )
    return analyzer.fit(
        panel, response, cost, pretest_period, intervention_period,
        cooldown_period, control_group, treatment_group
    )


if __name__ == '__main__':
    from .panel import ExperimentPeriods, GeoAssignment, annotate_panel, create_synthetic_panel
    from .summary import summarize, summarize_over_time

    print("=" * 60)
    print("TIME-BASED REGRESSION DEMONSTRATION")
    print("=" * 60)

    data = create_synthetic_panel(
        n_geos=20, n_days=70, effect_start=42, daily_effect=25, daily_spend=10
    )
    geos = sorted(data['geo'].unique())
    assignment = GeoAssignment({g: 1 if i % 2 == 0 else 2 for i, g in enumerate(geos)})
    periods = ExperimentPeriods(['2024-01-01', '2024-02-12', '2024-03-11'])
    panel = annotate_panel(data, periods, assignment, metrics=['sales', 'cost'])

    fit = fit_tbr(panel, 'sales', 'cost', cost_model='difference', random_state=42)
    effect = summarize(fit.response, level=0.90, interval_type='two-sided')
    iroas = summarize(fit, level=0.90)

    print(f"\n   True cumulative effect: {25 * 28 * 10:,.0f}")
    print(f"   Estimated:              {effect.estimate:,.0f} "
          f"[{effect.lower:,.0f}, {effect.upper:,.0f}]")
    print(f"   iROAS: {iroas.estimate:.2f} (>= {iroas.lower:.2f} with 90% probability)")
    print(f"   Pretest R²: {fit.response.pretest_r2:.3f}")

    print("\n   iROAS over time (last 5 days):")
    print(summarize_over_time(fit).tail().to_string(index=False))
