"""
Geo-Based Regression (GBR)
==========================

Cross-sectional estimate of the causal effect of a geo intervention,
aggregated over the whole test window.

Key Features:
- Per-geo regression of test-window response on pretest response
- Treatment indicator coefficient as the incremental response
- Student-t posterior draws of the total incremental response
- Incremental return on spend (iROAS) with configurable cost difference
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import List, Dict, Tuple, Optional, Literal
from sklearn.metrics import r2_score

from .errors import (
    DegenerateRegression,
    EmptyTestWindow,
    InsufficientGeos,
    InvalidParameter,
    ValidationError,
    ZeroCost,
)
from .linear import OLSResult, fit_ols
from .panel import require_columns
from .summary import DrawSet


COST_ESTIMATORS = ('difference', 'regression')


@dataclass(frozen=True, eq=False)
class GBRFit:
    """Container for a fitted geo-based regression."""
    # Configuration
    response: str
    cost: Optional[str]
    pretest_period: int
    test_periods: Tuple[int, ...]
    control_group: int
    treatment_group: int
    cost_estimator: str

    # Total incremental response of the treatment group
    estimate: float
    std_error: float
    df: int
    effect: DrawSet

    # Incremental cost and iROAS (None without a cost metric)
    incremental_cost: Optional[DrawSet]
    iroas: Optional[DrawSet]

    # Diagnostics
    n_control: int
    n_treatment: int
    r2: float
    geo_table: pd.DataFrame = field(repr=False)

    def draws(self, date=None) -> DrawSet:
        """iROAS draws when a cost metric was supplied, else the effect draws."""
        return self.iroas if self.iroas is not None else self.effect

    def effect_scale(self) -> Tuple[float, float, int]:
        """Point estimate, standard error and degrees of freedom of the total effect."""
        return self.estimate, self.std_error, self.df


def geo_regression(
    x: np.ndarray,
    y: np.ndarray,
    is_treatment: np.ndarray,
    control_group: int = 1,
    treatment_group: int = 2,
    what: str = 'response'
) -> OLSResult:
    """
    Fit ``y = alpha + beta * x + delta * T`` over geos.

    Parameters
    ----------
    x : array
        Per-geo pretest totals
    y : array
        Per-geo test-window totals
    is_treatment : array of bool
        Treatment-group indicator per geo

    Returns
    -------
    OLSResult
        Coefficients ordered (alpha, beta, delta)
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    treat = np.asarray(is_treatment, dtype=bool)

    for group, mask in ((control_group, ~treat), (treatment_group, treat)):
        n = int(mask.sum())
        if n < 2:
            raise InsufficientGeos(group, n, 2)
        if np.ptp(x[mask]) == 0:
            raise DegenerateRegression(
                f"Pretest {what} has zero variance within group {group}"
            )

    X = np.column_stack([np.ones_like(x), x, treat.astype(float)])
    return fit_ols(X, y, what=f'{what} geo regression')


class GBREstimator:
    """
    Geo-Based Regression Estimator

    Regresses each geo's test-window total on its pretest total plus a
    treatment indicator. The coefficient of the indicator times the number
    of treatment geos is the total incremental response.

    Parameters
    ----------
    cost_estimator : str
        How the incremental cost is estimated:
        'difference' - raw group-mean difference of test-window cost
        'regression' - the same geo regression applied to cost
    n_draws : int
        Number of posterior draws (default: 5000)
    random_state : int, optional
        Seed for the posterior draws
    """

    def __init__(
        self,
        cost_estimator: Literal['difference', 'regression'] = 'difference',
        n_draws: int = 5000,
        random_state: Optional[int] = None
    ):
        if cost_estimator not in COST_ESTIMATORS:
            raise InvalidParameter(
                f"cost_estimator must be one of {COST_ESTIMATORS}, got {cost_estimator!r}"
            )
        if int(n_draws) < 1:
            raise InvalidParameter(f"n_draws must be positive, got {n_draws}")
        self.cost_estimator = cost_estimator
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
    ) -> GBRFit:
        """
        Fit the geo-based regression.

        Parameters
        ----------
        panel : pd.DataFrame
            Annotated panel (``geo``, ``period``, ``geo_group`` and metrics)
        response : str
            Response metric column
        cost : str, optional
            Cost metric column; enables the iROAS draw-set
        pretest_period, intervention_period : int
            Period ids of the pretest and the intervention
        cooldown_period : int, optional
            Period id appended to the test window
        control_group, treatment_group : int
            Geo-group ids

        Returns
        -------
        GBRFit
        """
        require_columns(panel, ['geo', 'period', 'geo_group', response, cost])

        test_periods = (intervention_period,)
        if cooldown_period is not None:
            test_periods += (cooldown_period,)

        periods_present = set(panel['period'].unique())
        if pretest_period not in periods_present:
            raise ValidationError(f"No rows in pretest period {pretest_period}")
        if intervention_period not in periods_present:
            raise EmptyTestWindow(f"No rows in intervention period {intervention_period}")

        geo_table = self._geo_totals(
            panel, response, cost, pretest_period, test_periods,
            control_group, treatment_group
        )
        treat = (geo_table['geo_group'] == treatment_group).to_numpy()
        n_treatment = int(treat.sum())
        n_control = int((~treat).sum())

        ols = geo_regression(
            geo_table['x'], geo_table['y'], treat,
            control_group, treatment_group, what=response
        )
        delta, se_delta = ols.coef[2], ols.se[2]

        rng = np.random.default_rng(self.random_state)
        effect_draws = n_treatment * (delta + se_delta * rng.standard_t(ols.df, self.n_draws))

        incremental_cost = None
        iroas = None
        if cost is not None:
            cost_draws = self._cost_draws(geo_table, treat, rng, control_group, treatment_group)
            if np.all(cost_draws == 0):
                raise ZeroCost(
                    f"Incremental '{cost}' is zero for treatment group "
                    f"{treatment_group}; iROAS is undefined"
                )
            incremental_cost = DrawSet(cost_draws)
            iroas = DrawSet.ratio(effect_draws, cost_draws)

        return GBRFit(
            response=response,
            cost=cost,
            pretest_period=pretest_period,
            test_periods=test_periods,
            control_group=control_group,
            treatment_group=treatment_group,
            cost_estimator=self.cost_estimator,
            estimate=float(n_treatment * delta),
            std_error=float(n_treatment * se_delta),
            df=ols.df,
            effect=DrawSet(effect_draws),
            incremental_cost=incremental_cost,
            iroas=iroas,
            n_control=n_control,
            n_treatment=n_treatment,
            r2=float(r2_score(geo_table['y'], ols.fitted)),
            geo_table=geo_table
        )

    def _geo_totals(
        self,
        panel: pd.DataFrame,
        response: str,
        cost: Optional[str],
        pretest_period: int,
        test_periods: Tuple[int, ...],
        control_group: int,
        treatment_group: int
    ) -> pd.DataFrame:
        """Per-geo pretest (x) and test-window (y) totals."""
        data = panel[panel['geo_group'].isin([control_group, treatment_group])]
        metrics = [response] + ([cost] if cost is not None else [])

        groups = data.groupby('geo')['geo_group'].first()
        pre = data[data['period'] == pretest_period].groupby('geo')[metrics].sum()
        test = data[data['period'].isin(test_periods)].groupby('geo')[metrics].sum()
        pre = pre.reindex(groups.index, fill_value=0.0)
        test = test.reindex(groups.index, fill_value=0.0)

        table = pd.DataFrame({
            'geo_group': groups,
            'x': pre[response],
            'y': test[response]
        })
        if cost is not None:
            table['cost_pretest'] = pre[cost]
            table['cost_test'] = test[cost]
        return table

    def _cost_draws(
        self,
        geo_table: pd.DataFrame,
        treat: np.ndarray,
        rng: np.random.Generator,
        control_group: int,
        treatment_group: int
    ) -> np.ndarray:
        """Draws of the total incremental cost of the treatment group."""
        n_treatment = int(treat.sum())
        cost_test = geo_table['cost_test'].to_numpy(dtype=float)

        if self.cost_estimator == 'difference':
            delta_cost = n_treatment * (cost_test[treat].mean() - cost_test[~treat].mean())
            return np.full(self.n_draws, delta_cost)

        ols = geo_regression(
            geo_table['cost_pretest'], cost_test, treat,
            control_group, treatment_group, what='cost'
        )
        delta, se_delta = ols.coef[2], ols.se[2]
        return n_treatment * (delta + se_delta * rng.standard_t(ols.df, self.n_draws))


def fit_gbr(
    panel: pd.DataFrame,
    response: str,
    cost: Optional[str] = None,
    pretest_period: int = 0,
    intervention_period: int = 1,
    cooldown_period: Optional[int] = None,
    control_group: int = 1,
    treatment_group: int = 2,
    cost_estimator: Literal['difference', 'regression'] = 'difference',
    n_draws: int = 5000,
    random_state: Optional[int] = None
) -> GBRFit:
    """Fit a geo-based regression; see GBREstimator.fit."""
    estimator = GBREstimator(
        cost_estimator=cost_estimator,
        n_draws=n_draws,
        random_state=random_state
    )
    return estimator.fit(
        panel, response, cost, pretest_period, intervention_period,
        cooldown_period, control_group, treatment_group
    )


if __name__ == '__main__':
    from .panel import ExperimentPeriods, GeoAssignment, annotate_panel, create_synthetic_panel
    from .summary import summarize

    print("=" * 60)
    print("GEO-BASED REGRESSION DEMONSTRATION")
    print("=" * 60)

    data = create_synthetic_panel(
        n_geos=40, n_days=70, effect_start=42, daily_effect=40, daily_spend=20
    )
    geos = sorted(data['geo'].unique())
    assignment = GeoAssignment({g: 1 if i % 2 == 0 else 2 for i, g in enumerate(geos)})
    periods = ExperimentPeriods(['2024-01-01', '2024-02-12', '2024-03-11'])
    panel = annotate_panel(data, periods, assignment, metrics=['sales', 'cost'])

    fit = fit_gbr(panel, 'sales', 'cost', random_state=42)
    effect = summarize(fit.effect, level=0.90, interval_type='two-sided')
    iroas = summarize(fit, level=0.90)

    print(f"\n   True total effect: {40 * 28 * 20:,.0f}")
    print(f"   Estimated effect:  {effect.estimate:,.0f} "
          f"[{effect.lower:,.0f}, {effect.upper:,.0f}]")
    print(f"   iROAS: {iroas.estimate:.2f} (>= {iroas.lower:.2f} with 90% probability)")
    print(f"   Pr(iROAS > 0): {iroas.prob_exceeds:.1%}")
    print(f"   R²: {fit.r2:.3f}, df: {fit.df}")
