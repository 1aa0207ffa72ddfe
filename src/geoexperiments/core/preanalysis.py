"""
Preanalysis Simulator
=====================

Predicts, from historical data only, the precision of the iROAS estimate
of a planned geo experiment, and the spend needed for a target precision.

Key Features:
- Resampling of historical windows with the planned period lengths
- Re-randomized geo-group assignment (within strata) per resample
- GBR or TBR analytic interval scale per resample
- Spend <-> precision queries from the inverse-proportionality law
- Deterministic per-resample seeding and optional process parallelism
"""

import warnings
import numpy as np
import pandas as pd
import multiprocessing as mp
from functools import partial
from dataclasses import dataclass, field
from typing import List, Dict, Tuple, Optional, Sequence, Literal
from scipy import stats

from .errors import (
    InsufficientGeos,
    InsufficientHistory,
    InvalidParameter,
    NonPositivePeriodLength,
    NoVariation,
    SimulationCancelled,
    ValidationError,
)
from .gbr import geo_regression
from .panel import GeoAssignment, require_columns
from .summary import DrawSet, check_interval_type, check_level
from .tbr import TBRModel


MODELS = ('gbr1', 'tbr1')


@dataclass(frozen=True, eq=False)
class PreanalysisFit:
    """Container for preanalysis simulation results."""
    # Configuration
    response: str
    prop_to: str
    model: str
    period_lengths: Tuple[int, ...]
    resamples: int
    level: float
    random_state: int
    spend_ratio: float

    # One entry per resample
    start_dates: pd.DatetimeIndex
    spend: np.ndarray = field(repr=False)
    scale: np.ndarray = field(repr=False)  # std error of the total effect
    df: np.ndarray = field(repr=False)

    def scaling_constants(
        self,
        level: Optional[float] = None,
        interval_type: Literal['one-sided', 'two-sided'] = 'two-sided'
    ) -> np.ndarray:
        """
        Interval half-width of the total effect per resample.

        Equals ``precision * spend``; iROAS precision at spend ``C`` is
        this constant divided by ``C``.
        """
        level = check_level(self.level if level is None else level)
        check_interval_type(interval_type)
        if interval_type == 'two-sided':
            q = stats.t.ppf((1 + level) / 2, self.df)
        else:
            q = stats.t.ppf(level, self.df)
        return q * self.scale

    def precision(
        self,
        level: Optional[float] = None,
        interval_type: Literal['one-sided', 'two-sided'] = 'two-sided'
    ) -> np.ndarray:
        """iROAS precision of every resample at its own synthetic spend."""
        return self.scaling_constants(level, interval_type) / self.spend

    def draws(self, date=None) -> DrawSet:
        """Precision draw-set at the configured level (two-sided)."""
        return DrawSet(self.precision())

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'start_date': self.start_dates,
            'spend': self.spend,
            'scale': self.scale,
            'df': self.df,
            'precision': self.precision()
        })


def _simulate_resample(
    index: int,
    response: np.ndarray,
    prop: np.ndarray,
    geos: List[str],
    assignment: GeoAssignment,
    period_lengths: Tuple[int, ...],
    model: str,
    random_state: int,
    randomize_groups: bool,
    control_group: int,
    treatment_group: int,
    spend_ratio: float
) -> Tuple[int, float, int, float]:
    """
    Run one resample: window choice, group assignment, estimator scale.

    Returns
    -------
    tuple
        (window start index, effect scale, degrees of freedom, spend)
    """
    rng = np.random.default_rng([random_state, index])

    total = sum(period_lengths)
    start = int(rng.integers(0, response.shape[0] - total + 1))
    if randomize_groups:
        assignment = assignment.randomized(rng)

    labels = np.array([assignment.groups[g] for g in geos])
    treat = labels == treatment_group
    ctrl = labels == control_group

    pre = slice(start, start + period_lengths[0])
    test = slice(start + period_lengths[0], start + total)

    spend = spend_ratio * float(prop[test][:, treat].sum())
    if spend <= 0:
        raise NoVariation(
            f"Proportionality metric is zero for the treatment group in resample {index}"
        )

    if model == 'gbr1':
        keep = treat | ctrl
        ols = geo_regression(
            response[pre][:, keep].sum(axis=0),
            response[test][:, keep].sum(axis=0),
            treat[keep],
            control_group,
            treatment_group
        )
        scale, df = int(treat.sum()) * float(ols.se[2]), ols.df
    else:
        tbr = TBRModel().fit(
            response[pre][:, treat].sum(axis=1),
            response[pre][:, ctrl].sum(axis=1)
        )
        scale, df = tbr.cumulative_scale(response[test][:, ctrl].sum(axis=1))

    return start, scale, df, spend


class PreanalysisSimulator:
    """
    Resampling-based precision simulator

    Parameters
    ----------
    model : str
        'gbr1' (geo-based regression) or 'tbr1' (time-based regression)
    resamples : int
        Number of simulated experiments (default: 100)
    level : float
        Credibility level used for the reported precision (default: 0.90)
    randomize_groups : bool
        Permute group labels within strata in every resample (default: True)
    spend_ratio : float
        Synthetic spend per unit of the proportionality metric (default: 1)
    random_state : int
        Base seed; resample ``r`` is seeded with ``(random_state, r)``
    n_jobs : int
        Worker processes; 1 runs serially (default: 1)
    verbose : bool
        Print progress messages
    """

    def __init__(
        self,
        model: Literal['gbr1', 'tbr1'] = 'gbr1',
        resamples: int = 100,
        level: float = 0.90,
        randomize_groups: bool = True,
        spend_ratio: float = 1.0,
        random_state: Optional[int] = 0,
        n_jobs: int = 1,
        verbose: bool = False
    ):
        if model not in MODELS:
            raise InvalidParameter(f"model must be one of {MODELS}, got {model!r}")
        if int(resamples) < 1:
            raise InvalidParameter(f"resamples must be positive, got {resamples}")
        if not spend_ratio > 0:
            raise InvalidParameter(f"spend_ratio must be positive, got {spend_ratio}")
        if int(n_jobs) < 1:
            raise InvalidParameter(f"n_jobs must be positive, got {n_jobs}")
        if random_state is None:
            random_state = int(np.random.SeedSequence().entropy % (2 ** 32))

        self.model = model
        self.resamples = int(resamples)
        self.level = check_level(level)
        self.randomize_groups = randomize_groups
        self.spend_ratio = float(spend_ratio)
        self.random_state = int(random_state)
        self.n_jobs = int(n_jobs)
        self.verbose = verbose

    def run(
        self,
        panel: pd.DataFrame,
        response: str,
        geo_assignment: GeoAssignment,
        prop_to: str,
        period_lengths: Sequence[int],
        control_group: int = 1,
        treatment_group: int = 2,
        stop_event=None
    ) -> PreanalysisFit:
        """
        Simulate the planned experiment on historical data.

        Parameters
        ----------
        panel : pd.DataFrame
            Historical panel with ``date``, ``geo`` and metric columns
        response : str
            Response metric column
        geo_assignment : GeoAssignment
            Planned group assignment (and strata)
        prop_to : str
            Metric the synthetic spend is proportional to
        period_lengths : sequence of int
            Days of Pretest, Intervention and optional Cooldown
        stop_event : object with ``is_set()``, optional
            Checked between resamples; when set the run is cancelled

        Returns
        -------
        PreanalysisFit
        """
        lengths = self._check_lengths(period_lengths)
        require_columns(panel, ['date', 'geo', response, prop_to])

        if panel.duplicated(subset=['date', 'geo']).any():
            raise ValidationError("Duplicate (date, geo) rows in the historical panel")
        panel_geos = set(panel['geo'].astype(str))
        unassigned = sorted(panel_geos - set(geo_assignment.groups))
        if unassigned:
            raise ValidationError(f"Unassigned geos: {unassigned[:7]}")
        absent = sorted(set(geo_assignment.groups) - panel_geos)
        if absent:
            raise ValidationError(f"Assigned geos missing from the panel: {absent[:7]}")

        data = panel.assign(date=pd.to_datetime(panel['date']), geo=panel['geo'].astype(str))
        wide_response = data.pivot(index='date', columns='geo', values=response).sort_index()
        wide_prop = data.pivot(index='date', columns='geo', values=prop_to).sort_index()
        if wide_response.isna().any().any() or wide_prop.isna().any().any():
            raise ValidationError("Historical panel has gaps: every geo needs every date")
        geos = list(wide_response.columns)

        required = 2 if self.model == 'gbr1' else 1
        for group in (control_group, treatment_group):
            n = len(geo_assignment.geos_in(group))
            if n < required:
                raise InsufficientGeos(group, n, required)

        n_dates = len(wide_response)
        total = sum(lengths)
        if total > n_dates:
            raise InsufficientHistory(n_dates, total)

        if np.ptp(wide_prop.sum(axis=0).to_numpy()) == 0:
            raise NoVariation(f"'{prop_to}' is constant across geos")

        n_windows = n_dates - total + 1
        if not self.randomize_groups and self.resamples > n_windows:
            warnings.warn(
                f"{self.resamples} resamples over {n_windows} distinct windows; "
                f"resamples will repeat"
            )

        worker = partial(
            _simulate_resample,
            response=wide_response.to_numpy(dtype=float),
            prop=wide_prop.to_numpy(dtype=float),
            geos=geos,
            assignment=geo_assignment,
            period_lengths=lengths,
            model=self.model,
            random_state=self.random_state,
            randomize_groups=self.randomize_groups,
            control_group=control_group,
            treatment_group=treatment_group,
            spend_ratio=self.spend_ratio
        )

        if self.verbose:
            print(f"Simulating {self.resamples} resamples ({self.model}, "
                  f"periods {list(lengths)}, {n_windows} windows)...")

        results = self._collect(worker, stop_event)

        starts = np.array([r[0] for r in results], dtype=int)
        fit = PreanalysisFit(
            response=response,
            prop_to=prop_to,
            model=self.model,
            period_lengths=lengths,
            resamples=self.resamples,
            level=self.level,
            random_state=self.random_state,
            spend_ratio=self.spend_ratio,
            start_dates=pd.DatetimeIndex(wide_response.index[starts]),
            spend=np.array([r[3] for r in results], dtype=float),
            scale=np.array([r[1] for r in results], dtype=float),
            df=np.array([r[2] for r in results], dtype=int)
        )

        if self.verbose:
            print(f"  Median precision at {self.level:.0%}: {np.median(fit.precision()):.4f}")

        return fit

    def _check_lengths(self, period_lengths: Sequence[int]) -> Tuple[int, ...]:
        if len(period_lengths) not in (2, 3):
            raise InvalidParameter(
                "period_lengths must give Pretest, Intervention and optional "
                f"Cooldown lengths, got {list(period_lengths)}"
            )
        for i, length in enumerate(period_lengths):
            if int(length) != length or length <= 0:
                raise NonPositivePeriodLength(
                    f"Period {i} length must be a positive integer, got {length!r}"
                )
        return tuple(int(x) for x in period_lengths)

    def _collect(self, worker, stop_event) -> List[Tuple[int, float, int, float]]:
        """Run resamples 0..R-1; any cancellation discards all results."""
        results = []
        if self.n_jobs == 1:
            for index in range(self.resamples):
                if stop_event is not None and stop_event.is_set():
                    raise SimulationCancelled(
                        f"Cancelled after {len(results)} of {self.resamples} resamples"
                    )
                results.append(worker(index))
            return results

        chunksize = max(1, self.resamples // (4 * self.n_jobs))
        with mp.Pool(self.n_jobs) as pool:
            for result in pool.imap(worker, range(self.resamples), chunksize=chunksize):
                if stop_event is not None and stop_event.is_set():
                    pool.terminate()
                    raise SimulationCancelled(
                        f"Cancelled after {len(results)} of {self.resamples} resamples"
                    )
                results.append(result)
        return results


def run_preanalysis(
    panel: pd.DataFrame,
    response: str,
    geo_assignment: GeoAssignment,
    prop_to: str,
    period_lengths: Sequence[int],
    resamples: int = 100,
    model: Literal['gbr1', 'tbr1'] = 'gbr1',
    level: float = 0.90,
    randomize_groups: bool = True,
    control_group: int = 1,
    treatment_group: int = 2,
    random_state: Optional[int] = 0,
    n_jobs: int = 1,
    stop_event=None
) -> PreanalysisFit:
    """Run a preanalysis simulation; see PreanalysisSimulator.run."""
    simulator = PreanalysisSimulator(
        model=model,
        resamples=resamples,
        level=level,
        randomize_groups=randomize_groups,
        random_state=random_state,
        n_jobs=n_jobs
    )
    return simulator.run(
        panel, response, geo_assignment, prop_to, period_lengths,
        control_group, treatment_group, stop_event
    )


def query_preanalysis(
    fit: PreanalysisFit,
    level: Optional[float] = None,
    interval_type: Literal['one-sided', 'two-sided'] = 'two-sided',
    precision: Optional[float] = None,
    cost: Optional[float] = None
) -> float:
    """
    Spend needed for a target precision, or precision reached at a spend.

    Precision is inversely proportional to spend; the scaling constant is
    the median over resamples of ``precision * spend``.

    Parameters
    ----------
    fit : PreanalysisFit
        Simulation results
    level : float, optional
        Credibility level (default: the level of the fit)
    interval_type : str
        'two-sided' (half-width) or 'one-sided' (point minus lower bound)
    precision : float, optional
        Target precision; returns the required total spend
    cost : float, optional
        Total spend; returns the predicted precision

    Returns
    -------
    float
    """
    if (precision is None) == (cost is None):
        raise InvalidParameter("Exactly one of 'precision' and 'cost' must be given")

    value = precision if precision is not None else cost
    name = 'precision' if precision is not None else 'cost'
    if not value > 0:
        raise InvalidParameter(f"'{name}' must be positive, got {value}")

    constant = float(np.median(fit.scaling_constants(level, interval_type)))
    return constant / value


if __name__ == '__main__':
    from .panel import create_synthetic_panel

    print("=" * 60)
    print("PREANALYSIS DEMONSTRATION")
    print("=" * 60)

    history = create_synthetic_panel(n_geos=30, n_days=180, noise_level=0.08)
    history['spend_proxy'] = history['sales'] * 0.1
    geos = sorted(history['geo'].unique())
    assignment = GeoAssignment({g: 1 if i % 2 == 0 else 2 for i, g in enumerate(geos)})

    for model in MODELS:
        fit = run_preanalysis(
            history, 'sales', assignment, 'spend_proxy',
            period_lengths=[56, 28], resamples=200, model=model
        )
        budget = query_preanalysis(fit, precision=1.0)
        print(f"\n   Model: {model}")
        print(f"   Spend for iROAS precision 1.0: {budget:,.0f}")
        print(f"   Precision at that spend x2:   {query_preanalysis(fit, cost=2 * budget):.3f}")
