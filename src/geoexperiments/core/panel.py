"""
Observation Panel
=================

Period bookkeeping, geo-group assignment and panel annotation for
geo experiments.

Key Features:
- ExperimentPeriods: contiguous half-open date ranges (Pretest, Intervention, Cooldown)
- GeoAssignment: geo -> group mapping with optional strata and re-randomization
- annotate_panel: pure projection adding period and geo-group columns
- create_synthetic_panel: daily geo panel with known injected effect
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Sequence

from .errors import ValidationError


PRETEST = 0
INTERVENTION = 1
COOLDOWN = 2

CONTROL = 1
TREATMENT = 2

# Period id for dates outside every configured period
EXCLUDED = -1


class ExperimentPeriods:
    """
    Ordered, strictly increasing period boundaries.

    Period ``i`` covers the half-open range ``[boundaries[i], boundaries[i+1])``.

    Parameters
    ----------
    boundaries : sequence of date-like
        At least two strictly increasing dates
    """

    def __init__(self, boundaries: Sequence):
        if len(boundaries) < 2:
            raise ValidationError(
                f"At least two period boundaries required, got {len(boundaries)}"
            )
        stamps = pd.to_datetime(pd.Series(list(boundaries)))
        if stamps.isna().any():
            raise ValidationError("Period boundaries must be valid dates")
        diffs = np.diff(stamps.values.astype('datetime64[ns]').astype(np.int64))
        if np.any(diffs <= 0):
            raise ValidationError(
                f"Period boundaries must be strictly increasing: {list(stamps.dt.date)}"
            )
        self._boundaries = stamps.values.astype('datetime64[ns]')

    @property
    def boundaries(self) -> np.ndarray:
        return self._boundaries.copy()

    @property
    def n_periods(self) -> int:
        return len(self._boundaries) - 1

    @property
    def start(self) -> pd.Timestamp:
        return pd.Timestamp(self._boundaries[0])

    @property
    def end(self) -> pd.Timestamp:
        return pd.Timestamp(self._boundaries[-1])

    def period_of(self, dates) -> np.ndarray:
        """Map dates to period ids; dates outside all periods get EXCLUDED."""
        values = pd.to_datetime(pd.Series(dates)).values.astype('datetime64[ns]')
        idx = np.searchsorted(self._boundaries, values, side='right') - 1
        idx[(idx < 0) | (idx >= self.n_periods)] = EXCLUDED
        return idx.astype(int)

    def __len__(self) -> int:
        return self.n_periods

    def __repr__(self) -> str:
        dates = ', '.join(str(pd.Timestamp(b).date()) for b in self._boundaries)
        return f"ExperimentPeriods([{dates}])"


@dataclass(frozen=True)
class GeoAssignment:
    """
    Mapping from geo id to geo-group id (1 = Control, 2 = Treatment).

    Parameters
    ----------
    groups : dict
        Geo id -> positive integer group id
    strata : dict, optional
        Geo id -> stratum id; randomization permutes labels within strata
    """
    groups: Dict[str, int]
    strata: Optional[Dict[str, int]] = field(default=None)

    def __post_init__(self):
        bad = [
            geo for geo, group in self.groups.items()
            if isinstance(group, bool) or not isinstance(group, (int, np.integer))
            or group < 1
        ]
        if bad:
            raise ValidationError(
                f"Geo groups must be positive integers; offending geos: {bad[:7]}"
            )
        if self.strata is not None:
            unknown = sorted(set(self.strata) - set(self.groups))
            if unknown:
                raise ValidationError(f"Strata reference unassigned geos: {unknown[:7]}")
            missing = sorted(set(self.groups) - set(self.strata))
            if missing:
                raise ValidationError(f"Geos without a stratum: {missing[:7]}")

    @property
    def geos(self) -> List[str]:
        return sorted(self.groups)

    @property
    def group_ids(self) -> List[int]:
        return sorted(set(self.groups.values()))

    def geos_in(self, group: int) -> List[str]:
        return sorted(g for g, grp in self.groups.items() if grp == group)

    def randomized(self, rng: np.random.Generator) -> 'GeoAssignment':
        """
        Return a new assignment with group labels permuted within strata.

        Group sizes within each stratum are preserved.
        """
        geos = self.geos
        strata = self.strata or {geo: 0 for geo in geos}
        new_groups = {}
        for stratum in sorted(set(strata.values())):
            members = [g for g in geos if strata[g] == stratum]
            labels = np.array([self.groups[g] for g in members])
            for geo, label in zip(members, rng.permutation(labels)):
                new_groups[geo] = int(label)
        return GeoAssignment(new_groups, self.strata)


def require_columns(panel: pd.DataFrame, columns: Sequence[str]) -> None:
    """Raise ValidationError naming any missing column."""
    missing = [c for c in columns if c is not None and c not in panel.columns]
    if missing:
        raise ValidationError(f"Panel is missing column(s): {missing}")


def annotate_panel(
    data: pd.DataFrame,
    periods: ExperimentPeriods,
    assignment: GeoAssignment,
    metrics: Optional[List[str]] = None,
    date_col: str = 'date',
    geo_col: str = 'geo'
) -> pd.DataFrame:
    """
    Add ``period`` and ``geo_group`` columns to a date/geo/metric table.

    The input frame is not modified; a new, sorted frame is returned.

    Parameters
    ----------
    data : pd.DataFrame
        One row per (date, geo) with numeric metric columns
    periods : ExperimentPeriods
        Period boundaries
    assignment : GeoAssignment
        Geo-group mapping; every geo in the data must be assigned
    metrics : list of str, optional
        Metric columns to validate (default: all numeric columns)

    Returns
    -------
    pd.DataFrame
        Columns ``date``, ``geo``, metrics, ``period``, ``geo_group``
    """
    require_columns(data, [date_col, geo_col] + list(metrics or []))

    panel = data.rename(columns={date_col: 'date', geo_col: 'geo'}).copy()
    panel['date'] = pd.to_datetime(panel['date'])
    panel['geo'] = panel['geo'].astype(str)

    if metrics is None:
        metrics = [
            c for c in panel.columns
            if c not in ('date', 'geo') and pd.api.types.is_numeric_dtype(panel[c])
        ]

    dupes = panel.duplicated(subset=['date', 'geo'])
    if dupes.any():
        first = panel.loc[dupes, ['date', 'geo']].iloc[0]
        raise ValidationError(
            f"Duplicate (date, geo) rows, e.g. ({first['date'].date()}, {first['geo']})"
        )

    for metric in metrics:
        values = pd.to_numeric(panel[metric], errors='coerce').to_numpy(dtype=float)
        bad = ~np.isfinite(values) | (values < 0)
        if bad.any():
            geo = panel['geo'].iloc[int(np.argmax(bad))]
            raise ValidationError(
                f"Metric '{metric}' must be finite and non-negative "
                f"({int(bad.sum())} bad value(s), first in geo {geo})"
            )
        panel[metric] = values

    unassigned = sorted(set(panel['geo']) - set(assignment.groups))
    if unassigned:
        raise ValidationError(f"Unassigned geos: {unassigned[:7]}")

    panel['period'] = periods.period_of(panel['date'])
    panel['geo_group'] = panel['geo'].map(assignment.groups).astype(int)

    # Every geo must cover every date of the experiment window
    window = _window_dates(panel['date'], periods)
    in_window = panel[panel['period'] != EXCLUDED]
    missing = window.difference(pd.DatetimeIndex(in_window['date'].unique()))
    if len(missing) > 0:
        raise ValidationError(
            f"No rows for {len(missing)} date(s) inside the experiment window "
            f"[{periods.start.date()}, {periods.end.date()}), "
            f"first {missing[0].date()}"
        )
    counts = in_window.groupby('geo')['date'].nunique()
    counts = counts.reindex(sorted(set(panel['geo'])), fill_value=0)
    short = counts[counts < len(window)]
    if len(short) > 0:
        raise ValidationError(
            f"Geos missing dates inside the experiment window: "
            f"{list(short.index[:7])}"
        )

    return panel.sort_values(['date', 'geo']).reset_index(drop=True)


def _window_dates(dates: pd.Series, periods: ExperimentPeriods) -> pd.DatetimeIndex:
    """Expected dates of ``[periods.start, periods.end)`` at the data's sampling step."""
    observed = np.unique(dates.values.astype('datetime64[ns]'))
    step = pd.Timedelta(np.diff(observed).min()) if len(observed) > 1 else pd.Timedelta(days=1)
    window = pd.date_range(periods.start, periods.end, freq=step)
    return window[window < periods.end]


def create_synthetic_panel(
    n_geos: int = 20,
    n_days: int = 84,
    start_date: str = '2024-01-01',
    base_sales: float = 1000,
    geo_heterogeneity: float = 0.5,
    seasonality_strength: float = 0.2,
    noise_level: float = 0.05,
    treatment_geos: Optional[List[str]] = None,
    effect_start: Optional[int] = None,
    effect_end: Optional[int] = None,
    daily_effect: float = 0.0,
    daily_spend: float = 0.0,
    random_state: int = 42
) -> pd.DataFrame:
    """
    Generate a synthetic daily geo panel for tests and demonstrations.

    Parameters
    ----------
    n_geos : int
        Number of geos (named ``geo_001``, ``geo_002``, ...)
    n_days : int
        Number of consecutive days
    base_sales : float
        Base daily sales per geo
    geo_heterogeneity : float
        Variation in base sales across geos (0-1)
    seasonality_strength : float
        Amplitude of the weekly pattern shared by all geos
    noise_level : float
        Multiplicative noise level; 0 gives an exactly linear panel
    treatment_geos : list of str, optional
        Geos receiving the effect (default: every second geo)
    effect_start, effect_end : int, optional
        Day index range ``[effect_start, effect_end)`` of the effect
    daily_effect : float
        Absolute sales added per treatment geo per day in the effect range
    daily_spend : float
        Cost per treatment geo per day in the effect range

    Returns
    -------
    pd.DataFrame
        Columns ``date``, ``geo``, ``sales``, ``cost``
    """
    rng = np.random.default_rng(random_state)

    geos = [f'geo_{i + 1:03d}' for i in range(n_geos)]
    if treatment_geos is None:
        treatment_geos = geos[1::2]
    dates = pd.date_range(start_date, periods=n_days, freq='D')

    # Geo-specific baseline
    levels = base_sales * np.clip(1 + geo_heterogeneity * rng.standard_normal(n_geos), 0.3, 2.0)

    # Weekly pattern shared across geos
    day = np.arange(n_days)
    seasonal = seasonality_strength * np.sin(2 * np.pi * day / 7)

    noise = noise_level * rng.standard_normal((n_days, n_geos))
    sales = levels[None, :] * (1 + seasonal[:, None] + noise)

    cost = np.zeros((n_days, n_geos))
    if effect_start is not None:
        end = n_days if effect_end is None else effect_end
        rows = slice(effect_start, end)
        cols = [geos.index(g) for g in treatment_geos]
        for col in cols:
            sales[rows, col] += daily_effect
            cost[rows, col] += daily_spend

    return pd.DataFrame({
        'date': np.repeat(dates.values, n_geos),
        'geo': np.tile(geos, n_days),
        'sales': np.maximum(sales, 0).ravel(),
        'cost': cost.ravel()
    })


if __name__ == '__main__':
    print("=" * 60)
    print("OBSERVATION PANEL DEMONSTRATION")
    print("=" * 60)

    data = create_synthetic_panel(n_geos=10, n_days=42, effect_start=28, daily_effect=50)
    periods = ExperimentPeriods(['2024-01-01', '2024-01-29', '2024-02-12'])
    geos = sorted(data['geo'].unique())
    assignment = GeoAssignment({g: CONTROL if i % 2 == 0 else TREATMENT for i, g in enumerate(geos)})

    panel = annotate_panel(data, periods, assignment, metrics=['sales', 'cost'])
    print(f"\n   {periods}")
    print(f"   Rows: {len(panel)}, geos: {panel['geo'].nunique()}")
    print(panel.groupby(['period', 'geo_group'])['sales'].sum())
