"""
Core Module Tests
=================

Unit tests for panel annotation, interval summaries, GBR and TBR.
"""

import unittest
import warnings
import numpy as np
import pandas as pd
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from geoexperiments.core.errors import (
    DegenerateRegression,
    EmptyDrawSet,
    EmptyTestWindow,
    InsufficientData,
    InsufficientGeos,
    InvalidLevel,
    InvalidParameter,
    ValidationError,
    ZeroCost,
)
from geoexperiments.core.panel import (
    CONTROL,
    EXCLUDED,
    TREATMENT,
    ExperimentPeriods,
    GeoAssignment,
    annotate_panel,
    create_synthetic_panel,
)
from geoexperiments.core.summary import DrawSet, IntervalSummary, summarize, summarize_over_time
from geoexperiments.core.gbr import GBREstimator, GBRFit, fit_gbr, geo_regression
from geoexperiments.core.tbr import TBRAnalyzer, TBRFit, TBRROASFit, fit_tbr


def alternating_assignment(geos):
    return GeoAssignment({g: CONTROL if i % 2 == 0 else TREATMENT for i, g in enumerate(geos)})


def make_small_panel(daily_effect=2.5, daily_spend=0.0, noise_level=0.0):
    """
    2 control + 2 treatment geos, 10 pretest and 10 intervention days.

    With the default effect the treatment aggregate gains 5 per day, so the
    total effect over the intervention is 50.
    """
    data = create_synthetic_panel(
        n_geos=4, n_days=20, noise_level=noise_level,
        effect_start=10, daily_effect=daily_effect, daily_spend=daily_spend,
        random_state=7
    )
    periods = ExperimentPeriods(['2024-01-01', '2024-01-11', '2024-01-21'])
    assignment = alternating_assignment(sorted(data['geo'].unique()))
    return annotate_panel(data, periods, assignment, metrics=['sales', 'cost'])


def make_noisy_panel(n_geos=20, daily_effect=40.0, daily_spend=20.0, random_state=42):
    data = create_synthetic_panel(
        n_geos=n_geos, n_days=70, effect_start=42,
        daily_effect=daily_effect, daily_spend=daily_spend,
        random_state=random_state
    )
    periods = ExperimentPeriods(['2024-01-01', '2024-02-12', '2024-03-11'])
    assignment = alternating_assignment(sorted(data['geo'].unique()))
    return annotate_panel(data, periods, assignment, metrics=['sales', 'cost'])


def make_costed_panel(daily_effect=40.0, daily_spend=20.0):
    """
    Noisy panel whose cost also varies in the pretest period.

    Baseline cost is 10% of the effect-free sales of each geo and day; the
    treatment geos add ``daily_spend`` on top during the intervention.
    """
    kwargs = dict(n_geos=20, n_days=70, effect_start=42, random_state=42)
    data = create_synthetic_panel(daily_effect=daily_effect, daily_spend=daily_spend, **kwargs)
    baseline = create_synthetic_panel(**kwargs)
    data['cost'] = data['cost'] + 0.1 * baseline['sales']

    periods = ExperimentPeriods(['2024-01-01', '2024-02-12', '2024-03-11'])
    assignment = alternating_assignment(sorted(data['geo'].unique()))
    return annotate_panel(data, periods, assignment, metrics=['sales', 'cost'])


class TestExperimentPeriods(unittest.TestCase):
    """Tests for period boundaries."""

    def test_requires_two_boundaries(self):
        """Test that a single boundary is rejected."""
        with self.assertRaises(ValidationError):
            ExperimentPeriods(['2024-01-01'])

    def test_requires_strictly_increasing(self):
        """Test that repeated or decreasing boundaries are rejected."""
        with self.assertRaises(ValidationError):
            ExperimentPeriods(['2024-01-01', '2024-01-01'])
        with self.assertRaises(ValidationError):
            ExperimentPeriods(['2024-02-01', '2024-01-01'])

    def test_period_of_half_open(self):
        """Test that boundaries start a period and dates outside are excluded."""
        periods = ExperimentPeriods(['2024-01-01', '2024-01-11', '2024-01-21'])
        ids = periods.period_of(['2023-12-31', '2024-01-01', '2024-01-10',
                                 '2024-01-11', '2024-01-20', '2024-01-21'])

        self.assertEqual(list(ids), [EXCLUDED, 0, 0, 1, 1, EXCLUDED])
        self.assertEqual(periods.n_periods, 2)


class TestPanelAnnotation(unittest.TestCase):
    """Tests for annotate_panel and GeoAssignment."""

    def setUp(self):
        """Set up a raw panel."""
        self.data = create_synthetic_panel(n_geos=6, n_days=20, random_state=1)
        self.periods = ExperimentPeriods(['2024-01-01', '2024-01-11', '2024-01-21'])
        self.assignment = alternating_assignment(sorted(self.data['geo'].unique()))

    def test_adds_period_and_group(self):
        """Test that derived columns are added without touching the input."""
        panel = annotate_panel(self.data, self.periods, self.assignment)

        self.assertIn('period', panel.columns)
        self.assertIn('geo_group', panel.columns)
        self.assertNotIn('period', self.data.columns)
        self.assertEqual(set(panel['period']), {0, 1})
        self.assertEqual(set(panel['geo_group']), {CONTROL, TREATMENT})

    def test_duplicate_rows_rejected(self):
        """Test that duplicate (date, geo) rows are rejected."""
        data = pd.concat([self.data, self.data.iloc[[0]]])
        with self.assertRaises(ValidationError):
            annotate_panel(data, self.periods, self.assignment)

    def test_negative_metric_rejected(self):
        """Test that negative metric values are rejected."""
        data = self.data.copy()
        data.loc[3, 'sales'] = -1.0
        with self.assertRaises(ValidationError):
            annotate_panel(data, self.periods, self.assignment)

    def test_unassigned_geo_rejected(self):
        """Test that every geo must have a group."""
        groups = dict(self.assignment.groups)
        groups.pop('geo_001')
        with self.assertRaises(ValidationError):
            annotate_panel(self.data, self.periods, GeoAssignment(groups))

    def test_gap_in_window_rejected(self):
        """Test that a geo missing a date inside the window is rejected."""
        data = self.data.drop(index=self.data.index[25])
        with self.assertRaises(ValidationError):
            annotate_panel(data, self.periods, self.assignment)

    def test_date_missing_for_every_geo_rejected(self):
        """Test that a date absent for all geos inside the window is rejected."""
        data = self.data[self.data['date'] != pd.Timestamp('2024-01-15')]
        with self.assertRaises(ValidationError):
            annotate_panel(data, self.periods, self.assignment)

    def test_periods_past_last_date_rejected(self):
        """Test that periods extending beyond the data are rejected."""
        periods = ExperimentPeriods(['2024-01-01', '2024-01-11', '2024-01-25'])
        with self.assertRaises(ValidationError):
            annotate_panel(self.data, periods, self.assignment)

    def test_weekly_data_accepted(self):
        """Test that the window is checked at the data's own sampling step."""
        data = self.data[self.data['date'].dt.dayofweek == 0]
        periods = ExperimentPeriods(['2024-01-01', '2024-01-08', '2024-01-22'])
        panel = annotate_panel(data, periods, self.assignment)

        self.assertEqual(panel['date'].nunique(), 3)

    def test_invalid_group_rejected(self):
        """Test that group ids must be positive integers."""
        with self.assertRaises(ValidationError):
            GeoAssignment({'a': 0, 'b': 1})

    def test_randomized_preserves_strata_sizes(self):
        """Test that re-randomization keeps group sizes within each stratum."""
        geos = [f'g{i}' for i in range(8)]
        groups = {g: CONTROL if i % 2 == 0 else TREATMENT for i, g in enumerate(geos)}
        strata = {g: 0 if i < 4 else 1 for i, g in enumerate(geos)}
        assignment = GeoAssignment(groups, strata)

        shuffled = assignment.randomized(np.random.default_rng(3))

        for stratum in (0, 1):
            members = [g for g in geos if strata[g] == stratum]
            before = sorted(groups[g] for g in members)
            after = sorted(shuffled.groups[g] for g in members)
            self.assertEqual(before, after)


class TestIntervalSummarizer(unittest.TestCase):
    """Tests for summarize and DrawSet."""

    def setUp(self):
        """Set up a skewed draw-set."""
        self.draws = DrawSet(np.random.default_rng(0).gamma(2.0, 10.0, 4000))

    def test_two_sided_bounds_ordered(self):
        """Test that lower <= estimate <= upper."""
        s = summarize(self.draws, level=0.8, interval_type='two-sided')

        self.assertIsInstance(s, IntervalSummary)
        self.assertLessEqual(s.lower, s.estimate)
        self.assertLessEqual(s.estimate, s.upper)
        self.assertAlmostEqual(s.estimate, float(np.median(self.draws.values)))

    def test_one_sided_lower_bound(self):
        """Test that one-sided intervals are a lower bound with infinite upper."""
        s = summarize(self.draws, level=0.9, interval_type='one-sided')

        self.assertEqual(s.upper, np.inf)
        self.assertAlmostEqual(s.lower, float(np.quantile(self.draws.values, 0.1)))

    def test_deterministic(self):
        """Test that identical inputs give identical outputs."""
        a = summarize(self.draws, 0.9, 'two-sided', 5.0)
        b = summarize(self.draws, 0.9, 'two-sided', 5.0)
        self.assertEqual(a, b)

    def test_threshold_does_not_move_bounds(self):
        """Test that only prob_exceeds depends on the threshold."""
        a = summarize(self.draws, 0.9, 'two-sided', threshold=0.0)
        b = summarize(self.draws, 0.9, 'two-sided', threshold=30.0)

        self.assertEqual(a.lower, b.lower)
        self.assertEqual(a.upper, b.upper)
        self.assertEqual(a.prob_exceeds, 1.0)
        self.assertLess(b.prob_exceeds, 1.0)

    def test_invalid_level(self):
        """Test that levels outside (0, 1) are rejected."""
        for level in (0, 1, 1.5, -0.1, True):
            with self.assertRaises(InvalidLevel):
                summarize(self.draws, level=level)

    def test_invalid_interval_type(self):
        """Test that unknown interval types are rejected."""
        with self.assertRaises(InvalidParameter):
            summarize(self.draws, interval_type='symmetric')

    def test_empty_draw_set(self):
        """Test that empty draw-sets cannot be built."""
        with self.assertRaises(EmptyDrawSet):
            DrawSet([])
        with self.assertRaises(EmptyDrawSet):
            summarize([])

    def test_draw_set_is_read_only(self):
        """Test that draw values cannot be mutated."""
        with self.assertRaises(ValueError):
            self.draws.values[0] = 1.0

    def test_ratio_with_zero_denominator_is_undefined(self):
        """Test that a zero denominator draw gives an undefined summary."""
        ratio = DrawSet.ratio([1.0, 2.0, 3.0], [1.0, 0.0, 2.0])
        s = summarize(ratio)

        self.assertTrue(ratio.undefined)
        self.assertTrue(s.undefined)
        self.assertTrue(np.isnan(s.estimate))
        self.assertIn('zero', s.reason)

    def test_ratio_with_sign_change_is_undefined(self):
        """Test that a sign-changing denominator gives an undefined summary."""
        ratio = DrawSet.ratio([1.0, 2.0], [-1.0, 1.0])
        self.assertTrue(summarize(ratio).undefined)


class TestGBREstimator(unittest.TestCase):
    """Tests for the geo-based regression."""

    def test_recovers_total_effect_without_noise(self):
        """Test that a clean +50 total effect is recovered with near-zero width."""
        fit = fit_gbr(make_small_panel(), 'sales', random_state=0)
        s = summarize(fit.effect, level=0.9, interval_type='two-sided')

        self.assertIsInstance(fit, GBRFit)
        self.assertAlmostEqual(fit.estimate, 50.0, delta=0.5)
        self.assertAlmostEqual(s.estimate, 50.0, delta=0.5)
        self.assertLess(s.upper - s.lower, 0.5)
        self.assertEqual(fit.n_control, 2)
        self.assertEqual(fit.n_treatment, 2)

    def test_effect_positive_with_noise(self):
        """Test that a large effect is detected in a noisy panel."""
        fit = fit_gbr(make_noisy_panel(n_geos=40), 'sales', random_state=0)
        s = summarize(fit.effect, level=0.9)

        true_effect = 40.0 * 28 * 20
        self.assertGreater(s.lower, 0)
        self.assertLess(abs(fit.estimate - true_effect) / true_effect, 0.25)

    def test_iroas_with_cost_difference(self):
        """Test that iROAS is the effect divided by the incremental cost."""
        fit = fit_gbr(make_small_panel(daily_spend=0.5), 'sales', 'cost', random_state=0)
        s = summarize(fit, level=0.9, interval_type='two-sided')

        self.assertFalse(s.undefined)
        self.assertAlmostEqual(s.estimate, 5.0, delta=0.05)

    def test_iroas_with_cost_regression(self):
        """Test iROAS when the incremental cost comes from the geo regression on cost."""
        fit = fit_gbr(make_costed_panel(), 'sales', 'cost',
                      cost_estimator='regression', random_state=0)
        s = summarize(fit, level=0.9, interval_type='two-sided')
        cost = summarize(fit.incremental_cost, level=0.9, interval_type='two-sided')

        self.assertEqual(fit.cost_estimator, 'regression')
        self.assertFalse(s.undefined)
        self.assertAlmostEqual(s.estimate, 40.0 / 20.0, delta=0.6)
        self.assertAlmostEqual(cost.estimate, 20.0 * 28 * 10, delta=0.1 * 20.0 * 28 * 10)
        self.assertGreater(np.std(fit.incremental_cost.values), 0)
        self.assertIn('cost_pretest', fit.geo_table.columns)

    def test_zero_cost_rejected(self):
        """Test that zero incremental cost raises ZeroCost."""
        with self.assertRaises(ZeroCost):
            fit_gbr(make_small_panel(daily_spend=0.0), 'sales', 'cost')

    def test_regression_cost_needs_pretest_variation(self):
        """Test that the regression cost estimator needs pretest cost variation."""
        estimator = GBREstimator(cost_estimator='regression')
        with self.assertRaises(DegenerateRegression):
            estimator.fit(make_small_panel(daily_spend=0.5), 'sales', 'cost')

    def test_insufficient_geos(self):
        """Test that a group with one geo is rejected."""
        data = create_synthetic_panel(n_geos=4, n_days=20, random_state=7)
        periods = ExperimentPeriods(['2024-01-01', '2024-01-11', '2024-01-21'])
        assignment = GeoAssignment({'geo_001': 1, 'geo_002': 1, 'geo_003': 1, 'geo_004': 2})
        panel = annotate_panel(data, periods, assignment)

        with self.assertRaises(InsufficientGeos) as ctx:
            fit_gbr(panel, 'sales')
        self.assertEqual(ctx.exception.group, 2)

    def test_constant_pretest_response_rejected(self):
        """Test that zero variance of the pretest response within a group is rejected."""
        with self.assertRaises(DegenerateRegression):
            geo_regression(
                np.array([5.0, 5.0, 2.0, 3.0]),
                np.array([6.0, 6.0, 3.0, 4.0]),
                np.array([False, False, True, True])
            )

    def test_empty_test_window(self):
        """Test that a panel without intervention rows is rejected."""
        panel = make_small_panel()
        with self.assertRaises(EmptyTestWindow):
            fit_gbr(panel[panel['period'] == 0], 'sales')

    def test_invalid_cost_estimator(self):
        """Test that unknown cost estimators are rejected."""
        with self.assertRaises(InvalidParameter):
            GBREstimator(cost_estimator='ratio')


class TestTBRAnalyzer(unittest.TestCase):
    """Tests for the time-based regression."""

    def setUp(self):
        """Set up the clean example panel."""
        self.panel = make_small_panel(daily_spend=0.5)

    def test_recovers_cumulative_effect_without_noise(self):
        """Test that the cumulative effect at the last date is about 50."""
        fit = fit_tbr(self.panel, 'sales', random_state=0)
        s = summarize(fit, level=0.9, interval_type='two-sided')

        self.assertIsInstance(fit, TBRFit)
        self.assertEqual(len(fit.dates), 10)
        self.assertAlmostEqual(s.estimate, 50.0, delta=1.0)
        self.assertAlmostEqual(fit.pretest_r2, 1.0, places=6)

    def test_cumulative_equals_sum_of_daily(self):
        """Test that cumulative draws at the last date sum the daily draws."""
        fit = fit_tbr(make_noisy_panel(), 'sales', random_state=0)

        np.testing.assert_allclose(fit.cumulative[:, -1], fit.daily.sum(axis=1))
        np.testing.assert_allclose(fit.cumulative[:, 0], fit.daily[:, 0])

    def test_effect_positive_with_noise(self):
        """Test that a large effect is detected in a noisy panel."""
        fit = fit_tbr(make_noisy_panel(), 'sales', random_state=0)
        s = summarize(fit, level=0.9)

        true_effect = 40.0 * 28 * 10
        self.assertGreater(s.lower, 0)
        self.assertLess(abs(s.estimate - true_effect) / true_effect, 0.25)

    def test_summary_at_intermediate_date(self):
        """Test that summaries can be requested for any test date."""
        fit = fit_tbr(self.panel, 'sales', random_state=0)
        s = summarize(fit, date=fit.dates[4])

        self.assertAlmostEqual(s.estimate, 25.0, delta=1.0)

    def test_non_test_date_rejected(self):
        """Test that a pretest date cannot be summarized."""
        fit = fit_tbr(self.panel, 'sales', random_state=0)
        with self.assertRaises(ValidationError):
            fit.draws('2024-01-02')

    def test_roas_with_cost_difference(self):
        """Test iROAS over time with a known incremental cost."""
        fit = fit_tbr(self.panel, 'sales', 'cost', cost_model='difference', random_state=0)
        s = summarize(fit, level=0.9, interval_type='two-sided')
        over_time = summarize_over_time(fit)

        self.assertIsInstance(fit, TBRROASFit)
        self.assertAlmostEqual(s.estimate, 5.0, delta=0.1)
        self.assertEqual(len(over_time), 10)
        self.assertFalse(over_time['undefined'].any())

    def test_roas_undefined_without_spend(self):
        """Test that zero incremental cost gives an undefined iROAS."""
        panel = make_small_panel(daily_spend=0.0)
        fit = fit_tbr(panel, 'sales', 'cost', cost_model='difference', random_state=0)
        s = summarize(fit)

        self.assertTrue(s.undefined)
        self.assertTrue(np.isnan(s.lower))

    def test_cost_regression_needs_pretest_variation(self):
        """Test that regressing an all-zero pretest cost is degenerate."""
        with self.assertRaises(DegenerateRegression):
            fit_tbr(self.panel, 'sales', 'cost', cost_model='tbr1')

    def test_empty_test_window(self):
        """Test that a panel without intervention rows is rejected."""
        with self.assertRaises(EmptyTestWindow):
            fit_tbr(self.panel[self.panel['period'] == 0], 'sales')

    def test_short_pretest_rejected(self):
        """Test that fewer than three pretest dates are rejected."""
        data = create_synthetic_panel(n_geos=4, n_days=12, random_state=7)
        periods = ExperimentPeriods(['2024-01-01', '2024-01-03', '2024-01-13'])
        panel = annotate_panel(data, periods, alternating_assignment(sorted(data['geo'].unique())))

        with self.assertRaises(InsufficientData):
            fit_tbr(panel, 'sales')

    def test_weak_pretest_fit_warns(self):
        """Test that an uncorrelated pretest relationship triggers a warning."""
        # Control follows a weekly sine, treatment a weekly cosine: over
        # whole weeks the two aggregates are uncorrelated.
        dates = pd.date_range('2024-01-01', periods=35, freq='D')
        phase = 2 * np.pi * np.arange(35) / 7
        rows = []
        for geo, pattern in (('c1', np.sin), ('c2', np.sin), ('t1', np.cos), ('t2', np.cos)):
            for date, value in zip(dates, 1000 + 100 * pattern(phase)):
                rows.append({'date': date, 'geo': geo, 'sales': value})
        periods = ExperimentPeriods(['2024-01-01', '2024-01-29', '2024-02-05'])
        assignment = GeoAssignment({'c1': CONTROL, 'c2': CONTROL, 't1': TREATMENT, 't2': TREATMENT})
        panel = annotate_panel(pd.DataFrame(rows), periods, assignment)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            fit = fit_tbr(panel, 'sales', random_state=0)

        self.assertLess(fit.pretest_r2, 0.5)
        self.assertTrue(any('Weak pretest fit' in str(w.message) for w in caught))

    def test_strong_pretest_fit_does_not_warn(self):
        """Test that an exact pretest relationship raises no warning."""
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            fit_tbr(self.panel, 'sales', random_state=0)

        self.assertFalse(any('Weak pretest fit' in str(w.message) for w in caught))

    def test_roas_with_cost_regression(self):
        """Test iROAS over time when the cost aggregate is regressed like the response."""
        fit = fit_tbr(make_costed_panel(), 'sales', 'cost', cost_model='tbr1', random_state=0)
        s = summarize(fit, level=0.9, interval_type='two-sided')
        over_time = summarize_over_time(fit)

        self.assertIsInstance(fit, TBRROASFit)
        self.assertEqual(fit.cost_model, 'tbr1')
        self.assertEqual(fit.cost.model, 'tbr1')
        self.assertIsNotNone(fit.cost.coef)
        self.assertAlmostEqual(s.estimate, 40.0 / 20.0, delta=0.5)
        np.testing.assert_allclose(fit.cost.cumulative[:, -1], fit.cost.daily.sum(axis=1))
        self.assertEqual(len(over_time), len(fit.dates))
        self.assertEqual(len(over_time), 28)
        self.assertFalse(over_time['undefined'].any())

    def test_cost_regression_is_default(self):
        """Test that the cost regression is used unless another model is asked for."""
        fit = fit_tbr(make_costed_panel(), 'sales', 'cost', random_state=0)
        self.assertEqual(fit.cost_model, 'tbr1')

    def test_cooldown_extends_test_window(self):
        """Test that the cooldown period is appended to the test window."""
        data = create_synthetic_panel(n_geos=4, n_days=25, noise_level=0.0,
                                      effect_start=10, effect_end=20, daily_effect=2.5,
                                      random_state=7)
        periods = ExperimentPeriods(['2024-01-01', '2024-01-11', '2024-01-21', '2024-01-26'])
        panel = annotate_panel(data, periods, alternating_assignment(sorted(data['geo'].unique())))

        fit = fit_tbr(panel, 'sales', cooldown_period=2, random_state=0)

        self.assertEqual(len(fit.dates), 15)
        self.assertAlmostEqual(summarize(fit).estimate, 50.0, delta=1.0)


def run_tests():
    """Run all tests and report results."""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    # Add test classes
    suite.addTests(loader.loadTestsFromTestCase(TestExperimentPeriods))
    suite.addTests(loader.loadTestsFromTestCase(TestPanelAnnotation))
    suite.addTests(loader.loadTestsFromTestCase(TestIntervalSummarizer))
    suite.addTests(loader.loadTestsFromTestCase(TestGBREstimator))
    suite.addTests(loader.loadTestsFromTestCase(TestTBRAnalyzer))

    # Run
    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    # Summary
    print("\n" + "=" * 60)
    print("TEST SUMMARY")
    print("=" * 60)
    print(f"Tests run: {result.testsRun}")
    print(f"Failures: {len(result.failures)}")
    print(f"Errors: {len(result.errors)}")
    print(f"Status: {'ALL TESTS PASSED [OK]' if result.wasSuccessful() else 'SOME TESTS FAILED'}")

    return result.wasSuccessful()


if __name__ == '__main__':
    success = run_tests()
    sys.exit(0 if success else 1)
