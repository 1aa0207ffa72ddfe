"""
Complete Geo Experiment Example
===============================

Demonstrates the full workflow with a realistic scenario:
- Paid search campaign tested in 40 geos
- 6-week pretest, 4-week intervention
- Planning spend from history, then measuring the effect and iROAS

Run: python examples/complete_example.py
"""

import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from geoexperiments.core.panel import (
    CONTROL,
    TREATMENT,
    ExperimentPeriods,
    GeoAssignment,
    annotate_panel,
    create_synthetic_panel,
)
from geoexperiments.core.summary import summarize, summarize_over_time
from geoexperiments.core.gbr import fit_gbr
from geoexperiments.core.tbr import fit_tbr
from geoexperiments.core.preanalysis import run_preanalysis, query_preanalysis
from geoexperiments.core.experiment_runner import GeoExperimentRunner, AnalysisConfig


N_GEOS = 40
DAILY_EFFECT = 30.0
DAILY_SPEND = 15.0


def make_assignment(geos):
    return GeoAssignment({g: CONTROL if i % 2 == 0 else TREATMENT for i, g in enumerate(geos)})


def make_experiment_panel():
    data = create_synthetic_panel(
        n_geos=N_GEOS,
        n_days=70,
        start_date='2024-03-01',
        noise_level=0.06,
        effect_start=42,
        daily_effect=DAILY_EFFECT,
        daily_spend=DAILY_SPEND,
        random_state=42
    )
    periods = ExperimentPeriods(['2024-03-01', '2024-04-12', '2024-05-10'])
    assignment = make_assignment(sorted(data['geo'].unique()))
    return annotate_panel(data, periods, assignment, metrics=['sales', 'cost'])


def example_1_preanalysis():
    """
    Example 1: Pre-Test Preanalysis

    Before running a geo experiment, determine:
    - How much spend is needed for a target iROAS precision
    - What precision a given budget buys
    """
    print("\n" + "=" * 70)
    print("EXAMPLE 1: PREANALYSIS")
    print("=" * 70)

    print("\nScenario: 6 months of history, planning a 6+4 week test")
    print("Question: How much spend gives an iROAS precision of +/-0.5?")

    history = create_synthetic_panel(
        n_geos=N_GEOS, n_days=180, start_date='2023-09-01',
        noise_level=0.06, random_state=7
    )
    assignment = make_assignment(sorted(history['geo'].unique()))

    for model in ('gbr1', 'tbr1'):
        fit = run_preanalysis(
            history, 'sales', assignment, prop_to='sales',
            period_lengths=[42, 28], resamples=200, model=model, random_state=1
        )
        spend = query_preanalysis(fit, precision=0.5)
        precision = query_preanalysis(fit, cost=2 * spend)

        print(f"\nPREANALYSIS ({model}):")
        print(f"  ├─ Resamples: {fit.resamples}")
        print(f"  ├─ Spend for precision 0.5: {spend:,.0f}")
        print(f"  └─ Precision at double spend: {precision:.3f}")

    print(f"\nINTERPRETATION:")
    print(f"  Precision is inversely proportional to spend:")
    print(f"  doubling the budget halves the interval half-width.")


def example_2_geo_based_regression():
    """
    Example 2: Geo-Based Regression

    One cross-sectional regression over geos, aggregated over the test.
    """
    print("\n" + "=" * 70)
    print("EXAMPLE 2: GEO-BASED REGRESSION (GBR)")
    print("=" * 70)

    panel = make_experiment_panel()
    fit = fit_gbr(panel, 'sales', 'cost', random_state=42)

    effect = summarize(fit.effect, level=0.90, interval_type='two-sided')
    iroas = summarize(fit, level=0.90, interval_type='one-sided')
    true_effect = DAILY_EFFECT * 28 * (N_GEOS // 2)

    print(f"\nGBR RESULTS:")
    print(f"  ├─ Total effect: {effect.estimate:,.0f} "
          f"[{effect.lower:,.0f}, {effect.upper:,.0f}]")
    print(f"  ├─ True effect: {true_effect:,.0f}")
    print(f"  ├─ iROAS: {iroas.estimate:.2f} (>= {iroas.lower:.2f} with 90% probability)")
    print(f"  ├─ True iROAS: {DAILY_EFFECT / DAILY_SPEND:.2f}")
    print(f"  └─ Geo regression R²: {fit.r2:.3f}")


def example_3_time_based_regression():
    """
    Example 3: Time-Based Regression

    Day-by-day counterfactual of the treatment group from the control group.
    """
    print("\n" + "=" * 70)
    print("EXAMPLE 3: TIME-BASED REGRESSION (TBR)")
    print("=" * 70)

    panel = make_experiment_panel()
    fit = fit_tbr(panel, 'sales', 'cost', cost_model='difference', random_state=42)

    effect = summarize(fit.response, level=0.90, interval_type='two-sided')
    over_time = summarize_over_time(fit, level=0.90)

    print(f"\nTBR RESULTS:")
    print(f"  ├─ Cumulative effect: {effect.estimate:,.0f} "
          f"[{effect.lower:,.0f}, {effect.upper:,.0f}]")
    print(f"  ├─ Pretest R²: {fit.response.pretest_r2:.3f}")
    print(f"  └─ Pretest RMSE: {fit.response.pretest_rmse:,.1f}")

    print(f"\niROAS OVER TIME (weekly):")
    weekly = over_time.iloc[6::7]
    for _, row in weekly.iterrows():
        print(f"  {row['date'].date()}: {row['estimate']:.2f} (>= {row['lower']:.2f})")


def example_4_full_workflow():
    """
    Example 4: Complete Workflow

    Uses the GeoExperimentRunner for analysis and conclusion.
    """
    print("\n" + "=" * 70)
    print("EXAMPLE 4: COMPLETE WORKFLOW")
    print("=" * 70)

    panel = make_experiment_panel()

    config = AnalysisConfig(
        name="Search_Q2_GeoExperiment",
        description="Q2 paid search geo experiment",
        response='sales',
        cost='cost',
        model='tbr1',
        cost_model='difference',
        level=0.90
    )

    runner = GeoExperimentRunner(config, verbose=True)
    result = runner.analyze(panel)

    print(f"\nFINAL RESULTS:")
    print(f"  ├─ Conclusion: {result.summary['conclusion']}")
    print(f"  ├─ iROAS: {result.iroas_summary.estimate:.2f}")
    print(f"  ├─ True iROAS: {DAILY_EFFECT / DAILY_SPEND:.2f}")
    print(f"  └─ Recommendation: {result.summary['recommendation']}")


def main():
    """Run all examples."""
    print("=" * 70)
    print("          GEO EXPERIMENT ESTIMATION FRAMEWORK")
    print("                  COMPLETE EXAMPLES")
    print("=" * 70)

    example_1_preanalysis()
    example_2_geo_based_regression()
    example_3_time_based_regression()
    example_4_full_workflow()

    print("\n" + "=" * 70)
    print("ALL EXAMPLES COMPLETE")
    print("=" * 70)

    print("\nKey Takeaways:")
    print("  1. Run a preanalysis BEFORE the test to size the budget")
    print("  2. GBR needs many geos; TBR works with aggregated time series")
    print("  3. Report the median and a lower bound at the chosen level")
    print("  4. iROAS is undefined when the incremental cost can be zero")


if __name__ == '__main__':
    main()
