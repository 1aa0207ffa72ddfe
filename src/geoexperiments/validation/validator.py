"""
Statistical Validation Suite
============================

Validates the GBR and TBR estimators against known ground truth.

Key Validations:
- Effect recovery (bias and RMSE of the total incremental response)
- Coverage probability (two-sided intervals cover the truth at their level)
- False positive control (one-sided lower bound above zero under no effect)
"""

import numpy as np
import pandas as pd
from typing import List, Dict, Tuple, Optional, Literal
from dataclasses import dataclass

from ..core.panel import (
    CONTROL,
    TREATMENT,
    ExperimentPeriods,
    GeoAssignment,
    annotate_panel,
    create_synthetic_panel,
)
from ..core.gbr import GBREstimator
from ..core.tbr import TBRAnalyzer
from ..core.summary import summarize


@dataclass
class ValidationResult:
    """Container for validation results."""
    # Effect recovery
    mean_estimate: float
    true_effect: float
    bias: float
    relative_bias: float
    rmse: float

    # Coverage
    coverage_probability: float
    detection_rate: float

    # Metadata
    n_simulations: int
    method: str


class EstimatorValidator:
    """
    Validates the estimators via simulated experiments.

    Each simulation draws a synthetic daily panel, injects a known
    per-geo daily effect into the treatment geos over the test window,
    and fits the estimator.

    Parameters
    ----------
    n_simulations : int
        Number of simulated experiments
    n_geos : int
        Number of geos per simulation (half treatment, half control)
    n_pretest_days : int
        Length of the pretest period
    n_test_days : int
        Length of the intervention period
    level : float
        Credibility level of the intervals
    method : str
        'gbr1' or 'tbr1'
    noise_level : float
        Multiplicative daily noise of the synthetic panel
    """

    def __init__(
        self,
        n_simulations: int = 200,
        n_geos: int = 20,
        n_pretest_days: int = 56,
        n_test_days: int = 28,
        level: float = 0.90,
        method: Literal['gbr1', 'tbr1'] = 'tbr1',
        noise_level: float = 0.05,
        n_draws: int = 2000,
        random_state: int = 42
    ):
        self.n_simulations = n_simulations
        self.n_geos = n_geos
        self.n_pretest_days = n_pretest_days
        self.n_test_days = n_test_days
        self.level = level
        self.method = method
        self.noise_level = noise_level
        self.n_draws = n_draws
        self.random_state = random_state

        start = pd.Timestamp('2024-01-01')
        self.periods = ExperimentPeriods([
            start,
            start + pd.Timedelta(days=n_pretest_days),
            start + pd.Timedelta(days=n_pretest_days + n_test_days)
        ])
        geos = [f'geo_{i + 1:03d}' for i in range(n_geos)]
        self.assignment = GeoAssignment({
            g: CONTROL if i % 2 == 0 else TREATMENT for i, g in enumerate(geos)
        })
        self.n_treatment = len(self.assignment.geos_in(TREATMENT))

    def true_effect(self, daily_effect: float) -> float:
        """Total incremental response over the test window."""
        return daily_effect * self.n_test_days * self.n_treatment

    def _simulate(self, sim: int, daily_effect: float) -> pd.DataFrame:
        data = create_synthetic_panel(
            n_geos=self.n_geos,
            n_days=self.n_pretest_days + self.n_test_days,
            noise_level=self.noise_level,
            treatment_geos=self.assignment.geos_in(TREATMENT),
            effect_start=self.n_pretest_days,
            daily_effect=daily_effect,
            random_state=self.random_state + sim
        )
        return annotate_panel(data, self.periods, self.assignment, metrics=['sales'])

    def _estimate(self, panel: pd.DataFrame, method: str, sim: int):
        if method == 'gbr1':
            fit = GBREstimator(n_draws=self.n_draws, random_state=sim).fit(panel, 'sales')
            return fit.effect
        return TBRAnalyzer(n_draws=self.n_draws, random_state=sim).fit(panel, 'sales')

    def _run(self, daily_effect: float, n_sims: int, method: str) -> Tuple[np.ndarray, ...]:
        """Point estimates, two-sided bounds and one-sided detections."""
        estimates, lowers, uppers, detected = [], [], [], []
        for sim in range(n_sims):
            panel = self._simulate(sim, daily_effect)
            draws = self._estimate(panel, method, sim)

            two_sided = summarize(draws, self.level, 'two-sided')
            one_sided = summarize(draws, self.level, 'one-sided')

            estimates.append(two_sided.estimate)
            lowers.append(two_sided.lower)
            uppers.append(two_sided.upper)
            detected.append(one_sided.lower > 0)

        return (np.array(estimates), np.array(lowers),
                np.array(uppers), np.array(detected))

    def validate_effect_recovery(
        self,
        daily_effects: List[float] = [0.0, 20.0],
        method: Optional[str] = None,
        n_simulations: Optional[int] = None,
        verbose: bool = True
    ) -> Dict[float, ValidationResult]:
        """
        Validate effect recovery across effect sizes.

        For each daily effect measures bias, RMSE, interval coverage and
        detection rate of the total effect.
        """
        method = method or self.method
        n_sims = n_simulations or self.n_simulations
        results = {}

        for daily_effect in daily_effects:
            if verbose:
                print(f"Validating daily effect = {daily_effect:g} ({method})...", end=" ")

            truth = self.true_effect(daily_effect)
            estimates, lowers, uppers, detected = self._run(daily_effect, n_sims, method)

            bias = float(np.mean(estimates) - truth)
            scale = abs(truth) if truth != 0 else float(np.mean(np.abs(uppers - lowers)))

            results[daily_effect] = ValidationResult(
                mean_estimate=float(np.mean(estimates)),
                true_effect=truth,
                bias=bias,
                relative_bias=bias / scale if scale > 0 else 0.0,
                rmse=float(np.sqrt(np.mean((estimates - truth) ** 2))),
                coverage_probability=float(np.mean((lowers <= truth) & (truth <= uppers))),
                detection_rate=float(np.mean(detected)),
                n_simulations=n_sims,
                method=method
            )

            if verbose:
                status = "[PASS]" if abs(results[daily_effect].relative_bias) < 0.05 else "[FAIL]"
                print(f"Bias: {bias:+,.1f} {status}")

        return results

    def validate_coverage(
        self,
        daily_effect: float = 20.0,
        method: Optional[str] = None,
        n_simulations: Optional[int] = None,
        tolerance: float = 0.10,
        verbose: bool = True
    ) -> Dict:
        """
        Validate interval coverage.

        Two-sided intervals at ``level`` should contain the true effect in
        about ``level`` of the simulations.
        """
        method = method or self.method
        n_sims = n_simulations or self.n_simulations

        if verbose:
            print(f"Validating coverage at {self.level:.0%} ({n_sims} simulations)...")

        truth = self.true_effect(daily_effect)
        _, lowers, uppers, _ = self._run(daily_effect, n_sims, method)
        coverage = float(np.mean((lowers <= truth) & (truth <= uppers)))
        passed = coverage >= self.level - tolerance

        if verbose:
            status = "[PASS]" if passed else "[FAIL]"
            print(f"  Coverage: {coverage:.0%} (target: >={self.level - tolerance:.0%}) {status}")

        return {
            'coverage': coverage,
            'target': self.level,
            'passed': passed,
            'n_simulations': n_sims
        }

    def validate_type_i_error(
        self,
        method: Optional[str] = None,
        n_simulations: Optional[int] = None,
        tolerance: float = 0.05,
        verbose: bool = True
    ) -> Dict:
        """
        Validate false positive control.

        Under no effect the one-sided lower bound should exceed zero in at
        most ``1 - level`` of the simulations.
        """
        method = method or self.method
        n_sims = n_simulations or self.n_simulations
        alpha = 1 - self.level

        if verbose:
            print(f"Validating false positive rate ({n_sims} simulations)...")

        _, _, _, detected = self._run(0.0, n_sims, method)
        rate = float(np.mean(detected))
        passed = rate <= alpha + tolerance

        if verbose:
            status = "[PASS]" if passed else "[FAIL]"
            print(f"  False positive rate: {rate:.1%} (target: <={alpha:.0%}) {status}")

        return {
            'type_i_error': rate,
            'target': alpha,
            'passed': passed,
            'n_simulations': n_sims
        }

    def run_full_validation(
        self,
        n_simulations: Optional[int] = None,
        verbose: bool = True
    ) -> Dict:
        """
        Run the validation suite for both estimators.

        Returns summary of all validation checks.
        """
        n_sims = n_simulations or self.n_simulations

        if verbose:
            print("=" * 60)
            print("GEO EXPERIMENT ESTIMATOR VALIDATION SUITE")
            print(f"Simulations per test: {n_sims}")
            print("=" * 60)

        results = {}
        for method in ('gbr1', 'tbr1'):
            if verbose:
                print(f"\n[{method}] False Positive Control")
            type_i = self.validate_type_i_error(method, n_sims, verbose=verbose)

            if verbose:
                print(f"\n[{method}] Interval Coverage")
            coverage = self.validate_coverage(method=method, n_simulations=n_sims, verbose=verbose)

            if verbose:
                print(f"\n[{method}] Effect Recovery")
            recovery = self.validate_effect_recovery(
                method=method, n_simulations=n_sims, verbose=verbose
            )

            results[method] = {
                'type_i': type_i,
                'coverage': coverage,
                'recovery': {
                    str(k): {
                        'bias': v.bias,
                        'rmse': v.rmse,
                        'passed': abs(v.relative_bias) < 0.05
                    }
                    for k, v in recovery.items()
                }
            }
            results[method]['passed'] = (
                type_i['passed'] and coverage['passed'] and
                all(v['passed'] for v in results[method]['recovery'].values())
            )

        all_passed = all(results[m]['passed'] for m in ('gbr1', 'tbr1'))

        if verbose:
            print("\n" + "=" * 60)
            print("VALIDATION SUMMARY")
            print("=" * 60)
            for method in ('gbr1', 'tbr1'):
                print(f"  {method}: {'[PASS]' if results[method]['passed'] else '[FAIL]'}")
            print(f"\n  OVERALL: {'[PASS] ALL TESTS PASSED' if all_passed else '[FAIL] SOME TESTS FAILED'}")
            print("\n" + "=" * 60)

        results['all_passed'] = all_passed

        return results


if __name__ == '__main__':
    validator = EstimatorValidator(n_simulations=50)
    results = validator.run_full_validation()
