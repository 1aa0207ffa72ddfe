"""
Experiment Runner
=================

Unified interface for analysing and planning geo experiments.

Key Features:
- Configured GBR or TBR analysis from one config object
- Effect and iROAS summaries at the configured level
- Effect-over-time tables for TBR fits
- Preanalysis planning with spend/precision queries
"""

import time
import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Tuple, Optional, Literal, Sequence, Union

from .gbr import GBREstimator, GBRFit
from .tbr import TBRAnalyzer, TBRFit, TBRROASFit
from .preanalysis import PreanalysisFit, PreanalysisSimulator, query_preanalysis
from .panel import GeoAssignment
from .summary import IntervalSummary, summarize, summarize_over_time
from .errors import InvalidParameter


@dataclass
class AnalysisConfig:
    """Configuration for a geo experiment analysis."""
    # Basic settings
    name: str
    description: str = ""

    # Metrics
    response: str = 'sales'
    cost: Optional[str] = None

    # Model
    model: Literal['gbr1', 'tbr1'] = 'tbr1'
    cost_estimator: Literal['difference', 'regression'] = 'difference'  # gbr1
    cost_model: Literal['tbr1', 'difference'] = 'tbr1'  # tbr1

    # Periods and groups
    pretest_period: int = 0
    intervention_period: int = 1
    cooldown_period: Optional[int] = None
    control_group: int = 1
    treatment_group: int = 2

    # Reporting
    level: float = 0.90
    interval_type: Literal['one-sided', 'two-sided'] = 'one-sided'
    threshold: float = 0.0

    # Sampling
    n_draws: int = 5000
    random_state: Optional[int] = 42


@dataclass
class ExperimentResult:
    """Container for a complete analysis."""
    config: AnalysisConfig
    fit: Union[GBRFit, TBRFit, TBRROASFit]

    # Summaries
    effect_summary: IntervalSummary
    iroas_summary: Optional[IntervalSummary]
    effect_over_time: Optional[pd.DataFrame]
    iroas_over_time: Optional[pd.DataFrame]

    # Conclusion
    summary: Dict

    # Metadata
    run_timestamp: str
    runtime_seconds: float


@dataclass
class PlanResult:
    """Container for a preanalysis plan."""
    fit: PreanalysisFit
    required_spend: Optional[float]
    predicted_precision: Optional[float]
    median_precision: float


class GeoExperimentRunner:
    """
    End-to-End Geo Experiment Analysis

    Orchestrates:
    1. Model fitting (GBR or TBR, with or without cost)
    2. Interval summaries of the effect and iROAS
    3. Conclusion from the probability of a positive effect
    4. Pre-experiment planning via preanalysis simulation

    Parameters
    ----------
    config : AnalysisConfig
        Analysis configuration
    verbose : bool
        Print progress messages
    """

    def __init__(
        self,
        config: AnalysisConfig,
        verbose: bool = True
    ):
        if config.model not in ('gbr1', 'tbr1'):
            raise InvalidParameter(f"Unknown model {config.model!r}")
        self.config = config
        self.verbose = verbose

        if config.model == 'gbr1':
            self.estimator = GBREstimator(
                cost_estimator=config.cost_estimator,
                n_draws=config.n_draws,
                random_state=config.random_state
            )
        else:
            self.estimator = TBRAnalyzer(
                model=config.model,
                cost_model=config.cost_model,
                n_draws=config.n_draws,
                random_state=config.random_state
            )

    def analyze(self, panel: pd.DataFrame) -> ExperimentResult:
        """
        Fit the configured model and summarize it.

        Parameters
        ----------
        panel : pd.DataFrame
            Annotated panel (see ``annotate_panel``)

        Returns
        -------
        ExperimentResult
        """
        start_time = time.time()
        cfg = self.config

        if self.verbose:
            print("=" * 60)
            print(f"GEO EXPERIMENT: {cfg.name}")
            print("=" * 60)
            print(f"\n[1/2] Fitting {cfg.model} on '{cfg.response}'"
                  + (f" with cost '{cfg.cost}'" if cfg.cost else ""))

        fit = self.estimator.fit(
            panel,
            cfg.response,
            cfg.cost,
            cfg.pretest_period,
            cfg.intervention_period,
            cfg.cooldown_period,
            cfg.control_group,
            cfg.treatment_group
        )

        if self.verbose:
            print("\n[2/2] Summarizing")

        effect_source = fit.response if isinstance(fit, TBRROASFit) else fit
        if isinstance(effect_source, GBRFit):
            effect_source = effect_source.effect
        effect = summarize(effect_source, cfg.level, cfg.interval_type, cfg.threshold)

        iroas = None
        if cfg.cost is not None:
            iroas = summarize(fit, cfg.level, cfg.interval_type, cfg.threshold)

        effect_over_time = None
        iroas_over_time = None
        if cfg.model == 'tbr1':
            effect_over_time = summarize_over_time(
                effect_source, cfg.level, cfg.interval_type, cfg.threshold
            )
            if isinstance(fit, TBRROASFit):
                iroas_over_time = summarize_over_time(
                    fit, cfg.level, cfg.interval_type, cfg.threshold
                )

        if self.verbose:
            print(f"  Effect: {effect.estimate:,.2f} "
                  f"[{effect.lower:,.2f}, {effect.upper:,.2f}]")
            print(f"  Pr(effect > {cfg.threshold:g}): {effect.prob_exceeds:.1%}")
            if iroas is not None:
                if iroas.undefined:
                    print(f"  iROAS: undefined ({iroas.reason})")
                else:
                    print(f"  iROAS: {iroas.estimate:.3f} "
                          f"[{iroas.lower:.3f}, {iroas.upper:.3f}]")

        summary = self._generate_summary(effect, iroas)
        runtime = time.time() - start_time

        if self.verbose:
            print(f"\n  Conclusion: {summary['conclusion']}")
            print("\n" + "=" * 60)
            print(f"Runtime: {runtime:.1f}s")
            print("=" * 60)

        return ExperimentResult(
            config=cfg,
            fit=fit,
            effect_summary=effect,
            iroas_summary=iroas,
            effect_over_time=effect_over_time,
            iroas_over_time=iroas_over_time,
            summary=summary,
            run_timestamp=datetime.now().isoformat(),
            runtime_seconds=runtime
        )

    def plan(
        self,
        history: pd.DataFrame,
        geo_assignment: GeoAssignment,
        prop_to: str,
        period_lengths: Sequence[int],
        resamples: int = 100,
        precision: Optional[float] = None,
        cost: Optional[float] = None,
        n_jobs: int = 1
    ) -> PlanResult:
        """
        Plan the experiment from historical data.

        Give ``precision`` to get the required spend, ``cost`` to get the
        predicted precision, or neither to only run the simulation.
        """
        cfg = self.config
        if precision is not None and cost is not None:
            raise InvalidParameter("Give at most one of 'precision' and 'cost'")

        if self.verbose:
            print("Planning geo experiment...")

        simulator = PreanalysisSimulator(
            model=cfg.model,
            resamples=resamples,
            level=cfg.level,
            random_state=cfg.random_state,
            n_jobs=n_jobs,
            verbose=self.verbose
        )
        fit = simulator.run(
            history, cfg.response, geo_assignment, prop_to, period_lengths,
            cfg.control_group, cfg.treatment_group
        )

        required_spend = None
        predicted_precision = None
        if precision is not None:
            required_spend = query_preanalysis(fit, precision=precision)
        if cost is not None:
            predicted_precision = query_preanalysis(fit, cost=cost)

        if self.verbose:
            if required_spend is not None:
                print(f"  Spend for precision {precision:g}: {required_spend:,.0f}")
            if predicted_precision is not None:
                print(f"  Precision at spend {cost:,.0f}: {predicted_precision:.4f}")

        return PlanResult(
            fit=fit,
            required_spend=required_spend,
            predicted_precision=predicted_precision,
            median_precision=float(np.median(fit.precision()))
        )

    def _generate_summary(
        self,
        effect: IntervalSummary,
        iroas: Optional[IntervalSummary]
    ) -> Dict:
        """Overall conclusion from the effect and iROAS summaries."""
        level = self.config.level

        if effect.prob_exceeds >= level:
            conclusion = "POSITIVE"
            recommendation = "Incremental effect is positive at the configured level."
        elif 1 - effect.prob_exceeds >= level:
            conclusion = "NEGATIVE"
            recommendation = "Incremental effect is negative at the configured level."
        else:
            conclusion = "INCONCLUSIVE"
            recommendation = "Extend the test or increase spend for more precision."

        result = {
            'conclusion': conclusion,
            'recommendation': recommendation,
            'key_metrics': {
                'effect': effect.estimate,
                'effect_lower': effect.lower,
                'effect_upper': effect.upper,
                'prob_positive': effect.prob_exceeds
            }
        }
        if iroas is not None:
            result['key_metrics']['iroas_defined'] = not iroas.undefined
            result['key_metrics']['iroas'] = iroas.estimate
            result['key_metrics']['iroas_lower'] = iroas.lower
        return result
