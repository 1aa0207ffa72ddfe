# Geo Experiments Core Module
"""
Geo Experiment Estimation Framework

Core components:
- Panel: period boundaries, geo assignment and panel annotation
- Summary: credible intervals and threshold probabilities from draw-sets
- GBR: geo-based regression estimate of the effect and iROAS
- TBR: time-based regression estimate of the effect and iROAS over time
- Preanalysis: resampling simulation of achievable precision
- GeoExperimentRunner: Unified interface for analysis and planning
"""

from .errors import (
    GeoExperimentError,
    ValidationError,
    InsufficientData,
    InsufficientGeos,
    InsufficientHistory,
    EmptyTestWindow,
    DegenerateModel,
    DegenerateRegression,
    ZeroCost,
    NoVariation,
    InvalidParameter,
    InvalidLevel,
    NonPositivePeriodLength,
    EmptyDrawSet,
    SimulationCancelled
)
from .panel import ExperimentPeriods, GeoAssignment, annotate_panel, create_synthetic_panel
from .summary import DrawSet, IntervalSummary, summarize, summarize_over_time
from .gbr import GBREstimator, GBRFit, fit_gbr
from .tbr import TBRModel, TBRAnalyzer, TBRFit, TBRROASFit, fit_tbr
from .preanalysis import PreanalysisSimulator, PreanalysisFit, run_preanalysis, query_preanalysis
from .experiment_runner import GeoExperimentRunner, AnalysisConfig, ExperimentResult, PlanResult

__all__ = [
    'GeoExperimentError',
    'ValidationError',
    'InsufficientData',
    'InsufficientGeos',
    'InsufficientHistory',
    'EmptyTestWindow',
    'DegenerateModel',
    'DegenerateRegression',
    'ZeroCost',
    'NoVariation',
    'InvalidParameter',
    'InvalidLevel',
    'NonPositivePeriodLength',
    'EmptyDrawSet',
    'SimulationCancelled',
    'ExperimentPeriods',
    'GeoAssignment',
    'annotate_panel',
    'create_synthetic_panel',
    'DrawSet',
    'IntervalSummary',
    'summarize',
    'summarize_over_time',
    'GBREstimator',
    'GBRFit',
    'fit_gbr',
    'TBRModel',
    'TBRAnalyzer',
    'TBRFit',
    'TBRROASFit',
    'fit_tbr',
    'PreanalysisSimulator',
    'PreanalysisFit',
    'run_preanalysis',
    'query_preanalysis',
    'GeoExperimentRunner',
    'AnalysisConfig',
    'ExperimentResult',
    'PlanResult'
]

__version__ = '1.0.0'
