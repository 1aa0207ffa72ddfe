"""Simulation-based validation of the geo experiment estimators."""

from .validator import EstimatorValidator, ValidationResult

__all__ = ['EstimatorValidator', 'ValidationResult']
