"""
Error Types
===========

Exceptions raised by the geo experiment estimators.

All errors derive from GeoExperimentError (a ValueError), grouped by kind:
- ValidationError: malformed periods, unassigned geos, missing columns
- InsufficientData: too few geos, too short history, empty test window
- DegenerateModel: zero-variance regressors, undefined ratios
- InvalidParameter: out-of-range levels, bad period lengths, bad queries
"""


class GeoExperimentError(ValueError):
    """Base class for all geo experiment errors."""


class ValidationError(GeoExperimentError):
    """Input panel or configuration violates a structural invariant."""


class InsufficientData(GeoExperimentError):
    """Not enough geos or dates to fit the requested model."""


class InsufficientGeos(InsufficientData):
    """A geo group has fewer geos than the model requires."""

    def __init__(self, group: int, n_geos: int, required: int):
        self.group = group
        self.n_geos = n_geos
        self.required = required
        super().__init__(
            f"Group {group} has {n_geos} geo(s); at least {required} required"
        )


class InsufficientHistory(InsufficientData):
    """Historical panel is shorter than the requested design."""

    def __init__(self, n_dates: int, required: int):
        self.n_dates = n_dates
        self.required = required
        super().__init__(
            f"History has {n_dates} date(s) but the period lengths "
            f"require {required}"
        )


class EmptyTestWindow(InsufficientData):
    """No dates fall in the intervention (or cooldown) period."""


class DegenerateModel(GeoExperimentError):
    """Model is not identifiable from the data."""


class DegenerateRegression(DegenerateModel):
    """Regressor has zero variance or the design matrix is singular."""


class ZeroCost(DegenerateModel):
    """Incremental cost is zero, so the return-on-spend ratio is undefined."""


class NoVariation(DegenerateModel):
    """Proportionality metric does not vary, spend scaling is undefined."""


class InvalidParameter(GeoExperimentError):
    """A parameter is outside its allowed range or combination."""


class InvalidLevel(InvalidParameter):
    """Credibility level outside the open interval (0, 1)."""

    def __init__(self, level):
        self.level = level
        super().__init__(f"level must be in (0, 1), got {level!r}")


class NonPositivePeriodLength(InvalidParameter):
    """A configured period length is zero or negative."""


class EmptyDrawSet(GeoExperimentError):
    """A draw-set with no elements cannot be summarized."""


class SimulationCancelled(GeoExperimentError, RuntimeError):
    """Preanalysis was aborted before all resamples completed."""
