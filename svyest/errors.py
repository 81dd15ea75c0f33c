"""Exception taxonomy for the survey estimation engine.

All engine errors subclass :class:`ValueError` so callers that only guard
against bad numerical input keep working, while callers that need to tell a
malformed design apart from a non-converging model can catch the specific
class.
"""

from __future__ import annotations

from typing import Optional

import pandas as pd


class SurveyEngineError(ValueError):
    """Base class for all errors raised by ``svyest``."""


class DesignError(SurveyEngineError):
    """Malformed survey design: bad weights, missing columns or nesting."""


class InsufficientDataError(SurveyEngineError):
    """Too few rows or clusters to support the requested statistic or model."""


class _IterationError(SurveyEngineError):
    def __init__(
        self,
        message: str,
        coefficients: Optional[pd.Series] = None,
        iterations: int = 0,
    ) -> None:
        super().__init__(message)
        self.coefficients = coefficients
        self.iterations = int(iterations)


class ConvergenceError(_IterationError):
    """IRLS hit its iteration cap without meeting the tolerance.

    Attributes:
        coefficients: Last iterate, indexed by design-matrix term.
        iterations: Number of IRLS iterations performed.
    """


class SeparationError(_IterationError):
    """A covariate pattern perfectly predicts the outcome.

    Attributes:
        coefficients: Last (diverging) iterate, indexed by term.
        iterations: Number of IRLS iterations performed before detection.
    """
