"""
A Python package for design-based analysis of complex-sample health surveys.

Estimates weighted prevalences and survey-weighted logistic regressions whose
standard errors reflect stratification and clustering, and derives odds
ratios, annual percentage change and population attributable fractions with
propagated uncertainty.

Modules:
    - design: Builds immutable survey designs and domain subsets.
    - stats: Taylor-linearization covariance and Wald inference.
    - estimation: Weighted means, totals and domain estimates.
    - model_matrix: Treatment-coded design matrices.
    - glm: Quasi-binomial IRLS with sandwich covariance.
    - derived: Odds ratios, APC, PAF and sensitivity comparisons.
    - analysis: Study recipes (prevalence, trend, stratified models).
"""

__version__ = "1.0.0"

from .analysis import (
    AssociationModels,
    StratumFit,
    association_models,
    prevalence_table,
    stratified_fits,
    stratified_odds_ratios,
    trend_analysis,
)
from .config import DEFAULT_CONFIG, StudyConfig
from .derived import (
    DerivedMetric,
    annual_percent_change,
    odds_ratio,
    odds_ratio_table,
    population_attributable_fraction,
    sensitivity_comparison,
)
from .design import SurveyDesign, build_design, normalize_weights
from .errors import (
    ConvergenceError,
    DesignError,
    InsufficientDataError,
    SeparationError,
    SurveyEngineError,
)
from .estimation import Estimate, by_domain, weighted_mean, weighted_total
from .glm import GLMFit, fit_weighted_glm
from .model_matrix import ModelMatrix, build_model_matrix

__all__ = [
    # Design
    "SurveyDesign",
    "build_design",
    "normalize_weights",
    # Estimation
    "Estimate",
    "weighted_mean",
    "weighted_total",
    "by_domain",
    # Regression
    "ModelMatrix",
    "build_model_matrix",
    "GLMFit",
    "fit_weighted_glm",
    # Derived metrics
    "DerivedMetric",
    "odds_ratio",
    "odds_ratio_table",
    "annual_percent_change",
    "population_attributable_fraction",
    "sensitivity_comparison",
    # Recipes
    "AssociationModels",
    "StratumFit",
    "association_models",
    "prevalence_table",
    "stratified_fits",
    "stratified_odds_ratios",
    "trend_analysis",
    # Configuration
    "StudyConfig",
    "DEFAULT_CONFIG",
    # Errors
    "SurveyEngineError",
    "DesignError",
    "InsufficientDataError",
    "ConvergenceError",
    "SeparationError",
]
