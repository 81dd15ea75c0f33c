"""Explicit design-matrix construction for regression models.

``build_model_matrix`` maps (outcome, predictors, reference levels) to a
numeric matrix, separating *what* model is fitted from *how* the solver
fits it. Numeric and boolean predictors enter as single columns;
categorical predictors (object, string or ``category`` dtype) are
expanded into treatment-coded indicators named ``"<column>[<level>]"``
against a reference level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import InsufficientDataError

logger = logging.getLogger(__name__)

INTERCEPT = "(Intercept)"


@dataclass(frozen=True)
class ModelMatrix:
    """Numeric model matrix plus the bookkeeping needed to read it back.

    Attributes:
        outcome: Outcome column name.
        terms: Column labels of ``X``.
        X: Design matrix of shape ``(n_complete, len(terms))``.
        y: Outcome vector for the complete-case rows.
        mask: Boolean mask over the source table marking complete-case rows.
        reference_levels: Reference level used for each categorical predictor.
    """

    outcome: str
    terms: Tuple[str, ...]
    X: np.ndarray = field(repr=False)
    y: np.ndarray = field(repr=False)
    mask: np.ndarray = field(repr=False)
    reference_levels: Dict[str, object] = field(default_factory=dict)

    @property
    def n_excluded(self) -> int:
        return int((~self.mask).sum())


def is_categorical(values: pd.Series) -> bool:
    if isinstance(values.dtype, pd.CategoricalDtype):
        return True
    if pd.api.types.is_bool_dtype(values.dtype):
        return False
    return not pd.api.types.is_numeric_dtype(values.dtype)


def _levels(values: pd.Series) -> list:
    present = set(values.dropna().unique().tolist())
    if isinstance(values.dtype, pd.CategoricalDtype):
        return [c for c in values.cat.categories if c in present]
    return sorted(present)


def build_model_matrix(
    data: pd.DataFrame,
    outcome: str,
    predictors: Sequence[str],
    reference_levels: Optional[Mapping[str, object]] = None,
    intercept: bool = True,
) -> ModelMatrix:
    """Build a treatment-coded model matrix over complete cases.

    Args:
        data: Analysis table.
        outcome: Outcome column; values must lie in ``[0, 1]``.
        predictors: Predictor columns in model order.
        reference_levels: Optional reference level per categorical predictor.
            Defaults to the first observed level (category order for
            ``category`` columns, sorted order otherwise).
        intercept: Prepend an intercept column.

    Returns:
        ModelMatrix: Matrix, outcome vector and complete-case mask. Levels
        that do not occur among complete cases get no indicator column.

    Raises:
        KeyError: If the outcome or a predictor column is absent.
        ValueError: If the outcome is non-numeric or outside ``[0, 1]``.
        InsufficientDataError: If a requested reference level does not occur
            among the complete cases of a predictor that has at least two
            observed levels. Predictors with a single observed level, as in
            a fit restricted to one stratum of that predictor, are dropped
            with a warning instead.
    """
    reference_levels = dict(reference_levels or {})
    columns = [outcome, *predictors]
    missing = [c for c in columns if c not in data.columns]
    if missing:
        raise KeyError(f"Model columns not found in table: {missing}")
    if len(set(predictors)) != len(predictors):
        raise ValueError("Predictors must not repeat.")

    mask = data[columns].notna().all(axis=1).to_numpy()
    n_excluded = int((~mask).sum())
    if n_excluded:
        logger.info(
            "Excluded %d row(s) with missing values in %s ~ %s.",
            n_excluded,
            outcome,
            " + ".join(predictors) or "1",
        )
    complete = data.loc[mask]

    y_series = complete[outcome]
    if is_categorical(y_series):
        raise ValueError(f"Outcome '{outcome}' must be numeric (0/1 or a proportion).")
    y = y_series.to_numpy(dtype=float)
    if np.any((y < 0) | (y > 1)):
        raise ValueError(f"Outcome '{outcome}' has values outside [0, 1].")

    blocks = []
    terms = []
    used_references: Dict[str, object] = {}
    if intercept:
        blocks.append(np.ones((len(complete), 1)))
        terms.append(INTERCEPT)

    for name in predictors:
        values = complete[name]
        if not is_categorical(values):
            blocks.append(values.to_numpy(dtype=float)[:, None])
            terms.append(name)
            continue

        levels = _levels(values)
        if len(levels) < 2:
            logger.warning(
                "Predictor '%s' has a single observed level and is dropped.", name
            )
            continue
        reference = reference_levels.get(name, levels[0])
        if reference not in levels:
            raise InsufficientDataError(
                f"Reference level {reference!r} of '{name}' is not observed; "
                f"levels present: {levels}"
            )
        used_references[name] = reference
        for level in levels:
            if level == reference:
                continue
            blocks.append((values == level).to_numpy(dtype=float)[:, None])
            terms.append(f"{name}[{level}]")

    if blocks:
        X = np.hstack(blocks)
    else:
        X = np.empty((len(complete), 0))

    return ModelMatrix(
        outcome=outcome,
        terms=tuple(terms),
        X=X,
        y=y,
        mask=mask,
        reference_levels=used_references,
    )
