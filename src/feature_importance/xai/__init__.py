from .permutation_importance import (
    FeatureImportance,
    ImportanceOptions,
    ImportanceResult,
    Predictor,
    importance,
    model_score,
    shuffle_column,
)
from .plots import plot_permutation_importance

__all__ = [
    "FeatureImportance",
    "ImportanceOptions",
    "ImportanceResult",
    "Predictor",
    "importance",
    "model_score",
    "shuffle_column",
    "plot_permutation_importance",
]
