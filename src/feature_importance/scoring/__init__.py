from .scoring import (
    EPS,
    AbsoluteError,
    Accuracy,
    LogLoss,
    RootSquaredError,
    ScoreKind,
    SquaredError,
    SymmetricAbsolutePercentageError,
    get_scoring_function,
    score,
)

__all__ = [
    "EPS",
    "AbsoluteError",
    "Accuracy",
    "LogLoss",
    "RootSquaredError",
    "ScoreKind",
    "SquaredError",
    "SymmetricAbsolutePercentageError",
    "get_scoring_function",
    "score",
]
