"""The scoring module provides scoring functions, also known as loss functions,
that compare observed values with predictions.
Each scoring function is implemented as a class that needs to be instantiated
before calling the `__call__` methode, e.g. `SquaredError()(y_obs=[1], y_pred=[2])`.
The closed set of kinds used by permutation importance is given by `ScoreKind`
and dispatched in `get_scoring_function`.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Union

import numpy as np
import numpy.typing as npt
from scipy import special

from feature_importance._utils.array import validate_2_arrays
from feature_importance.exceptions import InvalidInputError

# Guards divisions and logarithms against zeros.
EPS = 1e-9


class _BaseScoringFunction(ABC):
    """A base class for scoring functions."""

    @property
    @abstractmethod
    def smaller_is_better(self) -> bool:
        pass

    def __call__(
        self,
        y_obs: npt.ArrayLike,
        y_pred: npt.ArrayLike,
        weights: Optional[npt.ArrayLike] = None,
    ) -> np.floating[Any]:
        """Mean or average score.

        Parameters
        ----------
        y_obs : array-like of shape (n_obs)
            Observed values of the response variable.
        y_pred : array-like of shape (n_obs)
            Predicted values.
        weights : array-like of shape (n_obs) or None
            Case weights.

        Returns
        -------
        score : float
            The average score.
        """
        return np.average(self.score_per_obs(y_obs, y_pred), weights=weights)

    @abstractmethod
    def score_per_obs(
        self,
        y_obs: npt.ArrayLike,
        y_pred: npt.ArrayLike,
    ) -> np.ndarray:
        """Score per observation."""


class SquaredError(_BaseScoringFunction):
    r"""Squared error.

    The smaller the better, minimum is zero.

    Notes
    -----
    \(S(y, z) = (y - z)^2\)

    Examples
    --------
    >>> se = SquaredError()
    >>> se(y_obs=[0, 0, 1, 1], y_pred=[-1, 1, 1 , 2])  # doctest: +SKIP
    0.75
    """

    @property
    def smaller_is_better(self) -> bool:
        return True

    def score_per_obs(
        self,
        y_obs: npt.ArrayLike,
        y_pred: npt.ArrayLike,
    ) -> np.ndarray:
        y, z = validate_2_arrays(y_obs, y_pred)
        return np.square(y - z)


class RootSquaredError(SquaredError):
    r"""Root mean squared error.

    The smaller the better, minimum is zero.

    The score per observation is the squared error, only the average is
    transformed by a square root. It is therefore not a mean of per observation
    scores.

    Notes
    -----
    \(\sqrt{\frac{1}{n}\sum_i (y_i - z_i)^2}\)

    Examples
    --------
    >>> rse = RootSquaredError()
    >>> rse(y_obs=[0, 0, 1, 1], y_pred=[-1, 1, 1 , 2])  # doctest: +SKIP
    0.8660254037844386
    """

    def __call__(
        self,
        y_obs: npt.ArrayLike,
        y_pred: npt.ArrayLike,
        weights: Optional[npt.ArrayLike] = None,
    ) -> np.floating[Any]:
        return np.sqrt(super().__call__(y_obs, y_pred, weights=weights))


class AbsoluteError(_BaseScoringFunction):
    r"""Absolute error.

    The smaller the better, minimum is zero.

    Notes
    -----
    \(S(y, z) = |y - z|\)

    Examples
    --------
    >>> ae = AbsoluteError()
    >>> ae(y_obs=[0, 0, 1, 1], y_pred=[-1, 1, 1 , 2])  # doctest: +SKIP
    0.75
    """

    @property
    def smaller_is_better(self) -> bool:
        return True

    def score_per_obs(
        self,
        y_obs: npt.ArrayLike,
        y_pred: npt.ArrayLike,
    ) -> np.ndarray:
        y, z = validate_2_arrays(y_obs, y_pred)
        return np.abs(y - z)


class SymmetricAbsolutePercentageError(_BaseScoringFunction):
    r"""Symmetric absolute percentage error (SMAPE), as a fraction.

    The smaller the better, minimum is zero, maximum is 2.

    Notes
    -----
    \(S(y, z) = \frac{2|y - z|}{|y| + |z| + \epsilon}\)

    The small constant \(\epsilon\) makes the score zero if both values are zero.

    Examples
    --------
    >>> smape = SymmetricAbsolutePercentageError()
    >>> smape(y_obs=[1, 2], y_pred=[1, 2])  # doctest: +SKIP
    0.0
    """

    @property
    def smaller_is_better(self) -> bool:
        return True

    def score_per_obs(
        self,
        y_obs: npt.ArrayLike,
        y_pred: npt.ArrayLike,
    ) -> np.ndarray:
        y, z = validate_2_arrays(y_obs, y_pred)
        return 2 * np.abs(y - z) / (np.abs(y) + np.abs(z) + EPS)


class Accuracy(_BaseScoringFunction):
    r"""Accuracy of class labels.

    The greater the better, maximum is one.

    Predictions are rounded to the nearest integer class label before they are
    compared to the observed labels.

    Notes
    -----
    \(S(y, z) = \mathbf{1}\{\operatorname{round}(z) = y\}\)

    Examples
    --------
    >>> acc = Accuracy()
    >>> acc(y_obs=[0, 1, 1, 2], y_pred=[0.2, 0.6, 1.4, 0.9])  # doctest: +SKIP
    0.75
    """

    @property
    def smaller_is_better(self) -> bool:
        return False

    def score_per_obs(
        self,
        y_obs: npt.ArrayLike,
        y_pred: npt.ArrayLike,
    ) -> np.ndarray:
        y, z = validate_2_arrays(y_obs, y_pred)
        return (np.round(z) == y).astype(np.float64)


class LogLoss(_BaseScoringFunction):
    r"""Log loss, also known as binary cross-entropy.

    The smaller the better, minimum is zero.

    Observations are expected in {0, 1}, predictions are probabilities. To keep
    the logarithm finite, predictions are clipped to the interval
    \([\epsilon, 1 - \epsilon]\).

    Notes
    -----
    \(S(y, z) = - y \log(z) - (1 - y) \log(1-z)\)

    Examples
    --------
    >>> ll = LogLoss()
    >>> ll(y_obs=[0, 1, 1], y_pred=[0.1, 0.8, 0.9])  # doctest: +SKIP
    0.14462152754328741
    """

    @property
    def smaller_is_better(self) -> bool:
        return True

    def score_per_obs(
        self,
        y_obs: npt.ArrayLike,
        y_pred: npt.ArrayLike,
    ) -> np.ndarray:
        y, z = validate_2_arrays(y_obs, y_pred)
        z = np.clip(z, EPS, 1 - EPS)
        return -special.xlogy(y, z) - special.xlogy(1 - y, 1 - z)


class ScoreKind(str, Enum):
    """Named scoring functions usable for permutation importance."""

    MSE = "mse"
    MAE = "mae"
    RMSE = "rmse"
    SMAPE = "smape"
    ACC = "acc"
    CE = "ce"

    @classmethod
    def parse(cls, kind: Union["ScoreKind", str]) -> "ScoreKind":
        """Convert a kind or its (case-insensitive) name into a `ScoreKind`."""
        if isinstance(kind, cls):
            return kind
        if isinstance(kind, str):
            try:
                return cls(kind.lower())
            except ValueError:
                pass
        valid = ", ".join(repr(k.value) for k in cls)
        msg = f"Unknown scoring kind {kind!r}, must be one of {valid}."
        raise InvalidInputError(msg)

    @property
    def smaller_is_better(self) -> bool:
        return get_scoring_function(self).smaller_is_better


def get_scoring_function(kind: Union[ScoreKind, str]) -> _BaseScoringFunction:
    """Return the scoring function instance for a scoring kind.

    Parameters
    ----------
    kind : ScoreKind or str
        One of "mse", "mae", "rmse", "smape", "acc" or "ce".

    Returns
    -------
    scoring_function : callable
        Instance of the scoring function class with signature
        `fun(y_obs, y_pred, weights=None) -> float`.
    """
    match ScoreKind.parse(kind):
        case ScoreKind.MSE:
            return SquaredError()
        case ScoreKind.MAE:
            return AbsoluteError()
        case ScoreKind.RMSE:
            return RootSquaredError()
        case ScoreKind.SMAPE:
            return SymmetricAbsolutePercentageError()
        case ScoreKind.ACC:
            return Accuracy()
        case ScoreKind.CE:
            return LogLoss()


def score(
    kind: Union[ScoreKind, str],
    y_true: npt.ArrayLike,
    y_pred: npt.ArrayLike,
) -> float:
    """Compute the score of predictions against observations.

    Parameters
    ----------
    kind : ScoreKind or str
        The scoring function, see `ScoreKind`.
    y_true : array-like of shape (n_obs)
        Observed values of the response variable.
    y_pred : array-like of shape (n_obs)
        Predicted values.

    Returns
    -------
    score : float
        For "acc" greater values are better, for all other kinds smaller values
        are better.

    Raises
    ------
    InvalidInputError
        If `kind` is unknown or if the arrays are empty or differ in length.

    Examples
    --------
    >>> score("mae", [1, 2, 3], [1, 2, 5])
    0.6666666666666666
    """
    scoring_function = get_scoring_function(kind)
    return float(scoring_function(y_true, y_pred))
