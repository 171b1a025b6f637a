import dataclasses
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from numbers import Integral
from typing import Callable, Optional, Protocol, Union, runtime_checkable

import numpy as np
import numpy.typing as npt
import polars as pl
from joblib import Parallel, delayed

from feature_importance import get_config
from feature_importance._config import _validate_n_jobs
from feature_importance._utils.array import (
    validate_feature_matrix,
    validate_predictions,
    validate_target,
)
from feature_importance.exceptions import InvalidInputError, ModelError
from feature_importance.scoring import ScoreKind, score

logger = logging.getLogger(__name__)


@runtime_checkable
class Predictor(Protocol):
    """Anything with a `predict` method, e.g. a fitted scikit-learn estimator.

    `predict` is called concurrently from several threads if `n_jobs` is not 1.
    It must therefore be safe to call with distinct inputs at the same time.
    """

    def predict(self, X: np.ndarray) -> npt.ArrayLike: ...


ModelLike = Union[Predictor, Callable[[np.ndarray], npt.ArrayLike]]


@dataclass(frozen=True, kw_only=True)
class ImportanceOptions:
    """Options of [`importance`][feature_importance.xai.importance].

    Parameters
    ----------
    kind : ScoreKind or str, default="mse"
        The scoring function, one of "mse", "mae", "rmse", "smape", "acc", "ce".
    n : int, default=5
        Number of times each feature is shuffled.
    only_means : bool, default=False
        If True, only the mean importance per feature is returned. The raw
        importances and the standard deviations are dropped.
    scale : bool, default=False
        If True, all importances are divided by the largest mean importance such
        that the most important feature has mean importance 1.
    verbose : bool, default=False
        If True, progress is logged at INFO level instead of DEBUG level.
    n_jobs : int or None, default=None
        Number of threads that shuffle and score features in parallel. None means
        the value of the global configuration, see
        [`set_config`][feature_importance.set_config].
    rng : np.random.Generator, int or None, default=None
        The random number generator used for shuffling values. The input is
        internally wrapped by `np.random.default_rng(rng)`.
    """

    kind: Union[ScoreKind, str] = ScoreKind.MSE
    n: int = 5
    only_means: bool = False
    scale: bool = False
    verbose: bool = False
    n_jobs: Optional[int] = None
    rng: Optional[Union[np.random.Generator, int]] = None

    def validate(self) -> "ImportanceOptions":
        """Return a normalized copy, raise InvalidInputError if invalid.

        In the copy, `kind` is a `ScoreKind` and `rng` a `np.random.Generator`.
        """
        kind = ScoreKind.parse(self.kind)
        if isinstance(self.n, bool) or not isinstance(self.n, Integral) or self.n < 1:
            msg = f"Argument n must be an integer >= 1, got {self.n!r}."
            raise InvalidInputError(msg)
        for name in ("only_means", "scale", "verbose"):
            value = getattr(self, name)
            if not isinstance(value, (bool, np.bool_)):
                msg = f"Argument {name} must be a bool, got {value!r}."
                raise InvalidInputError(msg)
        try:
            _validate_n_jobs(self.n_jobs)
        except ValueError as e:
            raise InvalidInputError(str(e)) from e
        try:
            rng = np.random.default_rng(self.rng)
        except (TypeError, ValueError) as e:
            msg = (
                "Argument rng must be None, a non-negative integer or a "
                f"np.random.Generator, got {self.rng!r}."
            )
            raise InvalidInputError(msg) from e
        return dataclasses.replace(self, kind=kind, n=int(self.n), rng=rng)


@dataclass(frozen=True)
class FeatureImportance:
    """Permutation importance of a single feature.

    Attributes
    ----------
    feature : int
        Column index of the feature in `X`.
    importances : tuple of float or None
        Score degradation of each repetition, None if `only_means`.
    mean : float
        Mean of `importances`.
    std : float or None
        Population standard deviation of `importances`, None if `only_means`.
    """

    feature: int
    importances: Optional[tuple[float, ...]]
    mean: float
    std: Optional[float]


@dataclass(frozen=True)
class ImportanceResult(Sequence):
    """Permutation importances of all features, in the column order of `X`.

    Attributes
    ----------
    features : tuple of FeatureImportance
        One entry per column of `X`.
    base_score : float
        Score of the model on the unshuffled data.
    kind : ScoreKind
        The scoring function used.
    n_repeats : int
        Number of shuffles per feature.
    scaled : bool
        Whether the importances were rescaled.
    """

    features: tuple[FeatureImportance, ...]
    base_score: float
    kind: ScoreKind
    n_repeats: int
    scaled: bool = False

    def __len__(self) -> int:
        return len(self.features)

    def __getitem__(self, i):
        return self.features[i]

    def __iter__(self) -> Iterator[FeatureImportance]:
        return iter(self.features)

    @property
    def only_means(self) -> bool:
        return self.features[0].importances is None

    @property
    def means(self) -> np.ndarray:
        return np.array([f.mean for f in self.features])

    @property
    def stds(self) -> Optional[np.ndarray]:
        if self.only_means:
            return None
        return np.array([f.std for f in self.features])

    @property
    def importances(self) -> Optional[np.ndarray]:
        """Array of shape (n_features, n_repeats) or None."""
        if self.only_means:
            return None
        return np.array([f.importances for f in self.features])

    def ranking(self) -> list[int]:
        """Feature indices in decreasing order of mean importance.

        Ties keep the order of the features.
        """
        return sorted(range(len(self)), key=lambda i: -self.features[i].mean)

    def to_polars(self, sort: bool = False) -> pl.DataFrame:
        """Return the result as polars DataFrame.

        Parameters
        ----------
        sort : bool, default=False
            If True, rows are sorted in decreasing order of importance.

        Returns
        -------
        df : polars.DataFrame
            A DataFrame with the following columns:

            - `feature`: Column index of the feature.
            - `importance`: Mean of the importance scores.
            - `standard_deviation`: Population standard deviation of the importance
              scores (null if `only_means`).
        """
        stds = self.stds
        df = pl.DataFrame(
            {
                "feature": [f.feature for f in self.features],
                "importance": self.means,
                "standard_deviation": pl.Series(
                    [None] * len(self) if stds is None else stds, dtype=pl.Float64
                ),
            }
        )
        if sort:
            df = df.sort("importance", descending=True, maintain_order=True)
        return df


def shuffle_column(
    X: npt.ArrayLike,
    col_index: int,
    rng: Optional[Union[np.random.Generator, int]] = None,
) -> np.ndarray:
    """Return a copy of X with the values of one column randomly permuted.

    Parameters
    ----------
    X : array-like of shape (n_obs, n_features)
        The feature matrix. It is not modified.
    col_index : int
        Index of the column to shuffle.
    rng : np.random.Generator, int or None, default=None
        The random number generator. The input is internally wrapped by
        `np.random.default_rng(rng)`.

    Returns
    -------
    X_shuffled : ndarray of shape (n_obs, n_features)
        All columns except `col_index` equal those of `X`. Column `col_index`
        holds a uniformly random permutation of its original values. Values may
        stay at their original row.
    """
    X = validate_feature_matrix(X)
    n_features = X.shape[1]
    if not -n_features <= col_index < n_features:
        msg = f"Column index {col_index} is out of range for {n_features} features."
        raise InvalidInputError(msg)
    rng = np.random.default_rng(rng)
    X[:, col_index] = rng.permutation(X[:, col_index])
    return X


def _get_predict_function(model: ModelLike) -> Callable:
    if isinstance(model, Predictor):
        return model.predict
    elif callable(model):
        return model
    msg = (
        "The model must have a predict method or be callable, got "
        f"{type(model).__name__}."
    )
    raise InvalidInputError(msg)


class _PredictFailure(Exception):
    """Carries the exception of the model, args[0], out of worker threads.

    joblib replaces the `__cause__` of exceptions raised in workers, so the
    ModelError is only built once the exception is back in the calling thread.
    """


def _model_error(error: Exception) -> ModelError:
    return ModelError(f"The model failed to predict: {error!r}")


def _call_model(predict_function: Callable, X: np.ndarray) -> np.ndarray:
    try:
        y_pred = predict_function(X)
    except Exception as e:
        raise _PredictFailure(e) from e
    return validate_predictions(y_pred, n_obs=X.shape[0])


def _predict(predict_function: Callable, X: np.ndarray) -> np.ndarray:
    try:
        return _call_model(predict_function, X)
    except _PredictFailure as e:
        error = e.args[0]
        raise _model_error(error) from error


def model_score(
    model: ModelLike,
    X: npt.ArrayLike,
    y: npt.ArrayLike,
    kind: Union[ScoreKind, str] = ScoreKind.MSE,
) -> float:
    """Score the predictions of a model on data.

    Parameters
    ----------
    model : object with predict method or callable
        The model, i.e. `model.predict(X)` or `model(X)` returns predictions.
    X : array-like of shape (n_obs, n_features)
        The features.
    y : array-like of shape (n_obs)
        The target values.
    kind : ScoreKind or str, default="mse"
        The scoring function.

    Returns
    -------
    score : float
    """
    kind = ScoreKind.parse(kind)
    X = validate_feature_matrix(X)
    y = validate_target(y, n_obs=X.shape[0])
    predict_function = _get_predict_function(model)
    return score(kind, y, _predict(predict_function, X))


def _feature_deltas(
    predict_function: Callable,
    X: np.ndarray,
    y: np.ndarray,
    feature: int,
    kind: ScoreKind,
    base_score: float,
    n_repeats: int,
    rng: np.random.Generator,
    log: Callable,
) -> np.ndarray:
    # The sign makes a larger delta mean a more important feature.
    direction = 1 if kind.smaller_is_better else -1
    X_shuffled = X.copy()
    deltas = np.empty(n_repeats)
    for i in range(n_repeats):
        X_shuffled[:, feature] = rng.permutation(X[:, feature])
        permuted_score = score(kind, y, _call_model(predict_function, X_shuffled))
        deltas[i] = direction * (permuted_score - base_score)
    log("Feature %d: mean importance %g", feature, deltas.mean())
    return deltas


def importance(
    model: ModelLike,
    X: npt.ArrayLike,
    y: npt.ArrayLike,
    options: Optional[ImportanceOptions] = None,
    **kwargs,
) -> ImportanceResult:
    """Compute permutation feature importance.

    For each feature, permutation importance measures how much the model
    performance worsens when shuffling the values of that feature before
    calculating predictions, see `[Breiman]` and `[Fisher]`. The model is never
    refitted.

    Parameters
    ----------
    model : object with predict method or callable
        The fitted model, i.e. `model.predict(X)` or `model(X)` returns one
        prediction per row of `X`. With `n_jobs` other than 1, it is called
        concurrently from several threads and must be safe to do so.
    X : array-like of shape (n_obs, n_features)
        The features. They are not modified.
    y : array-like of shape (n_obs)
        The target values.
    options : ImportanceOptions or None, default=None
        Options, see [`ImportanceOptions`][feature_importance.xai.ImportanceOptions].
    **kwargs
        Individual fields of `ImportanceOptions` overriding those of `options`,
        e.g. `importance(model, X, y, kind="mae", n=10)`.

    Returns
    -------
    result : ImportanceResult
        One entry per feature in the column order of `X`. Larger values mean more
        important features, also for scoring functions where greater is better.

    Raises
    ------
    InvalidInputError
        If the data or options are invalid. Raised before the model is called.
    ModelError
        If the model fails or returns predictions of the wrong shape. No partial
        result is returned.

    Notes
    -----
    The random number generator spawns one independent child generator per
    feature. Results for a fixed `rng` are therefore identical for any `n_jobs`.

    There is no way to cancel a running computation.

    References
    ----------
    `[Breiman]`

    :   Breiman, L. (2001).
        "Random Forests".
        Machine Learning, 45(1), 5-32.
        https://doi.org/10.1023/A:1010933404324

    `[Fisher]`

    :   Fisher, A. and Rudin, C. and Dominici F. (2019).
        "All Models Are Wrong, but Many Are Useful: Learning a Variable's Importance
        by Studying an Entire Class of Prediction Models Simultaneously".
        Journal of Machine Learning Research, 20(177), 1-81.

    Examples
    --------
    >>> import numpy as np
    >>> X = np.array([[1, 0, 3], [4, 0, 6], [7, 0, 9]])
    >>> y = np.array([4, 10, 16])
    >>> result = importance(lambda X: X.sum(axis=1), X, y, n=10, rng=0)
    >>> result.ranking()[-1]
    1
    """
    if options is None:
        options = ImportanceOptions()
    elif not isinstance(options, ImportanceOptions):
        msg = (
            "Argument options must be an ImportanceOptions or None, got "
            f"{type(options).__name__}."
        )
        raise TypeError(msg)
    try:
        options = dataclasses.replace(options, **kwargs)
    except TypeError as e:
        msg = f"Unknown option: {e}"
        raise TypeError(msg) from e
    options = options.validate()
    kind = options.kind
    n_repeats = options.n
    n_jobs = options.n_jobs if options.n_jobs is not None else get_config()["n_jobs"]
    log = logger.info if options.verbose else logger.debug

    X = validate_feature_matrix(X)
    y = validate_target(y, n_obs=X.shape[0])
    predict_function = _get_predict_function(model)
    n_features = X.shape[1]

    base_score = score(kind, y, _predict(predict_function, X))
    log("Base score (%s): %g", kind.value, base_score)

    # Spawned in feature order, independent of the thread that picks a feature up.
    rngs = options.rng.spawn(n_features)
    # joblib returns the results in the order of the tasks.
    try:
        deltas = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_feature_deltas)(
                predict_function,
                X,
                y,
                feature=j,
                kind=kind,
                base_score=base_score,
                n_repeats=n_repeats,
                rng=rngs[j],
                log=log,
            )
            for j in range(n_features)
        )
    except _PredictFailure as e:
        error = e.args[0]
        raise _model_error(error) from error
    deltas = np.vstack(deltas)

    if options.scale:
        factor = deltas.mean(axis=1).max()
        if factor > 0:
            deltas = deltas / factor
            log("Scaled importances by 1/%g", factor)
        else:
            log("No feature with positive importance, importances are not scaled.")

    means = deltas.mean(axis=1)
    if options.only_means:
        features = tuple(
            FeatureImportance(
                feature=j, importances=None, mean=float(means[j]), std=None
            )
            for j in range(n_features)
        )
    else:
        stds = deltas.std(axis=1)
        features = tuple(
            FeatureImportance(
                feature=j,
                importances=tuple(float(v) for v in deltas[j]),
                mean=float(means[j]),
                std=float(stds[j]),
            )
            for j in range(n_features)
        )

    return ImportanceResult(
        features=features,
        base_score=base_score,
        kind=kind,
        n_repeats=n_repeats,
        scaled=options.scale,
    )
