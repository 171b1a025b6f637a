import numpy as np
import numpy.typing as npt

from feature_importance.exceptions import InvalidInputError, ModelError


def _as_float_array(a: npt.ArrayLike, name: str) -> np.ndarray:
    try:
        return np.asarray(a, dtype=np.float64)
    except (TypeError, ValueError) as e:
        # Ragged rows end up here as well, numpy refuses inhomogeneous shapes.
        msg = f"{name} must be a rectangular array of numbers: {e}"
        raise InvalidInputError(msg) from e


def _as_1d(a: np.ndarray) -> np.ndarray:
    if a.ndim == 2 and a.shape[1] == 1:
        return a[:, 0]
    return a


def validate_feature_matrix(X: npt.ArrayLike) -> np.ndarray:
    """Validate a feature matrix and return it as 2-dimensional float ndarray.

    The returned array is always a copy such that the caller's data is never
    modified.
    """
    X = np.array(_as_float_array(X, "X"), copy=True)
    if X.ndim != 2:
        msg = f"X must be 2-dimensional, got {X.ndim=}."
        raise InvalidInputError(msg)
    if X.shape[0] < 1 or X.shape[1] < 1:
        msg = f"X must have at least one row and one column, got {X.shape=}."
        raise InvalidInputError(msg)
    return X


def validate_target(y: npt.ArrayLike, n_obs: int) -> np.ndarray:
    """Validate a target vector of length `n_obs` and return it as float ndarray."""
    y = _as_1d(_as_float_array(y, "y"))
    if y.ndim != 1:
        msg = f"y must be 1-dimensional, got {y.ndim=}."
        raise InvalidInputError(msg)
    if y.shape[0] != n_obs:
        msg = (
            f"X and y must have the same number of observations, got {n_obs} rows in "
            f"X and {y.shape[0]} values in y."
        )
        raise InvalidInputError(msg)
    return y


def validate_2_arrays(
    a: npt.ArrayLike, b: npt.ArrayLike
) -> tuple[np.ndarray, np.ndarray]:
    """Validate 2 arrays of observations and predictions.

    Both arrays are checked to be 1-dimensional, non-empty and of same length.
    They are returned as float numpy arrays.

    Returns
    -------
    a : ndarray
        Input as an ndarray
    b : ndarray
        Input as an ndarray
    """
    a = _as_1d(_as_float_array(a, "y_true"))
    b = _as_1d(_as_float_array(b, "y_pred"))
    if a.ndim != 1 or b.ndim != 1:
        msg = f"Arrays must be 1-dimensional, got {a.ndim=} and {b.ndim=}."
        raise InvalidInputError(msg)
    if a.shape[0] != b.shape[0]:
        msg = f"Arrays must have the same shape, got {a.shape=} and {b.shape=}."
        raise InvalidInputError(msg)
    if a.shape[0] == 0:
        msg = "Arrays must not be empty."
        raise InvalidInputError(msg)
    return a, b


def validate_predictions(y_pred, n_obs: int) -> np.ndarray:
    """Validate the output of a predict capability for `n_obs` observations."""
    try:
        z = _as_1d(np.asarray(y_pred, dtype=np.float64))
    except (TypeError, ValueError) as e:
        msg = f"The model returned predictions that are not numeric: {e}"
        raise ModelError(msg) from e
    if z.shape != (n_obs,):
        msg = (
            f"The model must return one prediction per row, expected shape "
            f"({n_obs},), got {z.shape}."
        )
        raise ModelError(msg)
    return z
