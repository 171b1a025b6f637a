import logging
import threading

import numpy as np
import polars as pl
import pytest
from numpy.testing import assert_allclose, assert_array_equal
from polars.testing import assert_frame_equal
from sklearn.ensemble import RandomForestRegressor
from sklearn.linear_model import LinearRegression, LogisticRegression

from feature_importance import InvalidInputError, ModelError, config_context
from feature_importance.scoring import ScoreKind
from feature_importance.xai import (
    FeatureImportance,
    ImportanceOptions,
    ImportanceResult,
    importance,
    model_score,
    shuffle_column,
)

X_SUM = np.array([[1.0, 0.0, 3.0], [4.0, 0.0, 6.0], [7.0, 0.0, 9.0]])
Y_SUM = np.array([4.0, 10.0, 16.0])


def row_sum(X):
    return X.sum(axis=1)


class RowSumModel:
    def predict(self, X):
        return np.asarray(X).sum(axis=1)


@pytest.fixture
def regression_data():
    rng = np.random.default_rng(42)
    n = 200
    X = rng.normal(size=(n, 3))
    y = 3 * X[:, 0] + X[:, 1] + rng.normal(scale=0.1, size=n)
    return X, y


def test_shuffle_column_is_permutation():
    rng = np.random.default_rng(0)
    X = rng.normal(size=(50, 4))
    X_orig = X.copy()
    X_shuffled = shuffle_column(X, 2, rng=1)

    # Input not modified.
    assert_array_equal(X, X_orig)
    # Other columns untouched.
    assert_array_equal(np.delete(X_shuffled, 2, axis=1), np.delete(X, 2, axis=1))
    # Same multiset of values.
    assert_array_equal(np.sort(X_shuffled[:, 2]), np.sort(X[:, 2]))
    assert not np.array_equal(X_shuffled[:, 2], X[:, 2])


def test_shuffle_column_reproducible():
    X = [[i, 10 * i] for i in range(20)]
    assert_array_equal(shuffle_column(X, 0, rng=3), shuffle_column(X, 0, rng=3))
    assert_array_equal(
        shuffle_column(X, 1, rng=np.random.default_rng(5)),
        shuffle_column(X, 1, rng=np.random.default_rng(5)),
    )


def test_shuffle_column_does_not_modify_list_input():
    X = [[1, 2], [3, 4], [5, 6]]
    _ = shuffle_column(X, 0, rng=0)
    assert X == [[1, 2], [3, 4], [5, 6]]


@pytest.mark.parametrize("col_index", [2, -3])
def test_shuffle_column_raises(col_index):
    with pytest.raises(InvalidInputError, match="out of range"):
        shuffle_column(np.ones((3, 2)), col_index, rng=0)


@pytest.mark.parametrize("model", [row_sum, RowSumModel()])
@pytest.mark.parametrize("kind", ["mse", "mae", "rmse", "smape"])
def test_row_sum_example(model, kind):
    """A constant zero column is never important for a row sum model."""
    result = importance(model, X_SUM, Y_SUM, kind=kind, n=20, rng=0)

    assert result.base_score == pytest.approx(0)
    assert [f.feature for f in result] == [0, 1, 2]
    assert result[1].mean == 0
    assert result[1].std == 0
    assert result[0].mean > 0
    assert result[2].mean > 0
    assert result.ranking()[-1] == 1


@pytest.mark.parametrize("n", [1, 3, 7])
@pytest.mark.parametrize("n_jobs", [1, 2])
def test_importance_shapes(regression_data, n, n_jobs):
    X, y = regression_data
    lr = LinearRegression().fit(X, y)
    result = importance(lr, X, y, n=n, n_jobs=n_jobs, rng=1)

    assert isinstance(result, ImportanceResult)
    assert len(result) == 3
    assert result.n_repeats == n
    assert result.kind is ScoreKind.MSE
    for j, f in enumerate(result):
        assert isinstance(f, FeatureImportance)
        assert f.feature == j
        assert len(f.importances) == n
        assert f.mean == pytest.approx(np.mean(f.importances))
        # population standard deviation
        assert f.std == pytest.approx(np.std(f.importances, ddof=0))
    assert result.importances.shape == (3, n)


def test_importance_finds_important_features(regression_data):
    X, y = regression_data
    lr = LinearRegression().fit(X, y)
    result = importance(lr, X, y, n=10, rng=0)

    assert result.ranking() == [0, 1, 2]
    # Feature 2 is irrelevant and has a tiny coefficient.
    assert result[2].mean == pytest.approx(0, abs=1e-2)
    assert result[0].mean > result[1].mean > 0.5


def test_importance_ignored_feature_is_zero(regression_data):
    """A column the model never looks at has exactly zero importance."""
    X, y = regression_data

    def predict(X):
        return 3 * X[:, 0] + X[:, 1]

    result = importance(predict, X, y, n=5, rng=0)
    assert result[2].mean == 0
    assert result[2].importances == (0.0,) * 5


@pytest.mark.parametrize("kind", list(ScoreKind))
def test_importance_deterministic(kind):
    rng = np.random.default_rng(3)
    X = rng.uniform(size=(40, 3))
    y = (X[:, 0] > 0.5).astype(float)

    def predict(X):
        return np.clip(0.9 * X[:, 0] + 0.1 * X[:, 1], 0, 1)

    r1 = importance(predict, X, y, kind=kind, n=4, rng=11)
    r2 = importance(predict, X, y, kind=kind, n=4, rng=11)
    assert r1 == r2


def test_importance_independent_of_n_jobs(regression_data):
    X, y = regression_data
    rf = RandomForestRegressor(n_estimators=10, random_state=0).fit(X, y)
    r1 = importance(rf, X, y, n=3, n_jobs=1, rng=5)
    r2 = importance(rf, X, y, n=3, n_jobs=3, rng=5)
    with config_context(n_jobs=2):
        r3 = importance(rf, X, y, n=3, rng=5)
    assert r1 == r2 == r3


def test_single_job_runs_in_calling_thread(regression_data):
    X, y = regression_data
    thread_ids = set()
    lock = threading.Lock()

    def predict(X):
        with lock:
            thread_ids.add(threading.get_ident())
        return X[:, 0]

    with config_context(n_jobs=1):
        importance(predict, X, y, n=2, rng=0)
    assert thread_ids == {threading.get_ident()}


def test_accuracy_polarity():
    """For greater-is-better scores, importance is base minus permuted score."""
    rng = np.random.default_rng(0)
    X = rng.uniform(size=(300, 2))
    y = (X[:, 0] > 0.5).astype(float)
    clf = LogisticRegression().fit(X, y)

    def predict(X):
        return clf.predict_proba(X)[:, 1]

    result = importance(predict, X, y, kind="acc", n=5, rng=0)
    assert result.base_score > 0.9
    assert result[0].mean > 0.2
    assert result.ranking()[0] == 0

    result_ce = importance(predict, X, y, kind="ce", n=5, rng=0)
    assert result_ce[0].mean > 0
    assert result_ce.ranking()[0] == 0


def test_only_means(regression_data):
    X, y = regression_data
    lr = LinearRegression().fit(X, y)
    full = importance(lr, X, y, n=4, rng=2)
    means = importance(lr, X, y, n=4, rng=2, only_means=True)

    assert means.only_means
    for f in means:
        assert f.importances is None
        assert f.std is None
    assert means.stds is None
    assert means.importances is None
    assert_array_equal(means.means, full.means)


@pytest.mark.parametrize("kind", ["mse", "mae", "acc"])
def test_scale(regression_data, kind):
    X, y = regression_data
    if kind == "acc":
        y = (y > 0).astype(float)

        def model(X):
            return (3 * X[:, 0] + X[:, 1] > 0).astype(float)
    else:
        model = LinearRegression().fit(X, y)

    raw = importance(model, X, y, kind=kind, n=5, rng=7)
    scaled = importance(model, X, y, kind=kind, n=5, rng=7, scale=True)

    assert scaled.scaled
    assert not raw.scaled
    assert scaled.ranking() == raw.ranking()
    assert scaled.means.max() == pytest.approx(1)
    factor = raw.means.max()
    assert_allclose(scaled.means, raw.means / factor)
    assert_allclose(scaled.stds, raw.stds / factor)
    assert_allclose(scaled.importances, raw.importances / factor)


def test_scale_without_positive_importance():
    """Without any important feature, no rescaling takes place."""
    X = np.arange(12, dtype=float).reshape(4, 3)
    y = np.ones(4)

    def predict(X):
        return np.ones(X.shape[0])

    result = importance(predict, X, y, n=2, rng=0, scale=True)
    assert_array_equal(result.means, np.zeros(3))


def test_options_object_and_kwargs(regression_data):
    X, y = regression_data
    lr = LinearRegression().fit(X, y)
    options = ImportanceOptions(kind="mae", n=3, rng=4)
    r1 = importance(lr, X, y, options)
    r2 = importance(lr, X, y, kind=ScoreKind.MAE, n=3, rng=4)
    assert r1 == r2
    r3 = importance(lr, X, y, options, n=2)
    assert r3.n_repeats == 2
    assert r3.kind is ScoreKind.MAE


def test_verbose_does_not_change_result(regression_data, caplog):
    X, y = regression_data
    lr = LinearRegression().fit(X, y)
    logger_name = "feature_importance.xai.permutation_importance"

    def logged():
        return [r.getMessage() for r in caplog.records if r.name == logger_name]

    with caplog.at_level(logging.INFO, logger=logger_name):
        quiet = importance(lr, X, y, n=3, rng=9, scale=True)
    assert logged() == []

    with caplog.at_level(logging.INFO, logger=logger_name):
        loud = importance(lr, X, y, n=3, rng=9, scale=True, verbose=True)
    messages = logged()
    assert messages[0].startswith("Base score (mse)")
    for j in range(3):
        assert any(m.startswith(f"Feature {j}: mean importance") for m in messages)
    assert messages[-1].startswith("Scaled importances by")

    assert quiet == loud


def test_no_side_effects(regression_data):
    """Test that importance() does not modify its input."""
    X, y = regression_data
    X_orig, y_orig = X.copy(), y.copy()
    lr = LinearRegression().fit(X, y)
    _ = importance(lr, X, y, n=2, rng=0)
    assert_array_equal(X, X_orig)
    assert_array_equal(y, y_orig)


def test_accepts_lists_and_polars():
    X = X_SUM.tolist()
    ref = importance(row_sum, X_SUM, Y_SUM, n=3, rng=0)
    assert importance(row_sum, X, Y_SUM.tolist(), n=3, rng=0) == ref
    X_pl = pl.DataFrame(X_SUM, schema=["a", "b", "c"], orient="row")
    assert importance(row_sum, X_pl, pl.Series(Y_SUM), n=3, rng=0) == ref


def test_to_polars():
    result = importance(row_sum, X_SUM, Y_SUM, n=3, rng=0)
    df = result.to_polars()
    expected = pl.DataFrame(
        {
            "feature": [0, 1, 2],
            "importance": result.means,
            "standard_deviation": result.stds,
        }
    )
    assert_frame_equal(df, expected)

    df_sorted = result.to_polars(sort=True)
    assert df_sorted["feature"][-1] == 1
    assert df_sorted["feature"].to_list() == result.ranking()

    result_means = importance(row_sum, X_SUM, Y_SUM, n=3, rng=0, only_means=True)
    assert result_means.to_polars()["standard_deviation"].null_count() == 3


def test_model_score():
    assert model_score(row_sum, X_SUM, Y_SUM) == 0
    assert model_score(RowSumModel(), X_SUM, Y_SUM + 1, kind="mae") == 1


@pytest.mark.parametrize(
    ("X", "y", "kwargs", "msg"),
    [
        (X_SUM, Y_SUM, {"n": 0}, "Argument n must be an integer >= 1, got 0"),
        (X_SUM, Y_SUM, {"n": -2}, "Argument n must be an integer >= 1"),
        (X_SUM, Y_SUM, {"n": 2.5}, "Argument n must be an integer >= 1"),
        (X_SUM, Y_SUM, {"n": True}, "Argument n must be an integer >= 1"),
        (X_SUM, Y_SUM, {"kind": "r2"}, "Unknown scoring kind 'r2'"),
        (X_SUM, Y_SUM, {"n_jobs": 0}, "The n_jobs must be None or a non-zero"),
        (X_SUM, Y_SUM, {"rng": -1}, "Argument rng must be None, a non-negative"),
        (X_SUM, Y_SUM, {"rng": "abc"}, "Argument rng must be None, a non-negative"),
        (X_SUM, Y_SUM, {"rng": 1.5}, "Argument rng must be None, a non-negative"),
        (X_SUM, Y_SUM, {"scale": "no"}, "Argument scale must be a bool, got 'no'"),
        (X_SUM, Y_SUM, {"only_means": 1}, "Argument only_means must be a bool"),
        (X_SUM, Y_SUM, {"verbose": None}, "Argument verbose must be a bool"),
        ([[1, 2], [3]], [1, 2], {}, "X must be a rectangular array"),
        (np.empty((0, 3)), [], {}, "X must have at least one row and one column"),
        (X_SUM, Y_SUM[:2], {}, "X and y must have the same number of observations"),
    ],
)
def test_importance_raises_invalid_input(X, y, kwargs, msg):
    calls = []

    def predict(X):
        calls.append(1)
        return X.sum(axis=1)

    with pytest.raises(InvalidInputError, match=msg):
        importance(predict, X, y, **kwargs)
    # Validation happens before any prediction.
    assert calls == []


def test_importance_raises_unknown_option():
    with pytest.raises(TypeError, match="Unknown option"):
        importance(row_sum, X_SUM, Y_SUM, n_repeats=3)


@pytest.mark.parametrize("options", [{"n": 3}, "mse", 5])
def test_importance_raises_options_wrong_type(options):
    msg = "Argument options must be an ImportanceOptions or None"
    with pytest.raises(TypeError, match=msg):
        importance(row_sum, X_SUM, Y_SUM, options)


def test_importance_raises_not_a_model():
    with pytest.raises(InvalidInputError, match="must have a predict method"):
        importance(42, X_SUM, Y_SUM)


@pytest.mark.parametrize("n_jobs", [1, 2])
def test_importance_raises_model_error(n_jobs):
    calls = []

    def predict(X):
        calls.append(1)
        if len(calls) > 3:
            raise ArithmeticError("boom")
        return X.sum(axis=1)

    with pytest.raises(ModelError, match="The model failed to predict") as exc_info:
        importance(predict, X_SUM, Y_SUM, n=5, n_jobs=n_jobs, rng=0)
    error = exc_info.value.__cause__
    assert isinstance(error, ArithmeticError)
    assert str(error) == "boom"


@pytest.mark.parametrize("n_jobs", [1, 2])
def test_importance_raises_model_error_in_base_score(n_jobs):
    def predict(X):
        raise KeyError("column")

    with pytest.raises(ModelError, match="The model failed to predict") as exc_info:
        importance(predict, X_SUM, Y_SUM, n_jobs=n_jobs, rng=0)
    assert isinstance(exc_info.value.__cause__, KeyError)


def test_importance_raises_wrong_prediction_shape_in_worker():
    calls = []

    def predict(X):
        calls.append(1)
        if len(calls) > 1:
            return X.sum(axis=1)[:-1]
        return X.sum(axis=1)

    with pytest.raises(ModelError, match="one prediction per row"):
        importance(predict, X_SUM, Y_SUM, n_jobs=2, rng=0)


@pytest.mark.parametrize(
    "predict",
    [
        lambda X: X.sum(axis=1)[:-1],
        lambda X: np.ones((X.shape[0], 2)),
    ],
)
def test_importance_raises_wrong_prediction_shape(predict):
    with pytest.raises(ModelError, match="one prediction per row"):
        importance(predict, X_SUM, Y_SUM, rng=0)
