"""
Global configuration state and functions for management
To a large part taken from scikit-learn.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from importlib.util import find_spec
from numbers import Integral
from typing import Optional

_global_config = {
    "plot_backend": "matplotlib",
    "n_jobs": None,
}


def get_config() -> dict:
    """Retrieve current values for configuration set by :func:`set_config`.

    Returns
    -------
    config : dict
        A copy of the configuration dictionary. Keys are parameter names that can be
        passed to :func:`set_config`.

    See Also
    --------
    config_context : Context manager for global feature-importance configuration.
    set_config : Set global feature-importance configuration.

    Examples
    --------
    >>> import feature_importance
    >>> config = feature_importance.get_config()
    >>> config.keys()
    dict_keys([...])
    """
    # Return a copy of the global config so that users will
    # not be able to modify the configuration with the returned dict.
    return _global_config.copy()


def _validate_n_jobs(n_jobs) -> None:
    if n_jobs is None:
        return
    if isinstance(n_jobs, bool) or not isinstance(n_jobs, Integral) or n_jobs == 0:
        msg = f"The n_jobs must be None or a non-zero integer, got {n_jobs}."
        raise ValueError(msg)


def set_config(
    plot_backend: Optional[str] = None,
    n_jobs: Optional[int] = None,
) -> None:
    """Set global feature-importance configuration.

    Parameters
    ----------
    plot_backend : str, default=None
        The library used for plotting. Can be "matplotlib" or "plotly".
        If None, the existing value won't change. Global default: "matplotlib".
    n_jobs : int, default=None
        Number of worker threads used by
        [`importance`][feature_importance.xai.importance] when its own `n_jobs`
        option is None. Use -1 for all cores. If None, the existing value won't
        change. Global default: None, i.e. a single thread.

    See Also
    --------
    config_context : Context manager for global feature-importance configuration.
    get_config : Retrieve current values of the global configuration.

    Examples
    --------
    >>> from feature_importance import set_config
    >>> set_config(n_jobs=2)  # doctest: +SKIP
    """
    if plot_backend not in (None, "matplotlib", "plotly"):
        msg = f"The plot_backend must be matplotlib or plotly, got {plot_backend}."
        raise ValueError(msg)
    if plot_backend == "plotly" and not find_spec("plotly"):
        msg = (
            "In order to set the plot backend to plotly, plotly must be installed, "
            "i.e. via `pip install plotly`."
        )
        raise ModuleNotFoundError(msg)
    _validate_n_jobs(n_jobs)

    if plot_backend is not None:
        _global_config["plot_backend"] = plot_backend
    if n_jobs is not None:
        _global_config["n_jobs"] = n_jobs


@contextmanager
def config_context(
    *,
    plot_backend: Optional[str] = None,
    n_jobs: Optional[int] = None,
) -> Iterator[None]:
    """Context manager for global feature-importance configuration.

    Parameters
    ----------
    plot_backend : str, default=None
        The library used for plotting. Can be "matplotlib" or "plotly".
        If None, the existing value won't change. Global default: "matplotlib".
    n_jobs : int, default=None
        Number of worker threads used by
        [`importance`][feature_importance.xai.importance]. If None, the existing
        value won't change. Global default: None, i.e. a single thread.

    Yields
    ------
    None.

    See Also
    --------
    set_config : Set global feature-importance configuration.
    get_config : Retrieve current values of the global configuration.

    Notes
    -----
    All settings, not just those presently modified, will be returned to
    their previous values when the context manager is exited.

    Examples
    --------
    >>> import feature_importance
    >>> from feature_importance.xai import importance
    >>> with feature_importance.config_context(n_jobs=4):  # doctest: +SKIP
    ...    importance(model, X, y)
    """
    old_config = get_config()
    set_config(
        plot_backend=plot_backend,
        n_jobs=n_jobs,
    )

    try:
        yield
    finally:
        # set_config treats None as "unchanged", so restore the dict directly.
        _global_config.clear()
        _global_config.update(old_config)
