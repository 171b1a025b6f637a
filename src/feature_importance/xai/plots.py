from collections.abc import Sequence
from typing import Optional

import matplotlib as mpl
import matplotlib.pyplot as plt
import numpy as np
from scipy import special

from feature_importance import get_config
from feature_importance._utils.plot_helper import is_plotly_figure
from feature_importance.xai.permutation_importance import ImportanceResult


def plot_permutation_importance(
    result: ImportanceResult,
    feature_names: Optional[Sequence[str]] = None,
    max_display: Optional[int] = 15,
    error_bars: Optional[str] = "se",
    confidence_level: float = 0.95,
    ax: Optional[mpl.axes.Axes] = None,
):
    """
    Plot permutation feature importance as a horizontal barplot with error bars.

    Note that error bars are representing standard errors of the mean importance
    (over the repetitions). To get standard deviations, use `error_bars="std"`.
    For Student confidence intervals, use `error_bars="ci"` along with the argument
    `confidence_level=0.95`.

    Parameters
    ----------
    result : ImportanceResult
        The output of [`importance`][feature_importance.xai.importance].
    feature_names : sequence of str or None, default=None
        Labels of the features in column order of `X`. The default None uses the
        column indices.
    max_display : int or None, optional
        Maximum number of features to display, by default 15.
        If None, all features are displayed.
    error_bars : str or None, optional
        Error bars to display. Can be "se" (standard error), "std" (standard deviation),
        "ci" (t confidence interval), or None. Default is "se". Only if the result
        has standard deviations and at least 2 repetitions.
    confidence_level: float
        Confidence level of the approximate t confidence interval.
        Default is 0.95. Only used if `error_bars="ci"`.
    ax : matplotlib.axes.Axes or plotly Figure, optional
        Axes object to draw the plot onto, otherwise uses the current Axes.

    Returns
    -------
    ax :
        Either the matplotlib axes or the plotly figure.
    """
    if max_display is not None and max_display < 1:
        msg = f"Argument max_display must be None or >=1, got {max_display}."
        raise ValueError(msg)

    if feature_names is None:
        feature_names = [str(f.feature) for f in result]
    elif len(feature_names) != len(result):
        msg = (
            f"Argument feature_names must have one name per feature, got "
            f"{len(feature_names)} names for {len(result)} features."
        )
        raise ValueError(msg)

    if error_bars is not None:
        if error_bars not in ("se", "std", "ci"):
            msg = (
                f"Argument error_bars must be one of 'se', 'std', 'ci', or None, got "
                f"{error_bars}."
            )
            raise ValueError(msg)
        if error_bars in ("se", "ci") and not (0 < confidence_level < 1):
            msg = (
                f"Argument confidence_level must fulfil 0 < confidence_level < 1, got "
                f"{confidence_level}."
            )
            raise ValueError(msg)
    n_repeats = result.n_repeats
    with_error_bars = (
        error_bars is not None and not result.only_means and n_repeats >= 2
    )

    # Most important feature on top, the plot axes are reversed.
    order = result.ranking()[::-1]
    if max_display is not None:
        order = order[-max_display:]

    labels = [feature_names[i] for i in order]
    importances = result.means[order]

    # length of error bars
    if with_error_bars:
        xerr = result.stds[order]
        if error_bars in ("se", "ci"):
            # population std to sample standard error
            xerr = xerr / np.sqrt(n_repeats - 1)
            if error_bars == "ci":
                xerr *= special.stdtrit(n_repeats - 1, (1 + confidence_level) / 2)
    else:
        xerr = None

    # set-up backend
    if ax is None:
        plot_backend = get_config()["plot_backend"]
        if plot_backend == "matplotlib":
            ax = plt.gca()
        else:
            import plotly.graph_objects as go

            fig = ax = go.Figure()
    elif isinstance(ax, mpl.axes.Axes):
        plot_backend = "matplotlib"
    elif is_plotly_figure(ax):
        plot_backend = "plotly"
        fig = ax
    else:
        msg = (
            "The ax argument must be None, a matplotlib Axes or a plotly Figure, "
            f"got {type(ax)}."
        )
        raise ValueError(msg)

    # bars
    title = "Permutation Feature Importance"
    xlab = "Scaled importance" if result.scaled else "Importance"
    if plot_backend == "matplotlib":
        y_pos = np.arange(len(labels))
        _ = ax.barh(y_pos, importances, xerr=xerr)
        ax.set_yticks(y_pos, labels=labels)
        ax.set_xlabel(xlab)
        ax.set_title(title)
    else:
        fig.add_bar(
            y=labels,
            x=importances,
            orientation="h",
            error_x=None if xerr is None else {"array": xerr, "width": 0},
        )
        fig.update_layout(
            xaxis_title=xlab, yaxis_title=None, title=title, yaxis_type="category"
        )

    return ax
