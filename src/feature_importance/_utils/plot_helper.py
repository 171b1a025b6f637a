import sys

import matplotlib as mpl


def get_xlabel(ax):
    if isinstance(ax, mpl.axes.Axes):
        return ax.get_xlabel()
    else:
        # ax = plotly figure
        return ax.layout.xaxis.title.text


def get_title(ax):
    if isinstance(ax, mpl.axes.Axes):
        return ax.get_title()
    else:
        # ax = plotly figure
        return ax.layout.title.text


def is_plotly_figure(x):
    """Return True if the x is a plotly figure."""
    try:
        plotly = sys.modules["plotly"]
    except KeyError:
        return False
    return isinstance(x, plotly.graph_objects.Figure)
