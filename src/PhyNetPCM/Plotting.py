#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyNetPCM --
##  Library for Phylogenetic Comparative Methods on Phylogenetic Networks
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##
##  See "LICENSE.txt" for terms and conditions of usage.
##
##  If you use this work or any portion thereof in published work,
##  please cite it as:
##
##     Mark Kessler, Luay Nakhleh. 2025.
##
##############################################################################

"""
Figures of networks and analysis results, drawn with matplotlib.

Networks are drawn as rectangular cladograms of their major tree, with the
root on the left. Minor hybrid edges are dashed.

Release Version: 1.0.0
"""

from __future__ import annotations
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from matplotlib.axes import Axes
from matplotlib.figure import Figure
from matplotlib.patches import Patch, Wedge
from matplotlib.transforms import ScaledTranslation

from .Network import Network, Node
from .Settings import (FIGURE_SIZE, MAJOR_EDGE_COLOR, MINOR_EDGE_COLOR)


def network_layout(net : Network,
                   use_edge_length : bool = True) -> dict[str, tuple[float, float]]:
    """
    Coordinates of every node. x is the distance from the root (in edge
    lengths, or in number of edges when lengths are unknown or not used), y
    places the tips one unit apart in the order of the major tree, and an
    internal node is centred on the children it reaches through major edges.

    Args:
        net (Network): a network.
        use_edge_length (bool, optional): Defaults to True.
    Returns:
        dict[str, tuple[float, float]]: node label -> (x, y).
    """
    order = net.preorder()
    if any(e.get_length() is None for e in net.E()):
        use_edge_length = False

    x : dict[Node, float] = {}
    for node in order:
        in_edges = net.in_edges(node)
        if len(in_edges) == 0:
            x[node] = 0.0
            continue
        major = net.major_parent_edge(node)
        step = major.get_length() if use_edge_length else 1.0
        x[node] = x[major.src] + step
        if not use_edge_length:
            x[node] = max(x[e.src] + 1.0 for e in in_edges)

    def major_children(node : Node) -> list[Node]:
        return [e.dest for e in net.out_edges(node)
                if net.major_parent_edge(e.dest) is e]

    # tips in depth first order of the major tree
    y : dict[Node, float] = {}
    stack = [order[0]]
    tip_count = 0
    while stack:
        cur = stack.pop()
        kids = major_children(cur)
        if net.out_degree(cur) == 0:
            y[cur] = float(tip_count)
            tip_count += 1
        stack.extend(reversed(kids))

    for node in reversed(order):
        if node in y:
            continue
        kids = major_children(node) or net.get_children(node)
        y[node] = float(np.mean([y[k] for k in kids]))

    return {node.label : (x[node], y[node]) for node in order}

def _new_axes(ax : Axes | None) -> tuple[Figure, Axes]:
    if ax is None:
        return plt.subplots(figsize = FIGURE_SIZE)
    return ax.figure, ax

def plot_network(net : Network,
                 ax : Axes | None = None,
                 node_labels : dict[str, str] | None = None,
                 edge_labels : dict[tuple[str, str], str] | None = None,
                 show_gamma : bool = True,
                 use_edge_length : bool = True,
                 title : str | None = None) -> tuple[Figure, Axes]:
    """
    Draw a network. Major edges are solid, minor hybrid edges dashed, and both
    parent edges of a reticulation are coloured.

    Args:
        net (Network): a network.
        ax (Axes, optional): draw into these axes. Defaults to new axes.
        node_labels (dict[str, str], optional): text to show next to nodes,
                                                by node label.
        edge_labels (dict[tuple[str, str], str], optional): text to show on
                                                            edges, by (parent,
                                                            child) labels.
        show_gamma (bool, optional): write the inheritance probability on
                                     hybrid edges. Defaults to True.
        use_edge_length (bool, optional): Defaults to True.
        title (str, optional): axes title.
    Returns:
        tuple[Figure, Axes]: the figure and axes.
    """
    fig, ax = _new_axes(ax)
    pos = network_layout(net, use_edge_length)

    for edge in net.E():
        (x0, y0), (x1, y1) = pos[edge.src.label], pos[edge.dest.label]
        hybrid = net.in_degree(edge.dest) > 1
        color = MINOR_EDGE_COLOR if hybrid else MAJOR_EDGE_COLOR
        if hybrid and not edge.is_major():
            ax.plot([x0, x1], [y0, y1], linestyle = "--", color = color,
                    linewidth = 1.2)
            mid = ((x0 + x1) / 2, (y0 + y1) / 2)
        else:
            ax.plot([x0, x0, x1], [y0, y1, y1], color = color, linewidth = 1.2)
            mid = ((x0 + x1) / 2, y1)

        text = None
        if edge_labels is not None and edge.to_names() in edge_labels:
            text = edge_labels[edge.to_names()]
        elif show_gamma and hybrid:
            text = f"{edge.get_gamma():.2f}"
        if text is not None:
            ax.annotate(text, mid, textcoords = "offset points",
                        xytext = (0, 3), ha = "center", fontsize = 8,
                        color = color)

    for node in net.get_leaves():
        xt, yt = pos[node.label]
        ax.annotate(node.label, (xt, yt), textcoords = "offset points",
                    xytext = (4, 0), va = "center", fontsize = 9)

    if node_labels is not None:
        for label, text in node_labels.items():
            if label not in pos:
                continue
            xt, yt = pos[label]
            is_tip = net.out_degree(net.has_node_named(label)) == 0
            ax.annotate(text, (xt, yt), textcoords = "offset points",
                        xytext = (4, -10) if is_tip else (-4, 4),
                        ha = "left" if is_tip else "right", fontsize = 8,
                        color = "tab:red")

    ax.set_yticks([])
    ax.invert_yaxis()
    for side in ("left", "right", "top"):
        ax.spines[side].set_visible(False)
    if title is not None:
        ax.set_title(title)
    xs = [p[0] for p in pos.values()]
    span = max(xs) - min(xs) or 1.0
    ax.set_xlim(min(xs) - 0.05 * span, max(xs) + 0.3 * span)
    return fig, ax

def plot_discrete_states(net : Network,
                         posteriors : pd.DataFrame,
                         trait : str | None = None,
                         ax : Axes | None = None,
                         radius : float = 0.12,
                         title : str | None = None) -> tuple[Figure, Axes]:
    """
    Draw a network with a pie chart of the state probabilities at each node.

    Args:
        net (Network): a network.
        posteriors (pd.DataFrame): output of discrete_ancestral_states.
        trait (str, optional): which trait to show. Defaults to the first.
        ax (Axes, optional): Defaults to new axes.
        radius (float, optional): pie radius in inches. Defaults to 0.12.
        title (str, optional): axes title.
    Returns:
        tuple[Figure, Axes]: the figure and axes.
    """
    fig, ax = plot_network(net, ax = ax, show_gamma = True, title = title)
    pos = network_layout(net)
    if trait is None:
        trait = posteriors["trait"].iloc[0]
    table = posteriors[posteriors["trait"] == trait]
    states = [c for c in posteriors.columns
              if c not in ("trait", "nodeNumber", "nodeLabel")]
    colors = plt.get_cmap("tab10").colors

    for _, row in table.iterrows():
        label = row["nodeLabel"]
        if label not in pos:
            continue
        # pie drawn in inches around the node, so it stays round
        transform = fig.dpi_scale_trans + ScaledTranslation(*pos[label],
                                                             ax.transData)
        start = 90.0
        for k, state in enumerate(states):
            sweep = 360.0 * float(row[state])
            if sweep > 0:
                ax.add_patch(Wedge((0, 0), radius, start, start + sweep,
                                   facecolor = colors[k % len(colors)],
                                   edgecolor = "white", linewidth = 0.5,
                                   transform = transform, zorder = 3))
            start += sweep

    ax.legend(handles = [Patch(color = colors[k % len(colors)], label = s)
                         for k, s in enumerate(states)],
              title = trait, loc = "best", fontsize = 8)
    return fig, ax

def plot_regression(fit,
                    data : pd.DataFrame,
                    x : str,
                    y : str,
                    ax : Axes | None = None,
                    title : str | None = None) -> tuple[Figure, Axes]:
    """
    Scatter plot of a response against a predictor, with the fitted line of a
    regression "y ~ x" when a fit is given.

    Args:
        fit (PhyloNetworkLinearModel | None): a fitted regression, or None.
        data (pd.DataFrame): the data.
        x (str): predictor column.
        y (str): response column.
        ax (Axes, optional): Defaults to new axes.
        title (str, optional): axes title.
    Returns:
        tuple[Figure, Axes]: the figure and axes.
    """
    fig, ax = _new_axes(ax)
    ax.scatter(data[x], data[y], color = "tab:gray", alpha = 0.8, s = 20)
    if fit is not None and x in fit.coef.index:
        grid = np.linspace(float(data[x].min()), float(data[x].max()), 50)
        intercept = float(fit.coef.get("Intercept", 0.0))
        ax.plot(grid, intercept + float(fit.coef[x]) * grid,
                color = MINOR_EDGE_COLOR, label = fit.formula)
        ax.legend(fontsize = 8)
    ax.set_xlabel(x)
    ax.set_ylabel(y)
    if title is not None:
        ax.set_title(title)
    return fig, ax
