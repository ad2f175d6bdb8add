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
Matrices derived from a network with branch lengths: the Brownian motion
covariance among nodes (shared path lengths), the average path length between
taxa, and the proportion of each taxon's genome inherited through each node.

All of these are computed with a single pass over the nodes in pre-order, so
that the values of a node's parents are known before the node itself.

Release Version: 1.0.0
"""

from __future__ import annotations
import numpy as np
import pandas as pd

from .Network import Network, NetworkError, Node, Edge
from .Settings import DEFAULT_TIP_COLUMN


class NodeMatrix:
    """
    A square matrix indexed by the nodes of a network, stored in pre-order.
    """

    def __init__(self, nodes : list[Node], values : np.ndarray) -> None:
        """
        Args:
            nodes (list[Node]): the nodes, in the row/column order of values.
            values (np.ndarray): a len(nodes) x len(nodes) array.
        Returns:
            N/A
        """
        self.nodes : list[Node] = nodes
        self.values : np.ndarray = values
        self.index : dict[Node, int] = {n : i for i, n in enumerate(nodes)}

    @property
    def labels(self) -> list[str]:
        return [n.label for n in self.nodes]

    def get(self, n1 : Node, n2 : Node) -> float:
        return float(self.values[self.index[n1], self.index[n2]])

    def submatrix(self, labels : list[str]) -> np.ndarray:
        """
        The block of the matrix for the given node labels, in the given order.

        Raises:
            NetworkError: if a label is not a node of the network.
        """
        by_label = {n.label : i for n, i in self.index.items()}
        missing = [lab for lab in labels if lab not in by_label]
        if missing:
            raise NetworkError(f"Taxa not found in the network: {missing}")
        idx = [by_label[lab] for lab in labels]
        return self.values[np.ix_(idx, idx)]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.values, index = self.labels,
                            columns = self.labels)

def _parent_data(net : Network,
                 node : Node,
                 index : dict[Node, int]) -> tuple[list[int], np.ndarray,
                                                   np.ndarray]:
    """
    Parent positions, inheritance probabilities, and edge lengths of a node's
    parent edges. A tree edge always counts with weight 1.
    """
    in_edges = net.in_edges(node)
    parents = [index[e.src] for e in in_edges]
    if len(in_edges) == 1:
        gammas = np.ones(1)
    else:
        gammas = np.array([e.get_gamma() for e in in_edges])
    lengths = np.array([e.get_length() for e in in_edges], dtype = float)
    return parents, gammas, lengths

def shared_path_matrix(net : Network) -> NodeMatrix:
    """
    Covariance of a Brownian motion (with unit rate, started at 0 at the root)
    between every pair of nodes. For a tree this is the length of the path
    shared from the root. A reticulation's value is the gamma weighted average
    of its parents' values:

        V[h, x] = sum_k gamma_k V[p_k, x]
        V[h, h] = sum_k,l gamma_k gamma_l V[p_k, p_l] + sum_k gamma_k^2 t_k

    Raises:
        NetworkError: if an edge has no length, or the network has no single
                      root.
    Args:
        net (Network): a network with branch lengths.
    Returns:
        NodeMatrix: the covariance, with nodes in pre-order.
    """
    net.check_lengths()
    order = net.preorder()
    index = {node : i for i, node in enumerate(order)}
    V = np.zeros((len(order), len(order)))

    for i, node in enumerate(order):
        if i == 0:
            continue
        parents, gammas, lengths = _parent_data(net, node, index)
        V[i, :i] = gammas @ V[parents, :i]
        V[:i, i] = V[i, :i]
        parent_block = V[np.ix_(parents, parents)] + np.diag(lengths)
        V[i, i] = gammas @ parent_block @ gammas

    return NodeMatrix(order, V)

def vcv(net : Network, taxa : list[str] | None = None) -> pd.DataFrame:
    """
    Brownian motion covariance between taxa, i.e. the tip block of the shared
    path matrix.

    Args:
        net (Network): a network with branch lengths.
        taxa (list[str], optional): the taxa, and their order. Defaults to all
                                    tips in network order.
    Returns:
        pd.DataFrame: taxa x taxa covariance.
    """
    taxa = taxa if taxa is not None else net.tip_labels()
    values = shared_path_matrix(net).submatrix(list(taxa))
    return pd.DataFrame(values, index = taxa, columns = taxa)

def pagel_lambda(V : np.ndarray | pd.DataFrame,
                 lam : float) -> np.ndarray | pd.DataFrame:
    """
    Pagel's lambda transformation: covariances are multiplied by lambda and
    variances are kept.

    Args:
        V (np.ndarray | pd.DataFrame): a covariance matrix.
        lam (float): lambda, usually in [0, 1].
    Returns:
        same type as V: the transformed matrix.
    """
    values = np.asarray(V, dtype = float)
    out = lam * values
    np.fill_diagonal(out, np.diag(values))
    if isinstance(V, pd.DataFrame):
        return pd.DataFrame(out, index = V.index, columns = V.columns)
    return out

###################
#### DISTANCES ####
###################

def distance_coefficients(net : Network,
                          parameters : list[Edge] | None = None,
                          taxa : list[str] | None = None) \
                          -> tuple[list[tuple[str, str]], np.ndarray, np.ndarray]:
    """
    Write the average path length between each pair of taxa as a linear
    function of edge lengths. Walking through the nodes in pre-order:

        D[c, x] = D[p, x] + t                       (tree node c)
        D[h, x] = sum_k gamma_k (D[p_k, x] + t_k)   (reticulation h)

    so that every distance is "coefficients . lengths + offset", where edges
    that are not parameters contribute their current length to the offset.

    Raises:
        NetworkError: if a non parameter edge has no length.
    Args:
        net (Network): a network.
        parameters (list[Edge], optional): the edges whose lengths are
                                           unknown. Defaults to every edge.
        taxa (list[str], optional): taxa to include. Defaults to all tips.
    Returns:
        tuple: the taxon pairs (i < j in taxa order), a (pairs x parameters)
               coefficient matrix, and the vector of offsets.
    """
    parameters = parameters if parameters is not None else net.E()
    param_index = {edge : k for k, edge in enumerate(parameters)}
    for edge in net.E():
        if edge not in param_index and edge.get_length() is None:
            raise NetworkError(f"Edge {edge.to_names()} has no length and is \
not a parameter.")

    order = net.preorder()
    index = {node : i for i, node in enumerate(order)}
    m = len(parameters)
    # last slot holds the constant term
    C = np.zeros((len(order), len(order), m + 1))

    def edge_vector(edge : Edge) -> np.ndarray:
        vec = np.zeros(m + 1)
        if edge in param_index:
            vec[param_index[edge]] = 1.0
        else:
            vec[m] = edge.get_length()
        return vec

    for i, node in enumerate(order):
        if i == 0:
            continue
        in_edges = net.in_edges(node)
        gammas = [1.0] if len(in_edges) == 1 else [e.get_gamma()
                                                  for e in in_edges]
        row = np.zeros((i, m + 1))
        for gamma, edge in zip(gammas, in_edges):
            row += gamma * (C[index[edge.src], :i] + edge_vector(edge))
        C[i, :i] = row
        C[:i, i] = row

    taxa = taxa if taxa is not None else net.tip_labels()
    by_label = {n.label : i for n, i in index.items()}
    missing = [t for t in taxa if t not in by_label]
    if missing:
        raise NetworkError(f"Taxa not found in the network: {missing}")

    pairs : list[tuple[str, str]] = []
    rows : list[np.ndarray] = []
    for a in range(len(taxa)):
        for b in range(a + 1, len(taxa)):
            pairs.append((taxa[a], taxa[b]))
            rows.append(C[by_label[taxa[a]], by_label[taxa[b]]])

    coef = np.array(rows).reshape(len(pairs), m + 1)
    return pairs, coef[:, :m], coef[:, m]

def pairwise_taxon_distance_matrix(net : Network,
                                   taxa : list[str] | None = None) -> pd.DataFrame:
    """
    Average path length between taxa, where the two paths through a
    reticulation are averaged with weights gamma.

    Args:
        net (Network): a network with branch lengths.
        taxa (list[str], optional): taxa to include. Defaults to all tips.
    Returns:
        pd.DataFrame: symmetric taxa x taxa distances, 0 on the diagonal.
    """
    net.check_lengths()
    taxa = taxa if taxa is not None else net.tip_labels()
    pairs, _, offset = distance_coefficients(net, [], taxa)
    D = pd.DataFrame(0.0, index = taxa, columns = taxa)
    for (a, b), d in zip(pairs, offset):
        D.loc[a, b] = d
        D.loc[b, a] = d
    return D

#####################
#### DESCENDENCE ####
#####################

def descendence_matrix(net : Network) -> pd.DataFrame:
    """
    Expected proportion of each taxon's genome that was inherited through each
    node: 1 for the taxon itself, and for other nodes the gamma weighted sum
    over their child edges.

    Args:
        net (Network): a network.
    Returns:
        pd.DataFrame: taxa x nodes (nodes in pre-order).
    """
    order = net.preorder()
    tips = net.tip_labels()
    tip_index = {lab : k for k, lab in enumerate(tips)}
    W : dict[Node, np.ndarray] = {}

    for node in reversed(order):
        col = np.zeros(len(tips))
        if net.out_degree(node) == 0:
            col[tip_index[node.label]] = 1.0
        for edge in net.out_edges(node):
            gamma = edge.get_gamma() if net.in_degree(edge.dest) > 1 else 1.0
            col += gamma * W[edge.dest]
        W[node] = col

    return pd.DataFrame(np.column_stack([W[n] for n in order]),
                        index = tips, columns = [n.label for n in order])

def regressor_hybrid(net : Network,
                     tip_column : str = DEFAULT_TIP_COLUMN) -> pd.DataFrame:
    """
    Predictors for a shift in trait value at each reticulation: the column
    "shift_<hybrid>" is the proportion of a taxon's genome inherited through
    that hybrid node. Merge with a trait table on the tip column to test
    for transgressive evolution.

    Args:
        net (Network): a network.
        tip_column (str, optional): name of the taxon column.
    Returns:
        pd.DataFrame: tip column and one shift column per reticulation.
    """
    W = descendence_matrix(net)
    out = pd.DataFrame({tip_column : list(W.index)})
    for hybrid in net.hybrids():
        out["shift_" + hybrid.label] = W[hybrid.label].to_numpy()
    return out
