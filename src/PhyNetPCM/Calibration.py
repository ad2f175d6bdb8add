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
Calibration of network branch lengths from genetic distances.

A network topology usually comes without meaningful edge lengths. Pairwise
distances between species are averaged over gene trees, and the edge lengths
are then chosen so that the network's average path lengths between species
match these distances in the least squares sense.

Release Version: 1.0.0
"""

from __future__ import annotations
import math
import warnings
from typing import Callable
import numpy as np
import pandas as pd
from scipy.optimize import lsq_linear

from .Network import Network, Node, Edge
from .NetworkParser import read_gene_trees
from .Covariance import distance_coefficients, pairwise_taxon_distance_matrix
from .Settings import DISTANCE_NORMALIZATION, MIN_EDGE_LENGTH


#########################
#### EXCEPTION CLASS ####
#########################

class CalibrationError(Exception):
    """
    Raised when gene tree distances cannot be computed, or a network cannot be
    calibrated to them.
    """
    def __init__(self, message : str = "Network Calibration Error") -> None:
        self.message = message
        super().__init__(self.message)

####################
#### GENE TREES ####
####################

class GeneTrees:
    """
    A container for a set of gene trees, whose leaves are individuals that
    are translated into species names by a naming rule.
    """

    def __init__(self,
                 gene_tree_list : list[Network] | None = None,
                 naming_rule : Callable[[str], str] | None = None) -> None:
        """
        Args:
            gene_tree_list (list[Network], optional): gene trees. Defaults to
                                                      None.
            naming_rule (Callable[[str], str], optional): individual name ->
                                                          species name.
                                                          Defaults to the
                                                          identity.
        """
        self.trees : list[Network] = []
        self.taxa_names : set[str] = set()
        self.naming_rule : Callable[[str], str] = naming_rule or (lambda x: x)

        if gene_tree_list is not None:
            for tree in gene_tree_list:
                self.add(tree)

    def add(self, tree : Network) -> None:
        """
        Add a gene tree to the collection, and its leaf labels to the set of
        all gene tree leaf labels.

        Raises:
            CalibrationError: if the gene tree has a reticulation.
        """
        if not tree.is_tree():
            raise CalibrationError("Gene trees cannot have reticulations.")
        self.trees.append(tree)
        for leaf in tree.get_leaves():
            self.taxa_names.add(leaf.label)

    def species_map(self) -> dict[str, list[str]]:
        """
        Group the gene tree leaf labels by species.

        Returns:
            dict[str, list[str]]: species name -> individual names.
        """
        groups : dict[str, list[str]] = {}
        for name in sorted(self.taxa_names):
            groups.setdefault(self.naming_rule(name), []).append(name)
        return groups

def read_gene_tree_directory(directory : str,
                             suffix : str | None = None) -> dict[str, list[Network]]:
    """
    Read every gene tree file in a directory. The file name (without its
    extension) is the gene name.

    Args:
        directory (str): directory of newick files.
        suffix (str, optional): only read files with this ending. Defaults to
                                None (every file).
    Returns:
        dict[str, list[Network]]: gene name -> its tree(s).
    """
    return read_gene_trees(directory, suffix)

def _species_distances(tree : Network,
                       naming_rule : Callable[[str], str]) -> pd.DataFrame:
    """
    Path length distances of one gene tree, averaged over the individuals of
    each species.
    """
    D = pairwise_taxon_distance_matrix(tree)
    species = [naming_rule(name) for name in D.index]
    D.index = species
    D.columns = species
    averaged = D.T.groupby(level = 0, sort = False).mean().T \
                  .groupby(level = 0, sort = False).mean()
    for sp in averaged.index:
        averaged.loc[sp, sp] = 0.0
    return averaged

def gene_tree_distances(trees : dict[str, list[Network]] | list[Network],
                        name_map : dict[str, str] | None = None,
                        taxa : list[str] | None = None,
                        normalize : str | None = DISTANCE_NORMALIZATION) \
                        -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Average the pairwise species distances of a set of gene trees. In each
    gene tree, distances between individuals are path lengths, individuals are
    mapped to species and the distances between individuals of two species are
    averaged. With normalize="median", each tree's distances are divided by
    their median, so that fast and slow genes weigh the same. The trees of a
    gene are averaged first, then the genes. A pair of species that is
    missing from a gene is ignored for that gene.

    Raises:
        CalibrationError: if there are no gene trees, or the normalization is
                          unknown.
    Args:
        trees (dict[str, list[Network]] | list[Network]): gene name -> its
                                                          trees, such as the
                                                          output of
                                                          read_gene_tree_directory,
                                                          or one tree per gene.
        name_map (dict[str, str], optional): individual -> species. Names not
                                             in the map are species names
                                             already. Defaults to None.
        taxa (list[str], optional): species to keep, and their order.
                                    Defaults to every species, sorted.
        normalize (str, optional): "median", or None (or "none") for raw
                                   path lengths. Defaults to
                                   Settings.DISTANCE_NORMALIZATION.
    Returns:
        tuple[pd.DataFrame, pd.DataFrame]: the averaged distances, and the
                                           number of genes behind each
                                           average.
    """
    if isinstance(trees, dict):
        gene_list = [list(gene) for gene in trees.values()]
    else:
        gene_list = [[tree] for tree in trees]
    tree_list = [tree for gene in gene_list for tree in gene]
    if len(tree_list) == 0:
        raise CalibrationError("No gene trees were given.")
    if normalize == "none":
        normalize = None
    if normalize not in (None, "median"):
        raise CalibrationError(f"Unknown normalization '{normalize}'.")

    name_map = name_map or {}
    genes = GeneTrees(tree_list, lambda name: name_map.get(name, name))
    unmapped = sorted(name for name in genes.taxa_names
                      if name not in name_map)
    if name_map and unmapped:
        warnings.warn(f"{len(unmapped)} gene tree leaves are not in the name \
map and are used as species names: {unmapped}")

    if taxa is None:
        taxa = sorted(genes.species_map().keys())
    total = pd.DataFrame(0.0, index = taxa, columns = taxa)
    counts = pd.DataFrame(0, index = taxa, columns = taxa)

    for gene in gene_list:
        # the trees of one gene (bootstrap replicates, say) count once
        gene_total = pd.DataFrame(0.0, index = taxa, columns = taxa)
        gene_counts = pd.DataFrame(0, index = taxa, columns = taxa)
        for tree in gene:
            D = _species_distances(tree, genes.naming_rule)
            present = [t for t in taxa if t in D.index]
            D = D.loc[present, present]
            if normalize == "median":
                upper = D.to_numpy()[np.triu_indices(len(present), 1)]
                scale = float(np.median(upper)) if upper.size else 0.0
                if scale <= 0:
                    warnings.warn("A gene tree has a median distance of 0 and \
is skipped.")
                    continue
                D = D / scale
            gene_total.loc[present, present] += D
            gene_counts.loc[present, present] += 1
        seen = gene_counts > 0
        total += (gene_total / gene_counts.where(seen)).fillna(0.0)
        counts += seen.astype(int)

    avg = total / counts.where(counts > 0)
    for t in taxa:
        avg.loc[t, t] = 0.0
    if avg.isna().to_numpy().any():
        warnings.warn("Some pairs of species are not together in any gene \
tree; their distance is missing.")
    return avg, counts

def write_distance_csv(df : pd.DataFrame, path : str) -> None:
    """
    Write a distance matrix, with taxon names as the first column and header.
    """
    df.to_csv(path, index_label = "taxon")

def read_distance_csv(path : str) -> pd.DataFrame:
    """
    Read a distance matrix written by write_distance_csv.

    Raises:
        CalibrationError: if the matrix is not square with matching names.
    """
    df = pd.read_csv(path, index_col = 0)
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)
    if list(df.index) != list(df.columns):
        raise CalibrationError(f"{path} is not a square distance matrix with \
the same taxa in rows and columns.")
    return df

#####################
#### CALIBRATION ####
#####################

class CalibrationResult:
    """
    Outcome of a least squares calibration.
    """

    def __init__(self,
                 observed : pd.DataFrame,
                 fitted : pd.DataFrame,
                 loss : float,
                 npairs : int,
                 negative : list[tuple[str, str]]) -> None:
        self.observed : pd.DataFrame = observed
        self.fitted : pd.DataFrame = fitted
        self.loss : float = loss
        self.rmse : float = math.sqrt(loss / npairs) if npairs else 0.0
        self.negative : list[tuple[str, str]] = negative

    def __str__(self) -> str:
        lines = ["=" * 60,
                 "NETWORK CALIBRATION",
                 "=" * 60,
                 f"Sum of squared errors: {self.loss:.6g}",
                 f"Root mean squared error: {self.rmse:.6g}"]
        if self.negative:
            lines.append(f"Edges with negative lengths ({len(self.negative)}):")
            lines.extend(f"  {src} -> {dest}" for src, dest in self.negative)
        else:
            lines.append("All edge lengths are non-negative.")
        lines.append("=" * 60)
        return "\n".join(lines)

def _age_parametrization(net : Network,
                         force_minor_length_zero : bool) \
                         -> tuple[np.ndarray, list[Node], dict[Node, Node]]:
    """
    Edge lengths as a linear function of node ages, tips at age 0:
    length(u -> v) = age(u) - age(v). With force_minor_length_zero, a hybrid
    shares the age of its minor parent, and a group of nodes that share an
    age with a tip is fixed at age 0.

    Returns:
        tuple: the (edges x free ages) matrix, the node of each free age, and
               for every node, the node whose age it takes.
    """
    # union of nodes that have the same age
    group : dict[Node, Node] = {n : n for n in net.V()}

    def find(node : Node) -> Node:
        while group[node] is not node:
            node = group[node]
        return node

    if force_minor_length_zero:
        for hybrid in net.hybrids():
            minor = net.minor_parent_edges(hybrid)
            if minor and find(hybrid) is not find(minor[0].src):
                group[find(hybrid)] = find(minor[0].src)

    representative = {n : find(n) for n in net.V()}
    pinned = {representative[leaf] for leaf in net.get_leaves()}
    free = [n for n in net.preorder()
            if representative[n] is n and n not in pinned]
    column = {n : k for k, n in enumerate(free)}

    M = np.zeros((len(net.E()), len(free)))
    for i, edge in enumerate(net.E()):
        for node, sign in ((edge.src, 1.0), (edge.dest, -1.0)):
            rep = representative[node]
            if rep in column:
                M[i, column[rep]] += sign
    return M, free, representative

def calibrate_from_pairwise_distances(net : Network,
                                      distances : pd.DataFrame,
                                      taxa : list[str] | None = None,
                                      ultrametric : bool = True,
                                      force_minor_length_zero : bool = False) \
                                      -> CalibrationResult:
    """
    Set the network's edge lengths to the least squares fit of its average
    path lengths to a matrix of pairwise distances.

    With ultrametric=True, the unknowns are the ages of the internal nodes
    (at least 0, tips at 0), so every tip is at the same distance from the
    root; an edge length is the difference of two ages and can come out
    negative when the distances disagree with the topology. Otherwise the
    unknowns are the edge lengths themselves, which are kept non-negative.

    Raises:
        CalibrationError: if fewer than 2 taxa are shared by the network and
                          the distances.
    Args:
        net (Network): the network, modified in place.
        distances (pd.DataFrame): a symmetric taxa x taxa matrix.
        taxa (list[str], optional): the taxa to use. Defaults to the network
                                    tips found in the matrix.
        ultrametric (bool, optional): fit node ages. Defaults to True.
        force_minor_length_zero (bool, optional): give minor hybrid edges a
                                                  length of 0 (ultrametric
                                                  only). Defaults to False.
    Returns:
        CalibrationResult: fitted distances and goodness of fit.
    """
    if taxa is None:
        absent = [t for t in net.tip_labels() if t not in distances.index]
        if absent:
            warnings.warn(f"Network tips with no distances are not used in \
the calibration: {absent}")
        taxa = [t for t in net.tip_labels() if t in distances.index]
    if len(taxa) < 2:
        raise CalibrationError("At least 2 taxa must be shared by the network \
and the distance matrix.")
    if force_minor_length_zero and not ultrametric:
        raise CalibrationError("force_minor_length_zero requires \
ultrametric=True.")

    edges = net.E()
    pairs, A, _ = distance_coefficients(net, edges, taxa)
    observed = np.array([distances.loc[a, b] for a, b in pairs], dtype = float)
    keep = ~np.isnan(observed)
    if not keep.all():
        warnings.warn(f"{int((~keep).sum())} pairs have no distance and are \
ignored.")

    if ultrametric:
        M, free, representative = _age_parametrization(net,
                                                        force_minor_length_zero)
        solution = lsq_linear(A[keep] @ M, observed[keep],
                              bounds = (0.0, np.inf))
        lengths = M @ solution.x
        ages = dict(zip(free, solution.x))
        for node in net.V():
            node.set_time(float(ages.get(representative[node], 0.0)))
    else:
        solution = lsq_linear(A[keep], observed[keep],
                              bounds = (MIN_EDGE_LENGTH, np.inf))
        lengths = solution.x

    if not solution.success:
        warnings.warn(f"Least squares calibration did not converge: \
{solution.message}")

    for edge, length in zip(edges, lengths):
        edge.set_length(float(length))

    fitted_values = A @ np.array([e.get_length() for e in edges])
    fitted = pd.DataFrame(0.0, index = taxa, columns = taxa)
    obs_frame = distances.loc[taxa, taxa].astype(float)
    for (a, b), value in zip(pairs, fitted_values):
        fitted.loc[a, b] = value
        fitted.loc[b, a] = value

    residual = fitted_values[keep] - observed[keep]
    negative = [e.to_names() for e in negative_edges(net)]
    if negative:
        warnings.warn(f"Calibration produced {len(negative)} negative edge \
lengths: {negative}")
    return CalibrationResult(obs_frame, fitted, float(residual @ residual),
                             int(keep.sum()), negative)

##############################
#### EDGE LENGTH HELPERS #####
##############################

def negative_edges(net : Network) -> list[Edge]:
    """
    Edges with a negative length.
    """
    return [e for e in net.E()
            if e.get_length() is not None and e.get_length() < 0]

def fix_negative_edge_lengths(net : Network, value : float = 0.0) -> list[Edge]:
    """
    Replace negative edge lengths by a value (0 by default).

    Args:
        net (Network): a network, modified in place.
        value (float, optional): the new length. Defaults to 0.
    Returns:
        list[Edge]: the edges that were changed.
    """
    if value < 0:
        raise CalibrationError("The replacement length must not be negative.")
    fixed = negative_edges(net)
    for edge in fixed:
        edge.set_length(value)
    return fixed

def network_height(net : Network) -> float:
    """
    Length of the longest path from the root to a tip.

    Raises:
        NetworkError: if an edge has no length.
    """
    net.check_lengths()
    depth : dict[Node, float] = {}
    for node in net.preorder():
        in_edges = net.in_edges(node)
        depth[node] = max((depth[e.src] + e.get_length() for e in in_edges),
                          default = 0.0)
    return max(depth[leaf] for leaf in net.get_leaves())

def rescale_edge_lengths(net : Network, height : float) -> float:
    """
    Multiply every edge length by the same factor so that the network height
    becomes 'height'.

    Raises:
        CalibrationError: if the current height is not positive.
    Returns:
        float: the scaling factor.
    """
    current = network_height(net)
    if current <= 0:
        raise CalibrationError("Cannot rescale a network of height 0.")
    factor = height / current
    for edge in net.E():
        edge.set_length(edge.get_length() * factor)
    for node in net.V():
        if node.get_time() is not None:
            node.set_time(node.get_time() * factor)
    return factor
