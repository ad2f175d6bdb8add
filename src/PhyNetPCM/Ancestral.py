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
Ancestral state reconstruction for continuous traits: the trait value of each
node without data (internal nodes, and tips missing from the data) is
predicted by its conditional expectation given the observed tips under a
Brownian motion on the network.

Release Version: 1.0.0
"""

from __future__ import annotations
import numpy as np
import pandas as pd
import patsy
from scipy import linalg, stats

from .Network import Network, Node
from .Covariance import shared_path_matrix, pagel_lambda
from .PhyloLM import PhyloLMError, PhyloNetworkLinearModel
from .Settings import CONFIDENCE_LEVEL


class ReconstructedStates:
    """
    Predicted trait values at the nodes of a network, with their prediction
    variances.
    """

    def __init__(self,
                 nodes : list[Node],
                 observed : np.ndarray,
                 values : np.ndarray,
                 variances : np.ndarray) -> None:
        """
        Args:
            nodes (list[Node]): every node of the network, in pre-order.
            observed (np.ndarray): True for the nodes that have data.
            values (np.ndarray): observed value, or conditional expectation.
            variances (np.ndarray): prediction variance (0 when observed).
        Returns:
            N/A
        """
        self.nodes : list[Node] = nodes
        self.observed : np.ndarray = observed
        self.values : np.ndarray = values
        self.variances : np.ndarray = variances

    def expectations(self) -> pd.DataFrame:
        """
        Conditional expectations of the nodes without data, then observed
        values of the others.

        Returns:
            pd.DataFrame: columns nodeNumber (position in pre-order, from 1),
                          label, and condExpectation.
        """
        order = list(np.flatnonzero(~self.observed)) + \
                list(np.flatnonzero(self.observed))
        return pd.DataFrame({"nodeNumber" : [i + 1 for i in order],
                             "label" : [self.nodes[i].label for i in order],
                             "condExpectation" : self.values[order]})

    def predint(self, level : float = CONFIDENCE_LEVEL) -> pd.DataFrame:
        """
        Prediction intervals. For observed nodes both bounds are the observed
        value.

        Args:
            level (float, optional): coverage. Defaults to 0.95.
        Returns:
            pd.DataFrame: columns nodeNumber, label, lower and upper.
        """
        quantile = stats.norm.ppf(0.5 + level / 2)
        half = quantile * np.sqrt(np.maximum(self.variances, 0))
        table = self.expectations()
        idx = table["nodeNumber"].to_numpy() - 1
        table["lower"] = self.values[idx] - half[idx]
        table["upper"] = self.values[idx] + half[idx]
        return table.drop(columns = "condExpectation")

    def predint_plot(self,
                     level : float = CONFIDENCE_LEVEL,
                     digits : int = 2) -> dict[str, str]:
        """
        Node labels for plotting: observed values as they are, predictions as
        "[lower, upper]".
        """
        table = self.predint(level)
        labels : dict[str, str] = {}
        for _, row in table.iterrows():
            if self.observed[int(row["nodeNumber"]) - 1]:
                labels[row["label"]] = f"{row['lower']:.{digits}f}"
            else:
                labels[row["label"]] = f"[{row['lower']:.{digits}f}, \
{row['upper']:.{digits}f}]"
        return labels

    def expectations_plot(self, digits : int = 2) -> dict[str, str]:
        """
        Node labels for plotting: the expected (or observed) value of every
        node.
        """
        return {node.label : f"{value:.{digits}f}"
                for node, value in zip(self.nodes, self.values)}

def _condition(C : np.ndarray,
               obs : np.ndarray,
               y_obs : np.ndarray,
               mean : np.ndarray,
               noise : np.ndarray | None = None) -> tuple[np.ndarray,
                                                          np.ndarray,
                                                          np.ndarray]:
    """
    Conditional distribution of a Gaussian vector given some of its entries.

    Args:
        C (np.ndarray): covariance of all nodes.
        obs (np.ndarray): boolean mask of observed nodes.
        y_obs (np.ndarray): observed values.
        mean (np.ndarray): prior mean of every node.
        noise (np.ndarray, optional): extra variance added to observed values.
    Returns:
        tuple: conditional means of the unobserved nodes, their conditional
               covariance, and the kriging weights C_uo C_oo^-1.
    """
    C_oo = C[np.ix_(obs, obs)]
    if noise is not None:
        C_oo = C_oo + np.diag(noise)
    C_uo = C[np.ix_(~obs, obs)]
    C_uu = C[np.ix_(~obs, ~obs)]
    try:
        factor = linalg.cho_factor(C_oo)
    except linalg.LinAlgError as err:
        raise PhyloLMError("The covariance of the observed tips is not \
positive definite.") from err
    weights = linalg.cho_solve(factor, C_uo.T).T
    cond_mean = mean[~obs] + weights @ (y_obs - mean[obs])
    cond_cov = C_uu - weights @ C_uo.T
    return cond_mean, cond_cov, weights

def ancestral_state_reconstruction(fit : PhyloNetworkLinearModel,
                                   X_n : pd.DataFrame | None = None) \
                                   -> ReconstructedStates:
    """
    Reconstruct the trait at every node without data, using the fitted model:
    its coefficients, its variance rate(s), and its lambda if any. The
    variance of the estimated coefficients is added to the prediction
    variance.

    Raises:
        PhyloLMError: if the model has predictors and X_n is not given, or X_n
                      lacks a node.
    Args:
        fit (PhyloNetworkLinearModel): a fitted regression.
        X_n (pd.DataFrame, optional): predictor values of the nodes without
                                      data, indexed by node label. Only needed
                                      when the model has predictors.
    Returns:
        ReconstructedStates: predictions for every node.
    """
    node_matrix = fit.node_matrix
    nodes = node_matrix.nodes
    C = node_matrix.values
    if fit.lambda_ is not None:
        C = pagel_lambda(C, fit.lambda_)

    position = {lab : i for i, lab in enumerate(node_matrix.labels)}
    obs = np.zeros(len(nodes), dtype = bool)
    obs_idx = [position[t] for t in fit.taxa]
    obs[obs_idx] = True
    unobs_labels = [n.label for n, o in zip(nodes, obs) if not o]

    # design rows of every node, in pre-order
    X_all = np.zeros((len(nodes), fit.X.shape[1]))
    X_all[obs_idx] = fit.X
    if list(fit.design_info.column_names) == ["Intercept"]:
        X_all[~obs] = 1.0
    else:
        if X_n is None:
            raise PhyloLMError("The model has predictors: give their values \
at the nodes without data in X_n.")
        missing = [lab for lab in unobs_labels if lab not in X_n.index]
        if missing:
            raise PhyloLMError(f"X_n has no row for nodes {missing}")
        rows = X_n.loc[unobs_labels]
        X_all[~obs] = np.asarray(patsy.build_design_matrices(
            [fit.design_info], rows)[0])

    beta = fit.coef.to_numpy()
    # observations are in fit.taxa order, C rows in pre-order
    y_obs = np.empty(len(nodes))
    y_obs[obs_idx] = fit.y
    noise = None
    if fit.sigma2_within is not None:
        n_per = np.empty(len(nodes))
        n_per[obs_idx] = fit.n_per_species
        noise = (fit.sigma2_within / fit.sigma2_phylo) / n_per[obs]

    cond_mean, cond_cov, weights = _condition(C, obs, y_obs[obs],
                                              X_all @ beta, noise)
    cond_cov = fit.sigma2_phylo * cond_cov
    # estimation variance of the fixed effects
    A = X_all[~obs] - weights @ X_all[obs]
    cond_cov = cond_cov + A @ fit.vcov.to_numpy() @ A.T

    values = y_obs.copy()
    values[~obs] = cond_mean
    variances = np.zeros(len(nodes))
    variances[~obs] = np.diag(cond_cov)
    return ReconstructedStates(nodes, obs, values, variances)

def ancestral_state_reconstruction_bm(net : Network,
                                      values : dict[str, float] | pd.Series,
                                      mu : float,
                                      sigma2 : float) -> ReconstructedStates:
    """
    Reconstruct a trait under a Brownian motion with known root value and
    variance rate.

    Raises:
        PhyloLMError: if a taxon in values is not a tip of the network.
    Args:
        net (Network): a network with branch lengths.
        values (dict[str, float] | pd.Series): tip label -> trait value.
        mu (float): trait value at the root.
        sigma2 (float): variance rate.
    Returns:
        ReconstructedStates: predictions for every node.
    """
    values = dict(values)
    tips = set(net.tip_labels())
    missing = sorted(set(values) - tips)
    if missing:
        raise PhyloLMError(f"Taxa not in the network: {missing}")

    node_matrix = shared_path_matrix(net)
    nodes = node_matrix.nodes
    obs = np.array([n.label in values for n in nodes])
    y_all = np.array([values.get(n.label, np.nan) for n in nodes], dtype = float)

    cond_mean, cond_cov, _ = _condition(node_matrix.values, obs, y_all[obs],
                                        np.full(len(nodes), float(mu)))
    y_all[~obs] = cond_mean
    variances = np.zeros(len(nodes))
    variances[~obs] = sigma2 * np.diag(cond_cov)
    return ReconstructedStates(nodes, obs, y_all, variances)
