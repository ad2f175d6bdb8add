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
Evolution of discrete traits along a network. A continuous time Markov chain
runs along each displayed tree, and the network likelihood is the average of
the displayed trees' likelihoods, weighted by the product of the inheritance
probabilities used to display them.

Models:

1) Equal rates (ER), any number of states, 1 rate.

2) Binary trait substitution model (BTSM), 2 states, rates alpha (0 -> 1)
   and beta (1 -> 0).

3) All rates different (ARD), k states, k(k - 1) rates.

Release Version: 1.0.0
"""

from __future__ import annotations
import math
import warnings
import numpy as np
import pandas as pd
from scipy.optimize import minimize
from scipy.linalg import expm

from .Network import Network
from .Settings import (DEFAULT_ROOT_PRIOR, DEFAULT_TIP_COLUMN, FTOL, MAX_ITER,
                       RATE_BOUNDS)


###########################
#### EXCEPTION CLASSES ####
###########################

class SubstitutionModelError(Exception):
    """
    Class of exception that gets raised when there is an error in the
    formulation of a substitution model, whether it be inputs that don't
    adhere to requirements or there is an issue in computation.
    """
    def __init__(self, message = "Unknown substitution model error") -> None:
        self.message = message
        super().__init__(self.message)

class DiscreteTraitError(Exception):
    """
    Raised when discrete trait data cannot be matched to a network, or a model
    cannot be fitted.
    """
    def __init__(self, message = "Error fitting a discrete trait model") -> None:
        self.message = message
        super().__init__(self.message)

#############################
#### SUBSTITUTION MODELS ####
#############################

class SubstitutionModel:
    """
    General superclass for discrete trait models. Subclasses say how the
    rates fill the off diagonal entries of the rate matrix Q.
    """

    name : str = "Generic"

    def __init__(self, rates : list[float] | np.ndarray, labels : list[str]):
        """
        Args:
            rates (list[float] | np.ndarray): the model's free rates.
            labels (list[str]): state names, in the row order of Q.

        Raises:
            SubstitutionModelError: If the rates or labels are malformed.
        """
        self.labels : list[str] = [str(lab) for lab in labels]
        if len(set(self.labels)) != len(self.labels):
            raise SubstitutionModelError(f"State labels must be unique: \
{self.labels}")
        if len(self.labels) < 2:
            raise SubstitutionModelError("A model needs at least 2 states.")
        self.rates : np.ndarray = np.zeros(self.nparams())
        self.set_rates(rates)

    def nstates(self) -> int:
        return len(self.labels)

    def nparams(self) -> int:
        """
        Number of free rates.
        """
        raise NotImplementedError

    def rate_names(self) -> list[str]:
        raise NotImplementedError

    def off_diagonal(self) -> np.ndarray:
        """
        The rate matrix without its diagonal.
        """
        raise NotImplementedError

    def get_rates(self) -> np.ndarray:
        return self.rates.copy()

    def set_rates(self, rates : list[float] | np.ndarray) -> None:
        """
        Replace the rates of the model.

        Raises:
            SubstitutionModelError: if the number of rates is wrong, or a rate
                                    is negative.
        Args:
            rates (list[float] | np.ndarray): new rates.
        Returns:
            N/A
        """
        rates = np.atleast_1d(np.asarray(rates, dtype = float))
        if rates.shape != (self.nparams(),):
            raise SubstitutionModelError(f"{self.name} model needs \
{self.nparams()} rate(s), got {rates.size}.")
        if np.any(rates < 0) or not np.all(np.isfinite(rates)):
            raise SubstitutionModelError("Rates must be non-negative numbers.")
        self.rates = rates

    def Q(self) -> np.ndarray:
        """
        Instantaneous rate matrix: rows sum to 0.
        """
        Q = self.off_diagonal()
        np.fill_diagonal(Q, 0.0)
        np.fill_diagonal(Q, -Q.sum(axis = 1))
        return Q

    def P(self, t : float) -> np.ndarray:
        """
        Transition probabilities over a branch of length t, e^(Q t).
        P[i, j] is the probability to end in state j when starting in i.
        """
        return expm(self.Q() * t)

    def stationary(self) -> np.ndarray:
        """
        Stationary distribution pi, with pi Q = 0 and sum(pi) = 1.
        """
        Q = self.Q()
        k = self.nstates()
        A = np.vstack([Q.T, np.ones(k)])
        b = np.zeros(k + 1)
        b[k] = 1.0
        pi = np.linalg.lstsq(A, b, rcond = None)[0]
        pi = np.clip(pi, 0.0, None)
        return pi / pi.sum()

    def copy(self) -> SubstitutionModel:
        return type(self)(self.get_rates(), list(self.labels))

    def __str__(self) -> str:
        rates = ", ".join(f"{name} = {value:.6g}"
                          for name, value in zip(self.rate_names(), self.rates))
        return f"{self.name} model on states {self.labels}: {rates}"

class EqualRatesModel(SubstitutionModel):
    """
    Every change between two states happens at the same rate.
    """

    name = "ER"

    def __init__(self, rate : float = 1.0, labels : list[str] = ("0", "1")):
        super().__init__([rate], list(labels))

    def nparams(self) -> int:
        return 1

    def rate_names(self) -> list[str]:
        return ["rate"]

    def off_diagonal(self) -> np.ndarray:
        k = self.nstates()
        return np.full((k, k), self.rates[0])

    def copy(self) -> EqualRatesModel:
        return EqualRatesModel(self.rates[0], list(self.labels))

class BinaryTraitModel(SubstitutionModel):
    """
    Two states, with rate alpha from the first state to the second and rate
    beta back.
    """

    name = "BTSM"

    def __init__(self,
                 alpha : float = 1.0,
                 beta : float = 1.0,
                 labels : list[str] = ("0", "1")):
        if len(labels) != 2:
            raise SubstitutionModelError("The binary trait model needs exactly \
2 states.")
        super().__init__([alpha, beta], list(labels))

    def nparams(self) -> int:
        return 2

    def rate_names(self) -> list[str]:
        return ["alpha", "beta"]

    def off_diagonal(self) -> np.ndarray:
        return np.array([[0.0, self.rates[0]], [self.rates[1], 0.0]])

    def stationary(self) -> np.ndarray:
        total = self.rates.sum()
        if total == 0:
            return np.array([0.5, 0.5])
        return np.array([self.rates[1], self.rates[0]]) / total

    def copy(self) -> BinaryTraitModel:
        return BinaryTraitModel(self.rates[0], self.rates[1], list(self.labels))

class AllRatesDifferentModel(SubstitutionModel):
    """
    Every ordered pair of states has its own rate. Rates are listed row by row
    of Q, skipping the diagonal.
    """

    name = "ARD"

    def nparams(self) -> int:
        k = self.nstates()
        return k * (k - 1)

    def rate_names(self) -> list[str]:
        return [f"{a}->{b}" for a in self.labels for b in self.labels if a != b]

    def off_diagonal(self) -> np.ndarray:
        k = self.nstates()
        Q = np.zeros((k, k))
        Q[~np.eye(k, dtype = bool)] = self.rates
        return Q

def model_from_name(name : str, labels : list[str]) -> SubstitutionModel:
    """
    Build a model with all rates set to 1.

    Raises:
        SubstitutionModelError: for an unknown model name.
    Args:
        name (str): "ER" (or "ERSM"), "BTSM", or "ARD".
        labels (list[str]): the state names.
    Returns:
        SubstitutionModel: the model.
    """
    key = name.upper()
    if key in ("ER", "ERSM"):
        return EqualRatesModel(1.0, labels)
    if key == "BTSM":
        return BinaryTraitModel(1.0, 1.0, labels)
    if key == "ARD":
        k = len(labels)
        return AllRatesDifferentModel(np.ones(k * (k - 1)), labels)
    raise SubstitutionModelError(f"Unknown model '{name}'. Use ER, ERSM, BTSM \
or ARD.")

###########################
#### PRUNING ALGORITHM ####
###########################

class _TreePass:
    """
    A displayed tree reduced to what the pruning algorithm needs: node labels
    in post-order with their child (label, length) pairs.
    """

    def __init__(self, tree : Network, weight : float) -> None:
        self.weight : float = weight
        order = tree.preorder()
        self.root : str = order[0].label
        self.postorder : list[str] = [n.label for n in reversed(order)]
        self.children : dict[str, list[tuple[str, float]]] = {
            n.label : [(e.dest.label, e.get_length()) for e in tree.out_edges(n)]
            for n in order}

    def partials(self,
                 tips : dict[str, np.ndarray],
                 P : dict[float, np.ndarray],
                 shape : tuple[int, int]) -> tuple[dict[str, np.ndarray],
                                                   dict[str, np.ndarray]]:
        """
        Felsenstein's pruning: the likelihood of the data below each node,
        given each state at the node.

        Returns:
            tuple: partial likelihoods (sites x states) of every node, and the
                   message each node sends to its parent.
        """
        partial : dict[str, np.ndarray] = {}
        message : dict[str, np.ndarray] = {}
        for label in self.postorder:
            kids = self.children[label]
            if len(kids) == 0:
                partial[label] = tips[label]
            else:
                cur = np.ones(shape)
                for child, length in kids:
                    message[child] = partial[child] @ P[length].T
                    cur = cur * message[child]
                partial[label] = cur
        return partial, message

    def joint(self,
              tips : dict[str, np.ndarray],
              P : dict[float, np.ndarray],
              prior : np.ndarray,
              shape : tuple[int, int]) -> tuple[np.ndarray, dict[str, np.ndarray]]:
        """
        Up and down pass. For every node, the joint probability of the data
        and each state at the node.

        Returns:
            tuple: the tree likelihood of each site, and node label ->
                   (sites x states) joint probabilities.
        """
        partial, message = self.partials(tips, P, shape)
        above : dict[str, np.ndarray] = {self.root : np.tile(prior, (shape[0], 1))}
        for label in reversed(self.postorder):
            kids = self.children[label]
            for child, length in kids:
                out = above[label].copy()
                for sibling, _ in kids:
                    if sibling != child:
                        out = out * message[sibling]
                above[child] = out @ P[length]

        joint = {label : above[label] * partial[label] for label in partial}
        return joint[self.root].sum(axis = 1), joint

#######################
#### FITTED MODELS ####
#######################

class FittedDiscreteModel:
    """
    A discrete trait model fitted to a network and tip data.
    """

    def __init__(self,
                 model : SubstitutionModel,
                 net : Network,
                 trees : list[_TreePass],
                 tips : dict[str, np.ndarray],
                 traits : list[str],
                 root_prior : str,
                 loglik : float) -> None:
        self.model : SubstitutionModel = model
        self.net : Network = net
        self.trees : list[_TreePass] = trees
        self.tips : dict[str, np.ndarray] = tips
        self.traits : list[str] = traits
        self.root_prior : str = root_prior
        self.__loglik : float = loglik

    @property
    def rates(self) -> pd.Series:
        return pd.Series(self.model.get_rates(), index = self.model.rate_names())

    def loglikelihood(self) -> float:
        return self.__loglik

    def dof(self) -> int:
        """
        Number of estimated rates.
        """
        return self.model.nparams()

    def aic(self) -> float:
        return -2 * self.__loglik + 2 * self.dof()

    def summary(self) -> str:
        lines = ["=" * 60,
                 f"Discrete trait model: {self.model.name}",
                 "=" * 60,
                 f"Traits: {self.traits}",
                 f"States: {self.model.labels}",
                 f"Root prior: {self.root_prior}",
                 "",
                 "Rates:"]
        lines.extend(f"  {name}: {value:.6g}" for name, value
                     in self.rates.items())
        lines.extend(["",
                      f"Log likelihood: {self.__loglik:.6g}",
                      f"AIC: {self.aic():.6g}",
                      "=" * 60])
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()

def _root_prior(model : SubstitutionModel, root_prior : str) -> np.ndarray:
    if root_prior == "stationary":
        return model.stationary()
    if root_prior == "uniform":
        return np.full(model.nstates(), 1.0 / model.nstates())
    raise DiscreteTraitError(f"Unknown root prior '{root_prior}'. Use \
'stationary' or 'uniform'.")

def _transition_matrices(model : SubstitutionModel,
                         trees : list[_TreePass]) -> dict[float, np.ndarray]:
    lengths = {length for tree in trees for kids in tree.children.values()
               for _, length in kids}
    Q = model.Q()
    return {t : expm(Q * t) for t in lengths}

def _loglik(model : SubstitutionModel,
            trees : list[_TreePass],
            tips : dict[str, np.ndarray],
            root_prior : str) -> float:
    """
    Network log likelihood: for each site, the weighted sum over displayed
    trees of the pruning likelihood; sites are independent.
    """
    P = _transition_matrices(model, trees)
    prior = _root_prior(model, root_prior)
    shape = next(iter(tips.values())).shape
    site_lik = np.zeros(shape[0])
    for tree in trees:
        partial, _ = tree.partials(tips, P, shape)
        site_lik += tree.weight * (partial[tree.root] @ prior)
    if np.any(site_lik <= 0):
        return -math.inf
    return float(np.sum(np.log(site_lik)))

def _tip_data(net : Network,
              data : pd.DataFrame,
              tip_column : str,
              traits : list[str],
              labels : list[str]) -> dict[str, np.ndarray]:
    """
    Indicator vectors of the observed states, sites x states, for every tip.
    Missing values and tips without data allow every state.
    """
    tips = net.tip_labels()
    taxa = data[tip_column].astype(str).tolist()
    missing = sorted(set(taxa) - set(tips))
    if missing:
        raise DiscreteTraitError(f"Taxa in the data are not tips of the \
network: {missing}")
    if len(set(taxa)) != len(taxa):
        raise DiscreteTraitError("Each taxon must have a single row of \
discrete trait data.")

    index = {lab : k for k, lab in enumerate(labels)}
    out = {tip : np.ones((len(traits), len(labels))) for tip in tips}
    for taxon, (_, row) in zip(taxa, data[traits].iterrows()):
        vec = np.ones((len(traits), len(labels)))
        for s, trait in enumerate(traits):
            value = row[trait]
            if pd.isna(value):
                continue
            value = str(value)
            if value not in index:
                raise DiscreteTraitError(f"State '{value}' of {taxon} is not \
one of the model states {labels}")
            vec[s] = 0.0
            vec[s, index[value]] = 1.0
        out[taxon] = vec
    return out

def fitdiscrete(net : Network,
                model : SubstitutionModel | str,
                data : pd.DataFrame,
                tip_column : str = DEFAULT_TIP_COLUMN,
                trait_columns : list[str] | str | None = None,
                root_prior : str = DEFAULT_ROOT_PRIOR,
                optimize : bool = True) -> FittedDiscreteModel:
    """
    Fit a discrete trait model by maximum likelihood. Several trait columns
    are independent sites that share the same rates.

    Raises:
        DiscreteTraitError: if the data does not match the network, or an edge
                            length is negative.
    Args:
        net (Network): a network with branch lengths.
        model (SubstitutionModel | str): a model, whose rates are the starting
                                         values, or a model name ("ER", "ARD",
                                         "BTSM"), in which case the states
                                         are the sorted values in the data.
        data (pd.DataFrame): one row per species.
        tip_column (str, optional): taxon column. Defaults to "tipNames".
        trait_columns (list[str] | str, optional): trait columns. Defaults to
                                                   all other columns.
        root_prior (str, optional): "stationary" or "uniform". Defaults to
                                    Settings.DEFAULT_ROOT_PRIOR.
        optimize (bool, optional): estimate the rates. If False, the
                                         likelihood of the given rates is
                                         computed. Defaults to True.
    Returns:
        FittedDiscreteModel: the fit.
    """
    if tip_column not in data.columns:
        raise DiscreteTraitError(f"Column '{tip_column}' not found.")
    if trait_columns is None:
        trait_columns = [c for c in data.columns if c != tip_column]
    elif isinstance(trait_columns, str):
        trait_columns = [trait_columns]
    missing_cols = [c for c in trait_columns if c not in data.columns]
    if missing_cols:
        raise DiscreteTraitError(f"Columns not found: {missing_cols}")

    if isinstance(model, str):
        values = pd.unique(data[trait_columns].to_numpy().ravel())
        states = sorted({str(v) for v in values if not pd.isna(v)})
        model = model_from_name(model, states)
    else:
        model = model.copy()
    _root_prior(model, root_prior)

    net.check_lengths()
    negative = [e.to_names() for e in net.E() if e.get_length() < 0]
    if negative:
        raise DiscreteTraitError(f"Edges with negative lengths: {negative}")

    tips = _tip_data(net, data, tip_column, trait_columns, model.labels)
    trees = [_TreePass(tree, weight) for tree, weight in net.displayed_trees()
             if weight > 0]

    if optimize:
        log_bounds = [tuple(np.log(RATE_BOUNDS))] * model.nparams()

        def neg_loglik(log_rates : np.ndarray) -> float:
            trial = model.copy()
            trial.set_rates(np.exp(log_rates))
            ll = _loglik(trial, trees, tips, root_prior)
            return 1e300 if ll == -math.inf else -ll

        start = np.log(np.clip(model.get_rates(), *RATE_BOUNDS))
        res = minimize(neg_loglik, start, method = "L-BFGS-B",
                       bounds = log_bounds,
                       options = {"ftol" : FTOL, "maxiter" : MAX_ITER})
        if not res.success:
            warnings.warn(f"Optimization of the rates did not converge: \
{res.message}")
        model.set_rates(np.exp(res.x))

    loglik = _loglik(model, trees, tips, root_prior)
    return FittedDiscreteModel(model, net, trees, tips, list(trait_columns),
                               root_prior, loglik)

def discrete_ancestral_states(fit : FittedDiscreteModel) -> pd.DataFrame:
    """
    Posterior probability of each state at every node of the network. For
    each displayed tree the joint probability of the data and the state at a
    node is computed by an up and a down pass; these are summed over trees
    with the trees' weights, which averages the trees' posteriors in
    proportion to their contributions to the likelihood.

    Args:
        fit (FittedDiscreteModel): a fitted model.
    Returns:
        pd.DataFrame: one row per trait and node, with columns trait,
                      nodeNumber (pre-order position, from 1), nodeLabel, and
                      one probability column per state.
    """
    model = fit.model
    P = _transition_matrices(model, fit.trees)
    prior = _root_prior(model, fit.root_prior)
    shape = next(iter(fit.tips.values())).shape

    totals : dict[str, np.ndarray] = {}
    for tree in fit.trees:
        _, joint = tree.joint(fit.tips, P, prior, shape)
        for label, values in joint.items():
            totals[label] = totals.get(label, 0.0) + tree.weight * values

    rows = []
    for number, node in enumerate(fit.net.preorder(), start = 1):
        if node.label not in totals:
            continue
        probs = totals[node.label]
        probs = probs / probs.sum(axis = 1, keepdims = True)
        for s, trait in enumerate(fit.traits):
            rows.append([trait, number, node.label, *probs[s]])
    return pd.DataFrame(rows, columns = ["trait", "nodeNumber", "nodeLabel",
                                         *model.labels])
