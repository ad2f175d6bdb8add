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
Phylogenetic regression on a network. The residuals of a linear model
"y ~ x1 + x2" are correlated according to a Brownian motion along the network
(model "BM"), optionally with Pagel's lambda (model "lambda"), and optionally
with extra variation between individuals of the same species
(withinspecies_var=True).

Release Version: 1.0.0
"""

from __future__ import annotations
import math
import warnings
import numpy as np
import pandas as pd
import patsy
from scipy import linalg, optimize, stats

from .Network import Network
from .Covariance import NodeMatrix, shared_path_matrix, pagel_lambda
from .Settings import (CONFIDENCE_LEVEL, DEFAULT_TIP_COLUMN, FTOL,
                       LAMBDA_BOUNDS, MAX_ITER, N_SUFFIX, SD_SUFFIX, XTOL)


#########################
#### EXCEPTION CLASS ####
#########################

class PhyloLMError(Exception):
    """
    Raised when a phylogenetic regression cannot be set up or fitted.
    """
    def __init__(self, message : str = "Error fitting a phylogenetic \
regression") -> None:
        self.message = message
        super().__init__(self.message)

##########################
#### HELPER FUNCTIONS ####
##########################

LOG_2PI = math.log(2 * math.pi)

def _gls(y : np.ndarray,
         X : np.ndarray,
         V : np.ndarray) -> tuple[np.ndarray, float, float, np.ndarray]:
    """
    Generalized least squares with a known covariance, through the Cholesky
    factor of V.

    Raises:
        PhyloLMError: if V is not positive definite.
    Args:
        y (np.ndarray): response vector.
        X (np.ndarray): design matrix.
        V (np.ndarray): covariance of the residuals, up to a scale.
    Returns:
        tuple: coefficients, residual sum of squares r' V^-1 r, log det V, and
               X' V^-1 X.
    """
    try:
        L = linalg.cholesky(V, lower = True)
    except linalg.LinAlgError as err:
        raise PhyloLMError("The covariance matrix is not positive definite. \
Check for zero length tip edges or duplicated taxa.") from err

    Xs = linalg.solve_triangular(L, X, lower = True)
    ys = linalg.solve_triangular(L, y, lower = True)
    beta, _, rank, _ = np.linalg.lstsq(Xs, ys, rcond = None)
    if rank < X.shape[1]:
        raise PhyloLMError("The design matrix is rank deficient: some \
predictors are linear combinations of others.")
    resid = ys - Xs @ beta
    logdet = 2 * float(np.sum(np.log(np.diag(L))))
    return beta, float(resid @ resid), logdet, Xs.T @ Xs

def _logdet(A : np.ndarray) -> float:
    return float(np.linalg.slogdet(A)[1])

def _bm_loglik(rss : float,
               logdet : float,
               XtVX : np.ndarray,
               n : int,
               reml : bool) -> tuple[float, float]:
    """
    Log likelihood of a BM regression with the variance rate profiled out.

    Returns:
        tuple[float, float]: the (restricted) log likelihood and the
                             estimated variance rate.
    """
    if not reml:
        sigma2 = rss / n
        return -0.5 * (n * (LOG_2PI + math.log(sigma2) + 1) + logdet), sigma2
    p = XtVX.shape[0]
    sigma2 = rss / (n - p)
    loglik = -0.5 * ((n - p) * (LOG_2PI + math.log(sigma2) + 1) + logdet
                     + _logdet(XtVX))
    return loglik, sigma2

###################################
#### REGRESSION MODEL (RESULT) ####
###################################

class PhyloNetworkLinearModel:
    """
    A fitted phylogenetic regression. Built by phylolm, not directly.
    """

    def __init__(self, **fields) -> None:
        self.formula : str = fields["formula"]
        self.model : str = fields["model"]
        self.reml : bool = fields["reml"]
        self.withinspecies_var : bool = fields["withinspecies_var"]
        self.net : Network = fields["net"]
        self.node_matrix : NodeMatrix = fields["node_matrix"]
        self.taxa : list[str] = fields["taxa"]
        self.y : np.ndarray = fields["y"]
        self.X : np.ndarray = fields["X"]
        self.design_info : patsy.DesignInfo = fields["design_info"]
        self.response_name : str = fields["response_name"]
        self.V : np.ndarray = fields["V"]
        self.n_per_species : np.ndarray = fields["n_per_species"]
        self.rss : float = fields["rss"]
        self.sigma2_phylo : float = fields["sigma2_phylo"]
        self.sigma2_within : float | None = fields["sigma2_within"]
        self.lambda_ : float | None = fields["lambda_"]

        names = list(self.design_info.column_names)
        self.coef : pd.Series = pd.Series(fields["beta"], index = names)
        self.vcov : pd.DataFrame = pd.DataFrame(fields["vcov"], index = names,
                                                columns = names)
        self.stderror : pd.Series = pd.Series(np.sqrt(np.diag(fields["vcov"])),
                                              index = names)
        self.fitted : pd.Series = pd.Series(self.X @ fields["beta"],
                                            index = self.taxa)
        self.residuals : pd.Series = pd.Series(self.y, index = self.taxa) \
                                     - self.fitted

        self.__loglik : float = fields["loglik"]
        self.__nobs : int = fields["nobs"]
        self.__dof : int = len(names) + 1 \
                           + (1 if self.withinspecies_var else 0) \
                           + (1 if fields["lambda_estimated"] else 0)

    def loglikelihood(self) -> float:
        """
        Log likelihood of the fit (restricted log likelihood under REML).
        """
        return self.__loglik

    def nobs(self) -> int:
        """
        Number of observations: species, or individuals for a within species
        model.
        """
        return self.__nobs

    def dof(self) -> int:
        """
        Number of estimated parameters: coefficients, variance(s) and lambda.
        """
        return self.__dof

    def dof_residual(self) -> int:
        return self.__nobs - len(self.coef)

    def aic(self) -> float:
        return -2 * self.__loglik + 2 * self.__dof

    def aicc(self) -> float:
        """
        AIC with small sample correction. Infinite when there are no more
        observations than parameters + 1.
        """
        k, n = self.__dof, self.__nobs
        if n - k - 1 <= 0:
            return math.inf
        return self.aic() + 2 * k * (k + 1) / (n - k - 1)

    def bic(self) -> float:
        return -2 * self.__loglik + self.__dof * math.log(self.__nobs)

    def coeftable(self, level : float = CONFIDENCE_LEVEL) -> pd.DataFrame:
        """
        Estimates, standard errors, t tests and confidence intervals of the
        coefficients.

        Args:
            level (float, optional): confidence level of the intervals.
                                     Defaults to Settings.CONFIDENCE_LEVEL.
        Returns:
            pd.DataFrame: one row per coefficient.
        """
        df_resid = max(self.dof_residual(), 1)
        tvalue = self.coef / self.stderror
        pvalue = 2 * stats.t.sf(np.abs(tvalue), df_resid)
        quantile = stats.t.ppf(0.5 + level / 2, df_resid)
        pct = round(level * 100)
        return pd.DataFrame({"Estimate" : self.coef,
                             "Std. Error" : self.stderror,
                             "t value" : tvalue,
                             "Pr(>|t|)" : pvalue,
                             f"Lower {pct}%" : self.coef - quantile * self.stderror,
                             f"Upper {pct}%" : self.coef + quantile * self.stderror})

    def summary(self) -> str:
        """
        Text summary of the fit, in the style of a regression table.
        """
        title = "Phylogenetic linear model: " + self.model
        if self.withinspecies_var:
            title += " with within-species variation"
        lines = ["=" * 60, title, "=" * 60,
                 f"Formula: {self.formula}",
                 f"Estimation: {'REML' if self.reml else 'ML'}",
                 "",
                 "Parameter estimates:",
                 f"  Sigma2 (phylogenetic): {self.sigma2_phylo:.6g}"]
        if self.sigma2_within is not None:
            lines.append(f"  Sigma2 (within species): {self.sigma2_within:.6g}")
        if self.lambda_ is not None:
            lines.append(f"  Lambda: {self.lambda_:.6g}")
        lines.extend(["", "Coefficients:",
                      self.coeftable().to_string(float_format = "{:.6g}".format),
                      "",
                      f"Log likelihood: {self.__loglik:.6g}",
                      f"AIC: {self.aic():.6g}",
                      f"Observations: {self.__nobs}",
                      "=" * 60])
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        return f"PhyloNetworkLinearModel({self.formula!r}, model={self.model!r})"

##########################
#### MODEL PREPARATION ###
##########################

def _design(formula : str,
            data : pd.DataFrame,
            tip_column : str) -> tuple[np.ndarray, np.ndarray, list[str],
                                       patsy.DesignInfo, str]:
    """
    Build the response and design matrix of a formula. Rows with missing values
    in the formula's variables are dropped.
    """
    if tip_column not in data.columns:
        raise PhyloLMError(f"Column '{tip_column}' not found in the data.")
    data = data.reset_index(drop = True)
    try:
        y, X = patsy.dmatrices(formula, data, return_type = "dataframe")
    except patsy.PatsyError as err:
        raise PhyloLMError(f"Could not build the model '{formula}': {err}") \
            from err
    if y.shape[1] != 1:
        raise PhyloLMError("The response must be a single numeric column.")
    tips = data.loc[y.index, tip_column].astype(str).tolist()
    return (y.to_numpy()[:, 0], X.to_numpy(), tips, X.design_info,
            y.columns[0])

def _check_tips(tips : list[str], net : Network) -> None:
    network_tips = set(net.tip_labels())
    missing = sorted(set(tips) - network_tips)
    if missing:
        raise PhyloLMError(f"{len(missing)} taxa in the data are not tips of \
the network: {missing}")
    unused = sorted(network_tips - set(tips))
    if unused:
        warnings.warn(f"{len(unused)} network tips have no data and are \
pruned from the covariance: {unused}")

def _species_level(y : np.ndarray,
                   X : np.ndarray,
                   tips : list[str]) -> tuple[np.ndarray, np.ndarray, list[str],
                                              np.ndarray, float]:
    """
    Average individuals within species.

    Raises:
        PhyloLMError: if a predictor varies within a species.
    Returns:
        tuple: species means, species design rows, species names, individuals
               per species, pooled within species sum of squares.
    """
    species = list(dict.fromkeys(tips))
    tip_array = np.array(tips)
    means, rows, counts = [], [], []
    ssw = 0.0
    for sp in species:
        mask = tip_array == sp
        X_sp = X[mask]
        if not np.allclose(X_sp, X_sp[0]):
            raise PhyloLMError(f"Predictors vary within species {sp}. With \
within-species variation, predictors must be species level variables.")
        y_sp = y[mask]
        means.append(y_sp.mean())
        rows.append(X_sp[0])
        counts.append(len(y_sp))
        ssw += float(np.sum((y_sp - y_sp.mean()) ** 2))
    return np.array(means), np.array(rows), species, np.array(counts), ssw

def _within_loglik(sigma2_within : float,
                   ssw : float,
                   counts : np.ndarray) -> float:
    """
    Log likelihood of the deviations of individuals from their species means.
    """
    df_within = float(np.sum(counts - 1))
    if df_within == 0:
        return 0.0
    return -0.5 * (df_within * (LOG_2PI + math.log(sigma2_within))
                   + ssw / sigma2_within + float(np.sum(np.log(counts))))

#####################
#### FIT METHODS ####
#####################

def _fit_bm(y, X, V, reml : bool):
    beta, rss, logdet, XtVX = _gls(y, X, V)
    loglik, sigma2 = _bm_loglik(rss, logdet, XtVX, len(y), reml)
    return beta, rss, XtVX, loglik, sigma2

def _fit_lambda(y, X, V, reml : bool, fixed_lambda : float | None):
    """
    Maximise the profile likelihood of Pagel's lambda over its bounds, unless
    lambda is fixed.
    """
    if fixed_lambda is not None:
        lam = fixed_lambda
    else:
        def objective(lam : float) -> float:
            return -_fit_bm(y, X, pagel_lambda(V, lam), reml)[3]

        res = optimize.minimize_scalar(objective, bounds = LAMBDA_BOUNDS,
                                       method = "bounded",
                                       options = {"xatol" : XTOL,
                                                  "maxiter" : MAX_ITER})
        if not res.success:
            warnings.warn(f"Optimization of lambda did not converge: \
{res.message}")
        lam = float(res.x)
        # the bounded search never evaluates the endpoints
        for bound in LAMBDA_BOUNDS:
            if objective(bound) < objective(lam):
                lam = bound
    V_lam = pagel_lambda(V, lam)
    return (*_fit_bm(y, X, V_lam, reml), lam, V_lam)

def _fit_withinspecies(ybar : np.ndarray,
                       X : np.ndarray,
                       V : np.ndarray,
                       counts : np.ndarray,
                       ssw : float,
                       reml : bool):
    """
    Fit species means with covariance sigma2_phylo V + sigma2_within diag(1/n)
    jointly with the pooled within species sum of squares. Variances are
    optimized on the log scale, coefficients are profiled out.
    """
    m, p = X.shape
    D = np.diag(1.0 / counts)
    df_within = float(np.sum(counts - 1))
    if df_within == 0:
        warnings.warn("No species has more than one observation: the \
within-species variance is only informed by the species means.")

    def neg_loglik(log_params : np.ndarray) -> float:
        s2p, s2w = np.exp(log_params)
        Sigma = s2p * V + s2w * D
        _, rss, logdet, XtSX = _gls(ybar, X, Sigma)
        if reml:
            ll = -0.5 * ((m - p) * LOG_2PI + logdet + rss + _logdet(XtSX))
        else:
            ll = -0.5 * (m * LOG_2PI + logdet + rss)
        return -(ll + _within_loglik(s2w, ssw, counts))

    spread = float(np.var(ybar)) if m > 1 else 1.0
    s2w0 = ssw / df_within if df_within > 0 and ssw > 0 else 0.1 * spread + 1e-8
    s2p0 = max(spread / float(np.mean(np.diag(V))), 1e-6)
    res = optimize.minimize(neg_loglik, np.log([s2p0, s2w0]),
                            method = "L-BFGS-B",
                            options = {"ftol" : FTOL, "maxiter" : MAX_ITER})
    if not res.success:
        warnings.warn(f"Optimization of the variances did not converge: \
{res.message}")

    s2p, s2w = (float(v) for v in np.exp(res.x))
    Sigma = s2p * V + s2w * D
    beta, rss, _, XtSX = _gls(ybar, X, Sigma)
    return beta, rss, XtSX, -float(res.fun), s2p, s2w

def phylolm(formula : str,
            data : pd.DataFrame,
            net : Network,
            tip_column : str = DEFAULT_TIP_COLUMN,
            model : str = "BM",
            withinspecies_var : bool = False,
            y_mean_std : bool = False,
            reml : bool | None = None,
            fixed_lambda : float | None = None) -> PhyloNetworkLinearModel:
    """
    Fit a phylogenetic linear regression on a network.

    Raises:
        PhyloLMError: for an unknown model, taxa missing from the network,
                      repeated taxa without within species variation, or a
                      singular covariance.
    Args:
        formula (str): a patsy formula, such as "y ~ x" or "y ~ 1".
        data (pd.DataFrame): one row per species, or per individual when
                             withinspecies_var is True.
        net (Network): a network with branch lengths.
        tip_column (str, optional): column matching rows to network tips.
                                    Defaults to "tipNames".
        model (str, optional): "BM" or "lambda". Defaults to "BM".
        withinspecies_var (bool, optional): model variation between
                                            individuals of a species. Only for
                                            "BM". Defaults to False.
        y_mean_std (bool, optional): the data has one row per species with
                                     columns y, y_sd and y_n (species mean,
                                     standard deviation and sample size).
                                     Defaults to False.
        reml (bool, optional): use restricted maximum likelihood. Defaults to
                               True with within species variation, False
                               otherwise.
        fixed_lambda (float, optional): with model "lambda", fix lambda
                                        instead of estimating it.
    Returns:
        PhyloNetworkLinearModel: the fitted model.
    """
    if model not in ("BM", "lambda"):
        raise PhyloLMError(f"Unknown model '{model}'. Use 'BM' or 'lambda'.")
    if withinspecies_var and model != "BM":
        raise PhyloLMError("Within-species variation is only available for \
the BM model.")
    if y_mean_std and not withinspecies_var:
        raise PhyloLMError("y_mean_std=True requires withinspecies_var=True.")
    if fixed_lambda is not None and model != "lambda":
        raise PhyloLMError("fixed_lambda is only used with model 'lambda'.")
    if reml is None:
        reml = withinspecies_var

    y, X, tips, design_info, response = _design(formula, data, tip_column)
    _check_tips(tips, net)
    node_matrix = shared_path_matrix(net)

    fields = dict(formula = formula, model = model, reml = reml,
                  withinspecies_var = withinspecies_var, net = net,
                  node_matrix = node_matrix, design_info = design_info,
                  response_name = response, lambda_ = None,
                  sigma2_within = None, lambda_estimated = False)

    if withinspecies_var:
        if y_mean_std:
            if len(set(tips)) != len(tips):
                raise PhyloLMError("With y_mean_std=True there must be one row \
per species.")
            for col in (response + SD_SUFFIX, response + N_SUFFIX):
                if col not in data.columns:
                    raise PhyloLMError(f"y_mean_std=True needs a column \
'{col}' in the data.")
            rows = data.loc[data[tip_column].astype(str).isin(tips)]
            rows = rows.set_index(rows[tip_column].astype(str)).loc[tips]
            counts = rows[response + N_SUFFIX].to_numpy(dtype = float)
            sds = np.nan_to_num(rows[response + SD_SUFFIX].to_numpy(dtype = float))
            if np.any(counts < 1):
                raise PhyloLMError("Sample sizes must be at least 1.")
            ybar, X_sp, species = y, X, tips
            ssw = float(np.sum((counts - 1) * sds ** 2))
        else:
            ybar, X_sp, species, counts, ssw = _species_level(y, X, tips)

        V = node_matrix.submatrix(species)
        beta, rss, XtSX, loglik, s2p, s2w = _fit_withinspecies(
            ybar, X_sp, V, counts, ssw, reml)
        fields.update(taxa = species, y = ybar, X = X_sp, V = V,
                      n_per_species = counts, rss = rss, beta = beta,
                      vcov = np.linalg.inv(XtSX), loglik = loglik,
                      sigma2_phylo = s2p, sigma2_within = s2w,
                      nobs = int(np.sum(counts)))
        return PhyloNetworkLinearModel(**fields)

    if len(set(tips)) != len(tips):
        raise PhyloLMError("Some taxa have more than one row. Summarise the \
data per species, or use withinspecies_var=True.")

    V = node_matrix.submatrix(tips)
    if model == "BM":
        beta, rss, XtVX, loglik, sigma2 = _fit_bm(y, X, V, reml)
    else:
        beta, rss, XtVX, loglik, sigma2, lam, V = _fit_lambda(y, X, V, reml,
                                                              fixed_lambda)
        fields.update(lambda_ = lam,
                      lambda_estimated = fixed_lambda is None)

    n, p = X.shape
    dispersion = rss / (n - p) if n > p else sigma2
    fields.update(taxa = tips, y = y, X = X, V = V,
                  n_per_species = np.ones(n), rss = rss, beta = beta,
                  vcov = dispersion * np.linalg.inv(XtVX), loglik = loglik,
                  sigma2_phylo = sigma2, nobs = n)
    return PhyloNetworkLinearModel(**fields)

##########################
#### MODEL COMPARISON ####
##########################

def lrtest(null, alternative) -> pd.DataFrame:
    """
    Likelihood ratio test between two nested models. Works with any fitted
    objects that have loglikelihood() and dof(), so regressions and discrete
    trait fits can both be compared.

    Raises:
        PhyloLMError: if the alternative model does not have more parameters.
    Args:
        null: the simpler model.
        alternative: the model with more parameters.
    Returns:
        pd.DataFrame: log likelihoods and numbers of parameters of both
                      models, the test statistic and its chi-square p-value.
    """
    df = alternative.dof() - null.dof()
    if df <= 0:
        raise PhyloLMError("The alternative model must have more parameters \
than the null model.")
    if getattr(null, "reml", False) or getattr(alternative, "reml", False):
        warnings.warn("Comparing REML fits: only valid if both models have \
the same fixed effects.")
    stat = 2 * (alternative.loglikelihood() - null.loglikelihood())
    if stat < 0:
        warnings.warn("The alternative model has a lower likelihood than the \
null model: the models may not be nested, or the optimization failed.")
    pvalue = float(stats.chi2.sf(max(stat, 0.0), df))
    return pd.DataFrame({"loglik" : [null.loglikelihood(),
                                     alternative.loglikelihood()],
                         "dof" : [null.dof(), alternative.dof()],
                         "deviance" : [np.nan, stat],
                         "df" : [np.nan, df],
                         "p-value" : [np.nan, pvalue]},
                        index = ["null", "alternative"])

def ftest(*fits : PhyloNetworkLinearModel) -> pd.DataFrame:
    """
    F tests between nested BM regressions fitted to the same data, ordered
    from the simplest model to the most complex.

    Raises:
        PhyloLMError: if fewer than two models are given, if a model is not a
                      plain BM fit, or if the models use different data.
    Returns:
        pd.DataFrame: one row per model, with residual degrees of freedom,
                      residual sum of squares, and the F test against the
                      previous row.
    """
    if len(fits) < 2:
        raise PhyloLMError("ftest needs at least two models.")
    for fit in fits:
        if fit.model != "BM" or fit.withinspecies_var:
            raise PhyloLMError("ftest only compares BM models without \
within-species variation.")
        if fit.taxa != fits[0].taxa or not np.allclose(fit.y, fits[0].y):
            raise PhyloLMError("ftest models must be fitted to the same data.")

    rows = []
    for k, fit in enumerate(fits):
        row = {"dof_residual" : fit.dof_residual(), "rss" : fit.rss,
               "F" : np.nan, "p-value" : np.nan}
        if k > 0:
            prev = fits[k - 1]
            df_num = prev.dof_residual() - fit.dof_residual()
            if df_num <= 0:
                raise PhyloLMError("Models must be given from the simplest to \
the most complex.")
            F = ((prev.rss - fit.rss) / df_num) / (fit.rss / fit.dof_residual())
            row["F"] = F
            row["p-value"] = float(stats.f.sf(F, df_num, fit.dof_residual()))
        rows.append(row)
    return pd.DataFrame(rows, index = [f.formula for f in fits])
