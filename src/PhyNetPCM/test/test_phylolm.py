import math
import numpy as np
import pandas as pd
import pytest
from PhyNetPCM.NetworkParser import parse_newick
from PhyNetPCM.Covariance import vcv
from PhyNetPCM.TraitData import species_summary
from PhyNetPCM.PhyloLM import PhyloLMError, phylolm, lrtest, ftest
from PhyNetPCM.test.builders import build_three_taxon_tree, SIX_TAXON_NETWORK


SIX_TAXA = ["A", "B", "C", "D", "E", "F"]

def six_taxon_data() -> pd.DataFrame:
    return pd.DataFrame({"tipNames" : SIX_TAXA,
                         "x" : [0.5, 1.1, 2.0, 2.9, 4.2, 5.0],
                         "y" : [1.2, 1.9, 3.8, 4.1, 6.5, 7.3]})

def individual_data() -> pd.DataFrame:
    species = ["A", "A", "B", "B", "B", "C", "C", "D", "D", "E", "F", "F"]
    y = [1.0, 1.4, 2.1, 1.7, 2.0, 3.9, 3.3, 4.0, 4.6, 6.1, 7.0, 7.8]
    return pd.DataFrame({"species" : species, "y" : y})


class TestBrownianMotion:

    def test_intercept_only_tree(self):
        data = pd.DataFrame({"tipNames" : ["A", "B", "C"],
                             "y" : [1.0, 2.0, 3.0]})
        fit = phylolm("y ~ 1", data, build_three_taxon_tree())
        # 1' V^-1 y / 1' V^-1 1 with V = [[2,1,0],[1,2,0],[0,0,2]]
        assert fit.coef["Intercept"] == pytest.approx(15 / 7)
        assert fit.nobs() == 3
        assert fit.dof() == 2
        assert not fit.reml

    def test_star_tree_is_ordinary_least_squares(self):
        net = parse_newick("(A:1,B:1,C:1,D:1,E:1,F:1);")
        data = six_taxon_data()
        fit = phylolm("y ~ x", data, net)
        slope, intercept = np.polyfit(data["x"], data["y"], 1)
        assert fit.coef["x"] == pytest.approx(slope)
        assert fit.coef["Intercept"] == pytest.approx(intercept)
        n = 6
        sigma2 = fit.rss / n
        assert fit.sigma2_phylo == pytest.approx(sigma2)
        assert fit.loglikelihood() == pytest.approx(
            -0.5 * n * (math.log(2 * math.pi) + math.log(sigma2) + 1))

    def test_matches_direct_gls(self):
        net = parse_newick(SIX_TAXON_NETWORK)
        data = six_taxon_data()
        fit = phylolm("y ~ x", data, net)
        V = vcv(net, SIX_TAXA).to_numpy()
        X = np.column_stack([np.ones(6), data["x"]])
        Vi = np.linalg.inv(V)
        beta = np.linalg.solve(X.T @ Vi @ X, X.T @ Vi @ data["y"].to_numpy())
        assert np.allclose(fit.coef.to_numpy(), beta)
        assert np.allclose(fit.fitted + fit.residuals, data["y"].to_numpy())

    def test_information_criteria(self):
        fit = phylolm("y ~ x", six_taxon_data(), parse_newick(SIX_TAXON_NETWORK))
        k = fit.dof()
        assert k == 3
        assert fit.aic() == pytest.approx(-2 * fit.loglikelihood() + 2 * k)
        assert fit.aicc() == pytest.approx(fit.aic() + 2 * k * (k + 1) / (6 - k - 1))
        assert fit.bic() == pytest.approx(-2 * fit.loglikelihood()
                                          + k * math.log(6))
        assert fit.dof_residual() == 4

    def test_coeftable(self):
        fit = phylolm("y ~ x", six_taxon_data(), parse_newick(SIX_TAXON_NETWORK))
        table = fit.coeftable()
        assert list(table.index) == ["Intercept", "x"]
        assert list(table.columns) == ["Estimate", "Std. Error", "t value",
                                       "Pr(>|t|)", "Lower 95%", "Upper 95%"]
        assert (table["Lower 95%"] < table["Estimate"]).all()
        assert (table["Pr(>|t|)"].between(0, 1)).all()
        assert "Formula: y ~ x" in fit.summary()

    def test_reml_changes_the_likelihood(self):
        net = parse_newick(SIX_TAXON_NETWORK)
        ml = phylolm("y ~ x", six_taxon_data(), net)
        reml = phylolm("y ~ x", six_taxon_data(), net, reml = True)
        assert np.allclose(ml.coef, reml.coef)
        assert reml.sigma2_phylo == pytest.approx(ml.rss / 4)
        assert reml.loglikelihood() != pytest.approx(ml.loglikelihood())

    def test_hybrid_shift_predictor(self):
        from PhyNetPCM.Covariance import regressor_hybrid
        net = parse_newick(SIX_TAXON_NETWORK)
        data = six_taxon_data().merge(regressor_hybrid(net), on = "tipNames")
        fit = phylolm("y ~ shift_H1", data, net)
        assert "shift_H1" in fit.coef.index


class TestLambda:

    def test_estimate_in_bounds(self):
        fit = phylolm("y ~ x", six_taxon_data(), parse_newick(SIX_TAXON_NETWORK),
                      model = "lambda")
        assert 0.0 <= fit.lambda_ <= 1.0
        assert fit.dof() == 4
        bm = phylolm("y ~ x", six_taxon_data(), parse_newick(SIX_TAXON_NETWORK))
        assert fit.loglikelihood() >= bm.loglikelihood() - 1e-6

    def test_lambda_zero_is_weighted_least_squares(self):
        data = six_taxon_data()
        net = parse_newick(SIX_TAXON_NETWORK)
        fit = phylolm("y ~ x", data, net, model = "lambda", fixed_lambda = 0.0)
        variances = np.diag(vcv(net, SIX_TAXA).to_numpy())
        slope, _ = np.polyfit(data["x"], data["y"], 1,
                              w = 1 / np.sqrt(variances))
        assert fit.coef["x"] == pytest.approx(slope)
        assert fit.lambda_ == 0.0
        assert fit.dof() == 3


class TestWithinSpecies:

    def test_individuals(self):
        fit = phylolm("y ~ 1", individual_data(),
                      parse_newick(SIX_TAXON_NETWORK),
                      tip_column = "species", withinspecies_var = True)
        assert fit.reml
        assert fit.nobs() == 12
        assert fit.taxa == SIX_TAXA
        assert list(fit.n_per_species) == [2, 3, 2, 2, 1, 2]
        assert fit.sigma2_within > 0
        assert fit.sigma2_phylo > 0
        assert fit.dof() == 3
        assert "within species" in fit.summary()

    def test_summary_input_gives_the_same_fit(self):
        net = parse_newick(SIX_TAXON_NETWORK)
        individuals = individual_data()
        summary = species_summary(individuals, "species", ["y"])
        fit1 = phylolm("y ~ 1", individuals, net, tip_column = "species",
                       withinspecies_var = True)
        fit2 = phylolm("y ~ 1", summary, net, tip_column = "species",
                       withinspecies_var = True, y_mean_std = True)
        assert fit2.coef["Intercept"] == pytest.approx(fit1.coef["Intercept"],
                                                       rel = 1e-4)
        assert fit2.loglikelihood() == pytest.approx(fit1.loglikelihood(),
                                                     rel = 1e-6)

    def test_predictor_varying_within_species(self):
        data = individual_data()
        data["x"] = np.arange(len(data), dtype = float)
        with pytest.raises(PhyloLMError):
            phylolm("y ~ x", data, parse_newick(SIX_TAXON_NETWORK),
                    tip_column = "species", withinspecies_var = True)


class TestErrors:

    def test_unknown_model(self):
        with pytest.raises(PhyloLMError):
            phylolm("y ~ x", six_taxon_data(), parse_newick(SIX_TAXON_NETWORK),
                    model = "OU")

    def test_taxon_not_in_network(self):
        data = six_taxon_data()
        data.loc[0, "tipNames"] = "Z"
        with pytest.raises(PhyloLMError):
            phylolm("y ~ x", data, parse_newick(SIX_TAXON_NETWORK))

    def test_repeated_taxa(self):
        data = pd.concat([six_taxon_data(), six_taxon_data()])
        with pytest.raises(PhyloLMError):
            phylolm("y ~ x", data, parse_newick(SIX_TAXON_NETWORK))

    def test_option_combinations(self):
        net = parse_newick(SIX_TAXON_NETWORK)
        with pytest.raises(PhyloLMError):
            phylolm("y ~ x", six_taxon_data(), net, fixed_lambda = 0.5)
        with pytest.raises(PhyloLMError):
            phylolm("y ~ x", six_taxon_data(), net, y_mean_std = True)
        with pytest.raises(PhyloLMError):
            phylolm("y ~ x", six_taxon_data(), net, model = "lambda",
                    withinspecies_var = True)

    def test_unknown_variable(self):
        with pytest.raises(PhyloLMError):
            phylolm("y ~ z", six_taxon_data(), parse_newick(SIX_TAXON_NETWORK))

    def test_missing_taxa_are_pruned_with_warning(self):
        data = six_taxon_data().iloc[:5]
        with pytest.warns(UserWarning):
            fit = phylolm("y ~ x", data, parse_newick(SIX_TAXON_NETWORK))
        assert fit.nobs() == 5


class TestComparison:

    def test_lrtest(self):
        net = parse_newick(SIX_TAXON_NETWORK)
        null = phylolm("y ~ 1", six_taxon_data(), net)
        alt = phylolm("y ~ x", six_taxon_data(), net)
        table = lrtest(null, alt)
        assert table.loc["alternative", "df"] == 1
        assert table.loc["alternative", "deviance"] == pytest.approx(
            2 * (alt.loglikelihood() - null.loglikelihood()))
        assert 0 <= table.loc["alternative", "p-value"] <= 1
        with pytest.raises(PhyloLMError):
            lrtest(alt, null)

    def test_ftest_matches_t_test(self):
        net = parse_newick(SIX_TAXON_NETWORK)
        null = phylolm("y ~ 1", six_taxon_data(), net)
        alt = phylolm("y ~ x", six_taxon_data(), net)
        table = ftest(null, alt)
        assert list(table.index) == ["y ~ 1", "y ~ x"]
        t_value = alt.coeftable().loc["x", "t value"]
        assert table.loc["y ~ x", "F"] == pytest.approx(t_value ** 2)
        assert table.loc["y ~ x", "p-value"] == pytest.approx(
            alt.coeftable().loc["x", "Pr(>|t|)"])
