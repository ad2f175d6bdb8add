import numpy as np
import pandas as pd
import pytest
from PhyNetPCM.NetworkParser import parse_newick
from PhyNetPCM.PhyloLM import PhyloLMError, phylolm
from PhyNetPCM.Ancestral import ancestral_state_reconstruction, \
                                ancestral_state_reconstruction_bm
from PhyNetPCM.test.builders import build_three_taxon_tree, \
                                    build_one_hybrid_network, \
                                    SIX_TAXON_NETWORK


def three_taxon_data() -> pd.DataFrame:
    return pd.DataFrame({"tipNames" : ["A", "B", "C"], "y" : [1.0, 2.0, 3.0]})


class TestKnownParameters:

    def test_internal_node(self):
        net = build_three_taxon_tree()
        states = ancestral_state_reconstruction_bm(net, {"A" : 1.0, "B" : 3.0,
                                                         "C" : 5.0},
                                                   mu = 0.0, sigma2 = 1.0)
        table = states.expectations().set_index("label")
        # I1 is weighted 1/3 towards each of its two tips, C is independent
        assert table.loc["I1", "condExpectation"] == pytest.approx(4 / 3)
        assert table.loc["root", "condExpectation"] == pytest.approx(0.0)
        assert table.loc["C", "condExpectation"] == 5.0
        idx = [n.label for n in states.nodes].index("I1")
        assert states.variances[idx] == pytest.approx(1 / 3)

    def test_variance_scales_with_rate(self):
        net = build_three_taxon_tree()
        values = {"A" : 1.0, "B" : 3.0, "C" : 5.0}
        s1 = ancestral_state_reconstruction_bm(net, values, 0.0, 1.0)
        s2 = ancestral_state_reconstruction_bm(net, values, 0.0, 4.0)
        assert np.allclose(s2.variances, 4 * s1.variances)
        assert np.allclose(s2.values, s1.values)

    def test_missing_tip_is_predicted(self):
        net = build_one_hybrid_network()
        states = ancestral_state_reconstruction_bm(net, {"A" : 1.0, "C" : 2.0},
                                                   0.0, 1.0)
        table = states.expectations()
        assert set(table["label"].iloc[:5]) == {"root", "I1", "I2", "H1", "B"}
        assert sorted(table["label"].iloc[-2:]) == ["A", "C"]

    def test_unknown_taxon(self):
        with pytest.raises(PhyloLMError):
            ancestral_state_reconstruction_bm(build_three_taxon_tree(),
                                              {"Z" : 1.0}, 0.0, 1.0)


class TestFromFit:

    def test_intercept_model(self):
        fit = phylolm("y ~ 1", three_taxon_data(), build_three_taxon_tree())
        states = ancestral_state_reconstruction(fit)
        table = states.expectations()
        assert table["label"].iloc[:2].tolist() == ["root", "I1"]
        assert table["nodeNumber"].iloc[0] == 1
        # the root is uncorrelated with the tips
        assert table["condExpectation"].iloc[0] == pytest.approx(15 / 7)
        observed = table.set_index("label")["condExpectation"]
        assert observed["A"] == 1.0
        assert observed["C"] == 3.0

    def test_prediction_intervals(self):
        fit = phylolm("y ~ 1", three_taxon_data(), build_three_taxon_tree())
        states = ancestral_state_reconstruction(fit)
        intervals = states.predint(0.95).set_index("label")
        root = intervals.loc["root"]
        assert root["lower"] < 15 / 7 < root["upper"]
        # root variance is the variance of the estimated intercept
        half = root["upper"] - 15 / 7
        assert half == pytest.approx(1.959964 * fit.stderror["Intercept"],
                                     rel = 1e-4)
        assert intervals.loc["A", "lower"] == intervals.loc["A", "upper"]
        wider = states.predint(0.99).set_index("label")
        assert wider.loc["I1", "upper"] > intervals.loc["I1", "upper"]

    def test_plot_labels(self):
        fit = phylolm("y ~ 1", three_taxon_data(), build_three_taxon_tree())
        states = ancestral_state_reconstruction(fit)
        labels = states.predint_plot()
        assert labels["A"] == "1.00"
        assert labels["I1"].startswith("[")
        assert states.expectations_plot(1)["B"] == "2.0"

    def test_predictors_need_node_values(self):
        net = parse_newick(SIX_TAXON_NETWORK)
        data = pd.DataFrame({"tipNames" : ["A", "B", "C", "D", "E", "F"],
                             "x" : [0.5, 1.1, 2.0, 2.9, 4.2, 5.0],
                             "y" : [1.2, 1.9, 3.8, 4.1, 6.5, 7.3]})
        fit = phylolm("y ~ x", data, net)
        with pytest.raises(PhyloLMError):
            ancestral_state_reconstruction(fit)

        tips = set(fit.taxa)
        internal = [lab for lab in fit.node_matrix.labels if lab not in tips]
        X_n = pd.DataFrame({"x" : np.zeros(len(internal))}, index = internal)
        states = ancestral_state_reconstruction(fit, X_n)
        assert len(states.expectations()) == len(net.V())
        with pytest.raises(PhyloLMError):
            ancestral_state_reconstruction(fit, X_n.iloc[1:])

    def test_within_species_fit(self):
        net = parse_newick(SIX_TAXON_NETWORK)
        data = pd.DataFrame({"species" : ["A", "A", "B", "C", "C", "D", "E",
                                          "F", "F"],
                             "y" : [1.0, 1.4, 2.1, 3.9, 3.3, 4.0, 6.1, 7.0,
                                    7.8]})
        fit = phylolm("y ~ 1", data, net, tip_column = "species",
                      withinspecies_var = True)
        states = ancestral_state_reconstruction(fit)
        assert np.all(states.variances >= 0)
        assert np.all(np.isfinite(states.values))

    def test_lambda_zero_predicts_the_intercept(self):
        fit = phylolm("y ~ 1", three_taxon_data(), build_three_taxon_tree(),
                      model = "lambda", fixed_lambda = 0.0)
        states = ancestral_state_reconstruction(fit)
        table = states.expectations().set_index("label")
        intercept = fit.coef["Intercept"]
        assert intercept == pytest.approx(2.0)
        assert table.loc["root", "condExpectation"] == pytest.approx(intercept)
        assert table.loc["I1", "condExpectation"] == pytest.approx(intercept)

    def test_lambda_one_matches_brownian_motion(self):
        net = build_three_taxon_tree()
        bm = ancestral_state_reconstruction(phylolm("y ~ 1", three_taxon_data(),
                                                    net))
        lam = ancestral_state_reconstruction(phylolm("y ~ 1", three_taxon_data(),
                                                     net, model = "lambda",
                                                     fixed_lambda = 1.0))
        assert np.allclose(lam.values, bm.values)
        assert np.allclose(lam.variances, bm.variances)
