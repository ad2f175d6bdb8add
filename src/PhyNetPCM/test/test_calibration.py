import numpy as np
import pandas as pd
import pytest
from PhyNetPCM.NetworkParser import parse_newick
from PhyNetPCM.Covariance import pairwise_taxon_distance_matrix
from PhyNetPCM.Calibration import CalibrationError, GeneTrees, \
                                  gene_tree_distances, write_distance_csv, \
                                  read_distance_csv, \
                                  calibrate_from_pairwise_distances, \
                                  negative_edges, fix_negative_edge_lengths, \
                                  network_height, rescale_edge_lengths
from PhyNetPCM.test.builders import THREE_TAXON_TREE, ONE_HYBRID_NETWORK, \
                                    SIX_TAXON_NETWORK

GENE_1 = "((a1:1,a2:1):1,(b1:1,c1:1):1);"
GENE_2 = "((a1:2,b1:2):1,c1:3);"
NAME_MAP = {"a1" : "A", "a2" : "A", "b1" : "B", "c1" : "C"}


def topology(newick : str):
    """
    The network of a newick string, with every edge length removed.
    """
    net = parse_newick(newick)
    for edge in net.E():
        edge.set_length(None)
    return net


class TestGeneTrees:

    def test_species_map(self):
        genes = GeneTrees([parse_newick(GENE_1), parse_newick(GENE_2)],
                          lambda name: NAME_MAP[name])
        assert genes.species_map() == {"A" : ["a1", "a2"], "B" : ["b1"],
                                       "C" : ["c1"]}

    def test_reticulate_gene_tree(self):
        with pytest.raises(CalibrationError):
            GeneTrees([parse_newick(ONE_HYBRID_NETWORK)])

    def test_median_normalized_distances(self):
        trees = {"g1" : [parse_newick(GENE_1)], "g2" : [parse_newick(GENE_2)]}
        avg, counts = gene_tree_distances(trees, NAME_MAP)
        assert list(avg.index) == ["A", "B", "C"]
        assert avg.loc["A", "B"] == pytest.approx(5 / 6)
        assert avg.loc["A", "C"] == pytest.approx(1.0)
        assert avg.loc["C", "B"] == pytest.approx(0.75)
        assert avg.loc["A", "A"] == 0.0
        assert counts.loc["A", "B"] == 2

    def test_raw_distances(self):
        trees = [parse_newick(GENE_1), parse_newick(GENE_2)]
        avg, _ = gene_tree_distances(trees, NAME_MAP, normalize = None)
        assert avg.loc["A", "B"] == pytest.approx(4.0)
        assert avg.loc["A", "C"] == pytest.approx(5.0)
        assert avg.loc["B", "C"] == pytest.approx(4.0)

    def test_trees_of_one_gene_count_once(self):
        trees = {"g1" : [parse_newick(GENE_1) for _ in range(3)],
                 "g2" : [parse_newick(GENE_2)]}
        avg, counts = gene_tree_distances(trees, NAME_MAP, normalize = None)
        assert counts.loc["A", "B"] == 2
        assert avg.loc["A", "C"] == pytest.approx(5.0)
        assert avg.loc["B", "C"] == pytest.approx(4.0)

    def test_replicates_averaged_within_gene(self):
        trees = {"g1" : [parse_newick(GENE_1), parse_newick(GENE_2)],
                 "g2" : [parse_newick(GENE_2)]}
        avg, counts = gene_tree_distances(trees, NAME_MAP, normalize = "none")
        assert avg.loc["A", "C"] == pytest.approx(5.5)
        assert counts.loc["A", "C"] == 2

    def test_missing_pair(self):
        trees = [parse_newick("((a1:1,b1:1):1,x:2);")]
        with pytest.warns(UserWarning):
            avg, counts = gene_tree_distances(trees, NAME_MAP, normalize = None,
                                              taxa = ["A", "B", "C"])
        assert np.isnan(avg.loc["A", "C"])
        assert counts.loc["A", "C"] == 0

    def test_errors(self):
        with pytest.raises(CalibrationError):
            gene_tree_distances([])
        with pytest.raises(CalibrationError):
            gene_tree_distances([parse_newick(GENE_1)], normalize = "mean")

    def test_csv(self, tmp_path):
        avg, _ = gene_tree_distances([parse_newick(GENE_1)], NAME_MAP)
        path = tmp_path / "distances.csv"
        write_distance_csv(avg, str(path))
        again = read_distance_csv(str(path))
        assert list(again.index) == ["A", "B", "C"]
        assert np.allclose(again.to_numpy(), avg.to_numpy())

        bad = tmp_path / "bad.csv"
        pd.DataFrame({"A" : [0.0], "B" : [1.0]}, index = ["A"]).to_csv(bad)
        with pytest.raises(CalibrationError):
            read_distance_csv(str(bad))


class TestCalibration:

    def test_ultrametric_fit_is_exact(self):
        target = pairwise_taxon_distance_matrix(parse_newick(SIX_TAXON_NETWORK))
        net = topology(SIX_TAXON_NETWORK)
        result = calibrate_from_pairwise_distances(net, target)
        assert result.loss == pytest.approx(0.0, abs = 1e-6)
        assert result.rmse == pytest.approx(0.0, abs = 1e-3)
        fitted = pairwise_taxon_distance_matrix(net, list(target.index))
        assert np.allclose(fitted.to_numpy(), target.to_numpy(), atol = 1e-3)
        assert all(leaf.get_time() == 0.0 for leaf in net.get_leaves())
        assert all(node.get_time() >= 0 for node in net.V())

    def test_edge_lengths_fit(self):
        target = pairwise_taxon_distance_matrix(parse_newick(THREE_TAXON_TREE))
        net = topology(THREE_TAXON_TREE)
        result = calibrate_from_pairwise_distances(net, target,
                                                   ultrametric = False)
        assert result.loss == pytest.approx(0.0, abs = 1e-6)
        assert all(e.get_length() >= 0 for e in net.E())
        assert "NETWORK CALIBRATION" in str(result)

    def test_force_minor_length_zero(self):
        target = pairwise_taxon_distance_matrix(parse_newick(SIX_TAXON_NETWORK))
        net = topology(SIX_TAXON_NETWORK)
        calibrate_from_pairwise_distances(net, target,
                                          force_minor_length_zero = True)
        hybrid = net.hybrids()[0]
        minor = net.minor_parent_edges(hybrid)[0]
        assert minor.get_length() == 0.0
        assert hybrid.get_time() == pytest.approx(minor.src.get_time())

    def test_force_minor_length_zero_hybrid_tip(self):
        newick = "((A:1,#H1:1::0.3):1,(B:1,(C:0.5,#H1:0.5::0.7):0.5):1);"
        target = pairwise_taxon_distance_matrix(parse_newick(newick))
        net = topology(newick)
        result = calibrate_from_pairwise_distances(net, target,
                                                   force_minor_length_zero = True)
        hybrid = net.has_node_named("H1")
        minor = net.minor_parent_edges(hybrid)[0]
        assert minor.get_length() == 0.0
        assert minor.src.get_time() == 0.0
        calibrated = pairwise_taxon_distance_matrix(net, list(result.fitted.index))
        assert np.allclose(result.fitted.to_numpy(), calibrated.to_numpy())
        for edge in net.E():
            assert edge.get_length() == pytest.approx(edge.src.get_time()
                                                      - edge.dest.get_time())

    def test_force_minor_needs_ultrametric(self):
        target = pairwise_taxon_distance_matrix(parse_newick(SIX_TAXON_NETWORK))
        with pytest.raises(CalibrationError):
            calibrate_from_pairwise_distances(topology(SIX_TAXON_NETWORK),
                                              target, ultrametric = False,
                                              force_minor_length_zero = True)

    def test_too_few_taxa(self):
        target = pd.DataFrame([[0.0]], index = ["A"], columns = ["A"])
        with pytest.warns(UserWarning):
            with pytest.raises(CalibrationError):
                calibrate_from_pairwise_distances(topology(THREE_TAXON_TREE),
                                                  target)


class TestEdgeLengthHelpers:

    def test_negative_edges(self):
        net = parse_newick("((A:1,B:-0.5):1,C:2);")
        assert len(negative_edges(net)) == 1
        assert negative_edges(net)[0].dest.label == "B"
        fixed = fix_negative_edge_lengths(net)
        assert len(fixed) == 1
        assert negative_edges(net) == []
        with pytest.raises(CalibrationError):
            fix_negative_edge_lengths(net, -1.0)

    def test_height_and_rescale(self):
        net = parse_newick(ONE_HYBRID_NETWORK)
        assert network_height(net) == pytest.approx(2.0)
        factor = rescale_edge_lengths(net, 1.0)
        assert factor == pytest.approx(0.5)
        assert network_height(net) == pytest.approx(1.0)

    def test_height_of_non_ultrametric(self):
        net = parse_newick("((A:1,B:3):1,C:2);")
        assert network_height(net) == pytest.approx(4.0)
