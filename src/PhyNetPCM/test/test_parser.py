import pytest
from PhyNetPCM.NetworkParser import NetworkParser, NetworkParserError, \
                                    parse_newick, read_network, \
                                    read_gene_trees, write_network
from PhyNetPCM.test.builders import THREE_TAXON_TREE, ONE_HYBRID_NETWORK, \
                                    SIX_TAXON_NETWORK


def hybrid_gammas(net):
    hybrid = net.hybrids()[0]
    return {e.src.label : e.get_gamma() for e in net.in_edges(hybrid)}


class TestParseNewick:

    def test_tree(self):
        net = parse_newick(THREE_TAXON_TREE)
        assert sorted(net.tip_labels()) == ["A", "B", "C"]
        assert len(net.E()) == 4
        assert all(e.get_gamma() == 1.0 for e in net.E())
        lengths = sorted(e.get_length() for e in net.E())
        assert lengths == [1.0, 1.0, 1.0, 2.0]

    def test_internal_names_are_generated(self):
        net = parse_newick(THREE_TAXON_TREE)
        internal = [n for n in net.V() if net.out_degree(n) > 0]
        assert sorted(n.label for n in internal) == ["I1", "I2"]
        assert all(n.attribute_value("auto_name") for n in internal)

    def test_generated_names_avoid_existing_labels(self):
        net = parse_newick("((A:1,I1:1):1,C:2);")
        labels = [n.label for n in net.V()]
        assert len(labels) == len(set(labels))
        assert "I1" in net.tip_labels()

    def test_hybrid_with_both_gammas(self):
        net = parse_newick(ONE_HYBRID_NETWORK)
        hybrid = net.hybrids()[0]
        assert hybrid.label == "H1"
        assert hybrid.is_reticulation()
        gammas = sorted(hybrid_gammas(net).values())
        assert gammas == pytest.approx([0.4, 0.6])
        assert net.major_parent_edge(hybrid).get_gamma() == pytest.approx(0.6)
        assert sorted(net.tip_labels()) == ["A", "B", "C"]

    def test_one_gamma_gives_the_complement(self):
        net = parse_newick("((A:1,(B:1)#H1:1::0.7):1,(#H1:1,C:1):1);")
        assert sorted(hybrid_gammas(net).values()) == pytest.approx([0.3, 0.7])

    def test_no_gamma_splits_evenly(self):
        net = parse_newick("((A:1,(B:1)#H1:1):1,(#H1:1,C:1):1);")
        assert list(hybrid_gammas(net).values()) == [0.5, 0.5]
        majors = [e for e in net.in_edges(net.hybrids()[0]) if e.is_major()]
        assert len(majors) == 1

    def test_equal_gammas_first_appearance_is_major(self):
        # the later appearance is closer to the root
        net = parse_newick("(((A:1,(C:1)#H1:1):1,X:1):1,#H1:1);")
        hybrid = net.has_node_named("H1")
        a_parent = net.get_parents(net.has_node_named("A"))[0]
        assert net.major_parent_edge(hybrid).src is a_parent
        assert net.major_parent_edge(hybrid).get_gamma() == 0.5
        assert "(A:1.0,(C:1.0)#H1:1.0::0.5)" in net.newick()

    def test_comment_gamma(self):
        net = parse_newick("((A:1,(B:1)#H1:1[&gamma=0.8]):1,(#H1:1,C:1):1);")
        assert sorted(hybrid_gammas(net).values()) == pytest.approx([0.2, 0.8])

    def test_support_field_and_empty_length(self):
        net = parse_newick("((A:1,(B:1)#H1:::0.9):1,(#H1:2:95:0.1,C:1):1);")
        hybrid = net.hybrids()[0]
        lengths = {e.src.label : e.get_length() for e in net.in_edges(hybrid)}
        assert sorted(lengths.values(), key = lambda v: (v is None, v)) \
               == [2.0, None]
        assert sorted(hybrid_gammas(net).values()) == pytest.approx([0.1, 0.9])

    def test_negative_lengths(self):
        net = parse_newick("((A:1,B:-0.5):1,C:2);")
        assert min(e.get_length() for e in net.E()) == -0.5

    def test_trailing_semicolon_optional(self):
        net = parse_newick("((A:1,B:1):1,C:2)")
        assert len(net.get_leaves()) == 3


class TestParseErrors:

    def test_empty(self):
        with pytest.raises(NetworkParserError):
            parse_newick("   ")

    def test_unbalanced(self):
        with pytest.raises(NetworkParserError):
            parse_newick("((A:1,B:1):1,C:2;")
        with pytest.raises(NetworkParserError):
            parse_newick("(A:1,B:1)):1;")

    def test_gammas_must_sum_to_one(self):
        with pytest.raises(NetworkParserError):
            parse_newick("((A:1,(B:1)#H1:1::0.7):1,(#H1:1::0.7,C:1):1);")

    def test_gamma_must_be_probability(self):
        with pytest.raises(NetworkParserError):
            parse_newick("((A:1,(B:1)#H1:1::1.7):1,(#H1:1,C:1):1);")

    def test_hybrid_must_appear_twice(self):
        with pytest.raises(NetworkParserError):
            parse_newick("((A:1,(B:1)#H1:1::0.7):1,C:2);")

    def test_duplicate_tip(self):
        with pytest.raises(NetworkParserError):
            parse_newick("((A:1,A:1):1,C:2);")


class TestFiles:

    def test_write_then_read(self, tmp_path):
        net = parse_newick(SIX_TAXON_NETWORK)
        path = tmp_path / "net.tre"
        write_network(net, str(path))
        again = read_network(str(path))
        assert sorted(again.tip_labels()) == sorted(net.tip_labels())
        assert len(again.E()) == len(net.E())
        # generated internal names are not written
        assert "I1" not in path.read_text()

    def test_append_and_parse_all(self, tmp_path):
        path = tmp_path / "nets.tre"
        write_network(parse_newick(THREE_TAXON_TREE), str(path))
        write_network(parse_newick(ONE_HYBRID_NETWORK), str(path),
                      append = True)
        parser = NetworkParser(str(path))
        assert len(parser.get_all_networks()) == 2
        assert parser.get_network(1).hybrids()[0].label == "H1"

    def test_digits(self, tmp_path):
        net = parse_newick("((A:1.123456,B:1):1,C:2);")
        path = tmp_path / "net.tre"
        write_network(net, str(path), digits = 2)
        assert "1.12" in path.read_text()
        assert "1.123456" not in path.read_text()

    def test_read_gene_trees(self, tmp_path):
        genes = tmp_path / "genes"
        genes.mkdir()
        (genes / "gene1.tre").write_text("((a:1,b:1):1,c:2);\n")
        (genes / "gene2.tre").write_text("((a:1,c:1):1,b:2);\n((a:1,b:1):1,c:2);\n")
        (genes / "notes.txt").write_text("not a tree")
        trees = read_gene_trees(str(genes), suffix = ".tre")
        assert list(trees.keys()) == ["gene1", "gene2"]
        assert len(trees["gene2"]) == 2

    def test_empty_gene_directory(self, tmp_path):
        with pytest.raises(NetworkParserError):
            read_gene_trees(str(tmp_path))
