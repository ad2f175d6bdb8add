"""
Small networks with hand checked branch lengths and gammas, shared by the
test modules.
"""

from typing import Optional, Sequence, Tuple
from PhyNetPCM.Network import Network, Node, Edge

EdgeSpec = Tuple[str, str, Optional[float], Optional[float]]

#######################
#### TEST NETWORKS ####
#######################

# Tree: root -> I1 (1), root -> C (2), I1 -> A (1), I1 -> B (1)
THREE_TAXON_TREE = "((A:1,B:1):1,C:2);"

# One reticulation H1 with parents I1 (gamma 0.6) and I2 (gamma 0.4).
# Every tip is at distance 2 from the root.
ONE_HYBRID_NETWORK = "((A:1,(B:0.5)#H1:0.5::0.6):1,(#H1:0.5::0.4,C:1):1);"

# Six taxa, one reticulation, ultrametric (height 3).
SIX_TAXON_NETWORK = ("(((A:1,B:1):1,((C:0.5)#H1:0.5::0.7,D:1):1):1,"
                     "((#H1:0.5::0.3,E:1):1,F:2):1);")

def _edge(src : str,
          dest : str,
          length : Optional[float] = None,
          gamma : Optional[float] = None) -> EdgeSpec:
    """
    Small helper for describing an edge specification.
    """
    return (src, dest, length, gamma)

def _build_network(node_labels : Sequence[str],
                   edge_specs : Sequence[EdgeSpec]) -> Network:
    """
    Materialize a Network from node labels and directed edge specifications.
    Edges into the same node get their major flag from the larger gamma.
    """
    net = Network()
    nodes : dict[str, Node] = {label : Node(label) for label in node_labels}
    net.add_nodes(*nodes.values())

    for src, dest, length, gamma in edge_specs:
        if src not in nodes or dest not in nodes:
            raise KeyError(f"Edge references undefined nodes: {src, dest}")
        net.add_edges(Edge(nodes[src], nodes[dest], length, gamma))

    for hybrid in net.hybrids():
        hybrid.set_is_reticulation(True)
        in_edges = net.in_edges(hybrid)
        best = max(in_edges, key = lambda e: e.get_gamma())
        for edge in in_edges:
            edge.set_major(edge is best)
    return net

def build_three_taxon_tree() -> Network:
    """
    Same tree as THREE_TAXON_TREE, built node by node.
    """
    return _build_network(["root", "I1", "A", "B", "C"],
                          [_edge("root", "I1", 1.0),
                           _edge("root", "C", 2.0),
                           _edge("I1", "A", 1.0),
                           _edge("I1", "B", 1.0)])

def build_one_hybrid_network() -> Network:
    """
    Same network as ONE_HYBRID_NETWORK, built node by node.
    """
    return _build_network(["root", "I1", "I2", "H1", "A", "B", "C"],
                          [_edge("root", "I1", 1.0),
                           _edge("root", "I2", 1.0),
                           _edge("I1", "A", 1.0),
                           _edge("I1", "H1", 0.5, 0.6),
                           _edge("I2", "H1", 0.5, 0.4),
                           _edge("I2", "C", 1.0),
                           _edge("H1", "B", 0.5)])

def build_network_with_cycle() -> Network:
    return _build_network(["root", "X", "Y", "A"],
                          [_edge("root", "X", 1.0),
                           _edge("X", "Y", 1.0),
                           _edge("Y", "X", 1.0),
                           _edge("Y", "A", 1.0)])
