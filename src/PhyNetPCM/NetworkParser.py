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
Reading and writing of networks in extended Newick format.

Hybrid nodes are written as "#H1" (or "#R1", "#LGT1") and appear twice in a
network string, once per parent edge. The subtree below a hybrid is written at
one of the two appearances. Edge data can be given as ":length:support:gamma"
(any field may be empty) or as ":length[&gamma=0.3]".

Release Version: 1.0.0
"""

from __future__ import annotations
import os
import re
from io import StringIO
from typing import Any
from Bio import Phylo
from Bio.Phylo.NewickIO import NewickError

from .Network import Network, Node, Edge
from .Settings import GAMMA_TOLERANCE, HYBRID_PREFIXES, INTERNAL_PREFIX


#####################
#### Error Class ####
#####################

class NetworkParserError(Exception):
    """
    Error that is raised whenever an input file or newick string contains
    issues that disallow a proper parse of a network.
    """
    def __init__(self, message : str = "Something went wrong \
parsing a network") -> None:
        """
        Initialize the error with a message.

        Args:
            message (str, optional): Custom error message. Defaults to
                                     "Something went wrong parsing a network".
        """
        self.message = message
        super().__init__(self.message)

##########################
#### Helper Functions ####
##########################

_FIELD = r"[^:,();\[\]\s]*"

# ":length:support:gamma" and ":length:support", which Bio.Phylo cannot read
_EXTENDED_EDGE = re.compile(rf":({_FIELD}):({_FIELD})(?::({_FIELD}))?")

_GAMMA_COMMENT = re.compile(r"gamma\s*=\s*([-+0-9.eE]+)")

def _rewrite_extended_fields(newick : str) -> str:
    """
    Rewrite colon separated edge fields into the comment form, so that the
    string only contains syntax the Bio.Phylo newick reader understands.

    IE: "#H1:1.5::0.3" becomes "#H1:1.5[&gamma=0.3]"

    Args:
        newick (str): an extended newick string
    Returns:
        str: the same network, with gammas stored in comments.
    """
    def replace(match : re.Match) -> str:
        length, _, gamma = match.group(1), match.group(2), match.group(3)
        new_str = ":" + length if length != "" else ""
        if gamma is not None and gamma != "":
            new_str += f"[&gamma={gamma}]"
        return new_str

    return _EXTENDED_EDGE.sub(replace, newick)

def _check_parentheses(newick : str) -> None:
    depth = 0
    for char in newick:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                raise NetworkParserError("Unbalanced parentheses: a ')' is \
not matched by any '('.")
    if depth != 0:
        raise NetworkParserError(f"Unbalanced parentheses: {depth} '(' left \
unclosed.")

def is_hybrid_label(name : str | None) -> bool:
    """
    Check whether a newick label names a reticulation, such as "#H1".

    Args:
        name (str): a node label from a newick string
    Returns:
        bool: True if the label is a hybrid label.
    """
    if name is None or not name.startswith("#"):
        return False
    return name[1:].startswith(HYBRID_PREFIXES)

def parse_gamma(comment : str | None) -> float | None:
    """
    Find an inheritance probability in a newick comment, "&gamma=0.3".

    Raises:
        NetworkParserError: if the value is not a probability.
    Args:
        comment (str): the comment attached to a clade. May be None.
    Returns:
        float | None: the gamma, or None if the comment has none.
    """
    if comment is None:
        return None
    match = _GAMMA_COMMENT.search(comment)
    if match is None:
        return None
    try:
        gamma = float(match.group(1))
    except ValueError as err:
        raise NetworkParserError(f"Could not read gamma value \
'{match.group(1)}'") from err
    if gamma < 0 or gamma > 1:
        raise NetworkParserError(f"Inheritance probability {gamma} is not \
between 0 and 1.")
    return gamma

########################
#### Newick Parsing ####
########################

class _TreeBlockParser:
    """
    Builds one Network from a Bio.Phylo tree, merging the two occurrences of
    each hybrid label into a single reticulation node.
    """

    def __init__(self, tree : Any) -> None:
        self.tree = tree
        self.net : Network = Network()
        self.clade_2_node : dict[int, Node] = {}
        # hybrid label -> [(parent, edge length, gamma or None, has subtree,
        #                  position of the appearance in the file)]
        self.hybrid_parents : dict[str, list[tuple[Node, float | None,
                                                   float | None, bool,
                                                   int]]] = {}
        self.file_order : dict[int, int] = {id(clade) : i for i, clade in
                                            enumerate(tree.find_clades(
                                                order = "preorder"))}
        self.used_names : set[str] = {clade.name for clade
                                      in tree.find_clades()
                                      if clade.name is not None}
        self.internal_count : int = 1

    def next_internal_name(self) -> str:
        while INTERNAL_PREFIX + str(self.internal_count) in self.used_names:
            self.internal_count += 1
        name = INTERNAL_PREFIX + str(self.internal_count)
        self.used_names.add(name)
        return name

    def node_for(self, clade : Any) -> Node:
        """
        Get (or create) the network node that a Bio.Phylo clade refers to.
        """
        if id(clade) in self.clade_2_node:
            return self.clade_2_node[id(clade)]

        if is_hybrid_label(clade.name):
            label = clade.name[1:]
            node = self.net.has_node_named(label)
            if node is None:
                node = Node(label, is_reticulation = True)
                self.net.add_nodes(node)
        elif clade.name is None:
            node = Node(self.next_internal_name(), attr = {"auto_name" : True})
            self.net.add_nodes(node)
        else:
            if self.net.has_node_named(clade.name) is not None:
                raise NetworkParserError(f"The label '{clade.name}' appears \
more than once, but is not a hybrid label.")
            node = Node(clade.name)
            self.net.add_nodes(node)

        self.clade_2_node[id(clade)] = node
        return node

    def parse(self) -> Network:
        """
        Walk through the clades in level order and add one edge per
        parent/child pair. Hybrid edges are added once both appearances of a
        hybrid are known.

        Args:
            N/A
        Returns:
            Network: the parsed network.
        """
        root = self.tree.root
        self.node_for(root)

        for clade in self.tree.find_clades(order = "level"):
            parent = self.node_for(clade)
            for child in clade:
                child_node = self.node_for(child)
                if is_hybrid_label(child.name):
                    self.hybrid_parents.setdefault(child_node.label, []).append(
                        (parent, child.branch_length, parse_gamma(child.comment),
                         len(child.clades) > 0, self.file_order[id(child)]))
                else:
                    self.net.add_edges(Edge(parent, child_node,
                                            child.branch_length, 1.0))

        for label, parents in self.hybrid_parents.items():
            parents.sort(key = lambda entry: entry[4])
            self.add_hybrid_edges(self.net.has_node_named(label), parents)

        return self.net

    def add_hybrid_edges(self,
                         hybrid : Node,
                         parents : list[tuple[Node, float | None,
                                              float | None, bool,
                                              int]]) -> None:
        """
        Resolve the inheritance probabilities of a hybrid's two parent edges
        and add them to the network. Parents come in file order, and the first
        one is major when the gammas are equal.

        Raises:
            NetworkParserError: if the hybrid does not appear exactly twice,
                                if its subtree is given twice, or if the gammas
                                do not sum to 1.
        """
        if len(parents) != 2:
            raise NetworkParserError(f"Hybrid label #{hybrid.label} appears \
{len(parents)} time(s). Hybrid labels must appear exactly twice.")
        if parents[0][3] and parents[1][3]:
            raise NetworkParserError(f"The subtree below #{hybrid.label} is \
written at both of its appearances.")

        g1, g2 = parents[0][2], parents[1][2]
        if g1 is None and g2 is None:
            g1, g2 = 0.5, 0.5
        elif g1 is None:
            g1 = 1 - g2
        elif g2 is None:
            g2 = 1 - g1
        elif abs(g1 + g2 - 1) > GAMMA_TOLERANCE:
            raise NetworkParserError(f"Inheritance probabilities of \
#{hybrid.label} sum to {g1 + g2}, not 1.")

        major_first = g1 >= g2
        for (parent, length, _, _, _), gamma, major in zip(parents, (g1, g2),
                                                        (major_first,
                                                         not major_first)):
            self.net.add_edges(Edge(parent, hybrid, length, gamma, major))

def parse_newick(newick : str) -> Network:
    """
    Parse a single extended newick string into a Network.

    Raises:
        NetworkParserError: if the string is empty or malformed.
    Args:
        newick (str): an extended newick string. The trailing ';' is optional.
    Returns:
        Network: the network described by the string.
    """
    text = newick.strip()
    if text == "" or text == ";":
        raise NetworkParserError("Cannot parse an empty newick string.")
    _check_parentheses(text)
    if not text.endswith(";"):
        text += ";"

    try:
        tree = Phylo.read(StringIO(_rewrite_extended_fields(text)), "newick")
    except (NewickError, ValueError) as err:
        raise NetworkParserError(f"Malformed newick string: {err}") from err

    return _TreeBlockParser(tree).parse()

class NetworkParser:
    """
    Class that parses every network in a plain text file of newick strings,
    one network per ';'.
    """

    def __init__(self, filename : str) -> None:
        """
        Initialize the parser with a file, and parse it.

        Raises:
            NetworkParserError: If the file has no networks.
        Args:
            filename (str): the path to the file to be parsed.
        Returns:
            N/A
        """
        self.filename : str = filename
        with open(filename) as handle:
            contents = handle.read()

        # List of all parsed networks
        self.networks : list[Network] = [parse_newick(block) for block
                                         in contents.split(";")
                                         if block.strip() != ""]
        if len(self.networks) == 0:
            raise NetworkParserError(f"No networks were found in {filename}")

    def get_network(self, i : int = 0) -> Network:
        """
        Retrieve the i'th network of the file.

        Args:
            i (int, optional): index of the network. Defaults to 0.
        Returns:
            Network: the parsed network.
        """
        return self.networks[i]

    def get_all_networks(self) -> list[Network]:
        """
        Retrieve all the parsed networks, in file order.
        """
        return self.networks

def read_network(filename : str) -> Network:
    """
    Read the first network in a file.

    Args:
        filename (str): path to a file of extended newick strings.
    Returns:
        Network: the first network of the file.
    """
    return NetworkParser(filename).get_network(0)

def read_gene_trees(directory : str,
                    suffix : str | None = None) -> dict[str, list[Network]]:
    """
    Read every tree file in a directory. Each file (a gene) can hold one or
    more trees, such as bootstrap replicates.

    Raises:
        NetworkParserError: if no file in the directory matches.
    Args:
        directory (str): path to the gene tree directory.
        suffix (str, optional): only files ending with this suffix are read.
                                Defaults to None, reading every file.
    Returns:
        dict[str, list[Network]]: file name without extension -> its trees.
    """
    genes : dict[str, list[Network]] = {}
    for filename in sorted(os.listdir(directory)):
        path = os.path.join(directory, filename)
        if not os.path.isfile(path) or filename.startswith("."):
            continue
        if suffix is not None and not filename.endswith(suffix):
            continue
        genes[os.path.splitext(filename)[0]] = \
            NetworkParser(path).get_all_networks()

    if len(genes) == 0:
        raise NetworkParserError(f"No gene tree files found in {directory}")
    return genes

def write_network(net : Network,
                  filename : str,
                  append : bool = False,
                  digits : int | None = None) -> None:
    """
    Write a network to a file in extended newick format, followed by a
    new line.

    Args:
        net (Network): the network to write.
        filename (str): destination path.
        append (bool, optional): add to the end of the file instead of
                                 overwriting it. Defaults to False.
        digits (int, optional): round lengths and gammas. Defaults to None.
    Returns:
        N/A
    """
    with open(filename, "a" if append else "w") as handle:
        handle.write(net.newick(digits = digits) + "\n")
