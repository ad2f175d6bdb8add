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
Module that contains the rooted, directed phylogenetic network that every
comparative method in this library operates on. Edges carry branch lengths
and inheritance probabilities (gammas), reticulation nodes have two parents.

Release Version: 1.0.0
"""

from __future__ import annotations
from collections import deque
from itertools import product
from typing import Any, Union
import warnings
import networkx as nx

from .Settings import GAMMA_TOLERANCE


#########################
#### EXCEPTION CLASS ####
#########################

class NetworkError(Exception):
    """
    This exception is raised when a network is malformed,
    or if a network operation fails.
    """
    def __init__(self, message : str = "Error operating on a Network"):
        """
        Initialize with an error message that will print upon the exception
        being raised.

        Args:
            message (str, optional): Error message. Defaults to
                                    "Error operating on a Network".
        Returns:
            N/A
        """
        self.message = message
        super().__init__(self.message)

class NodeError(Exception):
    """
    This exception is raised when a Node operation fails.
    """
    def __init__(self, message : str = "Error in Node Class"):
        self.message = message
        super().__init__(message)

class EdgeError(Exception):
    """
    This exception is raised when an Edge operation fails.
    """
    def __init__(self, message : str = "Error in Edge Class"):
        self.message = message
        super().__init__(message)

##########################
#### HELPER FUNCTIONS ####
##########################

def format_number(value : float, digits : int | None = None) -> str:
    """
    Format a branch length or inheritance probability for a newick string.

    Args:
        value (float): a number
        digits (int, optional): Round to this many decimals. Defaults to None,
                                in which case the full precision is kept.

    Returns:
        str: the string form of 'value'
    """
    if digits is not None:
        value = round(value, digits)
    if float(value).is_integer():
        return str(float(value))
    return repr(float(value))

##########################
#### NODES AND EDGES #####
##########################

class Node:
    """
    Node class that provides support for managing network constructs like
    reticulation nodes and other phylogenetic attributes.
    """

    def __init__(self,
                 name : str,
                 is_reticulation : bool = False,
                 attr : dict[Union[str, Any], Any] | None = None,
                 t : float | None = None) -> None:
        """
        Initialize a node with a name, attribute mapping, and a hybrid flag.

        Args:
            name (str): A Node label.
            is_reticulation (bool, optional): Flag that marks a node as a
                                              reticulation node if set to True.
                                              Defaults to False.
            attr (dict, optional): Fill a mapping with any other user defined
                                   values. Defaults to an empty dictionary.
            t (float, optional): A node time/age. Defaults to None.
        Returns:
            N/A
        """
        self.__attributes : dict[Union[str, Any], Any] = dict(attr or {})
        self.__is_retic : bool = is_reticulation
        self.__name : str = name
        self.__t : float | None = t

    def __repr__(self) -> str:
        return f"Node({self.__name!r})"

    def get_attributes(self) -> dict[Union[str, Any], Any]:
        """
        Retrieve the attribute mapping.

        Args:
            N/A
        Returns:
            dict[Union[str, Any], Any]: key value pairs that correspond to
                                        user defined node attributes.
        """
        return self.__attributes

    def get_time(self) -> float | None:
        """
        Get the time (or age) stored for this node, if any.

        Args:
            N/A
        Returns:
            float: the node time, or None if it was never set.
        """
        return self.__t

    def set_time(self, new_t : float) -> None:
        """
        Set the time of this node. The arg must be a non-negative number.

        Args:
            new_t (float): The new time for this node.
        Returns:
            N/A
        """
        if new_t < 0:
            raise NodeError("Please set node time, t, to a non-negative number!")
        self.__t = new_t

    def to_string(self) -> str:
        """
        Create a description of a node and summarize its attributes.

        Args:
            N/A
        Returns:
            str: A string description of the node.
        """
        my_str = "Node " + str(self.__name) + ": "
        if self.__t is not None:
            my_str += "t = " + str(round(self.__t, 4)) + " "
        my_str += " is a reticulation node? " + str(self.__is_retic)
        my_str += " has attributes: " + str(self.__attributes)
        return my_str

    @property
    def label(self) -> str:
        """
        Returns the name of the node

        Args:
            N/A
        Returns:
            str: Node label.
        """
        return self.__name

    def set_name(self, new_name : str) -> None:
        """
        Sets the name of the node to new_name. If this node belongs to a
        Network, use Network.update_node_name instead so that name lookups
        stay correct.

        Args:
            new_name (str): A new string label for this node.
        Returns:
            N/A
        """
        self.__name = new_name

    def set_is_reticulation(self, new_is_retic : bool) -> None:
        """
        Sets whether a node is a reticulation Node (or not).

        Args:
            new_is_retic (bool): True if this node is a reticulation node.
        Returns:
            N/A
        """
        self.__is_retic = new_is_retic

    def is_reticulation(self) -> bool:
        """
        Retrieves whether a node is a reticulation Node (or not)

        Args:
            N/A
        Returns:
            bool: True, if this node is a reticulation. False otherwise.
        """
        return self.__is_retic

    def add_attribute(self, key : Any, value : Any) -> None:
        """
        Put a key and value pair into the node attribute dictionary.
        If the key is already present, it will overwrite the old value.

        Args:
            key (Any): Attribute key.
            value (Any): Attribute value for the key.
        Returns:
            N/A
        """
        self.__attributes[key] = value

    def attribute_value(self, key : Any) -> object:
        """
        If key is a key in the attributes mapping, then its value will be
        returned. Otherwise, returns None.

        Args:
            key (Any): A lookup key.
        Returns:
            object: The value of key, if key is present.
        """
        return self.__attributes.get(key)

    def copy(self) -> Node:
        """
        Duplicate this node by copying all data into a separate Node object.

        Args:
            N/A
        Returns:
            Node: An equivalent node to this node, with all the same data but
                  technically are not "=="
        """
        return Node(self.__name, self.__is_retic, dict(self.__attributes),
                    self.__t)

class NodeSet:
    """
    Data structure that is in charge of managing the nodes that are in a given
    Network. Insertion order is preserved.
    """

    def __init__(self) -> None:
        """
        Initialize an empty set of network nodes.

        Args:
            N/A
        Returns:
            N/A
        """
        self.__nodes : dict[Node, None] = {}
        self.__in_map : dict[Node, list[Edge]] = {}
        self.__out_map : dict[Node, list[Edge]] = {}
        self.__node_names : dict[str, Node] = {}

    def __contains__(self, n : Node) -> bool:
        return n in self.__nodes

    def __len__(self) -> int:
        return len(self.__nodes)

    def add(self, *nodes : Node) -> None:
        """
        Add nodes to the network node set.

        Raises:
            NodeError: if a different node with the same label is present.
        Args:
            *nodes (Node): new nodes to put in the network.
        Returns:
            N/A
        """
        for node in nodes:
            if node in self.__nodes:
                continue
            if node.label in self.__node_names:
                raise NodeError(f"A node named {node.label} is already in \
this network. Node labels must be unique.")
            self.__nodes[node] = None
            self.__in_map[node] = []
            self.__out_map[node] = []
            self.__node_names[node.label] = node

    def ready(self, edge : Edge) -> bool:
        """
        Check if an edge is allowed to be added to the network (both nodes must
        be in the node set before an edge can be added).

        Args:
            edge (Edge): A potential new network edge.
        Returns:
            bool: True if edge can be safely added, False otherwise.
        """
        return edge.src in self.__nodes and edge.dest in self.__nodes

    def in_deg(self, node : Node) -> int:
        """
        Gets the in degree of a node in this set. Returns 0 if the node is not
        in the node set.

        Args:
            node (Node): any Node obj
        Returns:
            int: the in degree of the node
        """
        return len(self.__in_map.get(node, []))

    def out_deg(self, node : Node) -> int:
        """
        Gets the out degree of a node in this set. Returns 0 if the node is not
        in the node set.

        Args:
            node (Node): any Node obj
        Returns:
            int: the out degree of the node
        """
        return len(self.__out_map.get(node, []))

    def in_edges(self, node : Node) -> list[Edge]:
        return self.__in_map.get(node, [])

    def out_edges(self, node : Node) -> list[Edge]:
        return self.__out_map.get(node, [])

    def process(self, edge : Edge, removal : bool = False) -> None:
        """
        Keep track of network data (in/out edge maps) upon the addition or
        removal of an edge for a network.

        Raises:
            EdgeError: if the edge contains a node that is not in this set.
        Args:
            edge (Edge): The edge that is being added or removed
            removal (bool, optional): False if edge is being added, True if
                                      edge is being removed. Defaults to False.
        Returns:
            N/A
        """
        if not self.ready(edge):
            raise EdgeError("Tried to add edge to the network, and the edge \
contains a node that is not part of the network. Please add the node first and \
retry!")
        if not removal:
            self.__out_map[edge.src].append(edge)
            self.__in_map[edge.dest].append(edge)
        else:
            self.__out_map[edge.src].remove(edge)
            self.__in_map[edge.dest].remove(edge)

    def get_set(self) -> list[Node]:
        """
        Grab the nodes, in insertion order.

        Args:
            N/A
        Returns:
            list[Node]: V, the node set of a network.
        """
        return list(self.__nodes.keys())

    def remove(self, node : Node) -> None:
        """
        Remove a node from V, and update necessary mappings.

        Args:
            node (Node): Node to remove from the network.
        Returns:
            N/A
        """
        if node in self.__nodes:
            del self.__nodes[node]
            del self.__in_map[node]
            del self.__out_map[node]
            del self.__node_names[node.label]

    def update(self, node : Node, new_name : str) -> None:
        """
        Processes updates to node labels within the NodeSet.

        Raises:
            NodeError: If @node is not present in this NodeSet, or if another
                       node already has the label @new_name.
        Args:
            node (Node): The Node that is being renamed
            new_name (str): The new name.
        Returns:
            N/A
        """
        if node not in self:
            raise NodeError(f"Error updating the name of node {node.label}, \
node could not be found in this NodeSet.")
        if new_name == node.label:
            return
        if new_name in self.__node_names:
            raise NodeError(f"Cannot rename {node.label} to {new_name}: that \
label is already in use.")

        del self.__node_names[node.label]
        node.set_name(new_name)
        self.__node_names[new_name] = node

    def get(self, name : str) -> Node | None:
        """
        Retrieves the Node with label 'name' if one exists in the set.

        Args:
            name (str): a Node label
        Returns:
            Node | None: the node, or None if no node has label 'name'.
        """
        return self.__node_names.get(name)

class Edge:
    """
    Class for directed edges. An Edge is a wrapper for a tuple of member
    nodes (a, b), where the direction is encoded in the ordering (a is the
    source/parent, and b the destination/child).

    Tree edges have an inheritance probability of 1. The two parent edges of a
    reticulation node have gammas that sum to 1, and the one with the larger
    gamma is the major edge.
    """

    def __init__(self,
                 source : Node,
                 destination : Node,
                 length : float | None = None,
                 gamma : float | None = None,
                 is_major : bool = True) -> None:
        """
        source -----> destination

        Raises:
            ValueError: If @gamma is not a probabilistic value between 0 and 1.

        Args:
            source (Node): The parent node.
            destination (Node): The child node.
            length (float, optional): Branch length value. Defaults to None
                                      (unknown length).
            gamma (float, optional): Inheritance Probability, MUST be from
                                     [0,1]. Defaults to 1.
            is_major (bool, optional): Whether this edge is the major parent
                                       edge of its child. Defaults to True.
        Returns:
            N/A
        """
        self._src : Node = source
        self._dest : Node = destination
        self.__length : float | None = None
        self.__gamma : float = 1.0
        self.__is_major : bool = is_major

        self.set_length(length)
        self.set_gamma(1.0 if gamma is None else gamma)

    def __repr__(self) -> str:
        return f"Edge({self._src.label!r} -> {self._dest.label!r})"

    @property
    def src(self) -> Node:
        """
        Get the source (parent) node.
        """
        return self._src

    @property
    def dest(self) -> Node:
        """
        Get the dest (child) node.
        """
        return self._dest

    def set_gamma(self, gamma : float) -> None:
        """
        Set the inheritance probability of this edge.

        Args:
            gamma (float): A probability (between 0 and 1 inclusive).
        Returns:
            N/A
        """
        if gamma < 0 or gamma > 1:
            raise ValueError("Please provide a probabilistic value for gamma \
(between 0 and 1, inclusive)!")
        self.__gamma = float(gamma)

    def get_gamma(self) -> float:
        """
        Gets the inheritance probability for this edge.

        Args:
            N/A
        Returns:
            float: A probability (between 0 and 1).
        """
        return self.__gamma

    def set_length(self, branch_length : float | None) -> None:
        """
        Set the length of this Edge. Negative values are accepted (a
        calibration may produce them), None means "unknown".

        Args:
            branch_length (float | None): The new length of the Edge
        Returns:
            N/A
        """
        self.__length = None if branch_length is None else float(branch_length)

    def get_length(self) -> float | None:
        """
        Get the Edge length.

        Args:
            N/A
        Returns:
            float | None: Edge length/branch length, None if unknown.
        """
        return self.__length

    def is_major(self) -> bool:
        return self.__is_major

    def set_major(self, is_major : bool) -> None:
        self.__is_major = is_major

    def to_names(self) -> tuple[str, str]:
        """
        Return this Edge as a two-tuple of (src label, dest label).

        Args:
            N/A
        Returns:
            tuple[str, str]: a two-tuple of names, (src name , dest name)
        """
        return (self._src.label, self._dest.label)

    def copy(self, new_src : Node, new_dest : Node) -> Edge:
        """
        Craft an identical edge to this edge object between two new nodes.
        Useful in building copies of a network that is in hand.

        Args:
            new_src (Node): the source node of the copy
            new_dest (Node): the destination node of the copy
        Returns:
            Edge: An identical edge to this one, with respect to the data they
                  hold.
        """
        return Edge(new_src, new_dest, self.__length, self.__gamma,
                    self.__is_major)

class EdgeSet:
    """
    Data structure that serves the purpose of keeping track of edges that belong
    to a network. We call this set E.
    """

    def __init__(self) -> None:
        # Map (src, dest) tuples to a list of edges. this list will have 1
        # element for most, but in the case of bubbles will contain 2.
        self.__hash : dict[tuple[Node, Node], list[Edge]] = {}
        self.__edges : dict[Edge, None] = {}

    def __contains__(self, e : Edge) -> bool:
        return e in self.__edges

    def __len__(self) -> int:
        return len(self.__edges)

    def add(self, *edges : Edge) -> None:
        """
        Add any number of edges to E.

        Raises:
            TypeError: If a non Edge object is given.
        Args:
            *edges (Edge): An amount of new edges to add to E.
        Returns:
            N/A
        """
        for edge in edges:
            if type(edge) is not Edge:
                raise TypeError("Networks only hold directed Edge objects.")
            if edge not in self.__edges:
                self.__hash.setdefault((edge.src, edge.dest), []).append(edge)
                self.__edges[edge] = None

    def remove(self, edge : Edge) -> None:
        """
        Remove an edge from E.

        Args:
            edge (Edge): An edge that is currently in E.
        Returns:
            N/A
        """
        if edge in self.__edges:
            bucket = self.__hash[(edge.src, edge.dest)]
            bucket.remove(edge)
            if len(bucket) == 0:
                del self.__hash[(edge.src, edge.dest)]
            del self.__edges[edge]

    def get(self, n1 : Node, n2 : Node, gamma : float | None = None) -> Edge:
        """
        Given the nodes that make up the edge and an inheritance probability,
        get the edge in E that matches the data. Inheritance probability is only
        required when two edges share the same source and destination (a
        bubble).

        Raises:
            EdgeError: If there is no such edge in the network, or the gamma
                       given does not identify one of the bubble edges.
        Args:
            n1 (Node): "src" / the parent.
            n2 (Node): "dest" / the child.
            gamma (float, optional): Inheritance probability, for bubble
                                     identifiability. Defaults to None.
        Returns:
            Edge: The edge in E that matches the given data.
        """
        valid_edges = self.__hash.get((n1, n2), [])

        if len(valid_edges) == 0:
            raise EdgeError(f"Found 0 edges from {n1.label} to {n2.label}")
        elif len(valid_edges) == 1:
            return valid_edges[0]

        if gamma is None:
            warnings.warn("No gamma provided, but a bubble is being looked \
up. Returning the major bubble edge!")
            return next(e for e in valid_edges if e.is_major())

        for edge in valid_edges:
            if abs(edge.get_gamma() - gamma) < GAMMA_TOLERANCE:
                return edge
        raise EdgeError("Error looking up an edge. Inheritance probability is \
not a match for any Edge in this set.")

    def get_set(self) -> list[Edge]:
        """
        Get the set, E, for a network, in insertion order.
        """
        return list(self.__edges.keys())

#######################
#### NETWORK CLASS ####
#######################

class Network:
    """
    This class represents a rooted directed acyclic graph containing nodes and
    edges, where edges (a, b) point from the parent a to the child b.

    Notes and Allowances:

    1) Nodes with in-degree 2 are reticulation (hybrid) nodes. Their parent
       edges carry inheritance probabilities that sum to 1.

    2) Node labels are unique within a network; they are how tips are matched
       to rows of trait tables.

    3) Cycles are not prevented at insertion time; use is_acyclic to check.
    """

    def __init__(self) -> None:
        """
        Initialize an empty Network object.

        Args:
            N/A
        Returns:
            N/A
        """
        self._nodes : NodeSet = NodeSet()
        self._edges : EdgeSet = EdgeSet()

    def __contains__(self, obj : Node | Edge) -> bool:
        """
        Allows a simple pythonic "n in net" or "e in net" check.
        """
        if type(obj) is Edge:
            return obj in self._edges
        elif type(obj) is Node:
            return obj in self._nodes
        raise TypeError("Networks only contain Node or Edge objects.")

    ##############################
    #### CONSTRUCTION/EDITING ####
    ##############################

    def add_nodes(self, *nodes : Node | list[Node]) -> None:
        """
        Add any amount of nodes to this Network. Lists of nodes are accepted
        as well.

        Args:
            *nodes (Node | list[Node]): Node objects, or lists of them.
        Returns:
            N/A
        """
        for node in nodes:
            if type(node) is list:
                self._nodes.add(*node)
            else:
                self._nodes.add(node)

    def add_edges(self, *edges : Edge | list[Edge]) -> None:
        """
        Add edges to the network. Each edge that you attempt to add must be
        between two nodes that exist in the network.

        Raises:
            NetworkError: if an edge references a node outside the network.
        Args:
            *edges (Edge | list[Edge]): a single edge, lists, or multiple.
        Returns:
            N/A
        """
        flat : list[Edge] = []
        for item in edges:
            if type(item) is list:
                flat.extend(item)
            else:
                flat.append(item)

        for edge in flat:
            if not self._nodes.ready(edge):
                raise NetworkError("Tried to add an edge between two nodes, at \
least one of which does not belong to this network.")
            if edge not in self._edges:
                self._edges.add(edge)
                self._nodes.process(edge)

    def remove_edge(self, edge : Edge) -> None:
        """
        Removes edge from the list of edges. Does not delete nodes with no
        edges. Has no effect if 'edge' is not in the network.

        Args:
            edge (Edge): an edge to remove from the network
        Returns:
            N/A
        """
        if edge in self._edges:
            self._edges.remove(edge)
            self._nodes.process(edge, removal = True)

    def remove_nodes(self, *nodes : Node) -> None:
        """
        Removes nodes, and prunes all edges connected to them. Has no effect
        for nodes that are not in this network.

        Args:
            *nodes (Node): Node objs
        Returns:
            N/A
        """
        for node in nodes:
            if node in self._nodes:
                for edge in list(self._nodes.in_edges(node)):
                    self.remove_edge(edge)
                for edge in list(self._nodes.out_edges(node)):
                    self.remove_edge(edge)
                self._nodes.remove(node)

    def update_node_name(self, node : Node, name : str) -> None:
        """
        Rename a node and update the bookkeeping.

        Args:
            node (Node): a node in the network
            name (str): the new name for the node.
        Returns:
            N/A
        """
        self._nodes.update(node, name)

    def rename_leaves(self, mapping : dict[str, str]) -> list[str]:
        """
        Rename tips according to a mapping from old labels to new labels.
        Tips whose label is not a key of the mapping keep their label.

        Raises:
            NetworkError: if two tips would get the same label, or if a new
                          label belongs to a node that is not renamed. The
                          network is left unchanged.
        Args:
            mapping (dict[str, str]): old label -> new label.
        Returns:
            list[str]: labels of the tips that were not in the mapping.
        """
        leaves = self.get_leaves()
        renamed = [leaf for leaf in leaves if leaf.label in mapping]
        unmapped = [leaf.label for leaf in leaves if leaf.label not in mapping]

        targets = [mapping[leaf.label] for leaf in renamed]
        duplicated = sorted({t for t in targets if targets.count(t) > 1})
        if duplicated:
            raise NetworkError(f"Several tips would be renamed to \
{duplicated}. Tip labels must be unique.")
        taken = [t for t in targets if self.has_node_named(t) is not None
                 and self.has_node_named(t) not in renamed]
        if taken:
            raise NetworkError(f"Cannot rename tips to {taken}: these labels \
belong to nodes that are not renamed.")

        # Two passes, so that swapping labels between tips is possible.
        for leaf in renamed:
            self.update_node_name(leaf, f"__rename_{id(leaf)}")
        for leaf, new_name in zip(renamed, targets):
            self.update_node_name(leaf, new_name)

        return unmapped

    ##########################
    #### ACCESS FUNCTIONS ####
    ##########################

    def V(self) -> list[Node]:
        """
        Get all nodes in V, in insertion order.

        Args:
            N/A
        Returns:
            list[Node]: the set V, in list form.
        """
        return self._nodes.get_set()

    def E(self) -> list[Edge]:
        """
        Get the set E (in list form).

        Args:
            N/A
        Returns:
            list[Edge]: The list of all edges in the network
        """
        return self._edges.get_set()

    def get_edge(self, n1 : Node, n2 : Node, gamma : float | None = None) -> Edge:
        """
        Get the edge from n1 to n2. In the event of bubbles, 2 edges exist with
        the same source and destination; supply the inheritance probability of
        the wanted one.

        Args:
            n1 (Node): parent node
            n2 (Node): child node
            gamma (float): inheritance probability. Optional. Defaults to None
        Returns:
           Edge: the edge from n1 to n2.
        """
        return self._edges.get(n1, n2, gamma)

    def has_node_named(self, name : str) -> Node | None:
        """
        Check whether the network has a node with a certain name.
        Strings must be exactly equal (same white space, capitalization, etc.)

        Args:
            name (str): the name to search for
        Returns:
            Node (or None): the node with the given name, if one exists.
        """
        return self._nodes.get(name)

    def in_degree(self, node : Node) -> int:
        return self._nodes.in_deg(node)

    def out_degree(self, node : Node) -> int:
        return self._nodes.out_deg(node)

    def in_edges(self, node : Node) -> list[Edge]:
        """
        Get the in-edges of a node in V, the edges where the node is the child.

        Args:
            node (Node): a node in V
        Returns:
            list[Edge]: the list of in-edges
        """
        return list(self._nodes.in_edges(node))

    def out_edges(self, node : Node) -> list[Edge]:
        """
        Get the out-edges of a node in V, the edges where the node is the
        parent.

        Args:
            node (Node): a node in V
        Returns:
            list[Edge]: the list of out-edges
        """
        return list(self._nodes.out_edges(node))

    def roots(self) -> list[Node]:
        """
        Return all nodes with in-degree 0 and at least one child.

        Args:
            N/A
        Returns:
            list[Node]: a list of root Node objects.
        """
        return [node for node in self.V()
                if self._nodes.in_deg(node) == 0
                and self._nodes.out_deg(node) != 0]

    def root(self) -> Node:
        """
        Return the root of the Network.

        Raises:
            NetworkError: If there are no roots in the network (cycle, or empty)
        Args:
            N/A
        Returns:
            Node: root Node object
        """
        roots = self.roots()
        if len(roots) == 0:
            raise NetworkError("There are no roots in this network. There is \
either a cycle, or nothing has been added and this is an empty network.")
        if len(roots) > 1:
            warnings.warn("Asked for singular root, but there are more than \
one. Returning the first one.")
        return roots[0]

    def get_leaves(self) -> list[Node]:
        """
        Returns the set X (a subset of V), the set of all leaves (nodes with
        out-degree 0 that have a parent).

        Args:
            N/A
        Returns:
            list[Node]: the leaves, in insertion order.
        """
        return [node for node in self.V()
                if self._nodes.out_deg(node) == 0
                and self._nodes.in_deg(node) != 0]

    def tip_labels(self) -> list[str]:
        return [leaf.label for leaf in self.get_leaves()]

    def get_parents(self, node : Node) -> list[Node]:
        """
        Returns a list of the parents of a node.

        Args:
            node (Node): any node in V.
        Returns:
            list[Node]: the parent nodes of 'node'
        """
        return [edge.src for edge in self._nodes.in_edges(node)]

    def get_children(self, node : Node) -> list[Node]:
        """
        Returns a list of the children of a node.

        Args:
            node (Node): any node in V.
        Returns:
            list[Node]: the child nodes of 'node'
        """
        return [edge.dest for edge in self._nodes.out_edges(node)]

    def hybrids(self) -> list[Node]:
        """
        All reticulation nodes, i.e. nodes with more than one parent.

        Args:
            N/A
        Returns:
            list[Node]: reticulation nodes, in insertion order.
        """
        return [node for node in self.V() if self._nodes.in_deg(node) > 1]

    def major_parent_edge(self, node : Node) -> Edge:
        """
        The major parent edge of a node. For tree nodes this is the unique
        parent edge.

        Raises:
            NetworkError: If 'node' has no parent.
        Args:
            node (Node): a non-root node of the network
        Returns:
            Edge: the major parent edge
        """
        in_edges = self._nodes.in_edges(node)
        if len(in_edges) == 0:
            raise NetworkError(f"Node {node.label} has no parent edge.")
        for edge in in_edges:
            if edge.is_major():
                return edge
        return max(in_edges, key = lambda e: e.get_gamma())

    def minor_parent_edges(self, node : Node) -> list[Edge]:
        """
        The parent edges of a node other than its major parent edge.
        """
        major = self.major_parent_edge(node)
        return [edge for edge in self._nodes.in_edges(node) if edge is not major]

    def preorder(self) -> list[Node]:
        """
        Order the nodes so that every node comes after all of its parents,
        starting from the root and following a depth first search that only
        enters a reticulation once all of its parents have been visited.

        Raises:
            NetworkError: If the network has a cycle or more than one root.
        Args:
            N/A
        Returns:
            list[Node]: nodes in pre-order.
        """
        roots = self.roots()
        if len(roots) != 1:
            raise NetworkError(f"Pre-order requires a single root, found \
{len(roots)}.")

        order : list[Node] = []
        visited_parents : dict[Node, int] = {}
        stack : list[Node] = [roots[0]]

        while len(stack) != 0:
            cur = stack.pop()
            order.append(cur)
            # Reverse so that the first child is visited first
            for child in reversed(self.get_children(cur)):
                visited_parents[child] = visited_parents.get(child, 0) + 1
                if visited_parents[child] == self.in_degree(child):
                    stack.append(child)

        reachable = [n for n in self.V()
                     if self.in_degree(n) != 0 or self.out_degree(n) != 0]
        if len(order) != len(reachable):
            raise NetworkError("Could not order all nodes: the network has a \
cycle or disconnected components.")
        return order

    def leaf_descendants(self, node : Node) -> set[Node]:
        """
        Compute the set of all leaf nodes that are descendants of the parameter
        node. Uses DFS to find paths to leaves.

        Args:
            node (Node): The node for which to compute leaf children
        Returns:
            set[Node]: The set of all leaves that descend from 'node'
        """
        if node not in self._nodes:
            raise NetworkError("Node not found in network.")

        q : deque[Node] = deque([node])
        leaves : set[Node] = set()
        seen : set[Node] = set()

        while len(q) != 0:
            cur = q.popleft()
            if cur in seen:
                continue
            seen.add(cur)
            if self.out_degree(cur) == 0:
                leaves.add(cur)
            q.extend(self.get_children(cur))

        return leaves

    def is_acyclic(self) -> bool:
        """
        Checks that the network has no directed cycle.

        Args:
            N/A
        Returns:
            bool: True if acyclic, False if cyclic.
        """
        return nx.is_directed_acyclic_graph(self.to_networkx())

    def is_tree(self) -> bool:
        """
        A network is a tree when no node has more than one parent.
        """
        return len(self.hybrids()) == 0

    def check_lengths(self) -> None:
        """
        Make sure every edge has a branch length.

        Raises:
            NetworkError: listing the edges that have no length.
        Args:
            N/A
        Returns:
            N/A
        """
        missing = [edge.to_names() for edge in self.E()
                   if edge.get_length() is None]
        if len(missing) != 0:
            raise NetworkError(f"Edges are missing branch lengths: {missing}. \
Calibrate the network or set lengths before using it for trait models.")

    ###################
    #### COPY / IO ####
    ###################

    def copy(self) -> tuple[Network, dict[Node, Node]]:
        """
        Copy this network into a new network object, also with new node and
        edge objects.

        Args:
            N/A
        Returns:
            tuple[Network, dict[Node, Node]]: A carbon copy of this Network,
                                              along with a mapping from the old
                                              network's nodes to the nodes in
                                              the new network.
        """
        net_copy : Network = Network()
        old_new : dict[Node, Node] = {}

        for node in self.V():
            new = node.copy()
            old_new[node] = new
            net_copy.add_nodes(new)

        for edge in self.E():
            net_copy.add_edges(edge.copy(old_new[edge.src], old_new[edge.dest]))

        return net_copy, old_new

    def displayed_trees(self) -> list[tuple[Network, float]]:
        """
        Every tree displayed by this network: one parent edge is kept for each
        reticulation, and the branches left without any leaf below them are
        pruned. Node labels are kept, so nodes of a displayed tree can be
        matched to the network's nodes by label.

        Args:
            N/A
        Returns:
            list[tuple[Network, float]]: each displayed tree and its weight,
                                         the product of the gammas of the kept
                                         hybrid edges. Weights sum to 1.
        """
        hybrids = self.hybrids()
        choices = [self.in_edges(h) for h in hybrids]
        leaf_labels = set(self.tip_labels())
        trees : list[tuple[Network, float]] = []

        for kept in product(*choices):
            weight = 1.0
            for edge in kept:
                weight *= edge.get_gamma()

            tree, old_new = self.copy()
            for hybrid, keep in zip(hybrids, kept):
                for edge in self.in_edges(hybrid):
                    if edge is not keep:
                        tree.remove_edge(tree.get_edge(old_new[edge.src],
                                                       old_new[hybrid],
                                                       edge.get_gamma()))
                new_edge = tree.in_edges(old_new[hybrid])[0]
                new_edge.set_gamma(1.0)
                new_edge.set_major(True)

            # Prune dangling internal nodes created by the removed edges
            dangling = [n for n in tree.V() if tree.out_degree(n) == 0
                        and n.label not in leaf_labels]
            while len(dangling) != 0:
                tree.remove_nodes(*dangling)
                dangling = [n for n in tree.V() if tree.out_degree(n) == 0
                            and n.label not in leaf_labels]

            trees.append((tree, weight))

        return trees

    def to_networkx(self) -> nx.MultiDiGraph:
        """
        Generates a networkx object from this network, keyed by node label.

        Args:
            N/A
        Returns:
            nx.MultiDiGraph: the network as a networkx graph
        """
        nx_network = nx.MultiDiGraph()
        nx_network.add_nodes_from([node.label for node in self.V()])
        for edge in self.E():
            nx_network.add_edge(edge.src.label, edge.dest.label,
                                length = edge.get_length(),
                                gamma = edge.get_gamma())
        return nx_network

    def __newick_help(self,
                      node : Node,
                      in_edge : Edge | None,
                      digits : int | None,
                      internal_labels : bool) -> str:
        """
        Helper function to "newick". Generates the newick string of the
        subnetwork below 'in_edge'. A reticulation's subnetwork is written
        once, at its major parent edge; its minor edges only repeat the
        "#H" label.
        """
        is_hybrid = self.in_degree(node) > 1
        name = node.label
        if is_hybrid and not name.startswith("#"):
            name = "#" + name
        elif not is_hybrid and not internal_labels and self.out_degree(node) != 0:
            if node.attribute_value("auto_name"):
                name = ""

        edge_str = ""
        if in_edge is not None:
            length = in_edge.get_length()
            length_str = "" if length is None else format_number(length, digits)
            if is_hybrid:
                edge_str = ":" + length_str + "::" + \
                           format_number(in_edge.get_gamma(), digits)
            elif length is not None:
                edge_str = ":" + length_str

        if is_hybrid and in_edge is not None and not in_edge.is_major():
            return name + edge_str

        if self.out_degree(node) == 0:
            return name + edge_str

        substr = ",".join(self.__newick_help(child_edge.dest, child_edge,
                                             digits, internal_labels)
                          for child_edge in self.out_edges(node))
        return "(" + substr + ")" + name + edge_str

    def newick(self,
               digits : int | None = None,
               internal_labels : bool = False) -> str:
        """
        Generates the extended newick representation of this Network. Hybrid
        edges are written as "#H1:length::gamma".

        Args:
            digits (int, optional): round lengths and gammas to this many
                                    decimals. Defaults to None (no rounding).
            internal_labels (bool, optional): write the names that were
                                              generated for unnamed internal
                                              nodes. Defaults to False.
        Returns:
            str: a newick string
        """
        return self.__newick_help(self.root(), None, digits,
                                  internal_labels) + ";"
