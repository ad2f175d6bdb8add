#! /usr/bin/env python
# -*- coding: utf-8 -*-

##############################################################################
##  -- PhyNetPCM --
##  Library for Phylogenetic Comparative Methods on Phylogenetic Networks
##
##  Copyright 2025 Mark Kessler, Luay Nakhleh.
##  All rights reserved.
##############################################################################

"""
PhyNetPCM - Phylogenetic Comparative Methods on Networks

Trait evolution along reticulate phylogenies: network calibration,
phylogenetic regression, and ancestral state reconstruction.
"""

__version__ = "1.0.0"

# Core data structures
from .Network import Network, Node, Edge, NetworkError, NodeError, EdgeError

# Parsing and I/O
from .NetworkParser import (NetworkParser, NetworkParserError, parse_newick,
                            read_network, read_gene_trees, write_network)
from .TraitData import (TraitDataError, TaxaReport, read_trait_table,
                        read_name_map, summary_traits, species_summary,
                        add_binary_trait, check_taxa, rename_taxa,
                        rename_network_tips, subset_to_network)

# Models
from .Covariance import (NodeMatrix, shared_path_matrix, vcv, pagel_lambda,
                         distance_coefficients, pairwise_taxon_distance_matrix,
                         descendence_matrix, regressor_hybrid)
from .PhyloLM import (PhyloLMError, PhyloNetworkLinearModel, phylolm, lrtest,
                      ftest)
from .Ancestral import (ReconstructedStates, ancestral_state_reconstruction,
                        ancestral_state_reconstruction_bm)
from .DiscreteTrait import (SubstitutionModelError, DiscreteTraitError,
                            SubstitutionModel, EqualRatesModel,
                            BinaryTraitModel, AllRatesDifferentModel,
                            model_from_name, FittedDiscreteModel, fitdiscrete,
                            discrete_ancestral_states)
from .Calibration import (CalibrationError, CalibrationResult, GeneTrees,
                          read_gene_tree_directory, gene_tree_distances,
                          write_distance_csv, read_distance_csv,
                          calibrate_from_pairwise_distances, negative_edges,
                          fix_negative_edge_lengths, network_height,
                          rescale_edge_lengths)

# Output
from .Plotting import (network_layout, plot_network, plot_discrete_states,
                       plot_regression)
from .Report import Report
