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
Run settings shared by the analysis modules. Every function that reads one of
these values also accepts an explicit keyword argument that overrides it.

Release Version: 1.0.0
"""

import os

## --- data tables ---
DEFAULT_TIP_COLUMN = "tipNames"
SD_SUFFIX = "_sd"
N_SUFFIX = "_n"

## --- networks ---
INTERNAL_PREFIX = "I"
HYBRID_PREFIXES = ("H", "R", "LGT")
GAMMA_TOLERANCE = 1e-8

## --- statistics ---
CONFIDENCE_LEVEL = 0.95
LAMBDA_BOUNDS = (0.0, 1.0)
XTOL = 1e-8
FTOL = 1e-10
MAX_ITER = 1000

## --- discrete traits ---
RATE_BOUNDS = (1e-8, 1e4)
DEFAULT_ROOT_PRIOR = "stationary"

## --- calibration ---
MIN_EDGE_LENGTH = 0.0
DISTANCE_NORMALIZATION = "median"

## --- plotting / reports ---
FIGURE_SIZE = (7.0, 5.0)
FIGURE_DPI = 100
MINOR_EDGE_COLOR = "tab:blue"
MAJOR_EDGE_COLOR = "black"
SITE_DIRECTORY = os.path.join("tutorials", "site")
