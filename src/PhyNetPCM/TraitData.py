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
Trait tables: reading CSV files, summarising individuals per species, and
reconciling taxon names between a table and a network.

Release Version: 1.0.0
"""

from __future__ import annotations
from dataclasses import dataclass, field
import warnings
import numpy as np
import pandas as pd

from .Network import Network
from .Settings import DEFAULT_TIP_COLUMN, N_SUFFIX, SD_SUFFIX


#########################
#### EXCEPTION CLASS ####
#########################

class TraitDataError(Exception):
    """
    Raised when a trait table is missing columns, or cannot be matched to a
    network.
    """
    def __init__(self, message : str = "Error handling trait data") -> None:
        self.message = message
        super().__init__(self.message)

##################
#### READING #####
##################

def read_trait_table(path : str, tip_column : str | None = None) -> pd.DataFrame:
    """
    Read a CSV trait table. The tip column is read as text, so that taxon
    names like "0123" are not turned into numbers.

    Raises:
        TraitDataError: if the tip column is not in the file.
    Args:
        path (str): path to a CSV file.
        tip_column (str, optional): column of taxon names. Defaults to
                                    Settings.DEFAULT_TIP_COLUMN.
    Returns:
        pd.DataFrame: the table.
    """
    tip_column = tip_column or DEFAULT_TIP_COLUMN
    df = pd.read_csv(path, dtype = {tip_column : str})
    if tip_column not in df.columns:
        raise TraitDataError(f"Column '{tip_column}' not found in {path}. \
Columns are: {list(df.columns)}")
    df[tip_column] = df[tip_column].str.strip()
    return df

def read_name_map(path : str,
                  from_column : str,
                  to_column : str) -> dict[str, str]:
    """
    Read a two column CSV that maps one set of taxon names to another, such as
    individual (gene tree) names to species (network) names.

    Raises:
        TraitDataError: if a column is missing, or a name maps to two
                        different names.
    Args:
        path (str): path to a CSV file.
        from_column (str): column of the names to translate.
        to_column (str): column of the translated names.
    Returns:
        dict[str, str]: from name -> to name.
    """
    df = pd.read_csv(path, dtype = str)
    for col in (from_column, to_column):
        if col not in df.columns:
            raise TraitDataError(f"Column '{col}' not found in {path}.")

    df = df[[from_column, to_column]].dropna()
    mapping : dict[str, str] = {}
    for old, new in zip(df[from_column].str.strip(), df[to_column].str.strip()):
        if old in mapping and mapping[old] != new:
            raise TraitDataError(f"Name '{old}' is mapped to both \
'{mapping[old]}' and '{new}'.")
        mapping[old] = new
    return mapping

#########################
#### SPECIES SUMMARY ####
#########################

def summary_traits(df : pd.DataFrame) -> list[str]:
    """
    Names of the traits that are given as species summaries, that is traits
    't' for which columns t, t_sd and t_n are all present.

    Args:
        df (pd.DataFrame): a trait table.
    Returns:
        list[str]: trait names, in column order.
    """
    cols = set(df.columns)
    return [c for c in df.columns
            if c + SD_SUFFIX in cols and c + N_SUFFIX in cols]

def species_summary(df : pd.DataFrame,
                    tip_column : str,
                    traits : list[str]) -> pd.DataFrame:
    """
    Summarise individual level data into one row per species: the mean,
    standard deviation (ddof 1) and number of non missing values of each trait.
    Other columns that take a single value within every species are carried
    along.

    Raises:
        TraitDataError: if a trait column or the tip column is missing.
    Args:
        df (pd.DataFrame): individual level table.
        tip_column (str): the species column.
        traits (list[str]): the traits to summarise.
    Returns:
        pd.DataFrame: one row per species, with columns tip_column, and for
                      each trait t, t, t_sd and t_n.
    """
    missing = [c for c in [tip_column] + list(traits) if c not in df.columns]
    if len(missing) != 0:
        raise TraitDataError(f"Columns missing from the table: {missing}")

    grouped = df.groupby(tip_column, sort = False)
    species = grouped.size().index
    out = pd.DataFrame({tip_column : list(species)})

    for trait in traits:
        stats = grouped[trait].agg(["mean", "std", "count"]).reindex(species)
        out[trait] = stats["mean"].to_numpy()
        out[trait + SD_SUFFIX] = stats["std"].to_numpy()
        out[trait + N_SUFFIX] = stats["count"].to_numpy().astype(int)

    others = [c for c in df.columns if c != tip_column and c not in traits]
    for col in others:
        nunique = grouped[col].nunique(dropna = False).reindex(species)
        if (nunique <= 1).all():
            out[col] = grouped[col].first().reindex(species).to_numpy()

    return out

def add_binary_trait(df : pd.DataFrame,
                     column : str,
                     threshold : float,
                     labels : tuple[str, str] = ("low", "high"),
                     new_column : str | None = None) -> pd.DataFrame:
    """
    Discretise a continuous column into two states: values strictly above the
    threshold get the second label. Missing values stay missing.

    Args:
        df (pd.DataFrame): a trait table.
        column (str): the continuous column.
        threshold (float): values above this are in the "high" state.
        labels (tuple[str, str], optional): the two state names. Defaults to
                                            ("low", "high").
        new_column (str, optional): name of the discrete column. Defaults to
                                    column + "_state".
    Returns:
        pd.DataFrame: a copy of df with the new column.
    """
    if column not in df.columns:
        raise TraitDataError(f"Column '{column}' not found.")
    new_column = new_column or column + "_state"
    out = df.copy()
    values = out[column].to_numpy(dtype = float)
    states = np.where(values > threshold, labels[1], labels[0]).astype(object)
    states[np.isnan(values)] = None
    out[new_column] = states
    return out

######################
#### TAXON NAMES #####
######################

@dataclass
class TaxaReport:
    """
    Result of matching the taxa of a trait table to the tips of a network.
    """
    matched : list[str] = field(default_factory = list)
    missing_in_network : list[str] = field(default_factory = list)
    missing_in_data : list[str] = field(default_factory = list)

    @property
    def is_consistent(self) -> bool:
        return len(self.missing_in_network) == 0 and \
               len(self.missing_in_data) == 0

    def __str__(self) -> str:
        lines = ["=" * 60,
                 "TAXA CHECK",
                 "=" * 60,
                 f"Matched taxa: {len(self.matched)}"]
        if self.missing_in_network:
            lines.append(f"In the data but not in the network \
({len(self.missing_in_network)}):")
            lines.extend("  " + name for name in self.missing_in_network)
        if self.missing_in_data:
            lines.append(f"In the network but not in the data \
({len(self.missing_in_data)}):")
            lines.extend("  " + name for name in self.missing_in_data)
        if self.is_consistent:
            lines.append("All taxa match.")
        lines.append("=" * 60)
        return "\n".join(lines)

def check_taxa(net : Network,
               df : pd.DataFrame,
               tip_column : str | None = None) -> TaxaReport:
    """
    Compare the taxon names of a table with the tips of a network. This is
    how a name mismatch (a typo, a renamed species) is found before a model
    is fitted.

    Args:
        net (Network): a network.
        df (pd.DataFrame): a trait table.
        tip_column (str, optional): the taxon column. Defaults to
                                    Settings.DEFAULT_TIP_COLUMN.
    Returns:
        TaxaReport: matched and unmatched names.
    """
    tip_column = tip_column or DEFAULT_TIP_COLUMN
    if tip_column not in df.columns:
        raise TraitDataError(f"Column '{tip_column}' not found.")

    tips = net.tip_labels()
    tip_set = set(tips)
    data_taxa = list(dict.fromkeys(df[tip_column].dropna().astype(str)))
    data_set = set(data_taxa)

    return TaxaReport(matched = [t for t in data_taxa if t in tip_set],
                      missing_in_network = [t for t in data_taxa
                                            if t not in tip_set],
                      missing_in_data = [t for t in tips if t not in data_set])

def rename_taxa(df : pd.DataFrame,
                column : str,
                mapping : dict[str, str]) -> pd.DataFrame:
    """
    Rename the taxa of a table. Names not in the mapping are kept, with a
    warning that lists them.

    Args:
        df (pd.DataFrame): a trait table.
        column (str): the taxon column.
        mapping (dict[str, str]): old name -> new name.
    Returns:
        pd.DataFrame: a copy of df with renamed taxa.
    """
    if column not in df.columns:
        raise TraitDataError(f"Column '{column}' not found.")
    out = df.copy()
    present = out[column].notna().to_numpy()
    names = out[column][present].astype(str)
    unmapped = sorted(set(names) - set(mapping))
    if unmapped:
        warnings.warn(f"{len(unmapped)} taxa have no entry in the name map \
and keep their name: {unmapped}")
    # missing taxa stay missing
    renamed = out[column].astype(object).to_numpy(copy = True)
    renamed[present] = [mapping.get(name, name) for name in names]
    out[column] = renamed
    return out

def rename_network_tips(net : Network, mapping : dict[str, str]) -> list[str]:
    """
    Rename the tips of a network in place. Tips not in the mapping are kept,
    with a warning that lists them.

    Raises:
        NetworkError: if two tips would share a name after renaming. The
                      network is then left unchanged.
    Args:
        net (Network): a network.
        mapping (dict[str, str]): old name -> new name.
    Returns:
        list[str]: the tip names that were not in the mapping.
    """
    unmapped = net.rename_leaves(mapping)
    if unmapped:
        warnings.warn(f"{len(unmapped)} tips have no entry in the name map \
and keep their name: {unmapped}")
    return unmapped

def subset_to_network(df : pd.DataFrame,
                      net : Network,
                      tip_column : str | None = None) -> pd.DataFrame:
    """
    Keep the rows of a table whose taxon is a tip of the network.
    """
    tip_column = tip_column or DEFAULT_TIP_COLUMN
    tips = set(net.tip_labels())
    return df[df[tip_column].astype(str).isin(tips)].reset_index(drop = True)
