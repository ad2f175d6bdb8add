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
##############################################################################

"""
Convert the tutorial scripts ("# %%" code cells and "# %% [markdown]" prose
cells) into Jupyter notebooks, written next to the scripts.

Usage, from the repository root:

    python tutorials/build_notebooks.py
"""

import glob
import os
import nbformat

TUTORIAL_DIR = os.path.dirname(os.path.abspath(__file__))
CELL_MARKER = "# %%"
MARKDOWN_MARKER = "# %% [markdown]"


def md(lines : list[str]) -> nbformat.NotebookNode:
    text = "\n".join(line[2:] if line.startswith("# ") else line.lstrip("#")
                     for line in lines)
    return nbformat.v4.new_markdown_cell(text.strip("\n"))

def code(lines : list[str]) -> nbformat.NotebookNode:
    return nbformat.v4.new_code_cell("\n".join(lines).strip("\n"))

def script_to_notebook(path : str) -> nbformat.NotebookNode:
    """
    Split a percent-format script into notebook cells.

    Args:
        path (str): a tutorial script.
    Returns:
        nbformat.NotebookNode: the notebook.
    """
    nb = nbformat.v4.new_notebook()
    nb.metadata["kernelspec"] = {"name" : "python3",
                                 "display_name" : "Python 3",
                                 "language" : "python"}

    with open(path, encoding = "utf-8") as handle:
        lines = handle.read().splitlines()

    kind, current = None, []
    for line in lines + [CELL_MARKER]:
        if line.startswith(CELL_MARKER):
            if kind == "markdown":
                nb.cells.append(md(current))
            elif kind == "code" and any(s.strip() for s in current):
                nb.cells.append(code(current))
            kind = "markdown" if line.startswith(MARKDOWN_MARKER) else "code"
            current = []
        else:
            current.append(line)
    return nb

def main() -> None:
    for path in sorted(glob.glob(os.path.join(TUTORIAL_DIR, "[0-9]*.py"))):
        nb = script_to_notebook(path)
        nbformat.validate(nb)
        out = os.path.splitext(path)[0] + ".ipynb"
        nbformat.write(nb, out)
        print(f"{os.path.basename(out)}: {len(nb.cells)} cells")

if __name__ == "__main__":
    main()
