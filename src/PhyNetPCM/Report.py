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
Static html pages for tutorial output: prose, printed results, tables and
figures are collected in order and written to a single html file, figures
embedded as png images.

Release Version: 1.0.0
"""

from __future__ import annotations
import base64
import os
import webbrowser
from io import BytesIO
from typing import Any
import lxml.html
from lxml.html import builder as E
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
import pandas as pd

from .Network import Network
from .Plotting import plot_network
from .Settings import FIGURE_DPI


STYLE = """
body { font-family: sans-serif; max-width: 60em; margin: 2em auto; }
pre { background: #f5f5f5; padding: 0.8em; overflow-x: auto; }
table { border-collapse: collapse; margin: 1em 0; }
th, td { border: 1px solid #ccc; padding: 0.2em 0.6em; text-align: right; }
figure { margin: 1em 0; }
figcaption { font-style: italic; color: #555; }
"""

def figure_to_base64(fig : Figure) -> str:
    """
    Encode a matplotlib figure as a base64 png string.
    """
    tmpfile = BytesIO()
    fig.savefig(tmpfile, format = "png", dpi = FIGURE_DPI,
                bbox_inches = "tight")
    return base64.b64encode(tmpfile.getvalue()).decode("utf-8")

def _markdown_blocks(text : str) -> list[Any]:
    """
    Turn a small subset of markdown into html elements: "#" headings, fenced
    code blocks, and paragraphs separated by blank lines.
    """
    elements : list[Any] = []
    paragraph : list[str] = []
    code : list[str] | None = None

    def flush() -> None:
        if paragraph:
            elements.append(E.P(" ".join(paragraph)))
            paragraph.clear()

    for line in text.strip("\n").splitlines():
        stripped = line.strip()
        if code is not None:
            if stripped.startswith("```"):
                elements.append(E.PRE(E.CODE("\n".join(code))))
                code = None
            else:
                code.append(line)
        elif stripped.startswith("```"):
            flush()
            code = []
        elif stripped.startswith("#"):
            flush()
            level = min(len(stripped) - len(stripped.lstrip("#")), 6)
            heading = getattr(E, f"H{level}")
            elements.append(heading(stripped.lstrip("#").strip()))
        elif stripped == "":
            flush()
        else:
            paragraph.append(stripped)

    flush()
    if code is not None:
        elements.append(E.PRE(E.CODE("\n".join(code))))
    return elements

class Report:
    """
    Collects the output of a tutorial document and renders it as html.
    """

    def __init__(self, title : str) -> None:
        """
        Args:
            title (str): page title.
        Returns:
            N/A
        """
        self.title : str = title
        self.elements : list[Any] = [E.H1(title)]

    def add_markdown(self, text : str) -> None:
        """
        Add prose: headings ("#"), paragraphs, and fenced code blocks.
        """
        self.elements.extend(_markdown_blocks(text))

    def add_text(self, text : Any) -> None:
        """
        Add printed output, such as a model summary, as preformatted text.
        """
        self.elements.append(E.PRE(str(text)))

    def add_table(self, df : pd.DataFrame, float_format : str = "{:.4g}") -> None:
        """
        Add a data frame as an html table.
        """
        html = df.to_html(float_format = float_format.format, border = 0)
        self.elements.append(lxml.html.fragment_fromstring(html))

    def add_figure(self, fig : Figure, caption : str | None = None) -> None:
        """
        Add a matplotlib figure, embedded as a png. The figure is closed.
        """
        encoded = figure_to_base64(fig)
        plt.close(fig)
        parts = [E.IMG(src = f"data:image/png;base64,{encoded}")]
        if caption is not None:
            parts.append(E.E.figcaption(caption))
        self.elements.append(E.E.figure(*parts))

    def add_network(self,
                    net : Network,
                    caption : str | None = None,
                    **plot_kwargs : Any) -> None:
        """
        Draw a network (see Plotting.plot_network) and add the figure.
        """
        fig, _ = plot_network(net, **plot_kwargs)
        self.add_figure(fig, caption)

    def to_string(self) -> str:
        html = E.HTML(
                  E.HEAD(
                    E.META(charset = "utf-8"),
                    E.TITLE(self.title),
                    E.STYLE(STYLE)
                  ),
                  E.BODY(*self.elements)
                )
        return lxml.html.tostring(html, doctype = "<!DOCTYPE html>",
                                  pretty_print = True,
                                  encoding = "unicode")

    def to_html(self, path : str, open_browser : bool = False) -> str:
        """
        Write the html page.

        Args:
            path (str): destination file. Its directory is created if needed.
            open_browser (bool, optional): open the page in a browser.
                                           Defaults to False.
        Returns:
            str: the path written.
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok = True)
        with open(path, "w", encoding = "utf-8") as handle:
            handle.write(self.to_string())
        if open_browser:
            webbrowser.open("file://" + os.path.abspath(path), new = 1)
        return path
