import pandas as pd
import matplotlib.pyplot as plt
import lxml.html
from PhyNetPCM.NetworkParser import parse_newick
from PhyNetPCM.Report import Report, figure_to_base64
from PhyNetPCM.test.builders import ONE_HYBRID_NETWORK


class TestReport:

    def test_markdown(self):
        report = Report("Demo")
        report.add_markdown("""
# Section

First line
of a paragraph.

```
code here
```
""")
        doc = lxml.html.fromstring(report.to_string())
        assert doc.findtext(".//h1") == "Demo"
        assert doc.findtext(".//h2") is None
        headings = [h.text for h in doc.iter("h1")]
        assert headings == ["Demo", "Section"]
        assert doc.findtext(".//p") == "First line of a paragraph."
        assert doc.findtext(".//pre/code") == "code here"

    def test_text_and_table(self):
        report = Report("Tables")
        report.add_text("loglik = -3.2")
        report.add_table(pd.DataFrame({"a" : [1.23456, 2.0]}, index = ["x", "y"]))
        doc = lxml.html.fromstring(report.to_string())
        assert doc.findtext(".//pre") == "loglik = -3.2"
        cells = [td.text for td in doc.iter("td")]
        assert "1.235" in cells

    def test_figures_are_embedded(self, tmp_path):
        report = Report("Figures")
        report.add_network(parse_newick(ONE_HYBRID_NETWORK), caption = "net")
        fig, ax = plt.subplots()
        ax.plot([0, 1], [0, 1])
        report.add_figure(fig)
        assert not plt.fignum_exists(fig.number)

        path = report.to_html(str(tmp_path / "site" / "figures.html"))
        text = (tmp_path / "site" / "figures.html").read_text()
        assert path.endswith("figures.html")
        assert text.startswith("<!DOCTYPE html>")
        assert text.count("data:image/png;base64,") == 2
        assert "<figcaption>net</figcaption>" in text

    def test_base64(self):
        fig, ax = plt.subplots()
        encoded = figure_to_base64(fig)
        plt.close(fig)
        assert encoded.startswith("iVBOR")
