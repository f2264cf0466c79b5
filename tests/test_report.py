"""
Tests for the HTML report system in analysis/report.py.

Covers section rendering (Table, Figure, Text), format parsing, the make_gt
helper, ReportBuilder assembly, and the structure of the rendered document
(TOC, numbering, metadata) without snapshotting full HTML.

Run: uv run pytest tests/test_report.py -v
"""

import base64
import re
import sys
from pathlib import Path

import polars as pl
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.report import (
    REPORT_CSS,
    FigureSection,
    ReportBuilder,
    TableSection,
    TextSection,
    _decimals_from_fmt,
    make_gt,
)

# ── Helpers ──────────────────────────────────────────────────────────────────


def _interval_frame() -> pl.DataFrame:
    return pl.DataFrame(
        {
            "method": ["wald", "wilson"],
            "lower": [-0.0859, 0.0179],
            "upper": [0.2859, 0.4042],
            "admissible": [False, True],
        }
    )


def _build_report(*sections: TableSection | FigureSection | TextSection) -> str:
    report = ReportBuilder(title="02_WALD Report", scenario="overdispersed")
    for section in sections:
        report.add(section)
    return report.render()


# ── _decimals_from_fmt() ─────────────────────────────────────────────────────


class TestDecimalsFromFmt:
    """Extract decimal count from a format spec."""

    @pytest.mark.parametrize(
        ("fmt", "expected"),
        [(".4f", 4), (",.1f", 1), (".0f", 0), ("d", 0)],
    )
    def test_decimals(self, fmt, expected):
        assert _decimals_from_fmt(fmt) == expected


# ── Section types ────────────────────────────────────────────────────────────


class TestTableSection:
    """Pre-rendered HTML table section."""

    def test_render_basic(self):
        html = TableSection(id="intervals", title="Intervals", html="<table></table>").render()
        assert '<div class="table-container" id="intervals">' in html
        assert "<table></table>" in html
        assert html.endswith("</div>")

    def test_frozen(self):
        section = TableSection(id="t1", title="T", html="<table></table>")
        with pytest.raises(AttributeError):
            section.id = "t2"  # type: ignore[misc]


class TestFigureSection:
    """Base64-embedded PNG figure section."""

    def test_render_basic(self):
        html = FigureSection(id="f1", title="Markers", image_data="AAAA").render()
        assert '<figure class="figure-container" id="f1">' in html
        assert "figcaption" not in html
        assert "data:image/png;base64,AAAA" in html
        assert 'alt="Markers"' in html

    def test_from_file(self, tmp_path):
        png_data = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
        png_path = tmp_path / "interval_markers.png"
        png_path.write_bytes(png_data)
        section = FigureSection.from_file("f1", "Markers", png_path, caption="Cap")
        assert section.image_data == base64.b64encode(png_data).decode("ascii")
        assert section.caption == "Cap"

    def test_caption_rendered(self):
        section = FigureSection(
            id="f1", title="Markers", image_data="AAAA", caption="Dashed: bounds"
        )
        assert '<figcaption class="caption">Dashed: bounds</figcaption>' in section.render()

    def test_frozen(self):
        section = FigureSection(id="f1", title="Plot", image_data="AAAA")
        with pytest.raises(AttributeError):
            section.title = "New"  # type: ignore[misc]


class TestTextSection:
    """Raw HTML text block."""

    def test_render_basic(self):
        html = TextSection(id="x1", title="Note", html="<p>Hello</p>").render()
        assert '<div class="text-container" id="x1">' in html
        assert "<p>Hello</p>" in html


# ── make_gt() ────────────────────────────────────────────────────────────────


class TestMakeGt:
    """great_tables helper for APA-style tables."""

    def test_returns_html_string(self):
        html = make_gt(_interval_frame(), title="Interval Estimates")
        assert isinstance(html, str)
        assert "Interval Estimates" in html

    def test_rejects_non_polars(self):
        with pytest.raises(TypeError, match="polars DataFrame"):
            make_gt({"a": [1]}, title="Bad")

    def test_column_labels_applied(self):
        html = make_gt(_interval_frame(), column_labels={"admissible": "Within [0, 1]"})
        assert "Within [0, 1]" in html

    def test_source_note(self):
        html = make_gt(_interval_frame(), title="T", source_note="Unclamped")
        assert "Unclamped" in html

    def test_number_format_rounds(self):
        html = make_gt(pl.DataFrame({"value": [0.123456]}), number_formats={"value": ".2f"})
        assert "0.12" in html
        assert "0.123456" not in html

    def test_negative_bound_rendered(self):
        html = make_gt(_interval_frame(), number_formats={"lower": ".4f"})
        assert "0.0859" in html

    def test_format_for_missing_column_ignored(self):
        html = make_gt(_interval_frame(), number_formats={"nonexistent": ".2f"})
        assert isinstance(html, str)

    def test_no_title_still_works(self):
        assert "<" in make_gt(pl.DataFrame({"x": [1]}))


# ── ReportBuilder ────────────────────────────────────────────────────────────


class TestReportBuilder:
    """Assembles sections into a single HTML file."""

    def test_empty_builder(self):
        report = ReportBuilder(title="Test")
        assert report.has_sections is False
        assert report.n_sections == 0

    def test_add_counts_sections(self):
        report = ReportBuilder(title="Test")
        report.add(TextSection(id="s1", title="S1", html="<p>Hi</p>"))
        report.add(TextSection(id="s2", title="S2", html="<p>Hi</p>"))
        assert report.has_sections is True
        assert report.n_sections == 2

    def test_render_includes_git_hash_prefix(self):
        report = ReportBuilder(title="Test", git_hash="abcdef12" + "0" * 32)
        report.add(TextSection(id="s1", title="S", html="<p>Hi</p>"))
        assert "abcdef12" in report.render()

    @pytest.mark.parametrize(("git_hash", "expected"), [("", ""), ("unknown", ""), ("abc", "abc")])
    def test_short_hash(self, git_hash, expected):
        assert ReportBuilder(git_hash=git_hash).short_hash == expected

    def test_render_no_git_hash_when_unknown(self):
        report = ReportBuilder(title="Test", git_hash="unknown")
        report.add(TextSection(id="s1", title="S", html="<p>Hi</p>"))
        assert "Git:" not in report.render()

    def test_render_includes_elapsed_display(self):
        report = ReportBuilder(title="Test", elapsed_display="2m 15s")
        assert "Runtime: 2m 15s" in report.render()

    def test_render_no_runtime_when_empty(self):
        assert "Runtime:" not in ReportBuilder(title="Test").render()

    def test_write_creates_file(self, tmp_path):
        report = ReportBuilder(title="Test")
        report.add(TextSection(id="s1", title="S", html="<p>Hi</p>"))
        path = tmp_path / "report.html"
        report.write(path)
        assert path.read_text().startswith("<!DOCTYPE html>")


# ── Document structure ───────────────────────────────────────────────────────


class TestReportStructure:
    """Structural assertions on the rendered HTML skeleton."""

    @pytest.fixture
    def three_section_html(self) -> str:
        return _build_report(
            TableSection(id="intervals", title="Interval Estimates", html="<table></table>"),
            FigureSection(id="interval-markers", title="Markers", image_data="AAAA"),
            TextSection(id="admissibility", title="Inadmissible Bounds", html="<p>x</p>"),
        )

    def test_toc_anchors_match_section_ids(self, three_section_html):
        toc = re.findall(r'<li><a href="#([\w-]+)">', three_section_html)
        ids = re.findall(r'<section class="report-section" id="([\w-]+)">', three_section_html)
        assert toc == ids == ["intervals", "interval-markers", "admissibility"]

    def test_section_numbering_sequential(self, three_section_html):
        numbers = re.findall(r'<span class="section-number">(\d+)\.</span>', three_section_html)
        assert numbers == ["1", "2", "3"]

    def test_all_container_types_present(self, three_section_html):
        assert 'class="table-container"' in three_section_html
        assert 'class="figure-container"' in three_section_html
        assert 'class="text-container"' in three_section_html

    def test_title_in_h1_and_head(self, three_section_html):
        assert "<h1>02_WALD Report</h1>" in three_section_html
        assert "<title>02_WALD Report</title>" in three_section_html

    def test_scenario_in_header_meta(self, three_section_html):
        assert "Scenario: <strong>overdispersed</strong>" in three_section_html

    def test_footer_contains_title(self, three_section_html):
        footer = re.search(r"<footer>(.*?)</footer>", three_section_html, re.DOTALL)
        assert footer is not None
        assert "02_WALD Report" in footer.group(1)

    def test_timestamp_present(self, three_section_html):
        assert re.search(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2} UTC", three_section_html)

    def test_css_embedded(self, three_section_html):
        assert "<style>" in three_section_html
        assert "nav.toc" in three_section_html
        assert len(REPORT_CSS) > 100

    def test_empty_report_has_shell_but_no_sections(self):
        html = ReportBuilder(title="Empty").render()
        assert html.startswith("<!DOCTYPE html>")
        assert "</html>" in html
        assert '<section class="report-section"' not in html
        assert re.findall(r"<li><a href=", html) == []

    def test_duplicate_ids_both_rendered(self):
        html = _build_report(
            TextSection(id="dup", title="First", html="<p>1</p>"),
            TextSection(id="dup", title="Second", html="<p>2</p>"),
        )
        assert len(re.findall(r'<li><a href="#dup">', html)) == 2

    def test_gt_table_inside_report(self):
        gt_html = make_gt(_interval_frame(), title="Interval Estimates")
        html = _build_report(TableSection(id="intervals", title="Intervals", html=gt_html))
        assert "Interval Estimates" in html
        assert '<div class="table-container" id="intervals">' in html
        assert '<a href="#intervals">' in html
