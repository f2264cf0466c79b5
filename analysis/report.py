"""Self-contained HTML reports for the analysis phases.

A report is an ordered list of sections rendered into one HTML file (Jinja2
template, inline CSS, base64 PNGs) with a numbered table of contents:

  - TableSection: HTML from make_gt() (great_tables, APA-style rules).
  - FigureSection: a PNG read from the phase's plots directory.
  - TextSection: primers, formulas, and interpretation notes.

Usage:
    from analysis.report import ReportBuilder, TableSection, FigureSection, make_gt

    report = ReportBuilder(title="Wald Report", scenario="overdispersed")
    report.add(TableSection(id="intervals", title="Intervals", html=make_gt(df)))
    report.add(FigureSection.from_file("markers", "Interval Markers", path))
    report.write(Path("report.html"))
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from jinja2 import Environment

# ── Section Types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TableSection:
    """A great_tables table, already rendered to HTML."""

    id: str
    title: str
    html: str

    def render(self) -> str:
        return f'<div class="table-container" id="{self.id}">\n{self.html}\n</div>'


@dataclass(frozen=True)
class FigureSection:
    """A PNG figure embedded as base64, with an optional caption underneath."""

    id: str
    title: str
    image_data: str  # base64-encoded PNG
    caption: str | None = None

    @classmethod
    def from_file(
        cls,
        id: str,
        title: str,
        path: Path,
        caption: str | None = None,
    ) -> FigureSection:
        b64 = base64.b64encode(path.read_bytes()).decode("ascii")
        return cls(id=id, title=title, image_data=b64, caption=caption)

    def render(self) -> str:
        lines = [
            f'<figure class="figure-container" id="{self.id}">',
            f'<img src="data:image/png;base64,{self.image_data}" alt="{self.title}" />',
        ]
        if self.caption:
            lines.append(f'<figcaption class="caption">{self.caption}</figcaption>')
        lines.append("</figure>")
        return "\n".join(lines)


@dataclass(frozen=True)
class TextSection:
    """Hand-written HTML (paragraphs, lists, formulas)."""

    id: str
    title: str
    html: str

    def render(self) -> str:
        return f'<div class="text-container" id="{self.id}">\n{self.html}\n</div>'


SectionType = TableSection | FigureSection | TextSection


# ── make_gt Helper ────────────────────────────────────────────────────────────

# Heavy rule above and below the table, light rule under the column labels
_APA_OPTIONS = {
    "table_border_top_style": "solid",
    "table_border_top_width": "2px",
    "table_border_top_color": "#000000",
    "table_border_bottom_style": "solid",
    "table_border_bottom_width": "2px",
    "table_border_bottom_color": "#000000",
    "column_labels_border_bottom_style": "solid",
    "column_labels_border_bottom_width": "1px",
    "column_labels_border_bottom_color": "#000000",
    "table_width": "100%",
    "table_font_size": "14px",
    "source_notes_font_size": "11px",
}


def make_gt(
    df: object,
    title: str | None = None,
    column_labels: dict[str, str] | None = None,
    number_formats: dict[str, str] | None = None,
    source_note: str | None = None,
) -> str:
    """Render a polars DataFrame as an APA-style great_tables table.

    ``number_formats`` maps column names to format specs such as ".4f"; only
    the decimal count is used, and columns not in ``df`` are skipped. Interval
    bounds are shown as given, negative values included.

    Returns:
        HTML with inline CSS, ready for a TableSection.
    """
    import great_tables as gt_mod
    import polars as pl

    if not isinstance(df, pl.DataFrame):
        msg = f"make_gt expects a polars DataFrame, got {type(df).__name__}"
        raise TypeError(msg)

    tbl = gt_mod.GT(df)
    if title:
        tbl = tbl.tab_header(title=title)
    if column_labels:
        tbl = tbl.cols_label(**column_labels)
    for col_name, fmt in (number_formats or {}).items():
        if col_name in df.columns:
            tbl = tbl.fmt_number(columns=col_name, decimals=_decimals_from_fmt(fmt))
    if source_note:
        tbl = tbl.tab_source_note(source_note)

    return tbl.tab_options(**_APA_OPTIONS).as_raw_html(inline_css=True)


def _decimals_from_fmt(fmt: str) -> int:
    """Decimal count from a format spec like '.4f'; 0 when there is none."""
    m = re.search(r"\.(\d+)f", fmt)
    return int(m.group(1)) if m else 0


# ── ReportBuilder ─────────────────────────────────────────────────────────────


@dataclass
class ReportBuilder:
    """Collects sections for one phase and writes them as a single HTML file.

    RunContext fills in ``git_hash`` and ``elapsed_display`` just before
    writing, and only writes the file when ``has_sections`` is true.
    """

    title: str = "Analysis Report"
    scenario: str = ""
    git_hash: str = ""
    elapsed_display: str = ""
    _sections: list[SectionType] = field(default_factory=list)

    def add(self, section: SectionType) -> None:
        self._sections.append(section)

    @property
    def has_sections(self) -> bool:
        return bool(self._sections)

    @property
    def n_sections(self) -> int:
        return len(self._sections)

    @property
    def short_hash(self) -> str:
        """First 8 characters of the commit, or "" when git was unavailable."""
        if not self.git_hash or self.git_hash == "unknown":
            return ""
        return self.git_hash[:8]

    def render(self) -> str:
        return _TEMPLATE.render(
            title=self.title,
            scenario=self.scenario,
            short_hash=self.short_hash,
            elapsed_display=self.elapsed_display,
            generated_at=datetime.now(UTC).strftime("%Y-%m-%d %H:%M UTC"),
            sections=list(enumerate(self._sections, 1)),
            css=REPORT_CSS,
        )

    def write(self, path: Path) -> None:
        path.write_text(self.render(), encoding="utf-8")


# ── Template & CSS ────────────────────────────────────────────────────────────


REPORT_CSS = """\
body {
  font-family: Georgia, "Times New Roman", serif;
  max-width: 960px;
  margin: 0 auto;
  padding: 24px 32px;
  color: #1a1a1a;
  line-height: 1.55;
}
header { border-bottom: 3px solid #1a1a1a; margin-bottom: 24px; }
header .meta { font-size: 13px; color: #555; }
header .meta span { margin-right: 16px; }
nav.toc { background: #f6f6f2; border: 1px solid #ddd; padding: 12px 20px; }
nav.toc a { color: #0b5394; text-decoration: none; }
section.report-section { margin: 32px 0; }
section.report-section h2 { font-size: 18px; border-bottom: 2px solid #333; }
.section-number { color: #888; font-weight: 400; }
.table-container { overflow-x: auto; }
.figure-container { text-align: center; margin: 12px 0; }
.figure-container img { max-width: 100%; }
.caption { font-size: 12px; color: #666; font-style: italic; }
code { background: #f2f2f2; padding: 0 3px; }
footer { margin-top: 48px; border-top: 1px solid #ccc; font-size: 11px; color: #888; }
@media print { nav.toc { display: none; } }"""

_TEMPLATE = Environment(autoescape=False).from_string("""\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>{{ title }}</title>
  <style>{{ css }}</style>
</head>
<body>
  <header>
    <h1>{{ title }}</h1>
    <div class="meta">
      {% if scenario %}<span>Scenario: <strong>{{ scenario }}</strong></span>{% endif %}
      <span>Generated: {{ generated_at }}</span>
      {% if elapsed_display %}<span>Runtime: {{ elapsed_display }}</span>{% endif %}
      {% if short_hash %}<span>Git: <code>{{ short_hash }}</code></span>{% endif %}
    </div>
  </header>
  <nav class="toc">
    <ol>
      {% for number, section in sections %}
      <li><a href="#{{ section.id }}">{{ section.title }}</a></li>
      {% endfor %}
    </ol>
  </nav>
  {% for number, section in sections %}
  <section class="report-section" id="{{ section.id }}">
    <h2><span class="section-number">{{ number }}.</span> {{ section.title }}</h2>
    {{ section.render() }}
  </section>
  {% endfor %}
  <footer>{{ title }} | {{ generated_at }}{% if short_hash %} | {{ short_hash }}{% endif %}</footer>
</body>
</html>""")
