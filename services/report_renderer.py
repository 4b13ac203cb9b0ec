"""
HTML report rendering for Parity.

Diff records are turned into nested ReportSections and assembled into one
self-contained HTML document. Output is byte-identical for identical
inputs: there are no timestamps, anchors are hashes of scope paths and all
collections are emitted in sorted order.

Every element describing an unchanged entity or attribute carries the
``CanHide`` class; the inlined toggle script hides those elements while the
``OnlyShowChanges`` checkbox is ticked.
"""
import hashlib
import logging
from dataclasses import dataclass, field
from html import escape
from pathlib import Path
from typing import Iterable, Optional

from core.catalog import CATALOG, Catalog
from core.comparison import (
    AttributeChange,
    ChangeType,
    DiffRecord,
    create_inline_diff,
    normalize_value,
)
from core.errors import ParseError
from core.models import AttributeValue, ChangeState, Domain, DuplicateIdentity

logger = logging.getLogger(__name__)

TOGGLE_SCRIPT_PATH = Path(__file__).with_name("report_toggle.js")
HIDEABLE_CLASS = "CanHide"
TOGGLE_ID = "OnlyShowChanges"

REPORT_CSS = """
body { font-family: Segoe UI, Helvetica, Arial, sans-serif; font-size: 13px; color: #1f2937; margin: 24px; }
h1 { color: #1e40af; }
h2 { color: #1e40af; border-bottom: 2px solid #1e40af; padding-bottom: 4px; }
h3 { color: #374151; margin-top: 24px; }
table { border-collapse: collapse; margin: 6px 0 12px 0; }
th, td { border: 1px solid #d1d5db; padding: 3px 8px; text-align: left; vertical-align: top; }
th { background: #f3f4f6; }
.Entity { margin-left: 12px; }
.State { font-weight: bold; padding: 0 6px; border-radius: 3px; }
.State.Added { background: #dcfce7; color: #166534; }
.State.Deleted { background: #fee2e2; color: #991b1b; }
.State.Modified { background: #fef3c7; color: #92400e; }
.State.Unchanged { background: #f3f4f6; color: #6b7280; }
.State.UnableToCompare { background: #ede9fe; color: #5b21b6; }
tr.added td, tr.Added td { background: #f0fdf4; }
tr.removed td, tr.Deleted td { background: #fef2f2; }
tr.modified td, tr.array_modified td, tr.Modified td { background: #fffbeb; }
.hl-added { background: #bbf7d0; }
.hl-removed { background: #fecaca; text-decoration: line-through; }
.Flag, .Error { border: 1px solid #7c3aed; background: #f5f3ff; padding: 6px 10px; }
.Error { border-color: #dc2626; background: #fef2f2; }
.Warnings { border: 1px solid #d97706; background: #fffbeb; padding: 6px 10px; }
.Notice { color: #6b7280; font-style: italic; }
.TOC ul { list-style: none; padding-left: 0; }
.TOC .TocLevel2 { margin-left: 16px; }
.TOC .TocLevel3 { margin-left: 32px; }
""".strip()


@dataclass
class TocEntry:
    title: str
    anchor: str
    level: int
    hideable: bool = False
    state: Optional[ChangeState] = None


@dataclass
class ReportSection:
    """A rendered block: one domain, one entity type group or one entity."""
    title: str
    anchor: str
    level: int
    rows: list[str] = field(default_factory=list)
    sections: list["ReportSection"] = field(default_factory=list)
    hideable: bool = False
    css_class: str = "Section"

    def to_html(self) -> str:
        heading = min(self.level, 6)
        classes = self.css_class + (f" {HIDEABLE_CLASS}" if self.hideable else "")
        parts = [
            f'<div class="{classes}" id="{self.anchor}">',
            f"<h{heading}>{escape(self.title)}</h{heading}>",
        ]
        parts.extend(self.rows)
        parts.extend(section.to_html() for section in self.sections)
        parts.append("</div>")
        return "\n".join(parts)


@dataclass
class RenderContext:
    """State accumulated while rendering one report."""
    toc: list[TocEntry] = field(default_factory=list)
    sections: list[ReportSection] = field(default_factory=list)
    counts: dict = field(default_factory=lambda: {state: 0 for state in ChangeState})
    anchors: set = field(default_factory=set)

    def anchor_for(self, *path: str) -> str:
        """Stable anchor derived from a scope path, unique within the document."""
        digest = hashlib.sha256("\x1f".join(path).encode("utf-8")).hexdigest()[:12]
        anchor = f"p{digest}"
        suffix = 2
        while anchor in self.anchors:
            anchor = f"p{digest}-{suffix}"
            suffix += 1
        self.anchors.add(anchor)
        return anchor

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def load_toggle_script() -> str:
    with open(TOGGLE_SCRIPT_PATH, encoding="utf-8") as f:
        return f.read()


# ============================================================
# CELLS
# ============================================================

def _state_badge(state: ChangeState) -> str:
    return f'<span class="State {state.value}">{escape(state.label)}</span>'


def _display_items(value: AttributeValue, ordered: bool) -> list[str]:
    if isinstance(value, tuple):
        return list(value) if ordered else sorted(value)
    return [value]


def _format_cell(value: Optional[AttributeValue], ordered: bool = False) -> str:
    if value is None:
        return ""
    return "<br>".join(escape(item) for item in _display_items(value, ordered))


def _highlight_items(value: Optional[AttributeValue], marked: Iterable[str], css: str,
                     is_xml: bool) -> str:
    """Render a multi-value with the items in ``marked`` highlighted."""
    if value is None:
        return ""
    marked = set(marked)
    cells = []
    for item in _display_items(value, ordered=False):
        text = escape(item)
        if normalize_value(item, is_xml)[0] in marked:
            text = f"<span class='{css}'>{text}</span>"
        cells.append(text)
    return "<br>".join(cells)


def _inline_diff_cells(old: str, new: str) -> tuple[str, str]:
    diff = create_inline_diff(old, new)
    prefix = escape(diff["prefix"])
    suffix = escape(diff["suffix"])
    old_html = prefix
    if diff["old_changed"]:
        old_html += f"<span class='hl-removed'>{escape(diff['old_changed'])}</span>"
    new_html = prefix
    if diff["new_changed"]:
        new_html += f"<span class='hl-added'>{escape(diff['new_changed'])}</span>"
    return old_html + suffix, new_html + suffix


def _change_cells(change: AttributeChange, ordered: bool, is_xml: bool) -> tuple[str, str]:
    if change.change_type == ChangeType.ARRAY_MODIFIED:
        return (
            _highlight_items(change.old_value, change.items_removed, "hl-removed", is_xml),
            _highlight_items(change.new_value, change.items_added, "hl-added", is_xml),
        )
    if (change.change_type == ChangeType.MODIFIED
            and isinstance(change.old_value, str) and isinstance(change.new_value, str)):
        return _inline_diff_cells(change.old_value, change.new_value)
    return _format_cell(change.old_value, ordered), _format_cell(change.new_value, ordered)


# ============================================================
# SECTIONS
# ============================================================

def _attribute_table(record: DiffRecord, catalog: Catalog) -> str:
    entity_type = record.entity_type
    header = "<tr><th>Attribute</th><th>Production / Baseline</th><th>Pilot / Target</th></tr>"
    rows = []

    if record.state in (ChangeState.ADDED, ChangeState.DELETED):
        entity = record.pilot if record.state == ChangeState.ADDED else record.baseline
        for name in sorted(entity.attributes):
            value = _format_cell(entity.attributes[name], catalog.is_ordered(entity_type, name))
            baseline_cell, pilot_cell = ("", value) if record.state == ChangeState.ADDED else (value, "")
            rows.append(
                f'<tr class="{record.state.value}"><td>{escape(name)}</td>'
                f"<td>{baseline_cell}</td><td>{pilot_cell}</td></tr>"
            )
    else:
        changes = record.changed_attributes()
        names = sorted(set(record.pilot.attributes) | set(record.baseline.attributes))
        for name in names:
            ordered = catalog.is_ordered(entity_type, name)
            change = changes.get(name)
            if change is None:
                rows.append(
                    f'<tr class="Unchanged {HIDEABLE_CLASS}"><td>{escape(name)}</td>'
                    f"<td>{_format_cell(record.baseline.attributes.get(name), ordered)}</td>"
                    f"<td>{_format_cell(record.pilot.attributes.get(name), ordered)}</td></tr>"
                )
                continue
            baseline_cell, pilot_cell = _change_cells(change, ordered, catalog.is_xml(entity_type, name))
            rows.append(
                f'<tr class="{change.change_type.value}"><td>{escape(name)}</td>'
                f"<td>{baseline_cell}</td><td>{pilot_cell}</td></tr>"
            )

    if not rows:
        return '<p class="Notice">No attributes.</p>'
    return '<table class="Attributes">\n' + header + "\n" + "\n".join(rows) + "\n</table>"


def _sorted_records(records: Iterable[DiffRecord], catalog: Catalog) -> list[DiffRecord]:
    return sorted(records, key=lambda r: (catalog.type_order(r.entity_type), r.key.casefold(), r.key))


def _group_by_type(records: Iterable[DiffRecord], catalog: Catalog) -> list[tuple[str, list[DiffRecord]]]:
    groups: dict[str, list[DiffRecord]] = {}
    for record in _sorted_records(records, catalog):
        groups.setdefault(record.entity_type, []).append(record)
    return list(groups.items())


def _render_record(record: DiffRecord, anchor: str, level: int, context: RenderContext,
                   catalog: Catalog, domain: Domain, in_toc: bool) -> ReportSection:
    context.counts[record.state] += 1
    hideable = record.state == ChangeState.UNCHANGED
    section = ReportSection(
        title=record.key,
        anchor=anchor,
        level=level,
        hideable=hideable,
        css_class=f"Entity {record.state.value}",
    )
    if in_toc:
        context.toc.append(TocEntry(record.key, anchor, 3, hideable=hideable, state=record.state))

    source = record.pilot or record.baseline
    origin = f' <span class="Notice">{escape(source.source_file)}</span>' if source and source.source_file else ""
    section.rows.append(f'<p class="StateLine">{_state_badge(record.state)}{origin}</p>')

    if record.state == ChangeState.UNABLE_TO_COMPARE:
        section.rows.append(f'<p class="Flag">{escape(record.reason or "")}</p>')
        return section

    section.rows.append(_attribute_table(record, catalog))
    for entity_type, group in _group_by_type(record.children, catalog):
        section.sections.append(
            _render_type_group(entity_type, group, record.path, level + 1, context, catalog, domain, False)
        )
    return section


def _render_type_group(entity_type: str, records: list[DiffRecord], scope: tuple[str, ...], level: int,
                       context: RenderContext, catalog: Catalog, domain: Domain,
                       in_toc: bool) -> ReportSection:
    rule = catalog.rule_for(entity_type)
    all_unchanged = all(r.state == ChangeState.UNCHANGED for r in records)
    group = ReportSection(
        title=rule.display_name,
        anchor=context.anchor_for(domain.name, *scope, entity_type),
        level=level,
        hideable=all_unchanged,
        css_class="EntityType",
    )
    if in_toc:
        context.toc.append(TocEntry(rule.display_name, group.anchor, 2, hideable=all_unchanged))

    anchors = [context.anchor_for(domain.name, *r.scope, r.entity_type, r.key) for r in records]
    summary = ['<table class="Summary">', "<tr><th>Name</th><th>State</th></tr>"]
    for record, anchor in zip(records, anchors):
        hide = f" {HIDEABLE_CLASS}" if record.state == ChangeState.UNCHANGED else ""
        summary.append(
            f'<tr class="{record.state.value}{hide}"><td><a href="#{anchor}">{escape(record.key)}</a></td>'
            f"<td>{_state_badge(record.state)}</td></tr>"
        )
    summary.append("</table>")
    group.rows.append("\n".join(summary))

    for record, anchor in zip(records, anchors):
        group.sections.append(_render_record(record, anchor, level + 1, context, catalog, domain, in_toc))
    return group


def _warnings_block(warnings: Iterable[DuplicateIdentity]) -> str:
    items = "\n".join(f"<li>{escape(w.message)}</li>" for w in warnings)
    return f'<div class="Warnings">\n<strong>Warnings</strong>\n<ul>\n{items}\n</ul>\n</div>'


def render_domain(records: tuple[DiffRecord, ...], domain: Domain, context: RenderContext,
                  warnings: tuple[DuplicateIdentity, ...] = (), load_error: Optional[ParseError] = None,
                  present: bool = True, catalog: Catalog = CATALOG) -> ReportSection:
    """
    Render one domain and append it to the context.

    Args:
        records: Top-level diff records of the domain
        domain: The single domain being rendered
        context: Accumulates the section, TOC entries, counts and anchors
        warnings: Duplicate identities found while matching
        load_error: Set when the domain could not be loaded
        present: False when neither export contains the domain

    Returns:
        The domain's ReportSection
    """
    section = ReportSection(
        title=domain.title,
        anchor=context.anchor_for(domain.name),
        level=2,
        css_class="Domain",
    )
    context.toc.append(TocEntry(domain.title, section.anchor, 1))

    if load_error is not None:
        section.rows.append(
            f'<p class="Error">This section could not be loaded. '
            f"{escape(load_error.path)}: {escape(load_error.reason)}</p>"
        )
    elif not present:
        section.rows.append('<p class="Notice">Not present in either export.</p>')

    if warnings:
        section.rows.append(_warnings_block(warnings))

    for entity_type, group in _group_by_type(records, catalog):
        section.sections.append(
            _render_type_group(entity_type, group, (), 3, context, catalog, domain, True)
        )

    context.sections.append(section)
    logger.debug(f"Rendered {domain.title}: {len(records)} top-level records")
    return section


def _counts_table(context: RenderContext) -> str:
    header = "".join(f"<th>{escape(state.label)}</th>" for state in ChangeState)
    cells = "".join(f"<td>{context.counts[state]}</td>" for state in ChangeState)
    return f'<table class="Counts">\n<tr>{header}</tr>\n<tr>{cells}</tr>\n</table>'


def _toc_html(context: RenderContext) -> str:
    items = []
    for entry in context.toc:
        classes = f"TocLevel{entry.level}" + (f" {HIDEABLE_CLASS}" if entry.hideable else "")
        badge = f" {_state_badge(entry.state)}" if entry.state else ""
        items.append(f'<li class="{classes}"><a href="#{entry.anchor}">{escape(entry.title)}</a>{badge}</li>')
    return '<div class="TOC">\n<h2>Contents</h2>\n<ul>\n' + "\n".join(items) + "\n</ul>\n</div>"


def render_document(context: RenderContext, title: str, pilot_label: str, baseline_label: str) -> str:
    """Assemble the rendered sections into the final HTML document."""
    parts = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{escape(title)}</title>",
        f"<style>\n{REPORT_CSS}\n</style>",
        f"<script>\n{load_toggle_script()}</script>",
        "</head>",
        "<body>",
        f"<h1>{escape(title)}</h1>",
        '<table class="Exports">',
        f"<tr><th>Pilot / Target</th><td>{escape(pilot_label)}</td></tr>",
        f"<tr><th>Production / Baseline</th><td>{escape(baseline_label)}</td></tr>",
        "</table>",
        f'<p class="Toggle"><label><input type="checkbox" id="{TOGGLE_ID}" disabled> '
        f"Only show changes</label></p>",
        _counts_table(context),
        _toc_html(context),
    ]
    parts.extend(section.to_html() for section in context.sections)
    parts.extend(["</body>", "</html>", ""])
    return "\n".join(parts)
