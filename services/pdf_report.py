"""
Changes-only PDF summary of a Parity run.
"""
import logging
from html import escape
from pathlib import Path

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from core.comparison import format_value_compact
from core.models import ChangeState

logger = logging.getLogger(__name__)


def write_changes_pdf(result, path: Path, app_version: str, max_changes: int = 500) -> Path:
    """
    Write a PDF listing every entity that is not Unchanged.

    Args:
        result: ReportResult of the run
        path: Destination file
        app_version: Printed in the subtitle
        max_changes: Attribute changes listed before the remainder is summarised

    Returns:
        The written path
    """
    doc = SimpleDocTemplate(str(path), pagesize=letter, topMargin=0.5*inch, bottomMargin=0.5*inch,
                            leftMargin=0.5*inch, rightMargin=0.5*inch, invariant=1,
                            title="Parity configuration changes")

    styles = getSampleStyleSheet()

    title_style = ParagraphStyle('Title', parent=styles['Heading1'], fontSize=20, spaceAfter=6,
                                 alignment=TA_CENTER, textColor=colors.HexColor('#1e40af'))
    subtitle_style = ParagraphStyle('Subtitle', parent=styles['Normal'], fontSize=10,
                                    alignment=TA_CENTER, textColor=colors.HexColor('#6b7280'))
    section_style = ParagraphStyle('Section', parent=styles['Heading2'], fontSize=14,
                                   spaceBefore=12, spaceAfter=6, textColor=colors.HexColor('#1e40af'),
                                   borderColor=colors.HexColor('#1e40af'), borderWidth=1,
                                   borderPadding=5, backColor=colors.HexColor('#eff6ff'))
    change_header_style = ParagraphStyle('ChangeHeader', parent=styles['Heading3'], fontSize=11,
                                         spaceBefore=8, spaceAfter=4, textColor=colors.white,
                                         backColor=colors.HexColor('#374151'), borderPadding=5)
    cell_style = ParagraphStyle('Cell', parent=styles['Normal'], fontSize=8)
    error_style = ParagraphStyle('Error', parent=styles['Normal'], fontSize=9,
                                 textColor=colors.HexColor('#dc2626'))
    note_style = ParagraphStyle('Note', parent=styles['Normal'], fontSize=9,
                                textColor=colors.HexColor('#6b7280'))

    story = []

    story.append(Paragraph("CONFIGURATION CHANGES", title_style))
    story.append(Paragraph(
        f"{escape(result.pilot_label)} (pilot) compared with {escape(result.baseline_label)} (baseline)",
        subtitle_style
    ))
    story.append(Paragraph(f"Parity v{escape(app_version)}", subtitle_style))
    story.append(Spacer(1, 0.3*inch))

    summary_data = [[state.label, str(result.counts.get(state, 0))] for state in ChangeState]
    summary_table = Table(summary_data, colWidths=[1.8*inch, 1.2*inch])
    summary_table.setStyle(TableStyle([
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
        ('TOPPADDING', (0, 0), (-1, -1), 6),
        ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor('#f3f4f6')),
        ('BOX', (0, 0), (-1, -1), 1, colors.HexColor('#1e40af')),
        ('LINEBELOW', (0, 0), (-1, -2), 0.5, colors.HexColor('#d1d5db')),
    ]))
    story.append(summary_table)
    story.append(Spacer(1, 0.3*inch))

    listed = 0
    truncated = 0
    for outcome in result.outcomes.values():
        story.append(Paragraph(escape(outcome.domain.title), section_style))

        if outcome.load_error is not None:
            story.append(Paragraph(f"Could not be loaded: {escape(str(outcome.load_error))}", error_style))
            continue

        changed = [node for record in outcome.records for node in record.walk() if node.is_changed]
        if not changed:
            story.append(Paragraph("No changes.", note_style))
            continue

        for record in changed:
            header = f"{record.entity_type}: {' / '.join(record.path)} ({record.state.label})"
            story.append(Paragraph(escape(header), change_header_style))

            if record.reason:
                story.append(Paragraph(escape(record.reason), note_style))
            if not record.changes:
                continue
            if listed >= max_changes:
                truncated += len(record.changes)
                continue

            rows = [["Attribute", "Baseline", "Pilot"]]
            for change in record.changes[:max_changes - listed]:
                if change.items_added or change.items_removed:
                    old = "- " + format_value_compact(change.items_removed) if change.items_removed else ""
                    new = "+ " + format_value_compact(change.items_added) if change.items_added else ""
                else:
                    old = format_value_compact(change.old_value)
                    new = format_value_compact(change.new_value)
                rows.append([
                    Paragraph(escape(change.attribute), cell_style),
                    Paragraph(escape(old), cell_style),
                    Paragraph(escape(new), cell_style),
                ])
            listed += len(rows) - 1
            truncated += len(record.changes) - (len(rows) - 1)

            change_table = Table(rows, colWidths=[1.8*inch, 2.6*inch, 2.6*inch], repeatRows=1)
            change_table.setStyle(TableStyle([
                ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
                ('FONTSIZE', (0, 0), (-1, -1), 8),
                ('VALIGN', (0, 0), (-1, -1), 'TOP'),
                ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#f3f4f6')),
                ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#d1d5db')),
            ]))
            story.append(change_table)

    if truncated:
        story.append(Spacer(1, 0.2*inch))
        story.append(Paragraph(
            f"{truncated} further attribute change(s) omitted; see the HTML report.", note_style
        ))

    doc.build(story)
    logger.info(f"PDF summary written to {path} ({listed} attribute changes listed)")
    return path
