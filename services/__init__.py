# Parity v1.3.2
"""
Services package for Parity.
Contains report rendering, run orchestration and the supplementary emitters.
"""
from services.documenter import ConfigDocumenter, DomainOutcome, ReportResult
from services.report_renderer import RenderContext, ReportSection, render_document, render_domain

__all__ = [
    "ConfigDocumenter",
    "DomainOutcome",
    "ReportResult",
    "RenderContext",
    "ReportSection",
    "render_document",
    "render_domain"
]
