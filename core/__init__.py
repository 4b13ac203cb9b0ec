# Parity v1.3.2
"""
Core package for Parity.
Contains the export loader, entity matching and comparison logic.
"""
from core.errors import ParityError, ParseError, ReportWriteError
from core.models import (
    ChangeState,
    ConfigEntity,
    ConfigurationSnapshot,
    Domain,
    DuplicateIdentity,
    EntityMatch,
    MatchResult
)
from core.catalog import CATALOG, Catalog, EntityRule
from core.comparison import (
    diff_match,
    diff_matches,
    compare_attributes,
    count_states,
    compute_config_hash,
    create_inline_diff,
    group_changes_by_signature,
    format_value_compact,
    versions_compatible,
    AttributeChange,
    ChangeType,
    DiffRecord
)
from core.file_parser import (
    load_snapshot,
    load_domain,
    check_export_folder,
    DomainExport
)
from core.matcher import match_domain, match_entities

__all__ = [
    "ParityError",
    "ParseError",
    "ReportWriteError",
    "ChangeState",
    "ConfigEntity",
    "ConfigurationSnapshot",
    "Domain",
    "DuplicateIdentity",
    "EntityMatch",
    "MatchResult",
    "CATALOG",
    "Catalog",
    "EntityRule",
    "diff_match",
    "diff_matches",
    "compare_attributes",
    "count_states",
    "compute_config_hash",
    "create_inline_diff",
    "group_changes_by_signature",
    "format_value_compact",
    "versions_compatible",
    "AttributeChange",
    "ChangeType",
    "DiffRecord",
    "load_snapshot",
    "load_domain",
    "check_export_folder",
    "DomainExport",
    "match_domain",
    "match_entities"
]
