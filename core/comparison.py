"""
Parity Configuration Comparison Engine

This module classifies matched entities and computes attribute-level
changes, including set-based comparison of unordered multi-values and
inline diff highlighting for the report.
"""
from typing import Any, Iterator, Optional
from dataclasses import dataclass
from enum import Enum
import hashlib
import json
import logging
import xml.etree.ElementTree as ET

from config import settings
from core.catalog import CATALOG, Catalog
from core.models import AttributeValue, ChangeState, ConfigEntity, EntityMatch

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    ARRAY_MODIFIED = "array_modified"


@dataclass(frozen=True)
class AttributeChange:
    """A single changed attribute. Old values come from the baseline, new from the pilot."""
    attribute: str
    change_type: ChangeType
    old_value: Optional[AttributeValue] = None
    new_value: Optional[AttributeValue] = None

    # For set-compared multi-values
    items_added: tuple = ()
    items_removed: tuple = ()

    # Computed signature for grouping identical changes
    signature: str = ""

    def __post_init__(self):
        if not self.signature:
            object.__setattr__(self, "signature", self.compute_signature())

    def compute_signature(self) -> str:
        """
        Compute a signature for grouping identical changes across entities.
        Two changes with the same signature describe the same edit.
        """
        if self.change_type == ChangeType.ARRAY_MODIFIED:
            sig_parts = [
                self.attribute,
                self.change_type.value,
                f"+{len(self.items_added)}",
                f"-{len(self.items_removed)}",
                json.dumps(sorted(self.items_added)),
                json.dumps(sorted(self.items_removed))
            ]
        else:
            sig_parts = [
                self.attribute,
                self.change_type.value,
                json.dumps(self.old_value) if self.old_value is not None else "null",
                json.dumps(self.new_value) if self.new_value is not None else "null"
            ]

        sig_str = "|".join(str(p) for p in sig_parts)
        return hashlib.sha256(sig_str.encode()).hexdigest()[:16]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "attribute": self.attribute,
            "change_type": self.change_type.value,
            "signature": self.signature
        }

        if self.change_type == ChangeType.ARRAY_MODIFIED:
            result["items_added"] = list(self.items_added)
            result["items_removed"] = list(self.items_removed)
            result["added_count"] = len(self.items_added)
            result["removed_count"] = len(self.items_removed)
        else:
            if self.old_value is not None:
                result["old_value"] = _plain(self.old_value)
            if self.new_value is not None:
                result["new_value"] = _plain(self.new_value)

        return result


@dataclass(frozen=True)
class DiffRecord:
    """Comparison outcome for one EntityMatch and its subtree."""
    entity_type: str
    key: str
    state: ChangeState
    changes: tuple[AttributeChange, ...] = ()
    children: tuple["DiffRecord", ...] = ()
    pilot: Optional[ConfigEntity] = None
    baseline: Optional[ConfigEntity] = None
    reason: Optional[str] = None
    scope: tuple[str, ...] = ()

    @property
    def path(self) -> tuple[str, ...]:
        return self.scope + (self.key,)

    @property
    def is_changed(self) -> bool:
        return self.state != ChangeState.UNCHANGED

    def walk(self) -> Iterator["DiffRecord"]:
        """Yield this record and every descendant, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def changed_attributes(self) -> dict[str, AttributeChange]:
        return {c.attribute: c for c in self.changes}


def _plain(value: AttributeValue) -> Any:
    return list(value) if isinstance(value, tuple) else value


def _compare_arrays_as_sets(old_arr: tuple, new_arr: tuple, attribute: str,
                            old_value: AttributeValue = None,
                            new_value: AttributeValue = None) -> list[AttributeChange]:
    """
    Compare two multi-values as sets to find added/removed items.

    Order doesn't matter - we only care about what items exist. Both sides
    hold normalised strings; duplicates count once.
    """
    old_keys = dict.fromkeys(old_arr)
    new_keys = dict.fromkeys(new_arr)

    added = tuple(item for item in new_keys if item not in old_keys)
    removed = tuple(item for item in old_keys if item not in new_keys)

    if not added and not removed:
        return []

    return [AttributeChange(
        attribute=attribute,
        change_type=ChangeType.ARRAY_MODIFIED,
        old_value=old_value,
        new_value=new_value,
        items_added=added,
        items_removed=removed
    )]


# ============================================================
# NORMALISATION
# ============================================================

def normalize_text(value: str) -> str:
    """Strip and collapse internal whitespace runs."""
    return " ".join(value.split())


def canonicalize_xml(value: str) -> str:
    """
    Canonicalise an XML fragment (C14N, whitespace-only text dropped).

    Values that are not well-formed XML compare as normalised text.
    """
    if not value.strip():
        return ""
    try:
        return ET.canonicalize(xml_data=value, strip_text=True)
    except ET.ParseError:
        logger.debug(f"Value is not well-formed XML, comparing as text: {value[:60]!r}")
        return normalize_text(value)


def _as_items(value: AttributeValue) -> tuple[str, ...]:
    return value if isinstance(value, tuple) else (value,)


def normalize_value(value: AttributeValue, is_xml: bool = False) -> tuple[str, ...]:
    """Normalise a single or multi-value to a tuple of comparable strings."""
    normalize = canonicalize_xml if is_xml else normalize_text
    return tuple(normalize(item) for item in _as_items(value))


def compute_config_hash(config: dict) -> str:
    """
    Compute a SHA-256 hash of normalised entity content for quick comparison.
    Entities whose attributes hash the same are identical.
    """
    json_str = json.dumps(config, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(json_str.encode()).hexdigest()


def canonical_attributes(entity: ConfigEntity, catalog: Catalog = CATALOG) -> dict:
    """Normalised attribute content of an entity, as hashed by compute_config_hash."""
    content = {}
    for name, value in entity.attributes.items():
        items = normalize_value(value, catalog.is_xml(entity.entity_type, name))
        if not catalog.is_ordered(entity.entity_type, name):
            items = tuple(sorted(set(items)))
        content[name] = items[0] if len(items) == 1 else list(items)
    return content


# ============================================================
# DIFFER
# ============================================================

def versions_compatible(pilot_version: Optional[str], baseline_version: Optional[str],
                        precision: int) -> bool:
    """
    Two schema versions are compatible when either is unknown or their
    first ``precision`` components agree.
    """
    if pilot_version is None or baseline_version is None:
        return True
    pilot_parts = [int(p) for p in pilot_version.split(".")][:precision]
    baseline_parts = [int(p) for p in baseline_version.split(".")][:precision]
    return pilot_parts == baseline_parts


def compare_attributes(baseline: ConfigEntity, pilot: ConfigEntity,
                       catalog: Catalog = CATALOG) -> list[AttributeChange]:
    """
    Compare the attributes of two entities of the same type.

    Args:
        baseline: The baseline/production entity
        pilot: The pilot/target entity

    Returns:
        AttributeChange list in attribute name order
    """
    entity_type = pilot.entity_type
    changes = []

    for name in sorted(set(baseline.attributes) | set(pilot.attributes)):
        if name not in baseline.attributes:
            changes.append(AttributeChange(
                attribute=name,
                change_type=ChangeType.ADDED,
                new_value=pilot.attributes[name]
            ))
            continue
        if name not in pilot.attributes:
            changes.append(AttributeChange(
                attribute=name,
                change_type=ChangeType.REMOVED,
                old_value=baseline.attributes[name]
            ))
            continue

        old_raw = baseline.attributes[name]
        new_raw = pilot.attributes[name]
        is_xml = catalog.is_xml(entity_type, name)
        old_items = normalize_value(old_raw, is_xml)
        new_items = normalize_value(new_raw, is_xml)

        multi = isinstance(old_raw, tuple) or isinstance(new_raw, tuple)
        if multi and not catalog.is_ordered(entity_type, name):
            changes.extend(_compare_arrays_as_sets(
                old_items, new_items, name, old_value=old_raw, new_value=new_raw
            ))
        elif old_items != new_items:
            changes.append(AttributeChange(
                attribute=name,
                change_type=ChangeType.MODIFIED,
                old_value=old_raw,
                new_value=new_raw
            ))

    return changes


def diff_match(match: EntityMatch, catalog: Catalog = CATALOG,
               precision: Optional[int] = None) -> DiffRecord:
    """
    Classify one match and its subtree.

    Args:
        match: The pilot/baseline pair to compare
        catalog: Entity rules deciding ordered and XML-valued attributes
        precision: Leading version components that must agree; defaults to
            settings.SCHEMA_VERSION_PRECISION

    Returns:
        DiffRecord with attribute changes and child records
    """
    if precision is None:
        precision = settings.SCHEMA_VERSION_PRECISION

    common = dict(
        entity_type=match.entity_type,
        key=match.key,
        pilot=match.pilot,
        baseline=match.baseline,
        scope=match.scope,
    )

    if match.baseline is None:
        return DiffRecord(state=ChangeState.ADDED, **common)
    if match.pilot is None:
        return DiffRecord(state=ChangeState.DELETED, **common)

    pilot_version = match.pilot.schema_version
    baseline_version = match.baseline.schema_version
    if not versions_compatible(pilot_version, baseline_version, precision):
        reason = (
            f"Schema version {pilot_version} (pilot) is not comparable with "
            f"{baseline_version} (baseline)"
        )
        logger.info(f"{match.entity_type} '{match.key}': {reason}")
        return DiffRecord(state=ChangeState.UNABLE_TO_COMPARE, reason=reason, **common)

    # Quick check - identical normalised content needs no attribute walk
    pilot_hash = compute_config_hash(canonical_attributes(match.pilot, catalog))
    baseline_hash = compute_config_hash(canonical_attributes(match.baseline, catalog))
    changes = () if pilot_hash == baseline_hash else tuple(
        compare_attributes(match.baseline, match.pilot, catalog)
    )

    children = tuple(diff_match(child, catalog, precision) for child in match.children)

    changed = bool(changes) or any(c.state != ChangeState.UNCHANGED for c in children)
    return DiffRecord(
        state=ChangeState.MODIFIED if changed else ChangeState.UNCHANGED,
        changes=changes,
        children=children,
        **common
    )


def diff_matches(matches: tuple[EntityMatch, ...], catalog: Catalog = CATALOG,
                 precision: Optional[int] = None) -> tuple[DiffRecord, ...]:
    return tuple(diff_match(m, catalog, precision) for m in matches)


def count_states(records: tuple[DiffRecord, ...]) -> dict[ChangeState, int]:
    """Count records of every state across all depths."""
    counts = {state: 0 for state in ChangeState}
    for record in records:
        for node in record.walk():
            counts[node.state] += 1
    return counts


# ============================================================
# DISPLAY HELPERS
# ============================================================

def create_inline_diff(old_str: str, new_str: str) -> dict:
    """
    Create inline diff highlighting showing what changed between two strings.
    Returns dict with the common prefix/suffix and the changed middles.

    Callers escape the parts before wrapping them in highlight spans.
    """
    old_str = str(old_str)
    new_str = str(new_str)

    # Find common prefix
    prefix_len = 0
    while (prefix_len < len(old_str) and
           prefix_len < len(new_str) and
           old_str[prefix_len] == new_str[prefix_len]):
        prefix_len += 1

    # Find common suffix
    suffix_len = 0
    while (suffix_len < (len(old_str) - prefix_len) and
           suffix_len < (len(new_str) - prefix_len) and
           old_str[len(old_str) - 1 - suffix_len] == new_str[len(new_str) - 1 - suffix_len]):
        suffix_len += 1

    return {
        "prefix": old_str[:prefix_len],
        "suffix": old_str[len(old_str) - suffix_len:] if suffix_len > 0 else "",
        "old_changed": old_str[prefix_len:len(old_str) - suffix_len],
        "new_changed": new_str[prefix_len:len(new_str) - suffix_len],
    }


def format_value_compact(value: Any) -> str:
    """Format a value for display in a compact way."""
    if value is None:
        return "(none)"
    if isinstance(value, (tuple, list)):
        return "; ".join(str(v) for v in value)
    return str(value)


def group_changes_by_signature(changes_with_entities: list[tuple[str, AttributeChange]]) -> dict:
    """
    Group changes across multiple entities by their signature.

    Args:
        changes_with_entities: List of (entity_label, AttributeChange) tuples

    Returns:
        Dict mapping signature to {change: AttributeChange, entities: [labels]}
    """
    grouped = {}

    for entity_label, change in changes_with_entities:
        sig = change.signature
        if sig not in grouped:
            grouped[sig] = {
                "change": change,
                "entities": []
            }
        grouped[sig]["entities"].append(entity_label)

    return grouped
