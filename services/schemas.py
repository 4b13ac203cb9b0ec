"""
Pydantic schemas for the Parity JSON run summary.
"""
from typing import Optional, Any
from pydantic import BaseModel, Field


# ============================================================
# CHANGE SCHEMAS
# ============================================================

class AttributeChangeSchema(BaseModel):
    attribute: str
    change_type: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    items_added: Optional[Any] = None
    items_removed: Optional[Any] = None
    added_count: Optional[int] = None
    removed_count: Optional[int] = None
    signature: str


class ChangeEntry(BaseModel):
    """One entity that is not Unchanged."""
    domain: str
    entity_type: str
    path: list[str]
    state: str
    reason: Optional[str] = None
    changes: list[AttributeChangeSchema] = Field(default_factory=list)


class ChangeGroup(BaseModel):
    """An identical attribute change shared by several entities."""
    signature: str
    attribute: str
    change_type: str
    entities: list[str]


# ============================================================
# RUN SCHEMAS
# ============================================================

class DomainSummary(BaseModel):
    domain: str
    present: bool
    load_error: Optional[str] = None
    counts: dict[str, int] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class RunSummary(BaseModel):
    """Machine-readable companion of the HTML report."""
    app_version: str
    pilot: str
    baseline: str
    mode: str
    report_file: str
    failed: bool = False
    has_changes: bool = False
    counts: dict[str, int] = Field(default_factory=dict)
    domains: list[DomainSummary] = Field(default_factory=list)
    changes: list[ChangeEntry] = Field(default_factory=list)
    change_groups: list[ChangeGroup] = Field(default_factory=list)
