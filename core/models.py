"""
In-memory model of a loaded configuration export.

Snapshots and entities are built once by the loader and never modified;
the matcher and differ only derive new objects from them.
"""
from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Union


class Domain(Flag):
    """Configuration domains covered by an export."""
    SYNC = auto()
    SERVICE = auto()
    FULL = SYNC | SERVICE

    @property
    def title(self) -> str:
        return _DOMAIN_TITLES.get(self, self.name or "")

    @property
    def report_suffix(self) -> str:
        """File name suffix used for reports covering this selection."""
        return _REPORT_SUFFIXES.get(self, "Consolidated")

    @property
    def folder_setting(self) -> str:
        """Name of the setting holding this domain's export sub-folder."""
        return _FOLDER_SETTINGS[self]

    def parts(self) -> tuple["Domain", ...]:
        """Single domains contained in this selection, in report order."""
        return tuple(d for d in ORDERED_DOMAINS if d & self)


ORDERED_DOMAINS = (Domain.SYNC, Domain.SERVICE)

_DOMAIN_TITLES = {
    Domain.SYNC: "Synchronization Service Configuration",
    Domain.SERVICE: "Service and Portal Configuration",
    Domain.FULL: "FIM/MIM Configuration",
}

_FOLDER_SETTINGS = {
    Domain.SYNC: "SYNC_CONFIG_DIR",
    Domain.SERVICE: "SERVICE_CONFIG_DIR",
}

_REPORT_SUFFIXES = {
    Domain.SYNC: "Sync",
    Domain.SERVICE: "Service",
    Domain.FULL: "Consolidated",
}


class ChangeState(str, Enum):
    """Classification of one entity after comparison."""
    ADDED = "Added"
    DELETED = "Deleted"
    MODIFIED = "Modified"
    UNCHANGED = "Unchanged"
    UNABLE_TO_COMPARE = "UnableToCompare"

    @property
    def label(self) -> str:
        return "Unable to Compare" if self is ChangeState.UNABLE_TO_COMPARE else self.value


# Single values are strings; multi-valued attributes keep source order in a tuple.
AttributeValue = Union[str, tuple[str, ...]]


@dataclass(frozen=True)
class ConfigEntity:
    """A named, typed configuration object with its contained children."""
    entity_type: str
    key: str
    attributes: Mapping[str, AttributeValue] = field(default_factory=dict)
    children: tuple["ConfigEntity", ...] = ()
    schema_version: Optional[str] = None
    source_file: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))
        object.__setattr__(self, "children", tuple(self.children))

    @property
    def identity(self) -> tuple[str, str]:
        return self.entity_type, self.key

    def get(self, name: str, default: Optional[AttributeValue] = None) -> Optional[AttributeValue]:
        return self.attributes.get(name, default)


@dataclass(frozen=True)
class ConfigurationSnapshot:
    """Everything loaded from one export folder."""
    root: Path
    label: str
    entities: Mapping[Domain, tuple[ConfigEntity, ...]] = field(default_factory=dict)
    present_domains: Domain = Domain(0)
    source_files: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(
            self, "entities",
            MappingProxyType({d: tuple(v) for d, v in self.entities.items()})
        )
        object.__setattr__(self, "source_files", tuple(self.source_files))

    def entities_for(self, domain: Domain) -> tuple[ConfigEntity, ...]:
        return self.entities.get(domain, ())

    def has_domain(self, domain: Domain) -> bool:
        return bool(self.present_domains & domain)

    @property
    def entity_count(self) -> int:
        def _count(items) -> int:
            return sum(1 + _count(e.children) for e in items)
        return sum(_count(items) for items in self.entities.values())


@dataclass(frozen=True)
class EntityMatch:
    """
    A pilot entity paired with its baseline counterpart.

    Either side may be missing. Child matches are only present when both
    sides exist, since children are paired within their parent's scope.
    """
    entity_type: str
    key: str
    pilot: Optional[ConfigEntity]
    baseline: Optional[ConfigEntity]
    children: tuple["EntityMatch", ...] = ()
    scope: tuple[str, ...] = ()

    @property
    def path(self) -> tuple[str, ...]:
        return self.scope + (self.key,)

    @property
    def is_paired(self) -> bool:
        return self.pilot is not None and self.baseline is not None


@dataclass(frozen=True)
class DuplicateIdentity:
    """A sibling entity skipped because its identity key was already taken."""
    snapshot: str
    scope: tuple[str, ...]
    entity_type: str
    key: str
    source_file: Optional[str] = None

    @property
    def message(self) -> str:
        where = " / ".join(self.scope) if self.scope else "top level"
        origin = f" in {self.source_file}" if self.source_file else ""
        return (
            f"Duplicate {self.entity_type} '{self.key}' under {where} "
            f"in {self.snapshot} export{origin}; only the first occurrence was compared."
        )


@dataclass(frozen=True)
class MatchResult:
    """Top-level matches for one domain plus any identity warnings."""
    domain: Domain
    matches: tuple[EntityMatch, ...] = ()
    warnings: tuple[DuplicateIdentity, ...] = ()
