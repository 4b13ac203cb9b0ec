"""
Entity catalog for the two configuration domains.

Every entity type the loader extracts is described here: where it lives in
the export, how its identity key is formed, which children it contains and
which attributes need special comparison treatment. Render order follows
``priority``.
"""
from dataclasses import dataclass, field
from typing import Callable, Optional
from xml.etree.ElementTree import Element

from core.models import Domain

# Priority assigned to service object types that are not catalogued.
UNKNOWN_PRIORITY = 1000

# Service attributes holding serialized synchronization rule flows.
SYNC_RULE_FLOW_ATTRIBUTES = ("InitialFlow", "PersistentFlow", "ExistenceTest")

# Bookkeeping tags and XML attributes that differ between every export.
VOLATILE_SYNC_NAMES = frozenset({
    "id",
    "creation-time",
    "last-modification-time",
    "version",
    "format-version",
})

# Elements whose fields only make sense together. They are compared as one
# item each, even when an export holds a single occurrence.
COMPOSITE_SYNC_TAGS = frozenset({
    "filter-alternative",
    "condition",
    "search-mapping",
    "inclusion",
    "exclusion",
})

KeyFunc = Callable[[Element, int], Optional[str]]
DeriveFunc = Callable[[Element, Callable[[str], str]], dict]


@dataclass(frozen=True)
class EntityRule:
    """How one entity type is found, identified and compared."""
    name: str
    domain: Domain
    display_name: str
    priority: int

    # Sync domain: ElementTree path relative to the parent element
    select: Optional[str] = None
    key: Optional[KeyFunc] = None
    top_level: bool = False
    skip_paths: tuple[str, ...] = ()
    derive: Optional[DeriveFunc] = None

    # Service domain: attributes joined with "/" to form the identity key
    key_attributes: tuple[str, ...] = ("DisplayName",)

    children: tuple[str, ...] = ()
    ordered_attributes: frozenset = field(default_factory=frozenset)
    xml_attributes: frozenset = field(default_factory=frozenset)
    keyed_by_position: bool = False


# ============================================================
# KEY HELPERS
# ============================================================

def _child_text(path: str) -> KeyFunc:
    def key(element: Element, position: int) -> Optional[str]:
        value = element.findtext(path)
        return value.strip() if value and value.strip() else None
    return key


def _xml_attribute(name: str) -> KeyFunc:
    def key(element: Element, position: int) -> Optional[str]:
        value = element.get(name)
        return value.strip() if value and value.strip() else None
    return key


def _ordinal(label: str) -> KeyFunc:
    def key(element: Element, position: int) -> Optional[str]:
        return f"{label} {position:03d}"
    return key


def _constant(value: str) -> KeyFunc:
    def key(element: Element, position: int) -> Optional[str]:
        return value
    return key


def _export_flow_set_key(element: Element, position: int) -> Optional[str]:
    cd_type = element.get("cd-object-type")
    mv_type = element.get("mv-object-type")
    if not cd_type or not mv_type:
        return None
    return f"{cd_type}→{mv_type}"


# ============================================================
# DERIVED ATTRIBUTES
# ============================================================

def describe_mapping(flow: Element) -> str:
    """Summarise the mapping element of an import or export flow."""
    parts = []
    for mapping in flow:
        kind = mapping.tag.replace("-mapping", "")
        values = " ".join(t.strip() for t in mapping.itertext() if t.strip())
        parts.append(f"{kind}: {values}" if values else kind)
    return "; ".join(parts)


def _import_sources(element: Element, resolve: Callable[[str], str]) -> dict:
    sources = []
    for flow in element.findall("import-flow"):
        ma_name = resolve(flow.get("src-ma", ""))
        cd_type = flow.get("cd-object-type", "")
        sources.append(f"{ma_name} [{cd_type}] {describe_mapping(flow)}".strip())
    return {"sources": tuple(sources)}


def _class_attributes(element: Element, resolve: Callable[[str], str]) -> dict:
    refs = [a.get("ref", "").lstrip("#") for a in element.findall("attribute")]
    return {"attributes": tuple(r for r in refs if r)}


# ============================================================
# SYNCHRONIZATION ENGINE
# ============================================================

SYNC_RULES = [
    EntityRule(
        name="Metaverse",
        domain=Domain.SYNC,
        display_name="Metaverse",
        priority=10,
        select="mv-data",
        key=_constant("Metaverse"),
        top_level=True,
        children=("MetaverseObjectType", "MetaverseAttribute",
                  "AttributePrecedence", "ObjectDeletionRule"),
    ),
    EntityRule(
        name="MetaverseObjectType",
        domain=Domain.SYNC,
        display_name="Metaverse Object Types",
        priority=11,
        select=".//directory-schema/class",
        key=_child_text("name"),
        skip_paths=("attribute",),
        derive=_class_attributes,
    ),
    EntityRule(
        name="MetaverseAttribute",
        domain=Domain.SYNC,
        display_name="Metaverse Attributes",
        priority=12,
        select=".//directory-schema/attribute-type",
        key=_child_text("name"),
    ),
    EntityRule(
        name="AttributePrecedence",
        domain=Domain.SYNC,
        display_name="Attribute Precedence",
        priority=13,
        select="import-attribute-flow/import-flow-set",
        key=_xml_attribute("mv-object-type"),
        children=("ImportFlow",),
    ),
    EntityRule(
        name="ImportFlow",
        domain=Domain.SYNC,
        display_name="Import Flows",
        priority=14,
        select="import-flows",
        key=_xml_attribute("mv-attribute"),
        skip_paths=("import-flow",),
        derive=_import_sources,
        ordered_attributes=frozenset({"sources"}),
    ),
    EntityRule(
        name="ObjectDeletionRule",
        domain=Domain.SYNC,
        display_name="Object Deletion Rules",
        priority=15,
        select="mv-deletion/mv-deletion-rule",
        key=_xml_attribute("mv-object-type"),
    ),
    EntityRule(
        name="ManagementAgent",
        domain=Domain.SYNC,
        display_name="Management Agents",
        priority=20,
        select="ma-data",
        key=_child_text("name"),
        top_level=True,
        children=("Partition", "RunProfile", "ProjectionRule", "JoinProfile",
                  "ExportFlowSet", "ConnectorFilter"),
    ),
    EntityRule(
        name="Partition",
        domain=Domain.SYNC,
        display_name="Partitions",
        priority=21,
        select="ma-partition-data/partition",
        key=_child_text("name"),
    ),
    EntityRule(
        name="RunProfile",
        domain=Domain.SYNC,
        display_name="Run Profiles",
        priority=22,
        select="ma-run-data/run-configuration",
        key=_child_text("name"),
        children=("RunProfileStep",),
    ),
    EntityRule(
        name="RunProfileStep",
        domain=Domain.SYNC,
        display_name="Run Profile Steps",
        priority=23,
        select="configuration/step",
        key=_ordinal("Step"),
        keyed_by_position=True,
    ),
    EntityRule(
        name="ProjectionRule",
        domain=Domain.SYNC,
        display_name="Projection Rules",
        priority=24,
        select="projection/class-mapping",
        key=_xml_attribute("cd-object-type"),
    ),
    EntityRule(
        name="JoinProfile",
        domain=Domain.SYNC,
        display_name="Join Rules",
        priority=25,
        select="join/join-profile",
        key=_xml_attribute("cd-object-type"),
        children=("JoinCriterion",),
    ),
    EntityRule(
        name="JoinCriterion",
        domain=Domain.SYNC,
        display_name="Join Criteria",
        priority=26,
        select="join-criterion",
        key=_ordinal("Criterion"),
        keyed_by_position=True,
    ),
    EntityRule(
        name="ExportFlowSet",
        domain=Domain.SYNC,
        display_name="Export Attribute Flow",
        priority=27,
        select="export-attribute-flow/export-flow-set",
        key=_export_flow_set_key,
        children=("ExportFlow",),
    ),
    EntityRule(
        name="ExportFlow",
        domain=Domain.SYNC,
        display_name="Export Flows",
        priority=28,
        select="export-flow",
        key=_xml_attribute("cd-attribute"),
    ),
    EntityRule(
        name="ConnectorFilter",
        domain=Domain.SYNC,
        display_name="Connector Filter Rules",
        priority=29,
        select="stay-disconnector/filter-set",
        key=_xml_attribute("cd-object-type"),
    ),
]


# ============================================================
# SERVICE AND PORTAL
# ============================================================

def _service(name: str, display_name: str, priority: int, **kwargs) -> EntityRule:
    return EntityRule(name=name, domain=Domain.SERVICE, display_name=display_name,
                      priority=priority, **kwargs)


SERVICE_RULES = [
    _service("ObjectTypeDescription", "Resource Types", 100, key_attributes=("Name",)),
    _service("AttributeTypeDescription", "Attribute Types", 101, key_attributes=("Name",)),
    _service("BindingDescription", "Bindings", 102,
             key_attributes=("BoundObjectType", "BoundAttributeType")),
    _service("ActivityInformationConfiguration", "Activity Information Configurations", 110),
    _service("ForestConfiguration", "Forest Configurations", 111),
    _service("DomainConfiguration", "Domain Configurations", 112),
    _service("FilterScope", "Filter Permissions", 113),
    _service("Set", "Sets", 120, xml_attributes=frozenset({"Filter"})),
    _service("ManagementPolicyRule", "Management Policy Rules", 121),
    _service("WorkflowDefinition", "Workflows", 122, xml_attributes=frozenset({"XOML"})),
    _service("SynchronizationRule", "Synchronization Rules", 123, children=("AttributeFlow",)),
    _service("AttributeFlow", "Attribute Flows", 124, ordered_attributes=frozenset({"scope"})),
    _service("EmailTemplate", "Email Templates", 130),
    _service("ObjectVisualizationConfiguration", "Resource Control Display Configurations", 131),
    _service("PortalUIConfiguration", "Portal Configuration", 132),
    _service("HomepageConfiguration", "Home Page Resources", 133),
    _service("NavigationBarConfiguration", "Navigation Bar Resources", 134),
    _service("SearchScopeConfiguration", "Search Scopes", 135,
             ordered_attributes=frozenset({"SearchScopeContext"})),
]


class Catalog:
    """Lookup over the entity rules of both domains."""

    def __init__(self, rules: list[EntityRule]):
        self._rules = {rule.name: rule for rule in rules}

    def __contains__(self, entity_type: str) -> bool:
        return entity_type in self._rules

    def rule_for(self, entity_type: str) -> EntityRule:
        """
        Return the rule for an entity type.

        Unknown types are service objects the catalog does not describe;
        they get a default rule keyed by DisplayName that renders last.
        """
        rule = self._rules.get(entity_type)
        if rule is None:
            rule = EntityRule(
                name=entity_type,
                domain=Domain.SERVICE,
                display_name=entity_type,
                priority=UNKNOWN_PRIORITY,
            )
        return rule

    def top_level(self, domain: Domain) -> list[EntityRule]:
        return [r for r in self._rules.values() if r.domain == domain and r.top_level]

    def type_order(self, entity_type: str) -> tuple[int, str]:
        """Sort key placing catalogued types by priority and unknown types alphabetically."""
        return self.rule_for(entity_type).priority, entity_type

    def is_ordered(self, entity_type: str, attribute: str) -> bool:
        return attribute in self.rule_for(entity_type).ordered_attributes

    def is_xml(self, entity_type: str, attribute: str) -> bool:
        return attribute in self.rule_for(entity_type).xml_attributes


CATALOG = Catalog(SYNC_RULES + SERVICE_RULES)
