"""
Export folder loader for Parity.

An export folder holds one sub-folder per configuration domain:

    <folder>/SyncConfig/*.xml      synchronization engine (MA and metaverse exports)
    <folder>/ServiceConfig/*.xml   service and portal objects

Identifiers that are generated per environment (MA and partition GUIDs,
service object ids) are replaced by stable names while loading so that
references compare equal across exports.
"""
import logging
import re
import xml.etree.ElementTree as ET
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from config import Settings, settings as default_settings
from core.catalog import (
    CATALOG,
    COMPOSITE_SYNC_TAGS,
    SYNC_RULE_FLOW_ATTRIBUTES,
    VOLATILE_SYNC_NAMES,
    Catalog,
    EntityRule,
)
from core.errors import ParseError
from core.models import AttributeValue, ConfigEntity, ConfigurationSnapshot, Domain

logger = logging.getLogger(__name__)

SYNC_ROOTS = frozenset({"saved-ma-configuration", "saved-mv-configuration"})
SERVICE_ROOTS = frozenset({"Results"})

VERSION_PATTERN = re.compile(r"^\d+(\.\d+)*$")
GUID_PATTERN = re.compile(r"^\{[0-9A-Fa-f]{8}(-[0-9A-Fa-f]{4}){3}-[0-9A-Fa-f]{12}\}$")
UUID_PREFIX = "urn:uuid:"


@dataclass
class ParsedFile:
    """Result of reading one export file."""
    path: Path
    root: ET.Element
    schema_version: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass
class DomainExport:
    """Top-level entities loaded for one domain of one export folder."""
    domain: Domain
    entities: tuple[ConfigEntity, ...]
    files: tuple[str, ...]


def strip_namespaces(root: ET.Element) -> ET.Element:
    """Reduce every tag and attribute name to its local name, in place."""
    for element in root.iter():
        if isinstance(element.tag, str) and "}" in element.tag:
            element.tag = element.tag.split("}", 1)[1]
        if any("}" in name for name in element.attrib):
            element.attrib = {
                name.split("}", 1)[-1]: value for name, value in element.attrib.items()
            }
    return root


def validate_version(path: Union[str, Path], version: Optional[str]) -> Optional[str]:
    """Return the version stripped, or raise if it is not a dotted integer sequence."""
    if version is None:
        return None
    version = version.strip()
    if not VERSION_PATTERN.match(version):
        raise ParseError(path, f"unsupported schema version '{version}'")
    return version


def parse_xml_file(path: Path, expected_roots: frozenset, version_attribute: str) -> ParsedFile:
    """
    Parse one export file.

    Args:
        path: File to read
        expected_roots: Root element names accepted for this domain
        version_attribute: Root attribute holding the file's schema version

    Returns:
        ParsedFile with namespaces stripped

    Raises:
        ParseError: If the file cannot be read, is not well-formed, has an
            unexpected root element or an unsupported version
    """
    try:
        with open(path, "rb") as f:
            tree = ET.parse(f)
    except ET.ParseError as e:
        raise ParseError(path, f"malformed XML ({e})") from e
    except OSError as e:
        raise ParseError(path, f"could not be read ({e.strerror or e})") from e

    root = strip_namespaces(tree.getroot())
    if root.tag not in expected_roots:
        raise ParseError(path, f"unrecognised root element <{root.tag}>")

    version = validate_version(path, root.get(version_attribute))
    logger.debug(f"Parsed {path.name} (<{root.tag}>, version {version or 'n/a'})")
    return ParsedFile(path=path, root=root, schema_version=version)


def check_export_folder(folder: Union[str, Path]) -> Path:
    """Return the folder as a Path, raising if it does not exist."""
    root = Path(folder)
    if not root.is_dir():
        raise ParseError(root, "export folder does not exist")
    return root


def domain_files(folder: Path, domain: Domain, settings: Settings) -> Optional[list[Path]]:
    """
    List the export files of one domain in name order.

    Returns None when the domain sub-folder is absent. An existing
    sub-folder without any export file is an error.
    """
    sub_folder = folder / getattr(settings, domain.folder_setting)
    if not sub_folder.is_dir():
        return None
    files = sorted(
        (p for p in sub_folder.glob(settings.EXPORT_FILE_PATTERN) if p.is_file()),
        key=lambda p: p.name,
    )
    if not files:
        raise ParseError(sub_folder, f"no export files matching {settings.EXPORT_FILE_PATTERN}")
    return files


# ============================================================
# SYNCHRONIZATION ENGINE
# ============================================================

def _sync_references(parsed_files: list[ParsedFile]) -> dict[str, str]:
    """Map MA and partition GUIDs to their names."""
    references = {}
    for parsed in parsed_files:
        for ma in parsed.root.iter("ma-data"):
            ma_id = (ma.findtext("id") or "").strip().upper()
            ma_name = (ma.findtext("name") or "").strip()
            if ma_id and ma_name:
                references[ma_id] = ma_name
            for partition in ma.iter("partition"):
                partition_id = (partition.findtext("id") or "").strip().upper()
                partition_name = (partition.findtext("name") or "").strip()
                if partition_id and partition_name:
                    references[partition_id] = partition_name
    return references


def _composite(fields: dict[str, AttributeValue]) -> str:
    """Render the flattened fields of one element as a single comparable item."""
    parts = []
    for name in sorted(fields):
        value = fields[name]
        text = " | ".join(sorted(value)) if isinstance(value, tuple) else value
        parts.append(f"{name}={text}")
    return "[" + "; ".join(parts) + "]"


def _flatten(element: ET.Element, skipped: set, resolve: Callable[[str], str]) -> dict[str, AttributeValue]:
    """
    Flatten the leaves and XML attributes beneath an entity element.

    Paths are relative to the entity ("filter/object-classes/object-class",
    "export-flow@cd-attribute"). Repeated leaves become multi-values. A
    structured element that repeats among its siblings, or is listed in
    COMPOSITE_SYNC_TAGS, becomes one composite item so its fields stay paired.
    """
    collected: dict[str, list[str]] = {}

    def add(name: str, value: str):
        collected.setdefault(name, []).append(value)

    def add_attributes(node: ET.Element, path: str):
        for name, value in sorted(node.attrib.items()):
            if name not in VOLATILE_SYNC_NAMES:
                add(f"{path}@{name}", resolve(value.strip()))

    def walk(node: ET.Element, prefix: str):
        children = [c for c in node if c not in skipped and c.tag not in VOLATILE_SYNC_NAMES]
        tag_counts = Counter(c.tag for c in children if len(c))
        for child in children:
            path = f"{prefix}/{child.tag}" if prefix else child.tag
            if len(child) == 0:
                text = child.text or ""
                if text.strip() or not child.attrib:
                    add(path, resolve(text.strip()))
                add_attributes(child, path)
            elif child.tag in COMPOSITE_SYNC_TAGS or tag_counts[child.tag] > 1:
                add(path, _composite(_flatten(child, skipped, resolve)))
            else:
                add_attributes(child, path)
                walk(child, path)

    add_attributes(element, "")
    walk(element, "")
    return {name: values[0] if len(values) == 1 else tuple(values) for name, values in collected.items()}


def _build_sync_entity(element: ET.Element, rule: EntityRule, position: int, parsed: ParsedFile,
                       resolve: Callable[[str], str], catalog: Catalog) -> ConfigEntity:
    key = rule.key(element, position)
    if key is None:
        raise ParseError(parsed.path, f"{rule.name} #{position} has no identity key")

    children = []
    skipped = set()
    for child_type in rule.children:
        child_rule = catalog.rule_for(child_type)
        for child_position, child in enumerate(element.findall(child_rule.select), 1):
            skipped.add(child)
            children.append(
                _build_sync_entity(child, child_rule, child_position, parsed, resolve, catalog)
            )
    for path in rule.skip_paths:
        skipped.update(element.findall(path))

    attributes = _flatten(element, skipped, resolve)
    if rule.derive:
        attributes.update(rule.derive(element, resolve))

    return ConfigEntity(
        entity_type=rule.name,
        key=key,
        attributes=attributes,
        children=tuple(children),
        schema_version=parsed.schema_version,
        source_file=parsed.filename,
    )


def load_sync_entities(files: list[Path], catalog: Catalog = CATALOG) -> tuple[ConfigEntity, ...]:
    """Load management agent and metaverse exports."""
    parsed_files = [parse_xml_file(p, SYNC_ROOTS, "server-version") for p in files]
    references = _sync_references(parsed_files)

    def resolve(value: str) -> str:
        if GUID_PATTERN.match(value):
            return references.get(value.upper(), value)
        return value

    entities = []
    for parsed in parsed_files:
        for rule in catalog.top_level(Domain.SYNC):
            for position, element in enumerate(parsed.root.findall(rule.select), 1):
                entities.append(_build_sync_entity(element, rule, position, parsed, resolve, catalog))
    return tuple(entities)


# ============================================================
# SERVICE AND PORTAL
# ============================================================

@dataclass
class _ServiceObject:
    parsed: ParsedFile
    object_type: str
    identifier: str
    attributes: dict
    key: Optional[str] = None


def _service_attributes(obj: ET.Element) -> dict[str, AttributeValue]:
    attributes = {}
    for attribute in obj.findall("ResourceManagementAttributes/ResourceManagementAttribute"):
        name = (attribute.findtext("AttributeName") or "").strip()
        if not name:
            continue
        values = attribute.find("Values")
        if values is not None:
            attributes[name] = tuple(item.text or "" for item in values)
        else:
            attributes[name] = attribute.findtext("Value") or ""
    return attributes


def _first(value: Optional[AttributeValue]) -> str:
    if isinstance(value, tuple):
        return value[0] if value else ""
    return value or ""


def _identity(obj: _ServiceObject, rule: EntityRule, plain_keys: dict[str, str],
              final: bool = False) -> Optional[str]:
    """
    Form the identity key of a service object.

    Key parts that reference another object are replaced by that object's
    key. Returns None while a referenced key is still unknown; on the final
    pass an unresolvable reference falls through to the next candidate.
    """
    candidates = [rule.key_attributes, ("DisplayName",), ("Name",)]
    for key_attributes in candidates:
        parts = [_first(obj.attributes.get(name)).strip() for name in key_attributes]
        if not all(parts):
            continue
        resolved = []
        for part in parts:
            if part.lower().startswith(UUID_PREFIX):
                if part.lower() not in plain_keys:
                    if final:
                        break
                    return None
                resolved.append(plain_keys[part.lower()])
            else:
                resolved.append(part)
        else:
            return "/".join(resolved)
    return obj.identifier or None


def describe_function(fn: Optional[ET.Element]) -> str:
    """
    Render a synchronization rule function as an expression.

    ``+`` concatenates its arguments; every other function is written as a
    call, e.g. ``Left(accountName,8)``. Custom expressions are wrapped in
    ``CustomExpression(...)``.
    """
    if fn is None:
        return ""

    args = []
    for arg in fn.findall("arg"):
        nested = arg.find("fn")
        args.append(describe_function(nested) if nested is not None else (arg.text or ""))

    name = fn.get("id", "")
    expression = "+".join(args) if name == "+" else f"{name}({','.join(args)})"
    if fn.get("isCustomExpression", "").lower() == "true":
        expression = f"CustomExpression({expression})"
    return expression


def _flow_source(flow: ET.Element) -> str:
    src = flow.find("src")
    if src is None:
        return ""
    attrs = [(a.text or "").strip() for a in src.findall("attr")]
    if attrs:
        return ", ".join(attrs)
    return (src.text or "").strip()


def _flow_attributes(flow: ET.Element) -> dict[str, AttributeValue]:
    fn = flow.find("fn")
    if fn is None:
        fn = flow.find("src/fn")
    return {
        "dest": (flow.findtext("dest") or "").strip(),
        "src": _flow_source(flow),
        "fn": describe_function(fn),
        "allows-null": flow.get("allows-null", ""),
        # Reference attribute precedence
        "scope": tuple((v.text or "").strip() for v in flow.findall("scope/csValue")),
    }


def _sync_rule_flows(obj: _ServiceObject, catalog: Catalog) -> list[ConfigEntity]:
    """
    Split the serialized flow attributes of a synchronization rule into child entities.

    Flows are keyed by kind and source. Flows sharing a key are numbered in
    content order, so the order of the multi-value never decides the key.
    """
    grouped: dict[str, list[dict]] = {}
    for kind in SYNC_RULE_FLOW_ATTRIBUTES:
        value = obj.attributes.pop(kind, None)
        if value is None:
            continue
        for text in value if isinstance(value, tuple) else (value,):
            if not text.strip():
                continue
            try:
                flow = strip_namespaces(ET.fromstring(text))
            except ET.ParseError as e:
                raise ParseError(
                    obj.parsed.path,
                    f"SynchronizationRule '{obj.key}' has an unreadable {kind} ({e})"
                ) from e
            attributes = _flow_attributes(flow)
            grouped.setdefault(f"{kind}: {attributes['src'] or attributes['fn']}", []).append(attributes)

    flows = []
    for base_key, group in grouped.items():
        group.sort(key=lambda a: (a["dest"], a["fn"], a["allows-null"], a["scope"]))
        for position, attributes in enumerate(group, 1):
            flows.append(ConfigEntity(
                entity_type="AttributeFlow",
                key=base_key if position == 1 else f"{base_key} ({position})",
                attributes=attributes,
                schema_version=obj.parsed.schema_version,
                source_file=obj.parsed.filename,
            ))
    return flows


def load_service_entities(files: list[Path], catalog: Catalog = CATALOG,
                          settings: Settings = default_settings) -> tuple[ConfigEntity, ...]:
    """Load service object exports."""
    objects = []
    for parsed in (parse_xml_file(p, SERVICE_ROOTS, "schema-version") for p in files):
        for element in parsed.root.iter("ResourceManagementObject"):
            object_type = (element.findtext("ObjectType") or "").strip()
            if not object_type:
                raise ParseError(parsed.path, "ResourceManagementObject without an ObjectType")
            objects.append(_ServiceObject(
                parsed=parsed,
                object_type=object_type,
                identifier=(element.findtext("ObjectIdentifier") or "").strip(),
                attributes=_service_attributes(element),
            ))

    # Keys that reference other objects (bindings) need those objects' keys first
    plain_keys: dict[str, str] = {}
    pending = []
    for obj in objects:
        obj.key = _identity(obj, catalog.rule_for(obj.object_type), {})
        if obj.key is None:
            pending.append(obj)
        elif obj.identifier:
            plain_keys[obj.identifier.lower()] = obj.key
    for obj in pending:
        obj.key = _identity(obj, catalog.rule_for(obj.object_type), plain_keys, final=True)
        if obj.key is None:
            raise ParseError(
                obj.parsed.path,
                f"{obj.object_type} {obj.identifier or '(no identifier)'} has no identity key"
            )

    references = {
        obj.identifier.lower(): f"{obj.object_type}:{obj.key}"
        for obj in objects if obj.identifier
    }

    def resolve(value: str) -> str:
        return references.get(value.strip().lower(), value)

    ignored = set(settings.IGNORED_SERVICE_ATTRIBUTES)
    entities = []
    for obj in objects:
        children = _sync_rule_flows(obj, catalog) if obj.object_type == "SynchronizationRule" else []
        attributes = {}
        for name, value in obj.attributes.items():
            if name in ignored:
                continue
            if isinstance(value, tuple):
                attributes[name] = tuple(resolve(v) for v in value)
            else:
                attributes[name] = resolve(value)
        entities.append(ConfigEntity(
            entity_type=obj.object_type,
            key=obj.key,
            attributes=attributes,
            children=tuple(children),
            schema_version=obj.parsed.schema_version,
            source_file=obj.parsed.filename,
        ))
    return tuple(entities)


# ============================================================
# ENTRY POINTS
# ============================================================

def load_domain(folder: Union[str, Path], domain: Domain, settings: Settings = default_settings,
                catalog: Catalog = CATALOG) -> Optional[DomainExport]:
    """
    Load one domain of an export folder.

    Returns None when the domain was not exported.
    """
    root = check_export_folder(folder)
    files = domain_files(root, domain, settings)
    if files is None:
        logger.info(f"{domain.title} not present in {root}")
        return None

    if domain == Domain.SYNC:
        entities = load_sync_entities(files, catalog)
    else:
        entities = load_service_entities(files, catalog, settings)

    logger.info(f"Loaded {len(entities)} {domain.name.lower()} entities from {len(files)} file(s) in {root}")
    return DomainExport(domain=domain, entities=entities, files=tuple(str(p) for p in files))


def load_snapshot(folder: Union[str, Path], label: str, domains: Domain = Domain.FULL,
                  settings: Settings = default_settings, catalog: Catalog = CATALOG) -> ConfigurationSnapshot:
    """
    Load every selected domain of an export folder.

    Args:
        folder: Export folder
        label: Snapshot label used in warnings ("pilot" or "baseline")
        domains: Domains to load

    Returns:
        ConfigurationSnapshot; absent domains have no entities

    Raises:
        ParseError: On the first folder or file that cannot be loaded
    """
    root = check_export_folder(folder)
    entities = {}
    present = Domain(0)
    files: list[str] = []

    for domain in domains.parts():
        export = load_domain(root, domain, settings, catalog)
        if export is None:
            entities[domain] = ()
            continue
        entities[domain] = export.entities
        present |= domain
        files.extend(export.files)

    return ConfigurationSnapshot(
        root=root,
        label=label,
        entities=entities,
        present_domains=present,
        source_files=tuple(files),
    )
