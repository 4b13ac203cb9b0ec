from __future__ import annotations

from html import escape
from pathlib import Path
from typing import Optional, Union

import pytest

HR_MA_ID = "{6C1D6C3B-1A22-4F1B-9D0B-4D1B7E7C0001}"
AD_MA_ID = "{6C1D6C3B-1A22-4F1B-9D0B-4D1B7E7C0002}"
SYNC_VERSION = "4.4.1302.0"


def partition_xml(name: str, partition_id: str, object_classes: tuple[str, ...] = ("person", "group")) -> str:
    classes = "".join(f"<object-class>{c}</object-class>" for c in object_classes)
    return (
        "<partition>"
        f"<id>{partition_id}</id>"
        f"<name>{name}</name>"
        "<selected>1</selected>"
        f"<filter><object-classes>{classes}</object-classes></filter>"
        "<creation-time>2021-03-01 10:00:00.000</creation-time>"
        "</partition>"
    )


def run_profile_xml(name: str, partition_id: str, steps: tuple[str, ...] = ("full-import",)) -> str:
    body = "".join(
        "<step>"
        f'<step-type type="{step}"/>'
        f"<partition>{partition_id}</partition>"
        "</step>"
        for step in steps
    )
    return (
        "<run-configuration>"
        "<id>{11111111-2222-3333-4444-555555555555}</id>"
        f"<name>{name}</name>"
        "<version>3</version>"
        f"<configuration>{body}</configuration>"
        "</run-configuration>"
    )


def ma_xml(name: str = "HR", ma_id: str = HR_MA_ID, partition_id: str = "{AAAAAAAA-0000-0000-0000-000000000001}",
           category: str = "FIM", export_flows: Optional[dict[str, str]] = None,
           run_steps: tuple[str, ...] = ("full-import",), version: str = SYNC_VERSION,
           modified: str = "2021-03-01 10:00:00.000",
           filters: tuple[tuple[tuple[str, str], ...], ...] = (),
           join_mappings: tuple[tuple[str, str], ...] = ()) -> str:
    flows = export_flows if export_flows is not None else {"givenName": "firstName"}
    flow_xml = "".join(
        f'<export-flow cd-attribute="{cd}" id="{{99999999-0000-0000-0000-00000000000{i}}}" suppress-deletions="false">'
        f"<direct-mapping><src-attribute>{mv}</src-attribute></direct-mapping>"
        "</export-flow>"
        for i, (cd, mv) in enumerate(flows.items())
    )
    alternatives = "".join(
        f'<filter-alternative id="{{88888888-0000-0000-0000-00000000000{i}}}">'
        + "".join(
            f'<condition cd-attribute="{cd}" intrinsic-attribute="false" operator="equality">'
            f"<value>{value}</value></condition>"
            for cd, value in conditions
        )
        + "</filter-alternative>"
        for i, conditions in enumerate(filters)
    )
    filter_xml = (
        '<stay-disconnector><filter-set cd-object-type="person" type="declared">'
        f"{alternatives}</filter-set></stay-disconnector>"
        if filters else ""
    )
    mappings = "".join(
        f'<search-mapping mv-attribute="{mv}"><attribute-mapping>'
        f"<direct-mapping><src-attribute>{src}</src-attribute></direct-mapping>"
        "</attribute-mapping></search-mapping>"
        for mv, src in join_mappings
    )
    join_xml = (
        '<join><join-profile cd-object-type="person">'
        '<join-criterion id="{77777777-0000-0000-0000-000000000001}"><collation-order/>'
        f"{mappings}</join-criterion></join-profile></join>"
        if join_mappings else ""
    )
    return (
        f'<saved-ma-configuration server-version="{version}">'
        "<ma-data>"
        "<format-version>1</format-version>"
        f"<id>{ma_id}</id>"
        f"<name>{name}</name>"
        f"<category>{category}</category>"
        "<subtype/>"
        f"<last-modification-time>{modified}</last-modification-time>"
        "<version>7</version>"
        f"<ma-partition-data>{partition_xml('default', partition_id)}</ma-partition-data>"
        f"<ma-run-data>{run_profile_xml('Full Import', partition_id, run_steps)}</ma-run-data>"
        '<projection><class-mapping cd-object-type="person" type="declared">'
        "<mv-object-type>person</mv-object-type></class-mapping></projection>"
        f"{join_xml}"
        "<export-attribute-flow>"
        f'<export-flow-set cd-object-type="person" mv-object-type="person">{flow_xml}</export-flow-set>'
        "</export-attribute-flow>"
        f"{filter_xml}"
        "</ma-data>"
        "</saved-ma-configuration>"
    )


def mv_xml(precedence: tuple[str, ...] = (HR_MA_ID, AD_MA_ID), class_attributes: tuple[str, ...] = ("displayName", "mail"),
           version: str = SYNC_VERSION) -> str:
    refs = "".join(f'<dsml:attribute ref="#{a}" required="false"/>' for a in class_attributes)
    flows = "".join(
        f'<import-flow src-ma="{ma}" cd-object-type="person" id="{{00000000-0000-0000-0000-0000000000{i:02d}}}">'
        "<direct-mapping><src-attribute>displayName</src-attribute></direct-mapping>"
        "</import-flow>"
        for i, ma in enumerate(precedence)
    )
    return (
        f'<saved-mv-configuration server-version="{version}">'
        "<mv-data>"
        "<format-version>1</format-version>"
        "<version>12</version>"
        "<schema>"
        '<dsml:dsml xmlns:dsml="http://www.dsml.org/DSML" xmlns:ms-dsml="http://www.microsoft.com/MMS/DSML">'
        "<dsml:directory-schema>"
        f'<dsml:class id="person" type="structural"><dsml:name>person</dsml:name>{refs}</dsml:class>'
        '<dsml:attribute-type id="mail" single-value="true">'
        "<dsml:name>mail</dsml:name><dsml:syntax>1.3.6.1.4.1.1466.115.121.1.15</dsml:syntax>"
        "</dsml:attribute-type>"
        "</dsml:directory-schema>"
        "</dsml:dsml>"
        "</schema>"
        "<import-attribute-flow>"
        '<import-flow-set mv-object-type="person">'
        f'<import-flows mv-attribute="displayName" type="ranked">{flows}</import-flows>'
        "</import-flow-set>"
        "</import-attribute-flow>"
        "<mv-deletion>"
        f'<mv-deletion-rule mv-object-type="person" type="declared-any"><src-ma>{HR_MA_ID}</src-ma></mv-deletion-rule>'
        "</mv-deletion>"
        "</mv-data>"
        "</saved-mv-configuration>"
    )


def rm_object(object_type: str, identifier: str, attributes: dict[str, Union[str, list[str]]]) -> str:
    parts = []
    for name, value in attributes.items():
        if isinstance(value, list):
            items = "".join(f"<string>{escape(v, quote=False)}</string>" for v in value)
            body = f"<IsMultiValue>true</IsMultiValue><Values>{items}</Values>"
        else:
            body = f"<IsMultiValue>false</IsMultiValue><Value>{escape(value, quote=False)}</Value>"
        parts.append(f"<ResourceManagementAttribute><AttributeName>{name}</AttributeName>{body}</ResourceManagementAttribute>")
    return (
        "<ExportObject><ResourceManagementObject>"
        f"<ObjectType>{object_type}</ObjectType>"
        f"<ObjectIdentifier>{identifier}</ObjectIdentifier>"
        f"<ResourceManagementAttributes>{''.join(parts)}</ResourceManagementAttributes>"
        "</ResourceManagementObject></ExportObject>"
    )


def service_xml(objects: list[str], version: Optional[str] = None) -> str:
    version_attr = f' schema-version="{version}"' if version else ""
    return f"<Results{version_attr}>{''.join(objects)}</Results>"


def export_flow(dest: str, *sources: str, allows_null: str = "false", fn: str = "",
                scope: tuple[str, ...] = ()) -> str:
    src = "".join(f"<attr>{s}</attr>" for s in sources)
    values = "".join(f"<csValue>{v}</csValue>" for v in scope)
    return (
        f'<export-flow allows-null="{allows_null}"><src>{src}</src><dest>{dest}</dest>'
        f"<scope>{values}</scope>{fn}</export-flow>"
    )


def sync_rule(name: str, identifier: str, flows: list[str], **extra: Union[str, list[str]]) -> str:
    attributes: dict[str, Union[str, list[str]]] = {
        "DisplayName": name,
        "ObjectID": identifier,
        "FlowType": "1",
        "PersistentFlow": flows,
    }
    attributes.update(extra)
    return rm_object("SynchronizationRule", identifier, attributes)


def write_export(root: Path, sync: Optional[dict[str, str]] = None,
                 service: Optional[dict[str, str]] = None) -> Path:
    """Write an export folder with the given SyncConfig and ServiceConfig files."""
    root.mkdir(parents=True, exist_ok=True)
    for sub_folder, files in (("SyncConfig", sync), ("ServiceConfig", service)):
        if files is None:
            continue
        target = root / sub_folder
        target.mkdir(exist_ok=True)
        for name, content in files.items():
            (target / name).write_text(content, encoding="utf-8")
    return root


def standard_sync(**ma_kwargs) -> dict[str, str]:
    return {
        "MA-HR.xml": ma_xml(**ma_kwargs),
        "MA-AD.xml": ma_xml(name="AD", ma_id=AD_MA_ID, category="AD",
                            partition_id="{AAAAAAAA-0000-0000-0000-000000000002}"),
        "MV.xml": mv_xml(),
    }


def standard_service(version: Optional[str] = "4.5", flows: Optional[list[str]] = None,
                     schema_version: Optional[str] = None) -> dict[str, str]:
    return {
        "policy.xml": service_xml([
            sync_rule("SR1", "urn:uuid:10000000-0000-0000-0000-000000000001",
                      flows if flows is not None else [export_flow("department", "dept")]),
            rm_object("Set", "urn:uuid:20000000-0000-0000-0000-000000000001", {
                "DisplayName": "All Contractors",
                "Filter": '<Filter xmlns="http://schemas.microsoft.com/2006/11/ResourceManagement">/Person[EmployeeType = \'Contractor\']</Filter>',
                "ExplicitMember": ["urn:uuid:30000000-0000-0000-0000-000000000001",
                                   "urn:uuid:30000000-0000-0000-0000-000000000002"],
                "CreatedTime": "2021-01-01T00:00:00",
            }),
        ], version=version),
        "schema.xml": service_xml([
            rm_object("ObjectTypeDescription", "urn:uuid:40000000-0000-0000-0000-000000000001", {
                "Name": "Person",
                "DisplayName": "User",
            }),
            rm_object("AttributeTypeDescription", "urn:uuid:40000000-0000-0000-0000-000000000002", {
                "Name": "Department",
                "DataType": "String",
            }),
            rm_object("BindingDescription", "urn:uuid:40000000-0000-0000-0000-000000000003", {
                "BoundObjectType": "urn:uuid:40000000-0000-0000-0000-000000000001",
                "BoundAttributeType": "urn:uuid:40000000-0000-0000-0000-000000000002",
                "Required": "False",
            }),
        ], version=schema_version or version),
    }


@pytest.fixture
def pilot_dir(tmp_path: Path) -> Path:
    return write_export(tmp_path / "Pilot", standard_sync(), standard_service())


@pytest.fixture
def baseline_dir(tmp_path: Path) -> Path:
    return write_export(tmp_path / "Production", standard_sync(), standard_service())
