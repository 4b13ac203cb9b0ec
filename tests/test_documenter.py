from __future__ import annotations

import json
import re
from pathlib import Path

import pytest
from conftest import export_flow, standard_service, standard_sync, write_export

from core.errors import ParseError, ReportWriteError
from core.models import ChangeState, Domain
from services.documenter import ConfigDocumenter


def _records_by_key(result, domain: Domain) -> dict:
    return {(r.entity_type, r.key): r for r in result.records[domain]}


def _html(result) -> str:
    return result.report_path.read_text(encoding="utf-8")


def test_identical_exports_have_no_changes(pilot_dir: Path, baseline_dir: Path, tmp_path: Path) -> None:
    result = ConfigDocumenter(pilot_dir, baseline_dir).generate_report(tmp_path / "out")

    assert not result.failed
    assert not result.has_changes
    assert result.counts[ChangeState.UNCHANGED] > 0
    for state in (ChangeState.ADDED, ChangeState.DELETED, ChangeState.MODIFIED, ChangeState.UNABLE_TO_COMPARE):
        assert result.counts[state] == 0

    html = _html(result)
    rows = re.findall(r'<tr class="[^"]*"', html)
    assert rows and all("CanHide" in row for row in rows)
    entities = re.findall(r'<div class="Entity[^"]*"', html)
    assert entities and all("CanHide" in div for div in entities)


def test_rule_only_in_pilot_is_added(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", service=standard_service())
    baseline = write_export(tmp_path / "Production", service={"schema.xml": standard_service()["schema.xml"]})

    result = ConfigDocumenter(pilot, baseline).generate_report(tmp_path / "out")

    rule = _records_by_key(result, Domain.SERVICE)[("SynchronizationRule", "SR1")]
    assert rule.state == ChangeState.ADDED
    assert rule.children == ()
    assert all(r.entity_type != "AttributeFlow" for _, r in result.iter_changes())


def test_changed_flow_target_is_one_change(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", service=standard_service(flows=[export_flow("costCenter", "dept")]))
    baseline = write_export(tmp_path / "Production", service=standard_service())

    result = ConfigDocumenter(pilot, baseline).generate_report(tmp_path / "out")

    rule = _records_by_key(result, Domain.SERVICE)[("SynchronizationRule", "SR1")]
    assert rule.state == ChangeState.MODIFIED
    changes = [c for node in rule.walk() for c in node.changes]
    assert len(changes) == 1
    assert (changes[0].attribute, changes[0].old_value, changes[0].new_value) == ("dest", "department", "costCenter")
    assert result.counts[ChangeState.MODIFIED] == 2


def test_older_schema_version_is_unable_to_compare(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", service=standard_service())
    baseline = write_export(tmp_path / "Production", service=standard_service(schema_version="3.1"))

    result = ConfigDocumenter(pilot, baseline).generate_report(tmp_path / "out")

    records = _records_by_key(result, Domain.SERVICE)
    assert records[("ObjectTypeDescription", "Person")].state == ChangeState.UNABLE_TO_COMPARE
    assert records[("BindingDescription", "Person/Department")].state == ChangeState.UNABLE_TO_COMPARE
    assert records[("SynchronizationRule", "SR1")].state == ChangeState.UNCHANGED
    assert not result.failed
    assert result.counts[ChangeState.UNABLE_TO_COMPARE] == 3
    assert '<p class="Flag">' in _html(result)


def test_swapping_exports_mirrors_the_result(tmp_path: Path) -> None:
    first = write_export(tmp_path / "Pilot", standard_sync(category="FIM"),
                         standard_service(flows=[export_flow("costCenter", "dept")]))
    second = write_export(tmp_path / "Production", {"MA-HR.xml": standard_sync(category="LDAP")["MA-HR.xml"]},
                          {"schema.xml": standard_service()["schema.xml"]})

    forward = ConfigDocumenter(first, second).compare()
    backward = ConfigDocumenter(second, first).compare()
    flipped = {ChangeState.ADDED: ChangeState.DELETED, ChangeState.DELETED: ChangeState.ADDED}

    for domain in Domain.FULL.parts():
        there = {(r.entity_type, r.path): r.state for top in forward[domain].records for r in top.walk()}
        back = {(r.entity_type, r.path): r.state for top in backward[domain].records for r in top.walk()}
        assert there.keys() == back.keys()
        for identity, state in there.items():
            assert back[identity] == flipped.get(state, state)


def test_sync_only_run_without_service_folder(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", sync=standard_sync())
    baseline = write_export(tmp_path / "Production", sync=standard_sync(category="LDAP"))

    result = ConfigDocumenter(pilot, baseline, Domain.SYNC).generate_report(tmp_path / "out")

    assert not result.failed
    assert list(result.outcomes) == [Domain.SYNC]
    assert _records_by_key(result, Domain.SYNC)[("ManagementAgent", "HR")].state == ChangeState.MODIFIED
    assert result.report_path.name == "Pilot_AND_Production_Sync_report.html"
    html = _html(result)
    assert Domain.SERVICE.title not in html


def test_full_run_notes_absent_domain(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", sync=standard_sync())
    baseline = write_export(tmp_path / "Production", sync=standard_sync())

    result = ConfigDocumenter(pilot, baseline).generate_report(tmp_path / "out")

    assert not result.failed
    assert result.outcomes[Domain.SERVICE].present is False
    assert "Not present in either export." in _html(result)


def test_full_run_continues_past_broken_domain(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", {"MA-HR.xml": "<saved-ma-configuration>"}, standard_service())
    baseline = write_export(tmp_path / "Production", standard_sync(), standard_service())

    result = ConfigDocumenter(pilot, baseline).generate_report(tmp_path / "out")

    assert result.failed
    error = result.load_errors[Domain.SYNC]
    assert error.path.endswith("MA-HR.xml")
    assert result.records[Domain.SYNC] == ()
    assert result.records[Domain.SERVICE]
    assert result.report_path.exists()
    assert "This section could not be loaded." in _html(result)


def test_single_domain_parse_failure_raises(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", {"MA-HR.xml": "<saved-ma-configuration>"})
    baseline = write_export(tmp_path / "Production", standard_sync())
    out = tmp_path / "out"

    with pytest.raises(ParseError) as excinfo:
        ConfigDocumenter(pilot, baseline, Domain.SYNC).generate_report(out)

    assert excinfo.value.path.endswith("MA-HR.xml")
    assert not out.exists()


def test_missing_folder_raises(pilot_dir: Path, tmp_path: Path) -> None:
    with pytest.raises(ParseError, match="does not exist"):
        ConfigDocumenter(pilot_dir, tmp_path / "Missing").generate_report(tmp_path / "out")


def test_unwritable_destination_raises(pilot_dir: Path, baseline_dir: Path, tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a folder", encoding="utf-8")

    with pytest.raises(ReportWriteError) as excinfo:
        ConfigDocumenter(pilot_dir, baseline_dir).generate_report(blocker)

    assert excinfo.value.path == str(blocker)
    assert "Could not write report to" in str(excinfo.value)


def test_report_output_is_deterministic(pilot_dir: Path, baseline_dir: Path, tmp_path: Path) -> None:
    documenter = ConfigDocumenter(pilot_dir, baseline_dir)
    first = documenter.generate_report(tmp_path / "a")
    second = documenter.generate_report(tmp_path / "b")

    assert first.report_path.name == "Pilot_AND_Production_Consolidated_report.html"
    assert first.report_path.read_bytes() == second.report_path.read_bytes()


def test_json_summary_and_pdf(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", standard_sync(),
                         standard_service(flows=[export_flow("costCenter", "dept")]))
    baseline = write_export(tmp_path / "Production", standard_sync(), standard_service())

    result = ConfigDocumenter(pilot, baseline).generate_report(tmp_path / "out", write_json=True, write_pdf=True)

    assert result.json_path.name == "Pilot_AND_Production_Consolidated_summary.json"
    summary = json.loads(result.json_path.read_text(encoding="utf-8"))
    assert summary["mode"] == "full"
    assert summary["failed"] is False
    assert summary["has_changes"] is True
    assert summary["report_file"] == result.report_path.name
    paths = {tuple(change["path"]) for change in summary["changes"]}
    assert ("SR1", "PersistentFlow: dept") in paths

    assert result.pdf_path.name == "Pilot_AND_Production_Consolidated_changes.pdf"
    assert result.pdf_path.read_bytes().startswith(b"%PDF")


def _nested(outcome, entity_type: str) -> dict:
    return {r.key: r for top in outcome.records for r in top.walk() if r.entity_type == entity_type}


def test_swapped_filter_condition_values_are_modified(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", standard_sync(filters=(
        (("employeeType", "Sales"), ("department", "Contractor")),
    )))
    baseline = write_export(tmp_path / "Production", standard_sync(filters=(
        (("employeeType", "Contractor"), ("department", "Sales")),
    )))

    result = ConfigDocumenter(pilot, baseline, Domain.SYNC).compare()

    connector_filter = _nested(result[Domain.SYNC], "ConnectorFilter")["person"]
    assert connector_filter.state == ChangeState.MODIFIED
    assert "filter-alternative" in connector_filter.changed_attributes()


def test_swapped_join_mappings_are_modified(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", standard_sync(join_mappings=(("employeeID", "empNo"), ("mail", "email"))))
    baseline = write_export(tmp_path / "Production",
                            standard_sync(join_mappings=(("employeeID", "email"), ("mail", "empNo"))))

    result = ConfigDocumenter(pilot, baseline, Domain.SYNC).compare()

    criterion = _nested(result[Domain.SYNC], "JoinCriterion")["Criterion 001"]
    assert criterion.state == ChangeState.MODIFIED
    assert set(criterion.changed_attributes()) == {"search-mapping"}


def test_changed_function_argument_is_modified(tmp_path: Path) -> None:
    def display_name(separator: str) -> str:
        fn = (f'<fn id="+" isCustomExpression="false"><arg>firstName</arg>'
              f'<arg>"{separator}"</arg><arg>lastName</arg></fn>')
        return export_flow("displayName", "firstName", "lastName", fn=fn)

    pilot = write_export(tmp_path / "Pilot", service=standard_service(flows=[display_name(".")]))
    baseline = write_export(tmp_path / "Production", service=standard_service(flows=[display_name(" ")]))

    result = ConfigDocumenter(pilot, baseline, Domain.SERVICE).compare()

    flow = _nested(result[Domain.SERVICE], "AttributeFlow")["PersistentFlow: firstName, lastName"]
    assert flow.state == ChangeState.MODIFIED
    (change,) = flow.changes
    assert (change.attribute, change.old_value, change.new_value) == (
        "fn", 'firstName+" "+lastName', 'firstName+"."+lastName')


def test_reordered_precedence_scope_is_modified(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", service=standard_service(
        flows=[export_flow("manager", "managerRef", scope=("contractor", "person"))]))
    baseline = write_export(tmp_path / "Production", service=standard_service(
        flows=[export_flow("manager", "managerRef", scope=("person", "contractor"))]))

    result = ConfigDocumenter(pilot, baseline, Domain.SERVICE).compare()

    flow = _nested(result[Domain.SERVICE], "AttributeFlow")["PersistentFlow: managerRef"]
    assert flow.state == ChangeState.MODIFIED
    assert set(flow.changed_attributes()) == {"scope"}


def test_permuted_same_source_flows_are_unchanged(tmp_path: Path) -> None:
    pilot = write_export(tmp_path / "Pilot", service=standard_service(flows=[
        export_flow("sAMAccountName", "accountName"), export_flow("cn", "accountName"),
    ]))
    baseline = write_export(tmp_path / "Production", service=standard_service(flows=[
        export_flow("cn", "accountName"), export_flow("sAMAccountName", "accountName"),
    ]))

    result = ConfigDocumenter(pilot, baseline, Domain.SERVICE).compare()

    rule = _nested(result[Domain.SERVICE], "SynchronizationRule")["SR1"]
    assert rule.state == ChangeState.UNCHANGED
    assert {c.key for c in rule.children} == {"PersistentFlow: accountName", "PersistentFlow: accountName (2)"}
