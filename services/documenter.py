"""
Report orchestration for Parity.

One pipeline covers every mode; the Domain selection decides which domains
are loaded, compared and rendered:

    Load -> Match -> Diff -> Render -> Assemble -> Emit
"""
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Union

from config import Settings, settings as default_settings
from core.catalog import CATALOG, Catalog
from core.comparison import DiffRecord, count_states, diff_matches, group_changes_by_signature
from core.errors import ParseError, ReportWriteError
from core.file_parser import check_export_folder, load_domain
from core.matcher import match_domain
from core.models import ChangeState, ConfigurationSnapshot, Domain, DuplicateIdentity
from services.pdf_report import write_changes_pdf
from services.report_renderer import RenderContext, render_document, render_domain
from services.schemas import AttributeChangeSchema, ChangeEntry, ChangeGroup, DomainSummary, RunSummary

logger = logging.getLogger(__name__)

MODE_NAMES = {
    Domain.FULL: "full",
    Domain.SYNC: "sync-only",
    Domain.SERVICE: "service-only",
}


@dataclass
class DomainOutcome:
    """Everything one domain contributed to a run."""
    domain: Domain
    present: bool = False
    records: tuple[DiffRecord, ...] = ()
    warnings: tuple[DuplicateIdentity, ...] = ()
    load_error: Optional[ParseError] = None


@dataclass
class ReportResult:
    """Outcome of ConfigDocumenter.generate_report."""
    report_path: Path
    domains: Domain
    pilot_label: str
    baseline_label: str
    outcomes: dict[Domain, DomainOutcome] = field(default_factory=dict)
    counts: dict[ChangeState, int] = field(default_factory=dict)
    json_path: Optional[Path] = None
    pdf_path: Optional[Path] = None

    @property
    def records(self) -> dict[Domain, tuple[DiffRecord, ...]]:
        return {d: o.records for d, o in self.outcomes.items()}

    @property
    def warnings(self) -> list[DuplicateIdentity]:
        return [w for o in self.outcomes.values() for w in o.warnings]

    @property
    def load_errors(self) -> dict[Domain, ParseError]:
        return {d: o.load_error for d, o in self.outcomes.items() if o.load_error is not None}

    @property
    def has_changes(self) -> bool:
        return any(count for state, count in self.counts.items() if state != ChangeState.UNCHANGED)

    @property
    def failed(self) -> bool:
        return bool(self.load_errors)

    def iter_changes(self) -> Iterator[tuple[Domain, DiffRecord]]:
        """Yield every record at any depth that is not Unchanged."""
        for domain, outcome in self.outcomes.items():
            for record in outcome.records:
                for node in record.walk():
                    if node.is_changed:
                        yield domain, node


@contextmanager
def _stage(name: str):
    started = time.perf_counter()
    logger.info(f"{name}: started")
    yield
    logger.info(f"{name}: finished in {time.perf_counter() - started:.3f}s")


def _write_text(path: Path, text: str):
    try:
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
    except OSError as e:
        raise ReportWriteError(path, e.strerror or str(e)) from e


class ConfigDocumenter:
    """
    Compares a pilot export with a baseline export and writes the report.

    Args:
        pilot_dir: Pilot/target export folder
        baseline_dir: Production/baseline export folder
        domains: Domain.FULL, Domain.SYNC or Domain.SERVICE
        settings: Defaults to the module-level settings
    """

    def __init__(self, pilot_dir: Union[str, Path], baseline_dir: Union[str, Path],
                 domains: Domain = Domain.FULL, settings: Optional[Settings] = None,
                 catalog: Catalog = CATALOG):
        self.pilot_dir = Path(pilot_dir)
        self.baseline_dir = Path(baseline_dir)
        self.domains = domains
        self.settings = settings or default_settings
        self.catalog = catalog

    @property
    def pilot_label(self) -> str:
        return self.pilot_dir.resolve().name

    @property
    def baseline_label(self) -> str:
        return self.baseline_dir.resolve().name

    @property
    def report_base(self) -> str:
        return f"{self.pilot_label}_AND_{self.baseline_label}_{self.domains.report_suffix}"

    @property
    def report_title(self) -> str:
        if self.domains == Domain.FULL:
            return self.settings.REPORT_TITLE
        return self.domains.title

    # ============================================================
    # STAGES
    # ============================================================

    def _load(self) -> tuple[dict, ConfigurationSnapshot, ConfigurationSnapshot]:
        # A missing export folder aborts every mode
        check_export_folder(self.pilot_dir)
        check_export_folder(self.baseline_dir)

        single_domain = len(self.domains.parts()) == 1
        outcomes = {}
        snapshot_data = {
            "pilot": {"entities": {}, "present": Domain(0), "files": []},
            "baseline": {"entities": {}, "present": Domain(0), "files": []},
        }

        for domain in self.domains.parts():
            try:
                exports = {
                    "pilot": load_domain(self.pilot_dir, domain, self.settings, self.catalog),
                    "baseline": load_domain(self.baseline_dir, domain, self.settings, self.catalog),
                }
            except ParseError as e:
                if single_domain:
                    raise
                logger.error(f"{domain.title} could not be loaded, continuing without it: {e}")
                outcomes[domain] = DomainOutcome(domain=domain, load_error=e)
                continue

            for label, export in exports.items():
                data = snapshot_data[label]
                data["entities"][domain] = export.entities if export else ()
                if export:
                    data["present"] |= domain
                    data["files"].extend(export.files)
            outcomes[domain] = DomainOutcome(
                domain=domain,
                present=any(export is not None for export in exports.values()),
            )

        pilot, baseline = (
            ConfigurationSnapshot(
                root=folder,
                label=label,
                entities=snapshot_data[label]["entities"],
                present_domains=snapshot_data[label]["present"],
                source_files=snapshot_data[label]["files"],
            )
            for label, folder in (("pilot", self.pilot_dir), ("baseline", self.baseline_dir))
        )
        return outcomes, pilot, baseline

    def _summary(self, result: ReportResult) -> RunSummary:
        changes = []
        signed = []
        for domain, record in result.iter_changes():
            changes.append(ChangeEntry(
                domain=domain.name,
                entity_type=record.entity_type,
                path=list(record.path),
                state=record.state.value,
                reason=record.reason,
                changes=[AttributeChangeSchema(**c.to_dict()) for c in record.changes],
            ))
            label = f"{record.entity_type}:{'/'.join(record.path)}"
            signed.extend((label, change) for change in record.changes)

        groups = [
            ChangeGroup(
                signature=signature,
                attribute=group["change"].attribute,
                change_type=group["change"].change_type.value,
                entities=group["entities"],
            )
            for signature, group in sorted(group_changes_by_signature(signed).items())
            if len(group["entities"]) > 1
        ]

        return RunSummary(
            app_version=self.settings.APP_VERSION,
            pilot=result.pilot_label,
            baseline=result.baseline_label,
            mode=MODE_NAMES[self.domains],
            report_file=result.report_path.name,
            failed=result.failed,
            has_changes=result.has_changes,
            counts={state.value: count for state, count in result.counts.items()},
            domains=[
                DomainSummary(
                    domain=outcome.domain.name,
                    present=outcome.present,
                    load_error=str(outcome.load_error) if outcome.load_error else None,
                    counts={s.value: c for s, c in count_states(outcome.records).items()},
                    warnings=[w.message for w in outcome.warnings],
                )
                for outcome in result.outcomes.values()
            ],
            changes=changes,
            change_groups=groups,
        )

    def compare(self) -> dict[Domain, DomainOutcome]:
        """
        Run Load, Match and Diff without rendering anything.

        Returns:
            DomainOutcome per selected domain, in report order
        """
        mode = MODE_NAMES[self.domains]
        logger.info(f"Comparing {self.pilot_dir} (pilot) with {self.baseline_dir} (baseline), mode {mode}")

        with _stage("Load"):
            outcomes, pilot, baseline = self._load()

        loaded = [d for d, o in outcomes.items() if o.load_error is None]

        with _stage("Match"):
            match_results = {d: match_domain(pilot, baseline, d) for d in loaded}

        with _stage("Diff"):
            for domain in loaded:
                outcomes[domain].records = diff_matches(
                    match_results[domain].matches, self.catalog, self.settings.SCHEMA_VERSION_PRECISION
                )
                outcomes[domain].warnings = match_results[domain].warnings

        return outcomes

    def generate_report(self, output_dir: Optional[Union[str, Path]] = None,
                        write_json: bool = False, write_pdf: bool = False) -> ReportResult:
        """
        Run the whole pipeline and write the report.

        Args:
            output_dir: Destination folder; defaults to settings.REPORTS_DIR
            write_json: Also write <base>_summary.json
            write_pdf: Also write <base>_changes.pdf

        Returns:
            ReportResult describing what was written and found

        Raises:
            ParseError: If an export folder is missing, or a single-domain run
                cannot load its domain
            ReportWriteError: If an output file cannot be written
        """
        outcomes = self.compare()

        context = RenderContext()
        with _stage("Render"):
            for outcome in outcomes.values():
                render_domain(
                    outcome.records,
                    outcome.domain,
                    context,
                    warnings=outcome.warnings,
                    load_error=outcome.load_error,
                    present=outcome.present,
                    catalog=self.catalog,
                )

        with _stage("Assemble"):
            html = render_document(context, self.report_title, self.pilot_label, self.baseline_label)

        out_dir = Path(output_dir) if output_dir is not None else Path(self.settings.REPORTS_DIR)
        result = ReportResult(
            report_path=out_dir / f"{self.report_base}_report.html",
            domains=self.domains,
            pilot_label=self.pilot_label,
            baseline_label=self.baseline_label,
            outcomes=outcomes,
            counts=dict(context.counts),
        )

        with _stage("Emit"):
            try:
                out_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ReportWriteError(out_dir, e.strerror or str(e)) from e

            _write_text(result.report_path, html)
            logger.info(f"Report written to {result.report_path}")

            if write_json:
                result.json_path = out_dir / f"{self.report_base}_summary.json"
                _write_text(result.json_path, self._summary(result).model_dump_json(indent=2) + "\n")
                logger.info(f"Summary written to {result.json_path}")

            if write_pdf:
                result.pdf_path = out_dir / f"{self.report_base}_changes.pdf"
                try:
                    write_changes_pdf(result, result.pdf_path, self.settings.APP_VERSION,
                                      self.settings.PDF_MAX_CHANGES)
                except OSError as e:
                    raise ReportWriteError(result.pdf_path, e.strerror or str(e)) from e

        if result.failed:
            logger.error(f"Report completed with {len(result.load_errors)} domain(s) that could not be loaded")
        return result
