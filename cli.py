# Parity v1.3.2
#!/usr/bin/env python3
"""
Parity CLI

Command-line interface for comparing identity configuration exports.
"""
import argparse
import logging
import sys
from typing import Optional

from config import settings
from core import ChangeType, Domain, ParityError

MODES = {
    "full": Domain.FULL,
    "sync-only": Domain.SYNC,
    "synconly": Domain.SYNC,
    "service-only": Domain.SERVICE,
    "serviceonly": Domain.SERVICE,
}


def parse_mode(value: str) -> Domain:
    """Accept full / sync-only / service-only and the SyncOnly / ServiceOnly spellings."""
    mode = MODES.get(value.strip().lower())
    if mode is None:
        raise argparse.ArgumentTypeError(
            f"invalid mode '{value}' (choose full, sync-only or service-only)"
        )
    return mode


def _print_change(change):
    print(f"    Field: {change.attribute}")
    print(f"    Type:  {change.change_type.value}")

    if change.change_type == ChangeType.ARRAY_MODIFIED:
        if change.items_added:
            print(f"    Added ({len(change.items_added)}):")
            for item in change.items_added[:3]:
                print(f"      + {item}")
            if len(change.items_added) > 3:
                print(f"      ... and {len(change.items_added) - 3} more")
        if change.items_removed:
            print(f"    Removed ({len(change.items_removed)}):")
            for item in change.items_removed[:3]:
                print(f"      - {item}")
            if len(change.items_removed) > 3:
                print(f"      ... and {len(change.items_removed) - 3} more")
    else:
        if change.old_value is not None:
            print(f"    Old: {change.old_value}")
        if change.new_value is not None:
            print(f"    New: {change.new_value}")
    print()


def compare_exports(pilot: str, baseline: str, mode: Domain) -> int:
    """Compare two export folders and print the differences."""
    from services import ConfigDocumenter

    outcomes = ConfigDocumenter(pilot, baseline, mode).compare()

    print(f"\nComparing: {pilot} (pilot) vs {baseline} (baseline)")
    print("=" * 60)

    failed = False
    for outcome in outcomes.values():
        print(f"\n{outcome.domain.title}")
        print("-" * 60)

        if outcome.load_error is not None:
            print(f"  Could not be loaded: {outcome.load_error}")
            failed = True
            continue
        if not outcome.present:
            print("  Not present in either export")
            continue

        for warning in outcome.warnings:
            print(f"  Warning: {warning.message}")

        changed = [node for record in outcome.records for node in record.walk() if node.is_changed]
        if not changed:
            print("  No differences")
            continue

        print(f"  {len(changed)} difference(s) found:\n")
        for record in changed:
            print(f"  {record.entity_type}: {' / '.join(record.path)} [{record.state.label}]")
            if record.reason:
                print(f"    {record.reason}")
            for change in record.changes:
                _print_change(change)

    return 1 if failed else 0


def generate_report(pilot: str, baseline: str, mode: Domain, output_dir: Optional[str],
                    write_json: bool, write_pdf: bool) -> int:
    """Write the HTML report (and optional JSON/PDF companions)."""
    from services import ConfigDocumenter

    result = ConfigDocumenter(pilot, baseline, mode).generate_report(
        output_dir=output_dir, write_json=write_json, write_pdf=write_pdf
    )

    print(f"Report written: {result.report_path}")
    if result.json_path:
        print(f"Summary written: {result.json_path}")
    if result.pdf_path:
        print(f"PDF written: {result.pdf_path}")
    for state, count in result.counts.items():
        print(f"  {state.label:<18} {count}")
    if result.warnings:
        print(f"  {len(result.warnings)} duplicate identity warning(s)")

    if result.failed:
        for domain, error in result.load_errors.items():
            print(f"Error: {domain.title} could not be loaded: {error}", file=sys.stderr)
        return 1
    return 0


def inspect_export(folder: str, mode: Domain) -> int:
    """List the entities loaded from one export folder."""
    from core import CATALOG, load_snapshot

    snapshot = load_snapshot(folder, "export", mode)

    print(f"\nExport: {folder} ({len(snapshot.source_files)} file(s), {snapshot.entity_count} entities)")
    print("-" * 60)

    for domain in mode.parts():
        if not snapshot.has_domain(domain):
            print(f"\n{domain.title}: not present")
            continue

        entities = snapshot.entities_for(domain)
        print(f"\n{domain.title} ({len(entities)}):")
        by_type = {}
        for entity in entities:
            by_type.setdefault(entity.entity_type, []).append(entity)

        for entity_type in sorted(by_type, key=CATALOG.type_order):
            rule = CATALOG.rule_for(entity_type)
            print(f"  {rule.display_name} ({len(by_type[entity_type])})")
            for entity in sorted(by_type[entity_type], key=lambda e: (e.key.casefold(), e.key)):
                children = f" [{len(entity.children)} child entities]" if entity.children else ""
                print(f"    {entity.key}{children}")
    print()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="parity",
        description="Parity - identity configuration drift reporting",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log pipeline progress")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # report
    report_parser = subparsers.add_parser("report", help="Write the HTML comparison report")
    report_parser.add_argument("pilot", help="Pilot/target export folder")
    report_parser.add_argument("baseline", help="Production/baseline export folder")
    report_parser.add_argument("legacy_mode", nargs="?", type=parse_mode, metavar="MODE",
                               help="SyncOnly or ServiceOnly (same as --mode)")
    report_parser.add_argument("--mode", type=parse_mode, help="full, sync-only or service-only")
    report_parser.add_argument("--output-dir", help=f"Report folder (default: {settings.REPORTS_DIR})")
    report_parser.add_argument("--json", action="store_true", help="Also write a JSON summary")
    report_parser.add_argument("--pdf", action="store_true", help="Also write a changes-only PDF")

    # compare
    compare_parser = subparsers.add_parser("compare", help="Print the differences between two exports")
    compare_parser.add_argument("pilot", help="Pilot/target export folder")
    compare_parser.add_argument("baseline", help="Production/baseline export folder")
    compare_parser.add_argument("--mode", type=parse_mode, default=Domain.FULL,
                                help="full, sync-only or service-only")

    # inspect
    inspect_parser = subparsers.add_parser("inspect", help="List the entities in one export")
    inspect_parser.add_argument("folder", help="Export folder")
    inspect_parser.add_argument("--mode", type=parse_mode, default=Domain.FULL,
                                help="full, sync-only or service-only")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if settings.DEBUG or args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not args.command:
        parser.print_help()
        return 2

    try:
        if args.command == "report":
            if args.mode and args.legacy_mode and args.mode != args.legacy_mode:
                parser.error("conflicting modes given")
            mode = args.mode or args.legacy_mode or Domain.FULL
            return generate_report(args.pilot, args.baseline, mode, args.output_dir, args.json, args.pdf)
        elif args.command == "compare":
            return compare_exports(args.pilot, args.baseline, args.mode)
        elif args.command == "inspect":
            return inspect_export(args.folder, args.mode)
    except ParityError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
