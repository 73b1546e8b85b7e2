# main.py
"""
CLI entrypoint for the scanner.

- Scans one or more contract source files.
- Produces JSON, CSV, HTML and Markdown reports and prints a colorful summary table.
- Size ceiling and evaluation budget resolve as CLI flag -> environment -> config default.
"""

import argparse
import logging
import os
from typing import Optional

from contract_scanner import InputTooLarge, default_catalog, scan
from models import ScanOptions, Severity
from utils import load_source_file, print_rule_catalog, print_summary_and_report_path, save_report
from config import ENV_BUDGET, ENV_MAX_INPUT_SIZE

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("contract_scanner")


def _int_setting(cli_value: Optional[int], env_name: str) -> Optional[int]:
    if cli_value is not None:
        return cli_value
    raw = os.environ.get(env_name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise SystemExit(f"{env_name} must be an integer, got {raw!r}")


def resolve_options(max_input_size: Optional[int] = None, budget: Optional[int] = None) -> ScanOptions:
    return ScanOptions(
        max_input_size=_int_setting(max_input_size, ENV_MAX_INPUT_SIZE),
        evaluation_budget=_int_setting(budget, ENV_BUDGET),
    )


def run_scan(file_path: str, options: ScanOptions, report_dir: str = "reports",
             print_table: bool = False, save: bool = True):
    """
    Scan a single source file and return its Report.
    """
    logger.info("Scanning %s", file_path)
    try:
        source = load_source_file(file_path)
    except (FileNotFoundError, ValueError) as e:
        raise SystemExit(str(e))
    try:
        report = scan(source, options)
    except InputTooLarge as e:
        raise SystemExit(f"{file_path}: {e}")

    report_paths = save_report(report, source_name=file_path, out_dir=report_dir) if save else None
    print_summary_and_report_path(report, report_paths, print_full_table=print_table)
    return report


def list_rules():
    print_rule_catalog(list(default_catalog().rules()))


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Rule-based smart contract vulnerability scanner."
    )
    p.add_argument(
        "files",
        nargs="*",
        help="Contract source files to scan",
    )
    p.add_argument(
        "--report-dir",
        default="reports",
        help="Directory to save reports (default: reports)",
    )
    p.add_argument(
        "--print-table",
        action="store_true",
        help="Print full findings table to stdout",
    )
    p.add_argument(
        "--max-input-size",
        type=int,
        help=f"Maximum source size in characters (env: {ENV_MAX_INPUT_SIZE})",
    )
    p.add_argument(
        "--budget",
        type=int,
        help=f"Evaluation budget in work units (env: {ENV_BUDGET})",
    )
    p.add_argument(
        "--list-rules",
        action="store_true",
        help="Print the rule catalog and exit",
    )
    p.add_argument(
        "--no-save",
        action="store_true",
        help="Do not write report files",
    )
    p.add_argument(
        "--fail-on",
        choices=[s.value for s in Severity],
        help="Exit with status 1 if any finding is at or above this severity",
    )
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    if args.list_rules:
        list_rules()
        return
    if not args.files:
        raise SystemExit("no source files given (or use --list-rules)")

    options = resolve_options(args.max_input_size, args.budget)
    reports = [
        run_scan(
            path,
            options,
            report_dir=args.report_dir,
            print_table=args.print_table,
            save=not args.no_save,
        )
        for path in args.files
    ]

    if args.fail_on:
        threshold = Severity(args.fail_on).rank
        if any(f.severity.rank >= threshold for r in reports for f in r.findings):
            raise SystemExit(1)


if __name__ == "__main__":
    main()
