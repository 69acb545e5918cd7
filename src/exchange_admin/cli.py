"""Command-line interface (CLI) entrypoint.

Objective:
    Provide a human-friendly CLI wrapper around
    :class:`src.exchange_admin.scanner.GroupInactivityScanner` and
    :class:`src.exchange_admin.converter.MailboxConverter`.

Responsibilities:
    - Parse arguments (``scan-groups`` / ``convert-mailboxes`` subcommands).
    - Configure logging (console plus optional transcript file, with noisy
      MSAL logs suppressed).
    - Invoke the workflow and print a readable summary of results.

High-level call tree:
    - :func:`main`
        - :func:`setup_logging`
            - installs :class:`_MsalInfoToDebugFilter`
        - ``scan-groups``:
            - :meth:`GroupInactivityScanner.run`
            - :func:`print_scan_summary`
        - ``convert-mailboxes``:
            - :func:`src.exchange_admin.converter.read_identities`
            - :meth:`MailboxConverter.convert_many`
            - :func:`src.exchange_admin.converter.write_conversion_results`
            - :func:`print_conversion_results`

Operational notes:
    - This module supports being run both as a package module
      (``python -m src.exchange_admin.cli``) and as a script
      (``python src/exchange_admin/cli.py``). The import fallback handles
      the script case.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

try:
    from .config import LOG_LEVELS, MAX_TRACE_WINDOW_DAYS, get_settings
    from .converter import MailboxConverter, read_identities, write_conversion_results
    from .scanner import GroupInactivityScanner
except ImportError:  # pragma: no cover
    src_root = Path(__file__).resolve().parents[1]
    if str(src_root) not in sys.path:
        sys.path.insert(0, str(src_root))

    from exchange_admin.config import LOG_LEVELS, MAX_TRACE_WINDOW_DAYS, get_settings
    from exchange_admin.converter import MailboxConverter, read_identities, write_conversion_results
    from exchange_admin.scanner import GroupInactivityScanner

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class _MsalInfoToDebugFilter(logging.Filter):
    """Filter to suppress noisy MSAL INFO logs.

    MSAL logs token cache and authority discovery details at INFO level. This
    filter hides those messages unless the root logger is in DEBUG mode.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Determine whether a log record should be emitted.

        Args:
            record: Log record emitted by the logging framework.

        Returns:
            bool: True to allow emission, False to suppress.
        """
        if record.name.startswith("msal") and record.levelno <= logging.INFO:
            return logging.getLogger().isEnabledFor(logging.DEBUG)
        return True


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure logging for the application.

    This sets the root logger level, optionally adds a transcript file
    handler, and installs the :class:`_MsalInfoToDebugFilter` on all root
    handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional transcript file path.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
        handlers=handlers,
    )

    root_logger = logging.getLogger()
    downgrade_filter = _MsalInfoToDebugFilter()
    for handler in root_logger.handlers:
        handler.addFilter(downgrade_filter)


def print_scan_summary(summary, verbose: bool = False) -> None:
    """
    Print inactivity scan results to console.

    Args:
        summary: ScanSummary from the scanner.
        verbose: If True, list skipped groups with reasons.
    """
    print(f"\n{'='*60}")
    print("DISTRIBUTION GROUP INACTIVITY SCAN")
    print(f"{'='*60}\n")

    print(f"  Processed: {summary.processed}")
    print(f"  Inactive:  {summary.inactive}")
    print(f"  Skipped due to errors: {summary.skipped}")

    if summary.failures and verbose:
        print("\nSkipped groups:")
        print("-" * 40)
        for failure in summary.failures:
            print(f"  ❌ {failure.identity}: {failure.reason}")

    if summary.csv_path:
        print(f"\n  CSV report:  {summary.csv_path}")
    if summary.html_path:
        print(f"  HTML report: {summary.html_path}")

    print(f"\n{'='*60}\n")


def print_conversion_results(results: list, verbose: bool = False) -> None:
    """
    Print mailbox conversion results to console.

    Output format:
        - Group results by status.
        - Optionally print warnings and errors when ``verbose=True``.

    Args:
        results: List of ConversionResult objects.
        verbose: If True, print detailed information.
    """
    if not results:
        print("\nNo mailboxes processed.")
        return

    print(f"\n{'='*60}")
    print(f"CONVERSION RESULTS: {len(results)} mailboxes")
    print(f"{'='*60}\n")

    by_status: dict[str, list] = {}
    for result in results:
        by_status.setdefault(result.status.value, []).append(result)

    for status, items in sorted(by_status.items()):
        print(f"\n{status} ({len(items)} mailboxes)")
        print("-" * 40)

        for item in items:
            marker = "✅" if item.success else "❌"
            name = f" ({item.display_name})" if item.display_name else ""
            flags = []
            if item.sign_in_disabled:
                flags.append("sign-in disabled")
            if item.password_rotated:
                flags.append("password rotated")
            suffix = f" [{', '.join(flags)}]" if flags else ""

            print(f"  {marker} {item.identity}{name}{suffix}")

            if verbose:
                for warning in item.warnings:
                    print(f"      Warning: {warning}")
                if item.error:
                    print(f"      Error: {item.error}")

    successful = sum(1 for r in results if r.success)
    failed = len(results) - successful

    print(f"\n{'='*60}")
    print(f"SUMMARY: ✅ {successful} successful, ❌ {failed} failed")
    print(f"{'='*60}\n")


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _trace_days(value: str) -> int:
    number = _positive_int(value)
    if number > MAX_TRACE_WINDOW_DAYS:
        raise argparse.ArgumentTypeError(
            f"must be at most {MAX_TRACE_WINDOW_DAYS}, got {number}"
        )
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Exchange Online admin toolkit - group inactivity reports and shared mailbox conversion",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s scan-groups                          Scan all distribution groups
  %(prog)s scan-groups --inactive-days 180      Use a 180 day threshold
  %(prog)s scan-groups --name-filter "Sales*"   Scan matching groups only
  %(prog)s convert-mailboxes jane@contoso.com   Convert one mailbox
  %(prog)s convert-mailboxes -i leavers.csv --rotate-password --dry-run
        """,
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--output-dir",
        "-o",
        type=str,
        default=None,
        help="Directory for report files (overrides OUTPUT_DIR)",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )
    common.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=LOG_LEVELS,
        help="Logging level (overrides LOG_LEVEL, default INFO)",
    )
    common.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write a transcript of the run to this file",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser(
        "scan-groups",
        parents=[common],
        help="Report inactive distribution groups",
    )
    scan.add_argument(
        "--inactive-days",
        type=_positive_int,
        default=None,
        help="Days without modification before a group is inactive (default 90)",
    )
    scan.add_argument(
        "--trace-days",
        type=_trace_days,
        default=None,
        help=f"Message trace lookback window in days, 1 to {MAX_TRACE_WINDOW_DAYS} (default 10)",
    )
    scan.add_argument(
        "--name-filter",
        "-f",
        type=str,
        default=None,
        help="Wildcard filter on group display names, e.g. 'Sales*'",
    )
    scan.add_argument(
        "--domains",
        type=str,
        default=None,
        help="Comma-separated primary address domains to include",
    )
    scan.add_argument(
        "--limit",
        "-l",
        type=_positive_int,
        default=None,
        help="Maximum number of groups to scan",
    )

    convert = subparsers.add_parser(
        "convert-mailboxes",
        parents=[common],
        help="Convert user mailboxes to shared mailboxes",
    )
    convert.add_argument(
        "identities",
        nargs="*",
        help="Mailbox identities (UPN or address)",
    )
    convert.add_argument(
        "--input-file",
        "-i",
        type=str,
        default=None,
        help="CSV or text file with mailbox identities",
    )
    convert.add_argument(
        "--rotate-password",
        action="store_true",
        help="Reset the account password after conversion",
    )
    convert.add_argument(
        "--dry-run",
        "-d",
        action="store_true",
        help="Validate mailboxes without converting them",
    )

    return parser


def _parse_domains(value: Optional[str]) -> Optional[list[str]]:
    if value is None:
        return None
    return [d.strip().lower().lstrip("@") for d in value.split(",") if d.strip()]


def main(args: Optional[list[str]] = None) -> int:
    """
    Main CLI entry point.

    This function is structured to be testable: pass an explicit ``args`` list
    instead of relying on ``sys.argv``.

    Args:
        args: Command line arguments (uses sys.argv if None).

    Returns:
        int: Exit code (0 for success, 1 for error).
    """
    parser = _build_parser()
    parsed_args = parser.parse_args(args)

    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging(parsed_args.log_level or "INFO", parsed_args.log_file)
        logging.getLogger(__name__).error("Invalid configuration: %s", e)
        print(f"\n❌ Configuration error: {e}\n")
        return 1

    log_level = "DEBUG" if parsed_args.verbose else (parsed_args.log_level or settings.log_level)
    setup_logging(log_level, parsed_args.log_file)

    logger = logging.getLogger(__name__)

    try:
        if parsed_args.command == "scan-groups":
            print("\n🚀 Starting distribution group inactivity scan...\n")

            scanner = GroupInactivityScanner(settings=settings)
            summary = scanner.run(
                inactive_days=parsed_args.inactive_days,
                trace_days=parsed_args.trace_days,
                name_filter=parsed_args.name_filter,
                allowed_domains=_parse_domains(parsed_args.domains),
                output_dir=parsed_args.output_dir,
                limit=parsed_args.limit,
            )

            print_scan_summary(summary, verbose=parsed_args.verbose)
            return 0 if summary.success else 1

        identities = list(parsed_args.identities)
        if parsed_args.input_file:
            identities.extend(read_identities(Path(parsed_args.input_file)))
        if not identities:
            parser.error("convert-mailboxes needs identities or --input-file")

        print("\n🚀 Starting shared mailbox conversion...\n")
        if parsed_args.dry_run:
            print("⚠️  DRY RUN MODE - Mailboxes will not be changed\n")

        converter = MailboxConverter(settings=settings)
        results = converter.convert_many(
            identities,
            rotate_password=parsed_args.rotate_password,
            dry_run=parsed_args.dry_run,
        )
        write_conversion_results(results, Path(parsed_args.output_dir or settings.output_dir))

        print_conversion_results(results, verbose=parsed_args.verbose)

        failed = sum(1 for r in results if not r.success)
        return 1 if failed > 0 else 0

    except Exception as e:
        logger.exception("Fatal error")
        print(f"\n❌ Error: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
