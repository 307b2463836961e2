#!/usr/bin/env python3
"""Command-line interface for the arrears reconciler.

Runs the same reconciliation as POST /arrears/process, directly against the
database configured by DATABASE_URL, as of the current UTC date.

Usage:
    python -m arrears_reconciler.reconciliation.cli process
    python -m arrears_reconciler.reconciliation.cli process --format text
    python -m arrears_reconciler.reconciliation.cli process --format csv --output arrears.csv
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from ..database import DatabaseManager
from ..exceptions import ArrearsReconcilerError
from .report import ReportGenerator
from .service import ArrearsReconciliationService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_RUN_FAILED = 2
# Same code argparse exits with on bad arguments
EXIT_USAGE_ERROR = 2


async def run_process_async(
    output_file: Optional[str] = None,
    output_format: str = "json",
    database_url: Optional[str] = None,
) -> int:
    """Run one arrears reconciliation.

    Args:
        output_file: Optional output file path.
        output_format: Output format ('json', 'csv', 'text', 'detailed_text').
        database_url: Optional database URL overriding DATABASE_URL.

    Returns:
        Exit code (0 success, 1 some tenancies failed, 2 run failed).
    """
    db_manager = DatabaseManager(database_url=database_url)
    await db_manager.initialize()

    try:
        service = ArrearsReconciliationService(db_manager.session_factory)
        try:
            report = await service.run()
        except ArrearsReconcilerError as e:
            logger.error(f"Arrears run failed: {e.message}")
            return EXIT_RUN_FAILED

        output = ReportGenerator(report).render(format=output_format)

        if output_file:
            with open(output_file, 'w') as f:
                f.write(output)
            logger.info(f"Report written to {output_file}")
        else:
            print(output)

        if report.failed_results:
            logger.warning(
                f"Arrears run completed with {len(report.failed_results)} failed tenancies"
            )
            return EXIT_PARTIAL_FAILURE
        return EXIT_OK

    finally:
        await db_manager.shutdown()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="arrears-reconciler",
        description="Reconcile arrears records with overdue rent schedules.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    process_parser = subparsers.add_parser(
        "process",
        help="Run an arrears reconciliation as of today (UTC)",
    )
    process_parser.add_argument(
        "--output", "-o",
        help="Output file path (default: stdout)",
    )
    process_parser.add_argument(
        "--format", "-f",
        choices=["json", "csv", "text", "detailed_text"],
        default="json",
        help="Output format (default: json)",
    )
    process_parser.add_argument(
        "--database-url",
        help="Database URL (default: DATABASE_URL environment variable)",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return EXIT_USAGE_ERROR

    if parsed_args.command == "process":
        return asyncio.run(run_process_async(
            output_file=parsed_args.output,
            output_format=parsed_args.format,
            database_url=parsed_args.database_url,
        ))

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
