"""
Payment reconciliation job.

Usage:
    python -m medverify.jobs.reconcile          # report only
    python -m medverify.jobs.reconcile --live   # apply fixes
"""
import argparse
import asyncio
import sys

from medverify.core.logger import logger
from medverify.db.session import async_session, detect_schema_capabilities, engine
from medverify.services.reconciliation_service import ReconciliationReport, ReconciliationService


async def reconcile(dry_run: bool = True) -> ReconciliationReport:
    capabilities = await detect_schema_capabilities()
    async with async_session() as session:
        report = await ReconciliationService(session, capabilities).run(dry_run=dry_run)
    await engine.dispose()
    return report


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Bring appointments and identities in line with paid transactions")
    parser.add_argument("--live", action="store_true", help="Apply fixes instead of only reporting them")
    args = parser.parse_args(argv)

    logger.info(f"Starting payment reconciliation ({'live' if args.live else 'dry run'})")
    report = asyncio.run(reconcile(dry_run=not args.live))
    for name, value in report.as_dict().items():
        print(f"{name}: {value}")
    return 1 if report.failures else 0


if __name__ == "__main__":
    sys.exit(main())
