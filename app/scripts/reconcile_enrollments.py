"""
Replay the enrollment step of every recorded payment.

Repairs classes left behind by a payment whose enrollment update never ran
(crash between the two writes). Idempotent: payments already reflected in
their class are left alone.
Usage: python -m app.scripts.reconcile_enrollments [--class-id ID]
Exit status is 1 when payments reference classes that no longer exist.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from app.coordinator.services import reconcile_enrollments
from app.core.logging import configure_logging
from app.db.session import engine, get_store


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rebuild class enrollments from the payment ledger.")
    parser.add_argument("--class-id", help="Only replay payments for this class")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    return parser.parse_args(argv)


async def run(class_id: Optional[str] = None) -> int:
    try:
        report = await reconcile_enrollments(get_store(), class_id=class_id)
    finally:
        await engine.dispose()

    print(
        f"Checked {report.payments_checked} payment(s): "
        f"{report.enrollments_applied} repaired, {report.already_consistent} already consistent."
    )
    if report.orphaned_payment_ids:
        print(
            f"{len(report.orphaned_payment_ids)} payment(s) reference missing classes: "
            + ", ".join(report.orphaned_payment_ids),
            file=sys.stderr,
        )
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    sys.exit(asyncio.run(run(args.class_id)))


if __name__ == "__main__":
    main()
