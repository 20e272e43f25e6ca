#!/usr/bin/env python3
"""
Run the approval escalation sweep and the playbook deadline sweep.

Usage:
    python scripts/run_sweeps.py --tenant TENANT [--database-url URL]
                                 [--catalogue-dir DIR] [--expire]

Intended to be scheduled (cron, a job runner) every few minutes. Both sweeps
are idempotent, so overlapping runs are safe. Settings not given on the
command line come from GOVERNANCE_DATABASE_URL, GOVERNANCE_CATALOGUE_DIR and
GOVERNANCE_LOG_LEVEL.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from governance_config import GovernanceSettings, load_catalogue
from governance_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
)
from governance_kernel.domain.clock import SystemClock
from governance_kernel.exceptions import GovernanceError
from governance_kernel.logging_config import LogContext, configure_logging, get_logger
from governance_kernel.repositories import SqlApprovalRequestStore, SqlPlaybookInstanceStore
from governance_services import (
    ApprovalRequestService,
    EscalationSweeper,
    LoggingNotificationSink,
    NotificationDispatcher,
    PlaybookDeadlineSweeper,
)

logger = get_logger("scripts.run_sweeps")


def run(tenant_id: str, settings: GovernanceSettings, expire: bool = False) -> int:
    catalogue = load_catalogue(settings.catalogue_dir)
    engine = create_engine_from_url(settings.database_url)
    create_tables(engine)
    session_factory = create_session_factory(engine)

    clock = SystemClock()
    dispatcher = NotificationDispatcher(LoggingNotificationSink())
    requests = SqlApprovalRequestStore(session_factory)
    instances = SqlPlaybookInstanceStore(session_factory)

    with LogContext.bind(tenant_id=tenant_id):
        escalation = EscalationSweeper(requests, catalogue.policies, dispatcher, clock)
        esc_result = escalation.check_and_escalate(tenant_id)
        print(
            f"Escalation sweep: scanned={esc_result.scanned} "
            f"escalated={len(esc_result.escalated)} skipped={len(esc_result.skipped)}"
        )

        deadlines = PlaybookDeadlineSweeper(instances, dispatcher, clock)
        dl_result = deadlines.send_reminders_and_escalate(tenant_id)
        print(
            f"Deadline sweep: scanned={dl_result.scanned} "
            f"reminders={len(dl_result.reminders)} escalated={len(dl_result.escalated)}"
        )

        if expire:
            service = ApprovalRequestService(requests, catalogue.policies, dispatcher, clock)
            expired = service.expire_overdue(tenant_id)
            print(f"Expired requests: {len(expired)}")

    engine.dispose()
    return 0


def main(argv: list[str] | None = None) -> int:
    env = GovernanceSettings.from_env()
    parser = argparse.ArgumentParser(description="Run governance sweeps for one tenant.")
    parser.add_argument("--tenant", required=True, help="tenant id to sweep")
    parser.add_argument("--database-url", default=env.database_url)
    parser.add_argument("--catalogue-dir", type=Path, default=env.catalogue_dir)
    parser.add_argument("--log-level", default=env.log_level)
    parser.add_argument(
        "--expire",
        action="store_true",
        help="also move PENDING requests past their deadline to EXPIRED",
    )
    args = parser.parse_args(argv)

    configure_logging(level=args.log_level.upper())
    settings = GovernanceSettings(
        database_url=args.database_url,
        catalogue_dir=args.catalogue_dir,
        log_level=args.log_level.upper(),
    )
    try:
        return run(args.tenant, settings, expire=args.expire)
    except GovernanceError as exc:
        logger.exception("sweep_failed")
        print(f"Sweep failed [{exc.code}]: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
