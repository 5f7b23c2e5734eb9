"""
Background passes: vote reconciliation, the voting-deadline sweep and the
agreement-transition sweep.

All are plain coroutines meant to be triggered by a scheduler (cron,
systemd timer) or by the API. Each has its own single-slot guard, so an
invocation that overlaps a running pass of the same kind is skipped.

The sweeps never depend on the outcome of any other step in the same
cycle: `run_cycle` runs them even when reconciliation crashes.

Typical cron schedule: */5 * * * * (every five minutes)
"""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from ..core.database import async_session_factory, get_session_context
from ..core.pass_guard import PassGuard
from ..services.reconciler import VoteReconciler
from ..services.workflow import (
    DeadlineSweepResult,
    WorkflowStateMachine,
    agreement_guard,
    deadline_guard,
)


logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
) -> None:
    """
    Send an alert when a pass fails.

    Always logged; also posted to ALERT_WEBHOOK_URL when configured.
    """
    log_message = f"[PASS ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    webhook_url = get_settings().alert_webhook_url
    if not webhook_url:
        return

    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "governance-ledger",
        "details": details or {},
    }
    try:
        async with httpx.AsyncClient() as client:
            await client.post(webhook_url, json=payload, timeout=10)
    except httpx.HTTPError as e:
        logger.error(f"Failed to send webhook alert: {e}")


# =============================================================================
# PASSES
# =============================================================================


async def run_reconciliation_pass(
    reconciler: VoteReconciler | None = None,
) -> dict[str, Any]:
    """
    Entry point for the vote reconciliation pass.

    Returns a summary; `skipped` is True when a previous pass still runs.
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting reconciliation pass at {start_time.isoformat()}")

    reconciler = reconciler or VoteReconciler()
    try:
        result = await reconciler.run_pass()
    except Exception as e:
        await send_alert(
            title="Reconciliation Pass Failed",
            message="The vote reconciliation pass crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": start_time.isoformat(),
            },
        )
        raise

    end_time = datetime.now(timezone.utc)
    summary = {
        "started_at": start_time.isoformat(),
        "completed_at": end_time.isoformat(),
        "duration_seconds": (end_time - start_time).total_seconds(),
        "skipped": result.skipped,
        "stale_marked_failed": result.stale_marked_failed,
        "pending_count": result.pending_count,
        "executed_count": result.executed_count,
        "not_yet_voted_count": result.not_yet_voted_count,
        "failed_count": result.failed_count,
        "errors": result.errors,
    }

    if result.skipped:
        logger.info("Reconciliation pass skipped: previous pass still running")
        return summary

    logger.info(
        f"Reconciliation pass completed in {summary['duration_seconds']:.2f}s: "
        f"{result.executed_count} executed, {result.not_yet_voted_count} not yet voted, "
        f"{result.stale_marked_failed} stale, {result.failed_count} failed"
    )

    if result.failed_count > 0:
        await send_alert(
            title="Reconciliation Pass Completed with Errors",
            message=f"{result.failed_count} referendum update(s) failed and will be retried.",
            severity="warning",
            details={"errors": result.errors[:5]},
        )

    return summary


async def run_deadline_sweep(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    guard: PassGuard | None = None,
) -> DeadlineSweepResult:
    """
    Entry point for the voting-deadline sweep.

    Marks NOT_VOTED every referendum whose voting window closed without a
    team vote. Runs on its own schedule, unconditionally.
    """
    with (guard or deadline_guard).hold() as acquired:
        if not acquired:
            return DeadlineSweepResult(skipped=True)
        try:
            async with get_session_context(session_factory or async_session_factory) as session:
                changes = await WorkflowStateMachine(session).sweep_concluded_referendums()
        except Exception as e:
            await send_alert(
                title="Deadline Sweep Failed",
                message="The not-voted deadline sweep crashed unexpectedly.",
                severity="critical",
                details={"error": str(e), "traceback": traceback.format_exc()[-500:]},
            )
            raise

    logger.info(f"Deadline sweep completed: {len(changes)} referendum(s) marked not_voted")
    return DeadlineSweepResult(changes=changes)


async def run_agreement_pass(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    guard: PassGuard | None = None,
) -> DeadlineSweepResult:
    """
    Entry point for the agreement-transition sweep.

    Re-applies agreement transitions to every waiting_for_agreement and
    ready_to_vote referendum, catching ones whose agreements or member
    list changed outside record_action.
    """
    with (guard or agreement_guard).hold() as acquired:
        if not acquired:
            return DeadlineSweepResult(skipped=True)
        try:
            async with get_session_context(session_factory or async_session_factory) as session:
                changes = await WorkflowStateMachine(session).process_agreement_transitions()
        except Exception as e:
            await send_alert(
                title="Agreement Pass Failed",
                message="The agreement-transition sweep crashed unexpectedly.",
                severity="critical",
                details={"error": str(e), "traceback": traceback.format_exc()[-500:]},
            )
            raise

    return DeadlineSweepResult(changes=changes)


def _sweep_summary(outcome: DeadlineSweepResult | BaseException) -> dict[str, Any]:
    if isinstance(outcome, BaseException):
        return {"error": str(outcome)}
    return {"skipped": outcome.skipped, "transitioned": outcome.transitioned}


async def run_cycle() -> dict[str, Any]:
    """Run every pass side by side; one failing never prevents the others."""
    reconciliation, sweep, agreement = await asyncio.gather(
        run_reconciliation_pass(),
        run_deadline_sweep(),
        run_agreement_pass(),
        return_exceptions=True,
    )
    return {
        "reconciliation": (
            {"error": str(reconciliation)} if isinstance(reconciliation, BaseException) else reconciliation
        ),
        "deadline_sweep": _sweep_summary(sweep),
        "agreement_transitions": _sweep_summary(agreement),
    }


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for scheduled passes."""
    import argparse

    parser = argparse.ArgumentParser(description="Run governance ledger background passes")
    parser.add_argument(
        "pass_name",
        choices=["reconcile", "deadline-sweep", "agreement-transitions", "all"],
        nargs="?",
        default="all",
        help="Which pass to run",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.pass_name == "reconcile":
        job = run_reconciliation_pass()
    elif args.pass_name == "deadline-sweep":
        job = run_deadline_sweep()
    elif args.pass_name == "agreement-transitions":
        job = run_agreement_pass()
    else:
        job = run_cycle()

    try:
        results = asyncio.run(job)
        print(f"Pass completed: {results}")
    except Exception as e:
        print(f"Pass failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
