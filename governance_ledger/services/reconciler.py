"""
Vote Reconciler: settles pending multisig votes against what was cast.

Each pass:
1. Marks pending transactions past the retention window as failed
2. Reads live chain votes and indexer extrinsics concurrently
3. Resolves every pending transaction whose referendum the chain reports
   as voted, with priority chain > indexer > suggested vote
4. Writes referendum status, the voting decision, and finally the
   transaction status (the commit marker) for each resolved referendum

Passes are idempotent: an executed transaction is never pending again, so a
re-run finds nothing to do for it.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.database import async_session_factory, get_session_context
from ..core.pass_guard import PassGuard
from ..models import (
    Chain,
    Organization,
    Referendum,
    VOTED_STATUS_BY_DIRECTION,
    VoteDirection,
)
from .chain_votes import ChainVoteSource, VoteKey, collect_accounts
from .decisions import VotingDecisionService
from .indexer_votes import IndexerVote, IndexerVoteSource
from .transactions import PendingVote, TransactionLifecycle


logger = logging.getLogger(__name__)

reconciliation_guard = PassGuard("reconciliation")


# =============================================================================
# RESOLUTION
# =============================================================================


@dataclass(frozen=True)
class VoteEvidence:
    """Everything known about one pending vote during a pass."""
    chain_vote: VoteDirection | None
    indexer_vote: IndexerVote | None
    suggested_vote: VoteDirection | None


@dataclass(frozen=True)
class ResolvedVote:
    direction: VoteDirection
    source: str
    extrinsic_hash: str | None = None


def from_chain(evidence: VoteEvidence) -> VoteDirection | None:
    return evidence.chain_vote


def from_indexer(evidence: VoteEvidence) -> VoteDirection | None:
    return evidence.indexer_vote.direction if evidence.indexer_vote else None


def from_suggestion(evidence: VoteEvidence) -> VoteDirection | None:
    return evidence.suggested_vote


Resolver = Callable[[VoteEvidence], VoteDirection | None]

# Highest priority first
DEFAULT_RESOLVERS: tuple[tuple[str, Resolver], ...] = (
    ("chain", from_chain),
    ("indexer", from_indexer),
    ("suggestion", from_suggestion),
)


def resolve_vote(
    evidence: VoteEvidence,
    resolvers: Sequence[tuple[str, Resolver]] = DEFAULT_RESOLVERS,
) -> ResolvedVote | None:
    """Return the first resolver's answer, tagged with its source."""
    extrinsic_hash = evidence.indexer_vote.extrinsic_hash if evidence.indexer_vote else None
    for name, resolver in resolvers:
        direction = resolver(evidence)
        if direction is not None:
            return ResolvedVote(direction=direction, source=name, extrinsic_hash=extrinsic_hash)
    return None


def build_audit_link(extrinsic_hash: str | None, chain: Chain, settings: Settings) -> str | None:
    """Explorer link for an executed vote extrinsic."""
    if not extrinsic_hash:
        return None
    base = (
        settings.kusama_explorer_url
        if chain == Chain.KUSAMA
        else settings.polkadot_explorer_url
    )
    return f"{base.rstrip('/')}/extrinsic/{extrinsic_hash}"


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class ReconciliationResult:
    """Summary of one reconciliation pass."""
    skipped: bool = False
    stale_marked_failed: int = 0
    pending_count: int = 0
    executed_count: int = 0
    not_yet_voted_count: int = 0
    failed_count: int = 0
    errors: list[str] = field(default_factory=list)


# =============================================================================
# RECONCILER
# =============================================================================


class VoteReconciler:
    """Drives pending transactions to executed once their vote is on-chain."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        chain_source: ChainVoteSource | None = None,
        indexer_source: IndexerVoteSource | None = None,
        settings: Settings | None = None,
        guard: PassGuard | None = None,
    ):
        self._settings = settings or get_settings()
        self._session_factory = session_factory or async_session_factory
        self._chain_source = chain_source or ChainVoteSource(self._settings)
        self._indexer_source = indexer_source or IndexerVoteSource(self._settings)
        self._guard = guard or reconciliation_guard

    async def run_pass(self) -> ReconciliationResult:
        """Run one pass, or return a skipped result if one is already running."""
        if not self._guard.try_acquire():
            return ReconciliationResult(skipped=True)
        try:
            return await self._run()
        finally:
            self._guard.release()

    async def _run(self) -> ReconciliationResult:
        result = ReconciliationResult()

        # Step 1: Staleness sweep, independent of any vote data
        async with get_session_context(self._session_factory) as session:
            lifecycle = TransactionLifecycle(session)
            retention_days = self._settings.pending_transaction_retention_days
            stale = await lifecycle.count_stale(retention_days)
            if stale:
                logger.info(f"{stale} pending transaction(s) older than {retention_days} days, marking failed")
                result.stale_marked_failed = await lifecycle.sweep_stale(retention_days)
            pending = await lifecycle.list_pending()
            organizations = await self._active_organizations(session)

        result.pending_count = len(pending)
        if not pending:
            logger.info("No pending transactions found")
            return result
        logger.info(f"{len(pending)} pending transaction(s) found")

        if not organizations:
            logger.warning("No active organizations found")
            return result

        # Step 2: Both sources, concurrently
        targets = collect_accounts(organizations)
        chain_votes, indexer_batches = await asyncio.gather(
            self._chain_source.fetch_all(targets),
            self._indexer_source.fetch_all_extrinsics(targets),
        )
        indexer_votes = self._indexer_source.match_votes(indexer_batches, chain_votes.keys())

        # Step 3: Resolve and update, one referendum at a time
        for item in pending:
            key = VoteKey(item.organization_id, item.chain, item.post_id)
            if key not in chain_votes:
                logger.debug(
                    f"Referendum {item.post_id} on {item.chain.value} not voted yet "
                    f"(organization {item.organization_id}), skipping"
                )
                result.not_yet_voted_count += 1
                continue

            resolved = resolve_vote(VoteEvidence(
                chain_vote=chain_votes.get(key),
                indexer_vote=indexer_votes.get(key),
                suggested_vote=item.suggested_vote,
            ))
            if resolved is None:
                result.not_yet_voted_count += 1
                continue

            try:
                await self._apply(item, resolved)
            except Exception as e:
                message = (
                    f"Failed to update referendum {item.post_id} on {item.chain.value} "
                    f"(organization {item.organization_id}): {e}"
                )
                logger.error(f"{message}; will retry on next run")
                result.errors.append(message)
                result.failed_count += 1
                continue

            result.executed_count += 1
            logger.info(
                f"Referendum {item.post_id} on {item.chain.value} marked voted "
                f"{resolved.direction.value} (source: {resolved.source}, "
                f"suggested: {item.suggested_vote.value if item.suggested_vote else None}, "
                f"extrinsic: {resolved.extrinsic_hash})"
            )

        return result

    async def _active_organizations(self, session: AsyncSession) -> list[Organization]:
        rows = await session.execute(
            select(Organization).where(Organization.is_active.is_(True))
        )
        return list(rows.scalars().all())

    async def _apply(self, item: PendingVote, resolved: ResolvedVote) -> None:
        """
        Write the three records for one referendum, transaction last.

        Runs in its own session so a failure leaves other referendums untouched
        and this one still pending for the next pass.
        """
        now = datetime.now(timezone.utc)
        audit_link = build_audit_link(resolved.extrinsic_hash, item.chain, self._settings)

        async with get_session_context(self._session_factory) as session:
            referendum_values: dict = {
                "internal_status": VOTED_STATUS_BY_DIRECTION[resolved.direction],
                "updated_at": now,
            }
            if audit_link:
                referendum_values["voted_link"] = audit_link
            await session.execute(
                update(Referendum)
                .where(
                    Referendum.id == item.referendum_id,
                    Referendum.organization_id == item.organization_id,
                )
                .values(**referendum_values)
                .execution_options(synchronize_session=False)
            )

            await VotingDecisionService(session).upsert(
                referendum_id=item.referendum_id,
                organization_id=item.organization_id,
                final_vote=resolved.direction,
                vote_executed=True,
                vote_executed_date=now,
            )

            await TransactionLifecycle(session).mark_executed(
                item.organization_id, item.referendum_id, resolved.extrinsic_hash
            )

