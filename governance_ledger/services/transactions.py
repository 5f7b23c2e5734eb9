"""
Transaction Lifecycle: pending multisig vote proposals.

One row per (organization, referendum) may be pending at a time. A pending
row moves one way only, to executed or failed; every transition is an
UPDATE restricted to pending rows, so repeating it is a no-op.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    Chain,
    PendingTransaction,
    Referendum,
    TransactionStatus,
    VoteDirection,
    VotingDecision,
)


logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 7


@dataclass
class PendingVote:
    """A pending transaction joined with its referendum and suggestion."""
    transaction_id: UUID
    organization_id: UUID
    referendum_id: UUID
    post_id: int
    chain: Chain
    suggested_vote: VoteDirection | None
    timestamp: int
    created_at: datetime


class TransactionLifecycle:
    """Owns the pending -> executed/failed lifecycle of proposed votes."""

    def __init__(self, session: AsyncSession):
        self._session = session

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_if_absent(
        self,
        organization_id: UUID,
        referendum_id: UUID,
        calldata: str,
        timestamp: int,
    ) -> PendingTransaction | None:
        """
        Record a proposed vote unless one is already pending.

        Returns the new row, or None when a pending row already exists.
        """
        if await self.has_pending(organization_id, referendum_id):
            logger.info(
                f"Pending transaction already exists for referendum {referendum_id} "
                f"(organization {organization_id}), skipping"
            )
            return None

        transaction = PendingTransaction(
            organization_id=organization_id,
            referendum_id=referendum_id,
            calldata=calldata,
            timestamp=timestamp,
            status=TransactionStatus.PENDING,
        )
        self._session.add(transaction)
        await self._session.flush()
        return transaction

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def find_pending(
        self,
        organization_id: UUID,
        referendum_id: UUID,
    ) -> PendingTransaction | None:
        result = await self._session.execute(
            select(PendingTransaction)
            .where(
                PendingTransaction.organization_id == organization_id,
                PendingTransaction.referendum_id == referendum_id,
                PendingTransaction.status == TransactionStatus.PENDING,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def has_pending(self, organization_id: UUID, referendum_id: UUID) -> bool:
        result = await self._session.execute(
            select(func.count())
            .select_from(PendingTransaction)
            .where(
                PendingTransaction.organization_id == organization_id,
                PendingTransaction.referendum_id == referendum_id,
                PendingTransaction.status == TransactionStatus.PENDING,
            )
        )
        return result.scalar_one() > 0

    async def get_status(
        self,
        organization_id: UUID,
        referendum_id: UUID,
    ) -> TransactionStatus | None:
        """Status of the most recent transaction for the referendum, if any."""
        result = await self._session.execute(
            select(PendingTransaction.status)
            .where(
                PendingTransaction.organization_id == organization_id,
                PendingTransaction.referendum_id == referendum_id,
            )
            .order_by(PendingTransaction.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_pending(self, organization_id: UUID | None = None) -> list[PendingVote]:
        """All pending transactions, oldest first, with the team's suggested vote."""
        query = (
            select(
                PendingTransaction,
                Referendum.post_id,
                Referendum.chain,
                VotingDecision.suggested_vote,
            )
            .join(
                Referendum,
                (PendingTransaction.referendum_id == Referendum.id)
                & (Referendum.organization_id == PendingTransaction.organization_id),
            )
            .outerjoin(
                VotingDecision,
                (VotingDecision.referendum_id == Referendum.id)
                & (VotingDecision.organization_id == PendingTransaction.organization_id),
            )
            .where(PendingTransaction.status == TransactionStatus.PENDING)
            .order_by(PendingTransaction.created_at.asc())
        )
        if organization_id:
            query = query.where(PendingTransaction.organization_id == organization_id)

        result = await self._session.execute(query)
        return [
            PendingVote(
                transaction_id=transaction.id,
                organization_id=transaction.organization_id,
                referendum_id=transaction.referendum_id,
                post_id=post_id,
                chain=chain,
                suggested_vote=suggested_vote,
                timestamp=transaction.timestamp,
                created_at=transaction.created_at,
            )
            for transaction, post_id, chain, suggested_vote in result.all()
        ]

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def _finish(
        self,
        organization_id: UUID,
        referendum_id: UUID,
        status: TransactionStatus,
        extrinsic_hash: str | None = None,
    ) -> int:
        values: dict = {"status": status, "updated_at": datetime.now(timezone.utc)}
        if extrinsic_hash:
            values["extrinsic_hash"] = extrinsic_hash

        result = await self._session.execute(
            update(PendingTransaction)
            .where(
                PendingTransaction.organization_id == organization_id,
                PendingTransaction.referendum_id == referendum_id,
                PendingTransaction.status == TransactionStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def mark_executed(
        self,
        organization_id: UUID,
        referendum_id: UUID,
        extrinsic_hash: str | None = None,
    ) -> int:
        """Pending -> executed. Returns rows changed (0 if already terminal)."""
        return await self._finish(
            organization_id, referendum_id, TransactionStatus.EXECUTED, extrinsic_hash
        )

    async def mark_failed(self, organization_id: UUID, referendum_id: UUID) -> int:
        """Pending -> failed. Returns rows changed (0 if already terminal)."""
        return await self._finish(organization_id, referendum_id, TransactionStatus.FAILED)

    # =========================================================================
    # STALENESS
    # =========================================================================

    @staticmethod
    def _stale_cutoff(older_than_days: int) -> datetime:
        return datetime.now(timezone.utc) - timedelta(days=older_than_days)

    async def count_stale(
        self,
        older_than_days: int = DEFAULT_RETENTION_DAYS,
        organization_id: UUID | None = None,
    ) -> int:
        query = (
            select(func.count())
            .select_from(PendingTransaction)
            .where(
                PendingTransaction.status == TransactionStatus.PENDING,
                PendingTransaction.created_at < self._stale_cutoff(older_than_days),
            )
        )
        if organization_id:
            query = query.where(PendingTransaction.organization_id == organization_id)
        result = await self._session.execute(query)
        return result.scalar_one()

    async def sweep_stale(
        self,
        older_than_days: int = DEFAULT_RETENTION_DAYS,
        organization_id: UUID | None = None,
    ) -> int:
        """
        Mark pending transactions older than the window as failed.

        These were most likely discarded in the batching service. Returns the
        number of rows marked failed.
        """
        query = (
            update(PendingTransaction)
            .where(
                PendingTransaction.status == TransactionStatus.PENDING,
                PendingTransaction.created_at < self._stale_cutoff(older_than_days),
            )
            .values(status=TransactionStatus.FAILED, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if organization_id:
            query = query.where(PendingTransaction.organization_id == organization_id)

        result = await self._session.execute(query)
        swept = result.rowcount or 0
        if swept:
            logger.info(
                f"Marked {swept} stale pending transaction(s) as failed "
                f"(older than {older_than_days} days)"
            )
        return swept
