"""Voting decision records: the team's suggested and final vote."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import InternalStatus, Referendum, VoteDirection, VotingDecision


logger = logging.getLogger(__name__)


class VotingDecisionService:
    """Upserts the one decision row per (referendum, organization)."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, referendum_id: UUID, organization_id: UUID) -> VotingDecision | None:
        result = await self._session.execute(
            select(VotingDecision).where(
                VotingDecision.referendum_id == referendum_id,
                VotingDecision.organization_id == organization_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        referendum_id: UUID,
        organization_id: UUID,
        **values,
    ) -> VotingDecision:
        """Create the decision on first write, update the given fields afterwards."""
        decision = await self.get(referendum_id, organization_id)
        if decision is None:
            decision = VotingDecision(
                referendum_id=referendum_id,
                organization_id=organization_id,
                **values,
            )
            self._session.add(decision)
        else:
            for name, value in values.items():
                setattr(decision, name, value)
        await self._session.flush()
        return decision

    async def record_suggestion(
        self,
        referendum: Referendum,
        vote: VoteDirection,
        reason: str | None = None,
    ) -> VotingDecision:
        """
        Store the team's suggested vote.

        A referendum under consideration becomes ready for approval once it
        has a suggestion.
        """
        referendum.suggested_vote = vote
        if referendum.internal_status == InternalStatus.CONSIDERING:
            referendum.internal_status = InternalStatus.READY_FOR_APPROVAL
            logger.info(
                f"Referendum {referendum.post_id} on {referendum.chain.value} "
                "ready for approval after suggestion"
            )

        return await self.upsert(
            referendum.id,
            referendum.organization_id,
            suggested_vote=vote,
            reason_for_vote=reason,
        )
