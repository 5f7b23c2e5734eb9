"""Schemas for team actions, workflow categories and background passes."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ..models import InternalStatus, TeamRole, VoteDirection
from .base import LedgerBaseModel


# =============================================================================
# TEAM ACTIONS
# =============================================================================


class RecordActionRequest(LedgerBaseModel):
    """A member action on a referendum."""

    wallet_address: str = Field(..., min_length=1, max_length=66)
    action: TeamRole
    reason: str | None = Field(default=None, max_length=2000)


class RecordActionResponse(LedgerBaseModel):
    recorded: bool = Field(description="False when an existing assignment was confirmed")
    action_id: int | None = None
    status_before: InternalStatus
    status_after: InternalStatus
    transitioned: bool


class WithdrawActionRequest(LedgerBaseModel):
    """Cancel the member's current action of this kind."""

    wallet_address: str = Field(..., min_length=1, max_length=66)
    action: TeamRole


class ReleaseRequest(LedgerBaseModel):
    wallet_address: str = Field(..., min_length=1, max_length=66)
    note: str | None = Field(default=None, max_length=2000)


class SuggestVoteRequest(LedgerBaseModel):
    """The responsible person's suggested vote, counted as their agreement."""

    wallet_address: str = Field(..., min_length=1, max_length=66)
    vote: VoteDirection
    reason: str | None = Field(default=None, max_length=2000)


# =============================================================================
# STATUS
# =============================================================================


class StatusChangeRequest(LedgerBaseModel):
    wallet_address: str = Field(..., min_length=1, max_length=66)
    status: InternalStatus


class StatusChangeResponse(LedgerBaseModel):
    referendum_id: UUID
    old_status: InternalStatus
    new_status: InternalStatus


# =============================================================================
# WORKFLOW
# =============================================================================


class VetoResponse(LedgerBaseModel):
    wallet_address: str
    member_name: str
    reason: str | None = None
    vetoed_at: datetime


class CategorizedReferendumResponse(LedgerBaseModel):
    referendum_id: UUID
    post_id: int
    chain: str
    title: str | None = None
    internal_status: InternalStatus
    agreement_count: int
    required_agreements: int
    responsible_person: str | None = None
    veto: VetoResponse | None = None


class WorkflowResponse(LedgerBaseModel):
    needs_agreement: list[CategorizedReferendumResponse]
    ready_to_vote: list[CategorizedReferendumResponse]
    for_discussion: list[CategorizedReferendumResponse]
    vetoed: list[CategorizedReferendumResponse]


# =============================================================================
# PASSES
# =============================================================================


class PassAcceptedResponse(LedgerBaseModel):
    """A background pass was scheduled."""

    pass_name: str
    scheduled: bool = True
    already_running: bool = False
