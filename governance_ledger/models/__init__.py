"""SQLAlchemy ORM Models for the Governance Ledger."""

from .base import Base, TimestampMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    Chain,
    InternalStatus,
    TeamRole,
    TimelineStatus,
    TransactionStatus,
    VoteDirection,
    # Status groupings
    VOTED_STATUSES,
    VOTED_STATUS_BY_DIRECTION,
    VOTE_OVER_TIMELINE_STATUSES,
    # Organizations
    Organization,
    OrganizationMember,
    # Referendums
    Referendum,
    VotingDecision,
    PendingTransaction,
    TeamAction,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "as_utc",
    "utcnow",
    # Enums
    "Chain",
    "InternalStatus",
    "TeamRole",
    "TimelineStatus",
    "TransactionStatus",
    "VoteDirection",
    "VOTED_STATUSES",
    "VOTED_STATUS_BY_DIRECTION",
    "VOTE_OVER_TIMELINE_STATUSES",
    # Organizations
    "Organization",
    "OrganizationMember",
    # Referendums
    "Referendum",
    "VotingDecision",
    "PendingTransaction",
    "TeamAction",
]
