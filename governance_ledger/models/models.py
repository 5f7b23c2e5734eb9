"""SQLAlchemy ORM Models for the Governance Ledger.

Referendums are created by metadata ingestion (outside this package) and
are never deleted here. Voting decisions, pending multisig transactions and
the team action log hang off a referendum, always scoped to an organization.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, utcnow


def _enum_column(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class Chain(str, PyEnum):
    POLKADOT = "Polkadot"
    KUSAMA = "Kusama"


class VoteDirection(str, PyEnum):
    AYE = "aye"
    NAY = "nay"
    ABSTAIN = "abstain"


class InternalStatus(str, PyEnum):
    NOT_STARTED = "not_started"
    CONSIDERING = "considering"
    READY_FOR_APPROVAL = "ready_for_approval"
    WAITING_FOR_AGREEMENT = "waiting_for_agreement"
    READY_TO_VOTE = "ready_to_vote"
    RECONSIDERING = "reconsidering"
    VOTED_AYE = "voted_aye"
    VOTED_NAY = "voted_nay"
    VOTED_ABSTAIN = "voted_abstain"
    NOT_VOTED = "not_voted"  # Voting window closed without a team vote


class TimelineStatus(str, PyEnum):
    """Voting timeline status reported by the external proposal directory."""
    SUBMITTED = "Submitted"
    DECIDING = "Deciding"
    CONFIRMING = "Confirming"
    APPROVED = "Approved"
    EXECUTED = "Executed"
    EXECUTION_FAILED = "ExecutionFailed"
    REJECTED = "Rejected"
    TIMED_OUT = "TimedOut"
    CANCELLED = "Cancelled"
    CANCELED = "Canceled"
    KILLED = "Killed"


class TransactionStatus(str, PyEnum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"


class TeamRole(str, PyEnum):
    RESPONSIBLE_PERSON = "responsible_person"
    AGREE = "agree"
    NO_WAY = "no_way"
    RECUSE = "recuse"
    TO_BE_DISCUSSED = "to_be_discussed"


VOTED_STATUSES = frozenset({
    InternalStatus.VOTED_AYE,
    InternalStatus.VOTED_NAY,
    InternalStatus.VOTED_ABSTAIN,
})

VOTE_OVER_TIMELINE_STATUSES = frozenset({
    TimelineStatus.TIMED_OUT,
    TimelineStatus.EXECUTED,
    TimelineStatus.EXECUTION_FAILED,
    TimelineStatus.REJECTED,
    TimelineStatus.CANCELLED,
    TimelineStatus.CANCELED,
    TimelineStatus.KILLED,
})

VOTED_STATUS_BY_DIRECTION = {
    VoteDirection.AYE: InternalStatus.VOTED_AYE,
    VoteDirection.NAY: InternalStatus.VOTED_NAY,
    VoteDirection.ABSTAIN: InternalStatus.VOTED_ABSTAIN,
}


# =============================================================================
# ORGANIZATIONS
# =============================================================================


class Organization(Base, UUIDMixin, TimestampMixin):
    """A team voting through one multisig account per network."""

    __tablename__ = "organizations"

    slug: Mapped[str] = mapped_column(String(63), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    polkadot_multisig: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Multisig account voting on Polkadot Asset Hub",
    )
    kusama_multisig: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Multisig account voting on Kusama Asset Hub",
    )

    members: Mapped[list["OrganizationMember"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan",
    )

    def multisig_for(self, chain: Chain) -> str | None:
        if chain == Chain.POLKADOT:
            return self.polkadot_multisig
        return self.kusama_multisig


class OrganizationMember(Base, UUIDMixin, TimestampMixin):
    """A co-signer of the organization's multisig."""

    __tablename__ = "organization_members"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    network: Mapped[Chain | None] = mapped_column(
        _enum_column(Chain, "chain"), nullable=True
    )

    organization: Mapped[Organization] = relationship(back_populates="members")

    __table_args__ = (
        UniqueConstraint("organization_id", "wallet_address", name="uq_member_org_wallet"),
    )

    @property
    def display_name(self) -> str:
        return self.name or f"Multisig Member ({self.network.value if self.network else 'Unknown'})"


# =============================================================================
# REFERENDUMS & DECISIONS
# =============================================================================


class Referendum(Base, UUIDMixin, TimestampMixin):
    """One on-chain referendum as tracked by one organization."""

    __tablename__ = "referendums"

    post_id: Mapped[int] = mapped_column(Integer, nullable=False)
    chain: Mapped[Chain] = mapped_column(_enum_column(Chain, "chain"), nullable=False)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)

    referendum_timeline: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="External voting timeline status (see TimelineStatus)",
    )
    internal_status: Mapped[InternalStatus] = mapped_column(
        _enum_column(InternalStatus, "internal_status"),
        default=InternalStatus.NOT_STARTED,
        nullable=False,
    )
    suggested_vote: Mapped[VoteDirection | None] = mapped_column(
        _enum_column(VoteDirection, "vote_direction"), nullable=True
    )
    voting_start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    voting_end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    voted_link: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Explorer link to the executed vote extrinsic",
    )

    __table_args__ = (
        UniqueConstraint("post_id", "chain", "organization_id", name="uq_referendum_identity"),
        Index("ix_referendums_org_status", "organization_id", "internal_status"),
    )


class VotingDecision(Base, UUIDMixin, TimestampMixin):
    """The team's suggested and final vote on a referendum."""

    __tablename__ = "voting_decisions"

    referendum_id: Mapped[UUID] = mapped_column(
        ForeignKey("referendums.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    suggested_vote: Mapped[VoteDirection | None] = mapped_column(
        _enum_column(VoteDirection, "vote_direction"), nullable=True
    )
    final_vote: Mapped[VoteDirection | None] = mapped_column(
        _enum_column(VoteDirection, "vote_direction"), nullable=True
    )
    vote_executed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    vote_executed_date: Mapped[datetime | None] = mapped_column(nullable=True)
    reason_for_vote: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("referendum_id", "organization_id", name="uq_decision_referendum_org"),
        CheckConstraint(
            "NOT vote_executed OR final_vote IS NOT NULL",
            name="executed_has_final_vote",
        ),
    )


# =============================================================================
# MULTISIG TRANSACTIONS
# =============================================================================


class PendingTransaction(Base, UUIDMixin, TimestampMixin):
    """
    A vote proposed to the multisig batching service.

    At most one row per (organization, referendum) is pending at a time;
    callers check before inserting. Executed and failed rows are terminal.
    """

    __tablename__ = "pending_transactions"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    referendum_id: Mapped[UUID] = mapped_column(
        ForeignKey("referendums.id", ondelete="CASCADE"), nullable=False
    )
    calldata: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Proposal time reported by the batching service (ms since epoch)",
    )
    status: Mapped[TransactionStatus] = mapped_column(
        _enum_column(TransactionStatus, "transaction_status"),
        default=TransactionStatus.PENDING,
        nullable=False,
    )
    extrinsic_hash: Mapped[str | None] = mapped_column(String(80), nullable=True)

    __table_args__ = (
        Index("ix_pending_transactions_lookup", "organization_id", "referendum_id", "status"),
    )


# =============================================================================
# TEAM ACTIONS
# =============================================================================


class TeamAction(Base):
    """
    Append-only log of member actions on a referendum.

    The integer id orders entries; a member's current state is derived from
    the log, never stored.
    """

    __tablename__ = "team_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referendum_id: Mapped[UUID] = mapped_column(
        ForeignKey("referendums.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    wallet_address: Mapped[str] = mapped_column(String(66), nullable=False)
    role_type: Mapped[TeamRole] = mapped_column(
        _enum_column(TeamRole, "team_role"), nullable=False
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Marker entry: cancels the member's earlier entry of this role
    withdrawn: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_team_actions_referendum", "referendum_id", "id"),
    )
