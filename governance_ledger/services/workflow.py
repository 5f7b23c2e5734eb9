"""
Workflow State Machine: team agreement on referendums.

Member actions are an append-only log. Everything else is derived from it:
- a member's current action is their latest non-responsible_person entry
- the responsible person is the latest responsible_person entry
- withdrawn entries cancel the member's matching earlier entry; a released
  responsible person also loses every current action except no_way
- workflow categories are recomputed on every query and never stored

Status transitions driven here:
- NOT_STARTED -> CONSIDERING when a responsible person is assigned
- CONSIDERING -> READY_FOR_APPROVAL when the responsible person suggests a vote
- any non-terminal -> NOT_STARTED when the responsible person is released
- WAITING_FOR_AGREEMENT -> READY_TO_VOTE when every member agrees
- READY_TO_VOTE -> WAITING_FOR_AGREEMENT when agreement is withdrawn
- any -> NOT_VOTED when the voting window closed without a team vote
- manual transitions validated against ALLOWED_TRANSITIONS; only the
  responsible person may make them, except for MEMBER_SETTABLE_STATUSES
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.addresses import addresses_match, find_member, normalize_address
from ..core.pass_guard import PassGuard
from ..models import (
    InternalStatus,
    OrganizationMember,
    Referendum,
    TeamAction,
    TeamRole,
    VoteDirection,
    VOTED_STATUSES,
    VOTE_OVER_TIMELINE_STATUSES,
    as_utc,
)
from .decisions import VotingDecisionService


logger = logging.getLogger(__name__)

deadline_guard = PassGuard("deadline-sweep")
agreement_guard = PassGuard("agreement-transitions")


# =============================================================================
# EXCEPTIONS
# =============================================================================


class WorkflowError(Exception):
    """Base exception for workflow operations."""
    pass


class ReferendumNotFoundError(WorkflowError):
    """Referendum does not exist."""
    pass


class NotTeamMemberError(WorkflowError):
    """Address is not a member of the referendum's organization."""
    pass


class ResponsiblePersonConflictError(WorkflowError):
    """Another member already holds the responsible person slot."""
    pass


class InvalidTransitionError(WorkflowError):
    """Status change not allowed from the current status."""
    pass


class NotResponsiblePersonError(WorkflowError):
    """Operation reserved for the assigned responsible person."""
    pass


class ActionNotFoundError(WorkflowError):
    """Member has no current action of the given role to withdraw."""
    pass


# =============================================================================
# STATUS TRANSITIONS
# =============================================================================


ALLOWED_TRANSITIONS: dict[InternalStatus, tuple[InternalStatus, ...]] = {
    InternalStatus.NOT_STARTED: (InternalStatus.CONSIDERING,),
    InternalStatus.CONSIDERING: (InternalStatus.READY_FOR_APPROVAL,),
    InternalStatus.READY_FOR_APPROVAL: (InternalStatus.WAITING_FOR_AGREEMENT,),
    InternalStatus.WAITING_FOR_AGREEMENT: (InternalStatus.READY_TO_VOTE,),
    InternalStatus.READY_TO_VOTE: (
        InternalStatus.VOTED_AYE,
        InternalStatus.VOTED_NAY,
        InternalStatus.VOTED_ABSTAIN,
    ),
    InternalStatus.RECONSIDERING: (InternalStatus.WAITING_FOR_AGREEMENT,),
    InternalStatus.VOTED_AYE: (),
    InternalStatus.VOTED_NAY: (),
    InternalStatus.VOTED_ABSTAIN: (),
    InternalStatus.NOT_VOTED: (),
}

# Reachable from any status
SPECIAL_TRANSITIONS = frozenset({InternalStatus.RECONSIDERING})

# Any team member may request these; everything else needs the responsible person
MEMBER_SETTABLE_STATUSES = frozenset({
    InternalStatus.WAITING_FOR_AGREEMENT,
    InternalStatus.RECONSIDERING,
})

# Only ever set by the workflow itself or by vote reconciliation
AUTOMATIC_STATUSES = frozenset({InternalStatus.READY_TO_VOTE, InternalStatus.NOT_VOTED}) | VOTED_STATUSES

TERMINAL_STATUSES = VOTED_STATUSES | {InternalStatus.NOT_VOTED}


def is_valid_transition(current: InternalStatus, new: InternalStatus) -> bool:
    if new in SPECIAL_TRANSITIONS:
        return True
    return new in ALLOWED_TRANSITIONS.get(current, ())


def transition_error_message(current: InternalStatus, new: InternalStatus) -> str:
    if new == InternalStatus.NOT_STARTED:
        return "Cannot transition back to 'not_started' status"
    if new in AUTOMATIC_STATUSES:
        return f"Cannot manually set status to '{new.value}'. This status is set automatically."

    allowed = ALLOWED_TRANSITIONS.get(current, ())
    if not allowed:
        return f"No transitions allowed from '{current.value}'"
    return (
        f"Invalid transition from '{current.value}' to '{new.value}'. "
        f"Allowed transitions: {', '.join(s.value for s in allowed)}"
    )


# =============================================================================
# ACTION LOG PROJECTION
# =============================================================================


@dataclass
class ActionProjection:
    """Derived state of one referendum's action log."""
    current: dict[str, TeamAction] = field(default_factory=dict)  # normalized address -> action
    history: dict[str, list[TeamAction]] = field(default_factory=dict)
    responsible_person: TeamAction | None = None

    def members_with(self, role: TeamRole, member_keys: Iterable[str]) -> list[str]:
        return [
            key for key in member_keys
            if key in self.current and self.current[key].role_type == role
        ]


def project_actions(actions: Iterable[TeamAction]) -> ActionProjection:
    """Fold the log (oldest first by id) into current per-member state."""
    projection = ActionProjection()
    for action in sorted(actions, key=lambda a: a.id):
        key = normalize_address(action.wallet_address)
        projection.history.setdefault(key, []).append(action)
        current = projection.current.get(key)

        if action.role_type == TeamRole.RESPONSIBLE_PERSON:
            if not action.withdrawn:
                projection.responsible_person = action
                continue
            holder = projection.responsible_person
            if holder is not None and normalize_address(holder.wallet_address) == key:
                projection.responsible_person = None
            if current is not None and current.role_type != TeamRole.NO_WAY:
                del projection.current[key]
        elif action.withdrawn:
            if current is not None and current.role_type == action.role_type:
                del projection.current[key]
        else:
            projection.current[key] = action
    return projection


def is_responsible_person(projection: ActionProjection, wallet_address: str) -> bool:
    holder = projection.responsible_person
    return holder is not None and addresses_match(holder.wallet_address, wallet_address)


@dataclass(frozen=True)
class AgreementStats:
    agreement_count: int
    has_veto: bool
    required_agreements: int

    @property
    def threshold_met(self) -> bool:
        return (
            not self.has_veto
            and self.required_agreements > 0
            and self.agreement_count >= self.required_agreements
        )


def member_keys(members: Iterable[OrganizationMember]) -> list[str]:
    """Distinct normalized member addresses, in input order."""
    keys: list[str] = []
    for member in members:
        key = normalize_address(member.wallet_address)
        if key and key not in keys:
            keys.append(key)
    return keys


def agreement_stats(projection: ActionProjection, keys: Sequence[str]) -> AgreementStats:
    return AgreementStats(
        agreement_count=len(projection.members_with(TeamRole.AGREE, keys)),
        has_veto=bool(projection.members_with(TeamRole.NO_WAY, keys)),
        required_agreements=len(keys),
    )


# =============================================================================
# CATEGORIZATION
# =============================================================================


class WorkflowCategory(str, Enum):
    NEEDS_AGREEMENT = "needs_agreement"
    READY_TO_VOTE = "ready_to_vote"
    FOR_DISCUSSION = "for_discussion"
    VETOED = "vetoed"


@dataclass(frozen=True)
class VetoInfo:
    wallet_address: str
    member_name: str
    reason: str | None
    vetoed_at: datetime


@dataclass
class CategorizedReferendum:
    referendum_id: UUID
    post_id: int
    chain: str
    title: str | None
    internal_status: InternalStatus
    agreement_count: int
    required_agreements: int
    responsible_person: str | None = None
    veto: VetoInfo | None = None


@dataclass
class WorkflowCategories:
    needs_agreement: list[CategorizedReferendum] = field(default_factory=list)
    ready_to_vote: list[CategorizedReferendum] = field(default_factory=list)
    for_discussion: list[CategorizedReferendum] = field(default_factory=list)
    vetoed: list[CategorizedReferendum] = field(default_factory=list)

    def bucket(self, category: WorkflowCategory) -> list[CategorizedReferendum]:
        return getattr(self, category.value)


def _veto_info(
    projection: ActionProjection,
    keys: Sequence[str],
    members: Sequence[OrganizationMember],
) -> VetoInfo | None:
    vetoes = [projection.current[key] for key in projection.members_with(TeamRole.NO_WAY, keys)]
    if not vetoes:
        return None
    first = min(vetoes, key=lambda a: a.id)
    member = find_member(members, first.wallet_address)
    return VetoInfo(
        wallet_address=first.wallet_address,
        member_name=member.display_name if member else "Unknown Member",
        reason=first.reason,
        vetoed_at=as_utc(first.created_at),
    )


def categorize_referendum(
    status: InternalStatus,
    projection: ActionProjection,
    keys: Sequence[str],
) -> WorkflowCategory | None:
    """
    Category of one referendum, first match wins:

    1. vetoed if any member's current action is no_way
    2. ready_to_vote if the status says so
    3. none for voted referendums
    4. needs_agreement while waiting and short of full agreement
    5. for_discussion if flagged and nobody agreed yet
    """
    stats = agreement_stats(projection, keys)

    if stats.has_veto:
        return WorkflowCategory.VETOED
    if status == InternalStatus.READY_TO_VOTE:
        return WorkflowCategory.READY_TO_VOTE
    if status in VOTED_STATUSES:
        return None
    if (
        status in (InternalStatus.WAITING_FOR_AGREEMENT, InternalStatus.READY_FOR_APPROVAL)
        and stats.agreement_count < stats.required_agreements
    ):
        return WorkflowCategory.NEEDS_AGREEMENT
    if projection.members_with(TeamRole.TO_BE_DISCUSSED, keys) and stats.agreement_count == 0:
        return WorkflowCategory.FOR_DISCUSSION
    return None


def categorize_referendums(
    referendums: Sequence[Referendum],
    actions_by_referendum: dict[UUID, list[TeamAction]],
    members: Sequence[OrganizationMember],
) -> WorkflowCategories:
    """Bucket referendums into workflow categories. Pure; no database access."""
    keys = member_keys(members)
    categories = WorkflowCategories()

    for referendum in referendums:
        projection = project_actions(actions_by_referendum.get(referendum.id, []))
        category = categorize_referendum(referendum.internal_status, projection, keys)
        if category is None:
            continue

        stats = agreement_stats(projection, keys)
        categories.bucket(category).append(CategorizedReferendum(
            referendum_id=referendum.id,
            post_id=referendum.post_id,
            chain=referendum.chain.value,
            title=referendum.title,
            internal_status=referendum.internal_status,
            agreement_count=stats.agreement_count,
            required_agreements=stats.required_agreements,
            responsible_person=(
                projection.responsible_person.wallet_address
                if projection.responsible_person else None
            ),
            veto=_veto_info(projection, keys, members) if category == WorkflowCategory.VETOED else None,
        ))

    return categories


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class RecordedAction:
    """Outcome of record_action."""
    action: TeamAction | None  # None when an existing assignment was confirmed
    status_before: InternalStatus
    status_after: InternalStatus

    @property
    def transitioned(self) -> bool:
        return self.status_before != self.status_after


@dataclass
class AgreementSummary:
    """Members of one referendum grouped by their current action."""
    agreed: list[OrganizationMember]
    recused: list[OrganizationMember]
    to_be_discussed: list[OrganizationMember]
    pending: list[OrganizationMember]
    stats: AgreementStats
    responsible_person: str | None
    veto: VetoInfo | None


@dataclass
class StatusChange:
    referendum_id: UUID
    post_id: int
    chain: str
    old_status: InternalStatus
    new_status: InternalStatus


@dataclass
class DeadlineSweepResult:
    skipped: bool = False
    changes: list[StatusChange] = field(default_factory=list)

    @property
    def transitioned(self) -> int:
        return len(self.changes)


# =============================================================================
# STATE MACHINE
# =============================================================================


class WorkflowStateMachine:
    """Records member actions and applies the resulting status transitions."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._decisions = VotingDecisionService(session)

    # =========================================================================
    # LOADERS
    # =========================================================================

    async def _get_referendum(self, referendum_id: UUID) -> Referendum:
        referendum = await self._session.get(Referendum, referendum_id)
        if referendum is None:
            raise ReferendumNotFoundError(f"Referendum {referendum_id} not found")
        return referendum

    async def _members(self, organization_id: UUID) -> list[OrganizationMember]:
        result = await self._session.execute(
            select(OrganizationMember)
            .where(OrganizationMember.organization_id == organization_id)
            .order_by(OrganizationMember.created_at)
        )
        return list(result.scalars().all())

    async def _actions(self, referendum_id: UUID) -> list[TeamAction]:
        result = await self._session.execute(
            select(TeamAction)
            .where(TeamAction.referendum_id == referendum_id)
            .order_by(TeamAction.id)
        )
        return list(result.scalars().all())

    async def get_projection(self, referendum_id: UUID) -> ActionProjection:
        return project_actions(await self._actions(referendum_id))

    # =========================================================================
    # RECORD ACTION
    # =========================================================================

    async def record_action(
        self,
        referendum_id: UUID,
        wallet_address: str,
        role: TeamRole,
        reason: str | None = None,
    ) -> RecordedAction:
        """
        Append a member action and apply any transition it triggers.

        Raises:
            ReferendumNotFoundError: unknown referendum
            NotTeamMemberError: address is not in the organization
            ResponsiblePersonConflictError: slot held by another member
        """
        referendum = await self._get_referendum(referendum_id)
        members, member = await self._require_member(referendum, wallet_address)

        status_before = referendum.internal_status
        projection = await self.get_projection(referendum_id)

        if role == TeamRole.RESPONSIBLE_PERSON:
            holder = projection.responsible_person
            if holder is not None:
                if addresses_match(holder.wallet_address, member.wallet_address):
                    return RecordedAction(None, status_before, status_before)
                raise ResponsiblePersonConflictError(
                    f"Referendum {referendum.post_id} is already assigned to another team member"
                )

        action = await self._append(referendum, member, role, reason)

        if role == TeamRole.RESPONSIBLE_PERSON:
            if referendum.internal_status == InternalStatus.NOT_STARTED:
                referendum.internal_status = InternalStatus.CONSIDERING
        else:
            projection = await self.get_projection(referendum_id)
            stats = agreement_stats(projection, member_keys(members))
            self._apply_agreement_transition(referendum, stats, forward=role == TeamRole.AGREE)

        await self._session.flush()
        return RecordedAction(action, status_before, referendum.internal_status)

    async def withdraw_action(
        self,
        referendum_id: UUID,
        wallet_address: str,
        role: TeamRole,
    ) -> RecordedAction:
        """
        Cancel the member's current action of the given role.

        Agreement transitions are re-evaluated both ways: withdrawing an
        agree can move ready_to_vote back, withdrawing the last no_way can
        complete agreement.

        Raises:
            ReferendumNotFoundError: unknown referendum
            NotTeamMemberError: address is not in the organization
            ActionNotFoundError: no current action of that role
        """
        if role == TeamRole.RESPONSIBLE_PERSON:
            return await self.release_responsible_person(referendum_id, wallet_address)

        referendum = await self._get_referendum(referendum_id)
        members, member = await self._require_member(referendum, wallet_address)
        status_before = referendum.internal_status

        projection = await self.get_projection(referendum_id)
        current = projection.current.get(normalize_address(member.wallet_address))
        if current is None or current.role_type != role:
            raise ActionNotFoundError(
                f"No {role.value} action by {member.wallet_address} on referendum {referendum.post_id}"
            )

        action = await self._append(referendum, member, role, withdrawn=True)

        projection = await self.get_projection(referendum_id)
        self._apply_agreement_transition(referendum, agreement_stats(projection, member_keys(members)))

        await self._session.flush()
        return RecordedAction(action, status_before, referendum.internal_status)

    async def release_responsible_person(
        self,
        referendum_id: UUID,
        wallet_address: str,
        note: str | None = None,
    ) -> RecordedAction:
        """
        The responsible person steps down and the referendum starts over.

        Their current action is dropped unless it is a no_way, the suggested
        vote and reason are cleared, and a non-terminal referendum goes back to
        not_started. Voted and not_voted referendums keep their status.

        Raises:
            NotResponsiblePersonError: address does not hold the slot
        """
        referendum = await self._get_referendum(referendum_id)
        _, member = await self._require_member(referendum, wallet_address)
        status_before = referendum.internal_status

        projection = await self.get_projection(referendum_id)
        if not is_responsible_person(projection, member.wallet_address):
            raise NotResponsiblePersonError(
                "Only the responsible person can release their assignment"
            )

        action = await self._append(
            referendum, member, TeamRole.RESPONSIBLE_PERSON, note, withdrawn=True
        )

        referendum.suggested_vote = None
        decision = await self._decisions.get(referendum.id, referendum.organization_id)
        if decision is not None:
            decision.suggested_vote = None
            decision.reason_for_vote = None
        if referendum.internal_status not in TERMINAL_STATUSES:
            referendum.internal_status = InternalStatus.NOT_STARTED

        await self._session.flush()
        return RecordedAction(action, status_before, referendum.internal_status)

    async def suggest_vote(
        self,
        referendum_id: UUID,
        wallet_address: str,
        vote: VoteDirection,
        reason: str | None = None,
    ) -> RecordedAction:
        """
        Store the responsible person's suggested vote and count it as their agreement.

        Raises:
            NotResponsiblePersonError: address does not hold the slot
        """
        referendum = await self._get_referendum(referendum_id)
        _, member = await self._require_member(referendum, wallet_address)
        status_before = referendum.internal_status

        projection = await self.get_projection(referendum_id)
        if not is_responsible_person(projection, member.wallet_address):
            raise NotResponsiblePersonError(
                "Only the assigned responsible person can set a suggested vote"
            )

        await self._decisions.record_suggestion(referendum, vote, reason)
        recorded = await self.record_action(referendum_id, member.wallet_address, TeamRole.AGREE)
        return RecordedAction(recorded.action, status_before, recorded.status_after)

    async def _require_member(
        self,
        referendum: Referendum,
        wallet_address: str,
    ) -> tuple[list[OrganizationMember], OrganizationMember]:
        members = await self._members(referendum.organization_id)
        member = find_member(members, wallet_address)
        if member is None:
            raise NotTeamMemberError(
                f"{wallet_address} is not a team member of organization {referendum.organization_id}"
            )
        return members, member

    async def _append(
        self,
        referendum: Referendum,
        member: OrganizationMember,
        role: TeamRole,
        reason: str | None = None,
        withdrawn: bool = False,
    ) -> TeamAction:
        action = TeamAction(
            referendum_id=referendum.id,
            organization_id=referendum.organization_id,
            wallet_address=member.wallet_address,
            role_type=role,
            reason=reason,
            withdrawn=withdrawn,
            created_at=datetime.now(timezone.utc),
        )
        self._session.add(action)
        await self._session.flush()

        logger.info(
            f"{'Withdrew' if withdrawn else 'Recorded'} {role.value} by {member.wallet_address} "
            f"on referendum {referendum.post_id} ({referendum.chain.value})"
        )
        return action

    def _apply_agreement_transition(
        self,
        referendum: Referendum,
        stats: AgreementStats,
        forward: bool = True,
        backward: bool = True,
    ) -> bool:
        """Move between WAITING_FOR_AGREEMENT and READY_TO_VOTE. True if changed."""
        if (
            forward
            and referendum.internal_status == InternalStatus.WAITING_FOR_AGREEMENT
            and stats.threshold_met
        ):
            referendum.internal_status = InternalStatus.READY_TO_VOTE
            logger.info(
                f"Referendum {referendum.post_id} ({referendum.chain.value}) auto-transitioned "
                f"to ready_to_vote: {stats.agreement_count}/{stats.required_agreements} agreed"
            )
            return True

        if (
            backward
            and referendum.internal_status == InternalStatus.READY_TO_VOTE
            and stats.agreement_count < stats.required_agreements
        ):
            referendum.internal_status = InternalStatus.WAITING_FOR_AGREEMENT
            logger.info(
                f"Referendum {referendum.post_id} ({referendum.chain.value}) back to "
                f"waiting_for_agreement: {stats.agreement_count}/{stats.required_agreements} agreed"
            )
            return True

        return False

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def agreement_summary(self, referendum_id: UUID) -> AgreementSummary:
        referendum = await self._get_referendum(referendum_id)
        members = await self._members(referendum.organization_id)
        projection = await self.get_projection(referendum_id)
        keys = member_keys(members)

        grouped: dict[TeamRole | None, list[OrganizationMember]] = defaultdict(list)
        seen: set[str] = set()
        for member in members:
            key = normalize_address(member.wallet_address)
            if key in seen:
                continue
            seen.add(key)
            current = projection.current.get(key)
            grouped[current.role_type if current else None].append(member)

        return AgreementSummary(
            agreed=grouped[TeamRole.AGREE],
            recused=grouped[TeamRole.RECUSE],
            to_be_discussed=grouped[TeamRole.TO_BE_DISCUSSED],
            pending=grouped[None],
            stats=agreement_stats(projection, keys),
            responsible_person=(
                projection.responsible_person.wallet_address
                if projection.responsible_person else None
            ),
            veto=_veto_info(projection, keys, members),
        )

    async def categorize(self, organization_id: UUID) -> WorkflowCategories:
        """Current workflow categories for every referendum of the organization."""
        referendums = list((await self._session.execute(
            select(Referendum)
            .where(Referendum.organization_id == organization_id)
            .order_by(Referendum.created_at.desc())
        )).scalars().all())

        actions = (await self._session.execute(
            select(TeamAction)
            .where(TeamAction.organization_id == organization_id)
            .order_by(TeamAction.id)
        )).scalars().all()

        actions_by_referendum: dict[UUID, list[TeamAction]] = defaultdict(list)
        for action in actions:
            actions_by_referendum[action.referendum_id].append(action)

        members = await self._members(organization_id)
        return categorize_referendums(referendums, actions_by_referendum, members)

    # =========================================================================
    # MANUAL TRANSITIONS
    # =========================================================================

    async def transition_status(
        self,
        referendum_id: UUID,
        new_status: InternalStatus,
        wallet_address: str,
    ) -> StatusChange:
        """
        Apply a status change requested by a team member.

        Entering waiting_for_agreement re-checks agreements recorded earlier,
        so a fully agreed referendum goes straight on to ready_to_vote.

        Raises:
            NotTeamMemberError: address is not in the organization
            NotResponsiblePersonError: status reserved for the responsible person
            InvalidTransitionError: not allowed from the current status
        """
        referendum = await self._get_referendum(referendum_id)
        members, member = await self._require_member(referendum, wallet_address)
        current = referendum.internal_status

        if new_status not in MEMBER_SETTABLE_STATUSES:
            projection = await self.get_projection(referendum_id)
            if not is_responsible_person(projection, member.wallet_address):
                raise NotResponsiblePersonError("Only the assigned user can change the status")

        if new_status in AUTOMATIC_STATUSES or not is_valid_transition(current, new_status):
            raise InvalidTransitionError(transition_error_message(current, new_status))

        referendum.internal_status = new_status
        logger.info(
            f"Referendum {referendum.post_id} ({referendum.chain.value}) status "
            f"{current.value} -> {new_status.value} by {member.wallet_address}"
        )

        if new_status == InternalStatus.WAITING_FOR_AGREEMENT:
            projection = await self.get_projection(referendum_id)
            self._apply_agreement_transition(
                referendum, agreement_stats(projection, member_keys(members)), backward=False
            )

        await self._session.flush()
        return StatusChange(
            referendum.id, referendum.post_id, referendum.chain.value,
            current, referendum.internal_status,
        )

    # =========================================================================
    # SWEEPS
    # =========================================================================

    async def process_agreement_transitions(self) -> list[StatusChange]:
        """
        Failsafe pass applying agreement transitions to every candidate.

        Catches referendums whose member list changed after the last action.
        """
        referendums = (await self._session.execute(
            select(Referendum).where(Referendum.internal_status.in_([
                InternalStatus.WAITING_FOR_AGREEMENT,
                InternalStatus.READY_TO_VOTE,
            ]))
        )).scalars().all()

        members_by_org: dict[UUID, list[str]] = {}
        changes = []
        for referendum in referendums:
            if referendum.organization_id not in members_by_org:
                members_by_org[referendum.organization_id] = member_keys(
                    await self._members(referendum.organization_id)
                )
            projection = await self.get_projection(referendum.id)
            stats = agreement_stats(projection, members_by_org[referendum.organization_id])

            old_status = referendum.internal_status
            if self._apply_agreement_transition(referendum, stats):
                changes.append(StatusChange(
                    referendum.id, referendum.post_id, referendum.chain.value,
                    old_status, referendum.internal_status,
                ))

        await self._session.flush()
        logger.info(
            f"Processed agreement transitions: {len(referendums)} checked, {len(changes)} changed"
        )
        return changes

    async def sweep_concluded_referendums(self) -> list[StatusChange]:
        """
        Force NOT_VOTED on every referendum whose voting window has closed
        without a recorded team vote. Covers all referendums, not only
        recently refreshed ones.
        """
        referendums = (await self._session.execute(
            select(Referendum).where(
                Referendum.referendum_timeline.in_([s.value for s in VOTE_OVER_TIMELINE_STATUSES]),
                Referendum.internal_status.notin_(list(TERMINAL_STATUSES)),
            )
        )).scalars().all()

        changes = []
        for referendum in referendums:
            old_status = referendum.internal_status
            referendum.internal_status = InternalStatus.NOT_VOTED
            changes.append(StatusChange(
                referendum.id, referendum.post_id, referendum.chain.value,
                old_status, InternalStatus.NOT_VOTED,
            ))
            logger.info(
                f"Auto-transitioning referendum {referendum.post_id} ({referendum.chain.value}) "
                f"to not_voted: timeline {referendum.referendum_timeline}, was {old_status.value}"
            )

        await self._session.flush()
        return changes
