"""
Governance API Routes: trigger surface for passes and team workflow.

1. POST /passes/reconciliation - Schedule a vote reconciliation pass
2. POST /passes/deadline-sweep - Schedule a voting-deadline sweep
3. POST /passes/agreement-transitions - Schedule an agreement-transition sweep
4. POST /referendums/{id}/actions - Record a team member action
5. DELETE /referendums/{id}/actions - Withdraw a team member action
6. POST /referendums/{id}/release - Responsible person steps down
7. POST /referendums/{id}/suggestion - Responsible person suggests a vote
8. PATCH /referendums/{id}/status - Manual status change
9. GET /organizations/{id}/workflow - Workflow categories
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from ..core import SessionDep
from ..jobs import run_agreement_pass, run_deadline_sweep, run_reconciliation_pass
from ..models import InternalStatus, TeamRole, VoteDirection
from ..schemas import (
    CategorizedReferendumResponse,
    PassAcceptedResponse,
    RecordActionRequest,
    RecordActionResponse,
    ReleaseRequest,
    StatusChangeRequest,
    StatusChangeResponse,
    SuggestVoteRequest,
    VetoResponse,
    WithdrawActionRequest,
    WorkflowResponse,
)
from ..services.reconciler import reconciliation_guard
from ..services.workflow import (
    ActionNotFoundError,
    CategorizedReferendum,
    InvalidTransitionError,
    NotResponsiblePersonError,
    NotTeamMemberError,
    RecordedAction,
    ReferendumNotFoundError,
    ResponsiblePersonConflictError,
    WorkflowError,
    WorkflowStateMachine,
    agreement_guard,
    deadline_guard,
)

router = APIRouter(tags=["governance"])


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_state_machine(session: SessionDep) -> WorkflowStateMachine:
    return WorkflowStateMachine(session)


StateMachineDep = Annotated[WorkflowStateMachine, Depends(get_state_machine)]


def _http_error(e: WorkflowError) -> HTTPException:
    if isinstance(e, (ReferendumNotFoundError, ActionNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, (NotTeamMemberError, NotResponsiblePersonError)):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(e, ResponsiblePersonConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, InvalidTransitionError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    return HTTPException(status_code=code, detail=str(e))


def _action_response(result: RecordedAction) -> RecordActionResponse:
    return RecordActionResponse(
        recorded=result.action is not None,
        action_id=result.action.id if result.action else None,
        status_before=result.status_before,
        status_after=result.status_after,
        transitioned=result.transitioned,
    )


def _to_response(item: CategorizedReferendum) -> CategorizedReferendumResponse:
    veto = None
    if item.veto:
        veto = VetoResponse(
            wallet_address=item.veto.wallet_address,
            member_name=item.veto.member_name,
            reason=item.veto.reason,
            vetoed_at=item.veto.vetoed_at,
        )
    return CategorizedReferendumResponse(
        referendum_id=item.referendum_id,
        post_id=item.post_id,
        chain=item.chain,
        title=item.title,
        internal_status=item.internal_status,
        agreement_count=item.agreement_count,
        required_agreements=item.required_agreements,
        responsible_person=item.responsible_person,
        veto=veto,
    )


# =============================================================================
# PASSES
# =============================================================================


@router.post(
    "/passes/reconciliation",
    response_model=PassAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Schedule a vote reconciliation pass",
)
async def trigger_reconciliation(background_tasks: BackgroundTasks):
    """A pass already in flight makes the scheduled one a no-op."""
    background_tasks.add_task(run_reconciliation_pass)
    return PassAcceptedResponse(
        pass_name="reconciliation",
        already_running=reconciliation_guard.running,
    )


@router.post(
    "/passes/deadline-sweep",
    response_model=PassAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Schedule a voting-deadline sweep",
)
async def trigger_deadline_sweep(background_tasks: BackgroundTasks):
    background_tasks.add_task(run_deadline_sweep)
    return PassAcceptedResponse(
        pass_name="deadline-sweep",
        already_running=deadline_guard.running,
    )


@router.post(
    "/passes/agreement-transitions",
    response_model=PassAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Schedule an agreement-transition sweep",
)
async def trigger_agreement_pass(background_tasks: BackgroundTasks):
    background_tasks.add_task(run_agreement_pass)
    return PassAcceptedResponse(
        pass_name="agreement-transitions",
        already_running=agreement_guard.running,
    )


# =============================================================================
# TEAM WORKFLOW
# =============================================================================


@router.post(
    "/referendums/{referendum_id}/actions",
    response_model=RecordActionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a team member action",
    description="""
    Append an action to the referendum's team action log.

    Agreements may move the referendum to ready_to_vote once every member
    agreed; any other action moves ready_to_vote back to waiting_for_agreement.
    Claiming responsible_person when another member holds it returns 409.
    """,
)
async def record_action(
    referendum_id: UUID,
    request: RecordActionRequest,
    machine: StateMachineDep,
):
    try:
        result = await machine.record_action(
            referendum_id=referendum_id,
            wallet_address=request.wallet_address,
            role=TeamRole(request.action),
            reason=request.reason,
        )
    except WorkflowError as e:
        raise _http_error(e)
    return _action_response(result)


@router.delete(
    "/referendums/{referendum_id}/actions",
    response_model=RecordActionResponse,
    summary="Withdraw a team member action",
)
async def withdraw_action(
    referendum_id: UUID,
    request: WithdrawActionRequest,
    machine: StateMachineDep,
):
    """404 when the member's current action is not of the given kind."""
    try:
        result = await machine.withdraw_action(
            referendum_id, request.wallet_address, TeamRole(request.action)
        )
    except WorkflowError as e:
        raise _http_error(e)
    return _action_response(result)


@router.post(
    "/referendums/{referendum_id}/release",
    response_model=RecordActionResponse,
    summary="Release the responsible person assignment",
    description="""
    Only the current responsible person may release. The referendum returns
    to not_started, its suggested vote is cleared, and the releasing member's
    actions other than no_way are dropped.
    """,
)
async def release_responsible_person(
    referendum_id: UUID,
    request: ReleaseRequest,
    machine: StateMachineDep,
):
    try:
        result = await machine.release_responsible_person(
            referendum_id, request.wallet_address, note=request.note
        )
    except WorkflowError as e:
        raise _http_error(e)
    return _action_response(result)


@router.post(
    "/referendums/{referendum_id}/suggestion",
    response_model=RecordActionResponse,
    summary="Suggest the team's vote",
)
async def suggest_vote(
    referendum_id: UUID,
    request: SuggestVoteRequest,
    machine: StateMachineDep,
):
    """Responsible person only; also records their agreement."""
    try:
        result = await machine.suggest_vote(
            referendum_id,
            request.wallet_address,
            VoteDirection(request.vote),
            reason=request.reason,
        )
    except WorkflowError as e:
        raise _http_error(e)
    return _action_response(result)


@router.patch(
    "/referendums/{referendum_id}/status",
    response_model=StatusChangeResponse,
    summary="Change a referendum's internal status",
)
async def change_status(
    referendum_id: UUID,
    request: StatusChangeRequest,
    machine: StateMachineDep,
):
    """
    Any member may move a referendum to waiting_for_agreement or
    reconsidering; other changes need the responsible person.
    """
    try:
        change = await machine.transition_status(
            referendum_id, InternalStatus(request.status), request.wallet_address
        )
    except WorkflowError as e:
        raise _http_error(e)

    return StatusChangeResponse(
        referendum_id=change.referendum_id,
        old_status=change.old_status,
        new_status=change.new_status,
    )


@router.get(
    "/organizations/{organization_id}/workflow",
    response_model=WorkflowResponse,
    summary="Workflow categories for an organization",
)
async def get_workflow(organization_id: UUID, machine: StateMachineDep):
    categories = await machine.categorize(organization_id)
    return WorkflowResponse(
        needs_agreement=[_to_response(r) for r in categories.needs_agreement],
        ready_to_vote=[_to_response(r) for r in categories.ready_to_vote],
        for_discussion=[_to_response(r) for r in categories.for_discussion],
        vetoed=[_to_response(r) for r in categories.vetoed],
    )
