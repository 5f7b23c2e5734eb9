"""Business logic services for the Governance Ledger."""

from .chain_votes import AccountTarget, ChainVoteSource, VoteKey, collect_accounts
from .decisions import VotingDecisionService
from .indexer_votes import IndexerVote, IndexerVoteSource
from .reconciler import (
    ReconciliationResult,
    ResolvedVote,
    VoteEvidence,
    VoteReconciler,
    build_audit_link,
    reconciliation_guard,
    resolve_vote,
)
from .transactions import PendingVote, TransactionLifecycle
from .workflow import (
    ActionNotFoundError,
    AgreementStats,
    AgreementSummary,
    CategorizedReferendum,
    DeadlineSweepResult,
    InvalidTransitionError,
    NotResponsiblePersonError,
    NotTeamMemberError,
    RecordedAction,
    ReferendumNotFoundError,
    ResponsiblePersonConflictError,
    StatusChange,
    VetoInfo,
    WorkflowCategories,
    WorkflowCategory,
    WorkflowError,
    WorkflowStateMachine,
    agreement_guard,
    categorize_referendums,
    deadline_guard,
    project_actions,
)

__all__ = [
    # Vote sources
    "AccountTarget",
    "ChainVoteSource",
    "IndexerVote",
    "IndexerVoteSource",
    "VoteKey",
    "collect_accounts",
    # Reconciliation
    "PendingVote",
    "ReconciliationResult",
    "ResolvedVote",
    "TransactionLifecycle",
    "VoteEvidence",
    "VoteReconciler",
    "VotingDecisionService",
    "build_audit_link",
    "reconciliation_guard",
    "resolve_vote",
    # Workflow
    "AgreementStats",
    "AgreementSummary",
    "CategorizedReferendum",
    "DeadlineSweepResult",
    "RecordedAction",
    "StatusChange",
    "VetoInfo",
    "WorkflowCategories",
    "WorkflowCategory",
    "WorkflowStateMachine",
    "agreement_guard",
    "categorize_referendums",
    "deadline_guard",
    "project_actions",
    # Errors
    "ActionNotFoundError",
    "InvalidTransitionError",
    "NotResponsiblePersonError",
    "NotTeamMemberError",
    "ReferendumNotFoundError",
    "ResponsiblePersonConflictError",
    "WorkflowError",
]
