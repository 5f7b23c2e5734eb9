"""Pydantic schemas for API request/response validation."""

from .base import ErrorDetail, ErrorResponse, LedgerBaseModel
from .workflow import (
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

__all__ = [
    # Base
    "LedgerBaseModel",
    "ErrorDetail",
    "ErrorResponse",
    # Workflow
    "RecordActionRequest",
    "RecordActionResponse",
    "WithdrawActionRequest",
    "ReleaseRequest",
    "SuggestVoteRequest",
    "StatusChangeRequest",
    "StatusChangeResponse",
    "VetoResponse",
    "CategorizedReferendumResponse",
    "WorkflowResponse",
    "PassAcceptedResponse",
]
