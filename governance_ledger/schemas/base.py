"""Shared pydantic configuration and the API error envelope."""

from pydantic import BaseModel, ConfigDict


class LedgerBaseModel(BaseModel):
    # Read straight from ORM rows and dataclasses; emit enum values
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(LedgerBaseModel):
    """One field-level problem, e.g. a request validation failure."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(LedgerBaseModel):
    """Body returned for validation and unexpected server errors."""

    error: str
    message: str
    details: list[ErrorDetail] = []
