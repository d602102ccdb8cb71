"""
Failure envelope: unified error classification.

Every request-level failure is classified and converted into the same
response envelope before it reaches a client.

Request-level failures (validation, not-found, invalid state, duplicate)
abort the whole request with no side effects. Per-card failures during
bundle approval are NOT request failures; they are reported inside the
approval result (see models.review.ApprovalResult).
"""

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    INVALID_INPUT = "invalid_input"
    MISSING_REQUIRED = "missing_required"

    # Resource failures
    NOT_FOUND = "not_found"

    # Workflow failures
    INVALID_STATE = "invalid_state"
    DUPLICATE = "duplicate"
    ORDERING_VIOLATION = "ordering_violation"

    # Authorization
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"

    # Unknown
    UNKNOWN = "unknown"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    SUCCESS = "success"
    KNOWN_FAILURE = "known_failure"
    UNKNOWN_FAILURE = "unknown_failure"


T = TypeVar("T")


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class ApiResponse(BaseModel, Generic[T]):
    """Response envelope for classified outcomes."""

    outcome: OutcomeType = Field(
        ...,
        description="High-level classification of the result",
    )
    data: T | None = Field(
        default=None,
        description="Response data (present on success)",
    )
    failure: FailureDetail | None = Field(
        default=None,
        description="Failure details (present on non-success)",
    )

    @classmethod
    def success(cls, data: T) -> "ApiResponse[T]":
        """Create a success response."""
        return cls(outcome=OutcomeType.SUCCESS, data=data)

    @classmethod
    def known_failure(
        cls,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ) -> "ApiResponse[Any]":
        """
        Create a known failure response.

        Use when the system knows exactly why the operation failed.
        Example: Bundle not found, bundle already reviewed.
        """
        return cls(
            outcome=OutcomeType.KNOWN_FAILURE,
            failure=FailureDetail(
                kind=kind,
                message=message,
                detail=detail,
                suggestion=suggestion,
            ),
        )

    @classmethod
    def unknown_failure(
        cls,
        detail: str | None = None,
    ) -> "ApiResponse[Any]":
        """Create an unknown failure response for unexpected exceptions."""
        return cls(
            outcome=OutcomeType.UNKNOWN_FAILURE,
            failure=FailureDetail(
                kind=FailureKind.UNKNOWN,
                message="The request failed for an unknown reason.",
                detail=detail,
                suggestion="If this persists, please report the issue.",
            ),
        )


# Standard exception types that map to known failures


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ApiResponse[Any]:
        """Convert to an ApiResponse."""
        return ApiResponse.known_failure(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
        )


class ValidationError(KnownError):
    """Malformed or missing input, rejected before anything is persisted."""

    def __init__(
        self,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        kind: FailureKind = FailureKind.INVALID_INPUT,
    ):
        super().__init__(
            kind=kind,
            message=message,
            detail=detail,
            suggestion=suggestion,
            status_code=400,
        )


class NotFoundError(KnownError):
    """A referenced bundle, provisional card, or canonical entity does not exist."""

    def __init__(self, entity: str, entity_id: int | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"{entity} not found",
            detail=f"{entity} {entity_id} does not exist",
            status_code=404,
        )


class InvalidStateError(KnownError):
    """
    An action was attempted against a record not in the required status.

    Examples: approving an already-approved bundle, resolving a series on a
    provisional card whose set is still unresolved.
    """

    def __init__(
        self,
        message: str,
        detail: str | None = None,
        kind: FailureKind = FailureKind.INVALID_STATE,
    ):
        super().__init__(
            kind=kind,
            message=message,
            detail=detail,
            status_code=409,
        )


class DuplicateError(KnownError):
    """A canonical entity matching the creation parameters already exists."""

    def __init__(self, entity: str, existing_id: int, name: str):
        self.entity = entity
        self.existing_id = existing_id
        super().__init__(
            kind=FailureKind.DUPLICATE,
            message=f"{entity} '{name}' already exists",
            detail=f"Existing {entity.lower()} id: {existing_id}",
            suggestion=f"Link the existing {entity.lower()} by id instead of creating it.",
            status_code=409,
        )
