from cardledger.models.failure import (
    ApiResponse,
    DuplicateError,
    FailureDetail,
    FailureKind,
    InvalidStateError,
    KnownError,
    NotFoundError,
    OutcomeType,
    ValidationError,
)
from cardledger.models.resolution import (
    OPEN_CARD_STATUSES,
    BundleStatus,
    Candidate,
    EntityKind,
    EntityMatch,
    FieldResolution,
    PlayerResolution,
    PlayerTeamPair,
    ProvisionalCardStatus,
    Resolution,
)
from cardledger.models.review import (
    ApprovalResult,
    CardFailure,
    NewPlayer,
    NewSeries,
    NewSet,
    NewTeam,
    RejectionResult,
)
from cardledger.models.submission import (
    BundleSubmissionResult,
    CardDescription,
    CardSubmissionResult,
)

__all__ = [
    "OPEN_CARD_STATUSES",
    "ApiResponse",
    "ApprovalResult",
    "BundleStatus",
    "BundleSubmissionResult",
    "Candidate",
    "CardDescription",
    "CardFailure",
    "CardSubmissionResult",
    "DuplicateError",
    "EntityKind",
    "EntityMatch",
    "FailureDetail",
    "FailureKind",
    "FieldResolution",
    "InvalidStateError",
    "KnownError",
    "NewPlayer",
    "NewSeries",
    "NewSet",
    "NewTeam",
    "NotFoundError",
    "OutcomeType",
    "PlayerResolution",
    "PlayerTeamPair",
    "ProvisionalCardStatus",
    "RejectionResult",
    "Resolution",
    "ValidationError",
]
