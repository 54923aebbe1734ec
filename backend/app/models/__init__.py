"""Models package - re-exports for convenience."""

from backend.app.models.common import (
    CamelModel,
    FallbackMarker,
    ProviderErrorKind,
    ProviderRole,
    QALevel,
    TimeOfDay,
    UserTier,
)
from backend.app.models.events import (
    CompleteEvent,
    ErrorEvent,
    Phase1Event,
    Phase2Event,
    ProgressEvent,
    ProgressUpdate,
    StartEvent,
)
from backend.app.models.itinerary import Activity, DailyPlan, GeneratedItinerary
from backend.app.models.outcome import (
    DraftPayload,
    GenerationMetrics,
    GenerationOutcome,
    ProviderResult,
    QualityPayload,
    ValidationPayload,
)
from backend.app.models.request import GenerateItineraryBody, GenerationRequest
from backend.app.models.validation import (
    LocationCheck,
    LocationStatus,
    QualityReview,
    ValidationIssue,
    ValidationReport,
)

__all__ = [
    # Common
    "CamelModel",
    "UserTier",
    "ProviderRole",
    "ProviderErrorKind",
    "FallbackMarker",
    "QALevel",
    "TimeOfDay",
    # Request
    "GenerateItineraryBody",
    "GenerationRequest",
    # Itinerary
    "GeneratedItinerary",
    "DailyPlan",
    "Activity",
    # Validation
    "LocationCheck",
    "LocationStatus",
    "ValidationIssue",
    "ValidationReport",
    "QualityReview",
    # Outcome
    "ProviderResult",
    "DraftPayload",
    "ValidationPayload",
    "QualityPayload",
    "GenerationMetrics",
    "GenerationOutcome",
    # Events
    "ProgressEvent",
    "StartEvent",
    "ProgressUpdate",
    "Phase1Event",
    "Phase2Event",
    "CompleteEvent",
    "ErrorEvent",
]
