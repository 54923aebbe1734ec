"""Progress event models - what happened during one generation attempt."""

from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter

from backend.app.models.common import CamelModel


class StartEvent(CamelModel):
    """First event of every attempt."""

    type: Literal["start"] = "start"
    message: str = "Starting itinerary generation..."
    percent: int = 0


class ProgressUpdate(CamelModel):
    """Intermediate progress."""

    type: Literal["progress"] = "progress"
    message: str
    percent: int = Field(..., ge=0, le=100)


class Phase1Event(CamelModel):
    """Drafting (and enrichment) phase started."""

    type: Literal["phase1"] = "phase1"
    message: str
    percent: int = Field(..., ge=0, le=100)
    providers: list[str] = Field(default_factory=list)


class Phase2Event(CamelModel):
    """Quality assurance finished."""

    type: Literal["phase2"] = "phase2"
    message: str = "Quality assurance complete"
    percent: int = Field(..., ge=0, le=100)
    quality_score: float | None = None


class CompleteEvent(CamelModel):
    """Terminal success event carrying the final response body."""

    type: Literal["complete"] = "complete"
    percent: int = 100
    data: dict[str, Any]


class ErrorEvent(CamelModel):
    """Terminal failure event."""

    type: Literal["error"] = "error"
    error: str
    message: str
    percent: int | None = None
    fallback_used: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


ProgressEvent = Annotated[
    StartEvent | ProgressUpdate | Phase1Event | Phase2Event | CompleteEvent | ErrorEvent,
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"complete", "error"})

progress_event_adapter: TypeAdapter[ProgressEvent] = TypeAdapter(ProgressEvent)
