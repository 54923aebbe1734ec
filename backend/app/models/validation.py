"""Validation and quality-review models produced by enrichment stages."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from backend.app.models.common import CamelModel, QALevel


class LocationStatus(str, Enum):
    """Outcome of checking one location."""

    verified = "verified"
    invalid = "invalid"
    uncertain = "uncertain"


class IssueType(str, Enum):
    """Category of a validation issue."""

    location = "location"
    time = "time"
    budget = "budget"
    structure = "structure"
    quality = "quality"


class IssueSeverity(str, Enum):
    """Severity of a validation issue."""

    error = "error"
    warning = "warning"
    info = "info"


class LocationCheck(CamelModel):
    """Validation result for one activity's location."""

    day_index: int = Field(..., ge=0)
    activity_index: int = Field(..., ge=0)
    name: str
    status: LocationStatus
    confidence: float = Field(..., ge=0.0, le=1.0)
    corrected_name: str | None = None
    corrected_address: str | None = None
    reason: str | None = None


class ValidationIssue(CamelModel):
    """A problem flagged by validation or quality assurance."""

    type: IssueType
    severity: IssueSeverity
    day_index: int | None = None
    activity_index: int | None = None
    message: str
    auto_fixed: bool = False


class SuggestedAction(str, Enum):
    """Change a reviewer proposes for one activity."""

    replace = "replace"
    modify = "modify"
    remove = "remove"


class RevisionSuggestion(CamelModel):
    """Reviewer proposal to change one activity of the draft."""

    day_index: int = Field(..., ge=0)
    activity_index: int = Field(..., ge=0)
    current_name: str = ""
    suggested_action: SuggestedAction
    reason: str = ""


class QualityReview(CamelModel):
    """Review from the quality-assurance stage; suggestions may drive a revision cycle."""

    approved: bool
    quality_score: float = Field(..., ge=0.0, le=10.0)
    issues: list[ValidationIssue] = Field(default_factory=list)
    suggestions: list[RevisionSuggestion] = Field(default_factory=list)
    level: QALevel = QALevel.basic


class ValidationReport(CamelModel):
    """Merged report of validation checks and QA findings."""

    issues: list[ValidationIssue] = Field(default_factory=list)
    checked_locations: int = 0
    corrections_applied: int = 0
    revision_cycles: int = 0
    approved_at: datetime | None = None
