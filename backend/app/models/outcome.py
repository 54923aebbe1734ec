"""Provider results and the merged generation outcome."""

from typing import Annotated, Literal

from pydantic import ConfigDict, Field, model_validator

from backend.app.models.common import CamelModel, ProviderErrorKind, ProviderRole
from backend.app.models.itinerary import Activity, GeneratedItinerary
from backend.app.models.validation import LocationCheck, QualityReview, ValidationReport


class DraftPayload(CamelModel):
    """Normalized output of the drafting role."""

    kind: Literal["draft"] = "draft"
    itinerary: GeneratedItinerary


class ValidationPayload(CamelModel):
    """Normalized output of the validation role."""

    kind: Literal["validation"] = "validation"
    checks: list[LocationCheck] = Field(default_factory=list)


class QualityPayload(CamelModel):
    """Normalized output of the quality-assurance role."""

    kind: Literal["quality"] = "quality"
    review: QualityReview


class ActivityPayload(CamelModel):
    """Single replacement activity produced by the drafting role."""

    kind: Literal["activity"] = "activity"
    activity: Activity


ProviderPayload = Annotated[
    DraftPayload | ValidationPayload | QualityPayload | ActivityPayload,
    Field(discriminator="kind"),
]


class ProviderResult(CamelModel):
    """Outcome of one adapter invocation."""

    role: ProviderRole
    provider: str
    success: bool
    payload: ProviderPayload | None = None
    latency_ms: float = 0.0
    error_kind: ProviderErrorKind | None = None
    detail: str | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> "ProviderResult":
        if self.success and self.payload is None:
            raise ValueError("successful provider result requires a payload")
        if not self.success and self.error_kind is None:
            raise ValueError("failed provider result requires an error_kind")
        return self

    @classmethod
    def failure(
        cls,
        role: ProviderRole,
        provider: str,
        error_kind: ProviderErrorKind,
        detail: str,
        latency_ms: float = 0.0,
    ) -> "ProviderResult":
        """Build a failed result."""
        return cls(
            role=role,
            provider=provider,
            success=False,
            error_kind=error_kind,
            detail=detail,
            latency_ms=latency_ms,
        )


class GenerationMetrics(CamelModel):
    """Timing and provider bookkeeping for one attempt."""

    model_config = ConfigDict(frozen=True)

    total_latency_ms: float = 0.0
    phase1_latency_ms: float | None = None
    phase2_latency_ms: float | None = None
    providers_used: list[ProviderRole] = Field(default_factory=list)
    cache_hits: int = 0
    retry_count: int = 0


class GenerationOutcome(CamelModel):
    """Merged, authoritative result of one generation attempt."""

    model_config = ConfigDict(frozen=True)

    success: bool
    itinerary: GeneratedItinerary | None = None
    quality_score: float | None = None
    validation_report: ValidationReport | None = None
    fallback_used: str | None = None
    metrics: GenerationMetrics = Field(default_factory=GenerationMetrics)
    error: str | None = None

    @model_validator(mode="after")
    def _check_success_has_itinerary(self) -> "GenerationOutcome":
        if self.success and self.itinerary is None:
            raise ValueError("successful outcome requires an itinerary")
        if not self.success and self.itinerary is not None:
            raise ValueError("failed outcome must not carry an itinerary")
        if len(set(self.metrics.providers_used)) != len(self.metrics.providers_used):
            raise ValueError("providers_used must not contain duplicates")
        return self
