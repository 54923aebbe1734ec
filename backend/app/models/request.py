"""Request models - user input for itinerary generation."""

import uuid
from typing import Annotated, Literal

from pydantic import ConfigDict, Field, StringConstraints, field_validator

from backend.app.models.common import CamelModel, UserTier

Budget = Literal["budget", "cheap", "moderate", "mid", "luxury", "splurge"]
Pace = Literal["relaxed", "moderate", "active", "packed"]
GroupType = Literal["solo", "couple", "family", "friends", "business"]

InterestTag = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]


class GenerateItineraryBody(CamelModel):
    """JSON body accepted by the generation endpoints."""

    city: str = Field(..., min_length=1, max_length=100)
    days: int = Field(..., ge=1, le=14)
    interests: list[InterestTag] = Field(default_factory=list, max_length=10)
    budget: Budget = "moderate"
    localness_level: int = Field(3, ge=1, le=5)
    pace: Pace = "moderate"
    group_type: GroupType = "solo"
    template_prompt: str | None = Field(None, max_length=2000)

    @field_validator("city")
    @classmethod
    def validate_city_not_blank(cls, v: str) -> str:
        """Reject whitespace-only city names."""
        if not v.strip():
            raise ValueError("city must not be blank")
        return v.strip()


class GenerationRequest(CamelModel):
    """Immutable input for one generation attempt."""

    model_config = ConfigDict(frozen=True)

    city: str
    days: int = Field(..., ge=1)
    interests: frozenset[str] = frozenset()
    budget: str = "moderate"
    localness_level: int = Field(3, ge=1, le=5)
    pace: str = "moderate"
    group_type: str = "solo"
    template_prompt: str | None = None
    tier: UserTier = UserTier.free
    user_id: str
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_body(
        cls,
        body: GenerateItineraryBody,
        *,
        tier: UserTier,
        user_id: str,
        request_id: str | None = None,
    ) -> "GenerationRequest":
        """Build a request from a validated HTTP body plus caller identity."""
        return cls(
            city=body.city,
            days=body.days,
            interests=frozenset(body.interests),
            budget=body.budget,
            localness_level=body.localness_level,
            pace=body.pace,
            group_type=body.group_type,
            template_prompt=body.template_prompt,
            tier=tier,
            user_id=user_id,
            request_id=request_id or uuid.uuid4().hex,
        )

    def sorted_interests(self) -> list[str]:
        """Interests in a stable order for prompts and fingerprints."""
        return sorted(self.interests)
