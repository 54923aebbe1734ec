"""Itinerary models - final output for user consumption."""

from pydantic import Field, model_validator

from backend.app.models.common import CamelModel, TimeOfDay


class Activity(CamelModel):
    """Single activity in a day plan."""

    time: str
    time_of_day: TimeOfDay
    name: str = Field(..., min_length=1)
    address: str = ""
    description: str = ""
    category: str = "attraction"
    localness_score: int = Field(3, ge=1, le=6)
    duration: str = ""
    cost: str = ""
    image: str | None = None
    # Populated by the geocoding collaborator, never by generation
    lat: float | None = Field(None, ge=-90, le=90)
    lng: float | None = Field(None, ge=-180, le=180)


class DailyPlan(CamelModel):
    """Plan for a single day."""

    day: int = Field(..., ge=1)
    theme: str = ""
    activities: list[Activity]
    local_tip: str = ""
    transport_tips: str = ""


class GeneratedItinerary(CamelModel):
    """Complete generated itinerary."""

    title: str
    subtitle: str = ""
    city: str
    days: int = Field(..., ge=1)
    daily_plans: list[DailyPlan]
    highlights: list[str] = Field(default_factory=list)
    estimated_cost: str = ""
    local_score: int = Field(5, ge=1, le=10)

    @model_validator(mode="after")
    def _check_day_count(self) -> "GeneratedItinerary":
        if len(self.daily_plans) != self.days:
            raise ValueError(
                f"Itinerary has {len(self.daily_plans)} daily plans but declares {self.days} days"
            )
        return self
