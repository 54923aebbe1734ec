"""Prompt builders for the three provider roles.

Prompts only reference request fields and the draft; they never embed vendor-specific
instructions beyond "respond with JSON".
"""

import json

from backend.app.models.common import QALevel
from backend.app.models.itinerary import GeneratedItinerary
from backend.app.models.request import GenerationRequest
from backend.app.models.validation import LocationCheck
from backend.app.providers.base import ActivityReplacement

DRAFTING_SYSTEM_PROMPT = """You are a local travel expert who writes authentic, hidden-gem
itineraries. Prefer places locals actually go over tourist traps.

CRITICAL CONSTRAINTS:
- Respond with a single JSON object and nothing else.
- Produce exactly the requested number of days, numbered from 1.
- Every activity must name a real, specific venue with a street address.
- Never use placeholder names such as "Breakfast", "Lunch", "Dinner" or "Location".
- localnessScore is an integer from 1 (tourist staple) to 6 (only locals know it)."""

_DRAFT_SHAPE = {
    "title": "string",
    "subtitle": "string",
    "dailyPlans": [
        {
            "day": 1,
            "theme": "string",
            "activities": [
                {
                    "time": "09:00 AM",
                    "timeOfDay": "morning|afternoon|evening",
                    "name": "string",
                    "address": "string",
                    "description": "string",
                    "category": "food|cafe|culture|nature|shopping|nightlife|attraction",
                    "localnessScore": 4,
                    "duration": "1.5 hours",
                    "cost": "$15",
                }
            ],
            "localTip": "string",
            "transportTips": "string",
        }
    ],
    "highlights": ["string"],
    "estimatedCost": "string",
    "localScore": 7,
}

VALIDATION_SYSTEM_PROMPT = """You verify that places in a travel itinerary exist at the
stated location. For each activity report whether it is verified, invalid or uncertain,
a confidence between 0 and 1, and a corrected name or address only when you are sure.
Respond with a single JSON object of the form
{"locations": [{"dayIndex": 0, "activityIndex": 0, "name": "...", "status": "verified",
"confidence": 0.95, "correctedName": null, "correctedAddress": null, "reason": null}]}."""

QA_SYSTEM_PROMPT = """You review travel itineraries for quality: pacing, geographic
clustering, opening hours, budget fit and authenticity. Approve only when the score is 6
or higher and no issue has severity "error". Suggest replacing an activity only when it
is clearly wrong for the traveler, and say why in "reason".
Respond with a single JSON object of the form
{"approved": true, "qualityScore": 8.5, "issues": [{"type": "time|budget|location|structure|quality",
"severity": "error|warning|info", "dayIndex": 0, "activityIndex": 1, "message": "..."}],
"suggestions": [{"dayIndex": 0, "activityIndex": 1, "currentName": "...",
"suggestedAction": "replace|modify|remove", "reason": "..."}]}."""

SINGLE_ACTIVITY_SYSTEM_PROMPT = """You are a local travel expert replacing one activity in an
existing itinerary. Respond with a single JSON object describing exactly one activity:
{"name": "...", "address": "...", "description": "...", "category": "...",
"localnessScore": 4, "duration": "1 hour", "cost": "$15"}.
The name must be a real, specific venue, never a placeholder such as "Restaurant"."""

# Media and coordinates are irrelevant to the review
_QA_EXCLUDE = {"daily_plans": {"__all__": {"activities": {"__all__": {"image", "lat", "lng"}}}}}

_QA_FOCUS = {
    QALevel.quick: (
        "This is a follow-up check after flagged activities were replaced. Confirm the "
        "replacements fit the day and no new problems were introduced. Be brief and "
        "return an empty suggestions list."
    ),
    QALevel.basic: "Give a brief review. Only report errors and the most important warnings.",
    QALevel.full: (
        "Give a thorough review. Check every day for pacing, travel time between "
        "consecutive activities, opening hours, meal timing and budget consistency."
    ),
}


def build_drafting_prompt(request: GenerationRequest) -> str:
    """User prompt for the drafting role."""
    lines = [
        f"Create a {request.days}-day itinerary for {request.city}.",
        f"- Interests: {', '.join(request.sorted_interests()) or 'general sightseeing'}",
        f"- Budget: {request.budget}",
        f"- Pace: {request.pace}",
        f"- Travelling as: {request.group_type}",
        f"- Localness level: {request.localness_level} of 5",
    ]
    if request.template_prompt:
        lines.append("")
        lines.append("Additional guidance from the traveler:")
        lines.append(request.template_prompt)
    lines.append("")
    lines.append("Return JSON with exactly this shape:")
    lines.append(json.dumps(_DRAFT_SHAPE, indent=2))
    return "\n".join(lines)


def build_validation_prompt(draft: GeneratedItinerary) -> str:
    """User prompt for the validation role listing every activity with its indices."""
    lines = [f"City: {draft.city}", "", "Activities to verify:"]
    for day_index, day in enumerate(draft.daily_plans):
        for activity_index, activity in enumerate(day.activities):
            lines.append(
                f"- dayIndex={day_index} activityIndex={activity_index} "
                f"name={activity.name!r} address={activity.address!r}"
            )
    return "\n".join(lines)


def build_qa_prompt(
    draft: GeneratedItinerary,
    checks: tuple[LocationCheck, ...],
    level: QALevel,
) -> str:
    """User prompt for the quality-assurance role."""
    lines = [_QA_FOCUS.get(level, _QA_FOCUS[QALevel.basic]), ""]
    lines.append("Itinerary:")
    lines.append(draft.model_dump_json(by_alias=True, exclude=_QA_EXCLUDE))

    flagged = [c for c in checks if c.status.value != "verified"]
    if flagged:
        lines.append("")
        lines.append("Location checks that did not verify:")
        for check in flagged:
            lines.append(f"- {check.name}: {check.status.value} ({check.reason or 'no reason given'})")
    return "\n".join(lines)


def build_single_activity_prompt(
    request: GenerationRequest, replacement: ActivityReplacement
) -> str:
    """User prompt asking the drafting role for one replacement activity."""
    lines = [
        f"Suggest one {replacement.time_of_day.value} activity in {request.city}.",
        f"- Day theme: {replacement.theme or 'local life'}",
        f"- Time slot: {replacement.time}",
        f"- Category preference: {replacement.category}",
        f"- Budget: {request.budget}",
        f"- Why the previous choice was rejected: {replacement.requirements or 'not specified'}",
    ]
    if replacement.exclude_names:
        lines.append(f"- Do not use these places: {', '.join(replacement.exclude_names)}")
    return "\n".join(lines)
