"""Normalization of loosely-typed vendor JSON into shared models.

Vendors return slightly different shapes (`type` vs `timeOfDay`, `localleyScore`
vs `localnessScore`, string numbers, fenced JSON). Everything is coerced here so
no vendor schema leaks past the adapter boundary.
"""

import json
import re
from typing import Any

from pydantic import ValidationError

from backend.app.models.common import QALevel, TimeOfDay
from backend.app.models.itinerary import Activity, DailyPlan, GeneratedItinerary
from backend.app.models.request import GenerationRequest
from backend.app.models.validation import (
    IssueSeverity,
    IssueType,
    LocationCheck,
    LocationStatus,
    QualityReview,
    RevisionSuggestion,
    SuggestedAction,
    ValidationIssue,
)
from backend.app.providers.base import ActivityReplacement, ProviderParseError

# Placeholder names models sometimes emit instead of real venues
GENERIC_ACTIVITY_NAMES = frozenset(
    {"location", "breakfast", "lunch", "dinner", "what to order", "activity", "tbd"}
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")
_HOUR_RE = re.compile(r"(\d{1,2})(?::(\d{2}))?\s*([AaPp][Mm])?")


def parse_json_text(provider: str, text: str | None) -> Any:
    """Parse JSON from a model response, tolerating markdown fences."""
    if not text or not text.strip():
        raise ProviderParseError(provider, "Empty response")

    content = _FENCE_RE.sub("", text.strip())
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise ProviderParseError(provider, f"Invalid JSON: {e.msg}") from e


def infer_time_of_day(time_text: str) -> TimeOfDay:
    """Best-effort time-of-day from a clock string such as '09:00 AM' or '19:30'."""
    match = _HOUR_RE.search(time_text or "")
    if not match:
        return TimeOfDay.morning

    hour = int(match.group(1))
    meridiem = (match.group(3) or "").lower()
    if meridiem == "pm" and hour < 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0

    if hour < 12:
        return TimeOfDay.morning
    if hour < 17:
        return TimeOfDay.afternoon
    return TimeOfDay.evening


def _as_int(value: Any, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _optional_text(value: Any) -> str | None:
    """Coerce a model-supplied scalar to text; empty values become None."""
    if value is None or isinstance(value, bool | dict | list):
        return None
    text = str(value).strip()
    return text or None


def _normalize_activity(provider: str, raw: dict[str, Any], day_number: int) -> Activity:
    name = str(raw.get("name") or "").strip()
    if not name or name.lower() in GENERIC_ACTIVITY_NAMES:
        raise ProviderParseError(provider, f"Day {day_number} has invalid activity name {name!r}")

    time_text = str(raw.get("time") or "")
    raw_slot = str(raw.get("timeOfDay") or raw.get("type") or "").lower()
    try:
        time_of_day = TimeOfDay(raw_slot)
    except ValueError:
        time_of_day = infer_time_of_day(time_text)

    score = raw.get("localnessScore", raw.get("localleyScore", raw.get("localScore")))

    return Activity(
        time=time_text,
        time_of_day=time_of_day,
        name=name,
        address=str(raw.get("address") or ""),
        description=str(raw.get("description") or ""),
        category=str(raw.get("category") or "attraction").lower(),
        localness_score=_clamp(_as_int(score, 3), 1, 6),
        duration=str(raw.get("duration") or ""),
        cost=str(raw.get("cost") or ""),
        image=raw.get("image") or raw.get("thumbnail") or None,
    )


def normalize_itinerary(
    provider: str, raw: Any, request: GenerationRequest
) -> GeneratedItinerary:
    """Coerce a vendor itinerary into a GeneratedItinerary with exactly `request.days` days.

    Surplus days are dropped; missing days or empty days are a parse failure.
    """
    if not isinstance(raw, dict):
        raise ProviderParseError(provider, "Itinerary is not a JSON object")

    raw_days = raw.get("dailyPlans") or raw.get("daily_plans")
    if not isinstance(raw_days, list):
        raise ProviderParseError(provider, "Itinerary is missing dailyPlans")
    if len(raw_days) < request.days:
        raise ProviderParseError(
            provider, f"Expected {request.days} days, got {len(raw_days)}"
        )

    daily_plans: list[DailyPlan] = []
    for index, raw_day in enumerate(raw_days[: request.days]):
        day_number = index + 1
        if not isinstance(raw_day, dict):
            raise ProviderParseError(provider, f"Day {day_number} is not an object")
        raw_activities = raw_day.get("activities")
        if not isinstance(raw_activities, list) or not raw_activities:
            raise ProviderParseError(provider, f"Day {day_number} has no activities")

        activities = [
            _normalize_activity(provider, a, day_number)
            for a in raw_activities
            if isinstance(a, dict)
        ]
        if not activities:
            raise ProviderParseError(provider, f"Day {day_number} has no usable activities")

        daily_plans.append(
            DailyPlan(
                day=day_number,
                theme=str(raw_day.get("theme") or ""),
                activities=activities,
                local_tip=str(raw_day.get("localTip") or ""),
                transport_tips=str(raw_day.get("transportTips") or raw_day.get("transportTip") or ""),
            )
        )

    title = str(raw.get("title") or "").strip()
    if not title:
        raise ProviderParseError(provider, "Itinerary is missing a title")

    highlights = raw.get("highlights")
    try:
        return GeneratedItinerary(
            title=title,
            subtitle=str(raw.get("subtitle") or ""),
            city=request.city,
            days=request.days,
            daily_plans=daily_plans,
            highlights=[str(h) for h in highlights] if isinstance(highlights, list) else [],
            estimated_cost=str(raw.get("estimatedCost") or ""),
            local_score=_clamp(_as_int(raw.get("localScore"), 5), 1, 10),
        )
    except ValidationError as e:
        raise ProviderParseError(provider, f"Itinerary failed validation: {e.error_count()} errors") from e


def normalize_replacement_activity(
    provider: str, raw: Any, replacement: ActivityReplacement
) -> Activity:
    """Coerce a single vendor activity into the slot it replaces.

    The slot keeps its time so the day's ordering holds. Reusing an excluded name
    is a parse failure.
    """
    if isinstance(raw, dict) and isinstance(raw.get("activity"), dict):
        raw = raw["activity"]
    if not isinstance(raw, dict):
        raise ProviderParseError(provider, "Activity is not a JSON object")

    activity = _normalize_activity(provider, raw, replacement.day_index + 1)
    excluded = {name.lower() for name in replacement.exclude_names}
    if activity.name.lower() in excluded:
        raise ProviderParseError(provider, f"Replacement reuses excluded name {activity.name!r}")

    return activity.model_copy(
        update={"time": replacement.time, "time_of_day": replacement.time_of_day}
    )


def normalize_location_checks(
    provider: str, raw: Any, draft: GeneratedItinerary
) -> list[LocationCheck]:
    """Coerce vendor validation output into LocationChecks aligned to the draft.

    Entries are matched positionally when they carry `dayIndex`/`activityIndex`,
    otherwise by activity name. Unmatched entries are dropped.
    """
    entries = raw.get("locations") if isinstance(raw, dict) else raw
    if not isinstance(entries, list):
        raise ProviderParseError(provider, "Validation response has no locations list")

    by_name: dict[str, tuple[int, int]] = {}
    for day_index, day in enumerate(draft.daily_plans):
        for activity_index, activity in enumerate(day.activities):
            by_name.setdefault(activity.name.lower(), (day_index, activity_index))

    checks: list[LocationCheck] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        name = str(entry.get("name") or "")

        if "dayIndex" in entry and "activityIndex" in entry:
            position = (_as_int(entry["dayIndex"], -1), _as_int(entry["activityIndex"], -1))
        else:
            position = by_name.get(name.lower(), (-1, -1))

        day_index, activity_index = position
        if not (0 <= day_index < len(draft.daily_plans)):
            continue
        if not (0 <= activity_index < len(draft.daily_plans[day_index].activities)):
            continue

        try:
            status = LocationStatus(str(entry.get("status") or "uncertain").lower())
        except ValueError:
            status = LocationStatus.uncertain

        try:
            confidence = float(entry.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0

        checks.append(
            LocationCheck(
                day_index=day_index,
                activity_index=activity_index,
                name=name or draft.daily_plans[day_index].activities[activity_index].name,
                status=status,
                confidence=max(0.0, min(1.0, confidence)),
                corrected_name=_optional_text(entry.get("correctedName")),
                corrected_address=_optional_text(entry.get("correctedAddress")),
                reason=_optional_text(entry.get("reason")),
            )
        )

    return checks


def _normalize_issue(raw: dict[str, Any]) -> ValidationIssue | None:
    message = str(raw.get("message") or "").strip()
    if not message:
        return None
    try:
        issue_type = IssueType(str(raw.get("type") or "quality").lower())
    except ValueError:
        issue_type = IssueType.quality
    try:
        severity = IssueSeverity(str(raw.get("severity") or "warning").lower())
    except ValueError:
        severity = IssueSeverity.warning

    day_index = raw.get("dayIndex")
    activity_index = raw.get("activityIndex")
    return ValidationIssue(
        type=issue_type,
        severity=severity,
        day_index=_as_int(day_index, 0) if day_index is not None else None,
        activity_index=_as_int(activity_index, 0) if activity_index is not None else None,
        message=message,
        auto_fixed=False,
    )


def _normalize_suggestion(raw: dict[str, Any]) -> RevisionSuggestion | None:
    try:
        action = SuggestedAction(str(raw.get("suggestedAction") or "").lower())
    except ValueError:
        return None
    day_index = _as_int(raw.get("dayIndex"), -1)
    activity_index = _as_int(raw.get("activityIndex"), -1)
    if day_index < 0 or activity_index < 0:
        return None
    return RevisionSuggestion(
        day_index=day_index,
        activity_index=activity_index,
        current_name=str(raw.get("currentName") or ""),
        suggested_action=action,
        reason=str(raw.get("reason") or ""),
    )


def normalize_quality_review(provider: str, raw: Any, level: QALevel) -> QualityReview:
    """Coerce vendor QA output into a QualityReview."""
    if not isinstance(raw, dict):
        raise ProviderParseError(provider, "Quality review is not a JSON object")

    if "qualityScore" not in raw:
        raise ProviderParseError(provider, "Quality review is missing qualityScore")
    try:
        score = float(raw["qualityScore"])
    except (TypeError, ValueError) as e:
        raise ProviderParseError(provider, "qualityScore is not numeric") from e

    raw_issues = raw.get("issues") if isinstance(raw.get("issues"), list) else []
    issues = [
        issue
        for issue in (_normalize_issue(i) for i in raw_issues if isinstance(i, dict))
        if issue is not None
    ]
    raw_suggestions = raw.get("suggestions") if isinstance(raw.get("suggestions"), list) else []
    suggestions = [
        suggestion
        for suggestion in (_normalize_suggestion(s) for s in raw_suggestions if isinstance(s, dict))
        if suggestion is not None
    ]

    return QualityReview(
        approved=bool(raw.get("approved", False)),
        quality_score=max(0.0, min(10.0, score)),
        issues=issues,
        suggestions=suggestions,
        level=level,
    )
