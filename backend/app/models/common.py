"""Common types and enums shared across all models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserTier(str, Enum):
    """Subscription tier."""

    free = "free"
    pro = "pro"
    premium = "premium"


class ProviderRole(str, Enum):
    """Capability role backed by one provider adapter."""

    drafting = "drafting"
    validation = "validation"
    qa = "qa"


class ProviderErrorKind(str, Enum):
    """Why a provider invocation failed."""

    timeout = "timeout"
    network = "network"
    auth = "auth"
    rate_limited = "rate_limited"
    parse = "parse"
    unavailable = "unavailable"
    circuit_open = "circuit_open"


class FallbackMarker(str, Enum):
    """Recorded degradation of a non-essential stage."""

    validation_skipped = "validation-skipped"
    qa_skipped = "qa-skipped"


class QALevel(str, Enum):
    """Depth of the quality-assurance review."""

    none = "none"
    quick = "quick"
    basic = "basic"
    full = "full"


class TimeOfDay(str, Enum):
    """Time-of-day category of an activity."""

    morning = "morning"
    afternoon = "afternoon"
    evening = "evening"


RETRYABLE_ERROR_KINDS = frozenset(
    {
        ProviderErrorKind.timeout,
        ProviderErrorKind.network,
        ProviderErrorKind.rate_limited,
        ProviderErrorKind.parse,
    }
)
