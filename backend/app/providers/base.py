"""Provider adapter contract shared by every vendor integration.

Each adapter serves exactly one ProviderRole. `invoke` enforces the timeout,
translates vendor failures into a failed ProviderResult and never raises,
except for asyncio.CancelledError which always propagates.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from pydantic import ConfigDict

from backend.app.models.common import (
    CamelModel,
    ProviderErrorKind,
    ProviderRole,
    QALevel,
    TimeOfDay,
)
from backend.app.models.itinerary import GeneratedItinerary
from backend.app.models.outcome import (
    ActivityPayload,
    DraftPayload,
    ProviderResult,
    QualityPayload,
    ValidationPayload,
)
from backend.app.models.request import GenerationRequest
from backend.app.models.validation import LocationCheck

logger = logging.getLogger(__name__)

AdapterPayload = DraftPayload | ValidationPayload | QualityPayload | ActivityPayload


# Exception types
class ProviderError(Exception):
    """Provider invocation failed; always translated into a ProviderResult."""

    kind = ProviderErrorKind.network

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class ProviderAuthError(ProviderError):
    """Credentials missing or rejected."""

    kind = ProviderErrorKind.auth


class ProviderRateLimitError(ProviderError):
    """Vendor rate limit hit."""

    kind = ProviderErrorKind.rate_limited


class ProviderParseError(ProviderError):
    """Vendor response could not be normalized."""

    kind = ProviderErrorKind.parse


class ProviderUnavailableError(ProviderError):
    """Adapter is not configured."""

    kind = ProviderErrorKind.unavailable


class ActivityReplacement(CamelModel):
    """One activity slot the drafting role should refill."""

    model_config = ConfigDict(frozen=True)

    day_index: int
    activity_index: int
    theme: str
    time: str
    time_of_day: TimeOfDay
    category: str
    requirements: str
    exclude_names: tuple[str, ...] = ()


class ProviderTask(CamelModel):
    """Immutable input for one adapter call."""

    model_config = ConfigDict(frozen=True)

    request: GenerationRequest
    draft: GeneratedItinerary | None = None
    checks: tuple[LocationCheck, ...] = ()
    qa_level: QALevel = QALevel.basic
    replacement: ActivityReplacement | None = None


class ProviderAdapter(ABC):
    """Uniform interface over one vendor backend for one role."""

    role: ProviderRole
    provider: str

    @abstractmethod
    def is_configured(self) -> bool:
        """Whether credentials/clients are present."""

    @abstractmethod
    async def _call(self, task: ProviderTask) -> AdapterPayload:
        """Perform the vendor call and return a normalized payload.

        Raises:
            ProviderError: Any vendor, transport or parse failure
        """

    def describe(self) -> dict[str, Any]:
        """Static description for health checks."""
        return {"provider": self.provider, "configured": self.is_configured()}

    async def invoke(self, task: ProviderTask, timeout_s: float) -> ProviderResult:
        """Invoke the provider with a timeout.

        Args:
            task: Immutable call input
            timeout_s: Hard timeout in seconds

        Returns:
            ProviderResult, successful or tagged with an error kind
        """
        start = time.monotonic()

        if not self.is_configured():
            return ProviderResult.failure(
                self.role,
                self.provider,
                ProviderErrorKind.unavailable,
                f"{self.provider} is not configured",
            )

        try:
            payload = await asyncio.wait_for(self._call(task), timeout=timeout_s)
        except TimeoutError:
            return ProviderResult.failure(
                self.role,
                self.provider,
                ProviderErrorKind.timeout,
                f"{self.provider} timed out after {timeout_s:.1f}s",
                latency_ms=_elapsed_ms(start),
            )
        except ProviderError as e:
            return ProviderResult.failure(
                self.role, self.provider, e.kind, str(e), latency_ms=_elapsed_ms(start)
            )
        except Exception as e:
            logger.warning(
                f"Unexpected {type(e).__name__} from {self.provider}",
                extra={"structured": {"role": self.role.value, "provider": self.provider}},
            )
            return ProviderResult.failure(
                self.role,
                self.provider,
                ProviderErrorKind.network,
                f"{type(e).__name__}: {e}",
                latency_ms=_elapsed_ms(start),
            )

        return ProviderResult(
            role=self.role,
            provider=self.provider,
            success=True,
            payload=payload,
            latency_ms=_elapsed_ms(start),
        )


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


class ProviderPool:
    """Read-only binding of roles to adapters, safe for concurrent use."""

    def __init__(self, adapters: Mapping[ProviderRole, ProviderAdapter]) -> None:
        for role, adapter in adapters.items():
            if adapter.role != role:
                raise ValueError(f"{adapter.provider} serves {adapter.role.value}, not {role.value}")
        self._adapters = MappingProxyType(dict(adapters))

    def get(self, role: ProviderRole) -> ProviderAdapter | None:
        """Adapter bound to a role, if any."""
        return self._adapters.get(role)

    def is_configured(self, role: ProviderRole) -> bool:
        """Whether the role has a configured adapter."""
        adapter = self.get(role)
        return adapter is not None and adapter.is_configured()

    async def invoke(
        self, role: ProviderRole, task: ProviderTask, timeout_s: float
    ) -> ProviderResult:
        """Invoke the adapter bound to `role`."""
        adapter = self.get(role)
        if adapter is None:
            return ProviderResult.failure(
                role, "none", ProviderErrorKind.unavailable, f"No adapter bound to {role.value}"
            )
        return await adapter.invoke(task, timeout_s)

    def describe(self) -> dict[str, dict[str, Any]]:
        """Describe every role for health checks."""
        return {
            role.value: (
                self._adapters[role].describe()
                if role in self._adapters
                else {"provider": None, "configured": False}
            )
            for role in ProviderRole
        }
