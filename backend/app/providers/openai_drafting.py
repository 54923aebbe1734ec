"""OpenAI-backed drafting adapter.

Security: API key comes from settings (environment) only.
"""

import logging

import openai
from openai import AsyncOpenAI

from backend.app.models.common import ProviderRole
from backend.app.models.outcome import ActivityPayload, DraftPayload
from backend.app.models.request import GenerationRequest
from backend.app.providers.base import (
    ActivityReplacement,
    ProviderAdapter,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTask,
)
from backend.app.providers.normalize import (
    normalize_itinerary,
    normalize_replacement_activity,
    parse_json_text,
)
from backend.app.providers.prompts import (
    DRAFTING_SYSTEM_PROMPT,
    SINGLE_ACTIVITY_SYSTEM_PROMPT,
    build_drafting_prompt,
    build_single_activity_prompt,
)

logger = logging.getLogger(__name__)


class OpenAIDraftingAdapter(ProviderAdapter):
    """Creative drafting, and single-activity replacement, via chat completions in JSON mode."""

    role = ProviderRole.drafting
    provider = "openai"

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-2024-08-06",
        client: AsyncOpenAI | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            api_key: OpenAI API key (read from environment)
            model: Chat model name
            client: Pre-built client, mainly for tests
        """
        self.model = model
        if client is not None:
            self.client: AsyncOpenAI | None = client
        elif api_key:
            # Retries are owned by the orchestrator
            self.client = AsyncOpenAI(api_key=api_key, max_retries=0)
        else:
            self.client = None

    def is_configured(self) -> bool:
        return self.client is not None

    def describe(self) -> dict[str, object]:
        return {**super().describe(), "model": self.model}

    async def _call(self, task: ProviderTask) -> DraftPayload | ActivityPayload:
        assert self.client is not None
        if task.replacement is not None:
            return await self._replace_activity(task.request, task.replacement)

        request = task.request
        content = await self._complete(
            user_prompt=build_drafting_prompt(request),
            system_prompt=DRAFTING_SYSTEM_PROMPT,
            temperature=0.7,
            max_tokens=4000 + 1000 * request.days,
        )
        raw = parse_json_text(self.provider, content)
        itinerary = normalize_itinerary(self.provider, raw, request)

        logger.debug(
            f"Drafted {itinerary.days}-day itinerary for {request.city}",
            extra={"structured": {"request_id": request.request_id, "model": self.model}},
        )
        return DraftPayload(itinerary=itinerary)

    async def _replace_activity(
        self, request: GenerationRequest, replacement: ActivityReplacement
    ) -> ActivityPayload:
        content = await self._complete(
            user_prompt=build_single_activity_prompt(request, replacement),
            system_prompt=SINGLE_ACTIVITY_SYSTEM_PROMPT,
            temperature=0.8,
            max_tokens=500,
        )
        raw = parse_json_text(self.provider, content)
        return ActivityPayload(
            activity=normalize_replacement_activity(self.provider, raw, replacement)
        )

    async def _complete(
        self, user_prompt: str, system_prompt: str, temperature: float, max_tokens: int
    ) -> str | None:
        assert self.client is not None
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                response_format={"type": "json_object"},
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise ProviderAuthError(self.provider, "Credentials rejected") from e
        except openai.RateLimitError as e:
            raise ProviderRateLimitError(self.provider, "Rate limit exceeded") from e
        except openai.APIConnectionError as e:
            raise ProviderError(self.provider, f"Connection failed: {type(e).__name__}") from e
        except openai.APIStatusError as e:
            raise ProviderError(self.provider, f"HTTP {e.status_code}") from e

        return response.choices[0].message.content if response.choices else None
