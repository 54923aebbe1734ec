"""Anthropic-backed quality assurance adapter."""

import anthropic

from backend.app.models.common import ProviderRole, QALevel
from backend.app.models.outcome import QualityPayload
from backend.app.providers.base import (
    ProviderAdapter,
    ProviderAuthError,
    ProviderError,
    ProviderParseError,
    ProviderRateLimitError,
    ProviderTask,
)
from backend.app.providers.normalize import normalize_quality_review, parse_json_text
from backend.app.providers.prompts import QA_SYSTEM_PROMPT, build_qa_prompt

_MAX_TOKENS = {QALevel.quick: 1000, QALevel.basic: 1500, QALevel.full: 4000}


class AnthropicQualityAdapter(ProviderAdapter):
    """Advisory itinerary review; basic or full depth by QA level."""

    role = ProviderRole.qa
    provider = "anthropic"

    def __init__(
        self,
        api_key: str | None,
        model: str = "claude-sonnet-4-20250514",
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self.model = model
        if client is not None:
            self.client: anthropic.AsyncAnthropic | None = client
        elif api_key:
            self.client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)
        else:
            self.client = None

    def is_configured(self) -> bool:
        return self.client is not None

    def describe(self) -> dict[str, object]:
        return {**super().describe(), "model": self.model}

    async def _call(self, task: ProviderTask) -> QualityPayload:
        assert self.client is not None
        if task.draft is None:
            raise ProviderParseError(self.provider, "Quality review requires a draft")

        level = task.qa_level if task.qa_level != QALevel.none else QALevel.basic

        try:
            message = await self.client.messages.create(
                model=self.model,
                max_tokens=_MAX_TOKENS[level],
                temperature=0,
                system=QA_SYSTEM_PROMPT,
                messages=[
                    {"role": "user", "content": build_qa_prompt(task.draft, task.checks, level)}
                ],
            )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise ProviderAuthError(self.provider, "Credentials rejected") from e
        except anthropic.RateLimitError as e:
            raise ProviderRateLimitError(self.provider, "Rate limit exceeded") from e
        except anthropic.APIConnectionError as e:
            raise ProviderError(self.provider, f"Connection failed: {type(e).__name__}") from e
        except anthropic.APIStatusError as e:
            raise ProviderError(self.provider, f"HTTP {e.status_code}") from e

        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
        raw = parse_json_text(self.provider, text)
        return QualityPayload(review=normalize_quality_review(self.provider, raw, level))
