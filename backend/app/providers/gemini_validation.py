"""Gemini-backed location validation adapter."""

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from backend.app.models.common import ProviderRole
from backend.app.models.outcome import ValidationPayload
from backend.app.providers.base import (
    ProviderAdapter,
    ProviderAuthError,
    ProviderError,
    ProviderParseError,
    ProviderRateLimitError,
    ProviderTask,
)
from backend.app.providers.normalize import normalize_location_checks, parse_json_text
from backend.app.providers.prompts import VALIDATION_SYSTEM_PROMPT, build_validation_prompt


class GeminiValidationAdapter(ProviderAdapter):
    """Verifies every activity of a draft against Gemini's knowledge of the city."""

    role = ProviderRole.validation
    provider = "gemini"

    def __init__(
        self,
        api_key: str | None,
        model: str = "gemini-2.0-flash",
        client: genai.Client | None = None,
    ) -> None:
        self.model = model
        if client is not None:
            self.client: genai.Client | None = client
        elif api_key:
            self.client = genai.Client(api_key=api_key)
        else:
            self.client = None

    def is_configured(self) -> bool:
        return self.client is not None

    def describe(self) -> dict[str, object]:
        return {**super().describe(), "model": self.model}

    async def _call(self, task: ProviderTask) -> ValidationPayload:
        assert self.client is not None
        if task.draft is None:
            raise ProviderParseError(self.provider, "Validation requires a draft")

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=build_validation_prompt(task.draft),
                config=types.GenerateContentConfig(
                    system_instruction=VALIDATION_SYSTEM_PROMPT,
                    temperature=0.1,
                    response_mime_type="application/json",
                ),
            )
        except genai_errors.ClientError as e:
            if e.code in (401, 403):
                raise ProviderAuthError(self.provider, "Credentials rejected") from e
            if e.code == 429:
                raise ProviderRateLimitError(self.provider, "Rate limit exceeded") from e
            raise ProviderError(self.provider, f"HTTP {e.code}") from e
        except genai_errors.APIError as e:
            raise ProviderError(self.provider, f"HTTP {e.code}") from e

        raw = parse_json_text(self.provider, getattr(response, "text", None))
        checks = normalize_location_checks(self.provider, raw, task.draft)
        return ValidationPayload(checks=checks)
