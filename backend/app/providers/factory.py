"""Build the provider pool from settings."""

import logging

from pydantic import SecretStr

from backend.app.config import Settings
from backend.app.models.common import ProviderRole
from backend.app.providers.anthropic_qa import AnthropicQualityAdapter
from backend.app.providers.base import ProviderAdapter, ProviderPool
from backend.app.providers.gemini_validation import GeminiValidationAdapter
from backend.app.providers.openai_drafting import OpenAIDraftingAdapter
from backend.app.providers.stub import DeterministicDraftingAdapter

logger = logging.getLogger(__name__)


def _secret(value: SecretStr | None) -> str | None:
    if value is None:
        return None
    return value.get_secret_value() or None


def build_provider_pool(settings: Settings) -> ProviderPool:
    """Bind each role to its adapter.

    Drafting is always bound (OpenAI if keyed, deterministic stub otherwise);
    validation and QA are bound only when their keys are configured.

    Returns:
        ProviderPool for the orchestrator
    """
    adapters: dict[ProviderRole, ProviderAdapter] = {}

    openai_key = _secret(settings.openai_api_key)
    if openai_key:
        logger.info("Using OpenAI for drafting")
        adapters[ProviderRole.drafting] = OpenAIDraftingAdapter(openai_key, settings.openai_model)
    else:
        logger.warning("No OpenAI API key configured, using deterministic drafting stub")
        adapters[ProviderRole.drafting] = DeterministicDraftingAdapter()

    gemini_key = _secret(settings.gemini_api_key)
    if gemini_key:
        adapters[ProviderRole.validation] = GeminiValidationAdapter(gemini_key, settings.gemini_model)
    else:
        logger.info("No Gemini API key configured, location validation disabled")

    anthropic_key = _secret(settings.anthropic_api_key)
    if anthropic_key:
        adapters[ProviderRole.qa] = AnthropicQualityAdapter(anthropic_key, settings.anthropic_model)
    else:
        logger.info("No Anthropic API key configured, quality assurance disabled")

    return ProviderPool(adapters)
