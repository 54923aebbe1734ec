"""Global pytest configuration."""

import os

# Keep tests offline: no vendor keys or external services before any imports
for _key in (
    "OPENAI_API_KEY",
    "GEMINI_API_KEY",
    "ANTHROPIC_API_KEY",
    "REDIS_URL",
    "GAMIFICATION_AWARD_URL",
):
    os.environ.pop(_key, None)
