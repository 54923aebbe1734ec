"""Structured logging for provider invocations."""

import logging
from typing import Any

from backend.app.models.outcome import ProviderResult

logger = logging.getLogger(__name__)


class StructuredProviderLogger:
    """Structured logger for provider invocations."""

    def log_invocation(
        self,
        request_id: str,
        result: ProviderResult,
        attempt: int = 1,
    ) -> None:
        """Log one provider invocation with structured data."""
        outcome = "success" if result.success else (result.error_kind.value if result.error_kind else "error")
        log_data: dict[str, Any] = {
            "request_id": request_id,
            "role": result.role.value,
            "provider": result.provider,
            "attempt": attempt,
            "outcome": outcome,
            "latency_ms": round(result.latency_ms, 2),
        }

        if result.detail:
            log_data["error_reason"] = result.detail

        log_msg = f"Provider invocation: {result.role.value}/{result.provider} - {outcome}"

        if result.success:
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})

    def log_cache_hit(self, request_id: str, fingerprint: str) -> None:
        """Log a response cache hit."""
        logger.info(
            "Provider invocation: drafting - cache_hit",
            extra={
                "structured": {
                    "request_id": request_id,
                    "role": "drafting",
                    "outcome": "cache_hit",
                    "fingerprint": fingerprint[:12],
                }
            },
        )
