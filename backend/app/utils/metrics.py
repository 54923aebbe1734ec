"""Prometheus metrics for provider invocations and generation attempts."""

from prometheus_client import Counter, Histogram

# Provider invocation metrics
provider_latency_ms = Histogram(
    "provider_latency_ms",
    "Provider invocation latency in milliseconds",
    ["role", "provider", "outcome"],
    buckets=[100, 250, 500, 1000, 2000, 5000, 10000, 20000, 40000, 60000],
)

provider_errors_total = Counter(
    "provider_errors_total",
    "Total provider invocation errors",
    ["role", "provider", "reason"],
)

# Generation attempt metrics
generation_total = Counter(
    "generation_total",
    "Total itinerary generation attempts",
    ["tier", "outcome"],
)

generation_fallbacks_total = Counter(
    "generation_fallbacks_total",
    "Total degraded enrichment stages",
    ["marker"],
)

generation_cache_hits_total = Counter(
    "generation_cache_hits_total",
    "Total drafting response cache hits",
)


class PrometheusGenerationMetrics:
    """Prometheus-based generation metrics implementation."""

    def record_provider(self, role: str, provider: str, outcome: str, latency_ms: float) -> None:
        """Record provider invocation latency."""
        provider_latency_ms.labels(role=role, provider=provider, outcome=outcome).observe(latency_ms)

    def inc_provider_error(self, role: str, provider: str, reason: str) -> None:
        """Increment provider error counter."""
        provider_errors_total.labels(role=role, provider=provider, reason=reason).inc()

    def inc_generation(self, tier: str, outcome: str) -> None:
        """Increment generation attempt counter."""
        generation_total.labels(tier=tier, outcome=outcome).inc()

    def inc_fallback(self, marker: str) -> None:
        """Increment degradation counter."""
        generation_fallbacks_total.labels(marker=marker).inc()

    def inc_cache_hit(self) -> None:
        """Increment cache hit counter."""
        generation_cache_hits_total.inc()
