from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Total number of identification requests (image, upload, sound, description)
identify_requests_total = Counter(
    "identify_requests_total", "Total identification requests", ["source"]
)

# AI round-trips are slow; buckets up to half a minute
_identify_latency_buckets = (
    0.5,
    1.0,
    2.0,
    4.0,
    8.0,
    16.0,
    32.0,
)

# Time spent in the AI call plus normalization
identify_latency_seconds = Histogram(
    "identify_latency_seconds",
    "Identification latency",
    buckets=_identify_latency_buckets,
)

# Incremented when the call to the OpenAI API times out
ai_timeout_total = Counter(
    "ai_timeout_total", "Number of AI timeouts"
)

# AI answers rejected by the normalizer
normalization_fail_total = Counter(
    "normalization_fail_total", "Rejected AI responses", ["reason"]
)

# Quota rejects when hitting the free daily limit
quota_reject_total = Counter(
    "quota_reject_total", "Number of quota rejected requests"
)

sighting_limit_reject_total = Counter(
    "sighting_limit_reject_total", "Number of sightings rejected by the plan cap"
)

stripe_webhook_total = Counter(
    "stripe_webhook_total", "Stripe webhook events received", ["event_type"]
)

__all__ = [
    "identify_requests_total",
    "identify_latency_seconds",
    "ai_timeout_total",
    "normalization_fail_total",
    "quota_reject_total",
    "sighting_limit_reject_total",
    "stripe_webhook_total",
]
