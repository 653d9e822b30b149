"""
Collector Package
=================

Rate-limited fetching and evidence capture.
"""

from services.regulatory_truth.collector.collector import (
    CollectOutcome,
    CollectResult,
    Collector,
    content_hash,
)
from services.regulatory_truth.collector.fetcher import (
    FetchedContent,
    Fetcher,
    HttpFetcher,
    html_to_text,
)
from services.regulatory_truth.collector.rate_limiter import (
    DomainRateLimiter,
    DomainState,
    RateLimitConfig,
    domain_of,
)

__all__ = [
    "CollectOutcome",
    "CollectResult",
    "Collector",
    "DomainRateLimiter",
    "DomainState",
    "FetchedContent",
    "Fetcher",
    "HttpFetcher",
    "RateLimitConfig",
    "content_hash",
    "domain_of",
    "html_to_text",
]
