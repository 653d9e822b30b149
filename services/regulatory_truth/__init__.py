"""
Regulatory Truth Service
========================

Turns monitored regulatory sources into versioned, citable compliance rules.

Stages:
- Collector: rate-limited fetching and immutable evidence capture
- Extractor: quote-verified fact extraction
- Composer: rule synthesis and conflict detection per concept
- Reviewer / Arbiter: tiered confidence review and conflict resolution
- Releaser: semantically versioned publication

Port: 8010
"""

__version__ = "0.1.0"
