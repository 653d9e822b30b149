"""
Extraction Package
==================

Evidence chunking, model-backed fact proposal, validation and quote
provenance.
"""

from services.regulatory_truth.extraction.chunking import (
    Chunk,
    ChunkingStrategy,
    ContentChunker,
)
from services.regulatory_truth.extraction.extractor import (
    MIN_FACT_CONFIDENCE,
    ExtractResult,
    Extractor,
    pointer_fingerprint,
)
from services.regulatory_truth.extraction.provenance import (
    MatchType,
    QuoteMatch,
    locate_quote,
    normalize_for_match,
    quote_is_anchored,
)
from services.regulatory_truth.extraction.validators import (
    ExtractedFact,
    FactRejected,
    parse_facts,
    parse_number,
)

__all__ = [
    "Chunk",
    "ChunkingStrategy",
    "ContentChunker",
    "ExtractResult",
    "ExtractedFact",
    "Extractor",
    "FactRejected",
    "MIN_FACT_CONFIDENCE",
    "MatchType",
    "QuoteMatch",
    "locate_quote",
    "normalize_for_match",
    "parse_facts",
    "parse_number",
    "pointer_fingerprint",
    "quote_is_anchored",
]
