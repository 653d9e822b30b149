"""
Quote Provenance
================

Anchors extracted quotes in evidence text.

A quote proposed by the model is accepted only if it can be located in the
evidence: first as an exact substring, then after a deterministic
normalisation (NFKC, non-breaking spaces, soft hyphens, typographic quotes
and apostrophes, whitespace runs). In both cases the stored quote is the
literal slice of the original evidence, so `exact_quote` is always a true
substring. There is no fuzzy or similarity matching.

Version: 0.1.0
"""

import unicodedata
from dataclasses import dataclass
from enum import Enum

from services.regulatory_truth.errors import QuoteIntegrityError


_DOUBLE_QUOTES = frozenset("“”„‟«»‹›❝❞❮❯＂")
_SINGLE_QUOTES = frozenset("‘’‚‛′＇")
_SOFT_HYPHEN = "\u00ad"


class MatchType(str, Enum):
    EXACT = "exact"
    NORMALIZED = "normalized"


@dataclass(frozen=True)
class QuoteMatch:
    start: int
    end: int
    text: str
    match_type: MatchType


def _normalize_char(char: str) -> str:
    if char == _SOFT_HYPHEN:
        return ""
    if char in _DOUBLE_QUOTES:
        return '"'
    if char in _SINGLE_QUOTES:
        return "'"
    return unicodedata.normalize("NFKC", char)


def normalize_with_positions(text: str) -> tuple[str, list[int]]:
    """
    Normalise `text` and record, for every output character, the index of
    the original character it came from.
    """
    out: list[str] = []
    positions: list[int] = []

    for index, char in enumerate(text):
        for piece in _normalize_char(char):
            if piece.isspace():
                if not out or out[-1] == " ":
                    continue
                piece = " "
            out.append(piece)
            positions.append(index)

    if out and out[-1] == " ":
        out.pop()
        positions.pop()
    return "".join(out), positions


def normalize_for_match(text: str) -> str:
    return normalize_with_positions(text)[0]


def locate_quote(content: str, quote: str, hint: int = 0) -> QuoteMatch:
    """
    Find `quote` in `content`.

    Args:
        content: Evidence text
        quote: Quote proposed by the extractor
        hint: Preferred search start (e.g. the chunk offset); earlier
            occurrences are used only if none exists after it

    Returns:
        QuoteMatch whose `text` is `content[start:end]`

    Raises:
        QuoteIntegrityError: quote is empty or cannot be anchored
    """
    if not quote or not quote.strip():
        raise QuoteIntegrityError("empty quote")

    index = content.find(quote, hint)
    if index == -1:
        index = content.find(quote)
    if index != -1:
        return QuoteMatch(index, index + len(quote), quote, MatchType.EXACT)

    norm_quote = normalize_for_match(quote)
    if not norm_quote:
        raise QuoteIntegrityError("quote is empty after normalisation")

    norm_content, positions = normalize_with_positions(content)
    norm_hint = next((i for i, pos in enumerate(positions) if pos >= hint), 0)

    norm_index = norm_content.find(norm_quote, norm_hint)
    if norm_index == -1:
        norm_index = norm_content.find(norm_quote)
    if norm_index == -1:
        raise QuoteIntegrityError(
            "quote not found in evidence",
            quote_preview=quote[:80],
        )

    start = positions[norm_index]
    end = positions[norm_index + len(norm_quote) - 1] + 1
    return QuoteMatch(start, end, content[start:end], MatchType.NORMALIZED)


def quote_is_anchored(content: str, quote: str, start: int, end: int) -> bool:
    """True when the stored offsets still select exactly the stored quote."""
    return bool(quote) and 0 <= start < end <= len(content) and content[start:end] == quote
