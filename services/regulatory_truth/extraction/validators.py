"""
Fact Validators
===============

Deterministic checks applied to every fact the model proposes before it
can become a SourcePointer. Nothing here calls a model.

Version: 0.1.0
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from services.regulatory_truth.models.values import (
    ChoiceValue,
    DateValue,
    RateValue,
    RuleValue,
    ThresholdValue,
    ValueKind,
)
from services.regulatory_truth.taxonomy import SLUG_PATTERN, ConceptTaxonomy, normalize_slug


MIN_EFFECTIVE_YEAR = 1990
MAX_EFFECTIVE_YEAR = 2100

# Largest plausible regulatory amount
MAX_AMOUNT = Decimal("100000000000")


class FactRejected(ValueError):
    """A proposed fact failed validation; `reason` is a short machine code."""

    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


class ExtractedFact(BaseModel):
    """One fact as proposed by the model, before validation."""

    concept: str = Field(..., min_length=1)
    value_kind: ValueKind
    value: str | int | float
    currency: str | None = None
    effective_from: date
    effective_until: date | None = None
    exact_quote: str = Field(..., min_length=1)
    confidence: float
    notes: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def reject_boolean(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("boolean is not a value")
        return v


def parse_facts(payload: dict[str, Any]) -> tuple[list[ExtractedFact], list[str]]:
    """
    Parse the model's `facts` array.

    Returns:
        (parsed facts, rejection reasons for malformed entries)
    """
    raw = payload.get("facts")
    if not isinstance(raw, list):
        return [], ["missing_facts_array"]

    facts: list[ExtractedFact] = []
    rejected: list[str] = []
    for item in raw:
        try:
            facts.append(ExtractedFact.model_validate(item))
        except ValidationError:
            rejected.append("malformed_fact")
    return facts, rejected


def parse_number(raw: str | int | float) -> Decimal:
    """
    Parse a number written in either European or English notation.

    "40.000" and "40,000" are thousands; "13,5" and "13.5" are decimals.
    """
    if isinstance(raw, (int, float)):
        return Decimal(str(raw))

    text = re.sub(r"[^\d.,\-]", "", raw)
    if not re.search(r"\d", text):
        raise FactRejected("not_a_number", raw)

    if "," in text and "." in text:
        # The right-most separator is the decimal mark
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif text.count(",") == 1 and len(text.split(",")[1]) != 3:
        text = text.replace(",", ".")
    elif text.count(".") == 1 and len(text.split(".")[1]) == 3:
        text = text.replace(".", "")
    else:
        text = text.replace(",", "")
        if text.count(".") > 1:
            text = text.replace(".", "")

    try:
        return Decimal(text)
    except InvalidOperation as e:
        raise FactRejected("not_a_number", raw) from e


def validate_slug(raw: str, taxonomy: ConceptTaxonomy) -> str:
    slug = taxonomy.canonical_slug(normalize_slug(raw))
    if not slug or not SLUG_PATTERN.match(slug):
        raise FactRejected("invalid_concept_slug", raw)
    return slug


def validate_confidence(confidence: float) -> float:
    if not 0.0 <= confidence <= 1.0:
        raise FactRejected("confidence_out_of_range", str(confidence))
    return confidence


def validate_window(effective_from: date, effective_until: date | None) -> None:
    for day in (effective_from, effective_until):
        if day is not None and not MIN_EFFECTIVE_YEAR <= day.year <= MAX_EFFECTIVE_YEAR:
            raise FactRejected("date_out_of_range", day.isoformat())
    if effective_until is not None and effective_until <= effective_from:
        raise FactRejected("window_inverted", f"{effective_from} >= {effective_until}")


def build_value(fact: ExtractedFact, expected_kind: ValueKind | None) -> RuleValue:
    """Turn the proposed value into its tagged variant, with range checks."""
    if expected_kind is not None and fact.value_kind != expected_kind:
        raise FactRejected(
            "value_kind_mismatch",
            f"{fact.concept} expects {expected_kind.value}, got {fact.value_kind.value}",
        )

    if fact.value_kind == ValueKind.THRESHOLD:
        amount = parse_number(fact.value)
        if amount < 0 or amount > MAX_AMOUNT:
            raise FactRejected("amount_out_of_range", str(amount))
        return ThresholdValue(amount=amount, currency=(fact.currency or "EUR"))

    if fact.value_kind == ValueKind.RATE:
        percent = parse_number(fact.value)
        if not Decimal(0) <= percent <= Decimal(100):
            raise FactRejected("rate_out_of_range", str(percent))
        return RateValue(percent=percent)

    if fact.value_kind == ValueKind.DATE:
        try:
            day = date.fromisoformat(str(fact.value))
        except ValueError as e:
            raise FactRejected("invalid_date", str(fact.value)) from e
        if not MIN_EFFECTIVE_YEAR <= day.year <= MAX_EFFECTIVE_YEAR:
            raise FactRejected("date_out_of_range", day.isoformat())
        return DateValue(value=day)

    option = str(fact.value).strip()
    if not option:
        raise FactRejected("empty_choice")
    return ChoiceValue(option=option)


def _digits(text: str) -> str:
    return re.sub(r"\D", "", text)


def quote_mentions_value(quote: str, value: RuleValue) -> bool:
    """
    The quote must contain the value it supports.

    Numbers are compared on their digits so "40.000 EUR" supports 40000;
    dates need their year in the quote; choices are not checked.
    """
    if isinstance(value, ThresholdValue):
        return _digits(format(value.amount, "f")) in _digits(quote)
    if isinstance(value, RateValue):
        return _digits(format(value.percent, "f")) in _digits(quote)
    if isinstance(value, DateValue):
        return str(value.value.year) in quote
    return True
