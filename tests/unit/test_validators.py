"""
Fact Validator Tests
====================

Tests for number parsing, value construction and window checks.

Version: 0.1.0
"""

from datetime import date
from decimal import Decimal
from typing import Any

import pytest

from services.regulatory_truth.extraction import ExtractedFact, FactRejected, parse_facts, parse_number
from services.regulatory_truth.extraction.validators import (
    build_value,
    quote_mentions_value,
    validate_confidence,
    validate_slug,
    validate_window,
)
from services.regulatory_truth.models import DateValue, RateValue, ThresholdValue, ValueKind
from services.regulatory_truth.taxonomy import ConceptTaxonomy


def make_fact(**overrides: Any) -> ExtractedFact:
    data: dict[str, Any] = {
        "concept": "vat-registration-threshold",
        "value_kind": "threshold",
        "value": "60.000",
        "effective_from": "2025-01-01",
        "exact_quote": "iznosi 60.000 eura",
        "confidence": 0.95,
    }
    data.update(overrides)
    return ExtractedFact.model_validate(data)


class TestParseNumber:
    """Tests for European and English number notation."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("40.000", Decimal("40000")),
            ("40,000", Decimal("40000")),
            ("13,5", Decimal("13.5")),
            ("13.5", Decimal("13.5")),
            ("1.234.567,89", Decimal("1234567.89")),
            ("1,234.5", Decimal("1234.5")),
            ("60.000 EUR", Decimal("60000")),
            (25, Decimal("25")),
        ],
    )
    def test_notations(self, raw: Any, expected: Decimal) -> None:
        assert parse_number(raw) == expected

    def test_no_digits(self) -> None:
        with pytest.raises(FactRejected) as exc_info:
            parse_number("nema")
        assert exc_info.value.reason == "not_a_number"


class TestBuildValue:
    """Tests for value construction from proposed facts."""

    def test_threshold_defaults_to_eur(self) -> None:
        value = build_value(make_fact(), ValueKind.THRESHOLD)

        assert value == ThresholdValue(amount=60000, currency="EUR")

    def test_kind_mismatch(self) -> None:
        """A rate proposed for a threshold concept is rejected."""
        fact = make_fact(value_kind="rate", value="25")

        with pytest.raises(FactRejected) as exc_info:
            build_value(fact, ValueKind.THRESHOLD)
        assert exc_info.value.reason == "value_kind_mismatch"

    def test_unknown_concept_accepts_any_kind(self) -> None:
        fact = make_fact(value_kind="rate", value="13,5")

        assert build_value(fact, None) == RateValue(percent=Decimal("13.5"))

    def test_rate_out_of_range(self) -> None:
        with pytest.raises(FactRejected) as exc_info:
            build_value(make_fact(value_kind="rate", value="125"), None)
        assert exc_info.value.reason == "rate_out_of_range"

    def test_invalid_date(self) -> None:
        with pytest.raises(FactRejected) as exc_info:
            build_value(make_fact(value_kind="date", value="2025-13-01"), None)
        assert exc_info.value.reason == "invalid_date"

    def test_date_value(self) -> None:
        value = build_value(make_fact(value_kind="date", value="2025-01-31"), ValueKind.DATE)
        assert value == DateValue(value=date(2025, 1, 31))

    def test_boolean_value_is_malformed(self) -> None:
        with pytest.raises(ValueError):
            make_fact(value=True)


class TestWindowAndConfidence:
    """Tests for effective window and confidence bounds."""

    def test_inverted_window(self) -> None:
        with pytest.raises(FactRejected) as exc_info:
            validate_window(date(2025, 1, 1), date(2024, 1, 1))
        assert exc_info.value.reason == "window_inverted"

    def test_empty_window(self) -> None:
        with pytest.raises(FactRejected):
            validate_window(date(2025, 1, 1), date(2025, 1, 1))

    def test_implausible_year(self) -> None:
        with pytest.raises(FactRejected) as exc_info:
            validate_window(date(1970, 1, 1), None)
        assert exc_info.value.reason == "date_out_of_range"

    def test_open_window_ok(self) -> None:
        validate_window(date(2025, 1, 1), None)

    def test_confidence_bounds(self) -> None:
        assert validate_confidence(0.9) == 0.9
        with pytest.raises(FactRejected):
            validate_confidence(1.2)

    def test_slug_alias(self) -> None:
        assert validate_slug("VAT threshold", ConceptTaxonomy()) == "vat-registration-threshold"

    def test_slug_garbage(self) -> None:
        with pytest.raises(FactRejected):
            validate_slug("???", ConceptTaxonomy())


class TestQuoteMentionsValue:
    """Tests for the quote/value consistency check."""

    def test_threshold_in_european_notation(self) -> None:
        assert quote_mentions_value("iznosi 60.000 eura", ThresholdValue(amount=60000))

    def test_threshold_missing(self) -> None:
        assert not quote_mentions_value("iznosi 40.000 eura", ThresholdValue(amount=60000))

    def test_decimal_rate(self) -> None:
        assert quote_mentions_value("stopa od 13,5 %", RateValue(percent=Decimal("13.5")))

    def test_date_needs_year(self) -> None:
        value = DateValue(value=date(2025, 1, 31))
        assert quote_mentions_value("do 31. siječnja 2025.", value)
        assert not quote_mentions_value("do 31. siječnja", value)


class TestParseFacts:
    """Tests for parsing the model payload."""

    def test_missing_array(self) -> None:
        assert parse_facts({"result": []}) == ([], ["missing_facts_array"])

    def test_malformed_entries_counted(self) -> None:
        payload = {
            "facts": [
                make_fact().model_dump(mode="json"),
                {"concept": "x"},
            ]
        }

        facts, rejected = parse_facts(payload)

        assert len(facts) == 1
        assert rejected == ["malformed_fact"]
