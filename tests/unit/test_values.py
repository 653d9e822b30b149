"""
Rule Value Tests
================

Tests for value variants, window overlap and the concept taxonomy.

Version: 0.1.0
"""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from services.regulatory_truth.models import (
    ChoiceValue,
    DateValue,
    RateValue,
    RiskTier,
    ThresholdValue,
    parse_value,
    value_digest,
    values_agree,
    windows_overlap,
)
from services.regulatory_truth.models.values import _BaseValue
from services.regulatory_truth.taxonomy import ConceptTaxonomy, normalize_slug


# =============================================================================
# Value Variant Tests
# =============================================================================


class TestValueVariants:
    """Tests for tagged value parsing and agreement."""

    def test_threshold_amount_is_canonical(self) -> None:
        """Trailing zeros do not change a threshold."""
        a = ThresholdValue(amount=Decimal("40000.00"))
        b = ThresholdValue(amount=40000)

        assert a.agrees_with(b)
        assert a.display() == "40000 EUR"

    def test_threshold_currency_matters(self) -> None:
        """Same amount in another currency is a different value."""
        eur = ThresholdValue(amount=40000, currency="eur")
        hrk = ThresholdValue(amount=40000, currency="HRK")

        assert eur.currency == "EUR"
        assert not eur.agrees_with(hrk)

    def test_different_kinds_never_agree(self) -> None:
        """A rate and a threshold with the same number disagree."""
        assert not RateValue(percent=25).agrees_with(ThresholdValue(amount=25))

    def test_rate_bounds(self) -> None:
        """Rates above 100% are rejected."""
        with pytest.raises(ValidationError):
            RateValue(percent=Decimal("100.5"))

    def test_choice_is_normalized(self) -> None:
        """Choice options compare case and whitespace insensitively."""
        assert ChoiceValue(option="  Monthly ").agrees_with(ChoiceValue(option="monthly"))

    def test_parse_stored_json(self) -> None:
        """Stored JSON round-trips into the right variant."""
        stored = DateValue(value=date(2025, 1, 31)).to_json()
        parsed = parse_value(stored)

        assert isinstance(parsed, DateValue)
        assert parsed.value == date(2025, 1, 31)

    def test_values_agree_on_json(self) -> None:
        """values_agree accepts the stored form on either side."""
        assert values_agree({"kind": "rate", "percent": "25"}, RateValue(percent=Decimal("25.0")))

    def test_digest_ignores_formatting(self) -> None:
        """Equal values hash equally."""
        assert value_digest({"kind": "threshold", "amount": "40000.0"}) == value_digest(
            ThresholdValue(amount=40000)
        )

    def test_unknown_kind_rejected(self) -> None:
        """An unknown discriminator is a validation error."""
        with pytest.raises(ValidationError):
            parse_value({"kind": "percentage", "percent": 5})

    def test_base_value_is_abstract(self) -> None:
        """Every kind must define its own agreement and rendering."""
        with pytest.raises(TypeError):
            _BaseValue()


# =============================================================================
# Window Tests
# =============================================================================


class TestWindowsOverlap:
    """Tests for half-open effective window overlap."""

    def test_open_ended_windows_overlap(self) -> None:
        assert windows_overlap(date(2024, 1, 1), None, date(2025, 1, 1), None)

    def test_touching_windows_do_not_overlap(self) -> None:
        """[a, b) and [b, c) share no day."""
        assert not windows_overlap(date(2024, 1, 1), date(2025, 1, 1), date(2025, 1, 1), None)

    def test_nested_window_overlaps(self) -> None:
        assert windows_overlap(
            date(2024, 1, 1), date(2026, 1, 1), date(2025, 1, 1), date(2025, 6, 1)
        )

    def test_disjoint_windows(self) -> None:
        assert not windows_overlap(
            date(2023, 1, 1), date(2023, 6, 1), date(2024, 1, 1), None
        )


# =============================================================================
# Taxonomy Tests
# =============================================================================


class TestTaxonomy:
    """Tests for concept resolution."""

    @pytest.fixture
    def taxonomy(self) -> ConceptTaxonomy:
        return ConceptTaxonomy()

    def test_alias_resolves_to_canonical(self, taxonomy: ConceptTaxonomy) -> None:
        assert taxonomy.canonical_slug("PDV threshold") == "vat-registration-threshold"

    def test_known_tier(self, taxonomy: ConceptTaxonomy) -> None:
        assert taxonomy.risk_tier("vat-standard-rate") == RiskTier.T0

    def test_unknown_concept_requires_human_tier(self, taxonomy: ConceptTaxonomy) -> None:
        """Unknown concepts are accepted but reviewed as T1."""
        concept = taxonomy.resolve("Tourist Tax Rate")

        assert concept.slug == "tourist-tax-rate"
        assert concept.risk_tier == RiskTier.T1
        assert not concept.known
        assert not taxonomy.is_known("tourist-tax-rate")

    def test_normalize_slug(self) -> None:
        assert normalize_slug("  VAT -- Standard Rate ") == "vat-standard-rate"
