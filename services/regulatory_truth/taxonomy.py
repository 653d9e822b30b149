"""
Concept Taxonomy
================

Catalogue of the regulatory concepts rules are composed for.

A concept slug is the grouping key for the Composer and determines the
risk tier a rule is reviewed under. Unknown concepts are accepted but
reviewed as T1, which always requires a human.

Version: 0.1.0
"""

import re
from dataclasses import dataclass, field

from services.regulatory_truth.models.enums import RiskTier
from services.regulatory_truth.models.values import ValueKind


SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

UNKNOWN_CONCEPT_TIER = RiskTier.T1


@dataclass(frozen=True)
class ConceptDefinition:
    """One concept: canonical slug, review tier and expected value kind."""

    slug: str
    risk_tier: RiskTier
    value_kind: ValueKind | None = None
    aliases: tuple[str, ...] = ()
    description: str = ""
    known: bool = True


DEFAULT_CONCEPTS: tuple[ConceptDefinition, ...] = (
    ConceptDefinition(
        slug="vat-registration-threshold",
        risk_tier=RiskTier.T0,
        value_kind=ValueKind.THRESHOLD,
        aliases=("vat-threshold", "pdv-threshold", "vat-entry-threshold"),
        description="Annual turnover above which VAT registration is mandatory",
    ),
    ConceptDefinition(
        slug="vat-standard-rate",
        risk_tier=RiskTier.T0,
        value_kind=ValueKind.RATE,
        aliases=("vat-rate", "pdv-standard-rate"),
        description="Standard VAT rate",
    ),
    ConceptDefinition(
        slug="vat-reduced-rate",
        risk_tier=RiskTier.T1,
        value_kind=ValueKind.RATE,
        aliases=("vat-lower-rate",),
    ),
    ConceptDefinition(
        slug="flat-rate-tax-threshold",
        risk_tier=RiskTier.T0,
        value_kind=ValueKind.THRESHOLD,
        aliases=("lump-sum-threshold", "pausal-threshold"),
        description="Turnover ceiling for flat-rate (lump-sum) taxation",
    ),
    ConceptDefinition(
        slug="pension-contribution-rate",
        risk_tier=RiskTier.T1,
        value_kind=ValueKind.RATE,
        aliases=("pension-rate",),
    ),
    ConceptDefinition(
        slug="health-contribution-rate",
        risk_tier=RiskTier.T1,
        value_kind=ValueKind.RATE,
        aliases=("health-insurance-rate",),
    ),
    ConceptDefinition(
        slug="vat-return-deadline",
        risk_tier=RiskTier.T2,
        value_kind=ValueKind.DATE,
        aliases=("vat-filing-deadline",),
    ),
    ConceptDefinition(
        slug="annual-tax-return-deadline",
        risk_tier=RiskTier.T2,
        value_kind=ValueKind.DATE,
    ),
    ConceptDefinition(
        slug="vat-filing-frequency",
        risk_tier=RiskTier.T2,
        value_kind=ValueKind.CHOICE,
    ),
    ConceptDefinition(
        slug="cash-payment-limit",
        risk_tier=RiskTier.T2,
        value_kind=ValueKind.THRESHOLD,
    ),
    ConceptDefinition(
        slug="invoice-retention-period",
        risk_tier=RiskTier.T3,
        value_kind=ValueKind.CHOICE,
    ),
    ConceptDefinition(
        slug="e-invoice-format",
        risk_tier=RiskTier.T3,
        value_kind=ValueKind.CHOICE,
    ),
)


def normalize_slug(raw: str) -> str:
    """Lower-case and kebab-case a free-form concept name."""
    slug = re.sub(r"[^a-z0-9]+", "-", raw.strip().lower())
    return slug.strip("-")


@dataclass
class ConceptTaxonomy:
    """Lookup of concepts by slug or alias."""

    concepts: tuple[ConceptDefinition, ...] = DEFAULT_CONCEPTS
    _index: dict[str, ConceptDefinition] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        for concept in self.concepts:
            self._index[concept.slug] = concept
            for alias in concept.aliases:
                self._index[alias] = concept

    def resolve(self, slug: str) -> ConceptDefinition:
        """
        Resolve a slug or alias to its concept.

        Unknown slugs resolve to an ad-hoc T1 definition that accepts any
        value kind.
        """
        key = normalize_slug(slug)
        concept = self._index.get(key)
        if concept is not None:
            return concept
        return ConceptDefinition(
            slug=key,
            risk_tier=UNKNOWN_CONCEPT_TIER,
            known=False,
        )

    def canonical_slug(self, slug: str) -> str:
        return self.resolve(slug).slug

    def risk_tier(self, slug: str) -> RiskTier:
        return self.resolve(slug).risk_tier

    def is_known(self, slug: str) -> bool:
        return normalize_slug(slug) in self._index


default_taxonomy = ConceptTaxonomy()
