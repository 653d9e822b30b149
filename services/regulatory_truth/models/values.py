"""
Rule Values
===========

Tagged variants for the value a rule or extracted fact asserts.

Each kind defines its own agreement semantics so conflict detection is
exhaustive: two values of different kinds never agree.

Version: 0.1.0
"""

import hashlib
import json
from abc import abstractmethod
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class ValueKind(str, Enum):
    THRESHOLD = "threshold"
    RATE = "rate"
    DATE = "date"
    CHOICE = "choice"


def _canonical_decimal(v: Decimal) -> Decimal:
    """Drop trailing zeros without switching to exponent notation."""
    return Decimal(format(v.normalize(), "f"))


class _BaseValue(BaseModel):
    """Shared behaviour of every value kind."""

    model_config = ConfigDict(frozen=True)

    @abstractmethod
    def agrees_with(self, other: "RuleValue") -> bool:
        """Same kind and same asserted value."""

    @abstractmethod
    def display(self) -> str:
        """Human-readable rendering for conflict reasons and logs."""

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ThresholdValue(_BaseValue):
    """Monetary amount (registration limits, caps)."""

    kind: Literal["threshold"] = "threshold"
    amount: Decimal = Field(..., ge=0)
    currency: str = Field(default="EUR", min_length=3, max_length=3)

    @field_validator("amount")
    @classmethod
    def canonical_amount(cls, v: Decimal) -> Decimal:
        return _canonical_decimal(v)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    def agrees_with(self, other: "RuleValue") -> bool:
        return (
            isinstance(other, ThresholdValue)
            and self.currency == other.currency
            and self.amount == other.amount
        )

    def display(self) -> str:
        return f"{self.amount.normalize():f} {self.currency}"


class RateValue(_BaseValue):
    """Percentage (tax and contribution rates)."""

    kind: Literal["rate"] = "rate"
    percent: Decimal = Field(..., ge=0, le=100)

    @field_validator("percent")
    @classmethod
    def canonical_percent(cls, v: Decimal) -> Decimal:
        return _canonical_decimal(v)

    def agrees_with(self, other: "RuleValue") -> bool:
        return isinstance(other, RateValue) and self.percent == other.percent

    def display(self) -> str:
        return f"{self.percent.normalize():f}%"


class DateValue(_BaseValue):
    """Calendar date (filing deadlines, cut-off dates)."""

    kind: Literal["date"] = "date"
    value: date

    def agrees_with(self, other: "RuleValue") -> bool:
        return isinstance(other, DateValue) and self.value == other.value

    def display(self) -> str:
        return self.value.isoformat()


class ChoiceValue(_BaseValue):
    """One option out of an enumerated set (e.g. filing frequency)."""

    kind: Literal["choice"] = "choice"
    option: str = Field(..., min_length=1, max_length=200)

    @field_validator("option")
    @classmethod
    def normalize_option(cls, v: str) -> str:
        return " ".join(v.split()).lower()

    def agrees_with(self, other: "RuleValue") -> bool:
        return isinstance(other, ChoiceValue) and self.option == other.option

    def display(self) -> str:
        return self.option


RuleValue = Annotated[
    Union[ThresholdValue, RateValue, DateValue, ChoiceValue],
    Field(discriminator="kind"),
]

_adapter: TypeAdapter[RuleValue] = TypeAdapter(RuleValue)


def parse_value(data: Any) -> RuleValue:
    """Validate a stored or proposed value into its variant."""
    if isinstance(data, _BaseValue):
        return data  # type: ignore[return-value]
    return _adapter.validate_python(data)


def values_agree(a: Any, b: Any) -> bool:
    """Compare two values in stored (JSON) or model form."""
    return parse_value(a).agrees_with(parse_value(b))


def value_digest(value: Any) -> str:
    """Stable digest of a value, used inside fingerprints."""
    canonical = json.dumps(parse_value(value).to_json(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()
