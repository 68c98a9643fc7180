"""Salary normalisation: provider salary encodings -> (formatted text, average yearly salary).

Two encodings are supported:

  1. Structured compensation: a closed set of range shapes (AtLeast, AtMost,
     Exactly, Range) tagged by ``__typename``, plus a unit of work.
  2. Legacy per-job salary lookups: a numeric average, a loosely formatted
     range string and a pay-period type.

Yearly conversion assumes a 48-week year of 5-day, 8-hour weeks.
"""

import logging
import re
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class SalaryUnit(str, Enum):
    YEAR = "YEAR"
    QUARTER = "QUARTER"
    MONTH = "MONTH"
    BIWEEK = "BIWEEK"
    WEEK = "WEEK"
    DAY = "DAY"
    HOUR = "HOUR"

    @property
    def yearly_multiplier(self) -> int:
        return _YEARLY_MULTIPLIERS[self]

    @property
    def suffix(self) -> str:
        return _UNIT_SUFFIXES[self]


_YEARLY_MULTIPLIERS: dict[SalaryUnit, int] = {
    SalaryUnit.YEAR: 1,
    SalaryUnit.QUARTER: 4,
    SalaryUnit.MONTH: 12,
    SalaryUnit.BIWEEK: 24,
    SalaryUnit.WEEK: 48,
    SalaryUnit.DAY: 48 * 5,
    SalaryUnit.HOUR: 48 * 5 * 8,
}

_UNIT_SUFFIXES: dict[SalaryUnit, str] = {
    SalaryUnit.YEAR: " a year",
    SalaryUnit.QUARTER: " a quarter",
    SalaryUnit.MONTH: " a month",
    SalaryUnit.BIWEEK: " every two weeks",
    SalaryUnit.WEEK: " a week",
    SalaryUnit.DAY: " a day",
    SalaryUnit.HOUR: " an hour",
}


# ---------------------------------------------------------------------------
# Structured salary ranges (closed sum type)
# ---------------------------------------------------------------------------


class _RangeShape(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class AtLeast(_RangeShape):
    typename: Literal["AtLeast"] = Field(default="AtLeast", alias="__typename")
    min: float


class AtMost(_RangeShape):
    typename: Literal["AtMost"] = Field(default="AtMost", alias="__typename")
    max: float


class Exactly(_RangeShape):
    typename: Literal["Exactly"] = Field(default="Exactly", alias="__typename")
    value: float


class Range(_RangeShape):
    typename: Literal["Range"] = Field(default="Range", alias="__typename")
    min: float
    max: float


SalaryRange = Annotated[AtLeast | AtMost | Exactly | Range, Field(discriminator="typename")]


def average_salary(salary_range: AtLeast | AtMost | Exactly | Range) -> float | None:
    """Average value of a salary range, in the range's own unit.

    A Range bound below 1 means "unbounded" on that side, so only the other
    bound is used. When neither bound is usable there is no average.
    """
    match salary_range:
        case AtLeast(min=low):
            return low
        case AtMost(max=high):
            return high
        case Exactly(value=value):
            return value
        case Range(min=low, max=high):
            if low < 1 and high < 1:
                return None
            if low < 1:
                return high
            if high < 1:
                return low
            return (low + high) / 2
    msg = f"Unknown salary range shape {type(salary_range).__name__}"
    raise TypeError(msg)


def _money(amount: float, currency: str) -> str:
    return f"{currency}{amount:,.0f}"


def format_salary_range(
    salary_range: AtLeast | AtMost | Exactly | Range,
    unit: SalaryUnit,
    currency: str = "£",
) -> str | None:
    """Human-readable salary for providers that send numbers but no text."""
    match salary_range:
        case AtLeast(min=low):
            text = f"From {_money(low, currency)}"
        case AtMost(max=high):
            text = f"Up to {_money(high, currency)}"
        case Exactly(value=value):
            text = _money(value, currency)
        case Range(min=low, max=high):
            if low < 1 and high < 1:
                return None
            if low < 1:
                text = f"Up to {_money(high, currency)}"
            elif high < 1:
                text = f"From {_money(low, currency)}"
            else:
                text = f"{_money(low, currency)} - {_money(high, currency)}"
        case _:
            return None
    return text + unit.suffix


class BaseSalary(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    range: SalaryRange
    unit_of_work: SalaryUnit = Field(alias="unitOfWork")

    def avg_yearly_salary(self) -> int | None:
        """Average truncated to a whole amount, then scaled to a year."""
        average = average_salary(self.range)
        if average is None:
            return None
        return int(average) * self.unit_of_work.yearly_multiplier

    def formatted_text(self, currency: str = "£") -> str | None:
        return format_salary_range(self.range, self.unit_of_work, currency)


class EstimatedCompensation(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    base_salary: BaseSalary | None = Field(default=None, alias="baseSalary")
    formatted_text: str | None = Field(default=None, alias="formattedText")


class Compensation(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    base_salary: BaseSalary | None = Field(default=None, alias="baseSalary")
    estimated: EstimatedCompensation | None = None
    formatted_text: str | None = Field(default=None, alias="formattedText")


def normalize_compensation(
    compensation: Compensation | None,
    currency: str = "£",
) -> tuple[str | None, int | None]:
    """Return (formatted salary, average yearly salary) for structured compensation.

    The advertised salary takes priority over the provider's estimate; an
    estimate's text is marked "(estimated)". When the provider sends numbers
    without text, the text is built from the range.
    """
    if compensation is None:
        return None, None

    estimated = compensation.estimated
    formatted = compensation.formatted_text
    if not formatted and estimated is not None and estimated.formatted_text:
        formatted = f"{estimated.formatted_text} (estimated)"
    if not formatted and compensation.base_salary is not None:
        formatted = compensation.base_salary.formatted_text(currency)
    if not formatted and estimated is not None and estimated.base_salary is not None:
        text = estimated.base_salary.formatted_text(currency)
        formatted = f"{text} (estimated)" if text else None

    yearly: int | None = None
    if compensation.base_salary is not None:
        yearly = compensation.base_salary.avg_yearly_salary()
    if yearly is None and estimated is not None and estimated.base_salary is not None:
        yearly = estimated.base_salary.avg_yearly_salary()

    return formatted or None, yearly


# ---------------------------------------------------------------------------
# Legacy salary lookups
# ---------------------------------------------------------------------------

_RANGE_PATTERN = re.compile(
    r"[^\d]*(?P<lower>[\d,]+(?:\.\d+)?)(?: - [^\d-]*(?P<upper>-?[\d,]+(?:\.\d+)?))?"
)

# Legacy pay-period type -> (suffix, yearly multiplier)
_LEGACY_TYPES: dict[str, tuple[str, int]] = {
    "YEARLY": (" a year", 1),
    "MONTHLY": (" a month", 12),
    "WEEKLY": (" a week", 48),
    "DAILY": (" a day", 48 * 5),
    "HOURLY": (" an hour", 48 * 5 * 8),
}


class LegacySalary(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    average: float | None = Field(default=None, alias="sAvg")
    range: str | None = Field(default=None, alias="sRg")
    type: str | None = Field(default=None, alias="sT")


class LegacySalaryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    expected: LegacySalary | None = Field(default=None, alias="sEx")
    formatted: str | None = Field(default=None, alias="ssT")


def _parse_amount(text: str | None) -> float | None:
    if not text:
        return None
    try:
        return float(text.replace(",", ""))
    except ValueError:
        return None


def normalize_legacy_salary(
    response: LegacySalaryResponse,
    currency: str = "£",
) -> tuple[str | None, int | None]:
    """Return (formatted salary, average yearly salary) for a legacy salary lookup.

    Works around quirks of the raw range: "Up to £x" salaries arrive with a
    lower bound of 0 (which drags the provider average towards zero), and
    "From £x" salaries arrive with an upper bound of -1.
    """
    expected = response.expected
    formatted = response.formatted or None
    if expected is None:
        return formatted, None

    synthesised = False
    average = expected.average
    match = _RANGE_PATTERN.match(expected.range) if expected.range else None

    if match is not None:
        lower = _parse_amount(match.group("lower"))
        upper = _parse_amount(match.group("upper"))
        if lower is not None and upper is not None:
            if lower == 0:
                if not formatted:
                    formatted = f"Up to {_money(upper, currency)}"
                    synthesised = True
                average = upper
            elif upper == -1:
                if not formatted:
                    formatted = f"From {_money(lower, currency)}"
                    synthesised = True
                average = lower
            else:
                if not formatted:
                    formatted = expected.range
                    synthesised = True
                average = (lower + upper) / 2
        elif lower is not None:
            if not formatted:
                formatted = expected.range
                synthesised = True
            if average is None:
                average = lower
    elif expected.range and not formatted:
        formatted = expected.range
        synthesised = True

    yearly: int | None = None
    legacy_type = _LEGACY_TYPES.get((expected.type or "").upper())
    if legacy_type is not None:
        suffix, multiplier = legacy_type
        if average is not None:
            yearly = int(average * multiplier)
        if synthesised and formatted:
            formatted += suffix
    elif expected.type:
        logger.debug("Unknown legacy salary type '%s'", expected.type)

    return formatted, yearly
