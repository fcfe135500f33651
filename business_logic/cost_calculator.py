"""
Line item cost calculation.

Derives a line item's total cost from its rate model, rate and units.
All money values are Decimals rounded half-up to two places.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union

from models.data_models import RateModel

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
THOUSAND = Decimal(1000)

# Rate models billed per thousand units; everything else is billed per unit
PER_MILLE_MODELS = (RateModel.CPM, RateModel.DCPM)
PER_UNIT_MODELS = (RateModel.CPCV, RateModel.CPC)

Number = Union[Decimal, int, float, str, None]


def normalize_rate_model(value: Any) -> Optional[RateModel]:
    """
    Resolve a rate model name to a RateModel.

    Matching is case-insensitive, so "dcpm" and "DCPM" both give dCPM.
    Returns None for unrecognized values.
    """
    if isinstance(value, RateModel):
        return value
    if value is None:
        return None

    name = str(value).strip().upper()
    for rate_model in RateModel:
        if rate_model.value.upper() == name:
            return rate_model
    return None


def to_decimal(value: Number, default: Decimal = ZERO) -> Decimal:
    """
    Parse a value as a finite, non-negative Decimal.

    Anything that does not parse (blank, text, NaN, infinity, negative)
    gives the default.
    """
    if value is None:
        return default
    if isinstance(value, Decimal):
        number = value
    else:
        text = str(value).strip().replace(",", "").lstrip("$")
        if not text:
            return default
        try:
            number = Decimal(text)
        except (InvalidOperation, ValueError):
            return default

    if not number.is_finite() or number < 0:
        return default
    return number


def quantize_money(value: Number) -> Decimal:
    """Round to two decimal places, half-up."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_money(value: Number) -> str:
    """Fixed two-decimal string, e.g. '25000.00'."""
    return f"{quantize_money(value):f}"


def compute_total_cost(rate_model: Any, rate: Number, units: Number) -> Decimal:
    """
    Compute a line item's total cost.

    Args:
        rate_model: CPM, dCPM, CPCV or CPC. Unrecognized models use the CPM formula.
        rate: Price per thousand (CPM/dCPM) or per unit (CPCV/CPC)
        units: Impressions, completed views or clicks

    Returns:
        Total cost rounded to two decimal places
    """
    rate_value = to_decimal(rate)
    units_value = to_decimal(units)

    if normalize_rate_model(rate_model) in PER_UNIT_MODELS:
        total = rate_value * units_value
    else:
        total = rate_value * units_value / THOUSAND

    return total.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def compute_avg_cpm(total_budget: Number, total_impressions: int) -> Decimal:
    """Average CPM for a budget over impressions; 0.00 when there are no impressions."""
    if not total_impressions or total_impressions <= 0:
        return ZERO
    avg = to_decimal(total_budget) / Decimal(total_impressions) * THOUSAND
    return avg.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
