"""
Typed campaign rules.

Campaign.rules is free-form JSON in the database. It is decoded here, once,
into one of the rule types below so the evaluator never touches raw dicts.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from loyalty.exceptions import CampaignEvaluationSkipped
from loyalty.models import Campaign

DEFAULT_WELCOME_POINTS = 100


@dataclass(frozen=True)
class DoublePoints:
    multiplier: Decimal


@dataclass(frozen=True)
class CategoryBonus:
    target_category_id: int
    bonus_rate: Decimal


@dataclass(frozen=True)
class SpendingGoal:
    min_amount: Decimal
    bonus_points: int


@dataclass(frozen=True)
class Welcome:
    points: int


@dataclass(frozen=True)
class Unsupported:
    """A campaign type this version does not know. Always worth 0 points."""

    campaign_type: str


CampaignRules = Union[DoublePoints, CategoryBonus, SpendingGoal, Welcome, Unsupported]


def _decimal(campaign_type, rules, key, minimum=None):
    if key not in rules:
        raise CampaignEvaluationSkipped(campaign_type, f"missing '{key}'")
    value = rules[key]
    if isinstance(value, bool):
        raise CampaignEvaluationSkipped(campaign_type, f"'{key}' must be a number")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise CampaignEvaluationSkipped(campaign_type, f"'{key}' must be a number") from None
    if not number.is_finite():
        raise CampaignEvaluationSkipped(campaign_type, f"'{key}' must be finite")
    if minimum is not None and number < minimum:
        raise CampaignEvaluationSkipped(campaign_type, f"'{key}' must be >= {minimum}")
    return number


def _integer(campaign_type, rules, key, minimum=0):
    number = _decimal(campaign_type, rules, key, minimum=minimum)
    if number != number.to_integral_value():
        raise CampaignEvaluationSkipped(campaign_type, f"'{key}' must be an integer")
    return int(number)


def decode_rules(campaign_type: str, rules: Optional[dict]) -> CampaignRules:
    """
    Decode raw JSON rules for a campaign type.

    Raises CampaignEvaluationSkipped when the rules of a known type are malformed.
    Unknown types decode to Unsupported so newer campaign kinds do not break earning.
    """
    if rules is None:
        rules = {}
    if not isinstance(rules, dict):
        raise CampaignEvaluationSkipped(campaign_type, "rules must be an object")

    if campaign_type == Campaign.DOUBLE_POINTS:
        return DoublePoints(multiplier=_decimal(campaign_type, rules, "multiplier", minimum=1))

    if campaign_type == Campaign.CATEGORY_BONUS:
        return CategoryBonus(
            target_category_id=_integer(campaign_type, rules, "target_category_id"),
            bonus_rate=_decimal(campaign_type, rules, "bonus_rate", minimum=0),
        )

    if campaign_type == Campaign.SPENDING_GOAL:
        return SpendingGoal(
            min_amount=_decimal(campaign_type, rules, "min_amount", minimum=0),
            bonus_points=_integer(campaign_type, rules, "bonus_points"),
        )

    if campaign_type == Campaign.WELCOME:
        # Older campaigns stored the amount under 'welcome_points'.
        for key in ("points", "welcome_points"):
            if key in rules:
                return Welcome(points=_integer(campaign_type, rules, key))
        return Welcome(points=DEFAULT_WELCOME_POINTS)

    return Unsupported(campaign_type=campaign_type)
