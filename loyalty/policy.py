"""
Brand-configured loyalty policy.

Each brand may store three JSON documents in loyalty_settings:

    point_rules       {"points_per_currency": 1, "enable_double_points": false,
                       "double_points_days": [0, 6]}
    tier_rules        {"tiers": {"SILVER": {"min_points": 1000}, ...},
                       "validity_days": 365}
    redemption_rules  {"points_to_currency_ratio": 100, "max_discount_percentage": 50,
                       "min_points_to_redeem": 0}

Weekdays follow the ordering backend's convention: 0 = Sunday ... 6 = Saturday.
Missing documents or keys fall back to the defaults below.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Dict, FrozenSet

from django.utils import timezone

from loyalty.models import LoyaltyAccount, LoyaltySetting

logger = logging.getLogger(__name__)

DEFAULT_TIER_THRESHOLDS = {
    LoyaltyAccount.BRONZE: 0,
    LoyaltyAccount.SILVER: 1000,
    LoyaltyAccount.GOLD: 5000,
    LoyaltyAccount.PLATINUM: 10000,
}


class PolicyError(ValueError):
    """A stored policy document cannot be decoded."""


def floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _number(document, key, default, minimum=None):
    raw = document.get(key, default)
    if isinstance(raw, bool):
        raise PolicyError(f"'{key}' must be a number")
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise PolicyError(f"'{key}' must be a number") from None
    if not value.is_finite():
        raise PolicyError(f"'{key}' must be finite")
    if minimum is not None and value < minimum:
        raise PolicyError(f"'{key}' must be >= {minimum}")
    return value


def js_weekday(moment: datetime) -> int:
    """Weekday of `moment` in brand-local time, 0 = Sunday."""
    return (timezone.localtime(moment).weekday() + 1) % 7


@dataclass(frozen=True)
class PointRules:
    points_per_currency: Decimal = Decimal("1")
    enable_double_points: bool = False
    double_points_days: FrozenSet[int] = frozenset()

    @classmethod
    def decode(cls, document):
        document = document or {}
        if not isinstance(document, dict):
            raise PolicyError("point_rules must be an object")
        days = document.get("double_points_days", [])
        if not isinstance(days, list) or any(
            isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6 for day in days
        ):
            raise PolicyError("'double_points_days' must be a list of weekdays 0-6")
        enabled = document.get("enable_double_points", False)
        if not isinstance(enabled, bool):
            raise PolicyError("'enable_double_points' must be a boolean")
        return cls(
            points_per_currency=_number(document, "points_per_currency", 1, minimum=0),
            enable_double_points=enabled,
            double_points_days=frozenset(days),
        )

    def is_double_points_day(self, moment: datetime) -> bool:
        return self.enable_double_points and js_weekday(moment) in self.double_points_days

    def base_points(self, total_price, moment: datetime):
        """
        Points an order total is worth before campaigns.
        Returns (points, doubled).
        """
        points = floor_int(Decimal(total_price) * self.points_per_currency)
        doubled = self.is_double_points_day(moment)
        if doubled:
            points *= 2
        return points, doubled


@dataclass(frozen=True)
class TierRules:
    thresholds: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TIER_THRESHOLDS))
    validity_days: int = 365

    @classmethod
    def decode(cls, document):
        document = document or {}
        if not isinstance(document, dict):
            raise PolicyError("tier_rules must be an object")
        tiers = document.get("tiers", {})
        if not isinstance(tiers, dict):
            raise PolicyError("'tiers' must be an object")

        thresholds = dict(DEFAULT_TIER_THRESHOLDS)
        for tier, config in tiers.items():
            if tier not in thresholds:
                raise PolicyError(f"Unknown tier '{tier}'")
            if not isinstance(config, dict):
                raise PolicyError(f"Tier '{tier}' must be an object")
            thresholds[tier] = int(_number(config, "min_points", thresholds[tier], minimum=0))

        ordered = [thresholds[tier] for tier in LoyaltyAccount.TIER_ORDER]
        if ordered != sorted(ordered):
            raise PolicyError("Tier thresholds must ascend from BRONZE to PLATINUM")

        validity_days = int(_number(document, "validity_days", 365, minimum=1))
        return cls(thresholds=thresholds, validity_days=validity_days)


@dataclass(frozen=True)
class RedemptionRules:
    points_to_currency_ratio: int = 100
    max_discount_percentage: int = 50
    min_points_to_redeem: int = 0

    @classmethod
    def decode(cls, document):
        document = document or {}
        if not isinstance(document, dict):
            raise PolicyError("redemption_rules must be an object")
        return cls(
            points_to_currency_ratio=int(_number(document, "points_to_currency_ratio", 100, minimum=1)),
            max_discount_percentage=int(_number(document, "max_discount_percentage", 50, minimum=0)),
            min_points_to_redeem=int(_number(document, "min_points_to_redeem", 0, minimum=0)),
        )

    def discount_for(self, points: int) -> int:
        return points // self.points_to_currency_ratio

    def max_discount(self, order_total: int) -> int:
        return order_total * min(self.max_discount_percentage, 100) // 100


@dataclass(frozen=True)
class LoyaltyPolicy:
    point_rules: PointRules = field(default_factory=PointRules)
    tier_rules: TierRules = field(default_factory=TierRules)
    redemption_rules: RedemptionRules = field(default_factory=RedemptionRules)


DECODERS = {
    LoyaltySetting.POINT_RULES: PointRules.decode,
    LoyaltySetting.TIER_RULES: TierRules.decode,
    LoyaltySetting.REDEMPTION_RULES: RedemptionRules.decode,
}


def load_policy(brand_id) -> LoyaltyPolicy:
    """
    Reads and decodes every policy document of a brand.
    A document that fails to decode is logged and replaced by its defaults.
    """
    decoded = {}
    for setting in LoyaltySetting.objects.filter(brand_id=brand_id):
        decoder = DECODERS.get(setting.setting_key)
        if decoder is None:
            continue
        try:
            decoded[setting.setting_key] = decoder(setting.setting_value)
        except PolicyError as e:
            logger.error("Ignoring malformed %s for brand %s: %s", setting.setting_key, brand_id, e)

    return LoyaltyPolicy(
        point_rules=decoded.get(LoyaltySetting.POINT_RULES, PointRules()),
        tier_rules=decoded.get(LoyaltySetting.TIER_RULES, TierRules()),
        redemption_rules=decoded.get(LoyaltySetting.REDEMPTION_RULES, RedemptionRules()),
    )
