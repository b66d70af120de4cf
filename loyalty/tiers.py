"""
Tier Calculator.

Tiers are derived from lifetime points. Promotion happens right after an
accrual; nothing in the request path ever demotes an account. What happens
when a tier year elapses is decided by review_expiry().
"""

import logging
from datetime import timedelta

from loyalty.models import LoyaltyAccount

logger = logging.getLogger(__name__)


def tier_rank(tier):
    return LoyaltyAccount.TIER_ORDER.index(tier)


def tier_for(lifetime_points, thresholds):
    """
    Highest tier whose min_points <= lifetime_points.

    `thresholds` maps tier name to min_points. BRONZE is the floor even when a
    brand configures a non-zero BRONZE threshold.
    """
    tier = LoyaltyAccount.BRONZE
    for candidate in LoyaltyAccount.TIER_ORDER:
        min_points = thresholds.get(candidate)
        if min_points is not None and lifetime_points >= min_points:
            tier = candidate
    return tier


def promote(account, tier_rules, now):
    """
    Upgrade the account's tier if its lifetime points earned one.
    Returns True when the tier changed. Caller saves the account.
    """
    new_tier = tier_for(account.lifetime_points, tier_rules.thresholds)
    if tier_rank(new_tier) <= tier_rank(account.tier_level):
        return False

    logger.info("Account %s promoted %s -> %s", account.pk, account.tier_level, new_tier)
    account.tier_level = new_tier
    account.tier_expiry_date = now + timedelta(days=tier_rules.validity_days)
    return True


def review_expiry(account, tier_rules, now):
    """
    Apply the end-of-tier-year policy to an account whose tier has expired.

    The tier is recomputed from lifetime points and a new tier year starts.
    Lifetime points only shrink through administrative correction, so this is
    the one place a demotion can happen. Returns the previous tier when the
    tier changed, None otherwise. Caller saves the account.
    """
    if account.tier_expiry_date is None or account.tier_expiry_date > now:
        return None

    previous = account.tier_level
    account.tier_level = tier_for(account.lifetime_points, tier_rules.thresholds)
    account.tier_expiry_date = now + timedelta(days=tier_rules.validity_days)

    if account.tier_level == previous:
        return None
    logger.info("Account %s tier reviewed %s -> %s", account.pk, previous, account.tier_level)
    return previous
