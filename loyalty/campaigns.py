"""
Campaign Evaluator.

Pure evaluation over an injected repository: the evaluator never queries the
database itself, so it can be exercised with a plain list of campaigns.
"""

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import List, Optional

from django.core.cache import cache

from loyalty.exceptions import CampaignEvaluationSkipped
from loyalty.models import Campaign
from loyalty.policy import floor_int
from loyalty.rules import CategoryBonus, DoublePoints, SpendingGoal, decode_rules

logger = logging.getLogger(__name__)

CACHE_TIMEOUT = 60 * 15


def campaign_cache_key(brand_id):
    return f"active_campaigns:{brand_id}"


def get_active_campaigns(brand_id):
    """
    Active campaigns of a brand, served from cache when possible.
    Validity windows are applied by the evaluator, not here, so the cached
    list stays correct as time passes. Signals clear it on every change.
    """
    cache_key = campaign_cache_key(brand_id)
    campaigns = cache.get(cache_key)
    if campaigns is None:
        campaigns = list(Campaign.objects.filter(brand_id=brand_id, is_active=True).order_by("id"))
        cache.set(cache_key, campaigns, CACHE_TIMEOUT)
    return campaigns


class CampaignRepository:
    def for_brand(self, brand_id):
        return get_active_campaigns(brand_id)


@dataclass(frozen=True)
class CampaignBonus:
    campaign_id: int
    campaign_name: str
    campaign_type: str
    bonus_points: int

    def as_metadata(self):
        return asdict(self)


class CampaignEvaluator:
    def __init__(self, repository=None):
        self.repository = repository or CampaignRepository()

    def active_campaigns(self, brand_id, branch_id, now) -> List[Campaign]:
        return [
            campaign
            for campaign in self.repository.for_brand(brand_id)
            if campaign.is_running(now) and campaign.targets_branch(branch_id)
        ]

    def bonus_for(self, campaign, order, base_points) -> int:
        """
        Bonus points one campaign grants for an order.
        Raises CampaignEvaluationSkipped if the campaign's rules are malformed.
        """
        rules = decode_rules(campaign.campaign_type, campaign.rules)

        if isinstance(rules, DoublePoints):
            return floor_int(Decimal(base_points) * (rules.multiplier - 1))

        if isinstance(rules, CategoryBonus):
            bonus = 0
            for item in order.items.all():
                if item.category_id == rules.target_category_id:
                    bonus += floor_int(Decimal(item.price) * item.quantity * rules.bonus_rate)
            return bonus

        if isinstance(rules, SpendingGoal):
            if Decimal(order.total_price) >= rules.min_amount:
                return rules.bonus_points
            return 0

        # Welcome bonuses are granted at account creation; unknown types are worth nothing.
        return 0

    def evaluate(self, brand_id, branch_id, tier, order, base_points, now) -> List[CampaignBonus]:
        """
        Every applicable campaign contributes independently; bonuses are summed
        by the caller. A broken campaign is logged and skipped.
        """
        bonuses = []
        for campaign in self.active_campaigns(brand_id, branch_id, now):
            if not campaign.targets_tier(tier):
                continue
            try:
                points = self.bonus_for(campaign, order, base_points)
            except CampaignEvaluationSkipped as e:
                logger.warning("Skipping campaign %s for order %s: %s", campaign.pk, order.pk, e)
                continue
            if points > 0:
                bonuses.append(
                    CampaignBonus(
                        campaign_id=campaign.pk,
                        campaign_name=campaign.name,
                        campaign_type=campaign.campaign_type,
                        bonus_points=points,
                    )
                )
        return bonuses

    def welcome_bonus(self, brand_id, branch_id, now) -> Optional[CampaignBonus]:
        """
        The welcome bonus a brand-new account receives, if a welcome campaign runs.
        """
        for campaign in self.active_campaigns(brand_id, branch_id, now):
            if campaign.campaign_type != Campaign.WELCOME:
                continue
            try:
                rules = decode_rules(campaign.campaign_type, campaign.rules)
            except CampaignEvaluationSkipped as e:
                logger.warning("Skipping welcome campaign %s: %s", campaign.pk, e)
                continue
            return CampaignBonus(
                campaign_id=campaign.pk,
                campaign_name=campaign.name,
                campaign_type=campaign.campaign_type,
                bonus_points=rules.points,
            )
        return None
