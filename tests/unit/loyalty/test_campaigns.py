"""
Campaign Evaluator tests. The evaluator runs over an in-memory repository
and plain order stand-ins, so most of these tests never touch the database.
"""

import logging
import uuid
from datetime import timedelta
from types import SimpleNamespace

from django.utils import timezone

from loyalty.campaigns import CampaignEvaluator, campaign_cache_key, get_active_campaigns
from loyalty.models import Campaign, LoyaltyAccount
from tests.factories.brands import BrandFactory
from tests.factories.loyalty import CampaignFactory

NOW = timezone.now()
BRAND_ID = uuid.uuid4()


class InMemoryCampaigns:
    def __init__(self, *campaigns):
        self.campaigns = list(campaigns)

    def for_brand(self, brand_id):
        return [c for c in self.campaigns if c.brand_id == brand_id]


def campaign(campaign_type=Campaign.DOUBLE_POINTS, rules=None, pk=1, **kwargs):
    fields = {
        "pk": pk,
        "brand_id": BRAND_ID,
        "name": f"Campaign {pk}",
        "campaign_type": campaign_type,
        "rules": {"multiplier": 2} if rules is None else rules,
        "valid_from": NOW - timedelta(days=1),
        "valid_until": NOW + timedelta(days=1),
        "is_active": True,
    }
    fields.update(kwargs)
    return Campaign(**fields)


def order(total_price=100, items=()):
    lines = [SimpleNamespace(category_id=c, price=p, quantity=q) for c, p, q in items]
    return SimpleNamespace(pk=1, total_price=total_price, items=SimpleNamespace(all=lambda: lines))


def evaluate(*campaigns, base_points=100, branch_id=10, tier=LoyaltyAccount.BRONZE, order_obj=None):
    evaluator = CampaignEvaluator(InMemoryCampaigns(*campaigns))
    return evaluator.evaluate(BRAND_ID, branch_id, tier, order_obj or order(), base_points, NOW)


class TestBonusRules:
    def test_double_points_grants_base_times_multiplier_minus_one(self):
        bonuses = evaluate(campaign(rules={"multiplier": 2}), base_points=200)
        assert [b.bonus_points for b in bonuses] == [200]

    def test_fractional_multiplier_is_floored(self):
        bonuses = evaluate(campaign(rules={"multiplier": 1.5}), base_points=101)
        assert bonuses[0].bonus_points == 50

    def test_category_bonus_only_counts_matching_items(self):
        target = campaign(Campaign.CATEGORY_BONUS, {"target_category_id": 3, "bonus_rate": 0.1})
        basket = order(items=[(3, 50, 2), (4, 500, 1), (3, 15, 1)])

        bonuses = evaluate(target, order_obj=basket)

        # floor(100 * 0.1) + floor(15 * 0.1)
        assert bonuses[0].bonus_points == 11

    def test_spending_goal_is_inclusive(self):
        goal = campaign(Campaign.SPENDING_GOAL, {"min_amount": 500, "bonus_points": 50})

        assert evaluate(goal, order_obj=order(total_price=499)) == []
        assert evaluate(goal, order_obj=order(total_price=500))[0].bonus_points == 50

    def test_welcome_and_unknown_types_grant_nothing_at_order_time(self):
        assert evaluate(campaign(Campaign.WELCOME, {"points": 100}), campaign("birthday", {}, pk=2)) == []


class TestEvaluate:
    def test_bonuses_are_additive(self):
        double = campaign(rules={"multiplier": 2}, pk=1)
        goal = campaign(Campaign.SPENDING_GOAL, {"min_amount": 50, "bonus_points": 30}, pk=2)

        bonuses = evaluate(double, goal, base_points=100)

        assert sum(b.bonus_points for b in bonuses) == 100 + 30
        assert {b.campaign_id for b in bonuses} == {1, 2}

    def test_bonus_metadata(self):
        bonus = evaluate(campaign(pk=7, name="Happy Monday"))[0]
        assert bonus.as_metadata() == {
            "campaign_id": 7,
            "campaign_name": "Happy Monday",
            "campaign_type": Campaign.DOUBLE_POINTS,
            "bonus_points": 100,
        }

    def test_window_and_active_flag(self):
        expired = campaign(pk=1, valid_until=NOW - timedelta(seconds=1))
        upcoming = campaign(pk=2, valid_from=NOW + timedelta(seconds=1))
        paused = campaign(pk=3, is_active=False)

        assert evaluate(expired, upcoming, paused) == []

    def test_branch_scope(self):
        scoped = campaign(target_branches=[10, 11])

        assert len(evaluate(scoped, branch_id=10)) == 1
        assert evaluate(scoped, branch_id=12) == []

    def test_tier_scope(self):
        gold_only = campaign(target_tiers=[LoyaltyAccount.GOLD, LoyaltyAccount.PLATINUM])

        assert evaluate(gold_only, tier=LoyaltyAccount.BRONZE) == []
        assert len(evaluate(gold_only, tier=LoyaltyAccount.GOLD)) == 1

    def test_other_brands_campaigns_are_ignored(self):
        assert evaluate(campaign(brand_id=uuid.uuid4())) == []

    def test_malformed_campaign_is_logged_and_skipped(self, caplog):
        broken = campaign(rules={"multiplier": "lots"}, pk=1)
        healthy = campaign(Campaign.SPENDING_GOAL, {"min_amount": 0, "bonus_points": 5}, pk=2)

        with caplog.at_level(logging.WARNING, logger="loyalty.campaigns"):
            bonuses = evaluate(broken, healthy)

        assert [b.campaign_id for b in bonuses] == [2]
        assert "Skipping campaign 1" in caplog.text


class TestWelcomeBonus:
    def test_first_running_welcome_campaign(self):
        evaluator = CampaignEvaluator(
            InMemoryCampaigns(
                campaign(pk=1),
                campaign(Campaign.WELCOME, {"welcome_points": 250}, pk=2),
                campaign(Campaign.WELCOME, {"points": 10}, pk=3),
            )
        )

        bonus = evaluator.welcome_bonus(BRAND_ID, None, NOW)

        assert bonus.campaign_id == 2
        assert bonus.bonus_points == 250

    def test_no_welcome_campaign(self):
        assert CampaignEvaluator(InMemoryCampaigns(campaign())).welcome_bonus(BRAND_ID, None, NOW) is None

    def test_branch_scoped_welcome(self):
        evaluator = CampaignEvaluator(InMemoryCampaigns(campaign(Campaign.WELCOME, {}, target_branches=[5])))

        assert evaluator.welcome_bonus(BRAND_ID, 6, NOW) is None
        assert evaluator.welcome_bonus(BRAND_ID, 5, NOW).bonus_points == 100


class TestActiveCampaignCache:
    def test_list_is_cached_per_brand(self, django_assert_num_queries):
        brand = BrandFactory()
        CampaignFactory(brand=brand)

        with django_assert_num_queries(1):
            get_active_campaigns(brand.id)
            get_active_campaigns(brand.id)

    def test_inactive_campaigns_are_not_loaded(self):
        brand = BrandFactory()
        active = CampaignFactory(brand=brand)
        CampaignFactory(brand=brand, is_active=False)

        assert [c.pk for c in get_active_campaigns(brand.id)] == [active.pk]

    def test_saving_a_campaign_invalidates_the_cache(self):
        from django.core.cache import cache

        brand = BrandFactory()
        first = CampaignFactory(brand=brand)
        get_active_campaigns(brand.id)
        assert cache.get(campaign_cache_key(brand.id)) is not None

        second = CampaignFactory(brand=brand)

        assert cache.get(campaign_cache_key(brand.id)) is None
        assert {c.pk for c in get_active_campaigns(brand.id)} == {first.pk, second.pk}

    def test_list_cached_before_commit_is_dropped_after_commit(self, django_capture_on_commit_callbacks):
        from django.core.cache import cache

        brand = BrandFactory()
        stale = CampaignFactory(brand=brand)

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            fresh = CampaignFactory(brand=brand)
            # Another transaction still sees only the committed campaign and caches it.
            cache.set(campaign_cache_key(brand.id), [stale])

        assert len(callbacks) == 1
        assert cache.get(campaign_cache_key(brand.id)) is None
        assert {c.pk for c in get_active_campaigns(brand.id)} == {stale.pk, fresh.pk}

    def test_deleting_a_campaign_invalidates_the_cache(self):
        brand = BrandFactory()
        doomed = CampaignFactory(brand=brand)
        get_active_campaigns(brand.id)

        doomed.delete()

        assert get_active_campaigns(brand.id) == []
