from datetime import datetime, timedelta

import pytest
from django.utils import timezone

from core.context import set_current_brand_id
from loyalty.exceptions import (
    AccountInactive,
    InsufficientPoints,
    InvalidLedgerEntry,
    InvalidOrder,
    OrderNotFound,
)
from loyalty.ledger import verify_account
from loyalty.models import LoyaltyAccount, LoyaltySetting, Order, PointTransaction
from loyalty.services import LoyaltyService
from tests.factories.brands import BrandFactory
from tests.factories.loyalty import (
    CampaignFactory,
    CustomerProfileFactory,
    LoyaltyAccountFactory,
    LoyaltySettingFactory,
    OrderFactory,
    OrderItemFactory,
)

# 2026-03-15 is a Sunday (weekday 0).
SUNDAY_NOON = timezone.make_aware(datetime(2026, 3, 15, 12, 0))


@pytest.fixture
def service():
    return LoyaltyService()


@pytest.fixture
def account(brand):
    return LoyaltyAccountFactory(brand=brand, points=500)


class TestProcessOrder:
    def test_end_to_end_double_points_day_with_campaign(self, service, brand, branch, account):
        """
        500 points, order total 100, 1 point per currency unit, Sunday is a
        double-points day and an x2 campaign runs: base 200, bonus 200, balance 900.
        """
        LoyaltySettingFactory(
            brand=brand,
            setting_key=LoyaltySetting.POINT_RULES,
            setting_value={"points_per_currency": 1, "enable_double_points": True, "double_points_days": [0]},
        )
        campaign = CampaignFactory(
            brand=brand,
            rules={"multiplier": 2},
            valid_from=SUNDAY_NOON - timedelta(days=1),
            valid_until=SUNDAY_NOON + timedelta(days=1),
        )
        order = OrderFactory(branch=branch, customer=account.customer, total_price=100)

        result = service.process_order(order.pk, now=SUNDAY_NOON)

        assert result.base_points == 200
        assert result.double_points_day is True
        assert result.campaign_bonuses == [
            {
                "campaign_id": campaign.pk,
                "campaign_name": campaign.name,
                "campaign_type": campaign.campaign_type,
                "bonus_points": 200,
            }
        ]
        assert result.points_earned == 400
        assert result.new_balance == 900
        assert result.duplicate is False

        account.refresh_from_db()
        order.refresh_from_db()
        entry = PointTransaction.objects.get(pk=result.transaction_id)
        assert account.current_points == 900
        assert order.points_earned == 400
        assert order.loyalty_account == account
        assert entry.transaction_type == PointTransaction.EARN
        assert entry.order == order
        assert entry.branch == branch
        assert entry.metadata["base_points"] == 200
        assert verify_account(account).is_consistent

    def test_order_42_is_processed_once(self, service, branch, account):
        order = OrderFactory(id=42, branch=branch, customer=account.customer, total_price=150)

        first = service.process_order(42)
        second = service.process_order(42)

        account.refresh_from_db()
        assert second.duplicate is True
        assert second.transaction_id == first.transaction_id
        assert second.points_earned == first.points_earned == 150
        assert second.new_balance == first.new_balance == account.current_points == 650
        assert PointTransaction.objects.filter(order=order, transaction_type=PointTransaction.EARN).count() == 1

    def test_points_used_at_checkout_are_spent_before_earning(self, service, branch, account):
        order = OrderFactory(
            branch=branch, customer=account.customer, total_price=98, used_points=200, discount_amount=2
        )

        result = service.process_order(order.pk)

        spend, earn = account.transactions.filter(order=order).order_by("id")
        assert spend.transaction_type == PointTransaction.SPEND
        assert spend.points == -200
        assert spend.balance_after == 300
        assert earn.balance_after == 398
        assert result.points_spent == 200
        assert result.new_balance == 398

        duplicate = service.process_order(order.pk)
        assert duplicate.points_spent == 200

    def test_checkout_spend_beyond_balance_aborts_everything(self, service, branch, account):
        order = OrderFactory(branch=branch, customer=account.customer, total_price=10, used_points=501)

        with pytest.raises(InsufficientPoints):
            service.process_order(order.pk)

        account.refresh_from_db()
        order.refresh_from_db()
        assert account.current_points == 500
        assert order.points_earned == 0
        assert order.loyalty_account is None
        assert not account.transactions.filter(order=order).exists()

    def test_first_order_creates_account_with_welcome_bonus(self, service, brand, branch):
        CampaignFactory(brand=brand, welcome=True, rules={"points": 100})
        customer = CustomerProfileFactory()
        order = OrderFactory(branch=branch, customer=customer, total_price=250)

        result = service.process_order(order.pk)

        account = LoyaltyAccount.objects.get(customer=customer, brand=brand)
        bonus, earn = account.transactions.order_by("id")
        assert bonus.transaction_type == PointTransaction.BONUS
        assert bonus.points == 100
        assert earn.points == 250
        assert account.preferred_branch == branch
        assert result.new_balance == account.current_points == 350
        assert account.lifetime_points == 350

    def test_big_order_promotes_tier(self, service, branch):
        order = OrderFactory(branch=branch, total_price=1200)

        service.process_order(order.pk)

        account = LoyaltyAccount.objects.get(customer=order.customer)
        assert account.tier_level == LoyaltyAccount.SILVER
        assert account.tier_expiry_date is not None

    def test_category_campaign_uses_order_items(self, service, brand, branch, account):
        CampaignFactory(brand=brand, category_bonus=True, rules={"target_category_id": 7, "bonus_rate": 0.5})
        order = OrderFactory(branch=branch, customer=account.customer, total_price=100)
        OrderItemFactory(order=order, category_id=7, price=40, quantity=1)
        OrderItemFactory(order=order, category_id=2, price=60, quantity=1)

        result = service.process_order(order.pk)

        assert result.points_earned == 100 + 20

    def test_tier_gated_campaign(self, service, brand, branch, account):
        CampaignFactory(brand=brand, target_tiers=[LoyaltyAccount.GOLD])
        order = OrderFactory(branch=branch, customer=account.customer, total_price=100)

        assert service.process_order(order.pk).points_earned == 100

    def test_malformed_campaign_does_not_block_earning(self, service, brand, branch, account):
        CampaignFactory(brand=brand, rules={"multiplier": "double"})
        CampaignFactory(brand=brand, spending_goal=True, rules={"min_amount": 50, "bonus_points": 25})
        order = OrderFactory(branch=branch, customer=account.customer, total_price=100)

        result = service.process_order(order.pk)

        assert result.points_earned == 125
        assert [b["bonus_points"] for b in result.campaign_bonuses] == [25]

    def test_order_without_customer(self, service, branch):
        order = OrderFactory(branch=branch, customer=None)

        with pytest.raises(InvalidOrder):
            service.process_order(order.pk)

    def test_cancelled_order(self, service, branch, account):
        order = OrderFactory(branch=branch, customer=account.customer, status=Order.CANCELLED)

        with pytest.raises(InvalidOrder):
            service.process_order(order.pk)

    def test_pending_order_earns_nothing(self, service, branch, account):
        order = OrderFactory(branch=branch, customer=account.customer, status=Order.PENDING, total_price=100)

        with pytest.raises(InvalidOrder, match="Only completed orders"):
            service.process_order(order.pk)

        account.refresh_from_db()
        assert account.current_points == 500
        assert not PointTransaction.objects.filter(order=order).exists()

    def test_unknown_order(self, service):
        with pytest.raises(OrderNotFound):
            service.process_order(123456)

    def test_order_of_another_brand_is_invisible(self, service, branch, account):
        order = OrderFactory(branch=branch, customer=account.customer)
        set_current_brand_id(BrandFactory().id)

        with pytest.raises(OrderNotFound):
            service.process_order(order.pk)

    def test_deactivated_account_does_not_earn(self, service, branch, account):
        service.deactivate(account.pk)
        order = OrderFactory(branch=branch, customer=account.customer)

        with pytest.raises(AccountInactive):
            service.process_order(order.pk)


class TestEnsureAccount:
    def test_creates_once(self, service, brand, branch):
        CampaignFactory(brand=brand, welcome=True, rules={"points": 75})

        account, created = service.ensure_account("cust-1", brand.id, branch=branch)
        again, created_again = service.ensure_account("cust-1", brand.id, branch=branch)

        assert created is True
        assert created_again is False
        assert again.pk == account.pk
        assert account.current_points == 75
        assert account.transactions.count() == 1
        assert account.preferred_branch == branch

    def test_same_customer_at_two_brands(self, service, brand):
        other = BrandFactory()

        first, _ = service.ensure_account("cust-2", brand.id)
        second, _ = service.ensure_account("cust-2", other.id)

        assert first.customer_id == second.customer_id
        assert first.pk != second.pk


class TestAdjustAndDeactivate:
    def test_manual_add_and_deduct(self, service, account):
        added = service.adjust(account.pk, 50, "Complaint goodwill")
        deducted = service.adjust(account.pk, -20, "Correction")

        account.refresh_from_db()
        assert added.transaction_type == PointTransaction.MANUAL_ADD
        assert deducted.transaction_type == PointTransaction.MANUAL_DEDUCT
        assert deducted.metadata == {"reason": "Correction"}
        assert account.current_points == 530

    def test_zero_adjustment(self, service, account):
        with pytest.raises(InvalidLedgerEntry):
            service.adjust(account.pk, 0, "Nothing")

    def test_deactivate_is_soft_and_idempotent(self, service, account):
        service.deactivate(account.pk)
        result = service.deactivate(account.pk)

        assert result.is_active is False
        assert LoyaltyAccount.objects.filter(pk=account.pk).exists()


class TestRegisterOrder:
    def test_total_is_subtotal_minus_discount(self, service, branch, account):
        CampaignFactory(brand=branch.brand, category_bonus=True, rules={"target_category_id": 7, "bonus_rate": 0.1})
        items = [
            {"product_id": 1, "category_id": 7, "price": 60, "quantity": 2},
            {"product_id": 2, "category_id": 1, "price": 30},
        ]

        intake = service.register_order(
            branch, items, customer_external_id=account.customer.external_id, used_points=200, discount_amount=2
        )

        account.refresh_from_db()
        assert intake.order.total_price == 148
        assert intake.order.items.count() == 2
        assert intake.earn.base_points == 148
        assert intake.earn.points_earned == 160
        assert intake.earn.points_spent == 200
        assert account.current_points == 500 - 200 + 160
        assert verify_account(account).is_consistent

    def test_failed_spend_rolls_back_the_order(self, service, branch, account):
        with pytest.raises(InsufficientPoints):
            service.register_order(
                branch,
                [{"product_id": 1, "price": 100}],
                customer_external_id=account.customer.external_id,
                used_points=600,
                discount_amount=6,
            )

        account.refresh_from_db()
        assert account.current_points == 500
        assert not Order.objects.exists()

    def test_new_customer_gets_an_account(self, service, branch):
        intake = service.register_order(branch, [{"product_id": 1, "price": 40}], customer_external_id="walk-in-9")

        assert intake.earn.new_balance == 40
        assert LoyaltyAccount.objects.get(customer__external_id="walk-in-9").brand == branch.brand

    def test_anonymous_order_earns_nothing(self, service, branch):
        intake = service.register_order(branch, [{"product_id": 1, "price": 40}])

        assert intake.earn is None
        assert intake.order.customer is None
        assert not PointTransaction.objects.exists()

    def test_discount_above_subtotal(self, service, branch, account):
        with pytest.raises(InvalidOrder):
            service.register_order(
                branch, [{"product_id": 1, "price": 5}], customer_external_id="x", used_points=1000, discount_amount=10
            )
