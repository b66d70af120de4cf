"""
Service layer for Loyalty business logic.
Orchestrates accounts, order completion and manual adjustments on top of the ledger.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from django.db import transaction
from django.utils import timezone

from loyalty import ledger, tiers
from loyalty.campaigns import CampaignEvaluator
from loyalty.exceptions import InvalidLedgerEntry, InvalidOrder, OrderNotFound
from loyalty.ledger import locked_account, retry_on_conflict
from loyalty.models import CustomerProfile, LoyaltyAccount, Order, OrderItem, PointTransaction
from loyalty.policy import load_policy

logger = logging.getLogger(__name__)


@dataclass
class EarnResult:
    account_id: int
    transaction_id: int
    points_earned: int
    base_points: int
    new_balance: int
    points_spent: int = 0
    double_points_day: bool = False
    campaign_bonuses: List[dict] = field(default_factory=list)
    duplicate: bool = False

    @classmethod
    def from_transaction(cls, entry, new_balance, duplicate=False):
        """Rebuild the result of an already processed order from its earn entry."""
        spend = PointTransaction.objects.filter(
            account_id=entry.account_id, order_id=entry.order_id, transaction_type=PointTransaction.SPEND
        ).first()
        metadata = entry.metadata or {}
        return cls(
            account_id=entry.account_id,
            transaction_id=entry.pk,
            points_earned=entry.points,
            base_points=metadata.get("base_points", entry.points),
            new_balance=new_balance,
            points_spent=abs(spend.points) if spend else 0,
            double_points_day=metadata.get("double_points_day", False),
            campaign_bonuses=metadata.get("campaign_bonuses", []),
            duplicate=duplicate,
        )


@dataclass
class OrderIntake:
    order: Order
    earn: Optional[EarnResult] = None


class LoyaltyService:
    """
    Encapsulates the rules for earning points and managing accounts.
    """

    def __init__(self, evaluator: Optional[CampaignEvaluator] = None):
        self.evaluator = evaluator or CampaignEvaluator()

    @retry_on_conflict
    def ensure_account(self, customer_external_id, brand_id, branch=None, now=None):
        """
        Return the customer's account at a brand, creating it on first contact.
        A new account receives the brand's welcome bonus in the same transaction.

        Returns (account, created).
        """
        with transaction.atomic():
            customer, _ = CustomerProfile.objects.get_or_create(external_id=customer_external_id)
            return self._ensure_account(customer, brand_id, branch, now or timezone.now())

    def _ensure_account(self, customer, brand_id, branch, now):
        account, created = LoyaltyAccount.objects.get_or_create(
            customer=customer, brand_id=brand_id, defaults={"preferred_branch": branch}
        )
        if created:
            logger.info("Created loyalty account %s for customer %s", account.pk, customer.external_id)
            account = self._apply_welcome_bonus(account, branch, now)
        return account, created

    def _apply_welcome_bonus(self, account, branch, now):
        bonus = self.evaluator.welcome_bonus(account.brand_id, branch.pk if branch else None, now)
        if bonus is None:
            return account

        with locked_account(account.pk) as locked:
            ledger.append(
                locked,
                transaction_type=PointTransaction.BONUS,
                points=bonus.bonus_points,
                branch=branch,
                description="Welcome bonus",
                metadata={"campaign_id": bonus.campaign_id, "campaign_name": bonus.campaign_name},
            )
            ledger.promote_tier(locked, now)
        return locked

    @retry_on_conflict
    def process_order(self, order_id, now=None) -> EarnResult:
        """
        Award points for a completed order.

        Points the customer used at checkout are spent first, in the same
        transaction, so the sufficiency check sees the pre-earn balance.
        Processing the same order twice returns the first result unchanged.
        """
        return self._process_order(order_id, now or timezone.now())

    @retry_on_conflict
    def register_order(
        self, branch, items, customer_external_id=None, used_points=0, discount_amount=0, now=None
    ) -> OrderIntake:
        """
        Store a completed order handed over at checkout and settle its points.

        `items` are dicts of product_id, category_id, price and quantity. The
        order total is the item subtotal minus the points discount. The order,
        its items, the discount spend and the earn commit together: when the
        customer cannot cover `used_points` nothing is stored.
        Orders without a customer are stored and earn nothing.
        """
        if used_points and not customer_external_id:
            raise InvalidOrder("Points can only be used by a known customer.")

        subtotal = sum(item["price"] * item.get("quantity", 1) for item in items)
        if discount_amount > subtotal:
            raise InvalidOrder(
                f"Discount {discount_amount} exceeds the order subtotal {subtotal}.",
                subtotal=subtotal,
                discount_amount=discount_amount,
            )

        with transaction.atomic():
            customer = None
            if customer_external_id:
                customer, _ = CustomerProfile.objects.get_or_create(external_id=customer_external_id)

            order = Order.objects.create(
                brand_id=branch.brand_id,
                branch=branch,
                customer=customer,
                total_price=subtotal - discount_amount,
                used_points=used_points,
                discount_amount=discount_amount,
                status=Order.COMPLETED,
            )
            OrderItem.objects.bulk_create([OrderItem(order=order, **item) for item in items])

            earn = self._process_order(order.pk, now or timezone.now()) if customer else None
            order.refresh_from_db()

        logger.info("Registered order %s at branch %s (total %s)", order.pk, branch.pk, order.total_price)
        return OrderIntake(order=order, earn=earn)

    def _process_order(self, order_id, now) -> EarnResult:
        with transaction.atomic():
            try:
                order = Order.objects.select_for_update().get(pk=order_id)
            except Order.DoesNotExist:
                raise OrderNotFound(order_id=order_id) from None

            if order.customer_id is None:
                raise InvalidOrder("Order has no customer assigned.", order_id=order.pk)
            if order.status != Order.COMPLETED:
                raise InvalidOrder("Only completed orders earn points.", order_id=order.pk, status=order.status)

            branch = order.branch
            brand_id = branch.brand_id
            account, _ = self._ensure_account(order.customer, brand_id, branch, now)

            with locked_account(account.pk) as account:
                existing = account.transactions.filter(order=order, transaction_type=PointTransaction.EARN).first()
                if existing is not None:
                    logger.info("Order %s already processed for account %s", order.pk, account.pk)
                    return EarnResult.from_transaction(existing, account.current_points, duplicate=True)

                points_spent = 0
                if order.used_points > 0:
                    ledger.append(
                        account,
                        transaction_type=PointTransaction.SPEND,
                        points=-order.used_points,
                        branch=branch,
                        order=order,
                        description=f"Order discount ({order.discount_amount})",
                        metadata={"discount_amount": order.discount_amount},
                    )
                    points_spent = order.used_points

                policy = load_policy(brand_id)
                base_points, doubled = policy.point_rules.base_points(order.total_price, now)
                bonuses = self.evaluator.evaluate(brand_id, branch.pk, account.tier_level, order, base_points, now)
                total_points = base_points + sum(bonus.bonus_points for bonus in bonuses)

                entry = ledger.append(
                    account,
                    transaction_type=PointTransaction.EARN,
                    points=total_points,
                    branch=branch,
                    order=order,
                    description="Order points (campaign bonus included)" if bonuses else "Order points",
                    metadata={
                        "base_points": base_points,
                        "double_points_day": doubled,
                        "campaign_bonuses": [bonus.as_metadata() for bonus in bonuses],
                    },
                )

                if tiers.promote(account, policy.tier_rules, now):
                    account.save(update_fields=["tier_level", "tier_expiry_date", "updated_at"])

                order.points_earned = total_points
                order.loyalty_account = account
                order.save(update_fields=["points_earned", "loyalty_account"])

        return EarnResult(
            account_id=account.pk,
            transaction_id=entry.pk,
            points_earned=total_points,
            base_points=base_points,
            new_balance=account.current_points,
            points_spent=points_spent,
            double_points_day=doubled,
            campaign_bonuses=entry.metadata["campaign_bonuses"],
        )

    def adjust(self, account_id, points, reason, branch=None):
        """
        Manual correction by brand staff. Positive points add, negative deduct.
        """
        if points == 0:
            raise InvalidLedgerEntry("Adjustment must be non-zero.")
        transaction_type = PointTransaction.MANUAL_ADD if points > 0 else PointTransaction.MANUAL_DEDUCT
        return ledger.LedgerService().append(
            account_id,
            transaction_type,
            points,
            branch=branch,
            description=reason,
            metadata={"reason": reason},
        )

    @retry_on_conflict
    def deactivate(self, account_id):
        """Soft-deactivate an account. Accounts are never deleted."""
        with locked_account(account_id, require_active=False) as account:
            if account.is_active:
                account.is_active = False
                account.save(update_fields=["is_active", "updated_at"])
                logger.info("Deactivated loyalty account %s", account.pk)
            return account
