"""
Redemption Engine.

Two ways to turn points into value:
- catalog rewards (redeem / cancel), which consume stock and create a Redemption;
- order discounts (quote_discount), priced with the brand's redemption_rules and
  spent later by order completion.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.db import transaction
from django.utils import timezone

from loyalty import ledger
from loyalty.exceptions import (
    AccountNotFound,
    InsufficientPoints,
    OrderNotFound,
    RedemptionNotCancellable,
    RedemptionNotFound,
    RewardUnavailable,
    StockExhausted,
)
from loyalty.ledger import locked_account, retry_on_conflict
from loyalty.models import LoyaltyAccount, Order, PointTransaction, Redemption, Reward
from loyalty.policy import load_policy

logger = logging.getLogger(__name__)


@dataclass
class RedemptionResult:
    redemption_id: int
    transaction_id: int
    points_spent: int
    new_balance: int
    success: bool = True


@dataclass
class RedemptionQuote:
    can_redeem: bool
    discount_amount: int = 0
    points_used: int = 0
    reason: Optional[str] = None


class RedemptionEngine:
    @retry_on_conflict
    def redeem(self, account_id, reward_id, order_id=None, now=None) -> RedemptionResult:
        """
        Exchange points for a catalog reward.

        Locks the account, then the reward, so stock and balance are checked
        against committed values. Raises RewardUnavailable, InsufficientPoints
        or StockExhausted; none of them leave anything behind.
        """
        now = now or timezone.now()

        with locked_account(account_id) as account:
            try:
                reward = Reward.objects.select_for_update().get(pk=reward_id, brand_id=account.brand_id)
            except Reward.DoesNotExist:
                raise RewardUnavailable("Reward not found.", reward_id=reward_id) from None

            order = None
            if order_id is not None:
                order = Order.objects.filter(pk=order_id, brand_id=account.brand_id).first()
                if order is None:
                    raise OrderNotFound(order_id=order_id)

            branch_id = order.branch_id if order else account.preferred_branch_id
            self._check_reward(reward, account, branch_id, now)

            if account.current_points < reward.points_required:
                raise InsufficientPoints(
                    f"Insufficient points. Balance: {account.current_points}, Required: {reward.points_required}",
                    balance=account.current_points,
                    required=reward.points_required,
                )

            if reward.is_limited:
                if reward.stock_used >= reward.stock_limit:
                    raise StockExhausted(reward_id=reward.pk)
                reward.stock_used += 1
                reward.save(update_fields=["stock_used"])

            # The order link lives on the Redemption: the ledger's (order, spend)
            # key is reserved for the checkout discount of that order.
            entry = ledger.append(
                account,
                transaction_type=PointTransaction.SPEND,
                points=-reward.points_required,
                branch=order.branch if order else account.preferred_branch,
                description=f"Redeemed: {reward.name}",
                metadata={"reward_id": reward.pk, "order_id": order.pk if order else None},
            )

            redemption = Redemption.objects.create(
                brand_id=account.brand_id,
                account=account,
                reward=reward,
                order=order,
                transaction=entry,
                points_spent=reward.points_required,
                status=Redemption.COMPLETED,
            )

        logger.info("Account %s redeemed reward %s (redemption %s)", account.pk, reward.pk, redemption.pk)
        return RedemptionResult(
            redemption_id=redemption.pk,
            transaction_id=entry.pk,
            points_spent=redemption.points_spent,
            new_balance=account.current_points,
        )

    def _check_reward(self, reward, account, branch_id, now):
        if not reward.is_available(now):
            raise RewardUnavailable(reward_id=reward.pk)
        if reward.target_branches and branch_id not in reward.target_branches:
            raise RewardUnavailable("This reward is not offered at this branch.", reward_id=reward.pk)
        if reward.target_tiers and account.tier_level not in reward.target_tiers:
            raise RewardUnavailable("This reward is not offered to your tier.", reward_id=reward.pk)

    @retry_on_conflict
    def cancel(self, redemption_id, now=None) -> Redemption:
        """
        Cancel a completed redemption: refund its points and release its stock.
        The refund does not count toward lifetime points.
        """
        now = now or timezone.now()

        with transaction.atomic():
            try:
                redemption = Redemption.objects.select_for_update().get(pk=redemption_id)
            except Redemption.DoesNotExist:
                raise RedemptionNotFound(redemption_id=redemption_id) from None

            if redemption.status != Redemption.COMPLETED:
                raise RedemptionNotCancellable(redemption_id=redemption.pk, status=redemption.status)

            with locked_account(redemption.account_id, require_active=False) as account:
                ledger.append(
                    account,
                    transaction_type=PointTransaction.MANUAL_ADD,
                    points=redemption.points_spent,
                    branch=redemption.transaction.branch if redemption.transaction else None,
                    description=f"Refund: {redemption.reward.name}",
                    metadata={"redemption_id": redemption.pk},
                    counts_toward_lifetime=False,
                )

            reward = Reward.objects.select_for_update().get(pk=redemption.reward_id)
            if reward.is_limited and reward.stock_used > 0:
                reward.stock_used -= 1
                reward.save(update_fields=["stock_used"])

            redemption.status = Redemption.CANCELLED
            redemption.cancelled_at = now
            redemption.save(update_fields=["status", "cancelled_at"])

        logger.info("Cancelled redemption %s, refunded %s points", redemption.pk, redemption.points_spent)
        return redemption

    def quote_discount(self, brand_id, points_to_use, order_total, account_id=None) -> RedemptionQuote:
        """
        Price a points discount for an order without spending anything.

        The discount is floor(points / points_to_currency_ratio) and may not
        exceed max_discount_percentage of the order total. points_used is the
        part of points_to_use that the discount actually consumes.
        """
        rules = load_policy(brand_id).redemption_rules

        if points_to_use <= 0:
            return RedemptionQuote(can_redeem=False, reason="Points to use must be positive.")
        if points_to_use < rules.min_points_to_redeem:
            return RedemptionQuote(
                can_redeem=False, reason=f"At least {rules.min_points_to_redeem} points are required."
            )

        if account_id is not None:
            account = LoyaltyAccount.objects.filter(pk=account_id, brand_id=brand_id).first()
            if account is None:
                raise AccountNotFound(account_id=account_id)
            if account.current_points < points_to_use:
                return RedemptionQuote(can_redeem=False, reason="Insufficient points.")

        discount = rules.discount_for(points_to_use)
        if discount <= 0:
            return RedemptionQuote(
                can_redeem=False,
                reason=f"At least {rules.points_to_currency_ratio} points are needed for a discount.",
            )

        if discount > rules.max_discount(order_total):
            return RedemptionQuote(
                can_redeem=False,
                reason=f"Discount cannot exceed {rules.max_discount_percentage}% of the order total.",
            )

        return RedemptionQuote(
            can_redeem=True,
            discount_amount=discount,
            points_used=discount * rules.points_to_currency_ratio,
        )
