"""
Models for the Loyalty application.
"""

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q

from core.models import TenantAwareModel


class CustomerProfile(models.Model):
    """
    A person known to the customer-auth system.
    NOT brand-scoped: the same person can hold accounts at many brands.
    """

    # ID issued by the customer authentication service.
    external_id = models.CharField(max_length=255, unique=True)
    full_name = models.CharField(max_length=255, blank=True)
    phone_number = models.CharField(max_length=32, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.full_name or self.external_id


class LoyaltyAccount(TenantAwareModel):
    """
    The Balance Store: one account per customer per brand.

    current_points is a cached projection of the ledger. It is only ever
    written by loyalty.ledger while the row is locked.
    """

    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"

    # Ascending order matters: tier calculation walks it.
    TIER_ORDER = [BRONZE, SILVER, GOLD, PLATINUM]
    TIER_LEVELS = [(tier, tier.title()) for tier in TIER_ORDER]

    customer = models.ForeignKey(CustomerProfile, on_delete=models.PROTECT, related_name="loyalty_accounts")
    current_points = models.IntegerField(default=0, validators=[MinValueValidator(0)])
    lifetime_points = models.IntegerField(default=0, validators=[MinValueValidator(0)])
    tier_level = models.CharField(max_length=16, choices=TIER_LEVELS, default=BRONZE)
    tier_expiry_date = models.DateTimeField(null=True, blank=True)
    preferred_branch = models.ForeignKey(
        "brands.Branch", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "loyalty_accounts"
        constraints = [
            models.UniqueConstraint(fields=["customer", "brand"], name="unique_account_per_customer_brand"),
            models.CheckConstraint(condition=Q(current_points__gte=0), name="account_points_non_negative"),
        ]

    def __str__(self):
        return f"{self.customer} @ {self.brand_id} ({self.current_points} pts, {self.tier_level})"


class PointTransaction(TenantAwareModel):
    """
    The Ledger (Journal). Append-only record of every point movement.

    Positive points add to the balance, negative points remove from it.
    balance_after is the account's current_points right after this entry.
    """

    EARN = "earn"
    SPEND = "spend"
    BONUS = "bonus"
    MANUAL_ADD = "manual_add"
    MANUAL_DEDUCT = "manual_deduct"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"

    TRANSACTION_TYPES = [
        (EARN, "Earn Points"),
        (SPEND, "Spend Points"),
        (BONUS, "Campaign Bonus"),
        (MANUAL_ADD, "Manual Addition"),
        (MANUAL_DEDUCT, "Manual Deduction"),
        (TRANSFER_IN, "Branch Transfer In"),
        (TRANSFER_OUT, "Branch Transfer Out"),
    ]

    CREDIT_TYPES = frozenset({EARN, BONUS, MANUAL_ADD, TRANSFER_IN})
    DEBIT_TYPES = frozenset({SPEND, MANUAL_DEDUCT, TRANSFER_OUT})

    # Entries that represent real accrual and therefore grow lifetime_points.
    LIFETIME_TYPES = frozenset({EARN, BONUS, MANUAL_ADD})

    account = models.ForeignKey(LoyaltyAccount, on_delete=models.PROTECT, related_name="transactions")
    branch = models.ForeignKey(
        "brands.Branch", on_delete=models.PROTECT, null=True, blank=True, related_name="point_transactions"
    )
    order = models.ForeignKey(
        "loyalty.Order", on_delete=models.PROTECT, null=True, blank=True, related_name="point_transactions"
    )
    transaction_type = models.CharField(max_length=20, choices=TRANSACTION_TYPES)
    points = models.IntegerField()
    balance_after = models.IntegerField()
    description = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        db_table = "point_transactions"
        ordering = ["created_at", "id"]
        constraints = [
            # Re-processing an order must never append a second earn/spend.
            models.UniqueConstraint(
                fields=["account", "order", "transaction_type"],
                condition=Q(order__isnull=False) & Q(transaction_type__in=["earn", "spend"]),
                name="unique_order_earn_spend_per_account",
            ),
        ]

    def __str__(self):
        return f"{self.account_id} {self.points:+d} ({self.get_transaction_type_display()})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Point transactions are immutable once written.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Point transactions cannot be deleted.")


class Campaign(TenantAwareModel):
    """
    A time-boxed promotional rule granting bonus points.
    The shape of `rules` depends on campaign_type, see loyalty.rules.
    """

    DOUBLE_POINTS = "double_points"
    CATEGORY_BONUS = "category_bonus"
    SPENDING_GOAL = "spending_goal"
    WELCOME = "welcome"

    CAMPAIGN_TYPES = [
        (DOUBLE_POINTS, "Points multiplier (e.g. x2)"),
        (CATEGORY_BONUS, "Bonus rate on a product category"),
        (SPENDING_GOAL, "Fixed bonus above a spending goal"),
        (WELCOME, "Welcome bonus on account creation"),
    ]

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    campaign_type = models.CharField(max_length=32, choices=CAMPAIGN_TYPES)

    # EXAMPLE: {"multiplier": 2} or {"min_amount": 500, "bonus_points": 50}
    rules = models.JSONField(default=dict, blank=True)

    valid_from = models.DateTimeField()
    valid_until = models.DateTimeField()

    # Empty list means "every branch" / "every tier".
    target_branches = models.JSONField(default=list, blank=True)
    target_tiers = models.JSONField(default=list, blank=True)

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "loyalty_campaigns"

    def __str__(self):
        return f"{self.name} ({self.campaign_type})"

    def is_running(self, now):
        return self.is_active and self.valid_from <= now <= self.valid_until

    def targets_branch(self, branch_id):
        return not self.target_branches or branch_id in self.target_branches

    def targets_tier(self, tier):
        return not self.target_tiers or tier in self.target_tiers


class Reward(TenantAwareModel):
    """
    A catalog item customers can buy with points, e.g. "Free Coffee".
    """

    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    points_required = models.PositiveIntegerField(validators=[MinValueValidator(1)])

    # NULL stock_limit means unlimited.
    stock_limit = models.PositiveIntegerField(null=True, blank=True)
    stock_used = models.PositiveIntegerField(default=0)

    valid_from = models.DateTimeField(null=True, blank=True)
    valid_until = models.DateTimeField(null=True, blank=True)
    target_branches = models.JSONField(default=list, blank=True)
    target_tiers = models.JSONField(default=list, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "loyalty_rewards"
        constraints = [
            models.CheckConstraint(
                condition=Q(stock_limit__isnull=True) | Q(stock_used__lte=models.F("stock_limit")),
                name="reward_stock_within_limit",
            ),
        ]

    def __str__(self):
        return self.name

    @property
    def is_limited(self):
        return self.stock_limit is not None

    @property
    def stock_remaining(self):
        if not self.is_limited:
            return None
        return max(self.stock_limit - self.stock_used, 0)

    def is_available(self, now):
        if not self.is_active:
            return False
        if self.valid_from and now < self.valid_from:
            return False
        if self.valid_until and now > self.valid_until:
            return False
        return True


class Redemption(TenantAwareModel):
    """
    A reward consumed by an account. Points are taken by the linked spend entry.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    STATUSES = [
        (PENDING, "Pending"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
    ]

    account = models.ForeignKey(LoyaltyAccount, on_delete=models.PROTECT, related_name="redemptions")
    reward = models.ForeignKey(Reward, on_delete=models.PROTECT, related_name="redemptions")
    order = models.ForeignKey(
        "loyalty.Order", on_delete=models.SET_NULL, null=True, blank=True, related_name="redemptions"
    )
    transaction = models.OneToOneField(
        PointTransaction, on_delete=models.PROTECT, null=True, blank=True, related_name="redemption"
    )
    points_spent = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=STATUSES, default=PENDING)
    created_at = models.DateTimeField(auto_now_add=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "loyalty_redemptions"

    def __str__(self):
        return f"{self.reward} for account {self.account_id} ({self.status})"


class LoyaltySetting(TenantAwareModel):
    """
    Brand-scoped policy stored as key/value JSON. Decoded by loyalty.policy.
    """

    POINT_RULES = "point_rules"
    TIER_RULES = "tier_rules"
    REDEMPTION_RULES = "redemption_rules"

    SETTING_KEYS = [
        (POINT_RULES, "Point earning rules"),
        (TIER_RULES, "Tier thresholds"),
        (REDEMPTION_RULES, "Redemption rules"),
    ]

    setting_key = models.CharField(max_length=32, choices=SETTING_KEYS)
    setting_value = models.JSONField(default=dict)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "loyalty_settings"
        constraints = [
            models.UniqueConstraint(fields=["brand", "setting_key"], name="unique_setting_per_brand"),
        ]

    def __str__(self):
        return f"{self.brand_id}:{self.setting_key}"


class Order(TenantAwareModel):
    """
    Snapshot of an order handed over by the ordering backend.
    Only the fields the points engine consumes are kept here.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    STATUSES = [
        (PENDING, "Pending"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
    ]

    branch = models.ForeignKey("brands.Branch", on_delete=models.PROTECT, related_name="orders")
    customer = models.ForeignKey(
        CustomerProfile, on_delete=models.SET_NULL, null=True, blank=True, related_name="orders"
    )
    # Amount actually paid, after any points discount.
    total_price = models.PositiveIntegerField()
    used_points = models.PositiveIntegerField(default=0)
    discount_amount = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=16, choices=STATUSES, default=COMPLETED)
    points_earned = models.IntegerField(default=0)
    loyalty_account = models.ForeignKey(
        LoyaltyAccount, on_delete=models.SET_NULL, null=True, blank=True, related_name="orders"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Order #{self.pk} ({self.total_price})"


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product_id = models.PositiveIntegerField()
    category_id = models.PositiveIntegerField(null=True, blank=True)
    price = models.PositiveIntegerField()
    quantity = models.PositiveIntegerField(default=1)

    def __str__(self):
        return f"{self.quantity} x product {self.product_id}"
