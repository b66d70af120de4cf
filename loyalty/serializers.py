"""
Serializers for the Loyalty application.
"""

from rest_framework import serializers

from loyalty.exceptions import CampaignEvaluationSkipped
from loyalty.models import (
    Campaign,
    LoyaltyAccount,
    LoyaltySetting,
    Order,
    OrderItem,
    PointTransaction,
    Redemption,
    Reward,
)
from loyalty.policy import DECODERS, PolicyError
from loyalty.rules import decode_rules


class TargetingMixin:
    """
    Shared validation for target_branches / target_tiers JSON lists.
    """

    def validate_target_branches(self, value):
        if not isinstance(value, list) or any(isinstance(v, bool) or not isinstance(v, int) for v in value):
            raise serializers.ValidationError("Must be a list of branch ids.")
        return value

    def validate_target_tiers(self, value):
        if not isinstance(value, list) or any(v not in LoyaltyAccount.TIER_ORDER for v in value):
            raise serializers.ValidationError(f"Must be a list of tiers from {LoyaltyAccount.TIER_ORDER}.")
        return value


class CampaignSerializer(TargetingMixin, serializers.ModelSerializer):
    """
    Serializer for the Campaign model.
    Rules are decoded on write so a malformed campaign never reaches order processing.
    """

    class Meta:
        model = Campaign
        fields = [
            "id",
            "name",
            "description",
            "campaign_type",
            "rules",
            "valid_from",
            "valid_until",
            "target_branches",
            "target_tiers",
            "is_active",
            "created_at",
        ]
        read_only_fields = ["id", "created_at"]

    def validate(self, data):
        campaign_type = data.get("campaign_type", getattr(self.instance, "campaign_type", None))
        rules = data.get("rules", getattr(self.instance, "rules", {}))
        try:
            decode_rules(campaign_type, rules)
        except CampaignEvaluationSkipped as e:
            raise serializers.ValidationError({"rules": e.reason}) from e

        valid_from = data.get("valid_from", getattr(self.instance, "valid_from", None))
        valid_until = data.get("valid_until", getattr(self.instance, "valid_until", None))
        if valid_from and valid_until and valid_from > valid_until:
            raise serializers.ValidationError({"valid_until": "Must be after valid_from."})
        return data


class RewardSerializer(TargetingMixin, serializers.ModelSerializer):
    stock_remaining = serializers.IntegerField(read_only=True)

    class Meta:
        model = Reward
        fields = [
            "id",
            "name",
            "description",
            "points_required",
            "stock_limit",
            "stock_used",
            "stock_remaining",
            "valid_from",
            "valid_until",
            "target_branches",
            "target_tiers",
            "is_active",
        ]
        read_only_fields = ["id", "stock_used"]

    def validate_stock_limit(self, value):
        if value is not None and self.instance is not None and value < self.instance.stock_used:
            raise serializers.ValidationError(f"{self.instance.stock_used} units are already redeemed.")
        return value


class LoyaltySettingSerializer(serializers.ModelSerializer):
    class Meta:
        model = LoyaltySetting
        fields = ["id", "setting_key", "setting_value", "updated_at"]
        read_only_fields = ["id", "updated_at"]

    def validate(self, data):
        setting_key = data.get("setting_key", getattr(self.instance, "setting_key", None))
        setting_value = data.get("setting_value", getattr(self.instance, "setting_value", {}))
        try:
            DECODERS[setting_key](setting_value)
        except PolicyError as e:
            raise serializers.ValidationError({"setting_value": str(e)}) from e

        request = self.context.get("request")
        brand = getattr(request, "brand", None)
        duplicate = LoyaltySetting.objects.filter(setting_key=setting_key)
        if brand is not None:
            duplicate = duplicate.filter(brand=brand)
        if self.instance is not None:
            duplicate = duplicate.exclude(pk=self.instance.pk)
        if duplicate.exists():
            raise serializers.ValidationError({"setting_key": "This setting already exists for the brand."})
        return data


class AccountSerializer(serializers.ModelSerializer):
    customer_id = serializers.CharField(source="customer.external_id", read_only=True)

    class Meta:
        model = LoyaltyAccount
        fields = [
            "id",
            "customer_id",
            "brand",
            "current_points",
            "lifetime_points",
            "tier_level",
            "tier_expiry_date",
            "preferred_branch",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class TransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PointTransaction
        fields = [
            "id",
            "account",
            "branch",
            "order",
            "transaction_type",
            "points",
            "balance_after",
            "description",
            "metadata",
            "created_at",
        ]
        read_only_fields = fields


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = ["product_id", "category_id", "price", "quantity"]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    customer_id = serializers.CharField(source="customer.external_id", read_only=True, default=None)
    items = OrderItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "branch",
            "customer_id",
            "total_price",
            "used_points",
            "discount_amount",
            "status",
            "points_earned",
            "loyalty_account",
            "items",
            "created_at",
        ]
        read_only_fields = fields


class RedemptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Redemption
        fields = [
            "id",
            "account",
            "reward",
            "order",
            "transaction",
            "points_spent",
            "status",
            "created_at",
            "cancelled_at",
        ]
        read_only_fields = fields


# Inputs of the action endpoints. They only validate shape; business rules live in the services.


class EnsureAccountSerializer(serializers.Serializer):
    customer_id = serializers.CharField(max_length=255)
    branch_id = serializers.IntegerField(required=False, allow_null=True)


class EarnSerializer(serializers.Serializer):
    order_id = serializers.IntegerField(min_value=1)


class RedeemSerializer(serializers.Serializer):
    account_id = serializers.IntegerField(min_value=1)
    reward_id = serializers.IntegerField(min_value=1)
    order_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)


class CheckRedemptionSerializer(serializers.Serializer):
    points_to_use = serializers.IntegerField()
    order_total = serializers.IntegerField(min_value=0)
    account_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)


class TransferSerializer(serializers.Serializer):
    account_id = serializers.IntegerField(min_value=1)
    from_branch_id = serializers.IntegerField(min_value=1)
    to_branch_id = serializers.IntegerField(min_value=1)
    points = serializers.IntegerField(min_value=1)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class AdjustSerializer(serializers.Serializer):
    points = serializers.IntegerField()
    reason = serializers.CharField(max_length=255)
    branch_id = serializers.IntegerField(required=False, allow_null=True)

    def validate_points(self, value):
        if value == 0:
            raise serializers.ValidationError("Adjustment must be non-zero.")
        return value


class OrderItemInputSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(min_value=1)
    category_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    price = serializers.IntegerField(min_value=0)
    quantity = serializers.IntegerField(min_value=1, default=1)


class OrderIntakeSerializer(serializers.Serializer):
    branch_id = serializers.IntegerField(min_value=1)
    customer_id = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    items = OrderItemInputSerializer(many=True, allow_empty=False)
    used_points = serializers.IntegerField(min_value=0, default=0)
    discount_amount = serializers.IntegerField(min_value=0, default=0)

    def validate(self, data):
        if data["used_points"] and not data["customer_id"]:
            raise serializers.ValidationError({"used_points": "Points can only be used by a known customer."})
        subtotal = sum(item["price"] * item["quantity"] for item in data["items"])
        if data["discount_amount"] > subtotal:
            raise serializers.ValidationError({"discount_amount": f"Cannot exceed the order subtotal ({subtotal})."})
        return data


class CampaignBonusSerializer(serializers.Serializer):
    campaign_id = serializers.IntegerField()
    campaign_name = serializers.CharField()
    campaign_type = serializers.CharField()
    bonus_points = serializers.IntegerField()


class EarnResultSerializer(serializers.Serializer):
    account_id = serializers.IntegerField()
    transaction_id = serializers.IntegerField()
    points_earned = serializers.IntegerField()
    base_points = serializers.IntegerField()
    new_balance = serializers.IntegerField()
    points_spent = serializers.IntegerField()
    double_points_day = serializers.BooleanField()
    campaign_bonuses = CampaignBonusSerializer(many=True)
    duplicate = serializers.BooleanField()


class RedemptionResultSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    redemption_id = serializers.IntegerField()
    transaction_id = serializers.IntegerField()
    points_spent = serializers.IntegerField()
    new_balance = serializers.IntegerField()


class RedemptionQuoteSerializer(serializers.Serializer):
    can_redeem = serializers.BooleanField()
    discount_amount = serializers.IntegerField()
    points_used = serializers.IntegerField()
    reason = serializers.CharField(allow_null=True)


class TransferResultSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    transfer_id = serializers.CharField()
    points = serializers.IntegerField()
    balance = serializers.IntegerField()
    transfer_out_id = serializers.IntegerField()
    transfer_in_id = serializers.IntegerField()


class LedgerAuditSerializer(serializers.Serializer):
    account_id = serializers.IntegerField()
    is_consistent = serializers.BooleanField()
    current_points = serializers.IntegerField()
    expected_balance = serializers.IntegerField()
    entries = serializers.IntegerField()
    broken_entries = serializers.ListField(child=serializers.IntegerField())
