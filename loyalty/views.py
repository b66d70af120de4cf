"""
API Views for the Loyalty application.

Every view runs inside the brand context set by TenantContextMiddleware, so
querysets built from the tenant-aware managers only ever see the caller's brand.
Domain errors raised by the services are rendered by core.exceptions.
"""

from dataclasses import asdict

from rest_framework import serializers, status, viewsets
from rest_framework.decorators import action
from rest_framework.pagination import LimitOffsetPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from brands.authentication import HasBrandApiKey
from brands.models import Branch
from loyalty import ledger
from loyalty.exceptions import AccountNotFound
from loyalty.models import Campaign, LoyaltyAccount, LoyaltySetting, Redemption, Reward
from loyalty.redemption import RedemptionEngine
from loyalty.serializers import (
    AccountSerializer,
    AdjustSerializer,
    CampaignSerializer,
    CheckRedemptionSerializer,
    EarnResultSerializer,
    EarnSerializer,
    EnsureAccountSerializer,
    LedgerAuditSerializer,
    LoyaltySettingSerializer,
    OrderIntakeSerializer,
    OrderSerializer,
    RedeemSerializer,
    RedemptionQuoteSerializer,
    RedemptionResultSerializer,
    RedemptionSerializer,
    RewardSerializer,
    TransactionSerializer,
    TransferResultSerializer,
    TransferSerializer,
)
from loyalty.services import LoyaltyService
from loyalty.transfers import TransferCoordinator


def resolve_branch(branch_id):
    """
    Branch of the current brand, or None when no id is given.
    """
    if branch_id is None:
        return None
    branch = Branch.objects.filter(pk=branch_id).first()
    if branch is None:
        raise serializers.ValidationError({"branch_id": "Branch not found for this brand."})
    return branch


class TransactionPagination(LimitOffsetPagination):
    default_limit = 50
    max_limit = 500

    def get_paginated_response(self, data):
        return Response({"transactions": data, "total": self.count})


class AccountViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Loyalty accounts of the current brand.
    Accounts are created through `ensure` or by the first processed order.
    """

    permission_classes = [HasBrandApiKey]
    serializer_class = AccountSerializer

    def get_queryset(self):
        queryset = LoyaltyAccount.objects.select_related("customer").order_by("id")
        customer_id = self.request.query_params.get("customer_id")
        if customer_id:
            queryset = queryset.filter(customer__external_id=customer_id)
        return queryset

    def get_object(self):
        try:
            return self.get_queryset().get(pk=self.kwargs["pk"])
        except (LoyaltyAccount.DoesNotExist, ValueError):
            raise AccountNotFound(account_id=self.kwargs["pk"]) from None

    @action(detail=False, methods=["post"])
    def ensure(self, request):
        serializer = EnsureAccountSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        branch = resolve_branch(serializer.validated_data.get("branch_id"))
        account, created = LoyaltyService().ensure_account(
            serializer.validated_data["customer_id"], request.auth.brand_id, branch=branch
        )
        return Response(
            AccountSerializer(account).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    @action(detail=True, methods=["get"])
    def transactions(self, request, pk=None):
        account = self.get_object()
        queryset = account.transactions.order_by("-created_at", "-id")

        paginator = TransactionPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        return paginator.get_paginated_response(TransactionSerializer(page, many=True).data)

    @action(detail=True, methods=["get"])
    def audit(self, request, pk=None):
        audit = ledger.verify_account(self.get_object())
        data = asdict(audit)
        data["is_consistent"] = audit.is_consistent
        return Response(LedgerAuditSerializer(data).data)

    @action(detail=True, methods=["post"])
    def adjust(self, request, pk=None):
        account = self.get_object()
        serializer = AdjustSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        entry = LoyaltyService().adjust(
            account.pk,
            serializer.validated_data["points"],
            serializer.validated_data["reason"],
            branch=resolve_branch(serializer.validated_data.get("branch_id")),
        )
        return Response(TransactionSerializer(entry).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"])
    def deactivate(self, request, pk=None):
        account = LoyaltyService().deactivate(self.get_object().pk)
        return Response(AccountSerializer(account).data)


class EarnView(APIView):
    """
    POST /api/loyalty/earn/
    Award points for a completed order. Safe to retry: a processed order
    returns its original result with duplicate=true.
    """

    permission_classes = [HasBrandApiKey]

    def post(self, request):
        serializer = EarnSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = LoyaltyService().process_order(serializer.validated_data["order_id"])
        return Response(
            EarnResultSerializer(result).data,
            status=status.HTTP_200_OK if result.duplicate else status.HTTP_201_CREATED,
        )


class OrderView(APIView):
    """
    POST /api/loyalty/orders/
    Checkout hand-over: stores the order with its items, spends the points
    used for its discount and awards points on the discounted total.
    """

    permission_classes = [HasBrandApiKey]

    def post(self, request):
        serializer = OrderIntakeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        intake = LoyaltyService().register_order(
            resolve_branch(data["branch_id"]),
            data["items"],
            customer_external_id=data["customer_id"] or None,
            used_points=data["used_points"],
            discount_amount=data["discount_amount"],
        )
        return Response(
            {
                "order": OrderSerializer(intake.order).data,
                "points": EarnResultSerializer(intake.earn).data if intake.earn else None,
            },
            status=status.HTTP_201_CREATED,
        )


class RedeemView(APIView):
    """
    POST /api/loyalty/redeem/
    Exchange points for a catalog reward.
    """

    permission_classes = [HasBrandApiKey]

    def post(self, request):
        serializer = RedeemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RedemptionEngine().redeem(
            serializer.validated_data["account_id"],
            serializer.validated_data["reward_id"],
            order_id=serializer.validated_data.get("order_id"),
        )
        return Response(RedemptionResultSerializer(result).data, status=status.HTTP_201_CREATED)


class CheckRedemptionView(APIView):
    """
    POST /api/loyalty/check-redemption/
    Price a points discount for an order. Nothing is spent.
    """

    permission_classes = [HasBrandApiKey]

    def post(self, request):
        serializer = CheckRedemptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        quote = RedemptionEngine().quote_discount(
            request.auth.brand_id,
            serializer.validated_data["points_to_use"],
            serializer.validated_data["order_total"],
            account_id=serializer.validated_data.get("account_id"),
        )
        return Response(RedemptionQuoteSerializer(quote).data)


class TransferView(APIView):
    """
    POST /api/loyalty/transfer/
    Move points between two branches of the same brand.
    """

    permission_classes = [HasBrandApiKey]

    def post(self, request):
        serializer = TransferSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = TransferCoordinator().transfer_branch_attribution(**serializer.validated_data)
        return Response(TransferResultSerializer(result).data, status=status.HTTP_201_CREATED)


class RedemptionViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Redemption history of the current brand, and cancellation.
    """

    permission_classes = [HasBrandApiKey]
    serializer_class = RedemptionSerializer

    def get_queryset(self):
        queryset = Redemption.objects.order_by("-created_at")
        account_id = self.request.query_params.get("account_id")
        if account_id:
            queryset = queryset.filter(account_id=account_id)
        return queryset

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        redemption = RedemptionEngine().cancel(self.get_object().pk)
        return Response(RedemptionSerializer(redemption).data)


class CampaignViewSet(viewsets.ModelViewSet):
    """
    API endpoint for Campaigns.
    """

    permission_classes = [HasBrandApiKey]
    serializer_class = CampaignSerializer

    def get_queryset(self):
        """
        Because Campaign inherits from TenantAwareModel, Campaign.objects.all()
        is automatically filtered by the current brand.
        """
        return Campaign.objects.all().order_by("id")


class RewardViewSet(viewsets.ModelViewSet):
    """
    API endpoint for managing Rewards (the catalog).
    """

    permission_classes = [HasBrandApiKey]
    serializer_class = RewardSerializer

    def get_queryset(self):
        return Reward.objects.all().order_by("id")


class LoyaltySettingViewSet(viewsets.ModelViewSet):
    """
    Brand policy documents (point_rules, tier_rules, redemption_rules).
    """

    permission_classes = [HasBrandApiKey]
    serializer_class = LoyaltySettingSerializer

    def get_queryset(self):
        return LoyaltySetting.objects.all().order_by("setting_key")
