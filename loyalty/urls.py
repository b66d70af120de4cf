"""
URL routing for the loyalty application API.
"""

from django.urls import path
from rest_framework.routers import DefaultRouter

from loyalty.views import (
    AccountViewSet,
    CampaignViewSet,
    CheckRedemptionView,
    EarnView,
    LoyaltySettingViewSet,
    OrderView,
    RedeemView,
    RedemptionViewSet,
    RewardViewSet,
    TransferView,
)

router = DefaultRouter()
router.register(r"accounts", AccountViewSet, basename="accounts")
router.register(r"redemptions", RedemptionViewSet, basename="redemptions")
router.register(r"campaigns", CampaignViewSet, basename="campaigns")
router.register(r"rewards", RewardViewSet, basename="rewards")
router.register(r"settings", LoyaltySettingViewSet, basename="settings")

urlpatterns = [
    path("orders/", OrderView.as_view(), name="orders"),
    path("earn/", EarnView.as_view(), name="earn"),
    path("redeem/", RedeemView.as_view(), name="redeem"),
    path("check-redemption/", CheckRedemptionView.as_view(), name="check-redemption"),
    path("transfer/", TransferView.as_view(), name="transfer"),
] + router.urls
