"""
Error taxonomy of the points engine.
"""

from rest_framework import status

from core.exceptions import DomainError


class AccountNotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "account_not_found"
    default_detail = "Loyalty account not found."


class AccountInactive(DomainError):
    code = "account_inactive"
    default_detail = "Loyalty account is deactivated."


class OrderNotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "order_not_found"
    default_detail = "Order not found."


class InvalidOrder(DomainError):
    code = "invalid_order"
    default_detail = "Order cannot earn points."


class InsufficientPoints(DomainError):
    code = "insufficient_points"
    default_detail = "Insufficient points."


class RewardUnavailable(DomainError):
    code = "reward_unavailable"
    default_detail = "This reward is currently unavailable."


class StockExhausted(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "stock_exhausted"
    default_detail = "This reward is out of stock."


class InvalidTransfer(DomainError):
    code = "invalid_transfer"
    default_detail = "Points cannot be transferred between these branches."


class InvalidLedgerEntry(DomainError):
    code = "invalid_ledger_entry"
    default_detail = "Points sign does not match the transaction type."


class RedemptionNotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "redemption_not_found"
    default_detail = "Redemption not found."


class RedemptionNotCancellable(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "redemption_not_cancellable"
    default_detail = "Only completed redemptions can be cancelled."


class Conflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_detail = "The account is busy, please retry."
    retryable = True


class CampaignEvaluationSkipped(Exception):
    """
    Raised for a malformed campaign. Never surfaced to clients: the evaluator
    logs it and moves on to the next campaign.
    """

    def __init__(self, campaign_type, reason):
        self.campaign_type = campaign_type
        self.reason = reason
        super().__init__(f"{campaign_type}: {reason}")
