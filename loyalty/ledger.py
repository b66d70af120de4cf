"""
Transaction Ledger.

Every point movement goes through append(), which must run on an account row
locked by locked_account(). The lock is the per-account serialization point:
two writers for the same account always see each other's result, writers for
different accounts never wait on each other.
"""

import functools
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import List

from django.conf import settings
from django.db import OperationalError, transaction
from django.utils import timezone

from loyalty import tiers
from loyalty.exceptions import (
    AccountInactive,
    AccountNotFound,
    Conflict,
    InsufficientPoints,
    InvalidLedgerEntry,
)
from loyalty.models import LoyaltyAccount, PointTransaction
from loyalty.policy import load_policy

logger = logging.getLogger(__name__)


def retry_on_conflict(func=None, *, attempts=None, backoff=0.05):
    """
    Retry a whole atomic unit when the database reports lock contention.

    Only the outermost caller may retry: once inside an atomic block the
    transaction is broken and the only safe move is to give up with Conflict.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            max_attempts = attempts or getattr(settings, "LOYALTY_CONFLICT_RETRIES", 3)
            nested = transaction.get_connection().in_atomic_block

            for attempt in range(1, max_attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except OperationalError as e:
                    if nested or attempt == max_attempts:
                        logger.warning("%s gave up after %d attempt(s): %s", fn.__name__, attempt, e)
                        raise Conflict() from e
                    logger.warning("%s hit lock contention (attempt %d): %s", fn.__name__, attempt, e)
                    time.sleep(backoff * 2 ** (attempt - 1))

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


@contextmanager
def locked_account(account_id, require_active=True):
    """
    Open an atomic block and lock the account row for its duration.
    Any exception raised inside rolls back everything written in the block.
    """
    with transaction.atomic():
        try:
            account = LoyaltyAccount.objects.select_for_update().get(pk=account_id)
        except LoyaltyAccount.DoesNotExist:
            raise AccountNotFound(account_id=account_id) from None
        if require_active and not account.is_active:
            raise AccountInactive(account_id=account_id)
        yield account


def _check_sign(transaction_type, points):
    if transaction_type in PointTransaction.CREDIT_TYPES and points < 0:
        raise InvalidLedgerEntry(f"'{transaction_type}' entries cannot carry negative points.")
    if transaction_type in PointTransaction.DEBIT_TYPES and points > 0:
        raise InvalidLedgerEntry(f"'{transaction_type}' entries must carry zero or negative points.")
    if transaction_type not in PointTransaction.CREDIT_TYPES | PointTransaction.DEBIT_TYPES:
        raise InvalidLedgerEntry(f"Unknown transaction type '{transaction_type}'.")


def append(
    account,
    *,
    transaction_type,
    points,
    branch=None,
    order=None,
    description="",
    metadata=None,
    counts_toward_lifetime=None,
):
    """
    Write one ledger entry and move the account balance with it.

    `account` must come from locked_account() in the current atomic block.
    Returns the created PointTransaction.
    """
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("ledger.append() must run inside locked_account().")

    _check_sign(transaction_type, points)

    new_balance = account.current_points + points
    if new_balance < 0:
        raise InsufficientPoints(
            f"Insufficient points. Balance: {account.current_points}, Required: {abs(points)}",
            balance=account.current_points,
            required=abs(points),
        )

    if counts_toward_lifetime is None:
        counts_toward_lifetime = transaction_type in PointTransaction.LIFETIME_TYPES

    entry = PointTransaction.objects.create(
        brand_id=account.brand_id,
        account=account,
        branch=branch,
        order=order,
        transaction_type=transaction_type,
        points=points,
        balance_after=new_balance,
        description=description,
        metadata=metadata or {},
    )

    account.current_points = new_balance
    update_fields = ["current_points", "updated_at"]
    if counts_toward_lifetime and points > 0:
        account.lifetime_points += points
        update_fields.append("lifetime_points")
    account.save(update_fields=update_fields)

    logger.debug(
        "Ledger %s %+d on account %s -> %d", transaction_type, points, account.pk, new_balance
    )
    return entry


def promote_tier(account, now=None):
    """Run tier promotion for a locked account and persist a change."""
    policy = load_policy(account.brand_id)
    if tiers.promote(account, policy.tier_rules, now or timezone.now()):
        account.save(update_fields=["tier_level", "tier_expiry_date", "updated_at"])
        return True
    return False


class LedgerService:
    """
    Single-call API for callers that only need one ledger entry.
    """

    @retry_on_conflict
    def append(self, account_id, transaction_type, points, **kwargs):
        with locked_account(account_id) as account:
            entry = append(account, transaction_type=transaction_type, points=points, **kwargs)
            if points > 0 and transaction_type in PointTransaction.LIFETIME_TYPES:
                promote_tier(account)
            return entry


@dataclass
class LedgerAudit:
    account_id: int
    current_points: int
    expected_balance: int
    entries: int
    broken_entries: List[int] = field(default_factory=list)

    @property
    def is_consistent(self):
        return not self.broken_entries and self.expected_balance == self.current_points


def replay(account):
    """
    Yield (entry, running_balance) for an account in creation order.
    """
    balance = 0
    for entry in PointTransaction.objects.filter(account_id=account.pk).order_by("created_at", "id").iterator():
        balance += entry.points
        yield entry, balance


def verify_account(account) -> LedgerAudit:
    """
    Replay the ledger and compare every snapshot with the running sum.
    """
    audit = LedgerAudit(account_id=account.pk, current_points=account.current_points, expected_balance=0, entries=0)
    for entry, balance in replay(account):
        audit.entries += 1
        audit.expected_balance = balance
        if entry.balance_after != balance:
            audit.broken_entries.append(entry.pk)
    return audit
