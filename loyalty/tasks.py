import logging

from celery import shared_task
from django.db import DatabaseError
from django.utils import timezone

from loyalty import tiers
from loyalty.ledger import locked_account
from loyalty.models import LoyaltyAccount
from loyalty.policy import load_policy

logger = logging.getLogger(__name__)


@shared_task
def review_expired_tiers():
    """
    Periodic task applying the end-of-tier-year policy.
    Scheduled daily by Celery beat; picks every account whose tier_expiry_date has passed.
    """
    now = timezone.now()
    logger.info("Starting tier review at %s", now.isoformat())

    batch_size = 1000
    policies = {}
    processed_count = 0
    changed_count = 0

    # Using iterator() to reduce memory usage
    accounts = (
        LoyaltyAccount.objects.filter(tier_expiry_date__lte=now, is_active=True)
        .order_by("id")
        .values_list("id", "brand_id")
        .iterator(chunk_size=batch_size)
    )

    for account_id, brand_id in accounts:
        if brand_id not in policies:
            policies[brand_id] = load_policy(brand_id)
        try:
            if _review_account(account_id, policies[brand_id].tier_rules, now):
                changed_count += 1
            processed_count += 1
        except DatabaseError:
            logger.exception("Error reviewing tier of account %s", account_id)

    logger.info("Tier review finished. Processed %d accounts, %d tier changes.", processed_count, changed_count)
    return {"processed": processed_count, "changed": changed_count}


def _review_account(account_id, tier_rules, now):
    with locked_account(account_id, require_active=False) as account:
        previous = tiers.review_expiry(account, tier_rules, now)
        account.save(update_fields=["tier_level", "tier_expiry_date", "updated_at"])
        return previous is not None
