"""
Signals for the Loyalty application.
Keeps the per-brand active campaign cache in step with campaign writes.
"""

from django.core.cache import cache
from django.db import transaction
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from loyalty.campaigns import campaign_cache_key
from loyalty.models import Campaign


@receiver([post_save, post_delete], sender=Campaign)
def clear_campaign_cache(sender, instance, **kwargs):
    """
    Drops the brand's cached campaign list now and again once the write commits.
    An earn running in another transaction may re-cache the old list in between.
    """
    key = campaign_cache_key(instance.brand_id)
    cache.delete(key)
    transaction.on_commit(lambda: cache.delete(key))
