"""
Brand-scoped model manager.
"""

from django.db import models

from core.context import get_current_brand_id


class TenantAwareManager(models.Manager):
    """
    Default manager of every brand-owned model.

    Inside a request only the caller's brand rows exist as far as the ORM is
    concerned; locking reads and lookups by pk go through the same filter.
    """

    def get_queryset(self):
        queryset = super().get_queryset()
        brand_id = get_current_brand_id()
        if brand_id is None:
            # Celery tasks and management commands work across brands.
            return queryset
        return queryset.filter(brand_id=brand_id)
