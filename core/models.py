"""
Abstract base for brand-owned models.
"""

from django.db import models

from core.context import get_current_brand_id
from core.managers import TenantAwareManager


class TenantAwareModel(models.Model):
    """
    Rows owned by one brand.

    Reads go through TenantAwareManager. A row saved without an explicit brand
    inside a request is stamped with the request's brand.
    """

    brand = models.ForeignKey(
        "brands.Brand",
        on_delete=models.CASCADE,
        related_name="%(class)s_set",
        db_index=True,
    )

    objects = TenantAwareManager()

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if self.brand_id is None:
            self.brand_id = get_current_brand_id()
        super().save(*args, **kwargs)
