"""
Models for the brands application (tenants and their branches).
"""

import secrets
import uuid

from django.db import models

from core.models import TenantAwareModel


class Brand(models.Model):
    """
    Represents a Tenant (restaurant brand) in the system.
    Loyalty accounts, campaigns and rewards are all scoped to a brand.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name


class Branch(TenantAwareModel):
    """
    A physical location of a brand. Ledger entries are attributed to branches.
    """

    name = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)

    class Meta:
        verbose_name_plural = "branches"

    def __str__(self):
        return f"{self.name} ({self.brand_id})"


def generate_api_key():
    return secrets.token_urlsafe(32)


class BrandApiKey(models.Model):
    """
    Separate model for managing API keys.
    Allows key rotation and one key per POS terminal or integration.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    brand = models.ForeignKey(Brand, on_delete=models.CASCADE, related_name="api_keys")
    key = models.CharField(max_length=64, unique=True, db_index=True, default=generate_api_key)
    name = models.CharField(max_length=50, help_text="e.g. 'Ordering backend' or 'POS Terminal 1'")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.brand.name} - {self.name}"
