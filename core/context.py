"""
Request-scoped brand (tenant) context.

The middleware sets it from the caller's API key; TenantAwareManager reads it.
Celery tasks and management commands run without it and see every brand.
"""

from contextvars import ContextVar
from typing import Optional
from uuid import UUID

_current_brand_id: ContextVar[Optional[UUID]] = ContextVar("current_brand_id", default=None)


def set_current_brand_id(brand_id: UUID):
    _current_brand_id.set(brand_id)


def get_current_brand_id() -> Optional[UUID]:
    """
    Id of the brand the current request acts for, or None outside a request.
    """
    return _current_brand_id.get()


def reset_current_brand_id():
    _current_brand_id.set(None)
