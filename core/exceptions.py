"""
Domain error base class and the DRF exception handler that renders it.
"""

import logging

from django.db import DatabaseError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """
    Base class for business-rule failures raised by service layers.

    Subclasses declare the HTTP status they map to and a stable machine code.
    4xx statuses mean the caller did something wrong; 5xx means we did.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    code = "domain_error"
    default_detail = "The request could not be processed."
    retryable = False

    def __init__(self, detail=None, **context):
        self.detail = detail or self.default_detail
        self.context = context
        super().__init__(self.detail)

    def as_dict(self):
        payload = {"error": self.code, "detail": self.detail, "retryable": self.retryable}
        if self.context:
            payload.update(self.context)
        return payload


def domain_exception_handler(exc, context):
    """
    Extends DRF's default handler with DomainError and storage failures.
    """
    response = exception_handler(exc, context)
    if response is not None:
        return response

    if isinstance(exc, DomainError):
        return Response(exc.as_dict(), status=exc.status_code)

    if isinstance(exc, DatabaseError):
        view = context.get("view")
        logger.exception("Storage failure in %s", view.__class__.__name__ if view else "unknown view")
        return Response(
            {"error": "storage_unavailable", "detail": "Storage is temporarily unavailable.", "retryable": True},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return None
