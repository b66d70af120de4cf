"""
Middleware for resolving the brand (tenant) context of a request.
POS terminals and the ordering backend authenticate with a brand API key.
"""

from django.http import JsonResponse

from brands.models import BrandApiKey
from core.context import reset_current_brand_id, set_current_brand_id

API_KEY_HEADER = "X-API-KEY"


class TenantContextMiddleware:
    """
    Acts as a "Gatekeeper". It determines the current Brand from the
    'X-API-KEY' header and exposes it as the request-scoped tenant context.
    """

    public_prefixes = ("/admin/", "/static/", "/favicon.ico")

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        # Always reset first so a previous request on this worker cannot leak its brand.
        reset_current_brand_id()

        path = request.path
        if path.startswith(self.public_prefixes):
            return self.get_response(request)

        brand = None
        api_key = request.headers.get(API_KEY_HEADER)

        if api_key:
            try:
                key_obj = BrandApiKey.objects.select_related("brand").get(
                    key=api_key, is_active=True, brand__is_active=True
                )
            except BrandApiKey.DoesNotExist:
                return JsonResponse({"detail": "Invalid or inactive API Key."}, status=403)
            brand = key_obj.brand

        if path.startswith("/api/loyalty/") and not brand:
            return JsonResponse(
                {"detail": "Brand context required. Provide a valid X-API-KEY header."},
                status=401,
            )

        if brand:
            set_current_brand_id(brand.id)
            request.brand = brand

        try:
            return self.get_response(request)
        finally:
            reset_current_brand_id()
