from django.contrib.auth.models import AnonymousUser
from rest_framework import authentication, exceptions, permissions

from brands.models import BrandApiKey


class ApiKeyAuthentication(authentication.BaseAuthentication):
    """
    Authenticates requests based on the 'X-API-KEY' header.
    The authenticated principal is the key itself; request.auth.brand is the tenant.
    """

    def authenticate(self, request):
        api_key_header = request.headers.get("X-API-KEY")

        if not api_key_header:
            return None  # Authentication not attempted

        try:
            api_key_obj = BrandApiKey.objects.select_related("brand").get(
                key=api_key_header, is_active=True, brand__is_active=True
            )
        except BrandApiKey.DoesNotExist:
            raise exceptions.AuthenticationFailed("Invalid or inactive API Key.") from None

        return (AnonymousUser(), api_key_obj)

    def authenticate_header(self, request):
        return "X-API-KEY"


class HasBrandApiKey(permissions.BasePermission):
    """
    Grants access to requests authenticated by an active brand API key.
    """

    message = "A valid brand API key is required."

    def has_permission(self, request, view):
        return isinstance(request.auth, BrandApiKey)
