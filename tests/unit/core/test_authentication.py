import pytest
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.test import APIRequestFactory

from brands.authentication import ApiKeyAuthentication, HasBrandApiKey
from brands.models import BrandApiKey
from tests.factories.brands import BrandApiKeyFactory


class TestApiKeyAuthentication:
    def test_valid_key(self, brand):
        key = BrandApiKeyFactory(brand=brand)
        request = APIRequestFactory().get("/", HTTP_X_API_KEY=key.key)

        user, auth = ApiKeyAuthentication().authenticate(request)

        assert user.is_anonymous
        assert auth == key
        assert auth.brand == brand

    def test_no_header_is_not_an_attempt(self):
        assert ApiKeyAuthentication().authenticate(APIRequestFactory().get("/")) is None

    def test_invalid_key(self):
        request = APIRequestFactory().get("/", HTTP_X_API_KEY="nope")

        with pytest.raises(AuthenticationFailed):
            ApiKeyAuthentication().authenticate(request)

    def test_generated_keys_are_unique(self, brand):
        first = BrandApiKey.objects.create(brand=brand, name="POS 1")
        second = BrandApiKey.objects.create(brand=brand, name="POS 2")

        assert first.key != second.key
        assert len(first.key) >= 32


class TestHasBrandApiKey:
    def test_requires_a_key_principal(self, brand):
        request = APIRequestFactory().get("/")
        request.auth = None
        assert HasBrandApiKey().has_permission(request, None) is False

        request.auth = BrandApiKeyFactory(brand=brand)
        assert HasBrandApiKey().has_permission(request, None) is True
