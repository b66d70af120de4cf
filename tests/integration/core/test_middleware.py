import pytest
from django.urls import reverse
from rest_framework import status

from core.context import get_current_brand_id
from tests.factories.brands import BrandApiKeyFactory, BrandFactory
from tests.factories.loyalty import LoyaltyAccountFactory


@pytest.mark.django_db
class TestTenantContextMiddleware:
    def test_missing_key_is_rejected(self, api_client):
        response = api_client.get(reverse("accounts-list"))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert "Brand context required" in response.json()["detail"]

    def test_invalid_key_is_rejected(self, api_client):
        api_client.credentials(HTTP_X_API_KEY="no-such-key")

        response = api_client.get(reverse("accounts-list"))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_revoked_key_is_rejected(self, api_client, brand):
        BrandApiKeyFactory(brand=brand, key="revoked", is_active=False)
        api_client.credentials(HTTP_X_API_KEY="revoked")

        response = api_client.get(reverse("accounts-list"))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_inactive_brand_is_rejected(self, api_client):
        BrandApiKeyFactory(brand=BrandFactory(is_active=False), key="sleeping")
        api_client.credentials(HTTP_X_API_KEY="sleeping")

        response = api_client.get(reverse("accounts-list"))

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_context_is_cleared_after_the_request(self, brand_client):
        response = brand_client.get(reverse("accounts-list"))

        assert response.status_code == status.HTTP_200_OK
        assert get_current_brand_id() is None


@pytest.mark.django_db
class TestTenantIsolation:
    def test_brand_only_sees_its_accounts(self, api_client):
        """
        Scenario:
        1. Brand A and Brand B each have an account.
        2. Each brand lists accounts with its own key.
        3. Neither sees the other's account.
        """
        brand_a = BrandFactory(name="Brand A")
        brand_b = BrandFactory(name="Brand B")
        BrandApiKeyFactory(brand=brand_a, key="key-a")
        BrandApiKeyFactory(brand=brand_b, key="key-b")
        account_a = LoyaltyAccountFactory(brand=brand_a)
        account_b = LoyaltyAccountFactory(brand=brand_b)

        api_client.credentials(HTTP_X_API_KEY="key-a")
        response_a = api_client.get(reverse("accounts-list"))
        api_client.credentials(HTTP_X_API_KEY="key-b")
        response_b = api_client.get(reverse("accounts-list"))

        assert [a["id"] for a in response_a.data] == [account_a.pk]
        assert [a["id"] for a in response_b.data] == [account_b.pk]

    def test_other_brands_account_is_not_found(self, brand_client):
        foreign = LoyaltyAccountFactory()

        response = brand_client.get(reverse("accounts-detail", args=[foreign.pk]))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error"] == "account_not_found"
