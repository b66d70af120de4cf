import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from core.context import reset_current_brand_id
from tests.factories.brands import BrandApiKeyFactory, BrandFactory, BranchFactory


@pytest.fixture
def api_client():
    """
    Fixture to provide an instance of DRF APIClient.
    """
    return APIClient()


@pytest.fixture(autouse=True)
def enable_db_access_for_all_tests(db):
    """
    Automatically enables database access for all tests.
    """
    pass


@pytest.fixture(autouse=True)
def clean_brand_context_and_cache():
    """
    The brand context is a process-wide ContextVar and the campaign list is cached;
    neither may leak from one test into the next.
    """
    reset_current_brand_id()
    cache.clear()
    yield
    reset_current_brand_id()
    cache.clear()


@pytest.fixture
def brand():
    return BrandFactory(name="Burger Brand")


@pytest.fixture
def branch(brand):
    return BranchFactory(brand=brand, name="Kadikoy")


@pytest.fixture
def other_branch(brand):
    return BranchFactory(brand=brand, name="Besiktas")


@pytest.fixture
def api_key(brand):
    """Creates an API key for the brand and returns the raw key string."""
    key_value = "brand-secret-key"
    BrandApiKeyFactory(brand=brand, key=key_value)
    return key_value


@pytest.fixture
def brand_client(api_client, api_key):
    api_client.credentials(HTTP_X_API_KEY=api_key)
    return api_client
