import uuid

from core.context import get_current_brand_id, reset_current_brand_id, set_current_brand_id
from loyalty.models import Campaign, Reward
from tests.factories.brands import BrandFactory
from tests.factories.loyalty import CampaignFactory


class TestBrandContext:
    def test_set_get_reset(self):
        brand_id = uuid.uuid4()

        set_current_brand_id(brand_id)
        assert get_current_brand_id() == brand_id

        reset_current_brand_id()
        assert get_current_brand_id() is None


class TestTenantAwareManager:
    def test_filters_by_active_brand(self):
        brand_a = BrandFactory()
        brand_b = BrandFactory()
        CampaignFactory(brand=brand_a)
        CampaignFactory(brand=brand_b)

        set_current_brand_id(brand_a.id)

        assert list(Campaign.objects.values_list("brand_id", flat=True)) == [brand_a.id]

    def test_without_context_sees_every_brand(self):
        CampaignFactory()
        CampaignFactory()

        assert Campaign.objects.count() == 2


class TestTenantAwareModel:
    def test_new_row_takes_the_active_brand(self):
        brand = BrandFactory()
        set_current_brand_id(brand.id)

        reward = Reward.objects.create(name="Free Tea", points_required=10)

        assert reward.brand_id == brand.id

    def test_explicit_brand_wins(self):
        active = BrandFactory()
        owner = BrandFactory()
        set_current_brand_id(active.id)

        reward = Reward.objects.create(brand=owner, name="Free Tea", points_required=10)

        assert reward.brand_id == owner.id
