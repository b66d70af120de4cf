"""
Custom management command to generate demo data.
"""

import random
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from brands.models import Brand, BrandApiKey, Branch
from loyalty.models import Campaign, CustomerProfile, Order, OrderItem, Reward
from loyalty.services import LoyaltyService


class Command(BaseCommand):
    help = "Generates demo data for the loyalty engine"

    def add_arguments(self, parser):
        parser.add_argument("--customers", type=int, default=20, help="Number of customers to generate")
        parser.add_argument("--orders", type=int, default=200, help="Number of orders to process")
        parser.add_argument("--branches", type=int, default=3, help="Number of branches of the demo brand")
        parser.add_argument("--seed", type=int, default=None, help="Random seed for repeatable data")

    def handle(self, *args, **options):
        rng = random.Random(options["seed"])
        num_customers = options["customers"]
        num_orders = options["orders"]

        self.stdout.write(f" Starting demo data generation (Customers: {num_customers}, Orders: {num_orders})...")

        with transaction.atomic():
            brand, created = Brand.objects.get_or_create(name="Demo Burger Co")
            if created:
                api_key = BrandApiKey.objects.create(brand=brand, name="Demo ordering backend")
                self.stdout.write(f" API key for {brand.name}: {api_key.key}")

            branches = list(Branch.objects.filter(brand=brand))
            for i in range(len(branches), options["branches"]):
                branches.append(Branch.objects.create(brand=brand, name=f"Branch #{i + 1}"))

            if not Reward.objects.filter(brand=brand).exists():
                Reward.objects.create(brand=brand, name="Free Coffee", points_required=150)
                Reward.objects.create(brand=brand, name="Free Burger", points_required=600, stock_limit=50)

            customers = [
                CustomerProfile.objects.get_or_create(external_id=f"DEMO_USER_{i}")[0]
                for i in range(1, num_customers + 1)
            ]

        self._ensure_campaign(brand)

        service = LoyaltyService()
        points_total = 0
        for _ in range(num_orders):
            order = Order.objects.create(
                brand=brand,
                branch=rng.choice(branches),
                customer=rng.choice(customers),
                total_price=rng.randint(50, 900),
            )
            OrderItem.objects.create(
                order=order,
                product_id=rng.randint(1, 40),
                category_id=rng.randint(1, 5),
                price=order.total_price,
            )
            points_total += service.process_order(order.pk).points_earned

        self.stdout.write(
            self.style.SUCCESS(
                f" Done! Processed {num_orders} orders for {num_customers} customers ({points_total} points earned)."
            )
        )

    def _ensure_campaign(self, brand):
        if Campaign.objects.filter(brand=brand).exists():
            return
        now = timezone.now()
        Campaign.objects.create(
            brand=brand,
            name="Coffee lovers",
            campaign_type=Campaign.CATEGORY_BONUS,
            rules={"target_category_id": 1, "bonus_rate": 0.1},
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=30),
        )
        Campaign.objects.create(
            brand=brand,
            name="Welcome",
            campaign_type=Campaign.WELCOME,
            rules={"points": 100},
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=365),
        )
