"""
Replays every account's ledger and reports balance divergence.
"""

from django.core.management.base import BaseCommand, CommandError

from loyalty.ledger import verify_account
from loyalty.models import LoyaltyAccount


class Command(BaseCommand):
    help = "Verifies that every account balance equals the sum of its ledger"

    def add_arguments(self, parser):
        parser.add_argument("--brand", default=None, help="Only audit accounts of this brand id")

    def handle(self, *args, **options):
        accounts = LoyaltyAccount.objects.order_by("id")
        if options["brand"]:
            accounts = accounts.filter(brand_id=options["brand"])

        checked = 0
        broken = []
        for account in accounts.iterator(chunk_size=500):
            audit = verify_account(account)
            checked += 1
            if not audit.is_consistent:
                broken.append(audit)
                self.stderr.write(
                    f"Account {account.pk}: balance {audit.current_points}, ledger sum {audit.expected_balance}, "
                    f"broken entries {audit.broken_entries}"
                )

        if broken:
            raise CommandError(f"{len(broken)} of {checked} accounts diverge from their ledger.")

        self.stdout.write(self.style.SUCCESS(f"All {checked} accounts match their ledger."))
