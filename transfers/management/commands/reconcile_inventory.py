"""
Management command to compare branch ledgers with the transfer log.

Usage:
    python manage.py reconcile_inventory
    python manage.py reconcile_inventory --branch DTN001
"""
from django.core.management.base import BaseCommand, CommandError

from core.exceptions import NotFoundError
from inventory.models import Branch
from transfers.services import reconcile_branch


class Command(BaseCommand):
    help = 'Replay delivered transfers and report ledger rows that disagree'

    def add_arguments(self, parser):
        parser.add_argument(
            '--branch',
            help='Branch code or id to check (default: all branches)',
        )

    def handle(self, *args, **options):
        if options['branch']:
            refs = [options['branch']]
        else:
            refs = list(Branch.objects.order_by('code').values_list('code', flat=True))

        drifting = 0
        for ref in refs:
            try:
                result = reconcile_branch(ref)
            except NotFoundError as e:
                raise CommandError(str(e))

            branch = result['branch']
            label = f"{branch.code} ({'sink' if result['is_sink'] else 'forwards stock'})"
            if not result['drift']:
                self.stdout.write(f"{label}: {result['items_checked']} items consistent")
                continue

            drifting += 1
            self.stdout.write(self.style.WARNING(f"{label}: {len(result['drift'])} items drift"))
            for entry in result['drift']:
                self.stdout.write(
                    f"  {entry['item_code']}: ledger {entry['ledger']}, "
                    f"transfer log {entry['replayed']} ({entry['difference']:+d})"
                )

        if drifting:
            self.stdout.write(self.style.WARNING(f"{drifting} of {len(refs)} branches drift"))
        else:
            self.stdout.write(self.style.SUCCESS(f"All {len(refs)} branches consistent"))
