"""
Management command to seed the database with sample bakery data.

Generates:
- A bakery catalogue across every category, with central bakery stock
- The MAIN branch (central bakery) and a set of retail branches
- Opening ledger rows for each retail branch, delivered as transfers

Usage:
    python manage.py seed_data
    python manage.py seed_data --clear  # Clear existing data first
"""
import random
from decimal import Decimal

from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import transaction

from inventory.models import Item, Branch, Inventory
from transfers.models import Transfer
from transfers.services import transfer_stock

CATALOGUE = {
    Item.Category.BREADS: [
        ('BRD', 'Sourdough Loaf', '4.50'), ('BRD', 'Baguette', '2.75'),
        ('BRD', 'Whole Wheat Loaf', '3.95'), ('BRD', 'Rye Bread', '4.25'),
        ('BRD', 'Ciabatta', '3.50'), ('BRD', 'Brioche', '5.25'),
    ],
    Item.Category.PASTRIES: [
        ('PST', 'Butter Croissant', '2.95'), ('PST', 'Pain au Chocolat', '3.25'),
        ('PST', 'Cinnamon Roll', '3.50'), ('PST', 'Danish', '3.10'),
        ('PST', 'Almond Croissant', '3.75'),
    ],
    Item.Category.CAKES: [
        ('CAK', 'Carrot Cake', '28.00'), ('CAK', 'Chocolate Fudge Cake', '32.00'),
        ('CAK', 'Cheesecake', '30.00'), ('CAK', 'Lemon Drizzle', '24.00'),
    ],
    Item.Category.COOKIES: [
        ('CKE', 'Chocolate Chip Cookie', '1.75'), ('CKE', 'Oatmeal Raisin Cookie', '1.60'),
        ('CKE', 'Shortbread', '1.50'), ('CKE', 'Macaron', '2.20'),
    ],
    Item.Category.OTHERS: [
        ('OTH', 'Granola Jar', '7.50'), ('OTH', 'Quiche Lorraine', '6.25'),
    ],
}

ALLERGENS = ['gluten', 'gluten, milk', 'gluten, eggs, milk', 'nuts, gluten', '']

BRANCHES = [
    ('Downtown', 'DTN001', 'New York', 'NY'),
    ('Riverside', 'RIV001', 'Chicago', 'IL'),
    ('Harbor View', 'HBR001', 'Seattle', 'WA'),
    ('Old Town', 'OLD001', 'Austin', 'TX'),
    ('Uptown', 'UPT001', 'Boston', 'MA'),
    ('Market Square', 'MKT001', 'Denver', 'CO'),
]

WEEKDAY_HOURS = {'open': '07:00', 'close': '19:00'}
WEEKEND_HOURS = {'open': '08:00', 'close': '17:00'}


class Command(BaseCommand):
    help = 'Seed the database with a sample bakery catalogue, branches and stock'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding',
        )
        parser.add_argument(
            '--branches',
            type=int,
            default=len(BRANCHES),
            help=f'Number of retail branches to create (default: {len(BRANCHES)})',
        )
        parser.add_argument(
            '--central-stock',
            type=int,
            default=500,
            help='Central bakery stock per item (default: 500)',
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self._clear_data()

        self.stdout.write('Starting database seeding...')

        with transaction.atomic():
            items = self._create_items(options['central_stock'])
            self._create_central_branch()
            branches = self._create_branches(options['branches'])
            self._stock_branches(items, branches)

        self.stdout.write(self.style.SUCCESS('Database seeding completed successfully!'))

    def _clear_data(self):
        """Clear all existing data."""
        Transfer.objects.all().delete()
        Inventory.objects.all().delete()
        Item.objects.all().delete()
        Branch.objects.all().delete()

        self.stdout.write(self.style.WARNING('All existing data cleared.'))

    def _create_items(self, central_stock):
        """Create the catalogue with central bakery stock."""
        items = []
        for category, entries in CATALOGUE.items():
            for index, (prefix, name, price) in enumerate(entries, start=1):
                item, created = Item.objects.get_or_create(
                    code=f"{prefix}{index:03d}",
                    defaults={
                        'name': name,
                        'category': category,
                        'description': f"Freshly baked {name.lower()}.",
                        'allergens': random.choice(ALLERGENS),
                        'price': Decimal(price),
                        'stock': central_stock,
                    }
                )
                items.append(item)
                if created:
                    self.stdout.write(f'  Created item: {item.code} {name}')

        self.stdout.write(self.style.SUCCESS(f'Created {len(items)} items'))
        return items

    def _create_central_branch(self):
        code = settings.CENTRAL_BRANCH_CODE
        branch, created = Branch.objects.get_or_create(
            code=code,
            defaults={
                'name': 'Central Bakery',
                'city': 'New York',
                'state': 'NY',
                'phone': '555-0100',
                'description': 'Production kitchen supplying every branch.',
                'operating_hours': self._hours(),
            }
        )
        if created:
            self.stdout.write(f'  Created central branch: {branch.code}')
        return branch

    def _create_branches(self, count):
        """Create retail branches."""
        branches = []
        for index, (name, code, city, state) in enumerate(BRANCHES[:count], start=1):
            branch, created = Branch.objects.get_or_create(
                code=code,
                defaults={
                    'name': f"{name} Bakery",
                    'street': f"{random.randint(100, 9999)} Main Street",
                    'city': city,
                    'state': state,
                    'zip_code': f"{random.randint(10000, 99999)}",
                    'phone': f"555-01{index:02d}",
                    'manager_name': f"{name} Manager",
                    'seating_capacity': random.randint(10, 60),
                    'staff_capacity': random.randint(4, 15),
                    'operating_hours': self._hours(),
                }
            )
            branches.append(branch)
            if created:
                self.stdout.write(f'  Created branch: {branch.code}')

        self.stdout.write(self.style.SUCCESS(f'Created {len(branches)} branches'))
        return branches

    def _hours(self):
        hours = {day: dict(WEEKDAY_HOURS) for day in ('monday', 'tuesday', 'wednesday', 'thursday', 'friday')}
        hours.update({day: dict(WEEKEND_HOURS) for day in ('saturday', 'sunday')})
        return hours

    def _stock_branches(self, items, branches):
        """Deliver opening stock from the central bakery to every branch."""
        self.stdout.write(f'Stocking {len(branches)} branches...')

        delivered = 0
        for branch in branches:
            # Each branch carries 60-90% of the catalogue
            carried = random.sample(items, k=max(1, int(len(items) * random.uniform(0.6, 0.9))))
            for item in carried:
                item.refresh_from_db(fields=['stock'])
                quantity = min(item.stock, random.randint(5, 40))
                if quantity < 1:
                    continue
                transfer_stock(item, branch, quantity, notes='Opening stock')
                delivered += 1

        self.stdout.write(self.style.SUCCESS(f'Delivered {delivered} opening transfers'))
