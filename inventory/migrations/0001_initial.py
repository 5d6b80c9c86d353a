import decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Branch',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(db_index=True, max_length=100)),
                ('code', models.CharField(help_text='Unique branch code (uppercase)', max_length=10, unique=True)),
                ('street', models.CharField(blank=True, default='', max_length=200)),
                ('city', models.CharField(db_index=True, max_length=100)),
                ('state', models.CharField(blank=True, default='', max_length=100)),
                ('zip_code', models.CharField(blank=True, default='', max_length=20)),
                ('country', models.CharField(default='USA', max_length=100)),
                ('phone', models.CharField(max_length=30)),
                ('email', models.EmailField(blank=True, default='', max_length=254)),
                ('fax', models.CharField(blank=True, default='', max_length=30)),
                ('operating_hours', models.JSONField(blank=True, default=dict, help_text="Weekday -> {'open': 'HH:MM', 'close': 'HH:MM'}")),
                ('manager_name', models.CharField(blank=True, default='', max_length=100)),
                ('manager_email', models.EmailField(blank=True, default='', max_length=254)),
                ('manager_phone', models.CharField(blank=True, default='', max_length=30)),
                ('status', models.CharField(choices=[('active', 'Active'), ('inactive', 'Inactive'), ('maintenance', 'Maintenance')], db_index=True, default='active', max_length=20)),
                ('seating_capacity', models.PositiveIntegerField(blank=True, null=True)),
                ('staff_capacity', models.PositiveIntegerField(blank=True, null=True)),
                ('description', models.TextField(blank=True, default='', max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Branch',
                'verbose_name_plural': 'Branches',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='Item',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('code', models.CharField(help_text='Unique item code (uppercase)', max_length=30, unique=True)),
                ('name', models.CharField(db_index=True, help_text='Item name', max_length=100)),
                ('category', models.CharField(choices=[('Breads', 'Breads'), ('Pastries', 'Pastries'), ('Cakes', 'Cakes'), ('Cookies', 'Cookies'), ('Others', 'Others')], db_index=True, max_length=20)),
                ('description', models.TextField(blank=True, default='', max_length=500)),
                ('ingredients', models.TextField(blank=True, default='')),
                ('allergens', models.CharField(blank=True, default='', max_length=255)),
                ('price', models.DecimalField(decimal_places=2, help_text='Unit price (non-negative)', max_digits=10, validators=[django.core.validators.MinValueValidator(decimal.Decimal('0.00'))])),
                ('stock', models.PositiveIntegerField(default=0, help_text='Quantity held at the central bakery')),
                ('is_active', models.BooleanField(db_index=True, default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Item',
                'verbose_name_plural': 'Items',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['category', 'is_active'], name='item_category_active_idx')],
            },
        ),
        migrations.CreateModel(
            name='Inventory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('current_stock', models.PositiveIntegerField(default=0)),
                ('min_stock_level', models.PositiveIntegerField(default=10)),
                ('max_stock_level', models.PositiveIntegerField(default=100)),
                ('reorder_point', models.PositiveIntegerField(default=15)),
                ('daily_consumption', models.PositiveIntegerField(default=0)),
                ('notes', models.TextField(blank=True, default='', max_length=500)),
                ('last_restocked', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_updated', models.DateTimeField(auto_now=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('branch', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='inventories', to='inventory.branch')),
                ('item', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='inventories', to='inventory.item')),
            ],
            options={
                'verbose_name': 'Inventory',
                'verbose_name_plural': 'Inventories',
                'ordering': ['branch', 'item'],
                'indexes': [models.Index(fields=['branch', 'current_stock'], name='inventory_branch_stock_idx')],
                'constraints': [models.UniqueConstraint(fields=('item', 'branch'), name='unique_item_branch_inventory')],
            },
        ),
    ]
