"""
Seed the furniture categories the showroom sells
"""
from django.core.management.base import BaseCommand

from backend.catalog.models import Category


CATEGORIES = [
    ('Beds', 'Bed frames and headboards'),
    ('Wardrobes', 'Wardrobes and closets'),
    ('Sofas', 'Sofas, couches and sectionals'),
    ('Dining Sets', 'Dining tables sold with chairs'),
    ('Chairs', 'Dining, accent and bar chairs'),
    ('Tables', 'Coffee, side and dining tables'),
    ('Office Furniture', 'Desks, office chairs and filing'),
    ('Cabinets', 'Sideboards, TV stands and cabinets'),
    ('Shelving', 'Bookshelves and wall units'),
    ('Outdoor', 'Garden and patio furniture'),
    ('Mattresses', 'Mattresses and toppers'),
    ('Accessories', 'Mirrors, rugs and cushions'),
]


class Command(BaseCommand):
    help = "Creates the standard furniture categories; existing ones are reactivated"

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Delete categories that no product uses before seeding',
        )

    def handle(self, *args, **options):
        if options['clear']:
            unused = Category.objects.filter(products__isnull=True)
            removed, _ = unused.delete()
            self.stdout.write(self.style.WARNING(f"Removed {removed} unused categories"))

        created_count = 0
        reactivated_count = 0
        for name, description in CATEGORIES:
            category, created = Category.objects.get_or_create(
                name=name,
                defaults={'description': description, 'is_active': True},
            )
            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f"  ✓ {name}"))
            elif not category.is_active:
                category.is_active = True
                category.save(update_fields=['is_active', 'updated_at'])
                reactivated_count += 1
                self.stdout.write(f"  ↺ {name} reactivated")

        self.stdout.write(
            f"{created_count} created, {reactivated_count} reactivated, "
            f"{Category.objects.count()} categories in total"
        )
