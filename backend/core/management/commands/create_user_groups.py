from django.core.management.base import BaseCommand
from django.contrib.auth.models import Group

from backend.core.permissions import ROLE_CAPABILITIES


class Command(BaseCommand):
    help = 'Create one Django user group per role; capabilities come from ROLE_CAPABILITIES'

    def add_arguments(self, parser):
        parser.add_argument(
            '--list',
            action='store_true',
            help='Print each role with its capabilities',
        )

    def handle(self, *args, **options):
        created_count = 0
        existing_count = 0

        for role in sorted(ROLE_CAPABILITIES):
            group, created = Group.objects.get_or_create(name=role)
            if created:
                self.stdout.write(self.style.SUCCESS(f'✓ Created group: {role}'))
                created_count += 1
            else:
                self.stdout.write(f'  Group already exists: {role}')
                existing_count += 1

            if options['list']:
                for capability in sorted(ROLE_CAPABILITIES[role]):
                    self.stdout.write(f'    - {capability}')

        self.stdout.write(self.style.SUCCESS(
            f'\nCompleted: {created_count} groups created, {existing_count} groups already existed'
        ))
