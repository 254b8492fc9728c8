"""
Management command to rebuild citation usage tracking from article citation lists.
Usage: python manage.py populate_citation_tracking
"""
from django.core.management.base import BaseCommand

from citations.tracking import populate_citation_tracking


class Command(BaseCommand):
    help = 'Rebuild citation usage tracking rows for every published article'

    def handle(self, *args, **options):
        result = populate_citation_tracking()
        if result.failed:
            self.stdout.write(self.style.WARNING(f'{result.failed} article(s) could not be processed.'))
        self.stdout.write(self.style.SUCCESS(
            f"Tracked {result.extra['usage_rows']} citation(s) across {result.succeeded} article(s)."
        ))
