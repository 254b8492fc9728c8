"""
Management command to sweep citation health across the published corpus.
Usage: python manage.py verify_citation_health [--language es] [--update-redirects]
"""
from django.core.management.base import BaseCommand, CommandError

from citations.applicator import update_redirected_citations
from citations.exceptions import HygieneConfigurationError
from citations.health import verify_citation_health
from content.models import Article


class Command(BaseCommand):
    help = 'Check every cited URL and refresh citation health records and article scores'

    def add_arguments(self, parser):
        parser.add_argument('--language', help='Only sweep articles in this language')
        parser.add_argument(
            '--update-redirects', action='store_true',
            help='Afterwards, move citations of redirected URLs to their destination',
        )

    def handle(self, *args, **options):
        articles = Article.objects.published(language=options.get('language'))
        result = verify_citation_health(articles)
        for status, count in sorted(result.extra['status_counts'].items()):
            self.stdout.write(f'{status}: {count}')
        if result.extra['truncated']:
            self.stdout.write(self.style.WARNING(
                f'Time budget exhausted: {result.skipped} URL(s) left for the next run.'
            ))

        if options['update_redirects']:
            try:
                redirects = update_redirected_citations()
            except HygieneConfigurationError as e:
                raise CommandError(str(e))
            self.stdout.write(
                f"Redirects: {redirects.succeeded} URL(s) moved in {redirects.extra['articles_updated']} article(s)"
            )

        self.stdout.write(self.style.SUCCESS(
            f'Checked {result.succeeded} URL(s) across {result.extra["total_articles"]} article(s).'
        ))
