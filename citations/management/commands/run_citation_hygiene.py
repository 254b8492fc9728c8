"""
Management command for the scheduled citation hygiene run (cron).
Usage: python manage.py run_citation_hygiene [--auto-replace] [--cleanup]
"""
from django.core.management.base import BaseCommand, CommandError

from citations.compliance import ComplianceScanner
from citations.exceptions import HygieneConfigurationError
from citations.hygiene import HygieneRunner


class Command(BaseCommand):
    help = 'Scan citation compliance, optionally auto-replace offenders, and store a hygiene report'

    def add_arguments(self, parser):
        parser.add_argument(
            '--auto-replace', action='store_true', default=None,
            help='Apply high-confidence replacements even if ENABLE_AUTO_REPLACE is off',
        )
        parser.add_argument(
            '--cleanup', action='store_true',
            help='Resolve stale alerts before scanning',
        )

    def handle(self, *args, **options):
        try:
            if options['cleanup']:
                cleaned = ComplianceScanner().cleanup_stale_alerts()
                self.stdout.write(f'Resolved {cleaned.succeeded} stale alert(s).')
            result = HygieneRunner(auto_replace=options['auto_replace']).run()
        except HygieneConfigurationError as e:
            raise CommandError(str(e))

        report = result.extra['report']
        delta = report['score_delta']
        self.stdout.write(
            f"Compliance score: {report['compliance_score']}%"
            + (f" ({delta:+.1f})" if delta is not None else '')
        )
        self.stdout.write(
            f"Violations: {report['violations_found']} in {report['articles_with_violations']} article(s)"
        )
        if report['auto_replacement_triggered']:
            self.stdout.write(
                f"Replacements applied: {report['replacements_applied']} "
                f"in {report['articles_cleaned']} article(s)"
            )
        if report['alert_triggered']:
            self.stdout.write(self.style.WARNING('Violation count is above the alert threshold.'))
        self.stdout.write(self.style.SUCCESS(f"Report saved; next scan at {report['next_scan_scheduled']}."))
