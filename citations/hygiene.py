"""
Scheduled citation hygiene run.

Sequences the compliance scan, optional auto-replacement of offending
citations and the persisted HygieneReport. Scanning, proposing and applying
all live in their own modules; this only wires their results together.
"""
import logging
import time
from datetime import timedelta
from typing import Optional

from django.utils import timezone

from content.models import Article
from .applicator import ReplacementApplicator
from .compliance import ComplianceScanner
from .conf import hygiene_setting
from .discovery import AIDiscovery
from .models import HygieneReport
from .policy import DomainPolicy, load_policy
from .replacement import ReplacementEngine
from .results import BatchResult

logger = logging.getLogger(__name__)

REPLACEABLE_ALERT_TYPES = ('broken_link', 'competitor', 'non_approved')


def serialize_report(report: HygieneReport) -> dict:
    return {
        'id': str(report.id),
        'scan_date': report.scan_date.isoformat(),
        'total_articles_scanned': report.total_articles_scanned,
        'total_citations_scanned': report.total_citations_scanned,
        'violations_found': report.violations_found,
        'articles_with_violations': report.articles_with_violations,
        'replacements_applied': report.replacements_applied,
        'articles_cleaned': report.articles_cleaned,
        'compliance_score': report.compliance_score,
        'score_delta': report.score_delta,
        'top_offenders': report.top_offenders,
        'violations_by_domain': report.violations_by_domain,
        'violations_by_language': report.violations_by_language,
        'auto_replacement_triggered': report.auto_replacement_triggered,
        'alert_triggered': report.alert_triggered,
        'next_scan_scheduled': report.next_scan_scheduled.isoformat() if report.next_scan_scheduled else None,
        'scan_duration_ms': report.scan_duration_ms,
    }


class HygieneRunner:

    def __init__(self, scanner: Optional[ComplianceScanner] = None, engine=None, applicator=None,
                 policy: Optional[DomainPolicy] = None, clock=timezone.now, timer=time.monotonic,
                 auto_replace: Optional[bool] = None):
        self.policy = policy if policy is not None else load_policy()
        self.clock = clock
        self.timer = timer
        self.scanner = scanner or ComplianceScanner(policy=self.policy, clock=clock)
        self.engine = engine
        self.applicator = applicator
        self.auto_replace = auto_replace if auto_replace is not None else hygiene_setting('ENABLE_AUTO_REPLACE')
        self.max_auto_replacements = hygiene_setting('MAX_AUTO_REPLACEMENTS')
        self.alert_threshold = hygiene_setting('ALERT_THRESHOLD')
        self.scan_interval_hours = hygiene_setting('SCAN_INTERVAL_HOURS')

    def run(self, articles=None) -> BatchResult:
        started = self.timer()
        previous = HygieneReport.objects.order_by('-scan_date').first()
        if self.auto_replace:
            # Fail on missing AI keys before any alert is written
            self._collaborators()

        scan = self.scanner.scan(articles)
        stats = scan.extra
        result = BatchResult()
        result.record(
            'succeeded' if scan.success else 'failed', step='scan',
            processed=scan.processed, failed=scan.failed,
        )

        replacements_applied = 0
        articles_cleaned = set()
        triggered = False
        if self.auto_replace and stats['violations_found']:
            triggered = True
            replacements_applied, articles_cleaned = self._auto_replace(stats['violations'], result)

        now = self.clock()
        score = stats['compliance_score']
        violations_found = stats['violations_found']
        report = HygieneReport.objects.create(
            scan_date=now,
            total_articles_scanned=stats['total_articles'],
            total_citations_scanned=stats['total_citations'],
            violations_found=violations_found,
            articles_with_violations=stats['articles_with_violations'],
            replacements_applied=replacements_applied,
            articles_cleaned=len(articles_cleaned),
            compliance_score=score,
            score_delta=round(score - previous.compliance_score, 1) if previous else None,
            top_offenders=stats['top_offenders'],
            violations_by_domain=stats['violations_by_domain'],
            violations_by_language=stats['violations_by_language'],
            auto_replacement_triggered=triggered,
            alert_triggered=violations_found > self.alert_threshold,
            next_scan_scheduled=now + timedelta(hours=self.scan_interval_hours),
            scan_duration_ms=int((self.timer() - started) * 1000),
        )

        if report.alert_triggered:
            logger.warning(
                "Citation hygiene alert: %s violations detected (threshold %s)",
                violations_found, self.alert_threshold,
            )
        logger.info(
            "Hygiene run finished: score %s (delta %s), %s replacement(s) applied in %sms",
            score, report.score_delta, replacements_applied, report.scan_duration_ms,
        )
        result.extra['report'] = serialize_report(report)
        return result

    def _auto_replace(self, violations, result):
        """Propose and apply replacements for offending URLs, up to the per-run cap."""
        targets = {}
        for violation in violations:
            if violation['alert_type'] in REPLACEABLE_ALERT_TYPES:
                targets.setdefault(violation['citation_url'], violation['article_id'])
        urls = list(targets)[:self.max_auto_replacements]
        if len(targets) > len(urls):
            logger.info("Auto-replacement capped at %s of %s URL(s)", len(urls), len(targets))

        engine, applicator = self._collaborators()
        applied = 0
        cleaned = set()
        for url in urls:
            article = self._article(targets[url])
            proposal = engine.propose(url, article)
            approved = [c['id'] for c in proposal.extra.get('candidates', []) if c['status'] == 'approved']
            if not approved:
                result.record('skipped', step='replace', url=url, reason='no_approved_candidate')
                continue
            # Best candidate first; later ones only if it could not be applied.
            for candidate_id in approved:
                outcome = applicator.apply([candidate_id])
                if outcome.succeeded:
                    applied += outcome.extra['citations_updated']
                    cleaned.update(a['article_id'] for a in outcome.extra['affected_articles'])
                    result.record('succeeded', step='replace', url=url, candidate_id=candidate_id,
                                  articles=outcome.extra['articles_updated'])
                    break
            else:
                result.record('failed', step='replace', url=url, reason='no_candidate_applied')
        return applied, cleaned

    def _collaborators(self):
        if self.engine is None:
            self.engine = ReplacementEngine(discovery=AIDiscovery(), policy=self.policy, clock=self.clock)
        if self.applicator is None:
            self.applicator = ReplacementApplicator(policy=self.policy, clock=self.clock)
        return self.engine, self.applicator

    @staticmethod
    def _article(article_id):
        return Article.objects.filter(pk=article_id).first()
