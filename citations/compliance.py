"""
Compliance Scanner

Classifies every citation of the published corpus against the domain policy
and raises alerts:
- competitor domain                          → critical
- not on the allow-list                      → warning
- cited URL recorded as dead or unreachable  → warning
- no government/official source at all       → info

Critical and warning alerts are violations; the compliance score is the share
of articles without any violation.
"""
import logging
from collections import Counter
from typing import Optional

from django.db import DatabaseError
from django.utils import timezone

from content.models import Article
from .conf import hygiene_setting
from .models import BROKEN_STATUSES, CitationHealthRecord, ComplianceAlert
from .policy import DomainPolicy, hostname, load_policy, require_policy
from .results import BatchResult

logger = logging.getLogger(__name__)

SEVERITY_BY_TYPE = {
    'competitor': 'critical',
    'non_approved': 'warning',
    'broken_link': 'warning',
    'missing_gov_source': 'info',
}
VIOLATION_SEVERITIES = ('critical', 'warning')
TOP_OFFENDERS_LIMIT = 10


def compliance_score(total_articles: int, articles_with_violations: int) -> float:
    """Share of clean articles as a percentage with one decimal; 100 for an empty corpus."""
    if total_articles <= 0:
        return 100.0
    clean = max(0, total_articles - articles_with_violations)
    return round(clean / total_articles * 100, 1)


class ComplianceScanner:

    def __init__(self, policy: Optional[DomainPolicy] = None, clock=timezone.now, gov_required_stages=None):
        self.policy = policy if policy is not None else load_policy()
        self.clock = clock
        if gov_required_stages is None:
            gov_required_stages = hygiene_setting('GOV_SOURCE_REQUIRED_STAGES')
        self.gov_required_stages = {s.upper() for s in gov_required_stages}

    def findings_for(self, article, broken_urls=frozenset()):
        """(alert_type, severity, url) tuples for one article, deduplicated, in citation order."""
        findings = []
        citations = article.citations
        for citation in citations:
            violation = self.policy.violation_for(citation.url)
            if violation:
                findings.append((violation, SEVERITY_BY_TYPE[violation], citation.url))
            if citation.url in broken_urls:
                findings.append(('broken_link', SEVERITY_BY_TYPE['broken_link'], citation.url))

        if (citations and article.funnel_stage in self.gov_required_stages
                and not any(self.policy.is_government(c.url) for c in citations)):
            findings.append(('missing_gov_source', SEVERITY_BY_TYPE['missing_gov_source'], ''))
        return list(dict.fromkeys(findings))

    def scan(self, articles=None) -> BatchResult:
        require_policy(self.policy)
        articles = list(articles if articles is not None else Article.objects.published())
        now = self.clock()
        broken_urls = set(
            CitationHealthRecord.objects.with_status(*BROKEN_STATUSES).values_list('url', flat=True)
        )
        existing = set(
            ComplianceAlert.objects.unresolved().values_list('article_id', 'citation_url', 'alert_type')
        )

        result = BatchResult()
        by_domain = Counter()
        by_language = Counter()
        violations = []
        total_citations = 0
        affected = 0
        alerts_created = 0

        for article in articles:
            total_citations += len(article.citations)
            findings = self.findings_for(article, broken_urls)
            new_alerts = [
                ComplianceAlert(
                    alert_type=alert_type, severity=severity, citation_url=url,
                    article=article, detected_at=now,
                )
                for alert_type, severity, url in findings
                if (article.pk, url, alert_type) not in existing
            ]
            try:
                ComplianceAlert.objects.bulk_create(new_alerts)
            except DatabaseError as e:
                logger.error("Could not store compliance alerts for article %s: %s", article.pk, e)
                result.record('failed', article_id=str(article.pk), error=str(e))
                continue
            alerts_created += len(new_alerts)

            article_violations = [f for f in findings if f[1] in VIOLATION_SEVERITIES]
            if article_violations:
                affected += 1
                by_language[article.language or 'unknown'] += len(article_violations)
            for alert_type, severity, url in article_violations:
                domain = hostname(url)
                by_domain[domain] += 1
                violations.append({
                    'article_id': str(article.pk),
                    'citation_url': url,
                    'domain': domain,
                    'alert_type': alert_type,
                    'severity': severity,
                    'language': article.language,
                })
            result.record(
                'succeeded',
                article_id=str(article.pk),
                violations=len(article_violations),
                alerts_created=len(new_alerts),
            )

        result.extra.update({
            'total_articles': len(articles),
            'total_citations': total_citations,
            'violations_found': len(violations),
            'articles_with_violations': affected,
            'compliance_score': compliance_score(len(articles), affected),
            'alerts_created': alerts_created,
            'violations_by_domain': dict(by_domain),
            'violations_by_language': dict(by_language),
            'top_offenders': [
                {'domain': domain, 'count': count}
                for domain, count in by_domain.most_common(TOP_OFFENDERS_LIMIT)
            ],
            'violations': violations,
        })
        logger.info(
            "Compliance scan: %s articles, %s violations in %s articles, score %s",
            len(articles), len(violations), affected, result.extra['compliance_score'],
        )
        return result

    def cleanup_stale_alerts(self) -> BatchResult:
        """Resolve unresolved alerts whose citation is gone from the article (or whose gap was filled)."""
        now = self.clock()
        result = BatchResult()
        alerts = ComplianceAlert.objects.unresolved().select_related('article')
        for alert in alerts:
            article = alert.article
            urls = article.citation_urls()
            if alert.alert_type == 'missing_gov_source':
                stale = any(self.policy.is_government(u) for u in urls)
                note = 'Auto-resolved: article now cites a government source'
            else:
                stale = alert.citation_url not in urls
                note = 'Auto-resolved: citation no longer present in article'
            if not stale:
                result.record('skipped', alert_id=str(alert.pk))
                continue
            ComplianceAlert.objects.filter(pk=alert.pk).resolve(note, now=now)
            result.record('succeeded', alert_id=str(alert.pk), article_id=str(article.pk),
                          citation_url=alert.citation_url)
        logger.info("Stale alert cleanup: %s resolved, %s still open", result.succeeded, result.skipped)
        return result


def resolve_alert(alert_id, notes='', clock=timezone.now) -> BatchResult:
    """Manual dismissal of one alert."""
    result = BatchResult()
    updated = ComplianceAlert.objects.filter(pk=alert_id).resolve(notes or 'Dismissed manually', now=clock())
    if updated:
        result.record('succeeded', alert_id=str(alert_id))
    else:
        result.record('skipped', alert_id=str(alert_id), reason='not_found_or_already_resolved')
    return result
