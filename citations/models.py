"""
Citation hygiene models.

  1. Link health        — CitationHealthRecord (global, keyed by URL)
  2. Compliance         — ComplianceAlert
  3. Replacements       — ReplacementCandidate
  4. Reporting          — HygieneReport
"""

import uuid

from django.db import IntegrityError, models, transaction
from django.db.models import F
from django.utils import timezone

from content.models import Article

HEALTH_STATUSES = [
    ('active', 'Active'),
    ('dead', 'Dead'),
    ('redirected', 'Redirected'),
    ('slow', 'Slow'),
    ('ssl_error', 'SSL error'),
    ('timeout', 'Timeout'),
    ('unreachable', 'Unreachable'),
    ('replaced', 'Replaced'),
    ('pending', 'Pending verification'),
]

FAILED_STATUSES = ('dead', 'ssl_error', 'timeout', 'unreachable')
BROKEN_STATUSES = ('dead', 'unreachable')


# ─────────────────────────────────────────────────────────────
# LINK HEALTH
# ─────────────────────────────────────────────────────────────

class CitationHealthQuerySet(models.QuerySet):

    def with_status(self, *statuses):
        return self.filter(status__in=statuses)

    def upsert_check(self, check, checked_at=None, source_name='', language=''):
        """
        Insert or update the record for ``check.url``.

        Counters are incremented in the database relative to the stored value,
        so repeated or concurrent sweeps never reset them.
        """
        checked_at = checked_at or timezone.now()
        failed = 1 if check.status in FAILED_STATUSES else 0
        fields = {
            'status': check.status,
            'http_status_code': check.http_status_code,
            'response_time_ms': check.response_time_ms,
            'redirect_url': check.redirect_url,
            'content_hash': check.content_hash,
            'page_title': check.page_title,
            'error_message': check.error or '',
            'last_checked_at': checked_at,
        }
        if check.is_government_source is not None:
            fields['is_government_source'] = check.is_government_source

        def _increment():
            return self.filter(url=check.url).update(
                times_verified=F('times_verified') + 1,
                times_failed=F('times_failed') + failed,
                updated_at=checked_at,
                **fields,
            )

        if not _increment():
            try:
                with transaction.atomic():
                    return self.create(
                        url=check.url,
                        source_name=source_name,
                        language=language,
                        times_verified=1,
                        times_failed=failed,
                        **fields,
                    )
            except IntegrityError:
                # Inserted concurrently by another job; fold this check into it.
                _increment()
        return self.get(url=check.url)

    def mark(self, url, status, source_name='', now=None):
        """Upsert a status transition that did not come from a network check (replaced, pending)."""
        now = now or timezone.now()
        updated = self.filter(url=url).update(status=status, updated_at=now)
        if not updated:
            try:
                with transaction.atomic():
                    self.create(url=url, status=status, source_name=source_name)
            except IntegrityError:
                self.filter(url=url).update(status=status, updated_at=now)


class CitationHealthRecord(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    url = models.CharField(max_length=2048, unique=True)
    source_name = models.CharField(max_length=500, blank=True)
    language = models.CharField(max_length=10, blank=True)
    status = models.CharField(max_length=20, choices=HEALTH_STATUSES, default='pending')
    http_status_code = models.IntegerField(null=True, blank=True)
    response_time_ms = models.IntegerField(null=True, blank=True)
    redirect_url = models.CharField(max_length=2048, blank=True, null=True)
    content_hash = models.CharField(max_length=64, blank=True, null=True)
    page_title = models.CharField(max_length=500, blank=True, null=True)
    error_message = models.TextField(blank=True)
    is_government_source = models.BooleanField(default=False)
    times_verified = models.IntegerField(default=0)
    times_failed = models.IntegerField(default=0)
    last_checked_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CitationHealthQuerySet.as_manager()

    class Meta:
        db_table = 'external_citation_health'
        ordering = ['-last_checked_at']
        indexes = [
            models.Index(fields=['status'], name='citation_health_status_idx'),
            models.Index(fields=['last_checked_at'], name='citation_health_checked_idx'),
        ]

    def __str__(self):
        return f"{self.url} [{self.status}]"


# ─────────────────────────────────────────────────────────────
# COMPLIANCE
# ─────────────────────────────────────────────────────────────

class ComplianceAlertQuerySet(models.QuerySet):

    def unresolved(self):
        return self.filter(resolved_at__isnull=True)

    def resolve(self, notes, now=None):
        return self.unresolved().update(resolved_at=now or timezone.now(), resolution_notes=notes)


class ComplianceAlert(models.Model):
    ALERT_TYPES = [
        ('non_approved', 'Non-approved domain'),
        ('competitor', 'Competitor domain'),
        ('broken_link', 'Broken link'),
        ('missing_gov_source', 'Missing government source'),
    ]
    SEVERITIES = [
        ('critical', 'Critical'),
        ('warning', 'Warning'),
        ('info', 'Info'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    alert_type = models.CharField(max_length=30, choices=ALERT_TYPES)
    severity = models.CharField(max_length=10, choices=SEVERITIES)
    citation_url = models.CharField(max_length=2048, blank=True)
    article = models.ForeignKey(Article, on_delete=models.CASCADE, related_name='compliance_alerts')
    detected_at = models.DateTimeField(default=timezone.now)
    resolved_at = models.DateTimeField(null=True, blank=True)
    resolution_notes = models.TextField(blank=True)

    objects = ComplianceAlertQuerySet.as_manager()

    class Meta:
        db_table = 'citation_compliance_alerts'
        ordering = ['-detected_at']
        indexes = [
            models.Index(fields=['article', 'resolved_at'], name='compliance_alert_article_idx'),
            models.Index(fields=['alert_type', 'severity'], name='compliance_alert_type_idx'),
            models.Index(fields=['citation_url'], name='compliance_alert_url_idx'),
        ]

    def __str__(self):
        return f"[{self.severity}] {self.alert_type}: {self.citation_url}"

    @property
    def is_violation(self):
        return self.severity in ('critical', 'warning')


# ─────────────────────────────────────────────────────────────
# REPLACEMENTS
# ─────────────────────────────────────────────────────────────

class ReplacementCandidate(models.Model):
    STATUS_CHOICES = [
        ('suggested', 'Suggested'),
        ('approved', 'Approved'),
        ('applied', 'Applied'),
        ('invalid', 'Invalid'),
        ('failed', 'Failed'),
        ('rolled_back', 'Rolled back'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    original_url = models.CharField(max_length=2048)
    original_source = models.CharField(max_length=500, blank=True)
    replacement_url = models.CharField(max_length=2048)
    replacement_source = models.CharField(max_length=500, blank=True)
    confidence_score = models.FloatField(default=0)
    relevance_score = models.FloatField(null=True, blank=True)
    authority_score = models.FloatField(null=True, blank=True)
    reasoning = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='suggested')
    suggested_by = models.CharField(max_length=50, default='auto')
    source_article = models.ForeignKey(Article, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='replacement_candidates')
    applied_article_ids = models.JSONField(default=list, blank=True)
    replacement_count = models.IntegerField(default=0)
    applied_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'dead_link_replacements'
        ordering = ['-confidence_score', '-authority_score']
        indexes = [
            models.Index(fields=['original_url'], name='replacements_original_idx'),
            models.Index(fields=['status'], name='replacements_status_idx'),
        ]

    def __str__(self):
        return f"{self.original_url} → {self.replacement_url} ({self.status}, {self.confidence_score})"


# ─────────────────────────────────────────────────────────────
# REPORTING
# ─────────────────────────────────────────────────────────────

class HygieneReport(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    scan_date = models.DateTimeField(default=timezone.now)
    total_articles_scanned = models.IntegerField(default=0)
    total_citations_scanned = models.IntegerField(default=0)
    violations_found = models.IntegerField(default=0)
    articles_with_violations = models.IntegerField(default=0)
    replacements_applied = models.IntegerField(default=0)
    articles_cleaned = models.IntegerField(default=0)
    compliance_score = models.FloatField(default=100)
    score_delta = models.FloatField(null=True, blank=True)
    top_offenders = models.JSONField(default=list, blank=True)
    violations_by_domain = models.JSONField(default=dict, blank=True)
    violations_by_language = models.JSONField(default=dict, blank=True)
    auto_replacement_triggered = models.BooleanField(default=False)
    alert_triggered = models.BooleanField(default=False)
    next_scan_scheduled = models.DateTimeField(null=True, blank=True)
    scan_duration_ms = models.IntegerField(default=0)

    class Meta:
        db_table = 'citation_hygiene_reports'
        ordering = ['-scan_date']
        get_latest_by = 'scan_date'

    def __str__(self):
        return f"Hygiene report {self.scan_date:%Y-%m-%d %H:%M} ({self.compliance_score}%)"
