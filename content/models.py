"""
Content models — the article corpus and its citation bookkeeping.

  1. Articles          — Article
  2. Backups           — ArticleRevision (undo snapshots taken before every citation rewrite)
  3. Citation tracking — CitationUsage (which article cites which URL, and where)
"""

import uuid
from datetime import timedelta

from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from .records import parse_citations, parse_internal_links

PLACEHOLDER_MARKER = '[CITATION_NEEDED]'

FUNNEL_STAGES = [
    ('TOFU', 'Top of funnel (awareness)'),
    ('MOFU', 'Middle of funnel (consideration)'),
    ('BOFU', 'Bottom of funnel (decision)'),
]


# ─────────────────────────────────────────────────────────────
# ARTICLES
# ─────────────────────────────────────────────────────────────

class ArticleQuerySet(models.QuerySet):

    def published(self, language=None, category=None, funnel_stage=None):
        qs = self.filter(status='published')
        if language:
            qs = qs.filter(language=language)
        if category:
            qs = qs.filter(category=category)
        if funnel_stage:
            qs = qs.filter(funnel_stage=funnel_stage)
        return qs

    def missing_cluster(self):
        return self.filter(models.Q(cluster_id__isnull=True) | models.Q(cluster_id=''))

    def missing_citations(self):
        return self.filter(models.Q(external_citations__isnull=True) | models.Q(external_citations=[]))

    def citing(self, url):
        """Articles (from this queryset) whose citation list contains ``url``."""
        return [article for article in self if url in article.citation_urls()]


class Article(models.Model):
    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('published', 'Published'),
        ('archived', 'Archived'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    slug = models.SlugField(max_length=255, unique=True)
    headline = models.CharField(max_length=500)
    language = models.CharField(max_length=10, default='en')
    category = models.CharField(max_length=255, blank=True)
    funnel_stage = models.CharField(max_length=4, choices=FUNNEL_STAGES, default='TOFU')
    detailed_content = models.TextField(blank=True)
    external_citations = models.JSONField(default=list, blank=True)
    internal_links = models.JSONField(default=list, blank=True)
    cluster_id = models.CharField(max_length=255, blank=True, null=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')

    citation_health_score = models.FloatField(null=True, blank=True)
    has_dead_citations = models.BooleanField(default=False)
    last_citation_check_at = models.DateTimeField(null=True, blank=True)

    date_modified = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ArticleQuerySet.as_manager()

    class Meta:
        db_table = 'articles'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'language'], name='articles_status_lang_idx'),
            models.Index(fields=['category'], name='articles_category_idx'),
            models.Index(fields=['cluster_id'], name='articles_cluster_idx'),
        ]

    def __str__(self):
        return f"{self.headline} ({self.language})"

    @property
    def path(self):
        return f"/blog/{self.slug}"

    @property
    def citations(self):
        return parse_citations(self.external_citations, owner=str(self.id))

    def set_citations(self, citations):
        self.external_citations = [c.to_raw() for c in citations]

    @property
    def links(self):
        return parse_internal_links(self.internal_links, owner=str(self.id))

    def citation_urls(self):
        return [c.url for c in self.citations]

    def placeholder_count(self):
        return (self.detailed_content or '').count(PLACEHOLDER_MARKER)

    def clean(self):
        super().clean()
        if self.status == 'published' and self.placeholder_count():
            raise ValidationError({
                'detailed_content': (
                    f"{self.placeholder_count()} {PLACEHOLDER_MARKER} marker(s) must be "
                    "replaced or removed before publishing."
                )
            })


# ─────────────────────────────────────────────────────────────
# BACKUPS
# ─────────────────────────────────────────────────────────────

class ArticleRevisionQuerySet(models.QuerySet):

    def rollback_eligible(self, now=None):
        now = now or timezone.now()
        return self.filter(can_rollback=True, rollback_expires_at__gt=now)


class ArticleRevision(models.Model):
    REVISION_TYPES = [
        ('citation_replacement', 'Citation replacement'),
        ('redirect_update', 'Redirect update'),
        ('rollback', 'Rollback'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    article = models.ForeignKey(Article, on_delete=models.CASCADE, related_name='revisions')
    revision_type = models.CharField(max_length=30, choices=REVISION_TYPES)
    previous_content = models.TextField(blank=True)
    previous_citations = models.JSONField(default=list, blank=True)
    change_reason = models.TextField(blank=True)
    candidate_id = models.UUIDField(null=True, blank=True)
    can_rollback = models.BooleanField(default=True)
    rollback_expires_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    objects = ArticleRevisionQuerySet.as_manager()

    class Meta:
        db_table = 'article_revisions'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['article', 'created_at'], name='article_rev_article_idx'),
            models.Index(fields=['candidate_id'], name='article_rev_candidate_idx'),
        ]

    def __str__(self):
        return f"{self.revision_type} for {self.article_id} at {self.created_at:%Y-%m-%d %H:%M}"

    @classmethod
    def snapshot(cls, article, revision_type, reason, now, window_hours=24, candidate_id=None):
        """Persist the article's current content and citations before it is mutated."""
        return cls.objects.create(
            article=article,
            revision_type=revision_type,
            previous_content=article.detailed_content,
            previous_citations=list(article.external_citations or []),
            change_reason=reason,
            candidate_id=candidate_id,
            can_rollback=window_hours > 0,
            rollback_expires_at=now + timedelta(hours=window_hours) if window_hours > 0 else None,
            created_at=now,
        )


# ─────────────────────────────────────────────────────────────
# CITATION TRACKING
# ─────────────────────────────────────────────────────────────

class CitationUsageQuerySet(models.QuerySet):

    def active_for_url(self, url):
        return self.filter(citation_url=url, is_active=True)

    def deactivate(self, article, url):
        return self.filter(article=article, citation_url=url, is_active=True).update(
            is_active=False, updated_at=timezone.now()
        )

    def reactivate(self, article, url):
        return self.filter(article=article, citation_url=url, is_active=False).update(
            is_active=True, updated_at=timezone.now()
        )

    def sync_for_article(self, article):
        """Rebuild the usage rows for ``article`` from its current citation list."""
        self.filter(article=article).delete()
        rows = [
            CitationUsage(
                article=article,
                citation_url=citation.url,
                citation_source=citation.source_name,
                anchor_text=citation.anchor_text,
                position_in_article=position,
                is_active=True,
            )
            for position, citation in enumerate(article.citations, start=1)
        ]
        return self.bulk_create(rows)


class CitationUsage(models.Model):
    article = models.ForeignKey(Article, on_delete=models.CASCADE, related_name='citation_usages')
    citation_url = models.CharField(max_length=2048)
    citation_source = models.CharField(max_length=500, blank=True)
    anchor_text = models.CharField(max_length=500, blank=True)
    position_in_article = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CitationUsageQuerySet.as_manager()

    class Meta:
        db_table = 'citation_usage_tracking'
        ordering = ['article', 'position_in_article']
        indexes = [
            models.Index(fields=['citation_url', 'is_active'], name='citation_usage_url_idx'),
            models.Index(fields=['article'], name='citation_usage_article_idx'),
        ]

    def __str__(self):
        state = 'active' if self.is_active else 'inactive'
        return f"{self.citation_url} in {self.article_id} ({state})"
