"""
Replacement Applicator

Writes approved replacements back into articles. Every article rewrite runs
in its own transaction with the article row locked, and takes a rollback
snapshot (ArticleRevision) before the citation list is touched. A candidate is
marked applied only once every affected article has been rewritten.

Also here: rollback of a snapshot inside its window, and the redirect updater
that moves citations of redirected URLs to their final destination.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from django.db import DatabaseError, transaction
from django.utils import timezone

from content.models import Article, ArticleRevision, CitationUsage
from content.records import replace_citation_url, replace_content_links
from .conf import hygiene_setting
from .exceptions import HygieneConfigurationError
from .health import LinkHealthChecker
from .models import CitationHealthRecord, ComplianceAlert, ReplacementCandidate
from .policy import DomainPolicy, load_policy
from .results import BatchResult

logger = logging.getLogger(__name__)

MIN_TICK = timedelta(microseconds=1)


@dataclass
class ArticleRewrite:
    article_id: str
    slug: str
    headline: str
    replacements: int = 0
    content_replacements: int = 0
    revision_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            'article_id': self.article_id,
            'slug': self.slug,
            'headline': self.headline,
            'replacements': self.replacements,
            'content_replacements': self.content_replacements,
        }
        if self.revision_id:
            data['revision_id'] = self.revision_id
        return data


@dataclass
class CandidatePlan:
    articles: List[ArticleRewrite] = field(default_factory=list)

    @property
    def total_replacements(self) -> int:
        return sum(a.replacements for a in self.articles)


def _affected_article_ids(url) -> List:
    """Articles with an active usage row for ``url``, falling back to a scan of citation lists."""
    ids = list(dict.fromkeys(
        CitationUsage.objects.active_for_url(url).values_list('article_id', flat=True)
    ))
    if not ids:
        ids = [article.pk for article in Article.objects.all().citing(url)]
    return ids


def _record_new_usages(article, url, source_name):
    """Active usage rows for every position at which ``article`` now cites ``url``."""
    already = set(
        CitationUsage.objects.filter(article=article, citation_url=url, is_active=True)
        .values_list('position_in_article', flat=True)
    )
    rows = [
        CitationUsage(
            article=article,
            citation_url=url,
            citation_source=source_name or citation.source_name,
            anchor_text=citation.anchor_text,
            position_in_article=position,
            is_active=True,
        )
        for position, citation in enumerate(article.citations, start=1)
        if citation.url == url and position not in already
    ]
    CitationUsage.objects.bulk_create(rows)


def rewrite_article_citation(article_id, old_url, new_url, *, revision_type, reason, clock,
                             window_hours, candidate_id=None, source_name='') -> ArticleRewrite:
    """
    Backup-then-mutate for one article under a row lock.

    The snapshot is inserted before the article row is updated, and the
    article's updated_at is always strictly later than the snapshot.
    """
    with transaction.atomic():
        article = Article.objects.select_for_update().get(pk=article_id)
        rewrite = ArticleRewrite(article_id=str(article.pk), slug=article.slug, headline=article.headline)

        new_citations, count = replace_citation_url(article.external_citations, old_url, new_url)
        new_content, content_count = replace_content_links(article.detailed_content, old_url, new_url)
        if not count and not content_count:
            return rewrite

        revision = ArticleRevision.snapshot(
            article, revision_type, reason, clock(),
            window_hours=window_hours, candidate_id=candidate_id,
        )
        updated_at = max(clock(), revision.created_at + MIN_TICK)
        Article.objects.filter(pk=article.pk).update(
            external_citations=new_citations,
            detailed_content=new_content,
            updated_at=updated_at,
            date_modified=updated_at,
        )
        article.external_citations = new_citations
        article.detailed_content = new_content

        CitationUsage.objects.deactivate(article, old_url)
        _record_new_usages(article, new_url, source_name)

        rewrite.replacements = count
        rewrite.content_replacements = content_count
        rewrite.revision_id = str(revision.pk)
        return rewrite


def _preview_article(article_id, old_url) -> Optional[ArticleRewrite]:
    article = Article.objects.filter(pk=article_id).first()
    if article is None:
        return None
    _, count = replace_citation_url(article.external_citations, old_url, old_url)
    _, content_count = replace_content_links(article.detailed_content, old_url, old_url)
    return ArticleRewrite(
        article_id=str(article.pk), slug=article.slug, headline=article.headline,
        replacements=count, content_replacements=content_count,
    )


class ReplacementApplicator:

    def __init__(self, checker: Optional[LinkHealthChecker] = None, policy: Optional[DomainPolicy] = None,
                 clock=timezone.now, window_hours: Optional[int] = None):
        self.policy = policy if policy is not None else load_policy()
        self.checker = checker or LinkHealthChecker(policy=self.policy)
        self.clock = clock
        self.window_hours = window_hours if window_hours is not None else hygiene_setting('ROLLBACK_WINDOW_HOURS')

    def apply(self, candidate_ids, preview: bool = False) -> BatchResult:
        if not candidate_ids:
            raise HygieneConfigurationError("At least one replacement candidate id is required")

        result = BatchResult()
        affected = []
        for candidate_id in list(dict.fromkeys(candidate_ids)):
            candidate = ReplacementCandidate.objects.filter(pk=candidate_id).first()
            if candidate is None:
                result.record('failed', candidate_id=str(candidate_id), reason='not_found')
                continue
            self._apply_candidate(candidate, preview, result, affected)

        result.extra.update({
            'preview': preview,
            'articles_updated': len({a['article_id'] for a in affected}),
            'citations_updated': sum(a['replacements'] for a in affected),
            'affected_articles': affected,
        })
        return result

    def _apply_candidate(self, candidate, preview, result, affected):
        cid = str(candidate.pk)
        if candidate.status == 'applied':
            result.record('skipped', candidate_id=cid, reason='already_applied')
            return
        if candidate.status != 'approved':
            result.record('skipped', candidate_id=cid, reason=f'status_{candidate.status}')
            return

        if self.policy.is_banned(candidate.replacement_url):
            self._mark_invalid(candidate, preview, 'Replacement domain is not allowed by citation policy')
            result.record('skipped', candidate_id=cid, reason='replacement_banned')
            return

        check = self.checker.check(candidate.replacement_url, for_replacement=True)
        if not check.is_reachable:
            self._mark_invalid(
                candidate, preview,
                f"Replacement unreachable at apply time: {check.status} ({check.http_status_code})",
            )
            result.record('skipped', candidate_id=cid, reason='replacement_unreachable',
                          status=check.status, http_status_code=check.http_status_code)
            return

        article_ids = _affected_article_ids(candidate.original_url)
        if preview:
            plan = CandidatePlan([p for p in (_preview_article(a, candidate.original_url) for a in article_ids) if p])
            for rewrite in plan.articles:
                affected.append({**rewrite.to_dict(), 'candidate_id': cid})
            result.record('succeeded', candidate_id=cid, preview=True,
                          articles=len(plan.articles), replacements=plan.total_replacements)
            return

        if not article_ids and not candidate.applied_article_ids:
            candidate.status = 'failed'
            candidate.reasoning = (candidate.reasoning + '\n' if candidate.reasoning else '') + (
                'Original URL not found in any articles.'
            )
            candidate.save(update_fields=['status', 'reasoning', 'updated_at'])
            result.record('failed', candidate_id=cid, reason='original_not_found')
            return

        plan = CandidatePlan()
        errors = []
        for article_id in article_ids:
            try:
                rewrite = rewrite_article_citation(
                    article_id, candidate.original_url, candidate.replacement_url,
                    revision_type='citation_replacement',
                    reason=f"Replaced citation: {candidate.original_url} → {candidate.replacement_url}",
                    clock=self.clock, window_hours=self.window_hours,
                    candidate_id=candidate.pk, source_name=candidate.replacement_source,
                )
            except Article.DoesNotExist:
                logger.error("Article %s vanished while applying %s (%s)", article_id, cid, candidate.original_url)
                errors.append({'article_id': str(article_id), 'error': 'article_not_found'})
                continue
            except DatabaseError as e:
                logger.error("Could not rewrite article %s for %s (%s): %s", article_id, cid, candidate.original_url, e)
                errors.append({'article_id': str(article_id), 'error': str(e)})
                continue
            if rewrite.replacements or rewrite.content_replacements:
                plan.articles.append(rewrite)
                affected.append({**rewrite.to_dict(), 'candidate_id': cid})

        if errors:
            if plan.articles:
                self._record_progress(candidate, plan, self.clock())
                candidate.save(update_fields=['applied_article_ids', 'replacement_count', 'updated_at'])
            result.record('failed', candidate_id=cid, reason='partial_failure', errors=errors,
                          articles=[a.to_dict() for a in plan.articles])
            return
        if not plan.articles and not candidate.applied_article_ids:
            result.record('skipped', candidate_id=cid, reason='no_longer_cited')
            return

        self._finish(candidate, plan)
        result.record('succeeded', candidate_id=cid, articles=len(plan.articles),
                      replacements=plan.total_replacements)

    def _mark_invalid(self, candidate, preview, reason):
        if preview:
            return
        candidate.status = 'invalid'
        candidate.reasoning = (candidate.reasoning + '\n' if candidate.reasoning else '') + reason
        candidate.save(update_fields=['status', 'reasoning', 'updated_at'])
        logger.info("Replacement %s marked invalid: %s", candidate.pk, reason)

    def _record_progress(self, candidate, plan, now):
        """Add this run's rewritten articles to the candidate and close their alerts on the original URL."""
        article_ids = [a.article_id for a in plan.articles]
        candidate.applied_article_ids = list(dict.fromkeys(list(candidate.applied_article_ids or []) + article_ids))
        candidate.replacement_count = (candidate.replacement_count or 0) + plan.total_replacements
        ComplianceAlert.objects.filter(
            article_id__in=article_ids, citation_url=candidate.original_url,
        ).resolve(f"Auto-resolved: replaced with {candidate.replacement_url}", now=now)

    def _finish(self, candidate, plan):
        now = self.clock()
        self._record_progress(candidate, plan, now)
        candidate.status = 'applied'
        candidate.applied_at = now
        candidate.save(update_fields=['status', 'applied_at', 'applied_article_ids', 'replacement_count', 'updated_at'])

        CitationHealthRecord.objects.mark(candidate.original_url, 'replaced', now=now)
        CitationHealthRecord.objects.get_or_create(
            url=candidate.replacement_url,
            defaults={'status': 'pending', 'source_name': candidate.replacement_source},
        )
        logger.info(
            "Applied replacement %s: %s citation(s) in %s article(s)",
            candidate.pk, candidate.replacement_count, len(candidate.applied_article_ids),
        )


def rollback_revision(revision_id, clock=timezone.now) -> BatchResult:
    """Restore an article from a rollback-eligible snapshot and undo its usage tracking."""
    if not revision_id:
        raise HygieneConfigurationError("revision_id is required")

    result = BatchResult()
    revision = ArticleRevision.objects.filter(pk=revision_id).select_related('article').first()
    if revision is None:
        result.record('failed', revision_id=str(revision_id), reason='not_found')
        return result

    now = clock()
    if not ArticleRevision.objects.rollback_eligible(now).filter(pk=revision.pk).exists():
        reason = 'expired' if revision.can_rollback else 'not_rollbackable'
        result.record('failed', revision_id=str(revision.pk), reason=reason)
        return result

    candidate = None
    if revision.candidate_id:
        candidate = ReplacementCandidate.objects.filter(pk=revision.candidate_id).first()

    try:
        with transaction.atomic():
            article = Article.objects.select_for_update().get(pk=revision.article_id)
            ArticleRevision.snapshot(
                article, 'rollback', f"Rolled back revision {revision.pk}", now, window_hours=0,
            )
            Article.objects.filter(pk=article.pk).update(
                detailed_content=revision.previous_content,
                external_citations=revision.previous_citations,
                updated_at=now + MIN_TICK,
                date_modified=now + MIN_TICK,
            )
            article.detailed_content = revision.previous_content
            article.external_citations = revision.previous_citations
            ArticleRevision.objects.filter(pk=revision.pk).update(can_rollback=False)

            if candidate is not None:
                CitationUsage.objects.deactivate(article, candidate.replacement_url)
                if not CitationUsage.objects.reactivate(article, candidate.original_url):
                    CitationUsage.objects.sync_for_article(article)
                ReplacementCandidate.objects.filter(pk=candidate.pk).update(status='rolled_back', updated_at=now)
            else:
                CitationUsage.objects.sync_for_article(article)
    except (Article.DoesNotExist, DatabaseError) as e:
        logger.error("Rollback of revision %s (article %s) failed: %s", revision.pk, revision.article_id, e)
        result.record('failed', revision_id=str(revision.pk), article_id=str(revision.article_id), error=str(e))
        return result

    logger.info("Rolled back revision %s on article %s", revision.pk, revision.article_id)
    result.record('succeeded', revision_id=str(revision.pk), article_id=str(revision.article_id))
    return result


def update_redirected_citations(policy: Optional[DomainPolicy] = None, clock=timezone.now,
                                window_hours: Optional[int] = None) -> BatchResult:
    """
    Move citations of URLs recorded as redirected to their final destination,
    then supersede the old health record with one for the destination.
    """
    policy = policy if policy is not None else load_policy()
    window_hours = window_hours if window_hours is not None else hygiene_setting('ROLLBACK_WINDOW_HOURS')
    result = BatchResult()
    records = (
        CitationHealthRecord.objects.with_status('redirected')
        .exclude(redirect_url__isnull=True).exclude(redirect_url='')
    )
    articles_updated = 0

    for record in records:
        old_url, new_url = record.url, record.redirect_url
        if new_url == old_url:
            result.record('skipped', url=old_url, reason='redirects_to_itself')
            continue
        if policy.is_banned(new_url):
            result.record('skipped', url=old_url, redirect_url=new_url, reason='redirect_target_banned')
            continue

        rewrites, errors = [], []
        for article in Article.objects.published().citing(old_url):
            try:
                rewrite = rewrite_article_citation(
                    article.pk, old_url, new_url,
                    revision_type='redirect_update',
                    reason=f"Updated redirected citation: {old_url} → {new_url}",
                    clock=clock, window_hours=window_hours, source_name=record.source_name,
                )
            except (Article.DoesNotExist, DatabaseError) as e:
                logger.error("Redirect update of article %s (%s) failed: %s", article.pk, old_url, e)
                errors.append({'article_id': str(article.pk), 'error': str(e)})
                continue
            if rewrite.replacements or rewrite.content_replacements:
                rewrites.append(rewrite.to_dict())

        if errors:
            result.record('failed', url=old_url, redirect_url=new_url, errors=errors, articles=rewrites)
            continue

        with transaction.atomic():
            CitationHealthRecord.objects.filter(pk=record.pk).delete()
            # Destination health is unknown until the next check; an existing record keeps its status
            CitationHealthRecord.objects.get_or_create(
                url=new_url,
                defaults={
                    'status': 'pending',
                    'source_name': record.source_name,
                    'language': record.language,
                    'is_government_source': policy.is_government(new_url),
                },
            )
        articles_updated += len(rewrites)
        result.record('succeeded', url=old_url, redirect_url=new_url, articles=rewrites)

    result.extra['articles_updated'] = articles_updated
    logger.info("Redirect updater: %s URL(s) moved, %s article rewrite(s)", result.succeeded, articles_updated)
    return result
