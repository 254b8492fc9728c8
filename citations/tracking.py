"""
Citation usage tracking population.
"""
import logging

from django.db import DatabaseError, transaction

from content.models import Article, CitationUsage
from .results import BatchResult

logger = logging.getLogger(__name__)


def populate_citation_tracking(articles=None) -> BatchResult:
    """Rebuild the usage rows of every published article (or ``articles``) from its citation list."""
    articles = articles if articles is not None else Article.objects.published()
    result = BatchResult()
    total_rows = 0
    for article in articles:
        try:
            with transaction.atomic():
                rows = CitationUsage.objects.sync_for_article(article)
        except DatabaseError as e:
            logger.error("Could not rebuild citation tracking for article %s: %s", article.pk, e)
            result.record('failed', article_id=str(article.pk), error=str(e))
            continue
        total_rows += len(rows)
        result.record('succeeded', article_id=str(article.pk), citations=len(rows))
    result.extra['usage_rows'] = total_rows
    logger.info("Citation tracking rebuilt for %s article(s), %s row(s)", result.succeeded, total_rows)
    return result
