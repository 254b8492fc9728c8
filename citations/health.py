"""
Link Health Checker

Checks citation URLs over the network and classifies each one:
- 2xx                       → active (redirected, with the final URL, when redirects were followed)
- 4xx                       → dead (403 passes as active where the soft-pass policy applies)
- 5xx / connection failure  → unreachable
- timeout                   → timeout
- TLS/certificate failure   → ssl_error
- successful but slower than SLOW_THRESHOLD_MS → slow

Batches run with bounded concurrency, a fixed delay between batches and a
wall-clock budget; URLs left over when the budget runs out are reported as
skipped, never silently dropped.
"""
import hashlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import requests
from bs4 import BeautifulSoup
from django.db import DatabaseError
from django.utils import timezone

from content.models import Article
from .conf import hygiene_setting
from .http import build_session
from .models import CitationHealthRecord, FAILED_STATUSES
from .results import BatchResult

logger = logging.getLogger(__name__)

HASH_BYTES = 5000
HEALTHY_STATUSES = ('active', 'redirected', 'slow')


@dataclass
class HealthCheck:
    url: str
    status: str
    http_status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    redirect_url: Optional[str] = None
    content_hash: Optional[str] = None
    page_title: Optional[str] = None
    error: str = ''
    soft_pass: bool = False
    is_government_source: Optional[bool] = None

    @property
    def is_reachable(self) -> bool:
        return self.status in HEALTHY_STATUSES

    @property
    def is_failure(self) -> bool:
        return self.status in FAILED_STATUSES

    def to_dict(self) -> dict:
        return {
            'url': self.url,
            'status': self.status,
            'http_status_code': self.http_status_code,
            'response_time_ms': self.response_time_ms,
            'redirect_url': self.redirect_url,
            'page_title': self.page_title,
            'soft_pass': self.soft_pass,
            'error': self.error,
        }


@dataclass
class BatchCheck:
    checks: List[HealthCheck] = field(default_factory=list)
    skipped_urls: List[str] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return bool(self.skipped_urls)


class LinkHealthChecker:

    def __init__(self, session=None, policy=None, timer: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep, **overrides):
        self.session = session or build_session()
        self.policy = policy
        self.timer = timer
        self.sleep = sleep
        self.timeout = overrides.get('timeout', hygiene_setting('REQUEST_TIMEOUT_SECONDS'))
        self.slow_threshold_ms = overrides.get('slow_threshold_ms', hygiene_setting('SLOW_THRESHOLD_MS'))
        self.batch_size = max(1, int(overrides.get('batch_size', hygiene_setting('BATCH_SIZE'))))
        self.batch_delay = overrides.get('batch_delay', hygiene_setting('BATCH_DELAY_SECONDS'))
        self.budget_seconds = overrides.get('budget_seconds', hygiene_setting('BATCH_BUDGET_SECONDS'))
        self.soft_pass_on_replacement = overrides.get(
            'soft_pass_on_replacement', hygiene_setting('SOFT_PASS_403_ON_REPLACEMENT'))
        self.soft_pass_on_sweep = overrides.get(
            'soft_pass_on_sweep', hygiene_setting('SOFT_PASS_403_ON_SWEEP'))

    def _soft_pass_403(self, for_replacement: bool) -> bool:
        return self.soft_pass_on_replacement if for_replacement else self.soft_pass_on_sweep

    def check(self, url: str, for_replacement: bool = False) -> HealthCheck:
        """Check one URL. Network failures become statuses; nothing is raised for them."""
        started = self.timer()
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True, stream=True)
        except requests.exceptions.SSLError as e:
            return self._failure(url, 'ssl_error', started, e)
        except requests.exceptions.Timeout as e:
            return self._failure(url, 'timeout', started, e)
        except requests.exceptions.ConnectionError as e:
            return self._failure(url, 'unreachable', started, e)
        except requests.RequestException as e:
            return self._failure(url, 'unreachable', started, e)

        try:
            elapsed_ms = int((self.timer() - started) * 1000)
            check = self._classify(url, response, for_replacement, elapsed_ms)
            if check.is_reachable and not check.soft_pass:
                self._read_fingerprint(response, check)
        finally:
            response.close()

        if check.status in ('active', 'redirected') and elapsed_ms > self.slow_threshold_ms:
            check.status = 'slow'
        if self.policy is not None:
            check.is_government_source = self.policy.is_government(check.redirect_url or url)
        return check

    def _classify(self, url, response, for_replacement, elapsed_ms) -> HealthCheck:
        code = response.status_code
        check = HealthCheck(url=url, status='active', http_status_code=code, response_time_ms=elapsed_ms)

        if 200 <= code < 300:
            if response.history and response.url and response.url != url:
                check.status = 'redirected'
                check.redirect_url = response.url
        elif 300 <= code < 400:
            location = response.headers.get('Location')
            check.status = 'redirected' if location else 'dead'
            check.redirect_url = location
        elif code == 403 and self._soft_pass_403(for_replacement):
            check.soft_pass = True
            check.error = '403 treated as bot protection'
        elif 400 <= code < 500:
            check.status = 'dead'
        else:
            check.status = 'unreachable'
        return check

    def _read_fingerprint(self, response, check: HealthCheck):
        body = b''
        try:
            for chunk in response.iter_content(chunk_size=1024):
                body += chunk
                if len(body) >= HASH_BYTES:
                    break
        except requests.RequestException as e:
            logger.debug("Could not read body of %s: %s", check.url, e)
        body = body[:HASH_BYTES]
        if not body:
            return
        check.content_hash = hashlib.sha256(body).hexdigest()
        text = body.decode(response.encoding or 'utf-8', errors='replace')
        title = BeautifulSoup(text, 'html.parser').title
        if title and title.string:
            check.page_title = title.string.strip()[:500]

    def _failure(self, url, status, started, error) -> HealthCheck:
        elapsed_ms = int((self.timer() - started) * 1000)
        logger.info("Citation check %s → %s (%s)", url, status, error.__class__.__name__)
        return HealthCheck(url=url, status=status, response_time_ms=elapsed_ms, error=str(error)[:500])

    def check_many(self, urls, for_replacement: bool = False) -> BatchCheck:
        urls = list(dict.fromkeys(u for u in urls if u))
        result = BatchCheck()
        started = self.timer()

        for index in range(0, len(urls), self.batch_size):
            if index:
                if self.timer() - started + self.batch_delay >= self.budget_seconds:
                    result.skipped_urls = urls[index:]
                    logger.warning(
                        "Health check budget of %ss spent; %s URL(s) left unchecked",
                        self.budget_seconds, len(result.skipped_urls),
                    )
                    break
                self.sleep(self.batch_delay)

            batch = urls[index:index + self.batch_size]
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                futures = {pool.submit(self.check, url, for_replacement): url for url in batch}
                for future in as_completed(futures):
                    url = futures[future]
                    try:
                        result.checks.append(future.result())
                    except Exception as e:
                        logger.exception("Unexpected error checking %s", url)
                        result.checks.append(HealthCheck(url=url, status='unreachable', error=str(e)[:500]))

        return result


def _citation_sources(articles) -> Dict[str, tuple]:
    """url → (source name, language) for the first article citing it."""
    sources = {}
    for article in articles:
        for citation in article.citations:
            sources.setdefault(citation.url, (citation.source_name, article.language))
    return sources


def _score_articles(articles, now) -> int:
    """Recompute each article's citation health from the stored records."""
    statuses = dict(CitationHealthRecord.objects.values_list('url', 'status'))
    updated = 0
    for article in articles:
        urls = article.citation_urls()
        if not urls:
            continue
        known = [statuses[u] for u in urls if u in statuses]
        healthy = sum(1 for s in known if s in HEALTHY_STATUSES)
        score = round(healthy / len(known), 2) if known else 1.0
        Article.objects.filter(pk=article.pk).update(
            citation_health_score=score,
            has_dead_citations=any(s in FAILED_STATUSES for s in known),
            last_citation_check_at=now,
        )
        updated += 1
    return updated


def verify_citation_health(articles=None, checker: Optional[LinkHealthChecker] = None, clock=timezone.now) -> BatchResult:
    """
    Sweep every citation of the published corpus: check, upsert the health
    records, and refresh each article's citation health score.
    """
    articles = list(articles if articles is not None else Article.objects.published())
    checker = checker or LinkHealthChecker()
    sources = _citation_sources(articles)
    result = BatchResult()
    status_counts: Dict[str, int] = {}

    batch = checker.check_many(sources.keys())
    now = clock()
    for check in batch.checks:
        source_name, language = sources.get(check.url, ('', ''))
        try:
            CitationHealthRecord.objects.upsert_check(check, checked_at=now, source_name=source_name, language=language)
        except DatabaseError as e:
            logger.error("Failed to store health record for %s: %s", check.url, e)
            result.record('failed', url=check.url, status=check.status, error=str(e))
            continue
        status_counts[check.status] = status_counts.get(check.status, 0) + 1
        result.record('succeeded', **check.to_dict())

    for url in batch.skipped_urls:
        result.record('skipped', url=url, reason='budget_exhausted')

    result.extra.update({
        'total_articles': len(articles),
        'unique_urls': len(sources),
        'status_counts': status_counts,
        'truncated': batch.truncated,
        'articles_scored': _score_articles(articles, now),
    })
    logger.info(
        "Citation health sweep: %s checked, %s skipped, statuses %s",
        result.succeeded, result.skipped, status_counts,
    )
    return result
