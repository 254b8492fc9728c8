"""
Replacement Engine

Turns the alternatives returned by a discovery collaborator into ranked,
persisted ReplacementCandidate rows. Confidence is a banded function of
relevance (0-100) and authority (0-10); candidates at or above the
auto-approve threshold are approved for automatic application, the rest wait
for manual review.
"""
import logging
from typing import List, Optional

from django.utils import timezone

from .conf import hygiene_setting
from .exceptions import HygieneConfigurationError
from .models import ReplacementCandidate
from .policy import DomainPolicy, load_policy
from .results import BatchResult

logger = logging.getLogger(__name__)

# (minimum relevance, minimum authority, confidence), checked in order
CONFIDENCE_BANDS = [
    (90, 8, 9.5),
    (85, 8, 9.0),
    (80, 9, 8.5),
    (80, 8, 8.0),
    (75, 7, 7.5),
    (70, 7, 7.0),
]
BASE_CONFIDENCE = 6.5


def _number(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def score_confidence(relevance_score, authority_score) -> float:
    relevance = _number(relevance_score)
    authority = _number(authority_score)
    for min_relevance, min_authority, confidence in CONFIDENCE_BANDS:
        if relevance >= min_relevance and authority >= min_authority:
            return confidence
    return BASE_CONFIDENCE


def decide_status(confidence: float, threshold: Optional[float] = None) -> str:
    if threshold is None:
        threshold = hygiene_setting('AUTO_APPROVE_THRESHOLD')
    return 'approved' if confidence >= threshold else 'suggested'


def serialize_candidate(candidate: ReplacementCandidate) -> dict:
    return {
        'id': str(candidate.id),
        'original_url': candidate.original_url,
        'original_source': candidate.original_source,
        'replacement_url': candidate.replacement_url,
        'replacement_source': candidate.replacement_source,
        'confidence_score': candidate.confidence_score,
        'relevance_score': candidate.relevance_score,
        'authority_score': candidate.authority_score,
        'reasoning': candidate.reasoning,
        'status': candidate.status,
        'suggested_by': candidate.suggested_by,
        'applied_article_ids': candidate.applied_article_ids,
        'replacement_count': candidate.replacement_count,
        'applied_at': candidate.applied_at.isoformat() if candidate.applied_at else None,
        'created_at': candidate.created_at.isoformat() if candidate.created_at else None,
    }


class ReplacementEngine:

    def __init__(self, discovery=None, policy: Optional[DomainPolicy] = None, threshold: Optional[float] = None,
                 clock=timezone.now, suggested_by: str = 'auto'):
        self.discovery = discovery
        self.policy = policy if policy is not None else load_policy()
        self.threshold = threshold if threshold is not None else hygiene_setting('AUTO_APPROVE_THRESHOLD')
        self.clock = clock
        self.suggested_by = suggested_by

    def propose(self, original_url: str, article=None) -> BatchResult:
        """
        Ask the discovery collaborator for alternatives to ``original_url`` and
        persist the acceptable ones, best first.
        """
        if not original_url:
            raise HygieneConfigurationError("original_url is required to propose replacements")
        if self.discovery is None:
            raise HygieneConfigurationError("No candidate discovery collaborator configured")

        result = BatchResult()
        original_source = ''
        if article is not None:
            original_source = next(
                (c.source_name for c in article.citations if c.url == original_url), ''
            )

        try:
            raw_candidates = self.discovery.discover(original_url, article) or []
        except Exception as e:
            logger.error("Candidate discovery failed for %s: %s", original_url, e)
            result.record('failed', url=original_url, reason='discovery_failed', error=str(e))
            return result

        already = set(
            ReplacementCandidate.objects.filter(original_url=original_url)
            .values_list('replacement_url', flat=True)
        )
        accepted: List[ReplacementCandidate] = []
        seen = set()
        now = self.clock()

        for raw in raw_candidates:
            url = (raw.get('url') or '').strip() if isinstance(raw, dict) else ''
            reason = self._rejection(url, raw, original_url, seen | already)
            if reason:
                result.record('skipped', url=url or None, reason=reason)
                continue
            seen.add(url)

            relevance = _number(raw.get('relevanceScore'))
            authority = _number(raw.get('authorityScore'))
            confidence = score_confidence(relevance, authority)
            accepted.append(ReplacementCandidate(
                original_url=original_url,
                original_source=original_source,
                replacement_url=url,
                replacement_source=raw.get('sourceName') or '',
                confidence_score=confidence,
                relevance_score=relevance,
                authority_score=authority,
                reasoning=raw.get('reason') or '',
                status=decide_status(confidence, self.threshold),
                suggested_by=self.suggested_by,
                source_article=article,
                created_at=now,
            ))

        accepted.sort(key=lambda c: (c.confidence_score, c.authority_score or 0), reverse=True)
        ReplacementCandidate.objects.bulk_create(accepted)
        for candidate in accepted:
            result.record('succeeded', **serialize_candidate(candidate))

        result.extra.update({
            'original_url': original_url,
            'candidates': [serialize_candidate(c) for c in accepted],
            'approved': sum(1 for c in accepted if c.status == 'approved'),
        })
        logger.info(
            "Replacement candidates for %s: %s accepted (%s approved), %s skipped",
            original_url, len(accepted), result.extra['approved'], result.skipped,
        )
        return result

    def _rejection(self, url, raw, original_url, seen) -> Optional[str]:
        if not url:
            return 'missing_url'
        if not url.startswith(('http://', 'https://')):
            return 'not_http'
        if not raw.get('verified'):
            return 'unverified'
        if url == original_url:
            return 'same_as_original'
        if url in seen:
            return 'duplicate'
        if self.policy.is_banned(url):
            return 'banned_domain'
        return None
