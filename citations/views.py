"""
API endpoints for citation hygiene: link health, compliance alerts,
replacements, rollback and the scheduled hygiene run.
"""
import functools
import logging
import math

from django.core.exceptions import ValidationError
from django.db.models import Count
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from content.models import Article
from .applicator import ReplacementApplicator, rollback_revision, update_redirected_citations
from .compliance import ComplianceScanner, resolve_alert
from .discovery import AIDiscovery
from .exceptions import HygieneConfigurationError
from .health import LinkHealthChecker, verify_citation_health
from .hygiene import HygieneRunner, serialize_report
from .models import CitationHealthRecord, ComplianceAlert, HygieneReport, ReplacementCandidate
from .replacement import ReplacementEngine, serialize_candidate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error(code, message, http_status, detail=None):
    return Response(
        {'error': {'code': code, 'message': message, 'detail': detail, 'status': http_status}},
        status=http_status,
    )


def _handles_configuration_errors(view):
    """Answer HygieneConfigurationError with a 400 envelope instead of a 500."""
    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except HygieneConfigurationError as e:
            logger.warning("Citation hygiene misconfigured for %s: %s", request.path, e)
            return _error('CONFIGURATION_ERROR', str(e), status.HTTP_400_BAD_REQUEST)
    return wrapper


def _int_param(request, name, default):
    try:
        return int(request.query_params.get(name, default))
    except (TypeError, ValueError):
        return default


def _paginate(request, qs):
    page = max(1, _int_param(request, 'page', 1))
    per_page = max(1, min(_int_param(request, 'per_page', 25), 100))
    total = qs.count()
    offset = (page - 1) * per_page
    meta = {
        'total': total,
        'page': page,
        'per_page': per_page,
        'total_pages': max(1, math.ceil(total / per_page)),
    }
    return qs[offset:offset + per_page], meta


def _serialize_health_record(record):
    return {
        'id': str(record.id),
        'url': record.url,
        'source_name': record.source_name,
        'language': record.language,
        'status': record.status,
        'http_status_code': record.http_status_code,
        'response_time_ms': record.response_time_ms,
        'redirect_url': record.redirect_url,
        'page_title': record.page_title,
        'error_message': record.error_message,
        'is_government_source': record.is_government_source,
        'times_verified': record.times_verified,
        'times_failed': record.times_failed,
        'last_checked_at': record.last_checked_at.isoformat() if record.last_checked_at else None,
    }


def _serialize_alert(alert):
    return {
        'id': str(alert.id),
        'alert_type': alert.alert_type,
        'severity': alert.severity,
        'citation_url': alert.citation_url,
        'article_id': str(alert.article_id),
        'article_slug': alert.article.slug,
        'article_headline': alert.article.headline,
        'detected_at': alert.detected_at.isoformat(),
        'resolved_at': alert.resolved_at.isoformat() if alert.resolved_at else None,
        'resolution_notes': alert.resolution_notes,
    }


def _articles_from_request(request):
    """Published articles, optionally narrowed by article_ids / language in the body."""
    qs = Article.objects.published(language=request.data.get('language'))
    article_ids = request.data.get('article_ids')
    if article_ids:
        qs = qs.filter(id__in=article_ids)
    return qs


# ---------------------------------------------------------------------------
# Link health
# ---------------------------------------------------------------------------

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def health_record_list(request):
    """
    GET /api/v1/citations/health/?status=dead
    Stored health records with pagination and per-status counts.
    """
    qs = CitationHealthRecord.objects.all()
    status_filter = request.query_params.get('status')
    if status_filter:
        qs = qs.with_status(*status_filter.split(','))

    records, meta = _paginate(request, qs)
    meta['by_status'] = {
        row['status']: row['count']
        for row in CitationHealthRecord.objects.order_by().values('status').annotate(count=Count('id'))
    }
    return Response({'data': [_serialize_health_record(r) for r in records], 'meta': meta})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@_handles_configuration_errors
def health_verify(request):
    """POST /api/v1/citations/health/verify/ - sweep the published corpus (or article_ids)."""
    try:
        articles = list(_articles_from_request(request))
    except ValidationError:
        return _error('BAD_REQUEST', 'article_ids must be a list of UUIDs.', status.HTTP_400_BAD_REQUEST)
    result = verify_citation_health(articles, checker=LinkHealthChecker())
    return Response({'data': result.to_dict()})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@_handles_configuration_errors
def health_update_redirects(request):
    """POST /api/v1/citations/health/update-redirects/"""
    result = update_redirected_citations()
    return Response({'data': result.to_dict()})


# ---------------------------------------------------------------------------
# Compliance
# ---------------------------------------------------------------------------

@api_view(['POST'])
@permission_classes([IsAuthenticated])
@_handles_configuration_errors
def compliance_scan(request):
    """POST /api/v1/compliance/scan/ - classify every citation and raise alerts."""
    try:
        articles = list(_articles_from_request(request))
    except ValidationError:
        return _error('BAD_REQUEST', 'article_ids must be a list of UUIDs.', status.HTTP_400_BAD_REQUEST)
    result = ComplianceScanner().scan(articles)
    return Response({'data': result.to_dict()})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def compliance_alert_list(request):
    """
    GET /api/v1/compliance/alerts/?severity=critical&alert_type=competitor&article_id=...
    Unresolved alerts, newest first.
    """
    qs = ComplianceAlert.objects.unresolved().select_related('article')
    try:
        for param in ('severity', 'alert_type', 'article_id'):
            value = request.query_params.get(param)
            if value:
                qs = qs.filter(**{param: value})
    except ValidationError:
        return _error('BAD_REQUEST', 'Invalid article_id.', status.HTTP_400_BAD_REQUEST)

    alerts, meta = _paginate(request, qs)
    return Response({'data': [_serialize_alert(a) for a in alerts], 'meta': meta})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def compliance_alert_resolve(request, alert_id):
    """POST /api/v1/compliance/alerts/{id}/resolve/ - manual dismissal with optional notes."""
    if not ComplianceAlert.objects.filter(pk=alert_id).exists():
        return _error('NOT_FOUND', 'Alert not found.', status.HTTP_404_NOT_FOUND)
    result = resolve_alert(alert_id, notes=request.data.get('notes', ''))
    if not result.succeeded:
        return _error('CONFLICT', 'Alert is already resolved.', status.HTTP_409_CONFLICT)
    return Response({'data': result.to_dict()})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@_handles_configuration_errors
def compliance_alert_cleanup(request):
    """POST /api/v1/compliance/alerts/cleanup/ - resolve alerts that no longer apply."""
    result = ComplianceScanner().cleanup_stale_alerts()
    return Response({'data': result.to_dict()})


# ---------------------------------------------------------------------------
# Replacements
# ---------------------------------------------------------------------------

@api_view(['POST'])
@permission_classes([IsAuthenticated])
@_handles_configuration_errors
def replacement_find(request):
    """
    POST /api/v1/replacements/find/
    Body: {"url": "...", "article_id": "..."}
    Discovers, scores and stores replacement candidates for one citation.
    """
    url = (request.data.get('url') or '').strip()
    if not url:
        return _error('BAD_REQUEST', 'url is required.', status.HTTP_400_BAD_REQUEST)

    article = None
    article_id = request.data.get('article_id')
    if article_id:
        try:
            article = Article.objects.filter(pk=article_id).first()
        except ValidationError:
            article = None
        if article is None:
            return _error('NOT_FOUND', 'Article not found.', status.HTTP_404_NOT_FOUND)

    engine = ReplacementEngine(discovery=AIDiscovery(), suggested_by=request.user.get_username()[:50] or 'manual')
    result = engine.propose(url, article)
    return Response({'data': result.to_dict()})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def replacement_approve(request, candidate_id):
    """POST /api/v1/replacements/{id}/approve/ - manual approval of a suggested candidate."""
    candidate = ReplacementCandidate.objects.filter(pk=candidate_id).first()
    if candidate is None:
        return _error('NOT_FOUND', 'Replacement candidate not found.', status.HTTP_404_NOT_FOUND)
    if candidate.status not in ('suggested', 'approved'):
        return _error(
            'CONFLICT', f'Candidate is {candidate.status} and cannot be approved.',
            status.HTTP_409_CONFLICT,
        )
    if candidate.status != 'approved':
        candidate.status = 'approved'
        candidate.save(update_fields=['status', 'updated_at'])
        logger.info("Replacement %s approved by %s", candidate.pk, request.user.get_username())
    return Response({'data': serialize_candidate(candidate)})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@_handles_configuration_errors
def replacement_apply(request):
    """
    POST /api/v1/replacements/apply/
    Body: {"replacement_ids": [...], "preview": false}
    """
    replacement_ids = request.data.get('replacement_ids') or []
    if not isinstance(replacement_ids, list):
        return _error('BAD_REQUEST', 'replacement_ids must be a list.', status.HTTP_400_BAD_REQUEST)
    try:
        result = ReplacementApplicator().apply(replacement_ids, preview=bool(request.data.get('preview', False)))
    except ValidationError:
        return _error('BAD_REQUEST', 'replacement_ids must be UUIDs.', status.HTTP_400_BAD_REQUEST)
    return Response({'data': result.to_dict()})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def revision_rollback(request, revision_id):
    """POST /api/v1/revisions/{id}/rollback/ - restore an article from its snapshot."""
    result = rollback_revision(revision_id)
    if result.succeeded:
        return Response({'data': result.to_dict()})

    reason = result.details[0].get('reason') if result.details else None
    if reason == 'not_found':
        return _error('NOT_FOUND', 'Revision not found.', status.HTTP_404_NOT_FOUND)
    if reason in ('expired', 'not_rollbackable'):
        return _error(
            'ROLLBACK_NOT_ALLOWED', 'Revision can no longer be rolled back.',
            status.HTTP_409_CONFLICT, detail=reason,
        )
    return _error(
        'ROLLBACK_FAILED', 'Rollback failed.', status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=result.details[0].get('error') if result.details else None,
    )


# ---------------------------------------------------------------------------
# Hygiene reports
# ---------------------------------------------------------------------------

@api_view(['GET'])
@permission_classes([IsAuthenticated])
def hygiene_report_list(request):
    """GET /api/v1/hygiene/reports/ - report history, newest first."""
    reports, meta = _paginate(request, HygieneReport.objects.order_by('-scan_date'))
    return Response({'data': [serialize_report(r) for r in reports], 'meta': meta})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
@_handles_configuration_errors
def hygiene_run(request):
    """POST /api/v1/hygiene/run/ - scan, optional auto-replacement, persisted report."""
    result = HygieneRunner().run()
    return Response({'data': result.to_dict()}, status=status.HTTP_201_CREATED)
