"""
API endpoints for internal link structure: click depth and linking patterns.
"""
import logging

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .link_depth import DEFAULT_DEPTH_THRESHOLD, analyze_corpus
from .link_patterns import articles_needing_pattern_fixes, pattern_compliance_report, validate_all_link_patterns
from .models import Article

logger = logging.getLogger(__name__)


def _int_param(request, name, default):
    try:
        return int(request.query_params.get(name, default))
    except (TypeError, ValueError):
        return default


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def link_depth(request):
    """
    GET /api/v1/links/depth/?language=en&threshold=3
    Click depth of every page from the homepage, orphans and recommendations.
    """
    threshold = _int_param(request, 'threshold', DEFAULT_DEPTH_THRESHOLD)
    articles = Article.objects.filter(language=request.query_params.get('language') or 'en')
    articles = articles.exclude(status='archived')
    report = analyze_corpus(articles)
    return Response({
        'data': report.to_dict(threshold),
        'meta': {'threshold': threshold, 'total_articles': articles.count()},
    })


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def link_patterns(request):
    """
    GET /api/v1/links/patterns/?language=en&funnel_stage=TOFU
    Linking pattern summary plus the articles that still need fixes, worst first.
    """
    articles = Article.objects.published(
        language=request.query_params.get('language'),
        funnel_stage=request.query_params.get('funnel_stage'),
    )
    validations = validate_all_link_patterns(articles)
    needing_fixes = articles_needing_pattern_fixes(
        validations, score_threshold=_int_param(request, 'score_threshold', 100),
    )
    return Response({
        'data': {
            'summary': pattern_compliance_report(validations),
            'articles': [v.to_dict() for v in needing_fixes],
        },
        'meta': {'total': len(needing_fixes)},
    })
