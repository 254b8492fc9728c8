"""
Project-level views.
"""
import logging

from django.db import DatabaseError, connection
from django.http import JsonResponse
from django.views.decorators.http import require_GET

logger = logging.getLogger(__name__)


@require_GET
def health_check(request):
    """
    GET /api/v1/health/ - liveness for load balancers and cron monitors.
    No authentication. 503 when the database cannot be reached.
    """
    try:
        with connection.cursor() as cursor:
            cursor.execute('SELECT 1')
    except DatabaseError as e:
        logger.error("Health check could not reach the database: %s", e)
        return JsonResponse(
            {"status": "degraded", "service": "citation-hygiene-backend", "database": "unavailable"},
            status=503,
        )
    return JsonResponse({"status": "ok", "service": "citation-hygiene-backend", "database": "ok"})
