"""
URL configuration for hygiene_backend project.
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def _error_response(code, message, http_status):
    return JsonResponse({
        'error': {'code': code, 'message': message, 'detail': None, 'status': http_status},
    }, status=http_status)


def custom_404(request, exception=None):
    return _error_response('NOT_FOUND', f'No route matches {request.path}.', 404)


def custom_500(request):
    return _error_response('INTERNAL_ERROR', 'An unexpected error occurred.', 500)


urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('hygiene_backend.api_urls')),
]

# Same error envelope as the API views
handler404 = custom_404
handler500 = custom_500
