"""
API URL routing for hygiene_backend.
All API endpoints are prefixed with /api/v1/
"""
from django.urls import path, include
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .views import health_check

urlpatterns = [
    # Health check (no auth) - GET /api/v1/health/
    path('health/', health_check, name='health-check'),
    # Dashboard authentication (JWT pair)
    path('auth/token/', TokenObtainPairView.as_view(), name='token-obtain-pair'),
    path('auth/token/refresh/', TokenRefreshView.as_view(), name='token-refresh'),
    # Internal link structure
    path('links/', include('content.urls')),
    # Citation health, compliance, replacements, hygiene reports
    path('', include('citations.urls')),
]
