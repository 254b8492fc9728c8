"""
URL routing for the citations app.
"""
from django.urls import path

from . import views

urlpatterns = [
    # Link health
    path('citations/health/', views.health_record_list, name='citation-health-list'),
    path('citations/health/verify/', views.health_verify, name='citation-health-verify'),
    path('citations/health/update-redirects/', views.health_update_redirects, name='citation-health-update-redirects'),
    # Compliance
    path('compliance/scan/', views.compliance_scan, name='compliance-scan'),
    path('compliance/alerts/', views.compliance_alert_list, name='compliance-alert-list'),
    path('compliance/alerts/cleanup/', views.compliance_alert_cleanup, name='compliance-alert-cleanup'),
    path('compliance/alerts/<uuid:alert_id>/resolve/', views.compliance_alert_resolve, name='compliance-alert-resolve'),
    # Replacements
    path('replacements/find/', views.replacement_find, name='replacement-find'),
    path('replacements/apply/', views.replacement_apply, name='replacement-apply'),
    path('replacements/<uuid:candidate_id>/approve/', views.replacement_approve, name='replacement-approve'),
    path('revisions/<uuid:revision_id>/rollback/', views.revision_rollback, name='revision-rollback'),
    # Hygiene reports
    path('hygiene/reports/', views.hygiene_report_list, name='hygiene-report-list'),
    path('hygiene/run/', views.hygiene_run, name='hygiene-run'),
]
