from django.contrib import admin
from .models import CitationHealthRecord, ComplianceAlert, HygieneReport, ReplacementCandidate


@admin.register(CitationHealthRecord)
class CitationHealthRecordAdmin(admin.ModelAdmin):
    list_display = ('url', 'status', 'http_status_code', 'response_time_ms', 'times_failed', 'last_checked_at')
    list_filter = ('status', 'is_government_source', 'language')
    search_fields = ('url', 'source_name')
    readonly_fields = ('created_at', 'updated_at', 'times_verified', 'times_failed')


@admin.register(ComplianceAlert)
class ComplianceAlertAdmin(admin.ModelAdmin):
    list_display = ('alert_type', 'severity', 'citation_url', 'article', 'detected_at', 'resolved_at')
    list_filter = ('alert_type', 'severity', 'resolved_at')
    search_fields = ('citation_url', 'article__slug')


@admin.register(ReplacementCandidate)
class ReplacementCandidateAdmin(admin.ModelAdmin):
    list_display = ('original_url', 'replacement_url', 'confidence_score', 'status', 'applied_at')
    list_filter = ('status', 'suggested_by')
    search_fields = ('original_url', 'replacement_url', 'replacement_source')
    readonly_fields = ('created_at', 'updated_at', 'applied_at', 'applied_article_ids', 'replacement_count')


@admin.register(HygieneReport)
class HygieneReportAdmin(admin.ModelAdmin):
    list_display = ('scan_date', 'compliance_score', 'score_delta', 'violations_found', 'alert_triggered')
    list_filter = ('alert_triggered', 'auto_replacement_triggered')
    readonly_fields = ('scan_date', 'next_scan_scheduled', 'scan_duration_ms')
