# Generated manually for citation health, compliance, replacements and hygiene reports

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('content', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='CitationHealthRecord',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('url', models.CharField(max_length=2048, unique=True)),
                ('source_name', models.CharField(blank=True, max_length=500)),
                ('language', models.CharField(blank=True, max_length=10)),
                ('status', models.CharField(choices=[('active', 'Active'), ('dead', 'Dead'), ('redirected', 'Redirected'), ('slow', 'Slow'), ('ssl_error', 'SSL error'), ('timeout', 'Timeout'), ('unreachable', 'Unreachable'), ('replaced', 'Replaced'), ('pending', 'Pending verification')], default='pending', max_length=20)),
                ('http_status_code', models.IntegerField(blank=True, null=True)),
                ('response_time_ms', models.IntegerField(blank=True, null=True)),
                ('redirect_url', models.CharField(blank=True, max_length=2048, null=True)),
                ('content_hash', models.CharField(blank=True, max_length=64, null=True)),
                ('page_title', models.CharField(blank=True, max_length=500, null=True)),
                ('error_message', models.TextField(blank=True)),
                ('is_government_source', models.BooleanField(default=False)),
                ('times_verified', models.IntegerField(default=0)),
                ('times_failed', models.IntegerField(default=0)),
                ('last_checked_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'external_citation_health',
                'ordering': ['-last_checked_at'],
                'indexes': [
                    models.Index(fields=['status'], name='citation_health_status_idx'),
                    models.Index(fields=['last_checked_at'], name='citation_health_checked_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ComplianceAlert',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('alert_type', models.CharField(choices=[('non_approved', 'Non-approved domain'), ('competitor', 'Competitor domain'), ('broken_link', 'Broken link'), ('missing_gov_source', 'Missing government source')], max_length=30)),
                ('severity', models.CharField(choices=[('critical', 'Critical'), ('warning', 'Warning'), ('info', 'Info')], max_length=10)),
                ('citation_url', models.CharField(blank=True, max_length=2048)),
                ('detected_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('resolved_at', models.DateTimeField(blank=True, null=True)),
                ('resolution_notes', models.TextField(blank=True)),
                ('article', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='compliance_alerts', to='content.article')),
            ],
            options={
                'db_table': 'citation_compliance_alerts',
                'ordering': ['-detected_at'],
                'indexes': [
                    models.Index(fields=['article', 'resolved_at'], name='compliance_alert_article_idx'),
                    models.Index(fields=['alert_type', 'severity'], name='compliance_alert_type_idx'),
                    models.Index(fields=['citation_url'], name='compliance_alert_url_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReplacementCandidate',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('original_url', models.CharField(max_length=2048)),
                ('original_source', models.CharField(blank=True, max_length=500)),
                ('replacement_url', models.CharField(max_length=2048)),
                ('replacement_source', models.CharField(blank=True, max_length=500)),
                ('confidence_score', models.FloatField(default=0)),
                ('relevance_score', models.FloatField(blank=True, null=True)),
                ('authority_score', models.FloatField(blank=True, null=True)),
                ('reasoning', models.TextField(blank=True)),
                ('status', models.CharField(choices=[('suggested', 'Suggested'), ('approved', 'Approved'), ('applied', 'Applied'), ('invalid', 'Invalid'), ('failed', 'Failed'), ('rolled_back', 'Rolled back')], default='suggested', max_length=20)),
                ('suggested_by', models.CharField(default='auto', max_length=50)),
                ('applied_article_ids', models.JSONField(blank=True, default=list)),
                ('replacement_count', models.IntegerField(default=0)),
                ('applied_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('source_article', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='replacement_candidates', to='content.article')),
            ],
            options={
                'db_table': 'dead_link_replacements',
                'ordering': ['-confidence_score', '-authority_score'],
                'indexes': [
                    models.Index(fields=['original_url'], name='replacements_original_idx'),
                    models.Index(fields=['status'], name='replacements_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='HygieneReport',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('scan_date', models.DateTimeField(default=django.utils.timezone.now)),
                ('total_articles_scanned', models.IntegerField(default=0)),
                ('total_citations_scanned', models.IntegerField(default=0)),
                ('violations_found', models.IntegerField(default=0)),
                ('articles_with_violations', models.IntegerField(default=0)),
                ('replacements_applied', models.IntegerField(default=0)),
                ('articles_cleaned', models.IntegerField(default=0)),
                ('compliance_score', models.FloatField(default=100)),
                ('score_delta', models.FloatField(blank=True, null=True)),
                ('top_offenders', models.JSONField(blank=True, default=list)),
                ('violations_by_domain', models.JSONField(blank=True, default=dict)),
                ('violations_by_language', models.JSONField(blank=True, default=dict)),
                ('auto_replacement_triggered', models.BooleanField(default=False)),
                ('alert_triggered', models.BooleanField(default=False)),
                ('next_scan_scheduled', models.DateTimeField(blank=True, null=True)),
                ('scan_duration_ms', models.IntegerField(default=0)),
            ],
            options={
                'db_table': 'citation_hygiene_reports',
                'ordering': ['-scan_date'],
                'get_latest_by': 'scan_date',
            },
        ),
    ]
