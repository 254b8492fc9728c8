# Generated manually for the article corpus and citation bookkeeping

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Article',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('slug', models.SlugField(max_length=255, unique=True)),
                ('headline', models.CharField(max_length=500)),
                ('language', models.CharField(default='en', max_length=10)),
                ('category', models.CharField(blank=True, max_length=255)),
                ('funnel_stage', models.CharField(choices=[('TOFU', 'Top of funnel (awareness)'), ('MOFU', 'Middle of funnel (consideration)'), ('BOFU', 'Bottom of funnel (decision)')], default='TOFU', max_length=4)),
                ('detailed_content', models.TextField(blank=True)),
                ('external_citations', models.JSONField(blank=True, default=list)),
                ('internal_links', models.JSONField(blank=True, default=list)),
                ('cluster_id', models.CharField(blank=True, max_length=255, null=True)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('published', 'Published'), ('archived', 'Archived')], default='draft', max_length=20)),
                ('citation_health_score', models.FloatField(blank=True, null=True)),
                ('has_dead_citations', models.BooleanField(default=False)),
                ('last_citation_check_at', models.DateTimeField(blank=True, null=True)),
                ('date_modified', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'articles',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', 'language'], name='articles_status_lang_idx'),
                    models.Index(fields=['category'], name='articles_category_idx'),
                    models.Index(fields=['cluster_id'], name='articles_cluster_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ArticleRevision',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('revision_type', models.CharField(choices=[('citation_replacement', 'Citation replacement'), ('redirect_update', 'Redirect update'), ('rollback', 'Rollback')], max_length=30)),
                ('previous_content', models.TextField(blank=True)),
                ('previous_citations', models.JSONField(blank=True, default=list)),
                ('change_reason', models.TextField(blank=True)),
                ('candidate_id', models.UUIDField(blank=True, null=True)),
                ('can_rollback', models.BooleanField(default=True)),
                ('rollback_expires_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('article', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='revisions', to='content.article')),
            ],
            options={
                'db_table': 'article_revisions',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['article', 'created_at'], name='article_rev_article_idx'),
                    models.Index(fields=['candidate_id'], name='article_rev_candidate_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='CitationUsage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('citation_url', models.CharField(max_length=2048)),
                ('citation_source', models.CharField(blank=True, max_length=500)),
                ('anchor_text', models.CharField(blank=True, max_length=500)),
                ('position_in_article', models.IntegerField(default=0)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('article', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='citation_usages', to='content.article')),
            ],
            options={
                'db_table': 'citation_usage_tracking',
                'ordering': ['article', 'position_in_article'],
                'indexes': [
                    models.Index(fields=['citation_url', 'is_active'], name='citation_usage_url_idx'),
                    models.Index(fields=['article'], name='citation_usage_article_idx'),
                ],
            },
        ),
    ]
