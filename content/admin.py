from django.contrib import admin
from .models import Article, ArticleRevision, CitationUsage


@admin.register(Article)
class ArticleAdmin(admin.ModelAdmin):
    list_display = ('headline', 'slug', 'language', 'funnel_stage', 'status', 'citation_health_score', 'updated_at')
    list_filter = ('status', 'language', 'funnel_stage', 'has_dead_citations')
    search_fields = ('headline', 'slug', 'category')
    readonly_fields = ('created_at', 'updated_at', 'last_citation_check_at', 'citation_health_score')


@admin.register(ArticleRevision)
class ArticleRevisionAdmin(admin.ModelAdmin):
    list_display = ('article', 'revision_type', 'can_rollback', 'rollback_expires_at', 'created_at')
    list_filter = ('revision_type', 'can_rollback')
    search_fields = ('article__slug', 'change_reason')
    readonly_fields = ('created_at',)


@admin.register(CitationUsage)
class CitationUsageAdmin(admin.ModelAdmin):
    list_display = ('citation_url', 'article', 'position_in_article', 'is_active')
    list_filter = ('is_active',)
    search_fields = ('citation_url', 'article__slug')
