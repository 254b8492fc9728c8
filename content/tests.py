"""
Tests for the content app: citation records, link extraction, link depth,
link patterns and the article store.
"""
from datetime import timedelta

import pytest
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.utils import timezone
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from content.extraction import extract_citation_context, extract_links
from content.link_depth import SitePage, calculate_link_depth
from content.link_patterns import pattern_compliance_report, validate_link_patterns
from content.models import Article, ArticleRevision, CitationUsage
from content.records import (
    ExternalCitation,
    parse_citations,
    replace_citation_url,
    replace_content_links,
)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def authenticated_client(api_client):
    user = get_user_model().objects.create_user(username='editor', password='testpass123')
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {str(refresh.access_token)}')
    return api_client, user


@pytest.fixture
def create_article():
    def _create_article(slug='buying-guide', **kwargs):
        defaults = {
            'headline': slug.replace('-', ' ').title(),
            'status': 'published',
            'category': 'buying',
        }
        defaults.update(kwargs)
        return Article.objects.create(slug=slug, **defaults)
    return _create_article


class TestCitationRecords:

    def test_legacy_keys_are_upgraded_and_unknown_keys_kept(self):
        citation = ExternalCitation.from_raw({
            'url': ' https://www.ine.es/stats ',
            'sourceName': 'INE',
            'text': 'housing statistics',
            'authorityScore': 14,
            'verifiedYear': '2023',
            'lang': 'es',
        })
        assert citation.url == 'https://www.ine.es/stats'
        assert citation.source_name == 'INE'
        assert citation.anchor_text == 'housing statistics'
        assert citation.authority_score == 10.0
        assert citation.year == 2023
        assert citation.extra == {'lang': 'es'}
        assert citation.to_raw()['lang'] == 'es'

    def test_bare_string_is_a_citation(self):
        citation = ExternalCitation.from_raw('https://example.gov/report')
        assert citation.url == 'https://example.gov/report'
        assert citation.source_name == ''

    def test_malformed_entries_are_skipped(self):
        citations = parse_citations([
            {'url': 'https://a.gov/x'},
            {'source': 'no url'},
            42,
            None,
            'https://b.gov/y',
        ])
        assert [c.url for c in citations] == ['https://a.gov/x', 'https://b.gov/y']

    def test_replace_citation_url_keeps_other_keys(self):
        raw = [
            {'url': 'https://old.com/a', 'source': 'Old', 'custom': 1},
            {'url': 'https://keep.com/b'},
            'https://old.com/a',
        ]
        rewritten, count = replace_citation_url(raw, 'https://old.com/a', 'https://new.gov/a')
        assert count == 2
        assert rewritten[0] == {'url': 'https://new.gov/a', 'source': 'Old', 'custom': 1}
        assert rewritten[1] == {'url': 'https://keep.com/b'}
        assert rewritten[2] == 'https://new.gov/a'
        assert raw[0]['url'] == 'https://old.com/a'

    def test_replace_content_links_only_touches_exact_hrefs(self):
        content = (
            '<p><a href="https://old.com/a">one</a> <a href=\'https://old.com/a\'>two</a> '
            '<a href="https://old.com/a/deeper">three</a></p>'
        )
        updated, count = replace_content_links(content, 'https://old.com/a', 'https://new.gov/a')
        assert count == 2
        assert 'href="https://new.gov/a"' in updated
        assert "href='https://new.gov/a'" in updated
        assert 'https://old.com/a/deeper' in updated


class TestExtraction:

    CONTENT = (
        '<h2>Taxes</h2>'
        '<p>See the <a href="https://www.agenciatributaria.gob.es/iva">tax agency</a> '
        'and our <a href="/blog/category/buying">buying guides</a>.</p>'
        '<p><a href="https://example-realty.com/blog/costs/">costs</a> '
        '<a href="mailto:info@example.com">mail</a> <a href="#top">top</a> '
        '<a href="//cdn.example.org/file.pdf">pdf</a> '
        '<a href="https://www.agenciatributaria.gob.es/iva">again</a></p>'
    )

    def test_external_and_internal_links_are_separated(self):
        links = extract_links(self.CONTENT, site_domain='example-realty.com')
        assert links.external_urls == [
            'https://www.agenciatributaria.gob.es/iva',
            'https://cdn.example.org/file.pdf',
        ]
        assert links.internal_paths == ['/blog/category/buying', '/blog/costs/']

    def test_reference_carries_anchor_paragraph_and_section(self):
        reference = extract_links(self.CONTENT).external[0]
        assert reference.anchor_text == 'tax agency'
        assert reference.section == 'Taxes'
        assert reference.paragraph.startswith('See the tax agency')

    def test_empty_content(self):
        links = extract_links('')
        assert links.external == [] and links.internal == []

    def test_citation_context_is_the_paragraph(self):
        context = extract_citation_context(self.CONTENT, 'https://www.agenciatributaria.gob.es/iva')
        assert context.startswith('See the tax agency')

    def test_citation_context_missing_url(self):
        assert extract_citation_context(self.CONTENT, 'https://nowhere.gov/') is None


class TestLinkDepth:

    def test_shortest_depth_wins(self):
        pages = [
            SitePage(slug='a', category='buying', internal_links=['/blog/c', '/blog/b']),
            SitePage(slug='b', category='buying', internal_links=['/blog/c'], listed=False),
            SitePage(slug='c', category='buying', listed=False),
        ]
        report = calculate_link_depth(pages)

        assert report.node_depths['/'] == 0
        assert report.node_depths['/blog'] == 1
        assert report.node_depths['/blog/a'] == 2
        assert report.node_depths['/blog/category/buying'] == 2
        assert report.node_depths['/blog/c'] == 3
        assert report.path_map['/blog/c'] == ['/', '/blog', '/blog/a', '/blog/c']
        assert report.orphan_articles == []

    def test_converging_paths_keep_the_shorter_depth(self):
        pages = [
            SitePage(slug='a', internal_links=['/blog/c'], listed=False),
            SitePage(slug='b', internal_links=['/blog/c'], listed=False),
            SitePage(slug='c', listed=False),
        ]
        report = calculate_link_depth(pages, static_routes=['/', '/blog/a', '/blog/b'])
        assert report.node_depths['/blog/a'] == 1
        assert report.node_depths['/blog/b'] == 1
        assert report.node_depths['/blog/c'] == 2

    def test_unreachable_article_is_an_orphan(self):
        pages = [
            SitePage(slug='listed', category='selling'),
            SitePage(slug='hidden', category='selling', listed=False),
        ]
        report = calculate_link_depth(pages)
        assert report.orphan_articles == ['/blog/hidden']
        assert '/blog/hidden' not in report.node_depths
        assert any('orphan' in r for r in report.recommendations())

    def test_links_are_normalized(self):
        pages = [
            SitePage(slug='a', internal_links=['https://example-realty.com/blog/b/?ref=x#top']),
            SitePage(slug='b', listed=False),
        ]
        report = calculate_link_depth(pages)
        assert report.node_depths['/blog/b'] == 3

    def test_depth_threshold(self):
        pages = [
            SitePage(slug='a', internal_links=['/blog/b']),
            SitePage(slug='b', internal_links=['/blog/c'], listed=False),
            SitePage(slug='c', listed=False),
        ]
        report = calculate_link_depth(pages)
        assert report.node_depths['/blog/c'] == 4
        exceeding = report.articles_exceeding_depth(3)
        assert [item['url'] for item in exceeding] == ['/blog/c']
        assert report.max_depth == 4

    def test_average_depth_has_one_decimal(self):
        report = calculate_link_depth([SitePage(slug='a', category='x')])
        depths = list(report.node_depths.values())
        assert report.average_depth == round(sum(depths) / len(depths), 1)


class TestLinkPatterns:

    def _article(self, **kwargs):
        defaults = {'slug': 'first-home', 'category': 'buying', 'funnel_stage': 'MOFU'}
        defaults.update(kwargs)
        return Article(**defaults)

    def test_fully_compliant(self):
        article = self._article(
            internal_links=[{'url': '/blog/category/buying'}, {'href': '/blog/mortgage-basics'}],
            detailed_content='<p>See our <a href="/case-studies/">case studies</a>.</p>',
        )
        validation = validate_link_patterns(article)
        assert validation.compliance_score == 100
        assert validation.missing_patterns == []
        assert validation.has_expected_service_link
        assert validation.related_article_urls == ['/blog/mortgage-basics']

    def test_partial_compliance_score_and_recommendations(self):
        article = self._article(internal_links=[{'url': '/blog/category/buying'}])
        validation = validate_link_patterns(article)
        assert validation.compliance_score == 33
        assert validation.missing_patterns == ['related_article', 'service_link']
        assert any('/case-studies' in r for r in validation.recommendations)

    def test_self_link_is_not_a_related_article(self):
        article = self._article(internal_links=[{'url': '/blog/first-home'}, {'url': '/faq'}])
        validation = validate_link_patterns(article)
        assert not validation.has_related_article_link
        assert validation.has_service_link
        assert not validation.has_expected_service_link

    def test_report_buckets(self):
        full = validate_link_patterns(self._article(
            slug='a', internal_links=['/blog/category/buying', '/blog/b', '/case-studies'],
        ))
        partial = validate_link_patterns(self._article(
            slug='b', internal_links=['/blog/category/buying', '/blog/a'],
        ))
        none = validate_link_patterns(self._article(slug='c'))
        report = pattern_compliance_report({'a': full, 'b': partial, 'c': none})
        assert report['fully_compliant'] == 1
        assert report['partially_compliant'] == 1
        assert report['non_compliant'] == 1
        assert report['missing_pattern_counts']['service_link'] == 2
        assert report['average_compliance_score'] == round((100 + 67 + 0) / 3)


@pytest.mark.django_db
class TestArticleStore:

    def test_placeholder_blocks_publishing(self):
        article = Article(slug='draft', headline='Draft', status='published',
                          detailed_content='<p>Prices rose [CITATION_NEEDED].</p>')
        with pytest.raises(ValidationError):
            article.clean()
        article.status = 'draft'
        article.clean()

    def test_published_filters(self, create_article):
        create_article('en-one', language='en')
        create_article('es-one', language='es', funnel_stage='BOFU')
        create_article('es-draft', language='es', status='draft')
        slugs = set(Article.objects.published(language='es').values_list('slug', flat=True))
        assert slugs == {'es-one'}
        assert Article.objects.published(funnel_stage='BOFU').count() == 1

    def test_missing_cluster(self, create_article):
        create_article('clustered', cluster_id='c-1')
        create_article('loose')
        assert list(Article.objects.missing_cluster().values_list('slug', flat=True)) == ['loose']

    def test_citing(self, create_article):
        create_article('a', external_citations=[{'url': 'https://x.gov/1'}])
        create_article('b', external_citations=['https://y.gov/2'])
        assert [a.slug for a in Article.objects.all().citing('https://x.gov/1')] == ['a']

    def test_revision_snapshot_and_window(self, create_article):
        article = create_article('a', external_citations=[{'url': 'https://x.gov/1'}], detailed_content='<p>x</p>')
        now = timezone.now()
        revision = ArticleRevision.snapshot(article, 'citation_replacement', 'test', now, window_hours=24)
        assert revision.previous_citations == [{'url': 'https://x.gov/1'}]
        assert revision.rollback_expires_at == now + timedelta(hours=24)
        assert ArticleRevision.objects.rollback_eligible(now).filter(pk=revision.pk).exists()
        assert not ArticleRevision.objects.rollback_eligible(now + timedelta(hours=25)).exists()

        final = ArticleRevision.snapshot(article, 'rollback', 'test', now, window_hours=0)
        assert not final.can_rollback
        assert final.rollback_expires_at is None

    def test_sync_usage_positions(self, create_article):
        article = create_article('a', external_citations=[
            {'url': 'https://x.gov/1', 'source': 'X'},
            {'bad': 'entry'},
            {'url': 'https://y.gov/2'},
        ])
        CitationUsage.objects.sync_for_article(article)
        rows = list(CitationUsage.objects.filter(article=article).values_list('citation_url', 'position_in_article'))
        assert rows == [('https://x.gov/1', 1), ('https://y.gov/2', 2)]

        assert CitationUsage.objects.deactivate(article, 'https://x.gov/1') == 1
        assert not CitationUsage.objects.active_for_url('https://x.gov/1').exists()
        assert CitationUsage.objects.reactivate(article, 'https://x.gov/1') == 1


@pytest.mark.django_db
class TestLinkEndpoints:

    def test_requires_authentication(self, api_client):
        response = api_client.get('/api/v1/links/depth/')
        assert response.status_code == 401

    def test_depth_endpoint(self, authenticated_client, create_article):
        client, _ = authenticated_client
        create_article('listed')
        create_article('hidden', status='draft')
        response = client.get('/api/v1/links/depth/')
        assert response.status_code == 200
        assert response.data['data']['orphan_articles'] == ['/blog/hidden']
        assert response.data['data']['node_depths']['/blog/listed'] == 2

    def test_patterns_endpoint(self, authenticated_client, create_article):
        client, _ = authenticated_client
        create_article('good', funnel_stage='TOFU',
                       internal_links=['/blog/category/buying', '/blog/other', '/faq'])
        create_article('bad', funnel_stage='TOFU')
        response = client.get('/api/v1/links/patterns/')
        assert response.status_code == 200
        assert response.data['data']['summary']['fully_compliant'] == 1
        assert [a['compliance_score'] for a in response.data['data']['articles']] == [0]
