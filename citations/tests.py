"""
Tests for citation hygiene: domain policy, link health, compliance,
replacement scoring and application, rollback, the hygiene run and the API.
"""
import json
import uuid
from datetime import datetime, timedelta, timezone as dt_timezone
from io import StringIO

import pytest
import requests
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import DatabaseError
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from citations.applicator import (
    ReplacementApplicator, rewrite_article_citation, rollback_revision, update_redirected_citations,
)
from citations.compliance import ComplianceScanner, compliance_score, resolve_alert
from citations.discovery import AIDiscovery, _clean_json, _parse_candidates
from citations.exceptions import HygieneConfigurationError
from citations.health import LinkHealthChecker, verify_citation_health
from citations.hygiene import HygieneRunner
from citations.models import CitationHealthRecord, ComplianceAlert, HygieneReport, ReplacementCandidate
from citations.policy import DomainPolicy, load_policy, require_policy
from citations.replacement import ReplacementEngine, decide_status, score_confidence
from citations.results import BatchResult
from citations.tracking import populate_citation_tracking
from content.models import Article, ArticleRevision, CitationUsage

FIXED_NOW = datetime(2026, 3, 2, 9, 30, tzinfo=dt_timezone.utc)

APPROVED = ['gob.es', 'gov.es', 'ine.es']
COMPETITORS = ['idealista.com', 'banned-competitor.com']
GOVERNMENT = ['gob.es', 'gov.es']


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeResponse:
    encoding = 'utf-8'

    def __init__(self, status_code=200, url=None, history=None, headers=None,
                 body=b'<html><head><title>Official page</title></head><body>ok</body></html>'):
        self.status_code = status_code
        self.url = url
        self.history = history or []
        self.headers = headers or {}
        self.body = body
        self.closed = False

    def iter_content(self, chunk_size=1024):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start:start + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """Answers 200 for every URL unless told otherwise; values may be responses or exceptions."""

    def __init__(self, outcomes=None):
        self.outcomes = outcomes or {}
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append(url)
        outcome = self.outcomes.get(url)
        if isinstance(outcome, Exception):
            raise outcome
        response = outcome or FakeResponse()
        if response.url is None:
            response.url = url
        return response


class FakeDiscovery:

    def __init__(self, candidates_by_url=None, error=None):
        self.candidates_by_url = candidates_by_url or {}
        self.error = error
        self.calls = []

    def discover(self, original_url, article=None):
        self.calls.append((original_url, article))
        if self.error:
            raise self.error
        return [dict(c) for c in self.candidates_by_url.get(original_url, [])]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def hygiene_settings(settings):
    settings.CITATION_HYGIENE = {
        'APPROVED_DOMAINS': APPROVED,
        'COMPETITOR_DOMAINS': COMPETITORS,
        'GOVERNMENT_DOMAINS': GOVERNMENT,
        'BATCH_DELAY_SECONDS': 0,
        'ALERT_THRESHOLD': 10,
        'SCAN_INTERVAL_HOURS': 24,
        'ENABLE_AUTO_REPLACE': False,
    }
    return settings


@pytest.fixture
def policy():
    return DomainPolicy(APPROVED, COMPETITORS, GOVERNMENT)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def make_checker(policy):
    def _make_checker(outcomes=None, **overrides):
        overrides.setdefault('batch_delay', 0)
        overrides.setdefault('soft_pass_on_sweep', False)
        overrides.setdefault('soft_pass_on_replacement', True)
        return LinkHealthChecker(session=FakeSession(outcomes), policy=policy, sleep=lambda s: None, **overrides)
    return _make_checker


@pytest.fixture
def create_article():
    def _create_article(slug, citations=(), content='', **kwargs):
        defaults = {
            'headline': slug.replace('-', ' ').title(),
            'status': 'published',
            'category': 'buying',
            'language': 'es',
        }
        defaults.update(kwargs)
        return Article.objects.create(
            slug=slug,
            external_citations=[{'url': url, 'source': f'Source {i}'} for i, url in enumerate(citations, start=1)],
            detailed_content=content,
            **defaults,
        )
    return _create_article


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def authenticated_client(api_client):
    user = get_user_model().objects.create_user(username='editor', password='testpass123')
    refresh = RefreshToken.for_user(user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {str(refresh.access_token)}')
    return api_client, user


# ---------------------------------------------------------------------------
# Domain policy
# ---------------------------------------------------------------------------

class TestDomainPolicy:

    def test_suffix_matching_is_dot_bounded(self, policy):
        assert policy.is_approved('https://sub.gov.es/x')
        assert policy.is_approved('https://www.agenciatributaria.gob.es/iva')
        assert not policy.is_approved('https://notgov.es/x')
        assert not policy.is_approved('https://gov.es.evil.com/x')

    def test_violations(self, policy):
        assert policy.violation_for('https://www.idealista.com/news') == 'competitor'
        assert policy.violation_for('https://randomblog.com/post') == 'non_approved'
        assert policy.violation_for('https://www.ine.es/stats') is None
        assert policy.is_banned('https://randomblog.com/post')

    def test_competitor_wins_over_allow_list(self):
        policy = DomainPolicy(approved_domains=['com'], competitor_domains=['idealista.com'])
        assert not policy.is_approved('https://idealista.com/x')
        assert policy.is_approved('https://example.com/x')

    def test_without_allow_list_only_competitors_are_banned(self):
        policy = DomainPolicy(competitor_domains=['idealista.com'])
        assert not policy.is_banned('https://anything.org/x')
        assert policy.is_banned('https://m.idealista.com/x')
        assert policy.violation_for('https://anything.org/x') is None

    def test_path_rules(self):
        policy = DomainPolicy(approved_domains=['https://www.example.com/research/'])
        assert policy.is_approved('https://example.com/research/2024/report')
        assert policy.is_approved('https://example.com/research')
        assert not policy.is_approved('https://example.com/researchers')
        assert not policy.is_approved('https://example.com/blog')

    def test_empty_policy_is_a_configuration_error(self):
        with pytest.raises(HygieneConfigurationError):
            require_policy(DomainPolicy())

    def test_policy_file(self, settings, tmp_path):
        path = tmp_path / 'policy.json'
        path.write_text(json.dumps({
            'approved_domains': ['bde.es'],
            'competitor_domains': ['fotocasa.es'],
        }))
        settings.CITATION_HYGIENE = {'POLICY_FILE': str(path)}
        policy = load_policy()
        assert policy.is_approved('https://www.bde.es/informe')
        assert policy.is_competitor('https://fotocasa.es/x')
        # Government defaults still apply
        assert policy.is_government('https://sede.gob.es/x')

    def test_unreadable_policy_file(self, settings, tmp_path):
        path = tmp_path / 'policy.json'
        path.write_text('{not json')
        settings.CITATION_HYGIENE = {'POLICY_FILE': str(path)}
        with pytest.raises(HygieneConfigurationError):
            load_policy()


# ---------------------------------------------------------------------------
# Confidence scoring
# ---------------------------------------------------------------------------

class TestConfidence:

    @pytest.mark.parametrize('relevance, authority, expected', [
        (92, 9, 9.5),
        (85, 8, 9.0),
        (80, 9, 8.5),
        (80, 8, 8.0),
        (79, 8, 7.5),
        (70, 7, 7.0),
        (95, 5, 6.5),
        (None, 'n/a', 6.5),
    ])
    def test_bands(self, relevance, authority, expected):
        assert score_confidence(relevance, authority) == expected

    def test_monotonic_in_both_inputs(self):
        for authority in range(0, 11):
            scores = [score_confidence(relevance, authority) for relevance in range(0, 101)]
            assert scores == sorted(scores)
        for relevance in range(0, 101, 5):
            scores = [score_confidence(relevance, authority) for authority in range(0, 11)]
            assert scores == sorted(scores)

    def test_threshold_is_inclusive(self):
        assert decide_status(8.0, threshold=8.0) == 'approved'
        assert decide_status(7.9, threshold=8.0) == 'suggested'

    def test_threshold_from_settings(self, settings):
        settings.CITATION_HYGIENE = {'AUTO_APPROVE_THRESHOLD': 9.0}
        assert decide_status(8.5) == 'suggested'
        assert decide_status(9.0) == 'approved'


class TestBatchResult:

    def test_success_semantics(self):
        result = BatchResult()
        assert result.success
        result.record('failed', url='a')
        assert not result.success
        result.record('succeeded', url='b')
        assert result.success
        assert result.to_dict()['processed'] == 2
        assert not BatchResult(started=False).success

    def test_unknown_outcome(self):
        with pytest.raises(ValueError):
            BatchResult().record('maybe')


# ---------------------------------------------------------------------------
# Link health
# ---------------------------------------------------------------------------

class TestLinkHealthChecker:

    def test_active_with_fingerprint(self, make_checker):
        checker = make_checker()
        check = checker.check('https://www.ine.es/stats')
        assert check.status == 'active'
        assert check.http_status_code == 200
        assert check.page_title == 'Official page'
        assert len(check.content_hash) == 64
        assert check.is_government_source is False

    def test_followed_redirect(self, make_checker):
        response = FakeResponse(url='https://sede.gob.es/new', history=[FakeResponse(301)])
        check = make_checker({'https://sede.gob.es/old': response}).check('https://sede.gob.es/old')
        assert check.status == 'redirected'
        assert check.redirect_url == 'https://sede.gob.es/new'
        assert check.is_government_source is True
        assert response.closed

    @pytest.mark.parametrize('code, expected', [(404, 'dead'), (410, 'dead'), (500, 'unreachable'), (503, 'unreachable')])
    def test_error_codes(self, make_checker, code, expected):
        url = 'https://www.ine.es/x'
        assert make_checker({url: FakeResponse(code)}).check(url).status == expected

    def test_403_soft_pass_depends_on_context(self, make_checker):
        url = 'https://www.ine.es/protected'
        checker = make_checker({url: FakeResponse(403)})
        assert checker.check(url).status == 'dead'
        replacement_check = checker.check(url, for_replacement=True)
        assert replacement_check.status == 'active'
        assert replacement_check.soft_pass

    @pytest.mark.parametrize('error, expected', [
        (requests.exceptions.SSLError('bad cert'), 'ssl_error'),
        (requests.exceptions.ReadTimeout('slow'), 'timeout'),
        (requests.exceptions.ConnectionError('dns'), 'unreachable'),
        (requests.exceptions.TooManyRedirects('loop'), 'unreachable'),
    ])
    def test_network_failures_become_statuses(self, make_checker, error, expected):
        url = 'https://www.ine.es/x'
        check = make_checker({url: error}).check(url)
        assert check.status == expected
        assert check.is_failure
        assert check.error

    def test_slow_response(self, make_checker):
        ticks = iter([0.0, 6.0])
        checker = make_checker(timer=lambda: next(ticks), slow_threshold_ms=5000)
        check = checker.check('https://www.ine.es/slow')
        assert check.status == 'slow'
        assert check.response_time_ms == 6000
        assert check.is_reachable

    def test_budget_truncates_with_skipped_urls(self, make_checker):
        now = {'t': 0.0}

        def sleep(seconds):
            now['t'] += seconds

        checker = make_checker(batch_size=1, batch_delay=1.0, budget_seconds=1.5)
        checker.timer = lambda: now['t']
        checker.sleep = sleep
        batch = checker.check_many([
            'https://a.gob.es/1', 'https://a.gob.es/2', 'https://a.gob.es/3', 'https://a.gob.es/1',
        ])
        assert [c.url for c in batch.checks] == ['https://a.gob.es/1', 'https://a.gob.es/2']
        assert batch.skipped_urls == ['https://a.gob.es/3']
        assert batch.truncated


@pytest.mark.django_db
class TestCitationHealthSweep:

    def test_upsert_increments_counters(self, make_checker):
        url = 'https://www.ine.es/flaky'
        CitationHealthRecord.objects.upsert_check(make_checker({url: FakeResponse(404)}).check(url))
        record = CitationHealthRecord.objects.upsert_check(make_checker().check(url))
        assert record.status == 'active'
        assert record.times_verified == 2
        assert record.times_failed == 1
        assert CitationHealthRecord.objects.count() == 1

    def test_sweep_scores_articles(self, make_checker, create_article, clock):
        a = create_article('a', citations=['https://www.ine.es/ok', 'https://www.ine.es/gone'])
        b = create_article('b', citations=['https://www.ine.es/ok'])
        create_article('draft', citations=['https://www.ine.es/draft-only'], status='draft')
        checker = make_checker({'https://www.ine.es/gone': FakeResponse(404)})

        result = verify_citation_health(checker=checker, clock=clock)

        assert result.succeeded == 2
        assert result.extra['status_counts'] == {'active': 1, 'dead': 1}
        assert result.extra['truncated'] is False
        assert 'https://www.ine.es/draft-only' not in checker.session.calls
        a.refresh_from_db()
        b.refresh_from_db()
        assert a.citation_health_score == 0.5
        assert a.has_dead_citations
        assert a.last_citation_check_at == FIXED_NOW
        assert b.citation_health_score == 1.0
        assert not b.has_dead_citations
        dead = CitationHealthRecord.objects.get(url='https://www.ine.es/gone')
        assert dead.source_name == 'Source 2'
        assert dead.language == 'es'


# ---------------------------------------------------------------------------
# Compliance
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestCompliance:

    @pytest.mark.parametrize('total, affected, expected', [
        (0, 0, 100.0), (4, 0, 100.0), (4, 1, 75.0), (3, 3, 0.0), (3, 5, 0.0), (3, 1, 66.7),
    ])
    def test_score_bounds(self, total, affected, expected):
        assert compliance_score(total, affected) == expected

    @pytest.fixture
    def corpus(self, create_article):
        CitationHealthRecord.objects.create(url='https://www.ine.es/dead', status='dead')
        return {
            'clean': create_article('clean', citations=['https://www.agenciatributaria.gob.es/iva']),
            'offender': create_article('offender', citations=[
                'https://www.idealista.com/news', 'https://randomblog.com/post',
            ]),
            'stats': create_article('stats', citations=['https://www.ine.es/stats'], language='en'),
            'broken': create_article('broken', citations=[
                'https://www.ine.es/dead', 'https://sede.gob.es/tramite',
            ]),
        }

    def test_scan(self, corpus, policy, clock):
        result = ComplianceScanner(policy=policy, clock=clock).scan()
        stats = result.extra

        assert stats['total_articles'] == 4
        assert stats['total_citations'] == 6
        assert stats['violations_found'] == 3
        assert stats['articles_with_violations'] == 2
        assert stats['compliance_score'] == 50.0
        assert stats['alerts_created'] == 5
        assert stats['violations_by_domain'] == {'idealista.com': 1, 'randomblog.com': 1, 'ine.es': 1}
        assert stats['violations_by_language'] == {'es': 3}

        offender_alerts = ComplianceAlert.objects.filter(article=corpus['offender'])
        assert set(offender_alerts.values_list('alert_type', 'severity')) == {
            ('competitor', 'critical'), ('non_approved', 'warning'), ('missing_gov_source', 'info'),
        }
        assert not ComplianceAlert.objects.filter(article=corpus['clean']).exists()
        assert ComplianceAlert.objects.get(article=corpus['broken']).alert_type == 'broken_link'
        assert ComplianceAlert.objects.get(article=corpus['stats']).severity == 'info'
        assert all(a.detected_at == FIXED_NOW for a in ComplianceAlert.objects.all())

    def test_rescan_does_not_duplicate_alerts(self, corpus, policy):
        scanner = ComplianceScanner(policy=policy)
        scanner.scan()
        second = scanner.scan()
        assert second.extra['alerts_created'] == 0
        assert second.extra['violations_found'] == 3
        assert ComplianceAlert.objects.unresolved().count() == 5

    def test_gov_requirement_limited_to_stages(self, create_article, policy):
        create_article('tofu', citations=['https://www.ine.es/a'], funnel_stage='TOFU')
        create_article('bofu', citations=['https://www.ine.es/b'], funnel_stage='BOFU')
        ComplianceScanner(policy=policy, gov_required_stages=['bofu']).scan()
        assert list(ComplianceAlert.objects.values_list('article__slug', flat=True)) == ['bofu']

    def test_scan_requires_a_policy(self, create_article):
        with pytest.raises(HygieneConfigurationError):
            ComplianceScanner(policy=DomainPolicy(government_domains=GOVERNMENT)).scan()

    def test_cleanup_resolves_stale_alerts(self, corpus, policy, clock):
        scanner = ComplianceScanner(policy=policy, clock=clock)
        scanner.scan()
        offender = corpus['offender']
        offender.external_citations = [{'url': 'https://sede.gob.es/x'}]
        offender.save()

        result = scanner.cleanup_stale_alerts()

        assert result.succeeded == 3
        assert result.skipped == 2
        assert not ComplianceAlert.objects.unresolved().filter(article=offender).exists()
        resolved = ComplianceAlert.objects.filter(article=offender, alert_type='competitor').get()
        assert resolved.resolved_at == FIXED_NOW
        assert resolved.resolution_notes.startswith('Auto-resolved')

    def test_resolve_alert(self, corpus, policy):
        ComplianceScanner(policy=policy).scan()
        alert = ComplianceAlert.objects.filter(alert_type='competitor').get()
        assert resolve_alert(alert.pk, notes='Reviewed: partner content').succeeded == 1
        alert.refresh_from_db()
        assert alert.resolution_notes == 'Reviewed: partner content'
        assert resolve_alert(alert.pk).skipped == 1


# ---------------------------------------------------------------------------
# Replacement engine
# ---------------------------------------------------------------------------

DEAD_URL = 'https://www.ine.es/dead'


@pytest.mark.django_db
class TestReplacementEngine:

    CANDIDATES = {
        DEAD_URL: [
            {'url': 'https://sede.gob.es/b', 'sourceName': 'Sede', 'relevanceScore': 75,
             'authorityScore': 7, 'reason': 'close match', 'verified': True},
            {'url': 'https://www.ine.es/new', 'sourceName': 'INE', 'relevanceScore': 92,
             'authorityScore': 9, 'reason': 'same dataset', 'verified': True},
            {'url': 'https://www.ine.es/new', 'relevanceScore': 92, 'authorityScore': 9, 'verified': True},
            {'url': 'https://www.idealista.com/x', 'relevanceScore': 99, 'authorityScore': 9, 'verified': True},
            {'url': 'https://sede.gob.es/c', 'relevanceScore': 90, 'authorityScore': 9, 'verified': False},
            {'url': 'ftp://files.ine.es/x', 'verified': True},
            {'url': DEAD_URL, 'verified': True},
            {'sourceName': 'no url'},
        ],
    }

    def test_propose(self, create_article, policy, clock):
        article = create_article('a', citations=[DEAD_URL])
        discovery = FakeDiscovery(self.CANDIDATES)
        result = ReplacementEngine(discovery=discovery, policy=policy, clock=clock).propose(DEAD_URL, article)

        assert discovery.calls == [(DEAD_URL, article)]
        assert result.succeeded == 2
        assert result.skipped == 6
        assert sorted(d['reason'] for d in result.details if d['outcome'] == 'skipped') == sorted([
            'duplicate', 'banned_domain', 'unverified', 'not_http', 'same_as_original', 'missing_url',
        ])
        candidates = result.extra['candidates']
        assert [c['replacement_url'] for c in candidates] == ['https://www.ine.es/new', 'https://sede.gob.es/b']
        assert [c['status'] for c in candidates] == ['approved', 'suggested']
        assert candidates[0]['confidence_score'] == 9.5
        assert candidates[0]['original_source'] == 'Source 1'
        assert result.extra['approved'] == 1
        assert ReplacementCandidate.objects.filter(original_url=DEAD_URL).count() == 2

    def test_second_proposal_skips_stored_candidates(self, policy):
        engine = ReplacementEngine(discovery=FakeDiscovery(self.CANDIDATES), policy=policy)
        engine.propose(DEAD_URL)
        again = engine.propose(DEAD_URL)
        assert again.succeeded == 0
        assert ReplacementCandidate.objects.count() == 2

    def test_discovery_failure_is_recorded(self, policy):
        engine = ReplacementEngine(discovery=FakeDiscovery(error=RuntimeError('quota')), policy=policy)
        result = engine.propose(DEAD_URL)
        assert result.failed == 1
        assert not result.success
        assert result.details[0]['reason'] == 'discovery_failed'

    def test_configuration_errors(self, policy):
        with pytest.raises(HygieneConfigurationError):
            ReplacementEngine(discovery=None, policy=policy).propose(DEAD_URL)
        with pytest.raises(HygieneConfigurationError):
            ReplacementEngine(discovery=FakeDiscovery(), policy=policy).propose('')


class TestAIDiscovery:

    def test_requires_a_provider_key(self, monkeypatch, make_checker):
        monkeypatch.delenv('OPENAI_API_KEY', raising=False)
        monkeypatch.delenv('ANTHROPIC_API_KEY', raising=False)
        with pytest.raises(HygieneConfigurationError):
            AIDiscovery(checker=make_checker())

    def test_suggestions_are_verified(self, monkeypatch, make_checker):
        monkeypatch.setattr('citations.discovery._call_openai', lambda key, system, user: [
            {'url': 'https://www.ine.es/live', 'sourceName': 'INE', 'relevanceScore': 90, 'authorityScore': 9},
            {'url': 'https://www.ine.es/missing', 'relevanceScore': 80, 'authorityScore': 8},
            {'relevanceScore': 80},
        ])
        checker = make_checker({'https://www.ine.es/missing': FakeResponse(404)})
        discovery = AIDiscovery(checker=checker, openai_key='sk-test', anthropic_key='')
        candidates = discovery.discover(DEAD_URL)
        assert [(c['url'], c['verified']) for c in candidates] == [
            ('https://www.ine.es/live', True), ('https://www.ine.es/missing', False),
        ]

    def test_falls_back_to_claude(self, monkeypatch, make_checker):
        def failing_openai(key, system, user):
            raise RuntimeError('rate limited')

        monkeypatch.setattr('citations.discovery._call_openai', failing_openai)
        monkeypatch.setattr('citations.discovery._call_claude', lambda key, system, user: [
            {'url': 'https://sede.gob.es/a', 'relevanceScore': 85, 'authorityScore': 9},
        ])
        discovery = AIDiscovery(checker=make_checker(), openai_key='sk-test', anthropic_key='ak-test')
        assert [c['url'] for c in discovery.discover(DEAD_URL)] == ['https://sede.gob.es/a']

    def test_clean_json_strips_fences(self):
        assert _clean_json('```json\n{"candidates": []}\n```') == {'candidates': []}

    def test_parse_candidates_accepts_object_or_list(self):
        fenced = '```json\n{"candidates": [{"url": "https://www.ine.es/a"}]}\n```'
        assert _parse_candidates(fenced) == [{'url': 'https://www.ine.es/a'}]
        assert _parse_candidates('[{"url": "https://www.ine.es/b"}]') == [{'url': 'https://www.ine.es/b'}]

    def test_parse_candidates_without_candidates_key(self):
        assert _parse_candidates('{"results": [{"url": "https://www.ine.es/a"}]}') == []
        assert _parse_candidates('{"candidates": null}') == []
        assert _parse_candidates('"no alternatives found"') == []

    def test_reply_without_candidates_discovers_nothing(self, monkeypatch, make_checker):
        monkeypatch.setattr(
            'citations.discovery._call_openai',
            lambda key, system, user: _parse_candidates('{"note": "nothing suitable"}'),
        )
        discovery = AIDiscovery(checker=make_checker(), openai_key='sk-test', anthropic_key='')
        assert discovery.discover(DEAD_URL) == []


# ---------------------------------------------------------------------------
# Replacement applicator, rollback, redirects
# ---------------------------------------------------------------------------

OLD_URL = 'https://www.ine.es/old-report'
NEW_URL = 'https://www.ine.es/new-report'


@pytest.mark.django_db
class TestReplacementApplicator:

    @pytest.fixture
    def article(self, create_article):
        return create_article(
            'mortgage-costs',
            citations=[OLD_URL, 'https://sede.gob.es/keep'],
            content=f'<p>According to <a href="{OLD_URL}">INE</a>, prices rose.</p>',
        )

    @pytest.fixture
    def candidate(self):
        return ReplacementCandidate.objects.create(
            original_url=OLD_URL, replacement_url=NEW_URL, replacement_source='INE',
            confidence_score=9.0, status='approved',
        )

    @pytest.fixture
    def applicator(self, make_checker, policy, clock):
        return ReplacementApplicator(checker=make_checker(), policy=policy, clock=clock)

    def test_apply_rewrites_after_snapshot(self, article, candidate, applicator):
        ComplianceAlert.objects.create(alert_type='broken_link', severity='warning',
                                       citation_url=OLD_URL, article=article)
        result = applicator.apply([candidate.pk])

        assert result.succeeded == 1
        assert result.extra['articles_updated'] == 1
        assert result.extra['citations_updated'] == 1
        article.refresh_from_db()
        assert article.citation_urls() == [NEW_URL, 'https://sede.gob.es/keep']
        assert article.external_citations[0]['source'] == 'Source 1'
        assert f'href="{NEW_URL}"' in article.detailed_content

        revisions = ArticleRevision.objects.filter(article=article)
        assert revisions.count() == 1
        revision = revisions.get()
        assert revision.revision_type == 'citation_replacement'
        assert revision.candidate_id == candidate.pk
        assert revision.previous_citations[0]['url'] == OLD_URL
        assert OLD_URL in revision.previous_content
        assert revision.created_at < article.updated_at

        candidate.refresh_from_db()
        assert candidate.status == 'applied'
        assert candidate.applied_at == FIXED_NOW
        assert candidate.applied_article_ids == [str(article.pk)]
        assert candidate.replacement_count == 1
        assert CitationHealthRecord.objects.get(url=OLD_URL).status == 'replaced'
        assert CitationHealthRecord.objects.get(url=NEW_URL).status == 'pending'
        assert not ComplianceAlert.objects.unresolved().exists()
        assert CitationUsage.objects.active_for_url(NEW_URL).count() == 1

    def test_apply_is_idempotent(self, article, candidate, applicator):
        applicator.apply([candidate.pk])
        article.refresh_from_db()
        updated_at = article.updated_at

        second = applicator.apply([candidate.pk])

        assert second.skipped == 1
        assert second.details[0]['reason'] == 'already_applied'
        assert ArticleRevision.objects.filter(article=article).count() == 1
        article.refresh_from_db()
        assert article.updated_at == updated_at

    def test_partial_failure_keeps_progress_for_retry(self, article, candidate, applicator,
                                                       create_article, monkeypatch):
        second = create_article('rent-prices', citations=[OLD_URL])
        for target in (article, second):
            ComplianceAlert.objects.create(alert_type='broken_link', severity='warning',
                                           citation_url=OLD_URL, article=target)

        def rewrite_or_fail(article_id, *args, **kwargs):
            if str(article_id) == str(second.pk):
                raise DatabaseError('could not obtain lock')
            return rewrite_article_citation(article_id, *args, **kwargs)

        monkeypatch.setattr('citations.applicator.rewrite_article_citation', rewrite_or_fail)
        result = applicator.apply([candidate.pk])

        assert result.failed == 1
        assert result.details[0]['reason'] == 'partial_failure'
        assert result.details[0]['errors'] == [{'article_id': str(second.pk), 'error': 'could not obtain lock'}]
        candidate.refresh_from_db()
        assert candidate.status == 'approved'
        assert candidate.applied_article_ids == [str(article.pk)]
        assert candidate.replacement_count == 1
        article.refresh_from_db()
        assert article.citation_urls()[0] == NEW_URL
        assert not ComplianceAlert.objects.unresolved().filter(article=article).exists()
        assert ComplianceAlert.objects.unresolved().filter(article=second).exists()

        monkeypatch.undo()
        retry = applicator.apply([candidate.pk])

        assert retry.succeeded == 1
        assert retry.extra['articles_updated'] == 1
        candidate.refresh_from_db()
        assert candidate.status == 'applied'
        assert set(candidate.applied_article_ids) == {str(article.pk), str(second.pk)}
        assert candidate.replacement_count == 2
        assert not ComplianceAlert.objects.unresolved().exists()
        second.refresh_from_db()
        assert second.citation_urls() == [NEW_URL]
        assert ArticleRevision.objects.filter(article=article).count() == 1

    def test_retry_after_remaining_article_vanished(self, article, candidate, applicator,
                                                   create_article, monkeypatch):
        second = create_article('rent-prices', citations=[OLD_URL])

        def rewrite_or_fail(article_id, *args, **kwargs):
            if str(article_id) == str(second.pk):
                raise DatabaseError('could not obtain lock')
            return rewrite_article_citation(article_id, *args, **kwargs)

        monkeypatch.setattr('citations.applicator.rewrite_article_citation', rewrite_or_fail)
        applicator.apply([candidate.pk])
        monkeypatch.undo()
        second.delete()

        retry = applicator.apply([candidate.pk])

        assert retry.succeeded == 1
        candidate.refresh_from_db()
        assert candidate.status == 'applied'
        assert candidate.applied_article_ids == [str(article.pk)]
        assert candidate.replacement_count == 1

    def test_preview_has_no_side_effects(self, article, candidate, applicator):
        first = applicator.apply([candidate.pk], preview=True)
        second = applicator.apply([candidate.pk], preview=True)

        assert first.extra['affected_articles'] == second.extra['affected_articles']
        assert first.extra['citations_updated'] == 1
        assert first.extra['preview'] is True
        article.refresh_from_db()
        assert article.citation_urls()[0] == OLD_URL
        assert not ArticleRevision.objects.exists()
        candidate.refresh_from_db()
        assert candidate.status == 'approved'

    def test_banned_replacement_is_invalidated(self, article, applicator):
        candidate = ReplacementCandidate.objects.create(
            original_url=OLD_URL, replacement_url='https://www.idealista.com/x', status='approved',
        )
        result = applicator.apply([candidate.pk])
        assert result.details[0]['reason'] == 'replacement_banned'
        candidate.refresh_from_db()
        assert candidate.status == 'invalid'
        article.refresh_from_db()
        assert article.citation_urls()[0] == OLD_URL

    def test_unreachable_replacement(self, article, candidate, make_checker, policy, clock):
        applicator = ReplacementApplicator(
            checker=make_checker({NEW_URL: FakeResponse(404)}), policy=policy, clock=clock,
        )
        preview = applicator.apply([candidate.pk], preview=True)
        assert preview.details[0]['reason'] == 'replacement_unreachable'
        candidate.refresh_from_db()
        assert candidate.status == 'approved'

        applicator.apply([candidate.pk])
        candidate.refresh_from_db()
        assert candidate.status == 'invalid'
        assert 'unreachable' in candidate.reasoning

    def test_403_replacement_is_accepted(self, article, candidate, make_checker, policy, clock):
        applicator = ReplacementApplicator(
            checker=make_checker({NEW_URL: FakeResponse(403)}), policy=policy, clock=clock,
        )
        assert applicator.apply([candidate.pk]).succeeded == 1

    def test_uncited_original_fails(self, candidate, applicator, create_article):
        create_article('other', citations=['https://sede.gob.es/x'])
        result = applicator.apply([candidate.pk])
        assert result.failed == 1
        assert result.details[0]['reason'] == 'original_not_found'
        candidate.refresh_from_db()
        assert candidate.status == 'failed'

    def test_suggested_candidates_are_not_applied(self, article, applicator):
        candidate = ReplacementCandidate.objects.create(
            original_url=OLD_URL, replacement_url=NEW_URL, status='suggested',
        )
        result = applicator.apply([candidate.pk, uuid.uuid4()])
        assert result.skipped == 1
        assert result.failed == 1
        assert result.details[0]['reason'] == 'status_suggested'
        assert result.details[1]['reason'] == 'not_found'

    def test_requires_candidate_ids(self, applicator):
        with pytest.raises(HygieneConfigurationError):
            applicator.apply([])

    def test_rollback(self, article, candidate, applicator, clock):
        applicator.apply([candidate.pk])
        revision = ArticleRevision.objects.get(article=article, revision_type='citation_replacement')

        result = rollback_revision(revision.pk, clock=clock)

        assert result.succeeded == 1
        article.refresh_from_db()
        assert article.citation_urls() == [OLD_URL, 'https://sede.gob.es/keep']
        assert f'href="{OLD_URL}"' in article.detailed_content
        candidate.refresh_from_db()
        assert candidate.status == 'rolled_back'
        assert not CitationUsage.objects.active_for_url(NEW_URL).exists()
        assert CitationUsage.objects.active_for_url(OLD_URL).count() == 1
        audit = ArticleRevision.objects.get(article=article, revision_type='rollback')
        assert not audit.can_rollback
        assert audit.previous_citations[0]['url'] == NEW_URL

        again = rollback_revision(revision.pk, clock=clock)
        assert again.details[0]['reason'] == 'not_rollbackable'

    def test_rollback_window_expires(self, article, candidate, applicator):
        applicator.apply([candidate.pk])
        revision = ArticleRevision.objects.get(article=article)
        result = rollback_revision(revision.pk, clock=lambda: FIXED_NOW + timedelta(hours=25))
        assert not result.success
        assert result.details[0]['reason'] == 'expired'

    def test_rollback_unknown_revision(self):
        assert rollback_revision(uuid.uuid4()).details[0]['reason'] == 'not_found'

    def test_redirect_updater(self, create_article, policy, clock):
        old, new = 'https://sede.gob.es/old', 'https://sede.gob.es/new'
        article = create_article('redirected', citations=[old])
        CitationHealthRecord.objects.create(url=old, status='redirected', redirect_url=new, source_name='Sede')
        CitationHealthRecord.objects.create(
            url='https://www.ine.es/moved', status='redirected', redirect_url='https://www.idealista.com/x',
        )

        result = update_redirected_citations(policy=policy, clock=clock)

        assert result.succeeded == 1
        assert result.skipped == 1
        assert result.extra['articles_updated'] == 1
        article.refresh_from_db()
        assert article.citation_urls() == [new]
        assert ArticleRevision.objects.get(article=article).revision_type == 'redirect_update'
        assert not CitationHealthRecord.objects.filter(url=old).exists()
        record = CitationHealthRecord.objects.get(url=new)
        assert record.status == 'pending'
        assert record.is_government_source
        assert record.source_name == 'Sede'

    def test_redirect_updater_keeps_destination_status(self, create_article, policy, clock):
        old, new = 'https://sede.gob.es/old', 'https://sede.gob.es/gone'
        article = create_article('redirected', citations=[old])
        CitationHealthRecord.objects.create(url=old, status='redirected', redirect_url=new)
        CitationHealthRecord.objects.create(url=new, status='dead', http_status_code=404, times_failed=3)

        result = update_redirected_citations(policy=policy, clock=clock)

        assert result.succeeded == 1
        article.refresh_from_db()
        assert article.citation_urls() == [new]
        record = CitationHealthRecord.objects.get(url=new)
        assert record.status == 'dead'
        assert record.times_failed == 3


@pytest.mark.django_db
class TestCitationTracking:

    def test_populate(self, create_article):
        create_article('a', citations=['https://sede.gob.es/1', 'https://www.ine.es/2'])
        create_article('b', citations=['https://sede.gob.es/1'])
        create_article('draft', citations=['https://sede.gob.es/1'], status='draft')

        result = populate_citation_tracking()

        assert result.succeeded == 2
        assert result.extra['usage_rows'] == 3
        assert CitationUsage.objects.active_for_url('https://sede.gob.es/1').count() == 2

    def test_populate_is_repeatable(self, create_article):
        create_article('a', citations=['https://sede.gob.es/1'])
        populate_citation_tracking()
        populate_citation_tracking()
        assert CitationUsage.objects.count() == 1


# ---------------------------------------------------------------------------
# Hygiene run
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestHygieneRunner:

    def test_report_is_persisted(self, hygiene_settings, create_article, policy, clock):
        create_article('clean', citations=['https://sede.gob.es/a'])
        offender = create_article('offender', citations=['https://www.idealista.com/x'])

        result = HygieneRunner(policy=policy, clock=clock).run()

        report = HygieneReport.objects.get()
        assert result.extra['report']['id'] == str(report.id)
        assert report.scan_date == FIXED_NOW
        assert report.total_articles_scanned == 2
        assert report.violations_found == 1
        assert report.compliance_score == 50.0
        assert report.score_delta is None
        assert report.top_offenders == [{'domain': 'idealista.com', 'count': 1}]
        assert report.next_scan_scheduled == FIXED_NOW + timedelta(hours=24)
        assert not report.auto_replacement_triggered
        assert not report.alert_triggered

        offender.external_citations = [{'url': 'https://sede.gob.es/b'}]
        offender.save()
        later = lambda: FIXED_NOW + timedelta(days=1)
        HygieneRunner(policy=policy, clock=later).run()
        latest = HygieneReport.objects.latest()
        assert latest.compliance_score == 100.0
        assert latest.score_delta == 50.0

    def test_alert_threshold(self, hygiene_settings, create_article, policy):
        hygiene_settings.CITATION_HYGIENE = {**hygiene_settings.CITATION_HYGIENE, 'ALERT_THRESHOLD': 0}
        create_article('offender', citations=['https://www.idealista.com/x'])
        HygieneRunner(policy=policy).run()
        assert HygieneReport.objects.get().alert_triggered

    def test_auto_replacement_disabled(self, hygiene_settings, create_article, policy):
        create_article('offender', citations=['https://www.idealista.com/x'])
        discovery = FakeDiscovery()
        engine = ReplacementEngine(discovery=discovery, policy=policy)
        HygieneRunner(engine=engine, policy=policy).run()
        assert discovery.calls == []

    def test_missing_ai_keys_fail_before_scanning(self, hygiene_settings, create_article, policy, monkeypatch):
        monkeypatch.delenv('OPENAI_API_KEY', raising=False)
        monkeypatch.delenv('ANTHROPIC_API_KEY', raising=False)
        create_article('offender', citations=['https://www.idealista.com/x'])

        with pytest.raises(HygieneConfigurationError):
            HygieneRunner(policy=policy, auto_replace=True).run()

        assert ComplianceAlert.objects.count() == 0
        assert HygieneReport.objects.count() == 0

    def test_auto_replacements_are_capped(self, hygiene_settings, create_article, make_checker, policy):
        hygiene_settings.CITATION_HYGIENE = {**hygiene_settings.CITATION_HYGIENE, 'MAX_AUTO_REPLACEMENTS': 1}
        create_article('first', citations=['https://www.idealista.com/a'])
        create_article('second', citations=['https://banned-competitor.com/b'])
        discovery = FakeDiscovery()
        runner = HygieneRunner(
            engine=ReplacementEngine(discovery=discovery, policy=policy),
            applicator=ReplacementApplicator(checker=make_checker(), policy=policy),
            policy=policy, auto_replace=True,
        )

        result = runner.run()

        assert len(discovery.calls) == 1
        assert len([d for d in result.details if d.get('step') == 'replace']) == 1
        report = HygieneReport.objects.get()
        assert report.violations_found == 2
        assert report.auto_replacement_triggered

    def test_end_to_end(self, hygiene_settings, create_article, make_checker, policy, clock):
        article1 = create_article('competitor', citations=['https://banned-competitor.com/x'])
        article2 = create_article('official', citations=['https://gov.es/y'])
        article3 = create_article('broken', citations=[OLD_URL])
        checker = make_checker({OLD_URL: FakeResponse(404)})

        sweep = verify_citation_health(checker=checker, clock=clock)
        assert sweep.extra['status_counts']['dead'] == 1
        assert CitationHealthRecord.objects.get(url=OLD_URL).status == 'dead'

        discovery = FakeDiscovery({OLD_URL: [{
            'url': NEW_URL, 'sourceName': 'INE', 'relevanceScore': 92, 'authorityScore': 9,
            'reason': 'Same statistics series', 'verified': True,
        }]})
        runner = HygieneRunner(
            engine=ReplacementEngine(discovery=discovery, policy=policy, clock=clock),
            applicator=ReplacementApplicator(checker=checker, policy=policy, clock=clock),
            policy=policy, clock=clock, auto_replace=True,
        )
        result = runner.run()

        critical = ComplianceAlert.objects.filter(article=article1, alert_type='competitor').get()
        assert critical.severity == 'critical'
        assert not ComplianceAlert.objects.filter(article=article2).exists()

        candidate = ReplacementCandidate.objects.get(original_url=OLD_URL)
        assert candidate.confidence_score >= 9.0
        assert candidate.status == 'applied'
        article3.refresh_from_db()
        assert article3.citation_urls() == [NEW_URL]
        assert ArticleRevision.objects.filter(article=article3).count() == 1
        assert not ComplianceAlert.objects.unresolved().filter(article=article3, alert_type='broken_link').exists()

        report = HygieneReport.objects.get()
        assert report.violations_found == 2
        assert report.auto_replacement_triggered
        assert report.replacements_applied == 1
        assert report.articles_cleaned == 1
        skipped = [d for d in result.details if d['outcome'] == 'skipped']
        assert skipped[0]['url'] == 'https://banned-competitor.com/x'


# ---------------------------------------------------------------------------
# Management commands
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestCommands:

    def test_run_citation_hygiene(self, hygiene_settings, create_article):
        create_article('offender', citations=['https://www.idealista.com/x'])
        out = StringIO()
        call_command('run_citation_hygiene', stdout=out)
        assert 'Compliance score: 0.0%' in out.getvalue()
        assert HygieneReport.objects.count() == 1

    def test_populate_citation_tracking(self, create_article):
        create_article('a', citations=['https://sede.gob.es/1'])
        out = StringIO()
        call_command('populate_citation_tracking', stdout=out)
        assert 'Tracked 1 citation(s) across 1 article(s)' in out.getvalue()

    def test_verify_with_empty_corpus(self, hygiene_settings):
        out = StringIO()
        call_command('verify_citation_health', stdout=out)
        assert 'Checked 0 URL(s)' in out.getvalue()


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestHygieneAPI:

    def test_health_check_is_public(self, api_client):
        response = api_client.get('/api/v1/health/')
        assert response.status_code == 200
        assert response.json()['status'] == 'ok'

    def test_endpoints_require_authentication(self, api_client):
        assert api_client.get('/api/v1/compliance/alerts/').status_code == 401
        assert api_client.post('/api/v1/hygiene/run/', format='json').status_code == 401

    def test_token_pair(self, api_client):
        get_user_model().objects.create_user(username='editor', password='testpass123')
        response = api_client.post('/api/v1/auth/token/', {
            'username': 'editor', 'password': 'testpass123',
        }, format='json')
        assert response.status_code == 200
        assert 'access' in response.data and 'refresh' in response.data

    def test_scan_and_alerts(self, hygiene_settings, authenticated_client, create_article):
        client, _ = authenticated_client
        article = create_article('offender', citations=['https://www.idealista.com/x'])

        response = client.post('/api/v1/compliance/scan/', {}, format='json')
        assert response.status_code == 200
        assert response.data['data']['violations_found'] == 1

        response = client.get('/api/v1/compliance/alerts/', {'severity': 'critical'})
        assert response.status_code == 200
        assert response.data['meta']['total'] == 1
        alert = response.data['data'][0]
        assert alert['article_slug'] == article.slug

        url = f"/api/v1/compliance/alerts/{alert['id']}/resolve/"
        response = client.post(url, {'notes': 'Partner link'}, format='json')
        assert response.status_code == 200
        assert client.post(url, {}, format='json').status_code == 409
        assert client.post(f'/api/v1/compliance/alerts/{uuid.uuid4()}/resolve/', {}, format='json').status_code == 404

    def test_scan_without_policy_is_a_bad_request(self, settings, authenticated_client):
        settings.CITATION_HYGIENE = {'APPROVED_DOMAINS': [], 'COMPETITOR_DOMAINS': []}
        client, _ = authenticated_client
        response = client.post('/api/v1/compliance/scan/', {}, format='json')
        assert response.status_code == 400
        assert response.data['error']['code'] == 'CONFIGURATION_ERROR'

    def test_find_without_ai_keys(self, hygiene_settings, authenticated_client, monkeypatch):
        monkeypatch.delenv('OPENAI_API_KEY', raising=False)
        monkeypatch.delenv('ANTHROPIC_API_KEY', raising=False)
        client, _ = authenticated_client
        response = client.post('/api/v1/replacements/find/', {'url': DEAD_URL}, format='json')
        assert response.status_code == 400
        assert client.post('/api/v1/replacements/find/', {}, format='json').status_code == 400

    def test_approve_and_preview_apply(self, hygiene_settings, authenticated_client, create_article, monkeypatch):
        monkeypatch.setattr('citations.health.build_session', lambda: FakeSession())
        client, _ = authenticated_client
        create_article('a', citations=[OLD_URL])
        candidate = ReplacementCandidate.objects.create(
            original_url=OLD_URL, replacement_url=NEW_URL, confidence_score=7.5, status='suggested',
        )

        response = client.post(f'/api/v1/replacements/{candidate.pk}/approve/', {}, format='json')
        assert response.status_code == 200
        assert response.data['data']['status'] == 'approved'

        response = client.post('/api/v1/replacements/apply/', {
            'replacement_ids': [str(candidate.pk)], 'preview': True,
        }, format='json')
        assert response.status_code == 200
        assert response.data['data']['affected_articles'][0]['replacements'] == 1
        assert not ArticleRevision.objects.exists()

        response = client.post('/api/v1/replacements/apply/', {'replacement_ids': [str(candidate.pk)]}, format='json')
        assert response.data['data']['succeeded'] == 1
        assert client.post(f'/api/v1/replacements/{candidate.pk}/approve/', {}, format='json').status_code == 409

    def test_apply_requires_ids(self, hygiene_settings, authenticated_client):
        client, _ = authenticated_client
        response = client.post('/api/v1/replacements/apply/', {'replacement_ids': []}, format='json')
        assert response.status_code == 400
        response = client.post('/api/v1/replacements/apply/', {'replacement_ids': ['nope']}, format='json')
        assert response.status_code == 400

    def test_rollback_endpoint(self, hygiene_settings, authenticated_client, create_article, make_checker, policy):
        client, _ = authenticated_client
        article = create_article('a', citations=[OLD_URL])
        candidate = ReplacementCandidate.objects.create(
            original_url=OLD_URL, replacement_url=NEW_URL, status='approved',
        )
        ReplacementApplicator(checker=make_checker(), policy=policy).apply([candidate.pk])
        revision = ArticleRevision.objects.get(article=article)

        response = client.post(f'/api/v1/revisions/{revision.pk}/rollback/', {}, format='json')
        assert response.status_code == 200
        article.refresh_from_db()
        assert article.citation_urls() == [OLD_URL]

        assert client.post(f'/api/v1/revisions/{revision.pk}/rollback/', {}, format='json').status_code == 409
        assert client.post(f'/api/v1/revisions/{uuid.uuid4()}/rollback/', {}, format='json').status_code == 404

    def test_health_records(self, authenticated_client):
        client, _ = authenticated_client
        CitationHealthRecord.objects.create(url='https://a.gob.es/1', status='dead')
        CitationHealthRecord.objects.create(url='https://a.gob.es/2', status='active')
        response = client.get('/api/v1/citations/health/', {'status': 'dead'})
        assert response.status_code == 200
        assert [r['url'] for r in response.data['data']] == ['https://a.gob.es/1']
        assert response.data['meta']['by_status'] == {'dead': 1, 'active': 1}

    def test_hygiene_run_and_reports(self, hygiene_settings, authenticated_client, create_article):
        client, _ = authenticated_client
        create_article('clean', citations=['https://sede.gob.es/a'])
        response = client.post('/api/v1/hygiene/run/', {}, format='json')
        assert response.status_code == 201
        assert response.data['data']['report']['compliance_score'] == 100.0

        response = client.get('/api/v1/hygiene/reports/')
        assert response.status_code == 200
        assert response.data['meta']['total'] == 1

        response = client.get('/api/v1/hygiene/reports/', {'page': 'abc', 'per_page': 'many'})
        assert response.status_code == 200
        assert response.data['meta']['page'] == 1
        assert response.data['meta']['per_page'] == 25
        assert response.data['meta']['total'] == 1
