"""
Link Pattern Validator

Every article is expected to carry three internal links:
- parent_category  — its own /blog/category/<category> page
- related_article  — at least one other article
- service_link     — a service/conversion page (the preferred one depends on funnel stage)
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .extraction import extract_links
from .link_depth import CATEGORY_PREFIX, category_path, normalize_path

SERVICE_PAGES = ['/about', '/faq', '/qa', '/case-studies']

SERVICE_PAGE_BY_STAGE = {
    'TOFU': '/faq',
    'MOFU': '/case-studies',
    'BOFU': '/about',
}

SERVICE_PAGE_REASON = {
    '/faq': 'answer the questions readers have at the awareness stage',
    '/case-studies': 'show proof while readers compare their options',
    '/about': 'guide ready-to-act readers toward contacting the team',
}

PATTERNS = ('parent_category', 'related_article', 'service_link')


def suggested_service_page(funnel_stage: Optional[str]) -> str:
    return SERVICE_PAGE_BY_STAGE.get((funnel_stage or '').upper(), '/about')


@dataclass
class LinkPatternValidation:
    article_id: str
    has_parent_category_link: bool = False
    has_related_article_link: bool = False
    has_service_link: bool = False
    parent_category_url: Optional[str] = None
    related_article_urls: List[str] = field(default_factory=list)
    service_url: Optional[str] = None
    expected_service_page: str = '/about'
    missing_patterns: List[str] = field(default_factory=list)
    compliance_score: int = 0
    recommendations: List[str] = field(default_factory=list)

    @property
    def has_expected_service_link(self) -> bool:
        return self.service_url == self.expected_service_page

    def to_dict(self) -> dict:
        return {
            'article_id': self.article_id,
            'has_parent_category_link': self.has_parent_category_link,
            'has_related_article_link': self.has_related_article_link,
            'has_service_link': self.has_service_link,
            'has_expected_service_link': self.has_expected_service_link,
            'parent_category_url': self.parent_category_url,
            'related_article_urls': self.related_article_urls,
            'service_url': self.service_url,
            'expected_service_page': self.expected_service_page,
            'missing_patterns': self.missing_patterns,
            'compliance_score': self.compliance_score,
            'recommendations': self.recommendations,
        }


def _article_paths(article) -> List[str]:
    """Declared internal links plus site-relative links in the rendered body, first occurrence first."""
    paths = [normalize_path(link.url) for link in article.links]
    paths += [normalize_path(p) for p in extract_links(article.detailed_content).internal_paths]
    return list(dict.fromkeys(paths))


def validate_link_patterns(article) -> LinkPatternValidation:
    own_path = f"/blog/{article.slug}"
    own_category = category_path(article.category) if article.category else None
    expected_service = suggested_service_page(article.funnel_stage)
    validation = LinkPatternValidation(
        article_id=str(article.id),
        expected_service_page=expected_service,
    )

    for path in _article_paths(article):
        if own_category and path == own_category:
            validation.has_parent_category_link = True
            validation.parent_category_url = path
        elif path.startswith('/blog/') and not path.startswith(CATEGORY_PREFIX) and path != own_path:
            validation.has_related_article_link = True
            validation.related_article_urls.append(path)
        elif path in SERVICE_PAGES:
            validation.has_service_link = True
            # Prefer reporting the stage's own service page when several are linked
            if validation.service_url != expected_service:
                validation.service_url = path

    if not validation.has_parent_category_link:
        validation.missing_patterns.append('parent_category')
        if own_category:
            validation.recommendations.append(
                f"Add a link to {own_category} to help users discover related content"
            )
        else:
            validation.recommendations.append(
                "Assign a category and link to its /blog/category/ page"
            )

    if not validation.has_related_article_link:
        validation.missing_patterns.append('related_article')
        stage = f"{article.funnel_stage} " if article.funnel_stage else ''
        validation.recommendations.append(
            f"Add at least one link to a related {stage}article in the same category or cluster"
        )

    if not validation.has_service_link:
        validation.missing_patterns.append('service_link')
        validation.recommendations.append(
            f"Add a link to {expected_service} to {SERVICE_PAGE_REASON[expected_service]}"
        )

    satisfied = len(PATTERNS) - len(validation.missing_patterns)
    validation.compliance_score = round(satisfied / len(PATTERNS) * 100)
    return validation


def validate_all_link_patterns(articles: Iterable) -> Dict[str, LinkPatternValidation]:
    return {str(article.id): validate_link_patterns(article) for article in articles}


def pattern_compliance_report(validations: Dict[str, LinkPatternValidation]) -> dict:
    fully = partially = non_compliant = 0
    total_score = 0
    missing_counts = {pattern: 0 for pattern in PATTERNS}

    for validation in validations.values():
        total_score += validation.compliance_score
        if validation.compliance_score == 100:
            fully += 1
        elif validation.compliance_score >= 50:
            partially += 1
        else:
            non_compliant += 1
        for pattern in validation.missing_patterns:
            missing_counts[pattern] += 1

    return {
        'total_articles': len(validations),
        'fully_compliant': fully,
        'partially_compliant': partially,
        'non_compliant': non_compliant,
        'average_compliance_score': round(total_score / len(validations)) if validations else 0,
        'missing_pattern_counts': missing_counts,
    }


def articles_needing_pattern_fixes(validations: Dict[str, LinkPatternValidation], score_threshold: int = 100):
    needs_fixes = [v for v in validations.values() if v.compliance_score < score_threshold]
    return sorted(needs_fixes, key=lambda v: v.compliance_score)
