"""
Link Depth Analyzer

Builds the site's navigation graph from a synthetic homepage and computes the
click distance of every page with a breadth-first search:
- Homepage → every static route
- Blog index → every listed article and every category page
- Category page → the articles in that category
- Article → its internal links, plus back to the blog index
- Static page → homepage and blog index

Articles that are never reached are reported as orphans.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

from .extraction import extract_links

logger = logging.getLogger(__name__)

HOMEPAGE = '/'
BLOG_INDEX = '/blog'
CATEGORY_PREFIX = '/blog/category/'

STATIC_ROUTES = [
    '/',
    '/blog',
    '/about',
    '/faq',
    '/qa',
    '/case-studies',
    '/privacy-policy',
    '/terms-of-service',
]

DEFAULT_DEPTH_THRESHOLD = 3


def normalize_path(url: str) -> str:
    """Reduce an internal link to a bare site path: no host, query, fragment or trailing slash."""
    path = urlparse(url).path or HOMEPAGE
    if not path.startswith('/'):
        path = '/' + path
    if len(path) > 1:
        path = path.rstrip('/')
    return path


def category_path(category: str) -> str:
    return f"{CATEGORY_PREFIX}{category}"


@dataclass
class SitePage:
    """An article as the depth analyzer sees it."""
    slug: str
    category: str = ''
    internal_links: List[str] = field(default_factory=list)
    listed: bool = True

    @property
    def path(self) -> str:
        return f"/blog/{self.slug}"

    @classmethod
    def from_article(cls, article) -> 'SitePage':
        """Declared internal links plus site-relative links found in the body; listed when published."""
        links = [link.url for link in article.links]
        links += extract_links(article.detailed_content).internal_paths
        return cls(
            slug=article.slug,
            category=article.category or '',
            internal_links=links,
            listed=article.status == 'published',
        )


@dataclass
class LinkDepthNode:
    url: str
    depth: int
    parent_url: Optional[str] = None


@dataclass
class LinkDepthReport:
    node_depths: Dict[str, int]
    path_map: Dict[str, List[str]]
    orphan_articles: List[str]
    max_depth: int
    average_depth: float

    def articles_exceeding_depth(self, threshold: int = DEFAULT_DEPTH_THRESHOLD) -> List[dict]:
        exceeding = [
            {'url': url, 'depth': depth, 'path': self.path_map.get(url, [])}
            for url, depth in self.node_depths.items()
            if url.startswith('/blog/') and not url.startswith(CATEGORY_PREFIX) and depth > threshold
        ]
        return sorted(exceeding, key=lambda item: item['depth'], reverse=True)

    def recommendations(self, threshold: int = DEFAULT_DEPTH_THRESHOLD) -> List[str]:
        recommendations = []
        if self.orphan_articles:
            recommendations.append(
                f"{len(self.orphan_articles)} orphan article(s) are not reachable from the homepage. "
                "Add internal links to these articles."
            )
        if self.average_depth > 2.5:
            recommendations.append(
                f"Average link depth is {self.average_depth} clicks. "
                "Consider adding more cross-linking between related articles."
            )
        deep = self.articles_exceeding_depth(threshold)
        if deep:
            recommendations.append(
                f"{len(deep)} article(s) are more than {threshold} clicks from the homepage. "
                "Add direct links from blog index or category pages."
            )
        if not recommendations:
            recommendations.append(
                f"All articles are optimally positioned within {threshold} clicks from homepage"
            )
        return recommendations

    def to_dict(self, threshold: int = DEFAULT_DEPTH_THRESHOLD) -> dict:
        return {
            'node_depths': self.node_depths,
            'path_map': self.path_map,
            'orphan_articles': self.orphan_articles,
            'max_depth': self.max_depth,
            'average_depth': self.average_depth,
            'articles_exceeding_depth': self.articles_exceeding_depth(threshold),
            'recommendations': self.recommendations(threshold),
        }


class _SiteGraph:

    def __init__(self, pages: Sequence[SitePage], categories: Iterable[str], static_routes: Sequence[str]):
        self.static_routes = list(static_routes)
        self.pages = {page.path: page for page in pages}
        self.categories = list(dict.fromkeys(c for c in categories if c))

    def outgoing(self, url: str) -> List[str]:
        if url == HOMEPAGE:
            return [route for route in self.static_routes if route != HOMEPAGE]

        if url == BLOG_INDEX:
            links = [path for path, page in self.pages.items() if page.listed]
            links += [category_path(c) for c in self.categories]
            return links

        if url.startswith(CATEGORY_PREFIX):
            category = url[len(CATEGORY_PREFIX):]
            return [
                path for path, page in self.pages.items()
                if page.listed and page.category == category
            ]

        page = self.pages.get(url)
        if page is not None:
            links = [normalize_path(link) for link in page.internal_links]
            links.append(BLOG_INDEX)
            return links

        if url in self.static_routes:
            return [HOMEPAGE] if url == BLOG_INDEX else [HOMEPAGE, BLOG_INDEX]

        return []


def calculate_link_depth(
    pages: Sequence[SitePage],
    categories: Optional[Iterable[str]] = None,
    static_routes: Sequence[str] = STATIC_ROUTES,
) -> LinkDepthReport:
    """
    Breadth-first search from the homepage.

    A node is expanded at most once; a pending node's depth is only lowered
    when a strictly shorter path reaches it before it is dequeued.
    """
    if categories is None:
        categories = [page.category for page in pages]
    graph = _SiteGraph(pages, categories, static_routes)

    node_depths: Dict[str, int] = {HOMEPAGE: 0}
    path_map: Dict[str, List[str]] = {HOMEPAGE: [HOMEPAGE]}
    visited = set()
    queue = deque([LinkDepthNode(url=HOMEPAGE, depth=0)])

    while queue:
        current = queue.popleft()
        if current.url in visited:
            continue
        visited.add(current.url)
        current_path = path_map.get(current.url, [current.url])

        for link in graph.outgoing(current.url):
            if link in visited:
                continue
            new_depth = current.depth + 1
            if link not in node_depths or node_depths[link] > new_depth:
                node_depths[link] = new_depth
                path_map[link] = current_path + [link]
                queue.append(LinkDepthNode(url=link, depth=new_depth, parent_url=current.url))

    orphans = [page.path for page in pages if page.path not in node_depths]
    depths = list(node_depths.values())
    report = LinkDepthReport(
        node_depths=node_depths,
        path_map=path_map,
        orphan_articles=orphans,
        max_depth=max(depths) if depths else 0,
        average_depth=round(sum(depths) / len(depths), 1) if depths else 0.0,
    )
    logger.info(
        "Link depth: %s nodes reached, max depth %s, %s orphan(s)",
        len(node_depths), report.max_depth, len(orphans),
    )
    return report


def analyze_corpus(articles, static_routes: Sequence[str] = STATIC_ROUTES) -> LinkDepthReport:
    """Run the analyzer over Article model instances."""
    pages = [SitePage.from_article(article) for article in articles]
    return calculate_link_depth(pages, static_routes=static_routes)
