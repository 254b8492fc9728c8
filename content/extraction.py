"""
Citation extraction from article HTML.

Enumerates external citations (absolute http(s) URLs) and internal links
(site-relative paths) in first-occurrence order, with the anchor text,
paragraph and section heading each link was found in.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

SKIPPED_SCHEMES = ('mailto:', 'tel:', 'javascript:', 'data:')
CONTEXT_BLOCKS = ['p', 'li', 'td', 'blockquote', 'figcaption']
SECTION_HEADINGS = ['h1', 'h2', 'h3', 'h4']


@dataclass
class LinkReference:
    url: str
    anchor_text: str = ''
    paragraph: str = ''
    section: str = ''


@dataclass
class ExtractedLinks:
    external: List[LinkReference] = field(default_factory=list)
    internal: List[LinkReference] = field(default_factory=list)

    @property
    def external_urls(self) -> List[str]:
        return [link.url for link in self.external]

    @property
    def internal_paths(self) -> List[str]:
        return [link.url for link in self.internal]


def _host(netloc: str) -> str:
    host = netloc.lower().split('@')[-1].split(':')[0]
    return host[4:] if host.startswith('www.') else host


def _classify(href: str, site_host: str):
    """Return ('external'|'internal', normalized url) or None when the href is not a link we track."""
    if href.startswith('//'):
        href = 'https:' + href
    parsed = urlparse(href)

    if parsed.scheme in ('http', 'https'):
        if not parsed.netloc:
            return None
        if site_host and _host(parsed.netloc) == site_host:
            return 'internal', parsed.path or '/'
        return 'external', href

    if not parsed.scheme and href.startswith('/'):
        return 'internal', parsed.path or '/'
    return None


def extract_links(content: str, site_domain: Optional[str] = None) -> ExtractedLinks:
    """
    Extract external and internal links from HTML content.

    Anchors (#...) and non-navigational schemes are ignored; an absolute URL on
    ``site_domain`` counts as an internal path. Tags whose href cannot be
    parsed are skipped.
    """
    result = ExtractedLinks()
    if not content:
        return result

    site_host = _host(site_domain) if site_domain else ''
    soup = BeautifulSoup(content, 'html.parser')
    seen = set()

    for a_tag in soup.find_all('a', href=True):
        href = (a_tag.get('href') or '').strip()
        if not href or href.startswith('#') or href.lower().startswith(SKIPPED_SCHEMES):
            continue
        try:
            classified = _classify(href, site_host)
        except ValueError as e:
            logger.debug("Skipping unparsable href %r: %s", href, e)
            continue
        if classified is None:
            continue

        kind, url = classified
        if (kind, url) in seen:
            continue
        seen.add((kind, url))

        block = a_tag.find_parent(CONTEXT_BLOCKS)
        heading = a_tag.find_previous(SECTION_HEADINGS)
        reference = LinkReference(
            url=url,
            anchor_text=a_tag.get_text(strip=True),
            paragraph=block.get_text(' ', strip=True) if block else '',
            section=heading.get_text(strip=True) if heading else '',
        )
        if kind == 'external':
            result.external.append(reference)
        else:
            result.internal.append(reference)

    return result


def extract_citation_context(content: str, url: str, max_length: int = 500) -> Optional[str]:
    """
    Return the text surrounding a citation: its paragraph, or the sentence that
    holds the link when the paragraph is longer than ``max_length``. When the
    link is present but has no enclosing block, fall back to the cited domain.
    Returns None if the URL does not appear in the content.
    """
    if not content or not url or url not in content:
        return None

    soup = BeautifulSoup(content, 'html.parser')
    for a_tag in soup.find_all('a', href=True):
        if a_tag['href'].strip() != url:
            continue
        block = a_tag.find_parent(CONTEXT_BLOCKS)
        if block is None:
            break
        paragraph = block.get_text(' ', strip=True)
        if len(paragraph) <= max_length:
            return paragraph
        anchor_text = a_tag.get_text(strip=True)
        for sentence in re.split(r'(?<=[.!?])\s+', paragraph):
            if anchor_text and anchor_text in sentence:
                return sentence[:max_length]
        return paragraph[:max_length]

    return _host(urlparse(url).netloc) or None
