"""
Typed views over the JSON blobs stored on Article.

external_citations and internal_links are free-form JSON in the database and
have been written by several generations of the content pipeline. Everything
that reads or writes them goes through these records: known legacy keys are
upgraded, entries without a usable URL are dropped with a warning, and keys we
do not model are carried through untouched in ``extra``.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


def _first(raw: Dict[str, Any], *keys, default=None):
    for key in keys:
        if raw.get(key) not in (None, ''):
            return raw[key]
    return default


def _as_float(value) -> Optional[float]:
    if value in (None, ''):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class ExternalCitation:
    url: str
    source_name: str = ''
    anchor_text: str = ''
    authority_score: Optional[float] = None
    source_type: str = ''
    year: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = (
        'url', 'source', 'sourceName', 'source_name', 'text', 'anchorText', 'anchor_text',
        'authorityScore', 'authority_score', 'sourceType', 'source_type',
        'year', 'verifiedYear', 'verified_year',
    )

    @classmethod
    def from_raw(cls, raw) -> Optional['ExternalCitation']:
        if isinstance(raw, str):
            raw = {'url': raw}
        if not isinstance(raw, dict):
            return None
        url = str(raw.get('url') or '').strip()
        if not url:
            return None
        authority = _as_float(_first(raw, 'authority_score', 'authorityScore'))
        if authority is not None:
            authority = max(0.0, min(10.0, authority))
        return cls(
            url=url,
            source_name=str(_first(raw, 'source_name', 'sourceName', 'source', default='')),
            anchor_text=str(_first(raw, 'anchor_text', 'anchorText', 'text', default='')),
            authority_score=authority,
            source_type=str(_first(raw, 'source_type', 'sourceType', default='')),
            year=_as_int(_first(raw, 'year', 'verified_year', 'verifiedYear')),
            extra={k: v for k, v in raw.items() if k not in cls._KNOWN_KEYS},
        )

    def to_raw(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'url': self.url,
            'source_name': self.source_name,
            'anchor_text': self.anchor_text,
        })
        if self.authority_score is not None:
            data['authority_score'] = self.authority_score
        if self.source_type:
            data['source_type'] = self.source_type
        if self.year is not None:
            data['year'] = self.year
        return data


@dataclass
class InternalLink:
    url: str
    anchor_text: str = ''
    title: str = ''
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = ('url', 'href', 'text', 'anchorText', 'anchor_text', 'title')

    @classmethod
    def from_raw(cls, raw) -> Optional['InternalLink']:
        if isinstance(raw, str):
            raw = {'url': raw}
        if not isinstance(raw, dict):
            return None
        url = str(_first(raw, 'url', 'href', default='')).strip()
        if not url:
            return None
        return cls(
            url=url,
            anchor_text=str(_first(raw, 'anchor_text', 'anchorText', 'text', default='')),
            title=str(raw.get('title') or ''),
            extra={k: v for k, v in raw.items() if k not in cls._KNOWN_KEYS},
        )

    def to_raw(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({'url': self.url, 'anchor_text': self.anchor_text, 'title': self.title})
        return data


def parse_citations(raw_list: Iterable, owner: str = '') -> List[ExternalCitation]:
    """Parse a stored citation list, skipping (and logging) malformed entries."""
    citations = []
    for index, raw in enumerate(raw_list or []):
        citation = ExternalCitation.from_raw(raw)
        if citation is None:
            logger.warning("Dropping malformed citation #%s on %s: %r", index, owner or 'article', raw)
            continue
        citations.append(citation)
    return citations


def replace_citation_url(raw_list: Iterable, old_url: str, new_url: str):
    """
    Point every stored citation whose url is ``old_url`` at ``new_url``.

    Works on the raw entries so every other key keeps its stored form.
    Returns (new list, number of entries rewritten).
    """
    rewritten = []
    count = 0
    for raw in raw_list or []:
        if isinstance(raw, dict) and str(raw.get('url') or '').strip() == old_url:
            raw = {**raw, 'url': new_url}
            count += 1
        elif isinstance(raw, str) and raw.strip() == old_url:
            raw = new_url
            count += 1
        rewritten.append(raw)
    return rewritten, count


def replace_content_links(content: str, old_url: str, new_url: str):
    """Rewrite href attributes in HTML that point exactly at ``old_url``. Returns (content, count)."""
    if not content or not old_url:
        return content, 0
    count = 0
    for quote in ('"', "'"):
        needle = f'href={quote}{old_url}{quote}'
        occurrences = content.count(needle)
        if occurrences:
            content = content.replace(needle, f'href={quote}{new_url}{quote}')
            count += occurrences
    return content, count


def parse_internal_links(raw_list: Iterable, owner: str = '') -> List[InternalLink]:
    links = []
    for index, raw in enumerate(raw_list or []):
        link = InternalLink.from_raw(raw)
        if link is None:
            logger.warning("Dropping malformed internal link #%s on %s: %r", index, owner or 'article', raw)
            continue
        links.append(link)
    return links
