"""
Replacement candidate discovery: OpenAI first, Claude as fallback.

Asks a model for authoritative alternatives to a dead or banned citation and
verifies each suggestion over the network before handing it to the
replacement engine as
``{url, sourceName, relevanceScore, authorityScore, reason, verified}``.
"""
import json
import logging
import os
import re
from typing import List, Optional

from content.extraction import extract_citation_context
from .exceptions import HygieneConfigurationError
from .health import LinkHealthChecker

logger = logging.getLogger(__name__)

ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
OPENAI_MODEL = "gpt-4o"
TEMPERATURE = 0.2
MAX_TOKENS = 1500
MAX_CONTEXT_CHARS = 1500

LANGUAGE_CONFIG = {
    'es': {'domains': ['.gob.es', '.es'], 'language_name': 'Spanish'},
    'en': {'domains': ['.gov', '.gov.uk'], 'language_name': 'English'},
    'nl': {'domains': ['.overheid.nl', '.nl'], 'language_name': 'Dutch'},
}

SYSTEM_PROMPT = (
    "You are a research expert finding replacement sources for broken or disallowed citation "
    "links in real-estate articles. Return only a JSON object of the form "
    '{"candidates": [{"url": "...", "sourceName": "...", "relevanceScore": 0-100, '
    '"authorityScore": 0-10, "reason": "..."}]}.'
)


def _clean_json(text: str):
    """Strip markdown fences and parse JSON."""
    cleaned = re.sub(r'```(?:json)?\s*', '', text).strip()
    cleaned = cleaned.rstrip('`').strip()
    return json.loads(cleaned)


def _parse_candidates(text: str) -> List[dict]:
    """Candidate list from a model reply: a ``{"candidates": [...]}`` object or a bare list."""
    parsed = _clean_json(text)
    if isinstance(parsed, dict):
        parsed = parsed.get('candidates') or []
    if not isinstance(parsed, list):
        return []
    return parsed


def _build_user_message(original_url: str, article) -> str:
    language = getattr(article, 'language', None) or 'en'
    config = LANGUAGE_CONFIG.get(language, LANGUAGE_CONFIG['en'])
    source_name = ''
    context = ''
    if article is not None:
        source_name = next((c.source_name for c in article.citations if c.url == original_url), '')
        context = extract_citation_context(article.detailed_content, original_url) or article.headline
    return (
        f"Citation URL to replace: {original_url}\n"
        f"Original source: {source_name or 'unknown'}\n"
        f"Article: {getattr(article, 'headline', '')}\n"
        f"Context: {context[:MAX_CONTEXT_CHARS]}\n\n"
        "Find 2-3 replacement URLs that:\n"
        "1. Cover the same topic as the original source\n"
        f"2. Come from authoritative sources (preferably government domains: {', '.join(config['domains'])})\n"
        f"3. Are written in {config['language_name']}\n"
        "4. Are currently online\n"
        "Score relevance 0-100 for topical match and authority 0-10 for source credibility."
    )


class AIDiscovery:
    """Candidate discovery backed by an LLM plus a live reachability check."""

    def __init__(self, checker: Optional[LinkHealthChecker] = None, openai_key: Optional[str] = None,
                 anthropic_key: Optional[str] = None):
        self.checker = checker or LinkHealthChecker()
        self.openai_key = openai_key if openai_key is not None else os.getenv('OPENAI_API_KEY')
        self.anthropic_key = anthropic_key if anthropic_key is not None else os.getenv('ANTHROPIC_API_KEY')
        if not self.openai_key and not self.anthropic_key:
            raise HygieneConfigurationError(
                "No AI provider configured for citation discovery. Set OPENAI_API_KEY or ANTHROPIC_API_KEY."
            )

    def discover(self, original_url: str, article=None) -> List[dict]:
        user_message = _build_user_message(original_url, article)
        candidates = []
        for raw in self._call(user_message):
            if not isinstance(raw, dict) or not raw.get('url'):
                continue
            candidates.append({
                'url': str(raw['url']).strip(),
                'sourceName': raw.get('sourceName') or raw.get('source') or '',
                'relevanceScore': raw.get('relevanceScore', 0),
                'authorityScore': raw.get('authorityScore', 0),
                'reason': raw.get('reason') or raw.get('relevance') or '',
                'verified': self._verify(str(raw['url']).strip()),
            })
        logger.info(
            "Discovery for %s: %s suggested, %s verified",
            original_url, len(candidates), sum(1 for c in candidates if c['verified']),
        )
        return candidates

    def _verify(self, url: str) -> bool:
        return self.checker.check(url, for_replacement=True).is_reachable

    def _call(self, user_message: str) -> List[dict]:
        if self.openai_key:
            try:
                return _call_openai(self.openai_key, SYSTEM_PROMPT, user_message)
            except Exception as e:
                logger.error(f"OpenAI call failed: {e}")
                if not self.anthropic_key:
                    raise
        return _call_claude(self.anthropic_key, SYSTEM_PROMPT, user_message)


def _call_claude(api_key: str, system_prompt: str, user_message: str) -> List[dict]:
    import anthropic
    client = anthropic.Anthropic(api_key=api_key)
    message = client.messages.create(
        model=ANTHROPIC_MODEL,
        max_tokens=MAX_TOKENS,
        temperature=TEMPERATURE,
        system=system_prompt,
        messages=[{"role": "user", "content": user_message}],
    )
    text = "".join(
        block.text for block in message.content if block.type == "text"
    )
    return _parse_candidates(text)


def _call_openai(api_key: str, system_prompt: str, user_message: str) -> List[dict]:
    import openai
    client = openai.OpenAI(api_key=api_key)
    response = client.chat.completions.create(
        model=OPENAI_MODEL,
        temperature=TEMPERATURE,
        max_tokens=MAX_TOKENS,
        response_format={"type": "json_object"},
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ],
    )
    text = response.choices[0].message.content
    return _parse_candidates(text)
