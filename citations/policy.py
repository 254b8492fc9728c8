"""
Domain policy for citations: approved (allow-list), competitor (deny-list) and
government/official source domains.

Matching is by hostname on a dot boundary, so ``gov.es`` matches
``sub.gov.es`` but not ``notgov.es``. An entry may carry a path
(``example.com/research``), in which case the URL path must start with it.
"""
import json
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from urllib.parse import urlparse

from .conf import hygiene_setting
from .exceptions import HygieneConfigurationError

logger = logging.getLogger(__name__)


def hostname(url: str) -> str:
    """Lower-cased hostname of ``url`` with a single leading ``www.`` label removed."""
    try:
        host = (urlparse(url).hostname or '').lower()
    except ValueError:
        return ''
    return host[4:] if host.startswith('www.') else host


@dataclass(frozen=True)
class DomainRule:
    host: str
    path: str = ''

    @classmethod
    def parse(cls, entry: str) -> Optional['DomainRule']:
        entry = (entry or '').strip().lower()
        if not entry:
            return None
        if '://' in entry:
            entry = entry.split('://', 1)[1]
        host, _, path = entry.partition('/')
        host = host.strip('.')
        if host.startswith('www.'):
            host = host[4:]
        if not host:
            return None
        return cls(host=host, path=('/' + path.strip('/')) if path.strip('/') else '')

    def matches(self, url: str) -> bool:
        host = hostname(url)
        if not host or not (host == self.host or host.endswith('.' + self.host)):
            return False
        if self.path:
            url_path = (urlparse(url).path or '/').lower().rstrip('/')
            return url_path == self.path or url_path.startswith(self.path + '/')
        return True


def _rules(entries: Iterable[str]) -> Tuple[DomainRule, ...]:
    return tuple(rule for rule in (DomainRule.parse(e) for e in entries or []) if rule)


class DomainPolicy:

    def __init__(self, approved_domains=(), competitor_domains=(), government_domains=()):
        self.approved = _rules(approved_domains)
        self.competitors = _rules(competitor_domains)
        self.government = _rules(government_domains)

    def __repr__(self):
        return (
            f"DomainPolicy(approved={len(self.approved)}, competitors={len(self.competitors)}, "
            f"government={len(self.government)})"
        )

    @property
    def is_empty(self) -> bool:
        return not self.approved and not self.competitors

    @property
    def has_allow_list(self) -> bool:
        return bool(self.approved)

    def is_competitor(self, url: str) -> bool:
        return any(rule.matches(url) for rule in self.competitors)

    def is_approved(self, url: str) -> bool:
        """True when the URL is on the allow-list (government sources always count) and not a competitor."""
        if self.is_competitor(url):
            return False
        return any(rule.matches(url) for rule in self.approved) or self.is_government(url)

    def is_government(self, url: str) -> bool:
        return any(rule.matches(url) for rule in self.government)

    def is_banned(self, url: str) -> bool:
        """Banned for use as a citation: a competitor, or off the allow-list when one is configured."""
        if self.is_competitor(url):
            return True
        return self.has_allow_list and not self.is_approved(url)

    def violation_for(self, url: str) -> Optional[str]:
        """'competitor', 'non_approved' or None."""
        if self.is_competitor(url):
            return 'competitor'
        if self.has_allow_list and not self.is_approved(url):
            return 'non_approved'
        return None


def load_policy() -> DomainPolicy:
    """Build the policy from settings, or from the JSON file named by POLICY_FILE."""
    policy_file = hygiene_setting('POLICY_FILE')
    approved = list(hygiene_setting('APPROVED_DOMAINS'))
    competitors = list(hygiene_setting('COMPETITOR_DOMAINS'))
    government = list(hygiene_setting('GOVERNMENT_DOMAINS'))

    if policy_file:
        try:
            with open(policy_file, encoding='utf-8') as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            raise HygieneConfigurationError(f"Cannot read citation policy file {policy_file}: {e}") from e
        if not isinstance(data, dict):
            raise HygieneConfigurationError(f"Citation policy file {policy_file} must contain a JSON object")
        approved = data.get('approved_domains', approved)
        competitors = data.get('competitor_domains', competitors)
        government = data.get('government_domains', government)

    policy = DomainPolicy(approved, competitors, government)
    logger.debug("Loaded %r", policy)
    return policy


def require_policy(policy: Optional[DomainPolicy]) -> DomainPolicy:
    if policy is None or policy.is_empty:
        raise HygieneConfigurationError(
            "No citation domain policy configured: set APPROVED_DOMAINS and/or COMPETITOR_DOMAINS "
            "in CITATION_HYGIENE or point POLICY_FILE at a policy JSON file."
        )
    return policy
