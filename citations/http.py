"""
Outbound HTTP for link checks.
"""
import requests

from .conf import hygiene_setting


def build_session(user_agent=None):
    """A requests session that identifies itself to the sites we check."""
    session = requests.Session()
    session.headers.update({
        'User-Agent': user_agent or hygiene_setting('USER_AGENT'),
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    })
    session.max_redirects = 10
    return session
