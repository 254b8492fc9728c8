"""
Access to the CITATION_HYGIENE settings block with defaults filled in.
"""
from django.conf import settings

DEFAULTS = {
    'USER_AGENT': 'Mozilla/5.0 (compatible; CitationHealthBot/1.0)',
    'REQUEST_TIMEOUT_SECONDS': 10.0,
    'SLOW_THRESHOLD_MS': 5000,
    'BATCH_SIZE': 10,
    'BATCH_DELAY_SECONDS': 1.0,
    'BATCH_BUDGET_SECONDS': 280.0,
    'AUTO_APPROVE_THRESHOLD': 8.0,
    'ROLLBACK_WINDOW_HOURS': 24,
    'SOFT_PASS_403_ON_REPLACEMENT': True,
    'SOFT_PASS_403_ON_SWEEP': False,
    'ENABLE_AUTO_REPLACE': False,
    'MAX_AUTO_REPLACEMENTS': 50,
    'ALERT_THRESHOLD': 10,
    'SCAN_INTERVAL_HOURS': 24,
    'GOV_SOURCE_REQUIRED_STAGES': ['TOFU', 'MOFU', 'BOFU'],
    'POLICY_FILE': '',
    'APPROVED_DOMAINS': [],
    'COMPETITOR_DOMAINS': [],
    'GOVERNMENT_DOMAINS': ['gov', 'gob.es', 'gov.uk', 'overheid.nl', 'europa.eu', 'edu'],
    'SITE_DOMAIN': '',
}


def hygiene_setting(name):
    configured = getattr(settings, 'CITATION_HYGIENE', {}) or {}
    if name in configured:
        return configured[name]
    return DEFAULTS[name]
