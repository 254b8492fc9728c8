"""
Exceptions raised at the boundary of citation hygiene operations.

Per-item problems (dead links, invalid replacements, missing articles) are
reported in a BatchResult; only configuration problems raise.
"""
from django.core.exceptions import ImproperlyConfigured


class HygieneConfigurationError(ImproperlyConfigured):
    """A required input, credential or policy list is missing or malformed."""
