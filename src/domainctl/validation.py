"""Domain name syntax checks."""
from __future__ import annotations

import re

# Dot-separated labels of letters, digits, hyphens or underscores. The label
# before the TLD must start alphanumeric and be at least two characters; the
# TLD is two or more letters. Scheme-prefixed input ("://...") never matches.
DOMAIN_PATTERN = re.compile(
    r"(?!://)([A-Za-z0-9_-]+\.)*[A-Za-z0-9][A-Za-z0-9_-]+\.[A-Za-z]{2,}"
)


def validate_domain(candidate: object) -> bool:
    """Return ``True`` when *candidate* is an acceptable domain name.

    Total over its input: non-string values and empty strings are simply
    rejected.
    """
    if not isinstance(candidate, str) or not candidate:
        return False
    return DOMAIN_PATTERN.fullmatch(candidate) is not None


__all__ = ["DOMAIN_PATTERN", "validate_domain"]
