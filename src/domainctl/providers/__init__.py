"""Provider interfaces for domainctl."""
from __future__ import annotations

from .certbot import CertbotError, CertbotProvider
from .nginx import NginxError, NginxProvider

__all__ = [
    "CertbotError",
    "CertbotProvider",
    "NginxError",
    "NginxProvider",
]
