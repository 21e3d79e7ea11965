"""Certbot provider for issuing Let's Encrypt certificates."""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass

from ..config import ProvisioningConfig
from ..runner import CommandRunner, describe_failure, format_command

LOGGER = logging.getLogger(__name__)


class CertbotError(RuntimeError):
    """Raised when certbot exits unsuccessfully."""

    def __init__(self, message: str, result: subprocess.CompletedProcess[str] | None = None) -> None:
        """Keep the failing process result for callers that report output."""
        super().__init__(message)
        self.result = result


@dataclass(slots=True)
class CertbotProvider:
    """Request certificates covering a domain and its ``www`` alias."""

    config: ProvisioningConfig
    runner: CommandRunner

    def issue(self, domain: str) -> subprocess.CompletedProcess[str]:
        """Issue (or keep an unexpired) certificate for *domain*."""
        args = self.config.certificate_command(domain)
        LOGGER.info("Requesting certificate for %s and www.%s", domain, domain)
        result = self.runner.run("certbot", args, env=self.config.certificate_env())
        if result.returncode != 0:
            raise CertbotError(
                f"{format_command(args)} failed (exit {result.returncode}): "
                f"{describe_failure(result)}",
                result,
            )
        return result


__all__ = ["CertbotError", "CertbotProvider"]
