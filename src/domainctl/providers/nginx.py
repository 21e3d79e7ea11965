"""Nginx provider for managing per-domain vhost configurations."""
from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..config import ProvisioningConfig
from ..runner import CommandRunner, describe_failure, format_command
from ..templates import TemplateEngine

LOGGER = logging.getLogger(__name__)

VHOST_TEMPLATE = "nginx/vhost.conf.j2"


class NginxError(RuntimeError):
    """Raised when nginx operations fail."""

    def __init__(self, message: str, result: subprocess.CompletedProcess[str] | None = None) -> None:
        """Keep the failing process result for callers that report output."""
        super().__init__(message)
        self.result = result


@dataclass(slots=True)
class NginxProvider:
    """Render, enable, test and reload nginx sites for custom domains."""

    templates: TemplateEngine
    config: ProvisioningConfig
    runner: CommandRunner

    def site_path(self, domain: str) -> Path:
        """Return the path to the nginx site configuration file."""
        return self.config.site_path(domain)

    def enabled_path(self, domain: str) -> Path:
        """Return the path of the symlink in sites-enabled for *domain*."""
        return self.config.enabled_link(domain)

    def vhost_context(self, domain: str) -> dict[str, object]:
        """Return the render context for *domain*."""
        return {
            "domain": domain,
            "proxy_pass": self.config.proxy_pass,
            "ssl_certificate": str(self.config.fullchain_path(domain)),
            "ssl_certificate_key": str(self.config.privkey_path(domain)),
        }

    def render_vhost(self, domain: str) -> str:
        """Return the virtual-host configuration text for *domain*."""
        return self.templates.render_to_string(VHOST_TEMPLATE, self.vhost_context(domain))

    def write_site(self, domain: str) -> bool:
        """Write the vhost for *domain* to sites-available, overwriting it.

        With ``sudo`` enabled the rendered text is piped to an elevated
        ``tee``; such writes always report a change. Otherwise the file is
        written in-process and ``True`` means the on-disk content changed.
        The parent directory is expected to exist.
        """
        destination = self.site_path(domain)
        if self.config.sudo:
            self._run(
                "nginx-write",
                self.config.site_write_command(domain),
                input=self.render_vhost(domain),
            )
            changed = True
        else:
            changed = self.templates.render_to_path(
                VHOST_TEMPLATE,
                destination,
                self.vhost_context(domain),
                mode=0o644,
            )
        LOGGER.info("Wrote nginx site %s (changed=%s)", destination, changed)
        return changed

    def enable(self, domain: str) -> Path:
        """Point the sites-enabled link at the site file, replacing any existing entry."""
        source = self.site_path(domain)
        target = self.enabled_path(domain)
        if self.config.sudo:
            self._run("nginx-enable", self.config.enable_command(domain))
        else:
            if target.exists() or target.is_symlink():
                target.unlink()
            target.symlink_to(source)
        LOGGER.info("Enabled nginx site %s -> %s", target, source)
        return target

    def site_exists(self, domain: str) -> bool:
        """Return True when the rendered site configuration exists."""
        return self.site_path(domain).exists()

    def is_enabled(self, domain: str) -> bool:
        """Return True when the site is enabled via sites-enabled symlink."""
        target = self.enabled_path(domain)
        if not target.is_symlink():
            return False
        try:
            return target.resolve() == self.site_path(domain).resolve()
        except (FileNotFoundError, RuntimeError):
            return False

    def diagnostics(self, domain: str) -> dict[str, object]:
        """Return diagnostic metadata for *domain*."""
        site_path = self.site_path(domain)
        enabled_path = self.enabled_path(domain)
        return {
            "site_path": site_path,
            "site_exists": self.site_exists(domain),
            "enabled_path": enabled_path,
            "enabled": self.is_enabled(domain),
        }

    def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``nginx -t`` to validate the full configuration."""
        return self._run("nginx-test", self.config.config_test_command())

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload nginx to apply configuration changes."""
        return self._run("nginx-reload", list(self.config.reload_command))

    # ------------------------------------------------------------------
    def _run(
        self,
        name: str,
        args: list[str],
        *,
        input: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        result = self.runner.run(name, args, input=input)
        if result.returncode != 0:
            raise NginxError(
                f"{format_command(args)} failed (exit {result.returncode}): "
                f"{describe_failure(result)}",
                result,
            )
        return result


__all__ = ["NginxProvider", "NginxError", "VHOST_TEMPLATE"]
