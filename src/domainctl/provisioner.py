"""Custom domain provisioning workflow.

Provisioning runs strictly in order::

    validating -> issuing_certificate -> writing_config -> enabling_config
        -> testing_and_reloading -> completed

Any step failure raises a :class:`ProvisioningError` subclass naming the step
and halts the run. Nothing is retried or rolled back: files written before
the failure stay on disk for inspection.
"""
from __future__ import annotations

import asyncio
import logging
import subprocess
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from jinja2 import TemplateError

from .config import DEFAULT_CONFIG, ProvisioningConfig, resolve_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .providers import CertbotError, CertbotProvider, NginxError, NginxProvider
from .runner import CommandError, CommandRunner, SubprocessRunner, format_command
from .templates import TemplateEngine
from .validation import validate_domain

LOGGER = logging.getLogger(__name__)


class ProvisioningState(str, Enum):
    """Workflow states."""

    VALIDATING = "validating"
    ISSUING_CERTIFICATE = "issuing_certificate"
    WRITING_CONFIG = "writing_config"
    ENABLING_CONFIG = "enabling_config"
    TESTING_AND_RELOADING = "testing_and_reloading"
    COMPLETED = "completed"
    FAILED = "failed"


class ProvisioningError(RuntimeError):
    """Base class for failures that halt the provisioning workflow."""

    step = ProvisioningState.FAILED
    exit_code = ExitCode.PROVIDER
    recoverable = False

    def __init__(
        self,
        message: str,
        *,
        domain: object,
        output: str | None = None,
        path: Path | None = None,
    ) -> None:
        """Attach the domain and any tool output or path to the error."""
        super().__init__(message)
        self.domain = domain
        self.output = output
        self.path = path


class InvalidDomainError(ProvisioningError):
    """The domain failed syntax validation."""

    step = ProvisioningState.VALIDATING
    exit_code = ExitCode.VALIDATION


class CertificateIssuanceError(ProvisioningError):
    """The certificate tool failed or could not be started."""

    step = ProvisioningState.ISSUING_CERTIFICATE


class ConfigWriteError(ProvisioningError):
    """The vhost configuration could not be written."""

    step = ProvisioningState.WRITING_CONFIG
    exit_code = ExitCode.ENVIRONMENT


class EnableError(ProvisioningError):
    """The sites-enabled symlink could not be created."""

    step = ProvisioningState.ENABLING_CONFIG
    exit_code = ExitCode.ENVIRONMENT


class ConfigTestError(ProvisioningError):
    """``nginx -t`` rejected the configuration; reload was not attempted."""

    step = ProvisioningState.TESTING_AND_RELOADING


class ReloadError(ProvisioningError):
    """Reload failed after a passing test.

    The site is written and enabled but not live; retrying the reload is
    enough to recover.
    """

    step = ProvisioningState.TESTING_AND_RELOADING
    recoverable = True


@dataclass(frozen=True)
class ProvisioningResult:
    """Outcome of a completed provisioning run."""

    domain: str
    site_path: Path
    enabled_path: Path
    certificate: subprocess.CompletedProcess[str]
    validation: subprocess.CompletedProcess[str]
    reload: subprocess.CompletedProcess[str]
    state: ProvisioningState = ProvisioningState.COMPLETED


@dataclass(slots=True)
class DomainProvisioner:
    """Run the provisioning workflow for one domain at a time."""

    config: ProvisioningConfig
    certbot: CertbotProvider
    nginx: NginxProvider
    logger: StructuredLogger | None = None

    @classmethod
    def from_config(
        cls,
        config: ProvisioningConfig,
        *,
        runner: CommandRunner | None = None,
        templates: TemplateEngine | None = None,
        logger: StructuredLogger | None = None,
    ) -> DomainProvisioner:
        """Wire providers for *config*, defaulting to real subprocess execution."""
        command_runner = runner or SubprocessRunner(config.privilege_command())
        engine = templates or TemplateEngine.with_overrides(config.templates_dir)
        return cls(
            config=config,
            certbot=CertbotProvider(config=config, runner=command_runner),
            nginx=NginxProvider(templates=engine, config=config, runner=command_runner),
            logger=logger,
        )

    def provision(self, domain: str) -> ProvisioningResult:
        """Provision *domain* end to end, raising on the first failing step."""
        with self._operation(domain) as op:
            try:
                result = self._run_steps(domain, op)
            except ProvisioningError as exc:
                LOGGER.error("Provisioning %s failed during %s: %s", domain, exc.step.value, exc)
                op.add_step(exc.step.value, status="failed", detail=str(exc))
                context: dict[str, object] = {
                    "state": ProvisioningState.FAILED.value,
                    "step": exc.step.value,
                    "recoverable": exc.recoverable,
                }
                if exc.path is not None:
                    context["path"] = exc.path
                op.error(str(exc), rc=int(exc.exit_code), context=context)
                raise
            op.success(
                f"Provisioned {domain}.",
                changed=2,
                context={
                    "state": result.state.value,
                    "site_path": result.site_path,
                    "enabled_path": result.enabled_path,
                },
            )
            return result

    # ------------------------------------------------------------------
    def _run_steps(self, domain: str, op: OperationScope) -> ProvisioningResult:
        if not validate_domain(domain):
            raise InvalidDomainError(f"Invalid domain provided: {domain}", domain=domain)
        op.add_step(ProvisioningState.VALIDATING.value)

        try:
            certificate = self.certbot.issue(domain)
        except CertbotError as exc:
            raise CertificateIssuanceError(
                f"Certificate issuance failed for {domain}: {exc}",
                domain=domain,
                output=_output_of(exc.result),
            ) from exc
        except CommandError as exc:
            raise CertificateIssuanceError(
                f"Certificate issuance failed for {domain}: {exc}",
                domain=domain,
            ) from exc
        op.add_step(
            ProvisioningState.ISSUING_CERTIFICATE.value,
            detail=format_command(certificate.args),
        )

        site_path = self.nginx.site_path(domain)
        try:
            self.nginx.write_site(domain)
        except (OSError, TemplateError, NginxError, CommandError) as exc:
            raise ConfigWriteError(
                f"Config write failed for {site_path}: {exc}",
                domain=domain,
                output=_output_of(getattr(exc, "result", None)),
                path=site_path,
            ) from exc
        op.add_step(ProvisioningState.WRITING_CONFIG.value, detail=str(site_path))

        enabled_path = self.nginx.enabled_path(domain)
        try:
            self.nginx.enable(domain)
        except (OSError, NginxError, CommandError) as exc:
            raise EnableError(
                f"Enable failed for {enabled_path}: {exc}",
                domain=domain,
                output=_output_of(getattr(exc, "result", None)),
                path=enabled_path,
            ) from exc
        op.add_step(
            ProvisioningState.ENABLING_CONFIG.value,
            detail=f"{enabled_path} -> {site_path}",
        )

        try:
            validation = self.nginx.test_config()
        except (NginxError, CommandError) as exc:
            raise ConfigTestError(
                f"Configuration test failed; nginx was not reloaded: {exc}",
                domain=domain,
                output=_output_of(getattr(exc, "result", None)),
            ) from exc
        op.add_step("nginx.test", detail=format_command(validation.args))

        try:
            reload_result = self.nginx.reload()
        except (NginxError, CommandError) as exc:
            raise ReloadError(
                f"Reload failed; {domain} is written and enabled but not active: {exc}",
                domain=domain,
                output=_output_of(getattr(exc, "result", None)),
                path=site_path,
            ) from exc
        op.add_step("nginx.reload", detail=format_command(reload_result.args))
        op.add_step(ProvisioningState.TESTING_AND_RELOADING.value)

        LOGGER.info("Provisioned %s", domain)
        return ProvisioningResult(
            domain=domain,
            site_path=site_path,
            enabled_path=enabled_path,
            certificate=certificate,
            validation=validation,
            reload=reload_result,
        )

    @contextmanager
    def _operation(self, domain: str) -> Iterator[OperationScope]:
        args = {"domain": domain, "proxy_pass": self.config.proxy_pass}
        target = {"kind": "domain", "domain": domain}
        if self.logger is None:
            yield OperationScope("domain add", args=args, target=target)
            return
        with self.logger.operation("domain add", args=args, target=target) as op:
            yield op


def _output_of(result: subprocess.CompletedProcess[str] | None) -> str | None:
    if result is None:
        return None
    stdout = (getattr(result, "stdout", "") or "").strip()
    stderr = (getattr(result, "stderr", "") or "").strip()
    return "\n".join(part for part in (stdout, stderr) if part) or None


async def add_domain(
    domain: str,
    overrides: Mapping[str, object] | None = None,
    *,
    runner: CommandRunner | None = None,
    logger: StructuredLogger | None = None,
    defaults: ProvisioningConfig = DEFAULT_CONFIG,
) -> None:
    """Provision *domain*, resolving with ``None`` once nginx is reloaded.

    The blocking workflow runs in a worker thread. Any step failure is raised
    as a :class:`ProvisioningError` subclass.
    """
    config = resolve_config(defaults, overrides)
    provisioner = DomainProvisioner.from_config(config, runner=runner, logger=logger)
    await asyncio.to_thread(provisioner.provision, domain)


__all__ = [
    "CertificateIssuanceError",
    "ConfigTestError",
    "ConfigWriteError",
    "DomainProvisioner",
    "EnableError",
    "InvalidDomainError",
    "ProvisioningError",
    "ProvisioningResult",
    "ProvisioningState",
    "ReloadError",
    "add_domain",
]
