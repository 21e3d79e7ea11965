"""Typer-powered command line interface for ``domainctl``."""
from __future__ import annotations

import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import ConfigError, ProvisioningConfig, load_config, resolve_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .provisioner import (
    CertificateIssuanceError,
    DomainProvisioner,
    ProvisioningError,
    ReloadError,
)
from .runner import SubprocessRunner, format_command
from .templates import TemplateEngine
from .tls import TLSInspectionError, inspect_certificate
from .validation import validate_domain

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to domainctl's YAML config file.",
)

AVAILABLE_PATH_OPTION = typer.Option(
    None,
    "--available-path",
    help="Directory (with trailing slash) vhost files are written to.",
)
ENABLED_PATH_OPTION = typer.Option(
    None,
    "--enabled-path",
    help="Directory (with trailing slash) holding enabled-site symlinks.",
)
PROXY_PASS_OPTION = typer.Option(
    None,
    "--proxy-pass",
    help="Upstream address requests are proxied to.",
)
RENEW_THRESHOLD_OPTION = typer.Option(
    None,
    "--renew-threshold",
    help="Renewal threshold passed to the certificate tool as RENEW_THRESHOLD.",
)
CERTBOT_BIN_OPTION = typer.Option(
    None,
    "--certbot-bin",
    help="Path to the certificate tool.",
)
EMAIL_OPTION = typer.Option(
    None,
    "--email",
    help="ACME account email used for certificate registration.",
)
NO_SUDO_OPTION = typer.Option(
    False,
    "--no-sudo",
    help="Run external commands without sudo.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Custom domain provisioning for nginx reverse proxies.

        Issues a certificate with certbot, writes and enables the vhost, then
        tests and reloads nginx.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: ProvisioningConfig
    logger: StructuredLogger
    templates: TemplateEngine


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the domainctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"domainctl {__version__}")
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _with_overrides(
    op: OperationScope,
    config: ProvisioningConfig,
    overrides: Mapping[str, object],
) -> ProvisioningConfig:
    try:
        return resolve_config(config, overrides)
    except ConfigError as exc:
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)


def _plain(value: object) -> object:
    return str(value) if isinstance(value, Path) else value


@app.command()
def add(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Domain to provision, e.g. example.com."),
    available_path: str | None = AVAILABLE_PATH_OPTION,
    enabled_path: str | None = ENABLED_PATH_OPTION,
    proxy_pass: str | None = PROXY_PASS_OPTION,
    renew_threshold: int | None = RENEW_THRESHOLD_OPTION,
    certbot_bin: str | None = CERTBOT_BIN_OPTION,
    email: str | None = EMAIL_OPTION,
    no_sudo: bool = NO_SUDO_OPTION,
) -> None:
    """Issue a certificate, write and enable the vhost, then reload nginx."""
    runtime = _get_runtime(ctx)
    overrides: dict[str, object] = {
        "available_path": available_path,
        "enabled_path": enabled_path,
        "proxy_pass": proxy_pass,
        "renew_threshold": renew_threshold,
        "certbot_bin": certbot_bin,
        "email": email,
    }
    if no_sudo:
        overrides["sudo"] = False
    try:
        config = resolve_config(runtime.config, overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    provisioner = DomainProvisioner.from_config(
        config,
        runner=SubprocessRunner(config.privilege_command()),
        templates=runtime.templates,
        logger=runtime.logger,
    )

    try:
        result = provisioner.provision(domain)
    except ProvisioningError as exc:
        console.print(f"[red]{exc}[/red]")
        if exc.output:
            console.print(exc.output, markup=False, highlight=False)
        if isinstance(exc, ReloadError):
            console.print(
                "[yellow]The site is written and enabled. Retry the reload once "
                "nginx is healthy:[/yellow] "
                + format_command(config.reload_command)
            )
        if isinstance(exc, CertificateIssuanceError) and config.sudo and config.certificate_env():
            console.print(
                "[yellow]RENEW_THRESHOLD is passed on the sudo command line; the "
                "sudoers rule for certbot needs the SETENV: tag.[/yellow]"
            )
        raise typer.Exit(code=int(exc.exit_code)) from exc

    console.print(f"[green]Provisioned {result.domain}[/green]")
    console.print(f"Site: {result.site_path}")
    console.print(f"Enabled: {result.enabled_path}")


@app.command()
def check(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Domain name to validate."),
) -> None:
    """Validate domain syntax without touching the system."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "check",
        args={"domain": domain},
        target={"kind": "domain", "domain": domain},
    ) as op:
        if not validate_domain(domain):
            _command_error(op, f"Invalid domain provided: {domain}")
        console.print(f"[green]{domain} is a valid domain.[/green]")
        op.success("Domain is valid.", changed=0)


@app.command()
def render(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Domain to render the vhost for."),
    proxy_pass: str | None = PROXY_PASS_OPTION,
) -> None:
    """Print the vhost configuration for DOMAIN without writing it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "render",
        args={"domain": domain, "proxy_pass": proxy_pass},
        target={"kind": "domain", "domain": domain},
    ) as op:
        if not validate_domain(domain):
            _command_error(op, f"Invalid domain provided: {domain}")
        config = _with_overrides(op, runtime.config, {"proxy_pass": proxy_pass})
        provisioner = DomainProvisioner.from_config(
            config,
            templates=runtime.templates,
        )
        text = provisioner.nginx.render_vhost(domain)
        console.print(text, markup=False, highlight=False, emoji=False, soft_wrap=True, end="")
        op.success("Rendered vhost.", changed=0)


@app.command()
def status(
    ctx: typer.Context,
    domain: str = typer.Argument(..., help="Domain to inspect."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show site, symlink and certificate state for DOMAIN."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "status",
        args={"domain": domain, "json": json_output},
        target={"kind": "domain", "domain": domain},
    ) as op:
        if not validate_domain(domain):
            _command_error(op, f"Invalid domain provided: {domain}")
        provisioner = DomainProvisioner.from_config(runtime.config, templates=runtime.templates)
        diagnostics = {
            key: _plain(value)
            for key, value in provisioner.nginx.diagnostics(domain).items()
        }
        fullchain = runtime.config.fullchain_path(domain)
        certificate: dict[str, object] = {"path": str(fullchain), "present": False}
        warnings: list[str] = []
        if fullchain.exists():
            try:
                info = inspect_certificate(fullchain)
            except TLSInspectionError as exc:
                warnings.append(str(exc))
                certificate["error"] = str(exc)
            else:
                certificate.update(info.to_dict())
                certificate["present"] = True
                if info.is_expired():
                    warnings.append(f"Certificate expired on {info.not_valid_after.isoformat()}")
        payload = {"domain": domain, "nginx": diagnostics, "certificate": certificate}

        if json_output:
            console.print_json(data=payload)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Check", style="bold")
            table.add_column("Value")
            table.add_row("Site file", f"{diagnostics['site_path']} (exists={diagnostics['site_exists']})")
            table.add_row("Enabled link", f"{diagnostics['enabled_path']} (enabled={diagnostics['enabled']})")
            expiry = certificate.get("not_valid_after", "missing")
            table.add_row("Certificate", f"{fullchain} (expires={expiry})")
            console.print(table)
            for warning in warnings:
                console.print(f"[yellow]{warning}[/yellow]")

        if warnings:
            op.warning("Domain status has warnings.", warnings=warnings, context=payload)
        else:
            op.success("Reported domain status.", changed=0, context=payload)


def _config_table(config: ProvisioningConfig) -> Table:
    table = Table(
        title="Provisioning settings",
        caption=f"Loaded from {escape(str(config.config_file))}",
        show_header=False,
    )
    table.add_column("Setting", style="bold cyan")
    table.add_column("Value")
    for key, value in config.to_dict().items():
        if key == "config_file":
            continue
        if value is None:
            rendered = "[dim]unset[/dim]"
        elif isinstance(value, list):
            rendered = escape(format_command(value))
        else:
            rendered = escape(str(value))
        table.add_row(key, rendered)
    elevation = format_command(config.privilege_command())
    table.add_row("runs via", escape(elevation) if elevation else "[dim]direct[/dim]")
    return table


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Print the merged settings and the file they were loaded from."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config", "path": config.config_file},
    ) as op:
        if json_output:
            console.print_json(data=config.to_dict())
        else:
            console.print(_config_table(config))
        op.success("Displayed effective configuration.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
