"""Configuration loader for domainctl.

Configuration is resolved from several sources, later sources winning:

1. Built-in defaults (:data:`DEFAULT_CONFIG`).
2. ``/etc/domainctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``DOMAINCTL_``.
4. Explicit overrides supplied programmatically (CLI flags, library callers).

Environment keys map directly onto field names, e.g.::

    export DOMAINCTL_PROXY_PASS=http://127.0.0.1:4000
    export DOMAINCTL_RENEW_THRESHOLD=30

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resolved configuration is an immutable dataclass; every
override produces a new value and the defaults are never touched.
"""
from __future__ import annotations

import dataclasses
import os
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load domainctl configuration. Install with "
        "`pip install domainctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "DOMAINCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

# Option names understood by the original setup script wrapper.
KEY_ALIASES = {
    "nginxAvailablePath": "available_path",
    "nginxEnabledPath": "enabled_path",
    "proxyPass": "proxy_pass",
    "renewThreshold": "renew_threshold",
    "scriptPath": "certbot_bin",
}

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ProvisioningConfig:
    """Resolved paths and command templates used to provision a domain."""

    config_file: Path = Path("/etc/domainctl/config.yml")
    available_path: str = "/etc/nginx/sites-available/"
    enabled_path: str = "/etc/nginx/sites-enabled/"
    proxy_pass: str = "http://127.0.0.1:3000"
    renew_threshold: str | None = None
    certbot_bin: str = "certbot"
    cert_root: Path = Path("/etc/letsencrypt/live")
    email: str | None = None
    nginx_bin: str = "nginx"
    reload_command: tuple[str, ...] = ("systemctl", "reload", "nginx")
    sudo: bool = True
    sudo_bin: str = "sudo"
    templates_dir: Path = Path("/etc/domainctl/templates")
    logs_dir: Path = Path("/var/log/domainctl")

    # ------------------------------------------------------------------
    # Derived values (functions of the domain)
    def site_path(self, domain: str) -> Path:
        """Return the sites-available file for *domain*."""
        return Path(f"{self.available_path}{domain}")

    def enabled_link(self, domain: str) -> Path:
        """Return the sites-enabled symlink location for *domain*."""
        return Path(f"{self.enabled_path}{domain}")

    def fullchain_path(self, domain: str) -> Path:
        """Return the certificate chain path certbot maintains for *domain*."""
        return self.cert_root / domain / "fullchain.pem"

    def privkey_path(self, domain: str) -> Path:
        """Return the private key path certbot maintains for *domain*."""
        return self.cert_root / domain / "privkey.pem"

    def certificate_command(self, domain: str) -> list[str]:
        """Return the certbot invocation covering *domain* and ``www.<domain>``."""
        command = [
            self.certbot_bin,
            "certonly",
            "--nginx",
            "--non-interactive",
            "--agree-tos",
            "--keep-until-expiring",
        ]
        if self.email:
            command.extend(["--email", self.email])
        else:
            command.append("--register-unsafely-without-email")
        command.extend(["-d", domain, "-d", f"www.{domain}"])
        return command

    def certificate_env(self) -> dict[str, str]:
        """Return extra environment passed through to the certificate tool."""
        if self.renew_threshold is None:
            return {}
        return {"RENEW_THRESHOLD": self.renew_threshold}

    def config_test_command(self) -> list[str]:
        """Return the nginx configuration test command."""
        return [self.nginx_bin, "-t"]

    def site_write_command(self, domain: str) -> list[str]:
        """Return the elevated writer for the vhost; content arrives on stdin."""
        return ["tee", str(self.site_path(domain))]

    def enable_command(self, domain: str) -> list[str]:
        """Return the elevated force-link from sites-enabled to the site file."""
        return ["ln", "-sfn", str(self.site_path(domain)), str(self.enabled_link(domain))]

    def privilege_command(self) -> tuple[str, ...]:
        """Return the prefix used to elevate external commands."""
        if not self.sudo:
            return ()
        # -n: fail instead of prompting when no sudoers rule covers the call.
        return (self.sudo_bin, "-n")

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "available_path": self.available_path,
            "enabled_path": self.enabled_path,
            "proxy_pass": self.proxy_pass,
            "renew_threshold": self.renew_threshold,
            "certbot_bin": self.certbot_bin,
            "cert_root": str(self.cert_root),
            "email": self.email,
            "nginx_bin": self.nginx_bin,
            "reload_command": list(self.reload_command),
            "sudo": self.sudo,
            "sudo_bin": self.sudo_bin,
            "templates_dir": str(self.templates_dir),
            "logs_dir": str(self.logs_dir),
        }


DEFAULT_CONFIG = ProvisioningConfig()

ALLOWED_KEYS = frozenset(f.name for f in dataclasses.fields(ProvisioningConfig))


def resolve_config(
    defaults: ProvisioningConfig,
    overrides: Mapping[str, object] | None = None,
) -> ProvisioningConfig:
    """Overlay *overrides* onto *defaults* and return a new configuration.

    Keys missing from *overrides* (or mapped to ``None``) keep their default.
    Values are coerced to the field type but otherwise passed through as-is.
    """
    if not overrides:
        return defaults
    changes: dict[str, object] = {}
    for raw_key, value in overrides.items():
        key = _normalise_key(raw_key)
        if value is None:
            continue
        changes[key] = _coerce_field(key, value)
    if not changes:
        return defaults
    return dataclasses.replace(defaults, **changes)


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> ProvisioningConfig:
    """Load and merge configuration sources into a :class:`ProvisioningConfig`."""
    resolved_env = dict(os.environ if env is None else env)
    config_path = _determine_config_path(
        str(DEFAULT_CONFIG.config_file), config_file, resolved_env
    )

    merged: dict[str, object] = {}
    merged.update(_normalise_mapping(_load_yaml_file(config_path), f"file:{config_path}"))
    merged.update(_normalise_mapping(_build_env_overrides(resolved_env), "environment"))
    if overrides:
        merged.update(_normalise_mapping(overrides, "overrides"))
    merged["config_file"] = str(config_path)

    return resolve_config(DEFAULT_CONFIG, merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX) :].lower()
        if not name:
            continue
        overrides[name] = _coerce_value(value)
    return overrides


def _normalise_mapping(values: Mapping[str, object], label: str) -> dict[str, object]:
    result: dict[str, object] = {}
    unknown: list[str] = []
    for raw_key, value in _as_dict(values, label).items():
        key = KEY_ALIASES.get(raw_key, raw_key.replace("-", "_"))
        if key not in ALLOWED_KEYS:
            unknown.append(raw_key)
            continue
        result[key] = value
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown configuration keys ({label}): {joined}.")
    return result


def _normalise_key(raw_key: object) -> str:
    if not isinstance(raw_key, str):
        raise ConfigError(f"Configuration keys must be strings. Got {raw_key!r}.")
    key = KEY_ALIASES.get(raw_key, raw_key.replace("-", "_"))
    if key not in ALLOWED_KEYS:
        raise ConfigError(f"Unknown configuration keys: {raw_key}.")
    return key


def _coerce_field(key: str, value: object) -> object:
    if key in {"config_file", "cert_root", "templates_dir", "logs_dir"}:
        return _to_path(value)
    if key == "reload_command":
        return _to_command(value, key)
    if key == "sudo":
        return _expect_bool(value, key)
    return str(value)


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _to_command(value: object, label: str) -> tuple[str, ...]:
    if isinstance(value, str):
        parts = shlex.split(value)
    elif isinstance(value, Sequence) and not isinstance(value, bytes):
        parts = [str(item) for item in value]
    else:
        raise ConfigError(f"Expected {label} to be a command string or list. Got {value!r}.")
    if not parts:
        raise ConfigError(f"{label} must not be empty.")
    return tuple(parts)


def _expect_bool(value: object, label: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG",
    "ProvisioningConfig",
    "load_config",
    "resolve_config",
]
