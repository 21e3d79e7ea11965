"""Configuration resolver and loader tests."""
from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest

from domainctl.config import (
    DEFAULT_CONFIG,
    ConfigError,
    ProvisioningConfig,
    load_config,
    resolve_config,
)


def test_defaults_follow_nginx_and_certbot_conventions() -> None:
    """Built-in defaults target Debian-style nginx and certbot paths."""
    config = DEFAULT_CONFIG

    assert config.available_path == "/etc/nginx/sites-available/"
    assert config.enabled_path == "/etc/nginx/sites-enabled/"
    assert config.available_path.endswith("/")
    assert config.enabled_path.endswith("/")
    assert config.proxy_pass == "http://127.0.0.1:3000"
    assert config.fullchain_path("example.org") == Path(
        "/etc/letsencrypt/live/example.org/fullchain.pem"
    )
    assert config.privkey_path("example.org") == Path(
        "/etc/letsencrypt/live/example.org/privkey.pem"
    )
    assert config.site_path("example.org") == Path("/etc/nginx/sites-available/example.org")
    assert config.enabled_link("example.org") == Path("/etc/nginx/sites-enabled/example.org")
    assert config.config_test_command() == ["nginx", "-t"]
    assert config.reload_command == ("systemctl", "reload", "nginx")


def test_defaults_are_frozen() -> None:
    """The process-wide defaults cannot be mutated in place."""
    with pytest.raises(dataclasses.FrozenInstanceError):
        DEFAULT_CONFIG.proxy_pass = "http://10.0.0.1"  # type: ignore[misc]


def test_overriding_proxy_pass_keeps_other_defaults() -> None:
    """Only the overridden field changes; everything else equals the defaults."""
    config = resolve_config(DEFAULT_CONFIG, {"proxy_pass": "http://127.0.0.1:4000"})

    assert config.proxy_pass == "http://127.0.0.1:4000"
    assert DEFAULT_CONFIG.proxy_pass == "http://127.0.0.1:3000"
    for field in dataclasses.fields(ProvisioningConfig):
        if field.name == "proxy_pass":
            continue
        assert getattr(config, field.name) == getattr(DEFAULT_CONFIG, field.name), field.name


def test_none_overrides_are_ignored() -> None:
    """Explicit ``None`` values leave the default in place."""
    config = resolve_config(DEFAULT_CONFIG, {"proxy_pass": None, "email": None})
    assert config == DEFAULT_CONFIG


def test_renew_threshold_is_coerced_to_string() -> None:
    """Numeric thresholds are passed downstream as strings."""
    config = resolve_config(DEFAULT_CONFIG, {"renew_threshold": 30})

    assert config.renew_threshold == "30"
    assert config.certificate_env() == {"RENEW_THRESHOLD": "30"}
    assert DEFAULT_CONFIG.certificate_env() == {}


def test_original_option_names_are_accepted() -> None:
    """camelCase option names map onto their snake_case fields."""
    config = resolve_config(
        DEFAULT_CONFIG,
        {
            "nginxAvailablePath": "/srv/nginx/available/",
            "nginxEnabledPath": "/srv/nginx/enabled/",
            "proxyPass": "http://127.0.0.1:8080",
            "renewThreshold": 15,
            "scriptPath": "/usr/local/bin/certbot",
        },
    )

    assert config.available_path == "/srv/nginx/available/"
    assert config.enabled_path == "/srv/nginx/enabled/"
    assert config.proxy_pass == "http://127.0.0.1:8080"
    assert config.renew_threshold == "15"
    assert config.certbot_bin == "/usr/local/bin/certbot"


def test_unknown_override_key_raises() -> None:
    """Typos in option names are reported rather than ignored."""
    with pytest.raises(ConfigError, match="proxy_pas"):
        resolve_config(DEFAULT_CONFIG, {"proxy_pas": "http://127.0.0.1:1"})


def test_paths_are_concatenated_verbatim() -> None:
    """A missing trailing separator is not repaired."""
    config = resolve_config(DEFAULT_CONFIG, {"available_path": "/tmp/avail"})
    assert config.site_path("example.org") == Path("/tmp/availexample.org")


def test_certificate_command_covers_www_alias() -> None:
    """The certbot command requests the bare domain and its www alias."""
    command = DEFAULT_CONFIG.certificate_command("example.org")

    assert command[:2] == ["certbot", "certonly"]
    assert command[-4:] == ["-d", "example.org", "-d", "www.example.org"]
    assert "--non-interactive" in command
    assert "--register-unsafely-without-email" in command


def test_certificate_command_uses_email_and_binary_overrides() -> None:
    """Email and certbot path overrides flow into the command."""
    config = resolve_config(
        DEFAULT_CONFIG,
        {"email": "ops@example.org", "certbot_bin": "/opt/certbot/bin/certbot"},
    )
    command = config.certificate_command("example.org")

    assert command[0] == "/opt/certbot/bin/certbot"
    assert command[command.index("--email") + 1] == "ops@example.org"
    assert "--register-unsafely-without-email" not in command


def test_privilege_command_follows_sudo_flag() -> None:
    """sudo is used non-interactively unless disabled."""
    assert DEFAULT_CONFIG.privilege_command() == ("sudo", "-n")
    assert resolve_config(DEFAULT_CONFIG, {"sudo": "false"}).privilege_command() == ()


def test_elevated_file_commands_target_site_paths() -> None:
    """The sudo writer and linker operate on the derived site paths."""
    config = DEFAULT_CONFIG

    assert config.site_write_command("example.org") == [
        "tee",
        "/etc/nginx/sites-available/example.org",
    ]
    assert config.enable_command("example.org") == [
        "ln",
        "-sfn",
        "/etc/nginx/sites-available/example.org",
        "/etc/nginx/sites-enabled/example.org",
    ]


def test_reload_command_accepts_string() -> None:
    """String commands are split shell-style."""
    config = resolve_config(DEFAULT_CONFIG, {"reload_command": "nginx -s reload"})
    assert config.reload_command == ("nginx", "-s", "reload")


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, ProvisioningConfig)
    assert config.config_file == tmp_path / "missing.yml"
    assert dataclasses.replace(config, config_file=DEFAULT_CONFIG.config_file) == DEFAULT_CONFIG


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "domainctl.yml"
    cfg.write_text(
        "proxy_pass: http://127.0.0.1:5000\n"
        "renew_threshold: 20\n"
        "cert_root: /srv/certs\n"
        "sudo: false\n"
        "reload_command: [nginx, -s, reload]\n",
        encoding="utf-8",
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.proxy_pass == "http://127.0.0.1:5000"
    assert config.renew_threshold == "20"
    assert config.cert_root == Path("/srv/certs")
    assert config.sudo is False
    assert config.reload_command == ("nginx", "-s", "reload")


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override file settings; explicit overrides win last."""
    cfg = tmp_path / "domainctl.yml"
    cfg.write_text("proxy_pass: http://127.0.0.1:5000\n", encoding="utf-8")
    env = {
        "DOMAINCTL_CONFIG_FILE": str(cfg),
        "DOMAINCTL_PROXY_PASS": "http://127.0.0.1:6000",
        "DOMAINCTL_LOGS_DIR": str(tmp_path / "logs"),
        "DOMAINCTL_RENEW_THRESHOLD": "10",
        "UNRELATED": "ignored",
    }

    config = load_config(env=env)
    assert config.config_file == cfg
    assert config.proxy_pass == "http://127.0.0.1:6000"
    assert config.logs_dir == tmp_path / "logs"
    assert config.renew_threshold == "10"

    explicit = load_config(env=env, overrides={"proxy_pass": "http://127.0.0.1:7000"})
    assert explicit.proxy_pass == "http://127.0.0.1:7000"


def test_unknown_file_keys_raise(tmp_path: Path) -> None:
    """Unknown keys in the YAML file are rejected."""
    cfg = tmp_path / "domainctl.yml"
    cfg.write_text("proxy: http://127.0.0.1:5000\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_non_mapping_file_raises(tmp_path: Path) -> None:
    """The config file must hold a mapping."""
    cfg = tmp_path / "domainctl.yml"
    cfg.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(config_file=cfg, env={})


def test_to_dict_is_serialisable() -> None:
    """The dict form uses plain JSON types."""
    data = DEFAULT_CONFIG.to_dict()

    assert data["available_path"] == "/etc/nginx/sites-available/"
    assert data["reload_command"] == ["systemctl", "reload", "nginx"]
    assert data["cert_root"] == "/etc/letsencrypt/live"
