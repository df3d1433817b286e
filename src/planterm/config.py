"""Configuration loader: YAML file with environment variable fallbacks."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .cli.plan import DEFAULT_MODE, PLAN_MODES
from .cli.spinner import SPINNERS

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "cli")


@dataclass
class ProviderConfig:
    provider: str = "openai"
    model: str = "gpt-4o"
    base_url: str = ""
    api_key: str = ""
    cli_command: str = "claude"
    verify_ssl: bool = True
    request_timeout: int = 120  # seconds; connect + per-chunk read timeout
    kill_grace_seconds: float = 3.0  # SIGTERM -> SIGKILL delay when cancelling a subprocess
    naming_timeout: float = 5.0  # seconds allowed for AI session naming


@dataclass
class AppSettings:
    data_dir: Path = field(default_factory=lambda: Path.home() / ".planterm")


@dataclass
class CliConfig:
    assistant_label: str = "Planner"
    spinner: str = "dots"
    default_mode: str = DEFAULT_MODE
    history_max_lines: int = 1000
    debug: bool = False


@dataclass
class AppConfig:
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    app: AppSettings = field(default_factory=AppSettings)
    cli: CliConfig = field(default_factory=CliConfig)


def _default_data_dir() -> Path:
    return Path(os.path.expanduser(os.environ.get("PLANTERM_DATA_DIR", str(Path.home() / ".planterm"))))


def _get_config_path(data_dir: Path | None = None) -> Path:
    return (data_dir or _default_data_dir()) / "config.yaml"


def _as_bool(value: Any) -> bool:
    return str(value).lower() not in ("false", "0", "no")


def _as_float(value: Any, default: float, lo: float, hi: float) -> float:
    try:
        return max(lo, min(hi, float(value)))
    except (ValueError, TypeError):
        return default


def _as_int(value: Any, default: int, lo: int, hi: int) -> int:
    try:
        return max(lo, min(hi, int(value)))
    except (ValueError, TypeError):
        return default


def ensure_data_dir(config: AppConfig) -> Path:
    data_dir = config.app.data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    try:
        data_dir.chmod(stat.S_IRWXU)
    except OSError:
        logger.debug("Could not restrict permissions on %s", data_dir)
    return data_dir


def load_config(config_path: Path | None = None, provider: str | None = None) -> AppConfig:
    """Read config.yaml, falling back to environment variables; ``provider`` overrides both."""
    raw: dict[str, Any] = {}
    path = config_path or _get_config_path()

    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

    prov_raw = raw.get("provider", {}) or {}
    provider = str(provider or prov_raw.get("name") or os.environ.get("PLANTERM_PROVIDER", "openai")).lower()
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown provider {provider!r} in {path}. Valid providers: {', '.join(PROVIDERS)}.")

    model = prov_raw.get("model") or os.environ.get("PLANTERM_MODEL", "gpt-4o")
    base_url = prov_raw.get("base_url") or os.environ.get("PLANTERM_BASE_URL", "")
    api_key = prov_raw.get("api_key") or os.environ.get("PLANTERM_API_KEY") or os.environ.get("OPENAI_API_KEY", "")
    cli_command = prov_raw.get("cli_command") or os.environ.get("PLANTERM_CLI_COMMAND", "claude")

    if provider == "openai" and not api_key:
        raise ValueError(
            f"An API key is required for the openai provider. Set 'provider.api_key' in config.yaml "
            f"({path}) or the PLANTERM_API_KEY / OPENAI_API_KEY environment variable."
        )

    verify_ssl = _as_bool(prov_raw.get("verify_ssl", os.environ.get("PLANTERM_VERIFY_SSL", "true")))
    request_timeout = _as_int(
        prov_raw.get("request_timeout", os.environ.get("PLANTERM_REQUEST_TIMEOUT", 120)), 120, 10, 600
    )
    kill_grace = _as_float(prov_raw.get("kill_grace_seconds", 3.0), 3.0, 0.1, 60.0)
    naming_timeout = _as_float(prov_raw.get("naming_timeout", 5.0), 5.0, 0.5, 60.0)

    provider_config = ProviderConfig(
        provider=provider,
        model=model,
        base_url=base_url,
        api_key=api_key,
        cli_command=cli_command,
        verify_ssl=verify_ssl,
        request_timeout=request_timeout,
        kill_grace_seconds=kill_grace,
        naming_timeout=naming_timeout,
    )

    app_raw = raw.get("app", {}) or {}
    data_dir = Path(os.path.expanduser(str(app_raw.get("data_dir") or _default_data_dir())))

    cli_raw = raw.get("cli", {}) or {}
    spinner = cli_raw.get("spinner") or os.environ.get("PLANTERM_SPINNER", "dots")
    if spinner not in SPINNERS:
        logger.warning("Unknown spinner %r, using 'dots'", spinner)
        spinner = "dots"
    default_mode = str(cli_raw.get("default_mode", DEFAULT_MODE)).lower()
    if default_mode not in PLAN_MODES:
        raise ValueError(f"Unknown planning mode {default_mode!r}. Valid modes: {', '.join(PLAN_MODES)}.")

    cli = CliConfig(
        assistant_label=str(cli_raw.get("assistant_label", "Planner")),
        spinner=spinner,
        default_mode=default_mode,
        history_max_lines=_as_int(cli_raw.get("history_max_lines", 1000), 1000, 10, 100_000),
        debug=_as_bool(cli_raw.get("debug", os.environ.get("PLANTERM_DEBUG", "false"))),
    )

    return AppConfig(provider=provider_config, app=AppSettings(data_dir=data_dir), cli=cli)
