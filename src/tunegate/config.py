"""Configuration management for the Tunegate gateway."""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".tunegate"
_CONFIG_FILE = "config.toml"
_LOG_DIR = "logs"


def get_base_dir() -> Path:
    """Return the base directory for all Tunegate runtime files (~/.tunegate/)."""
    return Path.home() / _BASE_DIR_NAME


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class ServerConfig(BaseModel):
    """Settings for the HTTP listener."""

    host: str = Field(default="127.0.0.1", description="Interface to bind")
    port: int = Field(default=8787, description="Port to listen on")
    log_level: str = Field(default="info", description="Logging level")
    static_dir: str = Field(default="", description="Directory served at / (empty = disabled)")


class ProxyConfig(BaseModel):
    """Upstream targets for the audio proxy and the API forwarder."""

    allowed_host: str = Field(default="kuwo.cn", description="Audio host (and its subdomains) allowed as proxy target")
    api_base_url: str = Field(
        default="https://music-api.gdstudio.xyz/api.php",
        description="Base URL of the upstream JSON API",
    )
    referer: str = Field(default="https://www.kuwo.cn/", description="Referer sent to the audio host")
    default_user_agent: str = Field(default="Mozilla/5.0", description="User-Agent used when the client sends none")
    force_http: bool = Field(default=True, description="Rewrite audio targets to plain http before fetching")


class StorageConfig(BaseModel):
    """Settings for the key-value state backend."""

    enabled: bool = Field(default=True, description="Whether a storage backend is configured")
    db_filename: str = Field(default="tunegate.db", description="SQLite file (relative to the base dir)")


class AuthConfig(BaseModel):
    """Shared-secret cookie gate."""

    password: SecretStr = Field(default=SecretStr(""), description="Access password (empty disables the gate)")


class AppConfig(BaseModel):
    """Top-level application configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR

    @property
    def db_path(self) -> Path:
        path = Path(self.storage.db_filename).expanduser()
        if path.is_absolute():
            return path
        return self.base_dir / path

    def is_auth_enabled(self) -> bool:
        """Return True if a gate password is set."""
        return bool(self.auth.password.get_secret_value())

    def proxy_policy(self) -> ProxyPolicy:
        """Freeze the proxy section into the value injected into the proxies."""
        return ProxyPolicy.from_config(self.proxy)


# ---------------------------------------------------------------------------
# Proxy policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProxyPolicy:
    """Immutable upstream policy shared by the audio proxy and API forwarder."""

    allowed_host: str
    api_base_url: str
    referer: str
    default_user_agent: str
    force_http: bool

    @classmethod
    def from_config(cls, config: ProxyConfig) -> ProxyPolicy:
        return cls(
            allowed_host=config.allowed_host.strip().lower().strip("."),
            api_base_url=config.api_base_url,
            referer=config.referer,
            default_user_agent=config.default_user_agent,
            force_http=config.force_http,
        )

    @property
    def host_pattern(self) -> re.Pattern[str]:
        """Match the allowed host itself or any of its subdomains."""
        return re.compile(rf"(^|\.){re.escape(self.allowed_host)}$", re.IGNORECASE)

    def is_allowed_host(self, hostname: str | None) -> bool:
        if not hostname:
            return False
        return self.host_pattern.search(hostname) is not None


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base directory and log directory if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


def config_exists() -> bool:
    """Return True if a config file is present on disk."""
    return (get_base_dir() / _CONFIG_FILE).is_file()


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config() -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = get_base_dir() / _CONFIG_FILE
    if not path.is_file():
        return AppConfig()

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    return AppConfig.model_validate(raw)


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, SecretStr):
        value = value.get_secret_value()
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string.

    Only handles the flat two-level structure we actually use (tables with
    scalar values).
    """
    lines: list[str] = []
    sections = [
        ("server", config.server),
        ("proxy", config.proxy),
        ("storage", config.storage),
        ("auth", config.auth),
    ]
    for section_name, section_model in sections:
        lines.append(f"[{section_name}]")
        for key, value in section_model.model_dump(mode="python").items():
            lines.append(f"{key} = {_format_toml_value(value)}")
        lines.append("")
    return "\n".join(lines)


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only."""
    ensure_dirs()
    path = get_base_dir() / _CONFIG_FILE
    path.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(path, 0o600)
