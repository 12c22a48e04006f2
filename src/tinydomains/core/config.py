"""Configuration types with environment variable support.

All settings can be configured via environment variables with the TINYDOMAINS_ prefix.
Example: TINYDOMAINS_PLATFORM_ROOT=example.page sets the platform root domain.

The resulting DomainsConfig is frozen. Components receive it explicitly at
construction; get_config() exists only for CLI entry points.
"""

from __future__ import annotations

import tomllib
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in config.items():
        full_key = f"{prefix}_{key}" if prefix else key
        if isinstance(value, dict):
            result.update(flatten_config(value, full_key))
        else:
            result[full_key] = value
    return result


class Environment(Enum):
    """Deployment mode. Development aliases are honored only outside production."""

    PRODUCTION = "production"
    DEVELOPMENT = "development"
    TEST = "test"


class VerificationMethod(Enum):
    """How the verification engine probes a candidate domain."""

    HTTP = "http"
    DNS = "dns"


class DomainsConfig(BaseSettings):
    """Custom domain verification and routing configuration.

    Example:
        config = DomainsConfig(platform_root="tiny.pm", environment="development")
        classifier = HostClassifier(config)
    """

    model_config = SettingsConfigDict(
        env_prefix="TINYDOMAINS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    platform_root: str = Field(
        default="tiny.pm",
        description="The platform's own root domain. It and its subdomains are never custom domains.",
    )
    environment: Environment = Field(
        default=Environment.PRODUCTION,
        description="Deployment mode: 'production', 'development' or 'test'.",
    )
    dev_aliases: list[str] = Field(
        default_factory=lambda: ["localhost", "127.0.0.1", "::1"],
        description="Exact hostnames treated as development aliases outside production.",
    )
    dev_suffixes: list[str] = Field(
        default_factory=lambda: [".localhost"],
        description="Hostname suffixes treated as development aliases outside production.",
    )
    storage_path: str = Field(
        default="domains.json",
        description="Path to the JSON file storing domain records.",
    )
    verification_method: VerificationMethod = Field(
        default=VerificationMethod.HTTP,
        description="Probe used to verify domains: 'http' (self-routing probe) or 'dns' (CNAME).",
    )
    probe_scheme: str = Field(
        default="http",
        description="URL scheme for the HTTP probe. Plain HTTP avoids depending on TLS issuance.",
    )
    attempt_budget: float = Field(
        default=1800.0,
        gt=0,
        description="Seconds a domain may stay verifying before it is marked failed.",
    )
    attempt_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Per-attempt probe timeout (seconds). Exceeding it is a transient error.",
    )
    transient_retry_limit: int = Field(
        default=2,
        ge=0,
        description="Extra probe attempts after a transient error within one check.",
    )
    transient_retry_delay: float = Field(
        default=1.0,
        ge=0,
        description="Delay between transient retries (seconds).",
    )
    watch_interval: float = Field(
        default=10.0,
        gt=0,
        description="Polling interval for domains a tenant is actively watching (seconds).",
    )
    sweep_interval: float = Field(
        default=300.0,
        gt=0,
        description="Interval between background sweeps over unresolved domains (seconds).",
    )
    failed_retry_cooldown: float = Field(
        default=3600.0,
        ge=0,
        description="Seconds after the last attempt before a failed domain is retried. 0 disables.",
    )
    health_check_enabled: bool = Field(
        default=False,
        description="Re-check active domains during sweeps and demote ones that stopped resolving.",
    )
    max_concurrent_checks: int = Field(
        default=10,
        ge=1,
        description="Maximum verifications running at once during a sweep.",
    )
    lookup_timeout: float = Field(
        default=2.0,
        gt=0,
        description="Timeout for the request-time domain lookup (seconds).",
    )
    passthrough_prefixes: list[str] = Field(
        default_factory=lambda: [
            "/_next/",
            "/images/",
            "/static/",
            "/favicon.ico",
            "/api/",
            "/404",
            "/500",
            "/_error",
        ],
        description="Path prefixes that always pass through unchanged on every host.",
    )
    stripped_headers: list[str] = Field(
        default_factory=lambda: ["Strict-Transport-Security", "Content-Security-Policy"],
        description="Response headers removed when serving a custom domain.",
    )
    bind: str = Field(
        default="0.0.0.0:8080",
        description="HTTP bind address for the edge server.",
    )
    upstream_url: str | None = Field(
        default=None,
        description="Page renderer the edge proxies to. Unset: only the built-in API is served.",
    )

    @field_validator("platform_root")
    @classmethod
    def _normalize_root(cls, value: str) -> str:
        value = value.strip().lower().rstrip(".")
        if not value:
            raise ValueError("platform_root must not be empty")
        return value

    @field_validator("dev_aliases", "dev_suffixes")
    @classmethod
    def _lower_list(cls, value: list[str]) -> list[str]:
        return [v.strip().lower() for v in value if v.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @classmethod
    def from_file(cls, path: str | Path, **overrides: Any) -> DomainsConfig:
        """Build a config from a YAML or TOML file.

        Nested sections are flattened, so ``transient: {retry_limit: 3}``
        maps to ``transient_retry_limit``. Unknown keys are ignored.
        """
        data = load_config_from_file(path)
        values = {k: v for k, v in flatten_config(data).items() if k in cls.model_fields}
        values.update(overrides)
        return cls(**values)

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a dictionary for display."""
        data = self.model_dump()
        data["environment"] = self.environment.value
        data["verification_method"] = self.verification_method.value
        return data


_config: DomainsConfig | None = None


def get_config() -> DomainsConfig:
    """Get the global configuration instance.

    Returns a cached instance of DomainsConfig that reads from environment variables.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = DomainsConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    """
    global _config
    _config = None
