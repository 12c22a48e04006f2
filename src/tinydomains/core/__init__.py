"""Core."""

from .config import (
    DomainsConfig,
    Environment,
    VerificationMethod,
    clear_config,
    get_config,
    load_config_from_file,
)

__all__ = [
    "DomainsConfig",
    "Environment",
    "VerificationMethod",
    "clear_config",
    "get_config",
    "load_config_from_file",
]
