"""
TOML-based configuration for zmigrate runs.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.  The decoders
and the migration engine never read the environment themselves; callers
load a ``MigrateConfig`` once and pass it in.

Usage:
    from zmigrate_core.config import load_config
    cfg = load_config("zmigrate.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from zmigrate_core.primitives import Network

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib  # type: ignore[import,no-redef]

_TRUE = {"1", "true", "yes", "on"}


@dataclass
class MigrationConfig:
    """Migration policy settings."""
    default_account_name: str = "Default Account"
    # Legacy records with no canonical mapping are kept as opaque
    # attachments keyed by source field name; False drops them.
    attach_unmapped: bool = True
    attach_witnesses: bool = True
    network: str = "main"   # used when the wallet records no network

    def default_network(self) -> Network:
        return Network.from_identifier(self.network)


@dataclass
class LimitsConfig:
    """
    Lowered version maximums, keyed by record name.

    ``[limits] WalletCapability = 3`` makes a version-4 zingo capability
    fail with ``UnsupportedVersion``.  A value above the built-in maximum
    has no effect.
    """
    versions: dict[str, int] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class MigrateConfig:
    """Top-level configuration container."""
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _flag(value: str) -> bool:
    return value.strip().lower() in _TRUE


def load_config(path: str | None = None) -> MigrateConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        ZMIGRATE_LOG_LEVEL        -> logging.level
        ZMIGRATE_LOG_FMT          -> logging.format
        ZMIGRATE_LOG_FILE         -> logging.file
        ZMIGRATE_NETWORK          -> migration.network
        ZMIGRATE_DEFAULT_ACCOUNT  -> migration.default_account_name
        ZMIGRATE_ATTACH_UNMAPPED  -> migration.attach_unmapped  (1/true/yes/on)
    """
    cfg = MigrateConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("migration", cfg.migration),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])
            if "limits" in data:
                cfg.limits.versions = {
                    str(name): int(value) for name, value in data["limits"].items()
                }

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("ZMIGRATE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("ZMIGRATE_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("ZMIGRATE_LOG_FILE"):
        cfg.logging.file = v
    if v := os.environ.get("ZMIGRATE_NETWORK"):
        cfg.migration.network = v
    if v := os.environ.get("ZMIGRATE_DEFAULT_ACCOUNT"):
        cfg.migration.default_account_name = v
    if v := os.environ.get("ZMIGRATE_ATTACH_UNMAPPED"):
        cfg.migration.attach_unmapped = _flag(v)

    cfg.migration.default_network()  # raises ValueError on an unknown network
    return cfg
