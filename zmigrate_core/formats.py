"""
Format dispatch: bytes + caller-selected ``WalletFormat`` → ``WalletDB``.

The format is never sniffed from the content.  Decoding and migration
are all-or-nothing: any error aborts the file and no partial
``WalletDB`` is returned.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from zmigrate_core.config import MigrateConfig
from zmigrate_core.light_migration import migrate_zingo, migrate_zwl
from zmigrate_core.migration import migrate_zcashd
from zmigrate_core.model import WalletDB
from zmigrate_core.zcashd_wallet import parse_zcashd_wallet
from zmigrate_core.zingo import parse_zingo_wallet
from zmigrate_core.zwl import parse_zwl_wallet

logger = logging.getLogger("zmigrate_formats")


class WalletFormat(Enum):
    ZCASHD = "zcashd"
    ZINGO = "zingo"
    ZWL = "zwl"

    @classmethod
    def from_name(cls, name: str) -> "WalletFormat":
        try:
            return cls(name.strip().lower())
        except ValueError:
            known = ", ".join(f.value for f in cls)
            raise ValueError(f"Unknown wallet format '{name}' (expected one of {known})") from None


_DECODERS = {
    WalletFormat.ZCASHD: parse_zcashd_wallet,
    WalletFormat.ZINGO: parse_zingo_wallet,
    WalletFormat.ZWL: parse_zwl_wallet,
}

_MIGRATORS = {
    WalletFormat.ZCASHD: migrate_zcashd,
    WalletFormat.ZINGO: migrate_zingo,
    WalletFormat.ZWL: migrate_zwl,
}


def decode_wallet_bytes(
    data: bytes, fmt: WalletFormat, config: MigrateConfig | None = None
) -> Any:
    """Decode *data* into the legacy snapshot of *fmt*."""
    config = config or MigrateConfig()
    return _DECODERS[fmt](data, config.limits.versions)


def migrate_wallet_bytes(
    data: bytes, fmt: WalletFormat, config: MigrateConfig | None = None
) -> WalletDB:
    """Decode and migrate one wallet file's contents."""
    config = config or MigrateConfig()
    logger.info(f"Migrating {len(data)} bytes as {fmt.value}")
    snapshot = decode_wallet_bytes(data, fmt, config)
    return _MIGRATORS[fmt](snapshot, config.migration)
