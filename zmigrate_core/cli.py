"""
zmigrate command line: migrate one legacy wallet file and print what came out.

Usage:
    zmigrate --format zcashd wallet.dat
    zmigrate --format zingo --config zmigrate.toml zingo-wallet.dat
    python -m zmigrate_core.cli --format zwl --log-level DEBUG zecwallet-light-wallet.dat

The wallet format is always given by the caller.  Logging follows the
``[logging]`` section of the config (and its ``ZMIGRATE_LOG_*``
overrides); ``--log-level`` overrides both.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from zmigrate_core.config import load_config
from zmigrate_core.errors import ZMigrateError
from zmigrate_core.formats import WalletFormat, migrate_wallet_bytes
from zmigrate_core.logging_config import configure_logging

logger = logging.getLogger("zmigrate_cli")


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Migrate a legacy Zcash wallet file")
    p.add_argument("path", help="Wallet file to read")
    p.add_argument("--format", required=True, choices=[f.value for f in WalletFormat],
                   help="Format of the wallet file")
    p.add_argument("--config", default=None, help="Path to zmigrate.toml config file")
    p.add_argument("--log-level", default=None, help="Override the configured log level")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    cfg = load_config(args.config)
    if args.log_level:
        cfg.logging.level = args.log_level.upper()
    configure_logging(cfg.logging)

    data = Path(args.path).read_bytes()
    try:
        db = migrate_wallet_bytes(data, WalletFormat.from_name(args.format), cfg)
    except ZMigrateError as e:
        logger.error(f"Migration of {args.path} failed: {e}")
        return 1

    print(json.dumps(db.summary(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
