"""
zmigrate - migrate legacy Zcash wallets into one canonical interchange model.

Key features:
- Typed binary decoding with position-aware, context-chained diagnostics
- Full-node (zcashd) wallet record extracts, zingo keystores and ZWL exports
- Transparent, Sprout, Sapling and Orchard keys, addresses and transactions
- Note-commitment trees and witnesses replayed to their anchors
- Deterministic, all-or-nothing migration into a ``WalletDB``
"""

__version__ = "0.1.0"
__all__ = [
    "parser",
    "errors",
    "versioned",
    "blob",
    "primitives",
    "crypto_utils",
    "transparent",
    "sprout",
    "sapling",
    "orchard",
    "transaction",
    "merkle_tree",
    "zcashd_records",
    "zcashd_wallet",
    "zingo",
    "zwl",
    "zwl_records",
    "model",
    "migration",
    "light_migration",
    "formats",
    "config",
    "logging_config",
    "cli",
]
