"""
ZecWallet Lite (ZWL) wallet file.

Layout::

    u64   external_version          (at most 31)
    Keys                            (external version > 14)
      u64   version                 (at most 22)
      u8    encrypted
      [48]  enc_seed
      vec   nonce
      [32]  seed                    (zero when the wallet is locked)
      vec   WalletOKey              (version > 21)
      vec   WalletZKey
      vec   WalletTKey              (version > 20; before that, raw
                                     secret keys plus address strings)
    Keys, old layout                (external version <= 14, untagged)
      u8 encrypted, [48] enc_seed, vec nonce   (version >= 4)
      [32]  seed
      vec   extsk, vec extfvk       (version <= 6; locked when no extsk)
      vec   WalletZKey              (version > 6)
      vec   [32] secret, vec address
    vec   CompactBlockData
    WalletTxns                      (untagged when external version <= 14)
    u64-length chain name
    WalletOptions                   (external version > 23)
    u64   birthday
    u8    sapling_tree_verified     (12 < external version <= 22)
    opt   vec<u8> verified tree     (external version > 21)
    WalletZecPriceInfo              (external version > 13)
    opt   BridgeTree                (external version > 24)

Strings in this format carry a u64 length prefix.  Records after the
keys live in ``zwl_records``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Mapping

from zmigrate_core.blob import Blob, Blob32
from zmigrate_core.orchard import OrchardFullViewingKey, OrchardSpendingKey
from zmigrate_core.parser import Parser, decode, decode_optional, decode_vec
from zmigrate_core.sapling import SaplingExtendedFullViewingKey, SaplingExtendedSpendingKey
from zmigrate_core.transparent import SecretKey
from zmigrate_core.versioned import Versioned
from zmigrate_core.zwl_records import (
    BridgeTree,
    CompactBlockData,
    WalletOptions,
    WalletTxns,
    WalletZecPriceInfo,
    read_u64_string,
)

logger = logging.getLogger("zmigrate_zwl")

ZWL_SERIALIZED_VERSION = 31

# Up to this external version the keys are untagged and the blocks are
# stored lowest first.
OLD_LAYOUT_EXTERNAL_VERSION = 14
# Older untagged keys need address derivation, which is not done here.
MIN_OLD_KEYS_VERSION = 4
KEYS_VERSION_WITH_ZKEY_RECORDS = 7
KEYS_VERSION_WITH_TKEYS = 21
KEYS_VERSION_WITH_OKEYS = 22


class EncryptedSeed(Blob):
    SIZE = 48


def _keytype(p: Parser, enum: type[IntEnum]) -> IntEnum:
    with p.context("keytype"):
        raw = p.read_u32()
        try:
            return enum(raw)
        except ValueError as exc:
            raise p.invalid(f"unknown {enum.__name__} {raw}") from exc


def _locked(p: Parser) -> bool:
    with p.context("locked"):
        return p.read_u8() > 0


def _encryption(p: Parser) -> tuple[bytes | None, bytes | None]:
    enc_key = decode_optional(p, Parser.read_var_bytes, "enc_key")
    nonce = decode_optional(p, Parser.read_var_bytes, "nonce")
    return enc_key, nonce


# ═══════════════════════════════════════════════════════════════════
#  Key records
# ═══════════════════════════════════════════════════════════════════

class WalletTKeyType(IntEnum):
    HD_KEY = 0
    IMPORTED_KEY = 1


@dataclass(frozen=True)
class WalletTKey(Versioned):
    version: int
    keytype: WalletTKeyType
    locked: bool
    key: SecretKey | None
    address: str
    hdkey_num: int | None
    enc_key: bytes | None = None
    nonce: bytes | None = None

    TYPE_NAME = "WalletTKey"
    MAX_VERSION = 1

    @classmethod
    def parse(cls, p: Parser) -> "WalletTKey":
        version = cls.read_version(p)
        keytype = _keytype(p, WalletTKeyType)
        locked = _locked(p)
        key = decode_optional(p, SecretKey, "key")
        address = decode(p, read_u64_string, "address")
        hdkey_num = decode_optional(p, Parser.read_u32, "hdkey_num")
        return cls(version, keytype, locked, key, address, hdkey_num, *_encryption(p))

    @classmethod
    def from_raw(cls, key: SecretKey, address: str, num: int) -> "WalletTKey":
        """An HD key from the pre-v21 layout, numbered by its position."""
        return cls(cls.MAX_VERSION, WalletTKeyType.HD_KEY, False, key, address, num)


class WalletZKeyType(IntEnum):
    HD_KEY = 0
    IMPORTED_SPENDING_KEY = 1
    IMPORTED_VIEW_KEY = 2


@dataclass(frozen=True)
class WalletZKey(Versioned):
    version: int
    keytype: WalletZKeyType
    locked: bool
    extsk: SaplingExtendedSpendingKey | None
    extfvk: SaplingExtendedFullViewingKey
    hdkey_num: int | None
    enc_key: bytes | None = None
    nonce: bytes | None = None

    TYPE_NAME = "WalletZKey"
    MAX_VERSION = 1

    @classmethod
    def parse(cls, p: Parser) -> "WalletZKey":
        version = cls.read_version(p)
        keytype = _keytype(p, WalletZKeyType)
        locked = _locked(p)
        extsk = decode_optional(p, SaplingExtendedSpendingKey, "extsk")
        extfvk = decode(p, SaplingExtendedFullViewingKey, "extfvk")
        hdkey_num = decode_optional(p, Parser.read_u32, "hdkey_num")
        return cls(version, keytype, locked, extsk, extfvk, hdkey_num, *_encryption(p))

    @classmethod
    def from_hd(
        cls,
        num: int,
        extsk: SaplingExtendedSpendingKey | None,
        extfvk: SaplingExtendedFullViewingKey,
    ) -> "WalletZKey":
        """An HD key from the pre-v7 layout; without its spending key it is locked."""
        return cls(cls.MAX_VERSION, WalletZKeyType.HD_KEY, extsk is None, extsk, extfvk, num)


class WalletOKeyType(IntEnum):
    HD_KEY = 0
    IMPORTED_SPENDING_KEY = 1
    IMPORTED_FULL_VIEW_KEY = 2


@dataclass(frozen=True)
class WalletOKey(Versioned):
    version: int
    keytype: WalletOKeyType
    locked: bool
    hdkey_num: int | None
    fvk: OrchardFullViewingKey
    sk: OrchardSpendingKey | None
    enc_key: bytes | None = None
    nonce: bytes | None = None

    TYPE_NAME = "WalletOKey"
    MAX_VERSION = 1

    @classmethod
    def parse(cls, p: Parser) -> "WalletOKey":
        version = cls.read_version(p)
        keytype = _keytype(p, WalletOKeyType)
        locked = _locked(p)
        hdkey_num = decode_optional(p, Parser.read_u32, "hdkey_num")
        fvk = decode(p, OrchardFullViewingKey, "fvk")
        sk = decode_optional(p, OrchardSpendingKey, "sk")
        return cls(version, keytype, locked, hdkey_num, fvk, sk, *_encryption(p))



# ═══════════════════════════════════════════════════════════════════
#  Keys
# ═══════════════════════════════════════════════════════════════════

def _raw_tkeys(p: Parser) -> tuple[WalletTKey, ...]:
    secrets = decode_vec(p, SecretKey, "tkeys")
    addresses = decode_vec(p, read_u64_string, "taddresses")
    if len(secrets) != len(addresses):
        raise p.invalid(f"{len(secrets)} transparent keys but {len(addresses)} addresses")
    return tuple(
        WalletTKey.from_raw(sk, address, i)
        for i, (sk, address) in enumerate(zip(secrets, addresses))
    )


def _hd_zkeys(p: Parser) -> tuple[WalletZKey, ...]:
    """Spending keys then viewing keys; a locked wallet keeps only the latter."""
    extsks = decode_vec(p, SaplingExtendedSpendingKey, "extsks")
    extfvks = decode_vec(p, SaplingExtendedFullViewingKey, "extfvks")
    if not extsks:
        return tuple(WalletZKey.from_hd(i, None, fvk) for i, fvk in enumerate(extfvks))
    if len(extsks) != len(extfvks):
        raise p.invalid(f"{len(extsks)} spending keys but {len(extfvks)} viewing keys")
    return tuple(
        WalletZKey.from_hd(i, sk, fvk) for i, (sk, fvk) in enumerate(zip(extsks, extfvks))
    )


@dataclass(frozen=True)
class Keys(Versioned):
    version: int
    encrypted: bool
    enc_seed: EncryptedSeed
    nonce: bytes
    seed: Blob32
    okeys: tuple[WalletOKey, ...]
    zkeys: tuple[WalletZKey, ...]
    tkeys: tuple[WalletTKey, ...]

    TYPE_NAME = "Keys"
    MAX_VERSION = 22
    VERSION_WIDTH = "u64"

    @classmethod
    def parse_with_param(cls, p: Parser, external_version: int) -> "Keys":
        if external_version <= OLD_LAYOUT_EXTERNAL_VERSION:
            return cls.parse_old(p, external_version)
        return cls.parse(p)

    @classmethod
    def parse(cls, p: Parser) -> "Keys":
        version = cls.read_version(p)
        with p.context("encrypted"):
            encrypted = p.read_u8() > 0
        enc_seed = decode(p, EncryptedSeed, "enc_seed")
        with p.context("nonce"):
            nonce = p.read_var_bytes()
        seed = decode(p, Blob32, "seed")
        okeys: tuple[WalletOKey, ...] = ()
        if version >= KEYS_VERSION_WITH_OKEYS:
            okeys = decode_vec(p, WalletOKey, "okeys")
        zkeys = decode_vec(p, WalletZKey, "zkeys")
        if version >= KEYS_VERSION_WITH_TKEYS:
            tkeys = decode_vec(p, WalletTKey, "tkeys")
        else:
            tkeys = _raw_tkeys(p)
        return cls(version, encrypted, enc_seed, nonce, seed, okeys, zkeys, tkeys)

    @classmethod
    def parse_old(cls, p: Parser, version: int) -> "Keys":
        """Untagged keys of early wallets; *version* is the file's external version."""
        if version < MIN_OLD_KEYS_VERSION:
            raise p.invalid(
                f"wallet version {version} predates stored addresses "
                f"(>= {MIN_OLD_KEYS_VERSION})"
            )
        with p.context("encrypted"):
            encrypted = p.read_u8() > 0
        enc_seed = decode(p, EncryptedSeed, "enc_seed")
        with p.context("nonce"):
            nonce = p.read_var_bytes()
        seed = decode(p, Blob32, "seed")
        if version < KEYS_VERSION_WITH_ZKEY_RECORDS:
            zkeys = _hd_zkeys(p)
        else:
            zkeys = decode_vec(p, WalletZKey, "zkeys")
        tkeys = _raw_tkeys(p)
        return cls(version, encrypted, enc_seed, nonce, seed, (), zkeys, tkeys)

    def spendable_fvks(self) -> set[bytes]:
        return {k.extfvk.to_bytes() for k in self.zkeys if k.extsk is not None}


# ═══════════════════════════════════════════════════════════════════
#  Wallet file
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ZwlWallet(Versioned):
    external_version: int
    keys: Keys
    blocks: tuple[CompactBlockData, ...] = ()
    transactions: WalletTxns | None = None
    chain_name: str = ""
    options: WalletOptions | None = None
    birthday: int = 0
    sapling_tree_verified: bool | None = None
    verified_tree: bytes | None = None
    price: WalletZecPriceInfo | None = None
    orchard_witnesses: BridgeTree | None = None
    trailing: bytes = b""

    TYPE_NAME = "ZwlWallet"
    MAX_VERSION = ZWL_SERIALIZED_VERSION
    VERSION_WIDTH = "u64"

    @classmethod
    def parse(cls, p: Parser) -> "ZwlWallet":
        with p.context("external_version"):
            ext = cls.read_version(p)
        old = ext <= OLD_LAYOUT_EXTERNAL_VERSION
        with p.context("keys"), p.context("decoding Keys"):
            keys = Keys.parse_with_param(p, ext)
        blocks = decode_vec(p, CompactBlockData, "blocks")
        if old:
            # Newer files keep the highest block first.
            blocks = blocks[::-1]
        with p.context("transactions"), p.context("decoding WalletTxns"):
            txns = WalletTxns.parse_old(p) if old else WalletTxns.parse(p)
        chain_name = decode(p, read_u64_string, "chain_name")
        options = decode(p, WalletOptions, "options") if ext > 23 else None
        with p.context("birthday"):
            birthday = p.read_u64()
        tree_verified = None
        if 12 < ext <= 22:
            with p.context("sapling_tree_verified"):
                tree_verified = p.read_u8() == 1
        verified_tree = None
        if ext > 21:
            # Protobuf TreeState from the light server, kept as received.
            verified_tree = decode_optional(p, Parser.read_var_bytes, "verified_tree")
        price = decode(p, WalletZecPriceInfo, "price") if ext > 13 else None
        orchard = None
        if ext > 24:
            orchard = decode_optional(p, BridgeTree, "orchard_witnesses")
        if ext <= 8:
            txns = _adjust_spendable(txns, keys.spendable_fvks())
        return cls(
            ext, keys, blocks, txns, chain_name, options, birthday, tree_verified,
            verified_tree, price, orchard, p.rest(),
        )


def _adjust_spendable(txns: WalletTxns, spendable: set[bytes]) -> WalletTxns:
    """Early files did not store whether a note's spending key is held."""
    current = {}
    for txid, wtx in txns.current.items():
        notes = tuple(
            replace(n, have_spending_key=n.extfvk.to_bytes() in spendable)
            for n in wtx.sapling_notes
        )
        current[txid] = replace(wtx, sapling_notes=notes)
    return replace(txns, current=current)


def parse_zwl_wallet(data: bytes, limits: Mapping[str, int] | None = None) -> ZwlWallet:
    """Decode a ZWL wallet file."""
    wallet = ZwlWallet.parse(Parser(data, limits))
    keys = wallet.keys
    logger.debug(
        f"Decoded ZWL wallet v{wallet.external_version}: {len(keys.tkeys)} tkeys, "
        f"{len(keys.zkeys)} zkeys, {len(keys.okeys)} okeys, "
        f"{len(wallet.blocks)} blocks, {len(wallet.transactions.current)} transactions, "
        f"encrypted={keys.encrypted}"
    )
    if wallet.trailing:
        logger.warning(
            f"ZWL wallet has {len(wallet.trailing)} unread bytes after its last section"
        )
    return wallet
