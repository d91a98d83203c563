"""
Value types stored in individual node-wallet database records: key
metadata, the key pool, block locators, HD chain state, the BIP-39
mnemonic and the unified-account bookkeeping.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum

from zmigrate_core.blob import U256, Blob11, Blob32, TxId
from zmigrate_core.orchard import OrchardRawAddress
from zmigrate_core.parser import Parser, decode, decode_vec
from zmigrate_core.primitives import ClientVersion, Network, nonzero
from zmigrate_core.sapling import SaplingZPaymentAddress
from zmigrate_core.transparent import KeyId, PubKey, ScriptId

VERSION_WITH_HDDATA = 10

_ACCOUNT_PATH = re.compile(r"^m/(?:32|44)'/133'/(\d+)'")


# ── Keys ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class KeyMetadata:
    version: int
    create_time: int | None
    hd_keypath: str | None = None
    seed_fp: Blob32 | None = None

    TYPE_NAME = "KeyMetadata"

    @classmethod
    def parse(cls, p: Parser) -> "KeyMetadata":
        with p.context("version"):
            version = p.read_i32()
        with p.context("create_time"):
            create_time = nonzero(p.read_i64())
        if version < VERSION_WITH_HDDATA:
            return cls(version, create_time)
        with p.context("hd_keypath"):
            hd_keypath = p.read_utf8_string()
        seed_fp = decode(p, Blob32, "seed_fp")
        return cls(version, create_time, hd_keypath or None, seed_fp)

    def account_index(self) -> int | None:
        """ZIP-32 / BIP-44 account number from ``hd_keypath``, if it has one."""
        if not self.hd_keypath:
            return None
        match = _ACCOUNT_PATH.match(self.hd_keypath)
        return int(match.group(1)) if match else None

    def is_derived(self) -> bool:
        return self.hd_keypath is not None


@dataclass(frozen=True)
class KeyPoolEntry:
    version: ClientVersion
    timestamp: int
    key: PubKey

    TYPE_NAME = "KeyPoolEntry"

    @classmethod
    def parse(cls, p: Parser) -> "KeyPoolEntry":
        version = decode(p, ClientVersion, "version")
        with p.context("timestamp"):
            timestamp = p.read_i64()
        return cls(version, timestamp, decode(p, PubKey, "key"))


# ── Chain state ─────────────────────────────────────────────────

@dataclass(frozen=True)
class BlockLocator:
    version: ClientVersion
    blocks: tuple[U256, ...]

    TYPE_NAME = "BlockLocator"

    @classmethod
    def parse(cls, p: Parser) -> "BlockLocator":
        version = decode(p, ClientVersion, "version")
        return cls(version, decode_vec(p, U256))


@dataclass(frozen=True)
class MnemonicHDChain:
    version: int
    seed_fp: Blob32
    create_time: int
    account_counter: int
    legacy_tkey_external_counter: int
    legacy_tkey_internal_counter: int
    legacy_sapling_key_counter: int
    mnemonic_seed_backup_confirmed: bool

    TYPE_NAME = "MnemonicHDChain"

    @classmethod
    def parse(cls, p: Parser) -> "MnemonicHDChain":
        with p.context("version"):
            version = p.read_i32()
        seed_fp = decode(p, Blob32, "seed_fp")
        with p.context("create_time"):
            create_time = p.read_i64()
        counters = []
        for name in (
            "account_counter",
            "legacy_tkey_external_counter",
            "legacy_tkey_internal_counter",
            "legacy_sapling_key_counter",
        ):
            with p.context(name):
                counters.append(p.read_u32())
        with p.context("mnemonic_seed_backup_confirmed"):
            confirmed = p.read_bool()
        return cls(version, seed_fp, create_time, *counters, confirmed)


class MnemonicLanguage(IntEnum):
    ENGLISH = 0
    SIMPLIFIED_CHINESE = 1
    TRADITIONAL_CHINESE = 2
    CZECH = 3
    FRENCH = 4
    ITALIAN = 5
    JAPANESE = 6
    KOREAN = 7
    PORTUGUESE = 8
    SPANISH = 9


@dataclass(frozen=True)
class Bip39Mnemonic:
    language: MnemonicLanguage
    mnemonic: str

    TYPE_NAME = "Bip39Mnemonic"

    @classmethod
    def parse(cls, p: Parser) -> "Bip39Mnemonic":
        with p.context("language"):
            raw = p.read_u32()
            try:
                language = MnemonicLanguage(raw)
            except ValueError as exc:
                raise p.invalid(f"unknown mnemonic language {raw}") from exc
        with p.context("mnemonic"):
            return cls(language, p.read_utf8_string())


# ── Unified accounts ────────────────────────────────────────────

class ReceiverType(IntEnum):
    P2PKH = 0x00
    P2SH = 0x01
    SAPLING = 0x02
    ORCHARD = 0x03

    @classmethod
    def parse(cls, p: Parser) -> "ReceiverType":
        code = p.read_compact_size()
        try:
            return cls(code)
        except ValueError as exc:
            raise p.invalid(f"invalid receiver type {code:#04x}") from exc


ReceiverType.TYPE_NAME = "ReceiverType"  # type: ignore[attr-defined]


@dataclass(frozen=True)
class UnifiedAccountMetadata:
    seed_fingerprint: U256
    bip_44_coin_type: int
    account_id: int
    key_id: U256

    TYPE_NAME = "UnifiedAccountMetadata"

    @classmethod
    def parse(cls, p: Parser) -> "UnifiedAccountMetadata":
        seed_fingerprint = decode(p, U256, "seed_fingerprint")
        with p.context("bip_44_coin_type"):
            coin_type = p.read_u32()
        with p.context("account_id"):
            account_id = p.read_u32()
        return cls(seed_fingerprint, coin_type, account_id, decode(p, U256, "key_id"))


@dataclass(frozen=True)
class UnifiedAddressMetadata:
    key_id: U256
    diversifier_index: Blob11
    receiver_types: tuple[ReceiverType, ...]

    TYPE_NAME = "UnifiedAddressMetadata"

    @classmethod
    def parse(cls, p: Parser) -> "UnifiedAddressMetadata":
        return cls(
            decode(p, U256, "key_id"),
            decode(p, Blob11, "diversifier_index"),
            decode_vec(p, ReceiverType, "receiver_types"),
        )

    def diversifier_index_value(self) -> int:
        return int.from_bytes(self.diversifier_index.to_bytes(), "little")


@dataclass(frozen=True)
class RecipientAddress:
    """One receiver of a unified address a transaction paid to."""

    receiver_type: ReceiverType
    receiver: KeyId | ScriptId | SaplingZPaymentAddress | OrchardRawAddress

    TYPE_NAME = "RecipientAddress"

    @classmethod
    def parse(cls, p: Parser) -> "RecipientAddress":
        receiver_type = decode(p, ReceiverType, "receiver_type")
        payload = {
            ReceiverType.P2PKH: (KeyId, "key_id"),
            ReceiverType.P2SH: (ScriptId, "script_id"),
            ReceiverType.SAPLING: (SaplingZPaymentAddress, "sapling_z_payment_address"),
            ReceiverType.ORCHARD: (OrchardRawAddress, "orchard_raw_address"),
        }[receiver_type]
        return cls(receiver_type, decode(p, *payload))

    def to_string(self, network: Network) -> str | None:
        """Stand-alone encoding; Orchard receivers only exist inside unified addresses."""
        if isinstance(self.receiver, (KeyId, ScriptId)):
            return self.receiver.to_address(network)
        if isinstance(self.receiver, SaplingZPaymentAddress):
            return self.receiver.to_string(network)
        return None


@dataclass(frozen=True)
class RecipientMapping:
    txid: TxId
    recipient_address: RecipientAddress
    unified_address: str
