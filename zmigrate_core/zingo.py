"""
Zingo light-client wallet file: the key-bearing prefix.

Layout decoded here::

    u64               external_version        (at most 31)
    WalletCapability  keystore + receiver selections
    ...               blocks, transactions, options, ... (kept opaque)

``WalletCapability`` has gone through three keystore generations:

=======  ==============================================================
version  keystore
=======  ==============================================================
1        Version1Keystore: orchard sk, sapling extsk, legacy extended tkey
2        Version2Keystore: one ``Capability`` (none/view/spend) per pool
3        UnifiedKeystore
4        u32 rejection-address count, then UnifiedKeystore
=======  ==============================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Mapping, Union

from zmigrate_core.blob import Blob
from zmigrate_core.orchard import OrchardFullViewingKey, OrchardSpendingKey
from zmigrate_core.parser import Parser, decode, decode_vec, decode_with_param
from zmigrate_core.sapling import (
    SaplingDiversifiableFullViewingKey,
    SaplingExtendedSpendingKey,
)
from zmigrate_core.transparent import SecretKey
from zmigrate_core.versioned import Versioned

logger = logging.getLogger("zmigrate_zingo")

ZINGO_SERIALIZED_VERSION = 31

KEY_TYPE_EMPTY = 0
KEY_TYPE_VIEW = 1
KEY_TYPE_SPEND = 2

MAX_TYPECODE = 0x02000000


class LegacyPublicKey(Blob):
    SIZE = 33


class LegacyAccountPrivKey(Blob):
    """BIP-32 extended private key of the account's transparent branch."""
    SIZE = 74


# ═══════════════════════════════════════════════════════════════════
#  Legacy transparent keys
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LegacyExtendedPrivKey(Versioned):
    version: int
    private_key: SecretKey
    chain_code: bytes

    TYPE_NAME = "LegacyExtendedPrivKey"
    MAX_VERSION = 1

    @classmethod
    def parse(cls, p: Parser) -> "LegacyExtendedPrivKey":
        version = cls.read_version(p)
        private_key = decode(p, SecretKey, "private_key")
        with p.context("chain_code"):
            chain_code = p.read_var_bytes()
        return cls(version, private_key, chain_code)


@dataclass(frozen=True)
class LegacyExtendedPubKey(Versioned):
    version: int
    public_key: LegacyPublicKey
    chain_code: bytes

    TYPE_NAME = "LegacyExtendedPubKey"
    MAX_VERSION = 1

    @classmethod
    def parse(cls, p: Parser) -> "LegacyExtendedPubKey":
        version = cls.read_version(p)
        public_key = decode(p, LegacyPublicKey, "public_key")
        with p.context("chain_code"):
            chain_code = p.read_var_bytes()
        return cls(version, public_key, chain_code)

    def to_bytes(self) -> bytes:
        return self.public_key.to_bytes() + self.chain_code


# ═══════════════════════════════════════════════════════════════════
#  Capabilities
# ═══════════════════════════════════════════════════════════════════

class CapabilityKind(Enum):
    NONE = "none"
    VIEW = "view"
    SPEND = "spend"


@dataclass(frozen=True)
class Capability(Versioned):
    """
    What the wallet can do with one pool: nothing, view, or spend.

    Decoded with ``decode_with_param(p, Capability, (ViewType, SpendType))``;
    the key types differ per pool and are known to the caller.
    """

    kind: CapabilityKind
    key: Any = None

    TYPE_NAME = "Capability"
    MAX_VERSION = 1

    @classmethod
    def parse_with_param(cls, p: Parser, key_types: tuple[Any, Any]) -> "Capability":
        view_type, spend_type = key_types
        cls.read_version(p)
        with p.context("capability_type"):
            capability_type = p.read_u8()
        if capability_type == KEY_TYPE_EMPTY:
            return cls(CapabilityKind.NONE)
        if capability_type == KEY_TYPE_VIEW:
            return cls(CapabilityKind.VIEW, decode(p, view_type, "view"))
        if capability_type == KEY_TYPE_SPEND:
            return cls(CapabilityKind.SPEND, decode(p, spend_type, "spend"))
        raise p.invalid(f"unknown capability type {capability_type}")


# ═══════════════════════════════════════════════════════════════════
#  Keystores
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Version1Keystore:
    orchard: OrchardSpendingKey
    sapling: SaplingExtendedSpendingKey
    transparent: LegacyExtendedPrivKey

    TYPE_NAME = "Version1Keystore"

    @classmethod
    def parse(cls, p: Parser) -> "Version1Keystore":
        return cls(
            decode(p, OrchardSpendingKey, "orchard"),
            decode(p, SaplingExtendedSpendingKey, "sapling"),
            decode(p, LegacyExtendedPrivKey, "transparent"),
        )


@dataclass(frozen=True)
class Version2Keystore:
    orchard: Capability
    sapling: Capability
    transparent: Capability

    TYPE_NAME = "Version2Keystore"

    @classmethod
    def parse(cls, p: Parser) -> "Version2Keystore":
        return cls(
            decode_with_param(
                p, Capability, (OrchardFullViewingKey, OrchardSpendingKey), "orchard"
            ),
            decode_with_param(
                p,
                Capability,
                (SaplingDiversifiableFullViewingKey, SaplingExtendedSpendingKey),
                "sapling",
            ),
            decode_with_param(
                p, Capability, (LegacyExtendedPubKey, LegacyExtendedPrivKey), "transparent"
            ),
        )


class Era(IntEnum):
    ORCHARD = 0xC2D6D0B4


class Typecode(IntEnum):
    P2PKH = 0x00
    P2SH = 0x01
    SAPLING = 0x02
    ORCHARD = 0x03


def read_typecode(p: Parser) -> Typecode | int:
    """Known typecodes as ``Typecode``; reserved-but-valid ones as plain ints."""
    code = p.read_compact_size()
    if code > MAX_TYPECODE:
        raise p.invalid(f"invalid typecode {code}")
    try:
        return Typecode(code)
    except ValueError:
        return code


read_typecode.TYPE_NAME = "Typecode"  # type: ignore[attr-defined]


@dataclass(frozen=True)
class UnifiedSpendingKey:
    """
    ZIP-316 style spending key: era id, then (typecode, length, key)
    items until one key of each of the three pools has been read.
    """

    transparent: LegacyAccountPrivKey
    sapling: SaplingExtendedSpendingKey
    orchard: OrchardSpendingKey

    TYPE_NAME = "UnifiedSpendingKey"

    ITEMS = {
        Typecode.ORCHARD: ("orchard", OrchardSpendingKey, 32),
        Typecode.SAPLING: ("sapling", SaplingExtendedSpendingKey, 169),
        Typecode.P2PKH: ("transparent", LegacyAccountPrivKey, 74),
    }

    @classmethod
    def parse_with_param(cls, p: Parser, expected_era: Era) -> "UnifiedSpendingKey":
        with p.context("era"):
            era_id = p.read_u32()
            if era_id != expected_era:
                raise p.invalid(f"era {era_id:#010x} does not match {expected_era.name}")
        keys: dict[str, Any] = {}
        while len(keys) < len(cls.ITEMS):
            typecode = decode(p, read_typecode, "typecode")
            with p.context("key length"):
                length = p.read_compact_size()
            if typecode not in cls.ITEMS:
                raise p.invalid(f"unexpected typecode {int(typecode):#04x} in spending key")
            field, item, size = cls.ITEMS[typecode]
            if length != size:
                raise p.invalid(f"{field} key length must be {size}, got {length}")
            keys[field] = decode(p, item, field)
        return cls(**keys)


@dataclass(frozen=True)
class UnifiedKeystore(Versioned):
    """Spend (a unified spending key), view (a UFVK string), or empty."""

    kind: CapabilityKind
    spending_key: UnifiedSpendingKey | None = None
    viewing_key: str | None = None

    TYPE_NAME = "UnifiedKeystore"
    MAX_VERSION = 0

    @classmethod
    def parse(cls, p: Parser) -> "UnifiedKeystore":
        cls.read_version(p)
        with p.context("key_type"):
            key_type = p.read_u8()
        if key_type == KEY_TYPE_SPEND:
            with p.context("spending"):
                length = p.read_length()
                start = p.offset
                usk = decode_with_param(p, UnifiedSpendingKey, Era.ORCHARD, "data")
                if p.offset - start != length:
                    raise p.invalid(
                        f"spending key declared {length} bytes, used {p.offset - start}"
                    )
            return cls(CapabilityKind.SPEND, spending_key=usk)
        if key_type == KEY_TYPE_VIEW:
            with p.context("view"):
                return cls(CapabilityKind.VIEW, viewing_key=p.read_utf8_string())
        if key_type == KEY_TYPE_EMPTY:
            return cls(CapabilityKind.NONE)
        raise p.invalid(f"unknown unified keystore type {key_type}")


Keystore = Union[Version1Keystore, Version2Keystore, UnifiedKeystore]


# ═══════════════════════════════════════════════════════════════════
#  Wallet capability
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ReceiverSelection(Versioned):
    """Which receivers a derived unified address includes."""

    version: int
    orchard: bool
    sapling: bool
    transparent: bool

    TYPE_NAME = "ReceiverSelection"
    MAX_VERSION = 1

    @classmethod
    def parse(cls, p: Parser) -> "ReceiverSelection":
        version = cls.read_version(p)
        with p.context("receivers"):
            receivers = p.read_u8()
        return cls(
            version,
            orchard=bool(receivers & 0b001),
            sapling=bool(receivers & 0b010),
            transparent=bool(receivers & 0b100),
        )

    def receiver_types(self) -> tuple[str, ...]:
        names = (("orchard", self.orchard), ("sapling", self.sapling), ("p2pkh", self.transparent))
        return tuple(name for name, present in names if present)


@dataclass(frozen=True)
class WalletCapability(Versioned):
    version: int
    keystore: Keystore
    receiver_selections: tuple[ReceiverSelection, ...]
    rejection_address_count: int = 0

    TYPE_NAME = "WalletCapability"
    MAX_VERSION = 4

    KEYSTORES = {1: Version1Keystore, 2: Version2Keystore, 3: UnifiedKeystore, 4: UnifiedKeystore}

    @classmethod
    def parse(cls, p: Parser) -> "WalletCapability":
        version = cls.read_version(p)
        if version not in cls.KEYSTORES:
            raise p.invalid(f"unknown wallet capability version {version}")
        rejection_address_count = 0
        if version == 4:
            with p.context("length_of_rejection_addresses"):
                rejection_address_count = p.read_u32()
        keystore_type = cls.KEYSTORES[version]
        keystore = decode(p, keystore_type, keystore_type.TYPE_NAME)
        selections = decode_vec(p, ReceiverSelection, "receiver_selections")
        return cls(version, keystore, selections, rejection_address_count)


# ═══════════════════════════════════════════════════════════════════
#  Wallet file
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ZingoWallet(Versioned):
    external_version: int
    capability: WalletCapability
    trailing: bytes = b""

    TYPE_NAME = "ZingoWallet"
    MAX_VERSION = ZINGO_SERIALIZED_VERSION
    VERSION_WIDTH = "u64"

    @classmethod
    def parse(cls, p: Parser) -> "ZingoWallet":
        with p.context("external_version"):
            external_version = cls.read_version(p)
        capability = decode(p, WalletCapability, "wallet_capability")
        return cls(external_version, capability, p.rest())


def parse_zingo_wallet(data: bytes, limits: Mapping[str, int] | None = None) -> ZingoWallet:
    """Decode the key-bearing prefix of a zingo wallet file."""
    wallet = ZingoWallet.parse(Parser(data, limits))
    logger.debug(
        f"Decoded zingo wallet v{wallet.external_version}: capability "
        f"v{wallet.capability.version}, {len(wallet.capability.receiver_selections)} "
        f"receiver selections, {len(wallet.trailing)} opaque trailing bytes"
    )
    return wallet
