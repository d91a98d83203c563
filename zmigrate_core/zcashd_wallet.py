"""
Full-node (zcashd) wallet: record-stream container and decoded snapshot.

The node keeps its wallet in a Berkeley DB key/value file.  This module
consumes a flat export of that database:

    u32 record_count
    record_count * ( u32 key_len, key_bytes, u32 value_len, value_bytes )

Each key starts with a CompactSize-prefixed *keyname* (``"key"``,
``"sapzaddr"``, ``"tx"``, ...) followed by keyname-specific key data.
``ZcashdParser`` turns the records into a ``ZcashdWallet``; records with
keynames it does not interpret are kept verbatim in ``unparsed``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Mapping

from zmigrate_core.blob import U256, TxId
from zmigrate_core.parser import Parser, decode
from zmigrate_core.primitives import ClientVersion, Network, NetworkInfo
from zmigrate_core.sapling import (
    SaplingExtendedSpendingKey,
    SaplingIncomingViewingKey,
    SaplingZPaymentAddress,
)
from zmigrate_core.sprout import SproutPaymentAddress, SproutSpendingKey
from zmigrate_core.transaction import WalletTx
from zmigrate_core.transparent import PrivKey, PubKey
from zmigrate_core.zcashd_records import (
    Bip39Mnemonic,
    BlockLocator,
    KeyMetadata,
    KeyPoolEntry,
    MnemonicHDChain,
    RecipientAddress,
    RecipientMapping,
    UnifiedAccountMetadata,
    UnifiedAddressMetadata,
)

logger = logging.getLogger("zmigrate_zcashd")


# ═══════════════════════════════════════════════════════════════════
#  Record stream
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True, order=True)
class DBKey:
    keyname: str
    data: bytes = b""

    @classmethod
    def parse(cls, blob: bytes) -> "DBKey":
        p = Parser(blob)
        with p.context("keyname"):
            keyname = p.read_utf8_string()
        return cls(keyname, p.rest())

    def __str__(self) -> str:
        return f"{self.keyname}-{self.data.hex()}" if self.data else self.keyname


class ZcashdDump:
    """Records of a node-wallet export, indexed by key and by keyname."""

    def __init__(self, records: Mapping[DBKey, bytes]) -> None:
        self.records: dict[DBKey, bytes] = dict(records)
        by_name: dict[str, dict[DBKey, bytes]] = defaultdict(dict)
        for key, value in self.records.items():
            by_name[key.keyname][key] = value
        self.records_by_keyname = dict(by_name)

    @classmethod
    def parse(cls, data: bytes) -> "ZcashdDump":
        p = Parser(data)
        with p.context("record_count"):
            count = p.read_u32()
        records: dict[DBKey, bytes] = {}
        for index in range(count):
            with p.context(f"record {index}"):
                with p.context("key"):
                    key = DBKey.parse(p.read_var_bytes("u32"))
                with p.context("value"):
                    value = p.read_var_bytes("u32")
            if key in records:
                raise p.invalid(f"duplicate record key {key}")
            records[key] = value
        p.check_finished()
        return cls(records)

    def __len__(self) -> int:
        return len(self.records)

    def keynames(self) -> set[str]:
        return set(self.records_by_keyname)

    def records_for_keyname(self, keyname: str) -> dict[DBKey, bytes]:
        return self.records_by_keyname.get(keyname, {})

    def value_for_keyname(self, keyname: str) -> bytes | None:
        return self.records.get(DBKey(keyname))


# ═══════════════════════════════════════════════════════════════════
#  Snapshot
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransparentKey:
    pubkey: PubKey
    privkey: PrivKey
    metadata: KeyMetadata | None


@dataclass(frozen=True)
class SaplingKey:
    ivk: SaplingIncomingViewingKey
    key: SaplingExtendedSpendingKey
    metadata: KeyMetadata | None


@dataclass(frozen=True)
class SproutKey:
    address: SproutPaymentAddress
    spending_key: SproutSpendingKey
    metadata: KeyMetadata | None


@dataclass(frozen=True)
class UnifiedAccounts:
    account_metadata: dict[U256, UnifiedAccountMetadata] = field(default_factory=dict)
    address_metadata: tuple[UnifiedAddressMetadata, ...] = ()
    full_viewing_keys: dict[U256, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.account_metadata or self.address_metadata or self.full_viewing_keys)


@dataclass(frozen=True)
class ZcashdWallet:
    """Everything decoded from one node-wallet export."""

    client_version: ClientVersion | None = None
    min_version: ClientVersion | None = None
    network_info: NetworkInfo | None = None
    default_key: PubKey | None = None
    address_names: dict[str, str] = field(default_factory=dict)
    address_purposes: dict[str, str] = field(default_factory=dict)
    keys: dict[PubKey, TransparentKey] = field(default_factory=dict)
    key_pool: dict[int, KeyPoolEntry] = field(default_factory=dict)
    sapling_keys: dict[SaplingIncomingViewingKey, SaplingKey] = field(default_factory=dict)
    sapling_z_addresses: dict[SaplingZPaymentAddress, SaplingIncomingViewingKey] = field(default_factory=dict)
    sprout_keys: dict[SproutPaymentAddress, SproutKey] = field(default_factory=dict)
    hd_chain: MnemonicHDChain | None = None
    bip39_mnemonic: Bip39Mnemonic | None = None
    hd_seeds: dict[U256, bytes] = field(default_factory=dict)
    transactions: dict[TxId, WalletTx] = field(default_factory=dict)
    unified_accounts: UnifiedAccounts = field(default_factory=UnifiedAccounts)
    send_recipients: dict[TxId, tuple[RecipientMapping, ...]] = field(default_factory=dict)
    best_block: BlockLocator | None = None
    best_block_nomerkle: BlockLocator | None = None
    order_pos_next: int | None = None
    witness_cache_size: int | None = None
    unmapped: dict[DBKey, bytes] = field(default_factory=dict)
    unparsed: dict[DBKey, bytes] = field(default_factory=dict)

    def network(self, default: Network = Network.MAIN) -> Network:
        return self.network_info.network if self.network_info else default


# ═══════════════════════════════════════════════════════════════════
#  Record interpretation
# ═══════════════════════════════════════════════════════════════════

def _string(p: Parser) -> str:
    return p.read_utf8_string()


def _i64(p: Parser) -> int:
    return p.read_i64()


def _raw_seed(p: Parser) -> bytes:
    return p.read_var_bytes()


_string.TYPE_NAME = "string"  # type: ignore[attr-defined]


class ZcashdParser:
    """
    Interprets the records of a ``ZcashdDump``.

    Every record's key data and value are decoded completely; leftover
    bytes in either are an error.  The context chain of a failure starts
    with ``record <keyname>-<keyhex>``.
    """

    HANDLED = frozenset({
        "version", "minversion", "networkinfo", "defaultkey",
        "name", "purpose", "key", "keymeta", "pool",
        "sapzkey", "sapzkeymeta", "sapzaddr", "zkey", "zkeymeta",
        "hdchain", "mnemonicphrase", "hdseed", "tx",
        "unifiedaccount", "unifiedfvk", "unifiedaddrmeta", "recipientmapping",
        "bestblock", "bestblock_nomerkle", "orderposnext", "witnesscachesize",
    })

    # Decoded for validation, but with no canonical counterpart; kept raw.
    UNMAPPED = frozenset({
        "version", "minversion", "defaultkey", "pool", "hdchain",
        "bestblock", "bestblock_nomerkle", "orderposnext", "witnesscachesize",
    })

    def __init__(self, dump: ZcashdDump, limits: Mapping[str, int] | None = None) -> None:
        self.dump = dump
        self.limits = dict(limits or {})

    # ── helpers ────────────────────────────────────────────────────

    def _decode(self, key: DBKey, blob: bytes, item: Any, part: str) -> Any:
        p = Parser(blob, self.limits)
        with p.context(f"record {key}"), p.context(part):
            value = decode(p, item)
            p.check_finished()
        return value

    def _value(self, key: DBKey, item: Any) -> Any:
        return self._decode(key, self.dump.records[key], item, "value")

    def _key_data(self, key: DBKey, item: Any) -> Any:
        return self._decode(key, key.data, item, "key data")

    def _single(self, keyname: str, item: Any) -> Any:
        if self.dump.value_for_keyname(keyname) is None:
            return None
        return self._value(DBKey(keyname), item)

    def _each(self, keyname: str):
        return sorted(self.dump.records_for_keyname(keyname))

    # ── entry point ────────────────────────────────────────────────

    def parse(self) -> ZcashdWallet:
        wallet = ZcashdWallet(
            client_version=self._single("version", ClientVersion),
            min_version=self._single("minversion", ClientVersion),
            network_info=self._single("networkinfo", NetworkInfo),
            default_key=self._single("defaultkey", PubKey),
            address_names=self._strings("name"),
            address_purposes=self._strings("purpose"),
            keys=self._transparent_keys(),
            key_pool=self._key_pool(),
            sapling_keys=self._sapling_keys(),
            sapling_z_addresses=self._sapling_z_addresses(),
            sprout_keys=self._sprout_keys(),
            hd_chain=self._single("hdchain", MnemonicHDChain),
            bip39_mnemonic=self._mnemonic(),
            hd_seeds=self._hd_seeds(),
            transactions=self._transactions(),
            unified_accounts=self._unified_accounts(),
            send_recipients=self._recipient_mappings(),
            best_block=self._single("bestblock", BlockLocator),
            best_block_nomerkle=self._single("bestblock_nomerkle", BlockLocator),
            order_pos_next=self._single("orderposnext", _i64),
            witness_cache_size=self._single("witnesscachesize", _i64),
            unmapped={
                key: value
                for key, value in sorted(self.dump.records.items())
                if key.keyname in self.UNMAPPED
            },
            unparsed={
                key: value
                for key, value in sorted(self.dump.records.items())
                if key.keyname not in self.HANDLED
            },
        )
        logger.debug(
            f"Decoded zcashd wallet: {len(wallet.address_names)} names, "
            f"{len(wallet.keys)} keys, {len(wallet.sapling_z_addresses)} sapling addresses, "
            f"{len(wallet.transactions)} transactions, {len(wallet.unparsed)} unparsed records"
        )
        return wallet

    # ── per-keyname decoders ───────────────────────────────────────

    def _strings(self, keyname: str) -> dict[str, str]:
        return {
            self._key_data(key, _string): self._value(key, _string)
            for key in self._each(keyname)
        }

    def _metadata(self, keyname: str, data: bytes) -> KeyMetadata | None:
        key = DBKey(keyname, data)
        if key not in self.dump.records:
            return None
        return self._value(key, KeyMetadata)

    def _transparent_keys(self) -> dict[PubKey, TransparentKey]:
        keys = {}
        for key in self._each("key"):
            pubkey = self._key_data(key, PubKey)
            privkey = self._value(key, PrivKey)
            keys[pubkey] = TransparentKey(pubkey, privkey, self._metadata("keymeta", key.data))
        return keys

    def _key_pool(self) -> dict[int, KeyPoolEntry]:
        return {
            self._key_data(key, _i64): self._value(key, KeyPoolEntry)
            for key in self._each("pool")
        }

    def _sapling_keys(self) -> dict[SaplingIncomingViewingKey, SaplingKey]:
        keys = {}
        for key in self._each("sapzkey"):
            ivk = self._key_data(key, SaplingIncomingViewingKey)
            extsk = self._value(key, SaplingExtendedSpendingKey)
            keys[ivk] = SaplingKey(ivk, extsk, self._metadata("sapzkeymeta", key.data))
        return keys

    def _sapling_z_addresses(self) -> dict[SaplingZPaymentAddress, SaplingIncomingViewingKey]:
        return {
            self._key_data(key, SaplingZPaymentAddress): self._value(key, SaplingIncomingViewingKey)
            for key in self._each("sapzaddr")
        }

    def _sprout_keys(self) -> dict[SproutPaymentAddress, SproutKey]:
        keys = {}
        for key in self._each("zkey"):
            address = self._key_data(key, SproutPaymentAddress)
            spending_key = self._value(key, SproutSpendingKey)
            keys[address] = SproutKey(address, spending_key, self._metadata("zkeymeta", key.data))
        return keys

    def _mnemonic(self) -> Bip39Mnemonic | None:
        records = self._each("mnemonicphrase")
        if not records:
            return None
        if len(records) > 1:
            raise self._invalid(records[1], "more than one mnemonic phrase")
        key = records[0]
        self._key_data(key, U256)
        return self._value(key, Bip39Mnemonic)

    def _hd_seeds(self) -> dict[U256, bytes]:
        return {
            self._key_data(key, U256): self._value(key, _raw_seed)
            for key in self._each("hdseed")
        }

    def _transactions(self) -> dict[TxId, WalletTx]:
        return {
            self._key_data(key, TxId): self._value(key, WalletTx)
            for key in self._each("tx")
        }

    def _unified_accounts(self) -> UnifiedAccounts:
        accounts = {}
        for key in self._each("unifiedaccount"):
            self._expect_zero(key)
            meta = self._key_data(key, UnifiedAccountMetadata)
            accounts[meta.key_id] = meta
        addresses = []
        for key in self._each("unifiedaddrmeta"):
            self._expect_zero(key)
            addresses.append(self._key_data(key, UnifiedAddressMetadata))
        fvks = {
            self._key_data(key, U256): self._value(key, _string)
            for key in self._each("unifiedfvk")
        }
        return UnifiedAccounts(accounts, tuple(addresses), fvks)

    def _recipient_mappings(self) -> dict[TxId, tuple[RecipientMapping, ...]]:
        mappings: dict[TxId, list[RecipientMapping]] = defaultdict(list)
        for key in self._each("recipientmapping"):
            txid, recipient = self._key_data(key, _txid_recipient)
            unified = self._value(key, _string)
            mappings[txid].append(RecipientMapping(txid, recipient, unified))
        return {txid: tuple(items) for txid, items in mappings.items()}

    def _expect_zero(self, key: DBKey) -> None:
        if any(self.dump.records[key]):
            raise self._invalid(key, "unified metadata record value must be zero")

    def _invalid(self, key: DBKey, reason: str):
        p = Parser(b"")
        p.push_context(f"record {key}")
        return p.invalid(reason)


def _txid_recipient(p: Parser) -> tuple[TxId, RecipientAddress]:
    return decode(p, TxId, "txid"), decode(p, RecipientAddress, "recipient")


def parse_zcashd_wallet(data: bytes, limits: Mapping[str, int] | None = None) -> ZcashdWallet:
    """Decode a node-wallet record stream into a ``ZcashdWallet``."""
    dump = ZcashdDump.parse(data)
    logger.debug(f"Read {len(dump)} records with {len(dump.keynames())} keynames")
    return ZcashdParser(dump, limits).parse()
