"""
ZecWallet Lite (ZWL) records that follow the keys in a wallet file.

Layouts (every integer little-endian; ``vec`` is a compact-size count,
``opt`` a 0/1 presence byte)::

    CompactBlockData  i32 height, [32] hash, tree, u64 version, vec<u8> ecb
    WalletTxns        u64 version (<= 21), vec<([32] txid, WalletTx)>,
                      mempool vec<([32] txid, WalletTx)> (version <= 20)
    WalletTx          u64 version (<= 23) ... see ``WalletTx.parse``
    Utxo              u64 version (<= 3), i32-length address, ...
    WalletOptions     u64 version, u8 download_memos, i64 spam_threshold
    WalletZecPriceInfo u64 version (<= 20), opt<u64>, u64 retry count

Trees and witnesses come from the light-client library, whose parent
list carries its own count (``CommitmentTree.parse_counted``).  The
Orchard note positions are tracked by a bridge tree, decoded here as
plain data; it is never rebuilt or checked for consistency.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from zmigrate_core.blob import Blob, U256, TxId
from zmigrate_core.merkle_tree import SAPLING_DEPTH, CommitmentTree, Witness
from zmigrate_core.orchard import OrchardFullViewingKey, OrchardRawAddress
from zmigrate_core.parser import Parser, decode, decode_optional, decode_vec
from zmigrate_core.sapling import SaplingDiversifier, SaplingExtendedFullViewingKey
from zmigrate_core.versioned import Versioned

# Bridges written by this serialization version are the only ones understood.
BRIDGE_SER_V1 = 1


class Memo(Blob):
    SIZE = 512


def read_u64_string(p: Parser) -> str:
    return p.read_utf8_string("u64")


read_u64_string.TYPE_NAME = "string"  # type: ignore[attr-defined]


def read_spent(p: Parser) -> tuple[TxId, int]:
    """Spending transaction and the height it was mined or broadcast at."""
    txid = decode(p, TxId, "txid")
    with p.context("height"):
        return txid, p.read_u32()


read_spent.TYPE_NAME = "(TxId, u32)"  # type: ignore[attr-defined]


def _flag(p: Parser, label: str) -> bool:
    with p.context(label):
        return p.read_u8() > 0


def _u64(p: Parser, label: str) -> int:
    with p.context(label):
        return p.read_u64()


# ═══════════════════════════════════════════════════════════════════
#  Blocks
# ═══════════════════════════════════════════════════════════════════

def sapling_tree_counted(p: Parser) -> CommitmentTree:
    return CommitmentTree.parse_counted(p, SAPLING_DEPTH)


sapling_tree_counted.TYPE_NAME = "CommitmentTree"  # type: ignore[attr-defined]


def sapling_witness_counted(p: Parser) -> Witness:
    return Witness.parse_counted(p, SAPLING_DEPTH)


sapling_witness_counted.TYPE_NAME = "Witness"  # type: ignore[attr-defined]


@dataclass(frozen=True)
class CompactBlockData:
    height: int
    hash: U256
    tree: CommitmentTree | None
    version: int
    ecb: bytes

    TYPE_NAME = "CompactBlockData"

    @classmethod
    def parse(cls, p: Parser) -> "CompactBlockData":
        with p.context("height"):
            height = p.read_i32()
        block_hash = decode(p, U256, "hash")
        tree = decode(p, sapling_tree_counted, "tree")
        version = _u64(p, "version")
        with p.context("ecb"):
            ecb = p.read_var_bytes()
        # An empty tree is written as a placeholder.
        return cls(height, block_hash, tree if tree.size() else None, version, ecb)


# ═══════════════════════════════════════════════════════════════════
#  Notes
# ═══════════════════════════════════════════════════════════════════

class NoteType(IntEnum):
    BEFORE_ZIP212 = 1
    AFTER_ZIP212 = 2


@dataclass(frozen=True)
class SaplingNote(Versioned):
    """One received Sapling note with the witnesses kept for recent blocks."""

    version: int
    account: int | None
    extfvk: SaplingExtendedFullViewingKey
    diversifier: SaplingDiversifier
    value: int
    note_type: NoteType
    rseed: U256
    witnesses: tuple[Witness, ...]
    top_height: int
    nullifier: U256
    spent: tuple[TxId, int] | None
    unconfirmed_spent: tuple[TxId, int] | None
    memo: Memo | None
    is_change: bool
    have_spending_key: bool

    TYPE_NAME = "SaplingNote"
    MAX_VERSION = 20
    VERSION_WIDTH = "u64"

    @classmethod
    def parse(cls, p: Parser) -> "SaplingNote":
        version = cls.read_version(p)
        account = _u64(p, "account") if version <= 5 else None
        extfvk = decode(p, SaplingExtendedFullViewingKey, "extfvk")
        diversifier = decode(p, SaplingDiversifier, "diversifier")
        value = _u64(p, "value")
        if version <= 3:
            note_type = NoteType.BEFORE_ZIP212
        else:
            with p.context("note_type"):
                raw = p.read_u8()
                try:
                    note_type = NoteType(raw)
                except ValueError as exc:
                    raise p.invalid(f"bad note type {raw}") from exc
        rseed = decode(p, U256, "rseed")
        witnesses = decode_vec(p, sapling_witness_counted, "witnesses")
        top_height = _u64(p, "top_height") if version >= 20 else 0
        nullifier = decode(p, U256, "nullifier")
        spent = cls._parse_spent(p, version)
        unconfirmed_spent = None
        if version > 4:
            unconfirmed_spent = decode_optional(p, read_spent, "unconfirmed_spent")
        memo = decode_optional(p, Memo, "memo")
        is_change = _flag(p, "is_change")
        have_spending_key = _flag(p, "have_spending_key") if version > 2 else True
        return cls(
            version, account, extfvk, diversifier, value, note_type, rseed,
            witnesses, top_height, nullifier, spent, unconfirmed_spent, memo,
            is_change, have_spending_key,
        )

    @staticmethod
    def _parse_spent(p: Parser, version: int) -> tuple[TxId, int] | None:
        if version > 5:
            return decode_optional(p, read_spent, "spent")
        txid = decode_optional(p, TxId, "spent")
        height = None
        if version >= 2:
            height = decode_optional(p, Parser.read_i32, "spent_at_height")
        # Only a pair with both halves counts as spent.
        if txid is None or height is None:
            return None
        return txid, height


@dataclass(frozen=True)
class OrchardNote(Versioned):
    version: int
    fvk: OrchardFullViewingKey
    address: OrchardRawAddress
    value: int
    rho: U256
    rseed: U256
    witness_position: int | None
    spent: tuple[TxId, int] | None
    unconfirmed_spent: tuple[TxId, int] | None
    memo: Memo | None
    is_change: bool
    have_spending_key: bool

    TYPE_NAME = "OrchardNote"
    MAX_VERSION = 22
    VERSION_WIDTH = "u64"

    @classmethod
    def parse(cls, p: Parser) -> "OrchardNote":
        version = cls.read_version(p)
        fvk = decode(p, OrchardFullViewingKey, "fvk")
        address = decode(p, OrchardRawAddress, "address")
        value = _u64(p, "value")
        rho = decode(p, U256, "rho")
        rseed = decode(p, U256, "rseed")
        witness_position = decode_optional(p, Parser.read_u64, "witness_position")
        spent = decode_optional(p, read_spent, "spent")
        unconfirmed_spent = decode_optional(p, read_spent, "unconfirmed_spent")
        memo = decode_optional(p, Memo, "memo")
        return cls(
            version, fvk, address, value, rho, rseed, witness_position, spent,
            unconfirmed_spent, memo, _flag(p, "is_change"), _flag(p, "have_spending_key"),
        )


# ═══════════════════════════════════════════════════════════════════
#  Transactions
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Utxo(Versioned):
    version: int
    address: str
    txid: TxId
    output_index: int
    value: int
    height: int
    script: bytes
    spent: TxId | None
    spent_at_height: int | None
    unconfirmed_spent: tuple[TxId, int] | None

    TYPE_NAME = "Utxo"
    MAX_VERSION = 3
    VERSION_WIDTH = "u64"

    @classmethod
    def parse(cls, p: Parser) -> "Utxo":
        version = cls.read_version(p)
        with p.context("address"):
            length = p.read_i32()
            if length < 0:
                raise p.invalid(f"negative address length {length}")
            raw = p.next(length)
            try:
                address = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise p.invalid(f"malformed UTF-8 at byte {exc.start}") from exc
            if not address.startswith("t"):
                raise p.invalid(f"expected a transparent address, got {address!r}")
        txid = decode(p, TxId, "txid")
        output_index = _u64(p, "output_index")
        value = _u64(p, "value")
        with p.context("height"):
            height = p.read_i32()
        with p.context("script"):
            script = p.read_var_bytes()
        spent = decode_optional(p, TxId, "spent")
        spent_at_height = None
        if version > 1:
            spent_at_height = decode_optional(p, Parser.read_i32, "spent_at_height")
        unconfirmed_spent = None
        if version > 2:
            unconfirmed_spent = decode_optional(p, read_spent, "unconfirmed_spent")
        return cls(
            version, address, txid, output_index, value, height, script, spent,
            spent_at_height, unconfirmed_spent,
        )


@dataclass(frozen=True)
class OutgoingTxMetadata:
    address: str
    value: int
    memo: Memo

    TYPE_NAME = "OutgoingTxMetadata"

    @classmethod
    def parse(cls, p: Parser) -> "OutgoingTxMetadata":
        address = decode(p, read_u64_string, "address")
        return cls(address, _u64(p, "value"), decode(p, Memo, "memo"))


@dataclass(frozen=True)
class WalletTx(Versioned):
    version: int
    block: int
    unconfirmed: bool
    datetime: int
    txid: TxId
    sapling_notes: tuple[SaplingNote, ...]
    utxos: tuple[Utxo, ...]
    total_orchard_value_spent: int
    total_sapling_value_spent: int
    total_transparent_value_spent: int
    outgoing_metadata: tuple[OutgoingTxMetadata, ...]
    full_tx_scanned: bool
    zec_price: float | None
    sapling_spent_nullifiers: tuple[U256, ...]
    orchard_notes: tuple[OrchardNote, ...]
    orchard_spent_nullifiers: tuple[U256, ...]

    TYPE_NAME = "WalletTx"
    MAX_VERSION = 23
    VERSION_WIDTH = "u64"

    @classmethod
    def parse(cls, p: Parser) -> "WalletTx":
        version = cls.read_version(p)
        with p.context("block"):
            block = p.read_i32()
        unconfirmed = False
        if version > 20:
            with p.context("unconfirmed"):
                unconfirmed = p.read_u8() == 1
        datetime = _u64(p, "datetime") if version >= 4 else 0
        txid = decode(p, TxId, "txid")
        sapling_notes = decode_vec(p, SaplingNote, "s_notes")
        utxos = decode_vec(p, Utxo, "utxos")
        orchard_spent = _u64(p, "total_orchard_value_spent") if version > 22 else 0
        sapling_spent = _u64(p, "total_sapling_value_spent")
        transparent_spent = _u64(p, "total_transparent_value_spent")
        outgoing = decode_vec(p, OutgoingTxMetadata, "outgoing_metadata")
        full_tx_scanned = _flag(p, "full_tx_scanned")
        zec_price = None
        if version > 4:
            zec_price = decode_optional(p, Parser.read_f64, "zec_price")
        s_spent: tuple[U256, ...] = ()
        if version > 5:
            s_spent = decode_vec(p, U256, "s_spent_nullifiers")
        orchard_notes: tuple[OrchardNote, ...] = ()
        o_spent: tuple[U256, ...] = ()
        if version > 21:
            orchard_notes = decode_vec(p, OrchardNote, "o_notes")
            o_spent = decode_vec(p, U256, "o_spent_nullifiers")
        return cls(
            version, block, unconfirmed, datetime, txid, sapling_notes, utxos,
            orchard_spent, sapling_spent, transparent_spent, outgoing,
            full_tx_scanned, zec_price, s_spent, orchard_notes, o_spent,
        )

    def received_value(self) -> int:
        notes = sum(n.value for n in self.sapling_notes) + sum(n.value for n in self.orchard_notes)
        return notes + sum(u.value for u in self.utxos)


def _txid_and_tx(p: Parser) -> tuple[TxId, WalletTx]:
    txid = decode(p, TxId, "txid")
    return txid, decode(p, WalletTx, "wtx")


_txid_and_tx.TYPE_NAME = "(TxId, WalletTx)"  # type: ignore[attr-defined]


@dataclass(frozen=True)
class WalletTxns(Versioned):
    """
    Transactions keyed by txid.  Files up to external version 14 store
    the map without a version tag; ``version`` is then ``None``.
    """

    version: int | None
    current: dict[TxId, WalletTx]
    mempool: dict[TxId, WalletTx]

    TYPE_NAME = "WalletTxns"
    MAX_VERSION = 21
    VERSION_WIDTH = "u64"

    @classmethod
    def parse(cls, p: Parser) -> "WalletTxns":
        version = cls.read_version(p)
        current = dict(decode_vec(p, _txid_and_tx, "current"))
        mempool: dict[TxId, WalletTx] = {}
        if version <= 20:
            mempool = dict(decode_vec(p, _txid_and_tx, "mempool"))
        return cls(version, current, mempool)

    @classmethod
    def parse_old(cls, p: Parser) -> "WalletTxns":
        return cls(None, dict(decode_vec(p, _txid_and_tx, "current")), {})

    def last_txid(self) -> TxId | None:
        """Transaction in the highest block; the first one seen wins a tie."""
        best: WalletTx | None = None
        for wtx in self.current.values():
            if best is None or wtx.block > best.block:
                best = wtx
        return best.txid if best is not None else None


# ═══════════════════════════════════════════════════════════════════
#  Options and price
# ═══════════════════════════════════════════════════════════════════

class MemoDownloadOption(IntEnum):
    NO_MEMOS = 0
    WALLET_MEMOS = 1
    ALL_MEMOS = 2


@dataclass(frozen=True)
class WalletOptions(Versioned):
    version: int
    download_memos: MemoDownloadOption = MemoDownloadOption.WALLET_MEMOS
    spam_threshold: int = -1

    TYPE_NAME = "WalletOptions"
    MAX_VERSION = 2
    VERSION_WIDTH = "u64"

    @classmethod
    def parse(cls, p: Parser) -> "WalletOptions":
        version = cls.read_version(p)
        with p.context("download_memos"):
            raw = p.read_u8()
            try:
                download_memos = MemoDownloadOption(raw)
            except ValueError as exc:
                raise p.invalid(f"bad download option {raw}") from exc
        spam_threshold = -1
        if version > 1:
            with p.context("spam_threshold"):
                spam_threshold = p.read_i64()
        return cls(version, download_memos, spam_threshold)


@dataclass(frozen=True)
class WalletZecPriceInfo(Versioned):
    """Only the historical-price bookkeeping is stored; prices are refetched."""

    version: int
    last_historical_prices_fetched_at: int | None
    historical_prices_retry_count: int

    TYPE_NAME = "WalletZecPriceInfo"
    MAX_VERSION = 20
    VERSION_WIDTH = "u64"

    @classmethod
    def parse(cls, p: Parser) -> "WalletZecPriceInfo":
        version = cls.read_version(p)
        fetched_at = decode_optional(p, Parser.read_u64, "last_historical_prices_fetched_at")
        return cls(version, fetched_at, _u64(p, "historical_prices_retry_count"))


# ═══════════════════════════════════════════════════════════════════
#  Orchard bridge tree
# ═══════════════════════════════════════════════════════════════════

def read_position(p: Parser) -> int:
    return p.read_u64()


read_position.TYPE_NAME = "Position"  # type: ignore[attr-defined]


def _position_pair(p: Parser) -> tuple[int, int]:
    position = decode(p, read_position, "position")
    with p.context("value"):
        return position, p.read_u64()


_position_pair.TYPE_NAME = "(Position, u64)"  # type: ignore[attr-defined]


@dataclass(frozen=True)
class NonEmptyFrontier:
    position: int
    left: U256
    right: U256 | None
    ommers: tuple[U256, ...]

    TYPE_NAME = "NonEmptyFrontier"

    @classmethod
    def parse(cls, p: Parser) -> "NonEmptyFrontier":
        position = decode(p, read_position, "position")
        left = decode(p, U256, "left")
        right = decode_optional(p, U256, "right")
        return cls(position, left, right, decode_vec(p, U256, "ommers"))


@dataclass(frozen=True)
class AuthFragment:
    position: int
    alts_observed: int
    values: tuple[U256, ...]

    TYPE_NAME = "AuthFragment"

    @classmethod
    def parse(cls, p: Parser) -> "AuthFragment":
        position = decode(p, read_position, "position")
        alts_observed = _u64(p, "alts_observed")
        return cls(position, alts_observed, decode_vec(p, U256, "values"))


def _fragment_entry(p: Parser) -> tuple[int, AuthFragment]:
    position = decode(p, read_position, "position")
    return position, decode(p, AuthFragment, "fragment")


_fragment_entry.TYPE_NAME = "(Position, AuthFragment)"  # type: ignore[attr-defined]


@dataclass(frozen=True)
class MerkleBridge:
    prior_position: int | None
    auth_fragments: dict[int, AuthFragment]
    frontier: NonEmptyFrontier

    TYPE_NAME = "MerkleBridge"

    @classmethod
    def parse(cls, p: Parser) -> "MerkleBridge":
        with p.context("serialization_version"):
            flag = p.read_u8()
            if flag != BRIDGE_SER_V1:
                raise p.invalid(f"unrecognized serialization version {flag}")
        prior_position = decode_optional(p, read_position, "prior_position")
        fragments = dict(decode_vec(p, _fragment_entry, "auth_fragments"))
        return cls(prior_position, fragments, decode(p, NonEmptyFrontier, "frontier"))


@dataclass(frozen=True)
class Checkpoint:
    bridges_len: int
    is_witnessed: bool
    marked: tuple[int, ...]
    forgotten: dict[int, int]

    TYPE_NAME = "Checkpoint"

    @classmethod
    def parse(cls, p: Parser) -> "Checkpoint":
        bridges_len = _u64(p, "bridges_len")
        with p.context("is_witnessed"):
            is_witnessed = p.read_u8() == 1
        marked = decode_vec(p, read_position, "marked")
        forgotten = dict(decode_vec(p, _position_pair, "forgotten"))
        return cls(bridges_len, is_witnessed, marked, forgotten)


@dataclass(frozen=True)
class BridgeTree:
    version: int
    prior_bridges: tuple[MerkleBridge, ...]
    current_bridge: MerkleBridge | None
    saved: dict[int, int]
    checkpoints: tuple[Checkpoint, ...]
    max_checkpoints: int

    TYPE_NAME = "BridgeTree"

    @classmethod
    def parse(cls, p: Parser) -> "BridgeTree":
        version = _u64(p, "version")
        prior_bridges = decode_vec(p, MerkleBridge, "prior_bridges")
        current_bridge = decode_optional(p, MerkleBridge, "current_bridge")
        saved = dict(decode_vec(p, _position_pair, "saved"))
        checkpoints = decode_vec(p, Checkpoint, "checkpoints")
        return cls(
            version, prior_bridges, current_bridge, saved, checkpoints,
            _u64(p, "max_checkpoints"),
        )

    def marked_positions(self) -> list[int]:
        return sorted(self.saved)
