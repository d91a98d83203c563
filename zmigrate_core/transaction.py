"""
Transactions and the node wallet's per-transaction record (``CWalletTx``).

The transaction layout branches on the header parsed first:

    v1..v4  header vin vout lock_time [expiry] [sapling] [joinsplits] [binding_sig]
    v5      header branch_id lock_time expiry vin vout sapling orchard

Sapling bundles and joinsplits are parameterized decodes; the version
(or the Groth flag derived from it) is threaded in from here.
"""

from __future__ import annotations

from dataclasses import dataclass

from zmigrate_core.blob import U256, TxId
from zmigrate_core.orchard import OrchardBundle, OrchardTxMeta
from zmigrate_core.parser import (
    Parser,
    decode,
    decode_map,
    decode_vec,
    decode_with_param,
)
from zmigrate_core.primitives import BRANCH_IDS, TxVersion, TxVersionGroup, nonzero
from zmigrate_core.sapling import RedJubjubSignature, SaplingBundle, SaplingNoteData, SaplingOutPoint
from zmigrate_core.sprout import JoinSplits, JSOutPoint, SproutNoteData
from zmigrate_core.transparent import TxIn, TxOut


@dataclass(frozen=True)
class Transaction:
    version: TxVersion
    consensus_branch_id: int | None
    vin: tuple[TxIn, ...]
    vout: tuple[TxOut, ...]
    lock_time: int
    expiry_height: int | None
    sapling_bundle: SaplingBundle
    orchard_bundle: OrchardBundle | None
    join_splits: JoinSplits | None
    raw: bytes

    TYPE_NAME = "Transaction"

    @classmethod
    def parse(cls, p: Parser) -> "Transaction":
        start = p.offset
        window = p.peek_rest()
        version = decode(p, TxVersion, "version")
        if version.group is TxVersionGroup.FUTURE:
            raise p.invalid("zfuture transactions are not supported")
        if version.is_v5():
            fields = cls._parse_v5(p, version)
        else:
            fields = cls._parse_v4(p, version)
        return cls(version=version, raw=window[:p.offset - start], **fields)

    @staticmethod
    def _parse_v4(p: Parser, version: TxVersion) -> dict:
        vin = decode_vec(p, TxIn, "vin")
        vout = decode_vec(p, TxOut, "vout")
        with p.context("lock_time"):
            lock_time = p.read_u32()
        expiry_height = None
        if version.overwintered:
            with p.context("expiry_height"):
                expiry_height = nonzero(p.read_u32())
        sapling = SaplingBundle.empty()
        if version.is_sapling_v4():
            sapling = decode_with_param(p, SaplingBundle, version, "sapling_bundle")
        join_splits = None
        if version.number >= 2:
            join_splits = decode_with_param(p, JoinSplits, version.uses_groth(), "join_splits")
        if version.is_sapling_v4() and sapling.has_actions():
            sapling = sapling.with_binding_sig(decode(p, RedJubjubSignature, "binding_sig"))
        return dict(
            consensus_branch_id=None,
            vin=vin,
            vout=vout,
            lock_time=lock_time,
            expiry_height=expiry_height,
            sapling_bundle=sapling,
            orchard_bundle=None,
            join_splits=join_splits,
        )

    @staticmethod
    def _parse_v5(p: Parser, version: TxVersion) -> dict:
        with p.context("consensus_branch_id"):
            branch_id = p.read_u32()
            if branch_id not in BRANCH_IDS:
                raise p.invalid(f"unrecognized consensus branch id {branch_id:#010x}")
        with p.context("lock_time"):
            lock_time = p.read_u32()
        with p.context("expiry_height"):
            expiry_height = nonzero(p.read_u32())
        vin = decode_vec(p, TxIn, "vin")
        vout = decode_vec(p, TxOut, "vout")
        sapling = decode_with_param(p, SaplingBundle, version, "sapling_bundle")
        orchard = decode(p, OrchardBundle, "orchard_bundle")
        return dict(
            consensus_branch_id=branch_id,
            vin=vin,
            vout=vout,
            lock_time=lock_time,
            expiry_height=expiry_height,
            sapling_bundle=sapling,
            orchard_bundle=orchard,
            join_splits=None,
        )


def _string_pair(p: Parser) -> tuple[str, str]:
    return p.read_utf8_string(), p.read_utf8_string()


def _utf8(p: Parser) -> str:
    return p.read_utf8_string()


_utf8.TYPE_NAME = "string"  # type: ignore[attr-defined]
_string_pair.TYPE_NAME = "pair<string, string>"  # type: ignore[attr-defined]


@dataclass(frozen=True)
class WalletTx:
    """A transaction as the node wallet stores it, with its wallet-side metadata."""

    transaction: Transaction
    hash_block: U256
    merkle_branch: tuple[U256, ...]
    index: int
    map_value: dict[str, str]
    sprout_note_data: dict[JSOutPoint, SproutNoteData]
    order_form: tuple[tuple[str, str], ...]
    time_received_is_tx_time: int
    time_received: int
    from_me: bool
    spent: bool
    sapling_note_data: dict[SaplingOutPoint, SaplingNoteData] | None
    orchard_tx_meta: OrchardTxMeta | None

    TYPE_NAME = "WalletTx"

    @classmethod
    def parse(cls, p: Parser) -> "WalletTx":
        transaction = decode(p, Transaction, "transaction")
        hash_block = decode(p, U256, "hashBlock")
        merkle_branch = decode_vec(p, U256, "vMerkleBranch")
        with p.context("nIndex"):
            index = p.read_i32()
        unused = decode_vec(p, Transaction, "vUnused")
        if unused:
            raise p.invalid(f"vUnused must be empty, found {len(unused)} entries")
        map_value = decode_map(p, _utf8, _utf8, "mapValue")
        sprout_note_data = decode_map(p, JSOutPoint, SproutNoteData, "mapSproutNoteData")
        order_form = decode_vec(p, _string_pair, "vOrderForm")
        with p.context("fTimeReceivedIsTxTime"):
            time_received_is_tx_time = p.read_u32()
        with p.context("nTimeReceived"):
            time_received = p.read_u32()
        with p.context("fFromMe"):
            from_me = p.read_bool()
        with p.context("fSpent"):
            spent = p.read_bool()

        version = transaction.version
        sapling_note_data = None
        if version.overwintered and version.number >= 4:
            sapling_note_data = decode_map(
                p, SaplingOutPoint, SaplingNoteData, "mapSaplingNoteData"
            )
        orchard_tx_meta = None
        if version.is_v5():
            orchard_tx_meta = decode(p, OrchardTxMeta, "orchard_tx_meta")

        return cls(
            transaction=transaction,
            hash_block=hash_block,
            merkle_branch=merkle_branch,
            index=index,
            map_value=map_value,
            sprout_note_data=sprout_note_data,
            order_form=order_form,
            time_received_is_tx_time=time_received_is_tx_time,
            time_received=time_received,
            from_me=from_me,
            spent=spent,
            sapling_note_data=sapling_note_data,
            orchard_tx_meta=orchard_tx_meta,
        )
