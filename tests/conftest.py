"""
Shared pytest fixtures for the zmigrate test suite.
"""

from __future__ import annotations

import logging

import pytest

from zmigrate_core.blob import U256, TxId
from zmigrate_core.config import MigrationConfig
from zmigrate_core.crypto_utils import hash160
from zmigrate_core.parser import Writer
from zmigrate_core.primitives import (
    SAPLING_VERSION_GROUP_ID,
    ZIP225_VERSION_GROUP_ID,
    Network,
)
from zmigrate_core.transparent import KeyId
from zmigrate_core.zcashd_wallet import parse_zcashd_wallet


def compact_string(s: str) -> bytes:
    return Writer().write_utf8_string(s).to_bytes()


def zcashd_stream(records) -> bytes:
    """u32 count, then (u32 key_len, key, u32 value_len, value) per record."""
    w = Writer().write_u32(len(records))
    for keyname, key_data, value in records:
        w.write_var_bytes(compact_string(keyname) + key_data, "u32")
        w.write_var_bytes(value, "u32")
    return w.to_bytes()


def p2pkh_script(key_hash: bytes) -> bytes:
    return bytes([0x76, 0xA9, 20]) + key_hash + bytes([0x88, 0xAC])


def transparent_tx(outputs, inputs=()) -> bytes:
    """Version-1 transaction: vin, vout, lock_time."""
    w = Writer().write_u32(1)
    w.write_compact_size(len(inputs))
    for prev_txid, prev_index, script_sig in inputs:
        w.write_bytes(prev_txid).write_u32(prev_index)
        w.write_var_bytes(script_sig).write_u32(0xFFFFFFFF)
    w.write_compact_size(len(outputs))
    for value, script in outputs:
        w.write_i64(value).write_var_bytes(script)
    return w.write_u32(0).to_bytes()


def wallet_tx(raw_tx: bytes, from_me: bool = False, map_value=()) -> bytes:
    """A ``CWalletTx`` record around a pre-overwinter transaction."""
    w = Writer().write_bytes(raw_tx)
    w.write_bytes(bytes(32))                 # hashBlock
    w.write_compact_size(0)                  # vMerkleBranch
    w.write_i32(-1)                          # nIndex
    w.write_compact_size(0)                  # vUnused
    w.write_compact_size(len(map_value))
    for key, value in map_value:
        w.write_utf8_string(key).write_utf8_string(value)
    w.write_compact_size(0)                  # mapSproutNoteData
    w.write_compact_size(0)                  # vOrderForm
    w.write_u32(0).write_u32(1_600_000_000)
    return w.write_bool(from_me).write_bool(False).to_bytes()


def joinsplit(proof: bytes, vpub_old: int = 0, vpub_new: int = 0) -> bytes:
    """One ``JSDescription`` with zero hashes around *proof*."""
    w = Writer().write_i64(vpub_old).write_i64(vpub_new)
    w.write_bytes(bytes(32))                 # anchor
    w.write_bytes(bytes(64))                 # nullifiers
    w.write_bytes(bytes(64))                 # commitments
    w.write_bytes(bytes(32) + bytes(32))     # ephemeral key, random seed
    w.write_bytes(bytes(64))                 # macs
    w.write_bytes(proof)
    return w.write_bytes(bytes(2 * 601)).to_bytes()


OUTPUT_V4 = b"\x02" * 96 + bytes(580) + bytes(80) + bytes(192)


def overwintered(number: int, group_id: int) -> Writer:
    return Writer().write_u32(0x80000000 | number).write_u32(group_id)


def sapling_v4_tx(outputs: int = 0, joinsplits: bytes = b"\x00") -> bytes:
    w = overwintered(4, SAPLING_VERSION_GROUP_ID)
    w.write_compact_size(0).write_compact_size(0)     # vin, vout
    w.write_u32(0).write_u32(2_000_000)               # lock time, expiry
    w.write_i64(0).write_compact_size(0)              # value balance, spends
    w.write_compact_size(outputs)
    for _ in range(outputs):
        w.write_bytes(OUTPUT_V4)
    w.write_bytes(joinsplits)
    if outputs:
        w.write_bytes(b"\x0e" * 64)
    return w.to_bytes()


def v5_tx(branch_id: int = 0xC2D6D0B4) -> bytes:
    w = overwintered(5, ZIP225_VERSION_GROUP_ID)
    w.write_u32(branch_id).write_u32(0).write_u32(0)
    w.write_compact_size(0).write_compact_size(0)     # vin, vout
    w.write_compact_size(0).write_compact_size(0)     # sapling spends, outputs
    return w.write_compact_size(0).to_bytes()         # orchard actions


GROTH = bytes(192)
PHGR = bytes(296)
PUBKEY = bytes.fromhex("02" + "11" * 32)
PRIVKEY = bytes(214)


@pytest.fixture
def record_stream():
    """Builder for zcashd record streams: ``record_stream([(keyname, key, value), ...])``."""
    return zcashd_stream


@pytest.fixture
def t1_example_stream():
    """One ``name`` record naming the transparent address t1Example."""
    return zcashd_stream([
        ("name", compact_string("t1Example"), compact_string("My Address")),
    ])


@pytest.fixture
def transparent_address():
    return hash160_address(PUBKEY)


def hash160_address(pubkey: bytes, network: Network = Network.MAIN) -> str:
    return KeyId(hash160(pubkey)).to_address(network)


@pytest.fixture
def txid():
    return TxId(bytes(range(32)))


@pytest.fixture
def small_wallet_bytes(txid):
    """
    Node wallet with one named, keyed transparent address and one
    transaction paying to it.
    """
    address = hash160_address(PUBKEY)
    key_hash = hash160(PUBKEY)
    raw_tx = transparent_tx([(50_000, p2pkh_script(key_hash))])
    pubkey_blob = Writer().write_var_bytes(PUBKEY).to_bytes()
    privkey_blob = Writer().write_var_bytes(PRIVKEY).write_bytes(bytes(32)).to_bytes()
    return zcashd_stream([
        ("networkinfo", b"", compact_string("zcash") + compact_string("main")),
        ("name", compact_string(address), compact_string("Savings")),
        ("purpose", compact_string(address), compact_string("receive")),
        ("key", pubkey_blob, privkey_blob),
        ("tx", txid.to_bytes(), wallet_tx(raw_tx, map_value=[("comment", "rent")])),
        ("orderposnext", b"", Writer().write_i64(7).to_bytes()),
        ("futurekeyname", b"\x01", b"opaque"),
    ])


@pytest.fixture
def small_wallet(small_wallet_bytes):
    """The decoded form of ``small_wallet_bytes``."""
    return parse_zcashd_wallet(small_wallet_bytes)


@pytest.fixture
def migration_config():
    return MigrationConfig()


@pytest.fixture
def root_logger():
    """The root logger; handlers and level are put back after the test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def leaves():
    """Distinct deterministic tree leaves."""
    return [U256(bytes([i + 1]) * 32) for i in range(8)]


# ═══════════════════════════════════════════════════════════════════
#  Light-client wallet files
# ═══════════════════════════════════════════════════════════════════

NU5_ERA = 0xC2D6D0B4
ORCHARD_SK = b"\x21" * 32
SAPLING_EXTSK = b"\x01" + bytes(4) + bytes([0, 0, 0, 0x80]) + bytes(range(32)) * 5
ACCOUNT_PRIVKEY = b"\x23" * 74


def _raw(w: Writer, data: bytes) -> Writer:
    return w.write_bytes(data)


def unified_spending_key(era: int = NU5_ERA, items=None) -> bytes:
    """Era id, then (typecode, length, key) items."""
    if items is None:
        items = [(3, ORCHARD_SK), (2, SAPLING_EXTSK), (0, ACCOUNT_PRIVKEY)]
    w = Writer().write_u32(era)
    for typecode, key in items:
        w.write_compact_size(typecode).write_var_bytes(key)
    return w.to_bytes()


def zingo_spend_keystore(usk: bytes | None = None, declared: int | None = None) -> bytes:
    usk = unified_spending_key() if usk is None else usk
    w = Writer().write_u8(0).write_u8(2)
    w.write_compact_size(len(usk) if declared is None else declared)
    return w.write_bytes(usk).to_bytes()


def zingo_capability(keystore: bytes, version: int = 4, rejection: int = 2,
                     selections=((1, 0b011),)) -> bytes:
    w = Writer().write_u8(version)
    if version == 4:
        w.write_u32(rejection)
    w.write_bytes(keystore)
    return w.write_vec(selections, lambda w, s: w.write_u8(s[0]).write_u8(s[1])).to_bytes()


def zingo_wallet(capability: bytes, external_version: int = 31, trailing: bytes = b"rest") -> bytes:
    return Writer().write_u64(external_version).write_bytes(capability).write_bytes(trailing).to_bytes()


def _zwl_tail(w: Writer, enc_key, nonce) -> Writer:
    w.write_optional(enc_key, lambda w, b: w.write_var_bytes(b))
    return w.write_optional(nonce, lambda w, b: w.write_var_bytes(b))


def zwl_tkey(address: str = "t1zwl", key: bytes | None = b"\x31" * 32, hdkey: int | None = 0,
             keytype: int = 0, locked: bool = False, enc_key=None, nonce=None) -> bytes:
    w = Writer().write_u8(1).write_u32(keytype).write_bool(locked)
    w.write_optional(key, _raw)
    w.write_utf8_string(address, "u64")
    w.write_optional(hdkey, lambda w, n: w.write_u32(n))
    return _zwl_tail(w, enc_key, nonce).to_bytes()


def zwl_zkey(extsk: bytes | None = SAPLING_EXTSK, extfvk: bytes = SAPLING_EXTSK, hdkey: int | None = 0,
             keytype: int = 0, locked: bool = False, enc_key=None, nonce=None) -> bytes:
    w = Writer().write_u8(1).write_u32(keytype).write_bool(locked)
    w.write_optional(extsk, _raw).write_bytes(extfvk)
    w.write_optional(hdkey, lambda w, n: w.write_u32(n))
    return _zwl_tail(w, enc_key, nonce).to_bytes()


def zwl_okey(fvk: bytes = b"\x41" * 96, sk: bytes | None = b"\x42" * 32, hdkey: int | None = 0,
             keytype: int = 0, locked: bool = False, enc_key=None, nonce=None) -> bytes:
    w = Writer().write_u8(1).write_u32(keytype).write_bool(locked)
    w.write_optional(hdkey, lambda w, n: w.write_u32(n))
    w.write_bytes(fvk).write_optional(sk, _raw)
    return _zwl_tail(w, enc_key, nonce).to_bytes()


ZWL_TXID = b"\x0c" * 32


def zwl_keys(okeys=(), zkeys=(), tkeys=(), version: int = 22, encrypted: bool = False,
             seed: bytes = bytes(range(32)), nonce: bytes = b"") -> bytes:
    """Keys in the v21+ tkey layout."""
    w = Writer().write_u64(version)
    w.write_bool(encrypted).write_bytes(b"\x51" * 48)
    w.write_var_bytes(nonce).write_bytes(seed)
    if version >= 22:
        w.write_vec(okeys, _raw)
    w.write_vec(zkeys, _raw)
    return w.write_vec(tkeys, _raw).to_bytes()


def zwl_sections(external_version: int = 31, blocks=(), txns=(), chain_name: str = "main",
                 birthday: int = 419200, verified_tree: bytes | None = None,
                 orchard_tree: bytes | None = None) -> bytes:
    """Everything after the keys; *txns* are (txid + WalletTx) entries."""
    w = Writer().write_vec(blocks, _raw)
    if external_version > 14:
        w.write_u64(21)
    w.write_vec(txns, _raw)
    w.write_utf8_string(chain_name, "u64")
    if external_version > 23:
        w.write_u64(2).write_u8(1).write_i64(-1)
    w.write_u64(birthday)
    if 12 < external_version <= 22:
        w.write_u8(1)
    if external_version > 21:
        w.write_optional(verified_tree, lambda w, b: w.write_var_bytes(b))
    if external_version > 13:
        w.write_u64(20).write_u8(0).write_u64(0)
    if external_version > 24:
        w.write_optional(orchard_tree, _raw)
    return w.to_bytes()


def zwl_wallet(okeys=(), zkeys=(), tkeys=(), version: int = 22, external_version: int = 31,
               encrypted: bool = False, seed: bytes = bytes(range(32)), nonce: bytes = b"",
               keys: bytes | None = None, trailing: bytes = b"", **sections) -> bytes:
    if keys is None:
        keys = zwl_keys(okeys, zkeys, tkeys, version, encrypted, seed, nonce)
    w = Writer().write_u64(external_version).write_bytes(keys)
    w.write_bytes(zwl_sections(external_version, **sections))
    return w.write_bytes(trailing).to_bytes()


def zwl_block(height: int = 1_000_000, block_hash: bytes = b"\x0b" * 32,
              ecb: bytes = b"\x01\x02") -> bytes:
    w = Writer().write_i32(height).write_bytes(block_hash)
    w.write_u8(0).write_u8(0).write_compact_size(0)          # empty tree
    return w.write_u64(20).write_var_bytes(ecb).to_bytes()


def zwl_witness(leaf: bytes = b"\x0d" * 32) -> bytes:
    """One-leaf tree with a counted, empty parent list; nothing filled."""
    w = Writer().write_u8(1).write_bytes(leaf).write_u8(0).write_compact_size(0)
    return w.write_compact_size(0).write_u8(0).to_bytes()


def zwl_sapling_note(value: int = 70_000, version: int = 20, extfvk: bytes = SAPLING_EXTSK,
                     witnesses=None, spent: bytes | None = None, memo: bytes | None = None,
                     note_type: int = 2) -> bytes:
    w = Writer().write_u64(version)
    if version <= 5:
        w.write_u64(0)
    w.write_bytes(extfvk).write_bytes(b"\x0e" * 11).write_u64(value)
    if version > 3:
        w.write_u8(note_type)
    w.write_bytes(b"\x0f" * 32)
    w.write_vec([zwl_witness()] if witnesses is None else witnesses, _raw)
    if version >= 20:
        w.write_u64(1_000_100)
    w.write_bytes(b"\x10" * 32)
    if version > 5:
        w.write_optional(spent, _raw)
    else:
        w.write_u8(0)
        if version >= 2:
            w.write_u8(0)
    if version > 4:
        w.write_u8(0)
    w.write_optional(memo, _raw)
    w.write_u8(0)
    if version > 2:
        w.write_u8(1)
    return w.to_bytes()


def zwl_orchard_note(value: int = 30_000) -> bytes:
    w = Writer().write_u64(22).write_bytes(b"\x41" * 96).write_bytes(b"\x12" * 43)
    w.write_u64(value).write_bytes(b"\x13" * 32).write_bytes(b"\x14" * 32)
    w.write_optional(5, lambda w, n: w.write_u64(n))
    w.write_u8(0).write_u8(0).write_u8(0)                     # spent, unconfirmed, memo
    return w.write_u8(0).write_u8(1).to_bytes()


def zwl_utxo(address: str = "t1zwl", value: int = 50_000, version: int = 3,
             spent: bytes | None = None) -> bytes:
    raw = address.encode()
    w = Writer().write_u64(version).write_i32(len(raw)).write_bytes(raw)
    w.write_bytes(ZWL_TXID).write_u64(0).write_u64(value).write_i32(1_000_000)
    w.write_var_bytes(p2pkh_script(b"\x05" * 20))
    w.write_optional(spent, _raw)
    if version > 1:
        w.write_optional(None if spent is None else 1_000_050, lambda w, h: w.write_i32(h))
    if version > 2:
        w.write_u8(0)
    return w.to_bytes()


def zwl_outgoing(address: str = "zs1dest", value: int = 10_000) -> bytes:
    w = Writer().write_utf8_string(address, "u64").write_u64(value)
    return w.write_bytes(b"\xf6" + bytes(511)).to_bytes()


def zwl_wallet_tx(txid: bytes = ZWL_TXID, block: int = 1_000_000, version: int = 23,
                  s_notes=(), utxos=(), o_notes=(), outgoing=(), zec_price: float | None = None,
                  datetime: int = 1_700_000_000) -> bytes:
    """A (txid, WalletTx) entry of the transaction map."""
    w = Writer().write_bytes(txid).write_u64(version).write_i32(block)
    if version > 20:
        w.write_u8(0)
    if version >= 4:
        w.write_u64(datetime)
    w.write_bytes(txid)
    w.write_vec(s_notes, _raw).write_vec(utxos, _raw)
    if version > 22:
        w.write_u64(0)
    w.write_u64(0).write_u64(0)
    w.write_vec(outgoing, _raw)
    w.write_u8(1)
    if version > 4:
        w.write_optional(zec_price, lambda w, v: w.write_f64(v))
    if version > 5:
        w.write_vec([b"\x15" * 32], _raw)
    if version > 21:
        w.write_vec(o_notes, _raw).write_vec((), _raw)
    return w.to_bytes()


def zwl_bridge_tree() -> bytes:
    """One current bridge at position 4 with a single marked leaf."""
    frontier = Writer().write_u64(4).write_bytes(b"\x16" * 32)
    frontier.write_optional(b"\x17" * 32, _raw).write_vec([b"\x18" * 32], _raw)
    fragment = Writer().write_u64(4).write_u64(4).write_u64(1).write_vec([b"\x19" * 32], _raw)
    bridge = Writer().write_u8(1).write_u8(0).write_vec([fragment.to_bytes()], _raw)
    bridge.write_bytes(frontier.to_bytes())
    checkpoint = Writer().write_u64(1).write_u8(0)
    checkpoint.write_vec([4], lambda w, n: w.write_u64(n)).write_compact_size(0)
    w = Writer().write_u64(0).write_compact_size(0).write_optional(bridge.to_bytes(), _raw)
    w.write_vec([(4, 0)], lambda w, s: w.write_u64(s[0]).write_u64(s[1]))
    return w.write_vec([checkpoint.to_bytes()], _raw).write_u64(100).to_bytes()
