"""
Tests for zmigrate_core.transaction — version dispatch and wallet records.

Covers:
  - Version header parsing and version-group checks
  - Pre-overwinter transparent transactions and their raw bytes
  - PHGR joinsplits in v2, Groth joinsplits in v4
  - Sapling v4 binding signature after the joinsplits
  - v5 layout with consensus branch id and empty bundles
  - zfuture and unknown branch ids rejected
  - CWalletTx fields, vUnused check and the sapling note map
"""

from __future__ import annotations

import struct
import unittest

from conftest import (
    GROTH,
    PHGR,
    joinsplit,
    overwintered,
    p2pkh_script,
    sapling_v4_tx,
    transparent_tx,
    v5_tx,
    wallet_tx,
)

from zmigrate_core.blob import TxId
from zmigrate_core.errors import InvalidEncoding
from zmigrate_core.parser import Parser, Writer, decode, decode_buf
from zmigrate_core.primitives import (
    OVERWINTER_VERSION_GROUP_ID,
    SAPLING_VERSION_GROUP_ID,
    ZFUTURE_VERSION_GROUP_ID,
    TxVersion,
    TxVersionGroup,
)
from zmigrate_core.sprout import GrothProof, PHGRProof
from zmigrate_core.transaction import Transaction, WalletTx



class TestTxVersion(unittest.TestCase):

    def test_pre_overwinter(self):
        version = decode_buf(TxVersion, struct.pack("<I", 2))
        self.assertEqual(version.group, TxVersionGroup.PRE_OVERWINTER)
        self.assertFalse(version.overwintered)
        self.assertFalse(version.uses_groth())

    def test_overwinter_v3(self):
        raw = overwintered(3, OVERWINTER_VERSION_GROUP_ID).to_bytes()
        version = decode_buf(TxVersion, raw)
        self.assertEqual(version.group, TxVersionGroup.OVERWINTER_V3)
        self.assertEqual(version.header(), 0x80000003)

    def test_sapling_v4_uses_groth(self):
        version = decode_buf(TxVersion, overwintered(4, SAPLING_VERSION_GROUP_ID).to_bytes())
        self.assertTrue(version.is_sapling_v4())
        self.assertTrue(version.uses_groth())

    def test_mismatched_group(self):
        with self.assertRaises(InvalidEncoding) as ctx:
            decode_buf(TxVersion, overwintered(4, OVERWINTER_VERSION_GROUP_ID).to_bytes())
        self.assertIn("unsupported transaction format", str(ctx.exception))


class TestTransparent(unittest.TestCase):

    def test_outputs_and_raw(self):
        raw = transparent_tx([(50_000, p2pkh_script(bytes(20)))])
        tx = decode_buf(Transaction, raw)
        self.assertEqual(tx.version.number, 1)
        self.assertEqual(tx.vout[0].value, 50_000)
        self.assertIsNone(tx.join_splits)
        self.assertIsNone(tx.expiry_height)
        self.assertFalse(tx.sapling_bundle.has_actions())
        self.assertEqual(tx.raw, raw)

    def test_inputs(self):
        raw = transparent_tx([], inputs=[(b"\x01" * 32, 3, b"\x00")])
        tx = decode_buf(Transaction, raw)
        self.assertEqual(tx.vin[0].prevout.vout, 3)
        self.assertEqual(tx.vin[0].script_sig, b"\x00")

    def test_raw_excludes_surrounding_bytes(self):
        raw = transparent_tx([(1, b"")])
        p = Parser(raw + b"extra")
        tx = decode(p, Transaction)
        self.assertEqual(tx.raw, raw)
        self.assertEqual(p.remaining, 5)


class TestJoinSplitVersions(unittest.TestCase):

    def test_v2_uses_phgr(self):
        w = Writer().write_u32(2).write_compact_size(0).write_compact_size(0).write_u32(0)
        w.write_compact_size(1).write_bytes(joinsplit(PHGR))
        w.write_bytes(bytes(32) + bytes(64))
        tx = decode_buf(Transaction, w.to_bytes())
        self.assertIsInstance(tx.join_splits.descriptions[0].zkproof, PHGRProof)

    def test_v4_uses_groth(self):
        js = b"\x01" + joinsplit(GROTH) + bytes(32) + bytes(64)
        tx = decode_buf(Transaction, sapling_v4_tx(joinsplits=js))
        self.assertIsInstance(tx.join_splits.descriptions[0].zkproof, GrothProof)
        self.assertEqual(tx.expiry_height, 2_000_000)

    def test_v4_binding_sig_follows_joinsplits(self):
        tx = decode_buf(Transaction, sapling_v4_tx(outputs=1))
        self.assertEqual(len(tx.sapling_bundle.outputs), 1)
        self.assertEqual(tx.sapling_bundle.binding_sig.to_bytes(), b"\x0e" * 64)


class TestV5(unittest.TestCase):

    def test_empty_bundles(self):
        tx = decode_buf(Transaction, v5_tx())
        self.assertEqual(tx.consensus_branch_id, 0xC2D6D0B4)
        self.assertIsNone(tx.orchard_bundle)
        self.assertIsNone(tx.join_splits)
        self.assertIsNone(tx.expiry_height)

    def test_unknown_branch_id(self):
        with self.assertRaises(InvalidEncoding) as ctx:
            decode_buf(Transaction, v5_tx(branch_id=0x12345678))
        self.assertIn("consensus_branch_id", ctx.exception.context)

    def test_zfuture_rejected(self):
        raw = overwintered(0xFFFF, ZFUTURE_VERSION_GROUP_ID).to_bytes() + bytes(16)
        with self.assertRaises(InvalidEncoding) as ctx:
            decode_buf(Transaction, raw)
        self.assertIn("zfuture", str(ctx.exception))


class TestWalletTx(unittest.TestCase):

    def test_fields(self):
        raw = wallet_tx(transparent_tx([(1, b"")]), from_me=True, map_value=[("comment", "rent")])
        wtx = decode_buf(WalletTx, raw)
        self.assertTrue(wtx.from_me)
        self.assertFalse(wtx.spent)
        self.assertEqual(wtx.map_value, {"comment": "rent"})
        self.assertEqual(wtx.time_received, 1_600_000_000)
        self.assertEqual(wtx.index, -1)
        self.assertIsNone(wtx.sapling_note_data)
        self.assertIsNone(wtx.orchard_tx_meta)

    def test_vunused_must_be_empty(self):
        tx = transparent_tx([(1, b"")])
        w = Writer().write_bytes(tx).write_bytes(bytes(32))
        w.write_compact_size(0).write_i32(0)
        w.write_compact_size(1).write_bytes(tx)
        with self.assertRaises(InvalidEncoding) as ctx:
            decode(Parser(w.to_bytes()), WalletTx)
        self.assertIn("vUnused", str(ctx.exception))

    def test_sapling_note_map_for_v4(self):
        raw = wallet_tx(sapling_v4_tx()) + b"\x00"
        wtx = decode_buf(WalletTx, raw)
        self.assertEqual(wtx.sapling_note_data, {})

    def test_orchard_meta_for_v5(self):
        raw = wallet_tx(v5_tx()) + b"\x00" + struct.pack("<I", 0) + b"\x00\x00"
        wtx = decode_buf(WalletTx, raw)
        self.assertEqual(wtx.orchard_tx_meta.version, 0)

    def test_txid_from_display(self):
        self.assertEqual(str(TxId.from_display("ab" * 32)), "ab" * 32)
