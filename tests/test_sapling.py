"""
Tests for zmigrate_core.sapling — keys, addresses and the two bundle layouts.

Covers:
  - Extended spending / full viewing key layouts and re-encoding
  - Payment address Bech32 rendering per network
  - v4 bundle: value balance first, inline proofs
  - v5 bundle: compact descriptions, shared anchor, grouped proofs
  - Bundle requested for a pre-Sapling version
  - Wallet note data
"""

from __future__ import annotations

import struct

import pytest

from zmigrate_core.blob import U256
from zmigrate_core.crypto_utils import bech32_verify
from zmigrate_core.errors import BufferUnderrun, InvalidEncoding
from zmigrate_core.parser import Parser, Writer, decode, decode_buf, decode_with_param
from zmigrate_core.primitives import (
    SAPLING_VERSION_GROUP_ID,
    ZIP225_VERSION_GROUP_ID,
    Network,
    TxVersion,
    TxVersionGroup,
)
from zmigrate_core.sapling import (
    SaplingBundle,
    SaplingDiversifiableFullViewingKey,
    SaplingDiversifier,
    SaplingExtendedFullViewingKey,
    SaplingExtendedSpendingKey,
    SaplingNoteData,
    SaplingZPaymentAddress,
)

V4 = TxVersion(TxVersionGroup.SAPLING_V4, 4, True, SAPLING_VERSION_GROUP_ID)
V5 = TxVersion(TxVersionGroup.ZIP225_V5, 5, True, ZIP225_VERSION_GROUP_ID)
V1 = TxVersion(TxVersionGroup.PRE_OVERWINTER, 1, False)

SPEND_V4 = b"\x01" * 128 + bytes(192) + bytes(64)
OUTPUT_V4 = b"\x02" * 96 + bytes(580) + bytes(80) + bytes(192)


def _extsk_bytes() -> bytes:
    return b"\x03" + b"\xaa\xbb\xcc\xdd" + struct.pack("<I", 0x80000000) + bytes(range(32)) * 5


class TestKeys:

    def test_extended_spending_key(self):
        raw = _extsk_bytes()
        assert len(raw) == SaplingExtendedSpendingKey.SIZE
        key = decode_buf(SaplingExtendedSpendingKey, raw)
        assert key.depth == 3
        assert key.child_index == 0x80000000
        assert key.chain_code == U256(bytes(range(32)))
        assert key.to_bytes() == raw

    def test_extended_full_viewing_key(self):
        raw = _extsk_bytes()
        key = decode_buf(SaplingExtendedFullViewingKey, raw)
        assert key.fvk.ak == U256(bytes(range(32)))
        assert key.to_bytes() == raw

    def test_diversifiable_full_viewing_key(self):
        raw = bytes(range(128))
        key = decode_buf(SaplingDiversifiableFullViewingKey, raw)
        assert key.to_bytes() == raw

    def test_truncated_key_context(self):
        with pytest.raises(BufferUnderrun) as exc:
            decode_buf(SaplingExtendedSpendingKey, _extsk_bytes()[:100])
        assert "decoding SaplingExtendedSpendingKey" in exc.value.context


class TestAddresses:

    @pytest.mark.parametrize("network,hrp", [
        (Network.MAIN, "zs"),
        (Network.TEST, "ztestsapling"),
        (Network.REGTEST, "zregtestsapling"),
    ])
    def test_bech32_hrp(self, network, hrp):
        address = SaplingZPaymentAddress(SaplingDiversifier(bytes(11)), U256(b"\x07" * 32))
        text = address.to_string(network)
        assert text.startswith(hrp + "1")
        assert bech32_verify(text) == (hrp, bytes(11) + b"\x07" * 32)


class TestBundleV4:

    def test_empty(self):
        raw = struct.pack("<q", 0) + b"\x00\x00"
        bundle = decode_buf(SaplingBundle, raw, param=V4)
        assert not bundle.has_actions()
        assert bundle.binding_sig is None

    def test_spend_and_output(self):
        raw = struct.pack("<q", -1000) + b"\x01" + SPEND_V4 + b"\x01" + OUTPUT_V4
        bundle = decode_buf(SaplingBundle, raw, param=V4)
        assert bundle.value_balance == -1000
        assert len(bundle.spends) == 1
        assert len(bundle.outputs) == 1
        assert bundle.outputs[0].cmu == U256(b"\x02" * 32)
        # Attached by the enclosing transaction after the joinsplits.
        assert bundle.binding_sig is None


class TestBundleV5:

    def test_empty_has_no_value_balance(self):
        p = Parser(b"\x00\x00" + b"rest")
        bundle = decode_with_param(p, SaplingBundle, V5)
        assert bundle == SaplingBundle.empty()
        assert p.offset == 2

    def test_shared_anchor_and_grouped_proofs(self):
        anchor = b"\x0a" * 32
        w = Writer()
        w.write_compact_size(1).write_bytes(b"\x01" * 96)
        w.write_compact_size(1).write_bytes(b"\x02" * 96 + bytes(580) + bytes(80))
        w.write_i64(250)
        w.write_bytes(anchor)
        w.write_bytes(b"\x0b" * 192)        # spend proof
        w.write_bytes(b"\x0c" * 64)         # spend auth sig
        w.write_bytes(b"\x0d" * 192)        # output proof
        w.write_bytes(b"\x0e" * 64)         # binding sig
        bundle = decode_buf(SaplingBundle, w.to_bytes(), param=V5)
        assert bundle.value_balance == 250
        assert bundle.spends[0].anchor == U256(anchor)
        assert bundle.spends[0].zkproof.to_bytes() == b"\x0b" * 192
        assert bundle.spends[0].spend_auth_sig.to_bytes() == b"\x0c" * 64
        assert bundle.outputs[0].zkproof.to_bytes() == b"\x0d" * 192
        assert bundle.binding_sig.to_bytes() == b"\x0e" * 64

    def test_outputs_only_have_no_anchor(self):
        w = Writer().write_compact_size(0)
        w.write_compact_size(1).write_bytes(bytes(756))
        w.write_i64(-5).write_bytes(bytes(192)).write_bytes(bytes(64))
        bundle = decode_buf(SaplingBundle, w.to_bytes(), param=V5)
        assert bundle.spends == ()
        assert bundle.value_balance == -5


class TestVersionGate:

    def test_pre_sapling_version(self):
        with pytest.raises(InvalidEncoding) as exc:
            decode_with_param(Parser(bytes(16)), SaplingBundle, V1)
        assert "no sapling bundle" in str(exc.value)


class TestNoteData:

    def test_without_witnesses(self):
        w = Writer().write_i32(1).write_bytes(b"\x04" * 32)
        w.write_u8(0).write_compact_size(0).write_i32(-1)
        note = decode(Parser(w.to_bytes()), SaplingNoteData)
        assert note.nullifier is None
        assert note.witnesses == ()
        assert note.incoming_viewing_key.to_bytes() == b"\x04" * 32
