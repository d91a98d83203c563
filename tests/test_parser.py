"""
Tests for zmigrate_core.parser — the cursor, primitive reads and the
three decode contracts.

Covers:
  - Fixed-width little-endian integers and booleans
  - CompactSize canonical-form and maximum checks
  - Length-prefixed bytes and UTF-8 strings
  - Buffer underrun diagnostics
  - Context chain rendering through nested decodes
  - Context-free, context-annotated and parameterized decodes
  - Sequences, fixed arrays, optionals and maps
  - Writer mirror of the primitive reads
"""

from __future__ import annotations

import struct
import unittest

import pytest

from zmigrate_core.blob import U256
from zmigrate_core.errors import BufferUnderrun, DecodeError, InvalidEncoding
from zmigrate_core.parser import (
    MAX_COMPACT_SIZE,
    Parser,
    Writer,
    decode,
    decode_array,
    decode_buf,
    decode_map,
    decode_optional,
    decode_vec,
    decode_with_param,
    type_name,
)
from zmigrate_core.primitives import NetworkInfo
from zmigrate_core.sprout import GrothProof, SproutProof
from zmigrate_core.zcashd_records import BlockLocator


class Pair:
    """Context-free: no TYPE_NAME."""

    @classmethod
    def parse(cls, p):
        return p.read_u8(), p.read_u8()


def _compact(raw: bytes) -> int:
    return Parser(raw).read_compact_size()


# ═══════════════════════════════════════════════════════════════════
#  Primitive reads
# ═══════════════════════════════════════════════════════════════════

class TestIntegers(unittest.TestCase):

    def test_little_endian_widths(self):
        p = Parser(b"\x01" + b"\x02\x01" + b"\x04\x03\x02\x01" + struct.pack("<Q", 2**40))
        self.assertEqual(p.read_u8(), 1)
        self.assertEqual(p.read_u16(), 0x0102)
        self.assertEqual(p.read_u32(), 0x01020304)
        self.assertEqual(p.read_u64(), 2**40)
        self.assertTrue(p.is_finished())

    def test_signed_reads(self):
        p = Parser(struct.pack("<i", -1) + struct.pack("<q", -5))
        self.assertEqual(p.read_i32(), -1)
        self.assertEqual(p.read_i64(), -5)

    def test_offset_advances(self):
        p = Parser(bytes(10))
        p.read_u32()
        self.assertEqual(p.offset, 4)
        self.assertEqual(p.remaining, 6)

    def test_bool_accepts_zero_and_one(self):
        p = Parser(b"\x00\x01")
        self.assertFalse(p.read_bool())
        self.assertTrue(p.read_bool())

    def test_bool_rejects_other_bytes(self):
        with self.assertRaises(InvalidEncoding) as ctx:
            Parser(b"\x02").read_bool()
        self.assertIn("got 2", str(ctx.exception))


class TestCompactSize(unittest.TestCase):

    def test_single_byte(self):
        self.assertEqual(_compact(b"\x00"), 0)
        self.assertEqual(_compact(b"\xfc"), 252)

    def test_u16_form(self):
        self.assertEqual(_compact(b"\xfd\xfd\x00"), 253)
        self.assertEqual(_compact(b"\xfd\xff\xff"), 0xFFFF)

    def test_u32_form(self):
        self.assertEqual(_compact(b"\xfe\x00\x00\x01\x00"), 0x10000)

    def test_maximum_is_accepted(self):
        raw = b"\xfe" + struct.pack("<I", MAX_COMPACT_SIZE)
        self.assertEqual(_compact(raw), MAX_COMPACT_SIZE)

    def test_non_canonical_u16(self):
        with self.assertRaises(InvalidEncoding) as ctx:
            _compact(b"\xfd\xfc\x00")
        self.assertIn("non-canonical", str(ctx.exception))

    def test_non_canonical_u32(self):
        with self.assertRaises(InvalidEncoding):
            _compact(b"\xfe\xff\xff\x00\x00")

    def test_non_canonical_u64(self):
        with self.assertRaises(InvalidEncoding):
            _compact(b"\xff" + struct.pack("<Q", 0xFFFFFFFF))

    def test_above_maximum(self):
        with self.assertRaises(InvalidEncoding) as ctx:
            _compact(b"\xfe" + struct.pack("<I", MAX_COMPACT_SIZE + 1))
        self.assertIn("exceeds maximum", str(ctx.exception))

    def test_canonical_u64_still_above_maximum(self):
        with self.assertRaises(InvalidEncoding):
            _compact(b"\xff" + struct.pack("<Q", 2**32))

    def test_truncated_prefix(self):
        with self.assertRaises(BufferUnderrun):
            _compact(b"\xfd\x01")


class TestLengthPrefixed:

    def test_var_bytes_compact(self):
        assert Parser(b"\x03abc").read_var_bytes() == b"abc"

    @pytest.mark.parametrize("prefix,header", [
        ("u8", b"\x02"),
        ("u16", b"\x02\x00"),
        ("u32", b"\x02\x00\x00\x00"),
        ("u64", b"\x02" + bytes(7)),
    ])
    def test_var_bytes_prefixes(self, prefix, header):
        assert Parser(header + b"hi").read_var_bytes(prefix) == b"hi"

    def test_unknown_prefix(self):
        with pytest.raises(ValueError):
            Parser(b"\x00").read_length("u24")

    def test_utf8_string(self):
        raw = "héllo".encode("utf-8")
        assert Parser(bytes([len(raw)]) + raw).read_utf8_string() == "héllo"

    def test_malformed_utf8(self):
        with pytest.raises(InvalidEncoding) as exc:
            Parser(b"\x02\xff\xfe").read_utf8_string()
        assert "malformed UTF-8" in str(exc.value)


# ═══════════════════════════════════════════════════════════════════
#  Failure diagnostics
# ═══════════════════════════════════════════════════════════════════

class TestDiagnostics(unittest.TestCase):

    def test_buffer_underrun_fields(self):
        p = Parser(bytes(10))
        with self.assertRaises(BufferUnderrun) as ctx:
            p.next(32)
        err = ctx.exception
        self.assertEqual(err.needed, 32)
        self.assertEqual(err.available, 10)
        self.assertEqual(err.offset, 0)
        self.assertEqual(str(err), "offset 0: buffer underrun, needed 32 bytes, had 10")

    def test_block_locator_chain(self):
        data = struct.pack("<I", 5_000_000) + b"\x01" + bytes(10)
        with self.assertRaises(BufferUnderrun) as ctx:
            decode(Parser(data), BlockLocator)
        self.assertEqual(
            str(ctx.exception),
            '"decoding BlockLocator" → "decoding sequence<u256>" → "decoding u256" '
            "→ offset 5: buffer underrun, needed 32 bytes, had 10",
        )

    def test_context_is_innermost_first(self):
        data = struct.pack("<I", 1) + b"\x01"
        with self.assertRaises(DecodeError) as ctx:
            decode(Parser(data), BlockLocator)
        self.assertEqual(
            ctx.exception.context,
            ("decoding u256", "decoding sequence<u256>", "decoding BlockLocator"),
        )

    def test_context_unwinds_after_failure(self):
        p = Parser(b"\x01")
        with self.assertRaises(BufferUnderrun):
            decode(p, U256, "hash")
        self.assertEqual(p.context_chain(), ())

    def test_check_finished(self):
        p = Parser(b"\x00\x00")
        p.read_u8()
        with self.assertRaises(InvalidEncoding) as ctx:
            p.check_finished()
        self.assertIn("1 unconsumed trailing bytes", str(ctx.exception))

    def test_manual_context(self):
        p = Parser(b"")
        p.push_context("outer")
        with p.context("inner"):
            self.assertEqual(p.context_chain(), ("inner", "outer"))
        self.assertEqual(p.pop_context(), "outer")


# ═══════════════════════════════════════════════════════════════════
#  Decode contracts
# ═══════════════════════════════════════════════════════════════════

class TestDecodeContracts(unittest.TestCase):

    def test_context_free_adds_no_label(self):
        with self.assertRaises(BufferUnderrun) as ctx:
            decode(Parser(b"\x01"), Pair)
        self.assertEqual(ctx.exception.context, ())

    def test_caller_label(self):
        with self.assertRaises(BufferUnderrun) as ctx:
            decode(Parser(b"\x01"), Pair, "pair")
        self.assertEqual(ctx.exception.context, ("pair",))

    def test_named_type_label(self):
        data = b"\x05zcash\x07mainnet"
        with self.assertRaises(InvalidEncoding) as ctx:
            decode(Parser(data), NetworkInfo)
        self.assertEqual(ctx.exception.context, ("decoding NetworkInfo",))
        self.assertIn("unknown network identifier", str(ctx.exception))

    def test_parameterized_type_without_param(self):
        with self.assertRaises(TypeError):
            decode(Parser(bytes(192)), SproutProof)

    def test_decode_with_param_none(self):
        with self.assertRaises(TypeError):
            decode_with_param(Parser(bytes(192)), SproutProof, None)

    def test_decode_with_param_on_plain_type(self):
        with self.assertRaises(TypeError):
            decode_with_param(Parser(bytes(32)), U256, True)

    def test_decode_with_param(self):
        proof = decode_with_param(Parser(bytes(192)), SproutProof, True)
        self.assertIsInstance(proof, GrothProof)

    def test_decoder_function(self):
        self.assertEqual(decode(Parser(b"\x07\x00\x00\x00"), Parser.read_u32), 7)

    def test_decode_buf_rejects_trailing(self):
        with self.assertRaises(InvalidEncoding):
            decode_buf(U256, bytes(33))

    def test_type_names(self):
        self.assertEqual(type_name(U256), "u256")
        self.assertEqual(type_name(Parser.read_u32), "u32")
        self.assertEqual(type_name(Pair), "Pair")


class TestCollections:

    def test_vec(self):
        data = b"\x02" + struct.pack("<II", 1, 2)
        assert decode_vec(Parser(data), Parser.read_u32) == (1, 2)

    def test_vec_label(self):
        with pytest.raises(BufferUnderrun) as exc:
            decode_vec(Parser(b"\x02\x01\x00\x00\x00"), Parser.read_u32)
        assert exc.value.context == ("decoding sequence<u32>",)
        assert exc.value.offset == 5

    def test_array(self):
        values = decode_array(Parser(bytes(64)), U256, 2)
        assert values == (U256.zero(), U256.zero())

    def test_array_label(self):
        with pytest.raises(BufferUnderrun) as exc:
            decode_array(Parser(bytes(40)), U256, 2, "nullifiers")
        assert exc.value.context == (
            "decoding u256", "decoding array<u256; 2>", "nullifiers",
        )

    def test_optional_absent(self):
        p = Parser(b"\x00")
        assert decode_optional(p, U256) is None
        assert p.is_finished()

    def test_optional_present(self):
        assert decode_optional(Parser(b"\x01" + bytes(32)), U256) == U256.zero()

    def test_optional_bad_flag(self):
        with pytest.raises(InvalidEncoding):
            decode_optional(Parser(b"\x02" + bytes(32)), U256)

    def test_map(self):
        data = b"\x02" + b"\x01\x00\x00\x00" + b"\x0a" + b"\x02\x00\x00\x00" + b"\x14"
        assert decode_map(Parser(data), Parser.read_u32, Parser.read_u8) == {1: 10, 2: 20}


# ═══════════════════════════════════════════════════════════════════
#  Writer
# ═══════════════════════════════════════════════════════════════════

class TestWriter:

    @pytest.mark.parametrize("n,expected", [
        (0xFC, b"\xfc"),
        (0xFD, b"\xfd\xfd\x00"),
        (0x10000, b"\xfe\x00\x00\x01\x00"),
    ])
    def test_compact_size(self, n, expected):
        assert Writer().write_compact_size(n).to_bytes() == expected

    def test_chained_writes(self):
        w = Writer().write_u8(1).write_u16(2).write_i64(-1)
        assert len(w) == 11
        p = Parser(w.to_bytes())
        assert (p.read_u8(), p.read_u16(), p.read_i64()) == (1, 2, -1)

    def test_optional_and_vec(self):
        w = Writer()
        w.write_optional(None, lambda w, v: w.write_u8(v))
        w.write_optional(9, lambda w, v: w.write_u8(v))
        w.write_vec([3, 4], lambda w, v: w.write_u8(v))
        assert w.to_bytes() == b"\x00\x01\x09\x02\x03\x04"

    def test_strings(self):
        raw = Writer().write_utf8_string("abc", "u32").to_bytes()
        assert raw == b"\x03\x00\x00\x00abc"
        assert Parser(raw).read_utf8_string("u32") == "abc"
