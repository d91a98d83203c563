"""
Transparent-protocol structures: outpoints, inputs, outputs, scripts,
public/private keys and the P2PKH / P2SH address forms.
"""

from __future__ import annotations

from dataclasses import dataclass

from zmigrate_core.blob import U160, U256, Blob32, TxId
from zmigrate_core.crypto_utils import base58check_encode, hash160
from zmigrate_core.parser import Parser, Writer, decode
from zmigrate_core.primitives import Network

PUBKEY_SIZES = (33, 65)
PRIVKEY_SIZES = (214, 279)

OP_DUP = 0x76
OP_HASH160 = 0xA9
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_CHECKSIG = 0xAC


class KeyId(U160):
    """Hash160 of a public key."""
    TYPE_NAME = "KeyId"

    def to_address(self, network: Network) -> str:
        return base58check_encode(network.p2pkh_prefix + self.to_bytes())


class ScriptId(U160):
    """Hash160 of a redeem script."""
    TYPE_NAME = "ScriptId"

    def to_address(self, network: Network) -> str:
        return base58check_encode(network.p2sh_prefix + self.to_bytes())


# ── Scripts ─────────────────────────────────────────────────────

def p2pkh_key_id(script: bytes) -> KeyId | None:
    """``OP_DUP OP_HASH160 <20> OP_EQUALVERIFY OP_CHECKSIG`` → key id."""
    if (
        len(script) == 25
        and script[0] == OP_DUP
        and script[1] == OP_HASH160
        and script[2] == 20
        and script[23] == OP_EQUALVERIFY
        and script[24] == OP_CHECKSIG
    ):
        return KeyId(script[3:23])
    return None


def p2sh_script_id(script: bytes) -> ScriptId | None:
    """``OP_HASH160 <20> OP_EQUAL`` → script id."""
    if (
        len(script) == 23
        and script[0] == OP_HASH160
        and script[1] == 20
        and script[22] == OP_EQUAL
    ):
        return ScriptId(script[2:22])
    return None


def script_address(script: bytes, network: Network) -> str | None:
    """Render a standard output script as its transparent address."""
    if (key_id := p2pkh_key_id(script)) is not None:
        return key_id.to_address(network)
    if (script_id := p2sh_script_id(script)) is not None:
        return script_id.to_address(network)
    return None


def script_sig_pubkey(script_sig: bytes) -> bytes | None:
    """The trailing public key of a P2PKH ``<sig> <pubkey>`` unlocking script."""
    p = Parser(script_sig)
    pushes = []
    while not p.is_finished():
        size = p.read_u8()
        if size == 0 or size > 75 or size > p.remaining:
            return None
        pushes.append(p.next(size))
    if len(pushes) == 2 and len(pushes[1]) in PUBKEY_SIZES:
        return pushes[1]
    return None


# ── Transaction parts ───────────────────────────────────────────

@dataclass(frozen=True)
class OutPoint:
    txid: TxId
    vout: int

    TYPE_NAME = "OutPoint"

    @classmethod
    def parse(cls, p: Parser) -> "OutPoint":
        return cls(decode(p, TxId, "txid"), p.read_u32())

    def is_null(self) -> bool:
        return self.txid.is_zero() and self.vout == 0xFFFFFFFF


@dataclass(frozen=True)
class TxIn:
    prevout: OutPoint
    script_sig: bytes
    sequence: int

    TYPE_NAME = "TxIn"

    @classmethod
    def parse(cls, p: Parser) -> "TxIn":
        prevout = decode(p, OutPoint, "prevout")
        with p.context("script_sig"):
            script_sig = p.read_var_bytes()
        return cls(prevout, script_sig, p.read_u32())

    def encode(self, w: Writer) -> Writer:
        self.prevout.txid.encode(w)
        w.write_u32(self.prevout.vout)
        w.write_var_bytes(self.script_sig)
        return w.write_u32(self.sequence)


@dataclass(frozen=True)
class TxOut:
    value: int
    script_pubkey: bytes

    TYPE_NAME = "TxOut"

    @classmethod
    def parse(cls, p: Parser) -> "TxOut":
        value = p.read_i64()
        with p.context("script_pubkey"):
            script = p.read_var_bytes()
        return cls(value, script)

    def encode(self, w: Writer) -> Writer:
        return w.write_i64(self.value).write_var_bytes(self.script_pubkey)


# ── Keys ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PubKey:
    """Compressed (33) or uncompressed (65) secp256k1 public key."""

    data: bytes

    TYPE_NAME = "PubKey"

    @classmethod
    def parse(cls, p: Parser) -> "PubKey":
        size = p.read_compact_size()
        if size not in PUBKEY_SIZES:
            raise p.invalid(f"public key length must be 33 or 65, got {size}")
        return cls(p.next(size))

    def key_id(self) -> KeyId:
        return KeyId(hash160(self.data))

    def to_address(self, network: Network) -> str:
        return self.key_id().to_address(network)

    def encode(self, w: Writer) -> Writer:
        return w.write_var_bytes(self.data)


@dataclass(frozen=True)
class PrivKey:
    """DER-encoded secp256k1 private key plus the node's pubkey/privkey hash."""

    data: bytes
    hash: U256

    TYPE_NAME = "PrivKey"

    @classmethod
    def parse(cls, p: Parser) -> "PrivKey":
        size = p.read_compact_size()
        if size not in PRIVKEY_SIZES:
            raise p.invalid(f"private key length must be 214 or 279, got {size}")
        return cls(p.next(size), decode(p, U256, "hash"))


class SecretKey(Blob32):
    """Raw 32-byte secp256k1 secret, as stored by the light clients."""
