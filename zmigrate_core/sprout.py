"""
Sprout (first shielded generation) structures.

Proofs inside a ``JSDescription`` come in two encodings of different
size.  Which one is present is not self-describing: it follows from the
enclosing transaction's version, so ``SproutProof`` and everything that
contains it decode through ``parse_with_param(p, use_groth)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from zmigrate_core.blob import U252, U256, Blob, Blob32, Blob64, TxId
from zmigrate_core.crypto_utils import base58check_encode
from zmigrate_core.merkle_tree import SPROUT_DEPTH, Witness
from zmigrate_core.parser import (
    Parser,
    decode,
    decode_array,
    decode_optional,
    decode_vec,
    decode_vec_with_param,
    decode_with_param,
)
from zmigrate_core.primitives import Network

ZC_NUM_JS_INPUTS = 2
ZC_NUM_JS_OUTPUTS = 2

# Note plaintext: leading byte, value, rho, r, memo; plus the AEAD tag.
ZC_NOTEPLAINTEXT_LEADING = 1
ZC_V_SIZE = 8
ZC_RHO_SIZE = 32
ZC_R_SIZE = 32
ZC_MEMO_SIZE = 512
NOTEENCRYPTION_AUTH_BYTES = 16
ZC_NOTECIPHERTEXT_SIZE = (
    ZC_NOTEPLAINTEXT_LEADING + ZC_V_SIZE + ZC_RHO_SIZE + ZC_R_SIZE + ZC_MEMO_SIZE
    + NOTEENCRYPTION_AUTH_BYTES
)

G1_COMPRESSED_SIZE = 33
G2_COMPRESSED_SIZE = 65
GROTH_PROOF_SIZE = 48 + 96 + 48
PHGR_PROOF_SIZE = 7 * G1_COMPRESSED_SIZE + G2_COMPRESSED_SIZE


class NoteEncryptionCiphertext(Blob):
    SIZE = ZC_NOTECIPHERTEXT_SIZE


class GrothProof(Blob):
    """Groth16 proof over BLS12-381: A (48) || B (96) || C (48)."""
    SIZE = GROTH_PROOF_SIZE


class CompressedG1(Blob):
    SIZE = G1_COMPRESSED_SIZE


class CompressedG2(Blob):
    SIZE = G2_COMPRESSED_SIZE


class Ed25519VerificationKey(Blob32):
    pass


class Ed25519Signature(Blob64):
    pass


@dataclass(frozen=True)
class PHGRProof:
    """Pre-Sapling BCTV14 proof: seven G1 points and one G2 point, compressed."""

    g_a: CompressedG1
    g_a_prime: CompressedG1
    g_b: CompressedG2
    g_b_prime: CompressedG1
    g_c: CompressedG1
    g_c_prime: CompressedG1
    g_k: CompressedG1
    g_h: CompressedG1

    TYPE_NAME = "PHGRProof"

    @classmethod
    def parse(cls, p: Parser) -> "PHGRProof":
        return cls(
            g_a=decode(p, CompressedG1, "g_A"),
            g_a_prime=decode(p, CompressedG1, "g_A_prime"),
            g_b=decode(p, CompressedG2, "g_B"),
            g_b_prime=decode(p, CompressedG1, "g_B_prime"),
            g_c=decode(p, CompressedG1, "g_C"),
            g_c_prime=decode(p, CompressedG1, "g_C_prime"),
            g_k=decode(p, CompressedG1, "g_K"),
            g_h=decode(p, CompressedG1, "g_H"),
        )

    def to_bytes(self) -> bytes:
        return b"".join(
            part.to_bytes()
            for part in (
                self.g_a, self.g_a_prime, self.g_b, self.g_b_prime,
                self.g_c, self.g_c_prime, self.g_k, self.g_h,
            )
        )


SproutProofValue = Union[GrothProof, PHGRProof]


class SproutProof:
    """Selects the Groth or PHGR encoding from the caller's ``use_groth`` flag."""

    TYPE_NAME = "SproutProof"

    @classmethod
    def parse_with_param(cls, p: Parser, use_groth: bool) -> SproutProofValue:
        if use_groth:
            return decode(p, GrothProof)
        return decode(p, PHGRProof)


# ── Addresses and keys ──────────────────────────────────────────

@dataclass(frozen=True)
class SproutPaymentAddress:
    a_pk: U256
    pk_enc: U256

    TYPE_NAME = "SproutPaymentAddress"

    @classmethod
    def parse(cls, p: Parser) -> "SproutPaymentAddress":
        return cls(decode(p, U256, "a_pk"), decode(p, U256, "pk_enc"))

    def to_string(self, network: Network) -> str:
        return base58check_encode(
            network.sprout_prefix + self.a_pk.to_bytes() + self.pk_enc.to_bytes()
        )


class SproutSpendingKey(U252):
    TYPE_NAME = "SproutSpendingKey"


# ── JoinSplit description ───────────────────────────────────────

@dataclass(frozen=True)
class JSDescription:
    vpub_old: int
    vpub_new: int
    anchor: U256
    nullifiers: tuple[U256, U256]
    commitments: tuple[U256, U256]
    ephemeral_key: U256
    random_seed: U256
    macs: tuple[U256, U256]
    zkproof: SproutProofValue
    ciphertexts: tuple[NoteEncryptionCiphertext, NoteEncryptionCiphertext]

    TYPE_NAME = "JSDescription"

    @classmethod
    def parse_with_param(cls, p: Parser, use_groth: bool) -> "JSDescription":
        with p.context("vpub_old"):
            vpub_old = p.read_i64()
        with p.context("vpub_new"):
            vpub_new = p.read_i64()
        return cls(
            vpub_old=vpub_old,
            vpub_new=vpub_new,
            anchor=decode(p, U256, "anchor"),
            nullifiers=decode_array(p, U256, ZC_NUM_JS_INPUTS, "nullifiers"),
            commitments=decode_array(p, U256, ZC_NUM_JS_OUTPUTS, "commitments"),
            ephemeral_key=decode(p, U256, "ephemeral_key"),
            random_seed=decode(p, U256, "random_seed"),
            macs=decode_array(p, U256, ZC_NUM_JS_INPUTS, "macs"),
            zkproof=decode_with_param(p, SproutProof, use_groth, "zkproof"),
            ciphertexts=decode_array(
                p, NoteEncryptionCiphertext, ZC_NUM_JS_OUTPUTS, "ciphertexts"
            ),
        )


@dataclass(frozen=True)
class JoinSplits:
    """A transaction's joinsplit descriptions and, when any exist, their signing key and signature."""

    descriptions: tuple[JSDescription, ...]
    pub_key: Ed25519VerificationKey | None
    sig: Ed25519Signature | None

    TYPE_NAME = "JoinSplits"

    @classmethod
    def parse_with_param(cls, p: Parser, use_groth: bool) -> "JoinSplits":
        descriptions = decode_vec_with_param(p, JSDescription, use_groth, "descriptions")
        if not descriptions:
            return cls((), None, None)
        return cls(
            descriptions,
            decode(p, Ed25519VerificationKey, "joinsplit_pub_key"),
            decode(p, Ed25519Signature, "joinsplit_sig"),
        )


# ── Wallet note data ────────────────────────────────────────────

@dataclass(frozen=True)
class JSOutPoint:
    """(txid, joinsplit index, output index) of a Sprout note."""

    txid: TxId
    js: int
    n: int

    TYPE_NAME = "JSOutPoint"

    @classmethod
    def parse(cls, p: Parser) -> "JSOutPoint":
        txid = decode(p, TxId, "hash")
        with p.context("js"):
            js = p.read_u64()
        with p.context("n"):
            n = p.read_u8()
        return cls(txid, js, n)


def sprout_witness(p: Parser) -> Witness:
    return decode_with_param(p, Witness, SPROUT_DEPTH)


@dataclass(frozen=True)
class SproutNoteData:
    address: SproutPaymentAddress
    nullifier: U256 | None
    witnesses: tuple[Witness, ...]
    witness_height: int

    TYPE_NAME = "SproutNoteData"

    @classmethod
    def parse(cls, p: Parser) -> "SproutNoteData":
        address = decode(p, SproutPaymentAddress, "address")
        nullifier = decode_optional(p, U256, "nullifier")
        witnesses = decode_vec(p, sprout_witness, "witnesses")
        with p.context("witness_height"):
            witness_height = p.read_i32()
        return cls(address, nullifier, witnesses, witness_height)
