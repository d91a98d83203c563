"""
Sapling (second shielded generation) structures.

The transaction bundle has two wire layouts.  In v4 transactions each
spend and output carries its own proof and signature inline and the
value balance precedes the descriptions; in v5 (ZIP-225) the compact
descriptions come first and the anchor, proofs and signatures follow as
grouped arrays.  ``SaplingBundle.parse_with_param`` selects the layout
from the already-parsed ``TxVersion``; both produce the same
``SaplingBundle`` shape.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from zmigrate_core.blob import U256, Blob, Blob4, Blob11, Blob64, TxId
from zmigrate_core.crypto_utils import bech32_encode
from zmigrate_core.merkle_tree import SAPLING_DEPTH, Witness
from zmigrate_core.parser import (
    Parser,
    Writer,
    decode,
    decode_array,
    decode_optional,
    decode_vec,
    decode_with_param,
)
from zmigrate_core.primitives import Network, TxVersion
from zmigrate_core.sprout import GrothProof

ZC_SAPLING_ENCPLAINTEXT_SIZE = 1 + 11 + 8 + 32 + 512
ZC_SAPLING_OUTPLAINTEXT_SIZE = 32 + 32
NOTEENCRYPTION_AUTH_BYTES = 16
ZC_SAPLING_ENCCIPHERTEXT_SIZE = ZC_SAPLING_ENCPLAINTEXT_SIZE + NOTEENCRYPTION_AUTH_BYTES
ZC_SAPLING_OUTCIPHERTEXT_SIZE = ZC_SAPLING_OUTPLAINTEXT_SIZE + NOTEENCRYPTION_AUTH_BYTES


class SaplingEncCiphertext(Blob):
    SIZE = ZC_SAPLING_ENCCIPHERTEXT_SIZE


class SaplingOutCiphertext(Blob):
    SIZE = ZC_SAPLING_OUTCIPHERTEXT_SIZE


class RedJubjubSignature(Blob64):
    pass


class SaplingIncomingViewingKey(U256):
    TYPE_NAME = "SaplingIncomingViewingKey"


class SaplingDiversifier(Blob11):
    pass


# ═══════════════════════════════════════════════════════════════════
#  Keys and addresses
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SaplingExpandedSpendingKey:
    ask: U256
    nsk: U256
    ovk: U256

    TYPE_NAME = "SaplingExpandedSpendingKey"

    @classmethod
    def parse(cls, p: Parser) -> "SaplingExpandedSpendingKey":
        return cls(
            decode(p, U256, "ask"),
            decode(p, U256, "nsk"),
            decode(p, U256, "ovk"),
        )

    def to_bytes(self) -> bytes:
        return self.ask.to_bytes() + self.nsk.to_bytes() + self.ovk.to_bytes()


@dataclass(frozen=True)
class SaplingFullViewingKey:
    ak: U256
    nk: U256
    ovk: U256

    TYPE_NAME = "SaplingFullViewingKey"

    @classmethod
    def parse(cls, p: Parser) -> "SaplingFullViewingKey":
        return cls(
            decode(p, U256, "ak"),
            decode(p, U256, "nk"),
            decode(p, U256, "ovk"),
        )

    def to_bytes(self) -> bytes:
        return self.ak.to_bytes() + self.nk.to_bytes() + self.ovk.to_bytes()


@dataclass(frozen=True)
class SaplingExtendedSpendingKey:
    """ZIP-32 extended spending key (169 bytes on disk)."""

    depth: int
    parent_fvk_tag: Blob4
    child_index: int
    chain_code: U256
    expsk: SaplingExpandedSpendingKey
    dk: U256

    TYPE_NAME = "SaplingExtendedSpendingKey"
    SIZE = 169

    @classmethod
    def parse(cls, p: Parser) -> "SaplingExtendedSpendingKey":
        with p.context("depth"):
            depth = p.read_u8()
        parent_fvk_tag = decode(p, Blob4, "parent_fvk_tag")
        with p.context("child_index"):
            child_index = p.read_u32()
        return cls(
            depth,
            parent_fvk_tag,
            child_index,
            decode(p, U256, "chain_code"),
            decode(p, SaplingExpandedSpendingKey, "expsk"),
            decode(p, U256, "dk"),
        )

    def to_bytes(self) -> bytes:
        w = Writer().write_u8(self.depth)
        self.parent_fvk_tag.encode(w)
        w.write_u32(self.child_index)
        self.chain_code.encode(w)
        w.write_bytes(self.expsk.to_bytes())
        return self.dk.encode(w).to_bytes()


@dataclass(frozen=True)
class SaplingExtendedFullViewingKey:
    """ZIP-32 extended full viewing key (169 bytes on disk)."""

    depth: int
    parent_fvk_tag: Blob4
    child_index: int
    chain_code: U256
    fvk: SaplingFullViewingKey
    dk: U256

    TYPE_NAME = "SaplingExtendedFullViewingKey"

    @classmethod
    def parse(cls, p: Parser) -> "SaplingExtendedFullViewingKey":
        with p.context("depth"):
            depth = p.read_u8()
        parent_fvk_tag = decode(p, Blob4, "parent_fvk_tag")
        with p.context("child_index"):
            child_index = p.read_u32()
        return cls(
            depth,
            parent_fvk_tag,
            child_index,
            decode(p, U256, "chain_code"),
            decode(p, SaplingFullViewingKey, "fvk"),
            decode(p, U256, "dk"),
        )

    def to_bytes(self) -> bytes:
        w = Writer().write_u8(self.depth)
        self.parent_fvk_tag.encode(w)
        w.write_u32(self.child_index)
        self.chain_code.encode(w)
        w.write_bytes(self.fvk.to_bytes())
        return self.dk.encode(w).to_bytes()


@dataclass(frozen=True)
class SaplingDiversifiableFullViewingKey:
    fvk: SaplingFullViewingKey
    dk: U256

    TYPE_NAME = "SaplingDiversifiableFullViewingKey"

    @classmethod
    def parse(cls, p: Parser) -> "SaplingDiversifiableFullViewingKey":
        return cls(decode(p, SaplingFullViewingKey, "fvk"), decode(p, U256, "dk"))

    def to_bytes(self) -> bytes:
        return self.fvk.to_bytes() + self.dk.to_bytes()


@dataclass(frozen=True)
class SaplingZPaymentAddress:
    diversifier: SaplingDiversifier
    pk_d: U256

    TYPE_NAME = "SaplingZPaymentAddress"

    @classmethod
    def parse(cls, p: Parser) -> "SaplingZPaymentAddress":
        return cls(
            decode(p, SaplingDiversifier, "diversifier"),
            decode(p, U256, "pk_d"),
        )

    def to_bytes(self) -> bytes:
        return self.diversifier.to_bytes() + self.pk_d.to_bytes()

    def to_string(self, network: Network) -> str:
        return bech32_encode(network.sapling_hrp, self.to_bytes())


# ═══════════════════════════════════════════════════════════════════
#  Bundle
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SpendV4:
    """Complete spend description, in v4 field order."""

    cv: U256
    anchor: U256
    nullifier: U256
    rk: U256
    zkproof: GrothProof
    spend_auth_sig: RedJubjubSignature

    TYPE_NAME = "SpendV4"

    @classmethod
    def parse(cls, p: Parser) -> "SpendV4":
        return cls(
            cv=decode(p, U256, "cv"),
            anchor=decode(p, U256, "anchor"),
            nullifier=decode(p, U256, "nullifier"),
            rk=decode(p, U256, "rk"),
            zkproof=decode(p, GrothProof, "zkproof"),
            spend_auth_sig=decode(p, RedJubjubSignature, "spend_auth_sig"),
        )


@dataclass(frozen=True)
class OutputV4:
    """Complete output description, in v4 field order."""

    cv: U256
    cmu: U256
    ephemeral_key: U256
    enc_ciphertext: SaplingEncCiphertext
    out_ciphertext: SaplingOutCiphertext
    zkproof: GrothProof

    TYPE_NAME = "OutputV4"

    @classmethod
    def parse(cls, p: Parser) -> "OutputV4":
        return cls(
            cv=decode(p, U256, "cv"),
            cmu=decode(p, U256, "cmu"),
            ephemeral_key=decode(p, U256, "ephemeral_key"),
            enc_ciphertext=decode(p, SaplingEncCiphertext, "enc_ciphertext"),
            out_ciphertext=decode(p, SaplingOutCiphertext, "out_ciphertext"),
            zkproof=decode(p, GrothProof, "zkproof"),
        )


@dataclass(frozen=True)
class SpendV5:
    cv: U256
    nullifier: U256
    rk: U256

    TYPE_NAME = "SpendV5"

    @classmethod
    def parse(cls, p: Parser) -> "SpendV5":
        return cls(decode(p, U256, "cv"), decode(p, U256, "nullifier"), decode(p, U256, "rk"))

    def complete(self, anchor: U256, zkproof: GrothProof, sig: RedJubjubSignature) -> SpendV4:
        return SpendV4(self.cv, anchor, self.nullifier, self.rk, zkproof, sig)


@dataclass(frozen=True)
class OutputV5:
    cv: U256
    cmu: U256
    ephemeral_key: U256
    enc_ciphertext: SaplingEncCiphertext
    out_ciphertext: SaplingOutCiphertext

    TYPE_NAME = "OutputV5"

    @classmethod
    def parse(cls, p: Parser) -> "OutputV5":
        return cls(
            cv=decode(p, U256, "cv"),
            cmu=decode(p, U256, "cmu"),
            ephemeral_key=decode(p, U256, "ephemeral_key"),
            enc_ciphertext=decode(p, SaplingEncCiphertext, "enc_ciphertext"),
            out_ciphertext=decode(p, SaplingOutCiphertext, "out_ciphertext"),
        )

    def complete(self, zkproof: GrothProof) -> OutputV4:
        return OutputV4(
            self.cv, self.cmu, self.ephemeral_key,
            self.enc_ciphertext, self.out_ciphertext, zkproof,
        )


@dataclass(frozen=True)
class SaplingBundle:
    value_balance: int
    spends: tuple[SpendV4, ...]
    outputs: tuple[OutputV4, ...]
    binding_sig: RedJubjubSignature | None = None

    TYPE_NAME = "SaplingBundle"

    @classmethod
    def empty(cls) -> "SaplingBundle":
        return cls(0, (), ())

    def has_actions(self) -> bool:
        return bool(self.spends or self.outputs)

    def with_binding_sig(self, sig: RedJubjubSignature) -> "SaplingBundle":
        return replace(self, binding_sig=sig)

    @classmethod
    def parse_with_param(cls, p: Parser, version: TxVersion) -> "SaplingBundle":
        if version.is_v5():
            return cls._parse_v5(p)
        if version.is_sapling_v4():
            return cls._parse_v4(p)
        raise p.invalid(f"no sapling bundle in transaction version {version.number}")

    @classmethod
    def _parse_v4(cls, p: Parser) -> "SaplingBundle":
        # The binding signature follows the joinsplits; the transaction attaches it.
        with p.context("value_balance"):
            value_balance = p.read_i64()
        spends = decode_vec(p, SpendV4, "spends")
        outputs = decode_vec(p, OutputV4, "outputs")
        return cls(value_balance, spends, outputs)

    @classmethod
    def _parse_v5(cls, p: Parser) -> "SaplingBundle":
        spends_v5 = decode_vec(p, SpendV5, "spends")
        outputs_v5 = decode_vec(p, OutputV5, "outputs")
        n_spends, n_outputs = len(spends_v5), len(outputs_v5)
        if not (n_spends or n_outputs):
            return cls.empty()
        with p.context("value_balance"):
            value_balance = p.read_i64()
        anchor = decode(p, U256, "anchor") if n_spends else None
        spend_proofs = decode_array(p, GrothProof, n_spends, "spend_proofs")
        spend_sigs = decode_array(p, RedJubjubSignature, n_spends, "spend_auth_sigs")
        output_proofs = decode_array(p, GrothProof, n_outputs, "output_proofs")
        binding_sig = decode(p, RedJubjubSignature, "binding_sig")
        spends = tuple(
            s.complete(anchor, proof, sig)
            for s, proof, sig in zip(spends_v5, spend_proofs, spend_sigs)
        )
        outputs = tuple(o.complete(proof) for o, proof in zip(outputs_v5, output_proofs))
        return cls(value_balance, spends, outputs, binding_sig)


# ═══════════════════════════════════════════════════════════════════
#  Wallet note data
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SaplingOutPoint:
    txid: TxId
    n: int

    TYPE_NAME = "SaplingOutPoint"

    @classmethod
    def parse(cls, p: Parser) -> "SaplingOutPoint":
        txid = decode(p, TxId, "txid")
        with p.context("n"):
            return cls(txid, p.read_u32())


def sapling_witness(p: Parser) -> Witness:
    return decode_with_param(p, Witness, SAPLING_DEPTH)


@dataclass(frozen=True)
class SaplingNoteData:
    version: int
    incoming_viewing_key: SaplingIncomingViewingKey
    nullifier: U256 | None
    witnesses: tuple[Witness, ...]
    witness_height: int

    TYPE_NAME = "SaplingNoteData"

    @classmethod
    def parse(cls, p: Parser) -> "SaplingNoteData":
        with p.context("version"):
            version = p.read_i32()
        ivk = decode(p, SaplingIncomingViewingKey, "incoming_viewing_key")
        nullifier = decode_optional(p, U256, "nullifier")
        witnesses = decode_vec(p, sapling_witness, "witnesses")
        with p.context("witness_height"):
            witness_height = p.read_i32()
        return cls(version, ivk, nullifier, witnesses, witness_height)
