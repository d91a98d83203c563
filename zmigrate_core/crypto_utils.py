"""
Hashing and address-encoding helpers.

Leaf utilities used to render legacy key material as human-readable
Zcash addresses: SHA-256 / double SHA-256, RIPEMD-160 (via
pycryptodome), Hash160, Base58Check and Bech32.
"""

from __future__ import annotations

from Crypto.Hash import RIPEMD160, SHA256

B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {c: i for i, c in enumerate(B58_ALPHABET)}

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GEN = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


# ═══════════════════════════════════════════════════════════════════
#  Hashes
# ═══════════════════════════════════════════════════════════════════

def sha256(data: bytes) -> bytes:
    return SHA256.new(data).digest()


def sha256d(data: bytes) -> bytes:
    """SHA-256 applied twice."""
    return sha256(sha256(data))


def ripemd160(data: bytes) -> bytes:
    return RIPEMD160.new(data).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD-160 of SHA-256, the transparent key/script id."""
    return ripemd160(sha256(data))


# ═══════════════════════════════════════════════════════════════════
#  Base58
# ═══════════════════════════════════════════════════════════════════

def base58_encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    out = []
    while n:
        n, rem = divmod(n, 58)
        out.append(B58_ALPHABET[rem])
    pad = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad + "".join(reversed(out))


def base58_decode(text: str) -> bytes:
    n = 0
    for ch in text:
        if ch not in _B58_INDEX:
            raise ValueError(f"invalid base58 character {ch!r}")
        n = n * 58 + _B58_INDEX[ch]
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    pad = len(text) - len(text.lstrip("1"))
    return b"\x00" * pad + body


def base58check_encode(payload: bytes) -> str:
    return base58_encode(payload + sha256d(payload)[:4])


def base58check_decode(text: str) -> bytes:
    raw = base58_decode(text)
    if len(raw) < 4:
        raise ValueError("base58check string too short")
    payload, checksum = raw[:-4], raw[-4:]
    if sha256d(payload)[:4] != checksum:
        raise ValueError("base58check checksum mismatch")
    return payload


# ═══════════════════════════════════════════════════════════════════
#  Bech32 (BIP-173)
# ═══════════════════════════════════════════════════════════════════

def _bech32_polymod(values: list[int]) -> int:
    chk = 1
    for v in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ v
        for i in range(5):
            if (top >> i) & 1:
                chk ^= _BECH32_GEN[i]
    return chk


def _bech32_hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def convertbits(data: bytes, frombits: int, tobits: int, pad: bool = True) -> list[int]:
    acc = 0
    bits = 0
    out: list[int] = []
    maxv = (1 << tobits) - 1
    for value in data:
        acc = (acc << frombits) | value
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            out.append((acc >> bits) & maxv)
    if pad and bits:
        out.append((acc << (tobits - bits)) & maxv)
    elif not pad and (bits >= frombits or (acc << (tobits - bits)) & maxv):
        raise ValueError("invalid padding in bit conversion")
    return out


def bech32_encode(hrp: str, payload: bytes) -> str:
    """Encode 8-bit *payload* under *hrp* with a Bech32 checksum."""
    data = convertbits(payload, 8, 5)
    polymod = _bech32_polymod(_bech32_hrp_expand(hrp) + data + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(BECH32_CHARSET[d] for d in data + checksum)


def bech32_verify(text: str) -> tuple[str, bytes]:
    """Split and checksum-verify a Bech32 string, returning ``(hrp, payload)``."""
    text = text.lower()
    pos = text.rfind("1")
    if pos < 1 or pos + 7 > len(text):
        raise ValueError("malformed bech32 string")
    hrp, tail = text[:pos], text[pos + 1:]
    try:
        data = [BECH32_CHARSET.index(c) for c in tail]
    except ValueError as exc:
        raise ValueError("invalid bech32 character") from exc
    if _bech32_polymod(_bech32_hrp_expand(hrp) + data) != 1:
        raise ValueError("bech32 checksum mismatch")
    return hrp, bytes(convertbits(bytes(data[:-6]), 5, 8, pad=False))
