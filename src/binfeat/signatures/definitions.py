"""Signature definitions and the built-in cryptographic constant table.

A :class:`SignatureTable` is built once at startup and shared read-only by
every worker thread; nothing in it is mutable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Sequence

SIGNATURE_KINDS = ("bytes", "immediates", "mnemonics")


@dataclass(frozen=True)
class SignatureDefinition:
    name: str
    family: str
    kind: str
    description: str = ""
    patterns: tuple[bytes, ...] = ()  # bytes: every encoding searched
    words: frozenset[int] = frozenset()  # immediates
    mnemonics: frozenset[str] = frozenset()  # mnemonics
    min_hits: int = 1
    min_ratio: float = 0.0

    def __post_init__(self) -> None:
        if self.kind not in SIGNATURE_KINDS:
            raise ValueError(f"unknown signature kind {self.kind!r}")
        if self.kind == "bytes" and not any(self.patterns):
            raise ValueError(f"{self.name}: byte signature needs a non-empty pattern")
        if self.kind == "immediates" and not self.words:
            raise ValueError(f"{self.name}: immediate signature needs constant words")
        if self.kind == "mnemonics" and not self.mnemonics:
            raise ValueError(f"{self.name}: mnemonic signature needs mnemonics")
        if self.min_hits < 1:
            raise ValueError(f"{self.name}: min_hits must be >= 1")


@dataclass(frozen=True)
class SignatureTable:
    definitions: tuple[SignatureDefinition, ...] = ()
    _index: dict[str, SignatureDefinition] = field(
        default_factory=dict, init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        seen: dict[str, SignatureDefinition] = {}
        for definition in self.definitions:
            if definition.name in seen:
                raise ValueError(f"duplicate signature name {definition.name!r}")
            seen[definition.name] = definition
        object.__setattr__(self, "_index", seen)

    def __iter__(self) -> Iterator[SignatureDefinition]:
        return iter(self.definitions)

    def __len__(self) -> int:
        return len(self.definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(d.name for d in self.definitions)

    def get(self, name: str) -> SignatureDefinition | None:
        return self._index.get(name)

    def extend(self, extra: Iterable[SignatureDefinition]) -> SignatureTable:
        return SignatureTable(self.definitions + tuple(extra))


# -- builders -------------------------------------------------------------


def encode_words(words: Sequence[int], word_size: int = 4, endian: str = "both") -> tuple[bytes, ...]:
    """Encode a word table as it would sit in memory on each requested endianness."""
    orders = {"little": ("little",), "big": ("big",), "both": ("little", "big")}[endian]
    return tuple(b"".join(w.to_bytes(word_size, order) for w in words) for order in orders)


def byte_table(name: str, family: str, data: bytes, description: str = "") -> SignatureDefinition:
    return SignatureDefinition(name=name, family=family, kind="bytes", description=description, patterns=(bytes(data),))


def word_table(
    name: str,
    family: str,
    words: Sequence[int],
    word_size: int = 4,
    endian: str = "both",
    description: str = "",
) -> SignatureDefinition:
    return SignatureDefinition(
        name=name,
        family=family,
        kind="bytes",
        description=description,
        patterns=encode_words(words, word_size, endian),
    )


def immediate_set(
    name: str, family: str, words: Iterable[int], min_hits: int, description: str = ""
) -> SignatureDefinition:
    return SignatureDefinition(
        name=name,
        family=family,
        kind="immediates",
        description=description,
        words=frozenset(words),
        min_hits=min_hits,
    )


def mnemonic_pattern(
    name: str,
    family: str,
    mnemonics: Iterable[str],
    min_hits: int,
    min_ratio: float = 0.0,
    description: str = "",
) -> SignatureDefinition:
    return SignatureDefinition(
        name=name,
        family=family,
        kind="mnemonics",
        description=description,
        mnemonics=frozenset(m.lower() for m in mnemonics),
        min_hits=min_hits,
        min_ratio=min_ratio,
    )


# -- constants ------------------------------------------------------------


def _rotl8(x: int, shift: int) -> int:
    return ((x << shift) | (x >> (8 - shift))) & 0xFF


def _xtime(x: int) -> int:
    return ((x << 1) ^ (0x1B if x & 0x80 else 0)) & 0xFF


def _aes_sbox() -> bytes:
    """Forward S-box: multiplicative inverse in GF(2^8) then the affine map."""
    sbox = [0] * 256
    p = q = 1
    while True:
        p = p ^ _xtime(p)  # p * 3
        q ^= q << 1  # q / 3
        q ^= q << 2
        q ^= q << 4
        q &= 0xFF
        if q & 0x80:
            q ^= 0x09
        sbox[p] = q ^ _rotl8(q, 1) ^ _rotl8(q, 2) ^ _rotl8(q, 3) ^ _rotl8(q, 4) ^ 0x63
        if p == 1:
            break
    sbox[0] = 0x63
    return bytes(sbox)


AES_SBOX = _aes_sbox()
AES_INV_SBOX = bytes(AES_SBOX.index(i) for i in range(256))
AES_RCON = bytes([0x01, 0x02, 0x04, 0x08, 0x10, 0x20, 0x40, 0x80, 0x1B, 0x36])
# First 16 words of the combined SubBytes/MixColumns T-table (OpenSSL Te0).
AES_TE0_HEAD = tuple(
    (_xtime(s) << 24) | (s << 16) | (s << 8) | (_xtime(s) ^ s) for s in AES_SBOX[:16]
)

SHA256_K_HEAD = (
    0x428A2F98, 0x71374491, 0xB5C0FBCF, 0xE9B5DBA5, 0x3956C25B, 0x59F111F1, 0x923F82A4, 0xAB1C5ED5,
    0xD807AA98, 0x12835B01, 0x243185BE, 0x550C7DC3, 0x72BE5D74, 0x80DEB1FE, 0x9BDC06A7, 0xC19BF174,
)
SHA1_K = (0x5A827999, 0x6ED9EBA1, 0x8F1BBCDC, 0xCA62C1D6)
SHA1_IV = (0x67452301, 0xEFCDAB89, 0x98BADCFE, 0x10325476, 0xC3D2E1F0)
MD5_IV = SHA1_IV[:4]
MD5_T_HEAD = (
    0xD76AA478, 0xE8C7B756, 0x242070DB, 0xC1BDCEEE, 0xF57C0FAF, 0x4787C62A, 0xA8304613, 0xFD469501,
    0x698098D8, 0x8B44F7AF, 0xFFFF5BB1, 0x895CD7BE, 0x6B901122, 0xFD987193, 0xA679438E, 0x49B40821,
)
CHACHA_SIGMA = b"expand 32-byte k"
DES_SBOX1 = bytes([
    14, 4, 13, 1, 2, 15, 11, 8, 3, 10, 6, 12, 5, 9, 0, 7,
    0, 15, 7, 4, 14, 2, 13, 1, 10, 6, 12, 11, 9, 5, 3, 8,
    4, 1, 14, 8, 13, 6, 2, 11, 15, 12, 9, 7, 3, 10, 5, 0,
    15, 12, 8, 2, 4, 9, 1, 7, 5, 11, 3, 14, 10, 0, 6, 13,
])
BLOWFISH_P = (
    0x243F6A88, 0x85A308D3, 0x13198A2E, 0x03707344, 0xA4093822, 0x299F31D0,
    0x082EFA98, 0xEC4E6C89, 0x452821E6, 0x38D01377, 0xBE5466CF, 0x34E90C6C,
    0xC0AC29B7, 0xC97C50DD, 0x3F84D5B5, 0xB5470917, 0x9216D5D9, 0x8979FB1B,
)
BIGINT_MNEMONICS = (
    "mul", "umull", "umlal", "smull", "smlal", "umaal", "adc", "adcs", "sbc", "sbcs",
    "mulx", "adox", "adcx", "imul", "umulh", "mulhu",
)


def builtin_signatures() -> tuple[SignatureDefinition, ...]:
    return (
        byte_table("has_aes_sbox", "AES", AES_SBOX, "AES forward S-box (256 bytes)"),
        byte_table("has_aes_inv_sbox", "AES", AES_INV_SBOX, "AES inverse S-box (256 bytes)"),
        byte_table("has_aes_rcon", "AES", AES_RCON, "AES key-schedule round constants"),
        word_table("has_aes_te0", "AES", AES_TE0_HEAD, description="AES T-table Te0, first 16 words"),
        word_table("has_sha256_k", "SHA-256", SHA256_K_HEAD, description="SHA-256 round constants, first 16 words"),
        immediate_set("has_sha256_k_imm", "SHA-256", SHA256_K_HEAD, 4, "SHA-256 round constants as immediates"),
        immediate_set("has_sha1_k", "SHA-1", SHA1_K, 2, "SHA-1 round constants as immediates"),
        immediate_set("has_sha1_iv", "SHA-1", SHA1_IV, 5, "SHA-1 initial hash values as immediates"),
        word_table("has_md5_t", "MD5", MD5_T_HEAD, description="MD5 sine table, first 16 words"),
        immediate_set("has_md5_iv", "MD5", MD5_IV, 4, "MD5 initial state as immediates"),
        byte_table("has_chacha_sigma", "ChaCha20", CHACHA_SIGMA, "ChaCha/Salsa 'expand 32-byte k'"),
        byte_table("has_des_sbox", "DES", DES_SBOX1, "DES S-box 1 (64 entries)"),
        word_table("has_blowfish_p", "Blowfish", BLOWFISH_P, description="Blowfish P-array"),
        mnemonic_pattern(
            "rsa_bigint_detected",
            "RSA",
            BIGINT_MNEMONICS,
            min_hits=8,
            min_ratio=0.15,
            description="multi-precision multiply/carry chains",
        ),
    )


BUILTIN_TABLE = SignatureTable(builtin_signatures())
