"""Load user signature definitions from YAML.

File format::

    signatures:
      - name: has_tea_delta
        family: TEA
        kind: immediates
        words: [0x9E3779B9]
      - name: has_camellia_sigma
        family: Camellia
        kind: bytes
        words: [0xA09E667F, 0x3BCC908B]
        word_size: 4
        endian: both
      - name: has_custom_table
        kind: bytes
        hex: "0011223344556677"

Any problem with the file is a :class:`SignatureLoadError`; a run never
starts with a partially loaded table.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from binfeat.errors import SignatureLoadError
from binfeat.signatures.definitions import (
    BUILTIN_TABLE,
    SignatureDefinition,
    SignatureTable,
    encode_words,
)
from binfeat.utils.logging import get_logger

log = get_logger(__name__)


class SignatureSpec(BaseModel):
    name: str = Field(min_length=1)
    family: str = ""
    kind: Literal["bytes", "immediates", "mnemonics"]
    description: str = ""
    hex: str | None = None
    words: list[int] = Field(default_factory=list)
    word_size: Literal[1, 2, 4, 8] = 4
    endian: Literal["little", "big", "both"] = "both"
    mnemonics: list[str] = Field(default_factory=list)
    min_hits: int = Field(1, ge=1)
    min_ratio: float = Field(0.0, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_payload(self) -> SignatureSpec:
        if self.kind == "bytes" and not (self.hex or self.words):
            raise ValueError("byte signatures need 'hex' or 'words'")
        if self.kind == "bytes" and not self.hex:
            limit = 1 << (8 * self.word_size)
            for word in self.words:
                if not 0 <= word < limit:
                    raise ValueError(f"word {word:#x} does not fit in {self.word_size} bytes")
        if self.kind == "immediates" and not self.words:
            raise ValueError("immediate signatures need 'words'")
        if self.kind == "mnemonics" and not self.mnemonics:
            raise ValueError("mnemonic signatures need 'mnemonics'")
        return self

    def to_definition(self) -> SignatureDefinition:
        patterns: tuple[bytes, ...] = ()
        if self.kind == "bytes":
            if self.hex:
                patterns = (bytes.fromhex(self.hex.replace(" ", "")),)
            else:
                patterns = encode_words(self.words, self.word_size, self.endian)
        return SignatureDefinition(
            name=self.name,
            family=self.family or self.name,
            kind=self.kind,
            description=self.description,
            patterns=patterns,
            words=frozenset(self.words) if self.kind == "immediates" else frozenset(),
            mnemonics=frozenset(m.lower() for m in self.mnemonics),
            min_hits=self.min_hits,
            min_ratio=self.min_ratio,
        )


class SignatureFile(BaseModel):
    signatures: list[SignatureSpec] = Field(default_factory=list)


def parse_signature_file(path: str | Path) -> tuple[SignatureDefinition, ...]:
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text()) or {}
        parsed = SignatureFile.model_validate(raw)
        return tuple(spec.to_definition() for spec in parsed.signatures)
    except (OSError, yaml.YAMLError, ValidationError, ValueError) as exc:
        raise SignatureLoadError(f"cannot load signatures from {path}: {exc}") from exc


def load_signature_table(
    path: str | Path | None = None, include_builtin: bool = True
) -> SignatureTable:
    """Built-in table, optionally extended by a YAML file, as one immutable table."""
    base = BUILTIN_TABLE if include_builtin else SignatureTable()
    if path is None:
        return base

    extra = parse_signature_file(path)
    try:
        table = base.extend(extra)
    except ValueError as exc:
        raise SignatureLoadError(f"cannot load signatures from {path}: {exc}") from exc

    log.info("signatures_loaded", path=str(path), builtin=len(base), extra=len(extra))
    return table
