"""Shannon entropy over byte, opcode and immediate streams."""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import asdict, dataclass
from typing import Hashable, Iterable

import numpy as np

from binfeat.analysis.instruction_stats import immediate_size, iter_immediates
from binfeat.extraction.binary_artifact import FunctionArtifact


@dataclass(frozen=True)
class EntropyMetrics:
    byte_entropy: float = 0.0
    opcode_entropy: float = 0.0
    immediate_entropy: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


def _entropy_from_counts(counts: np.ndarray) -> float:
    counts = counts[counts > 0]
    if counts.size < 2:
        return 0.0
    probs = counts / float(counts.sum())
    return float(-np.sum(probs * np.log2(probs)))


def byte_entropy(data: bytes) -> float:
    """Entropy over byte values 0-255; always within [0, 8]."""
    if not data:
        return 0.0
    counts = np.bincount(np.frombuffer(data, dtype=np.uint8), minlength=256)
    return _entropy_from_counts(counts)


def symbol_entropy(symbols: Iterable[Hashable]) -> float:
    """Entropy over an arbitrary symbol stream (alphabet = observed symbols)."""
    counter = Counter(symbols)
    if len(counter) < 2:
        return 0.0
    return _entropy_from_counts(np.fromiter(counter.values(), dtype=np.float64, count=len(counter)))


def _immediate_bytes(function: FunctionArtifact) -> bytes:
    return b"".join(
        value.to_bytes(immediate_size(value), "little") for value in iter_immediates(function) if value >= 0
    )


def _rounded(value: float, bound: float, precision: int) -> float:
    # Rounding up must not carry a value past its alphabet bound.
    return min(round(value, precision), bound)


def compute_entropy(function: FunctionArtifact, precision: int = 6) -> EntropyMetrics:
    mnemonics = function.mnemonics
    distinct = len(set(mnemonics))
    return EntropyMetrics(
        byte_entropy=_rounded(byte_entropy(function.raw_bytes), 8.0, precision),
        opcode_entropy=_rounded(symbol_entropy(mnemonics), math.log2(distinct) if distinct else 0.0, precision),
        immediate_entropy=_rounded(byte_entropy(_immediate_bytes(function)), 8.0, precision),
    )
