"""Crypto signature matching.

Every matcher is a pure function of (function evidence, definition): there is
no scan state shared between calls, so functions and binaries can be scanned
from any number of threads against the same table.
"""

from __future__ import annotations

from binfeat.analysis.instruction_stats import iter_immediates, normalize_mnemonic
from binfeat.extraction.binary_artifact import FunctionArtifact
from binfeat.signatures.definitions import SignatureDefinition, SignatureTable


def count_occurrences(haystack: bytes, needle: bytes) -> int:
    """Overlapping occurrence count of ``needle`` in ``haystack``."""
    if not needle or len(needle) > len(haystack):
        return 0
    count = 0
    pos = haystack.find(needle)
    while pos != -1:
        count += 1
        pos = haystack.find(needle, pos + 1)
    return count


def match_bytes(function: FunctionArtifact, definition: SignatureDefinition) -> int:
    # Code bytes and each referenced data blob are separate regions; a table
    # never spans two of them.
    regions = (function.raw_bytes, *function.data_refs)
    return sum(count_occurrences(region, pattern) for region in regions for pattern in definition.patterns)


def match_immediates(function: FunctionArtifact, definition: SignatureDefinition) -> int:
    found = {value & 0xFFFFFFFFFFFFFFFF for value in iter_immediates(function)} & definition.words
    return len(found) if len(found) >= definition.min_hits else 0


def match_mnemonics(function: FunctionArtifact, definition: SignatureDefinition) -> int:
    total = len(function.instructions)
    if not total:
        return 0
    hits = sum(1 for insn in function.instructions if normalize_mnemonic(insn.mnemonic) in definition.mnemonics)
    if hits < definition.min_hits or hits / total < definition.min_ratio:
        return 0
    return hits


_MATCHERS = {
    "bytes": match_bytes,
    "immediates": match_immediates,
    "mnemonics": match_mnemonics,
}


def match_signature(function: FunctionArtifact, definition: SignatureDefinition) -> int:
    return _MATCHERS[definition.kind](function, definition)


def detect_signatures(function: FunctionArtifact, table: SignatureTable) -> dict[str, int]:
    """Signature name -> match count, in table order. Zero means no match."""
    return {definition.name: match_signature(function, definition) for definition in table}


def empty_signatures(table: SignatureTable) -> dict[str, int]:
    return {name: 0 for name in table.names}
