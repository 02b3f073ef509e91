"""Normalize raw engine exports into frozen function/binary artifacts.

The engine export is a mapping with a ``functions`` list. Each raw function
looks like::

    {
        "name": "AES_Encrypt",
        "address": "00100000",
        "bytes": "554889e5...",
        "blocks": [
            {"start": "00100000", "end": "00100010",
             "instructions": [{"address": "00100000", "mnemonic": "push",
                               "operands": ["rbp"], "length": 1,
                               "pcode": ["COPY", "INT_SUB", "STORE"]}]}
        ],
        "edges": [{"source": "00100000", "target": "00100010",
                   "kind": "conditional"}],
        "data_refs": ["637c777b..."]
    }

Addresses may be ints or hex strings with or without ``0x``. ``end`` is
exclusive. Nothing here knows which engine produced the export.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

from binfeat.errors import DuplicateFunction, EmptyFunction, EngineOutputError, FunctionError, MalformedCFG
from binfeat.extraction.binary_artifact import (
    EDGE_KINDS,
    BasicBlockArtifact,
    BinaryArtifact,
    EdgeArtifact,
    FunctionArtifact,
    InstructionArtifact,
)
from binfeat.extraction.metadata import read_file_metadata
from binfeat.utils.logging import get_logger

log = get_logger(__name__)

EDGE_KIND_ALIASES = {
    "fall_through": "fall_through",
    "fallthrough": "fall_through",
    "fall-through": "fall_through",
    "flow": "fall_through",
    "conditional": "conditional",
    "conditional_jump": "conditional",
    "conditional-branch": "conditional",
    "conditional_branch": "conditional",
    "unconditional": "unconditional",
    "unconditional_jump": "unconditional",
    "unconditional-branch": "unconditional",
    "unconditional_branch": "unconditional",
    "jump": "unconditional",
    "computed_jump": "unconditional",
    "call": "call",
    "unconditional_call": "call",
    "conditional_call": "call",
    "computed_call": "call",
}


@dataclass(frozen=True)
class AdaptedFunction:
    """One export entry: either an adapted function or the reason it failed."""

    name: str
    address: int
    function: FunctionArtifact | None = None
    error: FunctionError | None = None


def parse_address(value: Any) -> int:
    """Accept ints and hex strings (``0x401000``, ``00401000``, ``ram:00401000``)."""
    if isinstance(value, bool):
        raise ValueError(f"invalid address: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if ":" in text:
            text = text.rsplit(":", 1)[1]
        if text.lower().startswith("0x"):
            text = text[2:]
        if text:
            return int(text, 16)
    raise ValueError(f"invalid address: {value!r}")


def _parse_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return bytes.fromhex(value.replace(" ", ""))
    if isinstance(value, Sequence):
        return bytes(int(b) & 0xFF for b in value)
    raise ValueError(f"invalid byte payload of type {type(value).__name__}")


def _parse_operands(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(tok.strip() for tok in value.split(",") if tok.strip())
    return tuple(str(tok) for tok in value)


def _normalize_kind(value: Any, name: str, address: int) -> str:
    kind = EDGE_KIND_ALIASES.get(str(value or "fall_through").strip().lower())
    if kind is None or kind not in EDGE_KINDS:
        raise MalformedCFG(f"unknown edge kind {value!r}", function=name, address=address)
    return kind


def _adapt_block(raw_block: Mapping[str, Any]) -> BasicBlockArtifact:
    start = parse_address(raw_block["start"])
    raw_insns = sorted(
        (dict(insn, address=parse_address(insn["address"])) for insn in raw_block.get("instructions", [])),
        key=lambda insn: insn["address"],
    )
    instructions = tuple(
        InstructionArtifact(
            address=insn["address"],
            mnemonic=str(insn.get("mnemonic", "")).strip().lower(),
            operands=_parse_operands(insn.get("operands")),
            length=int(insn.get("length", 0) or 0),
            block=start,
            micro_ops=tuple(str(op) for op in insn.get("pcode", None) or ()),
        )
        for insn in raw_insns
    )

    if raw_block.get("end") is not None:
        end = parse_address(raw_block["end"])
    elif instructions:
        last = instructions[-1]
        end = last.address + max(last.length, 1)
    else:
        end = start
    return BasicBlockArtifact(start=start, end=end, instructions=instructions)


def _check_blocks(blocks: Sequence[BasicBlockArtifact], name: str, address: int) -> None:
    ordered = sorted(blocks, key=lambda b: b.start)
    for prev, cur in zip(ordered, ordered[1:]):
        if cur.start == prev.start:
            raise MalformedCFG(
                f"duplicate block at {cur.start:#x}", function=name, address=address
            )
        if prev.end > cur.start:
            raise MalformedCFG(
                f"block {prev.start:#x}-{prev.end:#x} overlaps block at {cur.start:#x}",
                function=name,
                address=address,
            )


def _adapt_edges(raw_edges: Any, starts: set[int], name: str, address: int) -> tuple[EdgeArtifact, ...]:
    if not isinstance(raw_edges, list):
        raise MalformedCFG(f"edges must be a list, got {type(raw_edges).__name__}", function=name, address=address)
    edges: list[EdgeArtifact] = []
    for raw_edge in raw_edges:
        try:
            source = parse_address(raw_edge["source"])
            target = parse_address(raw_edge["target"])
            kind = raw_edge.get("kind")
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            raise MalformedCFG(f"unreadable edge: {exc}", function=name, address=address) from exc
        if source not in starts or target not in starts:
            missing = source if source not in starts else target
            raise MalformedCFG(
                f"edge {source:#x}->{target:#x} references unknown block {missing:#x}",
                function=name,
                address=address,
            )
        edges.append(EdgeArtifact(source=source, target=target, kind=_normalize_kind(kind, name, address)))
    return tuple(edges)


def adapt_function(raw: Mapping[str, Any]) -> FunctionArtifact:
    """Build a validated FunctionArtifact from one raw export entry.

    Raises ``EmptyFunction`` when there are no instructions and
    ``MalformedCFG`` when blocks overlap or an edge endpoint is unknown.
    """
    address = parse_address(raw["address"])
    name = str(raw.get("name") or f"sub_{address:x}")

    try:
        blocks = tuple(_adapt_block(b) for b in raw.get("blocks", []) or [])
    except (KeyError, ValueError, TypeError, AttributeError) as exc:
        raise MalformedCFG(f"unreadable block: {exc}", function=name, address=address) from exc

    instructions = tuple(
        sorted((insn for block in blocks for insn in block.instructions), key=lambda i: i.address)
    )
    if not instructions:
        raise EmptyFunction("function has no instructions", function=name, address=address)

    _check_blocks(blocks, name, address)

    edges = _adapt_edges(raw.get("edges") or [], {block.start for block in blocks}, name, address)

    try:
        raw_bytes = _parse_bytes(raw.get("bytes"))
        data_refs = tuple(_parse_bytes(blob) for blob in raw.get("data_refs", []) or [])
    except (ValueError, TypeError) as exc:
        raise MalformedCFG(f"unreadable bytes: {exc}", function=name, address=address) from exc

    return FunctionArtifact(
        name=name,
        address=address,
        raw_bytes=raw_bytes,
        instructions=instructions,
        blocks=blocks,
        edges=edges,
        data_refs=tuple(blob for blob in data_refs if blob),
    )


def raw_functions(export: Any, binary: str = "") -> list[Mapping[str, Any]]:
    """Return the list of raw function entries, validating the export shape."""
    functions = export.get("functions") if isinstance(export, Mapping) else export
    if not isinstance(functions, list):
        raise EngineOutputError("export has no 'functions' list", binary=binary)
    return functions


def adapt_binary(
    path: Path, export: Any, engine: str = "ghidra"
) -> tuple[BinaryArtifact, tuple[AdaptedFunction, ...]]:
    """Adapt every function in an export, keeping failures in export order.

    The returned BinaryArtifact holds only the functions that adapted
    cleanly; the AdaptedFunction tuple has one entry per export entry.
    """
    path = Path(path)
    entries = raw_functions(export, binary=path.name)
    metadata = read_file_metadata(path)
    metadata["engine"] = engine
    if isinstance(export, Mapping) and isinstance(export.get("metadata"), Mapping):
        for key, value in sorted(export["metadata"].items()):
            metadata.setdefault(key, value)

    slots: list[AdaptedFunction] = []
    seen: set[int] = set()
    for index, raw in enumerate(entries):
        try:
            address = parse_address(raw["address"])
        except (KeyError, ValueError, TypeError):
            log.warning("function_without_address", binary=path.name, index=index)
            slots.append(
                AdaptedFunction(
                    name=str(raw.get("name", f"entry_{index}")) if isinstance(raw, Mapping) else f"entry_{index}",
                    address=0,
                    error=MalformedCFG("function entry has no readable address"),
                )
            )
            continue
        name = str(raw.get("name") or f"sub_{address:x}")

        if address in seen:
            slots.append(
                AdaptedFunction(
                    name=name,
                    address=address,
                    error=DuplicateFunction(
                        f"duplicate function address {address:#x}", function=name, address=address
                    ),
                )
            )
            continue
        seen.add(address)

        try:
            slots.append(AdaptedFunction(name=name, address=address, function=adapt_function(raw)))
        except FunctionError as exc:
            log.debug("function_rejected", binary=path.name, function=name, error=str(exc))
            slots.append(AdaptedFunction(name=name, address=address, error=exc))

    binary = BinaryArtifact(
        name=path.name,
        path=str(path),
        sha256=metadata.get("sha256", ""),
        functions=tuple(slot.function for slot in slots if slot.function is not None),
        metadata=metadata,
    )
    return binary, tuple(slots)
