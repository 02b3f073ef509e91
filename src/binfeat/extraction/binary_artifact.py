"""Frozen dataclasses representing normalized disassembly output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

EDGE_KINDS = ("fall_through", "conditional", "unconditional", "call")


def format_address(address: int, width: int = 8) -> str:
    """Zero-padded lowercase hex without a prefix, e.g. ``00101234``."""
    return f"{address:0{width}x}"


@dataclass(frozen=True)
class InstructionArtifact:
    address: int
    mnemonic: str
    operands: tuple[str, ...] = ()
    length: int = 0
    block: int | None = None  # start address of the owning block
    micro_ops: tuple[str, ...] = ()


@dataclass(frozen=True)
class BasicBlockArtifact:
    start: int
    end: int  # exclusive
    instructions: tuple[InstructionArtifact, ...] = ()

    @property
    def byte_size(self) -> int:
        return max(0, self.end - self.start)

    def contains(self, address: int) -> bool:
        return self.start <= address < self.end


@dataclass(frozen=True)
class EdgeArtifact:
    source: int
    target: int
    kind: str = "fall_through"


@dataclass(frozen=True)
class FunctionArtifact:
    name: str
    address: int
    raw_bytes: bytes = b""
    instructions: tuple[InstructionArtifact, ...] = ()
    blocks: tuple[BasicBlockArtifact, ...] = ()
    edges: tuple[EdgeArtifact, ...] = ()
    data_refs: tuple[bytes, ...] = ()

    @property
    def mnemonics(self) -> list[str]:
        return [insn.mnemonic for insn in self.instructions]

    def block_at(self, address: int) -> BasicBlockArtifact | None:
        for block in self.blocks:
            if block.start == address:
                return block
        return None

    def successors(self, address: int) -> list[int]:
        return [e.target for e in self.edges if e.source == address]

    def predecessors(self, address: int) -> list[int]:
        return [e.source for e in self.edges if e.target == address]


@dataclass(frozen=True)
class BinaryArtifact:
    name: str
    path: str
    sha256: str
    functions: tuple[FunctionArtifact, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
