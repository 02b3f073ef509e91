"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from binfeat.config.models import BinFeatConfig, EngineConfig, PipelineConfig
from binfeat.errors import EngineCrash
from binfeat.extraction.backends import DisassemblyBackend
from binfeat.extraction.binary_artifact import (
    BasicBlockArtifact,
    EdgeArtifact,
    FunctionArtifact,
    InstructionArtifact,
)
from binfeat.labeling.rules import load_label_rules
from binfeat.signatures.definitions import AES_SBOX, BUILTIN_TABLE


def insn(address: int, mnemonic: str, *operands: str, length: int = 4, block: int | None = None) -> InstructionArtifact:
    return InstructionArtifact(
        address=address, mnemonic=mnemonic, operands=tuple(operands), length=length, block=block
    )


def raw_block(start: int, mnemonics: list[str], width: int = 4) -> dict[str, Any]:
    """A raw export block with fixed-width instructions."""
    return {
        "start": f"{start:08x}",
        "end": f"{start + width * len(mnemonics):08x}",
        "instructions": [
            {"address": f"{start + i * width:08x}", "mnemonic": m, "operands": [], "length": width}
            for i, m in enumerate(mnemonics)
        ],
    }


def raw_function(
    name: str,
    address: int,
    blocks: list[dict[str, Any]],
    edges: list[tuple[int, int, str]] = (),
    data: bytes = b"",
    data_refs: list[bytes] = (),
) -> dict[str, Any]:
    return {
        "name": name,
        "address": f"{address:08x}",
        "bytes": data.hex(),
        "blocks": blocks,
        "edges": [{"source": f"{s:08x}", "target": f"{t:08x}", "kind": k} for s, t, k in edges],
        "data_refs": [blob.hex() for blob in data_refs],
    }


@pytest.fixture
def sample_config(tmp_path: Path) -> BinFeatConfig:
    return BinFeatConfig(
        engine=EngineConfig(backend="precomputed", export_dir=str(tmp_path / "exports"), timeout_per_binary=5),
        pipeline=PipelineConfig(
            input_dir=str(tmp_path / "bins"),
            output_dir=str(tmp_path / "out"),
            batch_size=2,
        ),
    )


@pytest.fixture
def label_rules():
    return load_label_rules()


@pytest.fixture
def signatures():
    return BUILTIN_TABLE


@pytest.fixture
def aes_raw_function() -> dict[str, Any]:
    """``AES_Encrypt`` at 00100000 with the forward S-box in its referenced data."""
    return raw_function(
        "AES_Encrypt",
        0x00100000,
        [
            raw_block(0x00100000, ["push", "mov", "cmp", "jne"]),
            raw_block(0x00100010, ["movzx", "xor", "mov"]),
            raw_block(0x0010001C, ["pop", "ret"]),
        ],
        edges=[
            (0x00100000, 0x00100010, "conditional"),
            (0x00100000, 0x0010001C, "fall_through"),
            (0x00100010, 0x0010001C, "fall_through"),
        ],
        data=bytes(range(16)),
        data_refs=[AES_SBOX],
    )


@pytest.fixture
def plain_raw_function() -> dict[str, Any]:
    """``sub_401000``: nothing crypto about it."""
    return raw_function(
        "sub_401000",
        0x00401000,
        [raw_block(0x00401000, ["push", "mov", "add", "pop", "ret"])],
        data=b"\x55\x48\x89\xe5\x48\x01\xc0\x5d\xc3",
    )


@pytest.fixture
def loop_function() -> FunctionArtifact:
    """Entry -> header <-> body, header -> exit; one natural loop."""
    blocks = (
        BasicBlockArtifact(0x1000, 0x1008, (insn(0x1000, "mov", block=0x1000), insn(0x1004, "jmp", block=0x1000))),
        BasicBlockArtifact(0x1008, 0x1010, (insn(0x1008, "cmp", block=0x1008), insn(0x100C, "jge", block=0x1008))),
        BasicBlockArtifact(
            0x1010,
            0x101C,
            (
                insn(0x1010, "xor", "eax", "ebx", block=0x1010),
                insn(0x1014, "rol", "eax", "0x7", block=0x1010),
                insn(0x1018, "jmp", block=0x1010),
            ),
        ),
        BasicBlockArtifact(0x101C, 0x1020, (insn(0x101C, "ret", block=0x101C),)),
    )
    edges = (
        EdgeArtifact(0x1000, 0x1008, "unconditional"),
        EdgeArtifact(0x1008, 0x1010, "fall_through"),
        EdgeArtifact(0x1008, 0x101C, "conditional"),
        EdgeArtifact(0x1010, 0x1008, "unconditional"),
    )
    return FunctionArtifact(
        name="mix_loop",
        address=0x1000,
        raw_bytes=bytes(range(32)),
        instructions=tuple(i for b in blocks for i in b.instructions),
        blocks=blocks,
        edges=edges,
    )


class FakeBackend(DisassemblyBackend):
    """Serves canned exports by binary name; listed names crash the engine."""

    name = "fake"

    def __init__(self, exports: dict[str, dict[str, Any]], crash: set[str] = frozenset()) -> None:
        self.exports = exports
        self.crash = set(crash)
        self.calls: list[str] = []

    def disassemble(self, binary_path: Path) -> dict[str, Any]:
        name = Path(binary_path).name
        self.calls.append(name)
        if name in self.crash:
            raise EngineCrash("analyzeHeadless exited with status 1", binary=name, returncode=1)
        return self.exports[name]


@pytest.fixture
def fake_backend_factory():
    return FakeBackend


@pytest.fixture
def make_block():
    return raw_block


@pytest.fixture
def make_function():
    return raw_function
