"""Opcode histograms, n-grams and operation-category statistics."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from binfeat.extraction.binary_artifact import FunctionArtifact

# Immediates as Ghidra and objdump print them: #0x10, #16, 0x428a2f98, $0x10
IMM_RE = re.compile(r"^[#$]?(-?0x[0-9a-fA-F]+|-?\d+)$")

IMMEDIATE_KEYS = ("count", "size_1b", "size_2b", "size_4b", "size_8b", "size_large")

# Mnemonic families across x86, ARM/AArch64, MIPS, RISC-V and AVR.
# Membership is tested on the normalized mnemonic (see normalize_mnemonic).
CATEGORY_MNEMONICS: dict[str, frozenset[str]] = {
    "arithmetic": frozenset({
        "add", "adds", "adc", "adcs", "addu", "addi", "addiu", "addw", "addiw", "sub", "subs",
        "sbc", "sbcs", "subu", "subw", "sbb", "inc", "dec", "neg", "negs", "rsb", "rsbs", "div",
        "idiv", "udiv", "sdiv", "divu", "rem", "remu", "adiw", "sbiw", "subi", "sbci", "lea",
    }),
    "logical": frozenset({
        "and", "ands", "andi", "or", "orr", "orrs", "ori", "orn", "bic", "bics", "not", "mvn",
        "mvns", "nor", "test", "tst", "teq", "com",
    }),
    "bitwise": frozenset({"xor", "eor", "eors", "xori", "pxor", "vpxor", "xorps", "veor"}),
    "shift_rotate": frozenset({
        "shl", "shr", "sal", "sar", "rol", "ror", "rors", "rcl", "rcr", "lsl", "lsls", "lsr",
        "lsrs", "asr", "asrs", "rrx", "sll", "srl", "sra", "sllv", "srlv", "srav", "slli",
        "srli", "srai", "sllw", "srlw", "rotr", "rotl", "rorx", "shld", "shrd", "swap", "rolw",
        "rorw",
    }),
    "multiply": frozenset({
        "mul", "muls", "imul", "mulx", "umull", "smull", "umlal", "smlal", "mla", "mls", "mulhu",
        "mulh", "mulhsu", "mult", "multu", "madd", "msub", "umulh", "smulh", "mulw", "fmul",
    }),
    "memory": frozenset({
        "mov", "movzx", "movsx", "movsxd", "ldr", "ldrb", "ldrh", "ldrsb", "ldrsh", "ldrd", "ldm",
        "ldp", "ldur", "str", "strb", "strh", "strd", "stm", "stp", "stur", "push", "pop", "lw",
        "lh", "lb", "lbu", "lhu", "ld", "sw", "sh", "sb", "sd", "lds", "sts", "ldd", "std", "lpm",
        "movs", "stos", "lods",
    }),
    "branch": frozenset({
        "jmp", "je", "jne", "jz", "jnz", "jg", "jge", "jl", "jle", "ja", "jae", "jb", "jbe", "js",
        "jns", "b", "bne", "beq", "bgt", "bge", "blt", "ble", "bhi", "bls", "bcc", "bcs", "bmi",
        "bpl", "cbz", "cbnz", "tbz", "tbnz", "bx", "j", "jr", "bnez", "beqz", "bltu", "bgeu",
        "rjmp", "ijmp", "brne", "breq", "ret", "retn", "reti",
    }),
    "call": frozenset({"call", "bl", "blx", "jal", "jalr", "rcall", "icall", "blr"}),
}


@dataclass(frozen=True)
class InstructionStats:
    instruction_count: int
    opcode_histogram: dict[str, int]
    opcode_frequencies: dict[str, float]
    ngrams: dict[str, dict[str, int]]
    unique_ngram_count: int
    op_categories: dict[str, Any]
    immediates: dict[str, int]
    micro_ops: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "instruction_count": self.instruction_count,
            "opcode_histogram": self.opcode_histogram,
            "opcode_frequencies": self.opcode_frequencies,
            "ngrams": self.ngrams,
            "unique_ngram_count": self.unique_ngram_count,
            "op_categories": self.op_categories,
            "immediates": self.immediates,
            "micro_ops": self.micro_ops,
        }


def normalize_mnemonic(mnemonic: str) -> str:
    """Lower-case and strip width/condition suffixes: ``BNE.W`` -> ``bne``."""
    op = mnemonic.strip().lower()
    if op.startswith("lock "):
        op = op[5:]
    return op.split(".")[0]


def parse_immediate(token: str) -> int | None:
    match = IMM_RE.match(token.strip())
    if match is None:
        return None
    text = match.group(1)
    negative = text.startswith("-")
    text = text.lstrip("-")
    value = int(text, 16) if text.lower().startswith("0x") else int(text)
    return -value if negative else value


def iter_immediates(function: FunctionArtifact) -> Iterable[int]:
    for insn in function.instructions:
        for token in insn.operands:
            value = parse_immediate(token)
            if value is not None:
                yield value


def immediate_size(value: int) -> int:
    value = abs(value)
    if value == 0:
        return 1
    return (value.bit_length() + 7) // 8


def build_ngrams(sequence: Sequence[str], n: int) -> Counter[str]:
    return Counter(" ".join(sequence[i : i + n]) for i in range(len(sequence) - n + 1))


def _sorted(counter: Counter[str]) -> dict[str, int]:
    return {key: counter[key] for key in sorted(counter)}


def categorize(histogram: Counter[str], total: int, precision: int = 6) -> dict[str, Any]:
    counts = {
        category: sum(count for op, count in histogram.items() if normalize_mnemonic(op) in members)
        for category, members in CATEGORY_MNEMONICS.items()
    }
    counts["crypto_like"] = counts["bitwise"] + counts["shift_rotate"] + counts["multiply"]

    def ratio(value: int) -> float:
        return round(value / total, precision) if total else 0.0

    loads_stores = sum(
        count
        for op, count in histogram.items()
        if normalize_mnemonic(op).startswith(("ld", "st", "lw", "sw", "push", "pop"))
    )
    return {
        **{key: counts[key] for key in sorted(counts)},
        "branch_ratio": ratio(counts["branch"]),
        "load_store_ratio": ratio(loads_stores),
        "multiply_ratio": ratio(counts["multiply"]),
        "rotate_ratio": ratio(counts["shift_rotate"]),
        "xor_ratio": ratio(counts["bitwise"]),
    }


def compute_instruction_stats(
    function: FunctionArtifact,
    ngram_sizes: Sequence[int] = (2, 3),
    precision: int = 6,
) -> InstructionStats:
    mnemonics = function.mnemonics
    total = len(mnemonics)
    histogram = Counter(mnemonics)

    ngrams: dict[str, dict[str, int]] = {}
    unique = 0
    for n in sorted(set(ngram_sizes)):
        counter = build_ngrams(mnemonics, n)
        unique += len(counter)
        ngrams[str(n)] = _sorted(counter)

    immediates: Counter[str] = Counter()
    for value in iter_immediates(function):
        immediates["count"] += 1
        size = immediate_size(value)
        immediates[f"size_{size}b" if size in (1, 2, 4, 8) else "size_large"] += 1

    micro_ops: Counter[str] = Counter(op for insn in function.instructions for op in insn.micro_ops)

    return InstructionStats(
        instruction_count=total,
        opcode_histogram=_sorted(histogram),
        opcode_frequencies={op: round(histogram[op] / total, precision) for op in sorted(histogram)},
        ngrams=ngrams,
        unique_ngram_count=unique,
        op_categories=categorize(histogram, total, precision),
        immediates={key: immediates.get(key, 0) for key in IMMEDIATE_KEYS},
        micro_ops=_sorted(micro_ops),
    )


def empty_instruction_stats(ngram_sizes: Sequence[int] = (2, 3)) -> InstructionStats:
    return InstructionStats(
        instruction_count=0,
        opcode_histogram={},
        opcode_frequencies={},
        ngrams={str(n): {} for n in sorted(set(ngram_sizes))},
        unique_ngram_count=0,
        op_categories=categorize(Counter(), 0),
        immediates=dict.fromkeys(IMMEDIATE_KEYS, 0),
        micro_ops={},
    )
