"""Per-function FeatureRecord assembly."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from binfeat.analysis.cfg import CFGMetrics, analyze_cfg, empty_cfg_metrics
from binfeat.analysis.entropy import EntropyMetrics, compute_entropy
from binfeat.analysis.instruction_stats import (
    InstructionStats,
    compute_instruction_stats,
    empty_instruction_stats,
)
from binfeat.errors import FunctionError
from binfeat.extraction.binary_artifact import FunctionArtifact, format_address
from binfeat.labeling.engine import explain
from binfeat.labeling.rules import LabelRuleSet
from binfeat.signatures.definitions import SignatureTable
from binfeat.signatures.detector import detect_signatures, empty_signatures


@dataclass(frozen=True)
class FeatureRecord:
    name: str
    address: int
    label: str
    label_source: str
    cfg: CFGMetrics
    instruction_stats: InstructionStats
    entropy: EntropyMetrics
    crypto_signatures: dict[str, int] = field(default_factory=dict)
    error: dict[str, Any] | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None and not self.error["recovered"]

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "address": format_address(self.address),
            "label": self.label,
            "label_source": self.label_source,
            "graph_level": self.cfg.graph_level,
            "node_level": self.cfg.node_level,
            "edge_level": self.cfg.edge_level,
            "instruction_stats": self.instruction_stats.to_dict(),
            "entropy": self.entropy.to_dict(),
            "crypto_signatures": self.crypto_signatures,
        }
        if self.error is not None:
            out["error"] = self.error
        return out


def error_entry(exc: FunctionError, recovered: bool) -> dict[str, Any]:
    return {
        "type": type(exc).__name__,
        "message": str(exc),
        "recovered": recovered,
    }


def build_record(
    function: FunctionArtifact,
    signatures: SignatureTable,
    rules: LabelRuleSet,
    ngram_sizes: Sequence[int] = (2, 3),
    precision: int = 6,
) -> FeatureRecord:
    """Run every analyzer over one function and label it."""
    cfg = analyze_cfg(function, precision=precision)
    stats = compute_instruction_stats(function, ngram_sizes=ngram_sizes, precision=precision)
    entropy = compute_entropy(function, precision=precision)
    crypto = detect_signatures(function, signatures)
    decision = explain(function.name, crypto, rules)
    return FeatureRecord(
        name=function.name,
        address=function.address,
        label=decision.label,
        label_source=decision.source(),
        cfg=cfg,
        instruction_stats=stats,
        entropy=entropy,
        crypto_signatures=crypto,
    )


def placeholder_record(
    name: str,
    address: int,
    exc: FunctionError,
    signatures: SignatureTable,
    rules: LabelRuleSet,
    recovered: bool,
    ngram_sizes: Sequence[int] = (2, 3),
) -> FeatureRecord:
    """Zero-valued record that keeps the function's slot in the output.

    Used for empty functions (``recovered=True``) and for functions whose
    CFG was rejected (``recovered=False``). Always labeled with the default.
    """
    return FeatureRecord(
        name=name,
        address=address,
        label=rules.default_label,
        label_source="default",
        cfg=empty_cfg_metrics(),
        instruction_stats=empty_instruction_stats(ngram_sizes),
        entropy=EntropyMetrics(),
        crypto_signatures=empty_signatures(signatures),
        error=error_entry(exc, recovered),
    )
