"""Per-binary processing: engine export -> adapted functions -> FeatureRecords."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from binfeat.config.models import FeatureConfig
from binfeat.errors import EmptyFunction, FunctionError
from binfeat.extraction.adapter import AdaptedFunction, adapt_binary
from binfeat.extraction.backends import DisassemblyBackend
from binfeat.extraction.binary_artifact import BinaryArtifact
from binfeat.labeling.rules import LabelRuleSet
from binfeat.pipeline.record import FeatureRecord, build_record, placeholder_record
from binfeat.signatures.definitions import SignatureTable
from binfeat.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class BinaryResult:
    binary: BinaryArtifact
    records: tuple[FeatureRecord, ...] = ()
    elapsed_seconds: float = 0.0

    @property
    def failed_functions(self) -> int:
        return sum(1 for r in self.records if r.failed)

    @property
    def processed_functions(self) -> int:
        return len(self.records) - self.failed_functions

    def to_dict(self) -> dict[str, Any]:
        """The per-binary JSON document. Contains nothing time-dependent."""
        metadata = dict(self.binary.metadata)
        metadata["function_count"] = len(self.records)
        metadata["failed_functions"] = self.failed_functions
        return {
            "binary": self.binary.name,
            "metadata": {key: metadata[key] for key in sorted(metadata)},
            "functions": [record.to_dict() for record in self.records],
        }


@dataclass
class BinaryProcessor:
    """Turns one binary into its FeatureRecords.

    Holds only read-only collaborators, so a single instance is shared by
    all worker threads.
    """

    backend: DisassemblyBackend
    signatures: SignatureTable
    rules: LabelRuleSet
    features: FeatureConfig = field(default_factory=FeatureConfig)

    def analyze_slot(self, slot: AdaptedFunction) -> FeatureRecord:
        if slot.function is not None:
            return build_record(
                slot.function,
                self.signatures,
                self.rules,
                ngram_sizes=self.features.ngram_sizes,
                precision=self.features.precision,
            )
        error = slot.error or FunctionError("function could not be adapted")
        return placeholder_record(
            slot.name,
            slot.address,
            error,
            self.signatures,
            self.rules,
            recovered=isinstance(error, EmptyFunction),
            ngram_sizes=self.features.ngram_sizes,
        )

    def process_export(self, path: Path, export: Any) -> BinaryResult:
        """Analyze an export already produced by the engine."""
        start = time.monotonic()
        binary, slots = adapt_binary(path, export, engine=self.backend.name)
        records = tuple(self.analyze_slot(slot) for slot in slots)
        result = BinaryResult(binary=binary, records=records, elapsed_seconds=time.monotonic() - start)

        for record in records:
            if record.failed:
                log.warning(
                    "function_failed",
                    binary=binary.name,
                    function=record.name,
                    error=record.error["type"] if record.error else "",
                )
        return result

    def process(self, path: Path) -> BinaryResult:
        """Disassemble and analyze one binary.

        Engine errors (BinaryError subclasses) propagate to the caller;
        function-level errors never do.
        """
        path = Path(path)
        start = time.monotonic()
        export = self.backend.disassemble(path)
        result = self.process_export(path, export)
        elapsed = time.monotonic() - start
        log.info(
            "binary_processed",
            binary=path.name,
            functions=len(result.records),
            failed_functions=result.failed_functions,
            seconds=round(elapsed, 2),
        )
        return BinaryResult(binary=result.binary, records=result.records, elapsed_seconds=elapsed)
