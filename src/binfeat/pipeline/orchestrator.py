"""Batch orchestration: discover binaries, process them in a worker pool, write outputs.

Failure isolation follows the error families in :mod:`binfeat.errors`:
a :class:`~binfeat.errors.BinaryError` fails one binary and the batch goes
on; a :class:`~binfeat.errors.FatalPipelineError` is raised before any
binary is touched.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable, Sequence

from binfeat.config.models import BinFeatConfig
from binfeat.errors import BinaryError, EngineOutputError, FatalPipelineError, RuleLoadError
from binfeat.extraction.backends import DisassemblyBackend, create_backend
from binfeat.labeling.rules import LabelRuleSet, load_label_rules
from binfeat.pipeline.processor import BinaryProcessor
from binfeat.pipeline.writer import check_collisions, write_json_atomic
from binfeat.signatures.definitions import SignatureTable
from binfeat.signatures.loader import load_signature_table
from binfeat.utils.logging import binary_context, get_logger
from binfeat.utils.progress import batch_progress

log = get_logger(__name__)

RUN_SUMMARY_FILE = "run_summary.json"


def discover_binaries(input_dir: Path, extensions: Iterable[str]) -> list[Path]:
    """Regular files directly under ``input_dir`` with a matching suffix, sorted."""
    input_dir = Path(input_dir)
    if not input_dir.is_dir():
        raise FatalPipelineError(f"input directory not found: {input_dir}")
    suffixes = {ext.lower() for ext in extensions}
    return sorted(
        p for p in input_dir.iterdir() if p.is_file() and p.suffix.lower() in suffixes
    )


@dataclass
class BinaryFailure:
    binary: str
    error: str
    message: str


@dataclass
class RunSummary:
    total_binaries: int = 0
    succeeded_binaries: int = 0
    failed_binaries: int = 0
    skipped_binaries: int = 0
    processed_functions: int = 0
    failed_functions: int = 0
    elapsed_seconds: float = 0.0
    failures: list[BinaryFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["elapsed_seconds"] = round(self.elapsed_seconds, 3)
        return out


class BatchOrchestrator:
    """Runs the feature pipeline over a directory of binaries.

    ``backend``, ``signatures`` and ``rules`` default to what the config
    names; pass them explicitly to inject test doubles.
    """

    def __init__(
        self,
        config: BinFeatConfig,
        backend: DisassemblyBackend | None = None,
        signatures: SignatureTable | None = None,
        rules: LabelRuleSet | None = None,
        show_progress: bool = True,
    ) -> None:
        self._config = config
        self._backend = backend
        self._signatures = signatures
        self._rules = rules
        self._show_progress = show_progress

    def _prepare(self) -> BinaryProcessor:
        cfg = self._config
        signatures = self._signatures
        if signatures is None:
            signatures = load_signature_table(
                cfg.rules.signatures_file,
                include_builtin=cfg.rules.include_builtin_signatures,
            )
        rules = self._rules if self._rules is not None else load_label_rules(cfg.rules.label_rules_file)

        unknown = rules.unknown_signatures(signatures.names)
        if unknown:
            raise RuleLoadError(f"label rules reference unknown signatures: {', '.join(unknown)}")

        backend = self._backend if self._backend is not None else create_backend(cfg.engine)
        return BinaryProcessor(
            backend=backend, signatures=signatures, rules=rules, features=cfg.features
        )

    def _process_one(
        self, processor: BinaryProcessor, path: Path, target: Path
    ) -> tuple[int, int]:
        with binary_context(path.name):
            try:
                result = processor.process(path)
            except (BinaryError, OSError):
                raise
            except Exception as exc:
                raise EngineOutputError(
                    f"unexpected {type(exc).__name__} while processing: {exc}", binary=path.name
                ) from exc
            write_json_atomic(target, result.to_dict())
        return result.processed_functions, result.failed_functions

    def run_paths(self, paths: Sequence[Path], output_dir: Path) -> RunSummary:
        """Process an explicit list of binaries."""
        start = time.monotonic()
        output_dir = Path(output_dir)
        targets = check_collisions(paths)
        processor = self._prepare()

        summary = RunSummary(total_binaries=len(targets))
        pending: list[tuple[Path, Path]] = []
        for path in sorted(targets):
            target = output_dir / targets[path]
            if self._config.pipeline.skip_existing and target.exists():
                log.info("binary_skipped", binary=path.name, output=target.name)
                summary.skipped_binaries += 1
                continue
            pending.append((path, target))

        output_dir.mkdir(parents=True, exist_ok=True)
        workers = self._config.pipeline.batch_size
        log.info(
            "batch_started",
            binaries=len(pending),
            skipped=summary.skipped_binaries,
            workers=workers,
            backend=processor.backend.name,
        )

        with batch_progress(
            "Extracting features", len(pending), disable=not self._show_progress
        ) as progress:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {
                    pool.submit(self._process_one, processor, path, target): path
                    for path, target in pending
                }
                for future in as_completed(futures):
                    path = futures[future]
                    try:
                        processed, failed = future.result()
                    except (BinaryError, OSError) as exc:
                        log.error(
                            "binary_failed",
                            binary=path.name,
                            error=type(exc).__name__,
                            message=str(exc),
                        )
                        summary.failed_binaries += 1
                        summary.failures.append(
                            BinaryFailure(path.name, type(exc).__name__, str(exc))
                        )
                        progress.advance(path.name, failed=True)
                    else:
                        summary.succeeded_binaries += 1
                        summary.processed_functions += processed
                        summary.failed_functions += failed
                        progress.advance(path.name)

        summary.failures.sort(key=lambda f: f.binary)
        summary.elapsed_seconds = time.monotonic() - start
        write_json_atomic(output_dir / RUN_SUMMARY_FILE, summary.to_dict())
        log.info(
            "batch_finished",
            succeeded=summary.succeeded_binaries,
            failed=summary.failed_binaries,
            skipped=summary.skipped_binaries,
            seconds=round(summary.elapsed_seconds, 2),
        )
        return summary

    def run(self, input_dir: Path | None = None, output_dir: Path | None = None) -> RunSummary:
        """Discover binaries under ``input_dir`` and process them all."""
        pipeline = self._config.pipeline
        input_dir = Path(input_dir or pipeline.input_dir)
        output_dir = Path(output_dir or pipeline.output_dir)
        paths = discover_binaries(input_dir, pipeline.extensions)
        log.info("binaries_discovered", input_dir=str(input_dir), count=len(paths))
        return self.run_paths(paths, output_dir)
