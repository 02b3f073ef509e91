"""Disassembly backends: the narrow boundary between engines and analysis.

A backend turns one binary path into a raw export mapping (see
``binfeat.extraction.adapter`` for the shape). Everything downstream only
ever sees the adapted artifacts, so swapping engines touches nothing else.
"""

from __future__ import annotations

import json
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from binfeat.config.models import EngineConfig
from binfeat.errors import EngineOutputError
from binfeat.extraction.ghidra_runner import run_ghidra_headless
from binfeat.utils.logging import get_logger

log = get_logger(__name__)


class DisassemblyBackend(ABC):
    """Produces a raw per-function export for one binary."""

    name: str = "base"

    @abstractmethod
    def disassemble(self, binary_path: Path) -> dict[str, Any]:
        """Return the raw export; raise a BinaryError subclass on failure."""
        ...


def _read_export(path: Path, binary: str) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise EngineOutputError(f"unreadable export {path.name}: {exc}", binary=binary) from exc
    if isinstance(data, list):
        data = {"functions": data}
    if not isinstance(data, dict):
        raise EngineOutputError(f"export {path.name} is not a JSON object", binary=binary)
    return data


class GhidraHeadlessBackend(DisassemblyBackend):
    """Runs analyzeHeadless with the bundled export script, one process per binary."""

    name = "ghidra"

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    def disassemble(self, binary_path: Path) -> dict[str, Any]:
        binary_path = Path(binary_path).resolve()
        # The temp directory (project + export) is removed even on timeout.
        with tempfile.TemporaryDirectory(prefix="binfeat_") as tmp:
            export_path = run_ghidra_headless(
                binary_path,
                Path(tmp),
                ghidra_home=self._config.ghidra_home,
                timeout=self._config.timeout_per_binary,
                max_memory=self._config.max_memory,
                kill_grace=self._config.kill_grace_seconds,
            )
            return _read_export(export_path, binary_path.name)


class PrecomputedBackend(DisassemblyBackend):
    """Reads exports produced earlier, e.g. by running the script inside Ghidra.

    Looks for ``<binary name>.json`` then ``<binary stem>.json`` in
    ``export_dir``.
    """

    name = "precomputed"

    def __init__(self, export_dir: Path) -> None:
        self._export_dir = Path(export_dir)

    def export_path(self, binary_path: Path) -> Path | None:
        binary_path = Path(binary_path)
        for candidate in (f"{binary_path.name}.json", f"{binary_path.stem}.json"):
            path = self._export_dir / candidate
            if path.is_file():
                return path
        return None

    def disassemble(self, binary_path: Path) -> dict[str, Any]:
        path = self.export_path(binary_path)
        if path is None:
            raise EngineOutputError(
                f"no precomputed export for {Path(binary_path).name} in {self._export_dir}",
                binary=Path(binary_path).name,
            )
        log.debug("using_precomputed_export", binary=Path(binary_path).name, export=str(path))
        return _read_export(path, Path(binary_path).name)


def create_backend(config: EngineConfig) -> DisassemblyBackend:
    if config.backend == "ghidra":
        return GhidraHeadlessBackend(config)
    if config.backend == "precomputed":
        if not config.export_dir:
            raise ValueError("engine.export_dir is required for the precomputed backend")
        return PrecomputedBackend(Path(config.export_dir))
    raise ValueError(f"unknown engine backend: {config.backend!r}")
