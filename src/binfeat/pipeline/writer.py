"""Output naming and atomic JSON writes."""

from __future__ import annotations

import json
import os
import tempfile
from collections import defaultdict
from pathlib import Path
from typing import Any, Iterable

from binfeat.errors import NamingCollision

OUTPUT_SUFFIX = "_features.json"


def safe_name(binary_name: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in binary_name)


def output_name(binary_path: Path) -> str:
    return f"{safe_name(Path(binary_path).name)}{OUTPUT_SUFFIX}"


def check_collisions(paths: Iterable[Path]) -> dict[Path, str]:
    """Map each input to its output file name; raise if two inputs share one."""
    by_output: dict[str, list[Path]] = defaultdict(list)
    for path in paths:
        by_output[output_name(path)].append(Path(path))

    for name, sources in sorted(by_output.items()):
        if len(sources) > 1:
            raise NamingCollision(name, [str(p) for p in sources])
    return {sources[0]: name for name, sources in by_output.items()}


def dumps(document: Any) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def write_json_atomic(path: Path, document: Any) -> Path:
    """Write via a sibling temp file and ``os.replace`` so readers never see a partial file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(dumps(document))
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path
