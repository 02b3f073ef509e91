"""Headless Ghidra automation for per-binary function export."""

from __future__ import annotations

import os
import signal
import subprocess
from pathlib import Path

from binfeat.config.defaults import DEFAULT_GHIDRA_HOME, DEFAULT_TIMEOUT_PER_BINARY
from binfeat.errors import EngineCrash, EngineNotFound, EngineOutputError, EngineTimeout
from binfeat.utils.logging import get_logger

log = get_logger(__name__)

ANALYZE_HEADLESS = "analyzeHeadless"
EXPORT_SCRIPT = "export_functions.py"
SCRIPT_DIR = Path(__file__).parent / "ghidra_scripts"
PROJECT_NAME = "binfeat_temp"


def headless_path(ghidra_home: str | None = None) -> Path:
    ghidra = Path(ghidra_home or DEFAULT_GHIDRA_HOME)
    return ghidra / "support" / ANALYZE_HEADLESS


def build_command(
    binary_path: Path,
    project_dir: Path,
    output_json: Path,
    ghidra_home: str | None = None,
    extra_args: list[str] | None = None,
) -> list[str]:
    cmd = [
        str(headless_path(ghidra_home)),
        str(project_dir),
        PROJECT_NAME,
        "-import",
        str(binary_path),
        "-scriptPath",
        str(SCRIPT_DIR),
        "-postScript",
        EXPORT_SCRIPT,
        str(output_json),
        "-deleteProject",
    ]
    if extra_args:
        cmd.extend(extra_args)
    return cmd


def _kill_process_group(proc: subprocess.Popen, grace: float) -> None:
    """Terminate the engine and everything it spawned (the JVM included)."""
    try:
        pgid = os.getpgid(proc.pid)
    except ProcessLookupError:
        return
    try:
        os.killpg(pgid, signal.SIGTERM)
        proc.communicate(timeout=grace)
        return
    except ProcessLookupError:
        pass
    except subprocess.TimeoutExpired:
        try:
            os.killpg(pgid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    # Reap the child and drain both pipes.
    proc.communicate()


def run_ghidra_headless(
    binary_path: Path,
    work_dir: Path,
    ghidra_home: str | None = None,
    timeout: float = DEFAULT_TIMEOUT_PER_BINARY,
    max_memory: str | None = None,
    kill_grace: float = 5.0,
    extra_args: list[str] | None = None,
) -> Path:
    """Run Ghidra in headless mode and return the path of the raw JSON export.

    ``work_dir`` holds the throwaway project and the export; the caller owns
    its cleanup. Raises EngineNotFound, EngineTimeout, EngineCrash or
    EngineOutputError.
    """
    binary_path = Path(binary_path)
    headless = headless_path(ghidra_home)
    if not headless.exists():
        log.error("ghidra_not_found", path=str(headless))
        raise EngineNotFound(f"analyzeHeadless not found at {headless}", binary=binary_path.name)

    project_dir = work_dir / "project"
    project_dir.mkdir(parents=True, exist_ok=True)
    output_json = work_dir / "export.json"

    cmd = build_command(binary_path, project_dir, output_json, ghidra_home, extra_args)
    env = dict(os.environ)
    if max_memory:
        # analyzeHeadless reads the JVM heap limit from MAXMEM
        env["MAXMEM"] = max_memory

    log.debug("running_ghidra", binary=binary_path.name, cmd=" ".join(cmd))

    proc = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        cwd=str(work_dir),
        env=env,
        start_new_session=True,
    )
    try:
        _, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_process_group(proc, kill_grace)
        log.error("ghidra_timeout", binary=binary_path.name, timeout=timeout)
        raise EngineTimeout(f"engine exceeded {timeout}s", binary=binary_path.name) from None

    if proc.returncode != 0:
        log.error("ghidra_failed", binary=binary_path.name, returncode=proc.returncode, stderr=(stderr or "")[-500:])
        raise EngineCrash(
            f"analyzeHeadless exited with status {proc.returncode}",
            binary=binary_path.name,
            returncode=proc.returncode,
        )

    if not output_json.is_file():
        log.error("no_export_produced", binary=binary_path.name)
        raise EngineOutputError("engine produced no export", binary=binary_path.name)

    return output_json
