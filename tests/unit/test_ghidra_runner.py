"""Tests for headless Ghidra invocation with a mocked subprocess."""

import signal
import subprocess
from pathlib import Path
from unittest import mock

import pytest

from binfeat.errors import EngineCrash, EngineNotFound, EngineOutputError, EngineTimeout
from binfeat.extraction.ghidra_runner import (
    EXPORT_SCRIPT,
    SCRIPT_DIR,
    build_command,
    headless_path,
    run_ghidra_headless,
)


@pytest.fixture
def ghidra_home(tmp_path):
    home = tmp_path / "ghidra"
    headless = headless_path(str(home))
    headless.parent.mkdir(parents=True)
    headless.write_text("#!/bin/sh\n")
    return str(home)


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


def fake_proc(returncode=0, communicate=None):
    proc = mock.Mock()
    proc.pid = 4242
    proc.returncode = returncode
    proc.communicate.side_effect = communicate or (lambda timeout=None: ("", ""))
    proc.wait.return_value = returncode
    return proc


def test_build_command():
    cmd = build_command(Path("/bins/a.elf"), Path("/tmp/p"), Path("/tmp/out.json"), ghidra_home="/opt/g")
    assert cmd[0] == "/opt/g/support/analyzeHeadless"
    assert cmd[1:3] == ["/tmp/p", "binfeat_temp"]
    assert cmd[cmd.index("-import") + 1] == "/bins/a.elf"
    assert cmd[cmd.index("-scriptPath") + 1] == str(SCRIPT_DIR)
    assert cmd[cmd.index("-postScript") + 1 : cmd.index("-postScript") + 3] == [EXPORT_SCRIPT, "/tmp/out.json"]
    assert cmd[-1] == "-deleteProject"


def test_export_script_ships_with_package():
    assert (SCRIPT_DIR / EXPORT_SCRIPT).is_file()


def test_missing_headless(tmp_path, work_dir):
    with pytest.raises(EngineNotFound):
        run_ghidra_headless(Path("a.elf"), work_dir, ghidra_home=str(tmp_path / "nowhere"))


def test_success_returns_export(ghidra_home, work_dir):
    def communicate(timeout=None):
        (work_dir / "export.json").write_text('{"functions": []}')
        return "", ""

    proc = fake_proc(communicate=communicate)
    with mock.patch("binfeat.extraction.ghidra_runner.subprocess.Popen", return_value=proc) as popen:
        result = run_ghidra_headless(Path("a.elf"), work_dir, ghidra_home=ghidra_home, timeout=30, max_memory="2G")

    assert result == work_dir / "export.json"
    kwargs = popen.call_args.kwargs
    assert kwargs["start_new_session"] is True
    assert kwargs["env"]["MAXMEM"] == "2G"
    proc.communicate.assert_called_once_with(timeout=30)


def test_timeout_kills_process_group(ghidra_home, work_dir):
    proc = fake_proc()
    proc.communicate.side_effect = [subprocess.TimeoutExpired("analyzeHeadless", 1), ("", "")]
    with mock.patch("binfeat.extraction.ghidra_runner.subprocess.Popen", return_value=proc), \
            mock.patch("binfeat.extraction.ghidra_runner.os.getpgid", return_value=4242), \
            mock.patch("binfeat.extraction.ghidra_runner.os.killpg") as killpg:
        with pytest.raises(EngineTimeout):
            run_ghidra_headless(Path("a.elf"), work_dir, ghidra_home=ghidra_home, timeout=1)

    killpg.assert_called_once_with(4242, signal.SIGTERM)


def test_timeout_escalates_to_sigkill(ghidra_home, work_dir):
    proc = fake_proc()
    proc.communicate.side_effect = [
        subprocess.TimeoutExpired("analyzeHeadless", 1),
        subprocess.TimeoutExpired("analyzeHeadless", 5),
        ("", ""),
    ]
    with mock.patch("binfeat.extraction.ghidra_runner.subprocess.Popen", return_value=proc), \
            mock.patch("binfeat.extraction.ghidra_runner.os.getpgid", return_value=4242), \
            mock.patch("binfeat.extraction.ghidra_runner.os.killpg") as killpg:
        with pytest.raises(EngineTimeout):
            run_ghidra_headless(Path("a.elf"), work_dir, ghidra_home=ghidra_home, timeout=1, kill_grace=5)

    assert killpg.call_args_list == [mock.call(4242, signal.SIGTERM), mock.call(4242, signal.SIGKILL)]
    assert proc.communicate.call_args_list[-1] == mock.call()


def test_sigkill_after_group_exit_still_times_out(ghidra_home, work_dir):
    proc = fake_proc()
    proc.communicate.side_effect = [
        subprocess.TimeoutExpired("analyzeHeadless", 1),
        subprocess.TimeoutExpired("analyzeHeadless", 5),
        ("", ""),
    ]
    with mock.patch("binfeat.extraction.ghidra_runner.subprocess.Popen", return_value=proc), \
            mock.patch("binfeat.extraction.ghidra_runner.os.getpgid", return_value=4242), \
            mock.patch(
                "binfeat.extraction.ghidra_runner.os.killpg", side_effect=[None, ProcessLookupError()]
            ) as killpg:
        with pytest.raises(EngineTimeout):
            run_ghidra_headless(Path("a.elf"), work_dir, ghidra_home=ghidra_home, timeout=1, kill_grace=5)

    assert killpg.call_count == 2
    assert proc.communicate.call_count == 3


def test_nonzero_exit_is_crash(ghidra_home, work_dir):
    proc = fake_proc(returncode=1, communicate=lambda timeout=None: ("", "java.lang.OutOfMemoryError"))
    with mock.patch("binfeat.extraction.ghidra_runner.subprocess.Popen", return_value=proc):
        with pytest.raises(EngineCrash) as excinfo:
            run_ghidra_headless(Path("a.elf"), work_dir, ghidra_home=ghidra_home)
    assert excinfo.value.returncode == 1
    assert excinfo.value.binary == "a.elf"


def test_missing_export_is_output_error(ghidra_home, work_dir):
    with mock.patch("binfeat.extraction.ghidra_runner.subprocess.Popen", return_value=fake_proc()):
        with pytest.raises(EngineOutputError):
            run_ghidra_headless(Path("a.elf"), work_dir, ghidra_home=ghidra_home)
