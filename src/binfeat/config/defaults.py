"""Default configuration values and paths."""

from __future__ import annotations

from pathlib import Path

CONFIG_FILE_NAMES = [
    "binfeat.yaml",
    "binfeat.yml",
    ".binfeat.yaml",
    ".binfeat.yml",
]

# Names a config file explicitly; checked before the search paths.
CONFIG_ENV_VAR = "BINFEAT_CONFIG"


def config_search_paths() -> list[Path]:
    """Directories searched for a config file, resolved at call time."""
    return [Path.cwd(), Path.home() / ".config" / "binfeat", Path.home()]


DEFAULT_GHIDRA_HOME = "/opt/ghidra"
DEFAULT_BATCH_SIZE = 10
DEFAULT_TIMEOUT_PER_BINARY = 180
DEFAULT_INPUT_DIR = "builds_new"
DEFAULT_OUTPUT_DIR = "ghidra_json_new"
DEFAULT_EXTENSIONS = [".elf", ".o", ".a", ".bin"]
DEFAULT_NGRAM_SIZES = [2, 3]
DEFAULT_PRECISION = 6

# Environment variable -> (section, field) overrides applied after the YAML file.
ENV_OVERRIDES = {
    "GHIDRA_HOME": ("engine", "ghidra_home"),
    "BATCH_SIZE": ("pipeline", "batch_size"),
    "TIMEOUT_PER_BINARY": ("engine", "timeout_per_binary"),
}
