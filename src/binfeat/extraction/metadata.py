"""Per-binary metadata read directly from the file with pyelftools."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from binfeat.utils.logging import get_logger

log = get_logger(__name__)

ELF_MAGIC = b"\x7fELF"
AR_MAGIC = b"!<arch>\n"

_ARCH_NAMES = {
    "EM_X86_64": "x86_64",
    "EM_386": "x86",
    "EM_ARM": "ARM",
    "EM_AARCH64": "AArch64",
    "EM_MIPS": "MIPS",
    "EM_PPC": "PPC",
    "EM_PPC64": "PPC64",
    "EM_RISCV": "RISC-V",
    "EM_AVR": "AVR",
    "EM_XTENSA": "Xtensa",
}

_FILE_TYPES = {
    "ET_EXEC": "executable",
    "ET_DYN": "shared_object",
    "ET_REL": "relocatable",
    "ET_CORE": "core",
}


def read_file_metadata(path: Path) -> dict[str, Any]:
    """Return size, sha256 and container format; ELF inputs add header facts.

    Never raises for unreadable headers: a truncated ELF is still a valid
    input for the engine, it just carries less metadata.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        # Exports can be analyzed without the binary at hand.
        log.warning("binary_unreadable", path=str(path), error=str(exc))
        return {"format": "unknown"}

    metadata: dict[str, Any] = {
        "file_size": len(data),
        "sha256": hashlib.sha256(data).hexdigest(),
    }

    if data.startswith(ELF_MAGIC):
        metadata["format"] = "ELF"
        metadata.update(_elf_header(path))
    elif data.startswith(AR_MAGIC):
        metadata["format"] = "ar"
    else:
        metadata["format"] = "raw"
    return metadata


def _elf_header(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            return {
                "architecture": _ARCH_NAMES.get(elf.header.e_machine, str(elf.header.e_machine)),
                "word_size": elf.elfclass,
                "endianness": "little" if elf.little_endian else "big",
                "elf_type": _FILE_TYPES.get(elf.header.e_type, str(elf.header.e_type)),
            }
    except (ELFError, OSError, ValueError) as exc:
        log.warning("elf_header_unreadable", path=str(path), error=str(exc))
        return {}
