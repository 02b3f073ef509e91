"""Exception taxonomy for the feature-extraction pipeline.

Errors fall into three families that decide how far a failure propagates:

* :class:`FunctionError` - recovered per function; the binary keeps going.
* :class:`BinaryError` - aborts one binary; the batch keeps going.
* :class:`FatalPipelineError` - aborts the whole run before processing starts.
"""

from __future__ import annotations


class BinFeatError(Exception):
    """Root of all binfeat errors."""


# -- per-function ---------------------------------------------------------


class FunctionError(BinFeatError):
    def __init__(self, message: str, function: str = "", address: int | None = None) -> None:
        super().__init__(message)
        self.function = function
        self.address = address


class MalformedCFG(FunctionError):
    """An edge references an unknown block, or blocks overlap."""


class EmptyFunction(FunctionError):
    """The engine reported a function with zero instructions."""


class DuplicateFunction(FunctionError):
    """Two functions in one binary share a start address."""


# -- per-binary -----------------------------------------------------------


class BinaryError(BinFeatError):
    def __init__(self, message: str, binary: str = "") -> None:
        super().__init__(message)
        self.binary = binary


class EngineTimeout(BinaryError):
    """The disassembly engine exceeded the per-binary time limit."""


class EngineCrash(BinaryError):
    """The disassembly engine exited non-zero or unexpectedly."""

    def __init__(self, message: str, binary: str = "", returncode: int | None = None) -> None:
        super().__init__(message, binary)
        self.returncode = returncode


class EngineNotFound(BinaryError):
    """The engine entry point could not be located."""


class EngineOutputError(BinaryError):
    """The engine finished but its export is missing or unreadable."""


# -- fatal ----------------------------------------------------------------


class FatalPipelineError(BinFeatError):
    """Raised before any binary is processed; the run must not start."""


class NamingCollision(FatalPipelineError):
    def __init__(self, output_name: str, sources: list[str]) -> None:
        super().__init__(
            f"{len(sources)} inputs map to output '{output_name}': {', '.join(sources)}"
        )
        self.output_name = output_name
        self.sources = sources


class SignatureLoadError(FatalPipelineError):
    """A signature definition failed to parse or validate."""


class RuleLoadError(FatalPipelineError):
    """A label rule table failed to parse or validate."""
