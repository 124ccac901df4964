"""Best-effort resolution of the code that called into the pipeline."""

import sys
from dataclasses import dataclass

INTERNAL_PREFIXES = ("auditlog", "logging")
MAX_DEPTH = 64


@dataclass(frozen=True)
class CallerContext:
    function: str
    script: str
    line: int


UNKNOWN_CALLER = CallerContext("Unknown", "Unknown", 0)


def _is_internal(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(p + ".") for p in prefixes)


def resolve_caller(prefixes: tuple[str, ...] = INTERNAL_PREFIXES) -> CallerContext:
    """Return the nearest frame outside the pipeline's own modules.

    Never raises; any failure, or a walk deeper than MAX_DEPTH, yields
    UNKNOWN_CALLER.
    """
    try:
        frame = sys._getframe(1)
        for _ in range(MAX_DEPTH):
            if frame is None:
                break
            module = frame.f_globals.get("__name__", "")
            if not _is_internal(module, prefixes):
                code = frame.f_code
                return CallerContext(code.co_name, code.co_filename, frame.f_lineno)
            frame = frame.f_back
    except (AttributeError, ValueError):
        # sys._getframe missing on this runtime, or the stack is too shallow
        pass
    return UNKNOWN_CALLER
