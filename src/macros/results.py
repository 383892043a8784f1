"""Error codes and result types shared by the parser, handlers and executor.

Handlers never raise to report a failed command; they return a
CommandResult carrying one of the ErrorCode values below. The executor
collapses a whole run into a single MacroResult.

Example:
    Reporting a missing parameter from a handler::

        if ctx.get_param('NAME') is None:
            return CommandResult.fail(
                ErrorCode.MISSING_PARAMETER,
                'FILEDELETE command requires NAME parameter',
            )
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional


class ErrorCode(IntEnum):
    """Numeric error codes reported by commands and macro runs.

    The values are the classic iMacros return codes so scripting clients
    that branch on them keep working.
    """

    OK = 0
    USER_ABORT = -100
    SYNTAX_ERROR = -910
    UNKNOWN_COMMAND = -911
    INVALID_PARAMETER = -912
    MISSING_PARAMETER = -913
    UNSUPPORTED_COMMAND = -915
    ELEMENT_NOT_FOUND = -920
    FRAME_NOT_FOUND = -922
    TIMEOUT = -930
    PAGE_TIMEOUT = -931
    FILE_ERROR = -960
    FILE_NOT_FOUND = -961
    FILE_ACCESS_DENIED = -962
    SCRIPT_ERROR = -970
    LOOP_LIMIT = -990


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a single handler invocation.

    Attributes:
        success: Whether the command completed.
        error_code: ErrorCode.OK on success, the failure kind otherwise.
        error_message: Human readable reason for a failure.
        output: Optional text produced by the command (e.g. an extracted value).
    """

    success: bool
    error_code: ErrorCode = ErrorCode.OK
    error_message: Optional[str] = None
    output: Optional[str] = None

    @classmethod
    def ok(cls, output: Optional[str] = None) -> 'CommandResult':
        return cls(True, ErrorCode.OK, None, output)

    @classmethod
    def fail(cls, code: ErrorCode, message: str) -> 'CommandResult':
        return cls(False, code, message, None)


@dataclass(frozen=True)
class MacroResult:
    """Final result of one MacroExecutor.execute() call.

    Attributes:
        success: True if no command failed (or every failure was ignored
            and none was recorded).
        error_code: Code of the first failing command, OK otherwise.
        error_message: Message of the first failing command.
        variables: Snapshot of the variable store at the end of the run.
        extract_data: Extracted values in the order they were collected.
        runtime: Wall clock duration of the run in seconds.
        error_line: Source line of the first failure, if any.
    """

    success: bool
    error_code: ErrorCode
    error_message: Optional[str]
    variables: Dict[str, Any] = field(default_factory=dict)
    extract_data: List[str] = field(default_factory=list)
    runtime: float = 0.0
    error_line: Optional[int] = None

    @property
    def extract(self) -> str:
        """Extracted values joined with the [EXTRACT] delimiter."""
        return '[EXTRACT]'.join(self.extract_data)


def map_file_error(message: Optional[str]) -> ErrorCode:
    """Map a file bridge error message to the closest ErrorCode.

    Args:
        message: Error text reported by the file bridge or the OS.

    Returns:
        FILE_NOT_FOUND, FILE_ACCESS_DENIED or FILE_ERROR.
    """
    text = (message or '').lower()
    if 'not found' in text or 'enoent' in text or 'no such file' in text:
        return ErrorCode.FILE_NOT_FOUND
    if 'permission' in text or 'access denied' in text or 'eacces' in text:
        return ErrorCode.FILE_ACCESS_DENIED
    return ErrorCode.FILE_ERROR
