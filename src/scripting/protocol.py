"""Line protocol of the TCP scripting interface.

Each request is one line holding a call such as ``iimPlay("demo", 30)``;
each response is one line ``CODE<TAB>DATA`` or just ``CODE``.

Example:
    parse_command_line('iimSet("-var_name", "Bob")')
    # ('iimSet', ['-var_name', 'Bob'])

    format_response(ReturnCode.OK, 'done')   # '1\\tdone\\n'
"""
from __future__ import annotations

import re
from enum import IntEnum
from typing import List, Optional, Tuple

COMMAND_RE = re.compile(r'^(\w+)\s*\((.*)\)\s*$', re.DOTALL)


class ReturnCode(IntEnum):
    OK = 1
    MACRO_RUNNING = 0
    ERROR = -1
    TIMEOUT = -2
    SYNTAX_ERROR = -3
    MACRO_NOT_FOUND = -4
    VARIABLE_NOT_FOUND = -5
    INVALID_PARAMETER = -6
    CANCELLED = -9
    UNKNOWN_COMMAND = -10


class ProtocolError(ValueError):
    """Raised for request lines that are not a well-formed call."""


def parse_command_line(line: str) -> Tuple[str, List[str]]:
    """Split a request line into the command name and its arguments.

    Arguments are separated by commas. Double-quoted arguments may contain
    commas and ``\\"`` escapes; bare arguments (numbers mostly) are
    stripped of surrounding whitespace.

    Raises:
        ProtocolError: If the line is not ``name(args)`` or a quote is
            left open.
    """
    match = COMMAND_RE.match(line.strip())
    if not match:
        raise ProtocolError(f'Malformed command: {line.strip()!r}')
    return match.group(1), _split_arguments(match.group(2))


def _split_arguments(text: str) -> List[str]:
    if not text.strip():
        return []
    args: List[str] = []
    current: List[str] = []
    quoted = False
    in_quotes = False
    i = 0
    while i < len(text):
        ch = text[i]
        if in_quotes:
            if ch == '\\' and i + 1 < len(text):
                current.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_quotes = False
            else:
                current.append(ch)
        elif ch == '"' and not ''.join(current).strip():
            current = []
            in_quotes = quoted = True
        elif ch == ',':
            args.append(''.join(current) if quoted else ''.join(current).strip())
            current, quoted = [], False
        elif quoted:
            if not ch.isspace():
                raise ProtocolError(f'Unexpected text after quoted argument: {text!r}')
        else:
            current.append(ch)
        i += 1
    if in_quotes:
        raise ProtocolError(f'Unterminated string in arguments: {text!r}')
    args.append(''.join(current) if quoted else ''.join(current).strip())
    return args


def format_response(code: ReturnCode, data: Optional[str] = None) -> str:
    """Render one response line.

    Tabs and line breaks inside the data are replaced by spaces so the
    response always stays a single line.
    """
    if data is None or data == '':
        return f'{int(code)}\n'
    text = re.sub(r'[\t\r\n]+', ' ', str(data))
    return f'{int(code)}\t{text}\n'
