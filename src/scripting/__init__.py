"""External control channels for the macro runner.

- protocol: request parsing and response formatting for the TCP interface
- server: ScriptingInterface state and the asyncio ScriptingServer
- native_messaging: length-prefixed JSON framing used by browser bridges
"""
from __future__ import annotations

from .native_messaging import MessageBuffer, NativeMessageError, decode_message, encode_message
from .protocol import ProtocolError, ReturnCode, format_response, parse_command_line

__all__ = [
    'MessageBuffer',
    'NativeMessageError',
    'decode_message',
    'encode_message',
    'ProtocolError',
    'ReturnCode',
    'format_response',
    'parse_command_line',
]
