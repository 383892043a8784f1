"""Native messaging framing: 4-byte little-endian length + UTF-8 JSON body.

Browsers talk to native hosts with this framing on stdin/stdout, and the
browser bridge reuses it over a local socket. Decoding tolerates partial
buffers: decode_message() returns None until the whole frame has arrived.
"""
from __future__ import annotations

import asyncio
import json
import struct
from typing import Any, Dict, List, Optional, Tuple

# Chrome refuses messages from the host larger than 1 MiB
MAX_MESSAGE_BYTES = 1024 * 1024

_HEADER = struct.Struct('<I')


class NativeMessageError(ValueError):
    """Raised for frames that are too large or do not hold valid JSON."""


def encode_message(message: Any) -> bytes:
    """Serialize a message into one length-prefixed frame.

    Raises:
        NativeMessageError: If the encoded body exceeds MAX_MESSAGE_BYTES.
    """
    raw = json.dumps(message, ensure_ascii=False, separators=(',', ':')).encode('utf-8')
    if len(raw) > MAX_MESSAGE_BYTES:
        raise NativeMessageError(f'Message of {len(raw)} bytes exceeds {MAX_MESSAGE_BYTES} byte limit')
    return _HEADER.pack(len(raw)) + raw


def decode_message(buffer: bytes) -> Optional[Tuple[Any, int]]:
    """Decode the first complete frame in a buffer.

    Args:
        buffer: Bytes received so far.

    Returns:
        Tuple of (message, bytes_consumed), or None when the buffer does not
        yet hold a complete frame.

    Raises:
        NativeMessageError: If the declared length is too large or the body
            is not valid UTF-8 JSON.
    """
    if len(buffer) < _HEADER.size:
        return None
    (length,) = _HEADER.unpack_from(buffer)
    if length > MAX_MESSAGE_BYTES:
        raise NativeMessageError(f'Declared frame length {length} exceeds {MAX_MESSAGE_BYTES} byte limit')
    end = _HEADER.size + length
    if len(buffer) < end:
        return None
    try:
        message = json.loads(buffer[_HEADER.size:end].decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as e:
        raise NativeMessageError(f'Invalid message body: {e}') from e
    return message, end


class MessageBuffer:
    """Accumulates chunks from a byte stream and yields whole messages.

    A malformed frame is dropped before feed() raises, so the stream can
    continue with the frames behind it. Messages decoded ahead of the bad
    frame are returned by the next feed() call.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._ready: List[Any] = []

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> List[Any]:
        """Add received bytes and return every message now complete.

        Raises:
            NativeMessageError: For an oversized or malformed frame. An
                oversized declared length cannot be skipped, so everything
                buffered is discarded.
        """
        self._buffer.extend(data)
        messages, self._ready = self._ready, []
        while True:
            try:
                decoded = decode_message(bytes(self._buffer))
            except NativeMessageError:
                self._drop_bad_frame()
                self._ready = messages
                raise
            if decoded is None:
                break
            message, consumed = decoded
            del self._buffer[:consumed]
            messages.append(message)
        return messages

    def _drop_bad_frame(self) -> None:
        (length,) = _HEADER.unpack_from(self._buffer)
        if length > MAX_MESSAGE_BYTES:
            self._buffer.clear()
        else:
            del self._buffer[:_HEADER.size + length]


async def read_message(reader: asyncio.StreamReader) -> Optional[Dict[str, Any]]:
    """Read one frame from a stream.

    Returns:
        The decoded message, or None at end of stream.

    Raises:
        NativeMessageError: For oversized or malformed frames.
    """
    try:
        header = await reader.readexactly(_HEADER.size)
    except asyncio.IncompleteReadError:
        return None
    (length,) = _HEADER.unpack(header)
    if length > MAX_MESSAGE_BYTES:
        raise NativeMessageError(f'Declared frame length {length} exceeds {MAX_MESSAGE_BYTES} byte limit')
    try:
        body = await reader.readexactly(length)
    except asyncio.IncompleteReadError:
        return None
    decoded = decode_message(header + body)
    return decoded[0] if decoded is not None else None


async def write_message(writer: asyncio.StreamWriter, message: Any) -> None:
    writer.write(encode_message(message))
    await writer.drain()
