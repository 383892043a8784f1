"""Browser bridge that talks to a browser extension's native messaging host.

Requests are framed with scripting.native_messaging and written to a stream
connected to the extension side. Replies carry the request ``id`` and are
routed back to the waiting caller, so several requests may be in flight.

Example:
    Connecting to a relay listening on a local port::

        bridge = await NativeBrowserBridge.connect('127.0.0.1:4952')
        bridges = Bridges(browser=bridge, content=bridge)
        ...
        await bridge.close()
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from scripting.native_messaging import NativeMessageError, read_message, write_message

from .base import BridgeResponse, BrowserBridge, ContentScriptSender

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


class NativeBrowserBridge(BrowserBridge, ContentScriptSender):
    """Browser and content-script bridge over a framed JSON stream.

    Args:
        reader: Stream delivering framed replies from the extension.
        writer: Stream accepting framed requests.
        request_timeout: Seconds to wait for a reply to one request.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self._reader = reader
        self._writer = writer
        self._request_timeout = request_timeout
        self._pending: Dict[str, asyncio.Future] = {}
        self._write_lock = asyncio.Lock()
        self._reader_task: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    async def connect(cls, address: str, request_timeout: float = DEFAULT_REQUEST_TIMEOUT) -> 'NativeBrowserBridge':
        """Open a connection to ``host:port`` and start reading replies.

        Raises:
            ValueError: If the address has no port.
            OSError: If the connection cannot be made.
        """
        host, sep, port = address.rpartition(':')
        if not sep or not port.isdigit():
            raise ValueError(f'Native host address must be host:port, got {address!r}')
        reader, writer = await asyncio.open_connection(host or '127.0.0.1', int(port))
        logger.info(f'Connected to native host at {address}')
        bridge = cls(reader, writer, request_timeout)
        bridge.start()
        return bridge

    @property
    def connected(self) -> bool:
        return not self._closed and self._reader_task is not None and not self._reader_task.done()

    def start(self) -> None:
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_replies())

    async def send_message(self, message: Dict[str, Any]) -> BridgeResponse:
        if self._closed:
            return BridgeResponse.fail('Native host connection is closed')
        message_id = message.get('id')
        if not message_id:
            return BridgeResponse.fail('Bridge message has no id')

        future = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future
        try:
            async with self._write_lock:
                await write_message(self._writer, message)
            return await asyncio.wait_for(future, self._request_timeout)
        except asyncio.TimeoutError:
            return BridgeResponse.fail(f"No reply to {message.get('type')} within {self._request_timeout}s")
        except (ConnectionError, NativeMessageError) as e:
            return BridgeResponse.fail(f'Native host error: {e}')
        finally:
            self._pending.pop(message_id, None)

    async def _read_replies(self) -> None:
        try:
            while True:
                reply = await read_message(self._reader)
                if reply is None:
                    logger.info('Native host closed the connection')
                    break
                if not isinstance(reply, dict):
                    logger.warning(f'Ignoring non-object reply: {reply!r}')
                    continue
                future = self._pending.get(reply.get('id'))
                if future is None or future.done():
                    logger.debug(f"Unmatched reply id {reply.get('id')}")
                    continue
                future.set_result(BridgeResponse.from_dict(reply))
        except asyncio.CancelledError:
            raise
        except (ConnectionError, NativeMessageError) as e:
            logger.error(f'Native host read failed: {e}')
        finally:
            self._closed = True
            for future in self._pending.values():
                if not future.done():
                    future.set_result(BridgeResponse.fail('Native host disconnected'))

    async def close(self) -> None:
        self._closed = True
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except ConnectionError:
            pass
