"""TCP scripting interface.

External programs drive the runner over a line-based TCP protocol
(see scripting.protocol). ScriptingInterface holds the protocol state and
knows nothing about sockets; ScriptingServer accepts connections and feeds
request lines into one shared ScriptingInterface.

Example:
    Serving on the default port::

        runner = MacroRunner(bridges)
        interface = ScriptingInterface(runner, macros_dir='./macros')
        server = ScriptingServer(interface)
        await server.start()
        await server.serve_forever()

    Client session::

        > iimSet("var1", "hello")
        < 1
        > iimPlay("CODE:SET !EXTRACT {{!VAR1}}")
        < 1
        > iimGetLastExtract()
        < 1\thello
"""
from __future__ import annotations

import asyncio
import json
import logging
import pathlib
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from macros.execution import MacroRunner
from macros.results import ErrorCode, MacroResult
from macros.variables import stringify

from .protocol import ProtocolError, ReturnCode, format_response, parse_command_line

logger = logging.getLogger(__name__)

DEFAULT_PORT = 4951
NO_DATA = '#nodata#'
EXTRACT_SEPARATOR = '#NEXT#'
MACRO_EXTENSION = '.iim'

_VAR_PREFIX_RE = re.compile(r'^-var_(\w+)$', re.IGNORECASE)
_VARN_RE = re.compile(r'^var([0-9])$', re.IGNORECASE)

Response = Tuple[ReturnCode, Optional[str]]


def map_return_code(code: ErrorCode) -> ReturnCode:
    """Translate an executor ErrorCode into a scripting ReturnCode."""
    if code == ErrorCode.OK:
        return ReturnCode.OK
    if code in (ErrorCode.TIMEOUT, ErrorCode.PAGE_TIMEOUT):
        return ReturnCode.TIMEOUT
    if code in (ErrorCode.SYNTAX_ERROR, ErrorCode.UNKNOWN_COMMAND):
        return ReturnCode.SYNTAX_ERROR
    if code in (ErrorCode.INVALID_PARAMETER, ErrorCode.MISSING_PARAMETER):
        return ReturnCode.INVALID_PARAMETER
    if code == ErrorCode.USER_ABORT:
        return ReturnCode.CANCELLED
    return ReturnCode.ERROR


def decode_inline_macro(text: str) -> str:
    """Turn the body of a ``CODE:`` argument into macro source."""
    text = re.sub(r'\[sp\]', ' ', text, flags=re.IGNORECASE)
    text = re.sub(r'\[lf\]', '\r', text, flags=re.IGNORECASE)
    text = re.sub(r'\[br\]', '\n', text, flags=re.IGNORECASE)
    return text.replace('\\n', '\n')


def normalize_variable_name(name: str) -> str:
    """Map ``-var_NAME`` to ``NAME`` and ``varN`` to ``!VARN``."""
    name = name.strip()
    match = _VAR_PREFIX_RE.match(name)
    if match:
        name = match.group(1)
    match = _VARN_RE.match(name)
    if match:
        name = f'!VAR{match.group(1)}'
    return name


class MacroNotFoundError(LookupError):
    pass


class ScriptingInterface:
    """Protocol state shared by every scripting client.

    Args:
        runner: Session that runs the macros.
        macros_dir: Directory file macros are loaded from. Paths outside of
            it are refused.
        defaults: Variables applied to every run before the ``iimSet`` ones
            (typically !TIMEOUT and !TIMEOUT_STEP from the config).
        play_timeout: Seconds to wait for a play when the caller gives no
            timeout; None waits forever.
    """

    def __init__(self, runner: MacroRunner, macros_dir: str | pathlib.Path = './macros',
                 defaults: Optional[Dict[str, Any]] = None, play_timeout: Optional[float] = None):
        self.runner = runner
        self.macros_dir = pathlib.Path(macros_dir).resolve()
        self.defaults: Dict[str, Any] = dict(defaults or {})
        self.play_timeout = play_timeout
        self.variables: Dict[str, str] = {}
        self.last_error: str = ''
        self.last_extract: List[str] = []
        self.last_runtime: Optional[float] = None
        self.last_performance: Optional[Dict[str, Any]] = None
        self._play_lock = asyncio.Lock()

        self._commands = {
            'iimplay': self._iim_play,
            'iimset': self._iim_set,
            'iimgetlastextract': self._iim_get_last_extract,
            'iimgetextract': self._iim_get_last_extract,
            'iimgetlasterror': self._iim_get_last_error,
            'iimgetlastperformance': self._iim_get_last_performance,
            'iimgetstopwatch': self._iim_get_stopwatch,
            'iimstop': self._iim_stop,
            'iimdisplay': self._iim_display,
            'iimexit': self._iim_exit,
            'iimclose': self._iim_exit,
        }

    @property
    def running(self) -> bool:
        return self._play_lock.locked() or self.runner.is_running()

    async def handle_line(self, line: str) -> Tuple[str, bool]:
        """Process one request line.

        Returns:
            Tuple of (response_line, close_connection).
        """
        try:
            name, args = parse_command_line(line)
        except ProtocolError as e:
            logger.debug(f'Rejected request: {e}')
            return format_response(ReturnCode.SYNTAX_ERROR, str(e)), False
        code, data = await self.call(name, args)
        return format_response(code, data), name.lower() in ('iimexit', 'iimclose')

    async def call(self, name: str, args: List[str]) -> Response:
        """Run one protocol command by name (case-insensitive)."""
        command = self._commands.get(name.lower())
        if command is None:
            return ReturnCode.UNKNOWN_COMMAND, f'Unknown command: {name}'
        logger.debug(f'{name}({", ".join(args)})')
        return await command(args)

    def resolve_macro(self, name: str) -> pathlib.Path:
        """Find a macro file inside the macros directory.

        Raises:
            MacroNotFoundError: If the path escapes the directory or the file
                does not exist.
        """
        relative = pathlib.Path(name)
        if not relative.suffix:
            relative = relative.with_name(relative.name + MACRO_EXTENSION)
        path = (self.macros_dir / relative).resolve()
        if self.macros_dir not in path.parents:
            raise MacroNotFoundError(f'Macro outside of macros folder: {name}')
        if not path.is_file():
            raise MacroNotFoundError(f'Macro file not found: {name}')
        return path

    def load_source(self, name: str) -> str:
        if name[:5].upper() == 'CODE:':
            return decode_inline_macro(name[5:])
        path = self.resolve_macro(name)
        try:
            return path.read_text(encoding='utf-8')
        except OSError as e:
            raise MacroNotFoundError(f'Cannot open file: {name} ({e})') from e

    def list_macros(self) -> List[str]:
        if not self.macros_dir.is_dir():
            return []
        return sorted(
            p.relative_to(self.macros_dir).as_posix()
            for p in self.macros_dir.rglob(f'*{MACRO_EXTENSION}') if p.is_file()
        )

    async def play(self, name: str, timeout: Optional[float] = None) -> Response:
        """Load and run a macro to completion.

        Args:
            name: Macro file name (``.iim`` optional) or ``CODE:`` text.
            timeout: Seconds to wait; defaults to play_timeout.
        """
        if self.running:
            return ReturnCode.MACRO_RUNNING, 'A macro is already running'
        try:
            source = self.load_source(name)
        except MacroNotFoundError as e:
            self.last_error = str(e)
            return ReturnCode.MACRO_NOT_FOUND, str(e)

        async with self._play_lock:
            self.last_error = ''
            self.last_extract = []
            variables = {**self.defaults, **self.variables}
            started = datetime.now(timezone.utc)
            timeout = self.play_timeout if timeout is None else timeout
            try:
                result = await self.runner.run_once(source, variables=variables, timeout=timeout)
            except asyncio.TimeoutError:
                result = MacroResult(False, ErrorCode.TIMEOUT, f'Macro execution timeout after {timeout}s')
                result = self._finish(result, started)
                return ReturnCode.TIMEOUT, self.last_error
            self._finish(result, started)

        if result.success:
            return ReturnCode.OK, None
        return map_return_code(result.error_code), self.last_error

    def set_variable(self, name: str, value: str) -> str:
        """Store a variable for the next play and return its normalized name."""
        key = normalize_variable_name(name)
        self.variables[key] = value
        return key

    def get_last_extract(self, index: Optional[int] = None) -> str:
        if not self.last_extract:
            return NO_DATA
        joined = EXTRACT_SEPARATOR.join(self.last_extract)
        if index is None:
            return joined
        parts = joined.split(EXTRACT_SEPARATOR)
        if 0 < index <= len(parts):
            return parts[index - 1]
        return NO_DATA

    def stop(self) -> bool:
        """Signal the running macro to stop. Returns False if none is running."""
        executor = self.runner.executor
        if not self.runner.is_running() or executor is None:
            return False
        logger.info('Stop requested by scripting client')
        executor.stop()
        return True

    def status(self) -> Dict[str, Any]:
        return {
            'running': self.running,
            'last_error': self.last_error,
            'last_runtime': self.last_runtime,
        }

    def _finish(self, result: MacroResult, started: datetime) -> MacroResult:
        ended = datetime.now(timezone.utc)
        self.last_extract = list(result.extract_data)
        self.last_runtime = result.runtime or (ended - started).total_seconds()
        if not result.success:
            message = result.error_message or f'Error code: {int(result.error_code)}'
            if result.error_line and not message.startswith('Line '):
                message = f'Line {result.error_line}: {message}'
            self.last_error = message
        loop = result.variables.get('!LOOP', 1)
        self.last_performance = {
            'totalTimeMs': int(self.last_runtime * 1000),
            'startTime': started.isoformat(),
            'endTime': ended.isoformat(),
            'loopsCompleted': max(int(loop) - 1, 0) if isinstance(loop, (int, float)) else 0,
            'success': result.success,
            'errorCode': int(map_return_code(result.error_code)),
        }
        return result

    async def _iim_play(self, args: List[str]) -> Response:
        if not args or not args[0]:
            return ReturnCode.INVALID_PARAMETER, 'iimPlay requires macro name or content'
        timeout = None
        if len(args) > 1 and args[1]:
            try:
                timeout_ms = int(args[1])
            except ValueError:
                return ReturnCode.INVALID_PARAMETER, f'Invalid timeout: {args[1]}'
            if timeout_ms > 0:
                timeout = timeout_ms / 1000
        return await self.play(args[0], timeout)

    async def _iim_set(self, args: List[str]) -> Response:
        if len(args) < 2:
            return ReturnCode.INVALID_PARAMETER, 'iimSet requires variable name and value'
        self.set_variable(args[0], args[1])
        return ReturnCode.OK, None

    async def _iim_get_last_extract(self, args: List[str]) -> Response:
        index = None
        if args and args[0]:
            try:
                index = int(args[0])
            except ValueError:
                return ReturnCode.INVALID_PARAMETER, f'Invalid extract index: {args[0]}'
        return ReturnCode.OK, self.get_last_extract(index)

    async def _iim_get_last_error(self, args: List[str]) -> Response:
        return ReturnCode.OK, self.last_error or 'OK'

    async def _iim_get_last_performance(self, args: List[str]) -> Response:
        if self.last_performance is None:
            return ReturnCode.OK, None
        return ReturnCode.OK, json.dumps(self.last_performance)

    async def _iim_get_stopwatch(self, args: List[str]) -> Response:
        if self.last_runtime is None:
            return ReturnCode.OK, '0'
        return ReturnCode.OK, stringify(round(self.last_runtime, 3))

    async def _iim_stop(self, args: List[str]) -> Response:
        if not self.stop():
            return ReturnCode.OK, 'No macro is running'
        return ReturnCode.OK, None

    async def _iim_display(self, args: List[str]) -> Response:
        logger.info(f"iimDisplay: {args[0] if args else ''}")
        return ReturnCode.OK, None

    async def _iim_exit(self, args: List[str]) -> Response:
        return ReturnCode.OK, None


class ScriptingServer:
    """asyncio TCP server feeding request lines to a ScriptingInterface."""

    def __init__(self, interface: ScriptingInterface, host: str = '127.0.0.1', port: int = DEFAULT_PORT):
        self.interface = interface
        self.host = host
        self.port = port
        self._server: Optional[asyncio.AbstractServer] = None
        self._clients: set = set()

    @property
    def sockets(self):
        return self._server.sockets if self._server is not None else ()

    async def start(self) -> None:
        """Bind the listening socket.

        Raises:
            RuntimeError: If the server is already started.
        """
        if self._server is not None:
            raise RuntimeError('Scripting server already started')
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        if self.port == 0 and self._server.sockets:
            self.port = self._server.sockets[0].getsockname()[1]
        logger.info(f'Scripting interface listening on {self.host}:{self.port}')

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is None:
            return
        self._server.close()
        for writer in list(self._clients):
            writer.close()
        await self._server.wait_closed()
        self._server = None
        logger.info('Scripting interface stopped')

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info('peername')
        logger.info(f'Scripting client connected: {peer}')
        self._clients.add(writer)
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                line = raw.decode('utf-8', errors='replace').strip()
                if not line:
                    continue
                response, close = await self.interface.handle_line(line)
                writer.write(response.encode('utf-8'))
                await writer.drain()
                if close:
                    break
        except ConnectionError as e:
            logger.warning(f'Scripting client {peer} connection error: {e}')
        finally:
            self._clients.discard(writer)
            writer.close()
            logger.info(f'Scripting client disconnected: {peer}')
