"""Command handler registry and the per-command execution context.

Handlers are plain coroutines taking an ExecutionContext and returning a
CommandResult. The registry maps command words to handlers; the executor
looks handlers up by the command's type for every dispatched line.

Example:
    Registering a custom command::

        async def hello(ctx: ExecutionContext) -> CommandResult:
            name = ctx.expand(ctx.get_required_param('NAME'))
            ctx.log('info', f'hello {name}')
            return CommandResult.ok(name)

        registry = CommandRegistry()
        registry.register('HELLO', hello)
"""
from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import (
    TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Mapping, Optional,
)

from .parser import Command
from .results import CommandResult, ErrorCode
from .variables import Value, VariableStore

if TYPE_CHECKING:
    from bridges.base import Bridges

logger = logging.getLogger(__name__)

Handler = Callable[['ExecutionContext'], Awaitable[CommandResult]]

# Interval used by interruptible sleeps to look at the stop event
STOP_POLL_INTERVAL = 0.1

_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


class BuiltinCommand(str, Enum):
    """Command words understood by the bundled handlers."""

    LABEL = 'LABEL'
    GOTO = 'GOTO'
    IF = 'IF'
    SET = 'SET'
    ADD = 'ADD'
    WAIT = 'WAIT'
    PAUSE = 'PAUSE'
    PROMPT = 'PROMPT'
    CLEAR = 'CLEAR'
    VERSION = 'VERSION'
    EXTRACT = 'EXTRACT'
    URL = 'URL'
    BACK = 'BACK'
    REFRESH = 'REFRESH'
    TAB = 'TAB'
    FRAME = 'FRAME'
    CLICK = 'CLICK'
    SEARCH = 'SEARCH'
    FILEDELETE = 'FILEDELETE'
    SAVEAS = 'SAVEAS'
    PRINT = 'PRINT'
    STOPWATCH = 'STOPWATCH'
    EXEC = 'EXEC'
    CMDLINE = 'CMDLINE'


class MissingParameterError(KeyError):
    """Raised by get_required_param(); dispatch maps it to MISSING_PARAMETER."""

    def __init__(self, command: str, key: str):
        super().__init__(key)
        self.message = f'{command} command requires {key} parameter'

    def __str__(self) -> str:
        return self.message


class ExecutionContext:
    """Read/write handle given to a handler for one command invocation.

    Parameter accessors return values before ``{{...}}`` expansion; call
    expand() on anything that should see variable values.
    """

    def __init__(
        self,
        command: Command,
        variables: VariableStore,
        bridges: Optional['Bridges'] = None,
        *,
        stop_event: Optional[asyncio.Event] = None,
        log_queue: Optional['asyncio.Queue[str]'] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Optional[Callable[[], float]] = None,
        state: Optional[Dict[str, Any]] = None,
        first_pass: bool = True,
    ):
        self.command = command
        self.variables = variables
        self.bridges = bridges
        self.stop_event = stop_event
        self.log_queue = log_queue
        self._sleep = sleep or asyncio.sleep
        self.clock = clock or time.monotonic
        self.state = state if state is not None else {}
        self.first_pass = first_pass

    def get_param(self, key: str) -> Optional[str]:
        """Return the raw value of a ``KEY=value`` parameter, or None.

        Positional tokens never match, so ``FILEDELETE NAME`` has no NAME.
        Use has_param() for bare flags such as ``TAB CLOSE``.
        """
        wanted = key.upper()
        for param in self.command.parameters:
            if not param.positional and param.key.upper() == wanted:
                return param.value
        return None

    def get_required_param(self, key: str) -> str:
        """Return the raw value of a named parameter.

        Raises:
            MissingParameterError: If the parameter is absent.
        """
        value = self.get_param(key)
        if value is None:
            raise MissingParameterError(self.command.type, key)
        return value

    def has_param(self, key: str) -> bool:
        return self.command.param(key) is not None

    def positional(self, index: int) -> Optional[str]:
        """Return the value of the n-th parameter (0-based), or None."""
        params = self.command.parameters
        if 0 <= index < len(params):
            return params[index].text
        return None

    @property
    def parameters(self) -> List[Any]:
        return list(self.command.parameters)

    def expand(self, text: Optional[str]) -> str:
        return self.variables.expand(text)[0]

    def get_variable(self, name: str) -> Optional[Value]:
        return self.variables.get(name)

    def set_variable(self, name: str, value: Value) -> None:
        self.variables.set_system(name, value)

    def add_extract(self, value: Any) -> None:
        self.variables.add_extract(value)
        self.log('debug', f'EXTRACT: {str(value)[:100]}')

    @property
    def stop_requested(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    def log(self, level: str, message: str) -> None:
        """Log a message tagged with the current line number.

        The message also goes to the run's log queue, if one is attached.
        """
        text = f'[line {self.command.line_number}] {message}'
        logger.log(_LEVELS.get(level.lower(), logging.INFO), text)
        if self.log_queue is not None:
            try:
                self.log_queue.put_nowait(text)
            except asyncio.QueueFull:
                logger.debug('log queue full, dropping message')

    async def sleep(self, seconds: float) -> bool:
        """Sleep, waking early if the stop event is set.

        Returns:
            True if the full duration elapsed, False if a stop was requested.
        """
        if seconds <= 0:
            await self._sleep(0)
            return not self.stop_requested
        if self.stop_event is None:
            await self._sleep(seconds)
            return True
        deadline = self.clock() + seconds
        while not self.stop_event.is_set():
            remaining = deadline - self.clock()
            if remaining <= 0:
                return True
            await self._sleep(min(STOP_POLL_INTERVAL, remaining))
        return False


class CommandRegistry:
    """Maps command type names to handler coroutines.

    Registering a type twice replaces the earlier handler, which lets
    callers install partial handler sets and override single commands.
    The executor freezes the registry while a run is in progress.
    """

    def __init__(self, handlers: Optional[Mapping[str, Handler]] = None):
        self._handlers: Dict[str, Handler] = {}
        self._frozen = False
        if handlers:
            self.register_many(handlers)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def unfreeze(self) -> None:
        self._frozen = False

    def register(self, command_type: str, handler: Handler) -> None:
        """Install a handler, replacing any existing one for the type.

        Raises:
            RuntimeError: If called while a run holds the registry frozen.
        """
        if self._frozen:
            raise RuntimeError('Cannot register handlers while a macro is running')
        self._handlers[_key(command_type)] = handler

    def register_many(self, handlers: Mapping[str, Handler]) -> None:
        for command_type, handler in handlers.items():
            self.register(command_type, handler)

    def unregister(self, command_type: str) -> None:
        if self._frozen:
            raise RuntimeError('Cannot unregister handlers while a macro is running')
        self._handlers.pop(_key(command_type), None)

    def has(self, command_type: str) -> bool:
        return _key(command_type) in self._handlers

    def get(self, command_type: str) -> Optional[Handler]:
        return self._handlers.get(_key(command_type))

    def types(self) -> List[str]:
        return sorted(self._handlers)

    async def dispatch(self, ctx: ExecutionContext) -> CommandResult:
        """Run the handler registered for ctx.command.type.

        Returns:
            The handler's result. UNKNOWN_COMMAND if no handler is
            registered, MISSING_PARAMETER for a MissingParameterError and
            SCRIPT_ERROR for any other exception escaping the handler.
        """
        command_type = ctx.command.type
        handler = self._handlers.get(command_type)
        if handler is None:
            return CommandResult.fail(
                ErrorCode.UNKNOWN_COMMAND, f'Unknown command: {command_type}'
            )
        try:
            return await handler(ctx)
        except MissingParameterError as e:
            return CommandResult.fail(ErrorCode.MISSING_PARAMETER, str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception('Handler for %s raised', command_type)
            return CommandResult.fail(ErrorCode.SCRIPT_ERROR, f'{command_type} failed: {e}')


def _key(command_type: Any) -> str:
    if isinstance(command_type, Enum):
        command_type = command_type.value
    return str(command_type).upper()
