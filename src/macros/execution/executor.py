"""Macro executor: the control-flow state machine that runs a parsed macro.

The executor walks the command list with a program counter, dispatching
each command to its registered handler, following GOTO and IF jumps, and
repeating the whole macro once per loop iteration. The first failing
command decides the outcome of the run unless ``!ERRORIGNORE`` is set.

Example:
    Running a macro three times::

        executor = MacroExecutor(bridges=Bridges(browser=my_browser))
        executor.load_macro(source)
        result = await executor.execute(1, 3)
        if not result.success:
            print(result.error_code, result.error_message)
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from bridges.base import Bridges

from ..conditions import evaluate_condition
from ..handlers import register_all_handlers
from ..parser import LABEL_ONLY, Command, parse, split_if
from ..registry import CommandRegistry, ExecutionContext, Handler
from ..results import CommandResult, ErrorCode, MacroResult
from ..variables import VariableStore, is_enabled, to_number

logger = logging.getLogger(__name__)

# Upper bound on dispatched commands in one pass, so "A: GOTO A" ends
DEFAULT_MAX_STEPS_PER_PASS = 100_000

# (result, line_number) of a failed command
Failure = Tuple[CommandResult, int]


class ExecState(Enum):
    """States of the control-flow state machine."""

    RUNNING = 'running'
    JUMPED = 'jumped'
    STOPPED_OK = 'stopped_ok'
    STOPPED_ERROR = 'stopped_error'


class MacroExecutor:
    """Runs a loaded macro against injected bridges.

    Args:
        registry: Handler registry. When omitted a new registry with all
            built-in handlers is created.
        bridges: Bridge container passed to every handler.
        variables: Variable store to use; a fresh one by default.
        log_queue: Optional asyncio.Queue receiving per-command log lines.
        stop_event: Event observed between commands and inside retry loops.
        sleep: Coroutine function used for every delay (asyncio.sleep).
        clock: Monotonic clock in seconds used for timeouts.
        max_steps_per_pass: Dispatch limit per pass guarding endless jumps.
    """

    def __init__(
        self,
        registry: Optional[CommandRegistry] = None,
        bridges: Optional[Bridges] = None,
        *,
        variables: Optional[VariableStore] = None,
        log_queue: Optional['asyncio.Queue[str]'] = None,
        stop_event: Optional[asyncio.Event] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Optional[Callable[[], float]] = None,
        max_steps_per_pass: int = DEFAULT_MAX_STEPS_PER_PASS,
    ):
        if registry is None:
            registry = CommandRegistry()
            register_all_handlers(registry)
        self.registry = registry
        self.bridges = bridges if bridges is not None else Bridges()
        self.variables = variables if variables is not None else VariableStore()
        self.log_queue = log_queue
        self.stop_event = stop_event if stop_event is not None else asyncio.Event()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self.max_steps_per_pass = max_steps_per_pass

        self.state = ExecState.STOPPED_OK
        self.last_result: Optional[MacroResult] = None
        self._commands: List[Command] = []
        self._labels: Dict[str, int] = {}
        self._run_state: Dict[str, Any] = {}

    @property
    def commands(self) -> List[Command]:
        return list(self._commands)

    @property
    def labels(self) -> Dict[str, int]:
        return dict(self._labels)

    @property
    def extract_data(self) -> List[str]:
        return self.variables.extract_values()

    def load_macro(self, source: str) -> List[Command]:
        """Parse macro source and make it the program to execute.

        Args:
            source: Macro text.

        Returns:
            The parsed commands.
        """
        commands = parse(source)
        self.load_commands(commands)
        return commands

    def load_commands(self, commands: List[Command]) -> None:
        """Install an already parsed program and rebuild the label table."""
        self._commands = list(commands)
        self._labels = {}
        for index, command in enumerate(self._commands):
            if command.label and command.label.upper() not in self._labels:
                self._labels[command.label.upper()] = index
        logger.debug(f'Loaded {len(self._commands)} commands, {len(self._labels)} labels')

    def register_handler(self, command_type: str, handler: Handler) -> None:
        self.registry.register(command_type, handler)

    def register_handlers(self, handlers: Mapping[str, Handler]) -> None:
        self.registry.register_many(handlers)

    def stop(self) -> None:
        """Request the current run to stop at the next command or poll."""
        self.stop_event.set()

    async def execute(self, loop_start: int = 1, loop_end: int = 1) -> MacroResult:
        """Run the loaded macro once per loop value.

        ``!LOOP`` starts at loop_start and is incremented after every
        completed pass; the run ends once it exceeds loop_end. After
        ``execute(1, 5)`` the variable holds 6.

        Args:
            loop_start: First value of ``!LOOP``.
            loop_end: Last value of ``!LOOP`` to run.

        Returns:
            MacroResult describing the first failure, or success.

        Raises:
            ValueError: If loop_end is smaller than loop_start.
            RuntimeError: If this executor is already running.
        """
        if loop_end < loop_start:
            raise ValueError(f'loop_end ({loop_end}) must be >= loop_start ({loop_start})')
        if self.state in (ExecState.RUNNING, ExecState.JUMPED):
            raise RuntimeError('Executor is already running')

        started = self._clock()
        self.stop_event.clear()
        self._run_state = {}
        self.variables.set_system('!LOOP', loop_start)
        first_failure: Optional[Failure] = None
        self.state = ExecState.RUNNING
        logger.info(f'Macro start: {len(self._commands)} commands, loop {loop_start}..{loop_end}')

        self.registry.freeze()
        try:
            loop = loop_start
            first_pass = True
            while loop <= loop_end:
                self._log(f'=== loop {loop} start ===')
                state, failure = await self._run_pass(first_pass)
                if first_pass:
                    loop = self._first_pass_loop(loop)
                first_pass = False
                if failure is not None and first_failure is None:
                    first_failure = failure
                if state == ExecState.STOPPED_ERROR:
                    break
                loop += 1
                self.variables.set_system('!LOOP', loop)
        finally:
            self.registry.unfreeze()

        self.state = ExecState.STOPPED_ERROR if first_failure else ExecState.STOPPED_OK
        runtime = self._clock() - started
        if first_failure is None:
            result = MacroResult(
                True, ErrorCode.OK, None,
                self.variables.snapshot(), self.variables.extract_values(), runtime,
            )
            logger.info(f'Macro finished OK in {runtime:.2f}s')
        else:
            failed, line = first_failure
            result = MacroResult(
                False, failed.error_code, failed.error_message,
                self.variables.snapshot(), self.variables.extract_values(), runtime, line,
            )
            logger.info(
                f'Macro failed on line {line}: {failed.error_code.name} {failed.error_message}'
            )
        self.last_result = result
        return result

    async def _run_pass(self, first_pass: bool) -> Tuple[ExecState, Optional[Failure]]:
        """Execute the program once from the first command.

        Returns:
            Tuple of (state, first_failure). STOPPED_ERROR ends the whole
            run; RUNNING lets the loop continue with the next iteration.
        """
        pc = 0
        steps = 0
        first_failure: Optional[Failure] = None

        while pc < len(self._commands):
            command = self._commands[pc]
            if self.stop_event.is_set():
                self._log('stopped')
                stopped = CommandResult.fail(ErrorCode.USER_ABORT, 'Macro stopped by user')
                return ExecState.STOPPED_ERROR, first_failure or (stopped, command.line_number)

            steps += 1
            if steps > self.max_steps_per_pass:
                limit = CommandResult.fail(
                    ErrorCode.LOOP_LIMIT,
                    f'More than {self.max_steps_per_pass} commands in one pass; endless GOTO loop?',
                )
                return ExecState.STOPPED_ERROR, first_failure or (limit, command.line_number)

            if command.type == LABEL_ONLY:
                pc += 1
                continue

            ctx = self._make_context(command, first_pass)
            if command.type in ('GOTO', 'IF'):
                target, result = self._resolve_jump(ctx)
                if target is not None:
                    self.state = ExecState.JUMPED
                    logger.debug(f'Line {command.line_number}: jump to command {target}')
                    pc = target
                    self.state = ExecState.RUNNING
                    continue
                if result is not None and not result.success:
                    # Unknown labels and malformed jumps end the run outright.
                    return ExecState.STOPPED_ERROR, first_failure or (result, command.line_number)
                pc += 1
                continue

            if command.is_syntax_error:
                reason = command.parameters[0].value if command.parameters else 'syntax error'
                result = CommandResult.fail(
                    ErrorCode.SYNTAX_ERROR, f'Line {command.line_number}: {reason}'
                )
            else:
                logger.debug(f'Line {command.line_number}: {command.raw}')
                result = await self.registry.dispatch(ctx)

            if result.success:
                pc += 1
                continue

            if first_failure is None:
                first_failure = (result, command.line_number)
            if result.error_code == ErrorCode.USER_ABORT:
                return ExecState.STOPPED_ERROR, first_failure
            if is_enabled(self.variables.get('!ERRORIGNORE')):
                ctx.log('warn', f'Ignoring error {result.error_code.name}: {result.error_message}')
                pc += 1
                continue
            if is_enabled(self.variables.get('!ERRORLOOP')):
                ctx.log('warn', f'Error {result.error_code.name}, skipping to next loop')
                return ExecState.RUNNING, first_failure
            return ExecState.STOPPED_ERROR, first_failure

        return ExecState.RUNNING, first_failure

    def _resolve_jump(self, ctx: ExecutionContext) -> Tuple[Optional[int], Optional[CommandResult]]:
        """Work out where a GOTO or IF sends the program counter.

        Returns:
            Tuple of (target_index, result). target_index is None when no
            jump happens; result is a failure for malformed jumps and
            unknown labels.
        """
        command = ctx.command
        if command.type == 'GOTO':
            label = ctx.positional(0)
            if not label:
                return None, CommandResult.fail(
                    ErrorCode.MISSING_PARAMETER, 'GOTO command requires a label'
                )
            return self._lookup_label(ctx.expand(label))

        try:
            condition, label = split_if(command)
        except ValueError as e:
            return None, CommandResult.fail(ErrorCode.SYNTAX_ERROR, str(e))
        if not evaluate_condition(condition, self.variables):
            ctx.log('debug', f'IF {condition}: false')
            return None, None
        ctx.log('debug', f'IF {condition}: true, GOTO {label}')
        return self._lookup_label(ctx.expand(label))

    def _lookup_label(self, label: str) -> Tuple[Optional[int], Optional[CommandResult]]:
        index = self._labels.get(label.strip().upper())
        if index is None:
            return None, CommandResult.fail(ErrorCode.SCRIPT_ERROR, f'Label not found: {label}')
        return index, None

    def _make_context(self, command: Command, first_pass: bool) -> ExecutionContext:
        return ExecutionContext(
            command,
            self.variables,
            self.bridges,
            stop_event=self.stop_event,
            log_queue=self.log_queue,
            sleep=self._sleep,
            clock=self._clock,
            state=self._run_state,
            first_pass=first_pass,
        )

    def _first_pass_loop(self, loop: int) -> int:
        """Pick up a !LOOP value written by SET or CMDLINE during the first pass.

        Later passes never read the variable back; the counter owned by
        execute() overwrites it after every pass.
        """
        value = to_number(self.variables.get('!LOOP'))
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return loop

    def _log(self, message: str) -> None:
        logger.debug(message)
        if self.log_queue is not None:
            try:
                self.log_queue.put_nowait(message)
            except asyncio.QueueFull:
                pass


async def run_macro(
    source: str,
    bridges: Optional[Bridges] = None,
    *,
    loop_start: int = 1,
    loop_end: int = 1,
    variables: Optional[Mapping[str, Any]] = None,
    registry: Optional[CommandRegistry] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> MacroResult:
    """Parse and run macro text in one call.

    Args:
        source: Macro text.
        bridges: Bridges for the run.
        loop_start: First ``!LOOP`` value.
        loop_end: Last ``!LOOP`` value.
        variables: Variables to preset before the run.
        registry: Optional handler registry.
        stop_event: Optional event to stop the run.

    Returns:
        The run's MacroResult.
    """
    executor = MacroExecutor(registry, bridges, stop_event=stop_event)
    for name, value in (variables or {}).items():
        executor.variables.set_system(name, value)
    executor.load_macro(source)
    return await executor.execute(loop_start, loop_end)
