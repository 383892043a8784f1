"""System commands: STOPWATCH, EXEC and CMDLINE."""
from __future__ import annotations

import math
import re
from typing import Dict

from ..registry import ExecutionContext, Handler
from ..results import CommandResult, ErrorCode
from ..variables import is_enabled, to_number
from .files import load_datasource

DEFAULT_EXEC_TIMEOUT = 30.0

CMDLINE_VARIABLES = ('!TIMEOUT', '!LOOP', '!DATASOURCE')
_VARN_RE = re.compile(r'^!VAR[0-9]$')


def _format_seconds(seconds: float) -> str:
    return f'{seconds:.3f}'


async def stopwatch_handler(ctx: ExecutionContext) -> CommandResult:
    """STOPWATCH [START|STOP|LAP] ID=<name>

    Without an action the named stopwatch is toggled. Elapsed time in
    seconds is stored in ``!STOPWATCHTIME`` when a watch stops or laps.
    """
    watch_id = ctx.get_param('ID') or ctx.get_param('LABEL')
    if not watch_id:
        return CommandResult.fail(ErrorCode.MISSING_PARAMETER, 'STOPWATCH command requires ID parameter')
    watch_id = ctx.expand(watch_id).upper()
    watches: Dict[str, float] = ctx.state.setdefault('stopwatches', {})
    now = ctx.clock()

    if ctx.has_param('START'):
        action = 'START'
    elif ctx.has_param('STOP'):
        action = 'STOP'
    elif ctx.has_param('LAP'):
        action = 'LAP'
    else:
        action = 'STOP' if watch_id in watches else 'START'

    if action == 'START':
        if watch_id in watches:
            return CommandResult.fail(ErrorCode.SCRIPT_ERROR, f'Stopwatch {watch_id} is already started')
        watches[watch_id] = now
        ctx.log('debug', f'STOPWATCH {watch_id} started')
        return CommandResult.ok()

    if watch_id not in watches:
        return CommandResult.fail(ErrorCode.SCRIPT_ERROR, f'Stopwatch {watch_id} is not started')
    elapsed = _format_seconds(now - watches[watch_id])
    if action == 'STOP':
        del watches[watch_id]
    ctx.set_variable('!STOPWATCHTIME', elapsed)
    ctx.log('info', f'STOPWATCH {watch_id} {action.lower()}: {elapsed}s')
    return CommandResult.ok(elapsed)


async def exec_handler(ctx: ExecutionContext) -> CommandResult:
    """EXEC CMD=<command> [WAIT=YES|NO] [TIMEOUT=<seconds>]

    Sets ``!CMDLINE_EXITCODE``, ``!CMDLINE_STDOUT`` and ``!CMDLINE_STDERR``.
    A non-zero exit code fails the command.
    """
    command = ctx.get_param('CMD')
    if not command:
        return CommandResult.fail(ErrorCode.MISSING_PARAMETER, 'EXEC command requires CMD parameter')
    command = ctx.expand(command)
    wait = is_enabled(ctx.expand(ctx.get_param('WAIT') or 'YES'))

    timeout = DEFAULT_EXEC_TIMEOUT
    raw_timeout = ctx.get_param('TIMEOUT')
    if raw_timeout is not None:
        timeout = to_number(ctx.expand(raw_timeout))
        if math.isnan(timeout) or timeout <= 0:
            return CommandResult.fail(
                ErrorCode.INVALID_PARAMETER, f'EXEC TIMEOUT must be a positive number, got {raw_timeout!r}'
            )

    executor = ctx.bridges.cmdline if ctx.bridges is not None else None
    if executor is None:
        return CommandResult.fail(ErrorCode.SCRIPT_ERROR, 'No command line executor configured for EXEC')

    ctx.log('info', f'EXEC {command} (wait={wait}, timeout={timeout}s)')
    try:
        result = await executor.execute(command, timeout=timeout, wait=wait)
    except Exception as e:
        ctx.set_variable('!CMDLINE_EXITCODE', -1)
        ctx.set_variable('!CMDLINE_STDOUT', '')
        ctx.set_variable('!CMDLINE_STDERR', str(e))
        return CommandResult.fail(ErrorCode.SCRIPT_ERROR, f'EXEC failed: {e}')

    ctx.set_variable('!CMDLINE_EXITCODE', result.exit_code)
    ctx.set_variable('!CMDLINE_STDOUT', result.stdout)
    ctx.set_variable('!CMDLINE_STDERR', result.stderr)
    if result.exit_code != 0:
        return CommandResult.fail(
            ErrorCode.SCRIPT_ERROR, f'Command failed with exit code {result.exit_code}'
        )
    return CommandResult.ok(result.stdout)


async def cmdline_handler(ctx: ExecutionContext) -> CommandResult:
    """CMDLINE <variable> <value>

    Sets one of !TIMEOUT, !LOOP, !DATASOURCE or !VAR0..!VAR9 from the
    command line of the caller.
    """
    name = ctx.positional(0)
    raw_value = ctx.positional(1)
    if not name or raw_value is None:
        return CommandResult.fail(
            ErrorCode.MISSING_PARAMETER, 'CMDLINE command requires a variable name and a value'
        )
    key = name.strip().upper()
    value = ctx.expand(raw_value)

    if key not in CMDLINE_VARIABLES and not _VARN_RE.match(key):
        return CommandResult.fail(
            ErrorCode.INVALID_PARAMETER, f'CMDLINE cannot set {name}; use !TIMEOUT, !LOOP, !DATASOURCE or !VARn'
        )
    if key == '!TIMEOUT':
        seconds = to_number(value)
        if math.isnan(seconds) or seconds < 0:
            return CommandResult.fail(ErrorCode.INVALID_PARAMETER, f'Invalid !TIMEOUT value: {value!r}')
        ctx.set_variable(key, seconds)
    elif key == '!LOOP':
        if not ctx.first_pass:
            ctx.log('debug', 'CMDLINE !LOOP ignored after the first loop pass')
            return CommandResult.ok()
        loop = to_number(value)
        if math.isnan(loop) or not loop.is_integer() or loop < 1:
            return CommandResult.fail(ErrorCode.INVALID_PARAMETER, f'Invalid !LOOP value: {value!r}')
        ctx.set_variable(key, int(loop))
    elif key == '!DATASOURCE':
        result = await load_datasource(ctx, value)
        if not result.success:
            return result
    else:
        ctx.set_variable(key, value)
    ctx.log('debug', f'CMDLINE: set {key} to {value!r}')
    return CommandResult.ok()


SYSTEM_HANDLERS: Dict[str, Handler] = {
    'STOPWATCH': stopwatch_handler,
    'EXEC': exec_handler,
    'CMDLINE': cmdline_handler,
}
