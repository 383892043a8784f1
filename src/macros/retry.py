"""Bounded polling for commands whose target may not exist yet.

FRAME, CLICK, SEARCH and URL GOTO address browser resources that can
appear a little after the previous command finished. retry_until() keeps
attempting the single bridge call, sleeping ``!TIMEOUT_STEP`` seconds
between attempts, until it succeeds or the ``!TIMEOUT`` budget (or a
page-specific override) is used up.
"""
from __future__ import annotations

import logging
import math
from typing import Awaitable, Callable, Optional, Tuple

from bridges.base import BridgeResponse

from .registry import ExecutionContext
from .results import CommandResult, ErrorCode
from .variables import to_number

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
DEFAULT_TIMEOUT_STEP = 0.2

Attempt = Callable[[], Awaitable[BridgeResponse]]


def read_seconds(ctx: ExecutionContext, name: str, default: float) -> float:
    """Read a timeout variable as seconds, falling back to default.

    Non-numeric and negative values are treated as "use the default"
    instead of failing the command.
    """
    value = to_number(ctx.get_variable(name))
    if math.isnan(value) or value < 0 or ctx.get_variable(name) in (None, ''):
        return default
    return value


async def retry_until(
    attempt: Attempt,
    ctx: ExecutionContext,
    *,
    failure_code: ErrorCode,
    budget_var: str = '!TIMEOUT',
    on_failure: Optional[Callable[[], Awaitable[object]]] = None,
    description: str = 'operation',
) -> Tuple[CommandResult, Optional[BridgeResponse]]:
    """Poll a bridge call until it succeeds or the time budget runs out.

    At least one attempt is always made. The stop event is checked before
    every attempt; a stop ends the loop with USER_ABORT.

    Args:
        attempt: Coroutine function performing one bridge call.
        ctx: Context of the command being executed.
        failure_code: Error code returned when the budget is exhausted.
        budget_var: Variable holding the budget in seconds.
        on_failure: Optional compensating action awaited once before a
            failure is returned.
        description: Short text used in log and error messages.

    Returns:
        Tuple of (result, last_response). On success the result is OK and
        last_response holds the successful bridge reply.
    """
    budget = read_seconds(ctx, budget_var, DEFAULT_TIMEOUT)
    step = read_seconds(ctx, '!TIMEOUT_STEP', DEFAULT_TIMEOUT_STEP)
    started = ctx.clock()
    attempts = 0
    last: Optional[BridgeResponse] = None

    while True:
        if ctx.stop_requested:
            return CommandResult.fail(ErrorCode.USER_ABORT, 'Macro stopped by user'), last

        attempts += 1
        last = await attempt()
        if last.success:
            if attempts > 1:
                ctx.log('debug', f'{description} succeeded after {attempts} attempts')
            return CommandResult.ok(), last

        elapsed = ctx.clock() - started
        if elapsed + step > budget or (step == 0 and elapsed >= budget):
            break
        ctx.log('debug', f'{description} failed ({last.error}), retrying in {step}s')
        if not await ctx.sleep(step):
            return CommandResult.fail(ErrorCode.USER_ABORT, 'Macro stopped by user'), last

    if on_failure is not None:
        try:
            await on_failure()
        except Exception as e:
            logger.warning(f'Cleanup after failed {description} raised: {e}')

    message = last.error if last is not None and last.error else f'{description} failed'
    ctx.log('warn', f'{description} gave up after {attempts} attempts: {message}')
    return CommandResult.fail(failure_code, message), last
