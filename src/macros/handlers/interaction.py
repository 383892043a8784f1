"""CLICK: coordinate based clicks delivered through the content script."""
from __future__ import annotations

import math
from typing import Any, Dict

from bridges.base import BridgeResponse, call_bridge, make_message

from ..registry import ExecutionContext, Handler
from ..results import CommandResult, ErrorCode
from ..retry import retry_until
from ..variables import to_number

BUTTONS = ('left', 'middle', 'right')
COORDINATE_MODES = ('viewport', 'page')


async def send_content(ctx: ExecutionContext, message_type: str, payload: Dict[str, Any]) -> BridgeResponse:
    """Send one message to the content script of the current run."""
    sender = ctx.bridges.content if ctx.bridges is not None else None
    return await call_bridge(sender, make_message(message_type, payload=payload))


def _coordinate(ctx: ExecutionContext, key: str):
    raw = ctx.expand(ctx.get_required_param(key))
    number = to_number(raw)
    if math.isnan(number) or not number.is_integer():
        return None, raw
    return int(number), raw


async def click_handler(ctx: ExecutionContext) -> CommandResult:
    """CLICK X=<x> Y=<y> [BUTTON=left|middle|right] [CONTENT=<text>]
    [COORDMODE=viewport|page]

    The click is retried until the content script reports an element at
    the position, or ``!TIMEOUT`` runs out (ELEMENT_NOT_FOUND).
    """
    x, raw_x = _coordinate(ctx, 'X')
    if x is None:
        return CommandResult.fail(ErrorCode.INVALID_PARAMETER, f'CLICK X must be an integer, got {raw_x!r}')
    y, raw_y = _coordinate(ctx, 'Y')
    if y is None:
        return CommandResult.fail(ErrorCode.INVALID_PARAMETER, f'CLICK Y must be an integer, got {raw_y!r}')

    button = ctx.expand(ctx.get_param('BUTTON') or 'left').lower()
    if button not in BUTTONS:
        return CommandResult.fail(
            ErrorCode.INVALID_PARAMETER, f'CLICK BUTTON must be one of {", ".join(BUTTONS)}'
        )
    mode = ctx.expand(ctx.get_param('COORDMODE') or 'viewport').lower()
    if mode not in COORDINATE_MODES:
        return CommandResult.fail(
            ErrorCode.INVALID_PARAMETER, f'CLICK COORDMODE must be one of {", ".join(COORDINATE_MODES)}'
        )
    content = ctx.get_param('CONTENT')

    if ctx.bridges is None or ctx.bridges.content is None:
        return CommandResult.fail(ErrorCode.SCRIPT_ERROR, 'No content script available for CLICK')

    payload = {
        'x': x,
        'y': y,
        'button': button,
        'content': ctx.expand(content) if content is not None else None,
        'clickCount': 1,
        'modifiers': {},
        'coordinateMode': mode,
    }
    ctx.log('info', f'CLICK at ({x}, {y}) button={button}')
    result, _ = await retry_until(
        lambda: send_content(ctx, 'CLICK_COMMAND', payload),
        ctx,
        failure_code=ErrorCode.ELEMENT_NOT_FOUND,
        description=f'click at ({x}, {y})',
    )
    return result


INTERACTION_HANDLERS: Dict[str, Handler] = {
    'CLICK': click_handler,
}
