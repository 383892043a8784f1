"""Navigation commands: URL, BACK, REFRESH, TAB and FRAME.

Each handler turns its parameters into a single BrowserBridge message.
URL GOTO and FRAME poll through retry_until() because the page or frame
they target may still be loading.
"""
from __future__ import annotations

import math
from typing import Any, Dict

from bridges.base import BridgeResponse, call_bridge, make_message

from ..registry import ExecutionContext, Handler
from ..results import CommandResult, ErrorCode
from ..retry import retry_until
from ..variables import to_number


async def send_browser(ctx: ExecutionContext, message_type: str, **fields: Any) -> BridgeResponse:
    """Send one operation to the browser bridge of the current run."""
    bridge = ctx.bridges.browser if ctx.bridges is not None else None
    return await call_bridge(bridge, make_message(message_type, **fields))


def _parse_index(text: str, minimum: int):
    number = to_number(text)
    if math.isnan(number) or not number.is_integer() or number < minimum:
        return None
    return int(number)


async def url_handler(ctx: ExecutionContext) -> CommandResult:
    """URL GOTO=<url> | URL CURRENT"""
    if ctx.has_param('CURRENT'):
        response = await send_browser(ctx, 'getCurrentUrl')
        if not response.success:
            return CommandResult.fail(
                ErrorCode.SCRIPT_ERROR, response.error or 'Failed to get current URL'
            )
        url = str((response.data or {}).get('url', ''))
        ctx.set_variable('!URLCURRENT', url)
        ctx.log('info', f'Current URL: {url}')
        return CommandResult.ok(url)

    goto = ctx.get_param('GOTO')
    if goto is None:
        return CommandResult.fail(
            ErrorCode.MISSING_PARAMETER, 'URL command requires GOTO or CURRENT parameter'
        )
    url = ctx.expand(goto)
    ctx.log('info', f'Navigating to: {url}')
    result, _ = await retry_until(
        lambda: send_browser(ctx, 'navigate', url=url),
        ctx,
        failure_code=ErrorCode.PAGE_TIMEOUT,
        budget_var='!TIMEOUT_PAGE',
        description=f'navigate to {url}',
    )
    if result.success:
        ctx.set_variable('!URLCURRENT', url)
    return result


async def back_handler(ctx: ExecutionContext) -> CommandResult:
    response = await send_browser(ctx, 'goBack')
    if not response.success:
        return CommandResult.fail(ErrorCode.SCRIPT_ERROR, response.error or 'Failed to go back')
    return CommandResult.ok()


async def refresh_handler(ctx: ExecutionContext) -> CommandResult:
    response = await send_browser(ctx, 'refresh')
    if not response.success:
        return CommandResult.fail(ErrorCode.SCRIPT_ERROR, response.error or 'Failed to refresh page')
    return CommandResult.ok()


async def tab_handler(ctx: ExecutionContext) -> CommandResult:
    """TAB T=<n> | TAB OPEN [URL=<url>] | TAB CLOSE | TAB CLOSEALLOTHERS

    Tab numbers in macros are 1-based; the bridge receives 0-based indexes.
    """
    if ctx.has_param('CLOSEALLOTHERS'):
        response = await send_browser(ctx, 'closeOtherTabs')
        action = 'close other tabs'
    elif ctx.has_param('CLOSE'):
        response = await send_browser(ctx, 'closeTab')
        action = 'close tab'
    elif ctx.has_param('OPEN') or ctx.has_param('NEW'):
        url = ctx.get_param('URL')
        response = await send_browser(ctx, 'openTab', url=ctx.expand(url) if url else None)
        action = 'open tab'
    elif ctx.get_param('T') is not None:
        raw = ctx.expand(ctx.get_param('T'))
        index = _parse_index(raw, 1)
        if index is None:
            return CommandResult.fail(
                ErrorCode.INVALID_PARAMETER, f'TAB T must be a positive integer, got {raw!r}'
            )
        response = await send_browser(ctx, 'switchTab', tabIndex=index - 1)
        action = f'switch to tab {index}'
    else:
        return CommandResult.fail(
            ErrorCode.MISSING_PARAMETER, 'TAB command requires T, OPEN, CLOSE or CLOSEALLOTHERS'
        )

    if not response.success:
        return CommandResult.fail(ErrorCode.SCRIPT_ERROR, response.error or f'Failed to {action}')
    return CommandResult.ok()


async def frame_handler(ctx: ExecutionContext) -> CommandResult:
    """FRAME F=<n> | FRAME NAME=<name>

    ``F=0`` selects the main document without retrying. Any other frame is
    polled for up to ``!TIMEOUT`` seconds; on failure the main frame is
    selected again so later commands do not address a missing frame.
    """
    message: Dict[str, Any]
    if ctx.get_param('F') is not None:
        raw = ctx.expand(ctx.get_param('F'))
        index = _parse_index(raw, 0)
        if index is None:
            return CommandResult.fail(
                ErrorCode.INVALID_PARAMETER, f'FRAME F must be a non-negative integer, got {raw!r}'
            )
        if index == 0:
            response = await send_browser(ctx, 'selectFrame', frameIndex=0)
            if not response.success:
                return CommandResult.fail(
                    ErrorCode.FRAME_NOT_FOUND, response.error or 'Failed to select main frame'
                )
            return CommandResult.ok()
        message = {'frameIndex': index}
        target = f'frame {index}'
    elif ctx.get_param('NAME') is not None:
        name = ctx.expand(ctx.get_param('NAME'))
        message = {'frameName': name}
        target = f'frame {name!r}'
    else:
        return CommandResult.fail(ErrorCode.MISSING_PARAMETER, 'FRAME command requires F or NAME')

    async def _reset_to_main() -> BridgeResponse:
        return await send_browser(ctx, 'selectFrame', frameIndex=0)

    result, _ = await retry_until(
        lambda: send_browser(ctx, 'selectFrame', **message),
        ctx,
        failure_code=ErrorCode.FRAME_NOT_FOUND,
        on_failure=_reset_to_main,
        description=f'select {target}',
    )
    return result


NAVIGATION_HANDLERS: Dict[str, Handler] = {
    'URL': url_handler,
    'BACK': back_handler,
    'REFRESH': refresh_handler,
    'TAB': tab_handler,
    'FRAME': frame_handler,
}
