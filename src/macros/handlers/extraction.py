"""SEARCH: find TXT or REGEXP patterns in the page source.

The page source is fetched from the content script with a GET_SOURCE
message. Without a content script the value of ``!URLCURRENT`` is searched
instead, which keeps macros testable without a browser.
"""
from __future__ import annotations

from typing import Dict, Optional

from bridges.base import BridgeResponse

from ..matcher import PatternFormatError, parse_source, search_regexp, search_text
from ..registry import ExecutionContext, Handler
from ..results import CommandResult, ErrorCode
from ..retry import retry_until
from ..variables import is_enabled, stringify
from .interaction import send_content


async def _page_source(ctx: ExecutionContext) -> BridgeResponse:
    if ctx.bridges is None or ctx.bridges.content is None:
        return BridgeResponse.ok({'source': stringify(ctx.get_variable('!URLCURRENT'))})
    response = await send_content(ctx, 'GET_SOURCE', {})
    if response.success and 'source' not in (response.data or {}):
        return BridgeResponse.fail('Content script returned no page source')
    return response


async def search_handler(ctx: ExecutionContext) -> CommandResult:
    """SEARCH SOURCE=TXT:<pattern>|REGEXP:<pattern> [IGNORE_CASE=YES] [EXTRACT=<template>]

    The match (or the expanded EXTRACT template) is appended to !EXTRACT.
    EXTRACT is only meaningful for REGEXP searches.
    """
    source = ctx.get_param('SOURCE')
    if source is None:
        return CommandResult.fail(ErrorCode.MISSING_PARAMETER, 'SEARCH command requires SOURCE parameter')
    try:
        mode, pattern = parse_source(ctx.expand(source))
    except PatternFormatError as e:
        return CommandResult.fail(ErrorCode.INVALID_PARAMETER, str(e))

    extract_pattern: Optional[str] = ctx.get_param('EXTRACT')
    if extract_pattern and mode != 'REGEXP':
        return CommandResult.fail(ErrorCode.INVALID_PARAMETER, 'EXTRACT has sense only for REGEXP search')
    ignore_case = is_enabled(ctx.expand(ctx.get_param('IGNORE_CASE') or 'NO'))

    if mode == 'REGEXP':
        check = search_regexp('', pattern)
        if check.error:
            return CommandResult.fail(ErrorCode.INVALID_PARAMETER, check.error)

    async def _attempt() -> BridgeResponse:
        page = await _page_source(ctx)
        if not page.success:
            return page
        content = str((page.data or {}).get('source', ''))
        if mode == 'TXT':
            found = search_text(content, pattern, ignore_case)
        else:
            found = search_regexp(content, pattern, ignore_case, extract_pattern)
        if not found.found:
            return BridgeResponse.fail(f'Pattern not found: {pattern}')
        return BridgeResponse.ok({'match': found.match})

    ctx.log('debug', f'SEARCH: type={mode}, pattern={pattern}, ignoreCase={ignore_case}')
    result, response = await retry_until(
        _attempt,
        ctx,
        failure_code=ErrorCode.ELEMENT_NOT_FOUND,
        description=f'search {mode}:{pattern}',
    )
    if not result.success:
        return result
    match = str((response.data or {}).get('match') or '')
    ctx.add_extract(match)
    return CommandResult.ok(match)


EXTRACTION_HANDLERS: Dict[str, Handler] = {
    'SEARCH': search_handler,
}
