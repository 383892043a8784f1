"""Tests for bounded polling of FRAME, CLICK, SEARCH and URL GOTO."""
import asyncio

import pytest

from bridges.base import BridgeResponse
from macros.parser import parse_line
from macros.registry import ExecutionContext
from macros.results import ErrorCode
from macros.retry import read_seconds, retry_until
from macros.variables import VariableStore

from conftest import RecordingBridge

NOT_YET = BridgeResponse.fail('frame not ready')


@pytest.mark.asyncio
async def test_frame_succeeds_after_two_failures(make_executor, bridges, clock):
    bridges.browser = RecordingBridge([NOT_YET, NOT_YET])
    executor = make_executor('SET !TIMEOUT_STEP 2\nFRAME F=1')

    result = await executor.execute()

    assert result.success
    assert len(bridges.browser.of_type('selectFrame')) >= 3
    assert clock.now == pytest.approx(4.0)


@pytest.mark.asyncio
async def test_frame_times_out_and_returns_to_main_frame(make_executor, bridges, clock):
    bridges.browser = RecordingBridge(default=NOT_YET)
    executor = make_executor('SET !TIMEOUT 1\nFRAME F=2')

    result = await executor.execute()

    assert result.error_code == ErrorCode.FRAME_NOT_FOUND
    assert result.error_message == 'frame not ready'
    frames = bridges.browser.of_type('selectFrame')
    assert len(frames) > 2
    assert frames[-1]['frameIndex'] == 0
    assert clock.now <= 1.0 + 1e-6


@pytest.mark.asyncio
async def test_click_times_out_with_element_not_found(make_executor, bridges):
    bridges.content = RecordingBridge(default=BridgeResponse.fail('no element at point'))
    executor = make_executor('SET !TIMEOUT 0.5\nCLICK X=1 Y=2')

    result = await executor.execute()

    assert result.error_code == ErrorCode.ELEMENT_NOT_FOUND


@pytest.mark.asyncio
async def test_url_goto_uses_page_timeout(make_executor, bridges, clock):
    bridges.browser = RecordingBridge(default=BridgeResponse.fail('net::ERR_CONNECTION_REFUSED'))
    executor = make_executor('SET !TIMEOUT_PAGE 3.5\nSET !TIMEOUT_STEP 1\nURL GOTO=https://example.com')

    result = await executor.execute()

    assert result.error_code == ErrorCode.PAGE_TIMEOUT
    assert len(bridges.browser.of_type('navigate')) == 4
    assert clock.now == pytest.approx(3.0)


def _context(clock, stop_event=None, **variables):
    store = VariableStore()
    for name, value in variables.items():
        store.set(name, value)
    return ExecutionContext(
        parse_line('FRAME F=1', 1), store,
        stop_event=stop_event, sleep=clock.sleep, clock=clock,
    )


@pytest.mark.asyncio
async def test_retry_until_stops_on_stop_request(clock):
    stop = asyncio.Event()
    ctx = _context(clock, stop)
    attempts = []

    async def attempt():
        attempts.append(1)
        stop.set()
        return NOT_YET

    result, last = await retry_until(attempt, ctx, failure_code=ErrorCode.TIMEOUT)

    assert result.error_code == ErrorCode.USER_ABORT
    assert attempts == [1]
    assert last is NOT_YET


@pytest.mark.asyncio
async def test_retry_until_always_attempts_once_with_zero_budget(clock):
    ctx = _context(clock, **{'!TIMEOUT': 0})
    attempts = []

    async def attempt():
        attempts.append(1)
        return NOT_YET

    result, _ = await retry_until(attempt, ctx, failure_code=ErrorCode.TIMEOUT)

    assert result.error_code == ErrorCode.TIMEOUT
    assert attempts == [1]


def test_read_seconds_falls_back_on_bad_values(clock):
    ctx = _context(clock, **{'!TIMEOUT': 'soon'})

    assert read_seconds(ctx, '!TIMEOUT', 60.0) == 60.0
    assert read_seconds(ctx, '!TIMEOUT_STEP', 0.2) == 0.2
