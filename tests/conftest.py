"""Shared fixtures: recording bridges and a fake clock for retry tests."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from bridges.base import (
    BridgeResponse,
    Bridges,
    BrowserBridge,
    CmdlineExecutor,
    CmdlineResult,
    ContentScriptSender,
    FileBridge,
)
from macros.execution import MacroExecutor


class RecordingBridge(BrowserBridge, ContentScriptSender, FileBridge):
    """Records every message and replays scripted responses.

    Responses are consumed in order; once they run out ``default`` is
    returned for every further call.
    """

    def __init__(self, responses: Optional[List[BridgeResponse]] = None,
                 default: Optional[BridgeResponse] = None):
        self.messages: List[Dict[str, Any]] = []
        self._responses = list(responses or [])
        self.default = default or BridgeResponse.ok()

    async def send_message(self, message: Dict[str, Any]) -> BridgeResponse:
        self.messages.append(message)
        if self._responses:
            return self._responses.pop(0)
        return self.default

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m['type'] == message_type]


class RecordingCmdline(CmdlineExecutor):
    def __init__(self, result: Optional[CmdlineResult] = None):
        self.calls: List[Dict[str, Any]] = []
        self.result = result or CmdlineResult(0, 'ok', '')

    async def execute(self, command: str, timeout: float = 30.0, wait: bool = True) -> CmdlineResult:
        self.calls.append({'command': command, 'timeout': timeout, 'wait': wait})
        return self.result


class FakeClock:
    """Monotonic clock that only moves when sleep() is awaited."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def browser() -> RecordingBridge:
    return RecordingBridge()


@pytest.fixture
def content() -> RecordingBridge:
    return RecordingBridge()


@pytest.fixture
def files() -> RecordingBridge:
    return RecordingBridge()


@pytest.fixture
def cmdline() -> RecordingCmdline:
    return RecordingCmdline()


@pytest.fixture
def bridges(browser, content, files, cmdline) -> Bridges:
    return Bridges(browser=browser, content=content, files=files, cmdline=cmdline)


@pytest.fixture
def make_executor(bridges, clock):
    """Build an executor with the recording bridges and the fake clock."""

    def _make(source: str, **kwargs) -> MacroExecutor:
        kwargs.setdefault('sleep', clock.sleep)
        kwargs.setdefault('clock', clock)
        executor = MacroExecutor(kwargs.pop('registry', None), kwargs.pop('bridges', bridges), **kwargs)
        executor.load_macro(source)
        return executor

    return _make
