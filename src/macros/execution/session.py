"""Macro execution session management.

This module provides the MacroRunner class that runs macros in a background
task with lifecycle management: start, wait with timeout, cooperative stop
and forced cancellation. The scripting server, the HTTP API and the CLI all
drive macros through a MacroRunner.
"""
from __future__ import annotations

import asyncio
import logging
from asyncio import Event, Queue
from typing import Any, Callable, Mapping, Optional

from bridges.base import Bridges

from ..registry import CommandRegistry
from ..results import ErrorCode, MacroResult
from .executor import MacroExecutor

logger = logging.getLogger(__name__)


class MacroRunner:
    """Orchestrates macro runs with lifecycle management.

    Each run gets a fresh MacroExecutor (and so a fresh variable store);
    only the bridges are shared between runs.

    This class manages:
    - Starting a run as a background asyncio task
    - Waiting for completion with an optional timeout
    - Cooperative stop through the executor's stop event
    - Forced cancellation of a run that does not react
    """

    def __init__(
        self,
        bridges: Optional[Bridges] = None,
        registry_factory: Optional[Callable[[], CommandRegistry]] = None,
    ):
        """Initialize the macro runner.

        Args:
            bridges: Bridges handed to every executor.
            registry_factory: Optional callable returning a handler registry
                per run. Defaults to the built-in handler set.
        """
        self.bridges = bridges if bridges is not None else Bridges()
        self._registry_factory = registry_factory
        self._task: Optional[asyncio.Task] = None
        self._executor: Optional[MacroExecutor] = None
        self._stop_event = Event()
        self.log_queue: Optional[Queue] = None
        self.last_result: Optional[MacroResult] = None

    def logs(self) -> Queue:
        """Get the log queue shared by all runs of this runner.

        Returns:
            Queue instance receiving per-command log lines.
        """
        if self.log_queue is None:
            self.log_queue = Queue(maxsize=1000)
        return self.log_queue

    def is_running(self) -> bool:
        """Check if a macro run is currently in progress."""
        return self._task is not None and not self._task.done()

    @property
    def executor(self) -> Optional[MacroExecutor]:
        return self._executor

    async def start(
        self,
        source: str,
        *,
        loop_start: int = 1,
        loop_end: int = 1,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Start a run in the background.

        Args:
            source: Macro text to run.
            loop_start: First ``!LOOP`` value.
            loop_end: Last ``!LOOP`` value.
            variables: Variables to preset before the run.

        Raises:
            RuntimeError: If a run is already in progress.
        """
        if self.is_running():
            raise RuntimeError('A macro is already running')

        self._stop_event = Event()
        registry = self._registry_factory() if self._registry_factory else None
        executor = MacroExecutor(
            registry,
            self.bridges,
            log_queue=self.log_queue,
            stop_event=self._stop_event,
        )
        for name, value in (variables or {}).items():
            executor.variables.set_system(name, value)
        executor.load_macro(source)
        self._executor = executor

        logger.info('=== starting macro ===')
        self._task = asyncio.create_task(self._execute(executor, loop_start, loop_end))

    async def wait(self, timeout: Optional[float] = None) -> MacroResult:
        """Wait for the current run to finish.

        Args:
            timeout: Seconds to wait, or None to wait forever.

        Returns:
            The run's MacroResult.

        Raises:
            RuntimeError: If no run was started.
            asyncio.TimeoutError: If the run did not finish in time. The run
                keeps going; call stop() to end it.
        """
        if self._task is None:
            raise RuntimeError('No macro has been started')
        return await asyncio.wait_for(asyncio.shield(self._task), timeout)

    async def run_once(
        self,
        source: str,
        *,
        loop_start: int = 1,
        loop_end: int = 1,
        variables: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> MacroResult:
        """Run a macro to completion.

        On timeout the run is stopped before asyncio.TimeoutError is
        re-raised, so no run is left behind.
        """
        await self.start(source, loop_start=loop_start, loop_end=loop_end, variables=variables)
        try:
            return await self.wait(timeout)
        except asyncio.TimeoutError:
            logger.warning(f'Macro did not finish within {timeout}s, stopping')
            await self.stop()
            raise

    async def stop(self, grace: float = 5.0) -> Optional[MacroResult]:
        """Stop the current run gracefully.

        Signals the stop event and waits up to ``grace`` seconds for the
        executor to notice, then cancels the task.

        Returns:
            The stopped run's result, or None if it had to be cancelled.
        """
        if not self.is_running():
            return self.last_result

        logger.info('=== stopping macro ===')
        self._stop_event.set()
        try:
            return await asyncio.wait_for(asyncio.shield(self._task), grace)
        except asyncio.TimeoutError:
            await self.force_stop()
            return None

    async def force_stop(self) -> None:
        """Cancel the run task without waiting for a cooperative stop."""
        if not self.is_running():
            return

        logger.info('=== force stop requested ===')
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self.last_result = MacroResult(False, ErrorCode.USER_ABORT, 'Macro cancelled')

    async def _execute(self, executor: MacroExecutor, loop_start: int, loop_end: int) -> MacroResult:
        try:
            result = await executor.execute(loop_start, loop_end)
        except Exception as e:
            logger.exception('Macro run crashed')
            result = MacroResult(False, ErrorCode.SCRIPT_ERROR, str(e))
        self.last_result = result
        logger.info('=== macro run completed ===')
        return result
