"""Bridge factory with graceful fallback.

Builds the Bridges container for a run from a RuntimeConfig. File access is
always sandboxed to the macros directory and EXEC always uses a local
subprocess executor. The browser side is a NativeBrowserBridge when a
native host address is configured and reachable, otherwise the headless
NullBrowserBridge.

Example:
    Headless bridges::

        bridges = await create_bridges(RuntimeConfig())

    Require a browser::

        bridges = await create_bridges(config, require_browser=True)
"""
from __future__ import annotations

import logging
import pathlib

from config import RuntimeConfig

from .base import Bridges
from .local import LocalFileBridge, NullBrowserBridge, SubprocessCmdlineExecutor

logger = logging.getLogger(__name__)


async def create_bridges(config: RuntimeConfig, require_browser: bool = False) -> Bridges:
    """Create the bridges described by a config.

    Args:
        config: Runtime configuration; ``macros_dir`` becomes the file
            sandbox and ``native_host`` selects the browser connection.
        require_browser: Raise instead of falling back to the headless
            browser when the native host cannot be reached.

    Returns:
        A Bridges container ready to hand to MacroExecutor.

    Raises:
        RuntimeError: If require_browser is set and no browser is available.
    """
    macros_dir = pathlib.Path(config.macros_dir)
    macros_dir.mkdir(parents=True, exist_ok=True)
    bridges = Bridges(
        files=LocalFileBridge(macros_dir),
        cmdline=SubprocessCmdlineExecutor(),
    )

    if config.native_host:
        try:
            logger.info(f'Attempting to connect to native host at {config.native_host}...')
            from .native import NativeBrowserBridge
            browser = await NativeBrowserBridge.connect(config.native_host)
            bridges.browser = browser
            bridges.content = browser
            logger.info('✓ Connected to browser through native host')
            return bridges
        except (OSError, ValueError) as e:
            logger.warning(f'Native host connection failed: {e}')
            if require_browser:
                raise RuntimeError(
                    f'Could not connect to native host {config.native_host}!\n'
                    'Troubleshooting:\n'
                    '1. Make sure the browser extension is installed and running\n'
                    '2. Check IIM_NATIVE_HOST points at the relay host:port'
                ) from e
    elif require_browser:
        raise RuntimeError('No native host configured; set IIM_NATIVE_HOST or --native-host')

    logger.info('Running headless: browser commands will fail with "no browser attached"')
    bridges.browser = NullBrowserBridge()
    return bridges


async def close_bridges(bridges: Bridges) -> None:
    """Close any bridge that holds a connection."""
    close = getattr(bridges.browser, 'close', None)
    if close is not None:
        await close()
