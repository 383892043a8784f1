"""Bridges backed by the local machine.

LocalFileBridge keeps every path inside one sandbox directory,
SubprocessCmdlineExecutor runs EXEC commands through the shell and
NullBrowserBridge stands in for a browser in headless runs.
"""
from __future__ import annotations

import asyncio
import logging
import pathlib
from typing import Any, Dict, Optional

from .base import BridgeResponse, BrowserBridge, CmdlineExecutor, CmdlineResult, FileBridge

logger = logging.getLogger(__name__)


class LocalFileBridge(FileBridge):
    """File operations confined to a root directory.

    Args:
        root: Sandbox directory. Relative message paths are resolved against
            it; anything resolving outside of it is refused.
    """

    def __init__(self, root: str | pathlib.Path):
        self.root = pathlib.Path(root).resolve()

    def resolve(self, path: str) -> Optional[pathlib.Path]:
        """Return the absolute path inside the sandbox, or None if it escapes."""
        candidate = (self.root / path).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            return None
        return candidate

    async def send_message(self, message: Dict[str, Any]) -> BridgeResponse:
        op = message.get('type')
        path = message.get('path')
        if not path:
            return BridgeResponse.fail(f'{op}: path is required')
        target = self.resolve(path)
        if target is None:
            logger.warning(f'Refused {op} outside sandbox: {path}')
            return BridgeResponse.fail(f'Access denied: {path}')

        try:
            if op == 'fileDelete':
                target.unlink()
                logger.info(f'Deleted {target}')
                return BridgeResponse.ok()
            if op == 'fileRead':
                return BridgeResponse.ok({'content': target.read_text(encoding='utf-8')})
            if op == 'fileWrite':
                target.parent.mkdir(parents=True, exist_ok=True)
                mode = 'a' if message.get('append') else 'w'
                with target.open(mode, encoding='utf-8', newline='') as f:
                    f.write(message.get('content', ''))
                logger.debug(f'Wrote {target} (mode={mode})')
                return BridgeResponse.ok({'path': str(target)})
        except FileNotFoundError:
            return BridgeResponse.fail(f'File not found: {path}')
        except PermissionError:
            return BridgeResponse.fail(f'Access denied: {path}')
        except OSError as e:
            return BridgeResponse.fail(e.strerror or str(e))
        return BridgeResponse.fail(f'Unsupported file operation: {op}')


class SubprocessCmdlineExecutor(CmdlineExecutor):
    """Runs commands with asyncio.create_subprocess_shell."""

    async def execute(self, command: str, timeout: float = 30.0, wait: bool = True) -> CmdlineResult:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE if wait else asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE if wait else asyncio.subprocess.DEVNULL,
        )
        if not wait:
            logger.info(f'Started detached process {process.pid}: {command}')
            return CmdlineResult(0)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f'Command timed out after {timeout}s: {command}')
            return CmdlineResult(-1, '', f'Command timed out after {timeout}s')

        return CmdlineResult(
            process.returncode if process.returncode is not None else -1,
            stdout.decode('utf-8', errors='replace').rstrip('\r\n'),
            stderr.decode('utf-8', errors='replace').rstrip('\r\n'),
        )


class NullBrowserBridge(BrowserBridge):
    """Browser stand-in that fails every operation."""

    async def send_message(self, message: Dict[str, Any]) -> BridgeResponse:
        return BridgeResponse.fail(f"No browser attached ({message.get('type')})")
