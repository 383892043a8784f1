"""Macro execution package.

This package separates the control-flow state machine that runs one macro
from the session management that runs macros in the background.

Components:
- executor: MacroExecutor, the GOTO/IF/loop state machine and error policy
- session: MacroRunner for background runs with stop and timeout

Public API:
- MacroExecutor: Run a loaded macro against injected bridges
- MacroRunner: Background execution sessions
- run_macro: Parse and run macro text in one call
"""
from __future__ import annotations

from .executor import ExecState, MacroExecutor, run_macro
from .session import MacroRunner

__all__ = [
    'ExecState',
    'MacroExecutor',
    'MacroRunner',
    'run_macro',
]
