"""macros package exposing the parser, variable store and executor."""

from .parser import Command, Parameter, parse, validate
from .results import CommandResult, ErrorCode, MacroResult
from .variables import VariableStore
from .registry import CommandRegistry, ExecutionContext
from .execution import MacroExecutor, MacroRunner, run_macro

__all__ = [
    'Command',
    'Parameter',
    'parse',
    'validate',
    'CommandResult',
    'ErrorCode',
    'MacroResult',
    'VariableStore',
    'CommandRegistry',
    'ExecutionContext',
    'MacroExecutor',
    'MacroRunner',
    'run_macro',
]
