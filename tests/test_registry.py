"""Tests for the command registry and handler dispatch."""
import pytest

from macros.execution import MacroExecutor
from macros.handlers import register_all_handlers, register_navigation_handlers
from macros.parser import parse_line
from macros.registry import BuiltinCommand, CommandRegistry, ExecutionContext
from macros.results import CommandResult, ErrorCode
from macros.variables import VariableStore

# Handled by the executor itself rather than by registered handlers
CONTROL_FLOW = {BuiltinCommand.LABEL, BuiltinCommand.GOTO, BuiltinCommand.IF}


def _context(line):
    return ExecutionContext(parse_line(line, 1), VariableStore())


def test_every_builtin_command_has_a_handler():
    registry = register_all_handlers(CommandRegistry())

    for command in BuiltinCommand:
        assert registry.has(command) == (command not in CONTROL_FLOW), command


def test_partial_registration():
    registry = CommandRegistry()
    register_navigation_handlers(registry)

    assert registry.types() == ['BACK', 'FRAME', 'REFRESH', 'TAB', 'URL']


@pytest.mark.asyncio
async def test_unregister_makes_command_unknown():
    registry = register_all_handlers(CommandRegistry())
    registry.unregister(BuiltinCommand.WAIT)

    result = await registry.dispatch(_context('WAIT SECONDS=1'))

    assert result.error_code == ErrorCode.UNKNOWN_COMMAND
    assert result.error_message == 'Unknown command: WAIT'


@pytest.mark.asyncio
async def test_missing_parameter_is_reported_by_dispatch():
    registry = register_all_handlers(CommandRegistry())

    result = await registry.dispatch(_context('WAIT'))

    assert result.error_code == ErrorCode.MISSING_PARAMETER
    assert result.error_message == 'WAIT command requires SECONDS parameter'


@pytest.mark.asyncio
async def test_register_handler_overrides_builtin():
    async def fake_click(ctx: ExecutionContext) -> CommandResult:
        return CommandResult.ok(ctx.get_param('X'))

    executor = MacroExecutor()
    executor.register_handler('click', fake_click)
    executor.load_macro('CLICK X=5 Y=6')

    result = await executor.execute()

    assert result.success
    assert executor.registry.get('CLICK') is fake_click
