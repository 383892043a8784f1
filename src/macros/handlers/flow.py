"""Variable and flow commands: SET, ADD, WAIT, PAUSE, PROMPT, CLEAR,
VERSION and EXTRACT.

GOTO, IF and bare labels change the program counter and are therefore
handled by the executor itself, not here.
"""
from __future__ import annotations

import ast
import math
import operator
from typing import Dict

from ..registry import ExecutionContext, Handler
from ..results import CommandResult, ErrorCode
from ..variables import is_numeric, stringify, to_number
from .files import load_datasource

VERSION = '0.1.0'

TIMEOUT_VARIABLES = ('!TIMEOUT', '!TIMEOUT_PAGE', '!TIMEOUT_STEP')

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}


def evaluate_arithmetic(expression: str) -> float:
    """Evaluate a basic arithmetic expression such as ``(2+3)*4``.

    Only numbers, parentheses and + - * / % are accepted. Operands are
    floats, so every step is bounded and an infinite result is an error.

    Raises:
        ValueError: If the expression uses anything else or cannot be computed.
    """
    try:
        tree = ast.parse(expression.strip(), mode='eval')
    except SyntaxError as e:
        raise ValueError(f'Invalid expression: {expression}') from e

    def _eval(node: ast.AST) -> float:
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) \
                and not isinstance(node.value, bool):
            return float(node.value)
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
            return _BINARY_OPS[type(node.op)](_eval(node.left), _eval(node.right))
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
            return _UNARY_OPS[type(node.op)](_eval(node.operand))
        raise ValueError(f'Unsupported expression: {expression}')

    try:
        result = _eval(tree)
    except (ZeroDivisionError, OverflowError) as e:
        raise ValueError(f'Cannot evaluate {expression}: {e}') from e
    if not math.isfinite(result):
        raise ValueError(f'Cannot evaluate {expression}: result is not finite')
    return result


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return stringify(value)


async def set_handler(ctx: ExecutionContext) -> CommandResult:
    """SET <variable> <value>

    The value may be ``EVAL("expression")`` for arithmetic, and ``NULL``
    clears a variable. ``!LOOP`` may only be set during the first pass.
    ``!DATASOURCE`` loads a CSV file whose columns are read as ``{{!COLn}}``
    from row ``!DATASOURCE_LINE``.
    """
    name = ctx.positional(0)
    raw_value = ctx.positional(1)
    if not name or raw_value is None:
        return CommandResult.fail(
            ErrorCode.MISSING_PARAMETER, 'SET command requires a variable name and a value'
        )
    name = name.strip()
    key = name.upper()
    if raw_value.upper().startswith('EVAL('):
        # Spaces inside EVAL(...) split it into several tokens.
        raw_value = ' '.join(p.text for p in ctx.parameters[1:])
    value = ctx.expand(raw_value)

    if value.upper().startswith('EVAL(') and value.endswith(')'):
        inner = value[5:-1].strip()
        if len(inner) >= 2 and inner[0] == inner[-1] and inner[0] in '"\'':
            inner = inner[1:-1]
        try:
            value = _format_number(evaluate_arithmetic(inner))
        except ValueError as e:
            return CommandResult.fail(ErrorCode.SCRIPT_ERROR, str(e))

    if key == '!EXTRACT':
        if value.upper() == 'NULL':
            ctx.variables.clear_extract()
        else:
            ctx.add_extract(value)
        return CommandResult.ok()

    if value.upper() == 'NULL':
        value = ''

    if key == '!DATASOURCE':
        return await load_datasource(ctx, value)

    if key == '!DATASOURCE_LINE':
        number = to_number(value)
        if math.isnan(number) or not number.is_integer() or number < 1:
            return CommandResult.fail(
                ErrorCode.INVALID_PARAMETER, f'!DATASOURCE_LINE must be a positive integer, got {value!r}'
            )
        lines = ctx.variables.datasource_line_count()
        if lines and number > lines:
            return CommandResult.fail(
                ErrorCode.INVALID_PARAMETER, f'!DATASOURCE_LINE {int(number)} is past the last line ({lines})'
            )
        ctx.set_variable('!DATASOURCE_LINE', int(number))
        return CommandResult.ok()

    if key == '!LOOP':
        if not ctx.first_pass:
            ctx.log('debug', 'SET !LOOP ignored after the first loop pass')
            return CommandResult.ok()
        number = to_number(value)
        if math.isnan(number) or not number.is_integer() or number < 1:
            return CommandResult.fail(
                ErrorCode.INVALID_PARAMETER, f'!LOOP must be a positive integer, got {value!r}'
            )
        ctx.set_variable('!LOOP', int(number))
        return CommandResult.ok()

    if key in TIMEOUT_VARIABLES:
        number = to_number(value)
        if math.isnan(number) or number < 0:
            return CommandResult.fail(
                ErrorCode.INVALID_PARAMETER, f'{key} must be a non-negative number, got {value!r}'
            )

    result = ctx.variables.set(name, value)
    if not result.success:
        return CommandResult.fail(ErrorCode.INVALID_PARAMETER, result.error or f'Cannot set {name}')
    ctx.log('debug', f'SET {name} = {value!r}')
    return CommandResult.ok()


async def add_handler(ctx: ExecutionContext) -> CommandResult:
    """ADD <variable> <value>: numeric addition, or concatenation for text."""
    name = ctx.positional(0)
    raw_value = ctx.positional(1)
    if not name or raw_value is None:
        return CommandResult.fail(
            ErrorCode.MISSING_PARAMETER, 'ADD command requires a variable name and a value'
        )
    if name.strip().upper() == '!EXTRACT':
        ctx.add_extract(ctx.expand(raw_value))
        return CommandResult.ok()

    current = stringify(ctx.get_variable(name))
    addend = ctx.expand(raw_value)
    if (current == '' or is_numeric(current)) and is_numeric(addend):
        new_value = _format_number(to_number(current) + to_number(addend))
    else:
        new_value = current + addend

    result = ctx.variables.set(name, new_value)
    if not result.success:
        return CommandResult.fail(ErrorCode.INVALID_PARAMETER, result.error or f'Cannot set {name}')
    return CommandResult.ok()


async def wait_handler(ctx: ExecutionContext) -> CommandResult:
    """WAIT SECONDS=<n>, interrupted early by a stop request."""
    raw = ctx.get_required_param('SECONDS')
    seconds = to_number(ctx.expand(raw))
    if math.isnan(seconds) or seconds < 0:
        return CommandResult.fail(
            ErrorCode.INVALID_PARAMETER, f'WAIT SECONDS must be a non-negative number, got {raw!r}'
        )
    ctx.log('info', f'WAIT {seconds}s')
    if not await ctx.sleep(seconds):
        return CommandResult.fail(ErrorCode.USER_ABORT, 'Macro stopped by user')
    return CommandResult.ok()


async def pause_handler(ctx: ExecutionContext) -> CommandResult:
    ctx.log('info', 'PAUSE: no interactive session, continuing')
    return CommandResult.ok()


async def prompt_handler(ctx: ExecutionContext) -> CommandResult:
    """PROMPT <message> [variable] [default]

    Runs headless: the default answer is stored without asking.
    """
    message = ctx.positional(0)
    if message is None:
        return CommandResult.fail(ErrorCode.MISSING_PARAMETER, 'PROMPT command requires a message')
    ctx.log('info', f'PROMPT: {ctx.expand(message)}')
    name = ctx.positional(1)
    if name:
        answer = ctx.expand(ctx.positional(2) or '')
        result = ctx.variables.set(name, answer)
        if not result.success:
            return CommandResult.fail(ErrorCode.INVALID_PARAMETER, result.error or f'Cannot set {name}')
        return CommandResult.ok(answer)
    return CommandResult.ok()


async def clear_handler(ctx: ExecutionContext) -> CommandResult:
    ctx.log('debug', 'CLEAR: nothing to clear without a browser cache bridge')
    return CommandResult.ok()


async def version_handler(ctx: ExecutionContext) -> CommandResult:
    build = ctx.get_param('BUILD')
    version = ctx.expand(build) if build else VERSION
    ctx.set_variable('!VERSION', version)
    return CommandResult.ok(version)


async def extract_handler(ctx: ExecutionContext) -> CommandResult:
    """EXTRACT <value>: append a literal (expanded) value to !EXTRACT."""
    value = ctx.positional(0)
    if value is None:
        return CommandResult.fail(
            ErrorCode.MISSING_PARAMETER, 'EXTRACT command requires data or parameters'
        )
    expanded = ctx.expand(value)
    ctx.add_extract(expanded)
    return CommandResult.ok(expanded)


FLOW_HANDLERS: Dict[str, Handler] = {
    'SET': set_handler,
    'ADD': add_handler,
    'WAIT': wait_handler,
    'PAUSE': pause_handler,
    'PROMPT': prompt_handler,
    'CLEAR': clear_handler,
    'VERSION': version_handler,
    'EXTRACT': extract_handler,
}
