"""Condition evaluation for ``IF <condition> THEN GOTO <label>``."""
from __future__ import annotations

import math
from typing import Optional, Tuple

from .variables import VariableStore, is_numeric, stringify, to_number

# Order matters: two-character operators must be tried before < and >.
OPERATORS = ('==', '!=', '<=', '>=', '<', '>', 'CONTAINS', '!CONTAINS')
_WORD_OPERATORS = ('CONTAINS', '!CONTAINS')

FALSY = ('', '0', 'false')


def evaluate_condition(expression: str, variables: VariableStore) -> bool:
    """Evaluate a condition against the current variables.

    Supports ``LEFT OP RIGHT`` with OP one of ==, !=, <=, >=, <, >,
    CONTAINS and !CONTAINS. Operands may be quoted literals, ``{{VAR}}``
    references, bare variable names or numbers. An expression without an
    operator is a truthiness test where "", "0" and "false" are false.

    Args:
        expression: Condition text, e.g. ``{{!LOOP}} >= 3``.
        variables: Store used to resolve variable operands.

    Returns:
        Result of the comparison.
    """
    split = _split(expression)
    if split is None:
        value = _resolve(expression, variables)
        return value.strip().lower() not in FALSY

    left_text, op, right_text = split
    left = _resolve(left_text, variables)
    right = _resolve(right_text, variables)

    if op in ('==', '!='):
        if is_numeric(left) and is_numeric(right):
            equal = to_number(left) == to_number(right)
        else:
            equal = left == right
        return equal if op == '==' else not equal
    if op == 'CONTAINS':
        return right in left
    if op == '!CONTAINS':
        return right not in left

    a, b = to_number(left), to_number(right)
    if math.isnan(a) or math.isnan(b):
        return False
    if op == '<=':
        return a <= b
    if op == '>=':
        return a >= b
    if op == '<':
        return a < b
    return a > b


def _split(expression: str) -> Optional[Tuple[str, str, str]]:
    for op in OPERATORS:
        index = _find_operator(expression, op)
        if index >= 0:
            return expression[:index], op, expression[index + len(op):]
    return None


def _find_operator(expression: str, op: str) -> int:
    """Find op outside quotes and ``{{...}}`` spans, -1 if absent."""
    quote = None
    depth = 0
    upper = expression.upper()
    i = 0
    while i < len(expression):
        ch = expression[i]
        if quote:
            if ch == quote:
                quote = None
        elif ch in '"\'':
            quote = ch
        elif expression.startswith('{{', i):
            depth += 1
            i += 2
            continue
        elif expression.startswith('}}', i) and depth:
            depth -= 1
            i += 2
            continue
        elif depth == 0 and upper.startswith(op, i):
            if op not in _WORD_OPERATORS:
                return i
            before = expression[i - 1] if i > 0 else ' '
            end = i + len(op)
            after = expression[end] if end < len(expression) else ' '
            if before.isspace() and after.isspace():
                return i
        i += 1
    return -1


def _resolve(operand: str, variables: VariableStore) -> str:
    text = operand.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in '"\'':
        return variables.expand(text[1:-1])[0]
    if '{{' in text:
        return variables.expand(text)[0]
    if is_numeric(text):
        return text
    if text and variables.has(text):
        value = variables.get(text)
        if value is not None:
            return stringify(value)
    return text
