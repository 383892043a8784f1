"""Variable storage and ``{{NAME}}`` interpolation for macro runs.

A VariableStore belongs to exactly one executor and lives for that
executor's lifetime. Names are case-insensitive for lookup but the case
used on the first write is kept for display. Built-in variables start
with ``!`` and are seeded with defaults on construction and on reset().

``!EXTRACT`` is special: it cannot be assigned with set(). Values are
appended with add_extract() and read back joined by ``[EXTRACT]``.

``!COL1``, ``!COL2`` and so on are read-only views of the loaded CSV
datasource at row ``!DATASOURCE_LINE`` (1-based); they are empty while
no datasource is loaded or the line is out of range.

Example:
    Setting and expanding::

        store = VariableStore()
        store.set('!VAR1', 'x')
        store.expand('value={{!var1}}')     # ('value=x', {'!var1'})
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

Value = Union[str, int, float, bool]

EXTRACT_DELIMITER = '[EXTRACT]'

DEFAULT_VARIABLES: Dict[str, Value] = {
    '!LOOP': 1,
    '!URLCURRENT': '',
    '!TIMEOUT': 60,
    '!TIMEOUT_PAGE': 60,
    '!TIMEOUT_STEP': 0.2,
    '!ERRORIGNORE': 'NO',
    '!ERRORLOOP': 'NO',
    '!FOLDER_MACROS': '',
    '!FOLDER_DATASOURCE': '',
    '!DATASOURCE': '',
    '!DATASOURCE_LINE': 1,
    '!DATASOURCE_COLUMNS': 0,
    '!CLIPBOARD': '',
    '!STOPWATCHTIME': '',
    **{f'!VAR{i}': '' for i in range(10)},
}

READ_ONLY = frozenset({'!NOW', '!URLCURRENT', '!DATASOURCE_COLUMNS'})

_REFERENCE_RE = re.compile(r"\{\{([^{}]*)\}\}")
_NOW_TOKEN_RE = re.compile(r"yyyy|yy|mm|dd|hh|nn|ss|dow|doy")
_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_COLUMN_RE = re.compile(r"^!COL([1-9][0-9]*)$")


@dataclass(frozen=True)
class SetResult:
    """Outcome of VariableStore.set().

    Attributes:
        previous_value: Value held before the call (None if unset).
        success: False when the write was refused.
        error: Reason a write was refused.
    """

    previous_value: Optional[Value]
    success: bool = True
    error: Optional[str] = None


def to_number(value: Any) -> float:
    """Convert a value the way JavaScript's Number() does.

    Empty and whitespace-only strings are 0, booleans are 0/1, and anything
    that is not a plain decimal or hex literal is NaN.
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return 0.0
    text = str(value).strip()
    if not text:
        return 0.0
    if text.lower().startswith('0x'):
        try:
            return float(int(text, 16))
        except ValueError:
            return math.nan
    if text in ('Infinity', '+Infinity'):
        return math.inf
    if text == '-Infinity':
        return -math.inf
    if _NUMBER_RE.match(text):
        return float(text)
    return math.nan


def is_numeric(value: Any) -> bool:
    if isinstance(value, str) and not value.strip():
        return False
    return not math.isnan(to_number(value))


def stringify(value: Any) -> str:
    """Render a stored value as text for interpolation."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def is_enabled(value: Any) -> bool:
    """Return True for YES-style switch values such as ``!ERRORIGNORE``."""
    if isinstance(value, bool):
        return value
    return stringify(value).strip().upper() in ('YES', 'TRUE', 'ON', '1')


class VariableStore:
    """Case-insensitive variable storage with built-in defaults.

    Args:
        now: Optional callable returning the current datetime, used by
            ``!NOW``. Defaults to datetime.now.
    """

    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        self._now = now or datetime.now
        self._values: Dict[str, Tuple[str, Value]] = {}
        self._extract: List[str] = []
        self._rows: List[List[str]] = []
        self.reset()

    def reset(self) -> None:
        """Drop all user variables and restore built-in defaults."""
        self._values.clear()
        self._extract.clear()
        self._rows = []
        for name, value in DEFAULT_VARIABLES.items():
            self._values[name] = (name, value)

    def get(self, name: str) -> Optional[Value]:
        """Look up a variable by name, ignoring case.

        Args:
            name: Variable name, e.g. ``!VAR1``, ``!NOW:yyyy`` or ``price``.

        Returns:
            The stored value, or None if the variable was never set.
        """
        key = name.strip().upper()
        if key == '!NOW' or key.startswith('!NOW:'):
            return self._format_now(name.strip()[5:] or 'yyyymmdd_hhnnss')
        if key == '!EXTRACT':
            return EXTRACT_DELIMITER.join(self._extract)
        column = _COLUMN_RE.match(key)
        if column:
            return self._column(int(column.group(1)))
        entry = self._values.get(key)
        return entry[1] if entry is not None else None

    def set(self, name: str, value: Value) -> SetResult:
        """Assign a variable and return the value it replaced.

        Writes to ``!EXTRACT`` and to read-only built-ins are refused; the
        result then carries success=False and the untouched current value.
        """
        key = name.strip().upper()
        if key in READ_ONLY or key.startswith('!NOW:') or _COLUMN_RE.match(key):
            return SetResult(self.get(name), False, f'Variable {name} is read-only')
        return self.set_system(name, value)

    def set_system(self, name: str, value: Value) -> SetResult:
        """Assign a variable, bypassing the read-only check.

        Used by handlers that own a read-only built-in, such as URL updating
        ``!URLCURRENT``. ``!EXTRACT`` still only accepts add_extract().
        """
        stripped = name.strip()
        key = stripped.upper()
        if not key:
            return SetResult(None, False, 'Variable name must not be empty')
        if key == '!EXTRACT':
            return SetResult(self.get(key), False, 'Use add_extract() to append to !EXTRACT')
        previous = self._values.get(key)
        display = previous[0] if previous is not None else stripped
        self._values[key] = (display, value)
        return SetResult(previous[1] if previous is not None else None)

    def has(self, name: str) -> bool:
        key = name.strip().upper()
        if _COLUMN_RE.match(key):
            return True
        return key in self._values or key == '!EXTRACT' or key == '!NOW' or key.startswith('!NOW:')

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def add_extract(self, value: Any) -> None:
        """Append one value to the ``!EXTRACT`` accumulator."""
        self._extract.append(stringify(value))

    def extract_values(self) -> List[str]:
        return list(self._extract)

    def clear_extract(self) -> None:
        self._extract.clear()

    def load_datasource(self, path: str, rows: List[List[str]]) -> None:
        """Install parsed CSV rows read through ``{{!COLn}}``.

        ``!DATASOURCE_LINE`` goes back to 1 and ``!DATASOURCE_COLUMNS``
        holds the width of the widest row.
        """
        self._rows = [list(row) for row in rows]
        self.set_system('!DATASOURCE', path)
        self.set_system('!DATASOURCE_LINE', 1)
        self.set_system('!DATASOURCE_COLUMNS', max((len(row) for row in self._rows), default=0))

    def datasource_line_count(self) -> int:
        return len(self._rows)

    def _column(self, number: int) -> str:
        line = to_number(self.get('!DATASOURCE_LINE'))
        if math.isnan(line) or not line.is_integer() or not 1 <= line <= len(self._rows):
            return ''
        row = self._rows[int(line) - 1]
        return row[number - 1] if number <= len(row) else ''

    def expand(self, text: Optional[str]) -> Tuple[str, Set[str]]:
        """Replace every ``{{NAME}}`` span with the variable's value.

        The text is scanned once from left to right; substituted values
        are never re-scanned, so a value containing ``{{...}}`` is inserted
        literally.

        Args:
            text: Text that may contain variable references.

        Returns:
            Tuple of (expanded_text, names_used). Unset variables expand to
            an empty string.
        """
        if not text:
            return '', set()
        used: Set[str] = set()

        def _replace(match: 're.Match[str]') -> str:
            name = match.group(1).strip()
            used.add(name)
            return stringify(self.get(name)) if name else ''

        return _REFERENCE_RE.sub(_replace, text), used

    def snapshot(self) -> Dict[str, Value]:
        """Return a copy of all variables keyed by their display names."""
        data: Dict[str, Value] = {display: value for display, value in self._values.values()}
        data['!EXTRACT'] = EXTRACT_DELIMITER.join(self._extract)
        return data

    def _format_now(self, fmt: str) -> str:
        now = self._now()
        tokens = {
            'yyyy': f'{now.year:04d}',
            'yy': f'{now.year % 100:02d}',
            'mm': f'{now.month:02d}',
            'dd': f'{now.day:02d}',
            'hh': f'{now.hour:02d}',
            'nn': f'{now.minute:02d}',
            'ss': f'{now.second:02d}',
            'dow': str(now.isoweekday() % 7),
            'doy': f'{now.timetuple().tm_yday:03d}',
        }
        return _NOW_TOKEN_RE.sub(lambda m: tokens[m.group(0)], fmt.lower())
