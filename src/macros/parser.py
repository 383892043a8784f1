"""Macro text parser for iMacros-style browser automation scripts.

This module turns macro source text into a flat list of Command values that
the executor walks with a program counter. Parsing is line oriented and never
raises: a line that cannot be understood becomes a ``SYNTAX_ERROR_LINE``
command so the executor can report the failure against its line number when
(and only if) execution reaches it.

The parser handles:
    - Command words (case-insensitive, normalized to upper case)
    - ``KEY=value`` and bare positional parameters
    - Double and single quoted values that may contain ``=``, ``:`` and spaces
    - Escape tokens ``<SP>``, ``<BR>``, ``<ENTER>`` and ``<TAB>``
    - Labels (``START:`` alone or in front of a command)
    - Comments (lines starting with ``'`` or ``//``) and blank lines

Example:
    Basic parsing::

        commands = parse('''
            ' open the page and click
            URL GOTO=https://example.com
            SET !VAR1 3
            CLICK X={{!VAR1}} Y=10
            END:
        ''')
        # commands[2].parameters[0].referenced_variables == {'!VAR1'}

    Checking a macro before running it::

        problems = validate(commands)
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

# First word of a command line
COMMAND_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

# "NAME:" at the start of a line marks a jump target
LABEL_RE = re.compile(r"^(?P<label>[A-Za-z_][\w\-]*):(?:\s+|$)")

# IF <condition> THEN GOTO <label>
IF_RE = re.compile(
    r"^IF\s+(?P<condition>.+?)\s+THEN\s+GOTO\s+(?P<label>\S+)\s*$",
    re.IGNORECASE,
)

VARIABLE_REF_RE = re.compile(r"\{\{([^{}]+)\}\}")

ESCAPE_RE = re.compile(r"<(SP|BR|ENTER|TAB)>", re.IGNORECASE)
_ESCAPES = {'SP': ' ', 'BR': '\n', 'ENTER': '\n', 'TAB': '\t'}

COMMENT_MARKERS = ("'", '//')

SYNTAX_ERROR_LINE = 'SYNTAX_ERROR_LINE'
LABEL_ONLY = 'LABEL'


@dataclass(frozen=True)
class Parameter:
    """A single command parameter.

    Attributes:
        key: Parameter name, or the literal text for positional parameters.
        value: Value after escape processing and quote stripping.
        raw_value: The token exactly as written in the source.
        referenced_variables: Names used in ``{{...}}`` spans of the value.
    """

    key: str
    value: str
    raw_value: str
    referenced_variables: FrozenSet[str] = frozenset()

    @property
    def positional(self) -> bool:
        return '=' not in self.raw_value or self.raw_value[:1] in '"\''

    @property
    def text(self) -> str:
        """Whole token after escape processing, including any KEY= prefix."""
        if self.positional:
            return self.value
        return f'{self.key}={self.value}'


@dataclass(frozen=True)
class Command:
    """One parsed macro line.

    Attributes:
        type: Upper-case command word, ``LABEL`` for a bare label line or
            ``SYNTAX_ERROR_LINE`` for an unparsable line.
        parameters: Parameters in source order.
        raw: The source line with surrounding whitespace removed.
        line_number: 1-based line number in the macro source.
        label: Jump target name declared on this line, if any.
    """

    type: str
    parameters: Tuple[Parameter, ...] = field(default_factory=tuple)
    raw: str = ''
    line_number: int = 0
    label: Optional[str] = None

    @property
    def is_syntax_error(self) -> bool:
        return self.type == SYNTAX_ERROR_LINE

    def param(self, key: str) -> Optional[Parameter]:
        """Return the first parameter whose key matches case-insensitively."""
        wanted = key.upper()
        for p in self.parameters:
            if p.key.upper() == wanted:
                return p
        return None


def parse(source: str) -> List[Command]:
    """Parse macro source into an ordered list of commands.

    Blank lines and comments are dropped but every command keeps the line
    number it came from.

    Args:
        source: Raw macro text.

    Returns:
        List of Command objects in program order. Unparsable lines are
        returned as ``SYNTAX_ERROR_LINE`` commands instead of raising.
    """
    commands: List[Command] = []
    for index, line in enumerate(re.split(r'\r\n|\r|\n', source or '')):
        command = parse_line(line, index + 1)
        if command is not None:
            commands.append(command)
    return commands


def parse_line(line: str, line_number: int = 1) -> Optional[Command]:
    """Parse a single line of macro text.

    Args:
        line: The source line.
        line_number: Line number to attach to the resulting command.

    Returns:
        A Command, or None for blank and comment lines.
    """
    text = line.strip()
    if not text or text.startswith(COMMENT_MARKERS):
        return None

    label = None
    body = text
    label_match = LABEL_RE.match(text)
    if label_match:
        label = label_match.group('label')
        body = text[label_match.end():].strip()
        if not body:
            return Command(LABEL_ONLY, (), text, line_number, label)
        if body.startswith(COMMENT_MARKERS):
            return Command(LABEL_ONLY, (), text, line_number, label)

    parts = body.split(None, 1)
    word = parts[0]
    rest = parts[1] if len(parts) > 1 else ''
    if not COMMAND_RE.match(word):
        return _syntax_error(text, line_number, label, f'Invalid command name: {word}')

    cmd_type = word.upper()
    try:
        tokens = _tokenize(rest.strip())
    except ValueError as e:
        return _syntax_error(text, line_number, label, str(e))

    if cmd_type == 'IF' and not IF_RE.match(body):
        return _syntax_error(
            text, line_number, label,
            'IF requires the form: IF <condition> THEN GOTO <label>',
        )

    parameters = tuple(_make_parameter(token) for token in tokens)
    return Command(cmd_type, parameters, text, line_number, label)


def split_if(command: Command) -> Tuple[str, str]:
    """Split an IF command into its condition text and target label.

    Args:
        command: A command of type ``IF``.

    Returns:
        Tuple of (condition, label).

    Raises:
        ValueError: If the command is not a well formed IF line.
    """
    body = command.raw
    if command.label:
        label_match = LABEL_RE.match(body)
        if label_match:
            body = body[label_match.end():].strip()
    match = IF_RE.match(body)
    if not match:
        raise ValueError(f'Malformed IF on line {command.line_number}')
    return match.group('condition').strip(), match.group('label')


def validate(commands: List[Command]) -> List[str]:
    """Report static problems in a parsed macro.

    Checks for syntax-error lines, duplicate labels and GOTO/IF targets that
    are not declared anywhere in the macro.

    Args:
        commands: Output of parse().

    Returns:
        Human readable problem descriptions, empty if the macro looks sound.
    """
    problems: List[str] = []
    labels = {}
    for command in commands:
        if command.is_syntax_error:
            reason = command.parameters[0].value if command.parameters else 'syntax error'
            problems.append(f'Line {command.line_number}: {reason}')
        if command.label:
            key = command.label.upper()
            if key in labels:
                problems.append(
                    f'Line {command.line_number}: duplicate label {command.label} '
                    f'(first declared on line {labels[key]})'
                )
            else:
                labels[key] = command.line_number

    for command in commands:
        target = None
        if command.type == 'GOTO' and command.parameters:
            target = command.parameters[0].value
        elif command.type == 'IF':
            try:
                _, target = split_if(command)
            except ValueError:
                continue
        if target and '{{' not in target and target.upper() not in labels:
            problems.append(f'Line {command.line_number}: unknown label {target}')
    return problems


def apply_escapes(value: str) -> str:
    """Replace <SP>, <BR>, <ENTER> and <TAB> tokens."""
    return ESCAPE_RE.sub(lambda m: _ESCAPES[m.group(1).upper()], value)


def referenced_variables(value: str) -> FrozenSet[str]:
    return frozenset(name.strip() for name in VARIABLE_REF_RE.findall(value))


def _syntax_error(text: str, line_number: int, label: Optional[str], reason: str) -> Command:
    param = Parameter(reason, reason, reason)
    return Command(SYNTAX_ERROR_LINE, (param,), text, line_number, label)


def _tokenize(rest: str) -> List[str]:
    """Split the parameter part of a line on whitespace outside quotes.

    A quote at the start of a token or directly after the first ``=``
    opens a quoted span. A double quote anywhere else inside a token also
    opens one, as in ``SOURCE=TXT:"Hello World"`` or
    ``CONTENT=%"ice cream"``, provided a closing quote follows; without
    one it is an ordinary character.

    Raises:
        ValueError: If a quoted span at the start of a value is not terminated.
    """
    tokens: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    i = 0
    while i < len(rest):
        ch = rest[i]
        if quote:
            current.append(ch)
            if ch == '\\' and quote == '"' and i + 1 < len(rest):
                current.append(rest[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch.isspace():
            if current:
                tokens.append(''.join(current))
                current = []
        elif ch in '"\'' and _opens_quote(current):
            quote = ch
            current.append(ch)
        elif ch == '"' and _closing_quote(rest, i + 1) is not None:
            quote = ch
            current.append(ch)
        else:
            current.append(ch)
        i += 1

    if quote:
        raise ValueError(f'Unterminated {quote} quote')
    if current:
        tokens.append(''.join(current))
    return tokens


def _opens_quote(current: List[str]) -> bool:
    if not current:
        return True
    return current[-1] == '=' and current.count('=') == 1 and current[0] not in '"\''


def _closing_quote(rest: str, start: int) -> Optional[int]:
    """Index of the next unescaped double quote at or after start."""
    i = start
    while i < len(rest):
        if rest[i] == '\\':
            i += 2
            continue
        if rest[i] == '"':
            return i
        i += 1
    return None


def _make_parameter(token: str) -> Parameter:
    if token[:1] in '"\'' or '=' not in token:
        value = _unquote(apply_escapes(token))
        return Parameter(value, value, token, referenced_variables(value))

    key, _, raw = token.partition('=')
    value = _unquote(apply_escapes(raw))
    return Parameter(key, value, token, referenced_variables(value))


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in '"\'':
        inner = value[1:-1]
        if value[0] == '"':
            inner = re.sub(r'\\(.)', r'\1', inner)
        return inner
    return value
