"""
SQL text processing for named-parameter templates.

A template names its parameters with ``:identifier``. Compilation is a single
tokenizing pass:

    template → tokenize → replace named tokens with the driver placeholder
                          (recording names in order) → statement

String literals, quoted identifiers and ``::`` casts are copied verbatim, so
``'12:30'`` and ``value::text`` never produce parameters. When the driver
placeholder is ``%s`` every literal percent sign is doubled so the driver does
not read it as a placeholder.
"""
import re
from dataclasses import dataclass
from enum import Enum, auto

__all__ = [
    'TokenType',
    'Token',
    'tokenize_template',
    'compile_template',
    'quote_identifier',
]


class TokenType(Enum):
    """Token types identified while scanning a template."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()
    CAST = auto()               # ::
    NAMED_PH = auto()           # :name
    PERCENT = auto()            # %


@dataclass(slots=True)
class Token:
    """Token from template scanning."""
    type: TokenType
    text: str
    start: int
    end: int
    name: str | None = None


_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*'|"(?:[^"]|"")*")
    |(?P<cast>::)
    |(?P<named>:(?P<pname>[A-Za-z0-9_]+))
    |(?P<percent>%)
""", re.VERBOSE)


def tokenize_template(sql: str) -> list[Token]:
    """Split a template into tokens, preserving all of its text.

    Parameters
        sql: Template text

    Returns
        List of tokens whose texts concatenate back to ``sql``
    """
    tokens = []
    last_end = 0

    for match in _TOKENIZE.finditer(sql):
        start, end = match.span()

        if start > last_end:
            tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:start], last_end, start))

        if match.group('string'):
            tokens.append(Token(TokenType.STRING_LITERAL, match.group(0), start, end))
        elif match.group('cast'):
            tokens.append(Token(TokenType.CAST, match.group(0), start, end))
        elif match.group('named'):
            tokens.append(Token(TokenType.NAMED_PH, match.group(0), start, end,
                                name=match.group('pname')))
        else:
            tokens.append(Token(TokenType.PERCENT, match.group(0), start, end))
        last_end = end

    if last_end < len(sql):
        tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:], last_end, len(sql)))

    return tokens


def compile_template(sql: str, placeholder: str = '%s') -> tuple[str, tuple[str, ...]]:
    """Replace named parameters with positional placeholders.

    Parameters
        sql: Template text with ``:name`` parameters
        placeholder: Positional marker accepted by the driver (``%s`` or ``?``)

    Returns
        Tuple of (statement, parameter names in occurrence order)
    """
    escape_percent = placeholder == '%s'
    parts = []
    names = []

    for token in tokenize_template(sql):
        if token.type == TokenType.NAMED_PH:
            names.append(token.name)
            parts.append(placeholder)
        elif token.type == TokenType.PERCENT:
            parts.append('%%' if escape_percent else '%')
        elif token.type == TokenType.STRING_LITERAL and escape_percent:
            parts.append(token.text.replace('%', '%%'))
        else:
            parts.append(token.text)

    return ''.join(parts), tuple(names)


def quote_identifier(identifier: str, dialect: str = 'postgresql') -> str:
    """Safely quote database identifiers.

    Parameters
        identifier: Table or column name
        dialect: Database dialect

    Returns
        Quoted identifier

    Raises
        ValueError: If dialect is unsupported
    """
    if dialect in {'postgresql', 'sqlite'}:
        return '"' + identifier.replace('"', '""') + '"'

    raise ValueError(f'Unknown dialect: {dialect}')
