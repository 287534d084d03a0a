"""
SQL text processing for command binding.

Command text refers to parameters by name (`@UserId`). Drivers do not share a
placeholder style, so before execution the text is tokenized once and every
reference to a declared parameter is rewritten for the driver:

    SQL + Parameters → Tokenize → Rewrite references → Driver SQL + args

Main entry points:
- `bind_parameters(sql, params, paramstyle)` - rewrite and collect arguments
- `quote_identifier(identifier, dialect)` - quote table/procedure names
- `split_batches(script)` - split a script on `GO` separator lines
"""
import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any


class TokenType(Enum):
    """Token types identified during SQL parsing."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()
    QUOTED_IDENTIFIER = auto()
    COMMENT = auto()
    SYSTEM_VARIABLE = auto()    # @@ROWCOUNT
    PARAMETER = auto()          # @name


@dataclass(slots=True)
class Token:
    """Token from SQL parsing."""
    type: TokenType
    text: str
    start: int
    end: int
    name: str | None = None


_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*')
    |(?P<quoted>"(?:[^"]|"")*")
    |(?P<dollar>\$(?P<tag>(?:[A-Za-z_]\w*)?)\$.*?\$(?P=tag)\$)
    |(?P<line_comment>--[^\n]*)
    |(?P<block_comment>/\*.*?\*/)
    |(?P<sysvar>@@\w+)
    |(?P<param>@(?P<pname>[A-Za-z_][\w$#]*))
""", re.VERBOSE | re.DOTALL)

_GO_SEPARATOR = re.compile(r'^\s*GO\s*$', re.MULTILINE | re.IGNORECASE)

PLACEHOLDERS = {
    'named': ':{name}',
    'pyformat': '%({name})s',
    'qmark': '?',
}


def tokenize_sql(sql: str) -> list[Token]:
    """Parse SQL into tokens in a single pass.

    Parameters
        sql: SQL command text

    Returns
        List of tokens preserving all SQL text
    """
    tokens = []
    last_end = 0

    for match in _TOKENIZE.finditer(sql):
        start, end = match.span()

        if start > last_end:
            tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:start], last_end, start))

        name = None
        if match.group('string') or match.group('dollar'):
            ttype = TokenType.STRING_LITERAL
        elif match.group('quoted'):
            ttype = TokenType.QUOTED_IDENTIFIER
        elif match.group('line_comment') or match.group('block_comment'):
            ttype = TokenType.COMMENT
        elif match.group('sysvar'):
            ttype = TokenType.SYSTEM_VARIABLE
        else:
            ttype = TokenType.PARAMETER
            name = match.group('pname')

        tokens.append(Token(ttype, match.group(0), start, end, name))
        last_end = end

    if last_end < len(sql):
        tokens.append(Token(TokenType.SQL_TEXT, sql[last_end:], last_end, len(sql)))

    return tokens


def bare_name(name: str) -> str:
    """Strip the parameter prefix (`@`, `:` or `$`) from a parameter name."""
    return name[1:] if name[:1] in {'@', ':', '$'} else name


def bind_parameters(sql: str, params: Iterable[Any],
                    paramstyle: str) -> tuple[str, dict[str, Any] | tuple | None]:
    """Rewrite `@name` references of the given parameters for a driver.

    Only references to declared parameters are rewritten (case-insensitive);
    anything else that looks like `@name`, such as a T-SQL local variable, is
    left intact. `named` and `pyformat` styles return a dict keyed by bare
    parameter name; `qmark` returns a tuple with one value per reference.

    Parameters
        sql: Command text
        params: Objects with `name` and `value` attributes
        paramstyle: One of 'named', 'pyformat', 'qmark'

    Returns
        Tuple of (driver SQL, args); args is None when no parameters are given
    """
    if paramstyle not in PLACEHOLDERS:
        raise ValueError(f'Unsupported paramstyle: {paramstyle}')

    declared = {bare_name(p.name).casefold(): p for p in params}
    if not declared:
        return sql, None

    placeholder = PLACEHOLDERS[paramstyle]
    result: list[str] = []
    positional: list[Any] = []

    for token in tokenize_sql(sql):
        param = declared.get(token.name.casefold()) if token.type == TokenType.PARAMETER else None
        if param is not None:
            name = bare_name(param.name)
            result.append(placeholder.format(name=name))
            positional.append(param.value)
        elif paramstyle == 'pyformat':
            result.append(token.text.replace('%', '%%'))
        else:
            result.append(token.text)

    if paramstyle == 'qmark':
        return ''.join(result), tuple(positional)
    return ''.join(result), {bare_name(p.name): p.value for p in declared.values()}


def referenced_parameters(sql: str) -> set[str]:
    """Return the casefolded bare names of all `@name` references in SQL."""
    return {t.name.casefold() for t in tokenize_sql(sql) if t.type == TokenType.PARAMETER}


def quote_identifier(identifier: str, dialect: str = 'postgresql') -> str:
    """Safely quote a possibly schema-qualified identifier.

    Parameters
        identifier: Table or procedure name, optionally dotted
        dialect: Database dialect

    Returns
        Quoted identifier

    Raises
        ValueError: If dialect is unsupported
    """
    if dialect in {'postgresql', 'sqlite'}:
        opening, closing = '"', '"'
    elif dialect == 'mssql':
        opening, closing = '[', ']'
    else:
        raise ValueError(f'Unknown dialect: {dialect}')

    quoted = []
    for part in identifier.split('.'):
        if part.startswith(opening) and part.endswith(closing) and len(part) > 1:
            quoted.append(part)
        else:
            quoted.append(opening + part.replace(closing, closing * 2) + closing)
    return '.'.join(quoted)


def split_batches(script: str) -> list[str]:
    """Split a script into batches on lines consisting only of `GO`."""
    return [batch.strip() for batch in _GO_SEPARATOR.split(script) if batch.strip()]
