"""Split migration SQL into statement trees using sqlglot.

sqlglot parses tables, views and ALTER TABLE natively. A handful of
PostgreSQL statements (CREATE TYPE, CREATE DOMAIN, DROP with several objects)
come back from it as opaque commands or parse errors, so those are read here
from the token stream; their column definitions, types and CHECK bodies are
still handed to sqlglot so every expression shares one tree shape.
"""

from __future__ import annotations

import dataclasses
from typing import Union

import sqlglot
from sqlglot import exp
from sqlglot.dialects.dialect import Dialect
from sqlglot.optimizer.normalize_identifiers import normalize_identifiers
from sqlglot.tokens import Token, TokenType

MIGRATION_SEPARATOR = "---- create above / drop below ----"

DROPPABLE_KINDS = ("TABLE", "VIEW", "TYPE", "DOMAIN")

ANONYMOUS_HINT = f"/* {exp.SQLGLOT_ANONYMOUS} */"

_PUNCTUATION = {
    TokenType.DOT,
    TokenType.COMMA,
    TokenType.L_PAREN,
    TokenType.R_PAREN,
    TokenType.SEMICOLON,
    TokenType.STRING,
}


@dataclasses.dataclass
class CreateEnum:
    names: list[str]
    values: list[str]


@dataclasses.dataclass
class CreateDomain:
    names: list[str]
    definition: exp.ColumnDef


@dataclasses.dataclass
class CreateComposite:
    names: list[str]
    fields: list[exp.ColumnDef]


@dataclasses.dataclass
class DropObjects:
    kind: str
    names: list[list[str]]


Statement = Union[exp.Expression, CreateEnum, CreateDomain, CreateComposite, DropObjects]


def split_migration(text: str, separator: str = MIGRATION_SEPARATOR) -> str:
    """Forward half of a migration file; everything after the separator is rollback."""
    return text.split(separator, 1)[0]


def parse_statements(sql: str, dialect: str = "postgres") -> list[Statement]:
    """Parse every statement in ``sql``, in source order.

    Raises sqlglot's ``TokenError`` or ``ParseError`` on malformed SQL.
    """
    tokens = Dialect.get_or_raise(dialect).tokenize(sql)
    statements: list[Statement] = []
    for group in _split_tokens(tokens):
        stmt = _read_postgres_statement(sql, group, dialect)
        if stmt is None:
            text = sql[group[0].start : group[-1].end + 1]
            stmt = parse_sql(text, dialect)
        statements.append(stmt)
    return statements


def _split_tokens(tokens: list[Token]) -> list[list[Token]]:
    groups: list[list[Token]] = []
    current: list[Token] = []
    for tok in tokens:
        if tok.token_type == TokenType.SEMICOLON:
            if current:
                groups.append(current)
            current = []
            continue
        current.append(tok)
    if current:
        groups.append(current)
    return groups


def parse_sql(text: str, dialect: str = "postgres") -> exp.Expression:
    """Parse one statement or expression with calls kept under their written names."""
    marked = _keep_call_names(text, dialect)
    return normalize_identifiers(sqlglot.parse_one(marked, read=dialect), dialect=dialect)


def _keep_call_names(text: str, dialect: str) -> str:
    # sqlglot maps known function names onto its own expression classes (now() becomes
    # CURRENT_TIMESTAMP, date_trunc loses its unit); a trailing anonymous hint keeps the call as written.
    d = Dialect.get_or_raise(dialect)
    known = d.parser_class.FUNCTIONS
    special = d.parser_class.FUNCTION_PARSERS
    tokens = d.tokenize(text)
    ends: list[int] = []
    for idx in range(len(tokens) - 1):
        tok = tokens[idx]
        if tok.token_type != TokenType.VAR or tokens[idx + 1].token_type != TokenType.L_PAREN:
            continue
        name = tok.text.upper()
        if name not in known or name in special:
            continue
        close = _matching_paren(tokens, idx + 1)
        if close >= 0:
            ends.append(tokens[close].end + 1)
    for pos in sorted(ends, reverse=True):
        text = f"{text[:pos]} {ANONYMOUS_HINT}{text[pos:]}"
    return text


def _word(tokens: list[Token], idx: int) -> str:
    if idx < len(tokens):
        return tokens[idx].text.upper()
    return ""


def _identifier(tok: Token) -> str:
    # Quoted identifiers keep their case; bare ones fold like PostgreSQL does.
    if tok.token_type == TokenType.IDENTIFIER:
        return tok.text
    return tok.text.lower()


def _read_name(tokens: list[Token], idx: int) -> tuple[list[str], int]:
    parts: list[str] = []
    while idx < len(tokens) and tokens[idx].token_type not in _PUNCTUATION:
        parts.append(_identifier(tokens[idx]))
        idx += 1
        if idx < len(tokens) and tokens[idx].token_type == TokenType.DOT:
            idx += 1
            continue
        break
    return parts, idx


def _matching_paren(tokens: list[Token], open_idx: int) -> int:
    depth = 0
    for idx in range(open_idx, len(tokens)):
        if tokens[idx].token_type == TokenType.L_PAREN:
            depth += 1
        elif tokens[idx].token_type == TokenType.R_PAREN:
            depth -= 1
            if depth == 0:
                return idx
    return -1


def _read_postgres_statement(sql: str, tokens: list[Token], dialect: str) -> Statement | None:
    head = _word(tokens, 0)
    if head == "DROP":
        return _read_drop(tokens)
    if head != "CREATE":
        return None
    idx = 1
    if _word(tokens, idx) == "OR" and _word(tokens, idx + 1) == "REPLACE":
        idx += 2
    kind = _word(tokens, idx)
    if kind == "TYPE":
        return _read_create_type(sql, tokens, idx + 1, dialect)
    if kind == "DOMAIN":
        return _read_create_domain(sql, tokens, idx + 1, dialect)
    return None


def _read_drop(tokens: list[Token]) -> DropObjects | None:
    idx = 1
    if _word(tokens, idx) == "MATERIALIZED":
        idx += 1
    kind = _word(tokens, idx)
    if kind not in DROPPABLE_KINDS:
        return None
    idx += 1
    if _word(tokens, idx) == "IF" and _word(tokens, idx + 1) == "EXISTS":
        idx += 2

    names: list[list[str]] = []
    while idx < len(tokens):
        parts, idx = _read_name(tokens, idx)
        if not parts:
            break
        names.append(parts)
        if idx < len(tokens) and tokens[idx].token_type == TokenType.COMMA:
            idx += 1
            continue
        break
    return DropObjects(kind=kind, names=names)


def _read_create_type(sql: str, tokens: list[Token], idx: int, dialect: str) -> Statement | None:
    names, idx = _read_name(tokens, idx)
    if not names or _word(tokens, idx) != "AS":
        return None
    idx += 1

    if _word(tokens, idx) == "ENUM":
        idx += 1
        if idx >= len(tokens) or tokens[idx].token_type != TokenType.L_PAREN:
            return None
        close = _matching_paren(tokens, idx)
        if close < 0:
            return None
        values = [t.text for t in tokens[idx + 1 : close] if t.token_type == TokenType.STRING]
        return CreateEnum(names=names, values=values)

    if idx < len(tokens) and tokens[idx].token_type == TokenType.L_PAREN:
        close = _matching_paren(tokens, idx)
        if close < 0:
            return None
        if close == idx + 1:
            return CreateComposite(names=names, fields=[])
        body = sql[tokens[idx + 1].start : tokens[close - 1].end + 1]
        return CreateComposite(names=names, fields=_column_defs(body, dialect))

    # Range, base and shell types carry nothing the diagram shows.
    return None


def _read_create_domain(sql: str, tokens: list[Token], idx: int, dialect: str) -> Statement | None:
    names, idx = _read_name(tokens, idx)
    if not names:
        return None
    if _word(tokens, idx) == "AS":
        idx += 1
    if idx >= len(tokens):
        return None
    # A domain body reads exactly like a column definition: type, then constraints.
    body = sql[tokens[idx].start : tokens[-1].end + 1]
    defs = _column_defs(f"_domain_value {body}", dialect)
    if not defs:
        return None
    return CreateDomain(names=names, definition=defs[0])


def _column_defs(body: str, dialect: str) -> list[exp.ColumnDef]:
    create = parse_sql(f"CREATE TABLE _pseudo ({body})", dialect)
    schema = create.this
    if not isinstance(schema, exp.Schema):
        return []
    return [e for e in schema.expressions if isinstance(e, exp.ColumnDef)]
