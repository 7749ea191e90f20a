"""Turn parsed SQL expression trees back into readable SQL text.

The output is meant for display (CHECK bodies in a diagram), not for
re-execution. Every function here returns an empty string for anything it
cannot express, and callers treat an empty string as "no description".
"""

from __future__ import annotations

import re
from typing import Iterator

from sqlglot import exp

BINARY_OPERATORS: dict[type[exp.Expression], str] = {
    exp.EQ: "=",
    exp.NEQ: "<>",
    exp.GT: ">",
    exp.GTE: ">=",
    exp.LT: "<",
    exp.LTE: "<=",
    exp.Add: "+",
    exp.Sub: "-",
    exp.Mul: "*",
    exp.Div: "/",
    exp.Mod: "%",
    exp.DPipe: "||",
    exp.RegexpLike: "~",
    exp.RegexpILike: "~*",
}

PATTERN_OPERATORS: dict[type[exp.Expression], str] = {
    exp.Like: "LIKE",
    exp.ILike: "ILIKE",
}

CAST_DIALECT = "postgres"

# Function-shaped nodes with no call syntax of their own.
CONTROL_FLOW = (exp.Case, exp.If)

_LEADING_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*")


def reconstruct(node: exp.Expression | None) -> str:
    if node is None:
        return ""
    return _render(_unparen(node))


def _unparen(node: exp.Expression) -> exp.Expression:
    while isinstance(node, exp.Paren) and node.this is not None:
        node = node.this
    return node


def _render(node: exp.Expression | None) -> str:
    if node is None:
        return ""

    op = BINARY_OPERATORS.get(type(node))
    if op is not None:
        return _binary(op, node.this, node.expression)

    op = PATTERN_OPERATORS.get(type(node))
    if op is not None:
        return _binary(op, node.this, node.expression)

    if isinstance(node, exp.In):
        return _in(node)
    if isinstance(node, exp.Between):
        return _between(node)
    if isinstance(node, (exp.And, exp.Or)):
        return _connective(node)
    if isinstance(node, exp.Not):
        return _not(node)
    if isinstance(node, exp.Is):
        return _is(node)
    if isinstance(node, exp.Paren):
        inner = _render(node.this)
        return f"({inner})" if inner else ""
    if isinstance(node, exp.Neg):
        inner = _render(node.this)
        return f"-{inner}" if inner else ""
    if isinstance(node, exp.Cast):
        return _cast(node)
    if isinstance(node, CONTROL_FLOW):
        return ""
    if isinstance(node, exp.Func):
        return _function(node)
    if isinstance(node, exp.Column):
        return ".".join(p.name for p in node.parts if p.name)
    if isinstance(node, exp.Literal):
        if node.is_string:
            return f"'{node.this}'"
        return str(node.this)
    if isinstance(node, exp.Boolean):
        return "true" if node.this else "false"
    if isinstance(node, exp.Null):
        return "NULL"
    return ""


def _binary(op: str, left: exp.Expression | None, right: exp.Expression | None) -> str:
    left_text = _render(left)
    right_text = _render(right)
    if not right_text:
        return ""
    if not left_text:
        # Prefix use of the operator, e.g. a domain constraint with an implicit subject.
        return f"{op} {right_text}"
    return f"{left_text} {op} {right_text}"


def _in(node: exp.In) -> str:
    left_text = _render(node.this)
    values = [v for v in (_render(item) for item in node.expressions) if v]
    if not values:
        return ""
    listed = ", ".join(values)
    if not left_text:
        return f"IN ({listed})"
    return f"{left_text} IN ({listed})"


def _between(node: exp.Between) -> str:
    left_text = _render(node.this)
    low = _render(node.args.get("low"))
    high = _render(node.args.get("high"))
    if not low or not high:
        return ""
    if not left_text:
        return f"BETWEEN {low} AND {high}"
    return f"{left_text} BETWEEN {low} AND {high}"


def _flatten(node: exp.Expression, kind: type[exp.Expression]) -> Iterator[exp.Expression]:
    # The parser nests "a AND b AND c" as binary nodes; treat the chain as one group.
    if isinstance(node, kind):
        yield from _flatten(node.this, kind)
        yield from _flatten(node.expression, kind)
    else:
        yield node


def _connective(node: exp.Expression) -> str:
    kind = type(node)
    parts = [p for p in (_render(_unparen(child)) for child in _flatten(node, kind)) if p]
    if not parts:
        return ""
    if len(parts) > 1:
        parts = [f"({p})" if " AND " in p or " OR " in p else p for p in parts]
    joiner = " AND " if kind is exp.And else " OR "
    return joiner.join(parts)


def _not(node: exp.Not) -> str:
    inner = _unparen(node.this) if node.this is not None else None
    if isinstance(inner, exp.Is) and isinstance(inner.expression, exp.Null):
        subject = _render(inner.this)
        return f"{subject} IS NOT NULL" if subject else ""
    text = _render(inner)
    if not text:
        return ""
    return f"NOT ({text})"


def _is(node: exp.Is) -> str:
    subject = _render(node.this)
    target = _render(node.expression)
    if not subject or not target:
        return ""
    return f"{subject} IS {target}"


def _cast(node: exp.Cast) -> str:
    inner = _render(node.this)
    to = node.args.get("to")
    if not inner or to is None:
        return inner
    return f"{inner}::{to.sql(dialect=CAST_DIALECT, comments=False).lower()}"


def function_name(node: exp.Expression) -> str:
    """Name a function call the way it was written; empty for anything else."""
    if isinstance(node, exp.Anonymous):
        if isinstance(node.this, exp.Identifier) and node.this.quoted:
            return node.this.name
        return node.name.lower()
    if isinstance(node, exp.Func) and not isinstance(node, CONTROL_FLOW):
        match = _LEADING_NAME.match(_builtin(node))
        return match.group(0).lower() if match else ""
    return ""


def _builtin(node: exp.Func) -> str:
    # Calls with their own syntax (position(a IN b), extract, trim) and bare
    # keywords (current_date) keep the typed node; the generator spells them.
    text = node.sql(dialect=CAST_DIALECT, comments=False)
    return _LEADING_NAME.sub(lambda m: m.group(0).lower(), text, count=1)


def _function(node: exp.Func) -> str:
    if not isinstance(node, exp.Anonymous):
        return _builtin(node)
    name = function_name(node)
    if not name:
        return ""
    rendered = [a for a in (_render(arg) for arg in node.expressions) if a]
    return f"{name}({', '.join(rendered)})"
