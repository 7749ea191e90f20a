"""Replay migration DDL, in order, into a single SchemaModel.

Each statement kind has one handler. Handlers return True when they changed
the model and False when the statement is not something they understand;
only unreadable files and SQL the parser rejects stop a replay.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Callable, Iterable

from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from ddl_statements import (
    MIGRATION_SEPARATOR,
    CreateComposite,
    CreateDomain,
    CreateEnum,
    DropObjects,
    Statement,
    parse_statements,
    split_migration,
)
from expression_text import function_name, reconstruct
from schema_model import (
    COMPOSITE,
    DEFAULT_SCHEMA,
    DOMAIN,
    ENUM,
    UNKNOWN_TYPE,
    Column,
    CustomType,
    ForeignKey,
    SchemaModel,
    Table,
    TableConstraint,
    View,
)

logger = logging.getLogger(__name__)

CHECK = "CHECK"


class MigrationReplayError(ValueError):
    def __init__(self, path: str, message: str):
        super().__init__(message)
        self.path = path


@dataclasses.dataclass
class ReplayConfig:
    dialect: str = "postgres"
    default_schema: str = DEFAULT_SCHEMA
    separator: str = MIGRATION_SEPARATOR


def split_qualified(names: list[str]) -> tuple[str, str]:
    if not names:
        return "", ""
    if len(names) == 1:
        return "", names[0]
    return names[-2], names[-1]


def type_text(kind: exp.Expression | None, dialect: str) -> str:
    if kind is None:
        return ""
    text = kind.sql(dialect=dialect, comments=False)
    if '"' in text:
        return text
    return text.lower()


def relation_name(node: exp.Expression | None) -> tuple[str, str]:
    if isinstance(node, exp.Schema):
        node = node.this
    if not isinstance(node, exp.Table):
        return "", ""
    return node.db, node.name


def key_names(nodes: Iterable[exp.Expression] | None) -> list[str]:
    out: list[str] = []
    for node in nodes or []:
        if isinstance(node, exp.Ordered):
            node = node.this
        if node is not None and node.name:
            out.append(node.name)
    return out


def reference_target(ref: exp.Expression | None) -> tuple[str, str, list[str]]:
    if not isinstance(ref, exp.Reference):
        return "", "", []
    target = ref.this
    cols: list[str] = []
    if isinstance(target, exp.Schema):
        cols = key_names(target.expressions)
        target = target.this
    if not isinstance(target, exp.Table):
        return "", "", cols
    return target.db, target.name, cols


def build_column(coldef: exp.ColumnDef, dialect: str) -> tuple[Column, list[TableConstraint]]:
    """Column from a definition, plus any inline CHECK constraints it carries."""
    col = Column(name=coldef.name, col_type=type_text(coldef.args.get("kind"), dialect))
    checks: list[TableConstraint] = []
    for constraint in coldef.args.get("constraints") or []:
        kind = constraint.args.get("kind")
        if isinstance(kind, exp.PrimaryKeyColumnConstraint):
            col.primary_key = True
        elif isinstance(kind, exp.UniqueColumnConstraint):
            col.unique = True
        elif isinstance(kind, exp.Reference):
            dst_schema, dst_table, dst_cols = reference_target(kind)
            col.foreign_key = ForeignKey(
                src_cols=[col.name],
                dst_schema=dst_schema,
                dst_table=dst_table,
                dst_cols=dst_cols,
            )
        elif isinstance(kind, exp.CheckColumnConstraint):
            checks.append(TableConstraint(name=constraint.name, kind=CHECK, description=reconstruct(kind.this)))
    return col, checks


def add_column(table: Table, coldef: exp.ColumnDef, dialect: str) -> None:
    if not coldef.name:
        return
    col, checks = build_column(coldef, dialect)
    table.upsert_column(col)
    table.constraints.extend(checks)


def apply_table_constraint(model: SchemaModel, table: Table, node: exp.Expression, name: str = "") -> bool:
    if isinstance(node, exp.Constraint):
        applied = False
        for inner in node.expressions:
            applied = apply_table_constraint(model, table, inner, node.name) or applied
        return applied

    if isinstance(node, exp.PrimaryKey):
        table.mark_primary_key(key_names(node.expressions))
        return True
    if isinstance(node, exp.UniqueColumnConstraint):
        cols = node.this
        if not isinstance(cols, exp.Schema):
            return False
        table.mark_unique(key_names(cols.expressions))
        return True
    if isinstance(node, exp.ForeignKey):
        dst_schema, dst_table, dst_cols = reference_target(node.args.get("reference"))
        model.table_level_foreign_keys.append(
            ForeignKey(
                src_cols=key_names(node.expressions),
                dst_schema=dst_schema,
                dst_table=dst_table,
                dst_cols=dst_cols,
            )
        )
        return True
    if isinstance(node, exp.CheckColumnConstraint):
        table.constraints.append(TableConstraint(name=name, kind=CHECK, description=reconstruct(node.this)))
        return True

    logger.debug("skipping table constraint %s on %s", type(node).__name__, table.name)
    return False


def apply_create(model: SchemaModel, stmt: exp.Create, dialect: str) -> bool:
    kind = (stmt.args.get("kind") or "").upper()
    if kind == "TABLE":
        return apply_create_table(model, stmt, dialect)
    if kind == "VIEW":
        return apply_create_view(model, stmt, dialect)
    return False


def apply_create_table(model: SchemaModel, stmt: exp.Create, dialect: str) -> bool:
    if stmt.args.get("expression") is not None:
        # CREATE TABLE ... AS SELECT
        return False
    schema, name = relation_name(stmt.this)
    if not name:
        return False
    table = model.ensure_table(schema, name)

    if not isinstance(stmt.this, exp.Schema):
        return True
    for elt in stmt.this.expressions:
        if isinstance(elt, exp.ColumnDef):
            add_column(table, elt, dialect)
        else:
            apply_table_constraint(model, table, elt)
    return True


def apply_alter_table(model: SchemaModel, stmt: exp.Alter, dialect: str) -> bool:
    if (stmt.args.get("kind") or "").upper() != "TABLE":
        return False
    schema, name = relation_name(stmt.this)
    if not name:
        return False
    table = model.ensure_table(schema, name)

    for action in stmt.args.get("actions") or []:
        if isinstance(action, exp.ColumnDef):
            add_column(table, action, dialect)
        elif isinstance(action, exp.Drop):
            drop_kind = (action.args.get("kind") or "").upper()
            target = action.this.name if action.this is not None else ""
            if drop_kind == "COLUMN" and target:
                table.remove_column(target)
            elif drop_kind == "CONSTRAINT" and target:
                table.constraints = [c for c in table.constraints if c.name != target]
        elif isinstance(action, exp.AddConstraint):
            owner = model.find_table(schema, name)
            if owner is None:
                continue
            for node in action.expressions:
                apply_table_constraint(model, owner, node)
        elif isinstance(action, (exp.Constraint, exp.PrimaryKey, exp.ForeignKey, exp.UniqueColumnConstraint)):
            apply_table_constraint(model, table, action)
        else:
            logger.debug("skipping ALTER TABLE %s action %s", name, type(action).__name__)
    return True


def view_column_name(projection: exp.Expression) -> str:
    if isinstance(projection, exp.Alias):
        return projection.alias
    if isinstance(projection, exp.Column):
        name = projection.name
        return "" if name == "*" else name
    return function_name(projection)


def apply_create_view(model: SchemaModel, stmt: exp.Create, dialect: str) -> bool:
    schema, name = relation_name(stmt.this)
    if not name:
        return False
    view = View(schema=schema, name=name)

    if isinstance(stmt.this, exp.Schema) and stmt.this.expressions:
        names = key_names(stmt.this.expressions)
    elif isinstance(stmt.expression, exp.Select):
        names = [view_column_name(p) for p in stmt.expression.expressions]
    else:
        names = []
    view.columns = [Column(name=n, col_type=UNKNOWN_TYPE) for n in names if n]

    model.views[model.key(schema, name)] = view
    return True


def apply_create_enum(model: SchemaModel, stmt: CreateEnum, dialect: str) -> bool:
    schema, name = split_qualified(stmt.names)
    if not name:
        return False
    model.add_custom_type(CustomType(schema=schema, name=name, kind=ENUM, values=list(stmt.values)))
    return True


def collation_name(node: exp.Expression | None) -> str:
    if node is None:
        return ""
    if isinstance(node, exp.Column):
        return ".".join(p.name for p in node.parts)
    return node.name


def apply_create_domain(model: SchemaModel, stmt: CreateDomain, dialect: str) -> bool:
    schema, name = split_qualified(stmt.names)
    if not name:
        return False
    ct = CustomType(
        schema=schema,
        name=name,
        kind=DOMAIN,
        base_type=type_text(stmt.definition.args.get("kind"), dialect),
    )
    for constraint in stmt.definition.args.get("constraints") or []:
        kind = constraint.args.get("kind")
        if isinstance(kind, exp.CheckColumnConstraint):
            ct.check = reconstruct(kind.this)
        elif isinstance(kind, exp.NotNullColumnConstraint) and not kind.args.get("allow_null"):
            ct.not_null = True
        elif isinstance(kind, exp.CollateColumnConstraint):
            ct.collation = collation_name(kind.this)
    model.add_custom_type(ct)
    return True


def apply_create_composite(model: SchemaModel, stmt: CreateComposite, dialect: str) -> bool:
    schema, name = split_qualified(stmt.names)
    if not name:
        return False
    fields = [Column(name=f.name, col_type=type_text(f.args.get("kind"), dialect)) for f in stmt.fields]
    model.add_custom_type(CustomType(schema=schema, name=name, kind=COMPOSITE, fields=fields))
    return True


def apply_drop(model: SchemaModel, stmt: DropObjects, dialect: str) -> bool:
    if stmt.kind == "TABLE":
        collections = [model.tables]
    elif stmt.kind == "VIEW":
        collections = [model.views]
    elif stmt.kind == "TYPE":
        collections = [model.enums, model.composites]
    elif stmt.kind == "DOMAIN":
        collections = [model.domains]
    else:
        return False

    for names in stmt.names:
        schema, name = split_qualified(names)
        k = model.key(schema, name)
        for collection in collections:
            collection.pop(k, None)
    return True


INTERPRETERS: dict[type, Callable[[SchemaModel, Statement, str], bool]] = {
    exp.Create: apply_create,
    exp.Alter: apply_alter_table,
    CreateEnum: apply_create_enum,
    CreateDomain: apply_create_domain,
    CreateComposite: apply_create_composite,
    DropObjects: apply_drop,
}


def apply_statement(model: SchemaModel, stmt: Statement, dialect: str = "postgres") -> bool:
    handler = INTERPRETERS.get(type(stmt))
    if handler is None or not handler(model, stmt, dialect):
        logger.debug("statement not applied: %s", type(stmt).__name__)
        return False
    return True


def replay_text(model: SchemaModel, path: str, text: str, config: ReplayConfig) -> None:
    forward = split_migration(text, config.separator)
    try:
        statements = parse_statements(forward, config.dialect)
    except (ParseError, TokenError) as exc:
        raise MigrationReplayError(path, f"failed to parse SQL in {path}: {exc}") from exc
    for stmt in statements:
        apply_statement(model, stmt, config.dialect)


def replay_sources(sources: Iterable[tuple[str, str]], config: ReplayConfig | None = None) -> SchemaModel:
    """Replay ``(identifier, sql_text)`` pairs in lexicographic identifier order."""
    config = config or ReplayConfig()
    model = SchemaModel(default_schema=config.default_schema)
    for path, text in sorted(sources, key=lambda source: source[0]):
        replay_text(model, path, text, config)
    return model


def replay_files(paths: Iterable[str | Path], config: ReplayConfig | None = None) -> SchemaModel:
    config = config or ReplayConfig()
    model = SchemaModel(default_schema=config.default_schema)
    for path in sorted(str(p) for p in paths):
        try:
            text = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise MigrationReplayError(path, f"failed to read file {path}: {exc}") from exc
        logger.info("replaying %s", path)
        replay_text(model, path, text, config)
    return model
