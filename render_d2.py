"""Render a SchemaModel as D2 diagram source and as plain YAML data."""

from __future__ import annotations

import dataclasses
import re

import yaml

from schema_model import COMPOSITE, DOMAIN, ENUM, UNKNOWN_TYPE, CustomType, ForeignKey, SchemaModel, Table

CLASSES_SECTION = """classes: {
  table: {
    shape: sql_table
  }
  views: {
    grid-rows: 2
    grid-columns: 2
  }
  view: {
    shape: sql_table
    style: {
      stroke-dash: 5
    }
  }
  enums: {
    grid-rows: 2
    grid-columns: 2
  }
  enum: {
    shape: sql_table
    style: {
      stroke-dash: 5
    }
  }
  domains: {
    grid-rows: 2
    grid-columns: 2
  }
  domain: {
    shape: sql_table
    style: {
      stroke-dash: 5
    }
  }
  composites: {
    grid-rows: 2
    grid-columns: 2
  }
  composite: {
    shape: sql_table
    style: {
      stroke-dash: 5
    }
  }
}"""

COLLECTIONS = {ENUM: "enums", DOMAIN: "domains", COMPOSITE: "composites"}

# Keys D2 reads as attributes rather than children.
RESERVED_KEYS = {
    "class",
    "classes",
    "constraint",
    "direction",
    "grid-columns",
    "grid-rows",
    "height",
    "icon",
    "label",
    "link",
    "near",
    "shape",
    "style",
    "tooltip",
    "vars",
    "width",
}

_BARE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote(text: str) -> str:
    if _BARE.match(text) and text not in RESERVED_KEYS:
        return text
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def label(model: SchemaModel, schema: str, name: str) -> str:
    if model.is_default_schema(schema):
        return quote(name)
    return quote(f"{schema}.{name}")


def display_type(col_type: str) -> str:
    return col_type.removeprefix("pg_catalog.")


def render_table(model: SchemaModel, table: Table) -> list[str]:
    lines = [f"{label(model, table.schema, table.name)}: {{", "  class: table"]
    for col in table.columns:
        cons: list[str] = []
        if col.primary_key:
            cons.append("PK")
        if col.unique:
            cons.append("UNQ")
        if col.foreign_key is not None:
            cons.append("FK")
        line = f"  {quote(col.name)}: {quote(display_type(col.col_type))}"
        if cons:
            line += f" {{constraint: {quote(' '.join(cons))}}}"
        lines.append(line)
    for idx, constraint in enumerate(table.constraints, 1):
        name = constraint.name or f"check_{idx}"
        lines.append(f"  {quote(name)}: {quote(constraint.description)}")
    lines.append("}")
    return lines


def column_edge(model: SchemaModel, table: Table, src_col: str, fk: ForeignKey, dst_col: str) -> str:
    left = f"{label(model, table.schema, table.name)}.{quote(src_col)}"
    right = label(model, fk.dst_schema, fk.dst_table)
    if dst_col:
        right = f"{right}.{quote(dst_col)}"
    return f"{left} -> {right}"


def render_edges(model: SchemaModel) -> list[str]:
    lines: list[str] = []
    for _, table in model.sorted_tables():
        for col in table.columns:
            fk = col.foreign_key
            if fk is None or not fk.dst_table:
                continue
            dst_col = fk.dst_cols[0] if fk.dst_cols else ""
            lines.append(column_edge(model, table, col.name, fk, dst_col))

    for table, fk in model.resolve_table_foreign_keys():
        if not fk.dst_table:
            continue
        if fk.src_cols and len(fk.src_cols) == len(fk.dst_cols):
            for src_col, dst_col in zip(fk.src_cols, fk.dst_cols):
                lines.append(column_edge(model, table, src_col, fk, dst_col))
        else:
            left = label(model, table.schema, table.name)
            lines.append(f"{left} -> {label(model, fk.dst_schema, fk.dst_table)}")
    return lines


def render_views(model: SchemaModel) -> list[str]:
    if not model.views:
        return []
    lines = ["views: {", "  class: views"]
    for _, view in model.sorted_views():
        lines.append(f"  {label(model, view.schema, view.name)}: {{")
        lines.append("    class: view")
        for col in view.columns:
            typ = "" if col.col_type == UNKNOWN_TYPE else col.col_type
            lines.append(f"    {quote(col.name)}: {quote(typ)}")
        lines.append("  }")
    lines.append("}")
    return lines


def render_custom_type_body(ct: CustomType) -> list[str]:
    body = [f"class: {ct.kind}"]
    if ct.kind == ENUM:
        body.extend(f"{quote(value)}: \"\"" for value in ct.values)
    elif ct.kind == DOMAIN:
        body.append(f"base_type: {quote(display_type(ct.base_type))}")
        if ct.check:
            body.append(f"constraints: {quote(ct.check)}")
        if ct.not_null:
            body.append('not_null: "NOT NULL"')
        if ct.collation:
            body.append(f"collation: {quote(ct.collation)}")
    else:
        body.extend(f"{quote(f.name)}: {quote(display_type(f.col_type))}" for f in ct.fields)
    return body


def render_custom_types(model: SchemaModel) -> list[str]:
    lines: list[str] = []
    for kind in (ENUM, DOMAIN, COMPOSITE):
        collection = model.type_collection(kind)
        if not collection:
            continue
        lines.append(f"{COLLECTIONS[kind]}: {{")
        lines.append(f"  class: {COLLECTIONS[kind]}")
        for k in sorted(collection):
            ct = collection[k]
            lines.append(f"  {label(model, ct.schema, ct.name)}: {{")
            lines.extend(f"    {line}" for line in render_custom_type_body(ct))
            lines.append("  }")
        lines.append("}")
    return lines


def render_d2(model: SchemaModel) -> str:
    lines = [CLASSES_SECTION, ""]
    for _, table in model.sorted_tables():
        lines.extend(render_table(model, table))
        lines.append("")

    edges = render_edges(model)
    if edges:
        lines.extend(edges)
        lines.append("")

    for section in (render_views(model), render_custom_types(model)):
        if section:
            lines.extend(section)
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def model_to_dict(model: SchemaModel) -> dict:
    def collection(items: dict) -> dict:
        return {k: dataclasses.asdict(items[k]) for k in sorted(items)}

    return {
        "default_schema": model.default_schema,
        "tables": collection(model.tables),
        "table_level_foreign_keys": [dataclasses.asdict(fk) for fk in model.table_level_foreign_keys],
        "views": collection(model.views),
        "enums": collection(model.enums),
        "domains": collection(model.domains),
        "composites": collection(model.composites),
    }


def dump_model_yaml(model: SchemaModel) -> str:
    return yaml.safe_dump(model_to_dict(model), sort_keys=False, default_flow_style=False)
