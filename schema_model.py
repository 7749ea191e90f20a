"""In-memory schema model built up by replaying migration DDL."""

from __future__ import annotations

import dataclasses
import logging
from typing import Iterator

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "public"

ENUM = "enum"
DOMAIN = "domain"
COMPOSITE = "composite"

UNKNOWN_TYPE = "unknown"


@dataclasses.dataclass
class ForeignKey:
    src_cols: list[str]
    dst_schema: str
    dst_table: str
    dst_cols: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Column:
    name: str
    col_type: str = ""
    primary_key: bool = False
    unique: bool = False
    foreign_key: ForeignKey | None = None


@dataclasses.dataclass
class TableConstraint:
    name: str
    kind: str
    description: str


@dataclasses.dataclass
class Table:
    schema: str
    name: str
    columns: list[Column] = dataclasses.field(default_factory=list)
    constraints: list[TableConstraint] = dataclasses.field(default_factory=list)

    def column(self, name: str) -> Column | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def upsert_column(self, col: Column) -> Column:
        """Merge ``col`` into an existing column of the same name, or append it.

        Constraint flags only ever get set here. Type and foreign key are
        replaced only when the incoming value is non-empty.
        """
        existing = self.column(col.name)
        if existing is None:
            self.columns.append(col)
            return col
        if col.col_type:
            existing.col_type = col.col_type
        existing.primary_key = existing.primary_key or col.primary_key
        existing.unique = existing.unique or col.unique
        if col.foreign_key is not None:
            existing.foreign_key = col.foreign_key
        return existing

    def remove_column(self, name: str) -> None:
        self.columns = [c for c in self.columns if c.name != name]

    def mark_primary_key(self, names: list[str]) -> None:
        for col in self.columns:
            if col.name in names:
                col.primary_key = True

    def mark_unique(self, names: list[str]) -> None:
        for col in self.columns:
            if col.name in names:
                col.unique = True

    def has_columns(self, names: list[str]) -> bool:
        have = {c.name for c in self.columns}
        return all(name in have for name in names)


@dataclasses.dataclass
class View:
    schema: str
    name: str
    columns: list[Column] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class CustomType:
    schema: str
    name: str
    kind: str
    values: list[str] = dataclasses.field(default_factory=list)
    base_type: str = ""
    check: str = ""
    not_null: bool = False
    collation: str = ""
    fields: list[Column] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class SchemaModel:
    default_schema: str = DEFAULT_SCHEMA
    tables: dict[str, Table] = dataclasses.field(default_factory=dict)
    table_level_foreign_keys: list[ForeignKey] = dataclasses.field(default_factory=list)
    views: dict[str, View] = dataclasses.field(default_factory=dict)
    enums: dict[str, CustomType] = dataclasses.field(default_factory=dict)
    domains: dict[str, CustomType] = dataclasses.field(default_factory=dict)
    composites: dict[str, CustomType] = dataclasses.field(default_factory=dict)

    def key(self, schema: str, name: str) -> str:
        """Qualified key for an object; the default schema keys like no schema at all."""
        if not schema or schema == self.default_schema:
            return name
        return f"{schema}.{name}"

    def is_default_schema(self, schema: str) -> bool:
        return not schema or schema == self.default_schema

    def ensure_table(self, schema: str, name: str) -> Table:
        k = self.key(schema, name)
        table = self.tables.get(k)
        if table is None:
            table = Table(schema=schema, name=name)
            self.tables[k] = table
        return table

    def find_table(self, schema: str, name: str) -> Table | None:
        return self.tables.get(self.key(schema, name))

    def type_collection(self, kind: str) -> dict[str, CustomType]:
        return {ENUM: self.enums, DOMAIN: self.domains, COMPOSITE: self.composites}[kind]

    def add_custom_type(self, ct: CustomType) -> None:
        self.type_collection(ct.kind)[self.key(ct.schema, ct.name)] = ct

    def find_custom_type(self, schema: str, name: str) -> CustomType | None:
        k = self.key(schema, name)
        for collection in (self.enums, self.domains, self.composites):
            if k in collection:
                return collection[k]
        return None

    def custom_types(self) -> list[CustomType]:
        merged: list[tuple[str, str, CustomType]] = []
        for kind in (ENUM, DOMAIN, COMPOSITE):
            for k, ct in self.type_collection(kind).items():
                merged.append((k, kind, ct))
        merged.sort(key=lambda item: (item[0], item[1]))
        return [ct for _, _, ct in merged]

    def sorted_tables(self) -> Iterator[tuple[str, Table]]:
        for k in sorted(self.tables):
            yield k, self.tables[k]

    def sorted_views(self) -> Iterator[tuple[str, View]]:
        for k in sorted(self.views):
            yield k, self.views[k]

    def resolve_table_foreign_keys(self) -> list[tuple[Table, ForeignKey]]:
        """Attach each table-level foreign key to the table that owns its source columns.

        Tables are tried in sorted key order and the first one containing every
        source column wins. Keys with no such table are left out.
        """
        resolved: list[tuple[Table, ForeignKey]] = []
        for fk in self.table_level_foreign_keys:
            for _, table in self.sorted_tables():
                if table.has_columns(fk.src_cols):
                    resolved.append((table, fk))
                    break
            else:
                logger.debug(
                    "no table owns foreign key columns %s -> %s",
                    fk.src_cols,
                    self.key(fk.dst_schema, fk.dst_table),
                )
        return resolved
