import itertools
import unittest

from schema_model import COMPOSITE, DOMAIN, ENUM, Column, CustomType, ForeignKey, SchemaModel, Table


class TestUpsertColumn(unittest.TestCase):
    def test_flags_only_ever_get_set(self) -> None:
        declarations = [
            Column(name="a", col_type="int", primary_key=True),
            Column(name="a", col_type="", unique=True),
            Column(name="a", col_type="bigint"),
            Column(name="a", col_type=""),
        ]
        for order in itertools.permutations(declarations):
            table = Table(schema="", name="t")
            for col in order:
                table.upsert_column(Column(**vars(col)))
            (merged,) = table.columns
            self.assertTrue(merged.primary_key)
            self.assertTrue(merged.unique)
            last_type = [c.col_type for c in order if c.col_type][-1]
            self.assertEqual(merged.col_type, last_type)

    def test_foreign_key_replaced_only_by_non_empty(self) -> None:
        fk = ForeignKey(src_cols=["user_id"], dst_schema="", dst_table="users", dst_cols=["id"])
        table = Table(schema="", name="posts")
        table.upsert_column(Column(name="user_id", col_type="int", foreign_key=fk))
        table.upsert_column(Column(name="user_id", col_type="bigint"))
        self.assertIs(table.columns[0].foreign_key, fk)
        self.assertEqual(table.columns[0].col_type, "bigint")

    def test_new_columns_keep_declaration_order(self) -> None:
        table = Table(schema="", name="t")
        for name in ("b", "a", "c"):
            table.upsert_column(Column(name=name, col_type="int"))
        self.assertEqual([c.name for c in table.columns], ["b", "a", "c"])

    def test_remove_column(self) -> None:
        table = Table(schema="", name="t", columns=[Column(name="a"), Column(name="b")])
        table.remove_column("a")
        self.assertEqual([c.name for c in table.columns], ["b"])


class TestQualifiedKey(unittest.TestCase):
    def test_default_schema_keys_like_unqualified(self) -> None:
        model = SchemaModel()
        self.assertEqual(model.key("", "users"), "users")
        self.assertEqual(model.key("public", "users"), "users")
        self.assertEqual(model.key("audit", "users"), "audit.users")

    def test_configured_default_schema(self) -> None:
        model = SchemaModel(default_schema="app")
        self.assertEqual(model.key("app", "users"), "users")
        self.assertEqual(model.key("public", "users"), "public.users")

    def test_ensure_table_is_shared_across_spellings(self) -> None:
        model = SchemaModel()
        first = model.ensure_table("public", "users")
        self.assertIs(model.ensure_table("", "users"), first)
        self.assertEqual(list(model.tables), ["users"])


class TestCustomTypes(unittest.TestCase):
    def test_kinds_do_not_collide(self) -> None:
        model = SchemaModel()
        model.add_custom_type(CustomType(schema="", name="code", kind=ENUM, values=["x"]))
        model.add_custom_type(CustomType(schema="", name="code", kind=DOMAIN, base_type="text"))
        self.assertIn("code", model.enums)
        self.assertIn("code", model.domains)
        self.assertEqual([ct.kind for ct in model.custom_types()], [DOMAIN, ENUM])

    def test_find_custom_type_across_kinds(self) -> None:
        model = SchemaModel()
        model.add_custom_type(CustomType(schema="geo", name="point2", kind=COMPOSITE))
        found = model.find_custom_type("geo", "point2")
        self.assertIsNotNone(found)
        self.assertEqual(found.kind, COMPOSITE)
        self.assertIsNone(model.find_custom_type("", "point2"))


class TestResolveTableForeignKeys(unittest.TestCase):
    @staticmethod
    def _model(table_order: list[str]) -> SchemaModel:
        model = SchemaModel()
        for name in table_order:
            table = model.ensure_table("", name)
            table.upsert_column(Column(name="a", col_type="int"))
            table.upsert_column(Column(name="b", col_type="int"))
        model.ensure_table("", "target").upsert_column(Column(name="x", col_type="int"))
        model.table_level_foreign_keys.append(
            ForeignKey(src_cols=["a", "b"], dst_schema="", dst_table="target", dst_cols=["x", "y"])
        )
        return model

    def test_first_table_in_sorted_key_order_wins(self) -> None:
        for order in (["zeta", "alpha"], ["alpha", "zeta"]):
            resolved = self._model(order).resolve_table_foreign_keys()
            self.assertEqual(len(resolved), 1)
            self.assertEqual(resolved[0][0].name, "alpha")

    def test_unmatched_foreign_key_is_dropped(self) -> None:
        model = SchemaModel()
        model.ensure_table("", "t").upsert_column(Column(name="a", col_type="int"))
        model.table_level_foreign_keys.append(
            ForeignKey(src_cols=["a", "missing"], dst_schema="", dst_table="other", dst_cols=["a", "b"])
        )
        self.assertEqual(model.resolve_table_foreign_keys(), [])

    def test_foreign_keys_resolve_in_discovery_order(self) -> None:
        model = self._model(["alpha"])
        model.table_level_foreign_keys.insert(
            0, ForeignKey(src_cols=["x"], dst_schema="", dst_table="alpha", dst_cols=["a"])
        )
        resolved = model.resolve_table_foreign_keys()
        self.assertEqual([(t.name, fk.dst_table) for t, fk in resolved], [("target", "alpha"), ("alpha", "target")])


if __name__ == "__main__":
    unittest.main()
