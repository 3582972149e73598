import unittest

from beadsync.dependencies import (
    dependency_validation_message,
    extract_dependency_links,
    has_dependency,
    has_dependency_path,
    normalize_dependency_type,
    sanitize_dependency_id,
    validate_dependency_add,
    validate_dependency_add_with_reason,
)
from beadsync.models import DependencyLink, Item


def _item(item_id: str, *deps: str) -> Item:
    return Item(
        id=item_id,
        title=item_id,
        dependencies=[DependencyLink(id=dep, type="blocks") for dep in deps],
    )


class SanitizeDependencyIdTests(unittest.TestCase):
    def test_trims_and_validates_ids(self) -> None:
        self.assertEqual(sanitize_dependency_id(" BD-123 "), "BD-123")
        self.assertEqual(sanitize_dependency_id("feature_1"), "feature_1")
        self.assertEqual(sanitize_dependency_id("with.dot"), "with.dot")
        self.assertIsNone(sanitize_dependency_id(""))
        self.assertIsNone(sanitize_dependency_id("toolong" * 20))
        self.assertIsNone(sanitize_dependency_id("bad spaces in id"))
        self.assertIsNone(sanitize_dependency_id("bad\nline"))
        self.assertIsNone(sanitize_dependency_id(42))

    def test_normalize_dependency_type_maps_aliases(self) -> None:
        self.assertEqual(normalize_dependency_type("blocks"), "blocks")
        self.assertEqual(normalize_dependency_type("block"), "blocks")
        self.assertEqual(normalize_dependency_type("parent_child"), "parent-child")
        self.assertEqual(normalize_dependency_type("parentChild"), "parent-child")
        self.assertEqual(normalize_dependency_type("related"), "related")
        self.assertEqual(normalize_dependency_type(None), "related")

    def test_extract_links_reads_bd_dependency_shapes(self) -> None:
        raw = {
            "dependencies": [
                {"issue_id": "bd-1", "depends_on_id": "bd-2", "type": "blocks"},
                {"id": "bd-3", "dep_type": "parent_child"},
                {"depends_on_id": "bad id"},
                "garbage",
            ]
        }
        links = extract_dependency_links(raw)
        self.assertEqual([(link.id, link.type) for link in links], [("bd-2", "blocks"), ("bd-3", "parent-child")])
        self.assertEqual(extract_dependency_links(None), [])


class DependencyGraphTests(unittest.TestCase):
    def setUp(self) -> None:
        # A -> B -> C, D isolated
        self.items = [_item("A", "B"), _item("B", "C"), _item("C"), _item("D")]

    def test_has_dependency_checks_direct_edges_only(self) -> None:
        self.assertTrue(has_dependency(self.items, "A", "B"))
        self.assertFalse(has_dependency(self.items, "A", "C"))
        self.assertFalse(has_dependency(self.items, "B", "A"))

    def test_has_dependency_path_follows_indirect_edges(self) -> None:
        self.assertTrue(has_dependency_path(self.items, "A", "C"))
        self.assertFalse(has_dependency_path(self.items, "C", "A"))
        self.assertFalse(has_dependency_path(self.items, "D", "A"))

    def test_path_search_terminates_on_existing_cycles(self) -> None:
        items = [_item("X", "Y"), _item("Y", "X"), _item("Z")]
        self.assertFalse(has_dependency_path(items, "X", "Z"))

    def test_rejects_self_edges(self) -> None:
        for item_id in ("A", "D", "unknown-1"):
            result = validate_dependency_add_with_reason(self.items, item_id, item_id)
            self.assertEqual(result.reason, "self")
            self.assertFalse(result.ok)

    def test_rejects_existing_edges_as_duplicates(self) -> None:
        for item in self.items:
            for dep_id in item.dependency_ids:
                result = validate_dependency_add_with_reason(self.items, item.id, dep_id)
                self.assertEqual(result.reason, "duplicate")

    def test_rejects_direct_and_transitive_cycles(self) -> None:
        self.assertEqual(validate_dependency_add_with_reason(self.items, "B", "A").reason, "cycle")
        self.assertEqual(validate_dependency_add_with_reason(self.items, "C", "A").reason, "cycle")
        self.assertEqual(validate_dependency_add_with_reason(self.items, "C", "B").reason, "cycle")

    def test_accepts_edges_that_keep_the_graph_acyclic(self) -> None:
        self.assertTrue(validate_dependency_add_with_reason(self.items, "A", "C").ok)
        self.assertTrue(validate_dependency_add_with_reason(self.items, "D", "A").ok)
        self.assertTrue(validate_dependency_add_with_reason(self.items, "A", "missing").ok)

    def test_rejects_missing_and_invalid_ids(self) -> None:
        self.assertEqual(validate_dependency_add_with_reason(self.items, None, "A").reason, "missing_source")
        self.assertEqual(validate_dependency_add_with_reason(self.items, "A", "").reason, "missing_target")
        self.assertEqual(validate_dependency_add_with_reason(self.items, "a b", "A").reason, "invalid_source")
        self.assertEqual(validate_dependency_add_with_reason(self.items, "A", "x;y").reason, "invalid_target")

    def test_validation_never_mutates_items(self) -> None:
        before = [item.model_copy(deep=True) for item in self.items]
        validate_dependency_add_with_reason(self.items, "C", "A")
        validate_dependency_add_with_reason(self.items, "D", "A")
        self.assertEqual(self.items, before)

    def test_messages(self) -> None:
        self.assertIn("the same issue", validate_dependency_add(self.items, "A", "A"))
        self.assertIn("already exists", validate_dependency_add(self.items, "A", "B"))
        self.assertIn("cycle", validate_dependency_add(self.items, "C", "A"))
        self.assertIsNone(validate_dependency_add(self.items, "D", "C"))
        self.assertEqual(dependency_validation_message(None), "Cannot add this dependency.")


if __name__ == "__main__":
    unittest.main()
