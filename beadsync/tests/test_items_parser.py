import json
import tempfile
import unittest
from pathlib import Path

from beadsync.parsers.items import (
    extract_items,
    filter_items_by_query,
    natural_sort_key,
    normalize_item,
    normalize_items,
    parse_json_lines,
    parse_list_output,
    read_items_document,
    sort_items,
)


class NormalizeItemTests(unittest.TestCase):
    def test_maps_bd_issue_fields(self) -> None:
        item = normalize_item(
            {
                "id": "bd-7",
                "title": "Fix sync",
                "status": "in_progress",
                "priority": "2",
                "labels": "ui, backend, ui",
                "assignee": {"name": "sam"},
                "updated_at": "2026-03-01T10:00:00Z",
                "issue_type": "bug",
                "external_ref": "JIRA-12:Upstream ticket",
                "dependencies": [
                    {"issue_id": "bd-7", "depends_on_id": "bd-1", "type": "blocks"},
                    {"issue_id": "bd-7", "depends_on_id": "bd-2", "type": "blocks"},
                    {"issue_id": "bd-7", "depends_on_id": "epic-1", "type": "parent-child"},
                ],
            }
        )
        self.assertEqual(item.id, "bd-7")
        self.assertEqual(item.priority, 2)
        self.assertEqual(item.labels, ["ui", "backend"])
        self.assertEqual(item.assignee, "sam")
        self.assertEqual(item.inProgressSince, "2026-03-01T10:00:00Z")
        self.assertEqual(item.issueType, "bug")
        self.assertEqual(item.blockingDepsCount, 2)
        self.assertEqual(item.parentId, "epic-1")
        self.assertEqual(item.dependency_ids, ["bd-1", "bd-2", "epic-1"])
        self.assertEqual(item.externalReferenceId, "JIRA-12")
        self.assertEqual(item.externalReferenceDescription, "Upstream ticket")

    def test_falls_back_for_missing_fields(self) -> None:
        item = normalize_item({"name": "Untitled", "state": "open"}, index=3)
        self.assertEqual(item.id, "bead-3")
        self.assertEqual(item.title, "Untitled")
        self.assertIsNone(item.inProgressSince)
        self.assertIsNone(item.priority)

        bare = normalize_item("not a dict", index=1)
        self.assertEqual((bare.id, bare.title), ("bead-1", "bead-1"))

    def test_boolean_priority_is_ignored(self) -> None:
        self.assertIsNone(normalize_item({"id": "x", "priority": True}).priority)


class NaturalOrderTests(unittest.TestCase):
    def test_numeric_segments_compare_numerically(self) -> None:
        ids = ["bd-10", "bd-2", "bd-1", "bd-2a", "abc"]
        self.assertEqual(sorted(ids, key=natural_sort_key), ["abc", "bd-1", "bd-2", "bd-2a", "bd-10"])

    def test_sort_items_orders_by_id(self) -> None:
        items = normalize_items([{"id": "B10"}, {"id": "B2"}, {"id": "A1"}])
        self.assertEqual([item.id for item in sort_items(items)], ["A1", "B2", "B10"])


class ListOutputTests(unittest.TestCase):
    def test_empty_and_null_mean_no_items(self) -> None:
        for stdout in ("", "   ", "null", "[]"):
            self.assertEqual(parse_list_output(stdout), [], stdout)

    def test_accepts_array_and_wrapped_shapes(self) -> None:
        self.assertEqual(parse_list_output('[{"id": "a"}]'), [{"id": "a"}])
        self.assertEqual(parse_list_output('{"issues": [{"id": "b"}]}'), [{"id": "b"}])
        self.assertEqual(extract_items({"project": {"beads": [1]}}), [1])
        self.assertIsNone(extract_items({"other": []}))

    def test_rejects_invalid_output(self) -> None:
        with self.assertRaises(ValueError):
            parse_list_output("{broken")
        with self.assertRaises(ValueError):
            parse_list_output('{"count": 3}')

    def test_parse_json_lines_skips_blank_lines(self) -> None:
        self.assertEqual(parse_json_lines('{"id": "a"}\n\n{"id": "b"}\n'), [{"id": "a"}, {"id": "b"}])


class ReadItemsDocumentTests(unittest.TestCase):
    def test_reads_jsonl_data_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "issues.jsonl"
            path.write_text(
                "\n".join(json.dumps(entry) for entry in ({"id": "bd-10", "title": "Ten"}, {"id": "bd-9", "title": "Nine"})),
                encoding="utf-8",
            )
            document = read_items_document(path)
        self.assertEqual([item.id for item in document.items], ["bd-9", "bd-10"])
        self.assertEqual(document.watchPaths, [str(path)])

    def test_reads_json_document_with_beads_array(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "beads.json"
            path.write_text(json.dumps({"beads": [{"id": "x-1", "title": "One"}]}), encoding="utf-8")
            document = read_items_document(path)
        self.assertEqual([item.title for item in document.items], ["One"])

    def test_json_document_without_beads_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "beads.json"
            path.write_text('{"nothing": true}', encoding="utf-8")
            with self.assertRaises(ValueError):
                read_items_document(path)


class FilterItemsTests(unittest.TestCase):
    def test_matches_across_visible_fields(self) -> None:
        items = normalize_items(
            [
                {"id": "bd-1", "title": "Login page", "labels": ["frontend"]},
                {"id": "bd-2", "title": "Sync worker", "notes": "uses the LOGIN token"},
                {"id": "bd-3", "title": "Docs", "assignee": "ana"},
            ]
        )
        self.assertEqual([i.id for i in filter_items_by_query(items, "login")], ["bd-1", "bd-2"])
        self.assertEqual([i.id for i in filter_items_by_query(items, "FRONTEND")], ["bd-1"])
        self.assertEqual([i.id for i in filter_items_by_query(items, "ana")], ["bd-3"])
        self.assertEqual(filter_items_by_query(items, ""), items)


if __name__ == "__main__":
    unittest.main()
