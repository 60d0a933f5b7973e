import json
import sqlite3
import tempfile
import unittest
from pathlib import Path

from catalog_fixtures import sample_snapshot

from coursenav.catalog import CatalogLevel, CatalogValidationError, Course, Document, DocumentKind, SubUnit
from coursenav.catalog_store import (
    CatalogSnapshot,
    InMemoryCatalogStore,
    SqliteCatalogStore,
    load_catalog_seed,
)
from coursenav.db_migrations import applied_versions

SAMPLE_SEED = Path(__file__).resolve().parent.parent / "data" / "sample_catalog.json"


class TestCatalogSnapshot(unittest.TestCase):
    def test_duplicate_course_code_rejected(self):
        snapshot = sample_snapshot()
        snapshot.courses.append(Course("cs101b", "cs", "CS101", "Duplicate", 1, 1))
        with self.assertRaises(CatalogValidationError):
            snapshot.validate()

    def test_dangling_parent_rejected(self):
        snapshot = sample_snapshot()
        snapshot.sub_units.append(SubUnit("math", "nowhere", "Mathematics"))
        with self.assertRaises(CatalogValidationError):
            InMemoryCatalogStore(snapshot)

    def test_delimiter_in_id_rejected(self):
        snapshot = sample_snapshot()
        snapshot.sub_units.append(SubUnit("cs:2", "eng", "Colon"))
        with self.assertRaises(CatalogValidationError):
            snapshot.validate()

    def test_course_year_out_of_range(self):
        with self.assertRaises(CatalogValidationError):
            Course("x", "cs", "X1", "Bad", 7, 1)


class TestCatalogSeed(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def test_bundled_seed_loads(self):
        snapshot = load_catalog_seed(SAMPLE_SEED)
        codes = {course.code for course in snapshot.courses}
        self.assertIn("CS101", codes)
        self.assertIn("BIO101", codes)

    def test_invalid_seed_raises_validation_error(self):
        path = Path(self.tmp.name) / "bad.json"
        path.write_text(
            json.dumps({"institutions": [{"id": "u", "name": "U", "sub_units": [
                {"id": "s", "name": "S", "courses": [{"id": "c", "code": "c1", "name": "C", "year": 9, "term": 1}]}
            ]}]}),
            encoding="utf-8",
        )
        with self.assertRaises(CatalogValidationError):
            load_catalog_seed(path)

    def test_unknown_document_kind_rejected(self):
        path = Path(self.tmp.name) / "kind.json"
        path.write_text(
            json.dumps({"institutions": [{"id": "u", "name": "U", "sub_units": [
                {"id": "s", "name": "S", "courses": [{"id": "c", "code": "C1", "name": "C", "year": 1, "term": 1,
                    "documents": [{"id": "d", "title": "Video", "kind": "video"}]}]}
            ]}]}),
            encoding="utf-8",
        )
        with self.assertRaises(CatalogValidationError):
            load_catalog_seed(path)

    def test_unreadable_seed_raises_validation_error(self):
        path = Path(self.tmp.name) / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(CatalogValidationError):
            load_catalog_seed(path)
        with self.assertRaises(CatalogValidationError):
            load_catalog_seed(Path(self.tmp.name) / "missing.json")

    def test_ids_must_fit_action_tokens(self):
        for bad_id in ("a" * 49, "has:colon", "has space"):
            with self.subTest(bad_id=bad_id):
                path = Path(self.tmp.name) / "ids.json"
                path.write_text(
                    json.dumps({"institutions": [{"id": bad_id, "name": "U"}]}),
                    encoding="utf-8",
                )
                with self.assertRaises(CatalogValidationError):
                    load_catalog_seed(path)

    def test_course_codes_are_upper_cased(self):
        path = Path(self.tmp.name) / "seed.json"
        path.write_text(
            json.dumps({"institutions": [{"id": "u", "name": "U", "sub_units": [
                {"id": "s", "name": "S", "courses": [{"id": "c", "code": " ma101 ", "name": "Calculus", "year": 1, "term": 2}]}
            ]}]}),
            encoding="utf-8",
        )
        snapshot = load_catalog_seed(path)
        self.assertEqual(snapshot.courses[0].code, "MA101")
        self.assertEqual(snapshot.courses[0].sub_unit_id, "s")


class TestSqliteCatalogStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db_path = Path(self.tmp.name) / "catalog.sqlite"
        self.store = SqliteCatalogStore(self.db_path)
        self.store.replace_snapshot(sample_snapshot())
        self.memory = InMemoryCatalogStore(sample_snapshot())

    def tearDown(self):
        self.store.close()
        self.tmp.cleanup()

    def test_migrations_recorded(self):
        conn = sqlite3.connect(str(self.db_path))
        try:
            self.assertEqual(applied_versions(conn, "catalog_store"), {1})
        finally:
            conn.close()

    def test_reopen_does_not_reapply_migrations(self):
        self.store.close()
        reopened = SqliteCatalogStore(self.db_path)
        try:
            self.assertFalse(reopened.is_empty())
            self.assertEqual(len(reopened.list_institutions()), 2)
        finally:
            reopened.close()

    def test_empty_store(self):
        other = SqliteCatalogStore(Path(self.tmp.name) / "empty.sqlite")
        try:
            self.assertTrue(other.is_empty())
            self.assertEqual(other.search_courses("bio"), [])
        finally:
            other.close()

    def test_listing_matches_in_memory_store(self):
        self.assertEqual(self.store.list_institutions(), self.memory.list_institutions())
        self.assertEqual(self.store.list_sub_units("eng"), self.memory.list_sub_units("eng"))
        self.assertEqual(self.store.list_courses("cs"), self.memory.list_courses("cs"))
        self.assertEqual(self.store.list_courses("cs", year=1, term=1), self.memory.list_courses("cs", year=1, term=1))
        self.assertEqual(self.store.list_chapters("cs101"), self.memory.list_chapters("cs101"))
        self.assertEqual(self.store.list_documents("cs101"), self.memory.list_documents("cs101"))
        self.assertEqual(
            self.store.list_documents("cs101", chapter="Midterm"),
            self.memory.list_documents("cs101", chapter="Midterm"),
        )

    def test_search_matches_in_memory_store(self):
        for keyword in ("bio", "MIDTERM", "intro", "quantum"):
            with self.subTest(keyword=keyword):
                self.assertEqual(self.store.search_courses(keyword), self.memory.search_courses(keyword))
                self.assertEqual(self.store.search_documents(keyword), self.memory.search_documents(keyword))
        self.assertEqual(len(self.store.search_documents("midterm", limit=2)), 2)

    def test_search_filters_rows_inside_sqlite(self):
        fetched = []
        original_fetch = self.store._fetch

        def recording_fetch(sql, params=()):
            rows = original_fetch(sql, params)
            fetched.append(len(rows))
            return rows

        self.store._fetch = recording_fetch
        self.assertEqual(self.store.search_documents("quantum"), [])
        self.assertEqual([doc.id for doc in self.store.search_documents("midterm")], ["cs101-mid-1", "cs101-mid-2", "cs101-mid-3"])
        self.assertEqual(len(self.store.search_courses("bio", limit=1)), 1)
        # Only matching rows leave the database, and the limit is applied there.
        self.assertEqual(fetched, [0, 3, 1])

    def test_search_folds_non_ascii_case_like_python(self):
        snapshot = sample_snapshot()
        snapshot.documents.append(Document("geo-1", "cs201", "GÉOMÉTRIE", "Straße Maps", DocumentKind.PDF))
        self.store.replace_snapshot(snapshot)
        memory = InMemoryCatalogStore(snapshot)
        for keyword in ("géométrie", "STRASSE", "ÉOM"):
            with self.subTest(keyword=keyword):
                self.assertEqual(self.store.search_documents(keyword), memory.search_documents(keyword))
                self.assertEqual(len(self.store.search_documents(keyword)), 1)

    def test_documents_sorted_by_kind_then_title(self):
        titles = [doc.title for doc in self.store.list_documents("cs101")]
        self.assertEqual(
            titles,
            ["Think Python", "Exam 2022", "Exam 2023", "Control Flow Notes", "Solutions", "Intro Slides"],
        )

    def test_list_children_and_get_node(self):
        self.assertEqual([n.id for n in self.store.list_children(None)], ["eng", "sci"])
        self.assertEqual([n.id for n in self.store.list_children(CatalogLevel.COURSE, "cs101")], ["Chapter 1", "Chapter 2", "Midterm"])
        self.assertEqual(self.store.get_node(CatalogLevel.COURSE, "bio101").code, "BIO101")
        self.assertIsNone(self.store.get_node(CatalogLevel.DOCUMENT, "missing"))
        with self.assertRaises(ValueError):
            self.store.get_node(CatalogLevel.CHAPTER, "Midterm")

    def test_replace_snapshot_swaps_catalog(self):
        self.store.replace_snapshot(CatalogSnapshot())
        self.assertTrue(self.store.is_empty())


if __name__ == "__main__":
    unittest.main()
