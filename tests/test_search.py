import unittest

from catalog_fixtures import (
    COURSE_OID,
    DOCUMENT_OID,
    LONG_CHAPTER,
    CountingCatalogStore,
    object_id_store,
    sample_snapshot,
    sample_store,
)

from coursenav.catalog import Course, Document, DocumentKind
from coursenav.catalog_store import InMemoryCatalogStore
from coursenav.navigation import NavigationEngine
from coursenav.results import (
    ChapterHit,
    CourseHit,
    NavigationPage,
    NoActiveSearch,
    NoResults,
    ResourceHit,
    SearchFilter,
    SearchPage,
    TooManyResults,
    ValidationFailure,
    ValidationReason,
)
from coursenav.search import SearchEngine
from coursenav.session_store import SearchSessionStore, SessionStore
from coursenav.tokens import Verb, default_codec


def _bulk_store(doc_count: int) -> InMemoryCatalogStore:
    snapshot = sample_snapshot()
    snapshot.courses.append(Course("lab", "cs", "LAB100", "Lab Course", 1, 2))
    for i in range(doc_count):
        snapshot.documents.append(
            Document(f"lab-{i:03d}", "lab", f"Week {i % 4}", f"Worksheet {i:03d}", DocumentKind.PDF)
        )
    return InMemoryCatalogStore(snapshot)


class TestSearchEngine(unittest.TestCase):
    def setUp(self):
        self.sessions = SearchSessionStore()
        self.engine = SearchEngine(sample_store(), self.sessions)

    def test_course_code_match(self):
        page = self.engine.search("c1", "bio", SearchFilter.ALL, 0)
        self.assertIsInstance(page, SearchPage)
        course_hits = [hit for hit in page.items if isinstance(hit, CourseHit)]
        self.assertEqual([hit.course_id for hit in course_hits], ["bio101"])
        self.assertEqual(course_hits[0].context, "Life Sciences")
        self.assertEqual(default_codec.decode(course_hits[0].token).verb, Verb.SEARCH_COURSE)

    def test_identical_search_is_deterministic(self):
        first = self.engine.search("c1", "bio", SearchFilter.ALL, 0)
        second = self.engine.search("c2", "bio", SearchFilter.ALL, 0)
        self.assertEqual(first, second)
        self.assertEqual(first.to_dict(), second.to_dict())

    def test_matching_is_case_insensitive_and_trimmed(self):
        page = self.engine.search("c1", "  INTRO  ")
        self.assertEqual(page.keyword, "INTRO")
        labels = [hit.label for hit in page.items]
        self.assertIn("CS101 – Introduction to Programming", labels)
        self.assertIn("Intro Slides", labels)

    def test_chapter_hits_are_deduplicated(self):
        page = self.engine.search("c1", "Midterm", SearchFilter.ALL, 0)
        chapters = [hit for hit in page.items if isinstance(hit, ChapterHit)]
        resources = [hit for hit in page.items if isinstance(hit, ResourceHit)]
        self.assertEqual(len(chapters), 1)
        self.assertEqual(len(resources), 3)
        self.assertEqual(page.counts, {"courses": 0, "chapters": 1, "resources": 3})
        self.assertEqual(chapters[0].context, "CS101")
        self.assertEqual(chapters[0].document_id, "cs101-mid-1")
        decoded = default_codec.decode(chapters[0].token)
        self.assertEqual((decoded.verb, decoded.args, decoded.tail), (Verb.SEARCH_CHAPTER, ("cs101-mid-1",), None))

    def test_groups_are_ordered_courses_chapters_resources(self):
        # BIO101's description, the "Cells" chapter and "Cell Structure" all match.
        page = self.engine.search("c1", "cell", SearchFilter.ALL, 0)
        self.assertEqual([hit.kind for hit in page.items], ["course", "chapter", "resource"])
        self.assertEqual([hit.sort_key for hit in page.items], [0, 0, 0])

    def test_filter_limits_groups(self):
        page = self.engine.search("c1", "Midterm", SearchFilter.RESOURCES, 0)
        self.assertEqual({hit.kind for hit in page.items}, {"resource"})
        page = self.engine.search("c1", "Midterm", SearchFilter.CHAPTERS, 0)
        self.assertEqual([hit.kind for hit in page.items], ["chapter"])
        outcome = self.engine.search("c1", "Midterm", SearchFilter.COURSES, 0)
        self.assertIsInstance(outcome, NoResults)
        self.assertEqual(len(outcome.filter_items), 4)

    def test_short_keyword_rejected_before_catalog_access(self):
        counting = CountingCatalogStore(sample_store())
        engine = SearchEngine(counting, SearchSessionStore())
        outcome = engine.search("c1", "ab")
        self.assertIsInstance(outcome, ValidationFailure)
        self.assertEqual(outcome.reason, ValidationReason.TOO_SHORT)
        self.assertEqual(counting.calls, [])

    def test_keyword_too_long_for_tokens_is_rejected(self):
        counting = CountingCatalogStore(sample_store())
        engine = SearchEngine(counting, SearchSessionStore())
        outcome = engine.search("c1", "x" * 60)
        self.assertIsInstance(outcome, ValidationFailure)
        self.assertEqual(outcome.reason, ValidationReason.TOO_LONG)
        self.assertEqual(counting.calls, [])

    def test_no_results(self):
        outcome = self.engine.search("c1", "quantum")
        self.assertIsInstance(outcome, NoResults)
        self.assertIsNone(self.sessions.get("c1"))

    def test_pagination_covers_every_result_once(self):
        engine = SearchEngine(_bulk_store(23), SearchSessionStore(), page_size=5)
        first = engine.search("c1", "worksheet", SearchFilter.RESOURCES, 0)
        self.assertEqual(first.total, 23)
        self.assertEqual(first.total_pages, 5)
        self.assertIsNone(first.previous_token)

        seen = []
        for page_index in range(first.total_pages):
            page = engine.goto_page("c1", "worksheet", SearchFilter.RESOURCES, page_index)
            self.assertLessEqual(len(page.items), 5)
            seen.extend(hit.label for hit in page.items)
        self.assertEqual(len(seen), 23)
        self.assertEqual(len(set(seen)), 23)
        self.assertEqual(seen, sorted(seen))

        last = engine.goto_page("c1", "worksheet", SearchFilter.RESOURCES, 4)
        self.assertEqual(len(last.items), 3)
        self.assertIsNone(last.next_token)
        decoded = default_codec.decode(last.previous_token)
        self.assertEqual(decoded.args, (3, "resources"))
        self.assertEqual(decoded.tail, "worksheet")

    def test_page_past_end_is_empty_and_reported_as_requested(self):
        engine = SearchEngine(_bulk_store(7), SearchSessionStore(), page_size=5)
        page = engine.goto_page("c1", "worksheet", SearchFilter.RESOURCES, 5)
        self.assertIsInstance(page, SearchPage)
        self.assertEqual(page.page, 5)
        self.assertEqual(page.items, ())
        self.assertEqual((page.total, page.total_pages), (7, 2))
        self.assertIsNone(page.next_token)
        # Previous leads back to the last real page.
        self.assertEqual(default_codec.decode(page.previous_token).args, (1, "resources"))

    def test_too_many_results(self):
        engine = SearchEngine(_bulk_store(12), SearchSessionStore(), page_size=5, max_results=10)
        outcome = engine.search("c1", "worksheet", SearchFilter.RESOURCES)
        self.assertIsInstance(outcome, TooManyResults)
        self.assertEqual(outcome.limit, 10)
        self.assertGreater(outcome.total, 10)

    def test_switch_filter_keeps_keyword_and_resets_page(self):
        engine = SearchEngine(_bulk_store(12), SearchSessionStore(), page_size=5)
        engine.goto_page("c1", "worksheet", SearchFilter.ALL, 2)
        page = engine.switch_filter("c1", "worksheet", SearchFilter.RESOURCES)
        self.assertEqual(page.keyword, "worksheet")
        self.assertEqual(page.page, 0)
        self.assertEqual(page.filter, SearchFilter.RESOURCES)
        for item in page.filter_items:
            self.assertEqual(default_codec.decode(item.token).tail, "worksheet")

    def test_switch_filter_keeps_special_characters(self):
        keyword = "Intro: é/100%"
        outcome = self.engine.search("c1", keyword, SearchFilter.ALL)
        courses_token = next(item.token for item in outcome.filter_items if item.label == "Courses")
        decoded = default_codec.decode(courses_token)
        self.assertEqual(decoded.tail, keyword)
        switched = self.engine.switch_filter("c1", decoded.tail, decoded.args[0])
        self.assertEqual(switched.keyword, keyword)
        self.assertEqual(switched.filter, SearchFilter.COURSES)

    def test_resume_reruns_last_recorded_search(self):
        self.assertIsInstance(self.engine.resume("c1"), NoActiveSearch)
        self.engine.search("c1", "Midterm", SearchFilter.RESOURCES, 0)
        self.engine.search("c1", "quantum")
        resumed = self.engine.resume("c1")
        self.assertIsInstance(resumed, SearchPage)
        self.assertEqual((resumed.keyword, resumed.filter), ("Midterm", SearchFilter.RESOURCES))


class TestSearchHitsAreNeverDropped(unittest.TestCase):
    def test_long_chapter_label_with_object_ids(self):
        store = object_id_store()
        page = SearchEngine(store, SearchSessionStore()).search("c1", "scheduling", SearchFilter.ALL, 0)
        self.assertIsInstance(page, SearchPage)
        self.assertEqual(page.counts, {"courses": 0, "chapters": 1, "resources": 1})
        self.assertEqual(page.total, 2)

        chapter = page.items[0]
        self.assertIsInstance(chapter, ChapterHit)
        self.assertEqual((chapter.label, chapter.course_id, chapter.document_id), (LONG_CHAPTER, COURSE_OID, DOCUMENT_OID))
        self.assertLessEqual(len(chapter.token.encode("utf-8")), 64)

        # The hit opens the same chapter the course page lists.
        nav = NavigationEngine(store, SessionStore())
        course_page = nav.open_course_from_search("c1", COURSE_OID)
        self.assertIn(LONG_CHAPTER, [item.label for item in course_page.items])
        decoded = default_codec.decode(chapter.token)
        opened = nav.open_chapter_from_search("c1", decoded.args[0])
        self.assertIsInstance(opened, NavigationPage)
        self.assertEqual(opened.title, LONG_CHAPTER)

    def test_hit_without_fitting_token_still_counts(self):
        snapshot = sample_snapshot()
        long_id = "c" * 60
        snapshot.courses.append(Course(long_id, "cs", "OS999", "Scheduling Theory", 4, 2))
        engine = SearchEngine(InMemoryCatalogStore(snapshot), SearchSessionStore())
        page = engine.search("c1", "scheduling", SearchFilter.COURSES, 0)
        self.assertEqual(page.counts["courses"], 1)
        self.assertEqual(page.total, 1)
        self.assertEqual(page.items[0].course_id, long_id)
        self.assertIsNone(page.items[0].token)
        self.assertIsNone(page.to_dict()["items"][0]["token"])


if __name__ == "__main__":
    unittest.main()
