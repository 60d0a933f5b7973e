"""
Keyword search across courses and documents.

Results are grouped by type, never ranked: course hits, then chapter hits,
then resource hits, each group in catalog insertion order. Chapter hits are
derived from matching documents, one per distinct (course, chapter label)
pair. The merged list is capped, then paginated with a fixed page size.
"""
from __future__ import annotations

import math

from .catalog import Course, Document, SubUnit
from .catalog_store import CatalogStore
from .config import SEARCH_MAX_RESULTS, SEARCH_MIN_KEYWORD_LENGTH, SEARCH_PAGE_SIZE
from .observability import get_logger
from .results import (
    ChapterHit,
    CourseHit,
    MenuItem,
    NoActiveSearch,
    NoResults,
    ResourceHit,
    SearchFilter,
    SearchOutcome,
    SearchPage,
    SearchResultItem,
    TooManyResults,
    ValidationFailure,
    ValidationReason,
)
from .session_store import ConversationId, SearchSessionStore
from .tokens import ActionTokenCodec, TokenTooLongError, Verb, default_codec

logger = get_logger(__name__)

FILTER_LABELS = {
    SearchFilter.ALL: "All",
    SearchFilter.COURSES: "Courses",
    SearchFilter.CHAPTERS: "Chapters",
    SearchFilter.RESOURCES: "Resources",
}


class SearchEngine:
    def __init__(
        self,
        catalog: CatalogStore,
        sessions: SearchSessionStore,
        codec: ActionTokenCodec = default_codec,
        *,
        page_size: int = SEARCH_PAGE_SIZE,
        max_results: int = SEARCH_MAX_RESULTS,
        min_keyword_length: int = SEARCH_MIN_KEYWORD_LENGTH,
    ):
        self.catalog = catalog
        self.sessions = sessions
        self.codec = codec
        self.page_size = max(1, int(page_size))
        self.max_results = max(1, int(max_results))
        self.min_keyword_length = max(1, int(min_keyword_length))

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def search(
        self,
        conversation_id: ConversationId,
        keyword: str,
        filter: SearchFilter | str = SearchFilter.ALL,
        page: int = 0,
    ) -> SearchOutcome:
        """Runs a fresh search; the keyword is trimmed once here."""
        return self._run(conversation_id, str(keyword or "").strip(), filter, page)

    def switch_filter(self, conversation_id: ConversationId, keyword: str, filter: SearchFilter | str) -> SearchOutcome:
        """Re-runs `keyword` verbatim under another filter, from the first page."""
        return self._run(conversation_id, keyword, filter, 0)

    def goto_page(self, conversation_id: ConversationId, keyword: str, filter: SearchFilter | str, page: int) -> SearchOutcome:
        return self._run(conversation_id, keyword, filter, page)

    def resume(self, conversation_id: ConversationId) -> SearchOutcome:
        """Re-runs the last recorded search for the conversation."""
        session = self.sessions.get(conversation_id)
        if session is None or not session.keyword:
            return NoActiveSearch()
        return self._run(conversation_id, session.keyword, session.filter, session.page)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def max_page_index(self) -> int:
        return max(0, math.ceil(self.max_results / self.page_size) - 1)

    def validate_keyword(self, keyword: str) -> ValidationFailure | None:
        if len(keyword) < self.min_keyword_length:
            return ValidationFailure(
                reason=ValidationReason.TOO_SHORT,
                message=f"Enter at least {self.min_keyword_length} characters to search.",
                limit=self.min_keyword_length,
            )
        # The longest token a result page can carry must still fit the transport.
        widest_filter = max((f.value for f in SearchFilter), key=len)
        if not self.codec.fits(Verb.SEARCH_PAGE, (self.max_page_index(), widest_filter), keyword):
            return ValidationFailure(
                reason=ValidationReason.TOO_LONG,
                message="Search term is too long.",
                limit=self.codec.max_bytes,
            )
        return None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(self, conversation_id: ConversationId, keyword: str, filter: SearchFilter | str, page: int) -> SearchOutcome:
        search_filter = SearchFilter(filter)
        failure = self.validate_keyword(keyword)
        if failure is not None:
            logger.info(
                "search_rejected",
                conversation_id=str(conversation_id),
                reason=failure.reason.value,
                keyword_length=len(keyword),
            )
            return failure

        courses, chapters, resources = self.collect(keyword, search_filter)
        merged: list[SearchResultItem] = [*courses, *chapters, *resources]
        total = len(merged)

        if total > self.max_results:
            logger.info("search_too_many_results", keyword=keyword, filter=search_filter.value, total=total)
            return TooManyResults(keyword=keyword, filter=search_filter, total=total, limit=self.max_results)
        if total == 0:
            logger.info("search_no_results", keyword=keyword, filter=search_filter.value)
            return NoResults(keyword=keyword, filter=search_filter, filter_items=self._filter_items(keyword))

        total_pages = math.ceil(total / self.page_size)
        # A page past the end is reported as requested, with no items.
        page = max(0, int(page))
        start = min(page * self.page_size, total)
        end = min(start + self.page_size, total)

        previous_token = None
        next_token = None
        if page > 0:
            previous_token = self.codec.encode(Verb.SEARCH_PAGE, (min(page - 1, total_pages - 1), search_filter), keyword)
        if end < total:
            next_token = self.codec.encode(Verb.SEARCH_PAGE, (page + 1, search_filter), keyword)

        self.sessions.record(conversation_id, keyword, search_filter.value, page)
        logger.info(
            "search_executed",
            conversation_id=str(conversation_id),
            keyword=keyword,
            filter=search_filter.value,
            page=page,
            total=total,
        )
        return SearchPage(
            keyword=keyword,
            filter=search_filter,
            page=page,
            total_pages=total_pages,
            total=total,
            counts={"courses": len(courses), "chapters": len(chapters), "resources": len(resources)},
            items=tuple(merged[start:end]),
            filter_items=self._filter_items(keyword),
            previous_token=previous_token,
            next_token=next_token,
        )

    def collect(
        self, keyword: str, search_filter: SearchFilter
    ) -> tuple[list[CourseHit], list[ChapterHit], list[ResourceHit]]:
        """Builds the three hit groups for a validated keyword."""
        # One past the cap is enough to detect overflow.
        cap = self.max_results + 1
        course_hits: list[CourseHit] = []
        chapter_hits: list[ChapterHit] = []
        resource_hits: list[ResourceHit] = []
        courses_by_id: dict[str, Course | None] = {}
        sub_units_by_id: dict[str, SubUnit | None] = {}

        def _course(course_id: str) -> Course | None:
            if course_id not in courses_by_id:
                courses_by_id[course_id] = self.catalog.get_course(course_id)
            return courses_by_id[course_id]

        def _sub_unit(sub_unit_id: str) -> SubUnit | None:
            if sub_unit_id not in sub_units_by_id:
                sub_units_by_id[sub_unit_id] = self.catalog.get_sub_unit(sub_unit_id)
            return sub_units_by_id[sub_unit_id]

        if search_filter.includes_courses:
            for course in self.catalog.search_courses(keyword, limit=cap):
                courses_by_id[course.id] = course
                unit = _sub_unit(course.sub_unit_id)
                course_hits.append(
                    CourseHit(
                        label=course.display_name,
                        token=self._hit_token(Verb.SEARCH_COURSE, course.id),
                        sort_key=len(course_hits),
                        course_id=course.id,
                        context=unit.name if unit else "",
                    )
                )

        if search_filter.includes_chapters or search_filter.includes_resources:
            # Chapter derivation needs every match; only cap when resources are listed.
            limit = cap if search_filter.includes_resources else None
            documents: list[Document] = self.catalog.search_documents(keyword, limit=limit)
            seen_chapters: set[tuple[str, str]] = set()
            for doc in documents:
                if search_filter.includes_resources:
                    resource_hits.append(
                        ResourceHit(
                            label=doc.title,
                            token=self._hit_token(Verb.DOCUMENT, doc.id),
                            sort_key=len(resource_hits),
                            document_id=doc.id,
                            context=doc.chapter,
                        )
                    )
                if not search_filter.includes_chapters or not doc.chapter.strip():
                    continue
                key = (doc.course_id, doc.chapter)
                if key in seen_chapters:
                    continue
                seen_chapters.add(key)
                course = _course(doc.course_id)
                # The first matching document anchors the chapter hit.
                chapter_hits.append(
                    ChapterHit(
                        label=doc.chapter,
                        token=self._hit_token(Verb.SEARCH_CHAPTER, doc.id),
                        sort_key=len(chapter_hits),
                        course_id=doc.course_id,
                        chapter=doc.chapter,
                        document_id=doc.id,
                        context=course.code if course else "",
                    )
                )

        return course_hits, chapter_hits, resource_hits

    def _hit_token(self, verb: Verb, node_id: str) -> str | None:
        """
        Hits are never dropped: one whose token cannot fit the transport is
        kept with no token, so counts and totals still include it.
        """
        try:
            return self.codec.encode(verb, (node_id,))
        except TokenTooLongError as exc:
            logger.warning("search_hit_token_too_long", verb=verb.value, node_id=node_id, size=exc.size, limit=exc.limit)
            return None

    def _filter_items(self, keyword: str) -> tuple[MenuItem, ...]:
        return tuple(
            MenuItem(label=FILTER_LABELS[f], token=self.codec.encode(Verb.SEARCH_FILTER, (f,), keyword))
            for f in SearchFilter
        )
