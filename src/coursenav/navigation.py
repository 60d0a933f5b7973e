"""
Guided descent through the catalog hierarchy.

institution -> sub-unit -> year -> term -> course -> chapter -> document

Every transition is validated against the conversation's current position:
the selected child must belong to the ancestor already held in the session.
A mismatch, a missing ancestor or an id that no longer resolves yields a
`StaleSession` outcome that offers a restart token.
"""
from __future__ import annotations

import dataclasses
from typing import Any, Sequence

from .catalog import Course, NavLevel, chapter_anchors
from .catalog_store import CatalogStore
from .config import NAV_TERM_COUNT, NAV_YEAR_COUNT
from .library import HistoryStore
from .observability import get_logger
from .results import (
    DirectoryPage,
    DirectorySection,
    DocumentSelection,
    MenuItem,
    NavigationOutcome,
    NavigationPage,
    StaleSession,
)
from .session_store import ConversationId, NavigationSession, Selection, SessionStore
from .tokens import ActionTokenCodec, TokenTooLongError, Verb, default_codec

logger = get_logger(__name__)

BREADCRUMB_SEPARATOR = " → "

LEVEL_VERBS: dict[NavLevel, Verb] = {
    NavLevel.INSTITUTION: Verb.INSTITUTION,
    NavLevel.SUB_UNIT: Verb.SUB_UNIT,
    NavLevel.YEAR: Verb.YEAR,
    NavLevel.TERM: Verb.TERM,
    NavLevel.COURSE: Verb.COURSE,
    NavLevel.CHAPTER: Verb.CHAPTER,
}
VERB_LEVELS: dict[Verb, NavLevel] = {verb: level for level, verb in LEVEL_VERBS.items()}


def format_breadcrumb(session: NavigationSession) -> str:
    """Selected names, top-down, joined with an arrow."""
    return BREADCRUMB_SEPARATOR.join(selection.name for selection in session.path)


def year_label(year: int) -> str:
    return f"Year {year}"


def term_label(term: int) -> str:
    return f"Term {term}"


class NavigationEngine:
    def __init__(
        self,
        catalog: CatalogStore,
        sessions: SessionStore,
        codec: ActionTokenCodec = default_codec,
        *,
        year_count: int = NAV_YEAR_COUNT,
        term_count: int = NAV_TERM_COUNT,
        history: HistoryStore | None = None,
    ):
        self.catalog = catalog
        self.sessions = sessions
        self.history = history
        self.codec = codec
        self.year_count = int(year_count)
        self.term_count = int(term_count)


    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    def _token(self, verb: Verb, args: Sequence[Any] = ()) -> str:
        return self.codec.encode(verb, args)

    def _item(self, label: str, verb: Verb, args: Sequence[Any] = ()) -> MenuItem:
        """A menu item; its token is None when it cannot fit the transport."""
        try:
            return MenuItem(label=label, token=self._token(verb, args))
        except TokenTooLongError as exc:
            logger.warning("menu_item_token_too_long", verb=verb.value, label=label, size=exc.size, limit=exc.limit)
            return MenuItem(label=label, token=None)

    def level_token(self, level: NavLevel, node_id: str) -> str:
        """Token re-selecting an already validated level above the chapter."""
        verb = LEVEL_VERBS[level]
        if level is NavLevel.CHAPTER:
            raise ValueError("chapters are addressed through an anchor document id")
        if level in (NavLevel.YEAR, NavLevel.TERM):
            return self._token(verb, (int(node_id),))
        return self._token(verb, (node_id,))

    def stale(self, conversation_id: ConversationId, reason: str, **fields) -> StaleSession:
        logger.warning("navigation_stale_session", conversation_id=str(conversation_id), reason=reason, **fields)
        return StaleSession(
            message="This menu is out of date. Please start over.",
            restart_token=self._token(Verb.START_OVER),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, conversation_id: ConversationId) -> NavigationPage:
        """Clears the navigation position and lists institutions."""
        self.sessions.clear(conversation_id)
        items = tuple(
            self._item(inst.name, Verb.INSTITUTION, (inst.id,)) for inst in self.catalog.list_institutions()
        )
        return NavigationPage(level="root", title="Institutions", breadcrumb="", items=items)

    def descend(self, conversation_id: ConversationId, level: NavLevel, child_id: str) -> NavigationOutcome:
        """
        Selects `child_id` at `level`. For the chapter level `child_id` is
        the id of a document in that chapter.
        """
        session = self.sessions.get(conversation_id)
        if not session.can_select(level):
            return self.stale(conversation_id, "missing_ancestor", level=level.name, depth=session.depth)

        resolved = self._resolve_child(session, level, str(child_id))
        if isinstance(resolved, str):
            return self.stale(conversation_id, resolved, level=level.name, child_id=str(child_id))
        node_id, name = resolved

        if not self.sessions.update(conversation_id, level, node_id, name):
            return self.stale(conversation_id, "update_rejected", level=level.name)
        # Render what was stored, not the pre-update snapshot.
        updated = self.sessions.get(conversation_id)
        if updated.level is None or updated.level < level:
            return self.stale(conversation_id, "session_lost", level=level.name)
        logger.info(
            "navigation_descend",
            conversation_id=str(conversation_id),
            level=level.name,
            child_id=node_id,
        )
        return self._page(updated)

    def _resolve_child(self, session: NavigationSession, level: NavLevel, child_id: str) -> tuple[str, str] | str:
        """Returns (id, display name) for a valid child, or a stale reason."""
        if level is NavLevel.INSTITUTION:
            inst = self.catalog.get_institution(child_id)
            return (inst.id, inst.name) if inst else "unknown_institution"

        if level is NavLevel.SUB_UNIT:
            unit = self.catalog.get_sub_unit(child_id)
            if unit is None:
                return "unknown_sub_unit"
            if unit.institution_id != session.id_at(NavLevel.INSTITUTION):
                return "parent_mismatch"
            return unit.id, unit.name

        if level in (NavLevel.YEAR, NavLevel.TERM):
            limit = self.year_count if level is NavLevel.YEAR else self.term_count
            try:
                value = int(child_id)
            except ValueError:
                return "invalid_value"
            if not 1 <= value <= limit:
                return "out_of_range"
            label = year_label(value) if level is NavLevel.YEAR else term_label(value)
            return str(value), label

        if level is NavLevel.COURSE:
            course = self.catalog.get_course(child_id)
            if course is None:
                return "unknown_course"
            if (
                course.sub_unit_id != session.id_at(NavLevel.SUB_UNIT)
                or str(course.year) != session.id_at(NavLevel.YEAR)
                or str(course.term) != session.id_at(NavLevel.TERM)
            ):
                return "parent_mismatch"
            return course.id, course.code

        anchor = self.catalog.get_document(child_id)
        if anchor is None or not anchor.chapter.strip():
            return "unknown_chapter"
        if anchor.course_id != session.id_at(NavLevel.COURSE):
            return "parent_mismatch"
        return anchor.chapter, anchor.chapter

    # ------------------------------------------------------------------
    # Entry points from search results
    # ------------------------------------------------------------------

    def _course_path(self, course: Course) -> NavigationSession | None:
        unit = self.catalog.get_sub_unit(course.sub_unit_id)
        inst = self.catalog.get_institution(unit.institution_id) if unit else None
        if unit is None or inst is None:
            return None
        return NavigationSession(
            (
                Selection(NavLevel.INSTITUTION, inst.id, inst.name),
                Selection(NavLevel.SUB_UNIT, unit.id, unit.name),
                Selection(NavLevel.YEAR, str(course.year), year_label(course.year)),
                Selection(NavLevel.TERM, str(course.term), term_label(course.term)),
                Selection(NavLevel.COURSE, course.id, course.code),
            )
        )

    def open_course_from_search(self, conversation_id: ConversationId, course_id: str) -> NavigationOutcome:
        """Positions navigation at a course found by search and lists its chapters."""
        course = self.catalog.get_course(course_id)
        session = self._course_path(course) if course else None
        if session is None:
            return self.stale(conversation_id, "unknown_course", course_id=course_id)
        self.sessions.replace(conversation_id, session)
        page = self._page(session)
        return dataclasses.replace(page, back_token=self._token(Verb.SEARCH_BACK))

    def open_chapter_from_search(self, conversation_id: ConversationId, document_id: str) -> NavigationOutcome:
        """
        Positions navigation at the chapter holding `document_id` (the hit's
        anchor document) and lists the chapter's documents.
        """
        anchor = self.catalog.get_document(document_id)
        if anchor is None or not anchor.chapter.strip():
            return self.stale(conversation_id, "unknown_chapter", document_id=document_id)
        course = self.catalog.get_course(anchor.course_id)
        session = self._course_path(course) if course else None
        if session is None:
            return self.stale(conversation_id, "unknown_course", course_id=anchor.course_id)
        session = session.select(NavLevel.CHAPTER, anchor.chapter, anchor.chapter)
        self.sessions.replace(conversation_id, session)
        page = self._page(session)
        return dataclasses.replace(page, back_token=self._token(Verb.SEARCH_BACK))

    def select_document(self, conversation_id: ConversationId, document_id: str) -> NavigationOutcome:
        """
        Describes a document for the delivery collaborator and records the
        view in the conversation's history. The session is left unchanged.
        """
        doc = self.catalog.get_document(document_id)
        if doc is None:
            return self.stale(conversation_id, "unknown_document", document_id=document_id)
        session = self.sessions.get(conversation_id)
        in_place = (
            session.id_at(NavLevel.COURSE) == doc.course_id
            and session.id_at(NavLevel.CHAPTER) == doc.chapter
        )
        # The document anchors its own chapter.
        back_token = self._item("Back", Verb.CHAPTER, (doc.id,)).token if in_place else None
        if back_token is None:
            back_token = self._token(Verb.SEARCH_BACK)
        if self.history is not None:
            self.history.record(conversation_id, doc.id)
        logger.info("document_selected", conversation_id=str(conversation_id), document_id=doc.id)
        return DocumentSelection(
            document_id=doc.id,
            title=doc.title,
            document_kind=doc.kind.value,
            chapter=doc.chapter,
            file_path=doc.file_path,
            breadcrumb=format_breadcrumb(session) if in_place else "",
            back_token=back_token,
            items=(self._item("Add to favorites", Verb.FAVORITE_ADD, (doc.id,)),),
        )

    def directory(self, conversation_id: ConversationId) -> DirectoryPage:
        """Every institution with its sub-units, both sorted by name."""
        institutions = sorted(self.catalog.list_institutions(), key=lambda inst: inst.name)
        sections = tuple(
            DirectorySection(
                title=inst.name,
                entries=tuple(sorted(unit.name for unit in self.catalog.list_sub_units(inst.id))),
            )
            for inst in institutions
        )
        logger.info("directory_listed", conversation_id=str(conversation_id), institutions=len(sections))
        items = tuple(self._item(inst.name, Verb.INSTITUTION, (inst.id,)) for inst in institutions)
        return DirectoryPage(sections=sections, items=items + (self._item("Back", Verb.BROWSE),))

    # ------------------------------------------------------------------
    # Page building
    # ------------------------------------------------------------------

    def _page(self, session: NavigationSession) -> NavigationPage:
        level = session.level
        current = session.get(level)
        breadcrumb = format_breadcrumb(session)
        description = ""

        if level is NavLevel.INSTITUTION:
            items = tuple(
                self._item(unit.name, Verb.SUB_UNIT, (unit.id,))
                for unit in self.catalog.list_sub_units(current.id)
            )
            back = self._token(Verb.BROWSE)
        elif level is NavLevel.SUB_UNIT:
            items = tuple(self._item(year_label(year), Verb.YEAR, (year,)) for year in range(1, self.year_count + 1))
            back = self.level_token(NavLevel.INSTITUTION, session.id_at(NavLevel.INSTITUTION))
        elif level is NavLevel.YEAR:
            items = tuple(self._item(term_label(term), Verb.TERM, (term,)) for term in range(1, self.term_count + 1))
            back = self.level_token(NavLevel.SUB_UNIT, session.id_at(NavLevel.SUB_UNIT))
        elif level is NavLevel.TERM:
            courses = self.catalog.list_courses(
                session.id_at(NavLevel.SUB_UNIT),
                year=int(session.id_at(NavLevel.YEAR)),
                term=int(session.id_at(NavLevel.TERM)),
            )
            items = tuple(self._item(c.display_name, Verb.COURSE, (c.id,)) for c in courses)
            back = self.level_token(NavLevel.YEAR, session.id_at(NavLevel.YEAR))
        elif level is NavLevel.COURSE:
            course = self.catalog.get_course(current.id)
            description = course.description if course else ""
            items = tuple(
                self._item(label, Verb.CHAPTER, (anchor_id,))
                for label, anchor_id in chapter_anchors(self.catalog.list_documents(current.id))
            )
            back = self.level_token(NavLevel.TERM, session.id_at(NavLevel.TERM))
        else:
            docs = self.catalog.list_documents(session.id_at(NavLevel.COURSE), chapter=current.id)
            items = tuple(self._item(doc.title, Verb.DOCUMENT, (doc.id,)) for doc in docs)
            back = self.level_token(NavLevel.COURSE, session.id_at(NavLevel.COURSE))

        return NavigationPage(
            level=level.name.lower(),
            title=current.name,
            breadcrumb=breadcrumb,
            items=items,
            back_token=back,
            description=description,
        )
