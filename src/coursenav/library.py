"""
Per-conversation favorites and viewing history.

Both lists are kept in memory, newest first, and are paged like search
results. History records every document view, repeats included, and keeps
at most `HISTORY_MAX_ENTRIES` per conversation; favorites hold each
document once. Idle conversations expire with the same TTL/LRU bounds as
the session stores.
"""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from .catalog import Document
from .catalog_store import CatalogStore
from .config import HISTORY_MAX_ENTRIES, LIBRARY_MAX_CONVERSATIONS, LIBRARY_PAGE_SIZE, LIBRARY_TTL_S
from .observability import get_logger
from .results import LibraryOutcome, LibraryPage, MenuItem, Notice, StaleSession
from .session_store import ConversationId, _BoundedTTLMap
from .tokens import ActionTokenCodec, TokenTooLongError, Verb, default_codec

logger = get_logger(__name__)

FAVORITES = "favorites"
HISTORY = "history"


@dataclass(frozen=True)
class LibraryEntry:
    document_id: str
    added_at: float


class _ConversationLists:
    """Newest-first entry tuples per conversation."""

    def __init__(self, *, ttl_s: float, max_conversations: int, clock: Callable[[], float]):
        self._clock = clock
        self._lists: _BoundedTTLMap[tuple[LibraryEntry, ...]] = _BoundedTTLMap(
            ttl_s=ttl_s, max_entries=max_conversations, clock=clock
        )
        # Serializes read-modify-write; the map guards its own internals.
        self._write_lock = threading.Lock()

    def entries(self, conversation_id: ConversationId) -> tuple[LibraryEntry, ...]:
        return self._lists.get(conversation_id) or ()

    def clear(self, conversation_id: ConversationId) -> int:
        with self._write_lock:
            count = len(self.entries(conversation_id))
            self._lists.pop(conversation_id)
        return count

    def _store(self, conversation_id: ConversationId, entries: tuple[LibraryEntry, ...]):
        if entries:
            self._lists.put(conversation_id, entries)
        else:
            self._lists.pop(conversation_id)

    def __len__(self) -> int:
        return len(self._lists)


class FavoritesStore(_ConversationLists):
    def __init__(
        self,
        *,
        ttl_s: float = LIBRARY_TTL_S,
        max_conversations: int = LIBRARY_MAX_CONVERSATIONS,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(ttl_s=ttl_s, max_conversations=max_conversations, clock=clock)

    def add(self, conversation_id: ConversationId, document_id: str) -> bool:
        """Returns False when the document is already a favorite."""
        with self._write_lock:
            current = self.entries(conversation_id)
            if any(entry.document_id == document_id for entry in current):
                return False
            self._store(conversation_id, (LibraryEntry(document_id, self._clock()),) + current)
        return True

    def remove(self, conversation_id: ConversationId, document_id: str) -> bool:
        with self._write_lock:
            current = self.entries(conversation_id)
            kept = tuple(entry for entry in current if entry.document_id != document_id)
            if len(kept) == len(current):
                return False
            self._store(conversation_id, kept)
        return True

    def contains(self, conversation_id: ConversationId, document_id: str) -> bool:
        return any(entry.document_id == document_id for entry in self.entries(conversation_id))


class HistoryStore(_ConversationLists):
    def __init__(
        self,
        *,
        max_entries: int = HISTORY_MAX_ENTRIES,
        ttl_s: float = LIBRARY_TTL_S,
        max_conversations: int = LIBRARY_MAX_CONVERSATIONS,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(ttl_s=ttl_s, max_conversations=max_conversations, clock=clock)
        self.max_entries = max(1, int(max_entries))

    def record(self, conversation_id: ConversationId, document_id: str):
        with self._write_lock:
            current = self.entries(conversation_id)
            entries = ((LibraryEntry(document_id, self._clock()),) + current)[: self.max_entries]
            self._store(conversation_id, entries)


class LibraryEngine:
    """Builds the favorites and history pages and applies their actions."""

    def __init__(
        self,
        catalog: CatalogStore,
        favorites: FavoritesStore,
        history: HistoryStore,
        codec: ActionTokenCodec = default_codec,
        *,
        page_size: int = LIBRARY_PAGE_SIZE,
    ):
        self.catalog = catalog
        self.favorites = favorites
        self.history = history
        self.codec = codec
        self.page_size = max(1, int(page_size))

    def _item(self, label: str, verb: Verb, args: Sequence[Any] = ()) -> MenuItem:
        try:
            return MenuItem(label=label, token=self.codec.encode(verb, args))
        except TokenTooLongError as exc:
            logger.warning("menu_item_token_too_long", verb=verb.value, label=label, size=exc.size, limit=exc.limit)
            return MenuItem(label=label, token=None)

    def _stale(self, conversation_id: ConversationId, document_id: str) -> StaleSession:
        logger.warning("library_unknown_document", conversation_id=str(conversation_id), document_id=document_id)
        return StaleSession(
            message="This document is no longer available. Please start over.",
            restart_token=self.codec.encode(Verb.START_OVER),
        )

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    def add_favorite(self, conversation_id: ConversationId, document_id: str) -> LibraryOutcome:
        doc = self.catalog.get_document(document_id)
        if doc is None:
            return self._stale(conversation_id, document_id)
        added = self.favorites.add(conversation_id, doc.id)
        logger.info("favorite_added", conversation_id=str(conversation_id), document_id=doc.id, added=added)
        return Notice(
            message="Added to favorites." if added else "Already in favorites.",
            items=(
                self._item("My favorites", Verb.FAVORITES_PAGE, (0,)),
                self._item("Back to document", Verb.DOCUMENT, (doc.id,)),
            ),
        )

    def remove_favorite(self, conversation_id: ConversationId, document_id: str) -> LibraryOutcome:
        removed = self.favorites.remove(conversation_id, document_id)
        logger.info("favorite_removed", conversation_id=str(conversation_id), document_id=document_id, removed=removed)
        return self.favorites_page(conversation_id, 0)

    def favorites_page(self, conversation_id: ConversationId, page: int = 0) -> LibraryPage:
        return self._page(FAVORITES, self.favorites.entries(conversation_id), page)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def history_page(self, conversation_id: ConversationId, page: int = 0) -> LibraryPage:
        return self._page(HISTORY, self.history.entries(conversation_id), page)

    def clear_history(self, conversation_id: ConversationId) -> Notice:
        count = self.history.clear(conversation_id)
        logger.info("history_cleared", conversation_id=str(conversation_id), count=count)
        return Notice(message="History cleared.", items=(self._item("Browse", Verb.BROWSE),))

    # ------------------------------------------------------------------
    # Paging
    # ------------------------------------------------------------------

    def _label(self, doc: Document) -> str:
        course = self.catalog.get_course(doc.course_id)
        return f"{doc.title} ({course.code})" if course else doc.title

    def _page(self, list_name: str, entries: tuple[LibraryEntry, ...], page: int) -> LibraryPage:
        # Entries whose document left the catalog are skipped before paging.
        documents = [doc for doc in (self.catalog.get_document(e.document_id) for e in entries) if doc is not None]
        total = len(documents)
        total_pages = max(1, math.ceil(total / self.page_size))
        page = max(0, int(page))
        start = page * self.page_size
        visible = documents[start : start + self.page_size]
        page_verb = Verb.FAVORITES_PAGE if list_name == FAVORITES else Verb.HISTORY_PAGE

        items = tuple(self._item(self._label(doc), Verb.DOCUMENT, (doc.id,)) for doc in visible)
        if list_name == FAVORITES:
            actions = tuple(self._item(f"Remove: {doc.title}", Verb.FAVORITE_REMOVE, (doc.id,)) for doc in visible)
        else:
            actions = (self._item("Clear history", Verb.HISTORY_CLEAR),) if total else ()
        actions += (self._item("Browse", Verb.BROWSE),)

        previous_token = None
        next_token = None
        if page > 0:
            previous_token = self._item("Previous", page_verb, (min(page - 1, total_pages - 1),)).token
        if start + self.page_size < total:
            next_token = self._item("Next", page_verb, (page + 1,)).token

        return LibraryPage(
            list_name=list_name,
            page=page,
            total_pages=total_pages,
            total=total,
            items=items,
            actions=actions,
            previous_token=previous_token,
            next_token=next_token,
        )
