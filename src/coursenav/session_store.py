"""
Conversation-scoped session state.

A `NavigationSession` is an immutable path of selections ordered by
`NavLevel`. Its depth names the state (empty, institution selected, ...,
chapter selected): a level can only be present when every level above it is,
and selecting a level drops everything below it.

Both stores are bounded: idle records expire after a TTL and the least
recently used record is evicted once the capacity is reached. Writes are
last-write-wins; the lock only protects the map itself.
"""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

from .catalog import NavLevel
from .config import (
    NAV_SESSION_MAX_ENTRIES,
    NAV_SESSION_TTL_S,
    SEARCH_SESSION_MAX_ENTRIES,
    SEARCH_SESSION_TTL_S,
)
from .observability import get_logger

logger = get_logger(__name__)

ConversationId = Hashable
V = TypeVar("V")


@dataclass(frozen=True)
class Selection:
    level: NavLevel
    id: str
    name: str


@dataclass(frozen=True)
class NavigationSession:
    path: tuple[Selection, ...] = ()

    def __post_init__(self):
        for index, selection in enumerate(self.path):
            if selection.level != NavLevel(index):
                raise ValueError(
                    f"selection at position {index} has level {selection.level.name}; "
                    f"expected {NavLevel(index).name}"
                )

    @property
    def depth(self) -> int:
        return len(self.path)

    @property
    def is_empty(self) -> bool:
        return not self.path

    @property
    def level(self) -> NavLevel | None:
        """Deepest selected level, or None for an empty session."""
        return self.path[-1].level if self.path else None

    def get(self, level: NavLevel) -> Selection | None:
        return self.path[level] if level < len(self.path) else None

    def id_at(self, level: NavLevel) -> str | None:
        selection = self.get(level)
        return selection.id if selection else None

    def can_select(self, level: NavLevel) -> bool:
        return int(level) <= len(self.path)

    def select(self, level: NavLevel, node_id: str, name: str) -> "NavigationSession":
        """Returns a session with `level` set and every deeper level cleared."""
        if not self.can_select(level):
            raise ValueError(f"cannot select {level.name} before its ancestors")
        return NavigationSession(self.path[: int(level)] + (Selection(level, str(node_id), str(name)),))


EMPTY_SESSION = NavigationSession()


@dataclass(frozen=True)
class SearchSession:
    keyword: str
    filter: str
    page: int
    updated_at: float


class _BoundedTTLMap(Generic[V]):
    """Thread-safe OrderedDict with idle expiry and LRU eviction."""

    def __init__(self, *, ttl_s: float, max_entries: int, clock: Callable[[], float] = time.monotonic):
        self._ttl_s = float(ttl_s)
        self._max = max(1, int(max_entries))
        self._clock = clock
        self._entries: OrderedDict[ConversationId, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: ConversationId) -> V | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            touched_at, value = entry
            if now - touched_at > self._ttl_s:
                del self._entries[key]
                return None
            self._entries[key] = (now, value)
            self._entries.move_to_end(key)
            return value

    def put(self, key: ConversationId, value: V) -> int:
        """Stores the value and returns how many entries were evicted."""
        now = self._clock()
        evicted = 0
        with self._lock:
            self._entries[key] = (now, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max:
                self._entries.popitem(last=False)
                evicted += 1
        return evicted

    def pop(self, key: ConversationId) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (touched_at, _) in self._entries.items() if now - touched_at > self._ttl_s]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SessionStore:
    """Navigation position per conversation."""

    def __init__(
        self,
        *,
        ttl_s: float = NAV_SESSION_TTL_S,
        max_entries: int = NAV_SESSION_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sessions: _BoundedTTLMap[NavigationSession] = _BoundedTTLMap(
            ttl_s=ttl_s, max_entries=max_entries, clock=clock
        )

    def get(self, conversation_id: ConversationId) -> NavigationSession:
        return self._sessions.get(conversation_id) or EMPTY_SESSION

    def update(self, conversation_id: ConversationId, level: NavLevel, node_id: str, name: str) -> bool:
        """
        Sets `level` and clears every deeper level.
        Returns False without changing anything when an ancestor is missing.
        """
        current = self.get(conversation_id)
        if not current.can_select(level):
            logger.warning(
                "session_update_rejected",
                conversation_id=str(conversation_id),
                level=level.name,
                depth=current.depth,
            )
            return False
        self.replace(conversation_id, current.select(level, node_id, name))
        return True

    def replace(self, conversation_id: ConversationId, session: NavigationSession):
        if session.is_empty:
            self.clear(conversation_id)
            return
        evicted = self._sessions.put(conversation_id, session)
        if evicted:
            logger.info("navigation_sessions_evicted", count=evicted)

    def clear(self, conversation_id: ConversationId):
        self._sessions.pop(conversation_id)

    def purge_expired(self) -> int:
        return self._sessions.purge_expired()

    def __len__(self) -> int:
        return len(self._sessions)


class SearchSessionStore:
    """Last executed search per conversation, for resuming after a detour."""

    def __init__(
        self,
        *,
        ttl_s: float = SEARCH_SESSION_TTL_S,
        max_entries: int = SEARCH_SESSION_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self._sessions: _BoundedTTLMap[SearchSession] = _BoundedTTLMap(
            ttl_s=ttl_s, max_entries=max_entries, clock=clock
        )

    def get(self, conversation_id: ConversationId) -> SearchSession | None:
        return self._sessions.get(conversation_id)

    def record(self, conversation_id: ConversationId, keyword: str, filter: str, page: int) -> SearchSession:
        session = SearchSession(keyword=keyword, filter=filter, page=int(page), updated_at=self._clock())
        self._sessions.put(conversation_id, session)
        return session

    def clear(self, conversation_id: ConversationId):
        self._sessions.pop(conversation_id)

    def purge_expired(self) -> int:
        return self._sessions.purge_expired()

    def __len__(self) -> int:
        return len(self._sessions)
