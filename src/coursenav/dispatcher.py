"""
Routes inbound interactions to the navigation, search and library engines.

The transport hands over either an action token it echoed back from a menu
or a raw text command. Both come back as one structured outcome. Handlers
derive everything from the token and the current session, so replaying the
same interaction is harmless.
"""
from __future__ import annotations

import time

from .catalog_store import CatalogStore
from .config import RATE_LIMIT_ENABLED
from .library import FavoritesStore, HistoryStore, LibraryEngine
from .metrics import MetricsCollector
from .navigation import VERB_LEVELS, NavigationEngine
from .observability import get_logger
from .rate_limiter import RateLimiter
from .results import (
    Acknowledged,
    EncodingFailure,
    HelpPage,
    MenuItem,
    Outcome,
    SearchFilter,
    SearchPrompt,
    ValidationFailure,
    ValidationReason,
)
from .search import SearchEngine
from .session_store import ConversationId, SearchSessionStore, SessionStore
from .tokens import ActionToken, ActionTokenCodec, TokenError, Verb, default_codec

logger = get_logger(__name__)

TEXT_COMMANDS = ("/start", "/browse", "/search", "/favorites", "/history", "/help")

HELP_TEXT = (
    "/start - start over from the list of institutions\n"
    "/browse - browse the catalog step by step\n"
    "/search <keyword> - search courses, chapters and resources\n"
    "/favorites - documents you saved\n"
    "/history - documents you recently opened\n"
    "/help - show this message\n"
    "Any other text of 3 or more characters offers a search."
)


class Dispatcher:
    def __init__(
        self,
        catalog: CatalogStore,
        *,
        sessions: SessionStore | None = None,
        search_sessions: SearchSessionStore | None = None,
        codec: ActionTokenCodec = default_codec,
        rate_limiter: RateLimiter | None = None,
        metrics: MetricsCollector | None = None,
        navigation: NavigationEngine | None = None,
        search: SearchEngine | None = None,
        favorites: FavoritesStore | None = None,
        history: HistoryStore | None = None,
        library: LibraryEngine | None = None,
    ):
        self.catalog = catalog
        self.codec = codec
        self.sessions = sessions or SessionStore()
        self.search_sessions = search_sessions or SearchSessionStore()
        if rate_limiter is None and RATE_LIMIT_ENABLED:
            rate_limiter = RateLimiter()
        self.rate_limiter = rate_limiter
        self.metrics = metrics or MetricsCollector()
        self.favorites = favorites or FavoritesStore()
        self.history = history or HistoryStore()
        self.navigation = navigation or NavigationEngine(catalog, self.sessions, codec, history=self.history)
        self.search = search or SearchEngine(catalog, self.search_sessions, codec)
        self.library = library or LibraryEngine(catalog, self.favorites, self.history, codec)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def handle_token(self, conversation_id: ConversationId, token: str) -> Outcome:
        """Handles a token the transport echoed back from a menu item."""
        start = time.perf_counter()
        verb_name = "invalid"
        outcome = self._rate_limited(conversation_id)
        if outcome is None:
            try:
                action = self.codec.decode(token)
            except TokenError as exc:
                logger.warning(
                    "token_decode_failed",
                    conversation_id=str(conversation_id),
                    error=str(exc),
                    token_length=len(token or ""),
                )
                outcome = EncodingFailure(
                    message="This button could not be read. Please start over.",
                    restart_token=self.codec.encode(Verb.START_OVER),
                )
            else:
                verb_name = action.verb.value
                outcome = self._route(conversation_id, action)
        self._record(conversation_id, verb_name, outcome, start)
        return outcome

    def handle_text(self, conversation_id: ConversationId, text: str) -> Outcome:
        """Handles a typed command (see `TEXT_COMMANDS`) or free text."""
        start = time.perf_counter()
        raw = str(text or "").strip()
        command, _, rest = raw.partition(" ")
        command = command.split("@", 1)[0].lower() if command.startswith("/") else ""
        verb_name = f"text:{command or 'free'}"

        outcome = self._rate_limited(conversation_id)
        if outcome is None:
            if command == "/start":
                self.search_sessions.clear(conversation_id)
                outcome = self.navigation.start(conversation_id)
            elif command == "/browse":
                outcome = self.navigation.start(conversation_id)
            elif command == "/search":
                outcome = self.search.search(conversation_id, rest)
            elif command == "/favorites":
                outcome = self.library.favorites_page(conversation_id, 0)
            elif command == "/history":
                outcome = self.library.history_page(conversation_id, 0)
            elif command == "/help":
                outcome = self.help_page()
            elif command:
                outcome = ValidationFailure(
                    reason=ValidationReason.UNKNOWN_COMMAND,
                    message=f"Unknown command. Try one of: {', '.join(TEXT_COMMANDS)}.",
                )
            else:
                outcome = self._suggest_search(raw)
        self._record(conversation_id, verb_name, outcome, start)
        return outcome

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _route(self, conversation_id: ConversationId, action: ActionToken) -> Outcome:
        verb = action.verb
        if verb in VERB_LEVELS:
            return self.navigation.descend(conversation_id, VERB_LEVELS[verb], str(action.args[0]))
        if verb is Verb.DOCUMENT:
            return self.navigation.select_document(conversation_id, action.args[0])
        if verb in (Verb.BROWSE, Verb.START_OVER):
            return self.navigation.start(conversation_id)
        if verb is Verb.SEARCH_PAGE:
            page, search_filter = action.args
            return self.search.goto_page(conversation_id, action.tail, search_filter, page)
        if verb is Verb.SEARCH_FILTER:
            return self.search.switch_filter(conversation_id, action.tail, action.args[0])
        if verb is Verb.SEARCH_CHAPTER:
            return self.navigation.open_chapter_from_search(conversation_id, action.args[0])
        if verb is Verb.SEARCH_COURSE:
            return self.navigation.open_course_from_search(conversation_id, action.args[0])
        if verb is Verb.SEARCH_BACK:
            return self.search.resume(conversation_id)
        if verb is Verb.FAVORITE_ADD:
            return self.library.add_favorite(conversation_id, action.args[0])
        if verb is Verb.FAVORITE_REMOVE:
            return self.library.remove_favorite(conversation_id, action.args[0])
        if verb is Verb.FAVORITES_PAGE:
            return self.library.favorites_page(conversation_id, action.args[0])
        if verb is Verb.HISTORY_PAGE:
            return self.library.history_page(conversation_id, action.args[0])
        if verb is Verb.HISTORY_CLEAR:
            return self.library.clear_history(conversation_id)
        if verb is Verb.ALL_SUB_UNITS:
            return self.navigation.directory(conversation_id)
        if verb is Verb.HELP:
            return self.help_page()
        return Acknowledged()

    def help_page(self) -> HelpPage:
        items = (
            MenuItem("Browse", self.codec.encode(Verb.BROWSE)),
            MenuItem("All departments", self.codec.encode(Verb.ALL_SUB_UNITS)),
            MenuItem("My favorites", self.codec.encode(Verb.FAVORITES_PAGE, (0,))),
            MenuItem("My history", self.codec.encode(Verb.HISTORY_PAGE, (0,))),
        )
        return HelpPage(text=HELP_TEXT, items=items)

    def _suggest_search(self, text: str) -> Outcome:
        failure = self.search.validate_keyword(text)
        if failure is not None:
            return failure
        token = self.codec.encode(Verb.SEARCH_FILTER, (SearchFilter.ALL,), text)
        return SearchPrompt(text=text, token=token)

    def _rate_limited(self, conversation_id: ConversationId) -> ValidationFailure | None:
        if self.rate_limiter is None:
            return None
        decision = self.rate_limiter.check(conversation_id)
        if decision.allowed:
            return None
        logger.warning(
            "rate_limited",
            conversation_id=str(conversation_id),
            reset_in_s=round(decision.reset_in_s, 1),
        )
        return ValidationFailure(
            reason=ValidationReason.RATE_LIMITED,
            message=f"Too many requests. Please wait {int(decision.reset_in_s) + 1} seconds.",
            limit=self.rate_limiter.max_requests,
        )

    def _record(self, conversation_id: ConversationId, verb_name: str, outcome: Outcome, start: float):
        latency_ms = (time.perf_counter() - start) * 1000.0
        self.metrics.record_interaction(verb_name, outcome.kind, latency_ms)
        logger.info(
            "interaction_handled",
            conversation_id=str(conversation_id),
            verb=verb_name,
            outcome=outcome.kind,
            latency_ms=round(latency_ms, 2),
        )
