"""
Structured outcomes returned by the navigation and search engines.

Every condition, including the failure ones, is a value the caller renders;
none of them terminates the process. `to_dict()` gives the transport-neutral
shape `{kind, ..., items: [{label, token}], pagination}`.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class SearchFilter(str, Enum):
    ALL = "all"
    COURSES = "courses"
    CHAPTERS = "chapters"
    RESOURCES = "resources"

    @property
    def includes_courses(self) -> bool:
        return self in (SearchFilter.ALL, SearchFilter.COURSES)

    @property
    def includes_chapters(self) -> bool:
        return self in (SearchFilter.ALL, SearchFilter.CHAPTERS)

    @property
    def includes_resources(self) -> bool:
        return self in (SearchFilter.ALL, SearchFilter.RESOURCES)


class ValidationReason(str, Enum):
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    UNKNOWN_COMMAND = "unknown_command"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class MenuItem:
    """`token` is None when the item could not be given a token that fits the transport."""

    label: str
    token: str | None

    def to_dict(self) -> dict[str, str | None]:
        return {"label": self.label, "token": self.token}


# ---------------------------------------------------------------------------
# Search hits
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CourseHit:
    label: str
    token: str | None
    sort_key: int
    course_id: str
    context: str = ""

    kind = "course"


@dataclass(frozen=True)
class ChapterHit:
    label: str
    token: str | None
    sort_key: int
    course_id: str
    chapter: str
    document_id: str
    context: str = ""

    kind = "chapter"


@dataclass(frozen=True)
class ResourceHit:
    label: str
    token: str | None
    sort_key: int
    document_id: str
    context: str = ""

    kind = "resource"


SearchResultItem = Union[CourseHit, ChapterHit, ResourceHit]


def _hit_dict(hit: SearchResultItem) -> dict[str, Any]:
    return {"type": hit.kind, "label": hit.label, "token": hit.token, "context": hit.context}


# ---------------------------------------------------------------------------
# Success outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NavigationPage:
    level: str
    title: str
    breadcrumb: str
    items: tuple[MenuItem, ...]
    back_token: str | None = None
    description: str = ""

    kind = "navigation"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "level": self.level,
            "title": self.title,
            "breadcrumb": self.breadcrumb,
            "description": self.description,
            "count": len(self.items),
            "items": [item.to_dict() for item in self.items],
            "back_token": self.back_token,
        }


@dataclass(frozen=True)
class DocumentSelection:
    document_id: str
    title: str
    document_kind: str
    chapter: str
    file_path: str
    breadcrumb: str
    back_token: str | None = None
    items: tuple[MenuItem, ...] = ()

    kind = "document"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "document_id": self.document_id,
            "title": self.title,
            "document_kind": self.document_kind,
            "chapter": self.chapter,
            "file_path": self.file_path,
            "breadcrumb": self.breadcrumb,
            "items": [item.to_dict() for item in self.items],
            "back_token": self.back_token,
        }


@dataclass(frozen=True)
class SearchPage:
    keyword: str
    filter: SearchFilter
    page: int
    total_pages: int
    total: int
    counts: dict[str, int]
    items: tuple[SearchResultItem, ...]
    filter_items: tuple[MenuItem, ...] = ()
    previous_token: str | None = None
    next_token: str | None = None

    kind = "search"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "keyword": self.keyword,
            "filter": self.filter.value,
            "counts": dict(self.counts),
            "total": self.total,
            "items": [_hit_dict(hit) for hit in self.items],
            "filters": [item.to_dict() for item in self.filter_items],
            "pagination": {
                "page": self.page,
                "total_pages": self.total_pages,
                "previous_token": self.previous_token,
                "next_token": self.next_token,
            },
        }


@dataclass(frozen=True)
class SearchPrompt:
    """Suggests running a search for free text that was not a command."""

    text: str
    token: str | None = None

    kind = "search_prompt"

    def to_dict(self) -> dict[str, Any]:
        items = [MenuItem(label=f"Search \"{self.text}\"", token=self.token).to_dict()] if self.token else []
        return {"kind": self.kind, "text": self.text, "items": items}


@dataclass(frozen=True)
class LibraryPage:
    """One page of a conversation's favorites or viewing history."""

    list_name: str
    page: int
    total_pages: int
    total: int
    items: tuple[MenuItem, ...]
    actions: tuple[MenuItem, ...] = ()
    previous_token: str | None = None
    next_token: str | None = None

    kind = "library"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "list": self.list_name,
            "total": self.total,
            "items": [item.to_dict() for item in self.items],
            "actions": [item.to_dict() for item in self.actions],
            "pagination": {
                "page": self.page,
                "total_pages": self.total_pages,
                "previous_token": self.previous_token,
                "next_token": self.next_token,
            },
        }


@dataclass(frozen=True)
class Notice:
    message: str
    items: tuple[MenuItem, ...] = ()

    kind = "notice"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "items": [item.to_dict() for item in self.items]}


@dataclass(frozen=True)
class DirectorySection:
    title: str
    entries: tuple[str, ...]


@dataclass(frozen=True)
class DirectoryPage:
    """Every institution with its sub-units, for a quick overview."""

    sections: tuple[DirectorySection, ...]
    items: tuple[MenuItem, ...] = ()

    kind = "directory"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "sections": [{"title": s.title, "entries": list(s.entries)} for s in self.sections],
            "items": [item.to_dict() for item in self.items],
        }


@dataclass(frozen=True)
class HelpPage:
    text: str
    items: tuple[MenuItem, ...] = ()

    kind = "help"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "text": self.text, "items": [item.to_dict() for item in self.items]}


# ---------------------------------------------------------------------------
# Failure outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationFailure:
    reason: ValidationReason
    message: str
    limit: int | None = None

    kind = "validation_error"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "reason": self.reason.value, "message": self.message, "limit": self.limit, "items": []}


@dataclass(frozen=True)
class StaleSession:
    message: str
    restart_token: str

    kind = "stale_session"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "items": [MenuItem(label="Start over", token=self.restart_token).to_dict()],
        }


@dataclass(frozen=True)
class TooManyResults:
    keyword: str
    filter: SearchFilter
    total: int
    limit: int

    kind = "too_many_results"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "keyword": self.keyword,
            "filter": self.filter.value,
            "total": self.total,
            "limit": self.limit,
            "items": [],
        }


@dataclass(frozen=True)
class NoResults:
    keyword: str
    filter: SearchFilter
    filter_items: tuple[MenuItem, ...] = ()

    kind = "no_results"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "keyword": self.keyword,
            "filter": self.filter.value,
            "items": [],
            "filters": [item.to_dict() for item in self.filter_items],
        }


@dataclass(frozen=True)
class NoActiveSearch:
    message: str = "No previous search to return to."

    kind = "no_active_search"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "items": []}


@dataclass(frozen=True)
class EncodingFailure:
    message: str
    restart_token: str | None = None

    kind = "encoding_error"

    def to_dict(self) -> dict[str, Any]:
        items = [MenuItem(label="Start over", token=self.restart_token).to_dict()] if self.restart_token else []
        return {"kind": self.kind, "message": self.message, "items": items}


@dataclass(frozen=True)
class Acknowledged:
    """Result of a command with nothing to show (e.g. `noop`)."""

    kind = "ack"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "items": []}


NavigationOutcome = Union[NavigationPage, DocumentSelection, StaleSession]
SearchOutcome = Union[SearchPage, ValidationFailure, TooManyResults, NoResults, NoActiveSearch]
LibraryOutcome = Union[LibraryPage, Notice, StaleSession]
Outcome = Union[
    NavigationPage,
    DocumentSelection,
    SearchPage,
    SearchPrompt,
    LibraryPage,
    Notice,
    DirectoryPage,
    HelpPage,
    ValidationFailure,
    StaleSession,
    TooManyResults,
    NoResults,
    NoActiveSearch,
    EncodingFailure,
    Acknowledged,
]
