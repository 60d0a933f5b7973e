"""
Catalog node types for the academic hierarchy.

Institution -> SubUnit -> Course -> Chapter -> Document. Years and terms are
not stored nodes: they are fields of a course and act as virtual levels
during guided navigation.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Union


class CatalogLevel(str, Enum):
    INSTITUTION = "institution"
    SUB_UNIT = "sub_unit"
    COURSE = "course"
    CHAPTER = "chapter"
    DOCUMENT = "document"


class NavLevel(IntEnum):
    """Selectable navigation levels, in fixed top-down order."""

    INSTITUTION = 0
    SUB_UNIT = 1
    YEAR = 2
    TERM = 3
    COURSE = 4
    CHAPTER = 5


class DocumentKind(str, Enum):
    PDF = "pdf"
    SLIDE = "slide"
    BOOK = "book"
    EXAM = "exam"


COURSE_YEAR_RANGE = range(1, 7)
COURSE_TERM_RANGE = range(1, 3)


class CatalogValidationError(ValueError):
    """Raised when a catalog snapshot violates the hierarchy rules."""


@dataclass(frozen=True)
class Institution:
    id: str
    name: str
    description: str = ""

    level = CatalogLevel.INSTITUTION
    parent_id = None


@dataclass(frozen=True)
class SubUnit:
    id: str
    institution_id: str
    name: str
    description: str = ""

    level = CatalogLevel.SUB_UNIT

    @property
    def parent_id(self) -> str:
        return self.institution_id


@dataclass(frozen=True)
class Course:
    id: str
    sub_unit_id: str
    code: str
    name: str
    year: int
    term: int
    description: str = ""

    level = CatalogLevel.COURSE

    def __post_init__(self):
        if self.year not in COURSE_YEAR_RANGE:
            raise CatalogValidationError(f"course {self.id}: year {self.year} outside 1..6")
        if self.term not in COURSE_TERM_RANGE:
            raise CatalogValidationError(f"course {self.id}: term {self.term} outside 1..2")

    @property
    def parent_id(self) -> str:
        return self.sub_unit_id

    @property
    def display_name(self) -> str:
        return f"{self.code} – {self.name}"


@dataclass(frozen=True)
class Chapter:
    """A chapter is identified by its label within one course."""

    course_id: str
    name: str

    level = CatalogLevel.CHAPTER

    @property
    def id(self) -> str:
        return self.name

    @property
    def parent_id(self) -> str:
        return self.course_id


@dataclass(frozen=True)
class Document:
    id: str
    course_id: str
    chapter: str
    title: str
    kind: DocumentKind
    file_path: str = ""

    level = CatalogLevel.DOCUMENT

    @property
    def parent_id(self) -> str:
        return self.course_id


CatalogNode = Union[Institution, SubUnit, Course, Chapter, Document]


def chapter_labels(documents: list[Document]) -> list[str]:
    """Distinct non-blank chapter labels, sorted."""
    return sorted({doc.chapter for doc in documents if doc.chapter and doc.chapter.strip()})


def chapter_anchors(documents: list[Document]) -> list[tuple[str, str]]:
    """
    (label, anchor document id) per chapter, sorted by label. The anchor is
    the first document of the chapter in the given order; tokens address a
    chapter through it so that long labels never reach the wire.
    """
    anchors: dict[str, str] = {}
    for doc in documents:
        if doc.chapter and doc.chapter.strip():
            anchors.setdefault(doc.chapter, doc.id)
    return sorted(anchors.items())


def document_sort_key(doc: Document) -> tuple[str, str]:
    return (doc.kind.value, doc.title)
