"""
Read-only catalog access.

`CatalogStore` is the contract the navigation and search engines depend on.
Two implementations ship: `InMemoryCatalogStore` over a loaded snapshot and
`SqliteCatalogStore`, which persists the snapshot with versioned migrations.
Keyword matching is a case-insensitive substring test and results keep the
catalog's insertion order.
"""
from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, Iterable, Protocol

from pydantic import BaseModel, Field, ValidationError, field_validator

from .catalog import (
    CatalogLevel,
    CatalogNode,
    CatalogValidationError,
    Chapter,
    Course,
    Document,
    DocumentKind,
    Institution,
    SubUnit,
    chapter_labels,
    document_sort_key,
)
from .db_migrations import SqliteMigration, apply_sqlite_migrations
from .observability import get_logger
from .tokens import DELIMITER

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Seed file models
# ---------------------------------------------------------------------------

# The longest id-carrying token prefix is "search_chapter:" (15 bytes), so
# ASCII ids of up to 48 characters always fit a 64-byte token.
CATALOG_ID_MAX_LENGTH = 48
CatalogId = Annotated[str, Field(min_length=1, max_length=CATALOG_ID_MAX_LENGTH, pattern=r"^[A-Za-z0-9._~-]+$")]


class DocumentSeed(BaseModel):
    id: CatalogId
    title: str = Field(..., min_length=1)
    kind: DocumentKind
    chapter: str = ""
    file_path: str = ""

    @field_validator("title", "chapter", "file_path")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class CourseSeed(BaseModel):
    id: CatalogId
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    year: int = Field(..., ge=1, le=6)
    term: int = Field(..., ge=1, le=2)
    description: str = ""
    documents: list[DocumentSeed] = Field(default_factory=list)

    @field_validator("code")
    @classmethod
    def _upper_code(cls, value: str) -> str:
        return value.strip().upper()


class SubUnitSeed(BaseModel):
    id: CatalogId
    name: str = Field(..., min_length=1)
    description: str = ""
    courses: list[CourseSeed] = Field(default_factory=list)


class InstitutionSeed(BaseModel):
    id: CatalogId
    name: str = Field(..., min_length=1)
    description: str = ""
    sub_units: list[SubUnitSeed] = Field(default_factory=list)


class CatalogSeed(BaseModel):
    institutions: list[InstitutionSeed] = Field(default_factory=list)


@dataclass
class CatalogSnapshot:
    institutions: list[Institution] = field(default_factory=list)
    sub_units: list[SubUnit] = field(default_factory=list)
    courses: list[Course] = field(default_factory=list)
    documents: list[Document] = field(default_factory=list)

    def validate(self):
        """Checks id uniqueness, course-code uniqueness and parent references."""
        def _unique(kind: str, ids: Iterable[str]):
            seen: set[str] = set()
            for node_id in ids:
                if kind != "course code" and (not node_id or DELIMITER in node_id):
                    raise CatalogValidationError(f"{kind} id must be non-empty and free of {DELIMITER!r}: {node_id!r}")
                if node_id in seen:
                    raise CatalogValidationError(f"duplicate {kind} id: {node_id}")
                seen.add(node_id)
            return seen

        institution_ids = _unique("institution", (i.id for i in self.institutions))
        sub_unit_ids = _unique("sub_unit", (s.id for s in self.sub_units))
        course_ids = _unique("course", (c.id for c in self.courses))
        _unique("document", (d.id for d in self.documents))
        _unique("course code", (c.code for c in self.courses))

        for sub_unit in self.sub_units:
            if sub_unit.institution_id not in institution_ids:
                raise CatalogValidationError(f"sub_unit {sub_unit.id}: unknown institution {sub_unit.institution_id}")
        for course in self.courses:
            if course.sub_unit_id not in sub_unit_ids:
                raise CatalogValidationError(f"course {course.id}: unknown sub_unit {course.sub_unit_id}")
        for doc in self.documents:
            if doc.course_id not in course_ids:
                raise CatalogValidationError(f"document {doc.id}: unknown course {doc.course_id}")
        return self


def snapshot_from_seed(seed: CatalogSeed) -> CatalogSnapshot:
    snapshot = CatalogSnapshot()
    for inst in seed.institutions:
        snapshot.institutions.append(Institution(id=inst.id, name=inst.name.strip(), description=inst.description))
        for unit in inst.sub_units:
            snapshot.sub_units.append(
                SubUnit(id=unit.id, institution_id=inst.id, name=unit.name.strip(), description=unit.description)
            )
            for course in unit.courses:
                snapshot.courses.append(
                    Course(
                        id=course.id,
                        sub_unit_id=unit.id,
                        code=course.code,
                        name=course.name.strip(),
                        year=course.year,
                        term=course.term,
                        description=course.description,
                    )
                )
                for doc in course.documents:
                    snapshot.documents.append(
                        Document(
                            id=doc.id,
                            course_id=course.id,
                            chapter=doc.chapter,
                            title=doc.title,
                            kind=doc.kind,
                            file_path=doc.file_path,
                        )
                    )
    return snapshot.validate()


def load_catalog_seed(path: str | Path) -> CatalogSnapshot:
    """Reads and validates a nested JSON catalog seed file."""
    seed_path = Path(path)
    try:
        raw = json.loads(seed_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CatalogValidationError(f"cannot read catalog seed {seed_path}: {exc}") from exc
    try:
        seed = CatalogSeed.model_validate(raw)
    except ValidationError as exc:
        raise CatalogValidationError(f"invalid catalog seed {seed_path}: {exc}") from exc
    snapshot = snapshot_from_seed(seed)
    logger.info(
        "catalog_seed_loaded",
        path=str(seed_path),
        institutions=len(snapshot.institutions),
        courses=len(snapshot.courses),
        documents=len(snapshot.documents),
    )
    return snapshot


# ---------------------------------------------------------------------------
# Store contract
# ---------------------------------------------------------------------------

def _matches(keyword: str, *fields: str) -> bool:
    needle = keyword.casefold()
    return any(needle in (value or "").casefold() for value in fields)


def _sql_casefold(value: str | None) -> str:
    return (value or "").casefold()


def _take(items: Iterable, limit: int | None) -> list:
    out = []
    for item in items:
        out.append(item)
        if limit is not None and len(out) >= limit:
            break
    return out


class CatalogStore(Protocol):
    def list_institutions(self) -> list[Institution]:
        ...

    def list_sub_units(self, institution_id: str) -> list[SubUnit]:
        ...

    def list_courses(self, sub_unit_id: str, year: int | None = None, term: int | None = None) -> list[Course]:
        ...

    def list_chapters(self, course_id: str) -> list[Chapter]:
        ...

    def list_documents(self, course_id: str, chapter: str | None = None) -> list[Document]:
        ...

    def list_children(self, parent_level: CatalogLevel | None, parent_id: str | None = None) -> list[CatalogNode]:
        ...

    def get_node(self, level: CatalogLevel, node_id: str) -> CatalogNode | None:
        ...

    def get_institution(self, node_id: str) -> Institution | None:
        ...

    def get_sub_unit(self, node_id: str) -> SubUnit | None:
        ...

    def get_course(self, node_id: str) -> Course | None:
        ...

    def get_document(self, node_id: str) -> Document | None:
        ...

    def search_courses(self, keyword: str, limit: int | None = None) -> list[Course]:
        ...

    def search_documents(self, keyword: str, limit: int | None = None) -> list[Document]:
        ...


class _CatalogQueries:
    """Level dispatch shared by the concrete stores."""

    def list_children(self, parent_level: CatalogLevel | None, parent_id: str | None = None) -> list[CatalogNode]:
        if parent_level is None:
            return list(self.list_institutions())
        if parent_level is CatalogLevel.INSTITUTION:
            return list(self.list_sub_units(str(parent_id)))
        if parent_level is CatalogLevel.SUB_UNIT:
            return list(self.list_courses(str(parent_id)))
        if parent_level is CatalogLevel.COURSE:
            return list(self.list_chapters(str(parent_id)))
        raise ValueError(f"level {parent_level.value} has no addressable children")

    def get_node(self, level: CatalogLevel, node_id: str) -> CatalogNode | None:
        getters = {
            CatalogLevel.INSTITUTION: self.get_institution,
            CatalogLevel.SUB_UNIT: self.get_sub_unit,
            CatalogLevel.COURSE: self.get_course,
            CatalogLevel.DOCUMENT: self.get_document,
        }
        getter = getters.get(level)
        if getter is None:
            raise ValueError(f"level {level.value} is not addressable by id alone")
        return getter(node_id)

    def list_chapters(self, course_id: str) -> list[Chapter]:
        return [Chapter(course_id=course_id, name=label) for label in chapter_labels(self.list_documents(course_id))]


class InMemoryCatalogStore(_CatalogQueries):
    """Catalog backed by an in-process snapshot."""

    def __init__(self, snapshot: CatalogSnapshot | None = None):
        self._snapshot = (snapshot or CatalogSnapshot()).validate()
        self._institutions = {i.id: i for i in self._snapshot.institutions}
        self._sub_units = {s.id: s for s in self._snapshot.sub_units}
        self._courses = {c.id: c for c in self._snapshot.courses}
        self._documents = {d.id: d for d in self._snapshot.documents}

    def list_institutions(self) -> list[Institution]:
        return sorted(self._snapshot.institutions, key=lambda i: i.name)

    def list_sub_units(self, institution_id: str) -> list[SubUnit]:
        return sorted(
            (s for s in self._snapshot.sub_units if s.institution_id == institution_id),
            key=lambda s: s.name,
        )

    def list_courses(self, sub_unit_id: str, year: int | None = None, term: int | None = None) -> list[Course]:
        return sorted(
            (
                c for c in self._snapshot.courses
                if c.sub_unit_id == sub_unit_id
                and (year is None or c.year == year)
                and (term is None or c.term == term)
            ),
            key=lambda c: c.code,
        )

    def list_documents(self, course_id: str, chapter: str | None = None) -> list[Document]:
        return sorted(
            (
                d for d in self._snapshot.documents
                if d.course_id == course_id and (chapter is None or d.chapter == chapter)
            ),
            key=document_sort_key,
        )

    def get_institution(self, node_id: str) -> Institution | None:
        return self._institutions.get(node_id)

    def get_sub_unit(self, node_id: str) -> SubUnit | None:
        return self._sub_units.get(node_id)

    def get_course(self, node_id: str) -> Course | None:
        return self._courses.get(node_id)

    def get_document(self, node_id: str) -> Document | None:
        return self._documents.get(node_id)

    def search_courses(self, keyword: str, limit: int | None = None) -> list[Course]:
        hits = (c for c in self._snapshot.courses if _matches(keyword, c.name, c.description, c.code))
        return _take(hits, limit)

    def search_documents(self, keyword: str, limit: int | None = None) -> list[Document]:
        hits = (d for d in self._snapshot.documents if _matches(keyword, d.title, d.chapter))
        return _take(hits, limit)


class SqliteCatalogStore(_CatalogQueries):
    """SQLite-backed catalog. Rows keep insertion order through their sequence column."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = self._connect()
        try:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error:
            pass
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False, timeout=30.0)
        conn.row_factory = sqlite3.Row
        # SQLite's lower() folds ASCII only; keyword search needs Python's casefold.
        conn.create_function("casefold", 1, _sql_casefold, deterministic=True)
        return conn

    @contextmanager
    def _connection(self):
        with self._lock:
            if self._conn is None:
                raise RuntimeError("catalog store connection is closed")
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def close(self):
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.commit()
            except sqlite3.Error:
                pass
            self._conn.close()
            self._conn = None

    def __del__(self):
        try:
            self.close()
        except Exception:
            pass

    def _ensure_schema(self):
        migrations = [
            SqliteMigration(
                version=1,
                name="create_catalog_tables",
                statements=(
                    """
                    CREATE TABLE IF NOT EXISTS institutions (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        name TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT ''
                    )
                    """,
                    """
                    CREATE TABLE IF NOT EXISTS sub_units (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        institution_id TEXT NOT NULL REFERENCES institutions(id) ON DELETE CASCADE,
                        name TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT ''
                    )
                    """,
                    """
                    CREATE TABLE IF NOT EXISTS courses (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        sub_unit_id TEXT NOT NULL REFERENCES sub_units(id) ON DELETE CASCADE,
                        code TEXT NOT NULL UNIQUE,
                        name TEXT NOT NULL,
                        year INTEGER NOT NULL CHECK (year BETWEEN 1 AND 6),
                        term INTEGER NOT NULL CHECK (term BETWEEN 1 AND 2),
                        description TEXT NOT NULL DEFAULT ''
                    )
                    """,
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT NOT NULL UNIQUE,
                        course_id TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
                        chapter TEXT NOT NULL DEFAULT '',
                        title TEXT NOT NULL,
                        kind TEXT NOT NULL CHECK (kind IN ('pdf', 'slide', 'book', 'exam')),
                        file_path TEXT NOT NULL DEFAULT ''
                    )
                    """,
                    "CREATE INDEX IF NOT EXISTS idx_sub_units_institution ON sub_units(institution_id)",
                    "CREATE INDEX IF NOT EXISTS idx_courses_lookup ON courses(sub_unit_id, year, term)",
                    "CREATE INDEX IF NOT EXISTS idx_documents_course_chapter ON documents(course_id, chapter)",
                ),
            ),
        ]
        with self._connection() as conn:
            apply_sqlite_migrations(
                conn,
                component="catalog_store",
                migrations=migrations,
            )

    def replace_snapshot(self, snapshot: CatalogSnapshot):
        """Replaces the whole catalog in one transaction."""
        snapshot.validate()
        with self._connection() as conn:
            conn.execute("DELETE FROM documents")
            conn.execute("DELETE FROM courses")
            conn.execute("DELETE FROM sub_units")
            conn.execute("DELETE FROM institutions")
            conn.executemany(
                "INSERT INTO institutions (id, name, description) VALUES (?, ?, ?)",
                [(i.id, i.name, i.description) for i in snapshot.institutions],
            )
            conn.executemany(
                "INSERT INTO sub_units (id, institution_id, name, description) VALUES (?, ?, ?, ?)",
                [(s.id, s.institution_id, s.name, s.description) for s in snapshot.sub_units],
            )
            conn.executemany(
                """
                INSERT INTO courses (id, sub_unit_id, code, name, year, term, description)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [(c.id, c.sub_unit_id, c.code, c.name, c.year, c.term, c.description) for c in snapshot.courses],
            )
            conn.executemany(
                """
                INSERT INTO documents (id, course_id, chapter, title, kind, file_path)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [(d.id, d.course_id, d.chapter, d.title, d.kind.value, d.file_path) for d in snapshot.documents],
            )
        logger.info(
            "catalog_snapshot_replaced",
            db_path=str(self.db_path),
            institutions=len(snapshot.institutions),
            sub_units=len(snapshot.sub_units),
            courses=len(snapshot.courses),
            documents=len(snapshot.documents),
        )

    def is_empty(self) -> bool:
        with self._connection() as conn:
            row = conn.execute("SELECT COUNT(*) FROM institutions").fetchone()
        return int(row[0]) == 0

    # --- row mapping ---

    @staticmethod
    def _institution(row: sqlite3.Row) -> Institution:
        return Institution(id=row["id"], name=row["name"], description=row["description"])

    @staticmethod
    def _sub_unit(row: sqlite3.Row) -> SubUnit:
        return SubUnit(
            id=row["id"],
            institution_id=row["institution_id"],
            name=row["name"],
            description=row["description"],
        )

    @staticmethod
    def _course(row: sqlite3.Row) -> Course:
        return Course(
            id=row["id"],
            sub_unit_id=row["sub_unit_id"],
            code=row["code"],
            name=row["name"],
            year=int(row["year"]),
            term=int(row["term"]),
            description=row["description"],
        )

    @staticmethod
    def _document(row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            course_id=row["course_id"],
            chapter=row["chapter"],
            title=row["title"],
            kind=DocumentKind(row["kind"]),
            file_path=row["file_path"],
        )

    def _fetch(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._connection() as conn:
            return conn.execute(sql, params).fetchall()

    # --- hierarchy ---

    def list_institutions(self) -> list[Institution]:
        rows = self._fetch("SELECT * FROM institutions ORDER BY name, seq")
        return [self._institution(row) for row in rows]

    def list_sub_units(self, institution_id: str) -> list[SubUnit]:
        rows = self._fetch(
            "SELECT * FROM sub_units WHERE institution_id = ? ORDER BY name, seq",
            (institution_id,),
        )
        return [self._sub_unit(row) for row in rows]

    def list_courses(self, sub_unit_id: str, year: int | None = None, term: int | None = None) -> list[Course]:
        sql = "SELECT * FROM courses WHERE sub_unit_id = ?"
        params: list = [sub_unit_id]
        if year is not None:
            sql += " AND year = ?"
            params.append(int(year))
        if term is not None:
            sql += " AND term = ?"
            params.append(int(term))
        rows = self._fetch(sql + " ORDER BY code, seq", tuple(params))
        return [self._course(row) for row in rows]

    def list_documents(self, course_id: str, chapter: str | None = None) -> list[Document]:
        if chapter is None:
            rows = self._fetch("SELECT * FROM documents WHERE course_id = ? ORDER BY kind, title, seq", (course_id,))
        else:
            rows = self._fetch(
                "SELECT * FROM documents WHERE course_id = ? AND chapter = ? ORDER BY kind, title, seq",
                (course_id, chapter),
            )
        return [self._document(row) for row in rows]

    def get_institution(self, node_id: str) -> Institution | None:
        rows = self._fetch("SELECT * FROM institutions WHERE id = ?", (node_id,))
        return self._institution(rows[0]) if rows else None

    def get_sub_unit(self, node_id: str) -> SubUnit | None:
        rows = self._fetch("SELECT * FROM sub_units WHERE id = ?", (node_id,))
        return self._sub_unit(rows[0]) if rows else None

    def get_course(self, node_id: str) -> Course | None:
        rows = self._fetch("SELECT * FROM courses WHERE id = ?", (node_id,))
        return self._course(rows[0]) if rows else None

    def get_document(self, node_id: str) -> Document | None:
        rows = self._fetch("SELECT * FROM documents WHERE id = ?", (node_id,))
        return self._document(rows[0]) if rows else None

    # --- keyword search ---

    def _search(self, table: str, columns: tuple[str, ...], keyword: str, limit: int | None) -> list[sqlite3.Row]:
        """Substring match on `columns`, filtered and limited inside SQLite."""
        where = " OR ".join(f"instr(casefold({column}), ?) > 0" for column in columns)
        needle = keyword.casefold()
        params = (needle,) * len(columns) + (-1 if limit is None else int(limit),)
        return self._fetch(f"SELECT * FROM {table} WHERE {where} ORDER BY seq LIMIT ?", params)

    def search_courses(self, keyword: str, limit: int | None = None) -> list[Course]:
        rows = self._search("courses", ("name", "description", "code"), keyword, limit)
        hits = (
            self._course(row) for row in rows
            if _matches(keyword, row["name"], row["description"], row["code"])
        )
        return _take(hits, limit)

    def search_documents(self, keyword: str, limit: int | None = None) -> list[Document]:
        rows = self._search("documents", ("title", "chapter"), keyword, limit)
        hits = (self._document(row) for row in rows if _matches(keyword, row["title"], row["chapter"]))
        return _take(hits, limit)
