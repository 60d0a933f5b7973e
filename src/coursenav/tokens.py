"""
Action-token codec.

Every selectable item carries a short opaque string the transport echoes back
verbatim. Grammar, per verb:

    <verb> {":" <fixed arg>} [":" <percent-encoded tail>]

Fixed arguments are typed and consumed from the front. The tail is the only
free-text field (the search keyword); on decode it is rebuilt by rejoining
every remaining segment, so a tail that contains the delimiter still
round-trips. Catalog entries are always addressed by id, never by label:
a chapter is addressed by the id of one of its documents.

Encoded tokens must fit the transport's byte ceiling; an oversized token is
an error, never truncated.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple, Sequence
from urllib.parse import quote, unquote

from .config import TOKEN_MAX_BYTES
from .results import SearchFilter

DELIMITER = ":"


class Verb(str, Enum):
    INSTITUTION = "inst"
    SUB_UNIT = "unit"
    YEAR = "year"
    TERM = "term"
    COURSE = "course"
    CHAPTER = "chapter"
    DOCUMENT = "doc"
    BROWSE = "browse"
    START_OVER = "start_over"
    SEARCH_PAGE = "search_page"
    SEARCH_FILTER = "search_filter"
    SEARCH_CHAPTER = "search_chapter"
    SEARCH_COURSE = "search_course"
    SEARCH_BACK = "search_back"
    FAVORITE_ADD = "fav_add"
    FAVORITE_REMOVE = "fav_remove"
    FAVORITES_PAGE = "fav_page"
    HISTORY_PAGE = "hist_page"
    HISTORY_CLEAR = "hist_clear"
    ALL_SUB_UNITS = "all_units"
    HELP = "help"
    NOOP = "noop"


class TokenError(ValueError):
    """Base class for token encode/decode failures."""


class TokenDecodeError(TokenError):
    pass


class TokenTooLongError(TokenError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"token is {size} bytes; limit is {limit}")
        self.size = size
        self.limit = limit


@dataclass(frozen=True)
class ArgSpec:
    name: str
    kind: str = "str"  # "str", "int" or "choice"
    choices: tuple[str, ...] = ()

    def to_wire(self, value: Any) -> str:
        if self.kind == "int":
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise TokenError(f"{self.name} must be a non-negative int, got {value!r}")
            return str(value)
        if self.kind == "choice":
            raw = value.value if isinstance(value, Enum) else str(value)
            if raw not in self.choices:
                raise TokenError(f"{self.name} must be one of {self.choices}, got {raw!r}")
            return raw
        raw = str(value)
        if not raw:
            raise TokenError(f"{self.name} must not be empty")
        if DELIMITER in raw:
            raise TokenError(f"{self.name} must not contain {DELIMITER!r}")
        return raw

    def from_wire(self, raw: str) -> Any:
        if self.kind == "int":
            if not raw.isascii() or not raw.isdigit():
                raise TokenDecodeError(f"{self.name} is not a non-negative int: {raw!r}")
            return int(raw)
        if self.kind == "choice":
            if raw not in self.choices:
                raise TokenDecodeError(f"{self.name} has unknown value {raw!r}")
            return raw
        if not raw:
            raise TokenDecodeError(f"{self.name} is empty")
        return raw


@dataclass(frozen=True)
class VerbSpec:
    args: tuple[ArgSpec, ...] = ()
    tail: bool = False


_FILTER = ArgSpec("filter", "choice", tuple(f.value for f in SearchFilter))
_DOCUMENT = ArgSpec("document_id")
_PAGE = ArgSpec("page", "int")

GRAMMAR: dict[Verb, VerbSpec] = {
    Verb.INSTITUTION: VerbSpec(args=(ArgSpec("institution_id"),)),
    Verb.SUB_UNIT: VerbSpec(args=(ArgSpec("sub_unit_id"),)),
    Verb.YEAR: VerbSpec(args=(ArgSpec("year", "int"),)),
    Verb.TERM: VerbSpec(args=(ArgSpec("term", "int"),)),
    Verb.COURSE: VerbSpec(args=(ArgSpec("course_id"),)),
    Verb.CHAPTER: VerbSpec(args=(_DOCUMENT,)),
    Verb.DOCUMENT: VerbSpec(args=(_DOCUMENT,)),
    Verb.BROWSE: VerbSpec(),
    Verb.START_OVER: VerbSpec(),
    Verb.SEARCH_PAGE: VerbSpec(args=(_PAGE, _FILTER), tail=True),
    Verb.SEARCH_FILTER: VerbSpec(args=(_FILTER,), tail=True),
    Verb.SEARCH_CHAPTER: VerbSpec(args=(_DOCUMENT,)),
    Verb.SEARCH_COURSE: VerbSpec(args=(ArgSpec("course_id"),)),
    Verb.SEARCH_BACK: VerbSpec(),
    Verb.FAVORITE_ADD: VerbSpec(args=(_DOCUMENT,)),
    Verb.FAVORITE_REMOVE: VerbSpec(args=(_DOCUMENT,)),
    Verb.FAVORITES_PAGE: VerbSpec(args=(_PAGE,)),
    Verb.HISTORY_PAGE: VerbSpec(args=(_PAGE,)),
    Verb.HISTORY_CLEAR: VerbSpec(),
    Verb.ALL_SUB_UNITS: VerbSpec(),
    Verb.HELP: VerbSpec(),
    Verb.NOOP: VerbSpec(),
}


class ActionToken(NamedTuple):
    verb: Verb
    args: tuple
    tail: str | None = None


class ActionTokenCodec:
    def __init__(self, max_bytes: int = TOKEN_MAX_BYTES):
        self.max_bytes = int(max_bytes)

    @staticmethod
    def _grammar(verb: Verb | str) -> tuple[Verb, VerbSpec]:
        try:
            resolved = Verb(verb)
        except ValueError as exc:
            raise TokenError(f"unknown verb {verb!r}") from exc
        return resolved, GRAMMAR[resolved]

    def encode(self, verb: Verb | str, args: Sequence[Any] = (), tail: str | None = None) -> str:
        resolved, shape = self._grammar(verb)
        args = tuple(args)
        if len(args) != len(shape.args):
            raise TokenError(f"{resolved.value} takes {len(shape.args)} args, got {len(args)}")
        if shape.tail and tail is None:
            raise TokenError(f"{resolved.value} requires a free-text tail")
        if not shape.tail and tail is not None:
            raise TokenError(f"{resolved.value} takes no free-text tail")

        segments = [resolved.value]
        segments.extend(arg_spec.to_wire(value) for arg_spec, value in zip(shape.args, args))
        if shape.tail:
            segments.append(quote(tail, safe=""))

        token = DELIMITER.join(segments)
        self._check_size(token)
        return token

    def decode(self, token: str) -> ActionToken:
        if not isinstance(token, str) or not token:
            raise TokenDecodeError("empty token")
        self._check_size(token)

        segments = token.split(DELIMITER)
        try:
            verb, shape = self._grammar(segments[0])
        except TokenError as exc:
            raise TokenDecodeError(str(exc)) from exc

        front = len(shape.args)
        minimum = 1 + front + (1 if shape.tail else 0)
        if len(segments) < minimum or (not shape.tail and len(segments) != minimum):
            raise TokenDecodeError(f"{verb.value} token has {len(segments) - 1} segments")

        args = tuple(a.from_wire(raw) for a, raw in zip(shape.args, segments[1 : 1 + front]))

        tail = None
        if shape.tail:
            try:
                tail = unquote(DELIMITER.join(segments[1 + front :]), encoding="utf-8", errors="strict")
            except UnicodeDecodeError as exc:
                raise TokenDecodeError(f"{verb.value} tail is not valid percent-encoded UTF-8") from exc

        return ActionToken(verb, args, tail)

    def fits(self, verb: Verb | str, args: Sequence[Any] = (), tail: str | None = None) -> bool:
        try:
            self.encode(verb, args, tail)
        except TokenTooLongError:
            return False
        return True

    def _check_size(self, token: str):
        size = len(token.encode("utf-8"))
        if size > self.max_bytes:
            raise TokenTooLongError(size, self.max_bytes)


default_codec = ActionTokenCodec()


def encode_token(verb: Verb | str, args: Sequence[Any] = (), tail: str | None = None) -> str:
    return default_codec.encode(verb, args, tail)


def decode_token(token: str) -> ActionToken:
    return default_codec.decode(token)
