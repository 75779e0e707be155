"""Field-scoped query language for the message index.

Grammar:
    query     := or_expr
    or_expr   := and_expr ("OR" and_expr)*
    and_expr  := not_expr (["AND"] not_expr)*     (juxtaposition = AND)
    not_expr  := ["NOT"] primary
    primary   := "(" or_expr ")" | clause | term
    clause    := fieldset ":" scoped               full-text
               | field "~" value                   substring / wildcard
               | field op value                    op: = != < <= > >=
    fieldset  := field | "{" field+ "}"
    scoped    := term | "(" or_expr-of-terms ")"
    term      := '"phrase"' ["*"] | word ["*"]     trailing * = prefix

Examples:
    subject:("consumable" "meat")
    subject:("cons"* "meat") AND sender:("ray"* "g"*)
    sender~"ray" senddate>=2020-07-01
    sender~"*hwang*" OR folder="Outlook"

The parser produces a small expression tree (Phrase, Prefix, Filter, And,
Or, Not). compile_where() turns it into a parameterised WHERE clause;
full-text sub-trees become one FTS5 MATCH expression in which every term
is double-quoted, so user text never reaches SQL or FTS5 syntax raw.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from ..errors import QuerySyntaxError, UnsupportedFieldOperation
from .schema import LAYOUT_FTS
from .store import RecordStatus

# ─────────────────────────────────────────────────────────────────────
# Fields
# ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Field:
    """A queryable field of the joined messages/folders view."""

    name: str
    sql: str
    numeric: bool = False
    tokenized: bool = False
    sortable: bool = True


FIELDS: dict[str, Field] = {
    f.name: f
    for f in (
        Field("filename", "m.filename", tokenized=True),
        Field("path", "m.path", tokenized=True),
        Field("size", "m.size", numeric=True),
        Field("time", "m.time", numeric=True),
        Field("contents", "m.contents", tokenized=True, sortable=False),
        Field("status", "m.status", numeric=True),
        Field("subject", "m.subject", tokenized=True),
        Field("sender", "m.sender", tokenized=True),
        Field("recipient", "m.recipient", tokenized=True),
        Field("cc", "m.cc", tokenized=True),
        Field("senddate", "m.senddate", numeric=True),
        Field("attachments", "m.attachments", sortable=False),
        Field("folder", "fld.name"),
    )
}

ALIASES = {
    "modified": "time",
    "body": "contents",
    "content": "contents",
    "from": "sender",
    "to": "recipient",
    "date": "senddate",
}

_DATE_FIELDS = {"time", "senddate"}


def resolve_field(name: str, position: int | None = None) -> Field:
    """
    Look up a field by name or alias (case-insensitive).

    Raises:
        QuerySyntaxError: If the name is not a known field
    """
    key = name.lower()
    key = ALIASES.get(key, key)
    field = FIELDS.get(key)
    if field is None:
        raise QuerySyntaxError(f"Unknown field {name!r}", position)
    return field


def _require_tokenized(field: Field) -> None:
    if not field.tokenized:
        raise UnsupportedFieldOperation(
            f"Field {field.name!r} is not full-text indexed; "
            f"use {field.name}=value or {field.name}~value instead"
        )


def parse_timestamp(value: str) -> int:
    """Parse epoch seconds or an ISO-8601 date/time (UTC if naive)."""
    try:
        return int(value)
    except ValueError:
        pass
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


# SQLite INTEGER range
_INT_MIN = -(2**63)
_INT_MAX = 2**63 - 1


def _coerce(field: Field, value: str, position: int) -> int | str:
    if not field.numeric:
        return value
    number = _coerce_number(field, value, position)
    if not _INT_MIN <= number <= _INT_MAX:
        raise QuerySyntaxError(
            f"{field.name} value {value!r} is out of range", position
        )
    return number


def _coerce_number(field: Field, value: str, position: int) -> int:
    if field.name in _DATE_FIELDS:
        try:
            return parse_timestamp(value)
        except ValueError:
            raise QuerySyntaxError(
                f"{field.name} expects epoch seconds or an ISO date, "
                f"got {value!r}",
                position,
            ) from None
    if field.name == "status" and not value.lstrip("-").isdigit():
        try:
            return int(RecordStatus[value.upper()])
        except KeyError:
            raise QuerySyntaxError(
                f"Unknown status {value!r}", position
            ) from None
    try:
        return int(value)
    except ValueError:
        raise QuerySyntaxError(
            f"{field.name} expects a number, got {value!r}", position
        ) from None


# ─────────────────────────────────────────────────────────────────────
# Expression tree
# ─────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Phrase:
    """Tokens of text appear in sequence in one of fields (() = any)."""

    fields: tuple[str, ...]
    text: str


@dataclass(frozen=True)
class Prefix:
    """Like Phrase, but the last token only has to start with the text."""

    fields: tuple[str, ...]
    text: str


@dataclass(frozen=True)
class Filter:
    """Structured predicate on one column."""

    field: str
    op: str  # = != < <= > >= like glob
    value: int | str


@dataclass(frozen=True)
class And:
    children: tuple


@dataclass(frozen=True)
class Or:
    children: tuple


@dataclass(frozen=True)
class Not:
    child: object


# ─────────────────────────────────────────────────────────────────────
# Lexer
# ─────────────────────────────────────────────────────────────────────

_WORD, _STRING, _OP, _EOF = "word", "string", "op", "eof"
_PUNCT = {
    "(": "lparen",
    ")": "rparen",
    "{": "lbrace",
    "}": "rbrace",
    ":": "colon",
    "~": "tilde",
}
_SPECIAL = set('(){}:~"=!<>*')
_KEYWORDS = {"AND", "OR", "NOT"}
MAX_NESTING = 100


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    pos: int
    prefix: bool = False

    def describe(self) -> str:
        if self.kind == _EOF:
            return "end of query"
        return repr(self.value)


def tokenize(text: str) -> list[Token]:
    """Split a query into tokens. A '*' glued to a term marks a prefix."""
    tokens: list[Token] = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue

        if ch in _PUNCT:
            tokens.append(Token(_PUNCT[ch], ch, i))
            i += 1
            continue

        if ch in "=!<>":
            two = text[i : i + 2]
            if two in ("!=", "<=", ">="):
                op = two
            elif ch != "!":
                op = ch
            else:
                raise QuerySyntaxError("Expected '!='", i)
            tokens.append(Token(_OP, op, i))
            i += len(op)
            continue

        if ch == "*":
            raise QuerySyntaxError("'*' must directly follow a term", i)

        if ch == '"':
            # Phrase; a doubled quote inside stands for one quote
            parts: list[str] = []
            j = i + 1
            while True:
                end = text.find('"', j)
                if end == -1:
                    raise QuerySyntaxError("Unterminated phrase", i)
                parts.append(text[j:end])
                if text.startswith('"', end + 1):
                    parts.append('"')
                    j = end + 2
                    continue
                j = end + 1
                break
            kind, value = _STRING, "".join(parts)
        else:
            j = i
            while j < n and not text[j].isspace() and text[j] not in _SPECIAL:
                j += 1
            kind, value = _WORD, text[i:j]

        prefix = j < n and text[j] == "*"
        tokens.append(Token(kind, value, i, prefix))
        i = j + 1 if prefix else j

    tokens.append(Token(_EOF, "", n))
    return tokens


# ─────────────────────────────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────────────────────────────


class _Parser:
    def __init__(self, text: str):
        self.tokens = tokenize(text)
        self.index = 0
        self.depth = 0

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.index + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.peek()
        self.index += 1
        return token

    def expect(self, kind: str, what: str) -> Token:
        token = self.advance()
        if token.kind != kind:
            raise QuerySyntaxError(
                f"Expected {what}, got {token.describe()}", token.pos
            )
        return token

    def at_keyword(self, keyword: str) -> bool:
        token = self.peek()
        return token.kind == _WORD and token.value == keyword

    def parse(self):
        if self.peek().kind == _EOF:
            return None
        node = self.parse_or(None)
        token = self.peek()
        if token.kind != _EOF:
            raise QuerySyntaxError(f"Unexpected {token.describe()}", token.pos)
        return node

    # scope is None at top level, or the field tuple inside field:( ... )

    def parse_or(self, scope):
        children = [self.parse_and(scope)]
        while self.at_keyword("OR"):
            self.advance()
            children.append(self.parse_and(scope))
        return children[0] if len(children) == 1 else Or(tuple(children))

    def parse_and(self, scope):
        children = [self.parse_not(scope)]
        while True:
            if self.at_keyword("AND"):
                self.advance()
            elif self.peek().kind in (_EOF, "rparen") or self.at_keyword("OR"):
                break
            children.append(self.parse_not(scope))
        return children[0] if len(children) == 1 else And(tuple(children))

    def parse_not(self, scope):
        if self.at_keyword("NOT"):
            self.advance()
            return Not(self.parse_primary(scope))
        return self.parse_primary(scope)

    def parse_primary(self, scope):
        token = self.peek()

        if token.kind == "lparen":
            return self.parse_group(scope)

        if scope is not None:
            return self.parse_term(scope)

        if token.kind == "lbrace":
            fields = self.parse_fieldset()
            self.expect("colon", "':' after field set")
            return self.parse_scoped(fields)

        if token.kind == _WORD and token.value not in _KEYWORDS:
            following = self.peek(1)
            if following.kind == "colon" and not token.prefix:
                field = resolve_field(token.value, token.pos)
                _require_tokenized(field)
                self.index += 2
                return self.parse_scoped((field.name,))
            if following.kind == "tilde" and not token.prefix:
                return self.parse_pattern()
            if following.kind == _OP and not token.prefix:
                return self.parse_comparison()

        return self.parse_term(())

    def parse_group(self, scope):
        token = self.expect("lparen", "'('")
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise QuerySyntaxError(
                f"Parentheses nested deeper than {MAX_NESTING}", token.pos
            )
        node = self.parse_or(scope)
        self.expect("rparen", "')'")
        self.depth -= 1
        return node

    def parse_fieldset(self) -> tuple[str, ...]:
        self.expect("lbrace", "'{'")
        names: list[str] = []
        while self.peek().kind == _WORD:
            token = self.advance()
            field = resolve_field(token.value, token.pos)
            _require_tokenized(field)
            if field.name not in names:
                names.append(field.name)
        self.expect("rbrace", "'}'")
        if not names:
            raise QuerySyntaxError("Empty field set", self.peek().pos)
        return tuple(names)

    def parse_scoped(self, fields: tuple[str, ...]):
        if self.peek().kind == "lparen":
            return self.parse_group(fields)
        return self.parse_term(fields)

    def parse_term(self, fields: tuple[str, ...]):
        token = self.advance()
        if token.kind not in (_WORD, _STRING) or (
            token.kind == _WORD and token.value in _KEYWORDS
        ):
            raise QuerySyntaxError(
                f"Expected a search term, got {token.describe()}", token.pos
            )
        if not token.value.strip():
            raise QuerySyntaxError("Empty search term", token.pos)
        if token.prefix:
            return Prefix(fields, token.value)
        return Phrase(fields, token.value)

    def parse_value(self) -> Token:
        token = self.advance()
        if token.kind not in (_WORD, _STRING):
            raise QuerySyntaxError(
                f"Expected a value, got {token.describe()}", token.pos
            )
        return token

    def parse_pattern(self) -> Filter:
        name = self.advance()
        field = resolve_field(name.value, name.pos)
        self.advance()  # ~
        token = self.parse_value()
        value = token.value + ("*" if token.prefix else "")
        if not value:
            raise QuerySyntaxError("Empty pattern", token.pos)
        op = "glob" if any(c in value for c in "*?[") else "like"
        return Filter(field.name, op, value)

    def parse_comparison(self) -> Filter:
        name = self.advance()
        field = resolve_field(name.value, name.pos)
        op = self.advance().value
        token = self.parse_value()
        if token.prefix:
            raise QuerySyntaxError(
                "Use field~\"pattern*\" for wildcard matches", token.pos
            )
        return Filter(field.name, op, _coerce(field, token.value, token.pos))


def parse_query(text: str | None):
    """
    Parse a query string into an expression tree.

    Returns:
        The root node, or None for an empty query (matches everything)

    Raises:
        QuerySyntaxError: Unknown field or malformed syntax
        UnsupportedFieldOperation: Full-text clause on a non-indexed field
    """
    if text is None or not text.strip():
        return None
    return _Parser(text).parse()


# ─────────────────────────────────────────────────────────────────────
# Compiler
# ─────────────────────────────────────────────────────────────────────


def _is_text(node) -> bool:
    if isinstance(node, (Phrase, Prefix)):
        return True
    if isinstance(node, (And, Or)):
        return all(_is_text(child) for child in node.children)
    return False


def _quote(text: str) -> str:
    return '"' + text.replace('"', '""') + '"'


def render_match(node) -> str:
    """Render a full-text-only sub-tree as an FTS5 MATCH expression."""
    if isinstance(node, (Phrase, Prefix)):
        term = _quote(node.text)
        if isinstance(node, Prefix):
            term += "*"
        if not node.fields:
            return term
        if len(node.fields) == 1:
            return f"{node.fields[0]}:{term}"
        return "{" + " ".join(node.fields) + "}:" + term
    joiner = " AND " if isinstance(node, And) else " OR "
    return "(" + joiner.join(render_match(c) for c in node.children) + ")"


def _escape_like(value: str) -> str:
    return (
        value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    )


class _Compiler:
    def __init__(self, layout: str):
        self.layout = layout
        self.params: list = []

    def compile(self, node) -> str:
        if _is_text(node):
            return self.match(node)
        if isinstance(node, (And, Or)):
            return self.boolean(node)
        if isinstance(node, Not):
            return f"NOT ({self.compile(node.child)})"
        return self.filter(node)

    def match(self, node) -> str:
        if self.layout != LAYOUT_FTS:
            raise UnsupportedFieldOperation(
                "Full-text search needs the fts layout; "
                "run 'msgsearcher migrate fts'"
            )
        self.params.append(render_match(node))
        return (
            "m.rowid IN (SELECT rowid FROM messages_fts "
            "WHERE messages_fts MATCH ?)"
        )

    def boolean(self, node) -> str:
        # Full-text siblings share a single MATCH
        text = [c for c in node.children if _is_text(c)]
        other = [c for c in node.children if not _is_text(c)]
        parts = []
        if text:
            parts.append(
                self.match(text[0] if len(text) == 1 else type(node)(tuple(text)))
            )
        parts.extend(self.compile(c) for c in other)
        joiner = " AND " if isinstance(node, And) else " OR "
        return "(" + joiner.join(parts) + ")"

    def filter(self, node: Filter) -> str:
        field = FIELDS[node.field]
        if node.op == "like":
            self.params.append(f"%{_escape_like(node.value)}%")
            return f"COALESCE({field.sql}, '') LIKE ? ESCAPE '\\'"
        if node.op == "glob":
            self.params.append(node.value)
            return f"COALESCE({field.sql}, '') GLOB ?"
        self.params.append(node.value)
        return f"{field.sql} {node.op} ?"


def compile_where(node, layout: str) -> tuple[str, list]:
    """
    Compile an expression tree into a WHERE clause over messages m and
    folders fld.

    Returns:
        (sql, params); sql is "1" for an empty query

    Raises:
        UnsupportedFieldOperation: Full-text clause against the row layout
    """
    if node is None:
        return "1", []
    compiler = _Compiler(layout)
    sql = compiler.compile(node)
    return sql, compiler.params
