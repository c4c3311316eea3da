"""
circuitforge-repair — design source parser

File: src/circuitforge_repair/verification_plane/source_parser.py
Last updated: 2026-10-19

Purpose
- Turn raw JSX-like design source into a typed sequence of element declarations
  without compiling it, so static checks and repairs can reason about components,
  traces and declared net intent.

What should be included in this file
- A character scanner that recognizes elements, attributes and their value forms.
- ``ElementDecl`` / ``Attribute`` records carrying source offsets for rewriting.
- ``parse_design`` producing ``ComponentDecl`` and ``TraceDecl`` views.

Functional requirements
- Attribute values: quoted strings, braced string or template literals, braced
  object literals (``{{ pin1: "net.VCC" }}``), other braced expressions, bare flags.
- Comments (``//``, ``/* */``) and string literals outside elements are skipped.
- Never raises on malformed input; an unterminated element is kept with whatever
  attributes were read before the break.

Non-functional requirements
- Standard library only; linear in the size of the source.
"""

from __future__ import annotations

import string
from bisect import bisect_right
from dataclasses import dataclass
from enum import StrEnum
from typing import Final


_IDENT_START: Final[frozenset[str]] = frozenset(string.ascii_letters + "_")
_IDENT_CHARS: Final[frozenset[str]] = frozenset(string.ascii_letters + string.digits + "_")
_TAG_CHARS: Final[frozenset[str]] = _IDENT_CHARS | {".", ":", "-"}
_ATTR_CHARS: Final[frozenset[str]] = _IDENT_CHARS | {":", "-"}
_KEY_CHARS: Final[frozenset[str]] = _IDENT_CHARS | {"$"}
_QUOTES: Final[str] = "\"'`"
_OPENERS: Final[dict[str, str]] = {"{": "}", "[": "]", "(": ")"}
_ESCAPES: Final[dict[str, str]] = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}

TRACE_TAG: Final[str] = "trace"


class AttributeKind(StrEnum):
    STRING = "string"
    OBJECT = "object"
    EXPRESSION = "expression"
    FLAG = "flag"


@dataclass(frozen=True, slots=True)
class Attribute:
    """One element attribute; ``value_start``/``value_end`` delimit its value text."""

    name: str
    kind: AttributeKind
    text: str
    entries: tuple[tuple[str, str], ...] = ()
    value_start: int = -1
    value_end: int = -1


@dataclass(frozen=True, slots=True)
class ElementDecl:
    """An opening (or self-closing) element tag found in design source."""

    tag: str
    attributes: tuple[Attribute, ...]
    line: int
    start: int
    end: int
    outer_end: int
    self_closing: bool

    @property
    def kind(self) -> str:
        return self.tag.lower()

    def attribute(self, name: str) -> Attribute | None:
        found: Attribute | None = None
        for attribute in self.attributes:
            if attribute.name == name:
                found = attribute
        return found

    def string_attribute(self, name: str) -> str | None:
        attribute = self.attribute(name)
        if attribute is None or attribute.kind is not AttributeKind.STRING:
            return None
        return attribute.text

    def object_entries(self, name: str) -> tuple[tuple[str, str], ...]:
        attribute = self.attribute(name)
        if attribute is None or attribute.kind is not AttributeKind.OBJECT:
            return ()
        return attribute.entries


@dataclass(frozen=True, slots=True)
class ComponentDecl:
    name: str
    tag: str
    pin_labels: tuple[tuple[str, str], ...]
    connections: tuple[tuple[str, str], ...]
    line: int
    element: ElementDecl


@dataclass(frozen=True, slots=True)
class TraceDecl:
    """A ``<trace>`` statement; ``*_dynamic`` marks endpoints given as expressions."""

    from_ref: str | None
    to_ref: str | None
    line: int
    index: int
    element: ElementDecl
    from_dynamic: bool = False
    to_dynamic: bool = False

    @property
    def missing_endpoint(self) -> bool:
        return (self.from_ref is None and not self.from_dynamic) or (
            self.to_ref is None and not self.to_dynamic
        )

    @property
    def label(self) -> str:
        return f"trace@{self.line}:{self.index}"


@dataclass(frozen=True, slots=True)
class DesignModel:
    """Typed view over one design source."""

    source: str
    elements: tuple[ElementDecl, ...]
    components: tuple[ComponentDecl, ...]
    traces: tuple[TraceDecl, ...]

    def component(self, name: str) -> ComponentDecl | None:
        found: ComponentDecl | None = None
        for component in self.components:
            if component.name == name:
                found = component
        return found

    def component_names(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for component in self.components:
            seen.setdefault(component.name, None)
        return tuple(seen)

    def closing_offset(self, tag: str) -> int | None:
        """Offset of the last ``</tag>`` in the source, if present."""

        offset = self.source.rfind(f"</{tag}")
        return None if offset < 0 else offset


def parse_design(source: str) -> DesignModel:
    """Parse ``source`` into components and traces in declaration order."""

    elements = scan_elements(source)
    components: list[ComponentDecl] = []
    traces: list[TraceDecl] = []
    for element in elements:
        if element.kind == TRACE_TAG:
            from_ref, from_dynamic = _endpoint_value(element.attribute("from"))
            to_ref, to_dynamic = _endpoint_value(element.attribute("to"))
            traces.append(
                TraceDecl(
                    from_ref=from_ref,
                    to_ref=to_ref,
                    line=element.line,
                    index=len(traces) + 1,
                    element=element,
                    from_dynamic=from_dynamic,
                    to_dynamic=to_dynamic,
                )
            )
            continue
        name = element.string_attribute("name")
        if name is None or not name.strip():
            continue
        components.append(
            ComponentDecl(
                name=name.strip(),
                tag=element.kind,
                pin_labels=_strip_entries(element.object_entries("pinLabels")),
                connections=_strip_entries(element.object_entries("connections")),
                line=element.line,
                element=element,
            )
        )
    return DesignModel(
        source=source,
        elements=elements,
        components=tuple(components),
        traces=tuple(traces),
    )


def scan_elements(source: str) -> tuple[ElementDecl, ...]:
    """Return every element tag in ``source`` in document order."""

    scanner = _Scanner(source)
    found: list[_PendingElement] = []
    open_stack: list[_PendingElement] = []

    while not scanner.at_end:
        char = scanner.peek()
        if scanner.startswith("//"):
            scanner.skip_line_comment()
            continue
        if scanner.startswith("/*"):
            scanner.skip_block_comment()
            continue
        if char in "\"'":
            if not scanner.skip_inline_string(char):
                scanner.pos += 1
            continue
        if char == "`":
            if not scanner.skip_template():
                scanner.pos += 1
            continue
        if char == "<" and scanner.peek(1) == "/":
            _close_element(scanner, open_stack)
            continue
        if char == "<" and scanner.peek(1) in _IDENT_START:
            element = _read_element(scanner)
            found.append(element)
            if not element.self_closing:
                open_stack.append(element)
            continue
        scanner.pos += 1

    return tuple(
        ElementDecl(
            tag=item.tag,
            attributes=tuple(item.attributes),
            line=item.line,
            start=item.start,
            end=item.end,
            outer_end=item.outer_end,
            self_closing=item.self_closing,
        )
        for item in found
    )


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


class _Scanner:
    def __init__(self, text: str) -> None:
        self.text = text
        self.length = len(text)
        self.pos = 0
        self._line_starts = [0] + [index + 1 for index, char in enumerate(text) if char == "\n"]

    @property
    def at_end(self) -> bool:
        return self.pos >= self.length

    def line_of(self, offset: int) -> int:
        return bisect_right(self._line_starts, offset)

    def peek(self, ahead: int = 0) -> str:
        index = self.pos + ahead
        return self.text[index] if index < self.length else ""

    def startswith(self, prefix: str) -> bool:
        return self.text.startswith(prefix, self.pos)

    def read_while(self, allowed: frozenset[str]) -> str:
        start = self.pos
        while self.pos < self.length and self.text[self.pos] in allowed:
            self.pos += 1
        return self.text[start : self.pos]

    def skip_whitespace(self) -> None:
        while self.pos < self.length and self.text[self.pos].isspace():
            self.pos += 1

    def skip_trivia(self) -> None:
        while not self.at_end:
            self.skip_whitespace()
            if self.startswith("//"):
                self.skip_line_comment()
            elif self.startswith("/*"):
                self.skip_block_comment()
            else:
                return

    def skip_line_comment(self) -> None:
        newline = self.text.find("\n", self.pos)
        self.pos = self.length if newline < 0 else newline + 1

    def skip_block_comment(self) -> None:
        close = self.text.find("*/", self.pos + 2)
        self.pos = self.length if close < 0 else close + 2

    def skip_inline_string(self, quote: str) -> bool:
        """Skip a quoted string that closes on the same line."""

        index = self.pos + 1
        while index < self.length:
            char = self.text[index]
            if char == "\\":
                index += 2
                continue
            if char == "\n":
                return False
            if char == quote:
                self.pos = index + 1
                return True
            index += 1
        return False

    def skip_template(self) -> bool:
        end = _find_quote_end(self.text, self.pos)
        if end is None:
            return False
        self.pos = end + 1
        return True


@dataclass(slots=True)
class _PendingElement:
    tag: str
    attributes: list[Attribute]
    line: int
    start: int
    end: int
    outer_end: int
    self_closing: bool


def _read_element(scanner: _Scanner) -> _PendingElement:
    start = scanner.pos
    scanner.pos += 1
    tag = scanner.read_while(_TAG_CHARS)
    attributes: list[Attribute] = []
    self_closing = True

    while True:
        scanner.skip_trivia()
        if scanner.at_end:
            break
        char = scanner.peek()
        if scanner.startswith("/>"):
            scanner.pos += 2
            break
        if char == ">":
            scanner.pos += 1
            self_closing = False
            break
        if char == "<":
            # A new tag starts before this one was closed.
            break
        if char == "{":
            # Spread attributes and inline comments carry nothing we can check.
            braced = _read_braced(scanner.text, scanner.pos)
            if braced is None:
                scanner.pos = scanner.length
                break
            scanner.pos = braced[1]
            continue
        if char in _IDENT_START:
            attribute = _read_attribute(scanner)
            if attribute is not None:
                attributes.append(attribute)
            continue
        scanner.pos += 1

    return _PendingElement(
        tag=tag,
        attributes=attributes,
        line=scanner.line_of(start),
        start=start,
        end=scanner.pos,
        outer_end=scanner.pos,
        self_closing=self_closing,
    )


def _close_element(scanner: _Scanner, open_stack: list[_PendingElement]) -> None:
    start = scanner.pos
    scanner.pos += 2
    scanner.skip_whitespace()
    tag = scanner.read_while(_TAG_CHARS)
    close = scanner.text.find(">", scanner.pos)
    if close < 0 or not tag:
        scanner.pos = start + 1
        return
    scanner.pos = close + 1
    for depth in range(len(open_stack) - 1, -1, -1):
        if open_stack[depth].tag == tag:
            open_stack[depth].outer_end = scanner.pos
            del open_stack[depth:]
            return


def _read_attribute(scanner: _Scanner) -> Attribute | None:
    name = scanner.read_while(_ATTR_CHARS)
    scanner.skip_whitespace()
    if scanner.peek() != "=":
        return Attribute(name=name, kind=AttributeKind.FLAG, text="true")
    scanner.pos += 1
    scanner.skip_whitespace()
    value_start = scanner.pos
    char = scanner.peek()

    if char in "\"'":
        close = scanner.text.find(char, scanner.pos + 1)
        if close < 0:
            scanner.pos = scanner.length
            return None
        scanner.pos = close + 1
        return Attribute(
            name=name,
            kind=AttributeKind.STRING,
            text=scanner.text[value_start + 1 : close],
            value_start=value_start,
            value_end=scanner.pos,
        )

    if char == "{":
        braced = _read_braced(scanner.text, scanner.pos)
        if braced is None:
            scanner.pos = scanner.length
            return None
        inner, scanner.pos = braced
        return _interpret_expression(name, inner, value_start, scanner.pos)

    # Unquoted value; tolerated for resilience.
    while not scanner.at_end and not scanner.peek().isspace() and scanner.peek() not in "/>":
        scanner.pos += 1
    if scanner.pos == value_start:
        return None
    return Attribute(
        name=name,
        kind=AttributeKind.EXPRESSION,
        text=scanner.text[value_start : scanner.pos],
        value_start=value_start,
        value_end=scanner.pos,
    )


def _interpret_expression(name: str, inner: str, value_start: int, value_end: int) -> Attribute:
    expression = _strip_parens(inner.strip())
    literal = _string_literal(expression)
    if literal is not None:
        return Attribute(
            name=name,
            kind=AttributeKind.STRING,
            text=literal,
            value_start=value_start,
            value_end=value_end,
        )
    if expression.startswith("{") and expression.endswith("}"):
        return Attribute(
            name=name,
            kind=AttributeKind.OBJECT,
            text=expression,
            entries=_object_entries(expression[1:-1]),
            value_start=value_start,
            value_end=value_end,
        )
    return Attribute(
        name=name,
        kind=AttributeKind.EXPRESSION,
        text=expression,
        value_start=value_start,
        value_end=value_end,
    )


# ---------------------------------------------------------------------------
# Literal helpers
# ---------------------------------------------------------------------------


def _find_quote_end(text: str, start: int) -> int | None:
    """Index of the quote closing the literal opened at ``start``."""

    quote = text[start]
    index = start + 1
    while index < len(text):
        char = text[index]
        if char == "\\":
            index += 2
            continue
        if char == quote:
            return index
        index += 1
    return None


def _read_braced(text: str, start: int) -> tuple[str, int] | None:
    """Read a balanced ``{...}`` starting at ``start``; return inner text and end offset."""

    depth = 0
    index = start
    while index < len(text):
        char = text[index]
        if char in _QUOTES:
            end = _find_quote_end(text, index)
            if end is None:
                return None
            index = end + 1
            continue
        if text.startswith("/*", index):
            close = text.find("*/", index + 2)
            if close < 0:
                return None
            index = close + 2
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start + 1 : index], index + 1
        index += 1
    return None


def _strip_parens(expression: str) -> str:
    while expression.startswith("(") and expression.endswith(")"):
        expression = expression[1:-1].strip()
    return expression


def _decode_literal(body: str) -> str:
    out: list[str] = []
    index = 0
    while index < len(body):
        char = body[index]
        if char == "\\" and index + 1 < len(body):
            nxt = body[index + 1]
            out.append(_ESCAPES.get(nxt, nxt))
            index += 2
            continue
        out.append(char)
        index += 1
    return "".join(out)


def _string_literal(expression: str) -> str | None:
    if len(expression) < 2 or expression[0] not in _QUOTES:
        return None
    end = _find_quote_end(expression, 0)
    if end != len(expression) - 1:
        return None
    body = expression[1:-1]
    if expression[0] == "`" and "${" in body:
        return None
    return _decode_literal(body)


def _skip_to_comma(body: str, index: int) -> int:
    """Advance past the next comma that is not nested inside brackets or strings."""

    depth = 0
    while index < len(body):
        char = body[index]
        if char in _QUOTES:
            end = _find_quote_end(body, index)
            if end is None:
                return len(body)
            index = end + 1
            continue
        if char in _OPENERS:
            depth += 1
        elif char in _OPENERS.values():
            depth -= 1
        elif char == "," and depth <= 0:
            return index + 1
        index += 1
    return len(body)


def _object_entries(body: str) -> tuple[tuple[str, str], ...]:
    """String-valued ``key: "value"`` entries of an object literal body, in order."""

    entries: list[tuple[str, str]] = []
    index = 0
    length = len(body)
    while index < length:
        while index < length and (body[index].isspace() or body[index] == ","):
            index += 1
        if body.startswith("//", index):
            newline = body.find("\n", index)
            index = length if newline < 0 else newline + 1
            continue
        if body.startswith("/*", index):
            close = body.find("*/", index + 2)
            index = length if close < 0 else close + 2
            continue
        if index >= length:
            break

        key: str | None = None
        if body[index] in _QUOTES:
            end = _find_quote_end(body, index)
            if end is not None:
                key = _string_literal(body[index : end + 1])
                index = end + 1
        elif body[index] in _KEY_CHARS:
            start = index
            while index < length and body[index] in _KEY_CHARS:
                index += 1
            key = body[start:index]

        while index < length and body[index].isspace():
            index += 1
        if key is None or index >= length or body[index] != ":":
            index = _skip_to_comma(body, index)
            continue
        index += 1
        while index < length and body[index].isspace():
            index += 1

        value: str | None = None
        if index < length and body[index] in _QUOTES:
            end = _find_quote_end(body, index)
            if end is not None:
                value = _string_literal(body[index : end + 1])
                index = end + 1
                while index < length and body[index].isspace():
                    index += 1
                if index < length and body[index] != ",":
                    value = None
        if value is not None:
            entries.append((key, value))
        index = _skip_to_comma(body, index)
    return tuple(entries)


def _endpoint_value(attribute: Attribute | None) -> tuple[str | None, bool]:
    if attribute is None:
        return None, False
    if attribute.kind is AttributeKind.STRING:
        return (attribute.text if attribute.text else None), False
    if attribute.kind is AttributeKind.EXPRESSION:
        return None, True
    return None, False


def _strip_entries(entries: tuple[tuple[str, str], ...]) -> tuple[tuple[str, str], ...]:
    return tuple((key.strip(), value.strip()) for key, value in entries if key.strip())


__all__ = [
    "TRACE_TAG",
    "Attribute",
    "AttributeKind",
    "ComponentDecl",
    "DesignModel",
    "ElementDecl",
    "TraceDecl",
    "parse_design",
    "scan_elements",
]
