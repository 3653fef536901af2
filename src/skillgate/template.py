"""Body template syntax: parsing, reference extraction and rendering.

Supported syntax:

- ``{{name}}`` substitutes a bound variable verbatim.
- ``{{#if name}}...{{else}}...{{/if}}`` and ``{{#unless name}}...{{/unless}}``
  include a section depending on whether input ``name`` is present.
- ``{{#each name}}...{{.}}...{{/each}}`` repeats a section for every item of a
  list input.
- ``\\{{`` produces a literal ``{{``.

Block tags that sit alone on a line do not leave an empty line behind.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from skillgate.exception import TemplateRenderError, TemplateSyntaxError

BlockKind = Literal["if", "unless", "each"]

_TAG_RE = re.compile(r"\\\{\{|\{\{(.*?)\}\}", re.DOTALL)
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_BLOCK_KINDS: tuple[BlockKind, ...] = ("if", "unless", "each")


@dataclass(frozen=True, slots=True)
class Text:
    value: str


@dataclass(frozen=True, slots=True)
class Var:
    name: str
    position: int = 0


@dataclass(frozen=True, slots=True)
class Item:
    position: int = 0


@dataclass(frozen=True, slots=True)
class Block:
    kind: BlockKind
    name: str
    body: tuple[Node, ...] = ()
    alternate: tuple[Node, ...] = ()
    position: int = 0


Node = Text | Var | Item | Block


@dataclass(frozen=True, slots=True)
class Template:
    nodes: tuple[Node, ...]
    source: str = field(default="", repr=False)


@dataclass(frozen=True, slots=True)
class Reference:
    """A name used by a template together with the presence guards around it."""

    name: str
    usage: Literal["var", "if", "unless", "each", "item"]
    guards: frozenset[str]
    position: int


@dataclass
class _OpenBlock:
    kind: BlockKind
    name: str
    position: int
    body: list[Node] = field(default_factory=list)
    alternate: list[Node] | None = None

    @property
    def target(self) -> list[Node]:
        return self.alternate if self.alternate is not None else self.body


def parse_template(source: str) -> Template:
    """Parse template text into a node tree.

    Raises:
        TemplateSyntaxError: On unbalanced blocks, unknown directives, invalid
            placeholder names or an unclosed ``{{``.
    """
    root: list[Node] = []
    stack: list[_OpenBlock] = []
    pos = 0

    def emit(node: Node) -> None:
        (stack[-1].target if stack else root).append(node)

    def emit_text(text: str, offset: int) -> None:
        stray = text.find("{{")
        if stray != -1:
            raise TemplateSyntaxError(
                f"Unclosed placeholder at offset {offset + stray}", position=offset + stray
            )
        if text:
            emit(Text(text))

    for match in _TAG_RE.finditer(source):
        if match.start() < pos:
            continue
        if match.group(0) == "\\{{":
            emit_text(source[pos : match.start()], pos)
            emit(Text("{{"))
            pos = match.end()
            continue

        inner = match.group(1).strip()
        start, end = match.start(), match.end()
        is_block_tag = inner.startswith(("#", "/")) or inner == "else"
        if is_block_tag:
            start, end = _standalone_bounds(source, start, end)
        emit_text(source[pos:start], pos)
        pos = end

        if inner.startswith("#"):
            kind, name = _parse_block_open(inner, match.start())
            stack.append(_OpenBlock(kind=kind, name=name, position=match.start()))
        elif inner.startswith("/"):
            closing = inner[1:].strip()
            if not stack:
                raise TemplateSyntaxError(
                    f"Unexpected '{{{{/{closing}}}}}' without an open block",
                    position=match.start(),
                )
            block = stack.pop()
            if closing != block.kind:
                raise TemplateSyntaxError(
                    f"'{{{{/{closing}}}}}' closes a '{block.kind}' block opened at offset "
                    f"{block.position}",
                    position=match.start(),
                )
            emit(
                Block(
                    kind=block.kind,
                    name=block.name,
                    body=tuple(block.body),
                    alternate=tuple(block.alternate or ()),
                    position=block.position,
                )
            )
        elif inner == "else":
            if not stack or stack[-1].kind == "each":
                raise TemplateSyntaxError(
                    "'{{else}}' is only allowed inside an if/unless block", position=match.start()
                )
            if stack[-1].alternate is not None:
                raise TemplateSyntaxError(
                    "Duplicate '{{else}}' in one block", position=match.start()
                )
            stack[-1].alternate = []
        elif inner == ".":
            emit(Item(position=match.start()))
        elif _NAME_RE.fullmatch(inner):
            emit(Var(name=inner, position=match.start()))
        else:
            raise TemplateSyntaxError(
                f"Invalid placeholder '{match.group(0)}'", position=match.start()
            )

    emit_text(source[pos:], pos)
    if stack:
        block = stack[-1]
        raise TemplateSyntaxError(
            f"Unclosed '{block.kind}' block for '{block.name}' opened at offset {block.position}",
            position=block.position,
        )
    return Template(nodes=tuple(root), source=source)


def _parse_block_open(inner: str, position: int) -> tuple[BlockKind, str]:
    parts = inner[1:].split()
    if len(parts) != 2 or parts[0] not in _BLOCK_KINDS:
        raise TemplateSyntaxError(f"Unknown block directive '{{{{{inner}}}}}'", position=position)
    kind, name = parts
    if not _NAME_RE.fullmatch(name):
        raise TemplateSyntaxError(f"Invalid block variable '{name}'", position=position)
    return kind, name  # type: ignore[return-value]


def _standalone_bounds(source: str, start: int, end: int) -> tuple[int, int]:
    """Widen a block tag's span to its whole line when nothing else is on it."""
    line_start = source.rfind("\n", 0, start) + 1
    line_end = source.find("\n", end)
    if line_end == -1:
        line_end = len(source)
    if source[line_start:start].strip() or source[end:line_end].strip():
        return start, end
    return line_start, min(line_end + 1, len(source))


def iter_references(template: Template) -> Iterator[Reference]:
    """Yield every name the template uses, with the names known present around it."""
    yield from _walk(template.nodes, frozenset())


def _walk(nodes: tuple[Node, ...], guards: frozenset[str]) -> Iterator[Reference]:
    for node in nodes:
        match node:
            case Var(name=name, position=position):
                yield Reference(name, "var", guards, position)
            case Item(position=position):
                yield Reference(".", "item", guards, position)
            case Block(kind=kind, name=name, body=body, alternate=alternate, position=position):
                yield Reference(name, kind, guards, position)
                if kind == "unless":
                    yield from _walk(body, guards)
                    yield from _walk(alternate, guards | {name})
                else:
                    yield from _walk(body, guards | {name} | ({"."} if kind == "each" else set()))
                    yield from _walk(alternate, guards)
            case Text():
                pass


def template_references(template: Template) -> list[str]:
    """Names referenced by the template, in first-use order."""
    names: list[str] = []
    for ref in iter_references(template):
        if ref.usage != "item" and ref.name not in names:
            names.append(ref.name)
    return names


def render_template(
    template: Template,
    variables: Mapping[str, Any],
    presence: Mapping[str, bool] | None = None,
) -> str:
    """Render ``template`` with bound ``variables``.

    ``presence`` decides conditional sections; a name missing from it counts
    as present when it is bound in ``variables``.

    Raises:
        TemplateRenderError: If a placeholder outside a satisfied conditional
            is not bound.
    """
    presence = presence or {}
    out: list[str] = []
    _render(template.nodes, variables, presence, out, item=None)
    return "".join(out)


def _render(
    nodes: tuple[Node, ...],
    variables: Mapping[str, Any],
    presence: Mapping[str, bool],
    out: list[str],
    *,
    item: Any,
) -> None:
    for node in nodes:
        match node:
            case Text(value=value):
                out.append(value)
            case Var(name=name):
                if name not in variables:
                    raise TemplateRenderError(f"Template variable '{name}' is not bound")
                out.append(stringify(variables[name]))
            case Item():
                if item is None:
                    raise TemplateRenderError("'{{.}}' used outside an each block")
                out.append(stringify(item))
            case Block(kind="each", name=name, body=body):
                if not _is_present(name, variables, presence):
                    continue
                for each_item in as_items(variables.get(name)):
                    _render(body, variables, presence, out, item=each_item)
            case Block(kind=kind, name=name, body=body, alternate=alternate):
                present = _is_present(name, variables, presence)
                chosen = body if present == (kind == "if") else alternate
                _render(chosen, variables, presence, out, item=item)


def _is_present(name: str, variables: Mapping[str, Any], presence: Mapping[str, bool]) -> bool:
    if name in presence:
        return presence[name]
    return name in variables


def stringify(value: Any) -> str:
    """Render a bound value as text; lists become one item per line."""
    if isinstance(value, str):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (list, tuple)):
        return "\n".join(stringify(v) for v in value)
    return str(value)


def as_items(value: Any) -> list[Any]:
    """Items an each block iterates over; text is split into non-empty lines."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [line for line in stringify(value).splitlines() if line.strip()]
