"""Context gate: admit an invocation only when its required inputs are present."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from skillgate.definitions.models import Definition, InputKind
from skillgate.exception import MissingInputError


@dataclass(frozen=True, slots=True)
class Attachment:
    """An artifact supplied by the caller, named after the input slot it fills."""

    name: str
    content: str | bytes | tuple[str, ...]
    kind: str = "text"

    def __post_init__(self) -> None:
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))

    @classmethod
    def from_path(cls, name: str, path: Path) -> Attachment:
        """Read a file as an attachment; undecodable files are kept as bytes."""
        raw = path.read_bytes()
        try:
            return cls(name=name, content=raw.decode("utf-8"), kind="text")
        except UnicodeDecodeError:
            return cls(name=name, content=raw, kind="binary")

    @property
    def size(self) -> int:
        if isinstance(self.content, tuple):
            return sum(len(item) for item in self.content)
        return len(self.content)

    @property
    def is_empty(self) -> bool:
        """Zero-length, or nothing but whitespace."""
        if self.size == 0:
            return True
        if isinstance(self.content, bytes):
            return not self.content.strip()
        if isinstance(self.content, tuple):
            return not any(item.strip() for item in self.content)
        return not self.content.strip()

    def value_for(self, kind: InputKind) -> Any:
        """The value bound into the template for a slot of ``kind``."""
        if kind is InputKind.LIST:
            if isinstance(self.content, tuple):
                return [item for item in self.content if item.strip()]
            text = self.content
            if isinstance(text, bytes):
                text = text.decode("utf-8", "replace")
            return [line.strip() for line in text.splitlines() if line.strip()]
        if isinstance(self.content, tuple):
            return "\n".join(self.content)
        return self.content


@dataclass(frozen=True, slots=True)
class MissingInput:
    name: str
    purpose: str = ""


@dataclass(frozen=True, slots=True)
class GateReady:
    bound_variables: dict[str, Any] = field(default_factory=dict)
    presence_flags: dict[str, bool] = field(default_factory=dict)
    """One flag per optional input."""


@dataclass(frozen=True, slots=True)
class GateMissing:
    missing: tuple[MissingInput, ...]

    @property
    def names(self) -> list[str]:
        return [m.name for m in self.missing]


GateOutcome = GateReady | GateMissing


def gate(definition: Definition, attachments: Iterable[Attachment]) -> GateOutcome:
    """Compare a definition's declared inputs with what the caller attached.

    Returns ``GateMissing`` with every required input that has no non-empty
    attachment, in declaration order, or ``GateReady`` with the required and
    present optional inputs bound. Pure: no I/O, same answer for the same
    arguments. When several attachments share a name the last one wins.
    """
    supplied = {a.name: a for a in attachments}
    supplied = {name: a for name, a in supplied.items() if not a.is_empty}

    missing = tuple(
        MissingInput(name=slot.name, purpose=slot.purpose)
        for slot in definition.required_inputs
        if slot.name not in supplied
    )
    if missing:
        return GateMissing(missing=missing)

    bound: dict[str, Any] = {}
    presence: dict[str, bool] = {}
    for slot in definition.required_inputs:
        bound[slot.name] = supplied[slot.name].value_for(slot.kind)
    for slot in definition.optional_inputs:
        present = slot.name in supplied
        presence[slot.name] = present
        if present:
            bound[slot.name] = supplied[slot.name].value_for(slot.kind)
    return GateReady(bound_variables=bound, presence_flags=presence)


def require_ready(definition: Definition, outcome: GateOutcome) -> GateReady:
    """Unwrap a gate outcome.

    Raises:
        MissingInputError: If required inputs are missing.
    """
    if isinstance(outcome, GateMissing):
        raise MissingInputError(definition.id, outcome.missing)
    return outcome
