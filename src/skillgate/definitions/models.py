"""Data models for definitions and the catalog built from them."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DefinitionKind(str, Enum):
    """Where a definition came from in the corpus."""

    SKILL = "skill"
    COMMAND = "command"


class InputKind(str, Enum):
    TEXT = "text"
    LIST = "list"


class InputSlot(BaseModel):
    """A named input a definition declares, e.g. ``diff`` or ``changedFiles``."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Slot name, matched against attachment names")
    purpose: str = Field(default="", description="Why the definition needs this input")
    kind: InputKind = Field(default=InputKind.TEXT)


class Triggers(BaseModel):
    """Signals the matcher uses to pick a definition."""

    model_config = ConfigDict(frozen=True)

    names: tuple[str, ...] = Field(
        default=(), description="Explicit invocation names, e.g. 'review-pr' or '/review'"
    )
    keywords: tuple[str, ...] = Field(default=(), description="Keyword phrases")


class OutputSection(BaseModel):
    """A section the generated response must (or may) contain."""

    model_config = ConfigDict(frozen=True)

    name: str
    required: bool = True
    aliases: tuple[str, ...] = ()

    @property
    def headings(self) -> tuple[str, ...]:
        return (self.name, *self.aliases)


class ForbiddenRule(BaseModel):
    """A predicate over the response text; any match is a violation."""

    model_config = ConfigDict(frozen=True)

    name: str
    pattern: str
    message: str = ""


class OutputContract(BaseModel):
    model_config = ConfigDict(frozen=True)

    sections: tuple[OutputSection, ...] = ()
    forbidden: tuple[ForbiddenRule, ...] = ()

    @property
    def required_sections(self) -> tuple[OutputSection, ...]:
        return tuple(s for s in self.sections if s.required)


class Definition(BaseModel):
    """One skill or command, fully parsed.

    Definitions are created at corpus load time and never mutated; a reload
    replaces them wholesale.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Stable identifier (lowercase, hyphens, max 64 chars)")
    kind: DefinitionKind = DefinitionKind.SKILL
    description: str = Field(description="What the definition does and when to use it")
    triggers: Triggers = Field(default_factory=Triggers)
    required_inputs: tuple[InputSlot, ...] = ()
    optional_inputs: tuple[InputSlot, ...] = ()
    output_contract: OutputContract = Field(default_factory=OutputContract)
    guardrails: tuple[str, ...] = ()
    body_template: str = ""
    source: str = Field(default="", description="Document name relative to the corpus root")
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Arbitrary key-value pairs (author, version, etc.)"
    )

    @property
    def inputs(self) -> tuple[InputSlot, ...]:
        return self.required_inputs + self.optional_inputs

    @property
    def required_names(self) -> tuple[str, ...]:
        return tuple(slot.name for slot in self.required_inputs)

    @property
    def optional_names(self) -> tuple[str, ...]:
        return tuple(slot.name for slot in self.optional_inputs)

    @property
    def invocation_names(self) -> tuple[str, ...]:
        """Explicit names including the id itself, normalized and deduplicated."""
        names: list[str] = []
        for raw in (self.id, *self.triggers.names):
            name = normalize_name(raw)
            if name and name not in names:
                names.append(name)
        return tuple(names)

    def slot(self, name: str) -> InputSlot | None:
        for slot in self.inputs:
            if slot.name == name:
                return slot
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return self.model_dump(mode="json", exclude={"body_template"})


def normalize_name(name: str) -> str:
    """Normalize an invocation name: lowercase, no leading slash, trimmed."""
    return name.strip().lstrip("/").strip().lower()
