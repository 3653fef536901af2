"""Text rendering of catalog entries and invocation outcomes for humans and hosts."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from skillgate.definitions.models import Definition
    from skillgate.definitions.store import Catalog
    from skillgate.gate import MissingInput
    from skillgate.matcher import RankedCandidate


def format_catalog_listing(definitions: Iterable[Definition]) -> str:
    """Format all definitions for display.

    Args:
        definitions: Catalog entries

    Returns:
        Formatted string showing every definition
    """
    definitions = sorted(definitions, key=lambda d: d.id)
    if not definitions:
        return "No definitions found. Add SKILL.md files or commands/*.md to the corpus."

    lines = ["**Available Definitions:**", ""]
    for definition in definitions:
        line = f"- **{definition.id}** ({definition.kind.value}): {definition.description}"
        if definition.triggers.keywords:
            triggers_str = ", ".join(definition.triggers.keywords[:5])  # Limit to 5 triggers
            line += f" [Triggers: {triggers_str}]"
        lines.append(line)
    return "\n".join(lines)


def format_definition_info(definition: Definition) -> str:
    """Format detailed definition information for display."""
    lines = [
        f"**Definition:** {definition.id}",
        f"**Kind:** {definition.kind.value}",
        f"**Description:** {definition.description}",
        f"**Source:** {definition.source}",
    ]
    if definition.triggers.names:
        lines.append(f"**Invocation names:** {', '.join(definition.triggers.names)}")
    for title, slots in (
        ("Required inputs", definition.required_inputs),
        ("Optional inputs", definition.optional_inputs),
    ):
        if not slots:
            continue
        lines.append(f"**{title}:**")
        for slot in slots:
            purpose = f": {slot.purpose}" if slot.purpose else ""
            lines.append(f"  - {slot.name} ({slot.kind.value}){purpose}")
    if definition.output_contract.sections:
        lines.append("**Output sections:**")
        for section in definition.output_contract.sections:
            marker = "" if section.required else " (optional)"
            lines.append(f"  - {section.name}{marker}")
    if definition.guardrails:
        lines.append("**Guardrails:**")
        lines.extend(f"  - {guardrail}" for guardrail in definition.guardrails)
    if definition.metadata:
        lines.append("**Metadata:**")
        for key, value in definition.metadata.items():
            lines.append(f"  - {key}: {value}")
    return "\n".join(lines)


def format_clarification(definition: Definition, missing: Sequence[MissingInput]) -> str:
    """Ask for every missing input in one message, then stop."""
    lines = [
        f"To run **{definition.id}** I need the following before I can continue:",
        "",
    ]
    for index, item in enumerate(missing, start=1):
        purpose = item.purpose or "required by this task"
        lines.append(f"{index}. Please attach `{item.name}` ({purpose}).")
    return "\n".join(lines)


def format_disambiguation(candidates: Sequence[RankedCandidate], catalog: Catalog) -> str:
    """List the candidates a request could mean and ask the caller to pick one."""
    lines = ["Your request matches more than one task. Which one did you mean?", ""]
    for index, candidate in enumerate(candidates, start=1):
        definition = catalog.get(candidate.definition_id)
        description = f": {definition.description}" if definition else ""
        lines.append(f"{index}. **{candidate.definition_id}**{description}")
    return "\n".join(lines)
