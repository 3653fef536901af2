"""Assembly of the instruction payload handed to the generator."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from skillgate.definitions.models import Definition, OutputContract
from skillgate.template import parse_template, render_template
from skillgate.utils.logging import logger


@dataclass(frozen=True, slots=True)
class InstructionPayload:
    """The final instruction text plus what went into it."""

    definition_id: str
    text: str
    variables: tuple[str, ...] = ()
    """Names of the variables that were bound."""
    omitted: tuple[str, ...] = ()
    """Optional inputs whose conditional sections were left out."""
    retry_instruction: str | None = field(default=None)

    def with_retry(self, instruction: str) -> InstructionPayload:
        """A copy of this payload carrying a targeted revision request."""
        return replace(self, retry_instruction=instruction)

    def render(self) -> str:
        """Text sent to the generator."""
        if not self.retry_instruction:
            return self.text
        return f"{self.text}\n\n{self.retry_instruction}"


def assemble(
    definition: Definition,
    bound_variables: Mapping[str, Any],
    presence_flags: Mapping[str, bool],
    *,
    task_text: str = "",
) -> InstructionPayload:
    """Bind variables into a definition's body template.

    Plain placeholders are substituted verbatim; conditional blocks are kept
    or dropped wholesale according to ``presence_flags``. The definition's
    guardrails and the required response layout are appended.

    Raises:
        TemplateSyntaxError: If the body template is malformed.
        TemplateRenderError: If a referenced variable is not bound.
    """
    template = parse_template(definition.body_template)
    variables: dict[str, Any] = {"task": task_text, **bound_variables}
    presence = {"task": bool(task_text.strip()), **presence_flags}
    body = render_template(template, variables, presence).strip()

    parts = [body]
    if definition.guardrails:
        parts.append(format_guardrails(definition.guardrails))
    if definition.output_contract.sections:
        parts.append(format_response_layout(definition.output_contract))

    omitted = tuple(name for name, present in presence_flags.items() if not present)
    logger.debug(
        "Assembled payload for {id}: {chars} chars, omitted sections for {omitted}",
        id=definition.id,
        chars=sum(len(p) for p in parts),
        omitted=list(omitted),
    )
    return InstructionPayload(
        definition_id=definition.id,
        text="\n\n".join(parts),
        variables=tuple(sorted(variables)),
        omitted=omitted,
    )


def format_guardrails(guardrails: tuple[str, ...]) -> str:
    lines = ["## Guardrails", "", "These constraints are mandatory:", ""]
    lines.extend(f"- {guardrail}" for guardrail in guardrails)
    return "\n".join(lines)


def format_response_layout(contract: OutputContract) -> str:
    lines = [
        "## Response Format",
        "",
        "Structure the response with these sections, in this order, "
        "each under its own markdown heading:",
        "",
    ]
    for index, section in enumerate(contract.sections, start=1):
        suffix = "" if section.required else " (optional)"
        lines.append(f"{index}. {section.name}{suffix}")
    return "\n".join(lines)
