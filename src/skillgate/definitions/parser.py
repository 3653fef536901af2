"""YAML frontmatter parsing for definition documents."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Any, cast

import yaml
from pydantic import ValidationError

from skillgate.contract import BUILTIN_PREDICATES
from skillgate.exception import DefinitionParseError

from .models import (
    Definition,
    DefinitionKind,
    ForbiddenRule,
    InputKind,
    InputSlot,
    OutputContract,
    OutputSection,
    Triggers,
)

KNOWN_FIELDS = {
    "id",
    "name",
    "kind",
    "description",
    "triggers",
    "inputs",
    "output",
    "guardrails",
    "metadata",
}


def parse_frontmatter(content: str) -> tuple[dict[str, Any], str]:
    """Parse YAML frontmatter from a definition document.

    Args:
        content: Raw document text

    Returns:
        Tuple of (metadata dict, markdown body)

    Raises:
        DefinitionParseError: If frontmatter is missing or invalid
    """
    if not content.startswith("---"):
        raise DefinitionParseError("Document must start with YAML frontmatter (---)")

    parts = content.split("---", 2)
    if len(parts) < 3:
        raise DefinitionParseError("Frontmatter not properly closed with ---")

    frontmatter_str = parts[1]
    body = parts[2].strip()

    try:
        raw_metadata: Any = yaml.safe_load(frontmatter_str)
    except yaml.YAMLError as e:
        raise DefinitionParseError(f"Invalid YAML in frontmatter: {e}") from e

    if not isinstance(raw_metadata, dict):
        raise DefinitionParseError("Frontmatter must be a YAML mapping")

    metadata = cast(dict[str, Any], raw_metadata)
    return metadata, body


def default_identity(document: str) -> tuple[str, DefinitionKind]:
    """Derive the fallback id and kind from a document's location.

    ``foo/SKILL.md`` is the skill ``foo``; ``commands/bar.md`` is the command
    ``bar``.
    """
    path = PurePosixPath(document)
    if path.name.lower() == "skill.md":
        return path.parent.name, DefinitionKind.SKILL
    return path.stem, DefinitionKind.COMMAND


def parse_definition(document: str, content: str) -> Definition:
    """Parse one definition document into a :class:`Definition`.

    Args:
        document: Document name relative to the corpus root
        content: Document text

    Raises:
        DefinitionParseError: With every structural problem found
    """
    metadata, body = parse_frontmatter(content)
    errors: list[str] = []
    default_id, default_kind = default_identity(document)

    raw_id = metadata.get("id", metadata.get("name", default_id))
    if not isinstance(raw_id, str) or not raw_id:
        errors.append("Field 'id' must be a non-empty string")
        raw_id = default_id

    kind = default_kind
    if "kind" in metadata:
        try:
            kind = DefinitionKind(metadata["kind"])
        except ValueError:
            errors.append(f"Invalid kind '{metadata['kind']}': expected 'skill' or 'command'")

    description = metadata.get("description")
    if not isinstance(description, str) or not description.strip():
        errors.append("Missing required field: description")
        description = ""

    triggers = _parse_triggers(metadata.get("triggers"), errors)
    required, optional = _parse_inputs(metadata.get("inputs"), errors)
    contract = _parse_contract(metadata.get("output"), errors)
    guardrails = _parse_string_list(metadata.get("guardrails"), "guardrails", errors)

    extra = metadata.get("metadata", {})
    if not isinstance(extra, dict):
        errors.append("Field 'metadata' must be a mapping")
        extra = {}
    extra = dict(cast(dict[str, Any], extra))
    extra.update({k: v for k, v in metadata.items() if k not in KNOWN_FIELDS})

    if errors:
        raise DefinitionParseError(f"Invalid definition in {document}", errors=errors)

    try:
        return Definition(
            id=raw_id,
            kind=kind,
            description=description.strip(),
            triggers=triggers,
            required_inputs=required,
            optional_inputs=optional,
            output_contract=contract,
            guardrails=guardrails,
            body_template=body,
            source=document,
            metadata=extra,
        )
    except ValidationError as e:
        raise DefinitionParseError(
            f"Invalid definition in {document}",
            errors=[f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()],
        ) from e


def _parse_string_list(raw: Any, field: str, errors: list[str]) -> tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if not isinstance(raw, list):
        errors.append(f"Field '{field}' must be a list of strings")
        return ()
    items: list[str] = []
    for item in cast(list[Any], raw):
        if item is None or item == "":
            continue
        if not isinstance(item, (str, int, float)):
            errors.append(f"Field '{field}' contains a non-string entry: {item!r}")
            continue
        items.append(str(item))
    return tuple(items)


def _parse_triggers(raw: Any, errors: list[str]) -> Triggers:
    # A plain list is a list of keyword phrases
    if raw is None or isinstance(raw, list):
        return Triggers(keywords=_parse_string_list(raw, "triggers", errors))
    if not isinstance(raw, dict):
        errors.append("Field 'triggers' must be a list or a mapping with names/keywords")
        return Triggers()
    data = cast(dict[str, Any], raw)
    unknown = set(data) - {"names", "keywords"}
    if unknown:
        errors.append(f"Unknown trigger fields: {', '.join(sorted(unknown))}")
    return Triggers(
        names=_parse_string_list(data.get("names"), "triggers.names", errors),
        keywords=_parse_string_list(data.get("keywords"), "triggers.keywords", errors),
    )


def _parse_inputs(raw: Any, errors: list[str]) -> tuple[tuple[InputSlot, ...], tuple[InputSlot, ...]]:
    if raw is None:
        return (), ()
    if not isinstance(raw, dict):
        errors.append("Field 'inputs' must be a mapping with required/optional")
        return (), ()
    data = cast(dict[str, Any], raw)
    unknown = set(data) - {"required", "optional"}
    if unknown:
        errors.append(f"Unknown input groups: {', '.join(sorted(unknown))}")
    return (
        _parse_slots(data.get("required"), "inputs.required", errors),
        _parse_slots(data.get("optional"), "inputs.optional", errors),
    )


def _parse_slots(raw: Any, field: str, errors: list[str]) -> tuple[InputSlot, ...]:
    if raw is None:
        return ()
    entries: list[tuple[Any, Any]]
    if isinstance(raw, dict):
        entries = list(cast(dict[Any, Any], raw).items())
    elif isinstance(raw, list):
        entries = []
        for item in cast(list[Any], raw):
            if isinstance(item, str):
                entries.append((item, None))
            elif isinstance(item, dict) and "name" in item:
                entry = dict(cast(dict[str, Any], item))
                entries.append((entry.pop("name"), entry))
            else:
                errors.append(f"Field '{field}' has an invalid entry: {item!r}")
    else:
        errors.append(f"Field '{field}' must be a mapping or a list")
        return ()

    slots: list[InputSlot] = []
    for name, entry in entries:
        if not isinstance(name, str) or not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
            errors.append(f"Invalid input name {name!r} in '{field}'")
            continue
        purpose, kind = "", InputKind.TEXT
        if isinstance(entry, str):
            purpose = entry
        elif isinstance(entry, dict):
            options = cast(dict[str, Any], entry)
            purpose = str(options.get("purpose", ""))
            try:
                kind = InputKind(options.get("kind", "text"))
            except ValueError:
                errors.append(f"Invalid kind for input '{name}': {options.get('kind')!r}")
        elif entry is not None:
            errors.append(f"Invalid declaration for input '{name}'")
            continue
        slots.append(InputSlot(name=name, purpose=purpose.strip(), kind=kind))
    return tuple(slots)


def _parse_contract(raw: Any, errors: list[str]) -> OutputContract:
    if raw is None:
        return OutputContract()
    if not isinstance(raw, dict):
        errors.append("Field 'output' must be a mapping with sections/forbidden")
        return OutputContract()
    data = cast(dict[str, Any], raw)

    sections: list[OutputSection] = []
    raw_sections = data.get("sections") or []
    if not isinstance(raw_sections, list):
        errors.append("Field 'output.sections' must be a list")
        raw_sections = []
    for item in cast(list[Any], raw_sections):
        if isinstance(item, str) and item.strip():
            sections.append(OutputSection(name=item.strip()))
        elif isinstance(item, dict) and isinstance(item.get("name"), str):
            entry = cast(dict[str, Any], item)
            sections.append(
                OutputSection(
                    name=entry["name"].strip(),
                    required=bool(entry.get("required", True)),
                    aliases=_parse_string_list(entry.get("aliases"), "aliases", errors),
                )
            )
        else:
            errors.append(f"Invalid output section: {item!r}")

    rules: list[ForbiddenRule] = []
    raw_forbidden = data.get("forbidden") or []
    if not isinstance(raw_forbidden, list):
        errors.append("Field 'output.forbidden' must be a list")
        raw_forbidden = []
    for item in cast(list[Any], raw_forbidden):
        if isinstance(item, str):
            if item not in BUILTIN_PREDICATES:
                known = ", ".join(sorted(BUILTIN_PREDICATES))
                errors.append(f"Unknown forbidden-content predicate '{item}' (builtin: {known})")
                continue
            rules.append(ForbiddenRule(name=item, pattern=""))
        elif isinstance(item, dict) and isinstance(item.get("name"), str):
            entry = cast(dict[str, Any], item)
            pattern = entry.get("pattern", "")
            if not pattern and entry["name"] not in BUILTIN_PREDICATES:
                errors.append(f"Forbidden rule '{entry['name']}' needs a pattern")
                continue
            rules.append(
                ForbiddenRule(
                    name=entry["name"],
                    pattern=str(pattern),
                    message=str(entry.get("message", "")),
                )
            )
        else:
            errors.append(f"Invalid forbidden rule: {item!r}")

    return OutputContract(sections=tuple(sections), forbidden=tuple(rules))
