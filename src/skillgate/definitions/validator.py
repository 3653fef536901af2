"""Definition validation: the invariants a catalog entry must satisfy."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable

from skillgate.contract import contract_skeleton, normalize_heading, validate_output
from skillgate.exception import SkillGateError, TemplateSyntaxError
from skillgate.template import iter_references, parse_template

from .models import Definition

BUILTIN_VARIABLES = frozenset({"task"})
"""Variables the assembler always binds, independent of declared inputs."""

MAX_DESCRIPTION_LENGTH = 1024
MAX_DOCUMENT_SIZE = 100 * 1024  # 100KB

_ID_RE = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")


def is_valid_definition_id(definition_id: str) -> bool:
    """Validate definition id format.

    Valid ids:
    - 1-64 characters
    - Lowercase letters, numbers, and hyphens only
    - Cannot start or end with hyphen
    """
    if len(definition_id) < 1 or len(definition_id) > 64:
        return False
    return bool(_ID_RE.match(definition_id))


def validate_definition(definition: Definition) -> list[str]:
    """Validate one parsed definition.

    Returns:
        List of violation messages. Empty list means valid.
    """
    errors: list[str] = []

    if not is_valid_definition_id(definition.id):
        errors.append(
            f"Invalid id '{definition.id}': must be lowercase letters, "
            "numbers, and hyphens, 1-64 characters, not starting/ending with hyphen"
        )
    if len(definition.description) > MAX_DESCRIPTION_LENGTH:
        errors.append(f"Description exceeds {MAX_DESCRIPTION_LENGTH} character limit")
    if not definition.body_template.strip():
        errors.append("Body template is empty - add instructions for the generator")

    errors.extend(_validate_slots(definition))
    errors.extend(_validate_template(definition))
    errors.extend(_validate_contract(definition))
    if not errors:
        errors.extend(_self_test(definition))
    return errors


def _validate_slots(definition: Definition) -> list[str]:
    errors: list[str] = []
    counts = Counter(slot.name for slot in definition.inputs)
    required = set(definition.required_names)
    for name, count in counts.items():
        if name in BUILTIN_VARIABLES:
            errors.append(f"Input '{name}' shadows a builtin variable")
        if count == 1:
            continue
        if name in required and name in definition.optional_names:
            errors.append(f"Input '{name}' is declared both required and optional")
        else:
            errors.append(f"Input '{name}' is declared {count} times")
    return errors


def _validate_template(definition: Definition) -> list[str]:
    try:
        template = parse_template(definition.body_template)
    except TemplateSyntaxError as e:
        return [f"Template syntax error: {e.message}"]

    errors: list[str] = []
    declared = {slot.name for slot in definition.inputs} | BUILTIN_VARIABLES
    optional = set(definition.optional_names)
    for ref in iter_references(template):
        if ref.usage == "item":
            if "." not in ref.guards:
                errors.append("Template uses '{{.}}' outside an each block")
            continue
        if ref.name not in declared:
            if ref.usage == "var":
                errors.append(f"Template references undeclared input '{{{{{ref.name}}}}}'")
            else:
                errors.append(f"Template {ref.usage} block keyed on undeclared input '{ref.name}'")
            continue
        if ref.usage == "var" and ref.name in optional and ref.name not in ref.guards:
            errors.append(
                f"Optional input '{{{{{ref.name}}}}}' is used outside a conditional on it"
            )
    return _dedupe(errors)


def _validate_contract(definition: Definition) -> list[str]:
    errors: list[str] = []
    contract = definition.output_contract

    owners: dict[str, str] = {}
    for section in contract.sections:
        keys = [normalize_heading(heading) for heading in section.headings]
        if not all(keys):
            errors.append(f"Output section '{section.name}' has an empty heading")
        if len(set(keys)) < len(keys):
            errors.append(f"Output section '{section.name}' repeats a heading in its aliases")
        for key in dict.fromkeys(k for k in keys if k):
            owner = owners.setdefault(key, section.name)
            if owner != section.name:
                errors.append(
                    f"Output sections '{owner}' and '{section.name}' share the heading '{key}'"
                )

    rule_names = Counter(rule.name for rule in contract.forbidden)
    for name, count in rule_names.items():
        if count > 1:
            errors.append(f"Forbidden rule '{name}' is declared {count} times")
    for rule in contract.forbidden:
        if rule.pattern:
            try:
                re.compile(rule.pattern)
            except re.error as e:
                errors.append(f"Forbidden rule '{rule.name}' has an invalid pattern: {e}")

    return errors


def _self_test(definition: Definition) -> list[str]:
    """Assemble with every input bound and check the contract skeleton passes."""
    # Imported here: the assembler depends on this package's models.
    from skillgate.assembler import assemble

    bound = {slot.name: f"<{slot.name}>" for slot in definition.inputs}
    presence = {name: True for name in definition.optional_names}
    try:
        assemble(definition, bound, presence, task_text="<task>")
    except SkillGateError as e:
        return [f"Self-test assembly failed: {e.message}"]

    contract = definition.output_contract
    report = validate_output(contract, contract_skeleton(contract))
    return [f"Self-test: contract skeleton fails its own contract: {m}" for m in report.messages]


def validate_corpus(definitions: Iterable[Definition]) -> list[str]:
    """Cross-definition checks: ids must be unique."""
    errors: list[str] = []
    seen: dict[str, str] = {}
    for definition in definitions:
        first = seen.setdefault(definition.id, definition.source)
        if first != definition.source:
            errors.append(
                f"{definition.source}: duplicate id '{definition.id}' (first defined in {first})"
            )
    return errors


def _dedupe(errors: list[str]) -> list[str]:
    return list(dict.fromkeys(errors))
