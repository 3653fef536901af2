"""Output contract validation for generated responses."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from skillgate.exception import OutputContractViolation
from skillgate.utils.redact import find_secrets, redact_secrets

if TYPE_CHECKING:
    from skillgate.definitions.models import ForbiddenRule, OutputContract

_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})\s+(.*?)\s*#*\s*$")
_BOLD_LINE_RE = re.compile(r"^ {0,3}(?:\*\*|__)(.+?)(?:\*\*|__)\s*:?\s*$")
_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})(.*)$")
_SETEXT_RE = re.compile(r"^ {0,3}(?:=+|-+)\s*$")
_LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s")
_NUMBERING_RE = re.compile(r"^(?:\d+[.)]|[ivx]+\.)\s+")
_SNIPPET_LIMIT = 60

_EVIDENCE = r"(?:ci\s+|test\s+|build\s+|pytest\s+)?(?:log|output|run|report|job|results?)s?\b"
_CITATION = (
    r"\baccording\s+to\s+\S"
    rf"|\bper\s+(?:the\s+)?(?:attached\s+)?{_EVIDENCE}"
    rf"|\bsee\s+(?:the\s+)?(?:attached\s+)?{_EVIDENCE}"
    r"|\bsee\s+(?:[`\[]|https?://|\S+\.(?:log|txt|out|xml|json|html)\b)"
    rf"|\b(?:in|from)\s+(?:the\s+)?(?:attached\s+)?{_EVIDENCE}"
    r"|\b(?:ran|running)\s+`"
)
_UNVERIFIED_TESTS_RE = re.compile(
    r"\b(?:all\s+)?(?:the\s+)?tests?\s+(?:have\s+|are\s+|were\s+)?"
    r"(?:pass(?:ed|es|ing)?|succeed(?:ed|s)?|green)\b"
    rf"(?![^\n]*?(?:{_CITATION}))",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class Predicate:
    """A builtin forbidden-content predicate."""

    name: str
    description: str
    finder: Callable[[str], list[re.Match[str]]]


BUILTIN_PREDICATES: dict[str, Predicate] = {
    "secrets": Predicate(
        name="secrets",
        description="contains an unredacted credential or secret-shaped token",
        finder=find_secrets,
    ),
    "unverified-test-claims": Predicate(
        name="unverified-test-claims",
        description="claims tests passed without pointing at the run that shows it",
        finder=lambda text: list(_UNVERIFIED_TESTS_RE.finditer(text)),
    ),
}


class ViolationKind(str, Enum):
    MISSING_SECTION = "missing_section"
    DUPLICATE_SECTION = "duplicate_section"
    SECTION_ORDER = "section_order"
    FORBIDDEN_CONTENT = "forbidden_content"


@dataclass(frozen=True, slots=True)
class ContractViolation:
    kind: ViolationKind
    target: str
    """Section name or forbidden rule name."""
    detail: str = ""

    def __str__(self) -> str:
        match self.kind:
            case ViolationKind.MISSING_SECTION:
                return f"missing section: {self.target}"
            case ViolationKind.DUPLICATE_SECTION:
                return f"duplicate section: {self.target} ({self.detail})"
            case ViolationKind.SECTION_ORDER:
                return f"section out of order: {self.target}"
            case ViolationKind.FORBIDDEN_CONTENT:
                return f"forbidden content ({self.target}): {self.detail}"


@dataclass(frozen=True, slots=True)
class ContractReport:
    """Outcome of checking one response against an output contract."""

    contract: OutputContract
    violations: tuple[ContractViolation, ...] = field(default=())

    @property
    def passed(self) -> bool:
        return not self.violations

    @property
    def messages(self) -> list[str]:
        return [str(v) for v in self.violations]

    def raise_for_violations(self, definition_id: str) -> None:
        if self.violations:
            raise OutputContractViolation(definition_id, self.messages)


@dataclass(frozen=True, slots=True)
class Heading:
    key: str
    text: str
    line: int


def normalize_heading(text: str) -> str:
    """Normalize heading text for comparison.

    Case-folds, drops emphasis markers and leading numbering, collapses
    whitespace and strips trailing punctuation.
    """
    text = re.sub(r"[*_`]", "", text).strip()
    text = _NUMBERING_RE.sub("", text)
    text = " ".join(text.split()).casefold()
    return text.rstrip(":.").strip()


def extract_headings(response: str) -> list[Heading]:
    """Find section headings in a markdown response.

    ATX headings (``## Summary``), setext headings (a paragraph underlined
    with ``===`` or ``---``) and whole-line bold text count. Nothing inside a
    fenced code block does; a fence only closes on a bare run of the same
    character at least as long as the one that opened it.
    """
    headings: list[Heading] = []
    fence: str | None = None
    paragraph: list[tuple[int, str]] = []
    for lineno, line in enumerate(response.splitlines(), start=1):
        fence_match = _FENCE_RE.match(line)
        if fence is not None:
            if fence_match and _closes(fence, fence_match):
                fence = None
            continue
        if fence_match:
            fence = fence_match.group(1)
            paragraph = []
            continue

        if paragraph and _SETEXT_RE.match(line):
            text = " ".join(part.strip() for _, part in paragraph)
            _append_heading(headings, text, paragraph[0][0])
            paragraph = []
            continue

        match = _HEADING_RE.match(line) or _BOLD_LINE_RE.match(line)
        if match is not None:
            _append_heading(headings, match.group(match.lastindex or 1), lineno)
            paragraph = []
        elif line.strip() and not (_LIST_ITEM_RE.match(line) or _SETEXT_RE.match(line)):
            paragraph.append((lineno, line))
        else:
            paragraph = []
    return headings


def _closes(fence: str, match: re.Match[str]) -> bool:
    marker, rest = match.group(1), match.group(2)
    return marker[0] == fence[0] and len(marker) >= len(fence) and not rest.strip()


def _append_heading(headings: list[Heading], text: str, line: int) -> None:
    key = normalize_heading(text)
    if key:
        headings.append(Heading(key=key, text=text.strip(), line=line))


def find_forbidden(rule: ForbiddenRule, response: str) -> list[re.Match[str]]:
    """Matches of ``rule`` in ``response``.

    Raises:
        re.error: If the rule's custom pattern does not compile.
    """
    if rule.pattern:
        return list(re.finditer(rule.pattern, response, re.MULTILINE))
    return BUILTIN_PREDICATES[rule.name].finder(response)


def _rule_message(rule: ForbiddenRule) -> str:
    if rule.message:
        return rule.message
    if not rule.pattern and rule.name in BUILTIN_PREDICATES:
        return BUILTIN_PREDICATES[rule.name].description
    return f"matches pattern {rule.pattern!r}"


def _snippet(match: re.Match[str]) -> str:
    text = " ".join(redact_secrets(match.group(0)).split())
    if len(text) > _SNIPPET_LIMIT:
        text = text[: _SNIPPET_LIMIT - 3] + "..."
    return text


def validate_output(contract: OutputContract, response: str) -> ContractReport:
    """Check ``response`` against ``contract``.

    Every required section must appear exactly once, sections that appear must
    follow the declared order, and no forbidden-content predicate may match.
    """
    violations: list[ContractViolation] = []
    headings = extract_headings(response)

    found: list[tuple[str, int]] = []
    for section in contract.sections:
        keys = {normalize_heading(h) for h in section.headings}
        positions = [i for i, heading in enumerate(headings) if heading.key in keys]
        if not positions:
            if section.required:
                violations.append(ContractViolation(ViolationKind.MISSING_SECTION, section.name))
            continue
        if len(positions) > 1:
            violations.append(
                ContractViolation(
                    ViolationKind.DUPLICATE_SECTION,
                    section.name,
                    f"found {len(positions)} times",
                )
            )
        found.append((section.name, positions[0]))

    furthest = -1
    for name, position in found:
        if position < furthest:
            violations.append(ContractViolation(ViolationKind.SECTION_ORDER, name))
        furthest = max(furthest, position)

    for rule in contract.forbidden:
        matches = find_forbidden(rule, response)
        if not matches:
            continue
        detail = f"{_rule_message(rule)} ({len(matches)} match(es), first: '{_snippet(matches[0])}')"
        violations.append(ContractViolation(ViolationKind.FORBIDDEN_CONTENT, rule.name, detail))

    return ContractReport(contract=contract, violations=tuple(violations))


def build_retry_instruction(report: ContractReport) -> str:
    """Describe exactly what a regenerated response has to fix."""
    if report.passed:
        return ""
    order = ", ".join(s.name for s in report.contract.sections)
    lines = [
        "## Revision Required",
        "",
        "Your previous response did not satisfy the required output format.",
        "Fix exactly the problems below and keep the rest of the response unchanged:",
        "",
    ]
    for violation in report.violations:
        match violation.kind:
            case ViolationKind.MISSING_SECTION:
                lines.append(f'- Add the missing section "{violation.target}" under its own heading.')
            case ViolationKind.DUPLICATE_SECTION:
                lines.append(
                    f'- Keep a single "{violation.target}" section ({violation.detail}).'
                )
            case ViolationKind.SECTION_ORDER:
                lines.append(
                    f'- Move "{violation.target}" so the sections follow this order: {order}.'
                )
            case ViolationKind.FORBIDDEN_CONTENT:
                lines.append(f'- Remove content flagged by "{violation.target}": {violation.detail}.')
    return "\n".join(lines)


def contract_skeleton(contract: OutputContract) -> str:
    """A minimal response that lays out every section in order."""
    return "\n\n".join(f"## {section.name}\n\n..." for section in contract.sections)
