from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from skillgate.gate import MissingInput


class SkillGateError(Exception):
    """Base exception class for skillgate."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ConfigError(SkillGateError, ValueError):
    """Configuration error."""

    pass


class CorpusValidationError(SkillGateError, ValueError):
    """The corpus failed validation; the load was not applied.

    Carries every violation found across the corpus, not just the first.
    """

    def __init__(self, violations: Sequence[str]):
        self.violations = list(violations)
        count = len(self.violations)
        super().__init__(f"Corpus validation failed with {count} violation(s)")


class DefinitionParseError(SkillGateError, ValueError):
    """A definition document cannot be parsed.

    ``errors`` lists every problem found in the document.
    """

    def __init__(self, message: str, *, errors: Sequence[str] | None = None):
        self.errors = list(errors) if errors else [message]
        super().__init__(message)


class TemplateSyntaxError(SkillGateError, ValueError):
    """A body template is malformed (unbalanced or unknown block)."""

    def __init__(self, message: str, *, position: int | None = None):
        self.position = position
        super().__init__(message)


class TemplateRenderError(SkillGateError, RuntimeError):
    """A template referenced a variable that was not bound at assembly time."""

    pass


class NoMatchError(SkillGateError, LookupError):
    """No definition cleared the minimum match-confidence floor."""

    def __init__(self, task_text: str):
        self.task_text = task_text
        super().__init__(f"No matching definition for task: {task_text!r}")


class MissingInputError(SkillGateError, ValueError):
    """Required inputs of a definition were not supplied."""

    def __init__(self, definition_id: str, missing: Sequence[MissingInput]):
        self.definition_id = definition_id
        self.missing = list(missing)
        names = ", ".join(m.name for m in self.missing)
        super().__init__(f"Definition '{definition_id}' is missing required inputs: {names}")


class GeneratorTimeoutError(SkillGateError, TimeoutError):
    """The external generator did not answer within the configured timeout."""

    pass


class GeneratorUnavailableError(SkillGateError, RuntimeError):
    """The external generator failed or is unreachable."""

    pass


class OutputContractViolation(SkillGateError, ValueError):
    """A generated response broke its definition's output contract."""

    def __init__(self, definition_id: str, violations: Sequence[str]):
        self.definition_id = definition_id
        self.violations = list(violations)
        super().__init__(
            f"Response for '{definition_id}' violates its output contract: "
            + "; ".join(self.violations)
        )


class InvocationCancelled(SkillGateError):
    """The caller abandoned the invocation; no further phase runs."""

    pass


class InvalidTransitionError(SkillGateError, RuntimeError):
    """An invocation was moved along a transition its state machine forbids."""

    pass
