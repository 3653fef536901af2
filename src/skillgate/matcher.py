"""Trigger matching: rank catalog definitions against a task description."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from skillgate.config import MatcherConfig
from skillgate.definitions.models import Definition, normalize_name
from skillgate.definitions.store import Catalog, content_tokens, tokenize
from skillgate.exception import NoMatchError
from skillgate.utils.logging import logger


class MatchStatus(str, Enum):
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no_match"


@dataclass(frozen=True, slots=True)
class RankedCandidate:
    """One scored definition."""

    definition_id: str
    score: float
    reasons: tuple[str, ...] = ()
    exact: bool = False
    """True when the task named the definition explicitly."""


@dataclass(frozen=True, slots=True)
class MatchOutcome:
    status: MatchStatus
    candidates: tuple[RankedCandidate, ...]
    """Resolved: the winner first. Ambiguous: the disambiguation set. No match:
    the best scorers below the floor, for diagnostics."""
    task_text: str = ""

    @property
    def resolved_id(self) -> str | None:
        if self.status is MatchStatus.RESOLVED:
            return self.candidates[0].definition_id
        return None


def match(
    catalog: Catalog,
    task_text: str,
    attachment_names: Iterable[str] = (),
    config: MatcherConfig | None = None,
) -> MatchOutcome:
    """Rank definitions for ``task_text`` and decide whether one clearly wins.

    An explicit invocation name beats everything else. Otherwise the top
    candidate must clear ``min_score`` and lead the runner-up by ``margin``;
    when it does not, the top ``top_k`` candidates are returned for the caller
    to choose from. Ties are broken by id, so the result only depends on the
    catalog snapshot and the inputs.
    """
    config = config or MatcherConfig()
    attachments = frozenset(attachment_names)
    text = " ".join(task_text.lower().split())
    tokens = tokenize(text)

    ranked = sorted(
        (
            score_definition(definition, text, tokens, attachments, config)
            for definition in _candidate_definitions(catalog, text, tokens, attachments)
        ),
        key=lambda c: (-c.score, c.definition_id),
    )
    for candidate in ranked:
        logger.trace(
            "Candidate {id}: {score} ({reasons})",
            id=candidate.definition_id,
            score=candidate.score,
            reasons=", ".join(candidate.reasons),
        )

    outcome = _decide(ranked, config, task_text)
    logger.debug(
        "Match for {text!r}: {status} {ids}",
        text=task_text[:80],
        status=outcome.status.value,
        ids=[c.definition_id for c in outcome.candidates],
    )
    return outcome


def resolve(
    catalog: Catalog,
    task_text: str,
    attachment_names: Iterable[str] = (),
    config: MatcherConfig | None = None,
) -> MatchOutcome:
    """Like :func:`match`, but a task with no viable candidate is an error.

    Raises:
        NoMatchError: If no definition clears the minimum score.
    """
    outcome = match(catalog, task_text, attachment_names, config)
    if outcome.status is MatchStatus.NO_MATCH:
        raise NoMatchError(task_text)
    return outcome


def _decide(
    ranked: list[RankedCandidate], config: MatcherConfig, task_text: str
) -> MatchOutcome:
    exact = [c for c in ranked if c.exact]
    if len(exact) == 1:
        winner = exact[0]
        rest = tuple(c for c in ranked if c is not winner)
        return MatchOutcome(MatchStatus.RESOLVED, (winner, *rest), task_text)
    if len(exact) > 1:
        ordered = tuple(sorted(exact, key=lambda c: c.definition_id))
        return MatchOutcome(MatchStatus.AMBIGUOUS, ordered[: config.top_k], task_text)

    viable = [c for c in ranked if c.score >= config.min_score]
    if not viable:
        return MatchOutcome(MatchStatus.NO_MATCH, tuple(ranked[: config.top_k]), task_text)
    if len(viable) == 1 or viable[0].score - viable[1].score >= config.margin:
        return MatchOutcome(MatchStatus.RESOLVED, tuple(ranked), task_text)
    return MatchOutcome(MatchStatus.AMBIGUOUS, tuple(viable[: config.top_k]), task_text)


def _candidate_definitions(
    catalog: Catalog, text: str, tokens: list[str], attachments: frozenset[str]
) -> list[Definition]:
    ids: set[str] = set()
    for name, owners in catalog.name_index.items():
        if _name_in_text(name, text):
            ids.update(owners)
    for token in tokens:
        ids.update(catalog.token_index.get(token, ()))
    for name in attachments:
        ids.update(catalog.input_index.get(name, ()))
    return [d for d in (catalog.get(i) for i in sorted(ids)) if d is not None]


def _name_in_text(name: str, text: str) -> bool:
    return re.search(rf"(?<![\w-]){re.escape(name)}(?![\w-])", text) is not None


def _is_exact_name(name: str, text: str) -> bool:
    if normalize_name(text) == name:
        return True
    prefix = f"/{name}"
    return text.startswith(prefix) and (len(text) == len(prefix) or text[len(prefix)].isspace())


def _contains_phrase(tokens: list[str], phrase: list[str]) -> bool:
    if not phrase or len(phrase) > len(tokens):
        return False
    width = len(phrase)
    return any(tokens[i : i + width] == phrase for i in range(len(tokens) - width + 1))


def score_definition(
    definition: Definition,
    text: str,
    tokens: list[str],
    attachments: frozenset[str],
    config: MatcherConfig,
) -> RankedCandidate:
    """Fitness of one definition for a normalized task text."""
    score = 0.0
    reasons: list[str] = []
    exact = False

    names = definition.invocation_names
    invoked = next((name for name in names if _is_exact_name(name, text)), None)
    if invoked is not None:
        exact = True
        score += config.name_exact_weight
        reasons.append(f"invoked as '{invoked}'")
    else:
        mentioned = next((name for name in names if _name_in_text(name, text)), None)
        if mentioned is not None:
            score += config.name_substring_weight
            reasons.append(f"mentions '{mentioned}'")

    for keyword in definition.triggers.keywords:
        phrase = tokenize(keyword)
        if _contains_phrase(tokens, phrase):
            score += config.keyword_weight * len(phrase)
            reasons.append(f"keyword '{keyword}'")

    task_words = set(content_tokens(text))
    shared = [t for t in content_tokens(definition.description) if t in task_words]
    if shared:
        score += config.description_weight * len(shared)
        reasons.append(f"description overlap: {', '.join(shared)}")

    has_materials = sorted(attachments & set(definition.required_names))
    if has_materials:
        score += config.attachment_bonus * len(has_materials)
        reasons.append(f"has inputs: {', '.join(has_materials)}")

    return RankedCandidate(
        definition_id=definition.id,
        score=score,
        reasons=tuple(reasons),
        exact=exact,
    )
