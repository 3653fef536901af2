"""Request/response cycle: match, gate, assemble, generate, validate."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from skillgate.assembler import InstructionPayload, assemble
from skillgate.config import Config
from skillgate.context import format_clarification, format_disambiguation
from skillgate.contract import build_retry_instruction, validate_output
from skillgate.definitions.models import Definition
from skillgate.definitions.store import Catalog, CorpusSource, DefinitionStore
from skillgate.exception import (
    GeneratorTimeoutError,
    GeneratorUnavailableError,
    InvalidTransitionError,
    InvocationCancelled,
    NoMatchError,
    OutputContractViolation,
    SkillGateError,
)
from skillgate.gate import Attachment, GateMissing, MissingInput, gate
from skillgate.matcher import MatchStatus, RankedCandidate, resolve
from skillgate.utils.logging import logger


class InvocationStatus(str, Enum):
    UNRESOLVED = "unresolved"
    GATED = "gated"
    AWAITING_INPUT = "awaiting_input"
    READY = "ready"
    ASSEMBLED = "assembled"
    RETRY_REQUESTED = "retry_requested"
    VALIDATED = "validated"
    REJECTED = "rejected"


_TRANSITIONS: dict[InvocationStatus, frozenset[InvocationStatus]] = {
    InvocationStatus.UNRESOLVED: frozenset({InvocationStatus.GATED, InvocationStatus.REJECTED}),
    InvocationStatus.GATED: frozenset(
        {InvocationStatus.READY, InvocationStatus.AWAITING_INPUT, InvocationStatus.REJECTED}
    ),
    InvocationStatus.READY: frozenset({InvocationStatus.ASSEMBLED, InvocationStatus.REJECTED}),
    InvocationStatus.ASSEMBLED: frozenset(
        {
            InvocationStatus.VALIDATED,
            InvocationStatus.RETRY_REQUESTED,
            InvocationStatus.REJECTED,
        }
    ),
    InvocationStatus.RETRY_REQUESTED: frozenset(
        {InvocationStatus.ASSEMBLED, InvocationStatus.REJECTED}
    ),
    InvocationStatus.AWAITING_INPUT: frozenset(),
    InvocationStatus.VALIDATED: frozenset(),
    InvocationStatus.REJECTED: frozenset(),
}


@dataclass
class Invocation:
    """One request lifecycle. Created per submit and discarded afterwards."""

    task_text: str
    attachments: tuple[Attachment, ...] = ()
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: InvocationStatus = InvocationStatus.UNRESOLVED
    definition: Definition | None = None
    bound_variables: dict[str, object] = field(default_factory=dict)
    presence_flags: dict[str, bool] = field(default_factory=dict)
    payload: InstructionPayload | None = None
    attempts: int = 0
    history: list[InvocationStatus] = field(
        default_factory=lambda: [InvocationStatus.UNRESOLVED]
    )

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.status]

    def advance(self, status: InvocationStatus) -> None:
        """Move to ``status``.

        Raises:
            InvalidTransitionError: If the state machine does not allow it.
        """
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Invocation {self.id} cannot move from {self.status.value} to {status.value}"
            )
        logger.trace(
            "Invocation {id}: {old} -> {new}", id=self.id, old=self.status.value, new=status.value
        )
        self.status = status
        self.history.append(status)


class FailureReason(str, Enum):
    NO_MATCH = "no_match"
    UNKNOWN_DEFINITION = "unknown_definition"
    GENERATOR_TIMEOUT = "generator_timeout"
    GENERATOR_UNAVAILABLE = "generator_unavailable"
    CONTRACT_VIOLATION = "contract_violation"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True, kw_only=True)
class NeedsInput:
    """Required inputs are missing; the clarification asks for all of them."""

    definition_id: str
    missing: tuple[MissingInput, ...]
    clarification: str = ""

    @property
    def missing_names(self) -> list[str]:
        return [m.name for m in self.missing]


@dataclass(frozen=True, slots=True, kw_only=True)
class NeedsDisambiguation:
    """Several definitions fit; resubmit with ``definition_id`` set to one of them."""

    candidates: tuple[RankedCandidate, ...]
    message: str = ""

    @property
    def candidate_ids(self) -> list[str]:
        return [c.definition_id for c in self.candidates]


@dataclass(frozen=True, slots=True, kw_only=True)
class Success:
    definition_id: str
    response: str
    attempts: int
    payload: InstructionPayload


@dataclass(frozen=True, slots=True, kw_only=True)
class Failure:
    reason: FailureReason
    message: str
    definition_id: str | None = None
    violations: tuple[str, ...] = ()


Result = NeedsInput | NeedsDisambiguation | Success | Failure


class Generator(Protocol):
    """External text generator. Receives the rendered instruction payload."""

    async def generate(self, payload: str) -> str: ...


class CallableGenerator:
    """Adapts a plain ``async def fn(payload) -> str`` to :class:`Generator`."""

    def __init__(self, fn: Callable[[str], Awaitable[str]]):
        self._fn = fn

    async def generate(self, payload: str) -> str:
        return await self._fn(payload)


class Orchestrator:
    """Runs invocations against the store's current catalog snapshot.

    Each submit reads the snapshot once at its start; a concurrent reload
    never changes the catalog an in-flight invocation works with.
    """

    def __init__(
        self,
        store: DefinitionStore,
        generator: Generator | Callable[[str], Awaitable[str]],
        config: Config | None = None,
    ) -> None:
        self._store = store
        self._generator: Generator = (
            generator if hasattr(generator, "generate") else CallableGenerator(generator)  # type: ignore[arg-type]
        )
        self._config = config or Config()

    @property
    def catalog(self) -> Catalog:
        return self._store.catalog

    def reload(self, source: CorpusSource | Path | str | Mapping[str, str | bytes]) -> Catalog:
        """Swap in a freshly loaded catalog.

        Raises:
            CorpusValidationError: If the new corpus is invalid; the current
                catalog keeps serving.
        """
        return self._store.reload(source)

    async def submit(
        self,
        task_text: str,
        attachments: Iterable[Attachment] = (),
        *,
        definition_id: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> Result:
        """Run one request end to end.

        Args:
            task_text: Free-text task description
            attachments: Artifacts the caller supplies, named after input slots
            definition_id: Skip matching and use this definition (e.g. the
                caller's pick from a disambiguation set)
            cancel: Set by the caller to abandon the request; checked at every
                phase boundary

        Returns:
            ``NeedsInput``, ``NeedsDisambiguation``, ``Success`` or ``Failure``
        """
        invocation = Invocation(task_text=task_text, attachments=tuple(attachments))
        catalog = self._store.catalog
        try:
            result = await self._run(invocation, catalog, definition_id, cancel)
        except InvocationCancelled as e:
            invocation.advance(InvocationStatus.REJECTED)
            result = Failure(
                reason=FailureReason.CANCELLED,
                message=e.message,
                definition_id=invocation.definition.id if invocation.definition else None,
            )
        logger.info(
            "Invocation {id} finished as {status} ({result})",
            id=invocation.id,
            status=invocation.status.value,
            result=type(result).__name__,
        )
        return result

    async def _run(
        self,
        invocation: Invocation,
        catalog: Catalog,
        definition_id: str | None,
        cancel: asyncio.Event | None,
    ) -> Result:
        _check_cancelled(cancel)
        if definition_id is None:
            names = [a.name for a in invocation.attachments]
            try:
                outcome = resolve(catalog, invocation.task_text, names, self._config.matcher)
            except NoMatchError as e:
                invocation.advance(InvocationStatus.REJECTED)
                return Failure(reason=FailureReason.NO_MATCH, message=e.message)
            if outcome.status is MatchStatus.AMBIGUOUS:
                return NeedsDisambiguation(
                    candidates=outcome.candidates,
                    message=format_disambiguation(outcome.candidates, catalog),
                )
            definition_id = outcome.candidates[0].definition_id

        definition = catalog.get(definition_id)
        if definition is None:
            invocation.advance(InvocationStatus.REJECTED)
            return Failure(
                reason=FailureReason.UNKNOWN_DEFINITION,
                message=f"Definition '{definition_id}' not found in the catalog",
                definition_id=definition_id,
            )

        invocation.definition = definition
        invocation.advance(InvocationStatus.GATED)
        _check_cancelled(cancel)

        gated = gate(definition, invocation.attachments)
        if isinstance(gated, GateMissing):
            invocation.advance(InvocationStatus.AWAITING_INPUT)
            logger.info(
                "Invocation {id} awaits inputs for {definition}: {missing}",
                id=invocation.id,
                definition=definition.id,
                missing=gated.names,
            )
            return NeedsInput(
                definition_id=definition.id,
                missing=gated.missing,
                clarification=format_clarification(definition, gated.missing),
            )
        invocation.bound_variables = gated.bound_variables
        invocation.presence_flags = gated.presence_flags
        invocation.advance(InvocationStatus.READY)
        _check_cancelled(cancel)

        invocation.payload = assemble(
            definition,
            gated.bound_variables,
            gated.presence_flags,
            task_text=invocation.task_text,
        )
        invocation.advance(InvocationStatus.ASSEMBLED)
        return await self._generate_validated(invocation, definition, invocation.payload, cancel)

    async def _generate_validated(
        self,
        invocation: Invocation,
        definition: Definition,
        payload: InstructionPayload,
        cancel: asyncio.Event | None,
    ) -> Result:
        max_attempts = 1 + self._config.generation.max_retries
        while True:
            _check_cancelled(cancel)
            invocation.attempts += 1
            try:
                response = await self._call_generator(payload)
            except GeneratorTimeoutError as e:
                invocation.advance(InvocationStatus.REJECTED)
                return Failure(
                    reason=FailureReason.GENERATOR_TIMEOUT,
                    message=e.message,
                    definition_id=definition.id,
                )
            except GeneratorUnavailableError as e:
                invocation.advance(InvocationStatus.REJECTED)
                return Failure(
                    reason=FailureReason.GENERATOR_UNAVAILABLE,
                    message=e.message,
                    definition_id=definition.id,
                )
            _check_cancelled(cancel)

            report = validate_output(definition.output_contract, response)
            try:
                report.raise_for_violations(definition.id)
            except OutputContractViolation as e:
                logger.warning(
                    "Attempt {n}/{max} for {id} broke the output contract: {violations}",
                    n=invocation.attempts,
                    max=max_attempts,
                    id=definition.id,
                    violations=e.violations,
                )
                if invocation.attempts >= max_attempts:
                    invocation.advance(InvocationStatus.REJECTED)
                    return Failure(
                        reason=FailureReason.CONTRACT_VIOLATION,
                        message=e.message,
                        definition_id=definition.id,
                        violations=tuple(e.violations),
                    )
                invocation.advance(InvocationStatus.RETRY_REQUESTED)
                _check_cancelled(cancel)
                payload = payload.with_retry(build_retry_instruction(report))
                invocation.payload = payload
                invocation.advance(InvocationStatus.ASSEMBLED)
                continue

            invocation.advance(InvocationStatus.VALIDATED)
            return Success(
                definition_id=definition.id,
                response=response,
                attempts=invocation.attempts,
                payload=payload,
            )

    async def _call_generator(self, payload: InstructionPayload) -> str:
        timeout_ms = self._config.generation.timeout_ms
        try:
            return await asyncio.wait_for(
                self._generator.generate(payload.render()),
                timeout=timeout_ms / 1000,
            )
        except SkillGateError:
            raise
        except TimeoutError as e:
            logger.warning(
                "Generator timed out after {timeout}ms for {id}",
                timeout=timeout_ms,
                id=payload.definition_id,
            )
            raise GeneratorTimeoutError(f"Generator timed out after {timeout_ms}ms") from e
        except Exception as e:
            logger.exception("Generator failed for {id}: {error}", id=payload.definition_id, error=e)
            raise GeneratorUnavailableError(f"Generator failed: {e}") from e


def _check_cancelled(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise InvocationCancelled("Invocation cancelled by caller")
