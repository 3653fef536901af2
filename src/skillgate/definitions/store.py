"""Definition store: loads a corpus into immutable catalog snapshots."""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterator, Mapping
from itertools import count
from pathlib import Path
from types import MappingProxyType
from typing import Protocol

from skillgate.exception import CorpusValidationError, DefinitionParseError
from skillgate.utils.logging import logger

from .models import Definition
from .parser import parse_definition
from .validator import MAX_DOCUMENT_SIZE, validate_corpus, validate_definition

_TOKEN_RE = re.compile(r"[a-z0-9]+")

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "can", "do", "for", "from",
        "how", "i", "in", "into", "is", "it", "me", "my", "of", "on", "or", "our",
        "please", "so", "that", "the", "this", "to", "use", "used", "we", "what",
        "when", "with", "you", "your",
    }
)  # fmt: skip


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens of ``text``, stopwords included."""
    return _TOKEN_RE.findall(text.lower())


def content_tokens(text: str) -> list[str]:
    """Tokens of ``text`` without stopwords, in first-seen order."""
    return list(dict.fromkeys(t for t in tokenize(text) if t not in STOPWORDS))


class CorpusSource(Protocol):
    """Anything that yields ``(document name, raw bytes)`` pairs in a stable order."""

    def iter_documents(self) -> Iterator[tuple[str, bytes]]: ...


class DirectorySource:
    """A directory tree of definition documents.

    ``SKILL.md`` (or ``skill.md``) files are skills; markdown files directly
    inside a ``commands`` directory are commands. Everything else is ignored.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def iter_documents(self) -> Iterator[tuple[str, bytes]]:
        if not self.root.is_dir():
            raise CorpusValidationError([f"Corpus directory does not exist: {self.root}"])
        for path in sorted(self.root.rglob("*.md")):
            if not path.is_file() or not self.is_definition_document(path):
                continue
            yield path.relative_to(self.root).as_posix(), path.read_bytes()

    def is_definition_document(self, path: Path) -> bool:
        if path.name in ("SKILL.md", "skill.md"):
            # SKILL.md wins when both spellings exist
            return path.name == "SKILL.md" or not (path.parent / "SKILL.md").exists()
        return path.parent.name == "commands"

    def __repr__(self) -> str:
        return f"DirectorySource({str(self.root)!r})"


class MappingSource:
    """In-memory corpus: document name to text or bytes."""

    def __init__(self, documents: Mapping[str, str | bytes]):
        self._documents = dict(documents)

    def iter_documents(self) -> Iterator[tuple[str, bytes]]:
        for name in sorted(self._documents):
            content = self._documents[name]
            yield name, content.encode("utf-8") if isinstance(content, str) else content


def as_source(source: CorpusSource | Path | str | Mapping[str, str | bytes]) -> CorpusSource:
    if isinstance(source, (str, Path)):
        return DirectorySource(Path(source))
    if isinstance(source, Mapping):
        return MappingSource(source)
    return source


class Catalog:
    """Immutable snapshot of all definitions from one load generation.

    Besides the id lookup it carries denormalized indices the matcher uses to
    narrow candidates: invocation name, trigger/description token and
    required-input name, each mapping to sorted definition ids.
    """

    def __init__(self, definitions: list[Definition], *, generation: int = 0):
        self.generation = generation
        ordered = sorted(definitions, key=lambda d: d.id)
        self._definitions: Mapping[str, Definition] = MappingProxyType(
            {d.id: d for d in ordered}
        )

        names: dict[str, set[str]] = {}
        tokens: dict[str, set[str]] = {}
        inputs: dict[str, set[str]] = {}
        for definition in ordered:
            for name in definition.invocation_names:
                names.setdefault(name, set()).add(definition.id)
            trigger_text = " ".join(definition.triggers.keywords) + " " + definition.description
            for token in content_tokens(trigger_text):
                tokens.setdefault(token, set()).add(definition.id)
            for name in definition.required_names:
                inputs.setdefault(name, set()).add(definition.id)

        self.name_index: Mapping[str, tuple[str, ...]] = _freeze_index(names)
        self.token_index: Mapping[str, tuple[str, ...]] = _freeze_index(tokens)
        self.input_index: Mapping[str, tuple[str, ...]] = _freeze_index(inputs)
        self._index_bytes = self._render_index()
        self.fingerprint = hashlib.sha256(self._index_bytes).hexdigest()

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, definition_id: object) -> bool:
        return definition_id in self._definitions

    def __iter__(self) -> Iterator[Definition]:
        return iter(self._definitions.values())

    def get(self, definition_id: str) -> Definition | None:
        return self._definitions.get(definition_id)

    def ids(self) -> list[str]:
        return list(self._definitions)

    def index_bytes(self) -> bytes:
        """Canonical serialization of the catalog and its indices."""
        return self._index_bytes

    def _render_index(self) -> bytes:
        data = {
            "definitions": {
                d.id: d.model_dump(mode="json") for d in self._definitions.values()
            },
            "names": dict(self.name_index),
            "tokens": dict(self.token_index),
            "inputs": dict(self.input_index),
        }
        return json.dumps(data, sort_keys=True, ensure_ascii=False, separators=(",", ":")).encode()

    def __repr__(self) -> str:
        return f"Catalog(generation={self.generation}, definitions={len(self)})"


def _freeze_index(index: dict[str, set[str]]) -> Mapping[str, tuple[str, ...]]:
    return MappingProxyType({key: tuple(sorted(ids)) for key, ids in sorted(index.items())})


def build_catalog(
    source: CorpusSource | Path | str | Mapping[str, str | bytes], *, generation: int = 0
) -> Catalog:
    """Parse and validate every document of ``source`` into a catalog.

    The load is atomic: if any document is invalid nothing is returned and
    every violation found is reported at once.

    Raises:
        CorpusValidationError: With the complete, ordered list of violations
    """
    corpus = as_source(source)
    violations: list[str] = []
    definitions: list[Definition] = []

    for document, raw in corpus.iter_documents():
        if len(raw) > MAX_DOCUMENT_SIZE:
            violations.append(
                f"{document}: exceeds size limit: {len(raw)} bytes (max: {MAX_DOCUMENT_SIZE})"
            )
            continue
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            violations.append(f"{document}: not valid UTF-8: {e}")
            continue
        try:
            definition = parse_definition(document, content)
        except DefinitionParseError as e:
            violations.extend(f"{document}: {error}" for error in e.errors)
            continue
        errors = validate_definition(definition)
        if errors:
            violations.extend(f"{document}: {error}" for error in errors)
            continue
        definitions.append(definition)
        logger.debug("Parsed definition: {id} from {doc}", id=definition.id, doc=document)

    violations.extend(validate_corpus(definitions))
    if violations:
        logger.warning(
            "Corpus {source} rejected with {count} violation(s)",
            source=corpus,
            count=len(violations),
        )
        raise CorpusValidationError(violations)

    catalog = Catalog(definitions, generation=generation)
    logger.info(
        "Loaded {count} definitions (generation {gen}, fingerprint {fp})",
        count=len(catalog),
        gen=generation,
        fp=catalog.fingerprint[:12],
    )
    return catalog


class DefinitionStore:
    """Owns the current catalog snapshot.

    Readers take :attr:`catalog` once per request and keep using that
    snapshot. A reload builds a complete new catalog off to the side and only
    then swaps the reference, so in-flight readers never see a partial corpus
    and a failed reload keeps serving the previous one.
    """

    def __init__(self, catalog: Catalog | None = None):
        self._catalog = catalog if catalog is not None else Catalog([])
        self._generations = count(self._catalog.generation + 1)

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    def load(self, source: CorpusSource | Path | str | Mapping[str, str | bytes]) -> Catalog:
        """Build a catalog from ``source`` and make it current.

        Raises:
            CorpusValidationError: If any document is invalid; the current
                catalog is left untouched.
        """
        catalog = build_catalog(source, generation=next(self._generations))
        self._catalog = catalog
        return catalog

    def reload(self, source: CorpusSource | Path | str | Mapping[str, str | bytes]) -> Catalog:
        logger.info("Reloading corpus from {source}", source=source)
        previous = self._catalog
        catalog = self.load(source)
        if catalog.fingerprint == previous.fingerprint:
            logger.debug("Reloaded corpus is unchanged")
        return catalog
