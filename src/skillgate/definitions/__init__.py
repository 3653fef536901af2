"""Definition store for skillgate.

Definitions are markdown documents with YAML frontmatter (``SKILL.md`` files
and ``commands/*.md``) declaring triggers, inputs, an output contract and
guardrails; the body is the instruction template.
"""

from __future__ import annotations

from skillgate.definitions.models import (
    Definition,
    DefinitionKind,
    ForbiddenRule,
    InputKind,
    InputSlot,
    OutputContract,
    OutputSection,
    Triggers,
)
from skillgate.definitions.parser import parse_definition, parse_frontmatter
from skillgate.definitions.store import (
    Catalog,
    CorpusSource,
    DefinitionStore,
    DirectorySource,
    MappingSource,
    build_catalog,
)
from skillgate.definitions.validator import validate_corpus, validate_definition

__all__ = [
    # Models
    "Definition",
    "DefinitionKind",
    "ForbiddenRule",
    "InputKind",
    "InputSlot",
    "OutputContract",
    "OutputSection",
    "Triggers",
    # Parser
    "parse_definition",
    "parse_frontmatter",
    # Store
    "Catalog",
    "CorpusSource",
    "DefinitionStore",
    "DirectorySource",
    "MappingSource",
    "build_catalog",
    # Validator
    "validate_corpus",
    "validate_definition",
]
