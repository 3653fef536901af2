"""Shared corpus fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from skillgate.definitions import Catalog, build_catalog
from skillgate.share import _resolve_share_dir

REVIEW_PR = """---
id: review-pr
description: Review a pull request diff for correctness and risk.
triggers:
  names: [/pr-review]
  keywords: [review pull request, code review]
inputs:
  required:
    diff: The unified diff under review
    changedFiles:
      purpose: Paths touched by the change
      kind: list
  optional:
    testLog: Output of the latest test run
output:
  sections:
    - Summary
    - Findings
    - "Risks & Mitigations"
  forbidden:
    - secrets
guardrails:
  - Do not approve changes you have not read.
---
Review the following change: {{task}}

{{diff}}

Files:
{{#each changedFiles}}
- {{.}}
{{/each}}

{{#if testLog}}
Test log:
{{testLog}}
{{else}}
No test log was attached; do not claim that tests pass.
{{/if}}
"""

SECURITY_REVIEW = """---
id: security-review
description: Audit code changes for vulnerabilities and leaked credentials.
triggers:
  keywords: [review, security audit]
inputs:
  required:
    diff: The change to audit
output:
  sections: [Threats, Recommendations]
  forbidden: [secrets]
---
Audit this change for security problems: {{task}}

{{diff}}
"""

FORMAT_CODE = """---
description: Format source files consistently.
triggers: [python style]
---
Reformat the code described here: {{task}}
"""

LINT_CODE = """---
description: Lint source files and report problems.
triggers: [python style, lint]
inputs:
  required:
    source: The file contents to lint
---
Lint this code ({{task}}):

{{source}}
"""

CORPUS = {
    "skills/review-pr/SKILL.md": REVIEW_PR,
    "skills/security-review/SKILL.md": SECURITY_REVIEW,
    "commands/format-code.md": FORMAT_CODE,
    "commands/lint-code.md": LINT_CODE,
}


@pytest.fixture(autouse=True)
def share_dir(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    path = tmp_path_factory.mktemp("share")
    monkeypatch.setenv("SKILLGATE_SHARE_DIR", str(path))
    _resolve_share_dir.cache_clear()
    yield path
    _resolve_share_dir.cache_clear()


@pytest.fixture
def corpus() -> dict[str, str]:
    return dict(CORPUS)


@pytest.fixture
def catalog(corpus: dict[str, str]) -> Catalog:
    return build_catalog(corpus)


@pytest.fixture
def corpus_dir(tmp_path: Path, corpus: dict[str, str]) -> Path:
    root = tmp_path / "corpus"
    for name, content in corpus.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root
