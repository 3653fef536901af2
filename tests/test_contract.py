from __future__ import annotations

import pytest

from skillgate.contract import (
    ViolationKind,
    build_retry_instruction,
    contract_skeleton,
    extract_headings,
    normalize_heading,
    validate_output,
)
from skillgate.definitions import Catalog, ForbiddenRule, OutputContract, OutputSection
from skillgate.exception import OutputContractViolation

REVIEW_CONTRACT = OutputContract(
    sections=(
        OutputSection(name="Summary"),
        OutputSection(name="Findings"),
        OutputSection(name="Risks & Mitigations", aliases=("Risks",)),
        OutputSection(name="Notes", required=False),
    ),
    forbidden=(ForbiddenRule(name="secrets", pattern=""),),
)


class TestHeadings:
    @pytest.mark.parametrize(
        "text",
        [
            "Risks & Mitigations",
            "**Risks & Mitigations**",
            "3. Risks & Mitigations:",
            "RISKS  &  mitigations",
        ],
    )
    def test_normalize(self, text: str):
        assert normalize_heading(text) == "risks & mitigations"

    def test_extracts_atx_and_bold_lines(self):
        response = "# Title\nintro\n**Findings:**\ntext with **bold** inside\n## Risks ##\n"
        assert [h.key for h in extract_headings(response)] == ["title", "findings", "risks"]

    def test_skips_fenced_code(self):
        response = "## Summary\n```markdown\n## Findings\n```\n"
        assert [h.key for h in extract_headings(response)] == ["summary"]

    def test_fence_closes_only_on_its_own_marker(self):
        response = (
            "## Summary\n"
            "````markdown\n"
            "~~~\n"
            "## Findings\n"
            "```\n"
            "## Notes\n"
            "````\n"
            "## Risks\n"
        )
        assert [h.key for h in extract_headings(response)] == ["summary", "risks"]

    def test_fence_with_info_string_does_not_close(self):
        response = "```\n```python\n## Findings\n```\n## Risks\n"
        assert [h.key for h in extract_headings(response)] == ["risks"]

    def test_setext_headings(self):
        response = "Summary\n=======\nok\n\nRisks &\nMitigations\n---\nlow\n"
        headings = extract_headings(response)
        assert [h.key for h in headings] == ["summary", "risks & mitigations"]
        assert [h.line for h in headings] == [1, 5]

    def test_rule_after_list_or_blank_line_is_not_a_heading(self):
        response = "- first item\n---\n\n---\n## Findings\n"
        assert [h.key for h in extract_headings(response)] == ["findings"]


class TestValidateOutput:
    def test_passes(self):
        response = "## Summary\nok\n## Findings\nnone\n## Risks & Mitigations\nlow\n"
        report = validate_output(REVIEW_CONTRACT, response)
        assert report.passed
        assert report.messages == []

    def test_missing_section(self):
        response = "## Summary\nok\n## Findings\nnone\n"
        report = validate_output(REVIEW_CONTRACT, response)
        assert not report.passed
        assert report.messages == ["missing section: Risks & Mitigations"]
        assert report.violations[0].kind == ViolationKind.MISSING_SECTION

    def test_alias_satisfies_section(self):
        response = "## Summary\n## Findings\n### Risks\n"
        assert validate_output(REVIEW_CONTRACT, response).passed

    def test_heading_formats(self):
        response = "**Summary**\n\n# 2. findings\n\n__Risks & Mitigations__\n"
        assert validate_output(REVIEW_CONTRACT, response).passed

    def test_section_inside_code_fence_does_not_count(self):
        response = "## Summary\n## Findings\n```\n## Risks & Mitigations\n```\n"
        assert validate_output(REVIEW_CONTRACT, response).messages == [
            "missing section: Risks & Mitigations"
        ]

    def test_duplicate_section(self):
        response = "## Summary\n## Summary\n## Findings\n## Risks\n"
        assert validate_output(REVIEW_CONTRACT, response).messages == [
            "duplicate section: Summary (found 2 times)"
        ]

    def test_order(self):
        response = "## Findings\n## Summary\n## Risks\n"
        assert validate_output(REVIEW_CONTRACT, response).messages == [
            "section out of order: Findings"
        ]

    def test_optional_section_out_of_order(self):
        response = "## Notes\n## Summary\n## Findings\n## Risks\n"
        assert validate_output(REVIEW_CONTRACT, response).messages == [
            "section out of order: Notes"
        ]

    def test_secrets_are_reported_redacted(self):
        response = "## Summary\nkey sk-abcdefghij1234567890\n## Findings\n## Risks\n"
        report = validate_output(REVIEW_CONTRACT, response)
        (violation,) = report.violations
        assert violation.kind == ViolationKind.FORBIDDEN_CONTENT
        assert violation.target == "secrets"
        assert "sk-***" in str(violation)
        assert "abcdefghij1234567890" not in str(violation)

    def test_custom_rule(self):
        contract = OutputContract(
            forbidden=(
                ForbiddenRule(name="no-todo", pattern=r"\bTODO\b", message="leaves TODO markers"),
            )
        )
        report = validate_output(contract, "done\nTODO: later\nTODO again")
        assert report.messages == [
            "forbidden content (no-todo): leaves TODO markers (2 match(es), first: 'TODO')"
        ]

    @pytest.mark.parametrize(
        ("response", "flagged"),
        [
            ("All tests pass.", True),
            ("All tests passed, see you tomorrow.", True),
            ("Tests are green; I will run the linter later.", True),
            ("The tests passed and the log level is fine.", True),
            ("Tests passed (see the CI log above).", False),
            ("All tests passed, see test-results.xml for details.", False),
            ("All tests passed according to the attached run.", False),
            ("The tests pass in the attached test output.", False),
            ("Tests passed after running `pytest -q`.", False),
            ("I did not run the test suite.", False),
        ],
    )
    def test_unverified_test_claims(self, response: str, flagged: bool):
        contract = OutputContract(
            forbidden=(ForbiddenRule(name="unverified-test-claims", pattern=""),)
        )
        assert validate_output(contract, response).passed is not flagged

    def test_violation_order(self):
        response = "## Findings\n## Summary\ntoken ghp_abcdefghijklmnopqrstuvwx\n"
        kinds = [v.kind for v in validate_output(REVIEW_CONTRACT, response).violations]
        assert kinds == [
            ViolationKind.MISSING_SECTION,
            ViolationKind.SECTION_ORDER,
            ViolationKind.FORBIDDEN_CONTENT,
        ]

    def test_raise_for_violations(self):
        report = validate_output(REVIEW_CONTRACT, "## Summary\n## Findings\n")
        with pytest.raises(OutputContractViolation) as exc_info:
            report.raise_for_violations("review-pr")
        assert exc_info.value.violations == ["missing section: Risks & Mitigations"]
        assert exc_info.value.definition_id == "review-pr"

    def test_empty_contract_accepts_anything(self):
        assert validate_output(OutputContract(), "").passed


class TestRetryInstruction:
    def test_names_the_missing_section(self):
        report = validate_output(REVIEW_CONTRACT, "## Summary\n## Findings\n")
        instruction = build_retry_instruction(report)
        assert instruction.startswith("## Revision Required")
        assert '- Add the missing section "Risks & Mitigations" under its own heading.' in instruction

    def test_order_lists_expected_sequence(self):
        report = validate_output(REVIEW_CONTRACT, "## Findings\n## Summary\n## Risks\n")
        assert (
            '- Move "Findings" so the sections follow this order: '
            "Summary, Findings, Risks & Mitigations, Notes."
        ) in build_retry_instruction(report)

    def test_passed_report_needs_no_retry(self):
        report = validate_output(REVIEW_CONTRACT, contract_skeleton(REVIEW_CONTRACT))
        assert build_retry_instruction(report) == ""


class TestSkeleton:
    def test_layout(self):
        contract = OutputContract(sections=(OutputSection(name="A"), OutputSection(name="B")))
        assert contract_skeleton(contract) == "## A\n\n...\n\n## B\n\n..."

    def test_every_corpus_skeleton_passes(self, catalog: Catalog):
        for definition in catalog:
            contract = definition.output_contract
            assert validate_output(contract, contract_skeleton(contract)).passed, definition.id
