from __future__ import annotations

import pytest

from skillgate.assembler import InstructionPayload, assemble
from skillgate.definitions import Catalog, parse_definition
from skillgate.exception import TemplateRenderError


def _review_payload(catalog: Catalog, **extra) -> InstructionPayload:
    definition = catalog.get("review-pr")
    bound = {"diff": "+ new line", "changedFiles": ["src/app.py", "src/db.py"], **extra}
    presence = {"testLog": "testLog" in extra}
    return assemble(definition, bound, presence, task_text="check the migration")


class TestAssemble:
    def test_binds_placeholders(self, catalog: Catalog):
        payload = _review_payload(catalog)
        assert payload.definition_id == "review-pr"
        assert payload.text.startswith(
            "Review the following change: check the migration\n\n+ new line\n\n"
            "Files:\n- src/app.py\n- src/db.py\n"
        )

    def test_absent_optional_input_takes_else_branch(self, catalog: Catalog):
        payload = _review_payload(catalog)
        assert "No test log was attached" in payload.text
        assert "Test log:" not in payload.text
        assert payload.omitted == ("testLog",)

    def test_present_optional_input(self, catalog: Catalog):
        payload = _review_payload(catalog, testLog="12 passed")
        assert "Test log:\n12 passed" in payload.text
        assert "No test log was attached" not in payload.text
        assert payload.omitted == ()

    def test_appends_guardrails_and_layout(self, catalog: Catalog):
        text = _review_payload(catalog).text
        assert "## Guardrails\n\nThese constraints are mandatory:\n\n- Do not approve" in text
        assert text.endswith(
            "## Response Format\n\n"
            "Structure the response with these sections, in this order, "
            "each under its own markdown heading:\n\n"
            "1. Summary\n2. Findings\n3. Risks & Mitigations"
        )

    def test_optional_section_is_marked(self):
        definition = parse_definition(
            "commands/notes.md",
            "---\ndescription: d\noutput:\n  sections:\n    - Summary\n"
            "    - name: Notes\n      required: false\n---\n{{task}}\n",
        )
        payload = assemble(definition, {}, {}, task_text="t")
        assert payload.text.endswith("1. Summary\n2. Notes (optional)")

    def test_no_contract_no_layout(self, catalog: Catalog):
        payload = assemble(catalog.get("format-code"), {}, {}, task_text="tidy imports")
        assert payload.text == "Reformat the code described here: tidy imports"
        assert payload.variables == ("task",)

    def test_unbound_required_input(self, catalog: Catalog):
        with pytest.raises(TemplateRenderError, match="'source' is not bound"):
            assemble(catalog.get("lint-code"), {}, {}, task_text="x")


class TestInstructionPayload:
    def test_render_without_retry(self):
        payload = InstructionPayload(definition_id="x", text="body")
        assert payload.render() == "body"

    def test_with_retry_keeps_original(self):
        payload = InstructionPayload(definition_id="x", text="body")
        retry = payload.with_retry("## Revision Required\n\n- fix it")
        assert retry.render() == "body\n\n## Revision Required\n\n- fix it"
        assert payload.retry_instruction is None
        assert retry.text == payload.text
