from __future__ import annotations

import pytest

from skillgate.config import MatcherConfig
from skillgate.definitions import Catalog, build_catalog
from skillgate.exception import NoMatchError
from skillgate.matcher import MatchStatus, match, resolve


class TestExplicitNames:
    def test_exact_name_outranks_keyword_overlap(self, catalog: Catalog):
        # "review" is also a keyword of security-review
        outcome = match(catalog, "/review-pr")
        assert outcome.status == MatchStatus.RESOLVED
        assert outcome.resolved_id == "review-pr"
        assert outcome.candidates[0].exact
        assert [c.definition_id for c in outcome.candidates] == ["review-pr", "security-review"]

    def test_trigger_name_with_arguments(self, catalog: Catalog):
        outcome = match(catalog, "/pr-review focus on the auth module")
        assert outcome.resolved_id == "review-pr"

    def test_exact_name_is_case_insensitive(self, catalog: Catalog):
        assert match(catalog, "  Review-PR ").resolved_id == "review-pr"

    def test_mentioned_name_scores_without_being_exact(self, catalog: Catalog):
        outcome = match(catalog, "run lint-code on this file")
        assert outcome.resolved_id == "lint-code"
        assert not outcome.candidates[0].exact
        assert "mentions 'lint-code'" in outcome.candidates[0].reasons

    def test_trigger_name_wins_when_id_is_only_mentioned(self):
        catalog = build_catalog(
            {
                "commands/deploy.md": (
                    "---\ndescription: Release the service.\n"
                    "triggers:\n  names: [/ship]\n---\n{{task}}\n"
                ),
                "commands/deploy-checklist.md": (
                    "---\ndescription: Walk through release steps.\n"
                    "triggers:\n  keywords: [ship deploy now, deploy now]\n---\n{{task}}\n"
                ),
            }
        )
        outcome = match(catalog, "/ship deploy now")
        assert outcome.status == MatchStatus.RESOLVED
        assert outcome.resolved_id == "deploy"
        top = outcome.candidates[0]
        assert top.exact
        assert top.score == 100
        assert top.reasons == ("invoked as 'ship'",)

    def test_several_exact_names_are_ambiguous(self):
        doc = "---\ndescription: d\ntriggers:\n  names: [tidy]\n---\n{{task}}\n"
        catalog = build_catalog({"commands/one.md": doc, "commands/two.md": doc})
        outcome = match(catalog, "tidy")
        assert outcome.status == MatchStatus.AMBIGUOUS
        assert [c.definition_id for c in outcome.candidates] == ["one", "two"]


class TestScoring:
    def test_exact_tie_is_ambiguous_ordered_by_id(self, catalog: Catalog):
        outcome = match(catalog, "fix python style")
        assert outcome.status == MatchStatus.AMBIGUOUS
        assert [c.definition_id for c in outcome.candidates] == ["format-code", "lint-code"]
        assert outcome.candidates[0].score == outcome.candidates[1].score == 20
        assert outcome.resolved_id is None

    def test_attachment_bonus_breaks_tie(self, catalog: Catalog):
        outcome = match(catalog, "fix python style", ["source"])
        assert outcome.status == MatchStatus.RESOLVED
        assert outcome.resolved_id == "lint-code"
        assert outcome.candidates[0].score == 25
        assert "has inputs: source" in outcome.candidates[0].reasons

    def test_zero_margin_resolves_tie_by_id(self, catalog: Catalog):
        outcome = match(catalog, "fix python style", config=MatcherConfig(margin=0))
        assert outcome.resolved_id == "format-code"

    def test_floor(self, catalog: Catalog):
        outcome = match(catalog, "fix python style", config=MatcherConfig(min_score=50))
        assert outcome.status == MatchStatus.NO_MATCH
        assert [c.definition_id for c in outcome.candidates] == ["format-code", "lint-code"]

    def test_top_k_limits_disambiguation_set(self, catalog: Catalog):
        outcome = match(catalog, "fix python style", config=MatcherConfig(top_k=1))
        assert outcome.status == MatchStatus.AMBIGUOUS
        assert [c.definition_id for c in outcome.candidates] == ["format-code"]

    def test_keyword_phrase_weight(self, catalog: Catalog):
        outcome = match(catalog, "please do a security audit of this")
        assert outcome.resolved_id == "security-review"
        assert outcome.candidates[0].score == 22

    def test_description_overlap(self, catalog: Catalog):
        text = "look for leaked credentials and vulnerabilities"
        assert match(catalog, text).status == MatchStatus.NO_MATCH

        outcome = match(catalog, text, config=MatcherConfig(min_score=5))
        assert outcome.resolved_id == "security-review"
        assert outcome.candidates[0].score == 6

    def test_no_candidates(self, catalog: Catalog):
        outcome = match(catalog, "bake a cake")
        assert outcome.status == MatchStatus.NO_MATCH
        assert outcome.candidates == ()

    def test_deterministic(self, corpus: dict[str, str]):
        first = match(build_catalog(corpus), "review the python style of this pull request")
        second = match(build_catalog(corpus), "review the python style of this pull request")
        assert first == second

    def test_empty_catalog(self):
        assert match(Catalog([]), "anything").status == MatchStatus.NO_MATCH


class TestResolve:
    def test_raises_on_no_match(self, catalog: Catalog):
        with pytest.raises(NoMatchError, match="No matching definition"):
            resolve(catalog, "bake a cake")

    def test_returns_ambiguous_outcome(self, catalog: Catalog):
        assert resolve(catalog, "fix python style").status == MatchStatus.AMBIGUOUS
