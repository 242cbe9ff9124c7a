"""
Tests for outline generation and normalization.
"""

from __future__ import annotations

import pytest

from conftest import OUTLINE_JSON, FakeGenerator
from dr.exceptions import OutlineError
from dr.llm.base import Profile
from dr.research.outline import (
    ensure_unique_ids,
    generate_outline,
    normalize_outline,
    parse_outline,
    regenerate_section,
)
from dr.topic import TopicConfig
from dr.types import CONCLUSION_ID, EXECUTIVE_SUMMARY_ID, Outline, OutlineSection


def _section(i: int, **extra) -> dict:
    return {"id": f"s{i}", "title": f"Section {i}", **extra}


class TestNormalizeOutline:
    """Limits, ids and required fields."""

    def test_caps_sections_queries_and_key_points(self) -> None:
        outline = normalize_outline(
            {
                "title": "Report",
                "sections": [
                    _section(i, search_queries=["a", "b", "c", "d"], key_points=list("vwxyz"))
                    for i in range(9)
                ],
            }
        )

        assert len(outline.sections) == 7
        assert outline.sections[0].search_queries == ("a", "b", "c")
        assert outline.sections[0].key_points == ("v", "w", "x", "y")

    def test_camel_case_fields(self) -> None:
        outline = normalize_outline(
            {
                "title": "Report",
                "executiveSummaryGuidance": "Lead with money",
                "sections": [{"id": "x", "title": "X", "searchQueries": ["q"], "keyPoints": ["k"]}],
            }
        )

        assert outline.executive_summary_guidance == "Lead with money"
        assert outline.sections[0].search_queries == ("q",)
        assert outline.sections[0].key_points == ("k",)

    def test_ids_are_slugged_and_filled(self) -> None:
        outline = normalize_outline(
            {"title": "Report", "sections": [{"id": "Market Size!", "title": "A"}, {"title": "B"}]}
        )

        assert [s.id for s in outline.sections] == ["market-size", "section-2"]

    def test_colliding_ids_get_suffix(self) -> None:
        outline = normalize_outline(
            {
                "title": "Report",
                "sections": [
                    {"id": "market", "title": "A"},
                    {"id": "market", "title": "B"},
                    {"id": "conclusion", "title": "C"},
                ],
            }
        )

        assert [s.id for s in outline.sections] == ["market", "market-2", "conclusion-3"]

    def test_suffix_skips_ids_already_taken(self) -> None:
        outline = normalize_outline(
            {
                "title": "Report",
                "sections": [
                    {"id": "a-3", "title": "A3"},
                    {"id": "a", "title": "A"},
                    {"id": "a", "title": "Also A"},
                ],
            }
        )

        assert [s.id for s in outline.sections] == ["a-3", "a", "a-4"]

    def test_blank_queries_dropped(self) -> None:
        outline = normalize_outline(
            {"title": "Report", "sections": [_section(1, search_queries=[" ", "q"])]}
        )

        assert outline.sections[0].search_queries == ("q",)

    @pytest.mark.parametrize(
        "data",
        [
            [],
            {"sections": [_section(1)]},
            {"title": "Report"},
            {"title": "Report", "sections": []},
            {"title": "Report", "sections": ["not a mapping"]},
        ],
    )
    def test_invalid_structure_raises(self, data: object) -> None:
        with pytest.raises(OutlineError):
            normalize_outline(data)


class TestParseOutline:
    def test_parses_fenced_json(self) -> None:
        outline = parse_outline(f"Here is the outline:\n```json\n{OUTLINE_JSON}\n```")

        assert outline.title == "AI Trading Outlook"
        assert [s.id for s in outline.sections] == ["alpha", "beta", "gamma"]

    def test_prose_only_raises(self) -> None:
        with pytest.raises(OutlineError, match="Failed to parse outline"):
            parse_outline("I could not produce an outline.")


class TestGenerate:
    """Generation calls use the deep profile."""

    @pytest.mark.asyncio
    async def test_generate_outline(self, topic: TopicConfig) -> None:
        generator = FakeGenerator()

        outline = await generate_outline(generator, topic)

        assert len(outline.sections) == 3
        assert generator.profiles_for("outline") == {Profile.DEEP}
        assert "AI Trading Weekly" in generator.calls[0][2]

    @pytest.mark.asyncio
    async def test_regenerate_keeps_id(self, topic: TopicConfig) -> None:
        outline = parse_outline(OUTLINE_JSON)
        generator = FakeGenerator(
            {
                "regenerate_section": '{"section": {"id": "other", "title": "Beta Enforcement", '
                '"search_queries": ["beta fines"]}}'
            }
        )

        replacement = await regenerate_section(generator, topic, outline, "beta")
        updated = outline.with_section(replacement)

        assert replacement.id == "beta"
        assert replacement.title == "Beta Enforcement"
        assert [s.title for s in updated.sections] == [
            "Alpha Markets",
            "Beta Enforcement",
            "Gamma Players",
        ]

    @pytest.mark.asyncio
    async def test_regenerate_unknown_section(self, topic: TopicConfig) -> None:
        with pytest.raises(OutlineError, match="not found"):
            await regenerate_section(FakeGenerator(), topic, parse_outline(OUTLINE_JSON), "zeta")

    @pytest.mark.asyncio
    async def test_regenerate_without_title_raises(self, topic: TopicConfig) -> None:
        generator = FakeGenerator({"regenerate_section": '{"description": "no title"}'})

        with pytest.raises(OutlineError, match="regenerated section"):
            await regenerate_section(generator, topic, parse_outline(OUTLINE_JSON), "beta")


class TestEnsureUniqueIds:
    """Outlines built by callers, bypassing normalization."""

    def test_reserved_and_repeated_ids_are_renamed(self) -> None:
        outline = Outline(
            title="Edited",
            sections=(
                OutlineSection(id=EXECUTIVE_SUMMARY_ID, title="My Summary"),
                OutlineSection(id="alpha", title="Alpha"),
                OutlineSection(id="alpha", title="Alpha Again"),
                OutlineSection(id=CONCLUSION_ID, title="My Conclusion"),
            ),
        )

        fixed = ensure_unique_ids(outline)

        assert [s.id for s in fixed.sections] == [
            f"{EXECUTIVE_SUMMARY_ID}-1",
            "alpha",
            "alpha-3",
            f"{CONCLUSION_ID}-4",
        ]
        assert [s.title for s in fixed.sections] == [s.title for s in outline.sections]

    def test_clean_outline_is_returned_unchanged(self) -> None:
        outline = parse_outline(OUTLINE_JSON)

        assert ensure_unique_ids(outline) is outline
