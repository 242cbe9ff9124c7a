"""Report-level synthesis: executive summary and conclusion."""

from __future__ import annotations

import asyncio
from typing import Sequence

from dr.llm.base import Profile, TextGenerator
from dr.llm.parsing import strip_code_fence
from dr.research.prompts import build_conclusion_prompt, build_executive_summary_prompt
from dr.topic import TopicConfig
from dr.types import Outline, SectionResearchResult


def _previews(results: Sequence[SectionResearchResult]) -> list[tuple[str, str]]:
    return [(r.title, r.content) for r in results]


async def generate_executive_summary(
    generator: TextGenerator,
    topic: TopicConfig,
    outline: Outline,
    results: Sequence[SectionResearchResult],
) -> str:
    prompt = build_executive_summary_prompt(topic, outline, _previews(results))
    return strip_code_fence(
        await generator.generate(prompt, Profile.DEEP, task="executive_summary")
    )


async def generate_conclusion(
    generator: TextGenerator,
    topic: TopicConfig,
    outline: Outline,
    results: Sequence[SectionResearchResult],
) -> str:
    prompt = build_conclusion_prompt(topic, outline, _previews(results))
    return strip_code_fence(await generator.generate(prompt, Profile.DEEP, task="conclusion"))


async def synthesize(
    generator: TextGenerator,
    topic: TopicConfig,
    outline: Outline,
    results: Sequence[SectionResearchResult],
) -> tuple[str, str]:
    """Run both syntheses concurrently.

    Both are required: the first failure propagates after both finish.

    Returns:
        (executive_summary, conclusion)
    """
    summary, conclusion = await asyncio.gather(
        generate_executive_summary(generator, topic, outline, results),
        generate_conclusion(generator, topic, outline, results),
        return_exceptions=True,
    )
    for outcome in (summary, conclusion):
        if isinstance(outcome, BaseException):
            raise outcome
    return summary, conclusion
