"""
Batch categorization and summarization of collected articles.

Each batch makes two sequential generation calls: categorize, then summarize.
Both responses are decoded leniently; an article the model skipped gets
category ``other`` and an empty summary.
"""

from __future__ import annotations

from typing import Sequence

from dr.llm.base import Profile, TextGenerator
from dr.llm.parsing import decode_categories, decode_summaries
from dr.topic import Category, TopicConfig
from dr.types import AnalyzedArticle, Article, utc_now

FALLBACK_CATEGORY = "other"

DEFAULT_CATEGORIES: tuple[Category, ...] = (
    Category("market", "Market", "Market moves, deals and competition"),
    Category("technology", "Technology", "Products, launches and technical change"),
    Category("regulation", "Regulation", "Policy, regulation and compliance"),
    Category("other", "Other", "Anything else"),
)


def chunk(items: Sequence[Article], size: int) -> list[list[Article]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _article_list(articles: Sequence[Article], body_chars: int) -> str:
    return "\n\n".join(
        f"[{i + 1}] ID: {a.id}\nTitle: {a.title}\nContent: {a.body[:body_chars]}"
        for i, a in enumerate(articles)
    )


def build_categorization_prompt(
    articles: Sequence[Article], categories: Sequence[Category], domain_context: str = ""
) -> str:
    category_list = "\n".join(f"- {c.id}: {c.label} ({c.description})" for c in categories)
    context = f"Domain context: {domain_context}\n\n" if domain_context else ""
    return f"""{context}Classify each of the following articles into one of these categories.

Categories:
{category_list}

Articles:
{_article_list(articles, 300)}

Respond in JSON:
[{{"id": "article id", "category": "category id"}}]

Output only the JSON, no other text."""


def build_summarization_prompt(articles: Sequence[Article], domain_context: str = "") -> str:
    context = f"Domain context: {domain_context}\n\n" if domain_context else ""
    return f"""{context}Summarize the key point of each article in one or two sentences.

Articles:
{_article_list(articles, 500)}

Respond in JSON:
[{{"id": "article id", "summary": "summary"}}]

Output only the JSON, no other text."""


class BatchAnalyzer:
    """Categorizes and summarizes article batches with the balanced profile."""

    def __init__(self, generator: TextGenerator, topic: TopicConfig) -> None:
        self.generator = generator
        self.topic = topic
        self.categories = topic.categories or DEFAULT_CATEGORIES
        self.valid_categories = {c.id for c in self.categories} | {FALLBACK_CATEGORY}

    async def categorize(self, batch: Sequence[Article]) -> dict[str, str]:
        prompt = build_categorization_prompt(batch, self.categories, self.topic.domain_context)
        output = await self.generator.generate(prompt, Profile.BALANCED, task="categorize")
        return decode_categories(output, self.valid_categories, FALLBACK_CATEGORY)

    async def summarize(self, batch: Sequence[Article]) -> dict[str, str]:
        prompt = build_summarization_prompt(batch, self.topic.domain_context)
        output = await self.generator.generate(prompt, Profile.BALANCED, task="summarize")
        return decode_summaries(output)

    @staticmethod
    def combine(
        batch: Sequence[Article], categories: dict[str, str], summaries: dict[str, str]
    ) -> list[AnalyzedArticle]:
        now = utc_now()
        return [
            AnalyzedArticle(
                article=a,
                category=categories.get(a.id, FALLBACK_CATEGORY),
                summary=summaries.get(a.id, ""),
                analyzed_at=now,
            )
            for a in batch
        ]
