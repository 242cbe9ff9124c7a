"""
Prompt templates for deep research.

Every template returns a complete prompt string. Responses are decoded by
dr.llm.parsing (JSON shapes) or used as markdown bodies.
"""

from __future__ import annotations

from typing import Sequence

from dr.llm.parsing import GapVerdict
from dr.topic import TopicConfig
from dr.types import Article, Outline, OutlineSection

# Characters of each section body shown to the summary/conclusion prompts
SECTION_PREVIEW_CHARS = 300
# Characters of each article body shown to the relevance prompt
RELEVANCE_BODY_CHARS = 500

OUTLINE_SCHEMA = """```json
{
  "title": "Report title",
  "sections": [
    {
      "id": "section-id",
      "title": "Section title",
      "description": "What this section covers",
      "search_queries": ["query 1", "query 2"],
      "key_points": ["point 1", "point 2", "point 3"]
    }
  ],
  "executive_summary_guidance": "What the executive summary should emphasize"
}
```"""

SECTION_SCHEMA = """```json
{
  "id": "section-id",
  "title": "Section title",
  "description": "What this section covers",
  "search_queries": ["query 1", "query 2"],
  "key_points": ["point 1", "point 2"]
}
```"""


def _topic_block(topic: TopicConfig) -> str:
    keywords = [*topic.keywords.primary, *topic.keywords.secondary, *topic.keywords.entities]
    categories = "\n".join(f"- {c.label}: {c.description}" for c in topic.categories)
    return f"""## Report title
{topic.report_title}

## Domain context
{topic.domain_context}

## Key terms
{", ".join(keywords)}

## Analysis categories
{categories or "- (none)"}

## Seed queries
{", ".join(topic.search_queries)}"""


def _numbered_articles(articles: Sequence[Article]) -> str:
    def when(a: Article) -> str:
        return a.published_at.date().isoformat() if a.published_at else "undated"

    return "\n\n".join(
        f'[{i + 1}] "{a.title}" ({a.source_name}, {when(a)})\n{a.body}'
        for i, a in enumerate(articles)
    )


def _section_block(section: OutlineSection) -> str:
    return f"""- Title: {section.title}
- Description: {section.description}
- Key points: {", ".join(section.key_points)}"""


def build_outline_prompt(topic: TopicConfig) -> str:
    return f"""You are the editor designing the table of contents of an in-depth research report.

Using the information below, write the report outline as JSON.

{_topic_block(topic)}

## Rules
- 4 to 7 sections
- 2 or 3 concrete news search queries per section
- 2 to 4 key points per section (what the analysis must cover)
- Section ids are lowercase words joined by hyphens (e.g. market-overview)
- executive_summary_guidance: the angle the final summary should emphasize

Output JSON matching this schema and nothing else.

{OUTLINE_SCHEMA}"""


def build_regenerate_section_prompt(
    topic: TopicConfig, outline: Outline, section: OutlineSection
) -> str:
    others = "\n".join(
        f"- {s.title}: {s.description}" for s in outline.sections if s.id != section.id
    )
    return f"""You are the editor of the report "{outline.title}".

Replace the section below with a better one. It must not overlap with the other
sections and must fit the report as a whole.

{_topic_block(topic)}

## Section to replace
{_section_block(section)}

## Other sections (keep these distinct)
{others or "- (none)"}

Keep the id "{section.id}". Output one section as JSON matching this schema and nothing else.

{SECTION_SCHEMA}"""


def build_relevance_prompt(section: OutlineSection, candidates: Sequence[Article]) -> str:
    listing = "\n".join(
        f"{i + 1}. {a.title}\nSummary: {a.body[:RELEVANCE_BODY_CHARS]}"
        for i, a in enumerate(candidates)
    )
    return f"""You judge whether news articles are relevant to a report section.

## Section
{_section_block(section)}

## Articles
{listing}

## Task
Decide for each article whether it relates to the section topic. Consider the
title and the summary together; count anything even loosely related as relevant.

## Output (JSON only)
```json
{{"relevant": [1, 3, 5]}}
```
List only the numbers (starting at 1) of relevant articles. Output only the JSON block."""


def build_analysis_prompt(
    topic: TopicConfig, section: OutlineSection, articles: Sequence[Article]
) -> str:
    return f"""You are a senior research analyst writing the "{section.title}" section
of the report "{topic.report_title}".

## Section
{_section_block(section)}

## Domain context
{topic.domain_context}

## Collected articles ({len(articles)})
{_numbered_articles(articles)}

## Rules
1. Write one integrated analysis; do not list the articles one by one
2. Organize the text around the key points
3. Cite sources inline by article number, e.g. "revenue doubled [1]"
4. 800 to 2000 words of markdown; use ### subheadings, never a ## section title
5. Use figures, statistics and concrete cases
6. Explain causes and effects, compare periods or competitors, and draw implications

Output only the markdown body."""


def build_gap_prompt(section: OutlineSection, draft: str) -> str:
    return f"""You review a draft report section against the points it must cover.

## Section
{_section_block(section)}

## Draft
{draft}

## Task
List the key points the draft misses or supports weakly, and propose up to three
news search queries that would fill those gaps. Answer "sufficient" if the draft
covers every key point with evidence, otherwise "insufficient".

## Output (JSON only)
```json
{{"gaps": ["missing point"], "follow_up_queries": ["query"], "assessment": "sufficient"}}
```"""


def build_resynthesis_prompt(
    topic: TopicConfig,
    section: OutlineSection,
    draft: str,
    articles: Sequence[Article],
    verdict: GapVerdict,
) -> str:
    gaps = "\n".join(f"- {g}" for g in verdict.gaps) or "- (unspecified)"
    return f"""You are a senior research analyst revising the "{section.title}" section
of the report "{topic.report_title}".

## Section
{_section_block(section)}

## Current draft
{draft}

## Gaps found in review
{gaps}

## All articles, including follow-up research ({len(articles)})
{_numbered_articles(articles)}

## Rules
1. Rewrite the whole section so it covers the gaps using the new material
2. Keep every well-supported finding of the current draft
3. Cite sources inline by article number from the list above
4. Markdown with ### subheadings, never a ## section title

Output only the markdown body."""


def build_refine_prompt(topic: TopicConfig, section: OutlineSection, draft: str) -> str:
    return f"""You are the final editor of the "{section.title}" section of the report
"{topic.report_title}".

## Draft
{draft}

## Task
First critique the draft: logic gaps, claims without support, bias, and missing
implications. Then rewrite the draft fixing every issue. Keep the inline
citations [n] attached to the facts they support.

## Output format
<critique>
your critique
</critique>
<rewrite>
the complete rewritten markdown body (### subheadings, no ## title)
</rewrite>"""


def _section_previews(sections: Sequence[tuple[str, str]]) -> str:
    return "\n".join(
        f"- **{title}**: {content[:SECTION_PREVIEW_CHARS]}..." for title, content in sections
    )


def build_executive_summary_prompt(
    topic: TopicConfig, outline: Outline, sections: Sequence[tuple[str, str]]
) -> str:
    return f"""You write the executive summary of the report "{topic.report_title}".

## Report
- Title: {outline.title}
- Summary guidance: {outline.executive_summary_guidance}
- Domain: {topic.domain_context}

## Section previews
{_section_previews(sections)}

## Rules
1. Condense the key findings and implications of the whole report
2. Include the most important figures and trends
3. A reader of this summary alone should grasp the report
4. Add a markdown table of the key metrics found in the report
5. Markdown without a ## title

Output only the markdown body."""


def build_conclusion_prompt(
    topic: TopicConfig, outline: Outline, sections: Sequence[tuple[str, str]]
) -> str:
    return f"""You write the conclusion and outlook of the report "{topic.report_title}".

## Report
- Title: {outline.title}
- Domain: {topic.domain_context}

## Section previews
{_section_previews(sections)}

## Rules
1. Synthesize the key findings of the report
2. Present the trends and outlook worth watching
3. Include actionable insights, organized in a table (short, mid, long term) where it helps
4. Markdown without a ## title

Output only the markdown body."""
