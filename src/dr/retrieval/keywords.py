"""
Keyword relevance scoring.

Each matched keyword adds its kind's weight to the score. Matching is a
case-insensitive substring test over title and body.
"""

from __future__ import annotations

from dr.topic import TopicConfig


def match_keywords(title: str, body: str, topic: TopicConfig) -> tuple[list[str], float]:
    """Match topic keywords against an article.

    Returns:
        (matched keywords in match order, relevance score)
    """
    text = f"{title} {body}".lower()
    weights = topic.keyword_weights

    matched: list[str] = []
    score = 0.0
    for keywords, weight in (
        (topic.keywords.primary, weights.primary),
        (topic.keywords.secondary, weights.secondary),
        (topic.keywords.entities, weights.entity),
    ):
        for keyword in keywords:
            if keyword and keyword.lower() in text:
                matched.append(keyword)
                score += weight
    return matched, score


def is_relevant(score: float, min_score: float) -> bool:
    return score >= min_score
