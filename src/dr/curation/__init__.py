"""Article curation: near-duplicate clustering plus multi-factor ranking."""

from dr.curation.curator import (
    ArticleCurator,
    CurationResult,
    ScoreWeights,
    curate_articles,
    title_similarity,
)

__all__ = [
    "ArticleCurator",
    "CurationResult",
    "ScoreWeights",
    "curate_articles",
    "title_similarity",
]
