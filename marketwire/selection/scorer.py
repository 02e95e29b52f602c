"""
Impact Scoring Module
Implements scoring formula: 0.40*topic + 0.25*(50*keyword) + 0.20*(70*source_weight) + 0.15*(60*scope)
"""

import math
import re
from typing import Iterable, Optional, Tuple

from loguru import logger

from marketwire.config import ScoringConfig

TICKER_PATTERN = re.compile(r"\b[A-Z]{4}\b")


def _article_text(article) -> str:
    return f"{getattr(article, 'title', '') or ''} {getattr(article, 'description', '') or ''}"


def _count_hits(text: str, keywords: Iterable[str]) -> int:
    return sum(1 for keyword in keywords if keyword.lower() in text)


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding
    return int(math.floor(value + 0.5))


def calculate_topic_score(article, config: ScoringConfig) -> Tuple[int, Optional[str]]:
    """
    Match title+description against the ranked topic tiers

    Args:
        article: Article with title and description
        config: Scoring tables

    Returns:
        (score, tier name) of the first matching tier, or (default score, None)
    """
    text = _article_text(article).lower()
    for tier in config.topic_tiers:
        for keyword in tier.keywords:
            if keyword.lower() in text:
                return tier.score, tier.name
    return config.default_topic_score, None


def calculate_keyword_multiplier(article, config: ScoringConfig) -> float:
    text = _article_text(article).lower()
    hard_count = _count_hits(text, config.hard_keywords)
    soft_count = _count_hits(text, config.soft_keywords)

    if hard_count >= 2:
        return 1.5
    if hard_count == 1:
        return 1.3
    if soft_count > hard_count:
        return 0.8
    return 1.0


def calculate_scope_multiplier(article, config: ScoringConfig) -> float:
    """Breadth of the story: index-wide > multi-sector > sector > single issuer"""
    original = _article_text(article)
    text = original.lower()

    if any(phrase.lower() in text for phrase in config.index_wide_phrases):
        return 1.5
    if any(phrase.lower() in text for phrase in config.multi_sector_phrases):
        return 1.2
    if any(phrase.lower() in text for phrase in config.sector_phrases):
        return 1.0
    # 4-letter ticker code, needs the original case
    if TICKER_PATTERN.search(original):
        return 0.8
    return 1.0


def calculate_final_score(topic_score: int, keyword_multiplier: float, source_weight: float,
                          scope_multiplier: float) -> int:
    raw_score = (
        topic_score * 0.40 +
        (50 * keyword_multiplier) * 0.25 +
        (70 * source_weight) * 0.20 +
        (60 * scope_multiplier) * 0.15
    )
    return round_half_up(raw_score)


def classify_impact(score: int, config: ScoringConfig) -> str:
    if score >= config.high_threshold:
        return "HIGH"
    if score >= config.med_threshold:
        return "MED"
    return "LOW"


def has_extreme_keyword(article, config: ScoringConfig) -> bool:
    text = _article_text(article).lower()
    return any(keyword.lower() in text for keyword in config.extreme_keywords)


def score_article(article, config: ScoringConfig):
    """
    Score one article and set its impact fields in place

    Overrides applied after classification:
        - any extreme keyword forces HIGH
        - a CORE source reporting a top-tier (macro) topic is at least MED

    Args:
        article: Normalized Article
        config: Scoring tables

    Returns:
        The same article, augmented
    """
    topic_score, topic_tier = calculate_topic_score(article, config)
    keyword_multiplier = calculate_keyword_multiplier(article, config)
    scope_multiplier = calculate_scope_multiplier(article, config)
    source_weight = getattr(article, "source_weight", None) or 1.0

    score = calculate_final_score(topic_score, keyword_multiplier, source_weight, scope_multiplier)
    impact = classify_impact(score, config)

    extreme_hit = has_extreme_keyword(article, config)
    if extreme_hit:
        impact = "HIGH"

    top_tier_score = config.topic_tiers[0].score if config.topic_tiers else None
    if (article.source_tier == "CORE" and top_tier_score is not None
            and topic_score >= top_tier_score and impact == "LOW"):
        impact = "MED"

    article.topic_score = topic_score
    article.topic_tier = topic_tier
    article.keyword_multiplier = keyword_multiplier
    article.scope_multiplier = scope_multiplier
    article.impact_score = score
    article.impact_category = impact
    article.extreme_hit = extreme_hit

    logger.debug(
        f"Score: topic={topic_score} ({topic_tier}), kw={keyword_multiplier}, "
        f"weight={source_weight}, scope={scope_multiplier} -> {score} {impact}"
        f"{' [extreme]' if extreme_hit else ''}: {(article.title or '')[:60]}"
    )
    return article


def score_articles(articles, config: ScoringConfig):
    return [score_article(article, config) for article in articles]
