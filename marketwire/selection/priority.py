"""
Priority Selection Module
Chooses which deduplicated articles are sent this cycle and in what order
"""

from typing import Any, Dict, List, Tuple

from loguru import logger

from marketwire.config import CycleLimits
from marketwire.selection.models import (
    CYCLE_LIMIT_EXCEEDED,
    LOW_IMPACT,
    SUPERSEDED_BY_HIGH,
    SUPPRESSED_BY_HIGH_CORE,
    TOPIC_REDUNDANCY,
    Rejection,
    SelectionResult,
)

TOPIC_KEY_TOKENS = 3


def apply_priority_rules(articles: List[Any]) -> Tuple[List[Any], List[Any], List[Any]]:
    """Partition by impact category; HIGH and MED sorted by score DESC (stable)"""
    high = [a for a in articles if a.impact_category == "HIGH"]
    med = [a for a in articles if a.impact_category == "MED"]
    low = [a for a in articles if a.impact_category not in ("HIGH", "MED")]

    high.sort(key=lambda a: a.impact_score, reverse=True)
    med.sort(key=lambda a: a.impact_score, reverse=True)
    return high, med, low


def suppress_med_if_high_core(high: List[Any], med: List[Any]) -> Tuple[List[Any], List[Rejection]]:
    """
    A HIGH article from a CORE source silences every MED article this cycle

    Returns:
        (remaining MED articles, rejections)
    """
    if any(a.source_tier == "CORE" for a in high):
        return [], [Rejection(a, SUPPRESSED_BY_HIGH_CORE, a.fingerprint) for a in med]
    return med, []


def limit_per_cycle(articles: List[Any], max_count: int) -> Tuple[List[Any], List[Rejection]]:
    if len(articles) <= max_count:
        return list(articles), []
    overflow = [Rejection(a, CYCLE_LIMIT_EXCEEDED, a.fingerprint) for a in articles[max_count:]]
    return list(articles[:max_count]), overflow


def topic_key(article: Any) -> str:
    tokens = (article.canonical_title or "").split()
    if not tokens:
        return f"fingerprint:{article.fingerprint}"
    return " ".join(tokens[:TOPIC_KEY_TOKENS])


def remove_topic_redundancy(articles: List[Any]) -> Tuple[List[Any], List[Rejection]]:
    kept_by_topic: Dict[str, Any] = {}
    selected = []
    suppressed = []
    for article in articles:
        key = topic_key(article)
        if key in kept_by_topic:
            suppressed.append(Rejection(article, TOPIC_REDUNDANCY, article.fingerprint, kept_by_topic[key]))
            continue
        kept_by_topic[key] = article
        selected.append(article)
    return selected, suppressed


def select_final_articles(articles: List[Any], limits: CycleLimits = None) -> SelectionResult:
    """
    Pick the articles to broadcast this cycle

    Strategy:
    1. Partition HIGH / MED / LOW, sort HIGH and MED by score
    2. HIGH from CORE suppresses all MED
    3. Cap HIGH at max_high
    4. No HIGH left: fall back to MED capped at max_med
    5. Drop later articles repeating a topic (first three title tokens)
    6. LOW is never sent
    7. Number the survivors with send_order

    Only order, inclusion and send_order change; scores and fingerprints are untouched.

    Args:
        articles: Scored, deduplicated articles
        limits: Per-cycle caps

    Returns:
        SelectionResult(selected, suppressed, metrics)
    """
    limits = limits or CycleLimits()
    high, med, low = apply_priority_rules(articles)

    remaining_med, suppressed = suppress_med_if_high_core(high, med)
    selected, overflow = limit_per_cycle(high, limits.max_high)
    suppressed.extend(overflow)

    if not selected:
        selected, med_overflow = limit_per_cycle(remaining_med, limits.max_med)
        suppressed.extend(med_overflow)
    else:
        # HIGH from non-CORE sources still takes the cycle
        suppressed.extend(Rejection(a, SUPERSEDED_BY_HIGH, a.fingerprint) for a in remaining_med)

    selected, redundant = remove_topic_redundancy(selected)
    suppressed.extend(redundant)
    suppressed.extend(Rejection(a, LOW_IMPACT, a.fingerprint) for a in low)

    for index, article in enumerate(selected, start=1):
        article.send_order = index

    metrics = {
        "total_processed": len(articles),
        "selected": len(selected),
        "suppressed": len(suppressed),
        "high_count": len(high),
        "med_count": len(med),
        "low_count": len(low),
    }
    logger.info(
        f"Selection: {metrics['selected']}/{metrics['total_processed']} selected "
        f"(HIGH={metrics['high_count']}, MED={metrics['med_count']}, LOW={metrics['low_count']})"
    )
    return SelectionResult(selected=selected, suppressed=suppressed, metrics=metrics)
