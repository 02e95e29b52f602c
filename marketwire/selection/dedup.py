"""
Deduplication Module
Rejects articles already dispatched in earlier cycles and collapses cross-source duplicates
"""

import hashlib
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from loguru import logger

from marketwire.config import get_tier_rank
from marketwire.selection.models import (
    ALREADY_DISPATCHED,
    CROSS_SOURCE_DUPLICATE,
    DUPLICATE_FINGERPRINT,
    DedupResult,
    Rejection,
)

FINGERPRINT_LENGTH = 16
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _digest(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def generate_fingerprint(article: Any) -> str:
    """
    Deterministic 16-hex digest identifying an article

    The link (trimmed, lowercased) is used when present; otherwise
    canonical_title|pub_date_hour|source_domain.
    """
    link = (getattr(article, "link", "") or "").strip()
    if link:
        return _digest(link.lower())

    content = (
        f"{getattr(article, 'canonical_title', '')}|"
        f"{getattr(article, 'pub_date_hour', '')}|"
        f"{getattr(article, 'source_domain', '')}"
    )
    return _digest(content)


def _cross_source_key(article: Any):
    """Tier first, then earliest publish time, then fetch order"""
    published = getattr(article, "pub_date_local", None) or _EPOCH
    return (get_tier_rank(article.source_tier), published, getattr(article, "fetch_index", 0))


def find_cross_source_duplicates(articles: List[Any]) -> List[Rejection]:
    """Group by non-empty canonical title and keep one article per group"""
    grouped: Dict[str, List[Any]] = OrderedDict()
    for article in articles:
        if not article.canonical_title:
            continue
        grouped.setdefault(article.canonical_title, []).append(article)

    duplicates = []
    for title, group in grouped.items():
        if len(group) < 2:
            continue
        ranked = sorted(group, key=_cross_source_key)
        kept = ranked[0]
        for article in ranked[1:]:
            logger.debug(
                f"Cross-source duplicate: {article.source} [{article.source_tier}] "
                f"dropped for {kept.source} [{kept.source_tier}]: {title}"
            )
            duplicates.append(Rejection(article, CROSS_SOURCE_DUPLICATE, article.fingerprint, kept))
    return duplicates


def filter_duplicates(
    articles: List[Any],
    ledger: Any,
    fingerprint: Callable[[Any], str] = generate_fingerprint,
) -> DedupResult:
    """
    Split scored articles into unique and duplicate sets

    Strategy:
    1. Fingerprint every article (sets article.fingerprint)
    2. Reject fingerprints already in the dispatched ledger
    3. Reject repeats of a fingerprint seen earlier in this list
    4. Collapse cross-source duplicates sharing a canonical title

    Never writes to the ledger.

    Args:
        articles: Scored articles
        ledger: Object exposing is_dispatched(fingerprint)
        fingerprint: Fingerprint function

    Returns:
        DedupResult(unique, duplicates), unique in input order
    """
    candidates = []
    duplicates = []
    seen: Dict[str, Any] = {}

    for article in articles:
        article.fingerprint = fingerprint(article)

        if ledger.is_dispatched(article.fingerprint):
            logger.debug(f"Already dispatched ({article.fingerprint}): {(article.title or '')[:60]}")
            duplicates.append(Rejection(article, ALREADY_DISPATCHED, article.fingerprint))
            continue

        if article.fingerprint in seen:
            duplicates.append(Rejection(article, DUPLICATE_FINGERPRINT, article.fingerprint,
                                        seen[article.fingerprint]))
            continue

        seen[article.fingerprint] = article
        candidates.append(article)

    cross_source = find_cross_source_duplicates(candidates)
    dropped = {id(rejection.article) for rejection in cross_source}
    unique = [article for article in candidates if id(article) not in dropped]
    duplicates.extend(cross_source)

    logger.info(
        f"Deduplication: {len(articles)} -> {len(unique)} articles "
        f"({len(duplicates)} duplicates: {len(cross_source)} cross-source)"
    )
    return DedupResult(unique=unique, duplicates=duplicates)


def mark_as_dispatched(article: Any, execution_id: str, ledger: Any) -> str:
    """Record the article in the dispatched ledger and return its fingerprint"""
    fingerprint = article.fingerprint or generate_fingerprint(article)
    topic_tags = [article.topic_tier] if getattr(article, "topic_tier", None) else []
    ledger.mark_dispatched(
        fingerprint,
        impact_category=article.impact_category,
        source_tier=article.source_tier,
        execution_id=execution_id,
        topic_tags=topic_tags,
    )
    return fingerprint
