import json
import os
import time
import uuid
from typing import Any, Callable, Dict, List

from loguru import logger

import marketwire.article.rss as rss
from marketwire.config import Settings, load_settings
from marketwire.notification import BroadcastDispatcher, LoggingClient, TelegramClient
from marketwire.selection.dedup import filter_duplicates, mark_as_dispatched
from marketwire.selection.priority import select_final_articles
from marketwire.selection.scorer import score_articles
from marketwire.storage import Ledger, MemoryStore, SubscriberRegistry, build_store
from marketwire.timeutil import isoformat, utc_now


def build_ledger(settings: Settings, store) -> Ledger:
    return Ledger(
        store,
        dispatched_ttl=settings.dispatched_ttl,
        delivered_ttl=settings.delivered_ttl,
        circuit_ttl=settings.circuit_breaker_ttl,
    )


def fetch_articles(settings: Settings, ledger: Ledger) -> List[rss.FetchResult]:
    return rss.fetch_all_sources(
        list(settings.sources),
        ledger,
        user_agent=settings.user_agent,
        failure_threshold=settings.circuit_failure_threshold,
        skip_seconds=settings.circuit_skip_seconds,
    )


def summarize_fetch(fetch_results: List[rss.FetchResult]) -> Dict[str, Any]:
    """Per-cycle fetch counters plus a per-source breakdown"""
    return {
        "attempted": len(fetch_results),
        "succeeded": sum(1 for r in fetch_results if r.success),
        "failed": sum(1 for r in fetch_results if not r.success and not r.skipped),
        "skipped": sum(1 for r in fetch_results if r.skipped),
        "stale_dropped": 0,
        "sources": [
            {
                "source": r.source,
                "success": r.success,
                "skipped": r.skipped,
                "articles": len(r.articles),
                "error": r.error,
            }
            for r in fetch_results
        ],
    }


def run_cycle(
    settings: Settings,
    ledger: Ledger,
    registry: SubscriberRegistry,
    client: Any,
    fetcher: Callable[[Settings, Ledger], List[rss.FetchResult]] = None,
    clock: Callable = utc_now,
    sleep: Callable[[float], None] = time.sleep,
    execution_id: str = None,
) -> Dict[str, Any]:
    """
    Run one fetch -> score -> dedup -> select -> dispatch cycle

    Per-source and per-recipient failures are absorbed and counted;
    StorageError propagates and fails the whole cycle.

    Returns:
        Cycle report dict (execution_id, status, duration_ms, metrics)
    """
    execution_id = execution_id or str(uuid.uuid4())
    started_at = time.monotonic()
    logger.info(f"[{execution_id}] Cycle started")

    # Step 1: fetch
    fetch_results = (fetcher or fetch_articles)(settings, ledger)
    fetch_metrics = summarize_fetch(fetch_results)
    for result in fetch_results:
        if not result.success and not result.skipped:
            logger.error(f"[{execution_id}] ❌ Failed to fetch {result.source}: {result.error}")

    articles = [article for result in fetch_results if result.success for article in result.articles]
    for index, article in enumerate(articles):
        article.fetch_index = index
    logger.info(f"[{execution_id}] Fetched {len(articles)} articles "
                f"({fetch_metrics['succeeded']}/{fetch_metrics['attempted']} sources)")

    if not articles:
        ledger.record_successful_run()
        return {
            "execution_id": execution_id,
            "status": "no_articles",
            "duration_ms": int((time.monotonic() - started_at) * 1000),
            "metrics": {"fetch": fetch_metrics},
        }

    # Step 2: normalize and drop stale/future items
    now = clock()
    for article in articles:
        rss.normalize_article(article, settings.display_timezone, now)
    fresh = [
        article for article in articles
        if rss.is_article_recent(article.pub_date_local, now, settings.max_age_hours, settings.skip_future_date)
    ]
    fetch_metrics["stale_dropped"] = len(articles) - len(fresh)

    # Step 3: score
    scored = score_articles(fresh, settings.scoring)
    score_metrics = {
        "high": sum(1 for a in scored if a.impact_category == "HIGH"),
        "med": sum(1 for a in scored if a.impact_category == "MED"),
        "low": sum(1 for a in scored if a.impact_category == "LOW"),
    }
    logger.info(f"[{execution_id}] Scored: HIGH={score_metrics['high']}, "
                f"MED={score_metrics['med']}, LOW={score_metrics['low']}")

    # Step 4: dedup
    dedup = filter_duplicates(scored, ledger)

    # Step 5: select
    selection = select_final_articles(dedup.unique, settings.limits)
    for rejection in selection.suppressed:
        logger.debug(f"[{execution_id}] Suppressed ({rejection.reason}): {(rejection.article.title or '')[:60]}")

    # Step 6: broadcast
    dispatcher = BroadcastDispatcher.from_settings(settings, client, registry, ledger, sleep=sleep, clock=clock)
    broadcast = dispatcher.broadcast(selection.selected, execution_id)
    registry.apply_updates(broadcast.updates)

    # Step 7: mark dispatched
    for article in selection.selected:
        mark_as_dispatched(article, execution_id, ledger)

    ledger.record_successful_run()
    duration_ms = int((time.monotonic() - started_at) * 1000)
    logger.info(f"[{execution_id}] ✅ Cycle completed in {duration_ms}ms")

    return {
        "execution_id": execution_id,
        "status": "success",
        "duration_ms": duration_ms,
        "metrics": {
            "fetch": fetch_metrics,
            "scoring": score_metrics,
            "dedup": dedup.metrics,
            "priority": selection.metrics,
            "broadcast": broadcast.metrics,
        },
        "selected": [
            {
                "send_order": a.send_order,
                "title": a.title,
                "source": a.source,
                "impact_category": a.impact_category,
                "impact_score": a.impact_score,
                "fingerprint": a.fingerprint,
            }
            for a in selection.selected
        ],
        "rejected": [rejection.to_dict() for rejection in dedup.duplicates + selection.suppressed],
    }


def save_cycle_report(report: Dict[str, Any], report_path: str) -> None:
    """Save the cycle report as JSON"""
    directory = os.path.dirname(report_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    data = dict(report, generated_at=isoformat(utc_now()))
    with open(report_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    logger.info(f"✅ Cycle report saved to {report_path}")


def execute(dry_run: bool = False, settings: Settings = None) -> Dict[str, Any]:
    """
    Entry point for one scheduled cycle

    A dry run keeps all state in memory and logs messages instead of sending them.
    """
    settings = settings or load_settings()
    store = MemoryStore() if dry_run else build_store(settings.store_backend, settings.store_path,
                                                      settings.redis_url)
    try:
        ledger = build_ledger(settings, store)
        registry = SubscriberRegistry(store)
        client = LoggingClient() if dry_run else TelegramClient(settings.bot_token)

        report = run_cycle(settings, ledger, registry, client)

        if settings.cycle_report_path:
            save_cycle_report(report, settings.cycle_report_path)
        return report
    finally:
        store.close()
