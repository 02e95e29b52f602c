"""
Ledger Module
Dispatched/delivery markers, per-source circuit breakers and the health record on top of a KVStore
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from loguru import logger

from marketwire.storage.kv_store import KVStore
from marketwire.timeutil import isoformat, parse_iso, utc_now

HEALTH_KEY = "health:last_successful_run"
HEALTHY_WITHIN_MINUTES = 30


def dispatched_key(fingerprint: str) -> str:
    return f"news:dispatched:{fingerprint}"


def delivered_key(fingerprint: str, chat_id: str) -> str:
    return f"news:delivered:{fingerprint}:{chat_id}"


def circuit_key(source_key: str) -> str:
    return f"circuit:{source_key}"


class Ledger:
    """
    Keyed markers used by dedup, dispatch and ingestion

    Every operation is a single-key read or write; cycles never overlap, so no
    cross-key transaction is needed.
    """

    def __init__(
        self,
        store: KVStore,
        dispatched_ttl: int = 604800,
        delivered_ttl: int = 604800,
        circuit_ttl: int = 3600,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.dispatched_ttl = dispatched_ttl
        self.delivered_ttl = delivered_ttl
        self.circuit_ttl = circuit_ttl
        self._clock = clock

    # ---- dispatched markers ----

    def is_dispatched(self, fingerprint: str) -> bool:
        return self.store.exists(dispatched_key(fingerprint))

    def mark_dispatched(
        self,
        fingerprint: str,
        impact_category: str,
        source_tier: str,
        execution_id: str,
        topic_tags: Optional[list] = None,
    ) -> None:
        self.store.set(
            dispatched_key(fingerprint),
            {
                "sent_timestamp": isoformat(self._clock()),
                "impact_category": impact_category,
                "source_tier": source_tier,
                "topic_tags": topic_tags or [],
                "execution_id": execution_id,
            },
            ttl=self.dispatched_ttl,
        )

    # ---- delivery markers ----

    def is_delivered(self, fingerprint: str, chat_id: str) -> bool:
        return self.store.exists(delivered_key(fingerprint, chat_id))

    def mark_delivered(self, fingerprint: str, chat_id: str, execution_id: str) -> None:
        self.store.set(
            delivered_key(fingerprint, chat_id),
            {"sent_timestamp": isoformat(self._clock()), "execution_id": execution_id},
            ttl=self.delivered_ttl,
        )

    # ---- circuit breaker ----

    def get_circuit_breaker(self, source_key: str) -> Optional[Dict[str, Any]]:
        return self.store.get(circuit_key(source_key))

    def should_skip_source(self, source_key: str) -> bool:
        breaker = self.get_circuit_breaker(source_key)
        if not breaker:
            return False
        skip_until = parse_iso(breaker.get("skip_until"))
        return skip_until is not None and skip_until > self._clock()

    def record_source_failure(self, source_key: str, threshold: int = 3, skip_seconds: int = 3600) -> Dict[str, Any]:
        """Increment the consecutive-failure counter, opening the breaker at `threshold`"""
        existing = self.get_circuit_breaker(source_key) or {}
        failed_count = int(existing.get("failed_count", 0)) + 1
        now = self._clock()
        skip_until = now + timedelta(seconds=skip_seconds) if failed_count >= threshold else None

        data = {
            "failed_count": failed_count,
            "last_failure": isoformat(now),
            "skip_until": isoformat(skip_until),
        }
        self.store.set(circuit_key(source_key), data, ttl=self.circuit_ttl)

        if skip_until:
            logger.warning(f"Circuit open for {source_key} after {failed_count} failures (until {data['skip_until']})")
        return data

    def reset_source_failures(self, source_key: str) -> None:
        if self.store.exists(circuit_key(source_key)):
            self.store.delete(circuit_key(source_key))

    # ---- health ----

    def record_successful_run(self) -> None:
        self.store.set(HEALTH_KEY, {"last_successful_run": isoformat(self._clock()), "status": "healthy"})

    def get_health_status(self) -> Dict[str, Any]:
        """
        Report whether a cycle completed recently

        Returns:
            dict with status (healthy|degraded), last_successful_run, minutes_since_last_run, current_time
        """
        now = self._clock()
        record = self.store.get(HEALTH_KEY) or {}
        last_run = parse_iso(record.get("last_successful_run"))
        minutes = int((now - last_run).total_seconds() // 60) if last_run else None
        status = "healthy" if minutes is not None and minutes < HEALTHY_WITHIN_MINUTES else "degraded"
        return {
            "status": status,
            "last_successful_run": record.get("last_successful_run"),
            "minutes_since_last_run": minutes,
            "current_time": isoformat(now),
        }
