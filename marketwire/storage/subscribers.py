"""
Subscriber Registry
Subscriber records, active-index sets and rolling 7-day delivery statistics
"""

import csv
import io
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from marketwire.config import DEFAULT_IMPACT_FILTER, IMPACT_CATEGORIES
from marketwire.storage.kv_store import KVStore
from marketwire.timeutil import isoformat, parse_iso, utc_now

SUBSCRIBER_TYPES = ("user", "group")
STATUSES = ("active", "inactive", "blocked")
STATS_WINDOW = timedelta(days=7)


def subscriber_key(subscriber_type: str, identifier: str) -> str:
    return f"subscriber:{subscriber_type}:{identifier}"


def active_index(subscriber_type: str) -> str:
    return f"subscribers:active:{subscriber_type}s"


def all_index(subscriber_type: str) -> str:
    return f"subscribers:all:{subscriber_type}s"


def subscriber_type_for(chat_id: Any) -> str:
    """Telegram private chats have positive ids, groups negative"""
    return "user" if int(chat_id) > 0 else "group"


@dataclass
class DeliveryStats:
    last_success: Optional[str] = None
    last_attempt: Optional[str] = None
    success_count_7d: int = 0
    fail_count_7d: int = 0
    window_started: Optional[str] = None


@dataclass
class Subscriber:
    identifier: str
    subscriber_type: str
    status: str = "active"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    impact_filter: List[str] = field(default_factory=lambda: list(DEFAULT_IMPACT_FILTER))
    delivery_stats: DeliveryStats = field(default_factory=DeliveryStats)

    def wants(self, impact_category: str) -> bool:
        return impact_category in (self.impact_filter or DEFAULT_IMPACT_FILTER)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["preferences"] = {"impact_filter": data.pop("impact_filter")}
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Subscriber":
        prefs = data.get("preferences") or {}
        stats = data.get("delivery_stats") or {}
        return Subscriber(
            identifier=str(data["identifier"]),
            subscriber_type=data.get("subscriber_type", "user"),
            status=data.get("status", "active"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            impact_filter=list(prefs.get("impact_filter") or DEFAULT_IMPACT_FILTER),
            delivery_stats=DeliveryStats(
                last_success=stats.get("last_success"),
                last_attempt=stats.get("last_attempt"),
                success_count_7d=int(stats.get("success_count_7d") or 0),
                fail_count_7d=int(stats.get("fail_count_7d") or 0),
                window_started=stats.get("window_started"),
            ),
        )


@dataclass
class SubscriberUpdate:
    """Delivery outcome emitted by the dispatcher and applied by the registry"""
    subscriber_type: str
    identifier: str
    success: bool
    at: datetime


class SubscriberRegistry:
    def __init__(self, store: KVStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self._clock = clock

    def _save(self, subscriber: Subscriber) -> None:
        key = subscriber_key(subscriber.subscriber_type, subscriber.identifier)
        self.store.set(key, subscriber.to_dict())
        self.store.sadd(all_index(subscriber.subscriber_type), subscriber.identifier)
        if subscriber.status == "active":
            self.store.sadd(active_index(subscriber.subscriber_type), subscriber.identifier)
        else:
            self.store.srem(active_index(subscriber.subscriber_type), subscriber.identifier)

    def get_subscriber(self, subscriber_type: str, identifier: Any) -> Optional[Subscriber]:
        data = self.store.get(subscriber_key(subscriber_type, str(identifier)))
        return Subscriber.from_dict(data) if data else None

    def add_subscriber(self, identifier: Any, subscriber_type: str = None) -> Subscriber:
        """
        Create or reactivate a subscriber

        An existing record keeps its created_at, preferences and delivery stats; only
        status and updated_at change.
        """
        identifier = str(identifier)
        subscriber_type = subscriber_type or subscriber_type_for(identifier)
        if subscriber_type not in SUBSCRIBER_TYPES:
            raise ValueError(f"Unknown subscriber type: {subscriber_type}")

        now = isoformat(self._clock())
        subscriber = self.get_subscriber(subscriber_type, identifier)
        if subscriber is None:
            subscriber = Subscriber(identifier=identifier, subscriber_type=subscriber_type, created_at=now)
            logger.info(f"New {subscriber_type} subscriber {identifier}")
        elif subscriber.status != "active":
            logger.info(f"Reactivating {subscriber_type} subscriber {identifier} (was {subscriber.status})")

        subscriber.status = "active"
        subscriber.updated_at = now
        self._save(subscriber)
        return subscriber

    def update_subscriber_status(self, subscriber_type: str, identifier: Any, status: str) -> Optional[Subscriber]:
        if status not in STATUSES:
            raise ValueError(f"Unknown subscriber status: {status}")

        subscriber = self.get_subscriber(subscriber_type, identifier)
        if subscriber is None:
            logger.warning(f"Status update for unknown {subscriber_type} {identifier} ignored")
            return None

        subscriber.status = status
        subscriber.updated_at = isoformat(self._clock())
        self._save(subscriber)
        logger.info(f"Subscriber {subscriber_type}:{identifier} -> {status}")
        return subscriber

    def set_preferences(self, subscriber_type: str, identifier: Any, impact_filter: Iterable[str]) -> Optional[Subscriber]:
        categories = [c for c in impact_filter if c in IMPACT_CATEGORIES]
        if not categories:
            raise ValueError(f"Impact filter must contain at least one of {IMPACT_CATEGORIES}")

        subscriber = self.get_subscriber(subscriber_type, identifier)
        if subscriber is None:
            return None
        subscriber.impact_filter = categories
        subscriber.updated_at = isoformat(self._clock())
        self._save(subscriber)
        return subscriber

    def _load_index(self, index: str, subscriber_type: str) -> List[Subscriber]:
        subscribers = []
        for identifier in sorted(self.store.smembers(index)):
            subscriber = self.get_subscriber(subscriber_type, identifier)
            if subscriber is not None:
                subscribers.append(subscriber)
        return subscribers

    def get_active_subscribers(self, subscriber_type: str = None) -> List[Subscriber]:
        types = [subscriber_type] if subscriber_type else list(SUBSCRIBER_TYPES)
        active = []
        for t in types:
            active.extend(s for s in self._load_index(active_index(t), t) if s.status == "active")
        return active

    def get_all_subscribers(self) -> List[Subscriber]:
        subscribers = []
        for t in SUBSCRIBER_TYPES:
            subscribers.extend(self._load_index(all_index(t), t))
        return subscribers

    def apply_update(self, update: SubscriberUpdate) -> Optional[Subscriber]:
        """Fold one delivery outcome into the subscriber's rolling 7-day stats"""
        subscriber = self.get_subscriber(update.subscriber_type, update.identifier)
        if subscriber is None:
            return None

        stats = subscriber.delivery_stats
        window_started = parse_iso(stats.window_started)
        if window_started is None or update.at - window_started >= STATS_WINDOW:
            stats.success_count_7d = 0
            stats.fail_count_7d = 0
            stats.window_started = isoformat(update.at)

        at = isoformat(update.at)
        stats.last_attempt = at
        if update.success:
            stats.last_success = at
            stats.success_count_7d += 1
        else:
            stats.fail_count_7d += 1

        self._save(subscriber)
        return subscriber

    def apply_updates(self, updates: Iterable[SubscriberUpdate]) -> int:
        applied = 0
        for update in updates:
            if self.apply_update(update) is not None:
                applied += 1
        return applied

    def summarize(self) -> Dict[str, int]:
        """Counts for admin reporting"""
        subscribers = self.get_all_subscribers()
        return {
            "total": len(subscribers),
            "users": sum(1 for s in subscribers if s.subscriber_type == "user"),
            "groups": sum(1 for s in subscribers if s.subscriber_type == "group"),
            "active": sum(1 for s in subscribers if s.status == "active"),
            "blocked": sum(1 for s in subscribers if s.status == "blocked"),
            "inactive": sum(1 for s in subscribers if s.status == "inactive"),
        }

    def export_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["identifier", "type", "status", "created_at", "impact_filter",
                         "success_count_7d", "fail_count_7d", "last_success"])
        for s in self.get_all_subscribers():
            writer.writerow([
                s.identifier, s.subscriber_type, s.status, s.created_at, ";".join(s.impact_filter),
                s.delivery_stats.success_count_7d, s.delivery_stats.fail_count_7d,
                s.delivery_stats.last_success or "",
            ])
        return buffer.getvalue()
