"""
Broadcast Dispatcher
Fans selected articles out to subscribers with per-recipient dedup, bounded retry and pacing
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from marketwire.config import QuietHours
from marketwire.notification.message_formatter import MessageFormatter
from marketwire.notification.quiet_hours import QuietHoursPolicy, get_quiet_hours_policy, is_quiet_hour
from marketwire.notification.telegram_client import TelegramAPIError
from marketwire.selection.dedup import generate_fingerprint
from marketwire.storage.subscribers import SubscriberUpdate
from marketwire.timeutil import to_local, utc_now

SENT = "sent"
BLOCKED = "blocked"
NOT_FOUND = "not_found"
FAILED = "failed"

STATUS_FOR_OUTCOME = {BLOCKED: "blocked", NOT_FOUND: "inactive"}


def empty_metrics() -> Dict[str, int]:
    return {
        "sent": 0,
        "skipped_duplicate": 0,
        "failed": 0,
        "quiet_hours_skipped": 0,
        "blocked": 0,
        "not_found": 0,
    }


@dataclass
class BroadcastResult:
    metrics: Dict[str, int] = field(default_factory=empty_metrics)
    updates: List[SubscriberUpdate] = field(default_factory=list)


class BroadcastDispatcher:
    """
    Sends each selected article to every active subscriber that wants its category

    Delivery statistics are not written here; they come back as
    SubscriberUpdate commands for the caller to apply. Only permanent
    recipient errors (blocked, chat not found) change subscriber status
    during the cycle.
    """

    def __init__(
        self,
        client: Any,
        registry: Any,
        ledger: Any,
        formatter: MessageFormatter = None,
        quiet_hours: QuietHours = None,
        policy: Optional[QuietHoursPolicy] = None,
        time_zone: str = "Asia/Jakarta",
        retry_count: int = 1,
        retry_delay: float = 1.0,
        send_delay: float = 0.3,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.registry = registry
        self.ledger = ledger
        self.formatter = formatter or MessageFormatter(time_zone=time_zone)
        self.quiet_hours = quiet_hours or QuietHours()
        self.policy = policy or get_quiet_hours_policy(self.quiet_hours.policy)
        self.time_zone = time_zone
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self.send_delay = send_delay
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, client, registry, ledger, **kwargs) -> "BroadcastDispatcher":
        return cls(
            client,
            registry,
            ledger,
            formatter=MessageFormatter(time_zone=settings.display_timezone),
            quiet_hours=settings.quiet_hours,
            time_zone=settings.display_timezone,
            retry_count=settings.retry_count,
            retry_delay=settings.retry_delay,
            send_delay=settings.send_delay,
            **kwargs,
        )

    def send_with_retry(self, chat_id: Any, message: str) -> str:
        """
        Deliver one message, retrying transient failures

        Returns:
            sent | blocked | not_found | failed
        """
        attempts = self.retry_count + 1
        for attempt in range(1, attempts + 1):
            try:
                self.client.send_message(chat_id, message)
                return SENT
            except TelegramAPIError as e:
                if e.kind == BLOCKED:
                    logger.warning(f"Recipient {chat_id} blocked the bot")
                    return BLOCKED
                if e.kind == NOT_FOUND:
                    logger.warning(f"Chat {chat_id} not found")
                    return NOT_FOUND

                logger.warning(f"Send attempt {attempt}/{attempts} failed for {chat_id}: {e}")
                if attempt < attempts:
                    self._sleep(self.retry_delay)

        return FAILED

    def broadcast(self, articles: List[Any], execution_id: str) -> BroadcastResult:
        """
        Dispatch the selected articles in send order

        Args:
            articles: Selected articles (send order)
            execution_id: Cycle id stored in delivery markers

        Returns:
            BroadcastResult with metrics and subscriber stat updates
        """
        result = BroadcastResult()
        metrics = result.metrics

        hour = to_local(self._clock(), self.time_zone).hour
        quiet = is_quiet_hour(hour, self.quiet_hours.start, self.quiet_hours.end)
        if quiet:
            logger.info(f"[{execution_id}] Quiet hours active ({hour:02d}h), policy={self.quiet_hours.policy}")

        subscribers = self.registry.get_active_subscribers()
        retired = set()

        for article in articles:
            if quiet and not self.policy(article, hour):
                logger.debug(f"Quiet hours skip: {(article.title or '')[:60]}")
                metrics["quiet_hours_skipped"] += 1
                continue

            fingerprint = article.fingerprint or generate_fingerprint(article)
            message = self.formatter.format(article)
            recipients = [
                s for s in subscribers
                if s.wants(article.impact_category)
                and (s.subscriber_type, s.identifier) not in retired
            ]

            for recipient in recipients:
                recipient_key = (recipient.subscriber_type, recipient.identifier)
                chat_id = recipient.identifier
                if self.ledger.is_delivered(fingerprint, chat_id):
                    metrics["skipped_duplicate"] += 1
                    continue

                outcome = self.send_with_retry(chat_id, message)
                at = self._clock()

                if outcome == SENT:
                    self.ledger.mark_delivered(fingerprint, chat_id, execution_id)
                    metrics["sent"] += 1
                    result.updates.append(SubscriberUpdate(recipient.subscriber_type, chat_id, True, at))
                else:
                    metrics["failed"] += 1
                    result.updates.append(SubscriberUpdate(recipient.subscriber_type, chat_id, False, at))
                    if outcome in STATUS_FOR_OUTCOME:
                        metrics[outcome] += 1
                        retired.add(recipient_key)
                        self.registry.update_subscriber_status(
                            recipient.subscriber_type, chat_id, STATUS_FOR_OUTCOME[outcome]
                        )

                self._sleep(self.send_delay)

        logger.info(
            f"[{execution_id}] ✅ Broadcast: sent={metrics['sent']}, "
            f"skipped_duplicate={metrics['skipped_duplicate']}, failed={metrics['failed']}, "
            f"quiet_hours_skipped={metrics['quiet_hours_skipped']}"
        )
        return result
