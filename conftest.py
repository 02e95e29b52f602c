"""
Shared fixtures: a small keyword table, a frozen clock and in-memory storage
"""

from datetime import datetime, timezone

import pytest

from marketwire.article.rss import Article, canonicalize_title
from marketwire.config import ScoringConfig, TopicTier
from marketwire.storage import Ledger, MemoryStore, SubscriberRegistry

# 10:00 WIB
FIXED_NOW = datetime(2024, 11, 12, 3, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_article(**overrides) -> Article:
    title = overrides.pop("title", "Berita pasar hari ini")
    fields = {
        "title": title,
        "link": "https://news.example.com/" + canonicalize_title(title).replace(" ", "-"),
        "description": "",
        "source": "Example News",
        "source_tier": "SUPPORT",
        "source_weight": 1.0,
        "source_domain": "news.example.com",
        "canonical_title": canonicalize_title(title),
        "pub_date_local": FIXED_NOW,
        "pub_date_hour": "2024-11-12T10",
        "impact_score": 40,
        "impact_category": "LOW",
    }
    fields.update(overrides)
    return Article(**fields)


@pytest.fixture
def scoring_config() -> ScoringConfig:
    return ScoringConfig(
        version="test",
        topic_tiers=(
            TopicTier("L1_MACRO", 90, ("BI Rate", "suku bunga", "Fed")),
            TopicTier("L2_MARKET", 75, ("IHSG", "rupiah", "net sell")),
            TopicTier("L3_SECTOR", 50, ("sektor", "tambang")),
            TopicTier("L4_ISSUER", 20, ("emiten", "dividen")),
        ),
        hard_keywords=("anjlok", "melonjak", "fraud"),
        soft_keywords=("berpotensi", "diperkirakan", "prospek"),
        extreme_keywords=("krisis sistemik", "suspensi perdagangan"),
        index_wide_phrases=("ihsg", "indeks utama"),
        multi_sector_phrases=("multi sektor", "beberapa sektor"),
        sector_phrases=("sektor", "industri"),
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def store(clock) -> MemoryStore:
    return MemoryStore(clock=clock.timestamp)


@pytest.fixture
def ledger(store, clock) -> Ledger:
    return Ledger(store, clock=clock)


@pytest.fixture
def registry(store, clock) -> SubscriberRegistry:
    return SubscriberRegistry(store, clock=clock)
