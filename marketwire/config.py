"""
Configuration Module
Loads source tiers and scoring tables from resources/*.json and applies environment overrides
"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple
from urllib.parse import urlparse

from dateutil import tz
from dotenv import load_dotenv
from loguru import logger

RESOURCE_DIR = os.path.join(os.path.dirname(__file__), "resources")
SOURCES_FILE = os.path.join(RESOURCE_DIR, "sources.json")
KEYWORDS_FILE = os.path.join(RESOURCE_DIR, "keywords.json")

TIER_ORDER = {"CORE": 1, "SUPPORT": 2, "NOISE": 3}
IMPACT_CATEGORIES = ("HIGH", "MED", "LOW")
DEFAULT_IMPACT_FILTER = ("HIGH", "MED")
QUIET_HOURS_POLICIES = ("always", "extreme_only", "high_only", "never")


def get_tier_rank(tier: str) -> int:
    """Rank for a source tier, lower is more important (unknown tiers sort last)"""
    return TIER_ORDER.get(tier, len(TIER_ORDER) + 1)


@dataclass(frozen=True)
class SourceConfig:
    name: str
    url: str
    tier: str
    weight: float = 1.0
    timeout: float = 5.0

    @property
    def domain(self) -> str:
        return urlparse(self.url).hostname or ""


@dataclass(frozen=True)
class TopicTier:
    name: str
    score: int
    keywords: Tuple[str, ...]


@dataclass(frozen=True)
class ScoringConfig:
    """Versioned keyword/topic tables consumed by the scoring engine"""
    version: str
    topic_tiers: Tuple[TopicTier, ...]
    hard_keywords: Tuple[str, ...]
    soft_keywords: Tuple[str, ...]
    extreme_keywords: Tuple[str, ...]
    index_wide_phrases: Tuple[str, ...] = ()
    multi_sector_phrases: Tuple[str, ...] = ()
    sector_phrases: Tuple[str, ...] = ()
    default_topic_score: int = 10
    high_threshold: int = 75
    med_threshold: int = 50


@dataclass(frozen=True)
class CycleLimits:
    max_high: int = 5
    max_med: int = 3


@dataclass(frozen=True)
class QuietHours:
    start: int = 22
    end: int = 6
    policy: str = "extreme_only"


@dataclass(frozen=True)
class Settings:
    sources: Tuple[SourceConfig, ...]
    scoring: ScoringConfig
    limits: CycleLimits = field(default_factory=CycleLimits)
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    display_timezone: str = "Asia/Jakarta"
    dispatched_ttl: int = 604800
    delivered_ttl: int = 604800
    circuit_breaker_ttl: int = 3600
    circuit_failure_threshold: int = 3
    circuit_skip_seconds: int = 3600
    max_age_hours: float = 24.0
    skip_future_date: bool = True
    send_delay: float = 0.3
    retry_count: int = 1
    retry_delay: float = 1.0
    user_agent: str = "Market News Bot/1.0"
    bot_token: Optional[str] = None
    store_backend: str = "memory"
    store_path: str = "data/marketwire.sqlite"
    redis_url: Optional[str] = None
    cycle_report_path: Optional[str] = None


def _read_json(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as fp:
        return json.load(fp)


def load_source_configs(path: str = SOURCES_FILE) -> List[SourceConfig]:
    """
    Load RSS sources, propagating tier/weight/timeout from each category to its items

    Args:
        path: Path to sources.json

    Returns:
        Sources ordered by tier (CORE first), file order within a tier
    """
    data = _read_json(path)
    sources = []
    for category in data.get("categories", []):
        for item in category.get("items", []):
            tier = item.get("tier", category.get("tier", "NOISE"))
            if tier not in TIER_ORDER:
                logger.warning(f"Unknown tier '{tier}' for source {item.get('title')}, treating as NOISE")
                tier = "NOISE"
            sources.append(SourceConfig(
                name=item.get("title") or item.get("name") or item["url"],
                url=item["url"],
                tier=tier,
                weight=float(item.get("weight", category.get("weight", 1.0))),
                timeout=float(item.get("timeout", category.get("timeout", 5))),
            ))

    sources.sort(key=lambda s: get_tier_rank(s.tier))
    return sources


def load_scoring_config(path: str = KEYWORDS_FILE) -> ScoringConfig:
    """Load the keyword/topic tables from keywords.json"""
    data = _read_json(path)
    keywords = data.get("keywords", {})
    scope = data.get("scope", {})
    thresholds = data.get("thresholds", {})

    topic_tiers = tuple(
        TopicTier(name=t["name"], score=int(t["score"]), keywords=tuple(t.get("keywords", [])))
        for t in data.get("topics", [])
    )

    return ScoringConfig(
        version=str(data.get("version", "unversioned")),
        topic_tiers=topic_tiers,
        hard_keywords=tuple(keywords.get("hard", [])),
        soft_keywords=tuple(keywords.get("soft", [])),
        extreme_keywords=tuple(keywords.get("extreme", [])),
        index_wide_phrases=tuple(scope.get("index_wide", [])),
        multi_sector_phrases=tuple(scope.get("multi_sector", [])),
        sector_phrases=tuple(scope.get("sector", [])),
        default_topic_score=int(data.get("default_topic_score", 10)),
        high_threshold=int(thresholds.get("high", 75)),
        med_threshold=int(thresholds.get("med", 50)),
    )


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def load_settings(sources_path: str = SOURCES_FILE, keywords_path: str = KEYWORDS_FILE) -> Settings:
    """
    Build the runtime settings from the JSON resources plus environment overrides

    Environment variables (read after load_dotenv):
        BOT_TOKEN, STORE_BACKEND, STORE_PATH, REDIS_URL,
        MAX_HIGH_PER_CYCLE, MAX_MED_PER_CYCLE, QUIET_HOURS_START, QUIET_HOURS_END,
        QUIET_HOURS_POLICY, DISPLAY_TIMEZONE, SEND_DELAY_SECONDS, CYCLE_REPORT_PATH

    Raises:
        ValueError: unknown quiet hours policy, store backend or display timezone
    """
    load_dotenv()

    configuration = _read_json(sources_path).get("configuration", {})
    limits_cfg = configuration.get("cycle_limits", {})
    quiet_cfg = configuration.get("quiet_hours", {})
    ttl_cfg = configuration.get("ttl_seconds", {})
    breaker_cfg = configuration.get("circuit_breaker", {})
    filter_cfg = configuration.get("article_filter", {})
    broadcast_cfg = configuration.get("broadcast", {})

    limits = CycleLimits(
        max_high=_env_int("MAX_HIGH_PER_CYCLE", int(limits_cfg.get("max_high_per_cycle", 5))),
        max_med=_env_int("MAX_MED_PER_CYCLE", int(limits_cfg.get("max_med_per_cycle", 3))),
    )

    quiet_hours = QuietHours(
        start=_env_int("QUIET_HOURS_START", int(quiet_cfg.get("start", 22))),
        end=_env_int("QUIET_HOURS_END", int(quiet_cfg.get("end", 6))),
        policy=os.environ.get("QUIET_HOURS_POLICY") or quiet_cfg.get("policy", "extreme_only"),
    )
    if quiet_hours.policy not in QUIET_HOURS_POLICIES:
        raise ValueError(f"Unknown quiet hours policy: {quiet_hours.policy}")

    store_backend = (os.environ.get("STORE_BACKEND") or "memory").strip().lower()
    if store_backend not in ("memory", "sqlite", "redis"):
        raise ValueError(f"Unknown store backend: {store_backend}")

    display_timezone = os.environ.get("DISPLAY_TIMEZONE") or configuration.get("display_timezone", "Asia/Jakarta")
    if tz.gettz(display_timezone) is None:
        raise ValueError(f"Unknown display timezone: {display_timezone}")

    settings = Settings(
        sources=tuple(load_source_configs(sources_path)),
        scoring=load_scoring_config(keywords_path),
        limits=limits,
        quiet_hours=quiet_hours,
        display_timezone=display_timezone,
        dispatched_ttl=int(ttl_cfg.get("news_dispatched", 604800)),
        delivered_ttl=int(ttl_cfg.get("news_delivered", 604800)),
        circuit_breaker_ttl=int(ttl_cfg.get("circuit_breaker", 3600)),
        circuit_failure_threshold=int(breaker_cfg.get("failure_threshold", 3)),
        circuit_skip_seconds=int(breaker_cfg.get("skip_seconds", 3600)),
        max_age_hours=float(filter_cfg.get("max_age_hours", 24)),
        skip_future_date=bool(filter_cfg.get("skip_future_date", True)),
        send_delay=_env_float("SEND_DELAY_SECONDS", float(broadcast_cfg.get("send_delay_seconds", 0.3))),
        retry_count=int(broadcast_cfg.get("retry_count", 1)),
        retry_delay=float(broadcast_cfg.get("retry_delay_seconds", 1.0)),
        user_agent=configuration.get("user_agent", "Market News Bot/1.0"),
        bot_token=os.environ.get("BOT_TOKEN") or None,
        store_backend=store_backend,
        store_path=os.environ.get("STORE_PATH") or "data/marketwire.sqlite",
        redis_url=os.environ.get("REDIS_URL") or None,
        cycle_report_path=os.environ.get("CYCLE_REPORT_PATH") or None,
    )

    logger.info(
        f"Loaded {len(settings.sources)} sources, keyword tables v{settings.scoring.version}, "
        f"store={settings.store_backend}, quiet_hours={quiet_hours.start}-{quiet_hours.end} ({quiet_hours.policy})"
    )
    return settings
