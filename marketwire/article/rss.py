import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

import dateparser
import feedparser
import html2text
import requests
from loguru import logger

from marketwire.config import SourceConfig, TIER_ORDER, get_tier_rank
from marketwire.timeutil import to_local, utc_now

DEFAULT_TIME_ZONE = "Asia/Jakarta"
FUTURE_DATE_TOLERANCE = timedelta(minutes=5)
TICKER_PATTERN = re.compile(r"\b[A-Z]{4}\b")
CDATA_PATTERN = re.compile(r"<!\[CDATA\[|\]\]>")


class Article:
    title: str = ""
    link: str = ""
    pub_date: str = ""  # raw feed value
    description: str = ""
    guid: str = ""
    image_url: str = ""
    source: str = ""
    source_tier: str = "NOISE"
    source_weight: float = 1.0
    source_domain: str = ""
    fetch_index: int = 0
    # normalization
    canonical_title: str = ""
    pub_date_local: Optional[datetime] = None
    pub_date_hour: str = ""
    tickers: tuple = ()
    # scoring
    topic_score: int = 0
    topic_tier: Optional[str] = None
    keyword_multiplier: float = 1.0
    scope_multiplier: float = 1.0
    impact_score: int = 0
    impact_category: str = "LOW"
    extreme_hit: bool = False
    # dedup / selection
    fingerprint: Optional[str] = None
    send_order: Optional[int] = None

    def __init__(self, **kwargs):
        for key, value in kwargs.items():
            setattr(self, key, value)

    def __repr__(self):
        return f"Article({self.source_tier}/{self.source}: {(self.title or '')[:60]!r}, {self.impact_category}={self.impact_score})"


@dataclass
class FetchResult:
    source: str
    success: bool
    articles: List[Article] = field(default_factory=list)
    error: Optional[str] = None
    skipped: bool = False


def transform_html2txt(content: str) -> str:
    """Strip HTML from a feed snippet and collapse it onto one line"""
    if not content:
        return ""
    html_transform = html2text.HTML2Text(bodywidth=0)
    html_transform.ignore_links = True
    html_transform.ignore_images = True
    html_transform.ignore_tables = True
    html_transform.ignore_emphasis = True
    text = html_transform.handle(CDATA_PATTERN.sub("", content))
    return " ".join(text.split())


def _extract_link_from_item(rss_item) -> str:
    """
    Feed entries occasionally omit the top-level ``link`` field.
    Try alternative locations, falling back to "" (dedup then uses the title fingerprint).
    """
    link = rss_item.get("link")
    if link:
        return link.strip()

    links = rss_item.get("links")
    if isinstance(links, (list, tuple)):
        for entry in links:
            if isinstance(entry, dict) and entry.get("href"):
                return entry["href"].strip()

    guid = rss_item.get("id") or rss_item.get("guid") or ""
    return guid.strip() if guid.startswith("http") else ""


def _extract_description(rss_item) -> str:
    content = rss_item.get("content")
    if isinstance(content, list) and content and content[0].get("value"):
        return transform_html2txt(content[0]["value"])
    for key in ("summary", "description", "media_description"):
        if rss_item.get(key):
            return transform_html2txt(rss_item[key])
    return ""


def _extract_image(rss_item) -> str:
    for media in rss_item.get("media_content") or []:
        if isinstance(media, dict) and media.get("url"):
            return media["url"]
    return ""


def gen_article_from(rss_item, source: SourceConfig) -> Optional[Article]:
    title = CDATA_PATTERN.sub("", rss_item.get("title") or "").strip()
    if not title:
        logger.debug(f"Skipping entry without title from {source.name}")
        return None

    link = _extract_link_from_item(rss_item)
    if not link:
        logger.warning(f"Entry without link from {source.name}, falling back to title fingerprint: {title}")

    return Article(
        title=title,
        link=link,
        pub_date=rss_item.get("published") or rss_item.get("updated") or "",
        description=_extract_description(rss_item),
        guid=rss_item.get("id") or link,
        image_url=_extract_image(rss_item),
        source=source.name,
        source_tier=source.tier,
        source_weight=source.weight,
        source_domain=source.domain,
    )


def fetch_rss(source: SourceConfig, user_agent: str = "Market News Bot/1.0", session=None) -> FetchResult:
    """
    Fetch and parse one feed; every failure is returned, never raised

    Args:
        source: Source configuration (url, tier, weight, timeout)
        user_agent: User-Agent header
        session: Optional requests.Session

    Returns:
        FetchResult with the parsed articles or the error message
    """
    http = session or requests
    try:
        response = http.get(source.url, headers={"User-Agent": user_agent}, timeout=source.timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"RSS fetch error for {source.name}: {e}")
        return FetchResult(source=source.name, success=False, error=str(e))

    try:
        feed = feedparser.parse(response.content)
        if feed.bozo and not feed.entries:
            error = str(getattr(feed, "bozo_exception", "unparsable feed"))
            logger.error(f"RSS parse error for {source.name}: {error}")
            return FetchResult(source=source.name, success=False, error=error)

        articles = []
        for entry in feed.entries:
            article = gen_article_from(entry, source)
            if article is not None:
                articles.append(article)
    except Exception as e:
        logger.exception(f"RSS parse error for {source.name}: {e}")
        return FetchResult(source=source.name, success=False, error=str(e) or type(e).__name__)

    logger.info(f"{source.name} [{source.tier}] fetched {len(articles)} articles")
    return FetchResult(source=source.name, success=True, articles=articles)


def _isolated(fetch, source: SourceConfig, user_agent: str) -> FetchResult:
    """Run one source fetch; an unexpected exception becomes a failed result"""
    try:
        return fetch(source, user_agent)
    except Exception as e:
        logger.exception(f"Unexpected error fetching {source.name}: {e}")
        return FetchResult(source=source.name, success=False, error=str(e) or type(e).__name__)


def fetch_all_sources(
    sources: List[SourceConfig],
    ledger=None,
    user_agent: str = "Market News Bot/1.0",
    failure_threshold: int = 3,
    skip_seconds: int = 3600,
    fetch=fetch_rss,
) -> List[FetchResult]:
    """
    Fetch every source tier by tier (CORE first), sources within a tier concurrently

    Circuit-breaker state is read before submitting and written after the tier
    completes, so only the HTTP calls run in worker threads.
    """
    results = []
    for tier in sorted(TIER_ORDER, key=get_tier_rank):
        tier_sources = [s for s in sources if s.tier == tier]
        if not tier_sources:
            continue

        runnable = []
        for source in tier_sources:
            if ledger is not None and ledger.should_skip_source(source.url):
                logger.info(f"Skipping {source.name} due to circuit breaker")
                results.append(FetchResult(source=source.name, success=False,
                                           error="Circuit breaker active", skipped=True))
            else:
                runnable.append(source)

        if not runnable:
            continue

        with ThreadPoolExecutor(max_workers=len(runnable)) as executor:
            tier_results = list(executor.map(lambda s: _isolated(fetch, s, user_agent), runnable))

        for source, result in zip(runnable, tier_results):
            if ledger is not None:
                if result.success:
                    ledger.reset_source_failures(source.url)
                else:
                    ledger.record_source_failure(source.url, failure_threshold, skip_seconds)
            results.append(result)

    return results


def unify_timezone(date_string: str, time_zone: str = DEFAULT_TIME_ZONE) -> Optional[datetime]:
    if not date_string:
        return None
    return dateparser.parse(date_string,
                            settings={"TIMEZONE": time_zone,
                                      "RETURN_AS_TIMEZONE_AWARE": True})


def canonicalize_title(title: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace"""
    if not title:
        return ""
    stripped = re.sub(r"[^\w\s]", "", title.lower())
    return " ".join(stripped.split())


def extract_tickers(text: str) -> tuple:
    seen = []
    for token in TICKER_PATTERN.findall(text or ""):
        if token not in seen:
            seen.append(token)
    return tuple(seen)


def normalize_article(article: Article, time_zone: str = DEFAULT_TIME_ZONE, now: datetime = None) -> Article:
    """
    Derive canonical title, local publish time, hour bucket and tickers

    Unparsable or missing dates fall back to `now`.
    """
    now = now or utc_now()
    published = unify_timezone(article.pub_date, time_zone)
    if published is None:
        logger.debug(f"Unparsable date '{article.pub_date}' for {(article.title or '')[:60]}, using now")
        published = now

    local = to_local(published, time_zone)
    article.pub_date_local = local
    article.pub_date_hour = local.strftime("%Y-%m-%dT%H")
    article.canonical_title = canonicalize_title(article.title)
    article.tickers = extract_tickers(article.title)
    return article


def is_article_recent(article_date: datetime, now: datetime, hours_limit: float = 24.0,
                      skip_future: bool = True) -> bool:
    """
    Check if article is within the recent hours limit

    Args:
        article_date: Article publication datetime (timezone-aware)
        now: Current time
        hours_limit: Maximum age in hours
        skip_future: Reject dates more than a few minutes ahead of now

    Returns:
        True if the article should stay in the cycle
    """
    if not article_date:
        return True

    hours_old = (now - article_date).total_seconds() / 3600.0
    if skip_future and article_date - now > FUTURE_DATE_TOLERANCE:
        logger.debug(f"Article filtered: dated {-hours_old:.1f} hours in the future")
        return False

    is_recent = hours_old <= hours_limit
    if not is_recent:
        logger.debug(f"Article filtered: {hours_old:.1f} hours old (limit: {hours_limit}h)")
    return is_recent
