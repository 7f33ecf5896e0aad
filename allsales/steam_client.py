"""
Steam API client.

Owns every outbound call: the app list (catalog) and the per-app store details.
Rate limiting, retries, timeouts and the result cache are controlled here so the
reconciliation code only deals with data.
"""
import enum
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from allsales import metrics, redis_cache
from allsales.constants import (
    BLACKLIST_DEFAULT_REASON,
    BLACKLIST_MALFORMED_REASON,
    CATALOG_CACHE_KEY,
    DETAIL_CACHE_PREFIX,
    RATE_LIMIT_COOLDOWN_THRESHOLD,
    RATE_LIMIT_DECAY_SECONDS,
    STEAM_APP_DETAILS_URL,
    STEAM_APP_LIST_URL,
    STEAM_STORE_COUNTRY,
    USER_AGENT,
)
from allsales.exceptions import RateLimitedError, UpstreamError

logger = logging.getLogger("main")


@dataclass(frozen=True)
class CatalogItem:
    """One entry of the Steam app list"""
    external_id: int
    display_name: str


class DetailStatus(enum.Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"  # store answered success:false or garbage, never retried
    FAILED = "failed"  # transport or HTTP failure, may work next time


@dataclass(frozen=True)
class DetailResult:
    status: DetailStatus
    payload: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def found(cls, payload):
        return cls(DetailStatus.FOUND, payload=payload)

    @classmethod
    def not_found(cls, reason=BLACKLIST_DEFAULT_REASON):
        return cls(DetailStatus.NOT_FOUND, reason=reason)

    @classmethod
    def failed(cls, error):
        return cls(DetailStatus.FAILED, reason=str(error), error=error)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 2.0  # seconds, doubled on every retry
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)


def is_transient_error(exc):
    """5xx, 429, timeouts and connection errors are worth another try"""
    if isinstance(exc, UpstreamError):
        return exc.is_transient
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


def _log_retry(retry_state):
    exc = retry_state.outcome.exception()
    logger.warning(
        f"Retrying Steam request (attempt {retry_state.attempt_number}) "
        f"after {retry_state.next_action.sleep:.1f}s: {exc}"
    )


def call_with_retry(operation, policy):
    """
    Run `operation` until it succeeds, fails permanently or runs out of retries.
    The last exception is re-raised unchanged.
    """
    retrying = Retrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=wait_exponential(multiplier=policy.base_delay, exp_base=2),
        retry=retry_if_exception(is_transient_error),
        before_sleep=_log_retry,
        sleep=policy.sleep,
        reraise=True,
    )
    return retrying(operation)


class RequestThrottle:
    """
    Spacing between appdetails requests, shared by every worker thread.

    The spacing doubles with each consecutive 429 (capped at max_delay), decays one
    step per success once `decay_after` seconds passed since the last 429, and a
    streak of `cooldown_threshold` 429s pauses everything for `streak` minutes.
    """

    def __init__(
        self,
        base_delay,
        max_delay,
        decay_after=RATE_LIMIT_DECAY_SECONDS,
        cooldown_threshold=RATE_LIMIT_COOLDOWN_THRESHOLD,
        clock=time.monotonic,
        sleep=time.sleep,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.decay_after = decay_after
        self.cooldown_threshold = cooldown_threshold
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.RLock()
        self._last_request_at = None
        self._last_rate_limited_at = None
        self._cooldown_pending = False
        self.rate_limit_streak = 0

    @property
    def current_delay(self):
        return min(self.base_delay * (2 ** self.rate_limit_streak), self.max_delay)

    @contextmanager
    def slot(self):
        """Hold the global request slot for one request, waiting for our turn first"""
        with self._lock:
            self._wait_turn()
            try:
                yield
            finally:
                self._last_request_at = self._clock()

    def _wait_turn(self):
        if self._cooldown_pending:
            cooldown = self.rate_limit_streak * 60
            logger.warning(
                f"{self.rate_limit_streak} consecutive rate limits from Steam, cooling down for {cooldown}s"
            )
            self._sleep(cooldown)
            self._cooldown_pending = False

        if self._last_request_at is not None:
            remaining = self.current_delay - (self._clock() - self._last_request_at)
            if remaining > 0:
                self._sleep(remaining)

    def record_success(self):
        with self._lock:
            if self.rate_limit_streak and self._clock() - self._last_rate_limited_at >= self.decay_after:
                self.rate_limit_streak -= 1
                metrics.steam_request_delay_seconds.set(self.current_delay)
                logger.info(f"Steam rate limit backing off, request delay now {self.current_delay:.1f}s")

    def record_rate_limited(self):
        with self._lock:
            self.rate_limit_streak += 1
            self._last_rate_limited_at = self._clock()
            if self.rate_limit_streak >= self.cooldown_threshold:
                self._cooldown_pending = True
            metrics.steam_rate_limited_total.inc()
            metrics.steam_request_delay_seconds.set(self.current_delay)
            logger.warning(
                f"Rate limited by Steam ({self.rate_limit_streak} in a row), "
                f"request delay now {self.current_delay:.1f}s"
            )

    def state(self):
        with self._lock:
            return {
                "request_delay_seconds": self.current_delay,
                "rate_limit_streak": self.rate_limit_streak,
                "cooldown_pending": self._cooldown_pending,
            }


def filter_catalog(apps) -> List[CatalogItem]:
    """Drop unnamed entries and anything with "test" in its name"""
    items = []
    for app in apps:
        if not isinstance(app, dict):
            continue
        name = app.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        if "test" in name.lower():
            continue
        try:
            items.append(CatalogItem(external_id=int(app["appid"]), display_name=name))
        except (KeyError, TypeError, ValueError):
            continue
    return items


class SteamClient:
    """Client for the Steam app list and store appdetails endpoints"""

    def __init__(
        self,
        api_key: str = "",
        *,
        request_delay_ms: int = 1000,
        max_delay_ms: int = 30000,
        max_retries: int = 3,
        retry_delay_ms: int = 2000,
        timeout: float = 10,
        catalog_ttl: int = 3600,
        detail_ttl: int = 1800,
        session: requests.Session = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.catalog_ttl = catalog_ttl
        self.detail_ttl = detail_ttl
        self.retry_policy = RetryPolicy(max_retries=max_retries, base_delay=retry_delay_ms / 1000, sleep=sleep)
        self.throttle = RequestThrottle(request_delay_ms / 1000, max_delay_ms / 1000, clock=clock, sleep=sleep)

        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    @classmethod
    def from_settings(cls, settings, **kwargs):
        steam = settings["steam"]
        cache = settings["cache"]
        return cls(
            steam["api_key"],
            request_delay_ms=steam["request_delay_ms"],
            max_delay_ms=steam["max_delay_ms"],
            max_retries=steam["max_retries"],
            retry_delay_ms=steam["retry_delay_ms"],
            timeout=steam["request_timeout"],
            catalog_ttl=cache["catalog_ttl"],
            detail_ttl=cache["detail_ttl"],
            **kwargs,
        )

    def close(self):
        self.session.close()

    def _get_json(self, url, params, endpoint):
        """One GET. Raises UpstreamError for HTTP errors and undecodable bodies."""
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException:
            metrics.steam_requests_total.labels(endpoint=endpoint, outcome="network_error").inc()
            raise

        if response.status_code == 429:
            metrics.steam_requests_total.labels(endpoint=endpoint, outcome="rate_limited").inc()
            raise RateLimitedError()
        if response.status_code >= 400:
            metrics.steam_requests_total.labels(endpoint=endpoint, outcome=f"http_{response.status_code}").inc()
            raise UpstreamError(
                f"Steam {endpoint} returned HTTP {response.status_code}", http_status=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            metrics.steam_requests_total.labels(endpoint=endpoint, outcome="invalid_json").inc()
            raise UpstreamError(f"Invalid JSON from Steam {endpoint}: {e}", http_status=response.status_code)

        metrics.steam_requests_total.labels(endpoint=endpoint, outcome="ok").inc()
        return payload

    def fetch_catalog(self) -> List[CatalogItem]:
        """
        Full Steam app list, filtered and cached for `catalog_ttl` seconds.

        Raises:
            UpstreamError: the list could not be fetched or has an unexpected shape
        """
        cached = redis_cache.cache_get_json(CATALOG_CACHE_KEY)
        if cached is not None:
            metrics.steam_cache_hits_total.labels(endpoint="applist").inc()
            logger.info(f"Retrieved {len(cached)} catalog entries from cache")
            return [CatalogItem(external_id=item[0], display_name=item[1]) for item in cached]

        logger.info("Fetching app list from Steam API")
        try:
            payload = call_with_retry(
                lambda: self._get_json(STEAM_APP_LIST_URL, {"key": self.api_key}, "applist"),
                self.retry_policy,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Failed to fetch app list: {e}") from e
        except UpstreamError as e:
            raise UpstreamError(f"Failed to fetch app list: {e.message}", http_status=e.http_status) from e

        apps = (payload.get("applist") or {}).get("apps") if isinstance(payload, dict) else None
        if not isinstance(apps, list):
            raise UpstreamError("Invalid response format from Steam app list", code="UPSTREAM_MALFORMED")

        items = filter_catalog(apps)
        redis_cache.cache_set(
            CATALOG_CACHE_KEY, [[item.external_id, item.display_name] for item in items], self.catalog_ttl
        )
        logger.info(f"Retrieved {len(items)} apps from Steam API ({len(apps) - len(items)} filtered out)")
        return items

    def fetch_detail(self, external_id: int, hint_name: str = None) -> DetailResult:
        """
        Store details for one app. Never raises: the outcome is carried by the result.
        """
        cache_key = redis_cache.make_cache_key(DETAIL_CACHE_PREFIX, external_id)
        cached = redis_cache.cache_get_json(cache_key)
        if cached is not None:
            metrics.steam_cache_hits_total.labels(endpoint="appdetails").inc()
            logger.debug(f"Retrieved details for app {external_id} from cache")
            return DetailResult.found(cached)

        params = {"appids": str(external_id), "cc": STEAM_STORE_COUNTRY}

        def attempt():
            with self.throttle.slot():
                try:
                    payload = self._get_json(STEAM_APP_DETAILS_URL, params, "appdetails")
                except RateLimitedError:
                    self.throttle.record_rate_limited()
                    raise
            self.throttle.record_success()
            return payload

        logger.debug(f"Fetching details for app {hint_name or external_id} ({external_id})")
        try:
            payload = call_with_retry(attempt, self.retry_policy)
        except (UpstreamError, requests.RequestException) as e:
            logger.error(f"Error getting details for app {external_id}: {e}")
            return DetailResult.failed(e)

        entry = payload.get(str(external_id)) if isinstance(payload, dict) else None
        if not isinstance(entry, dict):
            logger.warning(f"Malformed appdetails payload for app {hint_name or external_id} ({external_id})")
            return DetailResult.not_found(BLACKLIST_MALFORMED_REASON)

        if not entry.get("success"):
            logger.warning(f"No data available for app {hint_name or external_id} ({external_id})")
            return DetailResult.not_found(BLACKLIST_DEFAULT_REASON)

        data = entry.get("data")
        if not isinstance(data, dict):
            logger.warning(f"Invalid data structure for app {hint_name or external_id} ({external_id})")
            return DetailResult.not_found(BLACKLIST_MALFORMED_REASON)

        redis_cache.cache_set(cache_key, data, self.detail_ttl)
        return DetailResult.found(data)

    def clear_cache(self):
        count = redis_cache.invalidate_steam_cache()
        logger.info("Steam client cache cleared")
        return count

    def throttle_state(self):
        return self.throttle.state()
