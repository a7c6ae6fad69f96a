"""Public holiday lookup backed by Calendarific and a database cache.

Responses are stored verbatim in ``holiday_cache`` keyed by
(country code, year). A cached entry is served without contacting
Calendarific; entries never expire unless a TTL is configured.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Optional

import httpx
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from omnicalendar.core.config import get_settings
from omnicalendar.core.exceptions import ConfigurationError, UpstreamError
from omnicalendar.models.base import utcnow
from omnicalendar.models.holiday import HolidayCache
from omnicalendar.models.schemas import HolidayResponse
from omnicalendar.observability import MetricsBackend, get_metrics_backend

logger = logging.getLogger(__name__)


class _KeyLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.holders = 0


# Only keys with a request holding or awaiting the lock are present
_fetch_locks: dict[tuple[str, int], _KeyLock] = {}


@asynccontextmanager
async def _fetch_lock(key: tuple[str, int]) -> AsyncIterator[None]:
    """Serialise cache misses for one (country, year).

    The entry is dropped when its last holder leaves, so the map holds
    only keys being fetched right now.
    """
    entry = _fetch_locks.get(key)
    if entry is None:
        entry = _fetch_locks[key] = _KeyLock()
    entry.holders += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.holders -= 1
        if entry.holders == 0:
            del _fetch_locks[key]


class CalendarificClient:
    """Thin client for the Calendarific holidays endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsBackend] = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Calendarific API key; required only when fetching.
            base_url: API root, e.g. ``https://calendarific.com/api/v2``.
            http_client: Pre-built client (tests inject a mock transport).
            metrics: Metrics backend; the process-wide one by default.
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = http_client
        self.metrics = metrics or get_metrics_backend()

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient()
        return self._client

    async def fetch_holidays(self, country_code: str, year: int) -> str:
        """Fetch the raw holidays payload for a country and year.

        Raises:
            ConfigurationError: No API key configured; nothing is sent.
            UpstreamError: Transport failure or non-2xx response.
        """
        if not self.api_key:
            raise ConfigurationError("Calendarific API key is not configured")

        client = self._get_client()
        start = time.perf_counter()
        status_code = 0
        try:
            response = await client.get(
                f"{self.base_url}/holidays",
                params={"api_key": self.api_key, "country": country_code, "year": year},
            )
            status_code = response.status_code
        except httpx.HTTPError as e:
            logger.error(f"Error connecting to Calendarific for {country_code}/{year}: {e}")
            raise UpstreamError("Failed to connect to holiday API") from e
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self.metrics.observe_calendarific_call(status_code, duration_ms)

        if not response.is_success:
            logger.error(
                f"Calendarific error for {country_code}/{year}: {response.status_code}"
            )
            raise UpstreamError(
                f"Holiday API returned {response.status_code}",
                upstream_status=response.status_code,
            )

        logger.info(f"Fetched holidays from Calendarific for {country_code}/{year}")
        return response.text

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def parse_holidays(data_json: str) -> list[HolidayResponse]:
    """Shape a Calendarific payload into holiday records.

    Missing fields become empty strings. A payload without a holidays list
    (Calendarific sends ``"response": []`` for empty results) yields [].
    """
    document = json.loads(data_json)
    response = document.get("response") if isinstance(document, dict) else None
    holidays: Any = response.get("holidays") if isinstance(response, dict) else None
    if not isinstance(holidays, list):
        return []

    result = []
    for holiday in holidays:
        date_info = holiday.get("date") or {}
        result.append(
            HolidayResponse(
                name=holiday.get("name") or "",
                description=holiday.get("description") or "",
                date_iso=(date_info.get("iso") if isinstance(date_info, dict) else None) or "",
                primary_type=holiday.get("primary_type") or "",
            )
        )
    return result


class HolidayService:
    """Serves holidays from the cache, fetching on a miss."""

    def __init__(
        self,
        db: AsyncSession,
        client: CalendarificClient,
        ttl_days: Optional[int] = None,
    ):
        """Initialize the holiday service.

        Args:
            db: Database session.
            client: Calendarific client used on cache misses.
            ttl_days: Optional cache lifetime; None keeps entries forever.
        """
        self.db = db
        self.client = client
        self.metrics = client.metrics
        self.ttl = timedelta(days=ttl_days) if ttl_days else None

    async def get_holidays(self, country_code: str, year: int) -> list[HolidayResponse]:
        """Return holidays for (country_code, year).

        Raises:
            ConfigurationError: Cache miss and no API key configured.
            UpstreamError: Cache miss and Calendarific failed.
        """
        country_code = country_code.strip().upper()

        cached = await self._get_cached(country_code, year)
        if cached is not None and not self._is_stale(cached):
            logger.debug(f"Holiday cache hit for {country_code}/{year}")
            self.metrics.observe_holiday_lookup("hit")
            return parse_holidays(cached.data_json)

        async with _fetch_lock((country_code, year)):
            # A concurrent request may have filled the cache while we waited
            cached = await self._get_cached(country_code, year)
            if cached is not None and not self._is_stale(cached):
                self.metrics.observe_holiday_lookup("hit")
                return parse_holidays(cached.data_json)

            self.metrics.observe_holiday_lookup("miss" if cached is None else "stale")
            data_json = await self.client.fetch_holidays(country_code, year)
            try:
                holidays = parse_holidays(data_json)
            except (ValueError, AttributeError) as e:
                raise UpstreamError("Holiday API returned an unreadable payload") from e

            await self._store(country_code, year, data_json, existing=cached)

        return holidays

    async def invalidate(self, country_code: str, year: int) -> bool:
        """Drop the cached entry for (country_code, year).

        Returns:
            True if an entry was removed.
        """
        country_code = country_code.strip().upper()
        result = await self.db.execute(
            delete(HolidayCache).where(
                HolidayCache.country_code == country_code,
                HolidayCache.year == year,
            )
        )
        await self.db.commit()
        removed = result.rowcount > 0
        if removed:
            logger.info(f"Invalidated holiday cache for {country_code}/{year}")
        return removed

    async def _get_cached(self, country_code: str, year: int) -> Optional[HolidayCache]:
        result = await self.db.execute(
            select(HolidayCache).where(
                HolidayCache.country_code == country_code,
                HolidayCache.year == year,
            )
        )
        return result.scalar_one_or_none()

    def _is_stale(self, entry: HolidayCache) -> bool:
        if self.ttl is None:
            return False
        fetched_at = entry.fetched_at
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - fetched_at > self.ttl

    async def _store(
        self,
        country_code: str,
        year: int,
        data_json: str,
        existing: Optional[HolidayCache] = None,
    ) -> None:
        if existing is not None:
            existing.data_json = data_json
            existing.fetched_at = utcnow()
        else:
            self.db.add(
                HolidayCache(
                    country_code=country_code,
                    year=year,
                    data_json=data_json,
                    fetched_at=utcnow(),
                )
            )
        try:
            await self.db.commit()
        except IntegrityError:
            # Another process cached the same key first; its row stands
            await self.db.rollback()
            self.metrics.observe_holiday_write("conflict")
            logger.info(f"Holiday cache for {country_code}/{year} already written elsewhere")
            return
        self.metrics.observe_holiday_write("stored")
        logger.info(f"Cached holidays for {country_code}/{year}")


_calendarific_client: Optional[CalendarificClient] = None


def get_calendarific_client() -> CalendarificClient:
    """Return the process-wide Calendarific client."""
    global _calendarific_client
    if _calendarific_client is None:
        settings = get_settings()
        _calendarific_client = CalendarificClient(
            api_key=settings.calendarific_api_key,
            base_url=settings.calendarific_base_url,
        )
    return _calendarific_client


async def close_calendarific_client() -> None:
    global _calendarific_client
    if _calendarific_client is not None:
        await _calendarific_client.aclose()
        _calendarific_client = None
