"""Time-bounded caches for observations and location metadata.

- TTLCache: generic async-safe key/value store with per-entry TTL, a stale
  grace window, lazy expiry on read, a periodic sweep, and a size bound.
- WeatherCache: coordinate-keyed observations. Alerts on nearby points
  (same rounded coordinates) share one upstream call. Upstream calls are
  rate limited and time bounded; on refusal, timeout, or failure the last
  good observation is served while within the grace window, else MISS.
- LocationCache: location-id-keyed field metadata, batch loaded.

MISS is ``None``. Callers treat it as "skip this alert this cycle".
"""

import asyncio
import logging
from collections.abc import Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

from src.alerts.repository import LocationRepository
from src.alerts.schemas import LocationMetadata, Observation
from src.clock import Clock, SystemClock
from src.observability.metrics import MetricsCollector, get_metrics
from src.weather.metric_keys import translate_payload
from src.weather.provider import ObservationError, ObservationProvider
from src.weather.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """Async-safe key/value cache with per-key TTL and stale grace.

    An entry is *fresh* until its TTL elapses and *stale* for a further
    ``stale_grace_seconds``; after that it is dropped on the next read or
    sweep.
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        stale_grace_seconds: float = 0.0,
        max_entries: int = 1000,
        clock: Clock | None = None,
    ) -> None:
        self.name = name
        self._ttl = ttl_seconds
        self._grace = stale_grace_seconds
        self._max_entries = max_entries
        self._clock = clock or SystemClock()
        self._store: dict[K, _Entry[V]] = {}
        self._lock = asyncio.Lock()
        self._key_locks: dict[K, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._store)

    def _is_dead(self, entry: _Entry[V], now: float) -> bool:
        return now >= entry.expires_at + self._grace

    async def get(self, key: K) -> V | None:
        """Get a fresh value, or None."""
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            now = self._clock.monotonic()
            if now < entry.expires_at:
                return entry.value
            if self._is_dead(entry, now):
                del self._store[key]
            return None

    async def get_stale(self, key: K) -> V | None:
        """Get a value that is fresh or still within the grace window."""
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._is_dead(entry, self._clock.monotonic()):
                del self._store[key]
                return None
            return entry.value

    async def put(self, key: K, value: V, ttl: float | None = None) -> None:
        """Store ``value`` for ``ttl`` seconds (default: the cache TTL)."""
        ttl = self._ttl if ttl is None else ttl
        async with self._lock:
            now = self._clock.monotonic()
            self._store[key] = _Entry(value=value, expires_at=now + ttl)
            if len(self._store) > self._max_entries:
                self._evict(now)

    def _evict(self, now: float) -> None:
        for key in [k for k, e in self._store.items() if self._is_dead(e, now)]:
            del self._store[key]
        while len(self._store) > self._max_entries:
            oldest = min(self._store, key=lambda k: self._store[k].expires_at)
            del self._store[oldest]

    async def invalidate(self, key: K) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._store.clear()
            self._key_locks.clear()

    async def sweep(self) -> int:
        """Remove entries past their grace window. Returns the number removed."""
        async with self._lock:
            now = self._clock.monotonic()
            dead = [k for k, e in self._store.items() if self._is_dead(e, now)]
            for key in dead:
                del self._store[key]
            for key in [k for k, lock in self._key_locks.items()
                        if not lock.locked() and k not in self._store]:
                del self._key_locks[key]
        if dead:
            logger.debug("Cache %s sweep removed %d entries, %d remain", self.name, len(dead), len(self._store))
        return len(dead)

    def key_lock(self, key: K) -> asyncio.Lock:
        """Lock serialising loads of one key across concurrent tasks."""
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        return lock


def coordinate_key(latitude: float, longitude: float, precision: int = 3) -> str:
    """Round coordinates so nearby points share a cache entry.

    Three decimal places is roughly 100 m.
    """
    return f"{round(latitude, precision):.{precision}f},{round(longitude, precision):.{precision}f}"


class WeatherCache:
    """Rate-limited, time-bounded observation lookups keyed by rounded coordinates."""

    def __init__(
        self,
        provider: ObservationProvider,
        rate_limiter: RateLimiter,
        ttl_seconds: float = 600.0,
        stale_grace_seconds: float = 3600.0,
        fetch_timeout: float = 5.0,
        precision: int = 3,
        max_entries: int = 1000,
        clock: Clock | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._provider = provider
        self._rate_limiter = rate_limiter
        self._fetch_timeout = fetch_timeout
        self._precision = precision
        self._clock = clock or SystemClock()
        self._metrics = metrics or get_metrics()
        self._cache: TTLCache[str, Observation] = TTLCache(
            name="weather",
            ttl_seconds=ttl_seconds,
            stale_grace_seconds=stale_grace_seconds,
            max_entries=max_entries,
            clock=self._clock,
        )

    def __len__(self) -> int:
        return len(self._cache)

    def key_for(self, latitude: float, longitude: float) -> str:
        return coordinate_key(latitude, longitude, self._precision)

    async def get_observation(
        self,
        latitude: float,
        longitude: float,
    ) -> Observation | None:
        """Resolve current conditions for a coordinate.

        Args:
            latitude: Latitude in degrees.
            longitude: Longitude in degrees.

        Returns:
            Observation, or None (MISS) if neither a fresh fetch nor a
            stale entry is available.
        """
        key = self.key_for(latitude, longitude)

        cached = await self._cache.get(key)
        if cached is not None:
            self._metrics.record_cache_request("weather", "hit")
            return cached

        async with self._cache.key_lock(key):
            # Another task may have populated the key while we waited.
            cached = await self._cache.get(key)
            if cached is not None:
                self._metrics.record_cache_request("weather", "hit")
                return cached

            self._metrics.record_cache_request("weather", "miss")

            if not self._rate_limiter.try_acquire():
                self._metrics.record_observation_fetch("rate_limited")
                logger.info("Observation quota exhausted, using cached data for %s", key)
                return await self._stale(key)

            try:
                payload = await asyncio.wait_for(
                    self._provider.fetch(latitude, longitude),
                    timeout=self._fetch_timeout,
                )
            except asyncio.TimeoutError:
                self._metrics.record_observation_fetch("timeout")
                logger.warning(
                    "Observation fetch for %s timed out after %.1fs", key, self._fetch_timeout,
                )
                return await self._stale(key)
            except ObservationError as e:
                self._metrics.record_observation_fetch("error")
                logger.warning("Observation fetch for %s failed: %s", key, e)
                return await self._stale(key)

            self._metrics.record_observation_fetch("success")
            observation = Observation(
                location_key=key,
                values=translate_payload(payload),
                observed_at=self._clock.now(),
            )
            await self._cache.put(key, observation)
            return observation

    async def _stale(self, key: str) -> Observation | None:
        stale = await self._cache.get_stale(key)
        if stale is not None:
            self._metrics.record_cache_request("weather", "stale")
            logger.debug("Serving stale observation for %s", key)
        return stale

    async def sweep(self) -> int:
        removed = await self._cache.sweep()
        self._metrics.set_cache_entries("weather", len(self._cache))
        return removed

    async def close(self) -> None:
        await self._provider.close()


class LocationCache:
    """Location-id-keyed field metadata with batch loading."""

    def __init__(
        self,
        repository: LocationRepository,
        ttl_seconds: float = 300.0,
        stale_grace_seconds: float = 3600.0,
        max_entries: int = 1000,
        clock: Clock | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._repo = repository
        self._metrics = metrics or get_metrics()
        self._cache: TTLCache[int, LocationMetadata] = TTLCache(
            name="location",
            ttl_seconds=ttl_seconds,
            stale_grace_seconds=stale_grace_seconds,
            max_entries=max_entries,
            clock=clock,
        )

    def __len__(self) -> int:
        return len(self._cache)

    async def get_many(self, location_ids: list[int]) -> dict[int, LocationMetadata]:
        """Resolve several locations, loading misses in one query.

        If the location store fails, stale entries are served for the
        misses; ids with nothing cached are omitted.

        Args:
            location_ids: Field identifiers.

        Returns:
            Mapping of id to metadata for every id that could be resolved.
        """
        resolved: dict[int, LocationMetadata] = {}
        missing: list[int] = []
        for location_id in dict.fromkeys(location_ids):
            cached = await self._cache.get(location_id)
            if cached is not None:
                resolved[location_id] = cached
            else:
                missing.append(location_id)

        if location_ids:
            self._metrics.record_cache_request("location", "hit", len(resolved))
        if not missing:
            return resolved
        self._metrics.record_cache_request("location", "miss", len(missing))

        try:
            loaded = await self._repo.get_by_ids(missing)
        except Exception as e:
            logger.warning("Location lookup failed for %d ids: %s", len(missing), e)
            for location_id in missing:
                stale = await self._cache.get_stale(location_id)
                if stale is not None:
                    self._metrics.record_cache_request("location", "stale")
                    resolved[location_id] = stale
            return resolved

        for location_id, location in loaded.items():
            await self._cache.put(location_id, location)
            resolved[location_id] = location
        return resolved

    async def get(self, location_id: int) -> LocationMetadata | None:
        return (await self.get_many([location_id])).get(location_id)

    async def sweep(self) -> int:
        removed = await self._cache.sweep()
        self._metrics.set_cache_entries("location", len(self._cache))
        return removed
