"""Pooled connections, health checks and failure isolation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

from motor.motor_asyncio import AsyncIOMotorClient

from .breaker import CircuitBreaker, CircuitBreakerState
from .config import ManagerSettings
from .models import ConnectionHealth, ConnectionProfile, Topology

LOG = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]


class ConnectionManagerError(RuntimeError):
    """Base error raised by the connection manager."""


class ConnectionFailedError(ConnectionManagerError):
    """Raised when a connection attempt does not reach a live server."""


class CircuitOpenError(ConnectionManagerError):
    """Raised without touching the network while a profile's breaker is open."""

    def __init__(self, profile_name: str, retry_at: float | None = None) -> None:
        super().__init__(
            f"Connection to '{profile_name}' is temporarily disabled due to repeated failures"
        )
        self.profile_name = profile_name
        self.retry_at = retry_at


@dataclass(slots=True)
class PooledConnection:
    """Live client kept warm for one profile."""

    client: Any
    profile: ConnectionProfile
    last_used: float
    health: ConnectionHealth | None = None
    health_expires_at: float | None = None


class ConnectionManager:
    """Keeps at most one live client per profile name.

    ``connect`` reuses a pooled client that still answers a ping, refuses
    profiles whose breaker is open and otherwise opens a fresh client.
    ``test`` always uses a short-lived client of its own. A background
    task evicts clients idle for longer than ``idle_timeout``.
    """

    def __init__(
        self,
        settings: ManagerSettings | None = None,
        *,
        client_factory: ClientFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or ManagerSettings()
        self._client_factory = client_factory or AsyncIOMotorClient
        self._clock = clock
        self._pool: dict[str, PooledConnection] = {}
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._breaker = CircuitBreaker(
            max_failures=self._settings.max_failures,
            cooldown=self._settings.breaker_cooldown,
            clock=clock,
        )
        self._reaper: asyncio.Task[None] | None = None

    async def __aenter__(self) -> ConnectionManager:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.cleanup()

    @property
    def connections(self) -> tuple[str, ...]:
        """Names of the currently pooled profiles."""

        return tuple(self._pool)

    def start(self) -> None:
        """Launch the idle reaper on the running loop if it is not active."""

        if self._reaper is None or self._reaper.done():
            loop = asyncio.get_running_loop()
            self._reaper = loop.create_task(self._reap_forever(), name="mongoquick-idle-reaper")

    def get_client(self, name: str) -> Any | None:
        pooled = self._pool.get(name)
        return pooled.client if pooled is not None else None

    def breaker_state(self, name: str) -> CircuitBreakerState | None:
        return self._breaker.state(name)

    def client_options(self, profile: ConnectionProfile) -> dict[str, Any]:
        """Driver options for ``profile``; profile values win per field."""

        options = dict(self._settings.client_options)
        if profile.options is not None:
            options.update(profile.options.driver_kwargs())
        return options

    async def connect(self, profile: ConnectionProfile) -> Any:
        """Return a live client for ``profile``, reusing the pooled one when healthy."""

        self.start()
        name = profile.name
        async with self._lock_for(name):
            existing = self._pool.get(name)
            if existing is not None and await self._is_alive(existing):
                existing.last_used = self._clock()
                return existing.client

            if not self._breaker.allow(name):
                raise CircuitOpenError(name, self._breaker.retry_at(name))

            try:
                client = await self._open(profile)
            except Exception as exc:
                self._breaker.record_failure(name)
                raise ConnectionFailedError(f"Failed to connect to profile '{name}': {exc}") from exc

            self._breaker.record_success(name)
            stale = self._pool.get(name)
            self._pool[name] = PooledConnection(client=client, profile=profile, last_used=self._clock())
            if stale is not None:
                self._close(stale.client, name)
            return client

    async def disconnect(self, name: str | None = None) -> None:
        """Close one pooled client, or all of them when ``name`` is omitted."""

        if name is not None:
            pooled = self._pool.pop(name, None)
            if pooled is not None:
                self._close(pooled.client, name)
            return
        pooled_items = list(self._pool.items())
        self._pool.clear()
        for pooled_name, pooled in pooled_items:
            self._close(pooled.client, pooled_name)

    async def test(self, profile: ConnectionProfile) -> ConnectionHealth:
        """Probe ``profile`` on a throwaway client; failures come back as data."""

        started = time.perf_counter()
        client: Any | None = None
        try:
            client = self._client_factory(profile.uri, **self.client_options(profile))
            admin = client.admin
            await admin.command("ping")
            latency_ms = _elapsed_ms(started)
            status = await admin.command("serverStatus")
            build_info = await admin.command("buildInfo")
            return _health_from(status, build_info, latency_ms)
        except Exception as exc:
            return ConnectionHealth(
                is_connected=False,
                latency_ms=_elapsed_ms(started),
                server_version="unknown",
                topology=Topology.UNKNOWN,
                connection_count=0,
                tested_at=datetime.now(tz=timezone.utc),
                error=str(exc) or type(exc).__name__,
            )
        finally:
            if client is not None:
                self._close(client, profile.name)

    async def test_all(self, profiles: Iterable[ConnectionProfile]) -> dict[str, ConnectionHealth]:
        """Test every profile concurrently; one failure never hides the rest."""

        targets = tuple(profiles)
        results = await asyncio.gather(*(self.test(profile) for profile in targets), return_exceptions=True)
        report: dict[str, ConnectionHealth] = {}
        for profile, result in zip(targets, results):
            if isinstance(result, BaseException):
                LOG.error("Connection test crashed", exc_info=result, extra={"profile": profile.name})
                continue
            report[profile.name] = result
        return report

    async def get_health(self, name: str) -> ConnectionHealth | None:
        """Cached health for a pooled profile, refreshed once the cache expires."""

        pooled = self._pool.get(name)
        if pooled is None:
            return None
        if (
            pooled.health is not None
            and pooled.health_expires_at is not None
            and self._clock() < pooled.health_expires_at
        ):
            return pooled.health
        health = await self.test(pooled.profile)
        pooled.health = health
        pooled.health_expires_at = self._clock() + self._settings.health_cache_ttl
        return health

    async def list_connections(self) -> dict[str, ConnectionHealth]:
        names = tuple(self._pool)
        results = await asyncio.gather(*(self.get_health(name) for name in names), return_exceptions=True)
        report: dict[str, ConnectionHealth] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                LOG.error("Health check crashed", exc_info=result, extra={"profile": name})
                continue
            if result is not None:
                report[name] = result
        return report

    async def reap_idle(self) -> list[str]:
        """Evict pooled clients idle past the threshold; returns evicted names."""

        now = self._clock()
        idle = [
            name
            for name, pooled in self._pool.items()
            if now - pooled.last_used > self._settings.idle_timeout
        ]
        for name in idle:
            pooled = self._pool.pop(name, None)
            if pooled is not None:
                self._close(pooled.client, name)
                LOG.info("Closed idle connection", extra={"profile": name})
        return idle

    async def cleanup(self) -> None:
        """Stop the idle reaper and close every pooled client."""

        reaper, self._reaper = self._reaper, None
        if reaper is not None and not reaper.done():
            reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper
        await self.disconnect()

    async def _reap_forever(self) -> None:
        while True:
            await asyncio.sleep(self._settings.sweep_interval)
            await self.reap_idle()

    async def _open(self, profile: ConnectionProfile) -> Any:
        client = self._client_factory(profile.uri, **self.client_options(profile))
        try:
            await client.admin.command("ping")
        except Exception:
            self._close(client, profile.name)
            raise
        return client

    async def _is_alive(self, pooled: PooledConnection) -> bool:
        try:
            await pooled.client.admin.command("ping")
        except Exception:
            return False
        return True

    @contextlib.asynccontextmanager
    async def _lock_for(self, name: str) -> AsyncIterator[None]:
        """Hold the per-name connect lock; it is dropped once nobody needs it."""

        lock, users = self._locks.get(name, (asyncio.Lock(), 0))
        self._locks[name] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[name]
            if users == 1:
                del self._locks[name]
            else:
                self._locks[name] = (lock, users - 1)

    @staticmethod
    def _close(client: Any, name: str) -> None:
        try:
            client.close()
        except Exception:
            LOG.warning("Error closing connection", exc_info=True, extra={"profile": name})


def determine_topology(status: Mapping[str, Any]) -> Topology:
    """Classify a serverStatus document; anything unrecognized is Single."""

    repl = status.get("repl")
    if isinstance(repl, Mapping) and repl:
        if repl.get("ismaster") or repl.get("isWritablePrimary") or repl.get("isPrimary"):
            return Topology.REPLICA_SET_WITH_PRIMARY
        return Topology.REPLICA_SET_NO_PRIMARY
    if status.get("sharding"):
        return Topology.SHARDED
    return Topology.SINGLE


def _health_from(
    status: Mapping[str, Any],
    build_info: Mapping[str, Any],
    latency_ms: int,
) -> ConnectionHealth:
    repl = status.get("repl")
    set_name = repl.get("setName") if isinstance(repl, Mapping) else None
    connections = status.get("connections")
    current = connections.get("current", 0) if isinstance(connections, Mapping) else 0
    version = build_info.get("version")
    return ConnectionHealth(
        is_connected=True,
        latency_ms=latency_ms,
        server_version=str(version) if version else "unknown",
        topology=determine_topology(status),
        connection_count=int(current) if isinstance(current, (int, float)) else 0,
        tested_at=datetime.now(tz=timezone.utc),
        replica_set=set_name if isinstance(set_name, str) else None,
    )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


__all__ = [
    "CircuitOpenError",
    "ClientFactory",
    "ConnectionFailedError",
    "ConnectionManager",
    "ConnectionManagerError",
    "PooledConnection",
    "determine_topology",
]
