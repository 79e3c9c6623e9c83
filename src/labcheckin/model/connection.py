"""Own the single connection to the central database.

The ConnectionManager tries the configured endpoints in order, keeps one
async engine for the endpoint that answered, and tracks a connected flag
that the rest of the core reads to choose between the central database and
the local cache. Connectivity problems never leave this module as
exceptions; callers look at ``connected`` instead.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext import asyncio as sa_asyncio

from labcheckin import config
from labcheckin.model import schema


logger = logging.getLogger(__name__)

CONNECTIVITY_ERRORS = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.TimeoutError,
    OSError,
    TimeoutError,
)


class NotConnectedError(ConnectionError):
    """A central database operation was attempted without an engine."""


def is_connectivity_error(err: BaseException) -> bool:
    """True if err means the central database went away mid-request."""
    if isinstance(err, sa_exc.DBAPIError) and err.connection_invalidated:
        return True
    return isinstance(err, CONNECTIVITY_ERRORS)


def display_url(url: str) -> str:
    """Database URL with the password masked, for logs and the status line."""
    try:
        return sa.engine.make_url(url).render_as_string(hide_password=True)
    except sa_exc.ArgumentError:
        return "<invalid database URL>"


class ConnectionManager:
    """Connect to the first reachable endpoint and watch its health."""

    endpoints: list[str]
    """Candidate database URLs in configured order."""
    pool_size: int
    connect_timeout: float
    """Seconds allowed for the first connection attempt to each endpoint."""
    reconnect_timeout: float
    """Seconds allowed for later attempts and health checks."""
    probe_debounce: float
    """Seconds during which repeated probes reuse the last answer."""

    def __init__(
        self,
        endpoints: list[str],
        pool_size: int = 5,
        connect_timeout: float = 30.0,
        reconnect_timeout: float = 10.0,
        probe_debounce: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Set endpoints and timeouts. No connection is made yet."""
        self.endpoints = list(dict.fromkeys(endpoints))
        self.pool_size = pool_size
        self.connect_timeout = connect_timeout
        self.reconnect_timeout = reconnect_timeout
        self.probe_debounce = probe_debounce
        self._clock = clock
        self._engine: Optional[sa_asyncio.AsyncEngine] = None
        self._connected = False
        self._current_endpoint: Optional[str] = None
        self._attempted = False
        self._last_probe: Optional[float] = None
        self._schema_ready = False

    @classmethod
    def from_settings(
        cls, settings: config.Settings, clock: Callable[[], float] = time.monotonic
    ) -> "ConnectionManager":
        return cls(
            settings.endpoints,
            pool_size=settings.pool_size,
            connect_timeout=settings.connect_timeout,
            reconnect_timeout=settings.reconnect_timeout,
            probe_debounce=settings.probe_debounce,
            clock=clock,
        )

    @property
    def connected(self) -> bool:
        return self._connected and self._engine is not None

    @property
    def engine(self) -> Optional[sa_asyncio.AsyncEngine]:
        """Engine for the current endpoint, or None when never connected."""
        return self._engine

    def require_engine(self) -> sa_asyncio.AsyncEngine:
        """Engine for the current endpoint.

        Raises:
            NotConnectedError: No endpoint has answered yet.
        """
        if self._engine is None:
            raise NotConnectedError("No connection to the central database.")
        return self._engine

    @property
    def current_endpoint(self) -> Optional[str]:
        """Most recent endpoint that accepted a connection, password masked."""
        if self._current_endpoint is None:
            return None
        return display_url(self._current_endpoint)

    @property
    def schema_ready(self) -> bool:
        return self._schema_ready

    def _candidates(self) -> list[str]:
        """Endpoints to try, the last successful one first."""
        if self._current_endpoint is None:
            return list(self.endpoints)
        return list(dict.fromkeys([self._current_endpoint, *self.endpoints]))

    def _create_engine(self, url: str, timeout: float) -> sa_asyncio.AsyncEngine:
        """Build an engine with a small fixed pool for one endpoint."""
        connect_args = {}
        if sa.engine.make_url(url).get_backend_name() == "postgresql":
            connect_args["timeout"] = timeout
        return sa_asyncio.create_async_engine(
            url,
            pool_size=self.pool_size,
            max_overflow=0,
            pool_timeout=timeout,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    @staticmethod
    async def _authenticate(engine: sa_asyncio.AsyncEngine, timeout: float) -> None:
        """Round trip to the database, raising on failure or timeout."""

        async def _select_one() -> None:
            async with engine.connect() as conn:
                await conn.execute(sa.text("SELECT 1"))

        await asyncio.wait_for(_select_one(), timeout)

    async def _replace_engine(
        self, engine: Optional[sa_asyncio.AsyncEngine]
    ) -> None:
        """Swap the engine, disposing of the old one."""
        old_engine, self._engine = self._engine, engine
        if old_engine is not None and old_engine is not engine:
            try:
                await old_engine.dispose()
            except Exception as err:
                logger.debug("Error disposing of old engine: %s", err)

    async def connect(self) -> bool:
        """Connect to the first endpoint that answers.

        Returns:
            True if connected. Never raises.
        """
        timeout = self.reconnect_timeout if self._attempted else self.connect_timeout
        self._attempted = True
        for url in self._candidates():
            engine: Optional[sa_asyncio.AsyncEngine] = None
            try:
                engine = self._create_engine(url, timeout)
                await self._authenticate(engine, timeout)
            except Exception as err:
                logger.warning("Unable to reach %s: %s", display_url(url), err)
                if engine is not None:
                    await engine.dispose()
                continue
            except asyncio.CancelledError:
                if engine is not None:
                    await engine.dispose()
                raise
            await self._replace_engine(engine)
            self._current_endpoint = url
            self._connected = True
            logger.info("Connected to central database at %s", display_url(url))
            await self.ensure_schema()
            return True
        await self._replace_engine(None)
        self._connected = False
        logger.warning("No central database reachable, using the local cache.")
        return False

    async def probe(self) -> bool:
        """Check the connection, reconnecting if needed.

        Calls made within probe_debounce seconds of the previous probe return
        the previous answer without touching the network.
        """
        now = self._clock()
        if self._last_probe is not None and now - self._last_probe < self.probe_debounce:
            return self.connected
        self._last_probe = now
        if not self.connected:
            if not await self.connect():
                return False
        try:
            await self._authenticate(self.require_engine(), self.reconnect_timeout)
        except Exception as err:
            logger.warning("Lost connection to central database: %s", err)
            self._connected = False
            return False
        await self.ensure_schema()
        return True

    async def ensure_schema(self) -> bool:
        """Create the tables once per process, after the first connection.

        A failure is logged and retried after the next successful connection;
        writes that need the missing tables fail with their own error.
        """
        if self._schema_ready:
            return True
        if self._engine is None:
            return False
        try:
            await schema.create_tables(self._engine)
        except (sa_exc.SQLAlchemyError, OSError) as err:
            logger.error("Unable to create central database tables: %s", err)
            return False
        self._schema_ready = True
        return True

    def mark_disconnected(self) -> None:
        """Record a connectivity failure seen outside of probe()."""
        if self._connected:
            logger.warning("Central database connection lost, switching to cache.")
        self._connected = False
        self._last_probe = None

    async def close(self) -> None:
        """Release pooled connections."""
        await self._replace_engine(None)
        self._connected = False
