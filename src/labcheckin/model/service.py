"""The operations the kiosk screens call.

CheckinService wires one ConnectionManager, CacheStore, WriteRouter,
Reconciler, CacheRefresher and AdminService together and is the only object
the presentation layer talks to. Every method returns a result object;
nothing raises into the caller.
"""

import datetime
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from labcheckin import config
from labcheckin.model import admin, cache, connection, results, router, sync


logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


class CheckinService:
    """Request/response interface of the persistence core."""

    settings: config.Settings
    cache: cache.CacheStore
    manager: connection.ConnectionManager
    router: router.WriteRouter
    reconciler: sync.Reconciler
    refresher: sync.CacheRefresher
    admin: admin.AdminService

    def __init__(
        self,
        settings: config.Settings,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        """Build the components. Nothing connects until startup()."""
        self.settings = settings
        self.cache = cache.CacheStore(settings.data_dir)
        self.manager = connection.ConnectionManager.from_settings(settings, clock)
        self.router = router.WriteRouter(self.manager, self.cache, now)
        self.reconciler = sync.Reconciler(self.manager, self.cache)
        self.refresher = sync.CacheRefresher(
            self.manager, self.cache, settings.refresh_interval, clock
        )
        self.admin = admin.AdminService(self.manager, self.cache)

    @staticmethod
    async def _guard(
        operation: str,
        action: Awaitable[ResultT],
        on_error: Callable[[Exception], ResultT],
    ) -> ResultT:
        """Turn an unexpected exception into a failure result."""
        try:
            return await action
        except Exception as err:
            logger.exception("Unexpected error in %s", operation)
            return on_error(err)

    def _write_failed(self, message: str) -> Callable[[Exception], results.WriteResult]:
        def _failed(err: Exception) -> results.WriteResult:
            mode = results.Mode.ONLINE if self.manager.connected else results.Mode.LOCAL
            return results.WriteResult(False, f"{message}: {err}", mode)

        return _failed

    # Connection
    # ----------
    async def startup(self) -> bool:
        """Connect for the first time and reconcile anything left in the cache."""
        logger.info("Starting with %s candidate endpoints.", len(self.manager.endpoints))
        connected = await self.check_connection()
        if not connected:
            logger.warning("Starting in local mode.")
        return connected

    async def check_connection(self) -> bool:
        """Probe the central database and keep the cache in step with it.

        On a transition to connected, or whenever the cache still holds
        unsynced records, cached writes are reconciled. A throttled refresh
        of the cache follows.
        """

        async def _check() -> bool:
            was_connected = self.manager.connected
            if not await self.manager.probe():
                return False
            try:
                needs_sync = not was_connected or self.cache.has_unsynced()
            except cache.CacheError as err:
                logger.error("Unable to read the cache before syncing: %s", err)
                needs_sync = False
            if needs_sync:
                await self.reconciler.reconcile()
            await self.refresher.refresh()
            return self.manager.connected

        return await self._guard("check_connection", _check(), lambda err: False)

    def connection_status(self) -> results.ConnectionStatus:
        return results.ConnectionStatus(
            self.manager.connected, self.manager.current_endpoint
        )

    async def sync_pending(self) -> results.SyncResult:
        """Push cached writes to the central database now."""

        async def _sync() -> results.SyncResult:
            if not await self.manager.probe():
                return results.SyncResult(False, "No connection to the central server.")
            result = await self.reconciler.reconcile()
            await self.refresher.refresh()
            return result

        return await self._guard(
            "sync_pending",
            _sync(),
            lambda err: results.SyncResult(False, f"Sync failed: {err}"),
        )

    async def close(self) -> None:
        await self.manager.close()

    async def __aenter__(self) -> "CheckinService":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # Kiosk operations
    # ----------------
    async def register_user(
        self, code: str, name: str, profile: str, school: str
    ) -> results.WriteResult:
        return await self._guard(
            "register_user",
            self.router.register_user(code, name, profile, school),
            self._write_failed("Registration failed"),
        )

    async def find_user_by_code(self, code: str) -> results.LookupResult:
        def _failed(err: Exception) -> results.LookupResult:
            mode = results.Mode.ONLINE if self.manager.connected else results.Mode.LOCAL
            return results.LookupResult(
                results.LookupStatus.ERROR, mode, error=f"Error looking up user: {err}"
            )

        return await self._guard(
            "find_user_by_code", self.router.find_user_by_code(code), _failed
        )

    async def start_session(
        self,
        code: str,
        activity: Optional[str],
        duration: Optional[str],
        station_label: Optional[str],
    ) -> results.WriteResult:
        return await self._guard(
            "start_session",
            self.router.start_session(code, activity, duration, station_label),
            self._write_failed("Session did not start"),
        )

    # Admin operations
    # ----------------
    async def admin_list_users(
        self, page: int = 1, page_size: int = 20, filters: Optional[dict[str, Any]] = None
    ) -> results.PageResult:
        filters = filters or {}
        return await self._guard(
            "admin_list_users",
            self.admin.list_users(page, page_size, code=filters.get("code")),
            lambda err: results.PageResult(False, message=str(err)),
        )

    async def admin_list_sessions(
        self, page: int = 1, page_size: int = 20, filters: Optional[dict[str, Any]] = None
    ) -> results.PageResult:
        filters = filters or {}
        return await self._guard(
            "admin_list_sessions",
            self.admin.list_sessions(
                page,
                page_size,
                code=filters.get("code"),
                date_from=filters.get("date_from"),
                date_to=filters.get("date_to"),
            ),
            lambda err: results.PageResult(False, message=str(err)),
        )

    async def admin_delete_user(
        self, id: Optional[int] = None, code: Optional[str] = None
    ) -> results.DeleteResult:
        return await self._guard(
            "admin_delete_user",
            self.admin.delete_user(id=id, code=code),
            lambda err: results.DeleteResult(False, str(err)),
        )

    async def admin_delete_session(self, id: Optional[int] = None) -> results.DeleteResult:
        return await self._guard(
            "admin_delete_session",
            self.admin.delete_session(id=id),
            lambda err: results.DeleteResult(False, str(err)),
        )
