"""Move data between the cache and the central database.

Reconciler pushes cached records that are not yet synced into the central
database. CacheRefresher copies the central database into the cache so the
kiosk has current data the next time the connection drops.
"""

import logging
import time
from typing import Any, Callable, Optional

from sqlalchemy import exc as sa_exc

from labcheckin.model import cache, connection, results, sessions_mod, users_mod


logger = logging.getLogger(__name__)

RECORD_ERRORS = (sa_exc.SQLAlchemyError, OSError, KeyError, TypeError, ValueError)
"""Failures that skip a single record during reconciliation."""


def _merge_synced(
    load: Callable[[], list[cache.Record]],
    save: Callable[[list[cache.Record]], None],
    new_ids: dict[Any, int],
) -> None:
    """Mark records synced and give them their central database ids.

    The file is read again so records appended while reconciliation was
    waiting on the database are kept. new_ids maps cache placeholder ids to
    central database ids.
    """
    records = load()
    for record in records:
        if not record.get("synced", False) and record.get("id") in new_ids:
            record["id"] = new_ids[record["id"]]
            record["synced"] = True
    save(records)


class Reconciler:
    """Push unsynced cache records into the central database."""

    def __init__(
        self, manager: connection.ConnectionManager, cache_store: cache.CacheStore
    ) -> None:
        self.manager = manager
        self.cache = cache_store

    async def reconcile(self) -> results.SyncResult:
        """Sync users first, then sessions, then clear the pending log.

        Each record is committed on its own. A record that fails is logged
        and left unsynced for the next pass; it does not stop the others.
        """
        if not self.manager.connected:
            return results.SyncResult(False, "No connection to the central database.")
        try:
            users_synced, user_failures = await self._sync_users()
            sessions_synced, session_failures = await self._sync_sessions()
        except (cache.CacheError, connection.NotConnectedError) as err:
            return results.SyncResult(False, f"Sync failed: {err}")
        if not self.cache.clear_pending():
            logger.warning("Unable to clear the pending-operations log.")
        failures = user_failures + session_failures
        if failures:
            message = (
                f"Synced {users_synced} users and {sessions_synced} sessions, "
                f"{failures} records will be retried."
            )
        elif users_synced or sessions_synced:
            message = f"Synced {users_synced} users and {sessions_synced} sessions."
        else:
            message = "No pending data to sync."
        if users_synced or sessions_synced or failures:
            logger.info(message)
        return results.SyncResult(
            failures == 0, message, users_synced, sessions_synced, failures
        )

    async def _sync_users(self) -> tuple[int, int]:
        """Insert unsynced users, adopting existing rows with the same code."""
        pending = [
            record
            for record in self.cache.load_users()
            if not record.get("synced", False)
        ]
        if not pending:
            return 0, 0
        engine = self.manager.require_engine()
        new_ids: dict[Any, int] = {}
        failures = 0
        for record in pending:
            try:
                user = users_mod.User.from_cache(record)
                async with engine.begin() as conn:
                    existing = await users_mod.User.get_by_code(conn, user.code)
                    if existing is None:
                        store_id = await user.insert(conn)
                        logger.info(
                            "Cached user %s synced with id %s.", user.code, store_id
                        )
                    else:
                        # Registered elsewhere, or inserted by an earlier pass
                        #   that stopped before saving the cache.
                        store_id = existing.id
            except RECORD_ERRORS as err:
                logger.error("Error syncing user %s: %s", record.get("code"), err)
                failures += 1
                continue
            new_ids[record.get("id")] = store_id
        if new_ids:
            _merge_synced(self.cache.load_users, self.cache.save_users, new_ids)
        return len(new_ids), failures

    async def _sync_sessions(self) -> tuple[int, int]:
        """Insert every unsynced session.

        Sessions have no business key, and a duplicated session row is
        harmless, so there is no existence check.
        """
        pending = [
            record
            for record in self.cache.load_sessions()
            if not record.get("synced", False)
        ]
        if not pending:
            return 0, 0
        engine = self.manager.require_engine()
        new_ids: dict[Any, int] = {}
        failures = 0
        for record in pending:
            try:
                session = sessions_mod.Session.from_cache(record)
                async with engine.begin() as conn:
                    store_id = await session.insert(conn)
            except RECORD_ERRORS as err:
                logger.error("Error syncing session %s: %s", record.get("id"), err)
                failures += 1
                continue
            logger.info("Cached session %s synced with id %s.", record.get("id"), store_id)
            new_ids[record.get("id")] = store_id
        if new_ids:
            _merge_synced(self.cache.load_sessions, self.cache.save_sessions, new_ids)
        return len(new_ids), failures


class CacheRefresher:
    """Overwrite the cache with a snapshot of the central database."""

    interval: float
    """Minimum seconds between two snapshots."""

    def __init__(
        self,
        manager: connection.ConnectionManager,
        cache_store: cache.CacheStore,
        interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.manager = manager
        self.cache = cache_store
        self.interval = interval
        self._clock = clock
        self._last_refresh: Optional[float] = None

    async def refresh(self) -> results.RefreshResult:
        """Copy all users and sessions into the cache, at most once per interval."""
        if not self.manager.connected:
            return results.RefreshResult(False, "not connected")
        now = self._clock()
        if self._last_refresh is not None and now - self._last_refresh < self.interval:
            return results.RefreshResult(False, "throttled")
        try:
            engine = self.manager.require_engine()
            if self.cache.has_unsynced():
                # Overwriting now would drop writes that only exist here.
                return results.RefreshResult(False, "cache has unsynced records")
            async with engine.connect() as conn:
                users = await users_mod.User.get_all(conn)
                sessions = await sessions_mod.Session.get_all(conn)
            self.cache.save_users([user.to_dict() for user in users])
            self.cache.save_sessions([session.to_dict() for session in sessions])
        except (sa_exc.SQLAlchemyError, OSError, cache.CacheError) as err:
            logger.error("Unable to refresh the local cache: %s", err)
            if connection.is_connectivity_error(err):
                self.manager.mark_disconnected()
            return results.RefreshResult(False, f"error: {err}")
        self._last_refresh = now
        logger.info(
            "Local cache refreshed with %s users and %s sessions.",
            len(users),
            len(sessions),
        )
        return results.RefreshResult(True, users=len(users), sessions=len(sessions))
