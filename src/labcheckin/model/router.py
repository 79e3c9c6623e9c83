"""Decide, for each kiosk write, between the central database and the cache.

When the ConnectionManager reports a live connection, writes go straight to
the central database inside a transaction. Otherwise they are appended to
the cache with ``synced`` set to False and logged in the pending-operations
file, to be reconciled later.
"""

import datetime
import logging
from typing import Callable, Optional

from sqlalchemy import exc as sa_exc

from labcheckin.model import cache, connection, results, sessions_mod, users_mod


logger = logging.getLogger(__name__)

ALREADY_REGISTERED = "This code is already registered. Please sign in."
NOT_REGISTERED = "You are not registered."
Mode = results.Mode
WriteResult = results.WriteResult


class WriteRouter:
    """Register users, start sessions and look users up in either mode."""

    def __init__(
        self,
        manager: connection.ConnectionManager,
        cache_store: cache.CacheStore,
        now: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        self.manager = manager
        self.cache = cache_store
        self._now = now

    def _connection_failed(self, err: BaseException) -> None:
        """Switch to the cache if err was a connectivity failure."""
        if connection.is_connectivity_error(err):
            self.manager.mark_disconnected()

    @staticmethod
    def _mirror(
        load: Callable[[], list[cache.Record]],
        save: Callable[[list[cache.Record]], None],
        record: cache.Record,
        key: str = "id",
    ) -> None:
        """Copy a record just written to the central database into the cache.

        Skipped if the cache already holds a record with the same id or key.
        The next refresh fills any gap, so failures are only logged.
        """
        try:
            records = load()
            if any(
                existing.get("id") == record["id"]
                or str(existing.get(key)) == str(record[key])
                for existing in records
            ):
                return
            records.append(record)
            save(records)
        except cache.CacheError as err:
            logger.warning(
                "Unable to copy record %s into the cache: %s", record["id"], err
            )

    # Register user
    # -------------
    async def register_user(
        self, code: str | int, name: str, profile: str, school: str
    ) -> WriteResult:
        """Register a new user, refusing codes that are already registered."""
        user = users_mod.User(
            id=None,
            code=code,
            name=name,
            profile=profile,
            school=school,
            registered_at=self._now(),
        )
        if not self.manager.connected:
            return self._register_local(user)
        return await self._register_online(user)

    def _register_local(self, user: users_mod.User) -> WriteResult:
        try:
            records = self.cache.load_users()
            if any(str(record.get("code")) == user.code for record in records):
                return WriteResult(
                    False, ALREADY_REGISTERED, Mode.LOCAL, redirect_to_login=True
                )
            user.id = self.cache.next_id(records)
            record = user.to_dict()
            records.append(record)
            self.cache.save_users(records)
            self.cache.append_pending("user", record)
        except cache.CacheError as err:
            return WriteResult(
                False, f"Registration did not complete, please retry: {err}", Mode.LOCAL
            )
        logger.info("Registered user %s in the local cache.", user.code)
        return WriteResult(
            True, "Registration successful (local mode).", Mode.LOCAL,
            redirect_to_login=True,
        )

    def _waiting_in_cache(self, code: str) -> bool:
        """True if an unsynced cached user already has this code."""
        try:
            records = self.cache.load_users()
        except cache.CacheError as err:
            logger.error("Unable to check the cache for %s: %s", code, err)
            return False
        return any(
            not record.get("synced", False) and str(record.get("code")) == code
            for record in records
        )

    async def _register_online(self, user: users_mod.User) -> WriteResult:
        if self._waiting_in_cache(user.code):
            logger.info("Code %s is registered in the cache, not yet synced.", user.code)
            return WriteResult(
                False, ALREADY_REGISTERED, Mode.ONLINE, redirect_to_login=True
            )
        try:
            engine = self.manager.require_engine()
            async with engine.begin() as conn:
                if await users_mod.User.get_by_code(conn, user.code) is not None:
                    return WriteResult(
                        False, ALREADY_REGISTERED, Mode.ONLINE, redirect_to_login=True
                    )
                user.id = await user.insert(conn)
        except sa_exc.IntegrityError:
            # Another station registered the same code between our check and
            #   our insert. The unique constraint rejected ours.
            logger.info("Duplicate registration for %s rejected.", user.code)
            return WriteResult(
                False, ALREADY_REGISTERED, Mode.ONLINE, redirect_to_login=True
            )
        except (sa_exc.SQLAlchemyError, OSError) as err:
            logger.error("Error registering user %s: %s", user.code, err)
            self._connection_failed(err)
            return WriteResult(False, f"Registration failed: {err}", Mode.ONLINE)
        user.synced = True
        self._mirror(
            self.cache.load_users, self.cache.save_users, user.to_dict(), "code"
        )
        logger.info("Registered user %s with id %s.", user.code, user.id)
        return WriteResult(
            True, "User registered successfully.", Mode.ONLINE, redirect_to_login=True
        )

    # Find user
    # ---------
    async def find_user_by_code(self, code: str | int) -> results.LookupResult:
        """Look up a user by code in the central database or the cache."""
        if not self.manager.connected:
            return self._find_local(str(code))
        try:
            engine = self.manager.require_engine()
            async with engine.connect() as conn:
                user = await users_mod.User.get_by_code(conn, code)
        except (sa_exc.SQLAlchemyError, OSError) as err:
            logger.error("Error looking up user %s: %s", code, err)
            self._connection_failed(err)
            return results.LookupResult(
                results.LookupStatus.ERROR,
                Mode.ONLINE,
                error=f"Error looking up user: {err}",
            )
        if user is None:
            return results.LookupResult(
                results.LookupStatus.NOT_REGISTERED, Mode.ONLINE, error=NOT_REGISTERED
            )
        return results.LookupResult(results.LookupStatus.FOUND, Mode.ONLINE, user=user)

    def _find_local(self, code: str) -> results.LookupResult:
        try:
            records = self.cache.load_users()
        except cache.CacheError as err:
            return results.LookupResult(
                results.LookupStatus.ERROR,
                Mode.LOCAL,
                error=f"Error looking up user: {err}",
            )
        for record in records:
            # Codes typed at the kiosk are strings, older cache files may
            #   hold numbers.
            if str(record.get("code")) == code:
                return results.LookupResult(
                    results.LookupStatus.FOUND,
                    Mode.LOCAL,
                    user=users_mod.User.from_cache(record),
                )
        return results.LookupResult(
            results.LookupStatus.NOT_REGISTERED, Mode.LOCAL, error=NOT_REGISTERED
        )

    # Start session
    # -------------
    async def start_session(
        self,
        code: str | int,
        activity: Optional[str],
        duration: Optional[str],
        station_label: Optional[str],
    ) -> WriteResult:
        """Record that a user sat down at a station."""
        session = sessions_mod.Session.start_now(
            str(code), activity, duration, station_label, self._now()
        )
        if not self.manager.connected:
            return self._start_local(session, "Session started (local mode).")
        return await self._start_online(session)

    def _start_local(self, session: sessions_mod.Session, message: str) -> WriteResult:
        try:
            records = self.cache.load_sessions()
            session.id = self.cache.next_id(records)
            record = session.to_dict()
            records.append(record)
            self.cache.save_sessions(records)
            self.cache.append_pending("session", record)
        except cache.CacheError as err:
            return WriteResult(
                False, f"Session did not start, please retry: {err}", Mode.LOCAL
            )
        logger.info(
            "Started session for %s at station %s in the local cache.",
            session.code,
            session.station,
        )
        return WriteResult(True, message, Mode.LOCAL)

    async def _start_online(self, session: sessions_mod.Session) -> WriteResult:
        try:
            engine = self.manager.require_engine()
        except connection.NotConnectedError:
            return self._start_local(session, "Session started (local mode).")
        user_known = True
        try:
            async with engine.connect() as conn:
                user_known = (
                    await users_mod.User.get_by_code(conn, session.code) is not None
                )
        except (sa_exc.SQLAlchemyError, OSError) as err:
            # The insert below will report any real problem.
            logger.warning("Unable to check user %s: %s", session.code, err)
        if not user_known:
            # Keep the session rather than lose it; it is reconciled once the
            #   user's registration reaches the central database.
            return self._start_local(
                session, "Session started in local mode (user not in central database)."
            )
        try:
            async with engine.begin() as conn:
                session.id = await session.insert(conn)
        except (sa_exc.SQLAlchemyError, OSError) as err:
            logger.error("Error starting session for %s: %s", session.code, err)
            self._connection_failed(err)
            return WriteResult(False, f"Session did not start: {err}", Mode.ONLINE)
        session.synced = True
        self._mirror(
            self.cache.load_sessions, self.cache.save_sessions, session.to_dict()
        )
        logger.info("Started session %s for %s.", session.id, session.code)
        return WriteResult(True, "Session started successfully.", Mode.ONLINE)
