"""List and delete users and sessions for the admin screen.

Reads and deletes go to the central database when connected and to the
cache otherwise, the same as kiosk writes.
"""

import datetime
import logging
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import exc as sa_exc

from labcheckin.model import cache, connection, results, schema, sessions_mod, users_mod


logger = logging.getLogger(__name__)

INVALID_PARAMETERS = "Invalid parameters"
Mode = results.Mode


def _iso(value: Optional[datetime.date | str]) -> Optional[str]:
    """Normalize a filter date to an ISO string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        value = value.date()
    if isinstance(value, datetime.date):
        return value.isoformat()
    return datetime.date.fromisoformat(value.strip()).isoformat()


def _page(
    records: list[cache.Record], page: int, page_size: int
) -> list[cache.Record]:
    start = (max(page, 1) - 1) * page_size
    return records[start : start + page_size]


class AdminService:
    """Paged listings and deletes with the same online/local split as writes."""

    def __init__(
        self, manager: connection.ConnectionManager, cache_store: cache.CacheStore
    ) -> None:
        self.manager = manager
        self.cache = cache_store

    async def list_users(
        self, page: int = 1, page_size: int = 20, code: Optional[str] = None
    ) -> results.PageResult:
        """One page of users, newest first, optionally for a single code."""
        if not self.manager.connected:
            try:
                records = self.cache.load_users()
            except cache.CacheError as err:
                return results.PageResult(False, message=str(err))
            if code:
                records = [r for r in records if str(r.get("code")) == str(code)]
            records = sorted(records, key=lambda r: r.get("id") or 0, reverse=True)
            return results.PageResult(
                True, _page(records, page, page_size), len(records), Mode.LOCAL
            )
        table = schema.users_table
        conditions = []
        if code:
            conditions.append(table.c.code == str(code))
        try:
            rows, total = await self._select_page(table, conditions, page, page_size)
        except (sa_exc.SQLAlchemyError, OSError) as err:
            return self._failed(err)
        data = [users_mod.User.from_row(row).to_dict() for row in rows]
        return results.PageResult(True, data, total, Mode.ONLINE)

    async def list_sessions(
        self,
        page: int = 1,
        page_size: int = 20,
        code: Optional[str] = None,
        date_from: Optional[datetime.date | str] = None,
        date_to: Optional[datetime.date | str] = None,
    ) -> results.PageResult:
        """One page of sessions, newest first, filtered by code and date range."""
        try:
            date_from, date_to = _iso(date_from), _iso(date_to)
        except ValueError as err:
            return results.PageResult(False, message=f"{INVALID_PARAMETERS}: {err}")
        if not self.manager.connected:
            try:
                records = self.cache.load_sessions()
            except cache.CacheError as err:
                return results.PageResult(False, message=str(err))
            if code:
                records = [r for r in records if str(r.get("code")) == str(code)]
            # ISO dates sort and compare correctly as strings.
            if date_from:
                records = [r for r in records if r.get("session_date", "") >= date_from]
            if date_to:
                records = [r for r in records if r.get("session_date", "") <= date_to]
            records = sorted(records, key=lambda r: r.get("id") or 0, reverse=True)
            return results.PageResult(
                True, _page(records, page, page_size), len(records), Mode.LOCAL
            )
        table = schema.sessions_table
        conditions = []
        if code:
            conditions.append(table.c.code == str(code))
        if date_from:
            conditions.append(
                table.c.session_date >= datetime.date.fromisoformat(date_from)
            )
        if date_to:
            conditions.append(
                table.c.session_date <= datetime.date.fromisoformat(date_to)
            )
        try:
            rows, total = await self._select_page(table, conditions, page, page_size)
        except (sa_exc.SQLAlchemyError, OSError) as err:
            return self._failed(err)
        data = [sessions_mod.Session.from_row(row).to_dict() for row in rows]
        return results.PageResult(True, data, total, Mode.ONLINE)

    async def _select_page(
        self, table: sa.Table, conditions: list, page: int, page_size: int
    ) -> tuple[list, int]:
        """Run the page query and the count query."""
        engine = self.manager.require_engine()
        query = (
            sa.select(table)
            .where(*conditions)
            .order_by(table.c.id.desc())
            .limit(page_size)
            .offset((max(page, 1) - 1) * page_size)
        )
        count_query = sa.select(sa.func.count()).select_from(table).where(*conditions)
        async with engine.connect() as conn:
            rows = list((await conn.execute(query)).mappings())
            total = (await conn.execute(count_query)).scalar_one()
        return rows, total

    def _failed(self, err: BaseException) -> results.PageResult:
        logger.error("Admin query failed: %s", err)
        if connection.is_connectivity_error(err):
            self.manager.mark_disconnected()
        return results.PageResult(False, message=str(err))

    async def delete_user(
        self, id: Optional[int] = None, code: Optional[str] = None
    ) -> results.DeleteResult:
        """Delete a user by id or code, together with the user's sessions.

        The cascade only applies to the central database. Offline, only the
        cached user record is removed.
        """
        if not id and not code:
            return results.DeleteResult(False, INVALID_PARAMETERS)
        if not self.manager.connected:
            try:
                records = self.cache.load_users()
                if id:
                    remaining = [r for r in records if r.get("id") != id]
                else:
                    remaining = [r for r in records if str(r.get("code")) != str(code)]
                self.cache.save_users(remaining)
            except cache.CacheError as err:
                return results.DeleteResult(False, str(err))
            return results.DeleteResult(True)
        users, sessions = schema.users_table, schema.sessions_table
        try:
            engine = self.manager.require_engine()
            async with engine.begin() as conn:
                user_code = code
                if id:
                    user_code = (
                        await conn.execute(
                            sa.select(users.c.code).where(users.c.id == id)
                        )
                    ).scalar()
                    condition = users.c.id == id
                else:
                    condition = users.c.code == str(code)
                if user_code is not None:
                    await conn.execute(
                        sa.delete(sessions).where(sessions.c.code == str(user_code))
                    )
                result = await conn.execute(sa.delete(users).where(condition))
        except (sa_exc.SQLAlchemyError, OSError) as err:
            logger.error("Unable to delete user %s: %s", id or code, err)
            if connection.is_connectivity_error(err):
                self.manager.mark_disconnected()
            return results.DeleteResult(False, str(err))
        if result.rowcount > 0:
            logger.info("Deleted user %s and their sessions.", id or code)
        return results.DeleteResult(result.rowcount > 0)

    async def delete_session(self, id: Optional[int] = None) -> results.DeleteResult:
        """Delete one session by id."""
        if not id:
            return results.DeleteResult(False, INVALID_PARAMETERS)
        if not self.manager.connected:
            try:
                records = self.cache.load_sessions()
                self.cache.save_sessions([r for r in records if r.get("id") != id])
            except cache.CacheError as err:
                return results.DeleteResult(False, str(err))
            return results.DeleteResult(True)
        try:
            engine = self.manager.require_engine()
            async with engine.begin() as conn:
                result = await conn.execute(
                    sa.delete(schema.sessions_table).where(
                        schema.sessions_table.c.id == id
                    )
                )
        except (sa_exc.SQLAlchemyError, OSError) as err:
            logger.error("Unable to delete session %s: %s", id, err)
            if connection.is_connectivity_error(err):
                self.manager.mark_disconnected()
            return results.DeleteResult(False, str(err))
        return results.DeleteResult(result.rowcount > 0)
