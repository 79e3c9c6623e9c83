"""Test reconciling the cache into the central database and refreshing it."""

import asyncio
import datetime

import sqlalchemy as sa

from labcheckin.model import (
    connection,
    results,
    router,
    schema,
    service,
    sync,
    users_mod,
)


ANA = {
    "code": "20231234",
    "name": "Ana Lopez",
    "profile": "Student",
    "school": "Nursing",
}
LUIS = {
    "code": "20230001",
    "name": "Luis Rojas",
    "profile": "Faculty",
    "school": "Obstetrics",
}


async def _store_rows(engine, table: sa.Table) -> list[dict]:
    """All rows of a central database table, oldest first."""
    async with engine.connect() as conn:
        query = sa.select(table).order_by(table.c.id)
        return [dict(row) for row in (await conn.execute(query)).mappings()]


async def _reconnect(checkin: service.CheckinService, server, clock) -> bool:
    """Bring the server up and run the next health check."""
    server.start()
    clock.advance(checkin.settings.probe_debounce + 1)
    return await checkin.check_connection()


def test_register_offline_then_reconcile(
    checkin: service.CheckinService, server, clock
) -> None:
    """A user registered offline gets the central database id once synced."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            registered = await checkin.register_user(**ANA)
            # Act
            connected = await _reconnect(checkin, server, clock)
            rows = await _store_rows(checkin.manager.engine, schema.users_table)
        # Assert
        assert registered.to_dict()["success"] and registered.mode == results.Mode.LOCAL
        assert connected
        assert [row["code"] for row in rows] == [ANA["code"]]
        cached = checkin.cache.load_users()
        assert len(cached) == 1
        assert cached[0]["id"] == rows[0]["id"]
        assert cached[0]["synced"]
        assert checkin.cache.load_pending() == []

    asyncio.run(_run())


def test_no_lost_writes(checkin: service.CheckinService, server, clock) -> None:
    """Every valid write made during an outage reaches the central database."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            await checkin.register_user(**LUIS)
            duplicate = await checkin.register_user(**ANA)
            await checkin.start_session(ANA["code"], "Thesis", "60 minutes", "PC1")
            await checkin.start_session(LUIS["code"], "Grading", None, "PC2")
            await checkin.start_session("55555555", None, None, "PC3")
            # Act
            await _reconnect(checkin, server, clock)
            users = await _store_rows(checkin.manager.engine, schema.users_table)
            sessions = await _store_rows(checkin.manager.engine, schema.sessions_table)
        # Assert
        assert not duplicate.success
        assert sorted(row["code"] for row in users) == sorted(
            [ANA["code"], LUIS["code"]]
        )
        assert [(row["code"], row["station"]) for row in sessions] == [
            (ANA["code"], 1),
            (LUIS["code"], 2),
            ("55555555", 3),
        ]
        assert not checkin.cache.has_unsynced()

    asyncio.run(_run())


def test_reconcile_is_idempotent(checkin: service.CheckinService, server, clock) -> None:
    """A second pass over the same cache changes nothing."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            await checkin.start_session(ANA["code"], "Thesis", None, "PC1")
            await _reconnect(checkin, server, clock)
            users_before = checkin.cache.load_users()
            sessions_before = checkin.cache.load_sessions()
            # Act
            second = await checkin.reconciler.reconcile()
            users = await _store_rows(checkin.manager.engine, schema.users_table)
            sessions = await _store_rows(checkin.manager.engine, schema.sessions_table)
        # Assert
        assert second.success
        assert second.users_synced == 0 and second.sessions_synced == 0
        assert len(users) == 1 and len(sessions) == 1
        assert checkin.cache.load_users() == users_before
        assert checkin.cache.load_sessions() == sessions_before

    asyncio.run(_run())


def test_offline_then_online_registration(
    checkin: service.CheckinService, server, clock
) -> None:
    """The same code registered offline, then online, yields one user."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            offline = await checkin.register_user(**ANA)
            await _reconnect(checkin, server, clock)
            # Act
            online = await checkin.register_user(**ANA)
            users = await _store_rows(checkin.manager.engine, schema.users_table)
        # Assert
        assert offline.success
        assert not online.success
        assert online.message == router.ALREADY_REGISTERED
        assert len(users) == 1

    asyncio.run(_run())


def test_reconcile_adopts_existing_user(
    checkin: service.CheckinService, server, clock, now: datetime.datetime
) -> None:
    """A code registered at another kiosk during the outage is not duplicated."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            server.start()
            other_kiosk = connection.ConnectionManager([server.url])
            await other_kiosk.connect()
            assert other_kiosk.engine is not None
            other_user = users_mod.User(id=None, registered_at=now, **ANA)
            async with other_kiosk.engine.begin() as conn:
                store_id = await other_user.insert(conn)
            await other_kiosk.close()
            # Act
            clock.advance(checkin.settings.probe_debounce + 1)
            await checkin.check_connection()
            users = await _store_rows(checkin.manager.engine, schema.users_table)
        # Assert
        assert len(users) == 1
        cached = checkin.cache.load_users()
        assert cached[0]["id"] == store_id
        assert cached[0]["synced"]

    asyncio.run(_run())


def test_bad_record_does_not_block_batch(
    checkin: service.CheckinService, server
) -> None:
    """A malformed cache record is skipped and the rest are synced."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.start_session(ANA["code"], "Thesis", None, "PC1")
            sessions = checkin.cache.load_sessions()
            sessions.append(
                {
                    "id": 2,
                    "code": "100",
                    "session_date": "not a date",
                    "start_time": "10:00:00",
                    "synced": False,
                }
            )
            checkin.cache.save_sessions(sessions)
            server.start()
            await checkin.manager.connect()
            # Act
            result = await checkin.reconciler.reconcile()
            rows = await _store_rows(checkin.manager.engine, schema.sessions_table)
        # Assert
        assert not result.success
        assert result.sessions_synced == 1
        assert result.failures == 1
        assert len(rows) == 1
        cached = {record["code"]: record for record in checkin.cache.load_sessions()}
        assert cached[ANA["code"]]["synced"]
        assert not cached["100"]["synced"]

    asyncio.run(_run())


def test_reconcile_needs_connection(checkin: service.CheckinService, server) -> None:
    """Reconciliation refuses to run while disconnected."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            # Act
            result = await checkin.sync_pending()
        # Assert
        assert not result.success
        assert checkin.cache.has_unsynced()

    asyncio.run(_run())


def test_refresh_is_throttled(online_server, cache_store, clock) -> None:
    """Two refreshes ten seconds apart read the central database once."""

    async def _run() -> None:
        # Arrange
        manager = connection.ConnectionManager([online_server.url])
        await manager.connect()
        assert manager.engine is not None
        refresher = sync.CacheRefresher(manager, cache_store, 60.0, clock)
        statements: list[str] = []
        sa.event.listen(
            manager.engine.sync_engine,
            "before_cursor_execute",
            lambda conn, cursor, statement, *args: statements.append(statement),
        )
        # Act
        try:
            first = await refresher.refresh()
            clock.advance(10)
            second = await refresher.refresh()
            clock.advance(51)
            third = await refresher.refresh()
        finally:
            await manager.close()
        # Assert
        assert first.refreshed
        assert not second.refreshed and second.reason == "throttled"
        assert third.refreshed
        user_reads = [s for s in statements if "FROM users" in s]
        assert len(user_reads) == 2

    asyncio.run(_run())


def test_refresh_copies_central_database(
    checkin: service.CheckinService, online_server, clock
) -> None:
    """The cache is replaced by a snapshot of the central database."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            await checkin.start_session(ANA["code"], "Thesis", None, "PC5")
            checkin.cache.save_users([])
            checkin.cache.save_sessions([])
            clock.advance(checkin.settings.refresh_interval + 1)
            # Act
            result = await checkin.refresher.refresh()
        # Assert
        assert result.refreshed
        assert result.users == 1 and result.sessions == 1
        assert checkin.cache.load_users()[0]["code"] == ANA["code"]
        assert checkin.cache.load_sessions()[0]["station"] == 5
        assert all(record["synced"] for record in checkin.cache.load_sessions())

    asyncio.run(_run())


def test_refresh_keeps_unsynced_records(
    checkin: service.CheckinService, online_server, clock
) -> None:
    """The cache is not overwritten while it holds unsynced writes."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.start_session("55555555", None, None, "PC3")
            clock.advance(checkin.settings.refresh_interval + 1)
            # Act
            result = await checkin.refresher.refresh()
        # Assert
        assert not result.refreshed
        assert result.reason == "cache has unsynced records"
        assert len(checkin.cache.load_sessions()) == 1

    asyncio.run(_run())
