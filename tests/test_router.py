"""Test registering users, finding them and starting sessions in both modes."""

import asyncio

import sqlalchemy as sa

from labcheckin.model import results, router, schema, service, users_mod


ANA = {
    "code": "20231234",
    "name": "Ana Lopez",
    "profile": "Student",
    "school": "Nursing",
}


async def _store_rows(checkin: service.CheckinService, table: sa.Table) -> list[dict]:
    """All rows of a central database table."""
    assert checkin.manager.engine is not None
    async with checkin.manager.engine.connect() as conn:
        return [dict(row) for row in (await conn.execute(sa.select(table))).mappings()]


def test_register_offline(checkin: service.CheckinService, server) -> None:
    """Registration while disconnected goes to the cache."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            # Act
            result = await checkin.register_user(**ANA)
        # Assert
        assert result.success
        assert result.mode == results.Mode.LOCAL
        assert result.redirect_to_login
        users = checkin.cache.load_users()
        assert len(users) == 1
        assert users[0]["id"] == 1
        assert users[0]["code"] == "20231234"
        assert users[0]["registered_at"] == "2025-03-14T09:30:15"
        assert not users[0]["synced"]
        assert [entry["kind"] for entry in checkin.cache.load_pending()] == ["user"]

    asyncio.run(_run())


def test_register_offline_duplicate(checkin: service.CheckinService, server) -> None:
    """A code already in the cache is rejected while disconnected."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            # Act
            result = await checkin.register_user(**{**ANA, "name": "Someone Else"})
        # Assert
        assert not result.success
        assert result.message == router.ALREADY_REGISTERED
        assert result.redirect_to_login
        assert len(checkin.cache.load_users()) == 1

    asyncio.run(_run())


def test_register_online(checkin: service.CheckinService, online_server) -> None:
    """Registration while connected writes the central database."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            # Act
            result = await checkin.register_user(**ANA)
            rows = await _store_rows(checkin, schema.users_table)
        # Assert
        assert result.success
        assert result.mode == results.Mode.ONLINE
        assert result.to_dict()["redirectToLogin"]
        assert [row["code"] for row in rows] == ["20231234"]
        cached = checkin.cache.load_users()
        assert cached[0]["id"] == rows[0]["id"]
        assert cached[0]["synced"]
        assert checkin.cache.load_pending() == []

    asyncio.run(_run())


def test_register_online_duplicate(checkin: service.CheckinService, online_server) -> None:
    """A code already in the central database is rejected."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            # Act
            result = await checkin.register_user(**ANA)
            rows = await _store_rows(checkin, schema.users_table)
        # Assert
        assert not result.success
        assert result.mode == results.Mode.ONLINE
        assert result.message == router.ALREADY_REGISTERED
        assert len(rows) == 1

    asyncio.run(_run())


def test_register_after_outage_is_rejected(
    checkin: service.CheckinService, online_server
) -> None:
    """A code registered online is still known to the cache during an outage."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            checkin.manager.mark_disconnected()
            # Act
            result = await checkin.register_user(**ANA)
        # Assert
        assert not result.success
        assert result.mode == results.Mode.LOCAL
        assert result.message == router.ALREADY_REGISTERED

    asyncio.run(_run())


def test_register_with_corrupt_cache(checkin: service.CheckinService, server) -> None:
    """An unreadable cache file gives a failure result, not an exception."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            checkin.cache.data_dir.mkdir(parents=True, exist_ok=True)
            checkin.cache.users_path.write_text("[{broken")
            # Act
            registered = await checkin.register_user(**ANA)
            found = await checkin.find_user_by_code(ANA["code"])
        # Assert
        assert not registered.success
        assert registered.message.startswith("Registration did not complete")
        assert found.status == results.LookupStatus.ERROR
        assert found.error is not None

    asyncio.run(_run())


def test_find_user_offline(checkin: service.CheckinService, server) -> None:
    """Offline lookups compare codes as strings."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            checkin.cache.save_users(
                [
                    {
                        "id": 7,
                        "code": 20231234,
                        "name": "Ana Lopez",
                        "profile": "Student",
                        "school": "Nursing",
                        "registered_at": "2025-03-01T08:00:00",
                        "synced": True,
                    }
                ]
            )
            # Act
            found = await checkin.find_user_by_code("20231234")
            missing = await checkin.find_user_by_code("99999999")
        # Assert
        assert found.found
        assert found.user is not None and found.user.name == "Ana Lopez"
        assert found.mode == results.Mode.LOCAL
        assert missing.needs_registration
        assert missing.error == router.NOT_REGISTERED
        assert missing.to_dict()["needsRegistration"]

    asyncio.run(_run())


def test_find_user_online(checkin: service.CheckinService, online_server) -> None:
    """Online lookups read the central database."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            # Act
            found = await checkin.find_user_by_code(20231234)
            missing = await checkin.find_user_by_code("99999999")
        # Assert
        assert found.found
        assert found.mode == results.Mode.ONLINE
        assert found.user is not None and found.user.synced
        assert missing.status == results.LookupStatus.NOT_REGISTERED
        assert missing.mode == results.Mode.ONLINE

    asyncio.run(_run())


def test_start_session_offline(checkin: service.CheckinService, server) -> None:
    """Sessions are accepted offline even for unknown codes."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            # Act
            result = await checkin.start_session(
                "55555555", "Lab report", "30 minutes", "PC12"
            )
        # Assert
        assert result.success
        assert result.mode == results.Mode.LOCAL
        sessions = checkin.cache.load_sessions()
        assert sessions == [
            {
                "id": 1,
                "code": "55555555",
                "activity": "Lab report",
                "duration": "30 minutes",
                "station": 12,
                "session_date": "2025-03-14",
                "start_time": "09:30:15",
                "synced": False,
            }
        ]
        assert [entry["kind"] for entry in checkin.cache.load_pending()] == ["session"]

    asyncio.run(_run())


def test_start_session_online(checkin: service.CheckinService, online_server) -> None:
    """A registered user's session goes straight to the central database."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            # Act
            result = await checkin.start_session(ANA["code"], "Thesis", None, "PCxyz")
            rows = await _store_rows(checkin, schema.sessions_table)
        # Assert
        assert result.success
        assert result.mode == results.Mode.ONLINE
        assert len(rows) == 1
        assert rows[0]["station"] == 1
        assert rows[0]["code"] == ANA["code"]
        assert str(rows[0]["session_date"]) == "2025-03-14"

    asyncio.run(_run())


def test_start_session_online_unknown_user(
    checkin: service.CheckinService, online_server
) -> None:
    """An unknown code while connected is kept in the cache, not rejected."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            # Act
            result = await checkin.start_session("55555555", "Reading", None, "PC3")
            rows = await _store_rows(checkin, schema.sessions_table)
        # Assert
        assert result.success
        assert result.mode == results.Mode.LOCAL
        assert "local mode" in result.message
        assert rows == []
        sessions = checkin.cache.load_sessions()
        assert len(sessions) == 1
        assert sessions[0]["station"] == 3
        assert not sessions[0]["synced"]

    asyncio.run(_run())


def test_register_online_while_cached_code_unsynced(
    checkin: service.CheckinService, server, clock
) -> None:
    """A code still waiting in the cache is not registered again online."""

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            server.start()
            clock.advance(checkin.settings.probe_debounce + 1)
            await checkin.manager.probe()
            # Act
            result = await checkin.register_user(**{**ANA, "name": "Someone Else"})
            rows_before_sync = await _store_rows(checkin, schema.users_table)
            await checkin.reconciler.reconcile()
            rows = await _store_rows(checkin, schema.users_table)
        # Assert
        assert not result.success
        assert result.mode == results.Mode.ONLINE
        assert result.message == router.ALREADY_REGISTERED
        assert result.redirect_to_login
        assert rows_before_sync == []
        assert [row["name"] for row in rows] == ["Ana Lopez"]

    asyncio.run(_run())


def test_register_online_loses_race(
    checkin: service.CheckinService, online_server, monkeypatch
) -> None:
    """The unique constraint rejects a code another station just registered."""

    async def _missing(conn, code):
        return None

    async def _run() -> None:
        async with checkin:
            # Arrange
            await checkin.startup()
            await checkin.register_user(**ANA)
            monkeypatch.setattr(users_mod.User, "get_by_code", staticmethod(_missing))
            # Act
            result = await checkin.register_user(**ANA)
            rows = await _store_rows(checkin, schema.users_table)
        # Assert
        assert not result.success
        assert result.mode == results.Mode.ONLINE
        assert result.message == router.ALREADY_REGISTERED
        assert len(rows) == 1
        assert checkin.manager.connected

    asyncio.run(_run())
