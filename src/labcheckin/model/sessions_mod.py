"""Station sign-ins (sessions) and their cache representation.

Dates and times are local wall-clock values, never UTC. The lab reports on
the calendar day on which a student sat down, not the UTC day.
"""

import dataclasses
import datetime
import re
from typing import Any, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.ext import asyncio as sa_asyncio

from labcheckin.model import schema


STATION_PATTERN = re.compile(r"^\s*(?:PC)?\s*(\d+)", re.IGNORECASE)
"""Leading digits after an optional PC prefix."""
DEFAULT_STATION = 1


def parse_station(label: Optional[str | int]) -> int:
    """Convert a station label such as "PC7" to its number.

    Labels that contain no number, or the number 0, map to station 1.
    """
    if isinstance(label, int):
        return label or DEFAULT_STATION
    match = STATION_PATTERN.match(label or "")
    if match is None:
        return DEFAULT_STATION
    return int(match.group(1)) or DEFAULT_STATION


def local_date(now: Optional[datetime.datetime] = None) -> datetime.date:
    """Today's date in the local timezone."""
    return (now or datetime.datetime.now()).date()


def local_time(now: Optional[datetime.datetime] = None) -> datetime.time:
    """Current local time of day, to the second."""
    return (now or datetime.datetime.now()).time().replace(microsecond=0)


@dataclasses.dataclass
class Session:
    """A user signing in at a lab station."""

    id: Optional[int]
    code: str
    activity: Optional[str]
    duration: Optional[str]
    station: int
    session_date: datetime.date
    start_time: datetime.time
    synced: bool

    def __init__(
        self,
        id: Optional[int],
        code: str | int,
        activity: Optional[str],
        duration: Optional[str],
        station: Optional[int | str],
        session_date: datetime.date | str,
        start_time: datetime.time | str,
        synced: bool = False,
    ) -> None:
        """Convert dates, times and station labels."""
        if isinstance(session_date, str):
            session_date = datetime.date.fromisoformat(session_date[:10])
        elif isinstance(session_date, datetime.datetime):
            session_date = session_date.date()
        if isinstance(start_time, str):
            start_time = datetime.time.fromisoformat(start_time)
        self.id = id
        self.code = str(code)
        self.activity = activity
        self.duration = duration
        self.station = parse_station(station)
        self.session_date = session_date
        self.start_time = start_time.replace(microsecond=0, tzinfo=None)
        self.synced = synced

    @classmethod
    def start_now(
        cls,
        code: str,
        activity: Optional[str],
        duration: Optional[str],
        station_label: Optional[str],
        now: datetime.datetime,
    ) -> "Session":
        """A new, not yet stored, session starting at now."""
        return cls(
            id=None,
            code=code,
            activity=activity,
            duration=duration,
            station=parse_station(station_label),
            session_date=local_date(now),
            start_time=local_time(now),
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Session":
        """Build a Session from a central database row."""
        return cls(
            id=row["id"],
            code=row["code"],
            activity=row["activity"],
            duration=row["duration"],
            station=row["station"],
            session_date=row["session_date"],
            start_time=row["start_time"],
            synced=True,
        )

    @classmethod
    def from_cache(cls, record: Mapping[str, Any]) -> "Session":
        """Build a Session from a record in the cache file."""
        return cls(
            id=record.get("id"),
            code=record["code"],
            activity=record.get("activity"),
            duration=record.get("duration"),
            station=record.get("station"),
            session_date=record["session_date"],
            start_time=record["start_time"],
            synced=bool(record.get("synced", False)),
        )

    def to_row(self) -> dict[str, Any]:
        """Column values for an insert, without the id."""
        return {
            "code": self.code,
            "activity": self.activity,
            "duration": self.duration,
            "station": self.station,
            "session_date": self.session_date,
            "start_time": self.start_time,
        }

    async def insert(self, conn: sa_asyncio.AsyncConnection) -> int:
        """Add the Session to the central database.

        Returns:
            The id assigned by the database.
        """
        result = await conn.execute(
            sa.insert(schema.sessions_table).values(**self.to_row())
        )
        return result.inserted_primary_key[0]

    @staticmethod
    async def get_all(conn: sa_asyncio.AsyncConnection) -> list["Session"]:
        """Retrieve all sessions, newest first."""
        query = sa.select(schema.sessions_table).order_by(
            schema.sessions_table.c.id.desc()
        )
        return [
            Session.from_row(row) for row in (await conn.execute(query)).mappings()
        ]

    def to_dict(self) -> dict[str, Any]:
        """Convert the Session to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "code": self.code,
            "activity": self.activity,
            "duration": self.duration,
            "station": self.station,
            "session_date": self.session_date.isoformat(),
            "start_time": self.start_time.isoformat(),
            "synced": self.synced,
        }
