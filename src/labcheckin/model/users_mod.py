"""Lab users and their cache representation."""

import dataclasses
import datetime
import enum
from typing import Any, Mapping, Optional

import sqlalchemy as sa
from sqlalchemy.ext import asyncio as sa_asyncio

from labcheckin.model import schema


class Profile(enum.StrEnum):
    """Categories offered on the registration form.

    The persistence layer accepts any string.
    """

    STUDENT = "Student"
    FACULTY = "Faculty"
    OTHER = "Other"


@dataclasses.dataclass
class User:
    """A registered lab user."""

    id: Optional[int]
    code: str
    name: str
    profile: str
    school: str
    registered_at: datetime.datetime
    synced: bool

    def __init__(
        self,
        id: Optional[int],
        code: str | int,
        name: str,
        profile: str,
        school: str,
        registered_at: Optional[datetime.datetime | datetime.date | str] = None,
        synced: bool = False,
    ) -> None:
        """Ensure code is a string and registered_at a datetime."""
        if registered_at is None:
            registered_at = datetime.datetime.now()
        elif isinstance(registered_at, str):
            registered_at = datetime.datetime.fromisoformat(registered_at)
        elif not isinstance(registered_at, datetime.datetime):
            registered_at = datetime.datetime.combine(registered_at, datetime.time())
        self.id = id
        self.code = str(code)
        self.name = name
        self.profile = str(profile)
        self.school = school
        self.registered_at = registered_at.replace(tzinfo=None, microsecond=0)
        self.synced = synced

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        """Build a User from a central database row."""
        return cls(
            id=row["id"],
            code=row["code"],
            name=row["name"],
            profile=row["profile"],
            school=row["school"],
            registered_at=row["registered_at"],
            synced=True,
        )

    @classmethod
    def from_cache(cls, record: Mapping[str, Any]) -> "User":
        """Build a User from a record in the cache file."""
        return cls(
            id=record.get("id"),
            code=record["code"],
            name=record.get("name", ""),
            profile=record.get("profile", ""),
            school=record.get("school", ""),
            registered_at=record.get("registered_at"),
            synced=bool(record.get("synced", False)),
        )

    def to_row(self) -> dict[str, Any]:
        """Column values for an insert, without the id."""
        return {
            "code": self.code,
            "name": self.name,
            "profile": self.profile,
            "school": self.school,
            "registered_at": self.registered_at,
        }

    async def insert(self, conn: sa_asyncio.AsyncConnection) -> int:
        """Add the User to the central database.

        Returns:
            The id assigned by the database.
        """
        result = await conn.execute(
            sa.insert(schema.users_table).values(**self.to_row())
        )
        return result.inserted_primary_key[0]

    @staticmethod
    async def get_by_code(
        conn: sa_asyncio.AsyncConnection, code: str | int
    ) -> Optional["User"]:
        """Retrieve a User from the central database by code."""
        query = sa.select(schema.users_table).where(
            schema.users_table.c.code == str(code)
        )
        row = (await conn.execute(query)).mappings().first()
        if row is None:
            return None
        return User.from_row(row)

    @staticmethod
    async def get_all(conn: sa_asyncio.AsyncConnection) -> list["User"]:
        """Retrieve all users, newest first."""
        query = sa.select(schema.users_table).order_by(schema.users_table.c.id.desc())
        return [User.from_row(row) for row in (await conn.execute(query)).mappings()]

    def to_dict(self) -> dict[str, Any]:
        """Convert the User to a JSON-serializable dictionary."""
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "profile": self.profile,
            "school": self.school,
            "registered_at": self.registered_at.isoformat(),
            "synced": self.synced,
        }
