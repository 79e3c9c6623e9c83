"""Result objects returned to the kiosk by every core operation.

Each operation has its own result class with a fixed set of fields. No
operation raises; failures come back as a result with success False and a
message the kiosk can show next to the online/local indicator.
"""

import dataclasses
import enum
from typing import Any, Optional

from labcheckin.model import users_mod


class Mode(enum.StrEnum):
    """Where an operation was carried out."""

    ONLINE = "online"
    LOCAL = "local"


class LookupStatus(enum.StrEnum):
    """Outcome of looking up a user by code."""

    FOUND = "found"
    NOT_REGISTERED = "not_registered"
    ERROR = "error"


@dataclasses.dataclass(frozen=True)
class WriteResult:
    """Outcome of registering a user or starting a session."""

    success: bool
    message: str
    mode: Mode
    redirect_to_login: bool = False
    needs_registration: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "mode": str(self.mode),
            "redirectToLogin": self.redirect_to_login,
            "needsRegistration": self.needs_registration,
        }


@dataclasses.dataclass(frozen=True)
class LookupResult:
    """Outcome of finding a user by code."""

    status: LookupStatus
    mode: Mode
    user: Optional[users_mod.User] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status == LookupStatus.FOUND

    @property
    def needs_registration(self) -> bool:
        return self.status == LookupStatus.NOT_REGISTERED

    def to_dict(self) -> dict[str, Any]:
        return {
            "user": self.user.to_dict() if self.user else None,
            "error": self.error,
            "needsRegistration": self.needs_registration,
            "mode": str(self.mode),
        }


@dataclasses.dataclass(frozen=True)
class SyncResult:
    """Outcome of pushing cached records to the central database."""

    success: bool
    message: str
    users_synced: int = 0
    sessions_synced: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclasses.dataclass(frozen=True)
class RefreshResult:
    """Outcome of copying the central database into the cache."""

    refreshed: bool
    reason: str = ""
    users: int = 0
    sessions: int = 0


@dataclasses.dataclass(frozen=True)
class PageResult:
    """One page of users or sessions for the admin screen."""

    success: bool
    data: list[dict[str, Any]] = dataclasses.field(default_factory=list)
    total: int = 0
    mode: Optional[Mode] = None
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "data": self.data,
            "total": self.total,
            "mode": str(self.mode) if self.mode else None,
        }
        if self.message is not None:
            result["message"] = self.message
        return result


@dataclasses.dataclass(frozen=True)
class DeleteResult:
    """Outcome of an admin delete."""

    success: bool
    message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.message is not None:
            result["message"] = self.message
        return result


@dataclasses.dataclass(frozen=True)
class ConnectionStatus:
    """Connection state shown in the kiosk status line."""

    connected: bool
    endpoint: Optional[str]

    @property
    def mode(self) -> Mode:
        return Mode.ONLINE if self.connected else Mode.LOCAL
