"""Local JSON cache used while the central database is unreachable.

The cache is three whole-file JSON arrays in the data directory:

* users.json: user records, each with a ``synced`` flag.
* sessions.json: session records, each with a ``synced`` flag.
* pending.json: an audit trail of offline writes. Reconciliation scans the
  ``synced`` flags, it does not replay this log.

Files are rewritten completely on every save. There is no file locking, so
only one kiosk process may use a data directory.
"""

import json
import logging
import os
import pathlib
import tempfile
from typing import Any


logger = logging.getLogger(__name__)

USERS_FILE_NAME = "users.json"
SESSIONS_FILE_NAME = "sessions.json"
PENDING_FILE_NAME = "pending.json"

Record = dict[str, Any]


class CacheError(Exception):
    """A cache file could not be read or written."""


class CacheStore:
    """Read and write the cache files."""

    data_dir: pathlib.Path
    """Folder that holds the cache files."""

    def __init__(self, data_dir: pathlib.Path) -> None:
        """Set the data directory. It is created on the first write."""
        self.data_dir = data_dir

    @property
    def users_path(self) -> pathlib.Path:
        return self.data_dir / USERS_FILE_NAME

    @property
    def sessions_path(self) -> pathlib.Path:
        return self.data_dir / SESSIONS_FILE_NAME

    @property
    def pending_path(self) -> pathlib.Path:
        return self.data_dir / PENDING_FILE_NAME

    def load_users(self) -> list[Record]:
        return self._read(self.users_path)

    def save_users(self, records: list[Record]) -> None:
        self._write(self.users_path, records)

    def load_sessions(self) -> list[Record]:
        return self._read(self.sessions_path)

    def save_sessions(self, records: list[Record]) -> None:
        self._write(self.sessions_path, records)

    def load_pending(self) -> list[Record]:
        return self._read(self.pending_path)

    def append_pending(self, kind: str, payload: Record) -> None:
        """Add an entry to the pending-operations log."""
        pending = self.load_pending()
        pending.append({"kind": kind, "payload": payload})
        self._write(self.pending_path, pending)

    def clear_pending(self) -> bool:
        """Empty the pending-operations log.

        Returns:
            False if the log could not be cleared. The log is only an audit
            trail, so callers carry on either way.
        """
        try:
            self._write(self.pending_path, [])
        except CacheError:
            return False
        return True

    def has_unsynced(self) -> bool:
        """True if any cached user or session is not yet in the central database."""
        return any(
            not record.get("synced", False)
            for record in [*self.load_users(), *self.load_sessions()]
        )

    @staticmethod
    def next_id(records: list[Record]) -> int:
        """Placeholder id for a new record, unique within one cache file."""
        return max((record.get("id") or 0 for record in records), default=0) + 1

    @staticmethod
    def _read(path: pathlib.Path) -> list[Record]:
        """Read a JSON array. A missing or empty file is an empty list."""
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as err:
            logger.error("Unable to read cache file %s: %s", path, err)
            raise CacheError(f"Unable to read {path.name}: {err}") from err
        if not content.strip():
            return []
        try:
            data = json.loads(content)
        except json.JSONDecodeError as err:
            logger.error("Cache file %s is corrupt: %s", path, err)
            raise CacheError(f"Cache file {path.name} is corrupt: {err}") from err
        if not isinstance(data, list):
            raise CacheError(f"Cache file {path.name} does not hold a list.")
        return data

    def _write(self, path: pathlib.Path, records: list[Record]) -> None:
        """Replace a cache file with new contents."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.data_dir, prefix=f".{path.stem}-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "wt", encoding="utf-8") as jfile:
                    json.dump(records, jfile, indent=2, ensure_ascii=False)
                os.replace(tmp_name, path)
            except BaseException:
                pathlib.Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as err:
            logger.error("Unable to write cache file %s: %s", path, err)
            raise CacheError(f"Unable to write {path.name}: {err}") from err
