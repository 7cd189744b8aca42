"""Record store: create/read/update/delete/search over the SQLite tables.

Collections return plain dictionaries, ``None`` for a missing id and
``False`` for a delete that removed nothing. Raising on missing records is
the job of :class:`~justdogs.training.system.TrainingSystem`.

Users and messages get random hex ids so records written to the local
fallback never reuse an id the remote store has handed out.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Sequence

from .database import get_connection, initialize_database
from .errors import ConflictError, TransportError, ValidationError
from .search import filter_records

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Collection:
    """One table exposed through the record CRUD contract."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        table: str,
        columns: Sequence[str],
        *,
        json_columns: Sequence[str] = (),
        bool_columns: Sequence[str] = (),
        versioned: bool = False,
        text_ids: bool = False,
        lock: threading.RLock | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.conn = conn
        self.table = table
        self.columns = tuple(columns)
        self.json_columns = frozenset(json_columns)
        self.bool_columns = frozenset(bool_columns)
        self.versioned = versioned
        self.text_ids = text_ids
        self._lock = lock or threading.RLock()
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _guard(self) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except sqlite3.IntegrityError as exc:
                self.conn.rollback()
                raise ValidationError(f"{self.table}: {exc}") from exc
            except sqlite3.OperationalError as exc:
                raise TransportError(f"{self.table}: {exc}") from exc

    def _encode(self, column: str, value: Any) -> Any:
        if isinstance(value, Enum):
            value = value.value
        if value is None:
            return None
        if column in self.json_columns:
            return json.dumps(value)
        if column in self.bool_columns:
            return int(bool(value))
        return value

    def _decode(self, row: dict | None) -> dict | None:
        if row is None:
            return None
        for column in self.json_columns:
            if row.get(column) is not None:
                row[column] = json.loads(row[column])
        for column in self.bool_columns:
            if row.get(column) is not None:
                row[column] = bool(row[column])
        return row

    def _timestamp(self, after: str | None = None) -> str:
        stamp = self._clock()
        if after:
            previous = dt.datetime.fromisoformat(after)
            if stamp <= previous:
                stamp = previous + dt.timedelta(microseconds=1)
        return stamp.isoformat(timespec="microseconds")

    def _check_columns(self, names: Sequence[str]) -> None:
        unknown = set(names) - set(self.columns) - {"id"}
        if unknown:
            raise ValidationError(f"Unknown {self.table} field(s): {', '.join(sorted(unknown))}")

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    def create(self, record: Mapping[str, Any]) -> dict:
        values = {key: self._encode(key, value) for key, value in record.items() if key in self.columns}
        if self.text_ids:
            values["id"] = uuid.uuid4().hex
        with self._guard():
            now = self._timestamp()
            values["created_at"] = now
            values["updated_at"] = now
            names = ", ".join(values)
            placeholders = ", ".join("?" for _ in values)
            cur = self.conn.execute(
                f"INSERT INTO {self.table}({names}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            self.conn.commit()
            return self.get_by_id(values["id"] if self.text_ids else cur.lastrowid)

    def get_all(self) -> list[dict]:
        with self._guard():
            rows = self.conn.execute(f"SELECT * FROM {self.table} ORDER BY rowid").fetchall()
        return [self._decode(row) for row in rows]

    def get_by_id(self, record_id: int | str) -> dict | None:
        with self._guard():
            row = self.conn.execute(
                f"SELECT * FROM {self.table} WHERE id = ?", (record_id,)
            ).fetchone()
        return self._decode(row)

    def find(self, **equals: Any) -> list[dict]:
        """Return records whose columns equal the given values, in insertion order."""

        self._check_columns(list(equals))
        conditions: list[str] = []
        params: list[Any] = []
        for column, value in equals.items():
            if value is None:
                conditions.append(f"{column} IS NULL")
            else:
                conditions.append(f"{column} = ?")
                params.append(self._encode(column, value))
        where = " WHERE " + " AND ".join(conditions) if conditions else ""
        with self._guard():
            rows = self.conn.execute(
                f"SELECT * FROM {self.table}{where} ORDER BY rowid", params
            ).fetchall()
        return [self._decode(row) for row in rows]

    def update(
        self,
        record_id: int | str,
        changes: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> dict | None:
        """Apply ``changes`` and refresh ``updated_at``.

        Versioned tables also bump ``version``. When ``expected_version`` is
        given and no longer matches, ``ConflictError`` is raised and nothing
        is written.
        """

        values = {key: self._encode(key, value) for key, value in changes.items() if key in self.columns}
        with self._guard():
            current = self.conn.execute(
                f"SELECT * FROM {self.table} WHERE id = ?", (record_id,)
            ).fetchone()
            if current is None:
                return None
            if self.versioned and expected_version is not None and current["version"] != expected_version:
                raise ConflictError(
                    f"{self.table} {record_id} was modified (version {current['version']}, "
                    f"expected {expected_version})"
                )
            values["updated_at"] = self._timestamp(after=current["updated_at"])
            assignments = [f"{column} = ?" for column in values]
            params: list[Any] = list(values.values())
            where = "id = ?"
            params.append(record_id)
            if self.versioned:
                assignments.append("version = version + 1")
                where += " AND version = ?"
                params.append(current["version"])
            cur = self.conn.execute(
                f"UPDATE {self.table} SET {', '.join(assignments)} WHERE {where}", params
            )
            if cur.rowcount == 0:
                self.conn.rollback()
                raise ConflictError(f"{self.table} {record_id} was modified concurrently")
            self.conn.commit()
            return self.get_by_id(record_id)

    def delete(self, record_id: int | str) -> bool:
        with self._guard():
            cur = self.conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (record_id,))
            self.conn.commit()
        return cur.rowcount > 0

    def search(self, term: str | None, fields: Sequence[str], **scope: Any) -> list[dict]:
        records = self.find(**scope) if scope else self.get_all()
        return filter_records(records, term, fields)


class FallbackCollection:
    """Send calls to ``primary`` and repeat them on ``fallback`` when it is unreachable.

    Records written to ``fallback`` during an outage stay reachable once
    ``primary`` is back: lookups that ``primary`` cannot answer go to
    ``fallback`` and listings include the records only ``fallback`` holds.
    Both collections must use ``text_ids`` so their ids never collide.
    """

    def __init__(self, primary: Collection, fallback: Collection) -> None:
        if not (primary.text_ids and fallback.text_ids):
            raise ValueError(f"{primary.table}: fallback collections need text ids")
        self.primary = primary
        self.fallback = fallback
        self.table = primary.table

    def _warn(self, method: str, exc: TransportError) -> None:
        logger.warning("Remote %s.%s failed, falling back to local database: %s", self.table, method, exc)

    def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return getattr(self.primary, method)(*args, **kwargs)
        except TransportError as exc:
            self._warn(method, exc)
            return getattr(self.fallback, method)(*args, **kwargs)

    def _either(self, method: str, *args: Any, **kwargs: Any) -> Any:
        try:
            result = getattr(self.primary, method)(*args, **kwargs)
        except TransportError as exc:
            self._warn(method, exc)
            result = None
        if result:
            return result
        return getattr(self.fallback, method)(*args, **kwargs)

    def _gather(self, method: str, **kwargs: Any) -> list[dict]:
        try:
            rows = getattr(self.primary, method)(**kwargs)
        except TransportError as exc:
            self._warn(method, exc)
            return getattr(self.fallback, method)(**kwargs)
        seen = {row["id"] for row in rows}
        return rows + [row for row in getattr(self.fallback, method)(**kwargs) if row["id"] not in seen]

    def create(self, record: Mapping[str, Any]) -> dict:
        return self._call("create", record)

    def get_all(self) -> list[dict]:
        return self._gather("get_all")

    def get_by_id(self, record_id: str) -> dict | None:
        return self._either("get_by_id", record_id)

    def find(self, **equals: Any) -> list[dict]:
        return self._gather("find", **equals)

    def update(
        self, record_id: str, changes: Mapping[str, Any], *, expected_version: int | None = None
    ) -> dict | None:
        return self._either("update", record_id, changes, expected_version=expected_version)

    def delete(self, record_id: str) -> bool:
        return self._either("delete", record_id)

    def search(self, term: str | None, fields: Sequence[str], **scope: Any) -> list[dict]:
        records = self.find(**scope) if scope else self.get_all()
        return filter_records(records, term, fields)


class RecordStore:
    """All collections of one database, sharing a connection and a write lock.

    When ``remote`` is given, dogs, bookings and sessions live there, users
    and messages use it with this store as the local fallback, and sign-in
    sessions and assessments stay local.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        remote: "RecordStore | None" = None,
        clock: Clock = utc_now,
    ) -> None:
        self.conn = conn
        self.remote = remote
        self._lock = threading.RLock()
        initialize_database(conn)

        def collection(table: str, columns: Sequence[str], **options: Any) -> Collection:
            return Collection(conn, table, columns, lock=self._lock, clock=clock, **options)

        users = collection(
            "users",
            ("email", "password_hash", "full_name", "role", "phone", "avatar_url", "confirmed"),
            bool_columns=("confirmed",),
            text_ids=True,
        )
        self.auth_sessions = collection("auth_sessions", ("token", "user_id"))
        dogs = collection(
            "dogs",
            (
                "name",
                "breed",
                "age",
                "weight",
                "owner_id",
                "medical_notes",
                "behavioral_notes",
                "vaccine_records",
                "preferences",
                "emergency_contact",
                "photo_url",
            ),
            json_columns=("emergency_contact",),
        )
        bookings = collection(
            "bookings",
            (
                "dog_id",
                "trainer_id",
                "parent_id",
                "booking_type",
                "training_level",
                "consult_type",
                "status",
                "start_time",
                "end_time",
                "special_instructions",
                "location",
            ),
            versioned=True,
        )
        sessions = collection(
            "sessions",
            (
                "booking_id",
                "trainer_id",
                "parent_id",
                "dog_id",
                "status",
                "start_time",
                "end_time",
                "notes",
                "progress_rating",
                "behavior_rating",
                "photos",
            ),
            json_columns=("photos",),
            versioned=True,
        )
        messages = collection(
            "messages",
            (
                "sender_id",
                "recipient_id",
                "subject",
                "content",
                "is_announcement",
                "target_roles",
                "read_at",
            ),
            json_columns=("target_roles",),
            bool_columns=("is_announcement",),
            text_ids=True,
        )
        self.assessments = collection(
            "assessments", ("code", "answers", "result"), json_columns=("answers", "result")
        )

        if remote is None:
            self.users = users
            self.dogs = dogs
            self.bookings = bookings
            self.sessions = sessions
            self.messages = messages
        else:
            self.users = FallbackCollection(remote.users, users)
            self.messages = FallbackCollection(remote.messages, messages)
            self.dogs = remote.dogs
            self.bookings = remote.bookings
            self.sessions = remote.sessions

    @classmethod
    def open(
        cls,
        path: str | Path = ":memory:",
        *,
        remote_path: str | Path | None = None,
        clock: Clock = utc_now,
    ) -> "RecordStore":
        """Open the local database and, if configured, the remote one.

        A remote store that cannot be opened is logged and skipped so the
        platform keeps working from local storage.
        """

        remote = None
        if remote_path:
            try:
                remote = cls(get_connection(remote_path), clock=clock)
            except sqlite3.OperationalError as exc:
                logger.warning("Remote store %s unavailable, using local storage only: %s", remote_path, exc)
        return cls(get_connection(path), remote=remote, clock=clock)

    def close(self) -> None:
        if self.remote is not None:
            self.remote.close()
        self.conn.close()
