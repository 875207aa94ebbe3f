"""
PostgreSQL Stores

Durable implementations of ReportStore and IdentityStore on psycopg2.

Provides:
- Durability (reports survive restarts)
- Multi-instance support (shared database)
- Atomic update() via SELECT ... FOR UPDATE row locks
- Statement/lock timeouts so a stuck request cannot hang the API

THREAD SAFETY:
Each operation opens its own connection from the factory and closes it
before returning. No connection or cursor is kept on the store, so one
store instance can be shared across threads.

Requirements:
- PostgreSQL 12+
- Tables created from schema.sql (see apply_schema / manage.py init-db)
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generator, Optional
from uuid import UUID

from psycopg2.extras import Json

from ..schemas import Report, StoredIdentity
from .store import (
    DuplicateRecordError,
    IdentityMutator,
    IdentityStore,
    RecordNotFoundError,
    ReportMutator,
    ReportStore,
    StoreError,
)


SCHEMA_FILE = Path(__file__).parent / "schema.sql"

# psycopg2 error codes
PGCODE_UNIQUE_VIOLATION = "23505"
PGCODE_LOCK_NOT_AVAILABLE = "55P03"
PGCODE_QUERY_CANCELED = "57014"

_REPORT_COLUMNS = (
    "id, title, description, location, status, created_at, updated_at, "
    "author_id, author_name, media, comments, schema_version"
)
_IDENTITY_COLUMNS = (
    "id, name, email, role, avatar, password_hash, created_at, schema_version"
)


def apply_schema(connection_factory: Callable[[], Any]) -> None:
    """Create tables and indexes if they do not exist."""
    conn = connection_factory()
    try:
        with conn.cursor() as cursor:
            cursor.execute(SCHEMA_FILE.read_text())
        conn.commit()
    finally:
        conn.close()


class _PostgresBase:
    """Connection handling shared by both stores."""

    # Timeouts to prevent hanging under load
    LOCK_TIMEOUT_MS = 2000
    STATEMENT_TIMEOUT_MS = 10000

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        """
        Args:
            connection_factory: Callable that returns a psycopg2 connection.
            lock_timeout_ms: How long to wait for a row lock (ms).
            statement_timeout_ms: Max statement execution time (ms).
        """
        self._connection_factory = connection_factory
        self._lock_timeout_ms = lock_timeout_ms
        self._statement_timeout_ms = statement_timeout_ms

    @contextmanager
    def _transaction(self) -> Generator[Any, None, None]:
        """
        Yield a cursor inside a transaction.

        Commits on clean exit, rolls back on any exception, always closes
        the connection.
        """
        conn = self._connection_factory()
        conn.autocommit = False
        cursor = conn.cursor()
        try:
            # SET LOCAL keeps the timeouts transaction-scoped
            cursor.execute(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'")
            cursor.execute(f"SET LOCAL statement_timeout = '{self._statement_timeout_ms}ms'")
            yield cursor
            conn.commit()
        except Exception as e:
            conn.rollback()
            self._translate(e)
            raise
        finally:
            try:
                cursor.close()
            finally:
                conn.close()

    def _translate(self, e: Exception) -> None:
        """Re-raise driver errors we understand as StoreError subclasses."""
        pgcode = getattr(e, "pgcode", None)
        if pgcode == PGCODE_UNIQUE_VIOLATION:
            raise DuplicateRecordError(str(e).strip()) from e
        if pgcode == PGCODE_LOCK_NOT_AVAILABLE:
            raise StoreError("Record busy - could not acquire lock. Try again.") from e
        if pgcode == PGCODE_QUERY_CANCELED:
            # 57014 covers both lock_timeout and statement_timeout
            err_msg = (getattr(e, "pgerror", None) or str(e)).lower()
            if "lock timeout" in err_msg:
                raise StoreError("Record busy - could not acquire lock. Try again.") from e
            raise StoreError("Query timed out - statement took too long.") from e


# ============================================================
# REPORTS
# ============================================================

def _report_from_row(row) -> Report:
    return Report(
        id=row[0],
        title=row[1],
        description=row[2],
        location=row[3],
        status=row[4],
        created_at=row[5],
        updated_at=row[6],
        author_id=row[7],
        author_name=row[8],
        media=row[9] or [],
        comments=row[10] or [],
        schema_version=row[11],
    )


def _report_params(report: Report) -> tuple:
    data = report.model_dump(mode="json", include={"media", "comments"})
    return (
        str(report.id),
        report.title,
        report.description,
        report.location,
        report.status.value,
        report.created_at,
        report.updated_at,
        str(report.author_id),
        report.author_name,
        Json(data["media"]),
        Json(data["comments"]),
        report.schema_version,
    )


class PostgresReportStore(_PostgresBase, ReportStore):
    """
    PostgreSQL implementation of ReportStore.

    Media and comments are JSONB arrays on the report row; a report is
    always read and written as a whole.
    """

    def create(self, report: Report) -> Report:
        with self._transaction() as cursor:
            cursor.execute(
                f"INSERT INTO reports ({_REPORT_COLUMNS}) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                _report_params(report),
            )
        return report

    def get_by_id(self, report_id: UUID) -> Optional[Report]:
        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT {_REPORT_COLUMNS} FROM reports WHERE id = %s",
                (str(report_id),),
            )
            row = cursor.fetchone()
        return _report_from_row(row) if row else None

    def list_all(self) -> list[Report]:
        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT {_REPORT_COLUMNS} FROM reports ORDER BY created_at, id"
            )
            rows = cursor.fetchall()
        return [_report_from_row(row) for row in rows]

    def update(self, report_id: UUID, mutate: ReportMutator) -> Report:
        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT {_REPORT_COLUMNS} FROM reports WHERE id = %s FOR UPDATE",
                (str(report_id),),
            )
            row = cursor.fetchone()
            if row is None:
                raise RecordNotFoundError(f"Report {report_id} does not exist")

            updated = mutate(_report_from_row(row))
            if updated.id != report_id:
                raise StoreError("update() must not change the report id")

            params = _report_params(updated)
            cursor.execute(
                """
                UPDATE reports SET
                    title = %s, description = %s, location = %s, status = %s,
                    created_at = %s, updated_at = %s, author_id = %s,
                    author_name = %s, media = %s, comments = %s,
                    schema_version = %s
                WHERE id = %s
                """,
                params[1:] + (params[0],),
            )
        return updated

    def count(self) -> int:
        with self._transaction() as cursor:
            cursor.execute("SELECT count(*) FROM reports")
            return cursor.fetchone()[0]


# ============================================================
# IDENTITIES
# ============================================================

def _identity_from_row(row) -> StoredIdentity:
    return StoredIdentity(
        id=row[0],
        name=row[1],
        email=row[2],
        role=row[3],
        avatar=row[4],
        password_hash=row[5],
        created_at=row[6],
        schema_version=row[7],
    )


def _identity_params(identity: StoredIdentity) -> tuple:
    return (
        str(identity.id),
        identity.name,
        identity.email,
        identity.role.value,
        identity.avatar,
        identity.password_hash,
        identity.created_at,
        identity.schema_version,
    )


class PostgresIdentityStore(_PostgresBase, IdentityStore):
    """PostgreSQL implementation of IdentityStore."""

    def create(self, identity: StoredIdentity) -> StoredIdentity:
        with self._transaction() as cursor:
            cursor.execute(
                f"INSERT INTO identities ({_IDENTITY_COLUMNS}) "
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
                _identity_params(identity),
            )
        return identity

    def get_by_id(self, identity_id: UUID) -> Optional[StoredIdentity]:
        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM identities WHERE id = %s",
                (str(identity_id),),
            )
            row = cursor.fetchone()
        return _identity_from_row(row) if row else None

    def get_by_email(self, email: str) -> Optional[StoredIdentity]:
        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM identities WHERE lower(email) = lower(%s)",
                (email,),
            )
            row = cursor.fetchone()
        return _identity_from_row(row) if row else None

    def list_all(self) -> list[StoredIdentity]:
        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM identities ORDER BY created_at, id"
            )
            rows = cursor.fetchall()
        return [_identity_from_row(row) for row in rows]

    def update(self, identity_id: UUID, mutate: IdentityMutator) -> StoredIdentity:
        with self._transaction() as cursor:
            cursor.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM identities WHERE id = %s FOR UPDATE",
                (str(identity_id),),
            )
            row = cursor.fetchone()
            if row is None:
                raise RecordNotFoundError(f"Identity {identity_id} does not exist")

            current = _identity_from_row(row)
            updated = mutate(current)
            if updated.id != current.id or updated.email.lower() != current.email.lower():
                raise StoreError("update() must not change identity id or email")

            cursor.execute(
                """
                UPDATE identities SET
                    name = %s, role = %s, avatar = %s, password_hash = %s
                WHERE id = %s
                """,
                (
                    updated.name,
                    updated.role.value,
                    updated.avatar,
                    updated.password_hash,
                    str(identity_id),
                ),
            )
        return updated

    def delete(self, identity_id: UUID) -> bool:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM identities WHERE id = %s", (str(identity_id),))
            return cursor.rowcount > 0

    def count(self) -> int:
        with self._transaction() as cursor:
            cursor.execute("SELECT count(*) FROM identities")
            return cursor.fetchone()[0]
