"""
PostgreSQL repository adapters - Implement the repository protocols.

This module provides the PostgreSQL implementations of the domain's
repository ports using psycopg3 with raw SQL.

Concurrency Design - Per-Key Serialization:
------------------------------------------
Every transaction first takes a transaction-scoped advisory lock on its
key (``pg_advisory_xact_lock``). This serializes read-modify-write cycles
for one verification key or one user even when the row does not exist
yet, which ``SELECT ... FOR UPDATE`` alone cannot do. Different keys hash
to different locks and run in parallel. The lock is released automatically
on commit or rollback.

Any psycopg error raised while the transaction is open is translated into
StorageConflict; the transaction is rolled back and nothing is retried.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import psycopg
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from account_guard.domain.exceptions import StorageConflict
from account_guard.domain.models import DeviceSession, Fingerprint, UserAccount, VerificationRecord
from account_guard.domain.ports import DeviceClass, Purpose, UserStatus

logger = logging.getLogger(__name__)

_LOCK_SQL = "SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))"


class _PostgresVerificationUnit:
    """Unit of work writing through the open transaction."""

    def __init__(
        self,
        conn: psycopg.Connection,
        purpose: Purpose,
        email: str,
        record: VerificationRecord | None,
    ) -> None:
        self._conn = conn
        self._purpose = purpose
        self._email = email
        self._record = record

    def get(self) -> VerificationRecord | None:
        return self._record

    def put(self, record: VerificationRecord) -> None:
        sql = """
            INSERT INTO verification_codes
                (purpose, email, code_hash, expires_at, attempts, created_at, origin_ip)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (purpose, email) DO UPDATE
            SET code_hash = EXCLUDED.code_hash,
                expires_at = EXCLUDED.expires_at,
                attempts = EXCLUDED.attempts,
                created_at = EXCLUDED.created_at,
                origin_ip = EXCLUDED.origin_ip
        """
        self._conn.execute(
            sql,
            (
                self._purpose.value,
                self._email,
                record.code_hash,
                record.expires_at,
                record.attempts,
                record.created_at,
                record.origin_ip,
            ),
        )
        self._record = record

    def delete(self) -> None:
        self._conn.execute(
            "DELETE FROM verification_codes WHERE purpose = %s AND email = %s",
            (self._purpose.value, self._email),
        )
        self._record = None


class PostgresVerificationRepository:
    """
    Implements VerificationRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize repository with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    @contextmanager
    def transaction(self, purpose: Purpose, email: str) -> Iterator[_PostgresVerificationUnit]:
        select_sql = """
            SELECT code_hash, expires_at, attempts, created_at, origin_ip
            FROM verification_codes
            WHERE purpose = %s AND email = %s
            FOR UPDATE
        """
        try:
            with self._pool.connection() as conn, conn.transaction():
                conn.execute(_LOCK_SQL, (f"verification:{purpose.value}:{email}",))
                row = conn.execute(select_sql, (purpose.value, email)).fetchone()
                record = None
                if row is not None:
                    record = VerificationRecord(
                        purpose=purpose,
                        email=email,
                        code_hash=row[0],
                        expires_at=row[1],
                        attempts=row[2],
                        created_at=row[3],
                        origin_ip=row[4],
                    )
                yield _PostgresVerificationUnit(conn, purpose, email, record)
        except psycopg.Error as e:
            logger.error("Verification transaction failed for %s: %s", purpose.value, e)
            raise StorageConflict("verification transaction failed") from e


class _PostgresAccountUnit:
    def __init__(self, conn: psycopg.Connection, account: UserAccount | None) -> None:
        self._conn = conn
        self._account = account

    def get(self) -> UserAccount | None:
        return self._account

    def put(self, account: UserAccount) -> None:
        sql = """
            INSERT INTO user_accounts
                (user_id, email, display_name, photo_url, about, devices, status,
                 email_verified, created_at, updated_at, last_active_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, COALESCE(%s, NOW()), NOW(), %s)
            ON CONFLICT (user_id) DO UPDATE
            SET email = EXCLUDED.email,
                display_name = EXCLUDED.display_name,
                photo_url = EXCLUDED.photo_url,
                about = EXCLUDED.about,
                devices = EXCLUDED.devices,
                status = EXCLUDED.status,
                email_verified = EXCLUDED.email_verified,
                updated_at = NOW(),
                last_active_at = EXCLUDED.last_active_at
        """
        self._conn.execute(
            sql,
            (
                account.user_id,
                account.email,
                account.display_name,
                account.photo_url,
                account.about,
                Jsonb([_device_to_json(d) for d in account.devices]),
                account.status.value,
                account.email_verified,
                account.created_at,
                account.last_active_at,
            ),
        )
        self._account = account


class PostgresDeviceRepository:
    """
    Implements DeviceRepository protocol via psycopg3.

    The device list lives in a JSONB column on ``user_accounts`` so the whole
    list is read and written in the account transaction. Companion rows in
    ``user_devices`` carry timestamps assigned by ``NOW()`` on the server.
    """

    _SELECT_ACCOUNT_SQL = """
        SELECT user_id, email, display_name, photo_url, about, devices, status,
               email_verified, created_at, updated_at, last_active_at
        FROM user_accounts
        WHERE user_id = %s
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    @contextmanager
    def transaction(self, user_id: str) -> Iterator[_PostgresAccountUnit]:
        try:
            with self._pool.connection() as conn, conn.transaction():
                conn.execute(_LOCK_SQL, (f"account:{user_id}",))
                row = conn.execute(self._SELECT_ACCOUNT_SQL + " FOR UPDATE", (user_id,)).fetchone()
                yield _PostgresAccountUnit(conn, _account_from_row(row))
        except psycopg.Error as e:
            logger.error("Account transaction failed for user %s: %s", user_id, e)
            raise StorageConflict("account transaction failed") from e

    def get_account(self, user_id: str) -> UserAccount | None:
        try:
            with self._pool.connection() as conn:
                row = conn.execute(self._SELECT_ACCOUNT_SQL, (user_id,)).fetchone()
        except psycopg.Error as e:
            raise StorageConflict("account read failed") from e
        return _account_from_row(row)

    def upsert_device_record(self, user_id: str, device: DeviceSession) -> None:
        sql = """
            INSERT INTO user_devices
                (user_id, device_id, device_class, user_agent, client_ip,
                 logged_in_at, last_active_at)
            VALUES (%s, %s, %s, %s, %s, NOW(), NOW())
            ON CONFLICT (user_id, device_id) DO UPDATE
            SET last_active_at = NOW()
        """
        try:
            with self._pool.connection() as conn:
                conn.execute(
                    sql,
                    (
                        user_id,
                        device.device_id,
                        device.device_class.value,
                        device.fingerprint.user_agent,
                        device.fingerprint.client_ip,
                    ),
                )
        except psycopg.Error as e:
            raise StorageConflict("device record upsert failed") from e

    def delete_device_record(self, user_id: str, device_id: str) -> None:
        try:
            with self._pool.connection() as conn:
                conn.execute(
                    "DELETE FROM user_devices WHERE user_id = %s AND device_id = %s",
                    (user_id, device_id),
                )
        except psycopg.Error as e:
            raise StorageConflict("device record delete failed") from e


def _device_to_json(device: DeviceSession) -> dict[str, Any]:
    return {
        "device_id": device.device_id,
        "device_class": device.device_class.value,
        "user_agent": device.fingerprint.user_agent,
        "client_ip": device.fingerprint.client_ip,
        "logged_in_at": device.logged_in_at.isoformat(),
        "last_active_at": device.last_active_at.isoformat(),
    }


def _device_from_json(data: dict[str, Any]) -> DeviceSession:
    return DeviceSession(
        device_id=data["device_id"],
        device_class=DeviceClass(data["device_class"]),
        fingerprint=Fingerprint(user_agent=data["user_agent"], client_ip=data["client_ip"]),
        logged_in_at=datetime.fromisoformat(data["logged_in_at"]),
        last_active_at=datetime.fromisoformat(data["last_active_at"]),
    )


def _account_from_row(row: tuple | None) -> UserAccount | None:
    if row is None:
        return None
    return UserAccount(
        user_id=row[0],
        email=row[1],
        display_name=row[2],
        photo_url=row[3],
        about=row[4],
        devices=tuple(_device_from_json(d) for d in row[5]),
        status=UserStatus(row[6]),
        email_verified=row[7],
        created_at=row[8],
        updated_at=row[9],
        last_active_at=row[10],
    )


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: account_guard/adapters/repository/postgres.py -> account_guard/migrations/
    migrations_dir = Path(__file__).resolve().parents[2] / "migrations"

    if not migrations_dir.exists():
        logger.warning("Migrations directory not found: %s", migrations_dir)
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info("Running %d migration(s)", len(sql_files))

    for sql_file in sql_files:
        logger.info("Executing migration: %s", sql_file.name)
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info("Migration complete: %s", sql_file.name)
        except Exception as e:
            logger.error("Migration failed: %s - %s", sql_file.name, e)
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
