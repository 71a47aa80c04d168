"""
PostgreSQL Identity Store.

Async SQLAlchemy backend. A unique constraint on bound public keys makes
first-contact creation converge, a partial unique index enforces a single
active key per identity, and rotations are one transaction around a
conditional UPDATE that acts as the compare-and-swap.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

from agentcommons.exceptions import KeyAlreadyBoundError, StorageUnavailableError
from agentcommons.identity.models import Identity, KeyHistoryEntry

from .provider import AbstractIdentityStore, StorageConfig

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors() -> Iterator[None]:
    """Translate connectivity failures into StorageUnavailableError."""
    from sqlalchemy.exc import IntegrityError, DBAPIError, InterfaceError, OperationalError

    try:
        yield
    except IntegrityError:
        raise
    except (OperationalError, InterfaceError, asyncio.TimeoutError, OSError) as exc:
        logger.warning("PostgreSQL identity store unavailable: %s", type(exc).__name__)
        raise StorageUnavailableError("Identity store is unavailable") from exc
    except DBAPIError as exc:
        if exc.connection_invalidated:
            logger.warning("PostgreSQL connection invalidated")
            raise StorageUnavailableError("Identity store is unavailable") from exc
        raise


class PostgresIdentityStore(AbstractIdentityStore):
    """
    PostgreSQL identity store.

    Features:
    - Async SQLAlchemy engine with connection pooling
    - Unique public-key binding for create-or-fetch first contact
    - Row-level compare-and-swap for key rotation

    Requires: sqlalchemy[asyncio], asyncpg packages
    """

    def __init__(self, config: Optional[StorageConfig] = None, engine: Any = None):
        """Initialize PostgreSQL storage."""
        super().__init__(config or StorageConfig(backend="postgres"))
        self._engine = engine
        prefix = self.config.key_prefix.rstrip(":_").replace(":", "_") or "agentcommons"
        self._identities_table = f"{prefix}_identities"
        self._keys_table = f"{prefix}_identity_keys"

    def _connection_string(self) -> str:
        if self.config.connection_string:
            return self.config.connection_string

        password_part = (
            f":{self.config.postgres_password}"
            if self.config.postgres_password
            else ""
        )
        conn_str = (
            f"postgresql+asyncpg://{self.config.postgres_user}"
            f"{password_part}@{self.config.postgres_host}"
            f":{self.config.postgres_port}/{self.config.postgres_database}"
        )
        if self.config.postgres_ssl_mode != "disable":
            conn_str += f"?ssl={self.config.postgres_ssl_mode}"
        return conn_str

    async def connect(self) -> None:
        """Establish connection to PostgreSQL and initialize the schema."""
        try:
            from sqlalchemy.ext.asyncio import create_async_engine
        except ImportError:
            raise ImportError(
                "sqlalchemy[asyncio] and asyncpg packages are required for PostgresIdentityStore. "
                "Install with: pip install agentcommons[storage]"
            )

        if self._engine is None:
            self._engine = create_async_engine(
                self._connection_string(),
                pool_size=self.config.pool_size,
                max_overflow=20,
                pool_pre_ping=True,
                pool_timeout=self.config.timeout_seconds,
                connect_args={
                    "timeout": self.config.timeout_seconds,
                    "command_timeout": self.config.timeout_seconds,
                },
                echo=False,
            )

        with _store_errors():
            await self._init_schema()

    async def _init_schema(self) -> None:
        """Initialize database schema."""
        from sqlalchemy import text

        statements = [
            f"""
            CREATE TABLE IF NOT EXISTS {self._identities_table} (
                fingerprint VARCHAR(64) PRIMARY KEY,
                current_public_key VARCHAR(64) NOT NULL,
                last_rotation_timestamp DOUBLE PRECISION,
                created_at TIMESTAMPTZ NOT NULL
            )
            """,
            f"""
            CREATE TABLE IF NOT EXISTS {self._keys_table} (
                public_key VARCHAR(64) PRIMARY KEY,
                fingerprint VARCHAR(64) NOT NULL
                    REFERENCES {self._identities_table}(fingerprint),
                position INTEGER NOT NULL,
                activated_at TIMESTAMPTZ NOT NULL,
                superseded_at TIMESTAMPTZ,
                UNIQUE (fingerprint, position)
            )
            """,
            f"""
            CREATE UNIQUE INDEX IF NOT EXISTS {self._keys_table}_one_active
                ON {self._keys_table}(fingerprint) WHERE superseded_at IS NULL
            """,
        ]
        async with self._engine.begin() as conn:
            for statement in statements:
                await conn.execute(text(statement))

    async def disconnect(self) -> None:
        """Close connection to PostgreSQL."""
        if self._engine:
            await self._engine.dispose()

    async def health_check(self) -> bool:
        """Check if PostgreSQL is healthy."""
        try:
            if self._engine:
                from sqlalchemy import text

                async with self._engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                return True
        except Exception:
            logger.debug("PostgreSQL health check failed", exc_info=True)
        return False

    # -- Lookups --------------------------------------------------------------

    async def _load(self, conn: Any, fingerprint: str) -> Optional[Identity]:
        from sqlalchemy import text

        row = (
            await conn.execute(
                text(
                    f"SELECT fingerprint, current_public_key, last_rotation_timestamp, created_at "
                    f"FROM {self._identities_table} WHERE fingerprint = :fp"
                ),
                {"fp": fingerprint},
            )
        ).fetchone()
        if row is None:
            return None

        keys = (
            await conn.execute(
                text(
                    f"SELECT public_key, activated_at, superseded_at FROM {self._keys_table} "
                    f"WHERE fingerprint = :fp ORDER BY position"
                ),
                {"fp": fingerprint},
            )
        ).fetchall()
        return Identity(
            fingerprint=row.fingerprint,
            current_public_key=row.current_public_key,
            last_rotation_timestamp=row.last_rotation_timestamp,
            created_at=row.created_at,
            key_history=[
                KeyHistoryEntry(
                    public_key=k.public_key,
                    activated_at=k.activated_at,
                    superseded_at=k.superseded_at,
                )
                for k in keys
            ],
        )

    async def lookup_by_fingerprint(self, fingerprint: str) -> Optional[Identity]:
        with _store_errors():
            async with self._engine.connect() as conn:
                return await self._load(conn, fingerprint)

    async def lookup_by_public_key(self, public_key: str) -> Optional[Identity]:
        from sqlalchemy import text

        with _store_errors():
            async with self._engine.connect() as conn:
                fingerprint = (
                    await conn.execute(
                        text(f"SELECT fingerprint FROM {self._keys_table} WHERE public_key = :pk"),
                        {"pk": public_key},
                    )
                ).scalar()
                if fingerprint is None:
                    return None
                return await self._load(conn, fingerprint)

    # -- Mutations ------------------------------------------------------------

    async def create_identity(self, public_key: str, fingerprint: str) -> tuple[Identity, bool]:
        from sqlalchemy import text
        from sqlalchemy.exc import IntegrityError

        existing = await self.lookup_by_public_key(public_key)
        if existing is not None:
            return existing, False

        identity = Identity.new(fingerprint, public_key)
        try:
            with _store_errors():
                async with self._engine.begin() as conn:
                    inserted = (
                        await conn.execute(
                            text(
                                f"INSERT INTO {self._identities_table} "
                                f"(fingerprint, current_public_key, created_at) "
                                f"VALUES (:fp, :pk, :now) "
                                f"ON CONFLICT (fingerprint) DO NOTHING RETURNING fingerprint"
                            ),
                            {"fp": fingerprint, "pk": public_key, "now": identity.created_at},
                        )
                    ).scalar()
                    if inserted is not None:
                        await conn.execute(
                            text(
                                f"INSERT INTO {self._keys_table} "
                                f"(public_key, fingerprint, position, activated_at) "
                                f"VALUES (:pk, :fp, 0, :now)"
                            ),
                            {"fp": fingerprint, "pk": public_key, "now": identity.created_at},
                        )
                        return identity, True
        except IntegrityError:
            # Key was bound concurrently; fall through to fetch the winner.
            logger.debug("Concurrent first contact for fingerprint %s", fingerprint)

        existing = await self.lookup_by_public_key(public_key)
        if existing is not None:
            return existing, False
        raise KeyAlreadyBoundError(
            f'Fingerprint "{fingerprint}" is already bound to a different key'
        )

    async def compare_and_swap_active_key(
        self,
        fingerprint: str,
        expected_old_key: str,
        new_key: str,
        now: datetime,
        rotation_timestamp: float,
    ) -> bool:
        from sqlalchemy import text
        from sqlalchemy.exc import IntegrityError

        try:
            with _store_errors():
                async with self._engine.begin() as conn:
                    swapped = (
                        await conn.execute(
                            text(
                                f"UPDATE {self._identities_table} "
                                f"SET current_public_key = :new, last_rotation_timestamp = :ts "
                                f"WHERE fingerprint = :fp AND current_public_key = :old "
                                f"AND (last_rotation_timestamp IS NULL OR last_rotation_timestamp < :ts) "
                                f"RETURNING fingerprint"
                            ),
                            {"fp": fingerprint, "old": expected_old_key, "new": new_key,
                             "ts": rotation_timestamp},
                        )
                    ).scalar()
                    if swapped is None:
                        return False

                    await conn.execute(
                        text(
                            f"UPDATE {self._keys_table} SET superseded_at = :now "
                            f"WHERE fingerprint = :fp AND superseded_at IS NULL"
                        ),
                        {"fp": fingerprint, "now": now},
                    )
                    await conn.execute(
                        text(
                            f"INSERT INTO {self._keys_table} "
                            f"(public_key, fingerprint, position, activated_at) "
                            f"VALUES (:new, :fp, "
                            f"(SELECT COALESCE(MAX(position), -1) + 1 FROM {self._keys_table} "
                            f"WHERE fingerprint = :fp), :now)"
                        ),
                        {"fp": fingerprint, "new": new_key, "now": now},
                    )
                    return True
        except IntegrityError:
            # new_key is already bound elsewhere; the transaction rolled back.
            return False
