"""Session Bridge: durable upsert of authentication records.

Each store operation opens its own connection, runs a single upsert
statement inside a transaction and closes the connection whatever the
outcome. Pooling is disabled (``NullPool``) so nothing outlives the call.
Failures are reported, never retried.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, create_engine, select, text, update
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from samlgate.core.config import DatabaseSettings
from samlgate.core.errors import StoreUnavailable, StoreWriteFailed
from samlgate.core.saml.descriptors import AuthenticationRecord
from samlgate.storage.models import AuthSession, Base

logger = logging.getLogger(__name__)

MSSQL_MERGE = text(
    "MERGE auth_sessions AS dest "
    "USING (SELECT * FROM (VALUES(:name_id, :session_index, :auth_time)) "
    "AS source_data(name_id, session_index, auth_time)) AS source "
    "ON source.name_id = dest.name_id "
    "WHEN MATCHED THEN UPDATE SET dest.session_index = source.session_index, "
    "dest.auth_time = source.auth_time "
    "WHEN NOT MATCHED THEN INSERT (name_id, session_index, auth_time) "
    "VALUES (source.name_id, source.session_index, source.auth_time);"
)


class SessionStore:
    """Store for the ``auth_sessions`` table.

    Args:
        settings: Database connection parameters.
        debug: Report driver error messages instead of generic ones.
    """

    def __init__(self, settings: DatabaseSettings, debug: bool = False) -> None:
        self._settings = settings
        self._debug = debug
        self._engine: Engine | None = None

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            self._engine = create_engine(
                self._settings.url,
                echo=self._settings.echo,
                poolclass=NullPool,
            )
        return self._engine

    def init_db(self) -> None:
        """Create the session table if it does not exist."""
        Base.metadata.create_all(self.engine)

    def store(self, record: AuthenticationRecord) -> None:
        """Insert or update the session row of ``record.name_id``.

        Raises:
            StoreUnavailable: If no connection can be opened.
            StoreWriteFailed: If the upsert statement fails.
        """
        values = {
            "name_id": record.name_id,
            "session_index": record.session_index,
            "auth_time": record.auth_time,
        }

        try:
            conn = self.engine.connect()
        except (SQLAlchemyError, ImportError) as e:
            logger.error(f"Session store connection failed: {type(e).__name__}")
            if self._debug:
                raise StoreUnavailable(str(e)) from e
            raise StoreUnavailable() from None
        logger.debug("Database connection established for SAML session")

        try:
            with conn.begin():
                self._upsert(conn, values)
        except SQLAlchemyError as e:
            logger.error(f"Session upsert failed: {type(e).__name__}")
            if self._debug:
                raise StoreWriteFailed(str(e)) from e
            raise StoreWriteFailed() from None
        finally:
            conn.close()
        logger.debug("SQL statement executed for SAML session")

    def _upsert(self, conn: Any, values: dict[str, Any]) -> None:
        dialect = conn.dialect.name

        if dialect in ("sqlite", "postgresql"):
            insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = insert(AuthSession).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[AuthSession.name_id],
                set_={
                    "session_index": stmt.excluded.session_index,
                    "auth_time": stmt.excluded.auth_time,
                },
            )
            conn.execute(stmt)
        elif dialect in ("mysql", "mariadb"):
            stmt = mysql.insert(AuthSession).values(**values)
            stmt = stmt.on_duplicate_key_update(
                session_index=stmt.inserted.session_index,
                auth_time=stmt.inserted.auth_time,
            )
            conn.execute(stmt)
        elif dialect == "mssql":
            conn.execute(MSSQL_MERGE, values)
        else:
            # No native upsert: update, then insert when nothing matched
            result = conn.execute(
                update(AuthSession)
                .where(AuthSession.name_id == values["name_id"])
                .values(session_index=values["session_index"], auth_time=values["auth_time"])
            )
            if result.rowcount == 0:
                conn.execute(AuthSession.__table__.insert().values(**values))

    def fetch(self, name_id: str) -> AuthSession | None:
        """Look up the session row of a hashed subject identifier."""
        with Session(self.engine) as session:
            return session.get(AuthSession, name_id)

    def list_sessions(self, limit: int = 50) -> list[AuthSession]:
        """Most recent sessions first."""
        with Session(self.engine) as session:
            stmt = select(AuthSession).order_by(AuthSession.auth_time.desc()).limit(limit)
            return list(session.scalars(stmt))

    def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
