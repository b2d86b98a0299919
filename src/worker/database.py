"""
Persistence Gateway

This module owns the worker's only database resource: a SQLAlchemy engine
with a single pooled connection. Everything that touches the ``orders``
table goes through ``PersistenceGateway``.

IDEMPOTENT WRITE:
    INSERT INTO orders (id, status) VALUES (:id, 'RECEIVED')
    ON CONFLICT (id) DO NOTHING

The queue delivers at least once, so the same message id can arrive any
number of times. The conditional insert turns every repeat into a no-op,
which is the only exactly-once mechanism in the pipeline.

CONNECTION LIFECYCLE:
1. connect()        - create engine, verify with SELECT 1 (caller retries)
2. ensure_schema()  - CREATE TABLE IF NOT EXISTS orders
3. record_received()- one short transaction per message
4. close()          - dispose the engine, at most once
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from src.worker.config import WorkerConfig
from src.worker.errors import SchemaError
from src.worker.models import Base, Order, OrderStatus
from src.shared.logger import CorrelationAdapter

# Dialects that support INSERT ... ON CONFLICT DO NOTHING
_CONFLICT_INSERTS: Dict[str, Callable[..., Any]] = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class PersistenceGateway:
    """
    Sole owner of the store connection and the idempotent write contract.

    The gateway is used from one worker thread; ``close()`` may be called
    from any thread and is safe to call more than once.

    Attributes:
        config: Worker configuration
        engine: SQLAlchemy engine (None until connect() succeeds once)
        SessionLocal: Session factory bound to the engine
    """

    def __init__(self, config: WorkerConfig):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self._lock = threading.Lock()
        self._closed = False
        self._verified = False

    def __enter__(self) -> "PersistenceGateway":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connected(self) -> bool:
        return self._verified and not self._closed

    # ==========================================================================
    # CONNECTION
    # ==========================================================================

    def _create_engine(self) -> Engine:
        """
        Create the SQLAlchemy engine.

        POOL CONFIGURATION:
        - QueuePool with one connection: queries are serialized on the
          worker thread, so one connection is all the worker ever needs
        - pool_pre_ping: a connection dropped by the server is replaced on
          the next checkout instead of failing the next insert
        - pool_recycle: recycle connections after 1 hour
        """
        return create_engine(
            self.config.get_database_url(),
            poolclass=QueuePool,
            pool_size=1,
            max_overflow=0,
            pool_recycle=3600,
            pool_pre_ping=True,
            connect_args=self.config.get_connect_args(),
            echo=False,
        )

    def connect(self) -> None:
        """
        Establish the store connection and verify it with ``SELECT 1``.

        Raises:
            SQLAlchemyError: If the store is unreachable. The caller decides
                whether to retry (the consumer retries indefinitely).
            RuntimeError: If the gateway has already been closed.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("Persistence gateway is closed")
            if self.engine is None:
                self.engine = self._create_engine()
                self.SessionLocal = sessionmaker(
                    autocommit=False,
                    autoflush=False,
                    bind=self.engine,
                )
            engine = self.engine

        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()

        self._verified = True
        self.logger.info(
            "Connected to database",
            extra={"database_url": engine.url.render_as_string(hide_password=True)},
        )

    def ensure_schema(self) -> None:
        """
        Create the orders table if it does not exist.

        Safe to call on every startup: ``checkfirst`` makes it a no-op when
        the table is already there.

        Raises:
            SchemaError: If the table cannot be created (fatal)
        """
        if not self.connected:
            raise SchemaError("Cannot create schema: not connected")

        try:
            Base.metadata.create_all(self.engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise SchemaError(f"Failed to create orders table: {exc}") from exc

        self.logger.info("Database schema ready", extra={"table": Order.__tablename__})

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Session with commit on success, rollback on error, always closed.

        Yields:
            SQLAlchemy session
        """
        if self.SessionLocal is None:
            raise RuntimeError("Persistence gateway is not connected")

        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            self.logger.error(
                "Database error, transaction rolled back",
                exc_info=True,
                extra={"error_type": type(e).__name__},
            )
            raise
        finally:
            session.close()

    # ==========================================================================
    # IDEMPOTENT WRITE
    # ==========================================================================

    def _insert_ignoring_conflict(self, values: Dict[str, Any]):
        dialect = self.engine.dialect.name
        try:
            insert = _CONFLICT_INSERTS[dialect]
        except KeyError:
            raise NotImplementedError(
                f"Conditional insert is not supported for dialect {dialect!r}"
            ) from None

        stmt = insert(Order.__table__).values(**values)
        return stmt.on_conflict_do_nothing(index_elements=["id"])

    def record_received(self, order_id: str) -> bool:
        """
        Record one order as RECEIVED, unless it is already recorded.

        Args:
            order_id: Queue message id

        Returns:
            True if the order is now recorded (inserted or already present),
            False if the store could not be written
        """
        logger = CorrelationAdapter(self.logger, {"correlation_id": order_id})

        if not self.connected:
            logger.error("Cannot record order: gateway is not connected")
            return False

        stmt = self._insert_ignoring_conflict(
            {"id": order_id, "status": OrderStatus.RECEIVED.value}
        )

        try:
            with self.get_session() as session:
                result = session.execute(stmt)
        except SQLAlchemyError:
            logger.warning("Failed to record order")
            return False

        if result.rowcount == 0:
            logger.info("Order already recorded, skipping insert")
        else:
            logger.debug("Order recorded", extra={"status": OrderStatus.RECEIVED.value})

        return True

    # ==========================================================================
    # SHUTDOWN
    # ==========================================================================

    def close(self) -> None:
        """
        Release the store connection.

        Idempotent: the engine is disposed at most once. Errors are logged,
        never raised, so shutdown can always proceed.
        """
        with self._lock:
            if self._closed:
                self.logger.debug("Database connection already closed")
                return
            self._closed = True
            engine = self.engine

        if engine is None:
            self.logger.info("No database connection to close")
            return

        try:
            engine.dispose()
            self.logger.info("Database connection closed")
        except Exception:
            self.logger.error("Error closing database connection", exc_info=True)


# ==============================================================================
# SQLALCHEMY EVENT LISTENERS
# ==============================================================================


@event.listens_for(Engine, "connect")
def receive_connect(dbapi_conn, connection_record):
    """Log every new DBAPI connection (reconnects show up here)."""
    logging.getLogger(__name__).debug("New database connection established")
