"""
Pytest Configuration and Shared Fixtures

Unit tests run against a file-backed SQLite database (same conditional
insert as PostgreSQL) and an in-memory fake queue with SQS-like
redelivery. Integration tests use testcontainers to run real PostgreSQL
and LocalStack SQS.

FIXTURE SCOPES:
- session: Created once for entire test session (containers)
- function: Created for each test function (configs, databases, queues)
"""

import os
from collections import deque
from typing import Callable, Deque, Generator, List, Optional

import pytest
from sqlalchemy import create_engine, func, select

from src.worker.config import WorkerConfig
from src.worker.database import PersistenceGateway
from src.worker.errors import QueueError
from src.worker.models import Order
from src.worker.queue_client import QueueMessage
from src.worker.shutdown import CancellationToken

TEST_QUEUE_URL = "https://sqs.ap-southeast-2.amazonaws.com/123456789012/orders"

# ==============================================================================
# FAKE QUEUE
# ==============================================================================


class FakeQueue:
    """
    In-memory stand-in for QueueClient.

    Messages that are received but not deleted stay in flight; calling
    ``expire_visibility()`` (or setting ``auto_redeliver``) makes them
    visible again with a new receipt handle, like SQS does after the
    visibility timeout.

    Attributes:
        calls: Ordered log of ("receive",) and ("delete", message_id) calls
        deleted: Messages deleted so far
        fail_receives: Number of upcoming receive calls that raise
        fail_deletes: Number of upcoming delete calls that return False
        on_receive: Hook called at the start of every receive
    """

    queue_url = TEST_QUEUE_URL

    def __init__(self, auto_redeliver: bool = False):
        self.auto_redeliver = auto_redeliver
        self.pending: Deque[QueueMessage] = deque()
        self.in_flight: List[QueueMessage] = []
        self.deleted: List[QueueMessage] = []
        self.calls: List[tuple] = []
        self.receive_calls = 0
        self.fail_receives = 0
        self.fail_deletes = 0
        self.on_receive: Optional[Callable[["FakeQueue"], None]] = None
        self._deliveries = 0

    def send(self, message_id: str, body: str = '{"order": "..."}') -> None:
        self.pending.append(self._deliver(message_id, body))

    def _deliver(self, message_id: str, body: str) -> QueueMessage:
        self._deliveries += 1
        return QueueMessage(
            message_id=message_id,
            body=body,
            receipt_handle=f"{message_id}-receipt-{self._deliveries}",
        )

    def expire_visibility(self) -> None:
        while self.in_flight:
            message = self.in_flight.pop(0)
            self.pending.append(self._deliver(message.message_id, message.body))

    def receive(self, wait_seconds: int = 20, max_messages: int = 1) -> List[QueueMessage]:
        self.receive_calls += 1
        self.calls.append(("receive",))

        if self.on_receive is not None:
            self.on_receive(self)

        if self.fail_receives:
            self.fail_receives -= 1
            raise QueueError("Failed to receive from queue: connection reset")

        if self.auto_redeliver:
            self.expire_visibility()

        batch = []
        while self.pending and len(batch) < max_messages:
            batch.append(self.pending.popleft())
        self.in_flight.extend(batch)
        return batch

    def delete(self, message: QueueMessage) -> bool:
        self.calls.append(("delete", message.message_id))

        if self.fail_deletes:
            self.fail_deletes -= 1
            return False

        self.in_flight = [m for m in self.in_flight if m.receipt_handle != message.receipt_handle]
        self.deleted.append(message)
        return True

    @property
    def deleted_ids(self) -> List[str]:
        return [m.message_id for m in self.deleted]


def stop_after_receives(token: CancellationToken, count: int) -> Callable[[FakeQueue], None]:
    """on_receive hook that requests shutdown during the Nth receive call."""

    def hook(queue: FakeQueue) -> None:
        if queue.receive_calls >= count:
            token.cancel()

    return hook


def count_orders(database_url: str, order_id: Optional[str] = None) -> int:
    """Count rows in the orders table with a separate engine."""
    engine = create_engine(database_url)
    try:
        stmt = select(func.count()).select_from(Order)
        if order_id is not None:
            stmt = stmt.where(Order.id == order_id)
        with engine.connect() as conn:
            return conn.execute(stmt).scalar_one()
    finally:
        engine.dispose()


# ==============================================================================
# CONFIG / DATABASE FIXTURES
# ==============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'orders.db'}"


@pytest.fixture
def worker_config(database_url) -> WorkerConfig:
    """WorkerConfig pointing at a local SQLite file, with no delays."""
    return WorkerConfig(
        sqs_queue_url=TEST_QUEUE_URL,
        database_url=database_url,
        db_ssl=False,
        receive_wait_seconds=0,
        connect_retry_delay_seconds=0,
        loop_backoff_seconds=0,
        shutdown_timeout_seconds=5,
        health_host="127.0.0.1",
        health_port=0,
    )


@pytest.fixture
def gateway(worker_config) -> Generator[PersistenceGateway, None, None]:
    """Connected gateway with the orders table created."""
    gateway = PersistenceGateway(worker_config)
    gateway.connect()
    gateway.ensure_schema()
    try:
        yield gateway
    finally:
        gateway.close()


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def fake_queue() -> FakeQueue:
    return FakeQueue()


# ==============================================================================
# CONTAINER FIXTURES (integration)
# ==============================================================================


@pytest.fixture(scope="session")
def postgres_container():
    """PostgreSQL testcontainer for the entire test session."""
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer("postgres:15") as postgres:
        postgres.get_connection_url()
        yield postgres


@pytest.fixture(scope="session")
def localstack_container():
    """LocalStack testcontainer running SQS."""
    from testcontainers.localstack import LocalStackContainer

    with LocalStackContainer(image="localstack/localstack:3").with_services("sqs") as localstack:
        yield localstack


# ==============================================================================
# TEST ENVIRONMENT CONFIGURATION
# ==============================================================================


def pytest_configure(config):
    """Set up test environment variables and markers."""
    os.environ["ENVIRONMENT"] = "test"

    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires containers)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow (takes more than 5 seconds)")
    config.addinivalue_line("markers", "unit: mark test as unit test (no external dependencies)")
