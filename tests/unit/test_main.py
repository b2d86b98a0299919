"""
Unit Tests for the Worker Entry Point

Runs main() end to end with a SQLite database and the FakeQueue patched in
for the boto3-backed QueueClient. Graceful shutdown is exercised with a
real SIGTERM sent to the test process.
"""

import http.client
import logging
import os
import signal
from unittest.mock import patch

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from src.worker.database import PersistenceGateway
from src.worker.errors import SchemaError
from src.worker.health import HealthServer
from src.worker.main import main, parse_args
from src.worker.queue_client import QueueClient
from src.shared.logger import WORKER_LOGGER_NAME

from conftest import TEST_QUEUE_URL, FakeQueue, count_orders


@pytest.fixture(autouse=True)
def reset_worker_logger():
    logger = logging.getLogger(WORKER_LOGGER_NAME)
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture
def worker_env(monkeypatch, database_url):
    env = {
        "SQS_QUEUE_URL": TEST_QUEUE_URL,
        "DATABASE_URL": database_url,
        "DB_SSL": "false",
        "HEALTH_HOST": "127.0.0.1",
        "HEALTH_PORT": "0",
        "RECEIVE_WAIT_SECONDS": "0",
        "CONNECT_RETRY_DELAY_SECONDS": "0",
        "LOOP_BACKOFF_SECONDS": "0",
        "SHUTDOWN_TIMEOUT_SECONDS": "5",
        "LOG_FORMAT": "text",
    }
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    return env


def sigterm_on_receive(queue: FakeQueue) -> None:
    os.kill(os.getpid(), signal.SIGTERM)


# ==============================================================================
# ARGUMENT PARSING
# ==============================================================================


@pytest.mark.unit
def test_parse_args_defaults():
    args = parse_args([])

    assert args.log_level is None
    assert args.log_format is None


@pytest.mark.unit
def test_parse_args_overrides():
    args = parse_args(["--log-level", "DEBUG", "--log-format", "text"])

    assert args.log_level == "DEBUG"
    assert args.log_format == "text"


# ==============================================================================
# STARTUP FAILURES
# ==============================================================================


@pytest.mark.unit
def test_missing_queue_url_exits_1(worker_env, monkeypatch):
    monkeypatch.delenv("SQS_QUEUE_URL")

    with patch.object(QueueClient, "from_config") as from_config:
        assert main([]) == 1

    from_config.assert_not_called()


@pytest.mark.unit
def test_invalid_config_exits_1(worker_env, monkeypatch):
    monkeypatch.setenv("HEALTH_PORT", "70000")

    assert main([]) == 1


@pytest.mark.unit
def test_schema_failure_exits_1(worker_env, monkeypatch):
    def broken_schema(self):
        raise SchemaError("permission denied for schema public")

    monkeypatch.setattr(PersistenceGateway, "ensure_schema", broken_schema)
    queue = FakeQueue()

    with patch.object(QueueClient, "from_config", return_value=queue):
        assert main([]) == 1

    assert queue.receive_calls == 0


# ==============================================================================
# GRACEFUL SHUTDOWN
# ==============================================================================


@pytest.mark.unit
def test_sigterm_mid_loop_exits_0(worker_env, database_url):
    """SIGTERM during a receive: in-flight message finishes, store released once."""
    queue = FakeQueue()
    queue.send("m1")
    queue.on_receive = sigterm_on_receive

    real_dispose = Engine.dispose
    with patch.object(QueueClient, "from_config", return_value=queue):
        with patch.object(Engine, "dispose", autospec=True, side_effect=real_dispose) as dispose:
            exit_code = main(["--log-level", "DEBUG"])

    assert exit_code == 0
    assert queue.deleted_ids == ["m1"]
    assert dispose.call_count == 1
    assert count_orders(database_url, "m1") == 1


@pytest.mark.unit
def test_signal_handlers_restored(worker_env):
    before = signal.getsignal(signal.SIGTERM)
    queue = FakeQueue()
    queue.on_receive = sigterm_on_receive

    with patch.object(QueueClient, "from_config", return_value=queue):
        assert main([]) == 0

    assert signal.getsignal(signal.SIGTERM) == before


@pytest.mark.unit
def test_health_answers_while_store_unreachable(worker_env, monkeypatch):
    started = []
    statuses = []
    attempts = []
    start = HealthServer.start

    def recording_start(self):
        start(self)
        started.append(self)

    def refused_connect(self):
        attempts.append(1)
        if len(attempts) == 3:
            conn = http.client.HTTPConnection("127.0.0.1", started[0].port, timeout=5)
            try:
                conn.request("GET", "/health")
                statuses.append(conn.getresponse().status)
            finally:
                conn.close()
            os.kill(os.getpid(), signal.SIGTERM)
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(HealthServer, "start", recording_start)
    monkeypatch.setattr(PersistenceGateway, "connect", refused_connect)
    queue = FakeQueue()

    with patch.object(QueueClient, "from_config", return_value=queue):
        assert main([]) == 0

    assert statuses == [200]
    assert queue.receive_calls == 0
