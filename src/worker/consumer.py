"""
SQS Order Consumer Implementation

This module implements the worker loop that reads order events from SQS and
records them in PostgreSQL.

CONSUMER LIFECYCLE:
┌─────────────────────────────────────────────────────────────────────────┐
│  CONNECTING → RUNNING → DRAINING → STOPPED                              │
├─────────────────────────────────────────────────────────────────────────┤
│  CONNECTING: retry DB connect every 5s until it works or shutdown       │
│  RUNNING:    receive (long poll, 1 message) → record → delete           │
│  DRAINING:   shutdown requested; the in-flight iteration completes      │
│  STOPPED:    database connection released                               │
└─────────────────────────────────────────────────────────────────────────┘

AT-LEAST-ONCE DELIVERY:
- The order is recorded BEFORE the message is deleted, never the reverse
- If the process dies between the two, the message is redelivered and the
  insert is a no-op (ON CONFLICT DO NOTHING on the message id)
- If recording or deleting fails, the message is simply not deleted; SQS
  makes it visible again after the visibility timeout

ERROR HANDLING STRATEGY:
- Any failure in an iteration: log, wait 5s, continue polling
- Nothing in the polling loop terminates the process
- Only a schema creation failure at startup is fatal
"""

import enum
import logging
import time
from typing import Optional

from src.worker.config import WorkerConfig
from src.worker.database import PersistenceGateway
from src.worker.errors import PersistenceError, QueueError
from src.worker.queue_client import QueueClient, QueueMessage
from src.worker.retry import BackoffPolicy
from src.worker.shutdown import CancellationToken
from src.shared.logger import CorrelationAdapter


class ConsumerState(str, enum.Enum):
    CONNECTING = "CONNECTING"
    RUNNING = "RUNNING"
    DRAINING = "DRAINING"
    STOPPED = "STOPPED"


class QueueConsumer:
    """
    Drives the receive → record → delete pipeline, one message at a time.

    Attributes:
        config: Worker configuration
        queue: Queue client (receive/delete)
        gateway: Persistence gateway (connect/record/close)
        token: Cancellation token owned by the shutdown coordinator
        state: Current ConsumerState
        messages_processed: Messages recorded and deleted
        messages_failed: Messages whose record or delete failed
        iterations_failed: Polling iterations that ended in an error
    """

    def __init__(
        self,
        config: WorkerConfig,
        queue: QueueClient,
        gateway: PersistenceGateway,
        token: CancellationToken,
        connect_policy: Optional[BackoffPolicy] = None,
        loop_policy: Optional[BackoffPolicy] = None,
    ):
        self.config = config
        self.queue = queue
        self.gateway = gateway
        self.token = token
        self.connect_policy = connect_policy or BackoffPolicy(config.connect_retry_delay_seconds)
        self.loop_policy = loop_policy or BackoffPolicy(config.loop_backoff_seconds)
        self.logger = logging.getLogger(__name__)

        self.state = ConsumerState.CONNECTING
        self.messages_processed = 0
        self.messages_failed = 0
        self.iterations_failed = 0

    def _set_state(self, state: ConsumerState) -> None:
        if state is self.state:
            return
        self.logger.info(
            "Consumer state changed",
            extra={"from_state": self.state.value, "to_state": state.value},
        )
        self.state = state

    # ==========================================================================
    # MAIN LOOP
    # ==========================================================================

    def run(self) -> None:
        """
        Run until the cancellation token is set.

        Raises:
            SchemaError: If the orders table cannot be created (fatal)
        """
        try:
            if not self._connect():
                return

            self.gateway.ensure_schema()
            self._set_state(ConsumerState.RUNNING)

            self.logger.info(
                "Starting consumer loop",
                extra={
                    "queue_url": self.queue.queue_url,
                    "wait_seconds": self.config.receive_wait_seconds,
                    "max_messages": self.config.receive_max_messages,
                },
            )

            while not self.token.cancelled:
                if not self.run_once():
                    self.iterations_failed += 1
                    self.loop_policy.wait(self.token)

            self._set_state(ConsumerState.DRAINING)
        finally:
            self._shutdown()

    def _connect(self) -> bool:
        """
        Connect to the store, retrying with a fixed delay.

        The database may still be starting when the worker starts, so a
        failure here is never fatal on its own.

        Returns:
            True once connected, False if shutdown arrived first
        """
        for attempt in self.connect_policy.attempts():
            if self.token.cancelled:
                self.logger.info("Shutdown requested before database connection")
                return False

            try:
                self.gateway.connect()
                return True
            except Exception as e:
                self.logger.error(
                    f"Failed to connect to DB, retrying in {self.connect_policy.delay_seconds}s",
                    extra={"attempt": attempt, "error": str(e)},
                )

            if self.connect_policy.wait(self.token):
                self.logger.info("Shutdown requested while waiting to reconnect")
                return False

        self.logger.error(
            "Giving up connecting to DB",
            extra={"attempts": self.connect_policy.max_attempts},
        )
        return False

    def run_once(self) -> bool:
        """
        One polling iteration: receive, then record and delete each message.

        Returns:
            True if the iteration completed, False if it failed (the caller
            backs off before the next one)
        """
        try:
            messages = self.queue.receive(
                wait_seconds=self.config.receive_wait_seconds,
                max_messages=self.config.receive_max_messages,
            )
            for message in messages:
                self._process_message(message)
            return True
        except Exception:
            self.logger.error(
                f"Worker loop error, retrying in {self.loop_policy.delay_seconds}s",
                exc_info=True,
            )
            return False

    def _process_message(self, message: QueueMessage) -> None:
        """
        Record one message, then acknowledge it.

        Raises:
            PersistenceError: If the order could not be recorded (the
                message is NOT deleted)
            QueueError: If the delete call failed
        """
        start_time = time.time()
        logger = CorrelationAdapter(self.logger, {"correlation_id": message.message_id})
        logger.debug("Processing message")

        if not self.gateway.record_received(message.message_id):
            self.messages_failed += 1
            raise PersistenceError(f"Failed to record order {message.message_id}")

        if not self.queue.delete(message):
            self.messages_failed += 1
            raise QueueError(f"Failed to delete message {message.message_id}")

        self.messages_processed += 1
        logger.info(
            "Processed message",
            extra={
                "processing_time_ms": round((time.time() - start_time) * 1000, 2),
                "messages_processed": self.messages_processed,
            },
        )

    # ==========================================================================
    # SHUTDOWN
    # ==========================================================================

    def _shutdown(self) -> None:
        self._set_state(ConsumerState.STOPPED)
        self.logger.info(
            "Consumer shutting down",
            extra={
                "messages_processed": self.messages_processed,
                "messages_failed": self.messages_failed,
                "iterations_failed": self.iterations_failed,
            },
        )
        self.gateway.close()
