"""
SQS Queue Client

Thin wrapper around the boto3 SQS client exposing the two calls the
worker needs:

    receive(wait_seconds, max_messages) -> [QueueMessage, ...]
    delete(message) -> bool

SQS DELIVERY SEMANTICS:
- At-least-once: a message can be received more than once
- A received message is hidden for the visibility timeout; if it is not
  deleted in time it becomes visible again and is redelivered
- Deleting is the acknowledgment. It must only happen after the order is
  recorded.
"""

import logging
from dataclasses import dataclass
from typing import List

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from src.worker.config import WorkerConfig
from src.worker.errors import QueueError
from src.shared.logger import CorrelationAdapter


@dataclass(frozen=True)
class QueueMessage:
    """One received message. Lives for a single loop iteration."""

    message_id: str
    body: str
    receipt_handle: str


class QueueClient:
    """
    SQS receive/delete for a single queue.

    Attributes:
        queue_url: URL of the queue
        client: boto3 SQS client
    """

    def __init__(self, queue_url: str, client):
        self.queue_url = queue_url
        self.client = client
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: WorkerConfig) -> "QueueClient":
        """
        Create a client for the configured queue.

        The read timeout is kept above the long-poll wait so a receive that
        returns nothing after 20s is not mistaken for a dead connection.
        """
        botocore_config = Config(
            read_timeout=config.receive_wait_seconds + 10,
            retries={"max_attempts": 3, "mode": "standard"},
        )
        client = boto3.client("sqs", config=botocore_config, **config.get_sqs_client_kwargs())
        return cls(config.require_queue_url(), client)

    def receive(self, wait_seconds: int = 20, max_messages: int = 1) -> List[QueueMessage]:
        """
        Long-poll the queue.

        Returns:
            Received messages (empty list when the poll times out)

        Raises:
            QueueError: If the receive call fails
        """
        try:
            response = self.client.receive_message(
                QueueUrl=self.queue_url,
                WaitTimeSeconds=wait_seconds,
                MaxNumberOfMessages=max_messages,
            )
        except (BotoCoreError, ClientError) as exc:
            raise QueueError(f"Failed to receive from queue: {exc}") from exc

        return [
            QueueMessage(
                message_id=raw["MessageId"],
                body=raw.get("Body", ""),
                receipt_handle=raw["ReceiptHandle"],
            )
            for raw in response.get("Messages", [])
        ]

    def delete(self, message: QueueMessage) -> bool:
        """
        Acknowledge a message by deleting it.

        Returns:
            True on success, False if the delete call failed (the message
            will be redelivered after its visibility timeout)
        """
        logger = CorrelationAdapter(self.logger, {"correlation_id": message.message_id})
        try:
            self.client.delete_message(
                QueueUrl=self.queue_url,
                ReceiptHandle=message.receipt_handle,
            )
        except (BotoCoreError, ClientError):
            logger.error("Failed to delete message", exc_info=True)
            return False

        return True
