"""
Order Worker Service Package

This package implements the SQS worker that:
1. Long-polls the order queue (one message at a time)
2. Records each message as an order in PostgreSQL (status RECEIVED)
3. Deletes the message only after the order is recorded
4. Exposes GET /health for the load balancer, independent of DB and SQS
5. Drains the in-flight message on SIGTERM and exits cleanly

WORKER ARCHITECTURE:
┌─────────────┐     ┌──────────────┐     ┌────────────────┐
│     SQS     │────▶│    Worker    │────▶│   PostgreSQL   │
│ order queue │◀────│ (ECS task)   │     │  orders table  │
│             │ del │  /health     │     │                │
└─────────────┘     └──────────────┘     └────────────────┘

EXACTLY-ONCE EFFECT:
- SQS delivers at least once
- orders.id is the message id; inserts are ON CONFLICT DO NOTHING
- Record first, delete second: a crash in between means a redelivery,
  and the redelivery is a no-op insert followed by the delete

Package components:
- config.py: Configuration from environment variables
- consumer.py: Polling loop and state machine
- database.py: Persistence gateway (connection + idempotent insert)
- health.py: Health endpoint
- queue_client.py: SQS receive/delete
- retry.py: Fixed-delay backoff policy
- shutdown.py: Signal handling and cancellation token
- main.py: Entry point
- migrate.py: One-off schema creation
"""

__version__ = "1.0.0"

from src.worker.config import WorkerConfig, load_config

__all__ = [
    "WorkerConfig",
    "load_config",
]
