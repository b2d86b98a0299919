"""
Order Worker Service - Main Entry Point

USAGE:
    python -m src.worker.main [options]

OPTIONS:
    --log-level    Logging level (DEBUG, INFO, WARNING, ERROR)
    --log-format   Log format (json or text)

STARTUP SEQUENCE:
1. Load and validate configuration (missing SQS_QUEUE_URL → exit 1)
2. Start the health endpoint (before anything that can block)
3. Register SIGTERM/SIGINT handlers
4. Start the consumer on a worker thread (DB connect retries forever)
5. Wait for a shutdown signal
6. Join the worker, release the database connection, exit 0

EXIT CODES:
    0  graceful shutdown
    1  configuration error, fatal schema error, or uncaught worker failure
"""

import argparse
import sys
import threading
from typing import List, Optional

from pydantic import ValidationError

from src.worker.config import WorkerConfig, load_config
from src.worker.consumer import QueueConsumer
from src.worker.database import PersistenceGateway
from src.worker.errors import ConfigurationError
from src.worker.health import HealthServer
from src.worker.queue_client import QueueClient
from src.worker.shutdown import ShutdownCoordinator
from src.shared.logger import setup_logger

# ==============================================================================
# CLI ARGUMENT PARSING
# ==============================================================================


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="SQS Order Worker Service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  SQS_QUEUE_URL              Queue to consume (required)
  AWS_REGION                 Queue region (default: ap-southeast-2)
  DB_HOST / DB_PORT          Database host and port (default: localhost:5432)
  DB_USER / DB_PASSWORD      Database credentials
  DB_NAME                    Database name (default: orders)
  DB_SSL                     Require TLS for the database (default: true)
  HEALTH_PORT                Health endpoint port (default: 8080)
  LOG_LEVEL                  Logging level (default: INFO)
  LOG_FORMAT                 Log format: json or text (default: json)

Signals:
  SIGTERM (ECS stop)         Finish current message, then exit 0
  SIGINT (Ctrl+C)            Same as SIGTERM
        """,
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (overrides LOG_LEVEL env var)",
    )

    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Log output format (overrides LOG_FORMAT env var)",
    )

    return parser.parse_args(argv)


# ==============================================================================
# MAIN FUNCTION
# ==============================================================================


def run_worker(config: WorkerConfig) -> int:
    """
    Compose and run the worker until shutdown.

    Returns:
        Exit code
    """
    logger = setup_logger(
        service_name="order-worker",
        log_level=config.log_level,
        log_format=config.log_format,
    )

    try:
        queue_url = config.require_queue_url()
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    # Health endpoint FIRST: must not depend on DB or SQS readiness
    health = HealthServer(config.health_host, config.health_port)
    health.start()

    coordinator = ShutdownCoordinator()
    coordinator.install()

    gateway = PersistenceGateway(config)
    failures: List[BaseException] = []

    try:
        consumer = QueueConsumer(
            config=config,
            queue=QueueClient.from_config(config),
            gateway=gateway,
            token=coordinator.token,
        )

        def work() -> None:
            try:
                consumer.run()
            except Exception as e:
                logger.critical("Fatal worker error", exc_info=True)
                failures.append(e)
            finally:
                coordinator.request_shutdown("worker stopped")

        worker = threading.Thread(target=work, name="QueueConsumer")

        logger.info(
            "Starting Order Worker Service",
            extra={
                "queue_url": queue_url,
                "aws_region": config.aws_region,
                "database_host": config.db_host,
                "database_name": config.db_name,
                "health_port": health.port,
            },
        )
        worker.start()

        coordinator.wait_for_termination()
        worker.join(config.shutdown_timeout_seconds)
        if worker.is_alive():
            logger.warning(
                "Worker did not finish in time, releasing resources anyway",
                extra={"shutdown_timeout_seconds": config.shutdown_timeout_seconds},
            )

    except Exception:
        logger.critical("Fatal worker error", exc_info=True)
        return 1

    finally:
        coordinator.release(gateway)
        coordinator.uninstall()
        health.stop()

    if failures:
        return 1

    logger.info("Worker stopped", extra={"reason": coordinator.reason})
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the order worker.

    Returns:
        Exit code (0 = success, 1 = error)
    """
    args = parse_args(argv)

    try:
        config = load_config()
    except ValidationError as e:
        print(f"ERROR: Failed to load configuration: {e}", file=sys.stderr)
        return 1

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format
    if overrides:
        config = config.model_copy(update=overrides)

    return run_worker(config)


# ==============================================================================
# ENTRY POINT
# ==============================================================================

if __name__ == "__main__":
    sys.exit(main())
