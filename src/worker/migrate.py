"""
One-off schema migration.

Creates the orders table if it does not exist, then exits. Meant to run as
a one-off task (same image, command override) before the first deploy:

    python -m src.worker.migrate

Unlike the worker, this connects once and fails fast: a migration task
that silently waits forever is worse than one that exits 1.
"""

import sys

from pydantic import ValidationError

from src.worker.config import load_config
from src.worker.database import PersistenceGateway
from src.shared.logger import setup_logger


def main() -> int:
    """
    Returns:
        Exit code (0 = schema ready, 1 = error)
    """
    try:
        config = load_config()
    except ValidationError as e:
        print(f"ERROR: Failed to load configuration: {e}", file=sys.stderr)
        return 1

    logger = setup_logger(
        service_name="order-worker-migrate",
        log_level=config.log_level,
        log_format=config.log_format,
    )

    with PersistenceGateway(config) as gateway:
        try:
            gateway.connect()
            gateway.ensure_schema()
        except Exception:
            logger.error("Migration failed", exc_info=True)
            return 1

    logger.info("Migration complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
