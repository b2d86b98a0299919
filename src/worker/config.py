"""
Worker Configuration Module

Configuration for the SQS queue, the PostgreSQL store, the health endpoint
and the retry/shutdown timings. Loaded from environment variables (and a
local .env file) with Pydantic validation.

CONFIGURATION SOURCES (priority order):
1. Environment variables (highest priority)
2. .env file (loaded by python-dotenv)
3. Default values (fallback)
"""

from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

from src.worker.errors import ConfigurationError

# Load .env file if present (local development)
load_dotenv()


class WorkerConfig(BaseSettings):
    """
    Worker service configuration with validation.

    The queue URL has no default: it is checked by ``require_queue_url()``
    at startup so that a missing value is a clean exit-code-1 error rather
    than a validation traceback.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # === QUEUE SETTINGS ===
    sqs_queue_url: Optional[str] = Field(
        default=None,
        description="URL of the SQS queue to consume from",
    )

    aws_region: str = Field(
        default="ap-southeast-2",
        description="AWS region of the queue",
    )

    sqs_endpoint_url: Optional[str] = Field(
        default=None,
        description="Override SQS endpoint (e.g. LocalStack)",
    )

    receive_wait_seconds: int = Field(
        default=20,
        ge=0,
        le=20,
        description="Long-poll wait per receive call",
    )

    receive_max_messages: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Maximum messages requested per receive call",
    )

    # === DATABASE SETTINGS ===
    db_host: str = Field(
        default="localhost",
        description="PostgreSQL host",
    )

    db_port: int = Field(
        default=5432,
        ge=1,
        le=65535,
        description="PostgreSQL port",
    )

    db_name: str = Field(
        default="orders",
        description="PostgreSQL database name",
    )

    db_user: str = Field(
        default="postgres",
        description="PostgreSQL username",
    )

    db_password: str = Field(
        default="postgres",
        description="PostgreSQL password",
    )

    db_ssl: bool = Field(
        default=True,
        description="Require TLS for the store connection",
    )

    database_url: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy URL, overrides the DB_* settings",
    )

    # === HEALTH ENDPOINT ===
    health_host: str = Field(
        default="0.0.0.0",
        description="Bind address of the health endpoint",
    )

    health_port: int = Field(
        default=8080,
        ge=0,
        le=65535,
        description="Port of the health endpoint",
    )

    # === RETRY / SHUTDOWN ===
    connect_retry_delay_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Delay between store connection attempts",
    )

    loop_backoff_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Backoff after a failed polling iteration",
    )

    shutdown_timeout_seconds: float = Field(
        default=30.0,
        ge=0,
        description="How long to wait for the in-flight iteration on shutdown",
    )

    # === LOGGING ===
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    log_format: str = Field(
        default="json",
        description="Log output format (json or text)",
    )

    def require_queue_url(self) -> str:
        """Return the queue URL or raise ConfigurationError if it is unset."""
        if not self.sqs_queue_url:
            raise ConfigurationError("SQS_QUEUE_URL is not set")
        return self.sqs_queue_url

    def get_sqs_client_kwargs(self) -> dict:
        """Keyword arguments for ``boto3.client("sqs", ...)``."""
        kwargs = {"region_name": self.aws_region}
        if self.sqs_endpoint_url:
            kwargs["endpoint_url"] = self.sqs_endpoint_url
        return kwargs

    def get_database_url(self) -> URL:
        """Get SQLAlchemy database URL."""
        if self.database_url:
            return make_url(self.database_url)

        return URL.create(
            "postgresql+psycopg2",
            username=self.db_user,
            password=self.db_password,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        )

    def get_connect_args(self) -> dict:
        """DBAPI connect arguments (TLS for PostgreSQL)."""
        backend = self.get_database_url().get_backend_name()
        if backend == "sqlite":
            # The engine is created on the worker thread and disposed from main
            return {"check_same_thread": False}
        if backend != "postgresql":
            return {}
        # Certificate is not verified, matching the RDS default setup
        return {"sslmode": "require" if self.db_ssl else "disable"}


def load_config() -> WorkerConfig:
    """Load and validate worker configuration."""
    return WorkerConfig()
