"""
SQLAlchemy ORM Models for Order Storage

The worker records one row per queue message in the ``orders`` table. The
message id is the primary key, which is what makes redelivered messages
harmless: the insert is ``ON CONFLICT (id) DO NOTHING``.
"""

import enum
from datetime import datetime

from sqlalchemy import TIMESTAMP, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# ==============================================================================
# DECLARATIVE BASE
# ==============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ==============================================================================
# ORDER STATUS
# ==============================================================================


class OrderStatus(str, enum.Enum):
    """Order lifecycle status. The worker only ever writes RECEIVED."""

    RECEIVED = "RECEIVED"


# ==============================================================================
# ORDER MODEL
# ==============================================================================


class Order(Base):
    """
    Order record created from a queue message.

    Attributes:
        id: Queue message id (PRIMARY KEY, idempotency key)
        status: Order status, stored as plain text
        created_at: Set by the database on first insert, never updated
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(
        Text, primary_key=True, comment="Queue message id, used as idempotency key"
    )

    # TEXT, not a database ENUM
    status: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Order status, e.g. RECEIVED"
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        comment="First insertion time, set by the database",
    )

    __table_args__ = ({"comment": "Orders received from the SQS order queue"},)

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, status={self.status}, created_at={self.created_at})>"
