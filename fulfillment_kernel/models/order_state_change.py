"""
Module: fulfillment_kernel.models.order_state_change
Responsibility: Append-only audit record of every order status transition.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    audit_append_only -- rows are never updated or deleted
        (db/immutability.py + PostgreSQL trigger).

Audit relevance:
    This table is the source of truth for "who moved which order where, and
    when".  StateChangeLogger writes exactly one row per transition inside
    the transaction that performs it, including unclaim rollbacks.  Order
    creation is recorded with a NULL from_status.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base


class OrderStateChange(Base):
    """One status transition of one order."""

    __tablename__ = "order_state_changes"

    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_state_change_order_sequence"),
        Index("idx_state_change_order", "order_id", "occurred_at"),
    )

    order_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("orders.order_id"),
        nullable=False,
    )

    # 1-based position in the order's history; assigned under the order lock
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)

    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<OrderStateChange {self.order_id}: {self.from_status} -> {self.to_status}>"
