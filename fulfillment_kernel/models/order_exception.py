"""
Module: fulfillment_kernel.models.order_exception
Responsibility: ORM persistence for fulfillment exceptions (short-picks,
    damages, substitutions, bin mismatches, unclaims) and the backorder lines
    created when an exception is resolved as BACKORDER.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain enums only.

Invariants enforced:
    - OrderException rows are never deleted (db/immutability.py + trigger).
    - quantity_short == quantity_expected - quantity_actual (CHECK).

Failure modes:
    - IntegrityError on duplicate exception_id.

Audit relevance:
    Exceptions are first-class audit records: reporter, reviewer and
    resolver identities and timestamps are all retained.  Resolved and
    cancelled exceptions remain queryable forever.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TrackedBase
from fulfillment_kernel.domain.statuses import (
    BackorderLineStatus,
    ExceptionResolution,
    ExceptionStatus,
    ExceptionType,
)


class OrderException(TrackedBase):
    """
    A recorded fulfillment discrepancy on one order line.

    Contract:
        Created by ExceptionService.log_exception (directly or on behalf of
        PickPackService).  Moves OPEN -> REVIEWING -> APPROVED/REJECTED ->
        RESOLVED, or OPEN/REVIEWING -> CANCELLED.  Never deleted.
    """

    __tablename__ = "order_exceptions"

    __table_args__ = (
        UniqueConstraint("exception_id", name="uq_order_exception_id"),
        CheckConstraint(
            "quantity_expected >= 0 AND quantity_actual >= 0",
            name="ck_exception_quantities_non_negative",
        ),
        CheckConstraint(
            "quantity_short = quantity_expected - quantity_actual",
            name="ck_exception_quantity_short",
        ),
        Index("idx_exception_order", "order_id"),
        Index("idx_exception_status", "status"),
    )

    exception_id: Mapped[str] = mapped_column(String(32), nullable=False)

    order_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("orders.order_id"),
        nullable=False,
    )
    # NULL for order-level records such as UNCLAIM
    order_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sku: Mapped[str | None] = mapped_column(String(64), nullable=True)

    exception_type: Mapped[ExceptionType] = mapped_column(String(30), nullable=False)
    status: Mapped[ExceptionStatus] = mapped_column(
        String(20),
        default=ExceptionStatus.OPEN,
        nullable=False,
    )
    resolution: Mapped[ExceptionResolution | None] = mapped_column(String(30), nullable=True)

    quantity_expected: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_actual: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_short: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    substitute_sku: Mapped[str | None] = mapped_column(String(64), nullable=True)

    reported_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return f"<OrderException {self.exception_id} {self.exception_type}: {self.status}>"


class BackorderLine(TrackedBase):
    """Deferred quantity of a line, awaiting replenishment."""

    __tablename__ = "backorder_lines"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_backorder_quantity_positive"),
        Index("idx_backorder_order", "order_id"),
        Index("idx_backorder_sku_status", "sku", "status"),
    )

    order_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("orders.order_id"),
        nullable=False,
    )
    order_item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    exception_id: Mapped[str] = mapped_column(String(32), nullable=False)
    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    bin_location: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[BackorderLineStatus] = mapped_column(
        String(20),
        default=BackorderLineStatus.OPEN,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<BackorderLine {self.order_id}/{self.order_item_id} {self.sku} x{self.quantity}>"
