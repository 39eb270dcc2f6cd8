"""
Module: fulfillment_kernel.models.order
Responsibility: ORM persistence for the Order aggregate -- the order header,
    its line items, and the pick tasks derived from each line.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain enums only.

Invariants enforced:
    progress_bounded   -- 0 <= progress <= 100 (CHECK ck_order_progress).
    worker_assignment  -- picker present in PICKING/PICKED, packer present in
                          PACKING/PACKED (CHECK ck_order_picker/ck_order_packer).
    pick_bounded       -- quantity > 0, 0 <= picked <= quantity,
                          0 <= verified <= picked (CHECKs on order_items).
    terminal_frozen    -- enforced by db/immutability.py, not here.

Failure modes:
    - IntegrityError from a CHECK constraint if a service bug slips past the
      service-level validation.

Audit relevance:
    Orders and items are never deleted; cancelled orders stay as terminal
    rows.  Every status change is mirrored by an OrderStateChange row.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment_kernel.db.base import Base, TrackedBase, UUIDString
from fulfillment_kernel.domain.statuses import (
    INACTIVE_ITEM_STATUSES,
    INCOMPLETE_PICK_TASK_STATUSES,
    OrderItemStatus,
    OrderPriority,
    OrderStatus,
    PickTaskStatus,
)

TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED})


class Order(TrackedBase):
    """
    One customer order moving through the fulfillment lifecycle.

    Contract:
        Created in PENDING by OrderService.create_order; mutated only by the
        kernel services; never deleted.  The order owns its items through
        ``items``; items hold no back-reference to the order object.

    Guarantees:
        - order_id is unique (uq_order_order_id).
        - DB CHECKs back the progress and worker-assignment invariants.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_order_order_id"),
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_order_progress"),
        CheckConstraint(
            "status NOT IN ('PICKING', 'PICKED') OR picker_id IS NOT NULL",
            name="ck_order_picker",
        ),
        CheckConstraint(
            "status NOT IN ('PACKING', 'PACKED') OR packer_id IS NOT NULL",
            name="ck_order_packer",
        ),
        Index("idx_order_status_priority", "status", "priority"),
        Index("idx_order_picker_status", "picker_id", "status"),
        Index("idx_order_packer_status", "packer_id", "status"),
    )

    order_id: Mapped[str] = mapped_column(String(64), nullable=False)

    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    status: Mapped[OrderStatus] = mapped_column(
        String(20),
        default=OrderStatus.PENDING,
        nullable=False,
    )

    priority: Mapped[OrderPriority] = mapped_column(
        String(10),
        default=OrderPriority.NORMAL,
        nullable=False,
    )

    picker_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    packer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Completion of the current stage, 0-100
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Clock-injected intake time; orders the pick queue
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    picked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    packing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    packed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    shipping_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    carrier: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    backorder_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        order_by="OrderItem.line_number",
        lazy="selectin",
        # never null out lines; the delete listener refuses the order instead
        passive_deletes="all",
    )

    def __repr__(self) -> str:
        return f"<Order {self.order_id}: {self.status}>"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ORDER_STATUSES

    @property
    def active_items(self) -> list["OrderItem"]:
        """Lines that still count toward completeness and progress."""
        return [item for item in self.items if item.is_active]

    def find_item(self, order_item_id: str) -> "OrderItem | None":
        for item in self.items:
            if item.order_item_id == order_item_id:
                return item
        return None


class OrderItem(TrackedBase):
    """
    A line item owned by exactly one Order.

    Contract:
        ``quantity`` is the quantity still to fulfil; exception resolutions
        may lower it (BACKORDER) or change it (ADJUST_QUANTITY).  A line
        whose status is CANCELLED or BACKORDERED is inactive.

    Guarantees:
        - quantity > 0, 0 <= picked_quantity <= quantity,
          0 <= verified_quantity <= picked_quantity (CHECKs).
    """

    __tablename__ = "order_items"

    __table_args__ = (
        UniqueConstraint("order_item_id", name="uq_order_item_id"),
        UniqueConstraint("order_pk", "line_number", name="uq_order_item_line"),
        CheckConstraint("quantity > 0", name="ck_item_quantity_positive"),
        CheckConstraint(
            "picked_quantity >= 0 AND picked_quantity <= quantity",
            name="ck_item_picked_bounded",
        ),
        CheckConstraint(
            "verified_quantity >= 0 AND verified_quantity <= picked_quantity",
            name="ck_item_verified_bounded",
        ),
        Index("idx_order_item_sku_bin", "sku", "bin_location"),
    )

    order_pk: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=False,
    )

    order_item_id: Mapped[str] = mapped_column(String(64), nullable=False)

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    sku: Mapped[str] = mapped_column(String(64), nullable=False)

    # Set by a SUBSTITUTE resolution; picks and reservations then use it
    substitute_sku: Mapped[str | None] = mapped_column(String(64), nullable=True)

    bin_location: Mapped[str] = mapped_column(String(32), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    picked_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    verified_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Set when the packer skips the line; cleared by the next verification
    skip_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[OrderItemStatus] = mapped_column(
        String(20),
        default=OrderItemStatus.PENDING,
        nullable=False,
    )

    pick_tasks: Mapped[list["PickTask"]] = relationship(
        cascade="all, delete-orphan",
        order_by="PickTask.created_seq",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<OrderItem {self.order_item_id} {self.effective_sku} "
            f"{self.picked_quantity}/{self.quantity}>"
        )

    @property
    def effective_sku(self) -> str:
        return self.substitute_sku or self.sku

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_ITEM_STATUSES

    @property
    def is_fully_picked(self) -> bool:
        return self.picked_quantity == self.quantity

    @property
    def is_fully_verified(self) -> bool:
        return self.verified_quantity == self.quantity

    @property
    def remaining_to_pick(self) -> int:
        return self.quantity - self.picked_quantity

    def refresh_pick_status(self) -> None:
        """Derive the line status from picked quantity (active lines only)."""
        if not self.is_active:
            return
        if self.picked_quantity == 0:
            self.status = OrderItemStatus.PENDING
        elif self.picked_quantity < self.quantity:
            self.status = OrderItemStatus.PARTIAL_PICKED
        else:
            self.status = OrderItemStatus.FULLY_PICKED

    @property
    def open_pick_task(self) -> "PickTask | None":
        for task in self.pick_tasks:
            if task.status in INCOMPLETE_PICK_TASK_STATUSES:
                return task
        return None


class PickTask(Base):
    """
    Derived, owned child of an OrderItem: the picker's work instruction.

    Created when the order is claimed and discarded when it is unclaimed.
    A line moved to a new (sku, bin) mid-pick gets a fresh task; the earlier
    one is closed at its picked count.  Holds no back-pointer object to its
    line.
    """

    __tablename__ = "pick_tasks"

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_pick_task_quantity_nonneg"),
        CheckConstraint(
            "picked_quantity >= 0 AND picked_quantity <= quantity",
            name="ck_pick_task_picked_bounded",
        ),
    )

    order_item_pk: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("order_items.id"),
        nullable=False,
    )

    created_seq: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    picker_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    bin_location: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    picked_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[PickTaskStatus] = mapped_column(
        String(20),
        default=PickTaskStatus.PENDING,
        nullable=False,
    )

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    skipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    skip_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<PickTask {self.sku}@{self.bin_location} {self.picked_quantity}/{self.quantity}>"
