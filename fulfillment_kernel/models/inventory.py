"""
Module: fulfillment_kernel.models.inventory
Responsibility: ORM persistence for per-(SKU, bin) stock counters and the
    append-only inventory transaction log.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain enums only.

Invariants enforced:
    stock_non_negative   -- quantity_on_hand >= 0 (CHECK).
    reservation_bounded  -- 0 <= quantity_reserved <= quantity_on_hand (CHECK).
    audit_append_only    -- InventoryTransaction rows are never updated or
                            deleted (db/immutability.py + PostgreSQL trigger).

Failure modes:
    - IntegrityError on duplicate (sku, bin_location).
    - IntegrityError from a CHECK if a counter write bypasses InventoryLedger.

Audit relevance:
    Counters on InventoryUnit are a cache of the transaction log: replaying
    every InventoryTransaction for a (sku, bin) reproduces on-hand and
    reserved exactly.  Only InventoryLedger writes either table.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, TrackedBase
from fulfillment_kernel.domain.statuses import TransactionType


class InventoryUnit(TrackedBase):
    """
    Stock counters for one SKU in one bin.

    Contract:
        Shared by every order that references the (sku, bin).  Mutated only
        through InventoryLedger, which locks the row FOR UPDATE first.

    Guarantees:
        - (sku, bin_location) is unique.
        - available == quantity_on_hand - quantity_reserved >= 0.
    """

    __tablename__ = "inventory_units"

    __table_args__ = (
        UniqueConstraint("sku", "bin_location", name="uq_inventory_sku_bin"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_on_hand_non_negative"),
        CheckConstraint(
            "quantity_reserved >= 0 AND quantity_reserved <= quantity_on_hand",
            name="ck_inventory_reserved_bounded",
        ),
    )

    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    bin_location: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity_on_hand: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quantity_reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<InventoryUnit {self.sku}@{self.bin_location} "
            f"on_hand={self.quantity_on_hand} reserved={self.quantity_reserved}>"
        )

    @property
    def available(self) -> int:
        return self.quantity_on_hand - self.quantity_reserved


class InventoryTransaction(Base):
    """
    Append-only record of one inventory ledger mutation.

    Contract:
        One row per ledger call, written in the same flush as the counter
        change it describes.  ``quantity`` is signed per TransactionType.

    Guarantees:
        - Never updated or deleted (audit_append_only).
    """

    __tablename__ = "inventory_transactions"

    __table_args__ = (
        CheckConstraint("quantity <> 0", name="ck_inventory_tx_quantity_nonzero"),
        Index("idx_inventory_tx_order_sku_bin", "order_id", "sku", "bin_location"),
        Index("idx_inventory_tx_sku_bin", "sku", "bin_location"),
    )

    transaction_type: Mapped[TransactionType] = mapped_column(String(20), nullable=False)
    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    bin_location: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<InventoryTransaction {self.transaction_type} {self.sku}@{self.bin_location} "
            f"{self.quantity:+d} order={self.order_id}>"
        )
