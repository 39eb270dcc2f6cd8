"""
Module: fulfillment_kernel.models.worker_lock
Responsibility: One lockable row per (worker, role), used to serialize
    workload admission for a single picker or packer.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    The active-order cap of a picker is counted while holding this row
    FOR UPDATE, so two concurrent claims by the same picker cannot both
    pass the check.

Failure modes:
    - IntegrityError when two transactions create the row for a new worker
      at the same time (handled by WorkerLockService via savepoint retry).
"""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base


class WorkerLock(Base):
    """Admission-control lock row for one worker in one role."""

    __tablename__ = "worker_locks"

    __table_args__ = (
        UniqueConstraint("worker_id", "role", name="uq_worker_lock"),
    )

    worker_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)

    def __repr__(self) -> str:
        return f"<WorkerLock {self.role}:{self.worker_id}>"
