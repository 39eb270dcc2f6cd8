"""
WorkerLockService -- serializes workload admission per worker.

Responsibility:
    Locks the WorkerLock row of one (worker, role) with
    ``SELECT ... FOR UPDATE`` so that counting a picker's active orders and
    assigning a new one happen atomically with respect to other claims by
    the same picker.

Architecture position:
    Kernel > Services -- imperative shell infrastructure, used by
    AllocationService and PickPackService.

Invariants enforced:
    Picker cap -- two concurrent claims by one picker at cap - 1 cannot
    both observe cap - 1 active orders; the second waits for the first
    to commit and then counts it.

Failure modes:
    - IntegrityError on concurrent first use of a worker id.  Handled with
      a savepoint rollback and a locked re-read.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fulfillment_kernel.domain.statuses import WorkerRole
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.worker_lock import WorkerLock

logger = get_logger("services.worker_lock")


class WorkerLockService:
    """Acquire the per-worker admission lock for the current transaction."""

    def __init__(self, session: Session):
        self._session = session

    def _select_for_update(self, worker_id: str, role: str) -> WorkerLock | None:
        return self._session.execute(
            select(WorkerLock)
            .where(WorkerLock.worker_id == worker_id, WorkerLock.role == role)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def acquire(self, worker_id: str, role: WorkerRole | str) -> WorkerLock:
        """
        Lock (creating on first use) the row for ``worker_id`` in ``role``.

        The lock is held until the caller's transaction ends.
        """
        role_value = WorkerRole(role).value
        lock = self._select_for_update(worker_id, role_value)
        if lock is not None:
            return lock

        savepoint = self._session.begin_nested()
        try:
            lock = WorkerLock(worker_id=worker_id, role=role_value)
            self._session.add(lock)
            self._session.flush()
            savepoint.commit()
            logger.debug(
                "worker_lock_created",
                extra={"worker_id": worker_id, "role": role_value},
            )
            return lock
        except IntegrityError:
            logger.debug(
                "worker_lock_race_retry",
                extra={"worker_id": worker_id, "role": role_value},
            )
            savepoint.rollback()
            return self._session.execute(
                select(WorkerLock)
                .where(WorkerLock.worker_id == worker_id, WorkerLock.role == role_value)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()
