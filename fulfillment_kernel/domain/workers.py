"""
Worker directory -- the picker/packer active-status collaborator.

Responsibility:
    Answers one question for admission control: is this worker currently
    active in this role?  Staffing, shifts and badges live outside the
    kernel; the kernel only consumes the verdict through this interface.

Architecture position:
    Kernel > Domain -- interface plus an in-memory implementation.  The
    production implementation is injected by the caller.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from fulfillment_kernel.domain.statuses import WorkerRole


class WorkerDirectory(ABC):
    """Lookup of worker activity by role."""

    @abstractmethod
    def is_active(self, worker_id: str, role: WorkerRole | str) -> bool:
        ...


class StaticWorkerDirectory(WorkerDirectory):
    """
    Fixed in-memory directory for tests and embedded use.

    With ``allow_all=True`` every non-empty worker id is active in every role.
    """

    def __init__(
        self,
        pickers: Iterable[str] = (),
        packers: Iterable[str] = (),
        allow_all: bool = False,
    ):
        self._active: dict[WorkerRole, set[str]] = {
            WorkerRole.PICKER: set(pickers),
            WorkerRole.PACKER: set(packers),
        }
        self._allow_all = allow_all

    def is_active(self, worker_id: str, role: WorkerRole | str) -> bool:
        if not worker_id:
            return False
        if self._allow_all:
            return True
        return worker_id in self._active[WorkerRole(role)]

    def activate(self, worker_id: str, role: WorkerRole | str) -> None:
        self._active[WorkerRole(role)].add(worker_id)

    def deactivate(self, worker_id: str, role: WorkerRole | str) -> None:
        self._active[WorkerRole(role)].discard(worker_id)
