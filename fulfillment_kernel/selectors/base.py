"""
Module: fulfillment_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    are the query side of the kernel: order queues, picker workload, stock
    availability and exception listings.
Architecture position: Kernel > Selectors.  May import from models/ and the
    pure domain values (enums, DTOs).  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(), delete(),
      flush() or commit().
    - DTO return convention: selectors return frozen DTOs, never live ORM
      instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fulfillment_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs or computed values.

    Non-goals:
        - Takes no row locks; a selector result is a snapshot, not a
          reservation.
    """

    def __init__(self, session: Session):
        self.session = session
