"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor and session contract for every write-side service.
    Services receive a SQLAlchemy ``Session`` and persist with
    ``session.flush()`` only.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries -- services flush within the caller's
    transaction and never commit or roll back.  FulfillmentOrchestrator
    (or a test harness) owns commit/rollback, so a claim that reserves
    five lines and then fails on the sixth leaves nothing behind.

Failure modes:
    - A subclass that calls ``session.commit()`` breaks the atomicity of
      multi-step operations such as claim and resolve.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fulfillment_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a ``Session`` from the caller and flushes within the
        active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only queries; those live in selectors/.
    """

    def __init__(self, session: Session):
        self.session = session
