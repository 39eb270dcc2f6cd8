"""
Module: fulfillment_kernel.selectors.exception_selector
Responsibility: Read-only queries over fulfillment exceptions and the
    backorder lines their resolutions create.
Architecture position: Kernel > Selectors.
"""

from sqlalchemy import func, select

from fulfillment_kernel.domain.dtos import BackorderLineDTO, ExceptionSummary, OrderExceptionDTO
from fulfillment_kernel.domain.statuses import BackorderLineStatus, ExceptionStatus
from fulfillment_kernel.domain.workflow import ORDER_EXCEPTION_WORKFLOW
from fulfillment_kernel.models.order_exception import BackorderLine, OrderException
from fulfillment_kernel.selectors.base import BaseSelector

_UNRESOLVED = sorted(
    s.value for s in ExceptionStatus if s.value not in ORDER_EXCEPTION_WORKFLOW.terminal_states
)


class ExceptionSelector(BaseSelector[OrderException]):
    """Exception read paths."""

    def get(self, exception_id: str) -> OrderExceptionDTO | None:
        exc = self.session.execute(
            select(OrderException).where(OrderException.exception_id == exception_id)
        ).scalar_one_or_none()
        return OrderExceptionDTO.from_model(exc) if exc is not None else None

    def for_order(self, order_id: str) -> list[OrderExceptionDTO]:
        rows = self.session.execute(
            select(OrderException)
            .where(OrderException.order_id == order_id)
            .order_by(OrderException.reported_at, OrderException.exception_id)
        ).scalars().all()
        return [OrderExceptionDTO.from_model(e) for e in rows]

    def open_exceptions(self, order_id: str | None = None) -> list[OrderExceptionDTO]:
        """Exceptions not yet RESOLVED or CANCELLED, oldest first."""
        stmt = select(OrderException).where(OrderException.status.in_(_UNRESOLVED))
        if order_id is not None:
            stmt = stmt.where(OrderException.order_id == order_id)
        stmt = stmt.order_by(OrderException.reported_at, OrderException.exception_id)
        return [
            OrderExceptionDTO.from_model(e) for e in self.session.execute(stmt).scalars().all()
        ]

    def summary(self, order_id: str | None = None) -> ExceptionSummary:
        by_status_stmt = select(OrderException.status, func.count(OrderException.id)).group_by(
            OrderException.status
        )
        by_type_stmt = select(
            OrderException.exception_type, func.count(OrderException.id)
        ).group_by(OrderException.exception_type)
        if order_id is not None:
            by_status_stmt = by_status_stmt.where(OrderException.order_id == order_id)
            by_type_stmt = by_type_stmt.where(OrderException.order_id == order_id)

        by_status = {str(k): v for k, v in sorted(self.session.execute(by_status_stmt).all())}
        by_type = {str(k): v for k, v in sorted(self.session.execute(by_type_stmt).all())}
        return ExceptionSummary(
            total=sum(by_status.values()),
            by_status=by_status,
            by_type=by_type,
        )

    def backorder_lines(
        self,
        order_id: str | None = None,
        status: BackorderLineStatus | str | None = BackorderLineStatus.OPEN,
    ) -> list[BackorderLineDTO]:
        stmt = select(BackorderLine)
        if order_id is not None:
            stmt = stmt.where(BackorderLine.order_id == order_id)
        if status is not None:
            stmt = stmt.where(BackorderLine.status == BackorderLineStatus(status).value)
        stmt = stmt.order_by(BackorderLine.created_at, BackorderLine.order_item_id)
        return [BackorderLineDTO.from_model(b) for b in self.session.execute(stmt).scalars().all()]
