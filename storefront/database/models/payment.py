"""
Payment, payment method and refund models.

Gateway processing is out of scope; payments are stored records whose state
and response codes drive the order's payment state and risk assessment.
"""

import uuid
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.core.logging import get_logger
from storefront.database.base import BaseModel, create_table_args, state_enum
from storefront.services.orders.enums import PaymentState

if TYPE_CHECKING:
    from storefront.database.models.order import Order

logger = get_logger(__name__)

# Address verification codes that indicate a mismatch
RISKY_AVS_CODES = frozenset("ABCEGINPRSUWZ")


class PaymentMethodDisplay(str, Enum):
    """Where a payment method is offered."""

    FRONT_END = "front_end"
    BACK_END = "back_end"
    BOTH = "both"


class PaymentMethod(BaseModel):
    """
    Configured way of paying.

    Attributes:
        name: Display name
        active: Inactive methods are never offered
        display_on: front_end, back_end, both, or blank for both
        environment: Deployment environment the method is enabled for
    """

    __tablename__ = "payment_methods"
    __table_args__ = create_table_args(comment="Configured payment methods")

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    display_on: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    environment: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    @property
    def available_on_front_end(self) -> bool:
        return self.display_on in (
            None,
            "",
            PaymentMethodDisplay.FRONT_END.value,
            PaymentMethodDisplay.BOTH.value,
        )

    def __repr__(self) -> str:
        return f"<PaymentMethod(id={self.id}, name={self.name!r})>"


class Payment(BaseModel):
    """
    Payment recorded against an order.

    A negative completed payment whose source is another payment is an
    offset: a refund issued outside the reimbursement workflow.
    """

    __tablename__ = "payments"
    __table_args__ = create_table_args(comment="Order payments")

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    payment_method_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payment_methods.id", ondelete="SET NULL"),
        nullable=True,
    )

    source_payment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payments.id", ondelete="SET NULL"),
        nullable=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    state: Mapped[PaymentState] = mapped_column(
        state_enum(PaymentState, "payment_state"),
        nullable=False,
        default=PaymentState.CHECKOUT,
    )

    avs_response: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)

    cvv_response_code: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="payments")

    payment_method: Mapped[Optional["PaymentMethod"]] = relationship("PaymentMethod")

    source_payment: Mapped[Optional["Payment"]] = relationship(
        "Payment",
        remote_side="Payment.id",
    )

    refunds: Mapped[list["Refund"]] = relationship(
        "Refund",
        back_populates="payment",
        cascade="all, delete-orphan",
    )

    @property
    def valid(self) -> bool:
        return PaymentState(self.state).is_valid()

    @property
    def completed(self) -> bool:
        return self.state == PaymentState.COMPLETED

    @property
    def is_avs_risky(self) -> bool:
        return bool(self.avs_response) and self.avs_response in RISKY_AVS_CODES

    @property
    def is_cvv_risky(self) -> bool:
        return bool(self.cvv_response_code) and self.cvv_response_code != "M"

    @property
    def is_risky(self) -> bool:
        return self.state == PaymentState.FAILED or self.is_avs_risky or self.is_cvv_risky

    @property
    def is_offset(self) -> bool:
        return (
            self.source_payment is not None
            and self.completed
            and (self.amount or Decimal("0")) < 0
        )

    def cancel(self) -> None:
        """Void the payment."""
        self.state = PaymentState.VOID
        logger.info("Payment voided", payment_id=str(self.id), amount=str(self.amount))

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, amount={self.amount}, state={self.state})>"


class Refund(BaseModel):
    """Money returned against a payment."""

    __tablename__ = "refunds"
    __table_args__ = create_table_args(comment="Refunds against payments")

    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    reimbursement_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    payment: Mapped["Payment"] = relationship("Payment", back_populates="refunds")
