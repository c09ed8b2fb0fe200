"""
Order model: the root aggregate of a customer purchase.

This module defines the Order model with its line items, shipments,
adjustments, payments and state change log, plus the record-level queries
the order services build on. Totals are stored columns recomputed by the
order updater; nothing here writes them.
"""

import secrets
import string
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    event,
    inspect,
    select,
)
from sqlalchemy.orm import Mapped, mapped_column, reconstructor, relationship

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.core.money import Money
from storefront.database.base import BaseModel, RecordErrors, create_table_args, state_enum
from storefront.services.orders.enums import (
    OrderEvent,
    OrderPaymentState,
    OrderShipmentState,
    OrderState,
    get_event_target,
)

if TYPE_CHECKING:
    from storefront.database.models.address import Address
    from storefront.database.models.adjustment import Adjustment
    from storefront.database.models.line_item import LineItem
    from storefront.database.models.payment import Payment, Refund
    from storefront.database.models.shipment import InventoryUnit, Shipment
    from storefront.database.models.user import User
    from storefront.database.models.variant import Variant

logger = get_logger(__name__)

LineItemComparisonHook = Callable[["Order", "LineItem", dict[str, Any]], bool]
UpdateHook = Callable[["Order"], Any]

_TOTAL_COLUMNS = (
    "item_total",
    "adjustment_total",
    "shipment_total",
    "promo_total",
    "included_tax_total",
    "additional_tax_total",
    "payment_total",
    "total",
)


def _money_column(comment: str) -> Mapped[Decimal]:
    return mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment=comment,
    )


def _state_value(value: Any) -> Optional[str]:
    return getattr(value, "value", value)


def generate_guest_token() -> str:
    return secrets.token_urlsafe(16)


class Order(BaseModel):
    """
    Customer order.

    Attributes:
        number: Public order number
        guest_token: Token identifying a guest's cart
        state: Checkout or post-checkout state
        payment_state: Summary of payments, maintained by the updater
        shipment_state: Summary of shipments, maintained by the updater
        item_total: Sum of line item amounts
        adjustment_total: Sum of eligible adjustments
        shipment_total: Sum of shipment costs
        total: Grand total
        completed_at: When checkout completed
        canceled_at: When the order was canceled
        confirmation_delivered: Whether the confirmation email went out
    """

    __tablename__ = "orders"

    line_item_comparison_hooks: ClassVar[list[LineItemComparisonHook]] = []
    update_hooks: ClassVar[list[UpdateHook]] = []

    number: Mapped[Optional[str]] = mapped_column(
        String(32),
        nullable=True,
        unique=True,
        index=True,
        comment="Public order number",
    )

    guest_token: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        default=generate_guest_token,
        comment="Guest cart token",
    )

    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    state: Mapped[OrderState] = mapped_column(
        state_enum(OrderState, "order_state"),
        nullable=False,
        default=OrderState.CART,
        index=True,
        active_history=True,
    )

    payment_state: Mapped[Optional[OrderPaymentState]] = mapped_column(
        state_enum(OrderPaymentState, "order_payment_state"),
        nullable=True,
        active_history=True,
    )

    shipment_state: Mapped[Optional[OrderShipmentState]] = mapped_column(
        state_enum(OrderShipmentState, "order_shipment_state"),
        nullable=True,
        active_history=True,
    )

    _currency: Mapped[Optional[str]] = mapped_column("currency", String(3), nullable=True)

    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    item_total: Mapped[Decimal] = _money_column("Sum of line item amounts")
    adjustment_total: Mapped[Decimal] = _money_column("Sum of eligible adjustments")
    shipment_total: Mapped[Decimal] = _money_column("Sum of shipment costs")
    promo_total: Mapped[Decimal] = _money_column("Promotion part of adjustment_total")
    included_tax_total: Mapped[Decimal] = _money_column("Tax included in prices")
    additional_tax_total: Mapped[Decimal] = _money_column("Tax added on top of prices")
    payment_total: Mapped[Decimal] = _money_column("Sum of completed payments")
    total: Mapped[Decimal] = _money_column("Grand total")

    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    confirmation_delivered: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    considered_risky: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    canceler_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    bill_address_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("addresses.id", ondelete="SET NULL"),
        nullable=True,
    )

    ship_address_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("addresses.id", ondelete="SET NULL"),
        nullable=True,
    )

    user: Mapped[Optional["User"]] = relationship(
        "User",
        back_populates="orders",
        foreign_keys=[user_id],
    )

    created_by: Mapped[Optional["User"]] = relationship("User", foreign_keys=[created_by_id])

    canceler: Mapped[Optional["User"]] = relationship("User", foreign_keys=[canceler_id])

    approver: Mapped[Optional["User"]] = relationship("User", foreign_keys=[approver_id])

    bill_address: Mapped[Optional["Address"]] = relationship(
        "Address",
        foreign_keys=[bill_address_id],
    )

    ship_address: Mapped[Optional["Address"]] = relationship(
        "Address",
        foreign_keys=[ship_address_id],
    )

    line_items: Mapped[list["LineItem"]] = relationship(
        "LineItem",
        back_populates="order",
        cascade="all, delete-orphan",
    )

    shipments: Mapped[list["Shipment"]] = relationship(
        "Shipment",
        back_populates="order",
        cascade="all, delete-orphan",
    )

    adjustments: Mapped[list["Adjustment"]] = relationship(
        "Adjustment",
        back_populates="order",
        cascade="all, delete-orphan",
    )

    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="order",
        cascade="all, delete-orphan",
    )

    state_changes: Mapped[list["StateChange"]] = relationship(
        "StateChange",
        back_populates="order",
        cascade="all, delete-orphan",
    )

    __table_args__ = create_table_args(
        CheckConstraint("item_count >= 0", name="ck_orders_item_count_non_negative"),
        Index("ix_orders_completed_at", "completed_at"),
        comment="Customer orders",
    )

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("state", OrderState.CART)
        kwargs.setdefault("item_count", 0)
        kwargs.setdefault("confirmation_delivered", False)
        kwargs.setdefault("considered_risky", False)
        for column in _TOTAL_COLUMNS:
            kwargs.setdefault(column, Decimal("0.00"))
        super().__init__(**kwargs)
        self.errors = RecordErrors()

    @reconstructor
    def _init_on_load(self) -> None:
        self.errors = RecordErrors()

    # ========================================================================
    # Hooks
    # ========================================================================

    @classmethod
    def register_line_item_comparison_hook(cls, hook: LineItemComparisonHook) -> None:
        """
        Register a callable deciding whether a line item matches options.

        Hooks receive (order, line_item, options) and must all return truthy
        for a line item to be considered the same as the requested one.
        """
        if hook not in cls.line_item_comparison_hooks:
            cls.line_item_comparison_hooks.append(hook)

    @classmethod
    def register_update_hook(cls, hook: UpdateHook) -> None:
        """Register a callable run with the order after every update."""
        if hook not in cls.update_hooks:
            cls.update_hooks.append(hook)

    @classmethod
    def reset_hooks(cls) -> None:
        cls.line_item_comparison_hooks.clear()
        cls.update_hooks.clear()

    # ========================================================================
    # Attributes
    # ========================================================================

    @property
    def currency(self) -> str:
        return self._currency or get_settings().currency

    @currency.setter
    def currency(self, value: Optional[str]) -> None:
        self._currency = value

    @property
    def completed(self) -> bool:
        return self.completed_at is not None

    @property
    def approved(self) -> bool:
        return self.approved_at is not None

    @property
    def checkout_allowed(self) -> bool:
        return len(self.line_items) > 0

    @property
    def checkout_steps(self) -> list[str]:
        """
        Checkout states this order passes through, in order.

        Payment is only collected when something is owed. Confirm is included
        unless switched off in settings, and kept while the order sits in it.
        """
        steps = [OrderState.ADDRESS.value, OrderState.DELIVERY.value]
        if (self.total or Decimal("0")) > 0:
            steps.append(OrderState.PAYMENT.value)
        if get_settings().always_include_confirm_step or self.state == OrderState.CONFIRM:
            steps.append(OrderState.CONFIRM.value)
        steps.append(OrderState.COMPLETE.value)
        return steps

    @property
    def can_ship(self) -> bool:
        return self.state is not None and OrderState(self.state).can_ship()

    @property
    def allow_cancel(self) -> bool:
        if not self.completed or self.state == OrderState.CANCELED:
            return False
        return self.shipment_state is None or OrderShipmentState(
            self.shipment_state
        ).allows_cancel()

    @property
    def can_cancel(self) -> bool:
        if self.state is None:
            return False
        target = get_event_target(OrderEvent.CANCEL, OrderState(self.state))
        return target is not None and self.allow_cancel

    @property
    def paid(self) -> bool:
        return self.payment_state is not None and OrderPaymentState(self.payment_state).is_paid()

    @property
    def tax_address(self) -> Optional["Address"]:
        if get_settings().tax_using_ship_address:
            return self.ship_address
        return self.bill_address

    # ========================================================================
    # Amounts
    # ========================================================================

    @property
    def amount(self) -> Decimal:
        return sum((line_item.amount for line_item in self.line_items), Decimal("0"))

    @property
    def quantity(self) -> int:
        return sum(line_item.quantity or 0 for line_item in self.line_items)

    @property
    def pre_tax_item_amount(self) -> Decimal:
        return sum(
            (Decimal(line_item.pre_tax_amount or 0) for line_item in self.line_items),
            Decimal("0"),
        )

    @property
    def tax_total(self) -> Decimal:
        return (self.included_tax_total or Decimal("0")) + (
            self.additional_tax_total or Decimal("0")
        )

    @property
    def outstanding_balance(self) -> Decimal:
        payment_total = self.payment_total or Decimal("0")
        if self.state == OrderState.CANCELED:
            return -payment_total
        return (self.total or Decimal("0")) - payment_total

    @property
    def display_item_total(self) -> Money:
        return Money(self.item_total or 0, self.currency)

    @property
    def display_adjustment_total(self) -> Money:
        return Money(self.adjustment_total or 0, self.currency)

    @property
    def display_shipment_total(self) -> Money:
        return Money(self.shipment_total or 0, self.currency)

    @property
    def display_tax_total(self) -> Money:
        return Money(self.tax_total, self.currency)

    @property
    def display_total(self) -> Money:
        return Money(self.total or 0, self.currency)

    @property
    def display_outstanding_balance(self) -> Money:
        return Money(self.outstanding_balance, self.currency)

    # ========================================================================
    # Line items
    # ========================================================================

    def line_item_options_match(
        self,
        line_item: "LineItem",
        options: Optional[dict[str, Any]],
    ) -> bool:
        if options is None:
            return True
        return all(hook(self, line_item, options) for hook in self.line_item_comparison_hooks)

    def find_line_item_by_variant(
        self,
        variant: "Variant",
        options: Optional[dict[str, Any]] = None,
    ) -> Optional["LineItem"]:
        for line_item in self.line_items:
            if line_item.same_variant(variant) and self.line_item_options_match(
                line_item, options
            ):
                return line_item
        return None

    def contains(self, variant: "Variant", options: Optional[dict[str, Any]] = None) -> bool:
        return self.find_line_item_by_variant(variant, options) is not None

    def quantity_of(self, variant: "Variant", options: Optional[dict[str, Any]] = None) -> int:
        line_item = self.find_line_item_by_variant(variant, options)
        return line_item.quantity if line_item else 0

    @property
    def insufficient_stock_lines(self) -> list["LineItem"]:
        return [line_item for line_item in self.line_items if line_item.insufficient_stock]

    @property
    def deleted_variant_lines(self) -> list["LineItem"]:
        return [
            line_item
            for line_item in self.line_items
            if line_item.variant is None or line_item.variant.is_deleted
        ]

    # ========================================================================
    # Shipments, adjustments and payments
    # ========================================================================

    @property
    def backordered(self) -> bool:
        return any(shipment.backordered for shipment in self.shipments)

    @property
    def inventory_units(self) -> list["InventoryUnit"]:
        return [unit for shipment in self.shipments for unit in shipment.inventory_units]

    @property
    def all_inventory_units_returned(self) -> bool:
        return all(unit.returned for unit in self.inventory_units)

    @property
    def all_adjustments(self) -> list["Adjustment"]:
        return list(self.adjustments)

    @property
    def shipping_adjustments(self) -> list["Adjustment"]:
        return [
            adjustment
            for adjustment in self.adjustments
            if adjustment.shipment is not None or adjustment.is_shipping
        ]

    @property
    def unreturned_exchange(self) -> bool:
        """An exchange order reuses a shipment created before the order itself."""
        dated = [shipment for shipment in self.shipments if shipment.created_at is not None]
        if not dated or self.created_at is None:
            return False
        first_shipment = min(dated, key=lambda shipment: shipment.created_at)
        return first_shipment.created_at < self.created_at

    @property
    def refunds(self) -> list["Refund"]:
        return [refund for payment in self.payments for refund in payment.refunds]

    @property
    def has_non_reimbursement_related_refunds(self) -> bool:
        if any(refund.reimbursement_id is None for refund in self.refunds):
            return True
        return any(payment.is_offset for payment in self.payments)

    @property
    def is_risky(self) -> bool:
        return any(payment.is_risky for payment in self.payments)

    # ========================================================================
    # Numbers and state log
    # ========================================================================

    def generate_order_number(
        self,
        length: Optional[int] = None,
        letters: Optional[bool] = None,
        prefix: Optional[str] = None,
        exists: Optional[Callable[[str], bool]] = None,
    ) -> str:
        """
        Assign a random order number unless one is already set.

        Args:
            length: Number of random characters after the prefix
            letters: Include upper-case letters besides digits
            prefix: Leading characters
            exists: Callable reporting whether a candidate is taken

        Returns:
            The order number
        """
        if self.number:
            return self.number

        settings = get_settings()
        length = settings.order_number_length if length is None else length
        letters = settings.order_number_letters if letters is None else letters
        prefix = settings.order_number_prefix if prefix is None else prefix

        alphabet = string.digits + (string.ascii_uppercase if letters else "")
        attempts = 0
        while True:
            candidate = prefix + "".join(secrets.choice(alphabet) for _ in range(length))
            if exists is None or not exists(candidate):
                break
            attempts += 1
            # Widen the space once collisions become common
            if attempts % 10 == 0:
                length += 1

        self.number = candidate
        return candidate

    def record_state_change(
        self,
        name: str,
        previous_state: Any,
        next_state: Any,
    ) -> "StateChange":
        change = StateChange(
            name=name,
            previous_state=_state_value(previous_state),
            next_state=_state_value(next_state),
            user_id=self.user_id,
        )
        self.state_changes.append(change)
        logger.debug(
            "Order state change recorded",
            order_number=self.number,
            name=name,
            previous_state=change.previous_state,
            next_state=change.next_state,
        )
        return change

    def state_changed(self, name: str) -> Optional["StateChange"]:
        """
        Log a change of the ``<name>_state`` column since it was loaded.

        Only persisted orders are logged. The column history is read before
        the state_changes collection is touched so loading it cannot flush
        the change away.
        """
        attribute = "state" if name == "order" else f"{name}_state"
        instance_state = inspect(self)
        if not instance_state.persistent:
            return None

        history = instance_state.attrs[attribute].history
        if not history.added:
            return None

        previous = history.deleted[0] if history.deleted else None
        current = history.added[0]
        if _state_value(previous) == _state_value(current):
            return None

        return self.record_state_change(name, previous, current)

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, number={self.number!r}, "
            f"state={_state_value(self.state)}, total={self.total})>"
        )


class StateChange(BaseModel):
    """Log entry for a change of one of an order's state columns."""

    __tablename__ = "state_changes"
    __table_args__ = create_table_args(comment="Order state change log")

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(32), nullable=False)

    previous_state: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    next_state: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="state_changes")

    def __repr__(self) -> str:
        return (
            f"<StateChange(name={self.name!r}, previous_state={self.previous_state!r}, "
            f"next_state={self.next_state!r})>"
        )


@event.listens_for(Order, "before_insert")
def assign_order_number(mapper, connection, target: Order) -> None:
    """Give new orders a unique number on insert."""
    if target.number:
        return

    number_column = Order.__table__.c.number

    def exists(candidate: str) -> bool:
        query = select(number_column).where(number_column == candidate)
        return connection.execute(query).first() is not None

    target.generate_order_number(exists=exists)
