"""
User model for customers and store administrators.
"""

import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import BaseModel, create_table_args

if TYPE_CHECKING:
    from storefront.database.models.address import Address
    from storefront.database.models.order import Order


class User(BaseModel):
    """
    Store account owning orders.

    Attributes:
        email: Login and contact email
        admin: Whether the user may act on other customers' orders
        bill_address: Default billing address copied to new orders
        ship_address: Default shipping address copied to new orders
    """

    __tablename__ = "users"
    __table_args__ = create_table_args(comment="Customer and administrator accounts")

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Login and contact email",
    )

    admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Store administrator flag",
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

    bill_address: Mapped[Optional["Address"]] = relationship(
        "Address",
        foreign_keys=[bill_address_id],
    )

    ship_address: Mapped[Optional["Address"]] = relationship(
        "Address",
        foreign_keys=[ship_address_id],
    )

    orders: Mapped[list["Order"]] = relationship(
        "Order",
        back_populates="user",
        foreign_keys="Order.user_id",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r})>"
