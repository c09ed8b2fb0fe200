"""
Address model for billing and shipping addresses.
"""

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel, create_table_args


class Address(BaseModel):
    """
    Postal address used as an order's bill or ship address.

    Required columns are NOT NULL, so an incomplete address can be built in
    memory but never flushed.
    """

    __tablename__ = "addresses"
    __table_args__ = create_table_args(comment="Billing and shipping addresses")

    REQUIRED_FIELDS = ("firstname", "lastname", "address1", "city", "zipcode", "country_iso")

    firstname: Mapped[str] = mapped_column(String(100), nullable=False)
    lastname: Mapped[str] = mapped_column(String(100), nullable=False)
    company: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address1: Mapped[str] = mapped_column(String(255), nullable=False)
    address2: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    state_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    zipcode: Mapped[str] = mapped_column(String(20), nullable=False)
    country_iso: Mapped[str] = mapped_column(String(2), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.firstname, self.lastname) if part)

    def missing_fields(self) -> list[str]:
        return [field for field in self.REQUIRED_FIELDS if not getattr(self, field)]

    def is_valid(self) -> bool:
        return not self.missing_fields()

    def __repr__(self) -> str:
        return f"<Address(id={self.id}, name={self.full_name!r}, city={self.city!r})>"
