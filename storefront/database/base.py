"""
Declarative base, column mixins and record helpers shared by every model.

Column types are the portable SQLAlchemy 2.0 ones, so the same models run on
PostgreSQL in production and in-memory SQLite under test.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Enum as SQLEnum, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

from storefront.core.logging import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    """
    Current time as naive UTC.

    Timestamps are stored without a zone so values read back from any
    backend compare with freshly created ones.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _column_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    return value


class Base(DeclarativeBase):
    """Declarative base with column serialization."""

    __abstract__ = True

    def to_dict(self, exclude: Optional[set[str]] = None) -> Dict[str, Any]:
        """
        Column values keyed by column name.

        Datetimes become ISO strings; UUIDs and Decimals become strings.
        """
        skip = exclude or set()
        return {
            column.name: _column_value(getattr(self, column.key))
            for column in self.__table__.columns
            if column.name not in skip
        }


class TimestampMixin:
    """created_at / updated_at, both naive UTC."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(),
            nullable=False,
            default=utcnow,
            comment="When the row was inserted",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(),
            nullable=False,
            default=utcnow,
            onupdate=utcnow,
            comment="When the row last changed",
        )


class UUIDMixin:
    """Client-generated UUID primary key, assigned at insert."""

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            Uuid(as_uuid=True),
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
        )


class SoftDeleteMixin:
    """
    Withdrawal marker for catalogue rows.

    Line items keep pointing at soft-deleted variants; checkout refuses to
    complete while any are present.
    """

    @declared_attr
    def deleted_at(cls) -> Mapped[Optional[datetime]]:
        return mapped_column(
            DateTime(),
            nullable=True,
            default=None,
            comment="When the row was withdrawn",
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self) -> None:
        if self.is_deleted:
            return
        self.deleted_at = utcnow()
        logger.info(
            "Record withdrawn",
            model=type(self).__name__,
            record_id=str(getattr(self, "id", None)),
        )


class BaseModel(Base, UUIDMixin, TimestampMixin):
    """Abstract base for storefront tables: UUID key plus timestamps."""

    __abstract__ = True


class SoftDeleteModel(BaseModel, SoftDeleteMixin):
    __abstract__ = True


def create_table_args(*constraints: Any, comment: Optional[str] = None) -> tuple:
    """
    Build ``__table_args__`` from constraints and indexes plus a comment.

    Example:
        __table_args__ = create_table_args(
            Index("ix_orders_state", "state"),
            comment="Customer orders",
        )
    """
    options: Dict[str, Any] = {"comment": comment} if comment else {}
    return (*constraints, options)


def state_enum(enum_cls: type[enum.Enum], name: str) -> SQLEnum:
    """
    Column type for a str-valued state enum.

    Values (not member names) are stored in a VARCHAR with a CHECK
    constraint so the schema stays portable across backends.
    """
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        validate_strings=True,
        values_callable=lambda members: [member.value for member in members],
    )


class RecordErrors:
    """
    Validation messages attached to a record, keyed by attribute.

    Business-rule failures are reported here instead of raising, with
    whole-record problems filed under "base".
    """

    def __init__(self) -> None:
        self._messages: Dict[str, list[str]] = {}

    def add(self, attribute: str, message: str) -> None:
        self._messages.setdefault(attribute, []).append(message)

    def __getitem__(self, attribute: str) -> list[str]:
        return list(self._messages.get(attribute, []))

    def __contains__(self, attribute: str) -> bool:
        return bool(self._messages.get(attribute))

    def __bool__(self) -> bool:
        return any(self._messages.values())

    def __len__(self) -> int:
        return sum(len(messages) for messages in self._messages.values())

    def clear(self) -> None:
        self._messages.clear()

    def to_dict(self) -> Dict[str, list[str]]:
        return {key: list(value) for key, value in self._messages.items() if value}

    @property
    def full_messages(self) -> list[str]:
        return [message for messages in self._messages.values() for message in messages]
