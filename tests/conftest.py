"""
Pytest configuration and shared test fixtures.

This module provides an in-memory SQLite database shared by every session of
a test, builder fixtures for users, variants with stock, stock locations and
orders with line items, a recording email backend and an order service wired
to it.
"""

from decimal import Decimal
from itertools import count
from typing import Callable, Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import storefront.database.models  # noqa: F401
from storefront.core.config import Settings, get_settings
from storefront.database.base import Base
from storefront.database.connection import (
    configure_engine,
    create_engine,
    get_db,
    get_session_factory,
)
from storefront.database.models import (
    Address,
    LineItem,
    Order,
    StockItem,
    StockLocation,
    User,
    Variant,
)
from storefront.services.notifications.mailer import (
    OrderMailer,
    OutboxBackend,
    get_email_backend,
)
from storefront.services.orders.enums import OrderEvent, OrderState
from storefront.services.orders.service import OrderService
from storefront.services.orders.updater import OrderUpdater

_sequence = count(1)


# ============================================================================
# Settings and global state
# ============================================================================


@pytest.fixture(autouse=True)
def settings(monkeypatch) -> Generator[Settings, None, None]:
    """
    Fresh settings for every test.

    Tests may mutate the returned object; the cache is cleared afterwards.
    """
    monkeypatch.setenv("STOREFRONT_ENVIRONMENT", "test")
    monkeypatch.setenv("STOREFRONT_DATABASE_URL", "sqlite://")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_order_hooks() -> Generator[None, None, None]:
    yield
    Order.reset_hooks()


@pytest.fixture(autouse=True)
def reset_global_outbox() -> Generator[None, None, None]:
    yield
    backend = get_email_backend()
    if isinstance(backend, OutboxBackend):
        backend.reset()


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def engine(settings: Settings):
    """In-memory SQLite engine with every table created."""
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    configure_engine(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session, None, None]:
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def outbox() -> OutboxBackend:
    return OutboxBackend()


@pytest.fixture
def mailer(db_session: Session, outbox: OutboxBackend) -> OrderMailer:
    return OrderMailer(db_session, backend=outbox)


@pytest.fixture
def order_service(db_session: Session, mailer: OrderMailer) -> OrderService:
    return OrderService(db_session, mailer=mailer)


# ============================================================================
# Builders
# ============================================================================


@pytest.fixture
def stock_location(db_session: Session) -> StockLocation:
    location = StockLocation(name="Main Warehouse", active=True, backorderable_default=False)
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture
def make_address(db_session: Session) -> Callable[..., Address]:
    def _make(**overrides) -> Address:
        fields = {
            "firstname": "Jane",
            "lastname": "Doe",
            "address1": "10 Lovely Street",
            "city": "Herndon",
            "zipcode": "35005",
            "country_iso": "US",
            "phone": "555-555-0199",
        }
        fields.update(overrides)
        return Address(**fields)

    return _make


@pytest.fixture
def make_user(db_session: Session, make_address) -> Callable[..., User]:
    def _make(
        email: Optional[str] = None,
        admin: bool = False,
        with_addresses: bool = False,
    ) -> User:
        user = User(email=email or f"user{next(_sequence)}@example.com", admin=admin)
        if with_addresses:
            user.bill_address = make_address()
            user.ship_address = make_address(address1="20 Ship Street")
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_variant(db_session: Session, stock_location: StockLocation) -> Callable[..., Variant]:
    """Build a variant stocked at the main warehouse."""

    def _make(
        price: str = "10.00",
        count_on_hand: int = 10,
        backorderable: bool = False,
        track_inventory: bool = True,
        name: Optional[str] = None,
    ) -> Variant:
        number = next(_sequence)
        variant = Variant(
            sku=f"SKU-{number}",
            name=name or f"Product {number}",
            price=Decimal(price),
            track_inventory=track_inventory,
        )
        stock_location.stock_items.append(
            StockItem(
                variant=variant,
                count_on_hand=count_on_hand,
                backorderable=backorderable,
            )
        )
        db_session.add(variant)
        db_session.commit()
        return variant

    return _make


@pytest.fixture
def make_order(db_session: Session) -> Callable[..., Order]:
    """
    Build a stored order holding the given (variant, quantity) lines.

    Totals are computed by the updater, never set by hand.
    """

    def _make(
        lines: tuple = (),
        email: Optional[str] = "customer@example.com",
        state: OrderState = OrderState.CART,
        user: Optional[User] = None,
        currency: Optional[str] = None,
    ) -> Order:
        order = Order(email=email, state=state, user=user, currency=currency)
        for variant, quantity in lines:
            line_item = LineItem(
                variant=variant,
                quantity=quantity,
                price=variant.price,
                currency=order.currency,
            )
            line_item.pre_tax_amount = line_item.amount
            order.line_items.append(line_item)

        OrderUpdater(order).update_totals()
        db_session.add(order)
        db_session.commit()
        return order

    return _make


@pytest.fixture
def checkout(order_service: OrderService) -> Callable[[Order], Order]:
    """Drive an order through every checkout step to completion."""

    def _checkout(order: Order) -> Order:
        while order.state != OrderState.COMPLETE:
            if not order_service.state_machine.fire(order, OrderEvent.NEXT):
                raise AssertionError(
                    f"checkout stopped in {order.state}: {order.errors.to_dict()}"
                )
        return order

    return _checkout


@pytest.fixture
def completed_order(make_variant, make_order, checkout) -> Order:
    variant = make_variant(price="15.00", count_on_hand=10)
    order = make_order(lines=((variant, 2),))
    return checkout(order)


# ============================================================================
# API
# ============================================================================


@pytest.fixture
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """
    Test client whose requests share the test's database session.

    Returns:
        TestClient bound to the application
    """
    from storefront.main import app

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def global_outbox() -> OutboxBackend:
    """Outbox used by services built without an explicit mailer."""
    return get_email_backend()
