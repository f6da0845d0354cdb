from __future__ import annotations

import os

# Settings requires these; tests never touch Postgres.
os.environ.setdefault("PROJECT_NAME", "tile-depot-test")
os.environ.setdefault("POSTGRES_SERVER", "localhost")
os.environ.setdefault("POSTGRES_USER", "postgres")
os.environ.setdefault("ENVIRONMENT", "local")
os.environ.setdefault("PAYMONGO_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("PAYMONGO_MOCK", "true")

from collections.abc import Callable, Generator
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, delete

from app.api.deps import get_db
from app.core.security import create_access_token
from app.main import app
from app.models import (
    Notification,
    Order,
    OrderStatusHistory,
    PaymentArtifact,
    PaymentWebhookEvent,
    Product,
    PromoCode,
    User,
)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


def clean_tables(session: Session) -> None:
    # Children first.
    session.exec(delete(Notification))
    session.exec(delete(PaymentWebhookEvent))
    session.exec(delete(PaymentArtifact))
    session.exec(delete(OrderStatusHistory))
    session.exec(delete(Order))
    session.exec(delete(PromoCode))
    session.exec(delete(Product))
    session.exec(delete(User))
    session.commit()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        clean_tables(session)


@pytest.fixture(scope="function")
def client(engine) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db) -> Callable[..., User]:
    counter = {"n": 0}

    def _make(*, is_admin: bool = False, email: str | None = None) -> User:
        counter["n"] += 1
        user = User(email=email or f"user{counter['n']}@example.com", name="Tester", is_admin=is_admin)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_product(db) -> Callable[..., Product]:
    def _make(
        *,
        name: str = "Ceramic Tile",
        price: str = "100.00",
        stock: int = 10,
        sold: int = 0,
        discount_price: str | None = None,
    ) -> Product:
        product = Product(
            name=name,
            price=Decimal(price),
            discount_price=Decimal(discount_price) if discount_price else None,
            stock=stock,
            sold=sold,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def user(make_user) -> User:
    return make_user()


@pytest.fixture
def admin(make_user) -> User:
    return make_user(is_admin=True, email="admin@example.com")


@pytest.fixture
def auth_headers() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id, timedelta(minutes=30))
        return {"Authorization": f"Bearer {token}"}

    return _headers
