import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SHOPIFY_API_KEY"] = "test-api-key"
os.environ["SHOPIFY_API_SECRET"] = "test-api-secret"
os.environ["SHOP_DOMAIN"] = "test-shop.myshopify.com"

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

import melt.models  # noqa: F401
from melt.database import enable_sqlite_foreign_keys, get_session
from melt.main import app
from melt.models.challenge import Challenge
from melt.models.common import utcnow
from melt.services.shopify import ShopifyCustomer, get_shopify_client
from melt.services.uploads import UploadAdapter, UploadRequest, UploadTarget, get_upload_adapter

SHOP = "test-shop.myshopify.com"
OTHER_SHOP = "other-shop.myshopify.com"


class FakeShopify:
    configured = True

    def __init__(self):
        self.customers: Dict[str, ShopifyCustomer] = {}
        self.order_stats: Dict[str, Tuple[int, float]] = {}
        self.created: List[ShopifyCustomer] = []
        self.fail_create = False

    def add_customer(self, customer: ShopifyCustomer):
        self.customers[customer.email.lower()] = customer

    def lookup_customer_by_email(self, shop: str, email: str) -> Optional[ShopifyCustomer]:
        return self.customers.get(email.strip().lower())

    def get_customer_order_stats(self, shop: str, customer_id: str):
        return self.order_stats.get(customer_id)

    def create_customer(self, shop: str, email: str, first_name: Optional[str] = None,
                        last_name: Optional[str] = None) -> Optional[ShopifyCustomer]:
        if self.fail_create:
            return None
        customer = ShopifyCustomer(
            id=f"gid://shopify/Customer/{1000 + len(self.customers)}",
            email=email.strip(),
            first_name=first_name,
            last_name=last_name,
            orders_count=0,
            total_spent=0.0,
        )
        self.add_customer(customer)
        self.created.append(customer)
        return customer


class FakeUploads(UploadAdapter):
    name = "fake"

    def __init__(self):
        self.missing: Set[str] = set()

    def issue_upload_target(self, request: UploadRequest) -> UploadTarget:
        key = f"challenges/{request.submission_id}/photo-{request.order}-{request.file_name}"
        return UploadTarget(
            backend=self.name,
            method="PUT",
            upload_url=f"https://uploads.example.com/{key}?signature=abc",
            key=key,
            public_url=f"https://cdn.example.com/{key}",
        )

    def finalize(self, key, public_url) -> bool:
        return key not in self.missing

    def is_configured(self) -> bool:
        return True


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="shopify")
def shopify_fixture():
    return FakeShopify()


@pytest.fixture(name="uploads")
def uploads_fixture():
    return FakeUploads()


@pytest.fixture(name="client")
def client_fixture(session: Session, shopify: FakeShopify, uploads: FakeUploads):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_shopify_client] = lambda: shopify
    app.dependency_overrides[get_upload_adapter] = lambda: uploads

    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


def make_challenge(session: Session, shop: str = SHOP, name: str = "Summer Challenge",
                   start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                   is_active: bool = True) -> Challenge:
    now = utcnow()
    challenge = Challenge(
        shop=shop,
        name=name,
        start_date=start_date or now - timedelta(days=1),
        end_date=end_date or now + timedelta(days=30),
        is_active=is_active,
    )
    session.add(challenge)
    session.commit()
    session.refresh(challenge)
    return challenge


def photo_payload(order: int, orientation: str) -> dict:
    key = f"challenges/sub-1/photo-{order}.jpg"
    return {
        "order": order,
        "orientation": orientation,
        "public_url": f"https://cdn.example.com/{key}",
        "key": key,
        "file_name": f"photo-{order}.jpg",
        "file_size": 1024,
        "mime_type": "image/jpeg",
    }


def photos_payload() -> list:
    return [photo_payload(1, "FRONT"), photo_payload(2, "SIDE"), photo_payload(3, "BACK")]


def admin_token(shop: str = SHOP, secret: str = "test-api-secret", audience: str = "test-api-key") -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {
            "iss": f"https://{shop}/admin",
            "dest": f"https://{shop}",
            "aud": audience,
            "sub": "42",
            "exp": now + timedelta(minutes=1),
            "nbf": now - timedelta(seconds=5),
            "iat": now,
        },
        secret,
        algorithm="HS256",
    )


def admin_headers(shop: str = SHOP) -> dict:
    return {"Authorization": f"Bearer {admin_token(shop)}"}
