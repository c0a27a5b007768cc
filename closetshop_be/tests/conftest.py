import os

# Must be set before the app (and its engine) is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ["PORTONE_API_KEY"] = ""
os.environ["PORTONE_API_SECRET"] = ""

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import app
from app.models.user import Base, SessionLocal, User, engine
from app.models.product import Product
from app.models.cart import Cart, CartItem
from app.routers.orders import get_gateway
from app.services.order_service import OrderService
from app.utils.errors import GatewayUnavailable
from app.utils.portone import PortOneClient
from app.utils.security import create_access_token


class FakeGateway(PortOneClient):
    """PortOne client whose payment lookups come from a dict."""

    def __init__(self):
        super().__init__("test-key", "test-secret")
        self.payments = {}
        self.unavailable = False

    def get_payment(self, imp_uid):
        if self.unavailable or imp_uid not in self.payments:
            raise GatewayUnavailable("Could not look up the payment")
        return self.payments[imp_uid]

    def add_payment(self, imp_uid, amount, status="paid"):
        self.payments[imp_uid] = {
            "imp_uid": imp_uid,
            "status": status,
            "amount": amount,
            "pg_provider": "html5_inicis",
            "pay_method": "card",
            "card_name": "Shinhan",
            "buyer_name": "Kim Minji",
            "buyer_email": "minji@example.com",
            "buyer_tel": "010-1234-5678",
        }


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def service(db, settings, gateway):
    return OrderService(db, settings, gateway)


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db, email, role="USER"):
    user = User(name=email.split("@")[0], email=email, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_product(db, name, price, images=None):
    product = Product(name=name, price=price, images=images if images is not None else [f"/media/{name}.jpg"])
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def add_to_cart(db, user, product, quantity=1):
    cart = db.query(Cart).filter(Cart.user_id == user.id).first()
    if not cart:
        cart = Cart(user_id=user.id)
        db.add(cart)
        db.flush()
    db.add(CartItem(cart_id=cart.id, product_id=product.id, quantity=quantity))
    db.commit()
    return cart


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.email)}"}


@pytest.fixture
def customer(db):
    return make_user(db, "minji@example.com")


@pytest.fixture
def other_customer(db):
    return make_user(db, "jisoo@example.com")


@pytest.fixture
def admin(db):
    return make_user(db, "admin@example.com", role="ADMIN")


SHIPPING_ADDRESS = {
    "recipientName": "Kim Minji",
    "phone": "010-1234-5678",
    "zipCode": "06236",
    "address": "123 Teheran-ro, Gangnam-gu, Seoul",
    "addressDetail": "5F",
    "deliveryRequest": "Leave at the door",
}
