from datetime import date
from decimal import Decimal

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.property import Property
from models.user import User
from security.password import hash_password
from services.bookings import BookingService
from utils.seed import grant_role, seed_roles

PASSWORD = "secret123"
TODAY = date(2024, 1, 1)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_roles()
        yield app
        db.session.remove()
        db.drop_all()


def _make_user(email, *role_names):
    user = User(email=email, password_hash=hash_password(PASSWORD), name=email.split("@")[0])
    db.session.add(user)
    for name in role_names:
        grant_role(user, name)
    db.session.commit()
    return user


@pytest.fixture
def landlord(app):
    return _make_user("landlord@rentverse.test", "LANDLORD")


@pytest.fixture
def other_landlord(app):
    return _make_user("landlord2@rentverse.test", "LANDLORD")


@pytest.fixture
def tenant(app):
    return _make_user("tenant@rentverse.test", "USER")


@pytest.fixture
def tenant_b(app):
    return _make_user("tenant2@rentverse.test", "USER")


@pytest.fixture
def outsider(app):
    return _make_user("outsider@rentverse.test", "USER")


@pytest.fixture
def admin(app):
    return _make_user("admin@rentverse.test", "ADMIN")


@pytest.fixture
def make_property(app):
    def factory(owner, **overrides):
        fields = dict(
            owner_user_id=owner.id,
            title="Luxury Penthouse at KLCC",
            address="Jalan Ampang, KLCC",
            city="Kuala Lumpur",
            price=Decimal("1500.00"),
            is_available=True,
            status="APPROVED",
        )
        fields.update(overrides)
        prop = Property(**fields)
        db.session.add(prop)
        db.session.commit()
        return prop
    return factory


@pytest.fixture
def rental(landlord, make_property):
    return make_property(landlord)


@pytest.fixture
def service(app):
    return BookingService(db.session, clock=lambda: TODAY)


class ApiClient:
    """Test client that logs in and echoes the CSRF cookie on writes."""

    def __init__(self, client):
        self.client = client
        self.csrf = None

    def login(self, email, password=PASSWORD):
        resp = self.client.post("/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.get_json()
        self.csrf = self.client.get_cookie("csrf_token").value
        return self

    def get(self, url, **kwargs):
        return self.client.get(url, **kwargs)

    def post(self, url, json=None):
        headers = {"X-CSRF-Token": self.csrf} if self.csrf else {}
        return self.client.post(url, json=json or {}, headers=headers)


@pytest.fixture
def api(app):
    def factory(user=None):
        client = ApiClient(app.test_client())
        if user is not None:
            client.login(user.email)
        return client
    return factory
