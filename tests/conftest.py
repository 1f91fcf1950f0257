import os

# amcpay.database refuses to import without a DATABASE_URL
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_app.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from amcpay.main import app as fastapi_app
from amcpay.auth import verify_token
from amcpay.config import Settings, get_settings
from amcpay.database import Base, get_db
from amcpay.models import Order
from amcpay.signatures import payment_signature

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_temp.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def settings():
    return Settings(
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        supabase_jwt_secret="jwt_test_secret",
        documents_url="https://docs.example.test/generate-invoice-contract",
        documents_token="docs_token",
    )


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def client(settings):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_settings] = lambda: settings
    # Bypass auth verification for tests
    fastapi_app.dependency_overrides[verify_token] = lambda: {"sub": "user-1"}

    with TestClient(fastapi_app) as c:
        yield c

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def amc_order(db):
    order = Order(order_form_id="AMC-1001", full_name="Asha Rao",
                  email="asha@example.com", phone="9876543210")
    db.add(order)
    db.commit()
    return order


def sign(order_id, payment_id, secret=KEY_SECRET):
    return payment_signature(order_id, payment_id, secret)
