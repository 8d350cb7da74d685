import os

import pytest

# must be set before the app module is imported: it creates tables on import
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "secret"
os.environ["PARCEL_PACKAGING_FEE"] = "20.00"

from app import app as flask_app, seed_defaults  # noqa: E402
from models import db  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    """
    Every test starts from an empty schema with the default categories
    and attributes seeded.
    """
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        seed_defaults()
    yield


@pytest.fixture()
def app_ctx():
    with flask_app.app_context():
        yield flask_app


@pytest.fixture()
def client():
    return flask_app.test_client()


@pytest.fixture()
def auth_client(client):
    res = client.post("/api/login", json={"username": "admin", "password": "secret"})
    assert res.status_code == 200
    return client
