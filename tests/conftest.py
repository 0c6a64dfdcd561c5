import bcrypt
import pytest
from fastapi.testclient import TestClient

from catalog_api.app import create_app
from catalog_api.config import CatalogSettings

ADMIN_SECRET = "open-sesame"
ADMIN_EMAIL = "admin@example.com"
SIGNING_KEY = "test-signing-key"

ASHWAGANDHA = {
    "name": "Ashwagandha",
    "category": "Herbs",
    "price": 12.5,
    "image": "https://example.com/a.png",
    "details": "root extract",
}


@pytest.fixture(scope="session")
def secret_hash():
    # cheap rounds keep the suite fast
    return bcrypt.hashpw(ADMIN_SECRET.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")


@pytest.fixture
def storage_path(tmp_path):
    return tmp_path / "data" / "products.json"


@pytest.fixture
def settings(storage_path, secret_hash):
    return CatalogSettings(
        admin_secret_hash=secret_hash,
        admin_email=ADMIN_EMAIL,
        token_signing_key=SIGNING_KEY,
        token_ttl=900,
        storage_location=str(storage_path),
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def admin_headers():
    return {"X-Admin-Secret": ADMIN_SECRET}
