import pytest
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from microshop import config
from microshop.database import get_users_collection
from microshop.main import create_app
from microshop.notifications import LogNotifier
from microshop.services.auth_service import AuthService, get_auth_service
from microshop.services.product_service import ProductService, get_product_service
from microshop.services.user_service import UserService, get_user_service

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def demo_config(monkeypatch):
    """Pin the flags the API tests rely on regardless of the environment."""
    monkeypatch.setattr(config, "EXPOSE_TOKENS", True)
    monkeypatch.setattr(config, "TRUST_USER_ID_HEADER", True)
    monkeypatch.setattr(config, "DEFAULT_USER_PERMISSIONS", 8)
    monkeypatch.setattr(config, "LOGIN_ACTIVITY_LIMIT", 20)
    monkeypatch.setattr(config, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def mongo_client():
    return AsyncMongoMockClient()


@pytest.fixture
def mongo_db(mongo_client):
    return mongo_client[config.MONGO_DB]


@pytest.fixture
def notifier():
    return LogNotifier("http://shop.test")


@pytest.fixture
def user_service(mongo_db, notifier):
    return UserService(mongo_db.users, mongo_db.login_activity, mongo_db.counters, notifier)


@pytest.fixture
def auth_service(mongo_db, notifier):
    return AuthService(mongo_db.users, mongo_db.login_activity, mongo_db.counters, notifier)


@pytest.fixture
def product_service(mongo_db):
    return ProductService(mongo_db.products, mongo_db.counters)


@pytest.fixture
async def client(mongo_db, user_service, auth_service, product_service):
    await mongo_db.users.create_index("email", unique=True)
    await mongo_db.products.create_index("sku", unique=True)

    app = create_app("all")
    app.dependency_overrides[get_users_collection] = lambda: mongo_db.users
    app.dependency_overrides[get_user_service] = lambda: user_service
    app.dependency_overrides[get_auth_service] = lambda: auth_service
    app.dependency_overrides[get_product_service] = lambda: product_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def register_user(client):
    """Register an account through the API, verifying its email unless told not to."""
    async def _register(email, password=PASSWORD, verify=True, first_name="Test", last_name="User"):
        resp = await client.post("/api/auth/register", json={
            "email": email,
            "password": password,
            "confirmPassword": password,
            "firstName": first_name,
            "lastName": last_name
        })
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        if verify:
            verified = await client.get(
                "/api/auth/verify-email", params={"token": data["verificationToken"]}
            )
            assert verified.status_code == 200, verified.text
        return data

    return _register


@pytest.fixture
async def admin(register_user):
    """The bootstrap admin (first account registered)."""
    return await register_user("admin@example.com", first_name="Ada", last_name="Admin")


@pytest.fixture
async def shopper(admin, register_user):
    """A verified regular account holding the default permissions."""
    return await register_user("shopper@example.com", first_name="Sam", last_name="Shopper")
