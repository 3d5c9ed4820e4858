import os, tempfile, time, uuid
from types import SimpleNamespace

# the app engine only runs create_all at import; tests use their own file engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import jwt
from jwt.exceptions import PyJWKClientConnectionError
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from main import app
from config import Settings
from db import Base, get_db
from models import AdminUser
from security import TokenVerifier, verify_token

TENANT = "11111111-2222-3333-4444-555555555555"
CLIENT_ID = "client-123"
APP_ID_URI = "api://survey-api"

@pytest.fixture(scope="session")
def tmp_db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    os.remove(path)

@pytest.fixture(scope="session")
def test_engine(tmp_db_path):
    url = f"sqlite:///{tmp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False})

    # SQLite force foreign key constraints
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()

@pytest.fixture(scope="session")
def TestingSessionLocal(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

@pytest.fixture(scope="session", autouse=True)
def override_di(TestingSessionLocal):
    def _get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()
    app.dependency_overrides[get_db] = _get_db

@pytest.fixture
def client():
    return TestClient(app)

@pytest.fixture
def db(TestingSessionLocal):
    s = TestingSessionLocal()
    try:
        yield s
    finally:
        s.close()

# ------------------------
# Auth helpers
# ------------------------
class StaticKeys:
    """Stands in for PyJWKClient: always resolves to one public key."""

    def __init__(self, public_key):
        self.public_key = public_key
        self.calls = 0

    def get_signing_key_from_jwt(self, token):
        self.calls += 1
        return SimpleNamespace(key=self.public_key)

class UnreachableKeys:
    def get_signing_key_from_jwt(self, token):
        raise PyJWKClientConnectionError("Fail to fetch data from the url, err: timed out")

@pytest.fixture(scope="session")
def signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)

@pytest.fixture(scope="session")
def other_signing_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)

@pytest.fixture
def auth_settings():
    return Settings(tenant_id=TENANT, client_id=CLIENT_ID, app_id_uri=APP_ID_URI, required_scope=None)

@pytest.fixture
def make_token(signing_key):
    def _make(key=None, drop=(), **claims):
        now = int(time.time())
        payload = {
            "iss": f"https://login.microsoftonline.com/{TENANT}/v2.0",
            "aud": CLIENT_ID,
            "iat": now,
            "nbf": now,
            "exp": now + 600,
            "oid": str(uuid.uuid4()),
            "preferred_username": f"user-{uuid.uuid4().hex[:8]}@example.com",
        }
        payload.update(claims)
        for name in drop:
            payload.pop(name, None)
        return jwt.encode(payload, key or signing_key, algorithm="RS256", headers={"kid": "test-kid"})
    return _make

@pytest.fixture
def use_verifier(signing_key):
    """Install a TokenVerifier for the duration of a test."""
    def _install(config, jwks_client=None):
        verifier = TokenVerifier(config, jwks_client=jwks_client or StaticKeys(signing_key.public_key()))
        app.dependency_overrides[verify_token] = verifier
        return verifier
    yield _install
    app.dependency_overrides.pop(verify_token, None)

@pytest.fixture
def add_admin(db):
    def _add(azure_id=None, email=None, is_admin=True, active=True):
        user = AdminUser(azure_id=azure_id, email=email, is_admin=is_admin, active=active)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _add

@pytest.fixture
def unreachable_keys():
    return UnreachableKeys()
