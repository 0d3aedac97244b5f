import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="rodeo_gate_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ["AUTH_JWT_SECRET"] = "test_jwt_secret"
os.environ["ISSUE_TOKEN"] = "test_issue_token"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["RATE_LIMIT_PER_MINUTE"] = "1000"

import fakeredis
import httpx
import pytest
import pytest_asyncio

from rodeo_gate.db import Base, SessionLocal, engine
from rodeo_gate.main import app


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest_asyncio.fixture(scope="function")
async def redis():
    r = fakeredis.FakeAsyncRedis()
    app.state.redis = r
    try:
        yield r
    finally:
        await r.aclose()


@pytest_asyncio.fixture(scope="function")
async def client(redis):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver", timeout=10.0) as c:
        yield c
