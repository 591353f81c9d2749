"""
Shared fixtures. Every test gets its own SQLite file database.

SQLite connections start transactions with BEGIN IMMEDIATE (see
app.db.session.build_engine), so a session that has read something holds the
database write lock until it commits, rolls back or closes. Fixtures here
therefore hand out ids and detached snapshots rather than live ORM objects.
"""
import itertools
import os

# Configure before anything imports app.core.config
os.environ["DATABASE_URL"] = "sqlite:///./pytest-promptpal.db"
os.environ["FREE_TIER_LIMIT"] = "10"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = ""
os.environ["OPENAI_API_KEY"] = "test-openai-key"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.db.base import Base
from app.db.session import build_engine, get_db
from app.models import Account, PromotionCode
from app.services.account_directory import create_account
from app.services.promotion_ledger import create_promotion_code
from app.services.prompt_rewriter import RewriteResult, get_prompt_rewriter
from app.utils.auth import create_access_token


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'promptpal.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_account(session_factory):
    """Create an account, optionally with entitlement fields preset. Returns its id."""
    numbers = itertools.count(1)

    def make(now=None, **fields):
        n = next(numbers)
        session = session_factory()
        try:
            account = create_account(session, f"user{n}", f"user{n}@example.com", now=now)
            account_id = account.id
            for name, value in fields.items():
                setattr(account, name, value)
            session.commit()
            return account_id
        finally:
            session.close()

    return make


@pytest.fixture
def fetch_account(session_factory):
    """Fresh, detached copy of an account as currently stored."""

    def fetch(account_id):
        session = session_factory()
        try:
            account = session.get(Account, account_id)
            session.expunge(account)
            return account
        finally:
            session.close()

    return fetch


@pytest.fixture
def fetch_promo(session_factory):
    def fetch(code):
        session = session_factory()
        try:
            promo = session.query(PromotionCode).filter(PromotionCode.code == code).first()
            session.expunge(promo)
            return promo
        finally:
            session.close()

    return fetch


@pytest.fixture
def make_promo(session_factory):
    def make(code, discount_percent, **kwargs):
        session = session_factory()
        try:
            return create_promotion_code(session, code, discount_percent, **kwargs).code
        finally:
            session.close()

    return make


class FakeRewriter:
    def __init__(self, failure=None):
        self.failure = failure
        self.calls = []

    async def rewrite(self, text, audience, focus_areas, timeout=30):
        self.calls.append((text, audience, list(focus_areas), timeout))
        if self.failure is not None:
            raise self.failure
        return RewriteResult(
            rewritten_text=f"Optimized: {text}",
            rationale="Clearer instructions",
            improvements=["Added structure"],
        )


@pytest.fixture
def fake_rewriter():
    return FakeRewriter()


@pytest.fixture
def client(session_factory, fake_rewriter):
    from app.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_prompt_rewriter] = lambda: fake_rewriter
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def headers(account_id):
        token = create_access_token({"sub": str(account_id)})
        return {"Authorization": f"Bearer {token}"}

    return headers
