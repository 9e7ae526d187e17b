# tests/conftest.py
import os
from collections.abc import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENCRYPTION_KEY", "test-master-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from mailportal.auth import create_access_token
from mailportal.config import Settings, get_settings
from mailportal.database import Base, get_db
from mailportal.main import app as fastapi_app
from mailportal.models import User
from mailportal.services.attachment_stager import AttachmentStager
from mailportal.services.config_resolver import UsableConfig
from mailportal.services.credential_vault import CredentialVault

TEST_DB_URL = "sqlite://"
TEST_MASTER_KEY = "test-master-key"


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def upload_dir(tmp_path) -> str:
    path = tmp_path / "uploads"
    return str(path)


@pytest.fixture()
def test_settings(upload_dir: str) -> Settings:
    return Settings(
        encryption_key=TEST_MASTER_KEY,
        upload_dir=upload_dir,
        max_file_size=1024,
        smtp_timeout_seconds=2.0,
        smtp_verify_timeout_seconds=2.0,
        default_smtp_host="relay.example.net",
        default_smtp_port=2525,
        default_smtp_user="fallback@example.net",
        default_smtp_password="fallback-pass",
    )


@pytest.fixture()
def vault() -> CredentialVault:
    return CredentialVault(TEST_MASTER_KEY)


@pytest.fixture()
def stager(test_settings: Settings) -> AttachmentStager:
    return AttachmentStager.from_settings(test_settings)


@pytest.fixture()
def app(db_session: Session, test_settings: Settings) -> Iterator[FastAPI]:
    def _get_db_override():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = _get_db_override
    fastapi_app.dependency_overrides[get_settings] = lambda: test_settings
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def _make_user(db: Session, email: str, full_name=None) -> User:
    user = User(email=email, full_name=full_name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def test_user(db_session: Session) -> User:
    """Primary user that owns the accounts under test."""
    return _make_user(db_session, "alice@example.com", "Alice Example")


@pytest.fixture()
def other_user(db_session: Session) -> User:
    return _make_user(db_session, "bob@example.com")


def auth_headers_for(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email)}"}


@pytest.fixture()
def auth_headers(test_user: User) -> dict[str, str]:
    return auth_headers_for(test_user)


@pytest.fixture()
def smtp_config() -> UsableConfig:
    return UsableConfig(
        host="smtp.example.com",
        port=587,
        username="alice@example.com",
        password="s3cret",
        from_name="Alice Example",
        from_address="alice@example.com",
    )
