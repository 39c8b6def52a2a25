import os
os.environ["TESTING"] = "1"
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

from assetvault.main import app
from assetvault.database import Base, get_db, enable_sqlite_foreign_keys
from assetvault import models

SQLALCHEMY_DATABASE_URL = os.environ["DATABASE_URL"]
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": 30},
)
enable_sqlite_foreign_keys(engine)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def fresh_schema():
    # DROP TABLE does not fire the audit_logs row triggers
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def create_company(db, name: str | None = None) -> models.Company:
    company = models.Company(name=name or f"Company {uuid.uuid4().hex[:6]}")
    db.add(company)
    db.commit()
    db.refresh(company)
    return company


def create_user(
    db,
    role: models.UserRole | str = models.UserRole.CONTENT_CREATOR,
    company: models.Company | None = None,
    *,
    is_active: bool = True,
) -> models.User:
    user = models.User(
        email=f"user-{uuid.uuid4()}@example.com",
        full_name="Test User",
        role=getattr(role, "value", role),
        company_id=company.id if company else None,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def build_asset(
    owner: models.User,
    *,
    status: models.AssetStatus | str = models.AssetStatus.DRAFT,
    visibility: models.VisibilityLevel | str = models.VisibilityLevel.PRIVATE_OWNER_ONLY,
    upload_channel: models.UploadChannel | str = models.UploadChannel.REVIEWED,
    allowed_role: models.UserRole | str | None = None,
    company_id=None,
    **fields,
) -> models.Asset:
    """Construct an asset directly in any state, keeping the table constraints satisfied."""

    status = getattr(status, "value", status)
    visibility = getattr(visibility, "value", visibility)
    if visibility == models.VisibilityLevel.ROLE_SCOPED.value:
        allowed_role = getattr(allowed_role, "value", allowed_role) or models.UserRole.SEO_SPECIALIST.value
    else:
        allowed_role = None
    fields.setdefault("title", f"Asset {uuid.uuid4().hex[:8]}")
    fields.setdefault("asset_type", models.AssetType.IMAGE.value)
    fields.setdefault("storage_locator", f"s3://assets/{uuid.uuid4().hex}")
    if status == models.AssetStatus.REJECTED.value:
        fields.setdefault("rejection_reason", "Needs work")
    return models.Asset(
        owner_id=owner.id,
        company_id=company_id if company_id is not None else owner.company_id,
        status=status,
        visibility=visibility,
        upload_channel=getattr(upload_channel, "value", upload_channel),
        allowed_role=allowed_role,
        **fields,
    )


def create_asset(db, owner: models.User, **kwargs) -> models.Asset:
    asset = build_asset(owner, **kwargs)
    db.add(asset)
    db.commit()
    db.refresh(asset)
    return asset


def share_asset(db, asset: models.Asset, recipient: models.User) -> models.AssetShare:
    share = models.AssetShare(
        asset_id=asset.id,
        shared_by_id=asset.owner_id,
        shared_with_id=recipient.id,
    )
    db.add(share)
    db.commit()
    return share


def auth_headers(user: models.User) -> dict[str, str]:
    return {"X-User-Id": str(user.id)}
