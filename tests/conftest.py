"""Pytest configuration and fixtures for the feature core tests."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from featurerev import models  # noqa: F401  registers tables on Base.metadata
from featurerev.core.context import ReqContext
from featurerev.crud import crud_organization
from featurerev.db.base_class import Base
from featurerev.schemas.feature import FeatureEnvironment, FeatureSnapshot
from featurerev.schemas.organization import Environment, EventUser, OrganizationSettings
from featurerev.services.features import create_feature
from featurerev.services.payload_cache import PayloadCache

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
ORG_ID = "org_1"


# --- Fakes ---

class FakeRedis:
    """The subset of redis.Redis the payload cache uses."""

    def __init__(self):
        self.store = {}
        self.deleted = []

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value

    def delete(self, *keys):
        self.deleted.extend(keys)
        return sum(1 for k in keys if self.store.pop(k, None) is not None)


class BrokenRedis(FakeRedis):
    def delete(self, *keys):
        raise ConnectionError("redis is down")


class RecordingSyncClient:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def _record(self, action, feature):
        if self.fail:
            raise RuntimeError("sync service unavailable")
        self.calls.append((action, feature.id))
        return {}

    def create_item(self, feature):
        return self._record("create", feature)

    def update_item(self, feature):
        return self._record("update", feature)

    def delete_item(self, feature):
        return self._record("delete", feature)


class Clock:
    def __init__(self, now=NOW):
        self.current = now

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


# --- DB ---

@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def org(db):
    """production, staging and dev; dev inherits from staging."""
    settings = OrganizationSettings(
        id=ORG_ID,
        name="Acme",
        environments=[
            Environment(id="production"),
            Environment(id="staging"),
            Environment(id="dev", parent="staging"),
        ],
    )
    crud_organization.create(db, obj_in=settings)
    return settings


# --- Context ---

@pytest.fixture()
def user():
    return EventUser(id="u_1", name="Ada", email="ada@example.com")


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def broken_redis():
    return BrokenRedis()


@pytest.fixture()
def sync_client():
    return RecordingSyncClient()


@pytest.fixture()
def failing_sync_client():
    return RecordingSyncClient(fail=True)


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def ctx(db, org, user, fake_redis, sync_client, clock):
    return ReqContext(
        db=db,
        org=org,
        audit_user=user,
        payload_cache=PayloadCache(fake_redis),
        sync_client=sync_client,
        clock=clock,
    )


@pytest.fixture()
def make_feature(ctx):
    """Create a feature through the service layer and return its snapshot."""

    def _make(feature_id="checkout", environment_settings=None, **fields):
        if environment_settings is None:
            environment_settings = {
                "production": FeatureEnvironment(enabled=True),
                "staging": FeatureEnvironment(enabled=False),
            }
        data = FeatureSnapshot(
            id=feature_id,
            organization=ctx.org.id,
            default_value=fields.pop("default_value", "false"),
            environment_settings=environment_settings,
            **fields,
        )
        return create_feature(ctx, data).feature

    return _make
