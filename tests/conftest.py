import os
import re
from datetime import datetime

os.environ.setdefault("CARELINK_SIGN_KEY", "test-signing-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from carelink.db import Base, get_db
from carelink.errors import DeliveryFailed
from carelink.main import app, get_notifier
from carelink.models import Partner, Profile, Doctor, gen_uuid
from carelink.utils import create_access_token

NOW = datetime(2026, 10, 19, 9, 0, 0)


class FakeNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, address, subject, body):
        if self.fail:
            raise DeliveryFailed()
        self.sent.append((address, subject, body))

    @property
    def last_code(self):
        return re.search(r"code is: (\d{6})", self.sent[-1][2]).group(1)


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    import carelink.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    # separate connections per session, so SQLite's own locking is what serializes writers
    engine = create_engine(f"sqlite:///{tmp_path / 'carelink.db'}", connect_args={"check_same_thread": False})
    import carelink.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def make_profile(db):
    def _make(**kw):
        kw.setdefault("id", gen_uuid())
        kw.setdefault("name", "Asha Rao")
        profile = Profile(**kw)
        db.add(profile)
        db.commit()
        return profile
    return _make


@pytest.fixture
def partner(db):
    p = Partner(id=gen_uuid(), user_id="user-partner", name="Sunrise Clinic")
    db.add(p)
    db.commit()
    return p


@pytest.fixture
def doctor(db):
    d = Doctor(id=gen_uuid(), user_id="user-doctor", name="Dr. Mehta")
    db.add(d)
    db.commit()
    return d


@pytest.fixture
def patient(make_profile):
    return make_profile(carebag_id="CBK7Q2M9PX", email="asha@example.com", phone="+919800011122",
                        user_id="user-patient")


@pytest.fixture
def client(session_factory, notifier):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_header(user_id, *roles):
    return {"Authorization": f"Bearer {create_access_token(user_id, roles)}"}
