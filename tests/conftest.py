import os

os.environ['STRIPE_SECRET_KEY'] = 'sk_test_dummy'
os.environ['STRIPE_WEBHOOK_SECRET'] = 'whsec_test'
os.environ['JWT_SECRET'] = 'jwt_test_secret'
os.environ['DATABASE_URL'] = 'sqlite://'

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crm_billing_svc.app import app
from crm_billing_svc.config import get_settings
from crm_billing_svc.models.base import Base, get_db
from crm_billing_svc.models.organization import OrganizationMember
from factories import make_token


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db_session():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def member(db_session):
    membership = OrganizationMember(user_id='user_1', org_id='org_1')
    db_session.add(membership)
    db_session.commit()
    return membership


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}
