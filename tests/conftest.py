"""
Pytest configuration and fixtures for the back office tests
"""

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import MemberRole, MemberStatus, User, Wallet
from backoffice.services.campaign_service import create_campaign
from config import TestConfig

PASSWORD = 'secret-pass'


@pytest.fixture
def app():
    """Fresh app on a private in-memory database (main wallet already bootstrapped)"""
    app = create_app(TestConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


def _add_user(username, role=MemberRole.MEMBER.value, status=MemberStatus.ACTIVE.value):
    user = User(
        username=username,
        email=f'{username}@example.com',
        full_name=username.title(),
        role=role,
        status=status,
    )
    user.set_password(PASSWORD)
    db.session.add(user)
    return user


@pytest.fixture
def users(app):
    """
    Seed members and return their ids by username:
    admin (active admin), alice and bob (active), carol (inactive)
    """
    with app.app_context():
        seeded = [
            _add_user('admin', role=MemberRole.ADMIN.value),
            _add_user('alice'),
            _add_user('bob'),
            _add_user('carol', status=MemberStatus.INACTIVE.value),
        ]
        db.session.commit()
        ids = {user.username: user.id for user in seeded}
        db.session.remove()
    return ids


@pytest.fixture
def main_wallet_id(app):
    with app.app_context():
        return Wallet.query.filter_by(is_main=True).one().id


@pytest.fixture
def campaign_id(app):
    """An active fundraiser with a 200000 target"""
    with app.app_context():
        return create_campaign('Roof repair', kind='fundraising', target_amount=200000).id


def login(app, username, password=PASSWORD):
    client = app.test_client()
    response = client.post('/api/login', json={'username': username, 'password': password})
    assert response.status_code == 200, response.get_json()
    return client


@pytest.fixture
def admin_client(app, users):
    return login(app, 'admin')


@pytest.fixture
def member_client(app, users):
    return login(app, 'alice')


@pytest.fixture
def login_as(app, users):
    """Log in any seeded user: login_as('bob', password=...)"""
    return lambda username, password=PASSWORD: login(app, username, password)
