import pytest

from backoffice.extensions import db


@pytest.fixture(autouse=True)
def app_context(app):
    """Service tests talk to the session directly, so keep a context pushed"""
    with app.app_context():
        yield
        db.session.remove()
