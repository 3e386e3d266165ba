"""
Atomic unit of work over the Flask-SQLAlchemy session.

Everything executed inside ``with unit_of_work(...)`` commits together or
is rolled back together. Ledger errors propagate unchanged; store
failures are wrapped in an opaque LedgerError.
"""

from contextlib import contextmanager

import structlog
from sqlalchemy.exc import SQLAlchemyError

from backoffice.extensions import db
from backoffice.services.errors import LedgerError

logger = structlog.get_logger(__name__)


@contextmanager
def unit_of_work(action):
    try:
        yield db.session
        db.session.commit()
    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error('Unit of work failed', action=action, error=str(e))
        raise LedgerError(f'{action} failed: {e}') from e
    except Exception:
        db.session.rollback()
        raise
