"""
WALLET SERVICE - WALLET STORE & MAIN WALLET
===========================================

CRITICAL BUSINESS RULES:
1. Wallet balance ONLY changes via adjust_balance
2. adjust_balance never commits, it joins the caller's unit of work
3. Balance changes are relative SQL deltas (balance = balance + delta),
   never read-then-write of an absolute value
4. Exactly one main wallet exists, and it can never be deleted
"""

from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy import update

from backoffice.extensions import db
from backoffice.models import User, Wallet
from backoffice.services.errors import (
    InvariantViolationError,
    LedgerError,
    NotFoundError,
)
from backoffice.services.unit_of_work import unit_of_work
from backoffice.services.validation import to_amount, to_text

logger = structlog.get_logger(__name__)


# ============================================================
# READ
# ============================================================

def get_wallet(wallet_id):
    """Get wallet, raises NotFoundError if missing"""
    wallet = db.session.get(Wallet, wallet_id)
    if not wallet:
        raise NotFoundError('Wallet', wallet_id)
    return wallet


def get_main_wallet():
    return Wallet.query.filter_by(is_main=True).first()


def list_wallets():
    """All wallets, main wallet first"""
    return Wallet.query.order_by(Wallet.is_main.desc(), Wallet.name.asc(), Wallet.id.asc()).all()


# ============================================================
# CREATE / UPDATE / DELETE
# ============================================================

def create_wallet(name, initial_balance=0, description=None, created_by=None):
    """
    Create a regular (non-main) wallet.

    The initial balance is kept as opening_balance so the journal audit
    can account for money that predates the journal.
    """
    name = to_text(name, 'name', required=True, max_length=100)
    opening = to_amount(
        initial_balance if initial_balance is not None else 0,
        field='initialBalance',
        allow_zero=True,
    )

    wallet = Wallet(
        name=name,
        balance=opening,
        opening_balance=opening,
        description=to_text(description, 'description'),
        created_by=created_by,
        is_main=False,
    )

    with unit_of_work('Wallet creation'):
        db.session.add(wallet)

    logger.info('Created wallet', wallet_id=wallet.id, name=name, opening_balance=str(opening))
    return wallet


def update_wallet(wallet_id, name=None, description=None):
    """Rename or re-describe a wallet. Balance and main flag are not editable."""
    wallet = get_wallet(wallet_id)

    with unit_of_work('Wallet update'):
        if name is not None:
            wallet.name = to_text(name, 'name', required=True, max_length=100)
        if description is not None:
            wallet.description = to_text(description, 'description')
        wallet.updated_at = datetime.utcnow()

    return wallet


def delete_wallet(wallet_id):
    """
    Delete a wallet.

    The main wallet is refused. Journal rows go with the wallet; settled
    obligations keep their settlement but lose the wallet reference.
    Nothing is reconciled here, that decision belongs to the caller.
    """
    wallet = get_wallet(wallet_id)

    if wallet.is_main:
        raise InvariantViolationError(
            'The main wallet cannot be deleted',
            details={'wallet_id': wallet_id},
        )

    with unit_of_work('Wallet deletion'):
        db.session.delete(wallet)

    logger.info('Deleted wallet', wallet_id=wallet_id)


# ============================================================
# BALANCE ADJUSTMENT (joins the caller's unit of work)
# ============================================================

def adjust_balance(wallet_id, delta):
    """
    Apply balance += delta to a wallet.

    Does NOT commit. Must be called inside the same unit of work as the
    journal entry or settlement that causes the change, so both commit
    or both roll back. The increment is done by the database, which
    keeps concurrent adjustments to one wallet from losing updates.

    Returns: the refreshed Wallet
    """
    delta = Decimal(delta)

    result = db.session.execute(
        update(Wallet)
        .where(Wallet.id == wallet_id)
        .values(balance=Wallet.balance + delta, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        raise NotFoundError('Wallet', wallet_id)

    logger.debug('Adjusted wallet balance', wallet_id=wallet_id, delta=str(delta))
    return db.session.get(Wallet, wallet_id, populate_existing=True)


# ============================================================
# MAIN WALLET BOOTSTRAP
# ============================================================

def ensure_main_wallet(name, owner_username=None, description=None):
    """
    Make sure exactly one main wallet exists.

    Runs once at process start (from create_app) and from the
    `flask ensure-main-wallet` command. Idempotent: when a main wallet
    already exists it is returned untouched.

    Returns: (Wallet, created)
    """
    existing = get_main_wallet()
    if existing:
        logger.info('Main wallet present', wallet_id=existing.id)
        if existing.created_by is None and owner_username:
            owner = User.query.filter_by(username=owner_username).first()
            if owner:
                existing = claim_main_wallet(owner.id)
        return existing, False

    owner = None
    if owner_username:
        owner = User.query.filter_by(username=owner_username).first()
        if not owner:
            logger.warning('Main wallet owner not found, creating without owner',
                           username=owner_username)

    wallet = Wallet(
        name=name,
        balance=Decimal('0'),
        opening_balance=Decimal('0'),
        description=description,
        created_by=owner.id if owner else None,
        is_main=True,
    )

    try:
        with unit_of_work('Main wallet bootstrap'):
            db.session.add(wallet)
    except LedgerError:
        # Another process may have created it first (unique index on is_main)
        winner = get_main_wallet()
        if winner is None:
            raise
        logger.info('Main wallet created concurrently', wallet_id=winner.id)
        return winner, False

    logger.info('Created main wallet', wallet_id=wallet.id, name=name)
    return wallet, True


def claim_main_wallet(user_id):
    """
    Record user_id as owner of the main wallet if it has none yet.

    The wallet is bootstrapped before any admin can exist, so the first
    admin created later takes ownership. An existing owner is kept.

    Returns: the main Wallet (None when there is no main wallet)
    """
    with unit_of_work('Main wallet ownership'):
        result = db.session.execute(
            update(Wallet)
            .where(Wallet.is_main.is_(True), Wallet.created_by.is_(None))
            .values(created_by=user_id, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )

    if result.rowcount:
        logger.info('Main wallet owner assigned', user_id=user_id)

    wallet = get_main_wallet()
    if wallet is not None:
        db.session.refresh(wallet)
    return wallet
