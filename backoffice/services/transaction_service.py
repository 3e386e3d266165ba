"""
TRANSACTION SERVICE - THE JOURNAL
=================================

Explicit income/expense entries against a wallet.

RULES:
1. Recording an entry and moving the wallet balance is ONE unit of work
2. Entries are never edited. Deleting one reverses its exact effect
3. A reversed entry no longer exists, so reversing it again is NotFound
"""

from datetime import date
from decimal import Decimal

import structlog
from sqlalchemy import case, func

from backoffice.extensions import db
from backoffice.models import (
    Donation, Dues, InitialFee, Transaction, TransactionType
)
from backoffice.services.errors import NotFoundError
from backoffice.services.unit_of_work import unit_of_work
from backoffice.services.validation import CENT, to_amount, to_choice, to_date, to_text
from backoffice.services.wallet_service import adjust_balance, get_wallet

logger = structlog.get_logger(__name__)

OBLIGATION_MODELS = (Dues, InitialFee, Donation)


# ============================================================
# RECORD (ATOMIC)
# ============================================================

def record_transaction(wallet_id, transaction_type, amount, category=None, description=None,
                       date=None, created_by=None):
    """
    Record an income or expense against a wallet.

    ATOMIC: journal row + balance delta commit together.
    income adds the amount, expense subtracts it.

    Returns: Transaction
    """
    txn_type = to_choice(transaction_type, TransactionType, 'type')
    amount = to_amount(amount)
    entry_date = to_date(date, 'date', required=False)

    # NotFound before anything is written
    get_wallet(wallet_id)

    with unit_of_work('Transaction recording'):
        transaction = Transaction(
            wallet_id=wallet_id,
            type=txn_type,
            amount=amount,
            category=to_text(category, 'category', max_length=100),
            description=to_text(description, 'description'),
            date=entry_date or _today(),
            created_by=created_by,
        )
        db.session.add(transaction)
        db.session.flush()

        adjust_balance(wallet_id, transaction.signed_amount)

    logger.info(
        'Recorded transaction',
        transaction_id=transaction.id,
        wallet_id=wallet_id,
        type=txn_type,
        amount=str(amount),
    )
    return transaction


# ============================================================
# REVERSE (ATOMIC)
# ============================================================

def reverse_transaction(transaction_id):
    """
    Delete a journal entry and undo its effect on the wallet.

    The row is locked while it is read so two concurrent reversals
    cannot both apply; the second one finds nothing and raises NotFound.

    Returns: the Wallet after reversal
    """
    with unit_of_work('Transaction reversal'):
        transaction = db.session.get(
            Transaction, transaction_id, with_for_update=True, populate_existing=True
        )
        if not transaction:
            raise NotFoundError('Transaction', transaction_id)

        wallet_id = transaction.wallet_id
        reversal = -transaction.signed_amount

        db.session.delete(transaction)
        db.session.flush()

        wallet = adjust_balance(wallet_id, reversal)

    logger.info(
        'Reversed transaction',
        transaction_id=transaction_id,
        wallet_id=wallet_id,
        delta=str(reversal),
    )
    return wallet


# ============================================================
# READ
# ============================================================

def get_transaction(transaction_id):
    transaction = db.session.get(Transaction, transaction_id)
    if not transaction:
        raise NotFoundError('Transaction', transaction_id)
    return transaction


def list_transactions():
    """All journal entries, newest first"""
    return Transaction.query.order_by(
        Transaction.date.desc(), Transaction.id.desc()
    ).all()


def list_wallet_transactions(wallet_id):
    """Journal entries of one wallet, newest first"""
    wallet = get_wallet(wallet_id)
    return wallet.transactions.order_by(
        Transaction.date.desc(), Transaction.id.desc()
    ).all()


# ============================================================
# BALANCE AUDIT
# ============================================================

def audit_wallet_balance(wallet_id, correct=False):
    """
    Recompute a wallet's balance from its history and compare.

    expected = opening balance
             + signed sum of journal entries
             + amounts of settled obligations credited to the wallet

    The stored balance is only overwritten when correct=True, and then
    through adjust_balance like any other change.
    """
    wallet = get_wallet(wallet_id)

    journal_total = _decimal(
        db.session.query(
            func.sum(
                case(
                    (Transaction.type == TransactionType.EXPENSE.value, -Transaction.amount),
                    else_=Transaction.amount,
                )
            )
        ).filter(Transaction.wallet_id == wallet_id).scalar()
    )

    settlement_total = Decimal('0.00')
    for model in OBLIGATION_MODELS:
        settlement_total += _decimal(
            db.session.query(func.sum(model.amount)).filter(
                model.wallet_id == wallet_id,
                model.status == model.SETTLED,
            ).scalar()
        )

    opening = _decimal(wallet.opening_balance)
    stored = _decimal(wallet.balance)
    expected = opening + journal_total + settlement_total
    difference = expected - stored

    was_corrected = False
    if correct and difference != 0:
        with unit_of_work('Wallet balance correction'):
            adjust_balance(wallet_id, difference)
        was_corrected = True
        logger.warning(
            'Corrected wallet balance',
            wallet_id=wallet_id,
            previous=str(stored),
            corrected=str(expected),
        )
    elif difference != 0:
        logger.warning('Wallet balance drift detected', wallet_id=wallet_id, difference=str(difference))

    return {
        'wallet_id': wallet_id,
        'stored_balance': stored,
        'calculated_balance': expected,
        'difference': difference,
        'opening_balance': opening,
        'journal_total': journal_total,
        'settlement_total': settlement_total,
        'is_consistent': difference == 0,
        'was_corrected': was_corrected,
    }


# ============================================================
# HELPERS
# ============================================================

def _decimal(value):
    return Decimal(str(value or 0)).quantize(CENT)


def _today():
    return date.today()
