"""
DASHBOARD SERVICE
=================

Read-only rollups over wallets, the journal and the obligation ledgers.
"""

from decimal import Decimal

from sqlalchemy import func

from backoffice.extensions import db
from backoffice.models import Transaction, TransactionType, Wallet
from backoffice.services.obligation_service import LEDGERS
from backoffice.services.validation import CENT


def _decimal(value):
    return Decimal(str(value or 0)).quantize(CENT)


def _ledger_totals(ledger):
    """Counts and amounts per status for one obligation ledger"""
    model = ledger.model
    rows = db.session.query(
        model.status, func.count(model.id), func.sum(model.amount)
    ).group_by(model.status).all()

    by_status = {status: (count, _decimal(total)) for status, count, total in rows}
    outstanding = by_status.get(model.OUTSTANDING, (0, Decimal('0.00')))
    settled = by_status.get(model.SETTLED, (0, Decimal('0.00')))

    return {
        'outstandingCount': outstanding[0],
        'outstandingAmount': outstanding[1],
        'settledCount': settled[0],
        'settledAmount': settled[1],
    }


def get_finance_summary():
    """Organization-wide money overview for admins"""
    wallet_count, total_balance = db.session.query(
        func.count(Wallet.id), func.sum(Wallet.balance)
    ).one()
    main_wallet = Wallet.query.filter_by(is_main=True).first()

    journal = dict(
        db.session.query(Transaction.type, func.sum(Transaction.amount))
        .group_by(Transaction.type)
        .all()
    )

    return {
        'walletCount': wallet_count,
        'totalBalance': _decimal(total_balance),
        'mainWalletBalance': _decimal(main_wallet.balance) if main_wallet else None,
        'totalIncome': _decimal(journal.get(TransactionType.INCOME.value)),
        'totalExpense': _decimal(journal.get(TransactionType.EXPENSE.value)),
        'ledgers': {name: _ledger_totals(ledger) for name, ledger in LEDGERS.items()},
    }


def get_member_summary(user_id):
    """What one member still owes, per ledger"""
    summary = {}
    for name, ledger in LEDGERS.items():
        model = ledger.model
        outstanding = model.query.filter_by(
            user_id=user_id, status=model.OUTSTANDING
        ).all()
        summary[name] = {
            'outstandingCount': len(outstanding),
            'outstandingAmount': sum((o.amount for o in outstanding), Decimal('0.00')),
        }
    return summary
