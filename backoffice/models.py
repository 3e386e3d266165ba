from datetime import datetime, date
from decimal import Decimal
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import select
from sqlalchemy.orm import column_property, declared_attr
from werkzeug.security import generate_password_hash, check_password_hash

from backoffice.extensions import db


def _iso(value):
    return value.isoformat() if value is not None else None


def _money(value):
    return str(value) if value is not None else None


# ============================================================
# ENUMS
# ============================================================
class MemberRole(Enum):
    ADMIN = 'admin'
    MEMBER = 'member'


class MemberStatus(Enum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    PENDING = 'pending'


class TransactionType(Enum):
    INCOME = 'income'
    EXPENSE = 'expense'


class SettlementMethod(Enum):
    CASH = 'cash'
    TRANSFER = 'transfer'


class DonationKind(Enum):
    HAPPY = 'happy'
    SAD = 'sad'
    FUNDRAISING = 'fundraising'


class CampaignStatus(Enum):
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


# ============================================================
# USER MODEL
# ============================================================
class User(UserMixin, db.Model):
    """
    A member of the organization.
    Admins manage wallets, the journal and every obligation ledger.
    """
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    full_name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(30))
    role = db.Column(db.String(20), nullable=False, default=MemberRole.MEMBER.value)
    status = db.Column(db.String(20), nullable=False, default=MemberStatus.ACTIVE.value)
    join_date = db.Column(db.Date, nullable=False, default=date.today)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def set_password(self, password):
        """Hash and set the user's password."""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify password against stored hash."""
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == MemberRole.ADMIN.value

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'fullName': self.full_name,
            'phone': self.phone,
            'role': self.role,
            'status': self.status,
            'joinDate': _iso(self.join_date),
            'createdAt': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<User {self.username}>'


# ============================================================
# WALLET MODEL
# ============================================================
class Wallet(db.Model):
    """
    A named pool of money.

    CRITICAL: 'balance' is derived state. It is only ever changed by
    wallet_service.adjust_balance, inside the same database transaction
    as the journal entry or settlement that causes the change.

    Exactly one wallet has is_main = True (enforced by a partial unique
    index) and it can never be deleted.
    """
    __tablename__ = 'wallets'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    balance = db.Column(db.Numeric(15, 2), nullable=False, default=Decimal('0'))
    opening_balance = db.Column(db.Numeric(15, 2), nullable=False, default=Decimal('0'))
    description = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    is_main = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index(
            'uq_wallets_single_main', 'is_main', unique=True,
            sqlite_where=db.text('is_main'),
            postgresql_where=db.text('is_main'),
        ),
    )

    creator = db.relationship('User', foreign_keys=[created_by])
    transactions = db.relationship('Transaction', backref='wallet', lazy='dynamic',
                                   cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'balance': _money(self.balance),
            'openingBalance': _money(self.opening_balance),
            'description': self.description,
            'createdBy': self.created_by,
            'isMain': self.is_main,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<Wallet {self.name} balance={self.balance}>'


# ============================================================
# TRANSACTION MODEL (JOURNAL)
# ============================================================
class Transaction(db.Model):
    """
    An explicit income or expense entry against a wallet.

    Never updated in place. Deleting an entry reverses its effect on the
    wallet (see transaction_service.reverse_transaction).
    """
    __tablename__ = 'transactions'

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey('wallets.id', ondelete='CASCADE'),
                          nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False)  # 'income' or 'expense'
    amount = db.Column(db.Numeric(15, 2), nullable=False)  # always > 0
    category = db.Column(db.String(100))
    description = db.Column(db.Text)
    date = db.Column(db.Date, nullable=False, default=date.today)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    creator = db.relationship('User', foreign_keys=[created_by])

    @property
    def signed_amount(self):
        """Effect of this entry on its wallet's balance."""
        if self.type == TransactionType.EXPENSE.value:
            return -self.amount
        return self.amount

    def to_dict(self):
        return {
            'id': self.id,
            'walletId': self.wallet_id,
            'type': self.type,
            'amount': _money(self.amount),
            'category': self.category,
            'description': self.description,
            'date': _iso(self.date),
            'createdBy': self.created_by,
            'createdAt': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Transaction {self.type} amount={self.amount}>'


# ============================================================
# OBLIGATIONS (DUES, INITIAL FEE, DONATION) AND CAMPAIGNS
# ============================================================
class ObligationMixin:
    """
    Columns shared by every obligation ledger.

    Lifecycle: OUTSTANDING -> SETTLED, once. Settlement date and method
    are present if and only if the row is settled; the CHECK constraint
    below holds the database to that.
    """
    OUTSTANDING = None
    SETTLED = None

    id = db.Column(db.Integer, primary_key=True)
    amount = db.Column(db.Numeric(15, 2), nullable=False)
    settlement_date = db.Column(db.Date)
    settlement_method = db.Column(db.String(20))
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @declared_attr
    def user_id(cls):
        return db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    @declared_attr
    def wallet_id(cls):
        # Non-owning: the wallet may be deleted later, the settlement stays.
        return db.Column(db.Integer, db.ForeignKey('wallets.id', ondelete='SET NULL'))

    @declared_attr
    def status(cls):
        return db.Column(db.String(20), nullable=False, default=cls.OUTSTANDING, index=True)

    @declared_attr
    def owner(cls):
        return db.relationship('User', foreign_keys=f'{cls.__name__}.user_id')

    @declared_attr
    def wallet(cls):
        return db.relationship('Wallet', foreign_keys=f'{cls.__name__}.wallet_id')

    @declared_attr
    def __table_args__(cls):
        return (
            db.CheckConstraint(
                f"(status = '{cls.SETTLED}' AND settlement_date IS NOT NULL "
                f"AND settlement_method IS NOT NULL) OR "
                f"(status = '{cls.OUTSTANDING}' AND settlement_date IS NULL "
                f"AND settlement_method IS NULL)",
                name=f'ck_{cls.__tablename__}_settlement',
            ),
        )

    @property
    def is_settled(self):
        return self.status == self.SETTLED

    def to_dict(self):
        data = {
            'id': self.id,
            'userId': self.user_id,
            'amount': _money(self.amount),
            'status': self.status,
            'settlementDate': _iso(self.settlement_date),
            'settlementMethod': self.settlement_method,
            'walletId': self.wallet_id,
            'notes': self.notes,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }
        data.update(self.extra_dict())
        return data

    def extra_dict(self):
        return {}


class Dues(ObligationMixin, db.Model):
    """Periodic membership dues, one row per member per period."""
    __tablename__ = 'dues'

    OUTSTANDING = 'unpaid'
    SETTLED = 'paid'

    period = db.Column(db.String(7))  # 'YYYY-MM'
    due_date = db.Column(db.Date)

    def extra_dict(self):
        return {'period': self.period, 'dueDate': _iso(self.due_date)}

    def __repr__(self):
        return f'<Dues user={self.user_id} period={self.period} status={self.status}>'


class InitialFee(ObligationMixin, db.Model):
    """One-time joining fee."""
    __tablename__ = 'initial_fees'

    OUTSTANDING = 'unpaid'
    SETTLED = 'paid'

    def __repr__(self):
        return f'<InitialFee user={self.user_id} status={self.status}>'


class DonationCampaign(db.Model):
    """
    An event that members donate towards (happy/sad occasion or fundraiser).

    Pledges are Donation rows pointing here. The collected total is the
    sum of collected pledges, so it is never stored separately.
    Lifecycle: active -> completed | cancelled.
    """
    __tablename__ = 'donation_campaigns'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    kind = db.Column(db.String(20), nullable=False, default=DonationKind.FUNDRAISING.value, index=True)
    event_date = db.Column(db.Date)
    target_amount = db.Column(db.Numeric(15, 2))
    status = db.Column(db.String(20), nullable=False, default=CampaignStatus.ACTIVE.value, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    creator = db.relationship('User', foreign_keys=[created_by])
    donations = db.relationship('Donation', backref='campaign', lazy='dynamic')

    @property
    def is_active(self):
        return self.status == CampaignStatus.ACTIVE.value

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'type': self.kind,
            'eventDate': _iso(self.event_date),
            'targetAmount': _money(self.target_amount),
            'status': self.status,
            'createdBy': self.created_by,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }

    def __repr__(self):
        return f'<DonationCampaign {self.title} status={self.status}>'


class Donation(ObligationMixin, db.Model):
    """
    A member's pledge towards a campaign.
    The collected amount may differ from the pledge.
    """
    __tablename__ = 'donations'

    OUTSTANDING = 'pending'
    SETTLED = 'collected'

    campaign_id = db.Column(db.Integer, db.ForeignKey('donation_campaigns.id'),
                            nullable=False, index=True)
    message = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    # Read-only, follows the campaign
    kind = column_property(
        select(DonationCampaign.kind)
        .where(DonationCampaign.id == campaign_id)
        .correlate_except(DonationCampaign)
        .scalar_subquery()
    )

    creator = db.relationship('User', foreign_keys=[created_by])

    def extra_dict(self):
        return {
            'campaignId': self.campaign_id,
            'type': self.kind,
            'message': self.message,
            'createdBy': self.created_by,
        }

    def __repr__(self):
        return f'<Donation campaign={self.campaign_id} user={self.user_id} status={self.status}>'
