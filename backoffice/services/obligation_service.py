"""
OBLIGATION SERVICE - DUES, INITIAL FEES, DONATIONS
==================================================

One ledger implementation, three policies.

Lifecycle (all three): OUTSTANDING -> SETTLED, exactly once.

CRITICAL BUSINESS RULES:
1. Settling credits the target wallet in the SAME unit of work that
   flips the status. Both commit or neither does.
2. Eligibility is checked inside that unit of work with a conditional
   UPDATE (... WHERE status = OUTSTANDING). Settling an already settled
   obligation, or losing a race to a concurrent settle, credits nothing.
3. Inputs are validated before any row is touched.
4. Fan-out creation is best effort: one commit per member, failures
   are reported, successes stay.
"""

from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import update

from backoffice.extensions import db
from backoffice.models import (
    DonationKind, Donation, Dues, InitialFee, MemberStatus, SettlementMethod, User
)
from backoffice.services.campaign_service import require_open_campaign
from backoffice.services.errors import (
    InvalidInputError,
    InvariantViolationError,
    LedgerError,
    NotFoundError,
)
from backoffice.services.unit_of_work import unit_of_work
from backoffice.services.validation import (
    to_amount, to_choice, to_date, to_period, to_text
)
from backoffice.services.wallet_service import adjust_balance, get_wallet

logger = structlog.get_logger(__name__)


# ============================================================
# POLICY
# ============================================================

@dataclass(frozen=True)
class ObligationPolicy:
    """What makes one obligation ledger differ from another."""
    name: str
    label: str
    model: type
    # extra column -> parser(value) returning the stored value
    extra_fields: dict = field(default_factory=dict)
    # amount (and extras) editable while outstanding
    editable: bool = False
    # settle() may replace the stored amount with the collected one
    allow_override: bool = False
    # column used by list_by_kind, and the enum its values come from
    kind_field: str = None
    kind_choices: type = None


DUES_POLICY = ObligationPolicy(
    name='dues',
    label='Dues',
    model=Dues,
    extra_fields={
        'period': to_period,
        'due_date': lambda value: to_date(value, 'dueDate', required=False),
    },
)

INITIAL_FEE_POLICY = ObligationPolicy(
    name='initial-fees',
    label='Initial fee',
    model=InitialFee,
)

DONATION_POLICY = ObligationPolicy(
    name='donations',
    label='Donation',
    model=Donation,
    extra_fields={
        'campaign_id': require_open_campaign,
        'message': lambda value: to_text(value, 'message'),
    },
    editable=True,
    allow_override=True,
    kind_field='kind',
    kind_choices=DonationKind,
)


# ============================================================
# LEDGER
# ============================================================

class ObligationLedger:
    """
    Outstanding/settled bookkeeping for one obligation type.

    Every method reads fresh rows and either commits its own unit of work
    or raises one of the ledger errors.
    """

    def __init__(self, policy):
        self.policy = policy

    @property
    def model(self):
        return self.policy.model

    @property
    def label(self):
        return self.policy.label

    def __repr__(self):
        return f'<ObligationLedger {self.policy.name}>'

    # -------------------- read --------------------

    def get(self, obligation_id):
        obligation = db.session.get(self.model, obligation_id)
        if not obligation:
            raise NotFoundError(self.label, obligation_id)
        return obligation

    def list_all(self, status=None):
        """Every obligation of this type, newest first, optionally by status"""
        query = self.model.query
        if status:
            if status not in (self.model.OUTSTANDING, self.model.SETTLED):
                raise InvalidInputError(
                    f'Unknown status "{status}" for {self.label.lower()}', field='status'
                )
            query = query.filter_by(status=status)
        return query.order_by(self.model.created_at.desc(), self.model.id.desc()).all()

    def list_for_owner(self, owner_id):
        return self.model.query.filter_by(user_id=owner_id).order_by(
            self.model.created_at.desc(), self.model.id.desc()
        ).all()

    def list_by_kind(self, kind):
        if not self.policy.kind_field:
            raise InvalidInputError(f'{self.label} has no types', field='type')
        kind = to_choice(kind, self.policy.kind_choices, 'type')
        column = getattr(self.model, self.policy.kind_field)
        return self.model.query.filter(column == kind).order_by(
            self.model.created_at.desc(), self.model.id.desc()
        ).all()

    # -------------------- create --------------------

    def create(self, owner_id, amount, created_by=None, **extra):
        """
        Create one outstanding obligation for a member.

        Returns: the new obligation
        """
        amount = to_amount(amount)
        values = self._parse_extra(extra, creating=True)

        if not db.session.get(User, owner_id):
            raise NotFoundError('Member', owner_id)

        if created_by is not None and hasattr(self.model, 'created_by'):
            values['created_by'] = created_by

        obligation = self.model(
            user_id=owner_id,
            amount=amount,
            status=self.model.OUTSTANDING,
            **values,
        )

        with unit_of_work(f'{self.label} creation'):
            db.session.add(obligation)

        logger.info(
            'Created obligation',
            ledger=self.policy.name,
            obligation_id=obligation.id,
            owner_id=owner_id,
            amount=str(amount),
        )
        return obligation

    def create_for_members(self, owner_ids, amount, created_by=None, **extra):
        """
        Fan one obligation out to many members (dues runs, initial-fee
        runs, fundraisers).

        NOT all-or-nothing: each member gets an independent create().
        owner_ids=None targets every active member.

        Returns: (created obligations, {owner_id: error message})
        """
        # A bad payload fails once, before the loop
        to_amount(amount)
        self._parse_extra(extra, creating=True)

        if owner_ids is None:
            owner_ids = [
                user.id for user in
                User.query.filter_by(status=MemberStatus.ACTIVE.value).order_by(User.id).all()
            ]

        created, failures = [], {}
        for owner_id in owner_ids:
            try:
                created.append(self.create(owner_id, amount, created_by=created_by, **extra))
            except LedgerError as e:
                failures[owner_id] = e.message
                logger.warning(
                    'Fan-out create failed for member',
                    ledger=self.policy.name,
                    owner_id=owner_id,
                    error=e.message,
                )

        logger.info(
            'Fan-out create finished',
            ledger=self.policy.name,
            created=len(created),
            failed=len(failures),
        )
        return created, failures

    # -------------------- edit / delete (outstanding only) --------------------

    def update(self, obligation_id, amount=None, **extra):
        """Edit an outstanding obligation. Only for editable ledgers (donations)."""
        if not self.policy.editable:
            raise InvariantViolationError(
                f'{self.label} cannot be edited after creation',
                details={'id': obligation_id},
            )

        new_amount = to_amount(amount) if amount is not None else None
        values = self._parse_extra(extra, creating=False)

        with unit_of_work(f'{self.label} update'):
            obligation = self._get_locked(obligation_id)
            if obligation.is_settled:
                raise InvariantViolationError(
                    f'{self.label} {obligation_id} is already {obligation.status}',
                    details={'id': obligation_id},
                )

            if new_amount is not None:
                obligation.amount = new_amount
            for name, value in values.items():
                setattr(obligation, name, value)
            obligation.updated_at = datetime.utcnow()

        return obligation

    def delete(self, obligation_id):
        """
        Remove an outstanding obligation.
        Settled ones stay: their wallet credit must remain accounted for.
        """
        with unit_of_work(f'{self.label} deletion'):
            obligation = self._get_locked(obligation_id)
            if obligation.is_settled:
                raise InvariantViolationError(
                    f'{self.label} {obligation_id} is already {obligation.status} and cannot be deleted',
                    details={'id': obligation_id},
                )
            db.session.delete(obligation)

        logger.info('Deleted obligation', ledger=self.policy.name, obligation_id=obligation_id)

    # -------------------- settle (ATOMIC) --------------------

    def settle(self, obligation_id, settlement_date, settlement_method, wallet_id,
               notes=None, override_amount=None):
        """
        Mark an obligation paid/collected and credit the wallet.

        ATOMIC OPERATION:
        1. Validate inputs (nothing written on failure)
        2. Load obligation (NotFound), check target wallet (NotFound)
        3. Conditional UPDATE ... WHERE status = OUTSTANDING
        4. Only if that UPDATE matched: adjust_balance(wallet, +amount)
        5. Commit both, or roll back both

        Calling it again on a settled obligation returns it unchanged
        and credits nothing.

        Returns: the obligation
        """
        settled_on = to_date(settlement_date, 'settlementDate')
        method = to_choice(settlement_method, SettlementMethod, 'settlementMethod')
        if wallet_id is None or wallet_id == '':
            raise InvalidInputError('walletId is required', field='walletId')
        if override_amount is not None:
            if not self.policy.allow_override:
                raise InvalidInputError(
                    f'{self.label} amount is fixed and cannot be overridden', field='amount'
                )
            override_amount = to_amount(override_amount)
        notes = to_text(notes, 'notes')

        obligation = self.get(obligation_id)
        if obligation.is_settled:
            logger.info(
                'Obligation already settled, no credit applied',
                ledger=self.policy.name,
                obligation_id=obligation_id,
            )
            return obligation

        get_wallet(wallet_id)

        credited = None
        with unit_of_work(f'{self.label} settlement'):
            current = self._get_locked(obligation_id)
            if not current.is_settled:
                amount = override_amount if override_amount is not None else current.amount

                result = db.session.execute(
                    update(self.model)
                    .where(
                        self.model.id == obligation_id,
                        self.model.status == self.model.OUTSTANDING,
                    )
                    .values(
                        status=self.model.SETTLED,
                        amount=amount,
                        settlement_date=settled_on,
                        settlement_method=method,
                        wallet_id=wallet_id,
                        notes=notes if notes is not None else current.notes,
                        updated_at=datetime.utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount == 1:
                    adjust_balance(wallet_id, amount)
                    credited = amount

        obligation = db.session.get(self.model, obligation_id, populate_existing=True)

        if credited is None:
            logger.info(
                'Obligation settled concurrently, no credit applied',
                ledger=self.policy.name,
                obligation_id=obligation_id,
            )
        else:
            logger.info(
                'Settled obligation',
                ledger=self.policy.name,
                obligation_id=obligation_id,
                wallet_id=wallet_id,
                amount=str(credited),
                method=method,
            )
        return obligation

    # -------------------- helpers --------------------

    def _get_locked(self, obligation_id):
        obligation = db.session.get(
            self.model, obligation_id, with_for_update=True, populate_existing=True
        )
        if not obligation:
            raise NotFoundError(self.label, obligation_id)
        return obligation

    def _parse_extra(self, fields, creating):
        """
        Run the policy's parsers. On create every extra field is parsed
        (missing ones as None) so required fields are enforced; on update
        only the supplied ones are.
        """
        unknown = sorted(set(fields) - set(self.policy.extra_fields))
        if unknown:
            raise InvalidInputError(
                f"Unknown field(s) for {self.label.lower()}: {', '.join(unknown)}",
                field=unknown[0],
            )

        return {
            name: parse(fields.get(name))
            for name, parse in self.policy.extra_fields.items()
            if creating or name in fields
        }


# ============================================================
# LEDGER INSTANCES
# ============================================================

dues_ledger = ObligationLedger(DUES_POLICY)
initial_fee_ledger = ObligationLedger(INITIAL_FEE_POLICY)
donation_ledger = ObligationLedger(DONATION_POLICY)

LEDGERS = {
    ledger.policy.name: ledger
    for ledger in (dues_ledger, initial_fee_ledger, donation_ledger)
}


def get_ledger(name):
    """Look up a ledger by its URL name ('dues', 'initial-fees', 'donations')"""
    ledger = LEDGERS.get(name)
    if not ledger:
        raise NotFoundError('Ledger', name)
    return ledger
