"""Unit tests for the dues, initial-fee and donation ledgers"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from backoffice.extensions import db
from backoffice.models import Donation, Dues, InitialFee, Wallet
from backoffice.services import obligation_service
from backoffice.services.campaign_service import complete_campaign, create_campaign
from backoffice.services.errors import (
    InvalidInputError,
    InvariantViolationError,
    LedgerError,
    NotFoundError,
)
from backoffice.services.obligation_service import (
    donation_ledger,
    dues_ledger,
    get_ledger,
    initial_fee_ledger,
)


def _balance(wallet_id):
    return db.session.get(Wallet, wallet_id, populate_existing=True).balance


def _reload(model, obligation_id):
    return db.session.get(model, obligation_id, populate_existing=True)


@pytest.mark.unit
class TestCreate:
    """Tests for creating outstanding obligations"""

    def test_create_dues(self, users):
        dues = dues_ledger.create(users['alice'], 50000, period='2024-01', due_date='2024-01-31')

        assert dues.status == 'unpaid'
        assert dues.amount == Decimal('50000.00')
        assert dues.period == '2024-01'
        assert dues.due_date == date(2024, 1, 31)
        assert dues.settlement_date is None
        assert dues.wallet_id is None

    def test_create_initial_fee(self, users):
        fee = initial_fee_ledger.create(users['bob'], 150000)
        assert fee.status == 'unpaid'
        assert fee.to_dict()['userId'] == users['bob']

    def test_create_donation_defaults(self, users, campaign_id):
        donation = donation_ledger.create(
            users['alice'], 100000, created_by=users['admin'], campaign_id=campaign_id
        )

        assert donation.status == 'pending'
        assert donation.kind == 'fundraising'
        assert donation.created_by == users['admin']
        assert donation.to_dict()['type'] == 'fundraising'
        assert donation.to_dict()['campaignId'] == campaign_id

    def test_unknown_member(self):
        with pytest.raises(NotFoundError) as exc_info:
            dues_ledger.create(999, 100)
        assert exc_info.value.entity == 'Member'

    @pytest.mark.parametrize('amount', [0, -10, None, 'lots', 'NaN', float('nan'), 'Infinity'])
    def test_bad_amount(self, users, amount):
        with pytest.raises(InvalidInputError):
            initial_fee_ledger.create(users['alice'], amount)
        assert InitialFee.query.count() == 0

    def test_bad_period(self, users):
        with pytest.raises(InvalidInputError) as exc_info:
            dues_ledger.create(users['alice'], 100, period='2024-13')
        assert exc_info.value.field == 'period'

    def test_unknown_extra_field(self, users):
        with pytest.raises(InvalidInputError):
            dues_ledger.create(users['alice'], 100, campaign_id=1)

    def test_donation_requires_campaign(self, users):
        with pytest.raises(InvalidInputError) as exc_info:
            donation_ledger.create(users['alice'], 100)
        assert exc_info.value.field == 'campaignId'

    def test_donation_unknown_campaign(self, users):
        with pytest.raises(NotFoundError) as exc_info:
            donation_ledger.create(users['alice'], 100, campaign_id=999)
        assert exc_info.value.entity == 'Campaign'

    def test_donation_closed_campaign(self, users, campaign_id):
        complete_campaign(campaign_id)

        with pytest.raises(InvariantViolationError):
            donation_ledger.create(users['alice'], 100, campaign_id=campaign_id)
        assert Donation.query.count() == 0


@pytest.mark.unit
class TestCreateForMembers:
    """Tests for fan-out creation"""

    def test_partial_success_is_reported(self, users):
        """One bad member does not undo the others"""
        created, failures = dues_ledger.create_for_members(
            [users['alice'], 999, users['bob']], 25000, period='2024-02'
        )

        assert sorted(d.user_id for d in created) == sorted([users['alice'], users['bob']])
        assert list(failures) == [999]
        assert 'not found' in failures[999]
        assert Dues.query.count() == 2

    def test_defaults_to_active_members(self, users):
        created, failures = initial_fee_ledger.create_for_members(None, 150000)

        owners = {fee.user_id for fee in created}
        assert owners == {users['admin'], users['alice'], users['bob']}
        assert users['carol'] not in owners
        assert failures == {}

    def test_bad_payload_creates_nothing(self, users):
        with pytest.raises(InvalidInputError):
            dues_ledger.create_for_members([users['alice'], users['bob']], 0)
        assert Dues.query.count() == 0


@pytest.mark.unit
class TestSettle:
    """Tests for settlement, the money-moving part"""

    def test_dues_settle_credits_once(self, users, main_wallet_id):
        """A 50000 dues settled twice credits the main wallet exactly once"""
        dues = dues_ledger.create(users['alice'], 50000, period='2024-01')

        settled = dues_ledger.settle(dues.id, '2024-01-15', 'cash', main_wallet_id)
        assert settled.status == 'paid'
        assert settled.settlement_date == date(2024, 1, 15)
        assert settled.settlement_method == 'cash'
        assert settled.wallet_id == main_wallet_id
        assert _balance(main_wallet_id) == Decimal('50000.00')

        again = dues_ledger.settle(dues.id, '2024-01-20', 'transfer', main_wallet_id)
        assert again.status == 'paid'
        assert again.settlement_date == date(2024, 1, 15)
        assert _balance(main_wallet_id) == Decimal('50000.00')

    def test_initial_fee_settle(self, users, main_wallet_id):
        fee = initial_fee_ledger.create(users['bob'], 150000)
        initial_fee_ledger.settle(fee.id, date(2024, 1, 2), 'transfer', main_wallet_id,
                                  notes='Bank ref 42')

        fee = _reload(InitialFee, fee.id)
        assert fee.status == 'paid'
        assert fee.notes == 'Bank ref 42'
        assert _balance(main_wallet_id) == Decimal('150000.00')

    def test_donation_override_amount(self, users, main_wallet_id, campaign_id):
        """The collected amount replaces the pledge and is what gets credited"""
        donation = donation_ledger.create(users['alice'], 100000, campaign_id=campaign_id)

        collected = donation_ledger.settle(
            donation.id, '2024-04-01', 'cash', main_wallet_id, override_amount=120000
        )

        assert collected.status == 'collected'
        assert collected.amount == Decimal('120000.00')
        assert _balance(main_wallet_id) == Decimal('120000.00')

    def test_dues_amount_cannot_be_overridden(self, users, main_wallet_id):
        dues = dues_ledger.create(users['alice'], 50000)

        with pytest.raises(InvalidInputError):
            dues_ledger.settle(dues.id, '2024-01-15', 'cash', main_wallet_id,
                               override_amount=1)
        assert _reload(Dues, dues.id).status == 'unpaid'

    @pytest.mark.parametrize('kwargs', [
        {'settlement_date': None, 'settlement_method': 'cash'},
        {'settlement_date': 'yesterday', 'settlement_method': 'cash'},
        {'settlement_date': '2024-01-01', 'settlement_method': 'cheque'},
    ])
    def test_invalid_settlement_input(self, users, main_wallet_id, kwargs):
        dues = dues_ledger.create(users['alice'], 100)

        with pytest.raises(InvalidInputError):
            dues_ledger.settle(dues.id, wallet_id=main_wallet_id, **kwargs)

        assert _reload(Dues, dues.id).status == 'unpaid'
        assert _balance(main_wallet_id) == Decimal('0')

    def test_missing_wallet_id(self, users):
        dues = dues_ledger.create(users['alice'], 100)
        with pytest.raises(InvalidInputError) as exc_info:
            dues_ledger.settle(dues.id, '2024-01-01', 'cash', None)
        assert exc_info.value.field == 'walletId'

    def test_unknown_wallet_leaves_obligation_outstanding(self, users):
        dues = dues_ledger.create(users['alice'], 100)

        with pytest.raises(NotFoundError) as exc_info:
            dues_ledger.settle(dues.id, '2024-01-01', 'cash', 4242)

        assert exc_info.value.entity == 'Wallet'
        assert _reload(Dues, dues.id).status == 'unpaid'

    def test_unknown_obligation(self, main_wallet_id):
        with pytest.raises(NotFoundError):
            donation_ledger.settle(77, '2024-01-01', 'cash', main_wallet_id)

    def test_failed_credit_rolls_back_status(self, users, main_wallet_id, monkeypatch):
        """If crediting the wallet fails, the status flip is undone too"""
        dues = dues_ledger.create(users['alice'], 500)

        def broken_adjust(wallet_id, delta):
            raise RuntimeError('wallet store unavailable')

        monkeypatch.setattr(obligation_service, 'adjust_balance', broken_adjust)

        with pytest.raises(RuntimeError):
            dues_ledger.settle(dues.id, '2024-01-01', 'cash', main_wallet_id)

        dues = _reload(Dues, dues.id)
        assert dues.status == 'unpaid'
        assert dues.settlement_date is None
        assert _balance(main_wallet_id) == Decimal('0')

    def test_store_failure_is_opaque_ledger_error(self, users, main_wallet_id, monkeypatch):
        dues = dues_ledger.create(users['alice'], 500)

        def broken_adjust(wallet_id, delta):
            raise OperationalError('UPDATE wallets', {}, Exception('disk I/O error'))

        monkeypatch.setattr(obligation_service, 'adjust_balance', broken_adjust)

        with pytest.raises(LedgerError) as exc_info:
            dues_ledger.settle(dues.id, '2024-01-01', 'cash', main_wallet_id)

        assert type(exc_info.value) is LedgerError
        assert exc_info.value.status_code == 500
        assert _reload(Dues, dues.id).status == 'unpaid'

    def test_lost_race_credits_nothing(self, users, main_wallet_id, monkeypatch):
        """
        A settle that read the row as outstanding, but whose conditional
        update finds it already settled, must not credit the wallet again.
        """
        dues = dues_ledger.create(users['alice'], 50000, period='2024-01')
        dues_id = dues.id
        dues_ledger.settle(dues_id, '2024-01-15', 'cash', main_wallet_id)

        stale = Dues(id=dues_id, user_id=users['alice'], amount=Decimal('50000.00'),
                     status=Dues.OUTSTANDING)
        monkeypatch.setattr(dues_ledger, 'get', lambda obligation_id: stale)
        monkeypatch.setattr(dues_ledger, '_get_locked', lambda obligation_id: stale)

        result = dues_ledger.settle(dues_id, '2024-01-20', 'transfer', main_wallet_id)

        assert result.status == 'paid'
        assert result.settlement_date == date(2024, 1, 15)
        assert result.settlement_method == 'cash'
        assert _balance(main_wallet_id) == Decimal('50000.00')

    def test_settlement_metadata_constraint(self, users):
        """The database refuses a settled row without date and method"""
        dues = dues_ledger.create(users['alice'], 100)
        dues.status = Dues.SETTLED

        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


@pytest.mark.unit
class TestEditAndDelete:
    """Tests for changes allowed only while outstanding"""

    def test_donation_edit_while_pending(self, users, campaign_id):
        donation = donation_ledger.create(users['alice'], 100, campaign_id=campaign_id)
        picnic = create_campaign('Spring picnic', kind='happy')

        donation_ledger.update(donation.id, amount=150, campaign_id=picnic.id, message='See you')

        donation = _reload(Donation, donation.id)
        assert donation.amount == Decimal('150.00')
        assert donation.campaign_id == picnic.id
        assert donation.message == 'See you'
        assert donation.kind == 'happy'

    def test_donation_edit_after_collection(self, users, main_wallet_id, campaign_id):
        donation = donation_ledger.create(users['alice'], 100, campaign_id=campaign_id)
        donation_ledger.settle(donation.id, '2024-01-01', 'cash', main_wallet_id)

        with pytest.raises(InvariantViolationError):
            donation_ledger.update(donation.id, amount=1)

    def test_dues_are_not_editable(self, users):
        dues = dues_ledger.create(users['alice'], 100)
        with pytest.raises(InvariantViolationError):
            dues_ledger.update(dues.id, amount=200)

    def test_delete_outstanding(self, users):
        fee = initial_fee_ledger.create(users['alice'], 100)
        fee_id = fee.id

        initial_fee_ledger.delete(fee_id)

        with pytest.raises(NotFoundError):
            initial_fee_ledger.get(fee_id)

    def test_delete_settled_is_refused(self, users, main_wallet_id):
        """A settled obligation keeps backing its wallet credit"""
        dues = dues_ledger.create(users['alice'], 100)
        dues_ledger.settle(dues.id, '2024-01-01', 'cash', main_wallet_id)

        with pytest.raises(InvariantViolationError):
            dues_ledger.delete(dues.id)

        assert _reload(Dues, dues.id) is not None
        assert _balance(main_wallet_id) == Decimal('100.00')


@pytest.mark.unit
class TestQueries:
    """Tests for listing and lookups"""

    def test_list_all_by_status(self, users, main_wallet_id):
        first = dues_ledger.create(users['alice'], 100)
        dues_ledger.create(users['bob'], 100)
        dues_ledger.settle(first.id, '2024-01-01', 'cash', main_wallet_id)

        assert len(dues_ledger.list_all()) == 2
        assert [d.id for d in dues_ledger.list_all(status='paid')] == [first.id]
        assert len(dues_ledger.list_all(status='unpaid')) == 1

    def test_list_all_rejects_foreign_status(self):
        with pytest.raises(InvalidInputError):
            dues_ledger.list_all(status='collected')

    def test_list_for_owner(self, users):
        dues_ledger.create(users['alice'], 100, period='2024-01')
        dues_ledger.create(users['alice'], 100, period='2024-02')
        dues_ledger.create(users['bob'], 100, period='2024-01')

        assert len(dues_ledger.list_for_owner(users['alice'])) == 2
        assert dues_ledger.list_for_owner(users['carol']) == []

    def test_list_by_kind(self, users):
        """The type comes from the campaign each pledge belongs to"""
        funeral = create_campaign('Funeral', kind='sad')
        birth = create_campaign('Birth', kind='happy')
        donation_ledger.create(users['alice'], 10, campaign_id=funeral.id)
        donation_ledger.create(users['bob'], 10, campaign_id=birth.id)

        sad = donation_ledger.list_by_kind('sad')
        assert [d.campaign_id for d in sad] == [funeral.id]
        assert sad[0].kind == 'sad'

        with pytest.raises(InvalidInputError):
            donation_ledger.list_by_kind('party')

    def test_list_by_kind_without_kinds(self):
        with pytest.raises(InvalidInputError):
            dues_ledger.list_by_kind('sad')

    def test_get_ledger(self):
        assert get_ledger('initial-fees') is initial_fee_ledger
        with pytest.raises(NotFoundError):
            get_ledger('loans')
