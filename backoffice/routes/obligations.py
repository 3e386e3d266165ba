"""
OBLIGATION ROUTES
=================

One set of handlers for /api/dues, /api/initial-fees and /api/donations.
The ledger named in the URL decides the rules (see obligation_service).
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from backoffice.routes.payload import first_present, int_field, json_body
from backoffice.services.authorization_service import (
    admin_required, can_view_obligations, require_authorization
)
from backoffice.services.errors import InvalidInputError
from backoffice.services.obligation_service import donation_ledger, get_ledger

obligations_bp = Blueprint('obligations', __name__, url_prefix='/api')

LEDGER_PATH = '/<any(dues, "initial-fees", donations):ledger_name>'

# JSON key -> ledger extra field
EXTRA_FIELDS = {
    'period': 'period',
    'dueDate': 'due_date',
    'campaignId': 'campaign_id',
    'message': 'message',
}


def _extra_fields(ledger, data):
    return {
        name: data[key]
        for key, name in EXTRA_FIELDS.items()
        if key in data and name in ledger.policy.extra_fields
    }


# ============== LIST (Admin) ==============
@obligations_bp.route(LEDGER_PATH)
@admin_required
def list_obligations(ledger_name):
    ledger = get_ledger(ledger_name)
    items = ledger.list_all(status=request.args.get('status'))
    return jsonify([o.to_dict() for o in items])


# ============== MY OBLIGATIONS ==============
@obligations_bp.route(LEDGER_PATH + '/my')
@login_required
def my_obligations(ledger_name):
    ledger = get_ledger(ledger_name)
    return jsonify([o.to_dict() for o in ledger.list_for_owner(current_user.id)])


# ============== DONATIONS BY TYPE ==============
@obligations_bp.route('/donations/type/<kind>')
@login_required
def donations_by_type(kind):
    return jsonify([d.to_dict() for d in donation_ledger.list_by_kind(kind)])


# ============== VIEW ONE ==============
@obligations_bp.route(LEDGER_PATH + '/<int:obligation_id>')
@login_required
def view_obligation(ledger_name, obligation_id):
    obligation = get_ledger(ledger_name).get(obligation_id)
    require_authorization(can_view_obligations, current_user.id, obligation.user_id)
    return jsonify(obligation.to_dict())


# ============== CREATE (Admin) ==============
@obligations_bp.route(LEDGER_PATH, methods=['POST'])
@admin_required
def create_obligation(ledger_name):
    """
    Single member:  {"userId": 3, "amount": 50000, ...}
    Fan-out:        {"userIds": [3, 4, 5], "amount": 50000, ...}
                    {"allMembers": true, "amount": 50000, ...}
    """
    ledger = get_ledger(ledger_name)
    data = json_body()
    extra = _extra_fields(ledger, data)

    if data.get('allMembers') or data.get('userIds') is not None:
        owner_ids = None
        if not data.get('allMembers'):
            if not isinstance(data['userIds'], list):
                raise InvalidInputError('userIds must be a list', field='userIds')
            owner_ids = [int_field({'userIds': v}, 'userIds') for v in data['userIds']]

        created, failures = ledger.create_for_members(
            owner_ids, data.get('amount'), created_by=current_user.id, **extra
        )
        return jsonify({
            'created': [o.to_dict() for o in created],
            'failures': {str(k): v for k, v in failures.items()},
        }), 201

    obligation = ledger.create(
        int_field(data, 'userId'),
        data.get('amount'),
        created_by=current_user.id,
        **extra
    )
    return jsonify(obligation.to_dict()), 201


# ============== SETTLE (Admin) ==============
@obligations_bp.route(LEDGER_PATH + '/<int:obligation_id>/status', methods=['PUT'])
@admin_required
def settle_obligation(ledger_name, obligation_id):
    ledger = get_ledger(ledger_name)
    data = json_body()

    status = data.get('status')
    if status != ledger.model.SETTLED:
        if status == ledger.model.OUTSTANDING:
            raise InvalidInputError(
                f'A {ledger.label.lower()} cannot be moved back to {status}', field='status'
            )
        raise InvalidInputError(f'Invalid status "{status}"', field='status')

    obligation = ledger.settle(
        obligation_id,
        settlement_date=first_present(data, 'settlementDate', 'paymentDate', 'collectionDate'),
        settlement_method=first_present(data, 'settlementMethod', 'paymentMethod', 'collectionMethod'),
        wallet_id=int_field(data, 'walletId'),
        notes=data.get('notes'),
        override_amount=data.get('amount'),
    )
    return jsonify(obligation.to_dict())


# ============== EDIT (Admin) ==============
@obligations_bp.route(LEDGER_PATH + '/<int:obligation_id>', methods=['PUT'])
@admin_required
def edit_obligation(ledger_name, obligation_id):
    ledger = get_ledger(ledger_name)
    data = json_body()
    obligation = ledger.update(obligation_id, amount=data.get('amount'), **_extra_fields(ledger, data))
    return jsonify(obligation.to_dict())


# ============== DELETE (Admin) ==============
@obligations_bp.route(LEDGER_PATH + '/<int:obligation_id>', methods=['DELETE'])
@admin_required
def delete_obligation(ledger_name, obligation_id):
    get_ledger(ledger_name).delete(obligation_id)
    return '', 204
