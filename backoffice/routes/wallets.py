"""
WALLET & JOURNAL ROUTES
=======================

Uses wallet_service and transaction_service for everything.
All money-moving operations are atomic inside the services.
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from backoffice.routes.payload import int_field, json_body
from backoffice.services.authorization_service import admin_required
from backoffice.services.transaction_service import (
    audit_wallet_balance, list_transactions, list_wallet_transactions,
    record_transaction, reverse_transaction
)
from backoffice.services.wallet_service import (
    create_wallet, delete_wallet, get_wallet, list_wallets, update_wallet
)

wallets_bp = Blueprint('wallets', __name__, url_prefix='/api')


# ============== LIST / VIEW WALLETS ==============
@wallets_bp.route('/wallets')
@login_required
def wallets():
    return jsonify([w.to_dict() for w in list_wallets()])


@wallets_bp.route('/wallets/<int:wallet_id>')
@login_required
def view_wallet(wallet_id):
    return jsonify(get_wallet(wallet_id).to_dict())


# ============== CREATE WALLET (Admin) ==============
@wallets_bp.route('/wallets', methods=['POST'])
@admin_required
def add_wallet():
    data = json_body()
    wallet = create_wallet(
        name=data.get('name'),
        initial_balance=data.get('balance', data.get('initialBalance')),
        description=data.get('description'),
        created_by=current_user.id,
    )
    return jsonify(wallet.to_dict()), 201


# ============== EDIT WALLET (Admin) ==============
@wallets_bp.route('/wallets/<int:wallet_id>', methods=['PUT'])
@admin_required
def edit_wallet(wallet_id):
    data = json_body()
    wallet = update_wallet(
        wallet_id,
        name=data.get('name'),
        description=data.get('description'),
    )
    return jsonify(wallet.to_dict())


# ============== DELETE WALLET (Admin) ==============
@wallets_bp.route('/wallets/<int:wallet_id>', methods=['DELETE'])
@admin_required
def remove_wallet(wallet_id):
    delete_wallet(wallet_id)
    return '', 204


# ============== AUDIT BALANCE (Admin) ==============
@wallets_bp.route('/wallets/<int:wallet_id>/audit')
@admin_required
def audit_wallet(wallet_id):
    correct = request.args.get('correct', '').lower() in ('1', 'true', 'yes')
    report = audit_wallet_balance(wallet_id, correct=correct)
    return jsonify({_camel(key): value for key, value in report.items()})


# ============== TRANSACTION HISTORY ==============
@wallets_bp.route('/transactions')
@login_required
def transactions():
    return jsonify([t.to_dict() for t in list_transactions()])


@wallets_bp.route('/wallets/<int:wallet_id>/transactions')
@login_required
def wallet_transactions(wallet_id):
    return jsonify([t.to_dict() for t in list_wallet_transactions(wallet_id)])


# ============== RECORD TRANSACTION (Admin) ==============
@wallets_bp.route('/transactions', methods=['POST'])
@admin_required
def add_transaction():
    data = json_body()
    transaction = record_transaction(
        wallet_id=int_field(data, 'walletId'),
        transaction_type=data.get('type'),
        amount=data.get('amount'),
        category=data.get('category'),
        description=data.get('description'),
        date=data.get('date'),
        created_by=current_user.id,
    )
    return jsonify(transaction.to_dict()), 201


# ============== REVERSE TRANSACTION (Admin) ==============
@wallets_bp.route('/transactions/<int:transaction_id>', methods=['DELETE'])
@admin_required
def remove_transaction(transaction_id):
    reverse_transaction(transaction_id)
    return '', 204


def _camel(name):
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)
