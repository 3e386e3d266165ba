"""
AUTHENTICATION ROUTES
=====================
"""

from flask import Blueprint, jsonify
from flask_login import login_user, logout_user, login_required, current_user

from backoffice.models import MemberStatus, User
from backoffice.routes.payload import json_body

auth_bp = Blueprint('auth', __name__, url_prefix='/api')


@auth_bp.route('/login', methods=['POST'])
def login():
    data = json_body()
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username or not password:
        return jsonify({'message': 'Username and password are required'}), 400

    user = User.query.filter_by(username=username).first()

    if not user or not user.check_password(password):
        return jsonify({'message': 'Invalid username or password'}), 401

    if user.status != MemberStatus.ACTIVE.value:
        return jsonify({'message': 'Account is not active'}), 403

    login_user(user, remember=bool(data.get('remember')))
    return jsonify(user.to_dict())


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return '', 204


@auth_bp.route('/user')
@login_required
def me():
    return jsonify(current_user.to_dict())
