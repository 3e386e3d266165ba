"""
DASHBOARD ROUTES
================
"""

from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from backoffice.services.authorization_service import admin_required
from backoffice.services.dashboard_service import get_finance_summary, get_member_summary

dashboard_bp = Blueprint('dashboard', __name__, url_prefix='/api/dashboard')


@dashboard_bp.route('/finance')
@admin_required
def finance():
    return jsonify(get_finance_summary())


@dashboard_bp.route('/me')
@login_required
def member():
    return jsonify(get_member_summary(current_user.id))
