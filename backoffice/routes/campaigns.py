"""
DONATION CAMPAIGN ROUTES
========================

Campaigns are managed here; pledges towards them are created and
collected through /api/donations with a campaignId.
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from backoffice.routes.payload import json_body
from backoffice.services.authorization_service import admin_required
from backoffice.services.campaign_service import (
    create_campaign, get_campaign_summary, list_campaigns, list_contributors,
    set_campaign_status, update_campaign
)

campaigns_bp = Blueprint('campaigns', __name__, url_prefix='/api/campaigns')

# JSON key -> campaign field
CAMPAIGN_FIELDS = {
    'title': 'title',
    'type': 'kind',
    'description': 'description',
    'eventDate': 'event_date',
    'targetAmount': 'target_amount',
}


# ============== LIST / VIEW ==============
@campaigns_bp.route('')
@login_required
def campaigns():
    items = list_campaigns(status=request.args.get('status'), kind=request.args.get('type'))
    return jsonify([c.to_dict() for c in items])


@campaigns_bp.route('/<int:campaign_id>')
@login_required
def view_campaign(campaign_id):
    """Campaign with collected / pledged totals"""
    return jsonify(get_campaign_summary(campaign_id))


@campaigns_bp.route('/<int:campaign_id>/contributors')
@login_required
def contributors(campaign_id):
    return jsonify(list_contributors(campaign_id))


# ============== CREATE / EDIT (Admin) ==============
@campaigns_bp.route('', methods=['POST'])
@admin_required
def add_campaign():
    data = json_body()
    campaign = create_campaign(
        title=data.get('title'),
        kind=data.get('type'),
        target_amount=data.get('targetAmount'),
        event_date=data.get('eventDate'),
        description=data.get('description'),
        created_by=current_user.id,
    )
    return jsonify(campaign.to_dict()), 201


@campaigns_bp.route('/<int:campaign_id>', methods=['PUT'])
@admin_required
def edit_campaign(campaign_id):
    data = json_body()
    fields = {name: data[key] for key, name in CAMPAIGN_FIELDS.items() if key in data}
    return jsonify(update_campaign(campaign_id, **fields).to_dict())


# ============== STATUS (Admin) ==============
@campaigns_bp.route('/<int:campaign_id>/status', methods=['PUT'])
@admin_required
def change_status(campaign_id):
    campaign = set_campaign_status(campaign_id, json_body().get('status'))
    return jsonify(campaign.to_dict())
