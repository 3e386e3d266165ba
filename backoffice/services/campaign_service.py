"""
CAMPAIGN SERVICE - DONATION CAMPAIGNS
=====================================

A campaign is the event members donate towards. Each member's pledge is
a Donation row in the donation ledger (see obligation_service); money
only moves when a pledge is collected there.

RULES:
1. New pledges are accepted only while the campaign is active
2. active -> completed | cancelled, nothing leaves those two states
3. A campaign with collected pledges cannot be cancelled (the money is
   already in a wallet). Cancelling drops its pending pledges in the
   same unit of work
4. The collected total is always summed from collected pledges
"""

from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy import func

from backoffice.extensions import db
from backoffice.models import CampaignStatus, Donation, DonationCampaign, DonationKind, User
from backoffice.services.errors import (
    InvalidInputError,
    InvariantViolationError,
    NotFoundError,
)
from backoffice.services.unit_of_work import unit_of_work
from backoffice.services.validation import CENT, to_amount, to_choice, to_date, to_text

logger = structlog.get_logger(__name__)


# ============================================================
# READ
# ============================================================

def get_campaign(campaign_id):
    campaign = db.session.get(DonationCampaign, campaign_id)
    if not campaign:
        raise NotFoundError('Campaign', campaign_id)
    return campaign


def list_campaigns(status=None, kind=None):
    """Campaigns newest first, optionally filtered by status and type"""
    query = DonationCampaign.query
    if status:
        query = query.filter_by(status=to_choice(status, CampaignStatus, 'status'))
    if kind:
        query = query.filter_by(kind=to_choice(kind, DonationKind, 'type'))
    return query.order_by(DonationCampaign.created_at.desc(), DonationCampaign.id.desc()).all()


def list_contributors(campaign_id):
    """Pledges of one campaign with the member's name, oldest first"""
    get_campaign(campaign_id)
    rows = db.session.query(Donation, User.full_name).join(
        User, User.id == Donation.user_id
    ).filter(Donation.campaign_id == campaign_id).order_by(Donation.id.asc()).all()

    contributors = []
    for donation, full_name in rows:
        data = donation.to_dict()
        data['name'] = full_name
        contributors.append(data)
    return contributors


def get_campaign_summary(campaign_id):
    """
    Campaign plus its totals:
    pledged (all pledges), collected (collected pledges only) and what
    is still missing to reach the target.
    """
    campaign = get_campaign(campaign_id)

    rows = db.session.query(
        Donation.status, func.count(Donation.id), func.sum(Donation.amount)
    ).filter(Donation.campaign_id == campaign_id).group_by(Donation.status).all()
    by_status = {status: (count, _decimal(total)) for status, count, total in rows}

    collected_count, collected = by_status.get(Donation.SETTLED, (0, Decimal('0.00')))
    pending_count, pending = by_status.get(Donation.OUTSTANDING, (0, Decimal('0.00')))

    remaining = None
    if campaign.target_amount is not None:
        remaining = max(_decimal(campaign.target_amount) - collected, Decimal('0.00'))

    data = campaign.to_dict()
    data.update({
        'contributorCount': collected_count + pending_count,
        'collectedCount': collected_count,
        'collectedAmount': collected,
        'pendingAmount': pending,
        'pledgedAmount': collected + pending,
        'remainingAmount': remaining,
    })
    return data


# ============================================================
# CREATE / UPDATE
# ============================================================

def create_campaign(title, kind=None, target_amount=None, event_date=None,
                    description=None, created_by=None):
    campaign = DonationCampaign(
        title=to_text(title, 'title', required=True, max_length=200),
        kind=to_choice(kind or DonationKind.FUNDRAISING.value, DonationKind, 'type'),
        target_amount=_optional_target(target_amount),
        event_date=to_date(event_date, 'eventDate', required=False),
        description=to_text(description, 'description'),
        status=CampaignStatus.ACTIVE.value,
        created_by=created_by,
    )

    with unit_of_work('Campaign creation'):
        db.session.add(campaign)

    logger.info('Created campaign', campaign_id=campaign.id, kind=campaign.kind)
    return campaign


def update_campaign(campaign_id, **fields):
    """Edit title, type, description, date or target of an active campaign"""
    parsers = {
        'title': lambda v: to_text(v, 'title', required=True, max_length=200),
        'kind': lambda v: to_choice(v, DonationKind, 'type'),
        'description': lambda v: to_text(v, 'description'),
        'event_date': lambda v: to_date(v, 'eventDate', required=False),
        'target_amount': _optional_target,
    }
    unknown = sorted(set(fields) - set(parsers))
    if unknown:
        raise InvalidInputError(f"Unknown field(s) for campaign: {', '.join(unknown)}",
                                field=unknown[0])
    values = {name: parsers[name](value) for name, value in fields.items()}

    with unit_of_work('Campaign update'):
        campaign = _get_locked(campaign_id)
        _require_active(campaign)
        for name, value in values.items():
            setattr(campaign, name, value)
        campaign.updated_at = datetime.utcnow()

    return campaign


# ============================================================
# STATUS
# ============================================================

def complete_campaign(campaign_id):
    """Close an active campaign. Pending pledges can still be collected."""
    with unit_of_work('Campaign completion'):
        campaign = _get_locked(campaign_id)
        _require_active(campaign)
        campaign.status = CampaignStatus.COMPLETED.value
        campaign.updated_at = datetime.utcnow()

    logger.info('Completed campaign', campaign_id=campaign_id)
    return campaign


def cancel_campaign(campaign_id):
    """
    Cancel an active campaign and drop its pending pledges.
    Refused once any pledge has been collected.
    """
    with unit_of_work('Campaign cancellation'):
        campaign = _get_locked(campaign_id)
        _require_active(campaign)

        collected = Donation.query.filter_by(
            campaign_id=campaign_id, status=Donation.SETTLED
        ).count()
        if collected:
            raise InvariantViolationError(
                f'Campaign {campaign_id} has {collected} collected donation(s) and cannot be cancelled',
                details={'id': campaign_id},
            )

        dropped = Donation.query.filter_by(
            campaign_id=campaign_id, status=Donation.OUTSTANDING
        ).delete(synchronize_session=False)
        campaign.status = CampaignStatus.CANCELLED.value
        campaign.updated_at = datetime.utcnow()

    logger.info('Cancelled campaign', campaign_id=campaign_id, dropped_pledges=dropped)
    return campaign


def set_campaign_status(campaign_id, status):
    """HTTP entry point: route a requested status to the matching transition"""
    status = to_choice(status, CampaignStatus, 'status')
    if status == CampaignStatus.COMPLETED.value:
        return complete_campaign(campaign_id)
    if status == CampaignStatus.CANCELLED.value:
        return cancel_campaign(campaign_id)
    raise InvalidInputError('A campaign cannot be reopened', field='status')


# ============================================================
# PLEDGE CHECK (used by the donation ledger)
# ============================================================

def require_open_campaign(value):
    """Parse a campaign reference for a new pledge; the campaign must be active."""
    if value is None or value == '' or isinstance(value, bool):
        raise InvalidInputError('campaignId is required', field='campaignId')
    try:
        campaign_id = int(value)
    except (TypeError, ValueError):
        raise InvalidInputError('campaignId must be an integer', field='campaignId')

    _require_active(get_campaign(campaign_id))
    return campaign_id


# ============================================================
# HELPERS
# ============================================================

def _get_locked(campaign_id):
    campaign = db.session.get(
        DonationCampaign, campaign_id, with_for_update=True, populate_existing=True
    )
    if not campaign:
        raise NotFoundError('Campaign', campaign_id)
    return campaign


def _require_active(campaign):
    if not campaign.is_active:
        raise InvariantViolationError(
            f'Campaign {campaign.id} is {campaign.status}',
            details={'id': campaign.id, 'status': campaign.status},
        )


def _optional_target(value):
    if value is None or value == '':
        return None
    return to_amount(value, field='targetAmount')


def _decimal(value):
    return Decimal(str(value or 0)).quantize(CENT)
