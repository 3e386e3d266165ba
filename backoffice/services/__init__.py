# This makes 'services' a Python package
"""
Services Package
================

The ledger core of the back office.

All money-moving operations are handled here.
Routes should call these services, not manipulate models directly.
"""

from backoffice.services.errors import (
    LedgerError,
    NotFoundError,
    InvalidInputError,
    InvariantViolationError
)

from backoffice.services.wallet_service import (
    create_wallet,
    update_wallet,
    delete_wallet,
    adjust_balance,
    get_wallet,
    get_main_wallet,
    list_wallets,
    ensure_main_wallet,
    claim_main_wallet
)

from backoffice.services.transaction_service import (
    record_transaction,
    reverse_transaction,
    get_transaction,
    list_transactions,
    list_wallet_transactions,
    audit_wallet_balance
)

from backoffice.services.campaign_service import (
    create_campaign,
    update_campaign,
    complete_campaign,
    cancel_campaign,
    get_campaign,
    get_campaign_summary,
    list_campaigns,
    list_contributors
)

from backoffice.services.obligation_service import (
    ObligationLedger,
    ObligationPolicy,
    dues_ledger,
    initial_fee_ledger,
    donation_ledger,
    get_ledger
)

from backoffice.services.authorization_service import (
    is_admin,
    can_manage_ledger,
    can_view_obligations,
    require_authorization,
    admin_required,
    AuthorizationError
)

from backoffice.services.dashboard_service import (
    get_finance_summary,
    get_member_summary
)
