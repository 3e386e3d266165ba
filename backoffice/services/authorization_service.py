"""
CENTRALIZED AUTHORIZATION SERVICE
==================================

All permission checks live here.
Routes call these functions; the ledger services themselves trust
their callers.

Rules:
- Only admins create obligations, settle them, manage wallets and
  write to the journal
- Any authenticated member may read wallets, the journal and their
  own obligations
"""

from functools import wraps

from flask_login import current_user, login_required

from backoffice.extensions import db
from backoffice.models import MemberRole, MemberStatus, User


class AuthorizationError(Exception):
    """Raised when authorization fails"""

    status_code = 403
    code = 'FORBIDDEN'

    def to_dict(self):
        return {'error': self.code, 'message': str(self), 'details': {}}


# ============================================================
# ROLE CHECKS
# ============================================================

def is_admin(user_id):
    """Check if user is an active admin"""
    user = db.session.get(User, user_id)
    return bool(
        user
        and user.role == MemberRole.ADMIN.value
        and user.status == MemberStatus.ACTIVE.value
    )


def can_manage_ledger(user_id):
    """
    Check if user can change money state.

    Requirements:
    - User must be an active admin
    """
    if not is_admin(user_id):
        return False, "Admin access required"
    return True, None


def can_view_obligations(user_id, owner_id):
    """
    Check if user can read a member's obligations.

    Requirements:
    - Own obligations, or
    - User is an admin
    """
    if user_id == owner_id or is_admin(user_id):
        return True, None
    return False, "You can only view your own obligations"


# ============================================================
# HELPER FUNCTION: REQUIRE AUTHORIZATION
# ============================================================

def require_authorization(check_func, *args, error_class=AuthorizationError):
    """
    Wrapper to raise exception if authorization fails.

    Usage:
        require_authorization(can_view_obligations, current_user.id, owner_id)
    """
    allowed, reason = check_func(*args)
    if not allowed:
        raise error_class(reason)


def admin_required(view):
    """Route decorator: login required, then can_manage_ledger"""
    @wraps(view)
    @login_required
    def wrapped(*args, **kwargs):
        require_authorization(can_manage_ledger, current_user.id)
        return view(*args, **kwargs)
    return wrapped
