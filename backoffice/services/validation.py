"""
Input coercion shared by the services.

Values arrive either as Python objects (service callers, tests) or as
JSON scalars forwarded by the routes. Everything is normalized here so
that a bad value is rejected before any row is touched.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from backoffice.services.errors import InvalidInputError

CENT = Decimal('0.01')
PERIOD_RE = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')


def to_amount(value, field='amount', allow_zero=False):
    """Parse a money value into a 2-place Decimal, rejecting non-positive amounts."""
    if value is None or value == '' or isinstance(value, bool):
        raise InvalidInputError(f'{field} is required', field=field)

    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise InvalidOperation
        amount = amount.quantize(CENT)
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f'{field} must be a number', field=field)

    if allow_zero and amount < 0:
        raise InvalidInputError(f'{field} must not be negative', field=field)
    if not allow_zero and amount <= 0:
        raise InvalidInputError(f'{field} must be greater than 0', field=field)

    return amount


def to_date(value, field='date', required=True):
    """Accept a date, a datetime or an ISO-8601 string."""
    if value is None or value == '':
        if required:
            raise InvalidInputError(f'{field} is required', field=field)
        return None

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    try:
        text = str(value)
        if len(text) > 10:
            # full timestamp, keep the date part
            return datetime.fromisoformat(text.replace('Z', '+00:00')).date()
        return date.fromisoformat(text)
    except ValueError:
        raise InvalidInputError(f'{field} must be an ISO date (YYYY-MM-DD)', field=field)


def to_choice(value, choices, field):
    """Validate that value is one of the enum's values; returns the plain string."""
    allowed = [c.value for c in choices]
    if value not in allowed:
        raise InvalidInputError(
            f"{field} must be one of: {', '.join(allowed)}", field=field
        )
    return value


def to_period(value, field='period'):
    if value is None or value == '':
        return None
    if not PERIOD_RE.match(str(value)):
        raise InvalidInputError(f'{field} must use the YYYY-MM format', field=field)
    return str(value)


def to_text(value, field, required=False, max_length=None):
    text = str(value).strip() if value is not None else ''
    if required and not text:
        raise InvalidInputError(f'{field} is required', field=field)
    if max_length and len(text) > max_length:
        raise InvalidInputError(f'{field} must be at most {max_length} characters', field=field)
    return text or None
