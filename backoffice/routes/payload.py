"""
Request payload helpers shared by the JSON blueprints.
"""

from flask import request

from backoffice.services.errors import InvalidInputError


def json_body():
    """Request JSON as a dict; a missing or non-object body is a 400."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInputError('Request body must be a JSON object')
    return data


def int_field(data, key, required=True):
    value = data.get(key)
    if value is None or value == '':
        if required:
            raise InvalidInputError(f'{key} is required', field=key)
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f'{key} must be an integer', field=key)


def first_present(data, *keys):
    """Value of the first key present in data (aliases from older clients)."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None
