"""Field validation helpers. Each collects messages per field and raises one ValidationError."""

import re

from flask import request

from .errors import ValidationError

USERNAME_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')
USERNAME_MIN, USERNAME_MAX = 3, 32
PASSWORD_MIN, PASSWORD_MAX = 6, 128


def username_errors(username):
    if not isinstance(username, str):
        return ['Username is required']
    errors = []
    if len(username) < USERNAME_MIN:
        errors.append('Username must be at least %d characters long' % USERNAME_MIN)
    if len(username) > USERNAME_MAX:
        errors.append('Username must be at most %d characters long' % USERNAME_MAX)
    if username and not USERNAME_PATTERN.match(username):
        errors.append('Username can only contain letters, numbers, hyphens, and underscores')
    return errors


def password_errors(password):
    if not isinstance(password, str):
        return ['Password is required']
    errors = []
    if len(password) < PASSWORD_MIN:
        errors.append('Password must be at least %d characters long' % PASSWORD_MIN)
    if len(password) > PASSWORD_MAX:
        errors.append('Password must be at most %d characters long' % PASSWORD_MAX)
    return errors


def validate_credentials(username, password):
    fields = {}
    errors = username_errors(username)
    if errors:
        fields['username'] = errors
    errors = password_errors(password)
    if errors:
        fields['password'] = errors
    if fields:
        raise ValidationError(fields)


def get_json():
    """Return the request body as a dict, or raise ValidationError."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError({'body': ['Expected a JSON object']})
    return data


def require_str(data, field, allow_empty=False, default=None, required=True):
    value = data.get(field, default)
    if value is None:
        if required:
            raise ValidationError({field: ['This field is required']})
        return None
    if not isinstance(value, str):
        raise ValidationError({field: ['Must be a string']})
    value = value.strip()
    if not value and not allow_empty:
        raise ValidationError({field: ['Must not be empty']})
    return value


def require_number(data, field, default=None, required=True, minimum=None, integer=False):
    value = data.get(field, default)
    if value is None:
        if required:
            raise ValidationError({field: ['This field is required']})
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError({field: ['Must be a number']})
    if integer:
        if isinstance(value, float) and not value.is_integer():
            raise ValidationError({field: ['Must be a whole number']})
        value = int(value)
    if minimum is not None and value < minimum:
        raise ValidationError({field: ['Must be at least %s' % minimum]})
    return value


def require_bool(data, field, default=None, required=True):
    value = data.get(field, default)
    if value is None:
        if required:
            raise ValidationError({field: ['This field is required']})
        return None
    if not isinstance(value, bool):
        raise ValidationError({field: ['Must be true or false']})
    return value


def require_choice(data, field, choices, default=None, required=True):
    value = data.get(field, default)
    if value is None:
        if required:
            raise ValidationError({field: ['This field is required']})
        return None
    if value not in choices:
        raise ValidationError({field: ['Must be one of: %s' % ', '.join(choices)]})
    return value
