"""Input parsing shared by the workflow services.

Every helper raises ``ValidationError`` so bad input is rejected before any
row is touched.
"""
import math
from datetime import date, datetime

from agrimarket.errors import ValidationError


def parse_quantity(value, field='quantity'):
    """Return ``value`` as a positive finite float."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required and must be a number', field=field)
    try:
        quantity = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number', field=field) from None
    if math.isnan(quantity) or math.isinf(quantity):
        raise ValidationError(f'{field} must be a finite number', field=field)
    if quantity <= 0:
        raise ValidationError(f'{field} must be greater than zero', field=field)
    return quantity


def parse_non_negative(value, field):
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required and must be a number', field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number', field=field) from None
    if math.isnan(number) or math.isinf(number) or number < 0:
        raise ValidationError(f'{field} cannot be negative', field=field)
    return number


def parse_price(value, field='price'):
    return parse_quantity(value, field=field)


def require_text(value, field):
    """Return the stripped string, rejecting missing or blank values."""
    if value is None or not str(value).strip():
        raise ValidationError(f'{field} is required', field=field)
    return str(value).strip()


def optional_text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def require_choice(value, choices, field):
    if value not in choices:
        raise ValidationError(f'{field} must be one of: {", ".join(choices)}', field=field)
    return value


def parse_date(value, field):
    """Accept ``None``, a ``date`` or an ISO ``YYYY-MM-DD`` string."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'{field} must use the YYYY-MM-DD format', field=field) from None


def parse_id(value, field='id'):
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer id', field=field)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer id', field=field) from None


def parse_id_list(values, field='ids'):
    """Return the de-duplicated ids in their original order."""
    if not values or isinstance(values, (str, bytes)):
        raise ValidationError(f'Select at least one item ({field})', field=field)
    seen = []
    for value in values:
        item = parse_id(value, field)
        if item not in seen:
            seen.append(item)
    return seen


def parse_count(value, field):
    """Return ``value`` as a non-negative whole number."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required and must be a whole number', field=field)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f'{field} must be a whole number', field=field)
        value = int(value)
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a whole number', field=field) from None
    if count < 0:
        raise ValidationError(f'{field} cannot be negative', field=field)
    return count


def require_object(value, what='Request body'):
    """Return ``value`` if it is a JSON object, ``{}`` for an empty body."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f'{what} must be a JSON object')
    return value
