# vmcandles/validation.py
"""Request body validators. Each returns a list of {"field", "message"} dicts, empty when valid."""
import re

from .utils import is_valid_email

PHONE_REGEX = re.compile(r'^\+?[1-9]\d{1,14}$')
CUSTOMER_TYPES = ('INDIVIDUAL', 'BUSINESS')
LANGUAGES = ('ES', 'EN', 'FR', 'DE', 'PT', 'ZH', 'HI')
ADDRESS_TYPES = ('SHIPPING', 'BILLING')


def _error(field, message):
    return {"field": field, "message": message}

def _check_name(data, field, label, errors, required=True):
    value = data.get(field)
    if value is None:
        if required: errors.append(_error(field, f"{label} is required"))
        return
    if not isinstance(value, str) or not (1 <= len(value.strip()) <= 100):
        errors.append(_error(field, f"{label} must be between 1 and 100 characters"))

def _check_choice(data, field, choices, errors):
    value = data.get(field)
    if value is not None and value not in choices:
        errors.append(_error(field, f"{field} must be one of: {', '.join(choices)}"))

def password_error(password):
    if not isinstance(password, str) or len(password) < 8: return "Password must be at least 8 characters long"
    if not re.search(r"[A-Z]", password): return "Password must contain an uppercase letter"
    if not re.search(r"[a-z]", password): return "Password must contain a lowercase letter"
    if not re.search(r"[0-9]", password): return "Password must contain a number"
    if not re.search(r"[^A-Za-z0-9]", password): return "Password must contain a special character"
    return None

def validate_rut(rut):
    """Chilean RUT check digit (modulo 11, 'K' for 10)."""
    if not rut: return False
    clean = re.sub(r'[.\-\s]', '', str(rut)).upper()
    if len(clean) < 2 or not clean[:-1].isdigit(): return False
    body, verifier = clean[:-1], clean[-1]
    total, factor = 0, 2
    for digit in reversed(body):
        total += int(digit) * factor
        factor = 2 if factor == 7 else factor + 1
    remainder = 11 - (total % 11)
    expected = '0' if remainder == 11 else 'K' if remainder == 10 else str(remainder)
    return verifier == expected


def validate_registration(data):
    errors = []
    if not is_valid_email(data.get('email')):
        errors.append(_error('email', "A valid email is required"))
    pw_error = password_error(data.get('password'))
    if pw_error:
        errors.append(_error('password', pw_error))
    _check_name(data, 'first_name', "First name", errors)
    _check_name(data, 'last_name', "Last name", errors)
    errors.extend(validate_profile_fields(data))
    return errors

def validate_login(data):
    errors = []
    if not is_valid_email(data.get('email')):
        errors.append(_error('email', "A valid email is required"))
    password = data.get('password')
    if not password or not isinstance(password, str):
        errors.append(_error('password', "Password is required"))
    return errors

def validate_profile_fields(data):
    """Optional profile fields shared by registration and profile update."""
    errors = []
    phone = data.get('phone')
    if phone and not PHONE_REGEX.match(str(phone)):
        errors.append(_error('phone', "Phone number must be in international format"))
    _check_choice(data, 'customer_type', CUSTOMER_TYPES, errors)
    _check_choice(data, 'preferred_language', LANGUAGES, errors)
    tax_id = data.get('tax_id')
    if tax_id is not None and (not isinstance(tax_id, str) or len(tax_id) > 20):
        errors.append(_error('tax_id', "Tax id must be at most 20 characters"))
    elif tax_id and data.get('customer_type') == 'BUSINESS' and not validate_rut(tax_id):
        errors.append(_error('tax_id', "Business customers need a valid RUT"))
    return errors

def validate_profile_update(data):
    errors = []
    _check_name(data, 'first_name', "First name", errors, required=False)
    _check_name(data, 'last_name', "Last name", errors, required=False)
    errors.extend(validate_profile_fields(data))
    return errors

def validate_address(data, partial=False):
    errors = []
    _check_choice(data, 'type', ADDRESS_TYPES, errors)
    for field in ('street', 'city', 'region', 'postal_code'):
        value = data.get(field)
        if value is None and partial:
            continue
        if not isinstance(value, str) or not value.strip():
            errors.append(_error(field, f"{field} is required"))
        elif len(value) > 255:
            errors.append(_error(field, f"{field} is too long"))
    if 'is_default' in data and not isinstance(data.get('is_default'), bool):
        errors.append(_error('is_default', "is_default must be a boolean"))
    return errors

def validate_product(data, partial=False):
    errors = []
    if not partial and not data.get('id'):
        errors.append(_error('id', "Product id is required"))
    category = data.get('category')
    if category is None and not partial:
        errors.append(_error('category', "Category is required"))
    elif category is not None and str(category).upper() not in ('CANDLES', 'ACCESSORIES', 'SETS'):
        errors.append(_error('category', "Category must be one of: CANDLES, ACCESSORIES, SETS"))
    price = data.get('price')
    if price is None and not partial:
        errors.append(_error('price', "Price is required"))
    elif price is not None and (isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0):
        errors.append(_error('price', "Price must be a non-negative number"))
    for field in ('stock', 'low_stock_threshold', 'sort_order'):
        value = data.get(field)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
            errors.append(_error(field, f"{field} must be a non-negative integer"))
    return errors
