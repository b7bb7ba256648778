# vmcandles/utils.py
import re
import calendar
from functools import wraps
from datetime import datetime, timezone

from flask import current_app, jsonify, g, request
from flask_jwt_extended import verify_jwt_in_request, get_jwt, get_jwt_identity
from unidecode import unidecode


# --- Time helpers ---
# Timestamps are stored as naive UTC so comparisons behave the same on SQLite and PostgreSQL.
def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)

def isoformat_or_none(dt):
    return dt.isoformat() if dt else None

def add_months(dt, months):
    """Calendar month arithmetic, clamping the day to the end of the target month."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)

def start_of_month(dt, months_back=0):
    first = dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return add_months(first, -months_back) if months_back else first


# --- Sanitization Helper ---
def sanitize_input(value, allow_html=False, max_length=None):
    """
    Basic input sanitizer.
    - Strips leading/trailing whitespace.
    - Optionally removes HTML tags.
    - Optionally truncates to max_length.
    """
    if value is None:
        return None
    value_str = str(value).strip()
    if not allow_html:
        value_str = re.sub(r'<[^>]*>', '', value_str)
    if max_length is not None and len(value_str) > max_length:
        value_str = value_str[:max_length]
    return value_str

def generate_slug(text):
    if not text: return ""
    text = unidecode(str(text)).lower()
    text = re.sub(r'[^\w\s-]', '', text).strip()
    return re.sub(r'[-\s]+', '-', text)

def is_valid_email(email):
    if not email or not isinstance(email, str):
        return False
    regex = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(regex, email) is not None

def json_body():
    """Parsed JSON object of the request, or {} when the body is missing, malformed or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}

def parse_bool_arg(value):
    if value is None: return None
    return str(value).lower() in ('true', '1', 'yes')

def parse_int_arg(value, default, minimum=1, maximum=None):
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if parsed < minimum: return default
    if maximum is not None: parsed = min(parsed, maximum)
    return parsed

def allowed_file(filename, allowed_extensions):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in allowed_extensions


# --- Responses ---
def error_response(error_code, message, status_code, details=None):
    payload = {"success": False, "message": message, "error_code": error_code}
    if details is not None:
        payload["details"] = details
    return jsonify(payload), status_code

def validation_error_response(errors):
    return error_response('VALIDATION_ERROR', "Validation failed", 400, details=errors)

def pagination_dict(page, limit, total):
    total_pages = (total + limit - 1) // limit if limit else 0
    return {"page": page, "limit": limit, "total": total,
            "total_pages": total_pages, "has_more": page * limit < total}

def diagnostic_details(exc):
    """Exception text for clients, suppressed in production."""
    if current_app.config.get('ENV_NAME') == 'production':
        return None
    return str(exc)


# --- Auth helpers ---
def current_user_id():
    identity = get_jwt_identity()
    return int(identity) if identity is not None else None

def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try: verify_jwt_in_request()
        except Exception as e:
            current_app.logger.warning(f"Admin access denied for {request.path}: JWT verification failed - {e}")
            return error_response('INVALID_TOKEN', "Access token is missing or invalid.", 401)
        if getattr(g, 'is_admin', False): return fn(*args, **kwargs)
        claims = get_jwt()
        if claims.get('role') == 'ADMIN': return fn(*args, **kwargs)
        current_app.logger.warning(f"Non-admin user {get_jwt_identity()} attempted to access admin route {request.path}")
        return error_response('FORBIDDEN', "Administrator access required.", 403)
    return wrapper
