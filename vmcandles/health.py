# vmcandles/health.py
import time

from flask import Blueprint, jsonify, current_app
from sqlalchemy import text

from . import db
from .utils import utcnow

health_bp = Blueprint('health_bp', __name__, url_prefix='/api/health')


def check_database():
    try:
        db.session.execute(text('SELECT 1'))
        return True
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Database health check failed: {e}")
        return False


@health_bp.route('', methods=['GET'])
def health_check():
    connected = check_database()
    started_at = current_app.config.get('STARTED_AT') or time.time()
    payload = {
        "status": 'ok' if connected else 'degraded',
        "timestamp": utcnow().isoformat() + 'Z',
        "database": 'connected' if connected else 'disconnected',
        "uptime": round(time.time() - started_at, 3),
        "environment": current_app.config.get('ENV_NAME', 'development'),
    }
    return jsonify(payload), 200 if connected else 503
