# vmcandles/audit_log_service.py
import logging
from flask import request, has_request_context

from . import db
from .models import AuditLog, AuditLogStatusEnum


def _status_member(status, logger):
    try:
        return AuditLogStatusEnum(str(status).lower())
    except ValueError:
        logger.warning(f"Unknown audit status '{status}', recording as info.")
        return AuditLogStatusEnum.INFO


class AuditLogService:
    """Records who did what to which resource (logins, admin edits, payments, key redemptions)."""

    def __init__(self, app=None):
        self.app = app
        self.logger = app.logger if app is not None else logging.getLogger(__name__)

    def log_action(self, action, user_id=None, email_for_unauthenticated=None,
                   target_type=None, target_id=None, details=None,
                   status="success", ip_address=None):
        """Writes one AuditLog row in its own commit. A failed write is logged and swallowed."""
        # Anonymous attempts (failed logins) keep the email they used
        if email_for_unauthenticated and not user_id:
            prefix = f"Attempt by email: {email_for_unauthenticated}."
            details = f"{prefix} {details}" if details else prefix
        if ip_address is None and has_request_context():
            ip_address = request.remote_addr

        entry = AuditLog(
            user_id=user_id,
            action=action,
            target_type=target_type,
            target_id=None if target_id is None else str(target_id),
            details=details,
            status=_status_member(status, self.logger),
            ip_address=ip_address,
        )
        try:
            db.session.add(entry)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            self.logger.error(f"Audit log write failed for '{action}' (user {user_id}, {target_type}:{target_id}): {e}",
                              exc_info=True)
