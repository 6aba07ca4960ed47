"""
Security logging utilities
Registra eventos de seguridad para auditoría (logger 'security')
"""

import logging
from datetime import datetime

from flask import current_app, request, has_request_context
from flask_login import current_user


SEVERITY_LEVELS = {
    'low': logging.INFO,
    'medium': logging.WARNING,
    'high': logging.ERROR,
    'critical': logging.CRITICAL,
}


def get_request_context():
    """Get current request context for logging"""
    if not has_request_context():
        return {}
    return {
        'ip': request.remote_addr,
        'user_agent': request.user_agent.string if request.user_agent else None,
        'endpoint': request.endpoint,
        'method': request.method,
    }


def _current_user_info():
    try:
        if current_user and current_user.is_authenticated:
            return current_user.id, current_user.email
    except (AttributeError, RuntimeError):
        pass
    return None, 'anonymous'


def log_security_event(event_type, message, severity='medium', **extra_data):
    """
    Log a security event

    Args:
        event_type: Tipo de evento (ej. 'gateway_auth_error', 'webhook_rejected')
        message: Mensaje legible
        severity: low, medium, high o critical
        **extra_data: Datos adicionales
    """
    user_id, user_email = _current_user_info()

    log_data = {
        'timestamp': datetime.utcnow().isoformat(),
        'event_type': event_type,
        'severity': severity,
        'message': message,
        'user_id': user_id,
        'user_email': user_email,
        'context': get_request_context(),
        **extra_data
    }

    level = SEVERITY_LEVELS.get(severity, logging.WARNING)
    logging.getLogger('security').log(level, f"[SECURITY] {event_type}: {message}", extra={'security_event': log_data})
    if current_app:
        current_app.logger.log(level, f"[SECURITY] {event_type}: {message}")


def log_permission_denied(resource, action, reason=None):
    """Log a permission denied event"""
    log_security_event(
        'permission_denied',
        f"Permission denied for {action} on {resource}",
        resource=resource,
        action=action,
        reason=reason
    )


def log_transaction(transaction_type, amount, details=None):
    """Log a financial transaction"""
    log_security_event(
        'transaction',
        f"Transaction: {transaction_type} - Amount: {amount}",
        severity='low',
        transaction_type=transaction_type,
        amount=str(amount),
        details=details
    )
