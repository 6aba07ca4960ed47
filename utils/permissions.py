# utils/permissions.py - Helpers de permisos por rol de cuenta

from functools import wraps

from flask import jsonify
from flask_login import current_user

from models.core import AccountRole
from utils.security_logger import log_permission_denied


def is_admin(user):
    return getattr(user, "role", None) == AccountRole.ADMIN


def can_view_commissions(user, owner_id):
    """El dueño de las comisiones o un admin"""
    return is_admin(user) or getattr(user, "id", None) == owner_id


def role_required(*roles):
    """Restringe un endpoint JSON a los roles dados (AccountRole o string)."""
    allowed = {AccountRole.parse(r) for r in roles}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({"error": "Autenticación requerida"}), 401
            if current_user.role not in allowed:
                log_permission_denied(f.__name__, 'access', reason=f"rol {current_user.role.value}")
                return jsonify({"error": "Permiso denegado"}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
