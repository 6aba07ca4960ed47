"""
Rate limiting de la API de pagos y referidos.

El limiter se crea a nivel de módulo para que los blueprints puedan decorar
sus rutas con @limiter.limit(...) y se liga a la app en setup_rate_limiter().
"""

from flask import jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address


DEFAULT_LIMITS = ["200 per minute", "1000 per hour"]
PAYMENT_LIMIT = "30 per minute"
WEBHOOK_LIMIT = "120 per minute"


def get_limiter_key():
    """
    Obtiene la clave para rate limiting.
    Prioriza: user_id > IP address
    """
    from flask_login import current_user

    if hasattr(current_user, 'id') and current_user.is_authenticated:
        return f"user:{current_user.id}"
    return f"ip:{get_remote_address()}"


limiter = Limiter(
    key_func=get_limiter_key,
    default_limits=DEFAULT_LIMITS,
    strategy="fixed-window",
    headers_enabled=True,
    swallow_errors=True,  # No fallar si el storage no está disponible
    in_memory_fallback_enabled=True,
)


def setup_rate_limiter(app):
    """Liga el limiter a la app. El storage sale de RATE_LIMITER_STORAGE (memory:// por defecto)."""
    storage_uri = app.config.get('RATE_LIMITER_STORAGE') or 'memory://'
    app.config.setdefault('RATELIMIT_STORAGE_URI', storage_uri)
    if app.config.get('TESTING'):
        app.config.setdefault('RATELIMIT_ENABLED', False)

    limiter.init_app(app)

    @app.errorhandler(429)
    def ratelimit_handler(e):
        return jsonify({
            'error': 'Rate limit exceeded',
            'message': 'Has excedido el límite de peticiones. Por favor intenta más tarde.',
            'retry_after': e.description,
        }), 429

    app.logger.info(f'[OK] Rate limiter configurado con storage: {storage_uri}')
    return limiter
