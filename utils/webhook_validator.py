"""
Validador de Webhooks de Mercado Pago
=====================================
Validación de firma HMAC-SHA256 según documentación oficial de MP.
https://www.mercadopago.com.ar/developers/es/docs/your-integrations/notifications/webhooks

Seguridad implementada:
1. Validación de firma HMAC-SHA256
2. Prevención de replay attacks (request_id único)
3. Validación de timestamp (máx 5 minutos de antigüedad)
4. Logging de seguridad para auditoría
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta
from functools import wraps

from flask import request, jsonify, current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from utils.security_logger import log_security_event


SIGNATURE_MAX_AGE_SECONDS = 300


class ProcessedWebhook(db.Model):
    """Registro de webhooks procesados para evitar replay attacks"""
    __tablename__ = 'processed_webhooks'

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.String(100), unique=True, nullable=False, index=True)
    provider = db.Column(db.String(50), nullable=False)  # mercadopago, stripe
    processed_at = db.Column(db.DateTime, default=datetime.utcnow)
    payload_hash = db.Column(db.String(64))  # SHA256 del payload

    def __repr__(self):
        return f'<ProcessedWebhook {self.provider}:{self.request_id}>'


def parse_signature_header(x_signature):
    """'ts=1700000000,v1=abc...' -> {'ts': '1700000000', 'v1': 'abc...'}"""
    parts = {}
    for part in (x_signature or '').split(','):
        if '=' in part:
            key, value = part.split('=', 1)
            parts[key.strip()] = value.strip()
    return parts


def extract_data_id(payload, query_args=None):
    """data.id viene en el query string; si no, en el body JSON."""
    if query_args and query_args.get('data.id'):
        return str(query_args.get('data.id'))
    try:
        body = json.loads(payload or b'{}')
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
        return ''
    data = body.get('data') if isinstance(body, dict) else None
    if isinstance(data, dict) and data.get('id') is not None:
        return str(data['id'])
    return ''


def validate_mp_signature(payload, x_signature, x_request_id, secret, data_id=None, now=None):
    """
    Valida la firma de Mercado Pago.

    El header x-signature tiene formato ``ts=timestamp,v1=hash`` y el hash es
    HMAC-SHA256 de ``id=[data.id];request-id=[x-request-id];ts=[timestamp];``

    Returns:
        True si la firma es válida, False si no
    """
    if not x_signature or not secret:
        return False

    parts = parse_signature_header(x_signature)
    ts = parts.get('ts')
    v1 = parts.get('v1')
    if not ts or not v1:
        current_app.logger.warning("MP webhook: x-signature malformado")
        return False

    try:
        timestamp = int(ts)
    except ValueError:
        return False

    current_time = int(now if now is not None else time.time())
    if abs(current_time - timestamp) > SIGNATURE_MAX_AGE_SECONDS:
        current_app.logger.warning(
            f"MP webhook: timestamp fuera de rango ({current_time - timestamp}s)"
        )
        return False

    if data_id is None:
        data_id = extract_data_id(payload)

    manifest = f"id={data_id};request-id={x_request_id};ts={ts};"
    expected_hash = hmac.new(
        secret.encode('utf-8'),
        manifest.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()

    # Comparación en tiempo constante
    return hmac.compare_digest(expected_hash, v1)


def check_replay_attack(request_id, provider='mercadopago'):
    """True si el webhook ya fue procesado."""
    if not request_id:
        return False
    existing = ProcessedWebhook.query.filter_by(request_id=request_id, provider=provider).first()
    return existing is not None


def mark_webhook_processed(request_id, payload, provider='mercadopago'):
    """Marca un webhook como procesado. Un duplicado concurrente se ignora."""
    if not request_id:
        return

    record = ProcessedWebhook(
        request_id=request_id,
        provider=provider,
        payload_hash=hashlib.sha256(payload or b'').hexdigest(),
    )
    try:
        db.session.add(record)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.info(f"Webhook {provider}:{request_id} ya estaba registrado")
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error registrando webhook: {e}")


def _response_status(result):
    if isinstance(result, tuple) and len(result) > 1 and isinstance(result[1], int):
        return result[1]
    return getattr(result, 'status_code', 200)


def require_valid_mp_webhook(f):
    """
    Decorator para validar webhooks de Mercado Pago.

    Uso:
        @payments_bp.route('/mercadopago/webhook', methods=['POST'])
        @require_valid_mp_webhook
        def mp_webhook():
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        x_signature = request.headers.get('x-signature', '')
        x_request_id = request.headers.get('x-request-id', '')
        payload = request.get_data()

        webhook_secret = current_app.config.get('MP_WEBHOOK_SECRET')
        is_production = current_app.config.get('FLASK_ENV') == 'production'
        data_id = extract_data_id(payload, request.args)

        if is_production and not webhook_secret:
            log_security_event(
                'webhook_rejected',
                'MP_WEBHOOK_SECRET no configurado en producción',
                severity='critical',
                provider='mercadopago',
            )
            return jsonify({"error": "Webhook validation failed"}), 401

        if webhook_secret and not validate_mp_signature(
            payload, x_signature, x_request_id, webhook_secret, data_id=data_id
        ):
            if is_production:
                log_security_event(
                    'webhook_rejected',
                    f"Firma inválida (request_id: {x_request_id})",
                    severity='high',
                    provider='mercadopago',
                    request_id=x_request_id,
                )
                return jsonify({"error": "Invalid signature"}), 401
            # En desarrollo se loguea y se permite
            current_app.logger.warning(
                f"MP webhook: firma inválida en desarrollo (request_id: {x_request_id})"
            )

        if check_replay_attack(x_request_id):
            log_security_event(
                'webhook_replay_detected',
                f"Replay detectado (request_id: {x_request_id})",
                provider='mercadopago',
                request_id=x_request_id,
            )
            # 200 para que MP no reintente
            return jsonify({"status": "already_processed"}), 200

        result = f(*args, **kwargs)

        # Solo se marca si el handler terminó bien; si no, MP reintenta
        if x_request_id and _response_status(result) < 400:
            mark_webhook_processed(x_request_id, payload)

        return result

    return decorated_function


def cleanup_old_webhooks(days=30):
    """Elimina registros de webhooks más antiguos que ``days`` días. Devuelve la cantidad."""
    cutoff = datetime.utcnow() - timedelta(days=days)
    try:
        deleted = ProcessedWebhook.query.filter(ProcessedWebhook.processed_at < cutoff).delete()
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f"Error limpiando webhooks: {e}")
        raise

    if deleted:
        current_app.logger.info(f"Limpiados {deleted} webhooks antiguos")
    return deleted
