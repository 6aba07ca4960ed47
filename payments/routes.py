"""
Payments Routes
Endpoints de checkout (Stripe y Mercado Pago), confirmación de pagos y
webhook de Mercado Pago.

Seguridad implementada:
- Validación de firma HMAC-SHA256 y prevención de replay en el webhook
- Rate limiting en los endpoints que llaman a la pasarela
- Logging de seguridad para auditoría
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from config.rate_limiter_config import PAYMENT_LIMIT, WEBHOOK_LIMIT, limiter
from services.base import NotificationFailure, PaymentNotCompleted, PermissionDeniedException, ValidationException
from services.commission_ledger import CommissionLedger
from services.email_metrics import KIND_MANUAL, EmailMetricsStore
from services.gateways import get_gateway
from services.gateways.base import CustomerContact, items_total, parse_line_items, to_decimal, to_minor_units
from services.notifications import NotificationDispatcher
from services.order_attribution import OrderAttributionEngine
from services.payment_confirmation import PaymentConfirmation, get_confirmation_service
from utils import validar_email
from utils.permissions import can_view_commissions, role_required
from utils.security_logger import log_security_event
from utils.webhook_validator import extract_data_id, require_valid_mp_webhook

payments_bp = Blueprint('payments', __name__)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationException('Body JSON inválido')
    return data


def _order_details(raw):
    """Valida el detalle de pedido enviado a mano antes de renderizar el email."""
    details = raw or {}
    if not isinstance(details, dict):
        raise ValidationException('orderDetails debe ser un objeto')
    products = details.get('products') or []
    if not isinstance(products, list) or not all(isinstance(p, dict) for p in products):
        raise ValidationException('orderDetails.products debe ser una lista de objetos')
    for product in products:
        if product.get('price') is not None:
            to_decimal(product['price'])
    if details.get('totalAmount') is not None:
        to_decimal(details['totalAmount'])
    return details


def _current_user_id():
    return current_user.id if current_user.is_authenticated else None


def _create_intent(gateway_name, data):
    line_items = parse_line_items(data.get('items'))
    if data.get('customerInfo') is None:
        raise ValidationException('Información del cliente es requerida')
    customer = CustomerContact.from_payload(data.get('customerInfo'))

    # Sin monto explícito se cobra el total de los items
    amount = data.get('amount')
    if amount is None:
        amount = to_minor_units(items_total(line_items))

    current_app.logger.info(
        f"[{gateway_name}] intento de pago: {amount} centavos, {len(line_items)} items, "
        f"usuario={bool(_current_user_id())}, referido={bool(data.get('referredBy'))}"
    )
    gateway = get_gateway(gateway_name)
    return gateway.create_intent(
        amount,
        data.get('currency') or 'usd',
        line_items,
        customer,
        payer_id=_current_user_id(),
        referrer_id=data.get('referredBy') or None,
    )


# ===== STRIPE =====

@payments_bp.route('/config', methods=['GET'])
def stripe_config():
    """Configuración pública de Stripe (publishable key)."""
    return jsonify(get_gateway('stripe').public_config())


@payments_bp.route('/create-payment-intent', methods=['POST'])
@limiter.limit(PAYMENT_LIMIT)
def create_payment_intent():
    result = _create_intent('stripe', _json_body())
    return jsonify({
        'clientSecret': result.client_secret,
        'paymentIntentId': result.provider_reference,
    })


@payments_bp.route('/confirm-payment', methods=['POST'])
@limiter.limit(PAYMENT_LIMIT)
def confirm_payment():
    """Confirma un PaymentIntent ya cobrado: órdenes, comisión y avisos."""
    confirmation = PaymentConfirmation.from_request(
        _json_body(), reference_key='paymentIntentId', payer_id=_current_user_id()
    )
    result = get_confirmation_service().confirm('stripe', confirmation)
    return jsonify({**result.to_dict(), 'message': 'Pago procesado exitosamente'})


# ===== MERCADO PAGO =====

@payments_bp.route('/mercadopago/create-preference', methods=['POST'])
@limiter.limit(PAYMENT_LIMIT)
def create_mp_preference():
    result = _create_intent('mercadopago', _json_body())
    return jsonify({
        'preferenceId': result.provider_reference,
        'initPoint': result.redirect_url,
        'sandboxInitPoint': result.sandbox_redirect_url,
    })


@payments_bp.route('/mercadopago/confirm', methods=['POST'])
@limiter.limit(PAYMENT_LIMIT)
def confirm_mp_payment():
    """Confirmación desde la back_url de éxito (el cliente trae el paymentId)."""
    confirmation = PaymentConfirmation.from_request(
        _json_body(), reference_key='paymentId', payer_id=_current_user_id()
    )
    result = get_confirmation_service().confirm('mercadopago', confirmation)
    return jsonify({**result.to_dict(), 'message': 'Pago procesado exitosamente'})


@payments_bp.route('/mercadopago/webhook', methods=['POST'])
@limiter.limit(WEBHOOK_LIMIT)
@require_valid_mp_webhook
def mercadopago_webhook():
    """
    Webhook de Mercado Pago.

    Solo las notificaciones de tipo 'payment' disparan la confirmación. Un
    pago no aprobado responde 200 para que MP no reintente.
    """
    data = request.get_json(silent=True) or {}
    event_type = (
        data.get('type') or data.get('topic')
        or request.args.get('type') or request.args.get('topic')
    )
    if event_type != 'payment':
        return jsonify({'status': 'ignored'}), 200

    payment_id = extract_data_id(request.get_data(), request.args)
    if not payment_id:
        return jsonify({'error': 'No payment ID'}), 400

    current_app.logger.info(f"MP webhook: pago {payment_id}")
    try:
        result = get_confirmation_service().confirm_from_webhook('mercadopago', payment_id)
    except PaymentNotCompleted as e:
        return jsonify({'status': 'not_approved', 'paymentStatus': e.details.get('status')}), 200
    return jsonify({**result.to_dict(), 'status': 'processed'}), 200


@payments_bp.route('/mp/health', methods=['GET'])
def mp_health():
    return jsonify(get_gateway('mercadopago').health())


# ===== REFERIDOS E HISTORIAL =====

@payments_bp.route('/referral-stats', methods=['GET'])
@login_required
def referral_stats():
    target_user_id = request.args.get('userId') or current_user.id
    if not can_view_commissions(current_user, target_user_id):
        raise PermissionDeniedException('ver', 'estadísticas de referidos')
    stats = CommissionLedger().stats_for(target_user_id)
    return jsonify({'success': True, **stats.to_dict()})


@payments_bp.route('/payment-history', methods=['GET'])
@login_required
def payment_history():
    orders = OrderAttributionEngine().orders_for_buyer(current_user.id)
    return jsonify({'success': True, 'payments': [order.to_dict() for order in orders]})


# ===== ENVÍO MANUAL =====

@payments_bp.route('/manual-company-notification', methods=['POST'])
@role_required('admin')
def manual_company_notification():
    """Reenvía el aviso de venta a una empresa (casos especiales)."""
    data = _json_body()
    company_email = (data.get('companyEmail') or '').strip()
    if not validar_email(company_email):
        raise ValidationException('companyEmail inválido', details={'companyEmail': company_email})
    order_details = _order_details(data.get('orderDetails'))

    log_security_event(
        'manual_company_notification',
        f"Aviso manual a {company_email}",
        severity='low',
        company_email=company_email,
    )
    metrics = EmailMetricsStore()
    try:
        NotificationDispatcher().send_company_order_notification(
            company_email, data.get('companyName') or '', order_details
        )
    except NotificationFailure as e:
        metrics.record(KIND_MANUAL, company_email, False, admin_user=current_user.email,
                       error=e.details.get('cause'))
        raise
    metrics.record(KIND_MANUAL, company_email, True, admin_user=current_user.email)

    return jsonify({
        'success': True,
        'message': 'Notificación enviada exitosamente',
        'sentTo': company_email,
        'sentBy': current_user.email,
    })
