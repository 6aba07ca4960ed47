"""
Referrals Routes
Comisiones del programa de embajadores, códigos cortos de referido y
enlaces de carrito compartido.
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from config.rate_limiter_config import PAYMENT_LIMIT, limiter
from services.base import PermissionDeniedException, ValidationException
from services.commission_ledger import CommissionLedger, ReferredIdentity
from services.short_codes import ShortCodeService
from utils.permissions import can_view_commissions, role_required

referrals_bp = Blueprint('referrals', __name__)
short_links_bp = Blueprint('short_links', __name__)


def _require_owner_or_admin(user_id, resource):
    if not can_view_commissions(current_user, user_id):
        raise PermissionDeniedException('acceder', resource)


# ===== COMISIONES =====

@referrals_bp.route('/commissions/<user_id>', methods=['GET'])
@login_required
def user_commissions(user_id):
    _require_owner_or_admin(user_id, 'comisiones')
    result = CommissionLedger().list_commissions(user_id)
    current_app.logger.info(f"Comisiones de {user_id}: {len(result['commissions'])} registros")
    return jsonify(result)


@referrals_bp.route('/stats', methods=['GET'])
@referrals_bp.route('/stats/<user_id>', methods=['GET'])
@login_required
def user_stats(user_id=None):
    user_id = user_id or request.args.get('userId') or current_user.id
    _require_owner_or_admin(user_id, 'estadísticas de referidos')
    return jsonify(CommissionLedger().stats_for(user_id).to_dict())


@referrals_bp.route('/commission', methods=['POST'])
@role_required('admin')
def create_commission():
    """Alta manual de una comisión (ajustes de administración)."""
    data = request.get_json(silent=True) or {}
    if not data.get('referrerId'):
        raise ValidationException('referrerId es requerido')

    referral = CommissionLedger().record_commission(
        data['referrerId'],
        ReferredIdentity(
            user_id=data.get('referredUserId'),
            email=data.get('referredUserEmail') or '',
            name=data.get('referredUserName'),
        ),
        data.get('amount'),
        data.get('paymentReference') or '',
    )
    return jsonify(referral.to_dict()), 201


@referrals_bp.route('/mark-paid/<commission_id>', methods=['POST'])
@role_required('admin')
def mark_commission_paid(commission_id):
    referral = CommissionLedger().mark_paid(commission_id)
    return jsonify(referral.to_dict())


@referrals_bp.route('/all-commissions', methods=['GET'])
@role_required('admin')
def all_commissions():
    return jsonify({'commissions': CommissionLedger().all_commissions()})


# ===== CÓDIGOS CORTOS =====

@referrals_bp.route('/short-code/<user_id>', methods=['GET'])
@login_required
def get_short_code(user_id):
    _require_owner_or_admin(user_id, 'código de referido')
    return jsonify({'shortCode': CommissionLedger().get_or_create_short_code(user_id)})


@referrals_bp.route('/create-short-code', methods=['POST'])
@login_required
def create_short_code():
    data = request.get_json(silent=True) or {}
    user_id = data.get('userId') or current_user.id
    _require_owner_or_admin(user_id, 'código de referido')

    service = ShortCodeService()
    if data.get('shortCode'):
        code = service.create_specific(user_id, data['shortCode'])
    else:
        code = service.get_or_create(user_id)
    return jsonify({'shortCode': code})


@referrals_bp.route('/resolve/<code>', methods=['GET'])
def resolve_referral_code(code):
    return jsonify(ShortCodeService().resolve_referral_code(code))


# ===== CARRITOS COMPARTIDOS =====

@short_links_bp.route('/shared-cart', methods=['POST'])
@limiter.limit(PAYMENT_LIMIT)
def create_shared_cart():
    data = request.get_json(silent=True) or {}
    user_id = data.get('userId') or (current_user.id if current_user.is_authenticated else None)
    if not user_id or data.get('cartData') is None:
        raise ValidationException('userId y cartData son requeridos')

    code = ShortCodeService().create_shared_cart_link(user_id, data['cartData'], data.get('shortCode'))
    return jsonify({'shortCode': code})


@short_links_bp.route('/resolve/<code>', methods=['GET'])
def resolve_shared_cart(code):
    return jsonify(ShortCodeService().resolve_shared_cart_link(code))
