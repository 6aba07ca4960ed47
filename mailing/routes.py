"""Estadísticas e historial de los correos enviados (solo administradores)."""

from flask import Blueprint, jsonify, request

from services.email_metrics import HISTORY_LIMIT, EmailMetricsStore
from utils import safe_int
from utils.permissions import role_required

mailing_bp = Blueprint('mailing', __name__)


@mailing_bp.route('/stats', methods=['GET'])
@role_required('admin')
def email_stats():
    return jsonify({'success': True, 'stats': EmailMetricsStore().snapshot()})


@mailing_bp.route('/history', methods=['GET'])
@role_required('admin')
def email_history():
    limit = safe_int(request.args.get('limit'), HISTORY_LIMIT)
    limit = max(1, min(limit, HISTORY_LIMIT))
    return jsonify({'success': True, 'history': EmailMetricsStore().history(limit)})
