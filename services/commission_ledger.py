"""
Commission Ledger
=================
Registro de comisiones del programa de referidos.

- Una sola comisión por (referidor, referencia de pago): lookup previo más
  restricción única en la base. Si se pierde una carrera se devuelve la fila
  ganadora.
- PENDING -> PAID es un update condicional: repetirlo no cambia nada.
- Las estadísticas salen de una agregación SQL sobre las filas del usuario.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models.core import User
from models.referrals import Referral, ReferralStatus
from services.base import (
    BaseService,
    DuplicateCommission,
    ReferrerNotFound,
    ServiceException,
    ValidationException,
)
from services.gateways.base import CENT, to_decimal
from services.short_codes import ShortCodeService
from utils.security_logger import log_transaction


COMMISSION_RATE = Decimal("0.05")


def compute_commission(purchase_amount: Any) -> Decimal:
    """round(amount * 5%, 2) con redondeo half-up."""
    return (to_decimal(purchase_amount) * COMMISSION_RATE).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class ReferredIdentity:
    """Quién generó la compra. Puede ser un invitado sin cuenta."""

    user_id: Optional[str] = None
    email: str = ""
    name: Optional[str] = None


@dataclass
class ReferralStats:
    total_commissions: Decimal = Decimal("0.00")
    total_referrals: int = 0
    pending_commissions: Decimal = Decimal("0.00")
    paid_commissions: Decimal = Decimal("0.00")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalCommissions': float(self.total_commissions),
            'totalReferrals': self.total_referrals,
            'pendingCommissions': float(self.pending_commissions),
            'paidCommissions': float(self.paid_commissions),
        }


class CommissionLedger(BaseService[Referral]):
    model_class = Referral

    def __init__(self, short_codes: Optional[ShortCodeService] = None):
        super().__init__()
        self.short_codes = short_codes or ShortCodeService()

    def find(self, referrer_id: str, payment_reference: str) -> Optional[Referral]:
        return Referral.query.filter_by(referrer_id=referrer_id, payment_reference=payment_reference).first()

    def _insert(self, referral: Referral) -> Referral:
        db.session.add(referral)
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise DuplicateCommission(referral.referrer_id, referral.payment_reference) from e
        except SQLAlchemyError as e:
            db.session.rollback()
            raise ServiceException(f"Error al guardar la comisión: {str(e)}") from e
        return referral

    def record_commission(
        self,
        referrer_id: str,
        referred: ReferredIdentity,
        purchase_amount: Any,
        payment_reference: str,
    ) -> Referral:
        """Registra la comisión del pago o devuelve la existente."""
        if not payment_reference:
            raise ValidationException("La referencia de pago es requerida")
        amount = to_decimal(purchase_amount).quantize(CENT, rounding=ROUND_HALF_UP)
        if amount <= 0:
            raise ValidationException("El monto de la compra debe ser mayor a 0")

        existing = self.find(referrer_id, payment_reference)
        if existing:
            self._log_info(f"Comisión ya registrada para {referrer_id} / {payment_reference}")
            return existing

        referrer = db.session.get(User, referrer_id) if referrer_id else None
        if not referrer:
            raise ReferrerNotFound(referrer_id)

        referred_user_id = None
        if referred.user_id and db.session.get(User, referred.user_id):
            referred_user_id = referred.user_id

        referral = Referral(
            referrer_id=referrer_id,
            referred_user_id=referred_user_id,
            referred_user_email=referred.email or None,
            referred_user_name=referred.name,
            amount=amount,
            commission=compute_commission(amount),
            status=ReferralStatus.PENDING,
            payment_reference=payment_reference,
        )

        try:
            self._insert(referral)
        except DuplicateCommission:
            winner = self.find(referrer_id, payment_reference)
            if winner is None:
                raise
            self._log_info(f"Comisión concurrente para {referrer_id} / {payment_reference}, se usa la existente")
            return winner

        self._log_info(
            f"Comisión registrada: {referrer_id} ({referrer.email}) por ${amount} -> ${referral.commission}"
        )
        log_transaction('referral_commission', referral.commission, details={
            'referral_id': referral.id,
            'payment_reference': payment_reference,
        })
        return referral

    def mark_paid(self, commission_id: str) -> Referral:
        """PENDING -> PAID. Sobre una comisión ya pagada no hace nada y la devuelve."""
        referral = self.get_by_id_or_fail(commission_id)
        if referral.status == ReferralStatus.PAID:
            self._log_info(f"Comisión {commission_id} ya estaba pagada")
            return referral

        now = datetime.utcnow()
        updated = (
            Referral.query
            .filter_by(id=commission_id, status=ReferralStatus.PENDING)
            .update(
                {Referral.status: ReferralStatus.PAID, Referral.paid_at: now, Referral.updated_at: now},
                synchronize_session=False,
            )
        )
        self.commit()
        db.session.refresh(referral)

        if updated:
            self._log_info(f"Comisión {commission_id} marcada como pagada")
            log_transaction('referral_commission_paid', referral.commission, details={'referral_id': commission_id})
        else:
            self._log_info(f"Comisión {commission_id} fue pagada por otra operación")
        return referral

    def stats_for(self, user_id: str) -> ReferralStats:
        rows = (
            db.session.query(
                Referral.status,
                func.count(Referral.id),
                func.coalesce(func.sum(Referral.commission), 0),
            )
            .filter(Referral.referrer_id == user_id)
            .group_by(Referral.status)
            .all()
        )

        stats = ReferralStats()
        for status, count, total in rows:
            total = to_decimal(total).quantize(CENT)
            stats.total_referrals += count
            stats.total_commissions += total
            if status == ReferralStatus.PENDING:
                stats.pending_commissions += total
            elif status == ReferralStatus.PAID:
                stats.paid_commissions += total
        return stats

    def list_commissions(self, user_id: str) -> Dict[str, Any]:
        referrals = (
            Referral.query
            .filter_by(referrer_id=user_id)
            .order_by(Referral.created_at.desc(), Referral.id.desc())
            .all()
        )
        return {
            'commissions': [r.to_dict() for r in referrals],
            'stats': self.stats_for(user_id).to_dict(),
        }

    def all_commissions(self) -> List[Dict[str, Any]]:
        referrals = Referral.query.order_by(Referral.created_at.desc(), Referral.id.desc()).all()
        return [r.to_dict() for r in referrals]

    def get_or_create_short_code(self, user_id: str) -> str:
        """Código corto de referido del usuario; se crea la primera vez."""
        return self.short_codes.get_or_create(user_id)
