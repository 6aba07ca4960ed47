"""
Modelos del Programa de Referidos

- Referral: comisión ganada por un embajador sobre un pago referido
- ReferralShortCode: código corto de 6 caracteres asociado a un usuario
- SharedCartLink: carrito compartido con código corto
"""

import enum
import uuid
from datetime import datetime

from extensions import db


def _uuid():
    return str(uuid.uuid4())


class ReferralStatus(str, enum.Enum):
    PENDING = 'pending'
    PAID = 'paid'


class Referral(db.Model):
    __tablename__ = 'referrals'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    referrer_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    referred_user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=True)
    referred_user_email = db.Column(db.String(255))
    referred_user_name = db.Column(db.String(200))
    amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)  # total de la compra
    commission = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    status = db.Column(
        db.Enum(ReferralStatus, name='referral_status', values_callable=lambda e: [s.value for s in e]),
        nullable=False,
        default=ReferralStatus.PENDING,
    )
    payment_reference = db.Column(db.String(255), nullable=False)
    paid_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relaciones
    referrer = db.relationship('User', foreign_keys=[referrer_id])
    referred_user = db.relationship('User', foreign_keys=[referred_user_id])

    __table_args__ = (
        db.UniqueConstraint('referrer_id', 'payment_reference', name='uq_referrals_referrer_payment'),
    )

    def __repr__(self):
        return f'<Referral {self.id} {self.status.value if self.status else None}>'

    def to_dict(self):
        return {
            'id': self.id,
            'referrerId': self.referrer_id,
            'referredUserId': self.referred_user_id or '',
            'referredUserEmail': self.referred_user_email or '',
            'referredUserName': self.referred_user_name,
            'amount': float(self.amount or 0),
            'commission': float(self.commission or 0),
            'paymentReference': self.payment_reference,
            'status': self.status.value,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'paidAt': self.paid_at.isoformat() if self.paid_at else None,
        }


class ReferralShortCode(db.Model):
    __tablename__ = 'referral_short_codes'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    short_code = db.Column(db.String(16), unique=True, nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User')

    def __repr__(self):
        return f'<ReferralShortCode {self.short_code}>'


class SharedCartLink(db.Model):
    __tablename__ = 'shared_cart_links'

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    short_code = db.Column(db.String(16), unique=True, nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)
    cart_data = db.Column(db.JSON, nullable=False, default=list)
    type = db.Column(db.String(50), nullable=False, default='shared-cart')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User')

    def __repr__(self):
        return f'<SharedCartLink {self.short_code}>'
