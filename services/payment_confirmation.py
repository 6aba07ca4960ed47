"""
Payment Confirmation Orchestrator
=================================
Punto de entrada una vez que la pasarela informa un pago exitoso.

RECEIVED -> VERIFIED -> ATTRIBUTED -> COMMISSIONED -> NOTIFIED
FAILED solo es alcanzable desde RECEIVED o VERIFIED.

Solo la verificación y la persistencia de órdenes pueden hacer fallar la
confirmación. La comisión y los emails son best-effort: el dinero ya se
movió en la pasarela. Cada paso es idempotente por sí mismo, así que
re-ejecutar la confirmación de un pago no duplica órdenes ni comisiones.
"""

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

from extensions import db
from models.core import User
from models.orders import Order
from services.base import (
    AttributionPersistenceError,
    GatewayError,
    PaymentNotCompleted,
    ValidationException,
)
from services.commission_ledger import CommissionLedger, ReferredIdentity
from services.email_metrics import EmailMetricsStore
from services.gateways import get_gateway
from services.gateways.base import (
    GUEST_PAYER,
    CustomerContact,
    GatewayVerification,
    LineItem,
    PaymentGateway,
    items_total,
    parse_line_items,
    payer_from_metadata,
)
from services.notifications import NotificationDispatcher, NotificationOutcome
from services.order_attribution import OrderAttributionEngine

logger = logging.getLogger(__name__)


def _payer(value):
    value = (value or '').strip() if isinstance(value, str) else value
    return None if value in (None, '', GUEST_PAYER) else str(value)


class PaymentState(str, enum.Enum):
    RECEIVED = 'received'
    VERIFIED = 'verified'
    ATTRIBUTED = 'attributed'
    COMMISSIONED = 'commissioned'
    NOTIFIED = 'notified'
    FAILED = 'failed'


@dataclass
class PaymentConfirmation:
    """Un evento de pago externo. No se persiste como entidad propia."""

    payment_reference: str
    line_items: List[LineItem]
    customer: CustomerContact
    payer_id: Optional[str] = None
    referrer_id: Optional[str] = None

    def __post_init__(self):
        if not self.payment_reference:
            raise ValidationException('La referencia de pago es requerida')
        if not self.line_items:
            raise ValidationException('Items del pedido son requeridos')

    @property
    def total_amount(self) -> Decimal:
        return items_total(self.line_items)

    @property
    def has_distinct_referrer(self) -> bool:
        return bool(self.referrer_id) and self.referrer_id != self.payer_id

    @classmethod
    def from_request(cls, data: Dict[str, Any], reference_key: str = 'paymentIntentId',
                     payer_id: Optional[str] = None) -> 'PaymentConfirmation':
        """Body del storefront: {paymentIntentId, userId?, referredBy?, items[], customerInfo}."""
        if not isinstance(data, dict):
            raise ValidationException('Body JSON inválido')
        if data.get('customerInfo') is None:
            raise ValidationException('Información del cliente es requerida')
        return cls(
            payment_reference=str(data.get(reference_key) or ''),
            line_items=parse_line_items(data.get('items')),
            customer=CustomerContact.from_payload(data.get('customerInfo')),
            payer_id=_payer(data.get('userId')) or payer_id or None,
            referrer_id=data.get('referredBy') or None,
        )


@dataclass
class ConfirmationResult:
    payment_reference: str
    state: PaymentState
    commission: Decimal = Decimal('0.00')
    referral_id: Optional[str] = None
    orders: List[Order] = field(default_factory=list)
    notifications: List[NotificationOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'paymentReference': self.payment_reference,
            'state': self.state.value,
            'commission': float(self.commission),
            'referralId': self.referral_id,
            'orders': [
                {'id': o.id, 'sellerId': o.seller_id, 'products': [p.id for p in o.products]}
                for o in self.orders
            ],
            'notifications': [n.to_dict() for n in self.notifications],
        }


class PaymentConfirmationService:

    def __init__(
        self,
        gateway_factory: Callable[[str], PaymentGateway] = get_gateway,
        ledger: Optional[CommissionLedger] = None,
        attribution: Optional[OrderAttributionEngine] = None,
        dispatcher_factory: Optional[Callable[[], NotificationDispatcher]] = None,
        metrics: Optional[EmailMetricsStore] = None,
    ):
        self.gateway_factory = gateway_factory
        self.ledger = ledger or CommissionLedger()
        self.attribution = attribution or OrderAttributionEngine()
        self.dispatcher_factory = dispatcher_factory or NotificationDispatcher
        self.metrics = metrics or EmailMetricsStore()

    @staticmethod
    def _transition(reference: str, current: PaymentState, new: PaymentState) -> PaymentState:
        logger.info(f"[PAGO {reference}] {current.value} -> {new.value}")
        return new

    # ===== Entradas =====

    def confirm(self, gateway_name: str, confirmation: PaymentConfirmation) -> ConfirmationResult:
        """Confirmación iniciada por el cliente (trae items y contacto en el request)."""
        state = PaymentState.RECEIVED
        verification = self._verify(gateway_name, confirmation.payment_reference, state)
        state = self._transition(confirmation.payment_reference, state, PaymentState.VERIFIED)

        # El referido fijado al crear el intento manda; el del request solo si la metadata no trae
        metadata = verification.metadata
        metadata_referrer = metadata.get('referredBy') or None
        if metadata_referrer:
            if confirmation.referrer_id and confirmation.referrer_id != metadata_referrer:
                logger.warning(
                    f"[PAGO {confirmation.payment_reference}] referido del request "
                    f"{confirmation.referrer_id} ignorado, la pasarela indica {metadata_referrer}"
                )
            confirmation.referrer_id = metadata_referrer
        if not confirmation.payer_id:
            confirmation.payer_id = payer_from_metadata(metadata)

        return self._settle(confirmation, verification, state)

    def confirm_from_webhook(self, gateway_name: str, provider_reference: str) -> ConfirmationResult:
        """Confirmación empujada por la pasarela: todo se reconstruye desde verify()."""
        state = PaymentState.RECEIVED
        verification = self._verify(gateway_name, provider_reference, state)
        state = self._transition(provider_reference, state, PaymentState.VERIFIED)

        metadata = verification.metadata
        if not verification.line_items:
            logger.error(f"[PAGO {provider_reference}] la pasarela no devolvió items")
            self._transition(provider_reference, state, PaymentState.FAILED)
            raise ValidationException('El pago no tiene items para atribuir',
                                      details={'payment_reference': provider_reference})

        confirmation = PaymentConfirmation(
            payment_reference=verification.provider_reference,
            line_items=verification.line_items,
            customer=CustomerContact(
                name=metadata.get('customerName', ''),
                email=metadata.get('customerEmail', ''),
            ),
            payer_id=payer_from_metadata(metadata),
            referrer_id=metadata.get('referredBy') or None,
        )
        return self._settle(confirmation, verification, state)

    # ===== Pasos =====

    def _verify(self, gateway_name: str, reference: str, state: PaymentState) -> GatewayVerification:
        try:
            gateway = self.gateway_factory(gateway_name)
            verification = gateway.verify(reference)
        except GatewayError as e:
            logger.error(f"[PAGO {reference}] error de pasarela {e.code}: {e.message}")
            self._transition(reference, state, PaymentState.FAILED)
            raise

        if not verification.is_success:
            logger.warning(f"[PAGO {reference}] estado {verification.raw_status}, no se confirma")
            self._transition(reference, state, PaymentState.FAILED)
            raise PaymentNotCompleted(reference, verification.raw_status)
        return verification

    def _settle(
        self,
        confirmation: PaymentConfirmation,
        verification: GatewayVerification,
        state: PaymentState,
    ) -> ConfirmationResult:
        reference = confirmation.payment_reference
        total = confirmation.total_amount
        if verification.amount and verification.amount != total:
            logger.warning(
                f"[PAGO {reference}] monto verificado {verification.amount} distinto del total de items {total}"
            )

        try:
            orders = self.attribution.attribute(
                reference, confirmation.payer_id, confirmation.line_items, confirmation.customer
            )
        except AttributionPersistenceError:
            self._transition(reference, state, PaymentState.FAILED)
            raise
        state = self._transition(reference, state, PaymentState.ATTRIBUTED)

        result = ConfirmationResult(payment_reference=reference, state=state, orders=orders)
        referral = self._record_commission(confirmation, total)
        if referral is not None:
            result.commission = Decimal(referral.commission)
            result.referral_id = referral.id
        result.state = state = self._transition(reference, state, PaymentState.COMMISSIONED)

        result.notifications = self._notify(confirmation, orders, referral)
        result.state = self._transition(reference, state, PaymentState.NOTIFIED)
        return result

    def _record_commission(self, confirmation: PaymentConfirmation, total: Decimal):
        if not confirmation.has_distinct_referrer:
            return None
        payer = db.session.get(User, confirmation.payer_id) if confirmation.payer_id else None
        referred = ReferredIdentity(
            user_id=confirmation.payer_id,
            email=confirmation.customer.email or (payer.email if payer else ''),
            name=confirmation.customer.name or (payer.name if payer else None),
        )
        try:
            return self.ledger.record_commission(
                confirmation.referrer_id, referred, total, confirmation.payment_reference
            )
        except Exception:
            # La compra ya se cobró: la comisión no puede tumbar la confirmación
            db.session.rollback()
            logger.exception(
                f"[PAGO {confirmation.payment_reference}] no se pudo registrar la comisión de "
                f"{confirmation.referrer_id}"
            )
            return None

    def _notification_jobs(self, dispatcher, confirmation, orders, referral):
        customer = confirmation.customer
        company_emails = {
            item.company_id: item.company_email
            for item in confirmation.line_items
            if item.company_id and item.company_email
        }

        jobs = []
        for company_id, summary in self.attribution.company_summaries(orders).items():
            company = summary['company']
            email = company.email or company_emails.get(company_id)
            if not email:
                logger.info(f"Empresa {company.name} sin email, no se notifica")
                continue
            jobs.append(dispatcher.company_order_job(email, company.name, {
                'customerName': customer.name,
                'customerEmail': customer.email,
                'customerAddress': customer.address or 'No especificada',
                'customerCity': customer.city or 'No especificada',
                'customerPhone': customer.phone or 'No especificado',
                'products': summary['products'],
                'totalAmount': float(summary['total']),
                'orderId': confirmation.payment_reference,
            }))

        if referral is not None and referral.referrer is not None:
            referrer = referral.referrer
            jobs.append(dispatcher.commission_job(
                referrer.email,
                referrer.name,
                float(referral.amount),
                float(referral.commission),
                referral.referred_user_name or 'un cliente',
            ))
        return jobs

    def _notify(self, confirmation, orders, referral) -> List[NotificationOutcome]:
        try:
            dispatcher = self.dispatcher_factory()
            jobs = self._notification_jobs(dispatcher, confirmation, orders, referral)
            outcomes = dispatcher.dispatch_all(jobs)
        except Exception:
            logger.exception(f"[PAGO {confirmation.payment_reference}] error preparando notificaciones")
            return []

        try:
            self.metrics.record_outcomes(outcomes)
        except Exception:
            db.session.rollback()
            logger.exception("No se pudieron registrar las métricas de email")
        return outcomes


def get_confirmation_service() -> PaymentConfirmationService:
    """Servicio ligado a la app actual (permite reemplazarlo en tests vía extensions)."""
    service = current_app.extensions.get('payment_confirmation')
    if service is None:
        service = PaymentConfirmationService()
        current_app.extensions['payment_confirmation'] = service
    return service
