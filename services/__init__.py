"""
Services Package
================
Capa de servicios del marketplace. Encapsula la lógica de negocio detrás de
una interfaz limpia; los blueprints solo traducen HTTP <-> servicios.

Estructura:
-----------
- base: Clase base y excepciones de dominio
- gateways: Adaptadores Stripe y Mercado Pago
- short_codes: Códigos cortos de referido y carritos compartidos
- commission_ledger: Comisiones de referidos
- order_attribution: Reparto de items entre vendedores
- notifications / email_*: Envío de correos, plantillas y métricas
- payment_confirmation: Orquestación de la confirmación de un pago

Uso:
----
    from services import CommissionLedger

    ledger = CommissionLedger()
    stats = ledger.stats_for(user_id)
"""

# Base service and exceptions
from services.base import (
    AttributionPersistenceError,
    BaseService,
    GatewayAuthError,
    GatewayError,
    GatewayRejected,
    GatewayUnreachable,
    NotFoundException,
    NotificationFailure,
    PaymentNotCompleted,
    PermissionDeniedException,
    ReferrerNotFound,
    ServiceException,
    ValidationException,
)

# Domain services
from services.short_codes import ShortCodeService
from services.commission_ledger import CommissionLedger
from services.order_attribution import OrderAttributionEngine
from services.email_metrics import EmailMetricsStore
from services.notifications import NotificationDispatcher
from services.payment_confirmation import PaymentConfirmationService, get_confirmation_service


__all__ = [
    # Base classes
    'BaseService',
    # Exceptions
    'ServiceException',
    'ValidationException',
    'NotFoundException',
    'PermissionDeniedException',
    'GatewayError',
    'GatewayRejected',
    'GatewayUnreachable',
    'GatewayAuthError',
    'PaymentNotCompleted',
    'AttributionPersistenceError',
    'ReferrerNotFound',
    'NotificationFailure',
    # Services
    'ShortCodeService',
    'CommissionLedger',
    'OrderAttributionEngine',
    'EmailMetricsStore',
    'NotificationDispatcher',
    'PaymentConfirmationService',
    'get_confirmation_service',
]
