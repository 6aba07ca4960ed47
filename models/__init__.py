"""
Models Package
==============
Este paquete contiene todos los modelos del sistema organizados por funcionalidad.

Estructura:
- core: Usuario, Empresa, Vendedor, Producto, asignación Producto-Vendedor
- orders: Orden y líneas de orden
- referrals: Comisiones de referidos, códigos cortos, carritos compartidos
- notifications: Métricas e historial de correos
"""

from extensions import db

# Core models - Usuarios y catálogo
from models.core import (
    AccountRole,
    User,
    Company,
    Seller,
    Product,
    ProductSeller,
)

# Order models
from models.orders import (
    Order,
    OrderLine,
    orden_productos,
)

# Referral models
from models.referrals import (
    ReferralStatus,
    Referral,
    ReferralShortCode,
    SharedCartLink,
)

# Email metrics
from models.notifications import (
    EmailMetric,
    EmailHistoryEntry,
)

# Webhooks procesados (protección de replay)
from utils.webhook_validator import ProcessedWebhook


__all__ = [
    'db',
    # Core
    'AccountRole',
    'User',
    'Company',
    'Seller',
    'Product',
    'ProductSeller',
    # Orders
    'Order',
    'OrderLine',
    'orden_productos',
    # Referrals
    'ReferralStatus',
    'Referral',
    'ReferralShortCode',
    'SharedCartLink',
    # Email
    'EmailMetric',
    'EmailHistoryEntry',
    # Webhooks
    'ProcessedWebhook',
]
