"""Payment gateway adapters selected by name."""
from __future__ import annotations

from flask import current_app

from services.base import ValidationException
from services.gateways.base import (
    CustomerContact,
    GatewayVerification,
    IntentResult,
    LineItem,
    PaymentGateway,
    VerificationStatus,
    items_total,
    parse_line_items,
)


def _stripe(config):
    from services.gateways.providers.stripe_provider import StripeGateway

    return StripeGateway(
        secret_key=config.get("STRIPE_SECRET_KEY", ""),
        publishable_key=config.get("STRIPE_PUBLISHABLE_KEY", ""),
        timeout_seconds=config.get("GATEWAY_TIMEOUT_SECONDS", 8.0),
        min_amount=config.get("GATEWAY_MIN_AMOUNT", 50),
    )


def _mercadopago(config):
    from services.gateways.providers.mercadopago_provider import MercadoPagoGateway

    notification_url = config.get("MP_WEBHOOK_PUBLIC_URL") or (
        f"{config.get('BACKEND_URL', '')}/payments/mercadopago/webhook"
    )
    return MercadoPagoGateway(
        access_token=config.get("MP_ACCESS_TOKEN", ""),
        frontend_url=config.get("FRONTEND_URL", ""),
        notification_url=notification_url,
        timeout_seconds=config.get("GATEWAY_TIMEOUT_SECONDS", 8.0),
        min_amount=config.get("GATEWAY_MIN_AMOUNT", 50),
    )


_FACTORIES = {
    "stripe": _stripe,
    "mercadopago": _mercadopago,
}


def get_gateway(name: str, config=None) -> PaymentGateway:
    """Instancia la pasarela ``name`` con la configuración de la app."""
    factory = _FACTORIES.get((name or "").strip().lower())
    if factory is None:
        raise ValidationException(f"Pasarela de pago desconocida: {name!r}")
    return factory(config if config is not None else current_app.config)


__all__ = [
    "CustomerContact",
    "GatewayVerification",
    "IntentResult",
    "LineItem",
    "PaymentGateway",
    "VerificationStatus",
    "get_gateway",
    "items_total",
    "parse_line_items",
]
