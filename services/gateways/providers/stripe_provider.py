"""Stripe PaymentIntents gateway (confirmación del lado del cliente)."""
from __future__ import annotations

import logging
from typing import List, Optional

import stripe

from services.base import GatewayRejected, GatewayUnreachable, ValidationException
from services.gateways.base import (
    CustomerContact,
    GatewayVerification,
    IntentResult,
    LineItem,
    PaymentGateway,
    VerificationStatus,
    build_metadata,
    from_minor_units,
    gateway_retry,
    normalize_metadata,
)

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "succeeded": VerificationStatus.SUCCEEDED,
    "processing": VerificationStatus.PENDING,
    "requires_action": VerificationStatus.PENDING,
    "requires_capture": VerificationStatus.PENDING,
    "requires_confirmation": VerificationStatus.PENDING,
    "requires_payment_method": VerificationStatus.PENDING,
    "canceled": VerificationStatus.FAILED,
}


def configure_stripe_http_client(timeout_seconds: float) -> None:
    """Cliente HTTP del SDK, global al proceso; se fija una vez al crear la app."""
    stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)


def _as_dict(stripe_object) -> dict:
    if not stripe_object:
        return {}
    if hasattr(stripe_object, "to_dict"):
        return stripe_object.to_dict()
    return dict(stripe_object)


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(self, secret_key: str, publishable_key: str = "", timeout_seconds: float = 8.0, min_amount: int = 50):
        super().__init__(timeout_seconds=timeout_seconds, min_amount=min_amount)
        if not secret_key:
            raise self.auth_error("STRIPE_SECRET_KEY no está definida")
        if not secret_key.startswith("sk_"):
            raise self.auth_error("STRIPE_SECRET_KEY no parece válida (debe empezar con sk_)")
        self.secret_key = secret_key
        self.publishable_key = publishable_key

    def public_config(self) -> dict:
        if not self.publishable_key:
            raise self.auth_error("STRIPE_PUBLISHABLE_KEY no está definida")
        if not self.publishable_key.startswith("pk_"):
            raise self.auth_error("STRIPE_PUBLISHABLE_KEY no parece válida (debe empezar con pk_)")
        return {"publishableKey": self.publishable_key}

    def _translate(self, error: stripe.StripeError) -> Exception:
        logger.error(
            "Error de Stripe: %s (code=%s, request_id=%s)",
            error.user_message or str(error),
            getattr(error, "code", None),
            getattr(error, "request_id", None),
        )
        if isinstance(error, (stripe.AuthenticationError, stripe.PermissionError)):
            return self.auth_error(f"Error de autenticación con Stripe: {error}")
        if isinstance(error, stripe.CardError):
            return GatewayRejected(f"Error de tarjeta: {error.user_message or error}", provider=self.name)
        if isinstance(error, stripe.InvalidRequestError):
            return GatewayRejected(f"Solicitud inválida: {error.user_message or error}", provider=self.name)
        # APIConnectionError, RateLimitError, APIError y desconocidos son transitorios
        return GatewayUnreachable(f"Error de conexión con Stripe: {error}", provider=self.name)

    @gateway_retry
    def _create_payment_intent(self, **params):
        try:
            return stripe.PaymentIntent.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise self._translate(e) from e

    @gateway_retry
    def _retrieve_payment_intent(self, payment_intent_id: str):
        try:
            return stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise self._translate(e) from e

    def create_intent(
        self,
        amount_minor_units: int,
        currency: str,
        line_items: List[LineItem],
        customer: CustomerContact,
        payer_id: Optional[str] = None,
        referrer_id: Optional[str] = None,
    ) -> IntentResult:
        amount = self.validate_intent_request(amount_minor_units, line_items, customer)
        total = from_minor_units(amount)
        count = len(line_items)

        logger.info(
            "Creando PaymentIntent: %s centavos (%s items, referido=%s)",
            amount, count, bool(referrer_id),
        )
        intent = self._create_payment_intent(
            amount=amount,
            currency=(currency or "usd").lower(),
            automatic_payment_methods={"enabled": True},
            metadata=build_metadata(line_items, customer, payer_id, referrer_id, amount),
            description=(
                f"Pedido de {count} producto{'s' if count > 1 else ''}"
                f" - {customer.email} - Total: ${total:.2f}"
            ),
        )
        logger.info("PaymentIntent %s creado (%s)", intent.id, intent.status)
        return IntentResult(
            provider=self.name,
            provider_reference=intent.id,
            client_secret=intent.client_secret,
        )

    def verify(self, provider_reference: str) -> GatewayVerification:
        if not provider_reference:
            raise ValidationException("Payment Intent ID es requerido")

        intent = self._retrieve_payment_intent(provider_reference)
        raw_status = intent.status or ""
        metadata = _as_dict(intent.metadata)
        logger.info("PaymentIntent %s en estado %s", intent.id, raw_status)

        return GatewayVerification(
            provider=self.name,
            provider_reference=intent.id,
            status=_STATUS_MAP.get(raw_status, VerificationStatus.FAILED),
            raw_status=raw_status,
            amount=from_minor_units(intent.amount or 0),
            currency=(intent.currency or "").upper(),
            metadata=normalize_metadata(metadata),
        )
