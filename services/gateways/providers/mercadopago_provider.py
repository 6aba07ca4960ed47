"""Mercado Pago Checkout Pro gateway (redirect + webhook del servidor)."""
from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import mercadopago
import requests
from mercadopago.config import RequestOptions

from services.base import GatewayRejected, GatewayUnreachable, ValidationException
from services.gateways.base import (
    CustomerContact,
    GatewayVerification,
    IntentResult,
    LineItem,
    PaymentGateway,
    VerificationStatus,
    build_metadata,
    gateway_retry,
    normalize_metadata,
    to_decimal,
)

logger = logging.getLogger(__name__)

STATEMENT_DESCRIPTOR = "TIENDA_ONLINE"

_STATUS_MAP = {
    "approved": VerificationStatus.SUCCEEDED,
    "pending": VerificationStatus.PENDING,
    "in_process": VerificationStatus.PENDING,
    "in_mediation": VerificationStatus.PENDING,
    "authorized": VerificationStatus.PENDING,
    "rejected": VerificationStatus.FAILED,
    "cancelled": VerificationStatus.FAILED,
    "refunded": VerificationStatus.FAILED,
    "charged_back": VerificationStatus.FAILED,
}


class MercadoPagoGateway(PaymentGateway):
    name = "mercadopago"

    def __init__(
        self,
        access_token: str,
        frontend_url: str = "",
        notification_url: str = "",
        timeout_seconds: float = 8.0,
        min_amount: int = 50,
        sdk=None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, min_amount=min_amount)
        if not access_token:
            raise self.auth_error("MP_ACCESS_TOKEN no está configurado")
        self.frontend_url = (frontend_url or "").rstrip("/")
        self.notification_url = notification_url
        self.sdk = sdk or mercadopago.SDK(
            access_token,
            request_options=RequestOptions(connection_timeout=timeout_seconds, max_retries=0),
        )

    def _check_response(self, response: Dict[str, Any], operation: str) -> Dict[str, Any]:
        status = response.get("status")
        body = response.get("response") or {}
        if status in (200, 201):
            return body

        message = body.get("message") if isinstance(body, dict) else str(body)
        logger.error("Mercado Pago %s respondió %s: %s", operation, status, message)
        if status in (401, 403):
            raise self.auth_error(f"Mercado Pago rechazó las credenciales ({status})")
        if isinstance(status, int) and status < 500:
            raise GatewayRejected(
                f"Mercado Pago rechazó {operation}: {message}",
                provider=self.name,
                details={"status": status},
            )
        raise GatewayUnreachable(
            f"Mercado Pago no disponible ({status})",
            provider=self.name,
            details={"status": status},
        )

    @gateway_retry
    def _create_preference(self, preference_data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.sdk.preference().create(preference_data)
        except requests.RequestException as e:
            raise GatewayUnreachable(f"Error de conexión con Mercado Pago: {e}", provider=self.name) from e
        return self._check_response(response, "create-preference")

    @gateway_retry
    def _get_payment(self, payment_id: str) -> Dict[str, Any]:
        try:
            response = self.sdk.payment().get(payment_id)
        except requests.RequestException as e:
            raise GatewayUnreachable(f"Error de conexión con Mercado Pago: {e}", provider=self.name) from e
        return self._check_response(response, "payment")

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
        currency_id = (currency or "USD").upper()

        preference_data = {
            "items": [
                {
                    "id": item.product_id,
                    "title": item.name or item.product_id,
                    "quantity": item.quantity,
                    "unit_price": float(item.unit_price),
                    "currency_id": currency_id,
                }
                for item in line_items
            ],
            "payer": {
                "name": customer.name,
                "email": customer.email,
                "phone": {"number": customer.phone},
                "address": {
                    "street_name": customer.address,
                    "zip_code": customer.postal_code,
                },
            },
            "back_urls": {
                "success": f"{self.frontend_url}/payment/success",
                "failure": f"{self.frontend_url}/payment/failure",
                "pending": f"{self.frontend_url}/payment/success",
            },
            "external_reference": f"order_{payer_id or 'guest'}_{int(time.time() * 1000)}",
            "metadata": build_metadata(line_items, customer, payer_id, referrer_id, amount),
            "statement_descriptor": STATEMENT_DESCRIPTOR,
        }
        if self.notification_url:
            preference_data["notification_url"] = self.notification_url

        logger.info("Creando preferencia de Mercado Pago (%s items)", len(line_items))
        body = self._create_preference(preference_data)
        logger.info("Preferencia %s creada", body.get("id"))

        return IntentResult(
            provider=self.name,
            provider_reference=str(body.get("id")),
            redirect_url=body.get("init_point"),
            sandbox_redirect_url=body.get("sandbox_init_point"),
        )

    def verify(self, provider_reference: str) -> GatewayVerification:
        """Consulta un pago (no una preferencia) por su id."""
        if not provider_reference:
            raise ValidationException("ID de pago de Mercado Pago es requerido")

        payment = self._get_payment(str(provider_reference))
        raw_status = payment.get("status") or ""
        logger.info("Pago MP %s en estado %s", payment.get("id"), raw_status)

        items = (payment.get("additional_info") or {}).get("items") or []
        return GatewayVerification(
            provider=self.name,
            provider_reference=str(payment.get("id") or provider_reference),
            status=_STATUS_MAP.get(raw_status, VerificationStatus.FAILED),
            raw_status=raw_status,
            amount=to_decimal(payment.get("transaction_amount") or 0).quantize(Decimal("0.01")),
            currency=(payment.get("currency_id") or "").upper(),
            metadata=normalize_metadata(payment.get("metadata")),
            line_items=[self._line_item(item) for item in items if item.get("id")],
        )

    @staticmethod
    def _line_item(item: Dict[str, Any]) -> LineItem:
        # additional_info.items devuelve quantity y unit_price como string
        return LineItem(
            product_id=str(item["id"]),
            quantity=int(item.get("quantity") or 1),
            unit_price=to_decimal(item.get("unit_price") or 0),
            name=item.get("title"),
        )

    def health(self) -> Dict[str, Any]:
        return {
            "provider": self.name,
            "configured": True,
            "notificationUrl": self.notification_url or None,
            "timeoutSeconds": self.timeout_seconds,
        }
