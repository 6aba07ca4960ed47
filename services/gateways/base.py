"""Shared contract for payment gateways (card network and regional checkout)."""
from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from services.base import GatewayAuthError, GatewayUnreachable, ValidationException
from utils.security_logger import log_security_event


CENT = Decimal("0.01")
GUEST_PAYER = "guest"
ITEMS_SUMMARY_MAX_LENGTH = 450

# Claves de metadata que tienen que volver idénticas en verify()
METADATA_KEYS = (
    "userId",
    "referredBy",
    "itemsSummary",
    "itemsCount",
    "customerEmail",
    "customerName",
    "totalAmount",
)

# Un GatewayUnreachable se reintenta una sola vez con backoff corto.
gateway_retry = retry(
    retry=retry_if_exception_type(GatewayUnreachable),
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationException(f"Importe inválido: {value!r}") from exc


def to_minor_units(amount: Decimal) -> int:
    return int((to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    return (Decimal(int(amount_minor)) / 100).quantize(CENT)


@dataclass
class LineItem:
    """Un renglón del carrito tal como lo pagó el cliente."""

    product_id: str
    quantity: int
    unit_price: Decimal
    company_id: Optional[str] = None
    name: Optional[str] = None
    company_name: Optional[str] = None
    company_email: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENT)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "LineItem":
        """Convierte un item del storefront (id, nombre, cantidad, precio, empresa)."""
        if not isinstance(data, dict):
            raise ValidationException("Item del pedido inválido")
        product_id = data.get("id")
        if product_id in (None, ""):
            raise ValidationException("Cada item debe tener un id de producto")
        try:
            quantity = int(data.get("cantidad", 0))
        except (TypeError, ValueError) as exc:
            raise ValidationException("La cantidad debe ser un entero") from exc
        if quantity <= 0:
            raise ValidationException("La cantidad debe ser mayor a 0", details={"id": product_id})
        unit_price = to_decimal(data.get("precio"))
        if unit_price < 0:
            raise ValidationException("El precio no puede ser negativo", details={"id": product_id})

        empresa = data.get("empresa") or {}
        return cls(
            product_id=str(product_id),
            quantity=quantity,
            unit_price=unit_price,
            company_id=str(empresa["id"]) if empresa.get("id") is not None else None,
            name=data.get("nombre"),
            company_name=empresa.get("nombre"),
            company_email=empresa.get("email"),
        )


@dataclass
class CustomerContact:
    name: str = ""
    email: str = ""
    address: str = ""
    city: str = ""
    phone: str = ""
    postal_code: str = ""

    @classmethod
    def from_payload(cls, data: Optional[Dict[str, Any]]) -> "CustomerContact":
        data = data or {}
        return cls(
            name=(data.get("name") or "").strip(),
            email=(data.get("email") or "").strip(),
            address=(data.get("address") or "").strip(),
            city=(data.get("city") or "").strip(),
            phone=(data.get("phone") or "").strip(),
            postal_code=(data.get("postalCode") or "").strip(),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "email": self.email,
            "address": self.address,
            "city": self.city,
            "phone": self.phone,
            "postalCode": self.postal_code,
        }


def parse_line_items(raw_items: Any) -> List[LineItem]:
    if not raw_items or not isinstance(raw_items, list):
        raise ValidationException("Debe haber al menos un producto")
    return [LineItem.from_payload(item) for item in raw_items]


def items_total(line_items: List[LineItem]) -> Decimal:
    return sum((item.subtotal for item in line_items), Decimal("0.00"))


class VerificationStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class IntentResult:
    provider: str
    provider_reference: str
    client_secret: Optional[str] = None
    redirect_url: Optional[str] = None
    sandbox_redirect_url: Optional[str] = None


@dataclass
class GatewayVerification:
    provider: str
    provider_reference: str
    status: VerificationStatus
    raw_status: str
    amount: Decimal
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)
    line_items: List[LineItem] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.status == VerificationStatus.SUCCEEDED


def summarize_items(line_items: List[LineItem]) -> str:
    """'Mate x2 ($10.00), Yerba x1 ($5.50)', truncado a 450 caracteres."""
    summary = ", ".join(
        f"{item.name or item.product_id} x{item.quantity} (${item.unit_price})" for item in line_items
    )
    if len(summary) > ITEMS_SUMMARY_MAX_LENGTH:
        return summary[: ITEMS_SUMMARY_MAX_LENGTH - 3] + "..."
    return summary


def build_metadata(
    line_items: List[LineItem],
    customer: CustomerContact,
    payer_id: Optional[str],
    referrer_id: Optional[str],
    amount_minor_units: int,
) -> Dict[str, str]:
    return {
        "userId": payer_id or GUEST_PAYER,
        "referredBy": referrer_id or "",
        "itemsSummary": summarize_items(line_items),
        "itemsCount": str(len(line_items)),
        "customerEmail": customer.email,
        "customerName": customer.name or "",
        "totalAmount": f"{from_minor_units(amount_minor_units):.2f}",
    }


def _snake_case(key: str) -> str:
    return "".join(f"_{ch.lower()}" if ch.isupper() else ch for ch in key)


_SNAKE_TO_CAMEL = {_snake_case(key): key for key in METADATA_KEYS}


def normalize_metadata(raw: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Devuelve la metadata con las claves camelCase originales.

    Algunos procesadores reescriben las claves (``userId`` -> ``user_id``).
    Los valores se devuelven como string; los ausentes quedan en "".
    """
    raw = dict(raw or {})
    normalized: Dict[str, str] = {}
    for key in METADATA_KEYS:
        value = raw.get(key)
        if value is None:
            value = raw.get(_snake_case(key))
        normalized[key] = "" if value is None else str(value)
    for key, value in raw.items():
        if key not in normalized and key not in _SNAKE_TO_CAMEL:
            normalized[key] = "" if value is None else str(value)
    return normalized


def payer_from_metadata(metadata: Dict[str, str]) -> Optional[str]:
    payer = metadata.get("userId") or ""
    return None if payer in ("", GUEST_PAYER) else payer


class PaymentGateway(ABC):
    """Adaptador de una pasarela de pago."""

    name: str = ""

    def __init__(self, timeout_seconds: float = 8.0, min_amount: int = 50):
        self.timeout_seconds = timeout_seconds
        self.min_amount = min_amount

    def validate_intent_request(
        self,
        amount_minor_units: Any,
        line_items: List[LineItem],
        customer: CustomerContact,
    ) -> int:
        try:
            amount = int(amount_minor_units)
        except (TypeError, ValueError) as exc:
            raise ValidationException("El monto debe ser un entero en centavos") from exc
        if amount <= 0:
            raise ValidationException("El monto debe ser mayor a 0")
        if amount < self.min_amount:
            raise ValidationException(
                f"El monto mínimo es ${from_minor_units(self.min_amount):.2f}",
                details={"amount": amount, "min_amount": self.min_amount},
            )
        if not line_items:
            raise ValidationException("Debe haber al menos un producto")
        if not customer or not customer.email:
            raise ValidationException("Email del cliente es requerido")
        return amount

    def auth_error(self, message: str) -> GatewayAuthError:
        log_security_event(
            "gateway_auth_error",
            f"{self.name}: {message}",
            severity="critical",
            provider=self.name,
        )
        return GatewayAuthError(message, provider=self.name)

    @abstractmethod
    def create_intent(
        self,
        amount_minor_units: int,
        currency: str,
        line_items: List[LineItem],
        customer: CustomerContact,
        payer_id: Optional[str] = None,
        referrer_id: Optional[str] = None,
    ) -> IntentResult:
        """Crea el intento de pago en el procesador."""

    @abstractmethod
    def verify(self, provider_reference: str) -> GatewayVerification:
        """Consulta el estado del pago en el procesador."""
