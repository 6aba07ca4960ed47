"""Fakes y builders compartidos por los tests."""
from decimal import Decimal

from services.base import NotificationFailure
from services.gateways.base import (
    CustomerContact,
    GatewayVerification,
    LineItem,
    PaymentGateway,
    VerificationStatus,
    build_metadata,
    items_total,
    to_minor_units,
)


class FakeMailer:
    """Mailer en memoria. Falla para los destinatarios en ``failing``."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []

    def __call__(self, settings, to_email, subject, html_content, text_content=None):
        if to_email in self.failing:
            raise NotificationFailure(to_email, 'smtp caído')
        self.sent.append({'to': to_email, 'subject': subject, 'html': html_content, 'text': text_content})

    @property
    def recipients(self):
        return [m['to'] for m in self.sent]


class FakeGateway(PaymentGateway):
    """Pasarela en memoria que devuelve verificaciones preparadas por el test."""

    name = 'fake'

    def __init__(self):
        super().__init__()
        self.verifications = {}
        self.verify_calls = []
        self.error = None

    def approve(self, reference, line_items, customer=None, payer_id=None, referrer_id=None,
                status=VerificationStatus.SUCCEEDED, raw_status='succeeded', amount=None):
        customer = customer or CustomerContact(name='Cliente', email='cliente@example.com')
        total = items_total(line_items)
        self.verifications[reference] = GatewayVerification(
            provider=self.name,
            provider_reference=reference,
            status=status,
            raw_status=raw_status,
            amount=amount if amount is not None else total,
            currency='USD',
            metadata=build_metadata(line_items, customer, payer_id, referrer_id, to_minor_units(total)),
            line_items=list(line_items),
        )

    def create_intent(self, amount_minor_units, currency, line_items, customer, payer_id=None, referrer_id=None):
        raise NotImplementedError

    def verify(self, provider_reference):
        self.verify_calls.append(provider_reference)
        if self.error is not None:
            raise self.error
        return self.verifications[provider_reference]


def line_item(product, quantity=1, price=None):
    """LineItem de un producto persistido."""
    return LineItem(
        product_id=product.id,
        quantity=quantity,
        unit_price=Decimal(str(price if price is not None else product.price)),
        company_id=product.company_id,
        name=product.name,
    )


def item_payload(product, quantity=1, price=None):
    """Item tal como lo envía el storefront."""
    company = product.company
    return {
        'id': product.id,
        'nombre': product.name,
        'cantidad': quantity,
        'precio': float(price if price is not None else product.price),
        'empresa': {'id': company.id, 'nombre': company.name, 'email': company.email},
    }
