"""
Tests del orquestador de confirmación de pagos.
"""
from decimal import Decimal

import pytest

from models import EmailHistoryEntry, Order, Referral, ReferralStatus
from services.base import AttributionPersistenceError, GatewayUnreachable, PaymentNotCompleted, ValidationException
from services.email_metrics import EmailMetricsStore
from services.gateways.base import CustomerContact, VerificationStatus
from services.notifications import NotificationDispatcher
from services.payment_confirmation import PaymentConfirmation, PaymentConfirmationService, PaymentState
from tests.helpers import FakeMailer, item_payload, line_item


CUSTOMER = CustomerContact(name='Invitado', email='invitado@example.com', address='Calle 1', city='Rosario')


@pytest.fixture
def catalog(make_company, make_seller, make_product):
    """Dos empresas con un vendedor cada una y un producto de $50 en cada una."""
    company_a = make_company(name='Empresa A', email='ventas@a.com')
    company_b = make_company(name='Empresa B', email='ventas@b.com')
    seller_a = make_seller(company_a)
    seller_b = make_seller(company_b)
    product_a = make_product(company_a, name='Lámpara', price='50.00')
    product_b = make_product(company_b, name='Silla', price='50.00')
    return {
        'companies': (company_a, company_b),
        'sellers': (seller_a, seller_b),
        'products': (product_a, product_b),
    }


def _confirmation(reference, items, payer_id=None, referrer_id=None):
    return PaymentConfirmation(
        payment_reference=reference,
        line_items=items,
        customer=CUSTOMER,
        payer_id=payer_id,
        referrer_id=referrer_id,
    )


@pytest.mark.integration
class TestConfirm:

    def test_guest_purchase_with_referrer(self, confirmation_service, fake_gateway, mailer, catalog, ambassador):
        product_a, product_b = catalog['products']
        items = [line_item(product_a), line_item(product_b)]
        fake_gateway.approve('pi_full', items, customer=CUSTOMER, referrer_id=ambassador.id)

        result = confirmation_service.confirm('fake', _confirmation('pi_full', items, referrer_id=ambassador.id))

        assert result.state == PaymentState.NOTIFIED
        assert result.commission == Decimal('5.00')
        assert len(result.orders) == 2
        assert {o.seller_id for o in result.orders} == {s.id for s in catalog['sellers']}

        referral = Referral.query.one()
        assert referral.amount == Decimal('100.00')
        assert referral.status == ReferralStatus.PENDING
        assert referral.referred_user_id is None
        assert referral.referred_user_email == 'invitado@example.com'

        assert sorted(mailer.recipients) == ['referidor@example.com', 'ventas@a.com', 'ventas@b.com']
        assert all(n.success for n in result.notifications)
        assert EmailMetricsStore().snapshot()['totalEmailsSent'] == 3

    def test_confirming_twice_does_not_duplicate(self, confirmation_service, fake_gateway, catalog, ambassador):
        product_a, _ = catalog['products']
        items = [line_item(product_a, 2)]
        fake_gateway.approve('pi_twice', items, referrer_id=ambassador.id)

        first = confirmation_service.confirm('fake', _confirmation('pi_twice', items, referrer_id=ambassador.id))
        second = confirmation_service.confirm('fake', _confirmation('pi_twice', items, referrer_id=ambassador.id))

        assert [o.id for o in first.orders] == [o.id for o in second.orders]
        assert first.referral_id == second.referral_id
        assert Order.query.filter_by(payment_reference='pi_twice').count() == 1
        assert Referral.query.filter_by(payment_reference='pi_twice').count() == 1

    def test_one_failed_notification_does_not_block_others(
        self, app, fake_gateway, smtp_settings, catalog
    ):
        mailer = FakeMailer(failing={'ventas@a.com'})
        service = PaymentConfirmationService(
            gateway_factory=lambda name: fake_gateway,
            dispatcher_factory=lambda: NotificationDispatcher(settings=smtp_settings, max_workers=2, mailer=mailer),
        )
        items = [line_item(p) for p in catalog['products']]
        fake_gateway.approve('pi_partial', items)

        result = service.confirm('fake', _confirmation('pi_partial', items))

        assert result.state == PaymentState.NOTIFIED
        assert mailer.recipients == ['ventas@b.com']
        outcomes = {n.recipient: n for n in result.notifications}
        assert outcomes['ventas@a.com'].success is False
        assert outcomes['ventas@a.com'].error == 'smtp caído'
        assert outcomes['ventas@b.com'].success is True

        snapshot = EmailMetricsStore().snapshot()
        assert snapshot['totalEmailsSent'] == 1
        assert snapshot['failedEmails'] == 1
        assert EmailHistoryEntry.query.filter_by(status='failed').count() == 1

    def test_payment_not_completed(self, confirmation_service, fake_gateway, catalog):
        items = [line_item(catalog['products'][0])]
        fake_gateway.approve('pi_pending', items, status=VerificationStatus.PENDING, raw_status='processing')

        with pytest.raises(PaymentNotCompleted) as exc:
            confirmation_service.confirm('fake', _confirmation('pi_pending', items))

        assert exc.value.details['status'] == 'processing'
        assert Order.query.count() == 0

    def test_gateway_error_propagates(self, confirmation_service, fake_gateway, catalog):
        fake_gateway.error = GatewayUnreachable('timeout', provider='fake')
        items = [line_item(catalog['products'][0])]

        with pytest.raises(GatewayUnreachable):
            confirmation_service.confirm('fake', _confirmation('pi_down', items))
        assert Order.query.count() == 0

    def test_persistence_error_propagates(self, fake_gateway, dispatcher_factory, catalog):
        class BrokenAttribution:
            def attribute(self, reference, *args):
                raise AttributionPersistenceError(reference, 'db down')

        service = PaymentConfirmationService(
            gateway_factory=lambda name: fake_gateway,
            attribution=BrokenAttribution(),
            dispatcher_factory=dispatcher_factory,
        )
        items = [line_item(catalog['products'][0])]
        fake_gateway.approve('pi_broken', items)

        with pytest.raises(AttributionPersistenceError):
            service.confirm('fake', _confirmation('pi_broken', items))

    def test_referrer_taken_from_metadata(self, confirmation_service, fake_gateway, catalog, ambassador):
        items = [line_item(catalog['products'][0])]
        fake_gateway.approve('pi_meta', items, referrer_id=ambassador.id)

        result = confirmation_service.confirm('fake', _confirmation('pi_meta', items))

        assert result.referral_id is not None
        assert Referral.query.one().referrer_id == ambassador.id

    def test_request_referrer_cannot_override_metadata(
        self, confirmation_service, fake_gateway, catalog, ambassador, make_user
    ):
        other = make_user(name='Otro Embajador')
        items = [line_item(catalog['products'][0])]
        fake_gateway.approve('pi_swap', items, referrer_id=ambassador.id)

        first = confirmation_service.confirm('fake', _confirmation('pi_swap', items, referrer_id=ambassador.id))
        second = confirmation_service.confirm('fake', _confirmation('pi_swap', items, referrer_id=other.id))

        assert second.referral_id == first.referral_id
        assert [r.referrer_id for r in Referral.query.filter_by(payment_reference='pi_swap')] == [ambassador.id]

    def test_request_referrer_used_when_metadata_has_none(
        self, confirmation_service, fake_gateway, catalog, ambassador
    ):
        items = [line_item(catalog['products'][0])]
        fake_gateway.approve('pi_req_ref', items)

        confirmation_service.confirm('fake', _confirmation('pi_req_ref', items, referrer_id=ambassador.id))

        assert Referral.query.one().referrer_id == ambassador.id

    def test_self_referral_earns_nothing(self, confirmation_service, fake_gateway, catalog, ambassador):
        items = [line_item(catalog['products'][0])]
        fake_gateway.approve('pi_self', items, payer_id=ambassador.id, referrer_id=ambassador.id)

        result = confirmation_service.confirm(
            'fake', _confirmation('pi_self', items, payer_id=ambassador.id, referrer_id=ambassador.id)
        )

        assert result.commission == Decimal('0.00')
        assert Referral.query.count() == 0

    def test_unknown_referrer_does_not_fail_confirmation(self, confirmation_service, fake_gateway, catalog):
        items = [line_item(catalog['products'][0])]
        fake_gateway.approve('pi_ghost', items, referrer_id='no-existe')

        result = confirmation_service.confirm('fake', _confirmation('pi_ghost', items, referrer_id='no-existe'))

        assert result.state == PaymentState.NOTIFIED
        assert result.referral_id is None
        assert Order.query.filter_by(payment_reference='pi_ghost').count() == 1

    def test_registered_buyer_is_linked_to_order_and_commission(
        self, confirmation_service, fake_gateway, catalog, ambassador, make_user
    ):
        buyer = make_user(name='Comprador')
        items = [line_item(catalog['products'][0])]
        fake_gateway.approve('pi_buyer', items, payer_id=buyer.id, referrer_id=ambassador.id)

        result = confirmation_service.confirm('fake', _confirmation('pi_buyer', items))

        assert result.orders[0].buyer_user_id == buyer.id
        assert Referral.query.one().referred_user_id == buyer.id


@pytest.mark.integration
class TestConfirmFromWebhook:

    def test_rebuilds_confirmation_from_gateway(self, confirmation_service, fake_gateway, mailer, catalog, ambassador):
        product_a, product_b = catalog['products']
        items = [line_item(product_a, 2), line_item(product_b)]
        fake_gateway.approve('mp_123', items, customer=CUSTOMER, referrer_id=ambassador.id)

        result = confirmation_service.confirm_from_webhook('fake', 'mp_123')

        assert result.state == PaymentState.NOTIFIED
        assert result.commission == Decimal('7.50')
        assert len(result.orders) == 2
        assert 'referidor@example.com' in mailer.recipients

    def test_missing_items_fails(self, confirmation_service, fake_gateway, catalog):
        fake_gateway.approve('mp_empty', [line_item(catalog['products'][0])])
        fake_gateway.verifications['mp_empty'].line_items = []

        with pytest.raises(ValidationException):
            confirmation_service.confirm_from_webhook('fake', 'mp_empty')
        assert Order.query.count() == 0


@pytest.mark.unit
class TestPaymentConfirmationRequest:

    def test_from_request(self, catalog):
        product_a, _ = catalog['products']
        confirmation = PaymentConfirmation.from_request({
            'paymentIntentId': 'pi_req',
            'userId': 'guest',
            'referredBy': 'ref-1',
            'items': [item_payload(product_a, 2)],
            'customerInfo': {'name': 'Ana', 'email': 'ana@example.com'},
        })

        assert confirmation.payment_reference == 'pi_req'
        assert confirmation.payer_id is None
        assert confirmation.referrer_id == 'ref-1'
        assert confirmation.total_amount == Decimal('100.00')

    def test_customer_info_required(self, catalog):
        with pytest.raises(ValidationException):
            PaymentConfirmation.from_request({
                'paymentIntentId': 'pi_req',
                'items': [item_payload(catalog['products'][0])],
            })

    def test_reference_required(self, catalog):
        with pytest.raises(ValidationException):
            PaymentConfirmation.from_request({
                'items': [item_payload(catalog['products'][0])],
                'customerInfo': {'email': 'a@b.com'},
            })
