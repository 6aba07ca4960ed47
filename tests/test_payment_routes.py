"""
Tests de los endpoints de pagos.
"""
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from models import Order, ProcessedWebhook, Referral
from services.email_metrics import EmailMetricsStore
from services.gateways.base import VerificationStatus
from tests.helpers import item_payload, line_item


@pytest.fixture
def catalog(make_company, make_seller, make_product):
    company = make_company(name='Empresa A', email='ventas@a.com')
    make_seller(company)
    return [make_product(company, name='Lámpara', price='50.00'), make_product(company, name='Mesa', price='50.00')]


def _customer():
    return {'name': 'Invitado', 'email': 'invitado@example.com', 'address': 'Calle 1', 'city': 'Rosario'}


@pytest.mark.integration
class TestStripeEndpoints:

    def test_public_config(self, client):
        response = client.get('/payments/config')
        assert response.status_code == 200
        assert response.get_json() == {'publishableKey': 'pk_test_123'}

    def test_create_payment_intent_defaults_to_items_total(self, client, catalog):
        intent = SimpleNamespace(id='pi_new', status='requires_payment_method', client_secret='pi_new_secret')
        with patch.object(stripe.PaymentIntent, 'create', return_value=intent) as create:
            response = client.post('/payments/create-payment-intent', json={
                'items': [item_payload(p) for p in catalog],
                'customerInfo': _customer(),
                'referredBy': 'ref-1',
            })

        assert response.status_code == 200
        assert response.get_json() == {'clientSecret': 'pi_new_secret', 'paymentIntentId': 'pi_new'}
        kwargs = create.call_args.kwargs
        assert kwargs['amount'] == 10000
        assert kwargs['metadata']['userId'] == 'guest'
        assert kwargs['metadata']['referredBy'] == 'ref-1'

    def test_create_payment_intent_below_minimum(self, client, catalog):
        response = client.post('/payments/create-payment-intent', json={
            'amount': 10,
            'items': [item_payload(catalog[0])],
            'customerInfo': _customer(),
        })
        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'

    def test_create_payment_intent_requires_customer(self, client, catalog):
        response = client.post('/payments/create-payment-intent', json={'items': [item_payload(catalog[0])]})
        assert response.status_code == 400

    def test_invalid_json_body(self, client):
        response = client.post('/payments/create-payment-intent', data='no json', content_type='text/plain')
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Body JSON inválido'

    def test_card_declined_maps_to_402(self, client, catalog):
        error = stripe.CardError('Tu tarjeta fue rechazada', 'number', 'card_declined')
        with patch.object(stripe.PaymentIntent, 'create', side_effect=error):
            response = client.post('/payments/create-payment-intent', json={
                'items': [item_payload(catalog[0])],
                'customerInfo': _customer(),
            })
        assert response.status_code == 402
        assert response.get_json()['code'] == 'GATEWAY_REJECTED'

    def test_gateway_down_maps_to_503(self, client, catalog):
        with patch.object(stripe.PaymentIntent, 'create', side_effect=stripe.APIConnectionError('timeout')):
            response = client.post('/payments/create-payment-intent', json={
                'items': [item_payload(catalog[0])],
                'customerInfo': _customer(),
            })
        assert response.status_code == 503
        assert response.get_json()['error'] == 'Error interno del servidor'

    def test_confirm_payment(self, client, confirmation_service, fake_gateway, mailer, catalog, ambassador):
        fake_gateway.approve('pi_ok', [line_item(p) for p in catalog], referrer_id=ambassador.id)

        response = client.post('/payments/confirm-payment', json={
            'paymentIntentId': 'pi_ok',
            'referredBy': ambassador.id,
            'items': [item_payload(p) for p in catalog],
            'customerInfo': _customer(),
        })

        body = response.get_json()
        assert response.status_code == 200
        assert body['success'] is True
        assert body['state'] == 'notified'
        assert body['commission'] == 5.0
        assert len(body['orders']) == 1
        assert sorted(body['orders'][0]['products']) == sorted(p.id for p in catalog)
        assert sorted(mailer.recipients) == ['referidor@example.com', 'ventas@a.com']

    def test_confirm_unpaid_intent(self, client, confirmation_service, fake_gateway, catalog):
        fake_gateway.approve('pi_wait', [line_item(catalog[0])],
                             status=VerificationStatus.PENDING, raw_status='requires_payment_method')

        response = client.post('/payments/confirm-payment', json={
            'paymentIntentId': 'pi_wait',
            'items': [item_payload(catalog[0])],
            'customerInfo': _customer(),
        })

        assert response.status_code == 402
        body = response.get_json()
        assert body['code'] == 'PAYMENT_NOT_COMPLETED'
        assert body['details']['status'] == 'requires_payment_method'
        assert Order.query.count() == 0


@pytest.mark.integration
class TestMercadoPagoEndpoints:

    def test_webhook_processes_payment_once(self, client, confirmation_service, fake_gateway, catalog, ambassador):
        fake_gateway.approve('987', [line_item(catalog[0], 2)], referrer_id=ambassador.id)
        payload = {'type': 'payment', 'data': {'id': '987'}}
        headers = {'x-request-id': 'req-987'}

        first = client.post('/payments/mercadopago/webhook', json=payload, headers=headers)
        second = client.post('/payments/mercadopago/webhook', json=payload, headers=headers)

        assert first.status_code == 200
        assert first.get_json()['status'] == 'processed'
        assert second.get_json() == {'status': 'already_processed'}
        assert fake_gateway.verify_calls == ['987']
        assert Referral.query.filter_by(payment_reference='987').count() == 1
        assert ProcessedWebhook.query.filter_by(request_id='req-987').count() == 1

    def test_webhook_ignores_other_topics(self, client, confirmation_service, fake_gateway):
        response = client.post('/payments/mercadopago/webhook', json={'type': 'merchant_order', 'data': {'id': '1'}})
        assert response.status_code == 200
        assert response.get_json() == {'status': 'ignored'}
        assert fake_gateway.verify_calls == []

    def test_webhook_without_payment_id(self, client, confirmation_service):
        response = client.post('/payments/mercadopago/webhook', json={'type': 'payment'})
        assert response.status_code == 400

    def test_webhook_not_approved_payment(self, client, confirmation_service, fake_gateway, catalog):
        fake_gateway.approve('555', [line_item(catalog[0])],
                             status=VerificationStatus.FAILED, raw_status='rejected')

        response = client.post('/payments/mercadopago/webhook?type=payment&data.id=555',
                               headers={'x-request-id': 'req-555'})

        assert response.status_code == 200
        assert response.get_json() == {'status': 'not_approved', 'paymentStatus': 'rejected'}
        assert Order.query.count() == 0

    def test_failed_webhook_is_not_marked_processed(self, client, confirmation_service, fake_gateway, catalog):
        from services.base import GatewayUnreachable

        fake_gateway.error = GatewayUnreachable('timeout', provider='fake')
        response = client.post('/payments/mercadopago/webhook',
                               json={'type': 'payment', 'data': {'id': '777'}},
                               headers={'x-request-id': 'req-777'})

        assert response.status_code == 503
        assert ProcessedWebhook.query.count() == 0

    def test_confirm_from_back_url(self, client, confirmation_service, fake_gateway, catalog):
        fake_gateway.approve('mp-1', [line_item(catalog[0])])

        response = client.post('/payments/mercadopago/confirm', json={
            'paymentId': 'mp-1',
            'items': [item_payload(catalog[0])],
            'customerInfo': _customer(),
        })

        assert response.status_code == 200
        assert response.get_json()['paymentReference'] == 'mp-1'
        assert fake_gateway.verify_calls == ['mp-1']

    def test_create_preference(self, client, catalog):
        from services.gateways.providers.mercadopago_provider import MercadoPagoGateway

        result = SimpleNamespace(provider_reference='pref-1', redirect_url='https://mp/init',
                                 sandbox_redirect_url='https://mp/sandbox')
        with patch.object(MercadoPagoGateway, 'create_intent', return_value=result) as create:
            response = client.post('/payments/mercadopago/create-preference', json={
                'items': [item_payload(catalog[0])],
                'customerInfo': _customer(),
            })

        assert response.status_code == 200
        assert response.get_json() == {
            'preferenceId': 'pref-1',
            'initPoint': 'https://mp/init',
            'sandboxInitPoint': 'https://mp/sandbox',
        }
        assert create.call_args.args[0] == 5000

    def test_mp_health(self, client):
        response = client.get('/payments/mp/health')
        assert response.status_code == 200
        assert response.get_json()['provider'] == 'mercadopago'


@pytest.mark.integration
class TestAccountEndpoints:

    def test_referral_stats_for_self(self, login, ambassador):
        client = login(ambassador)
        response = client.get('/payments/referral-stats')
        assert response.status_code == 200
        assert response.get_json() == {
            'success': True,
            'totalCommissions': 0.0,
            'totalReferrals': 0,
            'pendingCommissions': 0.0,
            'paidCommissions': 0.0,
        }

    def test_referral_stats_of_other_user_denied(self, login, ambassador, make_user):
        other = make_user(name='Otro')
        client = login(ambassador)
        response = client.get(f'/payments/referral-stats?userId={other.id}')
        assert response.status_code == 403
        assert response.get_json()['code'] == 'PERMISSION_DENIED'

    def test_payment_history(self, login, confirmation_service, fake_gateway, catalog, make_user):
        buyer = make_user(name='Comprador')
        fake_gateway.approve('pi_hist', [line_item(catalog[0], 3)], payer_id=buyer.id)
        confirmation_service.confirm_from_webhook('fake', 'pi_hist')

        client = login(buyer)
        response = client.get('/payments/payment-history')

        payments = response.get_json()['payments']
        assert len(payments) == 1
        assert payments[0]['paymentReference'] == 'pi_hist'
        assert payments[0]['lines'] == [{'productId': catalog[0].id, 'quantity': 3, 'unitPrice': 50.0}]
        assert payments[0]['total'] == 150.0


@pytest.mark.integration
class TestManualNotification:

    def test_admin_sends_notification(self, login, admin_user):
        client = login(admin_user)
        with patch('services.notifications.deliver') as deliver:
            response = client.post('/payments/manual-company-notification', json={
                'companyEmail': 'ventas@a.com',
                'companyName': 'Empresa A',
                'orderDetails': {'orderId': 'pi_1', 'products': [], 'totalAmount': 10},
            })

        assert response.status_code == 200
        assert response.get_json()['sentBy'] == 'admin@example.com'
        assert deliver.call_args.args[1] == 'ventas@a.com'
        snapshot = EmailMetricsStore().snapshot()
        assert snapshot['manualEmails'] == 1

    def test_failed_send_is_recorded(self, login, admin_user):
        client = login(admin_user)
        # Sin MAIL_USER/MAIL_PASSWORD la configuración SMTP está incompleta
        response = client.post('/payments/manual-company-notification', json={'companyEmail': 'ventas@a.com'})

        assert response.status_code == 500
        assert response.get_json()['code'] == 'NOTIFICATION_FAILURE'
        assert EmailMetricsStore().snapshot()['failedEmails'] == 1

    def test_invalid_email(self, login, admin_user):
        client = login(admin_user)
        response = client.post('/payments/manual-company-notification', json={'companyEmail': 'no-es-email'})
        assert response.status_code == 400

    @pytest.mark.parametrize('order_details', [
        {'products': [{'name': 'A', 'quantity': 1, 'price': 'N/A'}]},
        {'products': [], 'totalAmount': 'mucho'},
        {'products': ['A']},
        {'products': 'A'},
        ['no', 'es', 'objeto'],
    ])
    def test_malformed_order_details_rejected(self, login, admin_user, order_details):
        client = login(admin_user)
        with patch('services.notifications.deliver') as deliver:
            response = client.post('/payments/manual-company-notification', json={
                'companyEmail': 'ventas@a.com',
                'orderDetails': order_details,
            })

        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'
        deliver.assert_not_called()
        assert EmailMetricsStore().snapshot()['manualEmails'] == 0

    def test_requires_admin(self, login, ambassador):
        client = login(ambassador)
        response = client.post('/payments/manual-company-notification', json={'companyEmail': 'a@b.com'})
        assert response.status_code == 403
