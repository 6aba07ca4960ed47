"""
Tests del ledger de comisiones de referidos.
"""
from decimal import Decimal
from unittest.mock import patch

import pytest

from extensions import db
from models import Referral, ReferralStatus
from services.base import NotFoundException, ReferrerNotFound, ValidationException
from services.commission_ledger import (
    CommissionLedger,
    ReferredIdentity,
    compute_commission,
)


@pytest.fixture
def ledger():
    return CommissionLedger()


@pytest.mark.unit
@pytest.mark.parametrize('amount, expected', [
    ('100.00', Decimal('5.00')),
    ('0.10', Decimal('0.01')),   # 0.005 redondea hacia arriba
    ('0.09', Decimal('0.00')),   # 0.0045
    ('19.99', Decimal('1.00')),  # 0.9995
    ('1234.56', Decimal('61.73')),
])
def test_compute_commission_rounds_half_up(amount, expected):
    assert compute_commission(amount) == expected


@pytest.mark.integration
class TestRecordCommission:

    def test_guest_purchase_records_pending_commission(self, ledger, ambassador):
        referral = ledger.record_commission(
            ambassador.id,
            ReferredIdentity(email='invitado@example.com', name='Invitado'),
            Decimal('100.00'),
            'pi_guest_1',
        )

        assert referral.amount == Decimal('100.00')
        assert referral.commission == Decimal('5.00')
        assert referral.status == ReferralStatus.PENDING
        assert referral.referred_user_id is None
        assert referral.referred_user_email == 'invitado@example.com'
        assert referral.paid_at is None

    def test_registered_buyer_is_linked(self, ledger, ambassador, make_user):
        buyer = make_user(name='Comprador')
        referral = ledger.record_commission(
            ambassador.id,
            ReferredIdentity(user_id=buyer.id, email=buyer.email, name=buyer.name),
            '40.00',
            'pi_registered',
        )
        assert referral.referred_user_id == buyer.id
        assert referral.commission == Decimal('2.00')

    def test_unknown_buyer_id_is_treated_as_guest(self, ledger, ambassador):
        referral = ledger.record_commission(
            ambassador.id,
            ReferredIdentity(user_id='no-existe', email='x@example.com'),
            '10.00',
            'pi_unknown_buyer',
        )
        assert referral.referred_user_id is None

    def test_recording_twice_keeps_one_row(self, ledger, ambassador):
        buyer = ReferredIdentity(email='invitado@example.com')
        first = ledger.record_commission(ambassador.id, buyer, '100.00', 'pi_twice')
        second = ledger.record_commission(ambassador.id, buyer, '100.00', 'pi_twice')

        assert first.id == second.id
        assert Referral.query.filter_by(payment_reference='pi_twice').count() == 1

    def test_lost_race_returns_existing_row(self, ledger, ambassador):
        winner = Referral(
            referrer_id=ambassador.id,
            amount=Decimal('100.00'),
            commission=Decimal('5.00'),
            payment_reference='pi_race',
        )
        db.session.add(winner)
        db.session.commit()

        # El lookup previo no ve la fila ganadora; el insert choca con la restricción única
        with patch.object(CommissionLedger, 'find', side_effect=[None, winner]):
            result = ledger.record_commission(
                ambassador.id, ReferredIdentity(email='otro@example.com'), '100.00', 'pi_race'
            )

        assert result.id == winner.id
        assert Referral.query.filter_by(payment_reference='pi_race').count() == 1

    def test_unknown_referrer_raises(self, ledger):
        with pytest.raises(ReferrerNotFound) as exc:
            ledger.record_commission('no-existe', ReferredIdentity(email='a@b.com'), '10.00', 'pi_x')
        assert exc.value.code == 'REFERRER_NOT_FOUND'
        assert Referral.query.count() == 0

    @pytest.mark.parametrize('amount', ['0', '-5.00'])
    def test_non_positive_amount_rejected(self, ledger, ambassador, amount):
        with pytest.raises(ValidationException):
            ledger.record_commission(ambassador.id, ReferredIdentity(), amount, 'pi_zero')

    def test_payment_reference_required(self, ledger, ambassador):
        with pytest.raises(ValidationException):
            ledger.record_commission(ambassador.id, ReferredIdentity(), '10.00', '')


@pytest.mark.integration
class TestMarkPaid:

    def test_pending_becomes_paid(self, ledger, ambassador):
        referral = ledger.record_commission(ambassador.id, ReferredIdentity(), '50.00', 'pi_pay')

        paid = ledger.mark_paid(referral.id)

        assert paid.status == ReferralStatus.PAID
        assert paid.paid_at is not None

    def test_marking_twice_is_a_no_op(self, ledger, ambassador):
        referral = ledger.record_commission(ambassador.id, ReferredIdentity(), '50.00', 'pi_pay_twice')
        first = ledger.mark_paid(referral.id)
        paid_at = first.paid_at

        second = ledger.mark_paid(referral.id)

        assert second.status == ReferralStatus.PAID
        assert second.paid_at == paid_at

    def test_unknown_commission_raises_not_found(self, ledger):
        with pytest.raises(NotFoundException):
            ledger.mark_paid('no-existe')


@pytest.mark.integration
class TestStats:

    def test_stats_are_consistent(self, ledger, ambassador):
        guest = ReferredIdentity(email='invitado@example.com')
        first = ledger.record_commission(ambassador.id, guest, '100.00', 'pi_s1')
        ledger.record_commission(ambassador.id, guest, '40.00', 'pi_s2')
        ledger.record_commission(ambassador.id, guest, '10.10', 'pi_s3')
        ledger.mark_paid(first.id)

        stats = ledger.stats_for(ambassador.id)

        assert stats.total_referrals == 3
        assert stats.total_commissions == Decimal('7.51')
        assert stats.paid_commissions == Decimal('5.00')
        assert stats.pending_commissions == Decimal('2.51')
        assert stats.pending_commissions + stats.paid_commissions == stats.total_commissions

    def test_stats_for_user_without_commissions(self, ledger, make_user):
        user = make_user(name='Sin Referidos')
        assert ledger.stats_for(user.id).to_dict() == {
            'totalCommissions': 0.0,
            'totalReferrals': 0,
            'pendingCommissions': 0.0,
            'paidCommissions': 0.0,
        }

    def test_list_commissions_includes_stats(self, ledger, ambassador):
        ledger.record_commission(ambassador.id, ReferredIdentity(email='a@b.com'), '20.00', 'pi_l1')
        ledger.record_commission(ambassador.id, ReferredIdentity(email='c@d.com'), '60.00', 'pi_l2')

        result = ledger.list_commissions(ambassador.id)

        assert len(result['commissions']) == 2
        assert {c['paymentReference'] for c in result['commissions']} == {'pi_l1', 'pi_l2'}
        assert result['stats']['totalCommissions'] == 4.0
        assert all(c['referrerId'] == ambassador.id for c in result['commissions'])


@pytest.mark.integration
def test_short_code_is_created_once(ledger, ambassador):
    first = ledger.get_or_create_short_code(ambassador.id)
    assert ledger.get_or_create_short_code(ambassador.id) == first
