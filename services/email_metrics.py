"""
Email Metrics Store
===================
Contadores persistentes de emails enviados y su historial.

Cada envío incrementa contadores en cuatro buckets: total, día
(YYYY-MM-DD), semana ISO (YYYY-Www) y mes (YYYY-MM). Los valores de
"hoy", "esta semana" y "este mes" se leen del bucket actual, así que se
reinician solos al cambiar el período.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from extensions import db
from models.notifications import EmailMetric, EmailHistoryEntry
from services.base import BaseService


SENT = 'emails_sent'
FAILED = 'emails_failed'

KIND_COMPANY_ORDER = 'company_order'
KIND_COMMISSION = 'commission'
KIND_MANUAL = 'manual'

HISTORY_LIMIT = 100


def period_buckets(now: datetime) -> List[Tuple[str, str]]:
    iso_year, iso_week, _ = now.isocalendar()
    return [
        ('total', '-'),
        ('day', now.strftime('%Y-%m-%d')),
        ('week', f"{iso_year}-W{iso_week:02d}"),
        ('month', now.strftime('%Y-%m')),
    ]


def kind_metric(kind: str) -> str:
    return f"kind:{kind}"


class EmailMetricsStore(BaseService[EmailMetric]):
    model_class = EmailMetric

    def _increment(self, metric: str, period: str, bucket: str, amount: int = 1):
        updated = EmailMetric.query.filter_by(metric=metric, period=period, bucket=bucket).update(
            {EmailMetric.count: EmailMetric.count + amount, EmailMetric.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
        if updated:
            return
        try:
            with db.session.begin_nested():
                db.session.add(EmailMetric(metric=metric, period=period, bucket=bucket, count=amount))
        except IntegrityError:
            # Otro proceso creó la fila primero
            EmailMetric.query.filter_by(metric=metric, period=period, bucket=bucket).update(
                {EmailMetric.count: EmailMetric.count + amount},
                synchronize_session=False,
            )

    def record(
        self,
        kind: str,
        recipient: str,
        success: bool,
        admin_user: Optional[str] = None,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
        commit: bool = True,
    ) -> EmailHistoryEntry:
        """Registra un envío (exitoso o fallido) en contadores e historial."""
        now = now or datetime.utcnow()
        metrics = [SENT, kind_metric(kind)] if success else [FAILED]
        for metric in metrics:
            for period, bucket in period_buckets(now):
                self._increment(metric, period, bucket)

        entry = EmailHistoryEntry(
            kind=kind,
            recipient=recipient or '',
            status='success' if success else 'failed',
            admin_user=admin_user,
            error=(error or '')[:500] or None,
            sent_at=now,
        )
        db.session.add(entry)
        if commit:
            self.commit()
        return entry

    def record_outcomes(self, outcomes: Iterable, now: Optional[datetime] = None):
        """Registra los resultados de un fan-out de notificaciones en una sola transacción."""
        outcomes = list(outcomes)
        if not outcomes:
            return
        for outcome in outcomes:
            self.record(
                outcome.kind,
                outcome.recipient,
                outcome.success,
                error=outcome.error,
                now=now,
                commit=False,
            )
        self.commit()

    def _value(self, metric: str, period: str, bucket: str) -> int:
        row = EmailMetric.query.filter_by(metric=metric, period=period, bucket=bucket).first()
        return row.count if row else 0

    def snapshot(self, now: Optional[datetime] = None) -> Dict[str, object]:
        now = now or datetime.utcnow()
        buckets = dict(period_buckets(now))
        last = db.session.query(func.max(EmailHistoryEntry.sent_at)).scalar()

        return {
            'totalEmailsSent': self._value(SENT, 'total', '-'),
            'failedEmails': self._value(FAILED, 'total', '-'),
            'companyNotifications': self._value(kind_metric(KIND_COMPANY_ORDER), 'total', '-'),
            'commissionNotifications': self._value(kind_metric(KIND_COMMISSION), 'total', '-'),
            'manualEmails': self._value(kind_metric(KIND_MANUAL), 'total', '-'),
            'lastExecution': last.isoformat() if last else None,
            'todaysSent': self._value(SENT, 'day', buckets['day']),
            'thisWeekSent': self._value(SENT, 'week', buckets['week']),
            'thisMonthSent': self._value(SENT, 'month', buckets['month']),
        }

    def history(self, limit: int = HISTORY_LIMIT) -> List[Dict[str, object]]:
        entries = (
            EmailHistoryEntry.query
            .order_by(EmailHistoryEntry.sent_at.desc(), EmailHistoryEntry.id.desc())
            .limit(limit)
            .all()
        )
        return [entry.to_dict() for entry in entries]
